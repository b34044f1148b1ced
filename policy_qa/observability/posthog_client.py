# policy_qa/observability/posthog_client.py

"""
PostHog product analytics.

Tracking is best effort: a missing key disables it, and a failing capture
is logged and dropped. Nothing in here may raise into a request.
"""

import logging
import os
from typing import Any, Dict, Optional

from posthog import Posthog


logger = logging.getLogger(__name__)


class PostHogClient:

    def __init__(self, api_key: Optional[str] = None, host: Optional[str] = None):

        self._enabled = False
        self._client: Optional[Posthog] = None

        api_key = api_key or os.getenv("POSTHOG_API_KEY")
        host = host or os.getenv("POSTHOG_HOST", "https://app.posthog.com")

        if not api_key:
            logger.info("PostHog disabled: POSTHOG_API_KEY not set")
            return

        try:

            self._client = Posthog(
                project_api_key=api_key,
                host=host,
                timeout=5,
                flush_interval=1,
            )

            self._enabled = True

            logger.info("PostHog client initialized", extra={"host": host})

        except Exception as e:

            logger.error(
                "PostHog initialization failed",
                extra={"error": str(e)},
            )


    @property
    def enabled(self) -> bool:
        return self._enabled


    def _track(
        self,
        distinct_id: str,
        event: str,
        properties: Optional[Dict[str, Any]] = None,
    ):

        if not self._enabled or not self._client:
            return

        try:

            self._client.capture(
                distinct_id=distinct_id,
                event=event,
                properties=properties or {},
            )

        except Exception as e:

            logger.warning(
                "PostHog tracking failed",
                extra={"event": event, "error": str(e)},
            )


    def shutdown(self):
        """Flush queued events; called once when the app stops."""

        if not self._enabled or not self._client:
            return

        try:
            self._client.shutdown()

        except Exception as e:
            logger.warning("PostHog flush failed", extra={"error": str(e)})


    # ==========================================================
    # QUESTION ANSWERING
    # ==========================================================

    def track_question(
        self,
        distinct_id: str,
        question: str,
        kind: str,
        confidence: str,
        sources: int,
        latency: float,
    ):

        self._track(
            distinct_id,
            "question_answered",
            {
                "question_length": len(question),
                "answer_kind": kind,
                "confidence": confidence,
                "sources": sources,
                "latency_seconds": latency,
            },
        )


    def track_override_match(
        self,
        distinct_id: str,
        override_id: str,
        similarity: float,
    ):

        self._track(
            distinct_id,
            "override_matched",
            {"override_id": override_id, "similarity": similarity},
        )


    # ==========================================================
    # OVERRIDE LIFECYCLE
    # ==========================================================

    def track_override_change(
        self,
        distinct_id: str,
        override_id: str,
        action: str,
        version: Optional[int] = None,
    ):

        self._track(
            distinct_id,
            f"override_{action}",
            {"override_id": override_id, "version": version},
        )


    # ==========================================================
    # UNDERWRITER HINTS
    # ==========================================================

    def track_hint_created(
        self,
        distinct_id: str,
        hint_id: str,
        category: str,
        is_global: bool,
    ):

        self._track(
            distinct_id,
            "hint_created",
            {"hint_id": hint_id, "category": category, "is_global": is_global},
        )


    # ==========================================================
    # DOCUMENTS
    # ==========================================================

    def track_document_ingested(
        self,
        distinct_id: str,
        document_id: str,
        file_name: str,
        chunks: int,
        latency: float,
    ):

        self._track(
            distinct_id,
            "document_ingested",
            {
                "document_id": document_id,
                "file_name": file_name,
                "chunks": chunks,
                "latency_seconds": latency,
            },
        )


    # ==========================================================
    # ERRORS
    # ==========================================================

    def track_error(
        self,
        distinct_id: str,
        error_type: str,
        error_message: str,
        endpoint: str,
    ):

        self._track(
            distinct_id,
            "system_error",
            {
                "error_type": error_type,
                "error_message": error_message,
                "endpoint": endpoint,
            },
        )


posthog_client = PostHogClient()
