import logging
import uuid
from typing import List, Optional, Sequence

from policy_qa.concurrency import call_with_timeout
from policy_qa.config import (
    DEFAULT_OVERRIDE_THRESHOLD,
    EMBEDDING_TIMEOUT_SECONDS,
)
from policy_qa.errors import IndexUnavailable, ValidationError
from policy_qa.memory.embedder import Embedder
from policy_qa.models import (
    OverrideMatch,
    OverrideRecord,
    OverrideUsage,
    OverrideVersion,
)
from policy_qa.overrides.index import OverrideIndex
from policy_qa.overrides.matcher import OverrideMatcher
from policy_qa.overrides.store import OverrideRepository


logger = logging.getLogger(__name__)

_UPDATABLE_FIELDS = (
    "corrected_answer",
    "expert_explanation",
    "confidence_threshold",
    "is_active",
    "applies_to_all_documents",
    "document_ids",
)


def _require_text(value: Optional[str], field: str):

    if value is None or not str(value).strip():
        raise ValidationError(f"{field} is required", field=field)


def _check_threshold(value: float):

    if isinstance(value, bool) or not isinstance(value, (int, float)) or not 0 <= value <= 1:
        raise ValidationError(
            "Confidence threshold must be between 0 and 1",
            field="confidence_threshold",
        )


class OverrideManager:
    """Create, update and inspect expert overrides."""

    def __init__(
        self,
        repository: OverrideRepository,
        index: OverrideIndex,
        embedder: Embedder,
        matcher: OverrideMatcher,
    ):

        self._repository = repository
        self._index = index
        self._embedder = embedder
        self._matcher = matcher

    def _embed(self, text: str) -> List[float]:

        return call_with_timeout(
            "embedding",
            EMBEDDING_TIMEOUT_SECONDS,
            self._embedder.embed_one,
            text,
        )

    # ============================================================
    # CREATE
    # ============================================================

    def create(
        self,
        original_question: str,
        original_answer: str,
        corrected_answer: str,
        expert_id: str,
        expert_explanation: Optional[str] = None,
        confidence_threshold: float = DEFAULT_OVERRIDE_THRESHOLD,
        applies_to_all_documents: bool = False,
        document_ids: Sequence[str] = (),
    ) -> OverrideRecord:
        """
        Store a new correction together with version 1 of its history.

        The question is embedded now so the override is matchable as soon as
        this returns. The record and its first version are written in one
        repository step.
        """

        _require_text(original_question, "original_question")
        _require_text(original_answer, "original_answer")
        _require_text(corrected_answer, "corrected_answer")
        _require_text(expert_id, "expert_id")
        _check_threshold(confidence_threshold)

        question_vector = self._embed(original_question)

        record = OverrideRecord(
            id=str(uuid.uuid4()),
            original_question=original_question.strip(),
            original_answer=original_answer,
            corrected_answer=corrected_answer,
            expert_explanation=expert_explanation,
            expert_id=expert_id,
            confidence_threshold=confidence_threshold,
            applies_to_all_documents=applies_to_all_documents,
            document_ids=list(document_ids),
        )

        initial_version = OverrideVersion(
            override_id=record.id,
            version_number=1,
            corrected_answer=corrected_answer,
            expert_explanation=expert_explanation,
            changed_by=expert_id,
            change_reason="Initial creation",
        )

        self._repository.insert(record, initial_version, question_vector)

        try:
            self._index.upsert(record, question_vector)

        except IndexUnavailable:
            # an override that can never match must not be left behind
            self._repository.remove(record.id)
            raise

        logger.info(
            "Expert override created",
            extra={
                "override_id": record.id,
                "expert_id": expert_id,
                "confidence_threshold": confidence_threshold,
                "applies_to_all_documents": applies_to_all_documents,
                "document_ids": len(record.document_ids),
            },
        )

        return record

    # ============================================================
    # UPDATE
    # ============================================================

    def update(
        self,
        override_id: str,
        changed_by: Optional[str] = None,
        change_reason: Optional[str] = None,
        **fields,
    ) -> OverrideRecord:
        """
        Partial update. Only the supplied (non-None) fields change.

        A new version is appended only when the corrected answer actually
        changes; toggling ``is_active`` or editing other fields does not
        create one. If the index rejects the new payload the stored record
        is rolled back, so record and index never disagree.
        """

        unknown = set(fields) - set(_UPDATABLE_FIELDS)
        if unknown:
            raise ValidationError(
                f"Unknown override fields: {', '.join(sorted(unknown))}"
            )

        changes = {key: value for key, value in fields.items() if value is not None}

        if "corrected_answer" in changes:
            _require_text(changes["corrected_answer"], "corrected_answer")

        if "confidence_threshold" in changes:
            _check_threshold(changes["confidence_threshold"])

        if "document_ids" in changes:
            changes["document_ids"] = list(changes["document_ids"])

        def build_version(previous, updated, next_number):

            if updated.corrected_answer == previous.corrected_answer:
                return None

            return OverrideVersion(
                override_id=override_id,
                version_number=next_number,
                corrected_answer=updated.corrected_answer,
                expert_explanation=updated.expert_explanation,
                changed_by=changed_by or "Unknown",
                change_reason=change_reason or "Updated",
            )

        updated = self._repository.update(
            override_id,
            changes,
            build_version,
            publish=self._index.sync_payload,
        )

        logger.info(
            "Expert override updated",
            extra={"override_id": override_id, "fields": sorted(changes)},
        )

        return updated

    def sync_index(self) -> int:
        """
        Re-upsert every stored override into the vector index.

        The repository keeps each question embedding, so an index that lost
        its points (in-memory Qdrant after a restart) is rebuilt without
        calling the embedding provider.
        """

        embeddings = self._repository.embeddings()
        synced = 0

        for record in self._repository.list(active=None):

            vector = embeddings.get(record.id)

            if vector is None:
                logger.warning(
                    "Override has no stored embedding, not indexed",
                    extra={"override_id": record.id},
                )
                continue

            self._index.upsert(record, vector)
            synced += 1

        logger.info("Override index synced", extra={"overrides": synced})

        return synced

    # ============================================================
    # READ
    # ============================================================

    def list(self, active: Optional[bool] = True) -> List[OverrideRecord]:
        return self._repository.list(active=active)

    def get(self, override_id: str) -> OverrideRecord:
        return self._repository.get(override_id)

    def versions(self, override_id: str) -> List[OverrideVersion]:
        return self._repository.versions(override_id)

    def usage(self, override_id: str) -> List[OverrideUsage]:
        return self._repository.usage(override_id)

    def search(
        self,
        question: str,
        document_ids: Optional[Sequence[str]] = None,
        similarity_threshold: float = DEFAULT_OVERRIDE_THRESHOLD,
        user_id: Optional[str] = None,
    ) -> Optional[OverrideMatch]:
        """Standalone override lookup; a hit is recorded as usage."""

        _require_text(question, "question")
        _check_threshold(similarity_threshold)

        match = self._matcher.find(
            self._embed(question),
            applicable_document_ids=document_ids,
            caller_threshold=similarity_threshold,
        )

        if match is None:
            return None

        return self._matcher.record_usage(match, question=question, user_id=user_id)
