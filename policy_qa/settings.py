# policy_qa/settings.py
"""
Search settings store.

One shared SearchSettings snapshot. Readers get the frozen snapshot as it was
at read time; writers validate every supplied field first and then swap the
whole snapshot under a lock, so a reader never sees half an update.
"""

import logging
import threading
from typing import Optional

from pydantic import ValidationError as PydanticValidationError

from policy_qa.config import (
    CONTEXT_CHUNKS_BOUNDS,
    DEFAULT_CONTEXT_CHUNKS,
    DEFAULT_MAX_RESULTS,
    DEFAULT_SIMILARITY_THRESHOLD,
    MAX_RESULTS_BOUNDS,
)
from policy_qa.errors import ValidationError
from policy_qa.models import SearchSettings
from policy_qa.storage import read_json, storage_path, write_json


logger = logging.getLogger(__name__)


DEFAULT_SETTINGS = SearchSettings(
    similarity_threshold=DEFAULT_SIMILARITY_THRESHOLD,
    max_results=DEFAULT_MAX_RESULTS,
    context_chunks=DEFAULT_CONTEXT_CHUNKS,
)


def _is_number(value) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool)


def _is_integer(value) -> bool:
    return _is_number(value) and float(value).is_integer()


def validate_settings(
    similarity_threshold=None,
    max_results=None,
    context_chunks=None,
):
    """Raise ValidationError for the first out-of-range field supplied."""

    if similarity_threshold is not None:
        if not _is_number(similarity_threshold) or not 0 <= similarity_threshold <= 1:
            raise ValidationError(
                "Similarity threshold must be between 0 and 1",
                field="similarity_threshold",
            )

    if max_results is not None:
        low, high = MAX_RESULTS_BOUNDS
        if not _is_integer(max_results) or not low <= max_results <= high:
            raise ValidationError(
                f"Max results must be between {low} and {high}",
                field="max_results",
            )

    if context_chunks is not None:
        low, high = CONTEXT_CHUNKS_BOUNDS
        if not _is_integer(context_chunks) or not low <= context_chunks <= high:
            raise ValidationError(
                f"Context chunks must be between {low} and {high}",
                field="context_chunks",
            )


class SearchSettingsStore:

    FILENAME = "search_settings.json"

    def __init__(self, storage_dir: Optional[str] = None):

        self._path = storage_path(storage_dir, self.FILENAME)
        self._lock = threading.Lock()
        self._settings = self._load()

    def _load(self) -> SearchSettings:

        data = read_json(self._path, None)

        if not data:
            return DEFAULT_SETTINGS

        try:
            validate_settings(**data)
            return SearchSettings(**data)

        except (ValidationError, PydanticValidationError, TypeError) as e:
            logger.warning(
                "Stored search settings invalid, using defaults",
                extra={"error": str(e)},
            )
            return DEFAULT_SETTINGS

    def get(self) -> SearchSettings:
        return self._settings

    def update(
        self,
        similarity_threshold: Optional[float] = None,
        max_results: Optional[int] = None,
        context_chunks: Optional[int] = None,
    ) -> SearchSettings:

        validate_settings(similarity_threshold, max_results, context_chunks)

        changes = {}

        if similarity_threshold is not None:
            changes["similarity_threshold"] = float(similarity_threshold)
        if max_results is not None:
            changes["max_results"] = int(max_results)
        if context_chunks is not None:
            changes["context_chunks"] = int(context_chunks)

        with self._lock:

            updated = self._settings.model_copy(update=changes)

            write_json(self._path, updated.model_dump())

            self._settings = updated

        logger.info("Search settings updated", extra=updated.model_dump())

        return updated
