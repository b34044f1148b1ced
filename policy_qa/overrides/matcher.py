import logging
from dataclasses import dataclass
from typing import Optional, Sequence

from policy_qa.config import OVERRIDE_CANDIDATE_LIMIT
from policy_qa.errors import DownstreamTimeout, DownstreamUnavailable
from policy_qa.models import OverrideMatch, OverrideRecord
from policy_qa.overrides.index import OverrideIndex
from policy_qa.overrides.store import OverrideRepository


logger = logging.getLogger(__name__)


def override_applies(
    record: OverrideRecord,
    applicable_document_ids: Optional[Sequence[str]],
) -> bool:
    """
    Whether an override may answer a question scoped to these documents.

    ``None`` means the caller did not scope the question. An empty list is a
    scope that matches nothing except global overrides.
    """

    if record.applies_to_all_documents:
        return True

    if applicable_document_ids is None:
        # unscoped question: only overrides not bound to any document
        return not record.document_ids

    return bool(set(record.document_ids) & set(applicable_document_ids))


class OverrideMatcher:
    """
    Finds the override that answers a question and records its use.

    ``find`` has no side effects; usage is recorded separately, once the
    caller has actually answered with the override.
    """

    def __init__(
        self,
        index: OverrideIndex,
        repository: OverrideRepository,
        candidate_limit: int = OVERRIDE_CANDIDATE_LIMIT,
    ):

        self._index = index
        self._repository = repository
        self._candidate_limit = candidate_limit

    def _qualifies(
        self,
        override_id: str,
        similarity: float,
        applicable_document_ids: Optional[Sequence[str]],
        caller_threshold: float,
    ) -> Optional[OverrideRecord]:

        record = self._repository.find(override_id)

        if record is None:
            logger.warning(
                "Override index entry without a record",
                extra={"override_id": override_id},
            )
            return None

        if not record.is_active:
            return None

        if not override_applies(record, applicable_document_ids):
            return None

        if similarity < max(caller_threshold, record.confidence_threshold):
            return None

        return record

    def find(
        self,
        question_vector: Sequence[float],
        applicable_document_ids: Optional[Sequence[str]] = None,
        caller_threshold: float = 0.0,
    ) -> Optional[OverrideMatch]:
        """
        Best active, applicable override for a question embedding, or None.

        A candidate qualifies only when its similarity reaches both the
        caller's threshold and the override's own confidence threshold.
        Candidates come from the index best first, page by page, so a
        qualifying override is found however many closer ones fail their
        own threshold.
        """

        offset = 0
        inspected = 0

        while True:

            hits = self._index.query(
                question_vector,
                similarity_floor=caller_threshold,
                applicable_document_ids=applicable_document_ids,
                limit=self._candidate_limit,
                offset=offset,
            )

            for override_id, similarity in hits:

                inspected += 1

                record = self._qualifies(
                    override_id, similarity, applicable_document_ids, caller_threshold
                )

                if record is not None:

                    logger.info(
                        "Expert override matched",
                        extra={
                            "override_id": override_id,
                            "similarity": round(similarity, 4),
                            "candidates": inspected,
                        },
                    )

                    return OverrideMatch(override=record, similarity=similarity)

            if len(hits) < self._candidate_limit:
                break

            offset += self._candidate_limit

        logger.info(
            "No expert override matched",
            extra={"candidates": inspected, "caller_threshold": caller_threshold},
        )

        return None

    def record_usage(
        self,
        match: OverrideMatch,
        question: str,
        user_id: Optional[str] = None,
    ) -> OverrideMatch:
        """Count one use of a matched override; returns the match with the updated record."""

        updated = self._repository.record_usage(
            match.override.id,
            question=question,
            similarity=match.similarity,
            user_id=user_id,
        )

        logger.info(
            "Expert override used",
            extra={"override_id": updated.id, "usage_count": updated.usage_count},
        )

        return OverrideMatch(override=updated, similarity=match.similarity)


@dataclass(frozen=True)
class OverrideLookup:
    """
    Outcome of an override lookup on the answer path.

    ``error`` is set when the lookup failed and the request carried on
    without an override.
    """

    match: Optional[OverrideMatch] = None
    error: Optional[Exception] = None

    @property
    def degraded(self) -> bool:
        return self.error is not None


def degrade_override_failure(error: Exception) -> OverrideLookup:
    """
    Overrides are an enhancement on top of the answer path: an unreachable or
    slow override index is reported and treated as "no override".
    """

    if not isinstance(error, (DownstreamUnavailable, DownstreamTimeout)):
        raise error

    logger.warning(
        "Override lookup failed, answering without overrides",
        extra={"error": str(error), "error_type": type(error).__name__},
    )

    return OverrideLookup(error=error)
