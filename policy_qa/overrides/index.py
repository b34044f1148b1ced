import logging
from typing import List, Optional, Sequence, Tuple

from qdrant_client.http.models import (
    FieldCondition,
    Filter,
    IsEmptyCondition,
    MatchAny,
    MatchValue,
    PayloadField,
    PointStruct,
)

from policy_qa.errors import IndexUnavailable
from policy_qa.memory.qdrant_client import QdrantVectorDB
from policy_qa.models import OverrideRecord


logger = logging.getLogger(__name__)

_ACTIVE = FieldCondition(key="is_active", match=MatchValue(value=True))
_GLOBAL = FieldCondition(key="applies_to_all_documents", match=MatchValue(value=True))


def candidate_filter(applicable_document_ids: Optional[Sequence[str]]) -> Filter:
    """
    Active overrides that may answer a question scoped to these documents.

    Same rule as ``override_applies``: global overrides always qualify, an
    unscoped question also takes overrides bound to no document, and a scoped
    question takes overrides bound to any of its documents.
    """

    scope = [_GLOBAL]

    if applicable_document_ids is None:
        scope.append(IsEmptyCondition(is_empty=PayloadField(key="document_ids")))

    elif applicable_document_ids:
        scope.append(
            FieldCondition(
                key="document_ids",
                match=MatchAny(any=list(applicable_document_ids)),
            )
        )

    return Filter(must=[_ACTIVE], should=scope)


def _payload(record: OverrideRecord) -> dict:

    return {
        "override_id": record.id,
        "is_active": record.is_active,
        "applies_to_all_documents": record.applies_to_all_documents,
        "document_ids": list(record.document_ids),
        "confidence_threshold": record.confidence_threshold,
    }


class OverrideIndex:
    """
    Question embeddings of expert overrides, one point per override.

    The payload carries the active flag and applicability so candidates are
    filtered inside the index; the repository record stays the source of
    truth for qualification.
    """

    def __init__(self, db: QdrantVectorDB):

        self._client = db.client
        self._collection = db.override_collection

    def upsert(self, record: OverrideRecord, vector: Sequence[float]):

        try:

            self._client.upsert(
                collection_name=self._collection,
                points=[
                    PointStruct(id=record.id, vector=list(vector), payload=_payload(record))
                ],
            )

        except Exception as e:
            logger.error(
                "Override upsert failed",
                extra={"override_id": record.id, "error": str(e)},
            )
            raise IndexUnavailable(f"Override index unavailable: {e}") from e

    def sync_payload(self, record: OverrideRecord):

        try:

            self._client.set_payload(
                collection_name=self._collection,
                payload=_payload(record),
                points=[record.id],
            )

        except Exception as e:
            logger.error(
                "Override payload sync failed",
                extra={"override_id": record.id, "error": str(e)},
            )
            raise IndexUnavailable(f"Override index unavailable: {e}") from e

    def query(
        self,
        vector: Sequence[float],
        similarity_floor: float,
        applicable_document_ids: Optional[Sequence[str]] = None,
        limit: int = 10,
        offset: int = 0,
    ) -> List[Tuple[str, float]]:
        """
        Active, applicable overrides at or above the floor, best first, as
        (id, similarity). ``offset`` pages further down the same ranking.
        """

        try:

            response = self._client.query_points(
                collection_name=self._collection,
                query=list(vector),
                query_filter=candidate_filter(applicable_document_ids),
                score_threshold=similarity_floor,
                limit=limit,
                offset=offset,
                with_payload=True,
            )

        except Exception as e:
            logger.error("Override search failed", extra={"error": str(e)})
            raise IndexUnavailable(f"Override index unavailable: {e}") from e

        hits = [
            (str((point.payload or {}).get("override_id", point.id)), float(point.score))
            for point in response.points
        ]

        hits.sort(key=lambda hit: -hit[1])

        return hits
