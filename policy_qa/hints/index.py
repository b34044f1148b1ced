import logging
from typing import List, Optional, Sequence, Tuple

from qdrant_client.http.models import (
    FieldCondition,
    Filter,
    MatchValue,
    PointStruct,
)

from policy_qa.errors import IndexUnavailable
from policy_qa.memory.qdrant_client import QdrantVectorDB
from policy_qa.models import UnderwriterHint


logger = logging.getLogger(__name__)


def _scope_filter(document_id: Optional[str]) -> Optional[Filter]:
    """Hints for one document plus every global hint; None searches all."""

    if document_id is None:
        return None

    return Filter(
        should=[
            FieldCondition(key="document_id", match=MatchValue(value=document_id)),
            FieldCondition(key="is_global", match=MatchValue(value=True)),
        ]
    )


class HintIndex:
    """Content embeddings of underwriter hints, one point per hint."""

    def __init__(self, db: QdrantVectorDB):

        self._client = db.client
        self._collection = db.hint_collection

    def upsert(self, hint: UnderwriterHint, vector: Sequence[float]):

        try:

            self._client.upsert(
                collection_name=self._collection,
                points=[
                    PointStruct(
                        id=hint.id,
                        vector=list(vector),
                        payload={
                            "hint_id": hint.id,
                            "document_id": hint.document_id,
                            "is_global": hint.is_global,
                        },
                    )
                ],
            )

        except Exception as e:
            logger.error(
                "Hint upsert failed",
                extra={"hint_id": hint.id, "error": str(e)},
            )
            raise IndexUnavailable(f"Hint index unavailable: {e}") from e

    def query(
        self,
        vector: Sequence[float],
        similarity_floor: float,
        limit: int,
        document_id: Optional[str] = None,
    ) -> List[Tuple[str, float]]:
        """Hints at or above the floor, best first, as (id, similarity)."""

        try:

            response = self._client.query_points(
                collection_name=self._collection,
                query=list(vector),
                query_filter=_scope_filter(document_id),
                score_threshold=similarity_floor,
                limit=limit,
                with_payload=True,
            )

        except Exception as e:
            logger.error("Hint search failed", extra={"error": str(e)})
            raise IndexUnavailable(f"Hint index unavailable: {e}") from e

        return sorted(
            (
                (str((point.payload or {}).get("hint_id", point.id)), float(point.score))
                for point in response.points
            ),
            key=lambda hit: -hit[1],
        )
