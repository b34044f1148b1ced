import logging
import uuid
from typing import Iterator, List, Optional, Sequence, Tuple

import numpy as np
from qdrant_client.http.models import (
    FieldCondition,
    Filter,
    FilterSelector,
    MatchValue,
    PointStruct,
    Record,
)

from policy_qa.errors import IndexUnavailable
from policy_qa.memory.qdrant_client import QdrantVectorDB
from policy_qa.models import RankedChunk


logger = logging.getLogger(__name__)

_SCROLL_PAGE_SIZE = 100


def _document_filter(document_id: Optional[str]) -> Optional[Filter]:

    if document_id is None:
        return None

    return Filter(
        must=[
            FieldCondition(key="document_id", match=MatchValue(value=document_id))
        ]
    )


class ChunkStore:
    """
    Document-chunk index.

    Each point carries ``document_id``, ``chunk_index`` and ``content`` in its
    payload. Any failure talking to Qdrant surfaces as IndexUnavailable so the
    caller can tell "search broke" apart from "nothing relevant".
    """

    def __init__(self, db: QdrantVectorDB):

        self._db = db
        self._client = db.client
        self._collection = db.chunk_collection

    # ============================================================
    # WRITE
    # ============================================================

    def add(self, document_id: str, chunks: Sequence[str], embeddings) -> List[str]:

        embeddings = np.asarray(embeddings, dtype="float32")

        if len(chunks) != len(embeddings):
            raise ValueError(
                f"{len(chunks)} chunks but {len(embeddings)} embeddings"
            )

        points = [
            PointStruct(
                id=str(uuid.uuid4()),
                vector=vector.tolist(),
                payload={
                    "document_id": document_id,
                    "chunk_index": i,
                    "content": content,
                },
            )
            for i, (content, vector) in enumerate(zip(chunks, embeddings))
        ]

        if not points:
            return []

        try:
            self._client.upsert(collection_name=self._collection, points=points)

        except Exception as e:
            logger.error(
                "Chunk upsert failed",
                extra={"document_id": document_id, "error": str(e)},
            )
            raise IndexUnavailable(f"Chunk index unavailable: {e}") from e

        logger.info(
            "Chunks indexed",
            extra={"document_id": document_id, "chunks": len(points)},
        )

        return [str(p.id) for p in points]

    def replace_vectors(self, records: Sequence[Tuple[str, dict, List[float]]]):
        """Rewrite points in place: (chunk_id, payload, vector) triples."""

        points = [
            PointStruct(id=chunk_id, vector=list(vector), payload=payload)
            for chunk_id, payload, vector in records
        ]

        if not points:
            return

        try:
            self._client.upsert(collection_name=self._collection, points=points)

        except Exception as e:
            raise IndexUnavailable(f"Chunk index unavailable: {e}") from e

    def delete_document(self, document_id: str) -> int:

        removed = self.count(document_id)

        try:

            self._client.delete(
                collection_name=self._collection,
                points_selector=FilterSelector(filter=_document_filter(document_id)),
            )

        except Exception as e:
            logger.error(
                "Chunk delete failed",
                extra={"document_id": document_id, "error": str(e)},
            )
            raise IndexUnavailable(f"Chunk index unavailable: {e}") from e

        logger.info(
            "Document chunks deleted",
            extra={"document_id": document_id, "chunks": removed},
        )

        return removed

    def reset(self):
        """Drop and recreate the collection (dimension change)."""

        self._db.recreate_collection(self._collection)

    # ============================================================
    # READ
    # ============================================================

    def search(
        self,
        vector: Sequence[float],
        limit: int,
        document_id: Optional[str] = None,
    ) -> List[RankedChunk]:

        try:

            response = self._client.query_points(
                collection_name=self._collection,
                query=list(vector),
                query_filter=_document_filter(document_id),
                limit=limit,
                with_payload=True,
            )

        except Exception as e:
            logger.error(
                "Chunk search failed",
                extra={"document_id": document_id, "error": str(e)},
            )
            raise IndexUnavailable(f"Chunk index unavailable: {e}") from e

        results = []

        for point in response.points:

            payload = point.payload or {}

            results.append(
                RankedChunk(
                    chunk_id=str(point.id),
                    document_id=payload.get("document_id", ""),
                    sequence_index=int(payload.get("chunk_index", 0)),
                    content=payload.get("content", ""),
                    similarity=float(point.score),
                )
            )

        # stable sort keeps the index's order among equal scores
        results.sort(key=lambda chunk: -chunk.similarity)

        return results

    def count(self, document_id: Optional[str] = None) -> int:

        try:

            return self._client.count(
                collection_name=self._collection,
                count_filter=_document_filter(document_id),
                exact=True,
            ).count

        except Exception as e:
            raise IndexUnavailable(f"Chunk index unavailable: {e}") from e

    def iter_chunks(
        self,
        document_id: Optional[str] = None,
        with_vectors: bool = False,
    ) -> Iterator[Record]:

        offset = None

        while True:

            try:

                points, offset = self._client.scroll(
                    collection_name=self._collection,
                    scroll_filter=_document_filter(document_id),
                    limit=_SCROLL_PAGE_SIZE,
                    offset=offset,
                    with_payload=True,
                    with_vectors=with_vectors,
                )

            except Exception as e:
                raise IndexUnavailable(f"Chunk index unavailable: {e}") from e

            yield from points

            if offset is None or not points:
                break

    def collection_dimension(self) -> int:

        try:
            return self._db.collection_dimension(self._collection)

        except Exception as e:
            raise IndexUnavailable(f"Chunk index unavailable: {e}") from e
