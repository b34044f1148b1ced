import logging
from typing import List, Optional, Sequence

from policy_qa.memory.store import ChunkStore
from policy_qa.models import RankedChunk

logger = logging.getLogger(__name__)


def search_chunks(
    store: ChunkStore,
    question_vector: Sequence[float],
    max_results: int,
    document_id: Optional[str] = None,
) -> List[RankedChunk]:
    """
    Rank document chunks against a question embedding.

    Args:
        store: Chunk index to query
        question_vector: Embedding of the question
        max_results: Neighbour count requested from the index (not a post-filter)
        document_id: Restrict candidates to one document; None searches all

    Returns:
        Chunks in non-increasing similarity order. An empty list means
        nothing was found; index failures raise IndexUnavailable instead.
    """

    if max_results < 1:
        raise ValueError(f"max_results must be positive, got {max_results}")

    results = store.search(question_vector, limit=max_results, document_id=document_id)

    logger.info(
        "Chunk search completed",
        extra={
            "document_id": document_id,
            "max_results": max_results,
            "chunks_found": len(results),
            "top_similarity": results[0].similarity if results else None,
        },
    )

    return results
