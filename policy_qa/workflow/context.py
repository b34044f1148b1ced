from dataclasses import dataclass
from typing import Dict, List, Optional, Sequence, Union

from policy_qa.memory.documents import UNKNOWN_DOCUMENT_NAME
from policy_qa.models import RankedChunk


SECTION_SEPARATOR = "\n\n---\n\n"


def section_label(chunk: RankedChunk) -> str:
    return f"Section {chunk.sequence_index + 1}"


def render_chunk(chunk: RankedChunk, document_name: str) -> str:
    return f"[{document_name} - {section_label(chunk)}]:\n{chunk.content}"


@dataclass(frozen=True)
class AssembledContext:
    prompt_text: str
    used_chunks: List[RankedChunk]
    document_names: Dict[str, str]

    @property
    def top_similarity(self) -> float:
        return self.used_chunks[0].similarity

    def document_name(self, chunk: RankedChunk) -> str:
        return self.document_names.get(chunk.document_id, UNKNOWN_DOCUMENT_NAME)


@dataclass(frozen=True)
class NoRelevantContext:
    """No chunk cleared the threshold; not an error, and not an empty prompt."""
    chunks_considered: int
    best_similarity: Optional[float]


def assemble_context(
    ranked_chunks: Sequence[RankedChunk],
    similarity_threshold: float,
    max_context_chunks: int,
    document_names: Dict[str, str],
) -> Union[AssembledContext, NoRelevantContext]:
    """
    Turn ranked search hits into the prompt's context block.

    Keeps chunks strictly above the threshold (a chunk exactly at the
    threshold is dropped), then the first ``max_context_chunks`` of those in
    the order given. Each one is labelled with its document and section so
    answers can be traced back to the policy text.
    """

    relevant = [c for c in ranked_chunks if c.similarity > similarity_threshold]

    if not relevant:
        return NoRelevantContext(
            chunks_considered=len(ranked_chunks),
            best_similarity=max((c.similarity for c in ranked_chunks), default=None),
        )

    used = relevant[:max_context_chunks]

    names = {
        chunk.document_id: document_names.get(chunk.document_id, UNKNOWN_DOCUMENT_NAME)
        for chunk in used
    }

    prompt_text = SECTION_SEPARATOR.join(
        render_chunk(chunk, names[chunk.document_id]) for chunk in used
    )

    return AssembledContext(
        prompt_text=prompt_text,
        used_chunks=used,
        document_names=names,
    )
