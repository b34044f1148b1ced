# policy_qa/memory/chunker.py

import logging
import re
from typing import List

from policy_qa.config import (
    CHUNK_MAX_CHARACTERS,
    MAX_DOCUMENT_CHARACTERS,
)

logger = logging.getLogger(__name__)

# A sentence is a run of non-terminators followed by terminators, or the
# unterminated tail of the text
_SENTENCE_RE = re.compile(r"[^.!?]+(?:[.!?]+|$)")


def split_sentences(text: str) -> List[str]:

    return [s.strip() for s in _SENTENCE_RE.findall(text) if s.strip()]


def chunk_text(text: str, max_characters: int = CHUNK_MAX_CHARACTERS) -> List[str]:
    """
    Split extracted policy text into ordered chunks on sentence boundaries.

    The list position of a chunk is its sequence index, which later renders
    as "Section <index + 1>", so the output order must be stable.

    Guarantees:
    • deterministic chunk generation
    • no chunk longer than max_characters
    • no empty chunks
    """

    if max_characters <= 0:
        raise ValueError(f"Invalid chunk size: {max_characters}")

    if not text or not text.strip():
        logger.warning("Chunking skipped: empty text")
        return []

    text = text.strip()

    if len(text) > MAX_DOCUMENT_CHARACTERS:
        logger.warning(
            "Text exceeds max character limit, truncating",
            extra={
                "original_length": len(text),
                "max_allowed": MAX_DOCUMENT_CHARACTERS,
            },
        )
        text = text[:MAX_DOCUMENT_CHARACTERS]

    chunks: List[str] = []
    current = ""

    for sentence in split_sentences(text):

        # a single sentence longer than the bound is cut into hard slices
        while len(sentence) > max_characters:
            if current:
                chunks.append(current)
                current = ""
            chunks.append(sentence[:max_characters].strip())
            sentence = sentence[max_characters:].strip()

        if not sentence:
            continue

        candidate = f"{current} {sentence}" if current else sentence

        if len(candidate) > max_characters:
            chunks.append(current)
            current = sentence
        else:
            current = candidate

    if current:
        chunks.append(current)

    chunks = [c for c in chunks if c]

    logger.info(
        "Chunking completed",
        extra={
            "characters": len(text),
            "max_characters": max_characters,
            "chunks_created": len(chunks),
        },
    )

    return chunks
