# policy_qa/memory/embedder.py

"""
OpenAI embedding wrapper.

Architecture contract:
chunker → embedder → chunk store
question → embedder → {override matcher, chunk search}

Guarantees:
• numpy float32 output, one row per input text
• rows normalized (cosine-ready)
• every row has EMBEDDING_DIMENSION values, otherwise EmbeddingError
• provider failures surface as EmbeddingError / DownstreamTimeout
"""

import logging
from typing import List, Optional

import numpy as np
import openai
from openai import OpenAI

from policy_qa.config import (
    EMBEDDING_DIMENSION,
    EMBEDDING_MODEL,
    EMBEDDING_TIMEOUT_SECONDS,
    MAX_CHUNKS_PER_DOCUMENT,
)
from policy_qa.errors import DownstreamTimeout, EmbeddingError

logger = logging.getLogger(__name__)

DEFAULT_EMBED_BATCH_SIZE = 32


class Embedder:

    def __init__(
        self,
        client: Optional[OpenAI] = None,
        model: str = EMBEDDING_MODEL,
        dimension: int = EMBEDDING_DIMENSION,
    ):

        self._model = model
        self._dimension = dimension

        try:

            self._client = client or OpenAI(
                timeout=EMBEDDING_TIMEOUT_SECONDS,
                max_retries=2,
            )

        except openai.OpenAIError as e:

            logger.critical(
                "Embedding client initialization failed",
                extra={"error": str(e)},
            )

            raise EmbeddingError(f"Failed to initialize embedding client: {e}")

        logger.info(
            "Embedding model initialized",
            extra={"model": self._model, "dimension": self._dimension},
        )

    # ============================================================
    # PUBLIC API
    # ============================================================

    def embed(
        self,
        texts: List[str],
        batch_size: int = DEFAULT_EMBED_BATCH_SIZE,
    ) -> np.ndarray:
        """
        Embed a batch of texts in order.

        Returns an array of shape (len(texts), dimension).
        """

        if not texts:
            return np.empty((0, self._dimension), dtype="float32")

        if len(texts) > MAX_CHUNKS_PER_DOCUMENT:
            raise EmbeddingError(
                f"Chunk count exceeds MAX_CHUNKS_PER_DOCUMENT "
                f"({MAX_CHUNKS_PER_DOCUMENT})"
            )

        all_embeddings = []

        for start in range(0, len(texts), batch_size):

            batch = texts[start:start + batch_size]

            try:

                response = self._client.embeddings.create(
                    model=self._model,
                    input=batch,
                )

            except openai.APITimeoutError:

                logger.error(
                    "Embedding request timed out",
                    extra={"batch_start": start, "batch_size": len(batch)},
                )

                raise DownstreamTimeout("embedding", EMBEDDING_TIMEOUT_SECONDS)

            except openai.OpenAIError as e:

                logger.error(
                    "Embedding generation failed",
                    extra={"batch_start": start, "error": str(e)},
                )

                raise EmbeddingError(f"Embedding generation failed: {e}")

            batch_embeddings = np.array(
                [item.embedding for item in response.data],
                dtype="float32",
            )

            if batch_embeddings.ndim != 2 or batch_embeddings.shape[1] != self._dimension:
                raise EmbeddingError(
                    f"Embedding provider returned shape {batch_embeddings.shape}, "
                    f"expected (*, {self._dimension})"
                )

            all_embeddings.append(normalize(batch_embeddings))

        embeddings = np.vstack(all_embeddings)

        logger.info(
            "Embedding completed",
            extra={"texts": len(texts), "dimension": self._dimension},
        )

        return embeddings

    def embed_one(self, text: str) -> List[float]:

        if not text or not text.strip():
            raise EmbeddingError("Cannot embed empty text")

        return self.embed([text])[0].tolist()

    # ============================================================
    # ACCESSORS
    # ============================================================

    def get_dimension(self) -> int:
        return self._dimension


def normalize(vectors: np.ndarray) -> np.ndarray:

    norms = np.linalg.norm(vectors, axis=1, keepdims=True)

    return vectors / np.clip(norms, 1e-10, None)
