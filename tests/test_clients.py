# tests/test_clients.py
import time
from types import SimpleNamespace

import numpy as np
import pytest

from conftest import DIMENSION, connection_error, timeout_error, unit
from policy_qa.concurrency import call_with_timeout
from policy_qa.errors import DownstreamTimeout, EmbeddingError, GenerationError
from policy_qa.memory.embedder import Embedder
from policy_qa.prompts.system_prompts import UNDERWRITER_SYSTEM_PROMPT


class TestEmbedder:

    def test_rows_are_normalized(self, embedder, embedding_api):
        embedding_api.vectors["a"] = [3.0, 4.0] + [0.0] * (DIMENSION - 2)

        vectors = embedder.embed(["a", "b"])

        assert vectors.shape == (2, DIMENSION)
        assert vectors.dtype == np.float32
        assert np.allclose(np.linalg.norm(vectors, axis=1), 1.0)
        assert vectors[0][:2] == pytest.approx([0.6, 0.8])

    def test_batches_preserve_order(self, embedder, embedding_api):
        texts = [f"text {i}" for i in range(5)]
        for i, text in enumerate(texts):
            embedding_api.vectors[text] = unit(i % DIMENSION)

        vectors = embedder.embed(texts, batch_size=2)

        assert embedding_api.calls == 3
        assert [int(np.argmax(v)) for v in vectors] == [0, 1, 2, 3, 4]

    def test_empty_input(self, embedder, embedding_api):
        assert embedder.embed([]).shape == (0, DIMENSION)
        assert embedding_api.calls == 0

    def test_wrong_dimension_rejected(self, embedding_api):
        embedder = Embedder(client=SimpleNamespace(embeddings=embedding_api), dimension=DIMENSION + 1)

        with pytest.raises(EmbeddingError):
            embedder.embed(["a"])

    def test_provider_errors(self, embedder, embedding_api):
        embedding_api.error = connection_error()
        with pytest.raises(EmbeddingError):
            embedder.embed_one("a")

        embedding_api.error = timeout_error()
        with pytest.raises(DownstreamTimeout):
            embedder.embed_one("a")

    def test_embed_one_rejects_blank_text(self, embedder):
        with pytest.raises(EmbeddingError):
            embedder.embed_one("  ")


class TestLLMClient:

    def test_generate_sends_system_prompt_and_context(self, llm_client, chat_api):
        answer = llm_client.generate("Is flood covered?", "[Home Policy.pdf - Section 2]:\nFlood is excluded")

        assert answer == chat_api.answer
        system, user = chat_api.last_messages
        assert system["content"] == UNDERWRITER_SYSTEM_PROMPT.strip()
        assert "[Home Policy.pdf - Section 2]:\nFlood is excluded" in user["content"]
        assert "Is flood covered?" in user["content"]

    def test_provider_errors(self, llm_client, chat_api):
        chat_api.error = connection_error()
        with pytest.raises(GenerationError):
            llm_client.generate("q", "context")

        chat_api.error = timeout_error()
        with pytest.raises(DownstreamTimeout):
            llm_client.generate("q", "context")

    def test_empty_answer_rejected(self, llm_client, chat_api):
        chat_api.answer = ""

        with pytest.raises(GenerationError):
            llm_client.generate("q", "context")


class TestCallWithTimeout:

    def test_returns_result(self):
        assert call_with_timeout("op", 1.0, lambda x: x * 2, 21) == 42

    def test_slow_call_times_out(self):
        with pytest.raises(DownstreamTimeout) as exc_info:
            call_with_timeout("generation", 0.05, time.sleep, 0.5)

        assert exc_info.value.operation == "generation"
        assert exc_info.value.timeout_seconds == 0.05

    def test_errors_propagate(self):
        def fail():
            raise ValueError("boom")

        with pytest.raises(ValueError):
            call_with_timeout("op", 1.0, fail)
