# tests/conftest.py
import math
import os
import sys
import tempfile
import threading
from types import SimpleNamespace
from unittest.mock import Mock

import httpx
import openai
import pytest
from fastapi.testclient import TestClient
from qdrant_client import QdrantClient

# Add project root to Python path
sys.path.insert(0, os.path.abspath(os.path.join(os.path.dirname(__file__), '..')))

# Keep the module-level singletons (metrics file, log file, analytics) out of the repo
os.environ.setdefault("STORAGE_DIR", tempfile.mkdtemp(prefix="policy_qa_tests_"))
os.environ.setdefault("LOG_TO_FILE", "false")
os.environ.pop("POSTHOG_API_KEY", None)

from policy_qa.llm.client import LLMClient
from policy_qa.main import app
from policy_qa.memory.embedder import Embedder
from policy_qa.services import build_services, get_services


DIMENSION = 8

# texts nobody registered embed onto the last axis, orthogonal to every question
UNKNOWN_AXIS = DIMENSION - 1


def unit(axis: int):
    vector = [0.0] * DIMENSION
    vector[axis] = 1.0
    return vector


def similar_to(similarity: float, axis: int = 0, noise_axis: int = 1):
    """A unit vector whose cosine with ``unit(axis)`` is ``similarity``."""
    vector = [0.0] * DIMENSION
    vector[axis] = similarity
    vector[noise_axis] = math.sqrt(max(0.0, 1.0 - similarity ** 2))
    return vector


def fake_request():
    return httpx.Request("POST", "https://api.openai.com/v1/test")


class FakeEmbeddings:
    """
    Stand-in for ``OpenAI().embeddings``.

    Tests register the vector each text should embed to.
    """

    def __init__(self):
        self.vectors = {}
        self.error = None
        self.delay = 0.0
        self.calls = 0
        self._lock = threading.Lock()

    def create(self, model, input):
        with self._lock:
            self.calls += 1
        if self.delay:
            threading.Event().wait(self.delay)
        if self.error is not None:
            raise self.error
        return SimpleNamespace(
            data=[
                SimpleNamespace(embedding=self.vectors.get(text, unit(UNKNOWN_AXIS)))
                for text in input
            ]
        )


class FakeChatCompletions:
    """Stand-in for ``OpenAI().chat.completions``; counts calls."""

    def __init__(self):
        self.answer = "Per [Auto Policy.pdf - Section 1], the deductible is $500"
        self.error = None
        self.calls = 0
        self.last_messages = None

    def create(self, model, messages, temperature, max_tokens):
        self.calls += 1
        self.last_messages = messages
        if self.error is not None:
            raise self.error
        response = Mock()
        response.choices = [Mock()]
        response.choices[0].message.content = self.answer
        return response


@pytest.fixture
def embedding_api():
    return FakeEmbeddings()


@pytest.fixture
def chat_api():
    return FakeChatCompletions()


@pytest.fixture
def embedder(embedding_api):
    return Embedder(client=SimpleNamespace(embeddings=embedding_api), dimension=DIMENSION)


@pytest.fixture
def llm_client(chat_api):
    return LLMClient(client=SimpleNamespace(chat=SimpleNamespace(completions=chat_api)))


@pytest.fixture
def qdrant():
    return QdrantClient(location=":memory:")


@pytest.fixture
def services(tmp_path, qdrant, embedder, llm_client):
    """Fully wired services over in-memory Qdrant and tmp_path storage."""
    return build_services(embedder, llm_client, qdrant=qdrant, storage_dir=str(tmp_path))


@pytest.fixture
def client(services):
    """
    FastAPI test client.

    Routes resolve their services through the dependency override.
    """
    app.dependency_overrides[get_services] = lambda: services
    yield TestClient(app)
    app.dependency_overrides.clear()


@pytest.fixture
def add_document(services, embedding_api):
    """
    Ingest a one-sentence policy document whose single chunk embeds to
    ``vector``. Returns the stored DocumentRecord.
    """
    def _add(file_name, text, vector):
        embedding_api.vectors[text] = vector
        return services.ingestion.ingest(file_name=file_name, text=text)

    return _add


@pytest.fixture
def add_override(services, embedding_api):
    """Create an override whose original question embeds to ``vector``."""
    def _add(question, vector, **kwargs):
        embedding_api.vectors[question] = vector
        fields = {
            "original_answer": "Your deductible is $1000",
            "corrected_answer": "Your collision deductible is $500",
            "expert_id": "underwriter-7",
        }
        fields.update(kwargs)
        return services.overrides.create(original_question=question, **fields)

    return _add


@pytest.fixture
def ask(services, embedding_api):
    """Ask a question whose embedding is ``unit(0)`` by default."""
    def _ask(question, vector=None, document_id=None, settings=None, user_id=None):
        embedding_api.vectors[question] = vector or unit(0)
        return services.composer.answer(
            question,
            settings=settings or services.settings.get(),
            document_id=document_id,
            user_id=user_id,
        )

    return _ask


def timeout_error():
    return openai.APITimeoutError(request=fake_request())


def connection_error():
    return openai.APIConnectionError(request=fake_request())
