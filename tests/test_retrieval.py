# tests/test_retrieval.py
from unittest.mock import Mock

import pytest

from conftest import DIMENSION, similar_to, unit
from policy_qa.memory.qdrant_client import QdrantVectorDB
from policy_qa.memory.retriever import search_chunks
from policy_qa.memory.store import ChunkStore


AUTO_SIMILARITIES = [0.5, 0.9, 0.7, 0.3, 0.8, 0.6]
HOME_SIMILARITIES = [0.95, 0.4]


@pytest.fixture
def spy_client(qdrant):
    return Mock(wraps=qdrant)


@pytest.fixture
def chunk_store(spy_client):
    store = ChunkStore(QdrantVectorDB(client=spy_client, dim=DIMENSION))

    store.add(
        "auto",
        [f"auto clause {i}" for i in range(len(AUTO_SIMILARITIES))],
        [similar_to(s) for s in AUTO_SIMILARITIES],
    )
    store.add(
        "home",
        [f"home clause {i}" for i in range(len(HOME_SIMILARITIES))],
        [similar_to(s, noise_axis=2) for s in HOME_SIMILARITIES],
    )

    return store


class TestChunkSearch:

    def test_max_results_bounds_the_result_set(self, chunk_store, spy_client):
        results = search_chunks(chunk_store, unit(0), max_results=3)

        assert len(results) == 3
        assert spy_client.query_points.call_args.kwargs["limit"] == 3

    def test_results_in_non_increasing_similarity(self, chunk_store):
        results = search_chunks(chunk_store, unit(0), max_results=5)

        similarities = [chunk.similarity for chunk in results]
        assert similarities == sorted(similarities, reverse=True)
        assert similarities == pytest.approx([0.95, 0.9, 0.8, 0.7, 0.6], abs=1e-4)

    def test_document_filter_excludes_other_documents(self, chunk_store):
        results = search_chunks(chunk_store, unit(0), max_results=3, document_id="auto")

        assert {chunk.document_id for chunk in results} == {"auto"}
        assert [chunk.similarity for chunk in results] == pytest.approx([0.9, 0.8, 0.7], abs=1e-4)
        assert [chunk.sequence_index for chunk in results] == [1, 4, 2]

    def test_fewer_chunks_than_requested(self, chunk_store):
        results = search_chunks(chunk_store, unit(0), max_results=10, document_id="home")

        assert [chunk.content for chunk in results] == ["home clause 0", "home clause 1"]

    def test_empty_index(self, services):
        assert search_chunks(services.chunk_store, unit(0), max_results=5) == []

    def test_max_results_must_be_positive(self, chunk_store):
        with pytest.raises(ValueError):
            search_chunks(chunk_store, unit(0), max_results=0)
