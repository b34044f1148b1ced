# tests/test_ingestion.py
import uuid

import pytest
from qdrant_client.http.models import Distance, PointStruct, VectorParams

import policy_qa.workflow.ingestion as ingestion
from conftest import similar_to, unit
from policy_qa.config import QDRANT_CHUNK_COLLECTION
from policy_qa.errors import EmbeddingError, NotFoundError, ValidationError
from policy_qa.services import build_services


POLICY_TEXT = (
    "Collision coverage carries a $500 deductible per accident. "
    "Glass damage is repaired without a deductible. "
    "Rental reimbursement is limited to 30 days."
)


class TestIngest:

    def test_ingest_registers_document_and_chunks(self, services):
        record = services.ingestion.ingest("Auto Policy.pdf", POLICY_TEXT)

        assert record.chunk_count == 1
        assert record.file_size == len(POLICY_TEXT.encode("utf-8"))
        assert services.documents.get(record.id).file_name == "Auto Policy.pdf"
        assert services.chunk_store.count(record.id) == 1

    def test_long_document_is_split_in_order(self, services):
        text = " ".join(f"Clause {i} limits liability for named perils." for i in range(100))

        record = services.ingestion.ingest("Umbrella.pdf", text)

        chunks = sorted(
            services.chunk_store.iter_chunks(record.id),
            key=lambda point: point.payload["chunk_index"],
        )
        assert record.chunk_count == len(chunks) > 1
        assert [p.payload["chunk_index"] for p in chunks] == list(range(len(chunks)))
        assert chunks[0].payload["content"].startswith("Clause 0 ")

    def test_blank_text_rejected(self, services):
        with pytest.raises(ValidationError):
            services.ingestion.ingest("Empty.pdf", "   ")

        assert len(services.documents) == 0

    def test_too_many_chunks_rejected_before_embedding(self, services, embedding_api, monkeypatch):
        monkeypatch.setattr(ingestion, "MAX_CHUNKS_PER_DOCUMENT", 2)

        with pytest.raises(ValidationError) as exc_info:
            services.ingestion.ingest("Master Policy.pdf", "x" * 2500)

        assert exc_info.value.field == "text"
        assert embedding_api.calls == 0
        assert len(services.documents) == 0

    def test_blank_name_rejected(self, services):
        with pytest.raises(ValidationError):
            services.ingestion.ingest("  ", POLICY_TEXT)

    def test_embedding_failure_stores_nothing(self, services, embedding_api):
        embedding_api.error = EmbeddingError("provider down")

        with pytest.raises(EmbeddingError):
            services.ingestion.ingest("Auto Policy.pdf", POLICY_TEXT)

        assert len(services.documents) == 0
        assert services.chunk_store.count() == 0

    def test_delete_removes_chunks(self, services):
        keep = services.ingestion.ingest("Home Policy.pdf", "Flood damage is excluded")
        record = services.ingestion.ingest("Auto Policy.pdf", POLICY_TEXT)

        removed = services.ingestion.delete(record.id)

        assert removed == 1
        assert not services.documents.exists(record.id)
        assert services.chunk_store.count() == 1
        assert services.chunk_store.count(keep.id) == 1

    def test_delete_unknown_document(self, services):
        with pytest.raises(NotFoundError):
            services.ingestion.delete("missing")

    def test_registry_survives_restart(self, tmp_path, services, embedder, llm_client, qdrant):
        record = services.ingestion.ingest("Auto Policy.pdf", POLICY_TEXT)

        reloaded = build_services(embedder, llm_client, qdrant=qdrant, storage_dir=str(tmp_path))

        assert reloaded.documents.get(record.id).text == POLICY_TEXT


class TestReprocess:

    def test_reprocess_replaces_chunks(self, services, embedding_api):
        record = services.ingestion.ingest("Auto Policy.pdf", POLICY_TEXT)
        old_ids = {str(p.id) for p in services.chunk_store.iter_chunks(record.id)}
        embedding_api.vectors[POLICY_TEXT] = unit(0)

        result = services.ingestion.reprocess(record.id)

        new_points = list(services.chunk_store.iter_chunks(record.id, with_vectors=True))
        assert result.processed_count == 1
        assert result.error_count == 0
        assert len(new_points) == 1
        assert not old_ids & {str(p.id) for p in new_points}
        assert new_points[0].vector == pytest.approx(unit(0))

    def test_reprocess_all_counts_failures(self, services, embedding_api):
        services.ingestion.ingest("Auto Policy.pdf", POLICY_TEXT)
        services.ingestion.ingest("Home Policy.pdf", "Flood damage is excluded")
        embedding_api.error = EmbeddingError("provider down")

        result = services.ingestion.reprocess()

        assert result.total_documents == 2
        assert result.processed_count == 0
        assert result.error_count == 2
        # failed documents keep their previous chunks
        assert services.chunk_store.count() == 2

    def test_reprocess_unknown_document(self, services):
        with pytest.raises(NotFoundError):
            services.ingestion.reprocess("missing")


class TestEmbeddingRepair:

    def test_verify_healthy_index(self, services):
        services.ingestion.ingest("Auto Policy.pdf", POLICY_TEXT)

        report = services.ingestion.verify_embeddings()

        assert report.total_chunks == 1
        assert report.expected_dimension == 8
        assert report.all_embeddings_correct
        assert report.unsearchable == []

    def test_repair_rebuilds_collection_with_wrong_dimension(self, tmp_path, qdrant, embedder, llm_client, embedding_api):
        # a collection left behind by an older, smaller embedding model
        qdrant.create_collection(
            collection_name=QDRANT_CHUNK_COLLECTION,
            vectors_config=VectorParams(size=4, distance=Distance.COSINE),
        )
        qdrant.upsert(
            collection_name=QDRANT_CHUNK_COLLECTION,
            points=[
                PointStruct(
                    id=str(uuid.uuid4()),
                    vector=[0.5, 0.5, 0.5, 0.5],
                    payload={"document_id": "doc-1", "chunk_index": 0, "content": "Old chunk"},
                )
            ],
        )
        services = build_services(embedder, llm_client, qdrant=qdrant, storage_dir=str(tmp_path))
        embedding_api.vectors["Old chunk"] = similar_to(0.9)

        report = services.ingestion.verify_embeddings()
        assert not report.all_embeddings_correct
        assert report.unsearchable[0].embedding_length == 4
        assert report.unsearchable[0].document_id == "doc-1"

        result = services.ingestion.repair_embeddings()

        assert result.fixed_count == 1
        assert result.error_count == 0
        assert services.chunk_store.collection_dimension() == 8
        assert services.ingestion.verify_embeddings().all_embeddings_correct

        hits = services.chunk_store.search(unit(0), limit=5)
        assert hits[0].content == "Old chunk"
        assert hits[0].similarity == pytest.approx(0.9, abs=1e-4)

    def test_repair_with_nothing_to_fix(self, services):
        services.ingestion.ingest("Auto Policy.pdf", POLICY_TEXT)

        result = services.ingestion.repair_embeddings()

        assert result.total_chunks == 0
        assert result.fixed_count == 0
