import logging
import threading
import uuid
from typing import List, Optional

from policy_qa.config import MAX_CHUNKS_PER_DOCUMENT
from policy_qa.errors import (
    DownstreamTimeout,
    DownstreamUnavailable,
    ValidationError,
)
from policy_qa.memory.chunker import chunk_text
from policy_qa.memory.documents import DocumentRegistry
from policy_qa.memory.embedder import Embedder
from policy_qa.memory.store import ChunkStore
from policy_qa.models import (
    DocumentRecord,
    EmbeddingCheckResponse,
    RepairResponse,
    ReprocessResponse,
    UnsearchableChunk,
)


logger = logging.getLogger(__name__)

_REPAIR_BATCH_SIZE = 32


class DocumentIngestion:
    """
    Chunks, embeds and indexes extracted policy text, and keeps the chunk
    index repairable: chunks can be regenerated from the stored text, and
    vectors regenerated from the stored chunk content.
    """

    def __init__(
        self,
        embedder: Embedder,
        chunk_store: ChunkStore,
        documents: DocumentRegistry,
    ):

        self._embedder = embedder
        self._chunk_store = chunk_store
        self._documents = documents

        # one writer at a time against the chunk index
        self._lock = threading.Lock()

    # ============================================================
    # INGEST
    # ============================================================

    def ingest(
        self,
        file_name: str,
        text: str,
        file_type: str = "text/plain",
    ) -> DocumentRecord:

        if not file_name or not file_name.strip():
            raise ValidationError("File name is required", field="file_name")

        chunks = chunk_text(text or "")

        if not chunks:
            raise ValidationError("No text to index", field="text")

        if len(chunks) > MAX_CHUNKS_PER_DOCUMENT:
            raise ValidationError(
                f"Document splits into {len(chunks)} chunks, more than the "
                f"{MAX_CHUNKS_PER_DOCUMENT} allowed per document",
                field="text",
            )

        record = DocumentRecord(
            id=str(uuid.uuid4()),
            file_name=file_name.strip(),
            file_type=file_type,
            file_size=len(text.encode("utf-8")),
            text=text,
        )

        embeddings = self._embedder.embed(chunks)

        with self._lock:

            self._chunk_store.add(record.id, chunks, embeddings)

            record = record.model_copy(update={"chunk_count": len(chunks)})
            self._documents.add(record)

        logger.info(
            "Document ingestion complete",
            extra={"document_id": record.id, "chunks": len(chunks)},
        )

        return record

    def delete(self, document_id: str) -> int:

        self._documents.get(document_id)

        with self._lock:
            removed = self._chunk_store.delete_document(document_id)
            self._documents.delete(document_id)

        return removed

    # ============================================================
    # REPROCESS
    # ============================================================

    def _reprocess_one(self, record: DocumentRecord) -> int:

        chunks = chunk_text(record.text)
        embeddings = self._embedder.embed(chunks)

        with self._lock:
            self._chunk_store.delete_document(record.id)
            self._chunk_store.add(record.id, chunks, embeddings)
            self._documents.set_chunk_count(record.id, len(chunks))

        return len(chunks)

    def reprocess(self, document_id: Optional[str] = None) -> ReprocessResponse:
        """
        Replace a document's chunks wholesale (or every document's).

        Chunks are rebuilt from the stored extracted text. One failing
        document is counted and skipped; the rest are still processed.
        """

        if document_id is not None:
            records = [self._documents.get(document_id)]
        else:
            records = self._documents.list()

        processed = 0
        errors = 0

        for record in records:

            try:

                chunks = self._reprocess_one(record)
                processed += 1

                logger.info(
                    "Document reprocessed",
                    extra={"document_id": record.id, "chunks": chunks},
                )

            except (DownstreamUnavailable, DownstreamTimeout) as e:

                errors += 1

                logger.error(
                    "Document reprocessing failed",
                    extra={"document_id": record.id, "error": str(e)},
                )

        return ReprocessResponse(
            total_documents=len(records),
            processed_count=processed,
            error_count=errors,
            message=f"Successfully reprocessed {processed} out of {len(records)} documents",
        )

    # ============================================================
    # EMBEDDING VERIFICATION AND REPAIR
    # ============================================================

    def verify_embeddings(self) -> EmbeddingCheckResponse:
        """Report chunks whose vector is missing or has the wrong length."""

        expected = self._embedder.get_dimension()

        unsearchable: List[UnsearchableChunk] = []
        total = 0

        for point in self._chunk_store.iter_chunks(with_vectors=True):

            total += 1

            vector = point.vector if isinstance(point.vector, list) else None
            length = len(vector) if vector else 0

            if length != expected:

                payload = point.payload or {}

                unsearchable.append(
                    UnsearchableChunk(
                        chunk_id=str(point.id),
                        document_id=payload.get("document_id", ""),
                        sequence_index=int(payload.get("chunk_index", 0)),
                        embedding_length=length,
                    )
                )

        logger.info(
            "Embedding verification completed",
            extra={"total_chunks": total, "unsearchable": len(unsearchable)},
        )

        return EmbeddingCheckResponse(
            total_chunks=total,
            expected_dimension=expected,
            unsearchable=unsearchable,
            all_embeddings_correct=not unsearchable,
        )

    def repair_embeddings(self) -> RepairResponse:
        """
        Regenerate vectors from existing chunk content.

        When the collection itself was built for another dimension every
        chunk is re-embedded into a recreated collection; otherwise only the
        flagged chunks are rewritten. Chunk ids and payloads are kept.
        """

        expected = self._embedder.get_dimension()

        with self._lock:

            rebuild = self._chunk_store.collection_dimension() != expected

            if rebuild:
                targets = list(self._chunk_store.iter_chunks(with_vectors=False))
                self._chunk_store.reset()
            else:
                flagged = {c.chunk_id for c in self.verify_embeddings().unsearchable}
                targets = [
                    point for point in self._chunk_store.iter_chunks(with_vectors=False)
                    if str(point.id) in flagged
                ]

            fixed = 0
            errors = 0

            for start in range(0, len(targets), _REPAIR_BATCH_SIZE):

                batch = targets[start:start + _REPAIR_BATCH_SIZE]
                contents = [(p.payload or {}).get("content", "") for p in batch]

                try:

                    vectors = self._embedder.embed(contents)

                    self._chunk_store.replace_vectors(
                        [
                            (str(p.id), p.payload or {}, vector.tolist())
                            for p, vector in zip(batch, vectors)
                        ]
                    )

                    fixed += len(batch)

                except (DownstreamUnavailable, DownstreamTimeout) as e:

                    errors += len(batch)

                    logger.error(
                        "Embedding repair batch failed",
                        extra={"batch_start": start, "error": str(e)},
                    )

        logger.info(
            "Embedding repair completed",
            extra={"rebuilt_collection": rebuild, "fixed": fixed, "errors": errors},
        )

        return RepairResponse(
            total_chunks=len(targets),
            fixed_count=fixed,
            error_count=errors,
            message=f"Successfully fixed {fixed} out of {len(targets)} chunks",
        )
