import logging
import threading
from typing import Dict, Iterable, List, Optional

from policy_qa.errors import NotFoundError
from policy_qa.models import DocumentRecord
from policy_qa.storage import read_json, storage_path, write_json


logger = logging.getLogger(__name__)

UNKNOWN_DOCUMENT_NAME = "Unknown Document"


class DocumentRegistry:
    """
    Uploaded documents, keyed by id, persisted as one JSON file.

    Chunks live in the vector index; this registry keeps the document
    identity and the extracted text that reprocessing regenerates chunks from.
    """

    FILENAME = "document_registry.json"

    def __init__(self, storage_dir: Optional[str] = None):

        self._path = storage_path(storage_dir, self.FILENAME)
        self._lock = threading.Lock()
        self._documents: Dict[str, DocumentRecord] = {}

        self._load()

    def _load(self):

        data = read_json(self._path, {})

        for doc_id, raw in data.items():
            self._documents[doc_id] = DocumentRecord.model_validate(raw)

        logger.info(
            "Document registry loaded",
            extra={"documents": len(self._documents)},
        )

    def _save(self):

        write_json(
            self._path,
            {
                doc_id: record.model_dump(mode="json")
                for doc_id, record in self._documents.items()
            },
        )

    def add(self, record: DocumentRecord):

        with self._lock:
            self._documents[record.id] = record
            self._save()

    def set_chunk_count(self, document_id: str, chunk_count: int) -> DocumentRecord:

        with self._lock:

            record = self._get_locked(document_id)
            updated = record.model_copy(update={"chunk_count": chunk_count})

            self._documents[document_id] = updated
            self._save()

        return updated

    def delete(self, document_id: str):

        with self._lock:
            self._get_locked(document_id)
            del self._documents[document_id]
            self._save()

    def get(self, document_id: str) -> DocumentRecord:

        with self._lock:
            return self._get_locked(document_id)

    def _get_locked(self, document_id: str) -> DocumentRecord:

        record = self._documents.get(document_id)

        if record is None:
            raise NotFoundError(f"Document not found: {document_id}")

        return record

    def exists(self, document_id: str) -> bool:
        return document_id in self._documents

    def list(self) -> List[DocumentRecord]:

        with self._lock:
            records = list(self._documents.values())

        return sorted(records, key=lambda r: r.created_at, reverse=True)

    def names(self, document_ids: Iterable[str]) -> Dict[str, str]:

        with self._lock:
            return {
                doc_id: self._documents[doc_id].file_name
                for doc_id in document_ids
                if doc_id in self._documents
            }

    def __len__(self) -> int:
        return len(self._documents)
