import logging
import threading
from typing import Dict, List, Optional

from policy_qa.errors import NotFoundError
from policy_qa.models import UnderwriterHint
from policy_qa.storage import read_json, storage_path, write_json


logger = logging.getLogger(__name__)


class HintRepository:
    """Underwriter hints and their content embeddings, persisted as one JSON file."""

    FILENAME = "underwriter_hints.json"

    def __init__(self, storage_dir: Optional[str] = None):

        self._path = storage_path(storage_dir, self.FILENAME)
        self._lock = threading.Lock()

        self._hints: Dict[str, UnderwriterHint] = {}
        self._embeddings: Dict[str, List[float]] = {}

        self._load()

    def _load(self):

        data = read_json(self._path, {})

        for raw in data.get("hints", []):
            hint = UnderwriterHint.model_validate(raw)
            self._hints[hint.id] = hint

        self._embeddings = dict(data.get("embeddings", {}))

        logger.info("Hint repository loaded", extra={"hints": len(self._hints)})

    def _save(self):

        write_json(
            self._path,
            {
                "hints": [h.model_dump(mode="json") for h in self._hints.values()],
                "embeddings": self._embeddings,
            },
        )

    def insert(self, hint: UnderwriterHint, embedding: List[float]):

        with self._lock:

            self._hints[hint.id] = hint
            self._embeddings[hint.id] = list(embedding)

            try:
                self._save()

            except OSError:
                self._hints.pop(hint.id, None)
                self._embeddings.pop(hint.id, None)
                raise

    def remove(self, hint_id: str):

        with self._lock:
            self._hints.pop(hint_id, None)
            self._embeddings.pop(hint_id, None)
            self._save()

    def get(self, hint_id: str) -> UnderwriterHint:

        with self._lock:

            hint = self._hints.get(hint_id)

            if hint is None:
                raise NotFoundError(f"Hint not found: {hint_id}")

            return hint

    def find(self, hint_id: str) -> Optional[UnderwriterHint]:

        with self._lock:
            return self._hints.get(hint_id)

    def list(self, document_id: Optional[str] = None) -> List[UnderwriterHint]:

        with self._lock:
            hints = [
                h for h in self._hints.values()
                if document_id is None or h.document_id == document_id
            ]

        # ties keep the later insert first
        return sorted(reversed(hints), key=lambda h: h.created_at, reverse=True)

    def embeddings(self) -> Dict[str, List[float]]:

        with self._lock:
            return dict(self._embeddings)

    def __len__(self) -> int:
        return len(self._hints)
