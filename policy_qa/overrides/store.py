import logging
import threading
import uuid
from typing import Callable, Dict, List, Optional

from policy_qa.errors import NotFoundError
from policy_qa.models import (
    OverrideRecord,
    OverrideUsage,
    OverrideVersion,
    utcnow,
)
from policy_qa.storage import read_json, storage_path, write_json


logger = logging.getLogger(__name__)


# (previous record, updated record, next version number) -> version to append
VersionBuilder = Callable[[OverrideRecord, OverrideRecord, int], Optional[OverrideVersion]]


class OverrideRepository:
    """
    Expert overrides with their version history and usage log.

    Every mutation runs under a single lock and is persisted as one JSON
    write, so a record and the version written alongside it land together
    or not at all. Versions and usage entries are append-only.
    """

    FILENAME = "expert_overrides.json"

    def __init__(self, storage_dir: Optional[str] = None):

        self._path = storage_path(storage_dir, self.FILENAME)
        self._lock = threading.RLock()

        self._overrides: Dict[str, OverrideRecord] = {}
        self._versions: List[OverrideVersion] = []
        self._usage: List[OverrideUsage] = []
        self._embeddings: Dict[str, List[float]] = {}

        self._load()

    # ============================================================
    # PERSISTENCE
    # ============================================================

    def _load(self):

        data = read_json(self._path, {})

        for raw in data.get("overrides", []):
            record = OverrideRecord.model_validate(raw)
            self._overrides[record.id] = record

        self._versions = [
            OverrideVersion.model_validate(raw) for raw in data.get("versions", [])
        ]
        self._usage = [
            OverrideUsage.model_validate(raw) for raw in data.get("usage", [])
        ]
        self._embeddings = dict(data.get("embeddings", {}))

        logger.info(
            "Override repository loaded",
            extra={
                "overrides": len(self._overrides),
                "versions": len(self._versions),
                "usage_records": len(self._usage),
            },
        )

    def _save(self):

        write_json(
            self._path,
            {
                "overrides": [r.model_dump(mode="json") for r in self._overrides.values()],
                "versions": [v.model_dump(mode="json") for v in self._versions],
                "usage": [u.model_dump(mode="json") for u in self._usage],
                "embeddings": self._embeddings,
            },
        )

    def _commit(self, rollback: Callable[[], None]):
        """Persist, undoing the in-memory change if the write fails."""

        try:
            self._save()

        except OSError:
            rollback()
            raise

    # ============================================================
    # OVERRIDES
    # ============================================================

    def insert(
        self,
        record: OverrideRecord,
        initial_version: OverrideVersion,
        question_embedding: Optional[List[float]] = None,
    ):

        with self._lock:

            if record.id in self._overrides:
                raise ValueError(f"Override already exists: {record.id}")

            self._overrides[record.id] = record
            self._versions.append(initial_version)
            if question_embedding is not None:
                self._embeddings[record.id] = list(question_embedding)

            def rollback():
                self._overrides.pop(record.id, None)
                self._versions.remove(initial_version)
                self._embeddings.pop(record.id, None)

            self._commit(rollback)

    def update(
        self,
        override_id: str,
        changes: dict,
        build_version: Optional[VersionBuilder] = None,
        publish: Optional[Callable[[OverrideRecord], None]] = None,
    ) -> OverrideRecord:
        """
        Apply ``changes`` and append the version ``build_version`` returns.

        ``publish`` runs after the write, still under the lock; if it raises,
        the record and version are rolled back and the error propagates.
        """

        with self._lock:

            previous = self._get_locked(override_id)

            updated = previous.model_copy(update={**changes, "updated_at": utcnow()})
            # re-validate so bad thresholds never reach storage
            updated = OverrideRecord.model_validate(updated.model_dump())

            version = None
            if build_version is not None:
                version = build_version(
                    previous, updated, self._next_version_locked(override_id)
                )

            self._overrides[override_id] = updated
            if version is not None:
                self._versions.append(version)

            def rollback():
                self._overrides[override_id] = previous
                if version is not None:
                    self._versions.remove(version)

            self._commit(rollback)

            if publish is not None:

                try:
                    publish(updated)

                except Exception:
                    rollback()
                    self._save()
                    logger.warning(
                        "Override update rolled back",
                        extra={"override_id": override_id},
                    )
                    raise

        return updated

    def remove(self, override_id: str):
        """Drop a record and its history; used to undo a failed creation."""

        with self._lock:

            record = self._overrides.pop(override_id, None)
            embedding = self._embeddings.pop(override_id, None)
            versions = [v for v in self._versions if v.override_id == override_id]
            self._versions = [v for v in self._versions if v.override_id != override_id]

            def rollback():
                if record is not None:
                    self._overrides[override_id] = record
                if embedding is not None:
                    self._embeddings[override_id] = embedding
                self._versions.extend(versions)

            self._commit(rollback)

    def get(self, override_id: str) -> OverrideRecord:

        with self._lock:
            return self._get_locked(override_id)

    def find(self, override_id: str) -> Optional[OverrideRecord]:

        with self._lock:
            return self._overrides.get(override_id)

    def _get_locked(self, override_id: str) -> OverrideRecord:

        record = self._overrides.get(override_id)

        if record is None:
            raise NotFoundError(f"Override not found: {override_id}")

        return record

    def list(self, active: Optional[bool] = True) -> List[OverrideRecord]:

        with self._lock:
            records = [
                r for r in self._overrides.values()
                if active is None or r.is_active == active
            ]

        return sorted(records, key=lambda r: r.created_at, reverse=True)

    def embeddings(self) -> Dict[str, List[float]]:
        """Stored question embeddings by override id."""

        with self._lock:
            return dict(self._embeddings)

    def count_active(self) -> int:

        with self._lock:
            return sum(1 for r in self._overrides.values() if r.is_active)

    # ============================================================
    # VERSIONS
    # ============================================================

    def versions(self, override_id: str) -> List[OverrideVersion]:

        with self._lock:

            self._get_locked(override_id)

            return sorted(
                (v for v in self._versions if v.override_id == override_id),
                key=lambda v: v.version_number,
            )

    def _next_version_locked(self, override_id: str) -> int:

        numbers = [v.version_number for v in self._versions if v.override_id == override_id]

        return max(numbers) + 1 if numbers else 1

    # ============================================================
    # USAGE
    # ============================================================

    def record_usage(
        self,
        override_id: str,
        question: str,
        similarity: float,
        user_id: Optional[str] = None,
    ) -> OverrideRecord:
        """
        Append a usage record and bump the counter in one locked step.

        The increment happens here, against the stored record, never as a
        read in the caller followed by a write.
        """

        with self._lock:

            previous = self._get_locked(override_id)
            now = utcnow()

            updated = previous.model_copy(
                update={
                    "usage_count": previous.usage_count + 1,
                    "last_used_at": now,
                }
            )

            usage = OverrideUsage(
                id=str(uuid.uuid4()),
                override_id=override_id,
                question_asked=question,
                similarity_score=similarity,
                user_id=user_id,
                created_at=now,
            )

            self._overrides[override_id] = updated
            self._usage.append(usage)

            def rollback():
                self._overrides[override_id] = previous
                self._usage.remove(usage)

            self._commit(rollback)

        return updated

    def usage(self, override_id: str) -> List[OverrideUsage]:

        with self._lock:

            self._get_locked(override_id)

            return sorted(
                (u for u in self._usage if u.override_id == override_id),
                key=lambda u: u.created_at,
                reverse=True,
            )
