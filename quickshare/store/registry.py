# In-memory metadata registry
# Shared by every request handler and the lifecycle manager.
# Every method takes the lock for a short, I/O-free critical section.

import threading

from store.errors import Conflict
from store.models import ObjectRecord


class MetadataRegistry:
    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._records: dict[str, ObjectRecord] = {}
        # Ids whose blob exists (or is being written) but which are not
        # publicly visible: uploads in flight, single-use downloads draining
        self._reserved: set[str] = set()
        # id -> expires_at for objects that were removed because they expired
        self._tombstones: dict[str, float] = {}

    def reserve(self, object_id: str) -> None:
        with self._lock:
            if object_id in self._records or object_id in self._reserved:
                raise Conflict(f"Object id already in use: {object_id}")
            self._reserved.add(object_id)

    def release(self, object_id: str) -> None:
        with self._lock:
            self._reserved.discard(object_id)

    def insert(self, record: ObjectRecord) -> None:
        with self._lock:
            if record.id in self._records:
                raise Conflict(f"Object id already registered: {record.id}")
            self._records[record.id] = record
            self._reserved.discard(record.id)
            self._tombstones.pop(record.id, None)

    def get(self, object_id: str) -> ObjectRecord | None:
        with self._lock:
            return self._records.get(object_id)

    def remove(
        self, object_id: str, *, hold: bool = False, expired: bool = False
    ) -> ObjectRecord | None:
        """Remove and return the record. Only one caller ever gets it back.

        Args:
            hold: keep the id reserved until release() is called
            expired: remember the id so later lookups can report expiry
        """
        with self._lock:
            record = self._records.pop(object_id, None)
            if record is None:
                return None
            if hold:
                self._reserved.add(object_id)
            if expired:
                self._tombstones[object_id] = record.expires_at
            return record

    def snapshot(self) -> list[tuple[str, ObjectRecord]]:
        with self._lock:
            return list(self._records.items())

    def is_known(self, object_id: str) -> bool:
        """True for live and reserved ids: their blobs must not be reclaimed."""
        with self._lock:
            return object_id in self._records or object_id in self._reserved

    def was_expired(self, object_id: str) -> bool:
        with self._lock:
            return object_id in self._tombstones

    def prune_tombstones(self, before: float) -> int:
        """Forget expiries that happened before the given time."""
        with self._lock:
            stale = [k for k, v in self._tombstones.items() if v < before]
            for k in stale:
                del self._tombstones[k]
            return len(stale)

    def __len__(self) -> int:
        with self._lock:
            return len(self._records)

    def __contains__(self, object_id: object) -> bool:
        with self._lock:
            return object_id in self._records
