"""Object service: the create / fetch / status / delete operations.

Single-use objects follow strict single use: the registry entry is removed
the moment a download opens, so concurrent fetches see exactly one winner,
and the blob is unlinked when that download closes (completed or not).
"""

import logging
import threading
import time
from collections.abc import Callable, Iterable, Iterator
from typing import BinaryIO

from store.blobs import CHUNK_SIZE, BlobStore
from store.config import StoreSettings
from store.errors import Conflict, Expired, NotFound, StorageIO
from store.ids import generate_id
from store.lifecycle import LifecycleManager, create_scheduler
from store.models import ConsumptionPolicy, ObjectRecord, ObjectStatus, sanitize_filename
from store.registry import MetadataRegistry

logger = logging.getLogger(__name__)

DEFAULT_MIME_TYPE = "application/octet-stream"


class Download:
    """Chunked body of one fetch. Closing it releases the file handle and,
    for single-use objects, deletes the blob."""

    def __init__(
        self,
        record: ObjectRecord,
        fileobj: BinaryIO,
        on_close: Callable[[ObjectRecord], None] | None = None,
        chunk_size: int = CHUNK_SIZE,
    ) -> None:
        self.record = record
        self._file = fileobj
        self._on_close = on_close
        self._chunk_size = chunk_size
        self._lock = threading.Lock()
        self._closed = False
        self.bytes_sent = 0
        self.completed = False

    @property
    def original_name(self) -> str:
        return self.record.original_name

    @property
    def mime_type(self) -> str:
        return self.record.mime_type

    @property
    def size_bytes(self) -> int:
        return self.record.size_bytes

    @property
    def closed(self) -> bool:
        return self._closed

    def __iter__(self) -> Iterator[bytes]:
        try:
            while True:
                chunk = self._file.read(self._chunk_size)
                if not chunk:
                    break
                self.bytes_sent += len(chunk)
                yield chunk
            self.completed = True
        finally:
            self.close()

    def read_all(self) -> bytes:
        return b"".join(self)

    def close(self) -> None:
        with self._lock:
            if self._closed:
                return
            self._closed = True
        try:
            self._file.close()
        finally:
            if self._on_close is not None:
                if not self.completed:
                    logger.info(
                        "Single-use object %s closed after %d of %d bytes",
                        self.record.id,
                        self.bytes_sent,
                        self.record.size_bytes,
                    )
                self._on_close(self.record)

    def __enter__(self) -> "Download":
        return self

    def __exit__(self, *exc_info) -> None:
        self.close()


class ObjectService:
    def __init__(
        self,
        blobs: BlobStore,
        registry: MetadataRegistry | None = None,
        lifecycle: LifecycleManager | None = None,
        *,
        max_file_size: int = 50 * 1024 * 1024,
        ttl_seconds: float = 3600.0,
        policy: ConsumptionPolicy = ConsumptionPolicy.TTL_ONLY,
        clock: Callable[[], float] = time.time,
        id_generator: Callable[[], str] = generate_id,
    ) -> None:
        self.blobs = blobs
        self.registry = registry or MetadataRegistry()
        self.lifecycle = lifecycle or LifecycleManager(self.registry, blobs, clock=clock)
        self.max_file_size = max_file_size
        self.ttl_seconds = ttl_seconds
        self.policy = policy
        self._clock = clock
        self._generate = id_generator

    @classmethod
    def from_settings(cls, settings: StoreSettings) -> "ObjectService":
        blobs = BlobStore(settings.storage_root, settings.allowed_extensions)
        registry = MetadataRegistry()
        lifecycle = LifecycleManager(
            registry,
            blobs,
            create_scheduler(),
            sweep_interval=settings.sweep_interval_seconds,
            tombstone_seconds=settings.tombstone_seconds,
        )
        return cls(
            blobs,
            registry,
            lifecycle,
            max_file_size=settings.max_file_size,
            ttl_seconds=settings.ttl_seconds,
            policy=settings.consumption_policy,
        )

    def start(self) -> None:
        """Clear leftovers from a previous process, then start timers and sweeps."""
        self.lifecycle.reconcile_startup()
        self.lifecycle.start()

    def stop(self) -> None:
        self.lifecycle.stop()

    def create(
        self,
        stream: BinaryIO | Iterable[bytes],
        original_name: str | None,
        mime_type: str | None,
        *,
        size_limit: int | None = None,
        ttl: float | None = None,
        policy: ConsumptionPolicy | str | None = None,
    ) -> ObjectRecord:
        """Store an upload and register it. Nothing is registered on failure."""
        name = sanitize_filename(original_name)
        mime = (mime_type or "").strip() or DEFAULT_MIME_TYPE
        limit = self.max_file_size if size_limit is None else size_limit
        ttl = self.ttl_seconds if ttl is None else ttl
        policy = ConsumptionPolicy.parse(policy, default=self.policy)
        if ttl <= 0:
            raise ValueError("ttl must be positive")

        object_id = self._generate()
        try:
            self.registry.reserve(object_id)
        except Conflict:
            logger.error("Identifier collision on %s", object_id)
            raise

        try:
            stored = self.blobs.put(stream, limit, name=object_id, filename=name, mime_type=mime)
        except BaseException:
            self.registry.release(object_id)
            raise

        now = self._clock()
        record = ObjectRecord(
            id=object_id,
            storage_path=stored.path,
            original_name=name,
            mime_type=mime,
            size_bytes=stored.size_bytes,
            created_at=now,
            expires_at=now + ttl,
            policy=policy,
        )
        try:
            self.registry.insert(record)
        except Conflict:
            logger.error("Identifier collision on insert of %s", object_id)
            self.registry.release(object_id)
            self.blobs.delete(stored.path)
            raise
        self.lifecycle.track(record)

        logger.info(
            "Stored object %s (%d bytes, %s, ttl=%ss)",
            object_id,
            record.size_bytes,
            policy.value,
            ttl,
        )
        return record

    def fetch(self, object_id: str) -> Download:
        """Open an object for download.

        Raises:
            NotFound: unknown, consumed, or deleted
            Expired: past its deadline (the blob is removed as a side effect)
        """
        record = self.registry.get(object_id)
        if record is None:
            raise self._missing(object_id)

        if record.is_expired(self._clock()):
            self.lifecycle.discard(object_id, expired=True)
            raise Expired()

        if record.policy is ConsumptionPolicy.SINGLE_USE:
            claimed = self.lifecycle.consume(object_id)
            if claimed is None:
                raise self._missing(object_id)
            try:
                fileobj = self.blobs.open_for_read(claimed.storage_path)
            except (NotFound, StorageIO):
                self.lifecycle.finalize(claimed)
                raise
            logger.info("Single-use object %s claimed", object_id)
            return Download(claimed, fileobj, on_close=self.lifecycle.finalize)

        try:
            fileobj = self.blobs.open_for_read(record.storage_path)
        except NotFound:
            # Lost a race with a deletion path
            raise self._missing(object_id) from None
        return Download(record, fileobj)

    def status(self, object_id: str) -> ObjectStatus:
        """Read-only lookup; never changes the object's lifecycle."""
        record = self.registry.get(object_id)
        if record is None:
            raise self._missing(object_id)
        if record.is_expired(self._clock()):
            raise Expired()
        return ObjectStatus.from_record(record)

    def delete(self, object_id: str) -> None:
        if self.lifecycle.discard(object_id) is None:
            raise self._missing(object_id)
        logger.info("Object %s deleted on request", object_id)

    def _missing(self, object_id: str) -> NotFound:
        if self.registry.was_expired(object_id):
            return Expired()
        return NotFound()
