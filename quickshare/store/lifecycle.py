# Lifecycle manager
# Every deletion path (timer, sweep, single-use download, fetch-detected
# expiry, explicit delete) goes through MetadataRegistry.remove(), so exactly
# one of them unlinks a given blob.

import logging
import time
from collections.abc import Callable
from dataclasses import dataclass
from datetime import datetime, timezone

from apscheduler.job import Job
from apscheduler.jobstores.base import JobLookupError
from apscheduler.schedulers.background import BackgroundScheduler
from apscheduler.schedulers.base import BaseScheduler

from store.blobs import BlobStore
from store.errors import StorageIO
from store.models import ObjectRecord
from store.registry import MetadataRegistry

logger = logging.getLogger(__name__)

SWEEP_JOB_ID = "quickshare-sweep"


def create_scheduler() -> BackgroundScheduler:
    """The one delayed-task queue shared by expiry timers and the sweep.

    Late jobs still run (a missed deadline must still delete) and a backlog
    of sweeps collapses into one run.
    """
    return BackgroundScheduler(
        timezone=timezone.utc,
        job_defaults={"misfire_grace_time": None, "coalesce": True},
    )


@dataclass
class SweepReport:
    expired: int = 0
    orphans: int = 0
    tombstones: int = 0
    failures: int = 0

    @property
    def changed(self) -> bool:
        return bool(self.expired or self.orphans or self.failures)


class LifecycleManager:
    def __init__(
        self,
        registry: MetadataRegistry,
        blobs: BlobStore,
        scheduler: BaseScheduler | None = None,
        sweep_interval: float = 600.0,
        tombstone_seconds: float = 3600.0,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.registry = registry
        self.blobs = blobs
        self.scheduler = scheduler or create_scheduler()
        self.sweep_interval = sweep_interval
        self.tombstone_seconds = tombstone_seconds
        self._clock = clock
        self._sweep_job: Job | None = None

    # --- scheduling ---

    def track(self, record: ObjectRecord) -> None:
        """Schedule the TTL deletion of a freshly registered object."""
        record.deletion_handle = self.scheduler.add_job(
            self.expire,
            "date",
            run_date=datetime.fromtimestamp(record.expires_at, tz=timezone.utc),
            args=[record.id],
        )

    def expire(self, object_id: str) -> bool:
        """Timer action. Silent if the object is already gone."""
        record = self.registry.remove(object_id, expired=True)
        if record is None:
            return False
        record.deletion_handle = None
        logger.info("Object %s expired", object_id)
        self._unlink_quietly(record)
        return True

    # --- deletion paths used by the service ---

    def consume(self, object_id: str) -> ObjectRecord | None:
        """Claim a single-use object. Returns None if another path won."""
        record = self.registry.remove(object_id, hold=True)
        if record is None:
            return None
        self._cancel(record)
        return record

    def finalize(self, record: ObjectRecord) -> None:
        """Unlink a consumed blob and drop its reservation."""
        try:
            self.blobs.delete(record.storage_path)
        except StorageIO:
            logger.warning("Could not delete consumed blob %s; sweep will retry", record.id, exc_info=True)
        finally:
            self.registry.release(record.id)

    def discard(self, object_id: str, *, expired: bool = False) -> ObjectRecord | None:
        record = self.registry.remove(object_id, expired=expired)
        if record is None:
            return None
        self._cancel(record)
        self._unlink_quietly(record)
        return record

    # --- reconciliation ---

    def sweep(self, now: float | None = None) -> SweepReport:
        """Reconcile the registry and the storage root.

        Removes overdue records the timers missed, unlinks files that no live
        or reserved id accounts for, and forgets old tombstones. A failure on
        one object never stops the pass.
        """
        now = self._clock() if now is None else now
        report = SweepReport()

        for object_id, record in self.registry.snapshot():
            if not record.is_expired(now):
                continue
            removed = self.registry.remove(object_id, expired=True)
            if removed is None:
                continue
            self._cancel(removed)
            report.expired += 1
            if not self._unlink_quietly(removed):
                report.failures += 1

        for path in self.blobs.list_all():
            if self.registry.is_known(path.name):
                continue
            try:
                if self.blobs.delete(path):
                    report.orphans += 1
            except StorageIO:
                logger.warning("Could not delete orphan %s", path.name, exc_info=True)
                report.failures += 1

        report.tombstones = self.registry.prune_tombstones(now - self.tombstone_seconds)

        if report.changed:
            logger.info(
                "Sweep removed %d expired objects and %d orphans (%d failures)",
                report.expired,
                report.orphans,
                report.failures,
            )
        return report

    def reconcile_startup(self) -> int:
        """Delete every blob left by a previous process. Returns the count."""
        self.blobs.ensure_root()
        removed = 0
        for path in self.blobs.list_all():
            try:
                if self.blobs.delete(path):
                    removed += 1
            except StorageIO:
                logger.warning("Could not delete leftover blob %s", path.name, exc_info=True)
        if removed:
            logger.info("Removed %d blobs left over from a previous run", removed)
        return removed

    # --- background ---

    def start(self) -> None:
        if self._sweep_job is None:
            self._sweep_job = self.scheduler.add_job(
                self._periodic_sweep,
                "interval",
                seconds=self.sweep_interval,
                id=SWEEP_JOB_ID,
                replace_existing=True,
                max_instances=1,
            )
        if not self.scheduler.running:
            self.scheduler.start()

    def stop(self) -> None:
        if self._sweep_job is not None:
            self._remove_job(self._sweep_job)
            self._sweep_job = None
        if self.scheduler.running:
            self.scheduler.shutdown(wait=False)

    def _periodic_sweep(self) -> None:
        try:
            self.sweep()
        except Exception:
            logger.exception("Sweep pass failed")

    def _cancel(self, record: ObjectRecord) -> None:
        job = record.deletion_handle
        record.deletion_handle = None
        if job is not None:
            self._remove_job(job)

    @staticmethod
    def _remove_job(job: Job) -> None:
        try:
            job.remove()
        except JobLookupError:
            # Already fired or removed
            pass

    def _unlink_quietly(self, record: ObjectRecord) -> bool:
        try:
            self.blobs.delete(record.storage_path)
        except StorageIO:
            logger.warning("Could not delete blob %s; sweep will retry", record.id, exc_info=True)
            return False
        return True
