import io
import sys
import tempfile
import threading
import time
import unittest
from pathlib import Path
from unittest.mock import patch

PLUGIN_ROOT = Path(__file__).resolve().parents[1]
if str(PLUGIN_ROOT) not in sys.path:
    sys.path.insert(0, str(PLUGIN_ROOT))

from _helpers import FakeClock, run_due_jobs, sequential_ids
from store.blobs import BlobStore
from store.config import StoreSettings
from store.errors import Conflict, Expired, InvalidType, NotFound, SizeExceeded, StorageIO
from store.models import ConsumptionPolicy
from store.service import Download, ObjectService

PNG = b"\x89PNG\r\n\x1a\n" + b"\x00" * 200


class ObjectServiceTestCase(unittest.TestCase):
    def setUp(self):
        self._tmp = tempfile.TemporaryDirectory()
        self.root = Path(self._tmp.name)
        self.clock = FakeClock()
        self.service = ObjectService(
            BlobStore(self.root),
            ttl_seconds=60,
            max_file_size=1024,
            clock=self.clock,
        )

    def tearDown(self):
        self.service.stop()
        self._tmp.cleanup()

    def _files(self) -> list[Path]:
        return list(self.root.iterdir())

    def _create(self, data: bytes = PNG, **kwargs):
        return self.service.create(io.BytesIO(data), "photo.png", "image/png", **kwargs)


class TestCreateAndFetch(ObjectServiceTestCase):
    def test_fetch_returns_original_bytes_and_metadata(self) -> None:
        record = self._create()

        with self.service.fetch(record.id) as download:
            self.assertEqual(download.read_all(), PNG)
            self.assertEqual(download.original_name, "photo.png")
            self.assertEqual(download.mime_type, "image/png")
            self.assertEqual(download.size_bytes, len(PNG))

    def test_create_sets_deadline_and_policy(self) -> None:
        record = self._create(ttl=30)

        self.assertEqual(record.expires_at, self.clock.now + 30)
        self.assertIs(record.policy, ConsumptionPolicy.TTL_ONLY)
        self.assertEqual(record.storage_path.name, record.id)
        self.assertIsNotNone(record.deletion_handle)

    def test_client_file_name_is_sanitized(self) -> None:
        record = self.service.create(io.BytesIO(PNG), "../../etc/\x00photo.png", "image/png")

        self.assertEqual(record.original_name, "photo.png")
        self.assertEqual(record.storage_path.parent, self.root)

    def test_ttl_only_object_can_be_fetched_repeatedly(self) -> None:
        record = self._create()

        for _ in range(3):
            self.assertEqual(self.service.fetch(record.id).read_all(), PNG)
        self.assertTrue(record.storage_path.exists())

    def test_unknown_id_is_not_found(self) -> None:
        with self.assertRaises(NotFound) as ctx:
            self.service.fetch("u" * 22)
        self.assertNotIsInstance(ctx.exception, Expired)


class TestUploadLimits(ObjectServiceTestCase):
    def test_upload_exactly_at_limit_succeeds(self) -> None:
        record = self._create(b"x" * 1024)
        self.assertEqual(record.size_bytes, 1024)

    def test_upload_one_byte_over_limit_fails_without_leftovers(self) -> None:
        with self.assertRaises(SizeExceeded):
            self._create(b"x" * 1025)

        self.assertEqual(self._files(), [])
        self.assertEqual(len(self.service.registry), 0)

    def test_per_call_size_limit_overrides_default(self) -> None:
        with self.assertRaises(SizeExceeded):
            self._create(b"x" * 11, size_limit=10)

    def test_disallowed_type_registers_nothing(self) -> None:
        service = ObjectService(BlobStore(self.root), id_generator=sequential_ids())
        with self.assertRaises(InvalidType):
            service.create(io.BytesIO(b"MZ"), "setup.exe", "application/octet-stream")

        self.assertEqual(self._files(), [])
        self.assertEqual(len(service.registry), 0)
        self.assertFalse(service.registry.is_known("obj0000000000000000001"))

    def test_type_is_checked_once_per_upload(self) -> None:
        with patch.object(
            self.service.blobs, "check_type", wraps=self.service.blobs.check_type
        ) as check_type:
            self._create()

        check_type.assert_called_once_with("photo.png", "image/png")

    def test_write_failure_releases_reservation(self) -> None:
        service = ObjectService(BlobStore(self.root), id_generator=sequential_ids())
        with patch.object(service.blobs, "put", side_effect=StorageIO("disk full")):
            with self.assertRaises(StorageIO):
                service.create(io.BytesIO(PNG), "photo.png", "image/png")

        self.assertFalse(service.registry.is_known("obj0000000000000000001"))
        self.assertEqual(len(service.registry), 0)

    def test_identifier_collision_is_reported(self) -> None:
        service = ObjectService(BlobStore(self.root), id_generator=lambda: "k" * 22)
        service.create(io.BytesIO(PNG), "a.png", "image/png")

        with self.assertLogs("store.service", level="ERROR"):
            with self.assertRaises(Conflict):
                service.create(io.BytesIO(PNG), "b.png", "image/png")
        self.assertEqual(len(self._files()), 1)
        service.stop()


class TestExpiry(ObjectServiceTestCase):
    def test_fetch_after_deadline_is_expired_and_deletes_blob(self) -> None:
        record = self._create()
        self.clock.advance(61)

        with self.assertRaises(Expired):
            self.service.fetch(record.id)
        self.assertFalse(record.storage_path.exists())
        self.assertNotIn(record.id, self.service.registry)

        # Still reported as expired, not as unknown
        with self.assertRaises(Expired):
            self.service.fetch(record.id)

    def test_timer_expiry_is_reported_as_expired(self) -> None:
        record = self._create()
        self.clock.advance(60)
        run_due_jobs(self.service.lifecycle.scheduler, self.clock())

        self.assertFalse(record.storage_path.exists())
        with self.assertRaises(Expired):
            self.service.fetch(record.id)

    def test_sweep_expiry_is_reported_as_expired(self) -> None:
        record = self._create()
        record.deletion_handle.remove()
        self.clock.advance(120)
        self.service.lifecycle.sweep()

        self.assertFalse(record.storage_path.exists())
        with self.assertRaises(Expired):
            self.service.status(record.id)

    def test_status_after_deadline_does_not_delete(self) -> None:
        record = self._create()
        self.clock.advance(61)

        with self.assertRaises(Expired):
            self.service.status(record.id)
        self.assertTrue(record.storage_path.exists())

    def test_fetch_detects_expiry_in_real_time(self) -> None:
        service = ObjectService(BlobStore(self.root))
        record = service.create(io.BytesIO(PNG), "photo.png", "image/png", ttl=0.1)

        time.sleep(0.15)

        with self.assertRaises(Expired):
            service.fetch(record.id)
        self.assertFalse(record.storage_path.exists())


class TestSingleUse(ObjectServiceTestCase):
    def test_second_fetch_is_not_found(self) -> None:
        record = self._create(policy="single-use")

        self.assertEqual(self.service.fetch(record.id).read_all(), PNG)

        with self.assertRaises(NotFound) as ctx:
            self.service.fetch(record.id)
        self.assertNotIsInstance(ctx.exception, Expired)
        self.assertFalse(record.storage_path.exists())

    def test_link_is_spent_when_download_opens(self) -> None:
        record = self._create(policy=ConsumptionPolicy.SINGLE_USE)

        download = self.service.fetch(record.id)
        with self.assertRaises(NotFound):
            self.service.fetch(record.id)

        # Blob stays readable for the winner until it closes
        self.assertTrue(record.storage_path.exists())
        self.assertEqual(download.read_all(), PNG)
        self.assertTrue(download.completed)
        self.assertTrue(download.closed)
        self.assertFalse(record.storage_path.exists())

    def test_abandoned_download_still_deletes_blob(self) -> None:
        record = self._create(policy=ConsumptionPolicy.SINGLE_USE)

        download = self.service.fetch(record.id)
        download.close()
        download.close()

        self.assertFalse(download.completed)
        self.assertFalse(record.storage_path.exists())
        self.assertFalse(self.service.registry.is_known(record.id))

    def test_status_does_not_consume(self) -> None:
        record = self._create(policy=ConsumptionPolicy.SINGLE_USE)

        status = self.service.status(record.id)
        self.assertEqual(status.to_dict()["policy"], "single-use")
        self.assertEqual(self.service.fetch(record.id).read_all(), PNG)

    def test_concurrent_fetches_have_exactly_one_winner(self) -> None:
        record = self._create(policy=ConsumptionPolicy.SINGLE_USE)
        workers = 12
        barrier = threading.Barrier(workers)
        results = []
        lock = threading.Lock()

        def worker():
            barrier.wait()
            try:
                body = self.service.fetch(record.id).read_all()
            except NotFound:
                body = None
            with lock:
                results.append(body)

        threads = [threading.Thread(target=worker) for _ in range(workers)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        self.assertEqual(len(results), workers)
        self.assertEqual(results.count(PNG), 1)
        self.assertEqual(results.count(None), workers - 1)
        self.assertFalse(record.storage_path.exists())

    def test_fetch_racing_expiry_timer_has_one_winner(self) -> None:
        for _ in range(50):
            record = self._create(policy=ConsumptionPolicy.SINGLE_USE)
            barrier = threading.Barrier(2)
            outcome = {}

            def timer():
                barrier.wait()
                try:
                    outcome["expired"] = self.service.lifecycle.expire(record.id)
                except Exception as e:
                    outcome["timer_error"] = e

            def downloader():
                barrier.wait()
                try:
                    outcome["body"] = self.service.fetch(record.id).read_all()
                except NotFound:
                    outcome["body"] = None

            threads = [threading.Thread(target=timer), threading.Thread(target=downloader)]
            for t in threads:
                t.start()
            for t in threads:
                t.join()

            self.assertNotIn("timer_error", outcome)
            if outcome["expired"]:
                self.assertIsNone(outcome["body"])
            else:
                self.assertEqual(outcome["body"], PNG)
            self.assertFalse(record.storage_path.exists())
            self.assertFalse(self.service.registry.is_known(record.id))


class TestDeleteAndStartup(ObjectServiceTestCase):
    def test_delete_removes_object(self) -> None:
        record = self._create()

        self.service.delete(record.id)

        self.assertFalse(record.storage_path.exists())
        with self.assertRaises(NotFound):
            self.service.fetch(record.id)
        with self.assertRaises(NotFound):
            self.service.delete(record.id)

    def test_start_removes_preexisting_files(self) -> None:
        for i in range(4):
            (self.root / f"previous{i:014d}").write_bytes(b"stale")

        self.service.start()

        self.assertEqual(self._files(), [])

    def test_from_settings_builds_working_service(self) -> None:
        settings = StoreSettings(
            storage_root=self.root / "store",
            max_file_size=10,
            ttl_seconds=5,
            consumption_policy=ConsumptionPolicy.SINGLE_USE,
            allowed_extensions=None,
        )
        service = ObjectService.from_settings(settings)
        service.start()
        try:
            record = service.create([b"hello"], "note.txt", "text/plain")
            self.assertIs(record.policy, ConsumptionPolicy.SINGLE_USE)
            self.assertEqual(service.fetch(record.id).read_all(), b"hello")
            with self.assertRaises(SizeExceeded):
                service.create([b"x" * 11], "big.txt", "text/plain")
        finally:
            service.stop()


class TestDownload(ObjectServiceTestCase):
    def test_download_streams_in_chunks(self) -> None:
        record = self._create(b"y" * 1000)
        fileobj = self.service.blobs.open_for_read(record.storage_path)

        download = Download(record, fileobj, chunk_size=256)
        chunks = list(download)

        self.assertEqual([len(c) for c in chunks], [256, 256, 256, 232])
        self.assertEqual(download.bytes_sent, 1000)
        self.assertTrue(download.closed)


if __name__ == "__main__":
    unittest.main()
