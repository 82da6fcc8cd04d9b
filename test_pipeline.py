from __future__ import annotations

import io
import os
import tempfile
import threading
import unittest
from pathlib import Path
from typing import List, Optional
from unittest import mock

import httpx

from carship.cid import CID
from carship.client import RemoteStatus, StorageClient
from carship.constants import CODEC_RAW
from carship.deadletter import DeadLetterLog
from carship.errors import CleanupFailure, ContainerCorrupt, PackFailure, TransferFailure
from carship.header import read_v1_header
from carship.packer import pack_file
from carship.pipeline import DEAD_LETTERED, DEDUPLICATED, DONE, TransferPipeline
from carship.reader import open_car
from carship.settings import Settings
from carship.status import RecordingStatus


class FakeStorage:
    """In-memory stand-in for StorageClient."""

    def __init__(
        self,
        *,
        known: bool = False,
        answer: Optional[CID] = None,
        probe_error: Optional[Exception] = None,
        store_error: Optional[Exception] = None,
    ):
        self.known = known
        self.answer = answer
        self.probe_error = probe_error
        self.store_error = store_error
        self.stored = set()
        self.status_calls: List[str] = []
        self.store_calls = 0
        self.pieces: List[int] = []

    async def status(self, cid):
        self.status_calls.append(str(cid))
        if self.probe_error is not None and len(self.status_calls) == 1:
            raise self.probe_error
        if self.known or str(cid) in self.stored:
            return RemoteStatus(cid=str(cid), pin_status="pinned" if self.known else "queued")
        return None

    async def store_car(self, reader, on_progress=None):
        self.store_calls += 1
        if self.store_error is not None:
            raise self.store_error
        for piece in reader.iter_car_chunks(4096):
            self.pieces.append(len(piece))
            if on_progress is not None:
                on_progress(len(piece))
        cid = self.answer or reader.root
        self.stored.add(str(cid))
        return cid


class PipelineTests(unittest.IsolatedAsyncioTestCase):
    def setUp(self):
        tmp = tempfile.TemporaryDirectory()
        self.addCleanup(tmp.cleanup)
        self.tmp = Path(tmp.name)
        self.work = self.tmp / "work"
        self.work.mkdir()
        self.source = self.tmp / "source.txt"
        self.source.write_bytes(os.urandom(20_000))
        self.dead = self.tmp / "dead.txt"
        self.settings = Settings(
            api_key="test",
            endpoint="https://storage.test",
            retries=3,
            chunk_size=4096,
            temp_dir=str(self.work),
            dead_letter_path=str(self.dead),
        )
        self.sink = RecordingStatus()
        self.packed_paths: List[str] = []

    def _packer(self, source_path, car_path, **kwargs):
        self.packed_paths.append(car_path)
        return pack_file(source_path, car_path, **kwargs)

    def _pipeline(self, storage, **kwargs) -> TransferPipeline:
        return TransferPipeline(
            storage,
            self.settings,
            sink=self.sink,
            dead_letter=DeadLetterLog(str(self.dead)),
            packer=kwargs.pop("packer", self._packer),
            **kwargs,
        )

    def assertNoContainers(self):
        self.assertEqual(os.listdir(self.work), [])
        for p in self.packed_paths:
            self.assertFalse(os.path.exists(p), p)

    async def test_matching_upload_completes(self):
        storage = FakeStorage()
        outcome = await self._pipeline(storage).transfer(str(self.source))
        self.assertEqual(outcome.state, DONE)
        self.assertTrue(outcome.ok)
        self.assertEqual(outcome.remote_cid, outcome.root)
        self.assertEqual(outcome.attempts, 1)
        self.assertEqual(outcome.bytes_sent, sum(storage.pieces))
        self.assertEqual(outcome.remote_status.pin_status, "queued")
        self.assertEqual(storage.store_calls, 1)
        # dedup probe, then the confirming status query
        self.assertEqual(storage.status_calls, [outcome.root, outcome.root])
        self.assertFalse(self.dead.exists())
        self.assertNoContainers()
        self.assertIn("source.txt: Upload complete", self.sink.texts("succeed"))
        self.assertTrue(any("Uploading CAR (" in t for t in self.sink.texts("update")))

    async def test_container_path_pattern(self):
        pipeline = self._pipeline(FakeStorage(), wall_clock=lambda: 1700000000.123)
        self.assertEqual(pipeline.container_path("/data/in/source.txt"), str(self.work / "source.txt.1700000000123.car"))

    async def test_known_content_skips_upload(self):
        storage = FakeStorage(known=True)
        outcome = await self._pipeline(storage).transfer(str(self.source))
        self.assertEqual(outcome.state, DEDUPLICATED)
        self.assertEqual(storage.store_calls, 0)
        self.assertEqual(len(storage.status_calls), 1)
        self.assertEqual(len(self.packed_paths), 1)
        self.assertNoContainers()

    async def test_probe_failure_is_treated_as_not_stored(self):
        storage = FakeStorage(probe_error=TransferFailure("probe timed out"))
        with self.assertLogs("carship.pipeline", level="WARNING") as logs:
            outcome = await self._pipeline(storage).transfer(str(self.source))
        self.assertEqual(outcome.state, DONE)
        self.assertEqual(storage.store_calls, 1)
        self.assertTrue(any("probe timed out" in line for line in logs.output))
        self.assertNoContainers()

    async def test_mismatch_retries_then_dead_letters_once(self):
        wrong = CID.for_block(CODEC_RAW, b"what the service saw")
        storage = FakeStorage(answer=wrong)
        outcome = await self._pipeline(storage).transfer(str(self.source))
        self.assertEqual(outcome.state, DEAD_LETTERED)
        self.assertFalse(outcome.ok)
        self.assertEqual(outcome.attempts, self.settings.retries + 1)
        self.assertEqual(len(self.packed_paths), self.settings.retries + 1)
        self.assertEqual(storage.store_calls, self.settings.retries + 1)
        self.assertEqual(outcome.error.expected, outcome.root)
        self.assertEqual(outcome.error.actual, str(wrong))
        self.assertEqual(self.dead.read_text(), f"{self.source}\n")
        self.assertNoContainers()

    async def test_zero_retries_dead_letters_after_one_attempt(self):
        self.settings.retries = 0
        storage = FakeStorage(answer=CID.for_block(CODEC_RAW, b"x"))
        outcome = await self._pipeline(storage).transfer(str(self.source))
        self.assertEqual(outcome.state, DEAD_LETTERED)
        self.assertEqual(len(self.packed_paths), 1)
        self.assertEqual(self.dead.read_text().splitlines(), [str(self.source)])

    async def test_mismatch_then_match_succeeds_without_dead_letter(self):
        storage = FakeStorage(answer=CID.for_block(CODEC_RAW, b"x"))
        original = storage.store_car

        async def flaky(reader, on_progress=None):
            if storage.store_calls == 1:
                storage.answer = None
            return await original(reader, on_progress)

        storage.store_car = flaky
        outcome = await self._pipeline(storage).transfer(str(self.source))
        self.assertEqual(outcome.state, DONE)
        self.assertEqual(outcome.attempts, 2)
        self.assertFalse(self.dead.exists())
        self.assertNoContainers()

    async def test_pack_failure_propagates_and_cleans_up(self):
        missing = str(self.tmp / "gone.txt")
        storage = FakeStorage()
        with self.assertRaises(PackFailure):
            await self._pipeline(storage).transfer(missing)
        self.assertEqual(storage.status_calls, [])
        self.assertFalse(self.dead.exists())
        self.assertNoContainers()

    async def test_corrupt_container_is_not_retried(self):
        def garbage_packer(source_path, car_path, **kwargs):
            result = self._packer(source_path, car_path, **kwargs)
            with open(car_path, "r+b") as fh:
                fh.write(b"\x00" * 16)
            return result

        storage = FakeStorage()
        with self.assertRaises(ContainerCorrupt):
            await self._pipeline(storage, packer=garbage_packer).transfer(str(self.source))
        self.assertEqual(len(self.packed_paths), 1)
        self.assertEqual(storage.store_calls, 0)
        self.assertNoContainers()

    async def test_transfer_failure_propagates_and_cleans_up(self):
        storage = FakeStorage(store_error=TransferFailure("connection reset"))
        with self.assertRaises(TransferFailure):
            await self._pipeline(storage).transfer(str(self.source))
        self.assertEqual(storage.store_calls, 1)
        self.assertEqual(len(self.packed_paths), 1)
        self.assertTrue(any("connection reset" in t for t in self.sink.texts("fail")))
        self.assertNoContainers()

    async def test_unexpected_error_propagates_and_cleans_up(self):
        storage = FakeStorage(store_error=RuntimeError("bug"))
        with self.assertRaises(RuntimeError):
            await self._pipeline(storage).transfer(str(self.source))
        self.assertNoContainers()

    async def test_cleanup_failure_is_raised(self):
        storage = FakeStorage()
        with mock.patch("carship.pipeline.os.remove", side_effect=PermissionError("read-only")):
            with self.assertRaises(CleanupFailure) as ctx:
                await self._pipeline(storage).transfer(str(self.source))
        self.assertEqual(ctx.exception.path, self.packed_paths[0])
        self.assertTrue(os.path.exists(self.packed_paths[0]))

    async def test_malformed_probe_reply_falls_through_to_upload(self):
        replies = []

        def handler(request: httpx.Request) -> httpx.Response:
            if request.method == "POST":
                roots, _ = read_v1_header(io.BytesIO(request.content))
                replies.append("upload")
                return httpx.Response(200, json={"ok": True, "value": {"cid": str(roots[0])}})
            replies.append("status")
            if replies.count("status") == 1:
                return httpx.Response(200, json={"ok": True, "value": {"cid": "x", "pin": "pinned"}})
            cid = request.url.path.strip("/")
            return httpx.Response(200, json={"ok": True, "value": {"cid": cid, "pin": {"status": "queued"}}})

        http = httpx.AsyncClient(transport=httpx.MockTransport(handler))
        self.addAsyncCleanup(http.aclose)
        client = StorageClient("test", "https://storage.test", http_client=http)
        with self.assertLogs("carship.pipeline", level="WARNING") as logs:
            outcome = await self._pipeline(client).transfer(str(self.source))
        self.assertEqual(outcome.state, DONE)
        self.assertEqual(outcome.remote_status.pin_status, "queued")
        self.assertEqual(replies[0], "status")
        self.assertIn("upload", replies)
        self.assertTrue(any("malformed status response" in line for line in logs.output))
        self.assertNoContainers()

    async def test_container_is_opened_off_the_event_loop(self):
        loop_thread = threading.get_ident()
        opened_in = []

        def recording_open(path):
            opened_in.append(threading.get_ident())
            return open_car(path)

        with mock.patch("carship.pipeline.open_car", side_effect=recording_open):
            outcome = await self._pipeline(FakeStorage()).transfer(str(self.source))
        self.assertEqual(outcome.state, DONE)
        self.assertEqual(len(opened_in), 1)
        self.assertNotEqual(opened_in[0], loop_thread)


if __name__ == "__main__":
    unittest.main()
