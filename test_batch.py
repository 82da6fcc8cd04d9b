from __future__ import annotations

import asyncio
import os
import tempfile
import unittest
from pathlib import Path
from typing import Dict, List

from carship.batch import BatchScheduler
from carship.cid import CID
from carship.constants import CODEC_RAW
from carship.deadletter import DeadLetterLog
from carship.errors import CleanupFailure, PackFailure
from carship.pipeline import DEAD_LETTERED, DONE, TransferOutcome, TransferPipeline
from carship.settings import Settings
from carship.status import RecordingStatus

from test_pipeline import FakeStorage


class GatedPipeline:
    """Counts how many transfers are suspended at the same time."""

    def __init__(self, errors: Dict[str, BaseException] = None):
        self.errors = errors or {}
        self.in_flight = 0
        self.peak = 0
        self.started: List[str] = []
        self.finished: List[str] = []

    async def transfer(self, path: str) -> TransferOutcome:
        self.started.append(os.path.basename(path))
        self.in_flight += 1
        self.peak = max(self.peak, self.in_flight)
        try:
            for _ in range(3):
                await asyncio.sleep(0)
            err = self.errors.get(os.path.basename(path))
            if err is not None:
                raise err
            return TransferOutcome(path, DONE, "root", 1)
        finally:
            self.in_flight -= 1
            self.finished.append(os.path.basename(path))


class BatchSchedulerTests(unittest.IsolatedAsyncioTestCase):
    def setUp(self):
        tmp = tempfile.TemporaryDirectory()
        self.addCleanup(tmp.cleanup)
        self.tmp = Path(tmp.name)
        self.inbox = self.tmp / "inbox"
        self.inbox.mkdir()

    def _files(self, n: int) -> List[str]:
        names = [f"f{i:02d}.txt" for i in range(n)]
        for i, name in enumerate(names):
            (self.inbox / name).write_bytes(f"file number {i}\n".encode() * 50)
        return names

    async def test_concurrency_ceiling(self):
        self._files(10)
        pipeline = GatedPipeline()
        report = await BatchScheduler(pipeline, concurrency=3).run_all(str(self.inbox))
        self.assertEqual(pipeline.peak, 3)
        self.assertEqual(report.waves, 4)
        self.assertEqual(report.done, 10)
        self.assertEqual(len(pipeline.started), 10)

    async def test_entries_are_not_walked_recursively(self):
        self._files(2)
        (self.inbox / "nested").mkdir()
        (self.inbox / "nested" / "deep.txt").write_text("deep")
        entries = BatchScheduler.list_entries(str(self.inbox))
        self.assertEqual([os.path.basename(e) for e in entries], ["f00.txt", "f01.txt", "nested"])

    async def test_per_file_failure_does_not_stop_siblings(self):
        self._files(5)
        pipeline = GatedPipeline({"f01.txt": PackFailure("f01.txt", OSError("unreadable"))})
        report = await BatchScheduler(pipeline, concurrency=2).run_all(str(self.inbox))
        self.assertEqual(report.done, 4)
        self.assertEqual([os.path.basename(p) for p, _ in report.failures], ["f01.txt"])
        self.assertEqual(len(pipeline.started), 5)

    async def test_fatal_error_settles_wave_then_stops_admission(self):
        self._files(6)
        pipeline = GatedPipeline(
            {
                "f01.txt": CleanupFailure("/tmp/f01.car", PermissionError("denied")),
                "f02.txt": RuntimeError("second failure"),
            }
        )
        with self.assertRaises(CleanupFailure):
            await BatchScheduler(pipeline, concurrency=3).run_all(str(self.inbox))
        self.assertEqual(pipeline.started, ["f00.txt", "f01.txt", "f02.txt"])
        self.assertEqual(sorted(pipeline.finished), ["f00.txt", "f01.txt", "f02.txt"])

    async def test_empty_directory(self):
        report = await BatchScheduler(GatedPipeline(), concurrency=5).run_all(str(self.inbox))
        self.assertEqual(report.waves, 0)
        self.assertEqual(report.outcomes, [])

    async def test_rejects_bad_ceiling(self):
        with self.assertRaises(ValueError):
            BatchScheduler(GatedPipeline(), concurrency=0)

    async def test_end_to_end_with_real_pipeline(self):
        self._files(4)
        (self.inbox / "unlucky.txt").write_bytes(b"this one never reconciles\n" * 10)
        work = self.tmp / "work"
        work.mkdir()
        dead = self.tmp / "dead.txt"
        settings = Settings(
            api_key="test",
            retries=1,
            concurrency=2,
            temp_dir=str(work),
            dead_letter_path=str(dead),
        )
        storage = FakeStorage()
        original = storage.store_car

        async def store(reader, on_progress=None):
            cid = await original(reader, on_progress)
            if b"".join(reader.cat()).startswith(b"this one never"):
                storage.stored.discard(str(cid))
                return CID.for_block(CODEC_RAW, b"elsewhere")
            return cid

        storage.store_car = store
        pipeline = TransferPipeline(storage, settings, sink=RecordingStatus(), dead_letter=DeadLetterLog(str(dead)))
        report = await BatchScheduler(pipeline, settings.concurrency).run_all(str(self.inbox))
        self.assertEqual(report.done, 4)
        self.assertEqual(report.dead_lettered, 1)
        self.assertEqual(report.failures, [])
        self.assertEqual([o.state for o in report.outcomes if o.source_path.endswith("unlucky.txt")], [DEAD_LETTERED])
        self.assertEqual(dead.read_text(), f"{self.inbox / 'unlucky.txt'}\n")
        self.assertEqual(os.listdir(work), [])


if __name__ == "__main__":
    unittest.main()
