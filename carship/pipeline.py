from __future__ import annotations

import asyncio
import dataclasses
import logging
import os
import time
from dataclasses import dataclass
from typing import Callable, Optional

from .cid import CID
from .client import RemoteStatus, StorageClient
from .constants import CAR_SUFFIX
from .deadletter import DeadLetterLog
from .errors import CleanupFailure, IdentifierMismatch, TransferFailure
from .packer import PackResult, pack_file
from .progress import TransferProgress
from .reader import open_car
from .settings import Settings
from .status import NullStatus, StatusSink, format_bytes

log = logging.getLogger(__name__)

# Terminal outcome states
DONE = "done"
DEDUPLICATED = "deduplicated"
DEAD_LETTERED = "dead_lettered"
# Per-attempt state that sends the loop back to packing
MISMATCH = "mismatch"


@dataclass(frozen=True)
class TransferOutcome:
    """What one attempt (and finally the whole pipeline) ended with."""

    source_path: str
    state: str
    root: str
    attempts: int
    remote_cid: Optional[str] = None
    container_size: int = 0
    bytes_sent: int = 0
    elapsed: float = 0.0
    remote_status: Optional[RemoteStatus] = None
    error: Optional[IdentifierMismatch] = None

    @property
    def ok(self) -> bool:
        return self.state in (DONE, DEDUPLICATED)


class TransferPipeline:
    """Pack → dedup check → size report → upload → reconcile, per source file.

    A reconciliation mismatch re-runs the whole sequence from packing while
    retries remain, then records the source in the dead-letter log. Each
    attempt's container is removed on every exit path; a failed removal raises
    ``CleanupFailure``. Pack, container and transport errors are re-raised to
    the caller after cleanup.
    """

    def __init__(
        self,
        client: StorageClient,
        settings: Settings,
        *,
        sink: Optional[StatusSink] = None,
        dead_letter: Optional[DeadLetterLog] = None,
        packer: Callable[..., PackResult] = pack_file,
        wall_clock: Callable[[], float] = time.time,
        monotonic: Callable[[], float] = time.monotonic,
    ):
        self.client = client
        self.settings = settings
        self.sink = sink or NullStatus()
        self.dead_letter = dead_letter or DeadLetterLog(settings.dead_letter_path)
        self.packer = packer
        self.wall_clock = wall_clock
        self.monotonic = monotonic

    def container_path(self, source_path: str) -> str:
        millis = int(self.wall_clock() * 1000)
        return os.path.join(self.settings.temp_dir, f"{os.path.basename(source_path)}.{millis}{CAR_SUFFIX}")

    async def transfer(self, source_path: str) -> TransferOutcome:
        retries = self.settings.retries
        attempt = 0
        while True:
            attempt += 1
            outcome = await self._attempt(source_path, attempt)
            if outcome.state != MISMATCH:
                return outcome
            if retries == 0:
                self.dead_letter.append(source_path)
                self.sink.fail(f"{source_path}: gave up after {attempt} attempts; recorded in {self.dead_letter.path}")
                return dataclasses.replace(outcome, state=DEAD_LETTERED)
            retries -= 1
            self.sink.info(f"{source_path}: repacking ({retries} retr{'y' if retries == 1 else 'ies'} left after this)")

    async def _attempt(self, source_path: str, attempt: int) -> TransferOutcome:
        car_path = self.container_path(source_path)
        try:
            return await self._run(source_path, car_path, attempt)
        except Exception as exc:
            self.sink.fail(f"{source_path}: Error: {exc}")
            raise
        finally:
            await asyncio.to_thread(self._cleanup, car_path)

    async def _run(self, source_path: str, car_path: str, attempt: int) -> TransferOutcome:
        name = os.path.basename(source_path)
        s = self.settings

        self.sink.start(f"{name}: Packing file into CAR...")
        packed = await asyncio.to_thread(
            self.packer,
            source_path,
            car_path,
            chunk_size=s.chunk_size,
            max_children=s.max_children,
            wrap_with_directory=s.wrap_with_directory,
        )
        root = str(packed.root)
        self.sink.persist(f"{name}: Packed into CAR at: {car_path}", "🚗")
        self.sink.persist(f"{name}: CID: {root}", "🆔")

        existing = await self._probe(packed.root)
        if existing is not None:
            self.sink.succeed(f"{name}: {root} already known to the service ({existing.pin_status or 'queued'}); skipping upload")
            return TransferOutcome(source_path, DEDUPLICATED, root, attempt, remote_cid=root, remote_status=existing)

        self.sink.start(f"{name}: Reading CAR file size...")
        size = (await asyncio.to_thread(os.stat, car_path)).st_size
        self.sink.persist(f"{name}: CAR file size: {format_bytes(size)}", "🏋️")

        reader = await asyncio.to_thread(open_car, car_path)
        try:
            self.sink.persist(f"{name}: Using endpoint: {s.endpoint}", "🔌")
            progress = TransferProgress(clock=self.monotonic)
            self.sink.start(f"{name}: Uploading CAR...")

            def on_chunk(chunk_size: int) -> None:
                progress.record(chunk_size)
                self.sink.update(
                    f"{name}: Uploading CAR ({format_bytes(progress.bytes_sent)} sent, "
                    f"{format_bytes(progress.rate)}/s)..."
                )

            remote = await self.client.store_car(reader, on_chunk)
        finally:
            reader.close()

        remote_text = str(remote)
        self.sink.info(f"{name}: CID in response (for verification): {remote_text}")
        record = TransferOutcome(
            source_path,
            DONE,
            root,
            attempt,
            remote_cid=remote_text,
            container_size=size,
            bytes_sent=progress.bytes_sent,
            elapsed=progress.elapsed,
        )
        if remote_text != root:
            mismatch = IdentifierMismatch(root, remote_text)
            log.warning("%s: %s (attempt %d)", source_path, mismatch, attempt)
            self.sink.fail(f"{name}: {mismatch}")
            return dataclasses.replace(record, state=MISMATCH, error=mismatch)

        confirmed = await self.client.status(remote)
        self.sink.info(f"{name}: Status: {confirmed.pin_status if confirmed and confirmed.pin_status else 'unknown'}")
        self.sink.succeed(f"{name}: Upload complete")
        self.sink.info(f"{name}: Check status here: {s.endpoint}/check/{remote_text}")
        return dataclasses.replace(record, remote_status=confirmed)

    async def _probe(self, root: CID) -> Optional[RemoteStatus]:
        # Probe failures read as "not stored"; the upload goes ahead.
        try:
            return await self.client.status(root)
        except TransferFailure as exc:
            log.warning("dedup probe for %s failed, treating as not stored: %s", root, exc)
            return None

    def _cleanup(self, car_path: str) -> None:
        try:
            os.remove(car_path)
        except FileNotFoundError:
            return
        except OSError as exc:
            raise CleanupFailure(car_path, exc) from exc
        log.debug("removed temporary container %s", car_path)
