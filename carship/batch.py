from __future__ import annotations

import asyncio
import logging
import os
from dataclasses import dataclass, field
from typing import List, Optional, Tuple

from .constants import DEFAULT_CONCURRENCY
from .errors import CarshipError, ContainerCorrupt, PackFailure, TransferFailure
from .pipeline import DEAD_LETTERED, DEDUPLICATED, DONE, TransferOutcome, TransferPipeline

log = logging.getLogger(__name__)

# Errors that end one file's pipeline without failing its wave.
PER_FILE_ERRORS = (PackFailure, ContainerCorrupt, TransferFailure)


@dataclass
class BatchReport:
    outcomes: List[TransferOutcome] = field(default_factory=list)
    failures: List[Tuple[str, CarshipError]] = field(default_factory=list)
    waves: int = 0

    def _count(self, state: str) -> int:
        return sum(1 for o in self.outcomes if o.state == state)

    @property
    def done(self) -> int:
        return self._count(DONE)

    @property
    def deduplicated(self) -> int:
        return self._count(DEDUPLICATED)

    @property
    def dead_lettered(self) -> int:
        return self._count(DEAD_LETTERED)


class BatchScheduler:
    """Runs one pipeline per directory entry in waves of at most ``concurrency``.

    A wave is awaited in full before the next is admitted. Per-file errors are
    collected in the report; any other error is raised once its wave has
    settled, and no further waves start.
    """

    def __init__(self, pipeline: TransferPipeline, concurrency: int = DEFAULT_CONCURRENCY):
        if concurrency < 1:
            raise ValueError("concurrency must be at least 1")
        self.pipeline = pipeline
        self.concurrency = concurrency

    @staticmethod
    def list_entries(directory: str) -> List[str]:
        """Entries of ``directory`` (not recursive), each treated as a file path."""
        return [os.path.join(directory, name) for name in sorted(os.listdir(directory))]

    async def run_all(self, directory: str) -> BatchReport:
        entries = self.list_entries(directory)
        report = BatchReport()
        for start in range(0, len(entries), self.concurrency):
            wave = entries[start : start + self.concurrency]
            report.waves += 1
            log.debug("admitting wave %d with %d file(s)", report.waves, len(wave))
            results = await asyncio.gather(*(self.pipeline.transfer(p) for p in wave), return_exceptions=True)
            fatal: Optional[BaseException] = None
            for path, res in zip(wave, results):
                if isinstance(res, PER_FILE_ERRORS):
                    report.failures.append((path, res))
                elif isinstance(res, BaseException):
                    if fatal is None:
                        fatal = res
                else:
                    report.outcomes.append(res)
            if fatal is not None:
                raise fatal
        return report
