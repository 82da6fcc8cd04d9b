from __future__ import annotations

import time
from dataclasses import dataclass, field
from typing import Callable


@dataclass
class TransferProgress:
    """Running byte total and throughput for one upload."""

    clock: Callable[[], float] = time.monotonic
    bytes_sent: int = 0
    chunks: int = 0
    started: float = field(default=0.0)

    def __post_init__(self):
        if not self.started:
            self.started = self.clock()

    def record(self, chunk_size: int) -> None:
        self.bytes_sent += chunk_size
        self.chunks += 1

    @property
    def elapsed(self) -> float:
        return max(self.clock() - self.started, 0.0)

    @property
    def rate(self) -> float:
        """Bytes per second since the upload started (0 before any time has passed)."""
        elapsed = self.elapsed
        if elapsed <= 0:
            return 0.0
        return self.bytes_sent / elapsed
