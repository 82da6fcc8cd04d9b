from __future__ import annotations

import sys
from typing import List, Optional, TextIO, Tuple

_UNITS = ("B", "KB", "MB", "GB", "TB", "PB")


def format_bytes(n: float) -> str:
    """Render a byte count with 1024-based units, e.g. ``1.5MB``."""
    value = float(n)
    for unit in _UNITS:
        if abs(value) < 1024 or unit == _UNITS[-1]:
            if unit == "B":
                return f"{int(value)}B"
            return f"{value:.2f}".rstrip("0").rstrip(".") + unit
        value /= 1024
    return f"{value}{_UNITS[-1]}"


class StatusSink:
    """Receives human-readable progress events; the base class discards them."""

    def start(self, text: str) -> None:
        pass

    def update(self, text: str) -> None:
        pass

    def persist(self, text: str, symbol: str = "-") -> None:
        pass

    def info(self, text: str) -> None:
        pass

    def succeed(self, text: str) -> None:
        pass

    def fail(self, text: str) -> None:
        pass


NullStatus = StatusSink


class ConsoleStatus(StatusSink):
    """One line per event on a text stream (stdout by default)."""

    def __init__(self, stream: Optional[TextIO] = None, quiet: bool = False):
        self.stream = stream
        self.quiet = quiet

    def _emit(self, symbol: str, text: str) -> None:
        print(f"{symbol} {text}", file=self.stream or sys.stdout, flush=True)

    def start(self, text: str) -> None:
        if not self.quiet:
            self._emit("…", text)

    def update(self, text: str) -> None:
        if not self.quiet:
            self._emit(" ", text)

    def persist(self, text: str, symbol: str = "-") -> None:
        self._emit(symbol, text)

    def info(self, text: str) -> None:
        self._emit("ℹ", text)

    def succeed(self, text: str) -> None:
        self._emit("✔", text)

    def fail(self, text: str) -> None:
        self._emit("✖", text)


class RecordingStatus(StatusSink):
    """Keeps every event as (kind, text); used by tests and embedding callers."""

    def __init__(self):
        self.events: List[Tuple[str, str]] = []

    def start(self, text: str) -> None:
        self.events.append(("start", text))

    def update(self, text: str) -> None:
        self.events.append(("update", text))

    def persist(self, text: str, symbol: str = "-") -> None:
        self.events.append(("persist", text))

    def info(self, text: str) -> None:
        self.events.append(("info", text))

    def succeed(self, text: str) -> None:
        self.events.append(("succeed", text))

    def fail(self, text: str) -> None:
        self.events.append(("fail", text))

    def texts(self, kind: Optional[str] = None) -> List[str]:
        return [t for k, t in self.events if kind is None or k == kind]
