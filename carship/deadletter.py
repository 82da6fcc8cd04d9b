from __future__ import annotations

import os


class DeadLetterLog:
    """Append-only list of source paths whose transfers never reconciled.

    Each entry is one ``os.write`` on an ``O_APPEND`` descriptor, so lines from
    concurrent pipelines never interleave. The file is never read back.
    """

    def __init__(self, path: str):
        self.path = path

    def append(self, source_path: str) -> None:
        line = (source_path + "\n").encode("utf-8")
        fd = os.open(self.path, os.O_WRONLY | os.O_CREAT | os.O_APPEND, 0o644)
        try:
            written = os.write(fd, line)
            if written != len(line):
                raise OSError(f"short write to dead-letter log {self.path}")
        finally:
            os.close(fd)
