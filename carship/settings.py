from __future__ import annotations

import os
import tempfile
from dataclasses import dataclass, field
from typing import Mapping, Optional

from dotenv import load_dotenv

from .constants import (
    DEAD_LETTER_FILE,
    DEFAULT_CHUNK_SIZE,
    DEFAULT_CONCURRENCY,
    DEFAULT_ENDPOINT,
    DEFAULT_MAX_CHILDREN,
    DEFAULT_RETRIES,
    DEFAULT_UPLOAD_CHUNK_SIZE,
)
from .errors import ConfigError


@dataclass
class Settings:
    api_key: str
    endpoint: str = DEFAULT_ENDPOINT
    concurrency: int = DEFAULT_CONCURRENCY
    retries: int = DEFAULT_RETRIES
    chunk_size: int = DEFAULT_CHUNK_SIZE
    max_children: int = DEFAULT_MAX_CHILDREN
    upload_chunk_size: int = DEFAULT_UPLOAD_CHUNK_SIZE
    wrap_with_directory: bool = False
    dead_letter_path: str = DEAD_LETTER_FILE
    temp_dir: str = field(default_factory=tempfile.gettempdir)

    def __post_init__(self):
        if not self.api_key:
            raise ConfigError("missing nft.storage API key")
        if self.concurrency < 1:
            raise ConfigError("concurrency must be at least 1")
        if self.retries < 0:
            raise ConfigError("retries must not be negative")
        if self.chunk_size < 1:
            raise ConfigError("chunk_size must be positive")
        if self.max_children < 2:
            raise ConfigError("max_children must be at least 2")
        if self.upload_chunk_size < 1:
            raise ConfigError("upload_chunk_size must be positive")
        self.endpoint = self.endpoint.rstrip("/")

    @classmethod
    def from_env(cls, environ: Optional[Mapping[str, str]] = None, *, dotenv: bool = True) -> "Settings":
        """Read ``API_KEY`` and optional ``ENDPOINT`` (after loading ``.env``)."""
        if environ is None:
            if dotenv:
                load_dotenv()
            environ = os.environ
        api_key = environ.get("API_KEY", "")
        if not api_key:
            raise ConfigError("missing nft.storage API key")
        return cls(api_key=api_key, endpoint=environ.get("ENDPOINT") or DEFAULT_ENDPOINT)
