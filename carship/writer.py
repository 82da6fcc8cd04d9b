from __future__ import annotations

import os
from typing import BinaryIO, Dict, List, Optional

from .cid import CID
from .constants import CARV2_HEADER_SIZE, CARV2_PRAGMA, CID_VERSION, CODEC_RAW
from .hashutil import multihash_sha256
from .header import CarV2Header, encode_v1_header
from .index import dumps_index
from .records import write_section

# Stands in for the root until finalize(); every sha2-256 CIDv1 encodes to the same length.
_ROOT_PLACEHOLDER = CID(CID_VERSION, CODEC_RAW, multihash_sha256(b""))


class CarWriter:
    """Streaming writer that produces indexed CARv2 containers.

    Blocks are appended as sections while the DAG is built; the root is only
    known once the last block is written, so the CARv1 header is written with a
    placeholder of identical length and patched in place by ``finalize``.
    """

    def __init__(self, out_path: str):
        self.out_path = out_path
        self.f: Optional[BinaryIO] = None
        self.block_count = 0
        self._offsets: Dict[bytes, int] = {}
        self._payload_start = 0
        self._finalized = False

    def __enter__(self):
        self.open()
        return self

    def __exit__(self, exc_type, exc, tb):
        self.close()

    def open(self):
        if self.f is not None:
            return
        self.f = open(self.out_path, "wb")
        self.f.write(b"\x00" * (len(CARV2_PRAGMA) + CARV2_HEADER_SIZE))
        self._payload_start = self.f.tell()
        self.f.write(encode_v1_header([_ROOT_PLACEHOLDER]))

    def close(self):
        if self.f is not None:
            self.f.close()
            self.f = None

    def put(self, cid: CID, data: bytes) -> bool:
        """Append a block; returns False when the same multihash is already stored."""
        if self.f is None:
            raise RuntimeError("Container not open")
        if self._finalized:
            raise RuntimeError("Container already finalized")
        if cid.multihash in self._offsets:
            return False
        off, _ = write_section(self.f, cid, data)
        self._offsets[cid.multihash] = off - self._payload_start
        self.block_count += 1
        return True

    def finalize(self, roots: List[CID]) -> int:
        """Write the index trailer and patch both headers. Returns the file size."""
        if self.f is None:
            raise RuntimeError("Container not open")
        header = encode_v1_header(roots)
        if len(header) != len(encode_v1_header([_ROOT_PLACEHOLDER])):
            raise ValueError("Root CID length does not match the header placeholder")
        data_size = self.f.tell() - self._payload_start
        index_offset = self.f.tell()
        self.f.write(dumps_index(self._offsets.items()))
        total = self.f.tell()
        self.f.seek(self._payload_start)
        self.f.write(header)
        self.f.seek(0)
        self.f.write(
            CarV2Header(
                characteristics=b"\x00" * 16,
                data_offset=self._payload_start,
                data_size=data_size,
                index_offset=index_offset,
            ).pack()
        )
        self.f.flush()
        os.fsync(self.f.fileno())
        self._finalized = True
        return total
