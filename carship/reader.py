from __future__ import annotations

import os
from typing import BinaryIO, Dict, Iterator, List, Optional, Tuple

from .cid import CID
from .constants import (
    CARV2_HEADER_SIZE,
    CARV2_PRAGMA,
    CODEC_DAG_PB,
    CODEC_RAW,
    MH_SHA2_256,
    UNIXFS_DIRECTORY,
    UNIXFS_FILE,
    UNIXFS_RAW,
)
from .dagpb import decode_node, decode_unixfs
from .errors import ContainerCorrupt
from .hashutil import multihash_sha256, split_multihash
from .header import read_v1_header, read_v2_header, encode_v1_header
from .index import loads_index
from .records import encode_section, read_section, read_section_at

# Index bound keeps a corrupt header from asking for an absurd allocation.
MAX_INDEX_SIZE = 256 * 1024 * 1024


class CarIndexedReader:
    """Random-access reader over an indexed CARv2 container.

    Opening validates the pragma, both headers and the index trailer; any
    structural problem surfaces as ``ContainerCorrupt`` while filesystem
    problems stay ``OSError``.
    """

    def __init__(self, path: str):
        self.path = path
        self.f: Optional[BinaryIO] = None
        self.roots: List[CID] = []
        self.data_offset = 0
        self.data_size = 0
        self.index: Dict[bytes, int] = {}
        self._first_block_offset = 0

    def __enter__(self):
        self.open()
        return self

    def __exit__(self, exc_type, exc, tb):
        self.close()

    def open(self):
        if self.f is not None:
            return
        self.f = open(self.path, "rb")
        try:
            self._load()
        except (ValueError, EOFError) as exc:
            self.close()
            raise ContainerCorrupt(f"{self.path}: {exc}") from exc
        except OSError:
            self.close()
            raise

    def close(self):
        if self.f is not None:
            self.f.close()
            self.f = None

    @property
    def root(self) -> CID:
        return self.roots[0]

    @property
    def payload_end(self) -> int:
        return self.data_offset + self.data_size

    def __len__(self) -> int:
        return len(self.index)

    def has(self, cid: CID) -> bool:
        return cid.multihash in self.index

    def get(self, cid: CID) -> bytes:
        """Fetch one block by CID through the index, re-verifying its digest."""
        f = self._handle()
        off = self.index.get(cid.multihash)
        if off is None:
            raise KeyError(str(cid))
        try:
            stored, data = read_section_at(f, self.data_offset + off, self.payload_end)
        except (ValueError, EOFError) as exc:
            raise ContainerCorrupt(f"{self.path}: unreadable block {cid}: {exc}") from exc
        if stored.multihash != cid.multihash or not _digest_ok(stored, data):
            raise ContainerCorrupt(f"{self.path}: block {cid} does not match its digest")
        return data

    def blocks(self) -> Iterator[Tuple[CID, bytes]]:
        """Yield every (cid, block) in container order."""
        f = self._handle()
        pos = self._first_block_offset
        while True:
            f.seek(pos)
            try:
                section = read_section(f, self.payload_end)
            except (ValueError, EOFError) as exc:
                raise ContainerCorrupt(f"{self.path}: bad section at {pos}: {exc}") from exc
            if section is None:
                return
            pos = f.tell()
            yield section

    def iter_bytes(self, chunk_size: int = 1024 * 1024) -> Iterator[bytes]:
        """Stream the embedded CARv1 payload byte for byte."""
        f = self._handle()
        remaining = self.data_size
        pos = self.data_offset
        while remaining > 0:
            f.seek(pos)
            buf = f.read(min(chunk_size, remaining))
            if not buf:
                raise ContainerCorrupt(f"{self.path}: payload truncated")
            pos += len(buf)
            remaining -= len(buf)
            yield buf

    def iter_car_chunks(self, target_size: int) -> Iterator[bytes]:
        """Split the payload into standalone CARv1 files sharing this root.

        Each chunk holds whole blocks and stays under ``target_size`` unless a
        single block is larger. An empty container still yields one chunk.
        """
        header = encode_v1_header(self.roots)
        buf = bytearray(header)
        emitted = False
        for cid, data in self.blocks():
            section = encode_section(cid, data)
            if len(buf) > len(header) and len(buf) + len(section) > target_size:
                yield bytes(buf)
                emitted = True
                buf = bytearray(header)
            buf += section
        if len(buf) > len(header) or not emitted:
            yield bytes(buf)

    def cat(self, root: Optional[CID] = None) -> Iterator[bytes]:
        """Reassemble file content by walking the DAG from ``root``."""
        yield from self._walk(root or self.root, depth=0)

    def verify(self) -> bool:
        """Check every block hashes to its CID and every root is present."""
        seen = set()
        for cid, data in self.blocks():
            if not _digest_ok(cid, data):
                return False
            if self.index.get(cid.multihash) is None:
                return False
            seen.add(cid.multihash)
        return all(r.multihash in seen for r in self.roots) and seen == set(self.index)

    # internals
    def _handle(self) -> BinaryIO:
        if self.f is None:
            raise RuntimeError("Container not open")
        return self.f

    def _load(self):
        f = self._handle()
        size = os.fstat(f.fileno()).st_size
        hdr = read_v2_header(f)
        if hdr.data_offset < len(CARV2_PRAGMA) + CARV2_HEADER_SIZE:
            raise ValueError("CARv2 data offset overlaps header")
        if hdr.data_offset + hdr.data_size > size:
            raise ValueError("CARv2 payload runs past end of file")
        if hdr.index_offset == 0 or hdr.index_offset < hdr.data_offset + hdr.data_size or hdr.index_offset > size:
            raise ValueError("CARv2 index offset out of range")
        self.data_offset = hdr.data_offset
        self.data_size = hdr.data_size
        f.seek(self.data_offset)
        self.roots, header_len = read_v1_header(f)
        self._first_block_offset = self.data_offset + header_len
        if self._first_block_offset > self.payload_end:
            raise ValueError("CARv1 header runs past payload")
        index_len = size - hdr.index_offset
        if index_len > MAX_INDEX_SIZE:
            raise ValueError("CARv2 index too large")
        f.seek(hdr.index_offset)
        raw_index = f.read(index_len)
        if len(raw_index) != index_len:
            raise EOFError("Unexpected EOF in index")
        self.index = loads_index(raw_index)
        for off in self.index.values():
            if off >= self.data_size:
                raise ValueError("index offset outside payload")

    def _walk(self, cid: CID, depth: int) -> Iterator[bytes]:
        if depth > 64:
            raise ContainerCorrupt(f"{self.path}: DAG too deep")
        data = self.get(cid)
        if cid.codec == CODEC_RAW:
            yield data
            return
        if cid.codec != CODEC_DAG_PB:
            raise ContainerCorrupt(f"{self.path}: unsupported codec 0x{cid.codec:x} in {cid}")
        try:
            node = decode_node(data)
            meta = decode_unixfs(node.data or b"")
        except ValueError as exc:
            raise ContainerCorrupt(f"{self.path}: bad dag-pb node {cid}: {exc}") from exc
        if meta.type == UNIXFS_DIRECTORY:
            if len(node.links) != 1:
                raise ContainerCorrupt(f"{self.path}: directory {cid} does not wrap exactly one file")
            yield from self._walk(node.links[0].cid, depth + 1)
            return
        if meta.type not in (UNIXFS_FILE, UNIXFS_RAW):
            raise ContainerCorrupt(f"{self.path}: unsupported UnixFS type {meta.type}")
        if meta.data:
            yield meta.data
        for link in node.links:
            yield from self._walk(link.cid, depth + 1)


def open_car(path: str) -> CarIndexedReader:
    reader = CarIndexedReader(path)
    reader.open()
    return reader


def _digest_ok(cid: CID, data: bytes) -> bool:
    try:
        code, _digest = split_multihash(cid.multihash)
    except ValueError:
        return False
    if code != MH_SHA2_256:
        return False
    return multihash_sha256(data) == cid.multihash
