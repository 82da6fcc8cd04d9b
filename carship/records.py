from __future__ import annotations

from typing import BinaryIO, Optional, Tuple

from .cid import CID
from .varint import read_varint, varint_encode

# Upper bound on one section; CIDs are tiny and blocks are at most a few MiB.
MAX_SECTION_SIZE = 64 * 1024 * 1024


def encode_section(cid: CID, data: bytes) -> bytes:
    """A CARv1 section: varint(len(cid || data)) || cid || data."""
    raw_cid = cid.encode()
    return varint_encode(len(raw_cid) + len(data)) + raw_cid + data


def write_section(f: BinaryIO, cid: CID, data: bytes) -> Tuple[int, int]:
    """Append one section; returns (offset, length written)."""
    off = f.tell()
    section = encode_section(cid, data)
    f.write(section)
    return off, len(section)


def read_exact(f: BinaryIO, n: int) -> bytes:
    b = f.read(n)
    if len(b) != n:
        raise EOFError("Unexpected EOF")
    return b


def read_section(f: BinaryIO, limit: Optional[int] = None) -> Optional[Tuple[CID, bytes]]:
    """Read the section at the current position.

    Returns None at end of data: either clean EOF or ``f.tell()`` reaching
    ``limit`` (the end of the CARv1 payload inside a CARv2 file).
    """
    if limit is not None and f.tell() >= limit:
        return None
    length = read_varint(f)
    if length is None:
        return None
    if length == 0 or length > MAX_SECTION_SIZE:
        raise ValueError(f"Bad section length {length}")
    if limit is not None and f.tell() + length > limit:
        raise ValueError("Section runs past end of CAR payload")
    body = read_exact(f, length)
    cid, used = CID.decode_prefix(body)
    return cid, body[used:]


def read_section_at(f: BinaryIO, offset: int, limit: Optional[int] = None) -> Tuple[CID, bytes]:
    f.seek(offset)
    section = read_section(f, limit)
    if section is None:
        raise EOFError("No section at offset")
    return section
