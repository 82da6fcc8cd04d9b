from __future__ import annotations

import struct
from dataclasses import dataclass
from typing import BinaryIO, List, Tuple

from .cid import CID
from .constants import CARV1_VERSION, CARV2_HEADER_SIZE, CARV2_PRAGMA
from .varint import read_varint, varint_encode


# CARv2 fixed header, little endian:
#   characteristics[16], data_offset u64, data_size u64, index_offset u64
_V2_HEADER_STRUCT = struct.Struct("<16sQQQ")
assert _V2_HEADER_STRUCT.size == CARV2_HEADER_SIZE

_MAX_V1_HEADER = 32 * 1024
_CID_TAG = 42


@dataclass
class CarV2Header:
    characteristics: bytes
    data_offset: int
    data_size: int
    index_offset: int

    def pack(self) -> bytes:
        return CARV2_PRAGMA + _V2_HEADER_STRUCT.pack(
            self.characteristics, self.data_offset, self.data_size, self.index_offset
        )


def read_v2_header(f: BinaryIO) -> CarV2Header:
    f.seek(0)
    pragma = f.read(len(CARV2_PRAGMA))
    if pragma != CARV2_PRAGMA:
        raise ValueError("Bad CARv2 pragma")
    raw = f.read(_V2_HEADER_STRUCT.size)
    if len(raw) != _V2_HEADER_STRUCT.size:
        raise ValueError("CARv2 header too short")
    chars, data_offset, data_size, index_offset = _V2_HEADER_STRUCT.unpack(raw)
    return CarV2Header(chars, data_offset, data_size, index_offset)


# -------- minimal dag-cbor for the CARv1 header --------

def _cbor_head(major: int, n: int) -> bytes:
    if n < 24:
        return bytes([(major << 5) | n])
    if n < 0x100:
        return bytes([(major << 5) | 24, n])
    if n < 0x10000:
        return bytes([(major << 5) | 25]) + struct.pack(">H", n)
    if n < 0x100000000:
        return bytes([(major << 5) | 26]) + struct.pack(">I", n)
    return bytes([(major << 5) | 27]) + struct.pack(">Q", n)


def _cbor_text(s: str) -> bytes:
    b = s.encode("utf-8")
    return _cbor_head(3, len(b)) + b


def _cbor_cid(cid: CID) -> bytes:
    # Tag 42 wraps the binary CID behind the identity multibase prefix 0x00
    raw = b"\x00" + cid.encode()
    return b"\xd8\x2a" + _cbor_head(2, len(raw)) + raw


def encode_v1_header(roots: List[CID]) -> bytes:
    """Return the varint-framed dag-cbor header ``{roots, version}``.

    Map keys are in dag-cbor canonical order (shorter key first).
    """
    body = bytearray(_cbor_head(5, 2))
    body += _cbor_text("roots")
    body += _cbor_head(4, len(roots))
    for root in roots:
        body += _cbor_cid(root)
    body += _cbor_text("version")
    body += _cbor_head(0, CARV1_VERSION)
    return varint_encode(len(body)) + bytes(body)


def _cbor_read_head(data: bytes, pos: int) -> Tuple[int, int, int]:
    if pos >= len(data):
        raise ValueError("cbor: truncated")
    ib = data[pos]
    pos += 1
    major, info = ib >> 5, ib & 0x1F
    if info < 24:
        return major, info, pos
    widths = {24: 1, 25: 2, 26: 4, 27: 8}
    if info not in widths:
        raise ValueError("cbor: indefinite lengths are not dag-cbor")
    w = widths[info]
    if pos + w > len(data):
        raise ValueError("cbor: truncated")
    return major, int.from_bytes(data[pos : pos + w], "big"), pos + w


def _cbor_decode(data: bytes, pos: int, depth: int = 0):
    if depth > 16:
        raise ValueError("cbor: nesting too deep")
    major, arg, pos = _cbor_read_head(data, pos)
    if major == 0:
        return arg, pos
    if major in (2, 3):
        end = pos + arg
        if end > len(data):
            raise ValueError("cbor: truncated string")
        raw = data[pos:end]
        return (raw if major == 2 else raw.decode("utf-8")), end
    if major == 4:
        items = []
        for _ in range(arg):
            item, pos = _cbor_decode(data, pos, depth + 1)
            items.append(item)
        return items, pos
    if major == 5:
        out = {}
        for _ in range(arg):
            key, pos = _cbor_decode(data, pos, depth + 1)
            if not isinstance(key, str):
                raise ValueError("cbor: map keys must be strings")
            out[key], pos = _cbor_decode(data, pos, depth + 1)
        return out, pos
    if major == 6 and arg == _CID_TAG:
        raw, pos = _cbor_decode(data, pos, depth + 1)
        if not isinstance(raw, bytes) or not raw.startswith(b"\x00"):
            raise ValueError("cbor: malformed CID link")
        return CID.decode(raw[1:]), pos
    raise ValueError(f"cbor: unsupported major type {major}")


def read_v1_header(f: BinaryIO) -> Tuple[List[CID], int]:
    """Parse the CARv1 header at the current position; returns (roots, bytes consumed)."""
    start = f.tell()
    length = read_varint(f)
    if length is None or length == 0:
        raise ValueError("CARv1 header missing")
    if length > _MAX_V1_HEADER:
        raise ValueError("CARv1 header too large")
    body = f.read(length)
    if len(body) != length:
        raise EOFError("Unexpected EOF in CARv1 header")
    header, used = _cbor_decode(body, 0)
    if used != length or not isinstance(header, dict):
        raise ValueError("CARv1 header is not a single map")
    if header.get("version") != CARV1_VERSION:
        raise ValueError(f"Unsupported CAR version {header.get('version')!r}")
    roots = header.get("roots")
    if not isinstance(roots, list) or not roots or not all(isinstance(r, CID) for r in roots):
        raise ValueError("CARv1 header roots must be a non-empty list of CIDs")
    return roots, f.tell() - start
