from __future__ import annotations

"""
MultihashIndexSorted (multicodec 0x0401) for the CARv2 trailer.

Layout (little endian)
- varint(0x0401)
- int32 number of multihash codes
- per code (ascending): uint64 code, int32 number of widths
- per width (ascending): uint32 width (digest length + 8), uint64 byte length,
  then digest || uint64 offset entries sorted by digest

Offsets point at the start of a section (its varint length) relative to the
beginning of the CARv1 payload.
"""

import struct
from typing import Dict, Iterable, List, Tuple

from .constants import INDEX_MULTIHASH_SORTED
from .hashutil import split_multihash
from .varint import varint_decode, varint_encode

_I32 = struct.Struct("<i")
_U32 = struct.Struct("<I")
_U64 = struct.Struct("<Q")


def dumps_index(entries: Iterable[Tuple[bytes, int]]) -> bytes:
    """Serialize (multihash, offset) pairs."""
    by_code: Dict[int, Dict[int, List[Tuple[bytes, int]]]] = {}
    for mh, offset in entries:
        code, digest = split_multihash(mh)
        by_code.setdefault(code, {}).setdefault(len(digest) + 8, []).append((digest, offset))
    out = bytearray(varint_encode(INDEX_MULTIHASH_SORTED))
    out += _I32.pack(len(by_code))
    for code in sorted(by_code):
        widths = by_code[code]
        out += _U64.pack(code)
        out += _I32.pack(len(widths))
        for width in sorted(widths):
            rows = sorted(widths[width])
            out += _U32.pack(width)
            out += _U64.pack(width * len(rows))
            for digest, offset in rows:
                out += digest + _U64.pack(offset)
    return bytes(out)


def _take(data: bytes, pos: int, st: struct.Struct):
    end = pos + st.size
    if end > len(data):
        raise ValueError("index truncated")
    return st.unpack(data[pos:end])[0], end


def loads_index(data: bytes) -> Dict[bytes, int]:
    """Parse an index into a multihash -> payload offset map."""
    codec, pos = varint_decode(data, 0)
    if codec != INDEX_MULTIHASH_SORTED:
        raise ValueError(f"unsupported CAR index codec 0x{codec:x}")
    out: Dict[bytes, int] = {}
    n_codes, pos = _take(data, pos, _I32)
    if n_codes < 0:
        raise ValueError("negative code count in index")
    for _ in range(n_codes):
        code, pos = _take(data, pos, _U64)
        n_widths, pos = _take(data, pos, _I32)
        if n_widths < 0:
            raise ValueError("negative width count in index")
        for _ in range(n_widths):
            width, pos = _take(data, pos, _U32)
            length, pos = _take(data, pos, _U64)
            if width <= 8 or length % width:
                raise ValueError("index bucket width/length mismatch")
            if pos + length > len(data):
                raise ValueError("index truncated")
            prefix = varint_encode(code) + varint_encode(width - 8)
            for row in range(pos, pos + length, width):
                digest = data[row : row + width - 8]
                offset = _U64.unpack(data[row + width - 8 : row + width])[0]
                out[prefix + digest] = offset
            pos += length
    if pos != len(data):
        raise ValueError("trailing bytes after index")
    return out
