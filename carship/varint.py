from __future__ import annotations

"""
Unsigned LEB128 varints and the protobuf wire primitives built on them.

Protobuf fields used by dag-pb and UnixFS
- key: varint((field_number << 3) | wire_type)
- wire type 0: varint payload
- wire type 2: varint(length) || payload
"""

from typing import BinaryIO, List, Optional, Tuple

WIRE_VARINT = 0
WIRE_BYTES = 2


def varint_encode(n: int) -> bytes:
    if n < 0:
        raise ValueError("varint: negative not supported")
    out = bytearray()
    while True:
        b = n & 0x7F
        n >>= 7
        if n:
            out.append(b | 0x80)
        else:
            out.append(b)
            break
    return bytes(out)


def varint_decode(data: bytes, pos: int = 0) -> Tuple[int, int]:
    shift = 0
    result = 0
    while True:
        if pos >= len(data):
            raise ValueError("varint: truncated")
        b = data[pos]
        pos += 1
        result |= (b & 0x7F) << shift
        if not (b & 0x80):
            return result, pos
        shift += 7
        if shift > 63:
            raise ValueError("varint: too large")


def read_varint(f: BinaryIO) -> Optional[int]:
    """Read one varint from a stream; None on clean EOF before the first byte."""
    shift = 0
    result = 0
    first = True
    while True:
        b = f.read(1)
        if not b:
            if first:
                return None
            raise ValueError("varint: truncated")
        first = False
        result |= (b[0] & 0x7F) << shift
        if not (b[0] & 0x80):
            return result
        shift += 7
        if shift > 63:
            raise ValueError("varint: too large")


def pb_varint(field: int, value: int) -> bytes:
    return varint_encode((field << 3) | WIRE_VARINT) + varint_encode(value)


def pb_bytes(field: int, payload: bytes) -> bytes:
    return varint_encode((field << 3) | WIRE_BYTES) + varint_encode(len(payload)) + payload


def iter_pb_fields(data: bytes) -> List[Tuple[int, int, object]]:
    """Split a protobuf message into (field, wire_type, value) triples.

    Only the wire types dag-pb and UnixFS use are accepted.
    """
    items: List[Tuple[int, int, object]] = []
    pos = 0
    n = len(data)
    while pos < n:
        key, pos = varint_decode(data, pos)
        field, wire = key >> 3, key & 0x7
        if wire == WIRE_VARINT:
            value, pos = varint_decode(data, pos)
            items.append((field, wire, value))
        elif wire == WIRE_BYTES:
            ln, pos = varint_decode(data, pos)
            if pos + ln > n:
                raise ValueError("protobuf length out of range")
            items.append((field, wire, data[pos : pos + ln]))
            pos += ln
        else:
            raise ValueError(f"unsupported protobuf wire type {wire}")
    return items
