from __future__ import annotations

from dataclasses import dataclass, field
from typing import List, Optional

from .cid import CID
from .constants import UNIXFS_FILE
from .varint import WIRE_BYTES, WIRE_VARINT, iter_pb_fields, pb_bytes, pb_varint


@dataclass
class PBLink:
    cid: CID
    name: str = ""
    tsize: int = 0


@dataclass
class PBNode:
    links: List[PBLink] = field(default_factory=list)
    data: Optional[bytes] = None


@dataclass
class UnixFSData:
    type: int = UNIXFS_FILE
    data: Optional[bytes] = None
    filesize: Optional[int] = None
    blocksizes: List[int] = field(default_factory=list)


def encode_node(node: PBNode) -> bytes:
    """Canonical dag-pb encoding: every link (field 2) precedes the data (field 1)."""
    out = bytearray()
    for link in node.links:
        body = pb_bytes(1, link.cid.encode()) + pb_bytes(2, link.name.encode("utf-8")) + pb_varint(3, link.tsize)
        out += pb_bytes(2, body)
    if node.data is not None:
        out += pb_bytes(1, node.data)
    return bytes(out)


def decode_node(data: bytes) -> PBNode:
    node = PBNode()
    seen_data = False
    for num, wire, value in iter_pb_fields(data):
        if wire != WIRE_BYTES:
            raise ValueError("dag-pb: unexpected wire type")
        if num == 2:
            if seen_data:
                raise ValueError("dag-pb: links must precede data")
            node.links.append(_decode_link(value))
        elif num == 1:
            if seen_data:
                raise ValueError("dag-pb: duplicate data field")
            node.data = bytes(value)
            seen_data = True
        else:
            raise ValueError(f"dag-pb: unknown field {num}")
    return node


def _decode_link(data: bytes) -> PBLink:
    cid = None
    name = ""
    tsize = 0
    for num, wire, value in iter_pb_fields(data):
        if num == 1 and wire == WIRE_BYTES:
            cid = CID.decode(bytes(value))
        elif num == 2 and wire == WIRE_BYTES:
            name = bytes(value).decode("utf-8")
        elif num == 3 and wire == WIRE_VARINT:
            tsize = value
        else:
            raise ValueError(f"dag-pb link: unexpected field {num}")
    if cid is None:
        raise ValueError("dag-pb link without hash")
    return PBLink(cid=cid, name=name, tsize=tsize)


def encode_unixfs(meta: UnixFSData) -> bytes:
    out = bytearray(pb_varint(1, meta.type))
    if meta.data is not None:
        out += pb_bytes(2, meta.data)
    if meta.filesize is not None:
        out += pb_varint(3, meta.filesize)
    for size in meta.blocksizes:
        out += pb_varint(4, size)
    return bytes(out)


def decode_unixfs(data: bytes) -> UnixFSData:
    meta = UnixFSData(type=-1)
    for num, wire, value in iter_pb_fields(data):
        if num == 1 and wire == WIRE_VARINT:
            meta.type = value
        elif num == 2 and wire == WIRE_BYTES:
            meta.data = bytes(value)
        elif num == 3 and wire == WIRE_VARINT:
            meta.filesize = value
        elif num == 4 and wire == WIRE_VARINT:
            meta.blocksizes.append(value)
        # hashType, fanout, mode and mtime carry no file content
    if meta.type < 0:
        raise ValueError("unixfs: missing Type")
    return meta
