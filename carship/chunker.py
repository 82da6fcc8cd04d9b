from __future__ import annotations

from dataclasses import dataclass
from typing import BinaryIO, Callable, Iterator, List

from .cid import CID
from .constants import CODEC_DAG_PB, CODEC_RAW, UNIXFS_DIRECTORY, UNIXFS_FILE
from .dagpb import PBLink, PBNode, UnixFSData, encode_node, encode_unixfs


@dataclass
class DagLink:
    """A built node as seen from its parent."""

    cid: CID
    tsize: int  # bytes of this node plus everything below it
    filesize: int  # file content bytes below this node


def iter_chunks(fh: BinaryIO, chunk_size: int) -> Iterator[bytes]:
    """Yield fixed-size chunks; only the last one may be short."""
    if chunk_size <= 0:
        raise ValueError("chunk_size must be positive")
    while True:
        raw = fh.read(chunk_size)
        if not raw:
            return
        while len(raw) < chunk_size:
            more = fh.read(chunk_size - len(raw))
            if not more:
                break
            raw += more
        yield raw


class DagBuilder:
    """Builds a balanced UnixFS file DAG with raw leaves.

    Every block is handed to ``put`` as soon as its CID is known, so the
    caller can stream blocks to a container while the tree grows.
    """

    def __init__(self, put: Callable[[CID, bytes], object], max_children: int):
        if max_children < 2:
            raise ValueError("max_children must be at least 2")
        self.put = put
        self.max_children = max_children

    def add_leaf(self, data: bytes) -> DagLink:
        cid = CID.for_block(CODEC_RAW, data)
        self.put(cid, data)
        return DagLink(cid=cid, tsize=len(data), filesize=len(data))

    def _emit_node(self, node: PBNode, filesize: int) -> DagLink:
        raw = encode_node(node)
        cid = CID.for_block(CODEC_DAG_PB, raw)
        self.put(cid, raw)
        return DagLink(cid=cid, tsize=len(raw) + sum(link.tsize for link in node.links), filesize=filesize)

    def _parent(self, children: List[DagLink]) -> DagLink:
        filesize = sum(c.filesize for c in children)
        meta = UnixFSData(type=UNIXFS_FILE, filesize=filesize, blocksizes=[c.filesize for c in children])
        node = PBNode(links=[PBLink(c.cid, "", c.tsize) for c in children], data=encode_unixfs(meta))
        return self._emit_node(node, filesize)

    def build(self, leaves: List[DagLink]) -> DagLink:
        if not leaves:
            return self.add_leaf(b"")
        level = leaves
        while len(level) > 1:
            level = [self._parent(level[i : i + self.max_children]) for i in range(0, len(level), self.max_children)]
        return level[0]

    def wrap(self, name: str, child: DagLink) -> DagLink:
        """Place ``child`` in a single-entry UnixFS directory."""
        node = PBNode(
            links=[PBLink(child.cid, name, child.tsize)],
            data=encode_unixfs(UnixFSData(type=UNIXFS_DIRECTORY)),
        )
        return self._emit_node(node, child.filesize)
