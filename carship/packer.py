from __future__ import annotations

import logging
import os
from dataclasses import dataclass

from .chunker import DagBuilder, iter_chunks
from .cid import CID
from .constants import DEFAULT_CHUNK_SIZE, DEFAULT_MAX_CHILDREN
from .errors import PackFailure
from .writer import CarWriter

log = logging.getLogger(__name__)


@dataclass
class PackResult:
    root: CID
    car_path: str
    block_count: int
    size: int  # container bytes on disk


def pack_file(
    source_path: str,
    car_path: str,
    *,
    chunk_size: int = DEFAULT_CHUNK_SIZE,
    max_children: int = DEFAULT_MAX_CHILDREN,
    wrap_with_directory: bool = False,
) -> PackResult:
    """Chunk and hash ``source_path`` into a CARv2 container at ``car_path``.

    The file is read ``chunk_size`` bytes at a time and each block is written
    to the container as soon as it is hashed. On any failure the partially
    written container is removed and ``PackFailure`` is raised.
    """
    try:
        with CarWriter(car_path) as writer:
            builder = DagBuilder(writer.put, max_children)
            with open(source_path, "rb") as rf:
                leaves = [builder.add_leaf(chunk) for chunk in iter_chunks(rf, chunk_size)]
            top = builder.build(leaves)
            if wrap_with_directory:
                top = builder.wrap(os.path.basename(source_path), top)
            size = writer.finalize([top.cid])
            count = writer.block_count
    except (OSError, ValueError, RuntimeError) as exc:
        _discard_partial(car_path)
        raise PackFailure(source_path, exc) from exc
    log.debug("packed %s into %s (%d blocks, root %s)", source_path, car_path, count, top.cid)
    return PackResult(root=top.cid, car_path=car_path, block_count=count, size=size)


def _discard_partial(car_path: str) -> None:
    try:
        os.remove(car_path)
    except FileNotFoundError:
        pass
    except OSError as exc:
        # The pipeline's cleanup step retries the removal and reports it.
        log.warning("could not remove partial container %s: %s", car_path, exc)
