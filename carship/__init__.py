"""
carship: verified CAR uploads to content-addressed storage.

Features:

- Deterministic UnixFS chunking (raw leaves, balanced dag-pb tree) with CIDv1 roots.
- Indexed CARv2 containers with random access by CID and DAG reassembly.
- Uploads split into standalone CAR pieces with per-piece progress.
- Identifier reconciliation with bounded repack/retry and an append-only dead-letter log.
- Wave-based batch scheduling with an explicit concurrency ceiling.
"""

__version__ = "0.1"

__all__ = [
    "constants",
    "packer",
    "writer",
    "reader",
    "client",
    "pipeline",
    "batch",
]

# Programmatic API: carship.packer.pack_file, carship.reader.CarIndexedReader,
# carship.pipeline.TransferPipeline and carship.cli.upload_directory.
