from __future__ import annotations

import hashlib

from .constants import MH_SHA2_256, MH_SHA2_256_LEN
from .varint import varint_decode, varint_encode


def sha256(data: bytes) -> bytes:
    return hashlib.sha256(data).digest()


def multihash_sha256(data: bytes) -> bytes:
    """Return the sha2-256 multihash (code || length || digest) of ``data``."""
    return varint_encode(MH_SHA2_256) + varint_encode(MH_SHA2_256_LEN) + sha256(data)


def split_multihash(mh: bytes):
    """Return (code, digest) for a multihash, validating the declared length."""
    code, pos = varint_decode(mh, 0)
    length, pos = varint_decode(mh, pos)
    digest = mh[pos:]
    if len(digest) != length:
        raise ValueError("multihash length mismatch")
    return code, digest
