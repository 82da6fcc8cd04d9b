from __future__ import annotations

import base64
from dataclasses import dataclass
from typing import Tuple, Union

from .constants import CID_VERSION, CODEC_DAG_PB, MH_SHA2_256, MH_SHA2_256_LEN, MULTIBASE_BASE32
from .hashutil import multihash_sha256, split_multihash
from .varint import varint_decode, varint_encode

_B58_ALPHABET = "123456789ABCDEFGHJKLMNPQRSTUVWXYZabcdefghijkmnopqrstuvwxyz"


def _b58encode(data: bytes) -> str:
    n = int.from_bytes(data, "big")
    out = []
    while n:
        n, rem = divmod(n, 58)
        out.append(_B58_ALPHABET[rem])
    pad = len(data) - len(data.lstrip(b"\x00"))
    return "1" * pad + "".join(reversed(out))


def _b58decode(text: str) -> bytes:
    n = 0
    for ch in text:
        idx = _B58_ALPHABET.find(ch)
        if idx < 0:
            raise ValueError(f"invalid base58 character {ch!r}")
        n = n * 58 + idx
    body = n.to_bytes((n.bit_length() + 7) // 8, "big") if n else b""
    pad = len(text) - len(text.lstrip("1"))
    return b"\x00" * pad + body


@dataclass(frozen=True)
class CID:
    """Content identifier: (version, codec, multihash).

    Version 1 CIDs render as lowercase base32 with the ``b`` multibase prefix;
    version 0 CIDs (sha2-256 dag-pb only) render as bare base58btc.
    """

    version: int
    codec: int
    multihash: bytes

    @classmethod
    def for_block(cls, codec: int, data: bytes) -> "CID":
        return cls(CID_VERSION, codec, multihash_sha256(data))

    @property
    def digest(self) -> bytes:
        return split_multihash(self.multihash)[1]

    def encode(self) -> bytes:
        if self.version == 0:
            return self.multihash
        return varint_encode(self.version) + varint_encode(self.codec) + self.multihash

    def __str__(self) -> str:
        if self.version == 0:
            return _b58encode(self.multihash)
        text = base64.b32encode(self.encode()).decode("ascii").lower().rstrip("=")
        return MULTIBASE_BASE32 + text

    def __repr__(self) -> str:
        return f"CID({self})"

    @classmethod
    def decode(cls, value: Union[str, bytes, "CID"]) -> "CID":
        """Parse a CID from its text form or its binary form."""
        if isinstance(value, CID):
            return value
        if isinstance(value, str):
            value = value.strip()
            if len(value) == 46 and value.startswith("Qm"):
                raw = _b58decode(value)
            elif value.startswith(MULTIBASE_BASE32):
                body = value[1:].upper()
                body += "=" * (-len(body) % 8)
                try:
                    raw = base64.b32decode(body)
                except ValueError as exc:
                    raise ValueError(f"invalid base32 CID: {value}") from exc
            else:
                raise ValueError(f"unsupported CID encoding: {value!r}")
        else:
            raw = bytes(value)
        cid, used = cls.decode_prefix(raw)
        if used != len(raw):
            raise ValueError("trailing bytes after CID")
        return cid

    @classmethod
    def decode_prefix(cls, data: bytes) -> Tuple["CID", int]:
        """Parse a binary CID at the start of ``data``; returns (cid, bytes consumed)."""
        if len(data) >= 2 and data[0] == MH_SHA2_256 and data[1] == MH_SHA2_256_LEN:
            end = 2 + MH_SHA2_256_LEN
            if len(data) < end:
                raise ValueError("truncated CIDv0")
            return cls(0, CODEC_DAG_PB, bytes(data[:end])), end
        version, pos = varint_decode(data, 0)
        if version != CID_VERSION:
            raise ValueError(f"unsupported CID version {version}")
        codec, pos = varint_decode(data, pos)
        mh_start = pos
        _code, pos = varint_decode(data, pos)
        length, pos = varint_decode(data, pos)
        end = pos + length
        if end > len(data):
            raise ValueError("truncated multihash")
        return cls(version, codec, bytes(data[mh_start:end])), end
