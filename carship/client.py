from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional

import httpx

from .cid import CID
from .constants import DEFAULT_ENDPOINT, DEFAULT_UPLOAD_CHUNK_SIZE
from .errors import TransferFailure
from .reader import CarIndexedReader

log = logging.getLogger(__name__)

CAR_CONTENT_TYPE = "application/car"
DEFAULT_TIMEOUT = httpx.Timeout(60.0, connect=10.0)


@dataclass
class RemoteStatus:
    cid: str
    pin_status: Optional[str] = None
    created: Optional[str] = None
    size: Optional[int] = None
    deals: List[Dict[str, Any]] = field(default_factory=list)

    @classmethod
    def from_json(cls, value: Dict[str, Any]) -> "RemoteStatus":
        """Build from the ``value`` object of a status reply; ValueError if its shape is wrong."""
        pin = value.get("pin") or {}
        deals = value.get("deals") or []
        size = value.get("size")
        if not isinstance(pin, dict):
            raise ValueError(f"pin must be an object, got {type(pin).__name__}")
        if not isinstance(deals, list):
            raise ValueError(f"deals must be a list, got {type(deals).__name__}")
        if size is not None and (isinstance(size, bool) or not isinstance(size, int)):
            raise ValueError(f"size must be an integer, got {size!r}")
        status = pin.get("status")
        created = value.get("created")
        return cls(
            cid=str(value.get("cid", "")),
            pin_status=None if status is None else str(status),
            created=None if created is None else str(created),
            size=size,
            deals=list(deals),
        )


class StorageClient:
    """Async client for an nft.storage-compatible HTTP API.

    Only two calls are used: ``POST /upload`` with a CAR body and
    ``GET /<cid>`` for pin status. Transport errors, non-2xx responses and
    malformed bodies all surface as ``TransferFailure``.
    """

    def __init__(
        self,
        api_key: str,
        endpoint: str = DEFAULT_ENDPOINT,
        *,
        http_client: Optional[httpx.AsyncClient] = None,
        upload_chunk_size: int = DEFAULT_UPLOAD_CHUNK_SIZE,
    ):
        self.endpoint = endpoint.rstrip("/")
        self.upload_chunk_size = upload_chunk_size
        self._headers = {"Authorization": f"Bearer {api_key}"}
        self._owns_client = http_client is None
        self._http = http_client or httpx.AsyncClient(timeout=DEFAULT_TIMEOUT)

    async def __aenter__(self):
        return self

    async def __aexit__(self, exc_type, exc, tb):
        await self.aclose()

    async def aclose(self) -> None:
        if self._owns_client:
            await self._http.aclose()

    async def store_car(self, reader: CarIndexedReader, on_progress: Optional[Callable[[int], None]] = None) -> CID:
        """Upload the container in CAR-sized pieces and return the CID the service reports.

        ``on_progress`` receives the byte size of each piece once the service
        has acknowledged it.
        """
        cid: Optional[CID] = None
        pieces = reader.iter_car_chunks(self.upload_chunk_size)
        while True:
            # each piece is read from disk off the event loop
            piece = await asyncio.to_thread(next, pieces, None)
            if piece is None:
                break
            body = await self._request(
                "POST",
                "/upload",
                content=piece,
                headers={"Content-Type": CAR_CONTENT_TYPE},
            )
            cid = self._parse_cid(body)
            log.debug("stored %d byte CAR piece, service reported %s", len(piece), cid)
            if on_progress is not None:
                on_progress(len(piece))
        if cid is None:
            raise TransferFailure("container produced no upload pieces")
        return cid

    async def status(self, cid) -> Optional[RemoteStatus]:
        """Return the service's record for ``cid``, or None when it is unknown."""
        body = await self._request("GET", f"/{cid}", allow_missing=True)
        if body is None:
            return None
        value = body.get("value")
        if not isinstance(value, dict):
            raise TransferFailure(f"malformed status response for {cid}")
        try:
            return RemoteStatus.from_json(value)
        except ValueError as exc:
            raise TransferFailure(f"malformed status response for {cid}: {exc}") from exc

    # internals
    async def _request(self, method: str, path: str, *, allow_missing: bool = False, **kwargs) -> Optional[Dict[str, Any]]:
        headers = dict(self._headers)
        headers.update(kwargs.pop("headers", {}) or {})
        url = self.endpoint + path
        try:
            resp = await self._http.request(method, url, headers=headers, **kwargs)
        except httpx.HTTPError as exc:
            raise TransferFailure(f"{method} {url} failed: {exc}") from exc
        if allow_missing and resp.status_code == 404:
            return None
        try:
            body = resp.json()
        except ValueError:
            body = None
        if resp.status_code >= 400 or not isinstance(body, dict) or not body.get("ok", False):
            raise TransferFailure(f"{method} {url} -> HTTP {resp.status_code}: {_error_message(body, resp)}")
        return body

    @staticmethod
    def _parse_cid(body: Optional[Dict[str, Any]]) -> CID:
        value = (body or {}).get("value") or {}
        raw = value.get("cid") if isinstance(value, dict) else None
        if not raw:
            raise TransferFailure("upload response did not include a cid")
        try:
            return CID.decode(str(raw))
        except ValueError as exc:
            raise TransferFailure(f"upload response cid {raw!r} is not valid: {exc}") from exc


def _error_message(body: Any, resp: httpx.Response) -> str:
    if isinstance(body, dict):
        err = body.get("error")
        if isinstance(err, dict) and err.get("message"):
            return str(err["message"])
        if isinstance(err, str):
            return err
    return resp.text[:200] or resp.reason_phrase
