"""Client for the IPFS HTTP API that stores uploaded content."""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass

import httpx

logger = logging.getLogger(__name__)


class IpfsError(RuntimeError):
    """Raised when the IPFS node rejects a request or cannot be reached."""


class IpfsNotFoundError(IpfsError):
    """Raised when requested content is not available."""


@dataclass(frozen=True)
class IpfsAddResult:
    hash: str
    name: str
    size: str


class IpfsClient:
    """Thin async wrapper around ``/api/v0/add`` and ``/api/v0/cat``."""

    def __init__(
        self,
        api_url: str,
        timeout_seconds: float = 30.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.api_url = api_url.rstrip("/")
        self._timeout = httpx.Timeout(timeout_seconds)
        self._transport = transport
        self._client: httpx.AsyncClient | None = None
        self._client_lock = asyncio.Lock()

    async def _ensure_client(self) -> httpx.AsyncClient:
        async with self._client_lock:
            if self._client is None:
                self._client = httpx.AsyncClient(
                    base_url=self.api_url,
                    timeout=self._timeout,
                    transport=self._transport,
                )
            return self._client

    async def add(self, filename: str, content: bytes, content_type: str | None) -> IpfsAddResult:
        """Upload and pin `content`, returning the node's description of it."""
        client = await self._ensure_client()
        files = {"file": (filename, content, content_type or "application/octet-stream")}
        try:
            response = await client.post("/api/v0/add", params={"pin": "true"}, files=files)
        except httpx.HTTPError as exc:
            raise IpfsError(f"IPFS add request failed: {exc}") from exc

        if response.status_code != httpx.codes.OK:
            raise IpfsError(f"IPFS add returned {response.status_code}: {response.text[:200]}")

        try:
            data = response.json()
            return IpfsAddResult(hash=data["Hash"], name=data["Name"], size=str(data["Size"]))
        except (ValueError, KeyError) as exc:
            raise IpfsError(f"Unexpected IPFS add response: {exc}") from exc

    async def cat(self, cid: str) -> bytes:
        """Return the content addressed by `cid`."""
        client = await self._ensure_client()
        try:
            response = await client.post("/api/v0/cat", params={"arg": cid})
        except httpx.HTTPError as exc:
            raise IpfsError(f"IPFS cat request failed: {exc}") from exc

        if response.status_code != httpx.codes.OK:
            raise IpfsNotFoundError(f"IPFS cat returned {response.status_code} for {cid}")
        return response.content

    async def close(self) -> None:
        if self._client is not None:
            await self._client.aclose()
            self._client = None
