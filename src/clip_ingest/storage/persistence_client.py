"""Commit / remove the stored remote reference on the application backend."""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field
from typing import Any

import httpx

from ..config import BackendEndpoints
from ..ingest.ingest_errors import PersistFailed
from ..ingest.ingest_models import RemoteReference

logger = logging.getLogger(__name__)

_PUBLIC_ID_RE = re.compile(r"/upload/[^/]+/(.+?)\.")


def extract_public_id(url: str | None) -> str | None:
    """Derive ``folder/name`` from ``.../upload/<version>/<folder>/<name>.<ext>``."""
    if not url:
        return None
    match = _PUBLIC_ID_RE.search(url)
    if match and match.group(1):
        return match.group(1)
    return None


@dataclass(slots=True)
class PersistenceClient:
    endpoints: BackendEndpoints
    log: logging.Logger = field(default_factory=lambda: logger)

    async def commit(self, reference: RemoteReference) -> None:
        """Store the reference; a failure here leaves the remote object orphaned."""
        payload = {"videoUrl": reference.url, "publicId": reference.public_id}
        await self._send("POST", payload, event="persistence.commit")
        self.log.info("persistence.commit.done", extra={"public_id": reference.public_id})

    async def remove(self, record_id: str, public_id: str) -> None:
        payload = {"id": record_id, "publicId": public_id}
        await self._send("DELETE", payload, event="persistence.remove")
        self.log.info("persistence.remove.done", extra={"record_id": record_id})

    async def remove_stored(self, record_id: str, video_url: str) -> None:
        public_id = extract_public_id(video_url)
        if public_id is None:
            raise PersistFailed(
                f"cannot derive public id from {video_url!r}",
                user_message="Failed to extract video information. Please try again.",
            )
        await self.remove(record_id, public_id)

    async def refresh_status(self) -> Any:
        url = self.endpoints.url(self.endpoints.status_path)
        try:
            async with httpx.AsyncClient(timeout=self.endpoints.timeout_seconds) as client:
                response = await client.get(url, headers=self.endpoints.auth_headers())
        except httpx.HTTPError as exc:
            raise PersistFailed(f"status refetch failed: {exc}") from exc
        if response.status_code != 200:
            raise PersistFailed(f"status refetch returned {response.status_code}")
        try:
            return response.json()
        except ValueError as exc:
            raise PersistFailed("status response is not JSON") from exc

    async def _send(self, method: str, payload: dict[str, str], *, event: str) -> None:
        url = self.endpoints.url(self.endpoints.persistence_path)
        try:
            async with httpx.AsyncClient(timeout=self.endpoints.timeout_seconds) as client:
                response = await client.request(
                    method,
                    url,
                    headers=self.endpoints.auth_headers(),
                    json=payload,
                )
        except httpx.HTTPError as exc:
            self.log.error(f"{event}.network_error", extra={"error": str(exc)})
            raise PersistFailed(f"{method} {url} failed: {exc}") from exc
        if not 200 <= response.status_code < 300:
            self.log.warning(
                f"{event}.http_error",
                extra={"status": response.status_code, "body": response.text[:500]},
            )
            raise PersistFailed(f"{method} {url} returned {response.status_code}")
