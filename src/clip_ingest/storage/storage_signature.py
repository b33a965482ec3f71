"""Signed-upload credential negotiation with the application backend."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any

import httpx

from ..config import BackendEndpoints, CredentialShape, StorageTarget
from ..ingest.ingest_errors import SignatureDenied
from ..ingest.ingest_models import UploadCredentials

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class SignatureClient:
    """Requests fresh single-use credentials; never caches or retries."""

    endpoints: BackendEndpoints
    target: StorageTarget
    shape: CredentialShape = field(default_factory=CredentialShape)
    log: logging.Logger = field(default_factory=lambda: logger)

    async def request_credentials(self) -> UploadCredentials:
        url = self.endpoints.url(self.endpoints.signature_path)
        payload: dict[str, Any] = {"resource_type": self.target.resource_type}
        if self.target.folder:
            payload["folder"] = self.target.folder

        try:
            async with httpx.AsyncClient(timeout=self.endpoints.timeout_seconds) as client:
                response = await client.post(
                    url,
                    headers=self.endpoints.auth_headers(),
                    json=payload,
                )
        except httpx.HTTPError as exc:
            self.log.error("storage.signature.network_error", extra={"error": str(exc)})
            raise SignatureDenied(f"signature request failed: {exc}") from exc

        if response.status_code >= 400:
            self.log.warning(
                "storage.signature.http_error",
                extra={"status": response.status_code, "body_size": len(response.text)},
            )
            raise SignatureDenied(
                f"failed to get upload signature: {response.status_code} {response.text}"
            )

        try:
            body = response.json()
        except ValueError as exc:
            raise SignatureDenied("signature response is not JSON") from exc
        if not isinstance(body, dict):
            raise SignatureDenied("signature response is not an object")

        error = body.get(self.shape.error_field)
        if error:
            self.log.warning("storage.signature.denied", extra={"error": str(error)})
            raise SignatureDenied(f"signature denied: {error}")

        return self._parse_credentials(body)

    def _parse_credentials(self, body: dict[str, Any]) -> UploadCredentials:
        api_key = body.get(self.shape.api_key_field)
        signature = body.get(self.shape.signature_field)
        timestamp = body.get(self.shape.timestamp_field)
        missing = [
            name
            for name, value in (
                (self.shape.api_key_field, api_key),
                (self.shape.signature_field, signature),
                (self.shape.timestamp_field, timestamp),
            )
            if value in (None, "")
        ]
        if missing:
            raise SignatureDenied(f"signature response missing {', '.join(missing)}")
        self.log.info("storage.signature.issued", extra={"timestamp": str(timestamp)})
        return UploadCredentials(
            api_key=str(api_key),
            signature=str(signature),
            timestamp=str(timestamp),
            destination_cloud=self.target.cloud_name,
            folder=self.target.folder,
            resource_type=self.target.resource_type,
        )
