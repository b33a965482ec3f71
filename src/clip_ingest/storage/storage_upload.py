"""Direct multipart upload of the transcoded clip to object storage."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field

import httpx

from ..config import StorageTarget
from ..ingest.ingest_errors import UploadRejected
from ..ingest.ingest_models import RemoteReference, TranscodeResult, UploadCredentials

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class RemoteUploader:
    """One POST per attempt; no chunking, no retry."""

    target: StorageTarget
    log: logging.Logger = field(default_factory=lambda: logger)

    async def upload(self, result: TranscodeResult, credentials: UploadCredentials) -> RemoteReference:
        credentials.consume()
        blob = result.take()
        form = {
            "api_key": credentials.api_key,
            "timestamp": credentials.timestamp,
            "signature": credentials.signature,
        }
        if credentials.folder:
            form["folder"] = credentials.folder
        if credentials.resource_type:
            form["resource_type"] = credentials.resource_type
        files = {"file": (result.filename, blob, result.output_mime)}
        url = self._upload_url(credentials)

        self.log.info(
            "storage.upload.start",
            extra={
                "size_bytes": len(blob),
                "content_type": result.output_mime,
                "used_fallback": result.used_fallback,
            },
        )
        try:
            async with httpx.AsyncClient(timeout=self.target.timeout_seconds) as client:
                response = await client.post(url, data=form, files=files)
        except httpx.HTTPError as exc:
            self.log.error("storage.upload.network_error", extra={"error": str(exc)})
            raise UploadRejected(None, str(exc)) from exc

        if not 200 <= response.status_code < 300:
            self.log.warning(
                "storage.upload.rejected",
                extra={"status": response.status_code, "body": response.text[:500]},
            )
            raise UploadRejected(response.status_code, response.text)

        try:
            body = response.json()
            reference = RemoteReference(url=str(body["secure_url"]), public_id=str(body["public_id"]))
        except (ValueError, KeyError, TypeError) as exc:
            raise UploadRejected(response.status_code, response.text) from exc

        self.log.info("storage.upload.done", extra={"public_id": reference.public_id})
        return reference

    def _upload_url(self, credentials: UploadCredentials) -> str:
        base = self.target.upload_base_url.rstrip("/")
        return f"{base}/{credentials.destination_cloud}/{credentials.resource_type}/upload"
