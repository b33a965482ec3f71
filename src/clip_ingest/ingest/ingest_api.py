"""HTTP routes over the ingestion pipeline."""

from __future__ import annotations

import logging
from typing import NoReturn

from fastapi import APIRouter, Depends, File, HTTPException, Request, UploadFile, status

from .ingest_errors import IngestError, InvalidTransitionError
from .ingest_models import FailureReason
from .ingest_pipeline import IngestionPipeline, PipelineSnapshot
from .ingest_schemas import (
    AssetSchema,
    FailureSchema,
    NarrationSchema,
    PipelineStatusSchema,
    ReferenceSchema,
    RemoveReferenceRequest,
    ValidationSchema,
)

router = APIRouter(prefix="/api/clip-ingest", tags=["clip-ingest"])
logger = logging.getLogger(__name__)

_HTTP_STATUS_BY_REASON: dict[FailureReason, int] = {
    FailureReason.INVALID_SOURCE_TYPE: status.HTTP_415_UNSUPPORTED_MEDIA_TYPE,
    FailureReason.SOURCE_TOO_LARGE: status.HTTP_413_REQUEST_ENTITY_TOO_LARGE,
    FailureReason.DURATION_UNAVAILABLE: status.HTTP_422_UNPROCESSABLE_ENTITY,
    FailureReason.DURATION_EXCEEDED: status.HTTP_422_UNPROCESSABLE_ENTITY,
    FailureReason.TRANSCODE_FAILED: status.HTTP_502_BAD_GATEWAY,
    FailureReason.SIGNATURE_DENIED: status.HTTP_502_BAD_GATEWAY,
    FailureReason.UPLOAD_REJECTED: status.HTTP_502_BAD_GATEWAY,
    FailureReason.PERSIST_FAILED: status.HTTP_502_BAD_GATEWAY,
    FailureReason.CAMERA_ACCESS_DENIED: status.HTTP_403_FORBIDDEN,
    FailureReason.PIPELINE_BUSY: status.HTTP_409_CONFLICT,
    FailureReason.NO_MEDIA_SELECTED: status.HTTP_409_CONFLICT,
}


def get_pipeline(request: Request) -> IngestionPipeline:
    """Fetch the pipeline from application state."""
    try:
        return request.app.state.ingest_pipeline  # type: ignore[attr-defined]
    except AttributeError as exc:  # pragma: no cover - misconfigured app
        raise RuntimeError("IngestionPipeline is not configured") from exc


def status_from_snapshot(snapshot: PipelineSnapshot) -> PipelineStatusSchema:
    asset = snapshot.asset
    validation = snapshot.validation
    error = snapshot.error
    narration = snapshot.narration
    reference = snapshot.reference
    return PipelineStatusSchema(
        state=snapshot.state,
        asset=(
            AssetSchema(
                filename=asset.filename,
                mime_type=asset.mime_type,
                size_bytes=asset.size_bytes,
                source_kind=asset.source_kind.value,
                duration_seconds=asset.duration_seconds,
            )
            if asset
            else None
        ),
        validation=(
            ValidationSchema(
                ok=validation.ok,
                max_allowed_seconds=validation.max_allowed_seconds,
                max_allowed_bytes=validation.max_allowed_bytes,
                duration_seconds=validation.duration_seconds,
                reason_code=validation.reason_code.value if validation.reason_code else None,
                message=validation.message,
            )
            if validation
            else None
        ),
        error=(
            FailureSchema(
                failure_reason=error.reason.value,
                message=error.message,
                failed_in=error.state.value,
            )
            if error
            else None
        ),
        narration=(
            NarrationSchema(
                stage=narration.stage.value,
                message=narration.message,
                elapsed_seconds=narration.elapsed_seconds,
            )
            if narration
            else None
        ),
        reference=(
            ReferenceSchema(url=reference.url, public_id=reference.public_id)
            if reference
            else None
        ),
        used_fallback=snapshot.used_fallback,
        camera_active=snapshot.camera_active,
        recording=snapshot.recording,
        recording_remaining_seconds=snapshot.recording_remaining_seconds,
    )


def _raise_http(exc: IngestError) -> NoReturn:
    status_code = _HTTP_STATUS_BY_REASON.get(
        exc.reason, status.HTTP_500_INTERNAL_SERVER_ERROR
    )
    logger.warning(
        "ingest.api.request_failed",
        extra={"failure_reason": exc.reason.value, "status_code": status_code},
    )
    raise HTTPException(
        status_code=status_code,
        detail={
            "status": "error",
            "failure_reason": exc.reason.value,
            "message": exc.user_message,
        },
    ) from exc


def _raise_conflict(exc: InvalidTransitionError) -> NoReturn:
    raise HTTPException(
        status_code=status.HTTP_409_CONFLICT,
        detail={
            "status": "error",
            "failure_reason": FailureReason.PIPELINE_BUSY.value,
            "message": str(exc),
        },
    ) from exc


@router.get("/state", response_model=PipelineStatusSchema)
async def get_state(pipeline: IngestionPipeline = Depends(get_pipeline)) -> PipelineStatusSchema:
    return status_from_snapshot(pipeline.snapshot())


@router.post("/file", response_model=PipelineStatusSchema)
async def select_file(
    file: UploadFile = File(...),
    pipeline: IngestionPipeline = Depends(get_pipeline),
) -> PipelineStatusSchema:
    """Accept a multipart clip and run the validation gate."""
    try:
        await pipeline.select_upload(file)
    except IngestError as exc:
        _raise_http(exc)
    except InvalidTransitionError as exc:
        _raise_conflict(exc)
    return status_from_snapshot(pipeline.snapshot())


@router.post("/upload", response_model=PipelineStatusSchema)
async def start_upload(pipeline: IngestionPipeline = Depends(get_pipeline)) -> PipelineStatusSchema:
    """Run conversion, signed upload and persistence for the held clip."""
    try:
        await pipeline.start_upload()
    except IngestError as exc:
        _raise_http(exc)
    except InvalidTransitionError as exc:
        _raise_conflict(exc)
    except Exception as exc:  # pragma: no cover - recorded on the snapshot
        logger.exception("ingest.api.unexpected_error")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail={
                "status": "error",
                "failure_reason": FailureReason.INTERNAL_ERROR.value,
            },
        ) from exc
    return status_from_snapshot(pipeline.snapshot())


@router.post("/retry", response_model=PipelineStatusSchema)
async def retry(pipeline: IngestionPipeline = Depends(get_pipeline)) -> PipelineStatusSchema:
    try:
        snapshot = await pipeline.retry()
    except InvalidTransitionError as exc:
        _raise_conflict(exc)
    return status_from_snapshot(snapshot)


@router.post("/reset", response_model=PipelineStatusSchema)
async def reset(pipeline: IngestionPipeline = Depends(get_pipeline)) -> PipelineStatusSchema:
    return status_from_snapshot(await pipeline.clear())


@router.post("/camera", response_model=PipelineStatusSchema)
async def start_camera(pipeline: IngestionPipeline = Depends(get_pipeline)) -> PipelineStatusSchema:
    try:
        await pipeline.start_camera()
    except IngestError as exc:
        _raise_http(exc)
    except InvalidTransitionError as exc:
        _raise_conflict(exc)
    return status_from_snapshot(pipeline.snapshot())


@router.post("/recording/start", response_model=PipelineStatusSchema)
async def start_recording(
    pipeline: IngestionPipeline = Depends(get_pipeline),
) -> PipelineStatusSchema:
    try:
        await pipeline.start_recording()
    except IngestError as exc:
        _raise_http(exc)
    except InvalidTransitionError as exc:
        _raise_conflict(exc)
    return status_from_snapshot(pipeline.snapshot())


@router.post("/recording/stop", response_model=PipelineStatusSchema)
async def stop_recording(
    pipeline: IngestionPipeline = Depends(get_pipeline),
) -> PipelineStatusSchema:
    """Stop the take; validation (and auto-upload) outcomes land on the state."""
    try:
        snapshot = await pipeline.stop_recording()
    except IngestError as exc:
        _raise_http(exc)
    return status_from_snapshot(snapshot)


@router.delete("/reference", status_code=status.HTTP_204_NO_CONTENT)
async def remove_reference(
    payload: RemoveReferenceRequest,
    pipeline: IngestionPipeline = Depends(get_pipeline),
) -> None:
    try:
        await pipeline.remove_reference(payload.record_id, payload.video_url)
    except IngestError as exc:
        _raise_http(exc)
