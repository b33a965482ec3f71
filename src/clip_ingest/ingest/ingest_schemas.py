"""Pydantic schemas for clip ingestion responses."""

from __future__ import annotations

from pydantic import BaseModel

from .ingest_models import PipelineState


class IngestErrorSchema(BaseModel):
    status: str
    failure_reason: str
    message: str | None = None


class ValidationSchema(BaseModel):
    ok: bool
    max_allowed_seconds: float
    max_allowed_bytes: int
    duration_seconds: float | None = None
    reason_code: str | None = None
    message: str | None = None


class FailureSchema(BaseModel):
    failure_reason: str
    message: str
    failed_in: str


class NarrationSchema(BaseModel):
    stage: str
    message: str
    elapsed_seconds: int


class AssetSchema(BaseModel):
    filename: str
    mime_type: str
    size_bytes: int
    source_kind: str
    duration_seconds: float | None = None


class ReferenceSchema(BaseModel):
    url: str
    public_id: str


class PipelineStatusSchema(BaseModel):
    state: PipelineState
    asset: AssetSchema | None = None
    validation: ValidationSchema | None = None
    error: FailureSchema | None = None
    narration: NarrationSchema | None = None
    reference: ReferenceSchema | None = None
    used_fallback: bool | None = None
    camera_active: bool = False
    recording: bool = False
    recording_remaining_seconds: int = 0


class RemoveReferenceRequest(BaseModel):
    record_id: str
    video_url: str
