"""FastAPI application entry point."""

from __future__ import annotations

import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

from fastapi import FastAPI

from .config import IngestSettings, load_settings
from .dependencies import build_pipeline, include_routers
from .ingest.ingest_pipeline import IngestionPipeline
from .logging import configure_logging

logger = logging.getLogger(__name__)


def create_app(
    settings: IngestSettings | None = None,
    *,
    pipeline: IngestionPipeline | None = None,
) -> FastAPI:
    """Build FastAPI instance with configured dependencies."""
    configure_logging()
    cfg = settings or load_settings()
    ingest_pipeline = pipeline or build_pipeline(cfg)

    @asynccontextmanager
    async def lifespan(_: FastAPI) -> AsyncIterator[None]:
        ingest_pipeline.temp_store.ensure_structure()
        try:
            yield
        finally:
            await ingest_pipeline.teardown()
            logger.info("app.shutdown.pipeline_released")

    app = FastAPI(title="Clip Ingest", lifespan=lifespan)
    include_routers(app, cfg, ingest_pipeline)
    return app


app = create_app()
