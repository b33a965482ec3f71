"""Ingestion pipeline: models, errors, validation and orchestration."""
