"""Operator entry point: push one local clip through the ingestion pipeline."""

from __future__ import annotations

import argparse
import asyncio
import mimetypes
import sys
from pathlib import Path

from clip_ingest.config import IngestSettings, load_settings
from clip_ingest.dependencies import build_pipeline
from clip_ingest.ingest.ingest_errors import IngestError
from clip_ingest.ingest.ingest_models import RemoteReference
from clip_ingest.logging import configure_logging


async def ingest_file(
    path: Path,
    *,
    content_type: str | None,
    settings: IngestSettings | None = None,
) -> RemoteReference | None:
    """Validate, convert, upload and persist ``path``; always tears down."""
    cfg = settings or load_settings()
    pipeline = build_pipeline(cfg)
    try:
        await pipeline.select_file(
            path.read_bytes(),
            content_type=content_type,
            filename=path.name,
        )
        return await pipeline.start_upload()
    finally:
        await pipeline.teardown()


def guess_content_type(path: Path) -> str | None:
    guessed, _ = mimetypes.guess_type(path.name)
    return guessed


def parse_args(argv: list[str]) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Upload one video clip to object storage.")
    parser.add_argument("path", type=Path, help="Local video file.")
    parser.add_argument(
        "--content-type",
        default=None,
        help="Declared MIME type; guessed from the file name when omitted.",
    )
    return parser.parse_args(argv)


def main(argv: list[str] | None = None) -> int:
    args = parse_args(argv if argv is not None else sys.argv[1:])
    configure_logging()
    if not args.path.is_file():
        print(f"ingest failed: {args.path} is not a file", file=sys.stderr)
        return 2

    content_type = args.content_type or guess_content_type(args.path)
    try:
        reference = asyncio.run(ingest_file(args.path, content_type=content_type))
    except IngestError as exc:
        print(f"ingest failed: {exc.reason.value}: {exc.user_message}", file=sys.stderr)
        return 2

    if reference is None:
        print("ingest failed: attempt was discarded", file=sys.stderr)
        return 2
    print(f"ingest done, url={reference.url}, public_id={reference.public_id}", file=sys.stdout)
    return 0


if __name__ == "__main__":
    sys.exit(main())
