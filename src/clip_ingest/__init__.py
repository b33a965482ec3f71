"""Short video clip ingestion: capture, validate, transcode, signed upload, persist."""

__version__ = "0.1.0"
