"""Common interface of the file and live-recording capture sources."""

from abc import ABC, abstractmethod

from ..ingest.ingest_models import SourceKind


class CaptureSource(ABC):
    """Producer of a :class:`MediaAsset`."""

    source_kind: SourceKind

    @abstractmethod
    def release(self) -> None:
        """Release any device or buffer held by the source."""
