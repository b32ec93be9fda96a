"""Error taxonomy for extraction attempts and their collaborators."""

from __future__ import annotations

import enum
from typing import Any, Optional

from ad_media_extractor.models import TrailEvent


class ErrorKind(str, enum.Enum):
    NAVIGATION_TIMEOUT = "NAVIGATION_TIMEOUT"
    NAVIGATION_ERROR = "NAVIGATION_ERROR"
    EVAL_ERROR = "EVAL_ERROR"
    NO_MEDIA_FOUND = "NO_MEDIA_FOUND"
    SESSION_CLOSED_EARLY = "SESSION_CLOSED_EARLY"


class ExtractionError(Exception):
    """Terminal failure of one extraction attempt.

    ``events`` is the attempt's trail; the extractor attaches it before
    teardown so the final entries (session close) are included as well.
    """

    def __init__(
        self,
        kind: ErrorKind,
        message: str = "",
        events: Optional[list[TrailEvent]] = None,
    ):
        self.kind = kind
        self.message = message or kind.value
        self.events: list[TrailEvent] = events if events is not None else []
        super().__init__(f"{kind.value}: {self.message}")


class DownloadError(Exception):
    """Fetching remote media bytes failed."""

    def __init__(self, url: str, message: str, status: Optional[int] = None):
        self.url = url
        self.status = status
        super().__init__(message)


class AdLibraryError(Exception):
    """The ad-search API answered with an error."""

    def __init__(self, status: int, message: str, details: Any = None):
        self.status = status
        self.message = message
        self.details = details
        super().__init__(f"HTTP {status}: {message}")
