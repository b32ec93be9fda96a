"""Core data models for the ad media extractor."""

from __future__ import annotations

import enum
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class MediaKind(str, enum.Enum):
    """Classification of an intercepted network resource."""

    VIDEO = "video"
    IMAGE = "image"
    OTHER = "other"


class MediaType(str, enum.Enum):
    """Type of a resolved creative."""

    VIDEO = "video"
    IMAGE = "image"


class QualityTier(enum.IntEnum):
    """Coarse, URL-derived resolution rank. Ordering is the ranking order."""

    LOW = 1
    MEDIUM = 2
    HIGH = 3


class CandidateSource(str, enum.Enum):
    NETWORK = "network"
    DOM = "dom"


class BatchState(str, enum.Enum):
    IDLE = "idle"
    RUNNING = "running"
    CANCELLING = "cancelling"


class ExtractionRequest(BaseModel):
    """One "load media for ad X" action."""

    model_config = ConfigDict(frozen=True)

    source_url: str


class ObservedResource(BaseModel):
    """A classified network resource seen during one extraction attempt."""

    model_config = ConfigDict(frozen=True)

    url: str
    kind: MediaKind
    quality_hint: QualityTier = QualityTier.MEDIUM
    first_seen_order: int


class MediaCandidate(BaseModel):
    model_config = ConfigDict(frozen=True)

    type: MediaType
    url: str
    source: CandidateSource
    quality: QualityTier = QualityTier.MEDIUM


class ExtractionResult(BaseModel):
    """Terminal artifact of one extraction attempt.

    URLs may be session-scoped signed URLs that expire after the page
    session that produced them is gone.
    """

    model_config = ConfigDict(frozen=True)

    type: MediaType
    url: str


class TrailEvent(BaseModel):
    """One timestamped entry of an attempt's structured log trail."""

    ts: datetime = Field(default_factory=_utcnow)
    event: str
    detail: dict[str, Any] = Field(default_factory=dict)


class ExtractionReport(BaseModel):
    """Everything one successful attempt produced."""

    request: ExtractionRequest
    result: ExtractionResult
    candidates: list[MediaCandidate] = Field(default_factory=list)
    events: list[TrailEvent] = Field(default_factory=list)

    @property
    def all_urls(self) -> list[str]:
        """Every candidate URL, result first, without duplicates."""
        urls = [self.result.url]
        for candidate in self.candidates:
            if candidate.url not in urls:
                urls.append(candidate.url)
        return urls


class CachedMedia(BaseModel):
    """Media bytes persisted locally, keyed by the hash of their source URL."""

    model_config = ConfigDict(frozen=True)

    content_hash: str
    source_url: str
    local_path: Path
    media_type: MediaType
    size_bytes: int = 0
    created_at: datetime = Field(default_factory=_utcnow)


class BatchItemResult(BaseModel):
    """Outcome of one URL processed by the batch loader."""

    source_url: str
    result: Optional[ExtractionResult] = None
    cached: Optional[CachedMedia] = None
    error: Optional[str] = None
    error_kind: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.result is not None


class AdSearchParams(BaseModel):
    """Query parameters passed through to the ads_archive endpoint."""

    access_token: str
    search_terms: Optional[str] = None
    ad_active_status: str = "ALL"
    ad_delivery_date_min: Optional[str] = None
    ad_reached_countries: Optional[str] = None
    ad_language: Optional[str] = None
    fields: Optional[str] = None
    limit: Optional[int] = None

    def to_query(self) -> dict[str, str]:
        """Non-empty parameters as strings, ready for a query string."""
        return {
            key: str(value)
            for key, value in self.model_dump().items()
            if value not in (None, "")
        }
