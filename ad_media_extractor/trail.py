"""Structured, ordered event log for one extraction attempt."""

from __future__ import annotations

from typing import Any

from ad_media_extractor.models import TrailEvent
from ad_media_extractor.utils.logging import get_logger

logger = get_logger(__name__)


class ExtractionTrail:
    """Ordered list of timestamped events, mirrored to the debug log."""

    def __init__(self, label: str = ""):
        self.label = label
        self.events: list[TrailEvent] = []

    def add(self, event: str, **detail: Any) -> TrailEvent:
        entry = TrailEvent(event=event, detail=detail)
        self.events.append(entry)
        if self.label:
            logger.debug(f"[{self.label}] {event} {detail}")
        else:
            logger.debug(f"{event} {detail}")
        return entry

    def names(self) -> list[str]:
        return [e.event for e in self.events]

    def to_json(self) -> list[dict[str, Any]]:
        return [e.model_dump(mode="json") for e in self.events]

    def __len__(self) -> int:
        return len(self.events)
