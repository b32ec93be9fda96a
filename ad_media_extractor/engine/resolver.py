"""Resolution Engine: merge network and DOM evidence into one media answer.

Network interception is authoritative for video, because the bytes have to
cross the wire while a DOM ``src`` may be a placeholder or a revoked blob URL.
The DOM is authoritative for images, because the ad image is the rendered,
sized element; image requests on the wire have no notion of which one is the
creative.
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
from typing import Any, Iterable, Optional
from urllib.parse import urljoin

from ad_media_extractor.browser.session import BrowserSession
from ad_media_extractor.engine.sequencer import QualityUpgradeSequencer
from ad_media_extractor.errors import ErrorKind, ExtractionError
from ad_media_extractor.models import (
    CandidateSource,
    ExtractionResult,
    MediaCandidate,
    MediaKind,
    MediaType,
    ObservedResource,
    QualityTier,
)
from ad_media_extractor.network.observer import NetworkObserver
from ad_media_extractor.probe.dom import DomProbe
from ad_media_extractor.quality import image_quality_tier, video_quality_tier
from ad_media_extractor.trail import ExtractionTrail
from ad_media_extractor.utils.logging import get_logger

logger = get_logger(__name__)


@dataclass
class Resolution:
    result: ExtractionResult
    candidates: list[MediaCandidate] = field(default_factory=list)


def select_video_resource(resources: Iterable[ObservedResource]) -> Optional[ObservedResource]:
    """First HIGH tier video in arrival order, else the first video of any tier."""
    videos = sorted(
        (r for r in resources if r.kind == MediaKind.VIDEO),
        key=lambda r: r.first_seen_order,
    )
    for resource in videos:
        if resource.quality_hint == QualityTier.HIGH:
            return resource
    return videos[0] if videos else None


def resolve_url(url: str, base_url: str) -> str:
    """Make ``url`` absolute against the page it was found on."""
    if not base_url:
        return url
    return urljoin(base_url, url)


class ResolutionEngine:
    """Decision procedure for one attempt; stateless between attempts."""

    def __init__(self, config: dict[str, Any]):
        self.config = config
        self.settle_delay = config.get("resolver", {}).get("settle_delay", 3.0)

    async def resolve(
        self,
        session: BrowserSession,
        observer: NetworkObserver,
        probe: DomProbe,
        trail: ExtractionTrail,
    ) -> Resolution:
        base_url = session.url

        if not await probe.has_video_element():
            trail.add("probe.video_element", present=False)
            return await self._resolve_image(probe, base_url, trail)

        trail.add("probe.video_element", present=True)
        self._log_snapshot(observer, trail, "initial")

        sequencer = QualityUpgradeSequencer(self.config, trail)
        final_state = await sequencer.run(probe)
        trail.add("sequencer.finished", state=final_state.value)

        if self.settle_delay:
            await asyncio.sleep(self.settle_delay)

        self._log_snapshot(observer, trail, "final")
        return await self._resolve_video(observer.snapshot(), probe, base_url, trail)

    @staticmethod
    def _log_snapshot(observer: NetworkObserver, trail: ExtractionTrail, phase: str) -> None:
        trail.add(
            "network.snapshot",
            phase=phase,
            resources=len(observer),
            videos=len(observer.videos()),
            images=len(observer.images()),
        )

    async def _resolve_image(
        self, probe: DomProbe, base_url: str, trail: ExtractionTrail
    ) -> Resolution:
        image_url = await probe.find_ad_image()
        if not image_url:
            trail.add("decision", outcome="no_media", reason="no video element and no ad image")
            raise ExtractionError(
                ErrorKind.NO_MEDIA_FOUND, "No video element and no qualifying ad image"
            )

        url = resolve_url(image_url, base_url)
        candidate = MediaCandidate(
            type=MediaType.IMAGE,
            url=url,
            source=CandidateSource.DOM,
            quality=image_quality_tier(url),
        )
        trail.add("decision", type="image", source="dom", url=url, tier=candidate.quality.name)
        return Resolution(
            result=ExtractionResult(type=MediaType.IMAGE, url=url),
            candidates=[candidate],
        )

    async def _resolve_video(
        self,
        resources: tuple[ObservedResource, ...],
        probe: DomProbe,
        base_url: str,
        trail: ExtractionTrail,
    ) -> Resolution:
        candidates = [
            MediaCandidate(
                type=MediaType.VIDEO,
                url=resolve_url(r.url, base_url),
                source=CandidateSource.NETWORK,
                quality=r.quality_hint,
            )
            for r in sorted(resources, key=lambda r: r.first_seen_order)
            if r.kind == MediaKind.VIDEO
        ]

        chosen = select_video_resource(resources)
        if chosen is not None:
            url = resolve_url(chosen.url, base_url)
            trail.add(
                "decision", type="video", source="network", url=url, tier=chosen.quality_hint.name
            )
            return Resolution(
                result=ExtractionResult(type=MediaType.VIDEO, url=url),
                candidates=candidates,
            )

        dom_src = await probe.find_video_source()
        if not dom_src:
            trail.add("decision", outcome="no_media", reason="no video resource in network or DOM")
            raise ExtractionError(
                ErrorKind.NO_MEDIA_FOUND, "Video element present but no usable source found"
            )

        url = resolve_url(dom_src, base_url)
        candidates.append(
            MediaCandidate(
                type=MediaType.VIDEO,
                url=url,
                source=CandidateSource.DOM,
                quality=video_quality_tier(url),
            )
        )
        trail.add("decision", type="video", source="dom", url=url)
        return Resolution(
            result=ExtractionResult(type=MediaType.VIDEO, url=url),
            candidates=candidates,
        )
