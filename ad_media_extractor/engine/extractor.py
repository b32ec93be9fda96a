"""Media extraction for one ad snapshot URL, end to end.

One call owns one browser session. The session is closed on every exit path;
that is the single hard resource rule of the engine.
"""

from __future__ import annotations

from typing import Any, Optional

from ad_media_extractor.browser.session import BrowserSession, PageDriver, PlaywrightDriver
from ad_media_extractor.cache.store import MediaCache
from ad_media_extractor.engine.resolver import ResolutionEngine
from ad_media_extractor.errors import ExtractionError
from ad_media_extractor.models import (
    CachedMedia,
    ExtractionReport,
    ExtractionRequest,
    ExtractionResult,
)
from ad_media_extractor.network.observer import ClassificationRules, NetworkObserver
from ad_media_extractor.probe.dom import DomProbe
from ad_media_extractor.trail import ExtractionTrail
from ad_media_extractor.utils.config import load_config
from ad_media_extractor.utils.logging import get_logger

logger = get_logger(__name__)


class MediaExtractor:
    """Resolve the playable media behind ad snapshot URLs."""

    def __init__(
        self,
        config: dict[str, Any],
        driver: Optional[PageDriver] = None,
        cache: Optional[MediaCache] = None,
    ):
        self.config = config
        self.driver = driver or PlaywrightDriver(config)
        self.cache = cache
        # A cache created lazily by extract_and_store belongs to us
        self._owns_cache = cache is None
        self.engine = ResolutionEngine(config)
        self.rules = ClassificationRules.from_config(config)
        self.min_image_px = config.get("probe", {}).get("min_image_px", 100)
        self.idle_timeout_ms = config.get("browser", {}).get("idle_timeout_ms", 10000)

    async def extract(self, request: ExtractionRequest) -> ExtractionReport:
        """Run one extraction attempt.

        Raises:
            ExtractionError: with the attempt's trail attached, for any of
                the navigation, evaluation or no-media failures.
        """
        url = request.source_url
        trail = ExtractionTrail(label=url[:80])
        trail.add("navigation.start", url=url)

        try:
            session = await self.driver.open(url)
        except ExtractionError as e:
            trail.add("extraction.failed", kind=e.kind.value, message=e.message)
            e.events = trail.events
            raise

        observer = NetworkObserver(self.rules, trail)
        observer.attach(session)
        try:
            resolution = await self._run(session, observer, url, trail)
        except ExtractionError as e:
            trail.add("extraction.failed", kind=e.kind.value, message=e.message)
            e.events = trail.events
            raise
        finally:
            observer.freeze()
            await session.close()
            trail.add("session.closed")

        logger.info(f"Resolved {resolution.result.type.value} for {url}")
        return ExtractionReport(
            request=request,
            result=resolution.result,
            candidates=resolution.candidates,
            events=trail.events,
        )

    async def _run(
        self,
        session: BrowserSession,
        observer: NetworkObserver,
        url: str,
        trail: ExtractionTrail,
    ):
        went_quiet = await session.navigate(url, idle_timeout_ms=self.idle_timeout_ms)
        trail.add("navigation.idle", quiet=went_quiet, resources=len(observer))
        probe = DomProbe(session, self.rules, self.min_image_px)
        return await self.engine.resolve(session, observer, probe, trail)

    async def extract_and_store(self, source_url: str) -> tuple[ExtractionReport, CachedMedia]:
        """Extract, then persist the media bytes through the Result Cache."""
        if self.cache is None:
            self.cache = MediaCache(self.config)
        report = await self.extract(ExtractionRequest(source_url=source_url))
        cached = await self.cache.fetch(report.result.url, report.result.type)
        return report, cached

    async def aclose(self) -> None:
        """Close the cache index if this extractor opened it."""
        if self._owns_cache and self.cache is not None:
            await self.cache.close()

    async def __aenter__(self) -> "MediaExtractor":
        return self

    async def __aexit__(self, *args) -> None:
        await self.aclose()


async def extract_media(
    source_url: str,
    config: Optional[dict[str, Any]] = None,
    driver: Optional[PageDriver] = None,
) -> ExtractionResult:
    """Resolve ``source_url`` to a single ``{type, url}`` result."""
    extractor = MediaExtractor(config if config is not None else load_config(), driver=driver)
    report = await extractor.extract(ExtractionRequest(source_url=source_url))
    return report.result
