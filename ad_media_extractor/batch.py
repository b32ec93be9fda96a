"""Batch loader: run many extractions one at a time, politely, cancellably.

Attempts are serialized with a randomized pause between them to stay under
the upstream host's rate limiting. Consecutive failures stretch the pause
exponentially. ``cancel()`` aborts the attempt in flight and the loop exits
without touching the rest of the queue.
"""

from __future__ import annotations

import asyncio
import inspect
import random
from typing import Any, Callable, Optional

from ad_media_extractor.engine.extractor import MediaExtractor
from ad_media_extractor.errors import ExtractionError
from ad_media_extractor.models import BatchItemResult, BatchState, ExtractionRequest
from ad_media_extractor.utils.logging import get_logger

logger = get_logger(__name__)

ProgressCallback = Callable[[int, int, BatchItemResult], Any]


class BatchLoader:
    """Serialized, rate-limited driver over a list of ad snapshot URLs."""

    def __init__(
        self,
        config: dict[str, Any],
        extractor: MediaExtractor,
        download: bool = False,
        rng: Optional[random.Random] = None,
    ):
        batch_cfg = config.get("batch", {})
        self.min_delay = batch_cfg.get("min_delay", 0.2)
        self.max_delay = batch_cfg.get("max_delay", 2.0)
        self.backoff_factor = batch_cfg.get("backoff_factor", 2.0)
        self.max_backoff = batch_cfg.get("max_backoff", 30.0)
        self.extractor = extractor
        self.download = download
        self.rng = rng or random.Random()
        self.state = BatchState.IDLE
        self._current: Optional[asyncio.Task] = None
        self._cancel_event = asyncio.Event()
        self._consecutive_failures = 0

    def cancel(self) -> None:
        """Stop the running batch: abort the current attempt, skip the rest."""
        if self.state != BatchState.RUNNING:
            return
        logger.info("Cancelling batch")
        self.state = BatchState.CANCELLING
        self._cancel_event.set()
        if self._current is not None and not self._current.done():
            self._current.cancel()

    def next_delay(self) -> float:
        """Randomized pause before the next attempt, stretched after failures."""
        delay = self.rng.uniform(self.min_delay, self.max_delay)
        if self._consecutive_failures:
            delay *= self.backoff_factor ** self._consecutive_failures
        return min(delay, self.max_backoff)

    async def run(
        self,
        urls: list[str],
        on_progress: Optional[ProgressCallback] = None,
    ) -> list[BatchItemResult]:
        if self.state != BatchState.IDLE:
            raise RuntimeError(f"Batch already {self.state.value}")

        self.state = BatchState.RUNNING
        self._cancel_event.clear()
        self._consecutive_failures = 0
        results: list[BatchItemResult] = []
        total = len(urls)
        logger.info(f"Starting batch of {total} extractions")

        try:
            for position, url in enumerate(urls):
                if self.state != BatchState.RUNNING:
                    break

                self._current = asyncio.ensure_future(self._attempt(url))
                try:
                    item = await self._current
                except asyncio.CancelledError:
                    if self.state == BatchState.CANCELLING:
                        logger.info(f"Aborted in-flight extraction for {url}")
                        break
                    raise
                finally:
                    self._current = None

                results.append(item)
                if item.ok:
                    self._consecutive_failures = 0
                else:
                    self._consecutive_failures += 1
                if on_progress is not None:
                    outcome = on_progress(len(results), total, item)
                    if inspect.isawaitable(outcome):
                        await outcome

                if position < total - 1 and await self._pause():
                    break
        finally:
            self.state = BatchState.IDLE

        ok = sum(1 for r in results if r.ok)
        logger.info(f"Batch finished: {ok}/{len(results)} resolved, {total - len(results)} not attempted")
        return results

    async def _attempt(self, url: str) -> BatchItemResult:
        try:
            if self.download:
                report, cached = await self.extractor.extract_and_store(url)
                return BatchItemResult(source_url=url, result=report.result, cached=cached)
            report = await self.extractor.extract(ExtractionRequest(source_url=url))
            return BatchItemResult(source_url=url, result=report.result)
        except ExtractionError as e:
            logger.warning(f"Extraction failed for {url}: {e}")
            return BatchItemResult(source_url=url, error=e.message, error_kind=e.kind.value)
        except Exception as e:
            logger.warning(f"Unexpected failure for {url}: {e}")
            return BatchItemResult(source_url=url, error=str(e))

    async def _pause(self) -> bool:
        """Sleep before the next attempt. Returns True if cancelled meanwhile."""
        delay = self.next_delay()
        try:
            await asyncio.wait_for(self._cancel_event.wait(), timeout=delay)
        except asyncio.TimeoutError:
            return False
        return True
