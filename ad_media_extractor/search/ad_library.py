"""Thin aiohttp client for the Meta Ad Library ``ads_archive`` Graph endpoint."""

from __future__ import annotations

from typing import Any, AsyncIterator, Optional

import aiohttp

from ad_media_extractor.errors import AdLibraryError
from ad_media_extractor.models import AdSearchParams
from ad_media_extractor.utils.logging import get_logger

logger = get_logger(__name__)


class AdLibraryClient:
    """Query ads_archive and walk its cursor pagination."""

    def __init__(self, config: dict[str, Any]):
        search_cfg = config.get("search", {})
        base = search_cfg.get("graph_api_url", "https://graph.facebook.com").rstrip("/")
        version = search_cfg.get("graph_api_version", "v18.0")
        self.endpoint = f"{base}/{version}/ads_archive"
        self.timeout = search_cfg.get("timeout", 30)
        self.max_pages = search_cfg.get("max_pages", 10)

    async def fetch_ads(self, params: AdSearchParams) -> dict[str, Any]:
        """One ads_archive request; returns the raw JSON payload."""
        query = params.to_query()
        logger.info(
            f"Querying ads_archive: {({**query, 'access_token': '***hidden***'})}"
        )
        timeout = aiohttp.ClientTimeout(total=self.timeout)
        async with aiohttp.ClientSession(timeout=timeout) as session:
            payload = await self._get(session, self.endpoint, query)
        logger.info(f"Received {len(payload.get('data') or [])} ads")
        return payload

    async def iter_ads(
        self, params: AdSearchParams, max_pages: Optional[int] = None
    ) -> AsyncIterator[dict[str, Any]]:
        """Yield ads across pages by following ``paging.next``."""
        limit = max_pages or self.max_pages
        timeout = aiohttp.ClientTimeout(total=self.timeout)
        async with aiohttp.ClientSession(timeout=timeout) as session:
            url: Optional[str] = self.endpoint
            query: Optional[dict[str, str]] = params.to_query()
            pages = 0
            while url and pages < limit:
                payload = await self._get(session, url, query)
                pages += 1
                for ad in payload.get("data") or []:
                    yield ad
                url = (payload.get("paging") or {}).get("next")
                # The next link already carries the full query string
                query = None
            logger.debug(f"Walked {pages} ads_archive pages")

    async def _get(
        self,
        session: aiohttp.ClientSession,
        url: str,
        query: Optional[dict[str, str]],
    ) -> dict[str, Any]:
        try:
            async with session.get(url, params=query) as resp:
                try:
                    payload = await resp.json(content_type=None)
                except ValueError:
                    payload = {}
                if resp.status != 200:
                    error = (payload or {}).get("error") or {}
                    raise AdLibraryError(
                        resp.status,
                        error.get("message") or "Failed to fetch ads",
                        details=payload,
                    )
                return payload
        except aiohttp.ClientError as e:
            raise AdLibraryError(502, f"Ad library unreachable: {e}") from e
