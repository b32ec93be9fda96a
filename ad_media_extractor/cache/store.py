"""Result Cache: resolved media persisted locally by content hash.

The key is the MD5 hex digest of the resolved media URL. A hash maps to one
file forever. Concurrent requests for the same hash share a single download.
"""

from __future__ import annotations

import asyncio
import hashlib
from pathlib import Path
from typing import Any, Optional

from ad_media_extractor.cache.index import CacheIndex
from ad_media_extractor.downloader.media import MediaDownloader, extension_for
from ad_media_extractor.models import CachedMedia, MediaType
from ad_media_extractor.utils.logging import get_logger

logger = get_logger(__name__)


def content_hash(url: str) -> str:
    return hashlib.md5(url.encode("utf-8")).hexdigest()


class MediaCache:
    """Content-hash keyed media store with at most one in-flight fetch per hash."""

    def __init__(
        self,
        config: dict[str, Any],
        downloader: Optional[MediaDownloader] = None,
        index: Optional[CacheIndex] = None,
    ):
        cache_cfg = config.get("cache", {})
        self.cache_dir = Path(cache_cfg.get("dir", "static/videos"))
        self.downloader = downloader or MediaDownloader(config)
        self.index = index or CacheIndex(Path(cache_cfg.get("db_path", "data/media_cache.db")))
        self._inflight: dict[str, asyncio.Task] = {}
        self._waiters: dict[str, int] = {}
        self._connect_lock = asyncio.Lock()

    async def close(self) -> None:
        await self.index.close()

    async def __aenter__(self):
        await self._ensure_index()
        return self

    async def __aexit__(self, *args):
        await self.close()

    def path_for(self, url: str, media_type: MediaType) -> Path:
        return self.cache_dir / f"{content_hash(url)}{extension_for(url, media_type)}"

    async def get(self, url: str) -> Optional[CachedMedia]:
        """Return the cached entry for ``url`` if its file is still on disk."""
        await self._ensure_index()
        digest = content_hash(url)
        entry = await self.index.get(digest)
        if entry is not None and entry.local_path.exists():
            return entry
        return None

    async def fetch(self, url: str, media_type: MediaType) -> CachedMedia:
        """Return the cached entry for ``url``, downloading it if needed.

        Later callers for a hash already being fetched await the first fetch
        instead of starting their own. The download is cancelled once every
        caller waiting on it has been cancelled.
        """
        existing = await self.get(url)
        if existing is not None:
            logger.debug(f"Cache hit for {existing.content_hash}")
            return existing

        digest = content_hash(url)
        task = self._inflight.get(digest)
        if task is None:
            task = asyncio.ensure_future(self._store(digest, url, media_type))
            self._inflight[digest] = task
            task.add_done_callback(lambda _t: self._inflight.pop(digest, None))
        else:
            logger.debug(f"Joining in-flight download for {digest}")

        self._waiters[digest] = self._waiters.get(digest, 0) + 1
        try:
            return await asyncio.shield(task)
        except asyncio.CancelledError:
            if self._waiters[digest] == 1 and not task.done():
                logger.info(f"Abandoning download for {digest}")
                task.cancel()
            raise
        finally:
            self._waiters[digest] -= 1
            if not self._waiters[digest]:
                del self._waiters[digest]

    async def _store(self, digest: str, url: str, media_type: MediaType) -> CachedMedia:
        dest = self.path_for(url, media_type)
        if dest.exists():
            size = dest.stat().st_size
        else:
            size = await self.downloader.download(url, dest)

        entry = CachedMedia(
            content_hash=digest,
            source_url=url,
            local_path=dest,
            media_type=media_type,
            size_bytes=size,
        )
        await self.index.add(entry)
        logger.info(f"Cached {media_type.value} {digest} ({size} bytes)")
        return entry

    async def _ensure_index(self) -> None:
        if self.index.connected:
            return
        async with self._connect_lock:
            if not self.index.connected:
                await self.index.connect()
