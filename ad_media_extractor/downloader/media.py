"""Fetch resolved media bytes over HTTP with aiohttp.

Used by the Result Cache to persist media and by the download proxy to
stream it back to a client.
"""

from __future__ import annotations

import asyncio
from contextlib import asynccontextmanager
from pathlib import Path, PurePosixPath
from typing import Any, AsyncIterator
from urllib.parse import urlsplit

import aiohttp

from ad_media_extractor.errors import DownloadError
from ad_media_extractor.models import MediaType
from ad_media_extractor.utils.logging import get_logger

logger = get_logger(__name__)

DOWNLOAD_HEADERS = {
    "User-Agent": "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36",
}
CHUNK_SIZE = 64 * 1024


class MediaDownloader:
    """Download media files from resolved media URLs."""

    def __init__(self, config: dict[str, Any]):
        cache_cfg = config.get("cache", {})
        self.timeout = cache_cfg.get("timeout", 120)
        self.max_file_size_mb = cache_cfg.get("max_file_size_mb", 500)

    @property
    def max_bytes(self) -> int:
        return self.max_file_size_mb * 1024 * 1024

    @asynccontextmanager
    async def open_stream(self, url: str) -> AsyncIterator[aiohttp.ClientResponse]:
        """Open ``url`` and yield the response once it answered 200."""
        timeout = aiohttp.ClientTimeout(total=self.timeout)
        async with aiohttp.ClientSession(timeout=timeout, headers=DOWNLOAD_HEADERS) as session:
            try:
                async with session.get(url) as resp:
                    if resp.status != 200:
                        raise DownloadError(url, f"HTTP {resp.status} fetching media", resp.status)
                    yield resp
            except aiohttp.ClientError as e:
                raise DownloadError(url, f"Request failed: {e}") from e
            except asyncio.TimeoutError as e:
                raise DownloadError(url, f"Timed out after {self.timeout}s") from e

    async def download(self, url: str, dest: Path) -> int:
        """Stream ``url`` into ``dest`` and return the number of bytes written.

        Bytes land in a sibling ``.part`` file first so a failed transfer
        never leaves a truncated file at ``dest``.
        """
        dest.parent.mkdir(parents=True, exist_ok=True)
        partial = dest.with_name(dest.name + ".part")
        written = 0

        try:
            async with self.open_stream(url) as resp:
                cl = resp.content_length
                if cl and cl > self.max_bytes:
                    raise DownloadError(url, f"File too large: {cl} bytes")

                with open(partial, "wb") as fh:
                    async for chunk in resp.content.iter_chunked(CHUNK_SIZE):
                        written += len(chunk)
                        if written > self.max_bytes:
                            raise DownloadError(url, f"File exceeded {self.max_file_size_mb} MB")
                        fh.write(chunk)
        except BaseException:
            partial.unlink(missing_ok=True)
            raise

        partial.replace(dest)
        logger.info(f"Downloaded {written} bytes to {dest}")
        return written


def extension_for(url: str, media_type: MediaType) -> str:
    """File extension for a media URL, falling back on the media type."""
    suffix = PurePosixPath(urlsplit(url).path).suffix.lower()
    if suffix in _MIME_BY_EXT:
        return suffix
    return ".mp4" if media_type == MediaType.VIDEO else ".jpg"


def ext_to_mime(ext: str) -> str:
    return _MIME_BY_EXT.get(ext.lower(), "application/octet-stream")


_MIME_BY_EXT = {
    ".mp4": "video/mp4",
    ".webm": "video/webm",
    ".mov": "video/quicktime",
    ".m4v": "video/x-m4v",
    ".jpg": "image/jpeg",
    ".jpeg": "image/jpeg",
    ".png": "image/png",
    ".gif": "image/gif",
    ".webp": "image/webp",
}
