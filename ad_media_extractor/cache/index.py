"""SQLite-backed index of cached media files."""

from __future__ import annotations

from datetime import datetime
from pathlib import Path
from typing import Optional

import aiosqlite

from ad_media_extractor.models import CachedMedia, MediaType

DB_PATH = Path("data/media_cache.db")

SCHEMA = """
CREATE TABLE IF NOT EXISTS cached_media (
    content_hash TEXT PRIMARY KEY,
    source_url TEXT NOT NULL,
    local_path TEXT NOT NULL,
    media_type TEXT NOT NULL,
    size_bytes INTEGER DEFAULT 0,
    created_at TEXT NOT NULL
);

CREATE INDEX IF NOT EXISTS idx_cached_media_type ON cached_media(media_type);
"""


class CacheIndex:
    """Async SQLite store mapping content hashes to local files.

    Entries are only ever inserted or read; a hash maps to one file for good.
    """

    def __init__(self, db_path: Path | None = None):
        self.db_path = db_path or DB_PATH
        self._db: Optional[aiosqlite.Connection] = None

    @property
    def connected(self) -> bool:
        return self._db is not None

    async def connect(self) -> None:
        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        self._db = await aiosqlite.connect(str(self.db_path))
        self._db.row_factory = aiosqlite.Row
        await self._db.executescript(SCHEMA)
        await self._db.commit()

    async def close(self) -> None:
        if self._db:
            await self._db.close()
            self._db = None

    async def __aenter__(self):
        await self.connect()
        return self

    async def __aexit__(self, *args):
        await self.close()

    async def get(self, content_hash: str) -> Optional[CachedMedia]:
        cursor = await self._db.execute(
            "SELECT * FROM cached_media WHERE content_hash = ?", (content_hash,)
        )
        row = await cursor.fetchone()
        return _row_to_media(row) if row else None

    async def add(self, media: CachedMedia) -> None:
        await self._db.execute(
            "INSERT OR IGNORE INTO cached_media "
            "(content_hash, source_url, local_path, media_type, size_bytes, created_at) "
            "VALUES (?, ?, ?, ?, ?, ?)",
            (
                media.content_hash,
                media.source_url,
                str(media.local_path),
                media.media_type.value,
                media.size_bytes,
                media.created_at.isoformat(),
            ),
        )
        await self._db.commit()


def _row_to_media(row: aiosqlite.Row) -> CachedMedia:
    return CachedMedia(
        content_hash=row["content_hash"],
        source_url=row["source_url"],
        local_path=Path(row["local_path"]),
        media_type=MediaType(row["media_type"]),
        size_bytes=row["size_bytes"] or 0,
        created_at=datetime.fromisoformat(row["created_at"]),
    )
