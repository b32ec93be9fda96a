"""File-backed stores for saved searches and permanently filtered pages."""

from __future__ import annotations

import json
import re
import time
from pathlib import Path
from typing import Any

from ad_media_extractor.utils.logging import get_logger

logger = get_logger(__name__)

SEARCH_ID_RE = re.compile(r"^search_\d+\.json$")


class SavedSearchStore:
    """One JSON file per saved search, named ``search_<epoch ms>.json``."""

    def __init__(self, directory: Path):
        self.directory = Path(directory)
        self.directory.mkdir(parents=True, exist_ok=True)

    def save(self, data: dict[str, Any]) -> str:
        search_id = f"search_{int(time.time() * 1000)}.json"
        path = self.directory / search_id
        # Two saves in the same millisecond
        while path.exists():
            search_id = f"search_{int(search_id[7:-5]) + 1}.json"
            path = self.directory / search_id
        with open(path, "w") as f:
            json.dump(data, f, indent=2, default=str)
        logger.info(f"Saved search {search_id}")
        return search_id

    def list(self) -> list[dict[str, Any]]:
        searches = []
        for path in sorted(self.directory.glob("search_*.json")):
            try:
                with open(path) as f:
                    data = json.load(f)
            except (OSError, json.JSONDecodeError) as e:
                logger.warning(f"Skipping unreadable saved search {path.name}: {e}")
                continue
            searches.append({**data, "id": path.name})
        return searches

    def get(self, search_id: str) -> dict[str, Any]:
        path = self._path(search_id)
        if not path.exists():
            raise KeyError(search_id)
        with open(path) as f:
            return json.load(f)

    def delete(self, search_id: str) -> None:
        path = self._path(search_id)
        if not path.exists():
            raise KeyError(search_id)
        path.unlink()
        logger.info(f"Deleted saved search {search_id}")

    def _path(self, search_id: str) -> Path:
        if not SEARCH_ID_RE.match(search_id):
            raise ValueError(f"Invalid search id: {search_id!r}")
        return self.directory / search_id


class FilteredPagesStore:
    """Sorted, de-duplicated list of page names hidden from every result set."""

    def __init__(self, path: Path):
        self.path = Path(path)

    def list(self) -> list[str]:
        if not self.path.exists():
            return []
        with open(self.path) as f:
            data = json.load(f)
        return sorted({str(p) for p in data.get("pages", [])})

    def add(self, page_name: str) -> list[str]:
        pages = set(self.list())
        pages.add(page_name.strip())
        return self._write(pages)

    def remove(self, page_name: str) -> list[str]:
        pages = set(self.list())
        pages.discard(page_name.strip())
        return self._write(pages)

    def _write(self, pages: set[str]) -> list[str]:
        ordered = sorted(p for p in pages if p)
        self.path.parent.mkdir(parents=True, exist_ok=True)
        tmp = self.path.with_name(self.path.name + ".tmp")
        with open(tmp, "w") as f:
            json.dump({"pages": ordered}, f, indent=2)
        tmp.replace(self.path)
        return ordered
