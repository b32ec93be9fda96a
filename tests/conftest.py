"""Shared fixtures: an in-memory page session standing in for Playwright."""

from __future__ import annotations

from typing import Any, Callable, Optional

import pytest

from ad_media_extractor.browser.session import BrowserSession, PageDriver
from ad_media_extractor.errors import ErrorKind, ExtractionError
from ad_media_extractor.probe.dom import (
    CLICK_CONTROL_JS,
    FIND_CONTROL_JS,
    HAS_VIDEO_JS,
    IMAGES_JS,
    VIDEO_FIELDS_JS,
)
from ad_media_extractor.utils.config import load_config

SNAPSHOT_URL = "https://www.facebook.com/ads/archive/render_ad/?id=123456&access_token=tok"


class FakeSession(BrowserSession):
    """Scripted page: canned probe answers and a replayable request stream.

    ``network`` URLs are emitted during navigate. ``on_click`` maps a control
    label to URLs emitted when that control is clicked, which is how a quality
    switch surfaces a new rendition.
    """

    def __init__(
        self,
        page_url: str = SNAPSHOT_URL,
        has_video: bool = False,
        video_fields: Optional[dict[str, Any]] = None,
        images: Optional[list[dict[str, Any]]] = None,
        controls: tuple[str, ...] = (),
        network: tuple[str, ...] = (),
        on_click: Optional[dict[str, tuple[str, ...]]] = None,
        eval_error_on: Optional[str] = None,
        navigate_error: Optional[ExtractionError] = None,
    ):
        super().__init__()
        self.page_url = page_url
        self.has_video = has_video
        self.video_fields = video_fields
        self.images = images or []
        self.controls = set(controls)
        self.network = network
        self.on_click = on_click or {}
        self.eval_error_on = eval_error_on
        self.navigate_error = navigate_error
        self.request_callbacks: list[Callable[[str], Any]] = []
        self.response_callbacks: list[Callable[[str], Any]] = []
        self.clicked: list[str] = []
        self.close_calls = 0
        self.release_calls = 0

    @property
    def url(self) -> str:
        return self.page_url

    def on_request(self, callback):
        self.request_callbacks.append(callback)

    def on_response(self, callback):
        self.response_callbacks.append(callback)

    def emit(self, url: str) -> None:
        for cb in self.request_callbacks:
            cb(url)
        for cb in self.response_callbacks:
            cb(url)

    async def navigate(self, url, idle_timeout_ms=None):
        self.ensure_open("navigate")
        if self.navigate_error is not None:
            raise self.navigate_error
        for resource in self.network:
            self.emit(resource)
        return True

    async def evaluate(self, script, arg=None):
        self.ensure_open("evaluate")
        name = _SCRIPT_NAMES.get(script, "unknown")
        if self.eval_error_on in (name, "any"):
            raise ExtractionError(ErrorKind.EVAL_ERROR, f"Execution context was destroyed ({name})")

        if name == "has_video":
            return self.has_video
        if name == "video_fields":
            return self.video_fields
        if name == "images":
            return self.images
        if name == "find_control":
            label = arg["label"]
            return {"index": 0, "description": label} if label in self.controls else None
        if name == "click_control":
            label = arg["label"]
            if label not in self.controls:
                return False
            self.clicked.append(label)
            for resource in self.on_click.get(label, ()):
                self.emit(resource)
            return True
        raise AssertionError(f"Unexpected script: {script[:40]}")

    async def close(self):
        self.close_calls += 1
        await super().close()

    async def _release(self):
        self.release_calls += 1


_SCRIPT_NAMES = {
    HAS_VIDEO_JS: "has_video",
    VIDEO_FIELDS_JS: "video_fields",
    IMAGES_JS: "images",
    FIND_CONTROL_JS: "find_control",
    CLICK_CONTROL_JS: "click_control",
}


class FakeDriver(PageDriver):
    """Hands out sessions built by ``factory`` and remembers them."""

    def __init__(self, factory: Callable[[str], FakeSession]):
        self.factory = factory
        self.sessions: list[FakeSession] = []

    async def open(self, url):
        session = self.factory(url)
        self.sessions.append(session)
        return session


@pytest.fixture
def config(tmp_path):
    """Default config with every delay zeroed and all state under tmp_path."""
    config = load_config()
    config["sequencer"]["step_delay"] = 0
    config["resolver"]["settle_delay"] = 0
    config["batch"]["min_delay"] = 0
    config["batch"]["max_delay"] = 0
    config["cache"]["dir"] = str(tmp_path / "videos")
    config["cache"]["db_path"] = str(tmp_path / "cache.db")
    config["storage"]["saved_searches_dir"] = str(tmp_path / "saved_searches")
    config["storage"]["filtered_pages_path"] = str(tmp_path / "perma_filtered_pages.json")
    return config
