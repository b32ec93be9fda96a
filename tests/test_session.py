"""Playwright session and driver tests with the browser objects mocked out."""

import asyncio
from unittest.mock import AsyncMock, MagicMock

import pytest
from playwright.async_api import Error as PlaywrightError
from playwright.async_api import TimeoutError as PlaywrightTimeoutError

from ad_media_extractor.browser.session import PlaywrightDriver, PlaywrightSession
from ad_media_extractor.errors import ErrorKind, ExtractionError

PAGE_URL = "https://www.facebook.com/ads/archive/render_ad/?id=1"


def _browser_objects():
    page = MagicMock()
    page.url = PAGE_URL
    page.goto = AsyncMock()
    page.evaluate = AsyncMock(return_value=True)
    context = MagicMock()
    context.close = AsyncMock()
    context.new_page = AsyncMock(return_value=page)
    browser = MagicMock()
    browser.close = AsyncMock()
    browser.new_context = AsyncMock(return_value=context)
    playwright = MagicMock()
    playwright.stop = AsyncMock()
    playwright.chromium.launch = AsyncMock(return_value=browser)
    return playwright, browser, context, page


def _session(**kwargs):
    playwright, browser, context, page = _browser_objects()
    kwargs.setdefault("idle_quiet_ms", 20)
    kwargs.setdefault("idle_timeout_ms", 1000)
    session = PlaywrightSession(playwright, browser, context, page, **kwargs)
    return session, page


def _handlers(page, event):
    return [c.args[1] for c in page.on.call_args_list if c.args[0] == event]


# ── Session ──


@pytest.mark.asyncio
async def test_navigate_waits_for_quiet_network():
    session, page = _session()

    assert await session.navigate(PAGE_URL) is True
    page.goto.assert_awaited_once_with(PAGE_URL, wait_until="domcontentloaded", timeout=30000)


@pytest.mark.asyncio
async def test_navigate_goto_timeout_is_navigation_timeout():
    session, page = _session(navigation_timeout_ms=5000)
    page.goto.side_effect = PlaywrightTimeoutError("Timeout 5000ms exceeded.")

    with pytest.raises(ExtractionError) as exc_info:
        await session.navigate(PAGE_URL)

    assert exc_info.value.kind == ErrorKind.NAVIGATION_TIMEOUT
    assert "5000 ms" in exc_info.value.message


@pytest.mark.asyncio
async def test_navigate_goto_failure_is_navigation_error():
    session, page = _session()
    page.goto.side_effect = PlaywrightError("net::ERR_NAME_NOT_RESOLVED")

    with pytest.raises(ExtractionError) as exc_info:
        await session.navigate(PAGE_URL)

    assert exc_info.value.kind == ErrorKind.NAVIGATION_ERROR
    assert "ERR_NAME_NOT_RESOLVED" in exc_info.value.message


@pytest.mark.asyncio
async def test_idle_wait_gives_up_at_cap_while_traffic_continues():
    session, page = _session(idle_quiet_ms=50)
    (touch, *_) = _handlers(page, "request")

    async def chatter():
        while True:
            touch(None)
            await asyncio.sleep(0.01)

    background = asyncio.ensure_future(chatter())
    try:
        assert await session.navigate(PAGE_URL, idle_timeout_ms=150) is False
    finally:
        background.cancel()


@pytest.mark.asyncio
async def test_evaluate_failure_is_eval_error():
    session, page = _session()
    page.evaluate.side_effect = PlaywrightError("Execution context was destroyed")

    with pytest.raises(ExtractionError) as exc_info:
        await session.evaluate("() => 1")

    assert exc_info.value.kind == ErrorKind.EVAL_ERROR


@pytest.mark.asyncio
async def test_request_and_response_callbacks_receive_urls():
    session, page = _session()
    seen = []
    session.on_request(lambda url: seen.append(("request", url)))
    session.on_response(lambda url: seen.append(("response", url)))

    _handlers(page, "request")[-1](MagicMock(url="https://video.xx.fbcdn.net/v/a.mp4"))
    _handlers(page, "response")[-1](MagicMock(url="https://scontent.xx.fbcdn.net/v/b.jpg"))

    assert seen == [
        ("request", "https://video.xx.fbcdn.net/v/a.mp4"),
        ("response", "https://scontent.xx.fbcdn.net/v/b.jpg"),
    ]
    assert session.url == PAGE_URL


@pytest.mark.asyncio
async def test_close_releases_everything_once_despite_errors():
    playwright, browser, context, page = _browser_objects()
    context.close.side_effect = PlaywrightError("Target closed")
    session = PlaywrightSession(playwright, browser, context, page)

    await session.close()
    await session.close()

    context.close.assert_awaited_once()
    browser.close.assert_awaited_once()
    playwright.stop.assert_awaited_once()


@pytest.mark.asyncio
async def test_calls_after_close_raise_session_closed_early():
    session, page = _session()
    await session.close()

    with pytest.raises(ExtractionError) as exc_info:
        await session.navigate(PAGE_URL)
    assert exc_info.value.kind == ErrorKind.SESSION_CLOSED_EARLY

    with pytest.raises(ExtractionError) as exc_info:
        await session.evaluate("() => 1")
    assert exc_info.value.kind == ErrorKind.SESSION_CLOSED_EARLY
    page.goto.assert_not_awaited()


# ── Driver ──


def _patch_playwright(monkeypatch, playwright):
    starter = MagicMock()
    starter.start = AsyncMock(return_value=playwright)
    monkeypatch.setattr("ad_media_extractor.browser.session.async_playwright", lambda: starter)


@pytest.mark.asyncio
async def test_driver_open_builds_configured_session(monkeypatch):
    playwright, browser, context, page = _browser_objects()
    _patch_playwright(monkeypatch, playwright)
    driver = PlaywrightDriver({"browser": {"headless": False, "viewport_width": 800, "viewport_height": 600}})

    session = await driver.open(PAGE_URL)

    assert isinstance(session, PlaywrightSession)
    assert playwright.chromium.launch.await_args.kwargs["headless"] is False
    assert browser.new_context.await_args.kwargs["viewport"] == {"width": 800, "height": 600}
    await session.close()


@pytest.mark.asyncio
async def test_driver_launch_failure_cleans_up(monkeypatch):
    playwright, browser, context, page = _browser_objects()
    browser.new_context.side_effect = PlaywrightError("Browser closed unexpectedly")
    _patch_playwright(monkeypatch, playwright)

    with pytest.raises(ExtractionError) as exc_info:
        await PlaywrightDriver({}).open(PAGE_URL)

    assert exc_info.value.kind == ErrorKind.NAVIGATION_ERROR
    browser.close.assert_awaited_once()
    playwright.stop.assert_awaited_once()


@pytest.mark.asyncio
async def test_driver_cancelled_during_launch_cleans_up(monkeypatch):
    playwright, browser, context, page = _browser_objects()
    entered = asyncio.Event()

    async def stuck_new_context(**kwargs):
        entered.set()
        await asyncio.sleep(3600)

    browser.new_context = AsyncMock(side_effect=stuck_new_context)
    _patch_playwright(monkeypatch, playwright)

    task = asyncio.ensure_future(PlaywrightDriver({}).open(PAGE_URL))
    await entered.wait()
    task.cancel()
    with pytest.raises(asyncio.CancelledError):
        await task

    browser.close.assert_awaited_once()
    playwright.stop.assert_awaited_once()
