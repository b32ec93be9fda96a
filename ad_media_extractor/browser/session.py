"""Page Driver: one isolated Playwright browser per extraction attempt.

The engine only ever talks to :class:`BrowserSession`: navigate, evaluate,
request/response subscription, the current URL and close. Everything else
Playwright offers stays inside this module.
"""

from __future__ import annotations

import abc
import asyncio
from typing import Any, Callable, Optional

from playwright.async_api import Browser, BrowserContext, Page, Playwright, async_playwright
from playwright.async_api import Error as PlaywrightError
from playwright.async_api import TimeoutError as PlaywrightTimeoutError

from ad_media_extractor.errors import ErrorKind, ExtractionError
from ad_media_extractor.utils.logging import get_logger

logger = get_logger(__name__)

UrlCallback = Callable[[str], Any]

DEFAULT_USER_AGENT = (
    "Mozilla/5.0 (Macintosh; Intel Mac OS X 10_15_7) "
    "AppleWebKit/537.36 (KHTML, like Gecko) "
    "Chrome/120.0.0.0 Safari/537.36"
)


class BrowserSession(abc.ABC):
    """One browser navigation context, owned by a single extraction attempt."""

    def __init__(self) -> None:
        self._closed = False

    @property
    def closed(self) -> bool:
        return self._closed

    @property
    @abc.abstractmethod
    def url(self) -> str:
        """Current page URL, used as the base for relative media URLs."""

    @abc.abstractmethod
    async def navigate(self, url: str, idle_timeout_ms: Optional[int] = None) -> bool:
        """Load ``url`` and wait for network quiet.

        Returns True if the page went quiet, False if the idle wait hit its cap.
        """

    @abc.abstractmethod
    async def evaluate(self, script: str, arg: Any = None) -> Any:
        """Run ``script`` in the page and return its value."""

    @abc.abstractmethod
    def on_request(self, callback: UrlCallback) -> None: ...

    @abc.abstractmethod
    def on_response(self, callback: UrlCallback) -> None: ...

    @abc.abstractmethod
    async def _release(self) -> None:
        """Free the underlying browser resources."""

    async def close(self) -> None:
        """Release browser resources. Safe to call more than once."""
        if self._closed:
            return
        self._closed = True
        await self._release()

    def ensure_open(self, operation: str) -> None:
        if self._closed:
            raise ExtractionError(
                ErrorKind.SESSION_CLOSED_EARLY,
                f"{operation} called after the session was closed",
            )

    async def __aenter__(self) -> "BrowserSession":
        return self

    async def __aexit__(self, *args) -> None:
        await self.close()


class PageDriver(abc.ABC):
    @abc.abstractmethod
    async def open(self, url: str) -> BrowserSession:
        """Create a fresh, isolated session for ``url``."""


class PlaywrightSession(BrowserSession):
    """BrowserSession backed by its own Playwright, browser and context."""

    def __init__(
        self,
        playwright: Playwright,
        browser: Browser,
        context: BrowserContext,
        page: Page,
        navigation_timeout_ms: int = 30000,
        idle_quiet_ms: int = 500,
        idle_timeout_ms: int = 10000,
    ):
        super().__init__()
        self._playwright = playwright
        self._browser = browser
        self._context = context
        self._page = page
        self.navigation_timeout_ms = navigation_timeout_ms
        self.idle_quiet_ms = idle_quiet_ms
        self.idle_timeout_ms = idle_timeout_ms
        self._last_activity = asyncio.get_running_loop().time()

        page.on("request", self._touch)
        page.on("requestfinished", self._touch)
        page.on("requestfailed", self._touch)
        page.on("response", self._touch)

    @property
    def url(self) -> str:
        return self._page.url

    def _touch(self, _event: Any) -> None:
        self._last_activity = asyncio.get_running_loop().time()

    def on_request(self, callback: UrlCallback) -> None:
        self._page.on("request", lambda request: callback(request.url))

    def on_response(self, callback: UrlCallback) -> None:
        self._page.on("response", lambda response: callback(response.url))

    async def navigate(self, url: str, idle_timeout_ms: Optional[int] = None) -> bool:
        self.ensure_open("navigate")
        logger.info(f"Navigating to {url}")
        try:
            await self._page.goto(
                url, wait_until="domcontentloaded", timeout=self.navigation_timeout_ms
            )
        except PlaywrightTimeoutError as e:
            raise ExtractionError(
                ErrorKind.NAVIGATION_TIMEOUT,
                f"No response from {url} within {self.navigation_timeout_ms} ms",
            ) from e
        except PlaywrightError as e:
            raise ExtractionError(ErrorKind.NAVIGATION_ERROR, str(e)) from e

        return await self._wait_for_idle(idle_timeout_ms or self.idle_timeout_ms)

    async def _wait_for_idle(self, idle_timeout_ms: int) -> bool:
        loop = asyncio.get_running_loop()
        quiet = self.idle_quiet_ms / 1000
        deadline = loop.time() + idle_timeout_ms / 1000
        self._last_activity = loop.time()

        while True:
            now = loop.time()
            if now - self._last_activity >= quiet:
                return True
            if now >= deadline:
                logger.debug(f"Network never went quiet within {idle_timeout_ms} ms")
                return False
            await asyncio.sleep(min(0.1, quiet))

    async def evaluate(self, script: str, arg: Any = None) -> Any:
        self.ensure_open("evaluate")
        try:
            return await self._page.evaluate(script, arg)
        except PlaywrightError as e:
            raise ExtractionError(ErrorKind.EVAL_ERROR, str(e)) from e

    async def _release(self) -> None:
        await _close_all(
            ("context", self._context.close),
            ("browser", self._browser.close),
            ("playwright", self._playwright.stop),
        )


async def _close_all(*closers: tuple[str, Callable[[], Any]]) -> None:
    """Run every closer in order; one failing does not skip the rest."""
    for name, closer in closers:
        try:
            await closer()
        except Exception as e:
            logger.warning(f"Failed to close {name}: {e}")


class PlaywrightDriver(PageDriver):
    """Launches a dedicated Chromium for every session."""

    def __init__(self, config: dict[str, Any]):
        browser_cfg = config.get("browser", {})
        self.headless = browser_cfg.get("headless", True)
        self.navigation_timeout_ms = browser_cfg.get("navigation_timeout_ms", 30000)
        self.idle_quiet_ms = browser_cfg.get("idle_quiet_ms", 500)
        self.idle_timeout_ms = browser_cfg.get("idle_timeout_ms", 10000)
        self.viewport = {
            "width": browser_cfg.get("viewport_width", 1920),
            "height": browser_cfg.get("viewport_height", 1080),
        }
        self.user_agent = browser_cfg.get("user_agent", DEFAULT_USER_AGENT)
        self.launch_args = browser_cfg.get(
            "launch_args", ["--no-sandbox", "--disable-setuid-sandbox"]
        )

    async def open(self, url: str) -> PlaywrightSession:
        logger.debug(f"Launching browser for {url}")
        playwright = await async_playwright().start()
        browser: Optional[Browser] = None
        try:
            browser = await playwright.chromium.launch(
                headless=self.headless,
                args=self.launch_args,
            )
            context = await browser.new_context(
                viewport=self.viewport,
                user_agent=self.user_agent,
            )
            page = await context.new_page()
        except BaseException as e:
            # Cancellation lands here too; nothing may outlive a failed open
            closers = [("playwright", playwright.stop)]
            if browser is not None:
                closers.insert(0, ("browser", browser.close))
            await _close_all(*closers)
            if isinstance(e, PlaywrightError):
                raise ExtractionError(
                    ErrorKind.NAVIGATION_ERROR, f"Browser launch failed: {e}"
                ) from e
            raise

        return PlaywrightSession(
            playwright,
            browser,
            context,
            page,
            navigation_timeout_ms=self.navigation_timeout_ms,
            idle_quiet_ms=self.idle_quiet_ms,
            idle_timeout_ms=self.idle_timeout_ms,
        )
