"""
ChartPulse - Browser Sessions

Narrow browser capability used by the capture unit, with a Playwright
implementation. Each session owns its own Playwright driver, Chromium
process and context: no cookies, storage or crashes are shared between
timeframes.
"""

from __future__ import annotations

from contextlib import asynccontextmanager
from pathlib import Path
from typing import Any, AsyncIterator, Callable, Protocol, AsyncContextManager

from playwright.async_api import (
    Browser,
    BrowserContext,
    Page,
    Playwright,
    TimeoutError as PlaywrightTimeoutError,
    async_playwright,
)

from chartpulse.config import BrowserConfig
from chartpulse.logging import get_logger

logger = get_logger(__name__, component="browser")


class BrowserSession(Protocol):
    """What the capture unit needs from a browser."""

    async def navigate(self, url: str, wait_until: str = "domcontentloaded") -> None: ...

    async def reload(self, wait_until: str = "domcontentloaded") -> None: ...

    async def wait(self, ms: int) -> None: ...

    async def wait_for_selector(self, selector: str, timeout_ms: int = 5000) -> bool: ...

    async def evaluate(self, script: str, arg: Any = None) -> Any: ...

    async def screenshot(self, path: str | Path, full_page: bool = False) -> str: ...

    async def close(self) -> None: ...


SessionFactory = Callable[[], AsyncContextManager[BrowserSession]]


class PlaywrightSession:
    """BrowserSession backed by a dedicated Chromium instance."""

    def __init__(self, config: BrowserConfig):
        self.config = config
        self._playwright: Playwright | None = None
        self._browser: Browser | None = None
        self._context: BrowserContext | None = None
        self._page: Page | None = None

    async def start(self) -> "PlaywrightSession":
        self._playwright = await async_playwright().start()
        self._browser = await self._playwright.chromium.launch(
            headless=self.config.headless,
            slow_mo=self.config.slow_mo_ms,
        )
        self._context = await self._browser.new_context(
            viewport={
                "width": self.config.viewport_width,
                "height": self.config.viewport_height,
            },
            user_agent=self.config.user_agent,
        )
        self._page = await self._context.new_page()
        self._page.set_default_timeout(self.config.timeout_ms)
        logger.debug("browser_session_started", headless=self.config.headless)
        return self

    @property
    def page(self) -> Page:
        if self._page is None:
            raise RuntimeError("Browser session not started")
        return self._page

    async def navigate(self, url: str, wait_until: str = "domcontentloaded") -> None:
        logger.debug("navigating", url=url)
        await self.page.goto(url, wait_until=wait_until, timeout=self.config.timeout_ms)

    async def reload(self, wait_until: str = "domcontentloaded") -> None:
        await self.page.reload(wait_until=wait_until, timeout=self.config.timeout_ms)

    async def wait(self, ms: int) -> None:
        await self.page.wait_for_timeout(ms)

    async def wait_for_selector(self, selector: str, timeout_ms: int = 5000) -> bool:
        try:
            await self.page.locator(selector).first.wait_for(state="visible", timeout=timeout_ms)
            return True
        except PlaywrightTimeoutError:
            logger.warning("element_not_found", selector=selector)
            return False

    async def evaluate(self, script: str, arg: Any = None) -> Any:
        return await self.page.evaluate(script, arg)

    async def screenshot(self, path: str | Path, full_page: bool = False) -> str:
        path = Path(path)
        path.parent.mkdir(parents=True, exist_ok=True)
        await self.page.screenshot(path=str(path), full_page=full_page)
        return str(path)

    async def close(self) -> None:
        """Close context, browser and driver; safe to call more than once."""
        try:
            if self._context is not None:
                await self._context.close()
            if self._browser is not None:
                await self._browser.close()
        finally:
            if self._playwright is not None:
                await self._playwright.stop()
            self._context = self._browser = self._playwright = None
            self._page = None


def playwright_session_factory(config: BrowserConfig) -> SessionFactory:
    """Factory producing isolated Playwright sessions that always close."""

    @asynccontextmanager
    async def open_session() -> AsyncIterator[BrowserSession]:
        session = PlaywrightSession(config)
        try:
            await session.start()
            yield session
        finally:
            try:
                await session.close()
            except Exception as e:
                logger.warning("browser_close_failed", error=str(e))

    return open_session
