"""
Headless browser engine.

One Chromium instance per export: launched when a session opens and closed
when it exits, whatever the outcome. Nothing is pooled or reused across
requests; a semaphore caps how many sessions are open at once and later
sessions wait for a slot.
"""

import asyncio
import logging
from abc import ABC, abstractmethod
from contextlib import asynccontextmanager
from dataclasses import dataclass, field
from typing import AsyncIterator, Dict, Optional

logger = logging.getLogger(__name__)

# Viewport matching an A4 page at ~150dpi
VIEWPORT = {"width": 1240, "height": 1754}
PDF_MARGIN = {"top": "14mm", "right": "14mm", "bottom": "14mm", "left": "14mm"}


@dataclass
class NavigationResult:
    """What the orchestrator needs to know about a completed navigation."""

    status: Optional[int]
    headers: Dict[str, str] = field(default_factory=dict)


class EngineTimeout(Exception):
    """Navigation or capture exceeded its time budget."""


class EngineError(Exception):
    """Any other headless browser failure."""


class RenderPage(ABC):
    """A single page inside an engine session."""

    @abstractmethod
    async def navigate(self, url: str, timeout_ms: int) -> NavigationResult:
        """Navigate and wait for network activity to settle."""
        pass

    @abstractmethod
    async def marker(self, name: str) -> Optional[str]:
        """Content of <meta name=...> on the current page, if present."""
        pass

    @abstractmethod
    async def text_content(self) -> str:
        """Visible text of the current page."""
        pass

    @abstractmethod
    async def pdf(self) -> bytes:
        """Capture the current page as an A4 PDF."""
        pass


class HeadlessEngine(ABC):
    """Factory for scoped browser sessions."""

    @abstractmethod
    def session(self):
        """Async context manager yielding a RenderPage; releases the browser on exit."""
        pass


class PlaywrightPage(RenderPage):
    """RenderPage backed by a Playwright page."""

    def __init__(self, page):
        self._page = page

    async def navigate(self, url: str, timeout_ms: int) -> NavigationResult:
        from playwright.async_api import TimeoutError as PlaywrightTimeoutError

        self._page.set_default_timeout(timeout_ms)
        try:
            response = await self._page.goto(url, wait_until="networkidle", timeout=timeout_ms)
        except PlaywrightTimeoutError as e:
            raise EngineTimeout(str(e))

        if response is None:
            return NavigationResult(status=None)
        return NavigationResult(
            status=response.status,
            headers={k.lower(): v for k, v in response.headers.items()},
        )

    async def marker(self, name: str) -> Optional[str]:
        locator = self._page.locator(f'meta[name="{name}"]')
        if await locator.count() == 0:
            return None
        return await locator.first.get_attribute("content")

    async def text_content(self) -> str:
        return await self._page.inner_text("body")

    async def pdf(self) -> bytes:
        from playwright.async_api import TimeoutError as PlaywrightTimeoutError

        try:
            return await self._page.pdf(
                format="A4",
                print_background=True,
                display_header_footer=False,
                margin=PDF_MARGIN,
            )
        except PlaywrightTimeoutError as e:
            raise EngineTimeout(str(e))


class PlaywrightEngine(HeadlessEngine):
    """Launches a fresh Chromium per session, at most max_concurrent at a time."""

    def __init__(self, headless: bool = True, max_concurrent: int = 5):
        self._headless = headless
        self._max_concurrent = max_concurrent
        self._semaphore = asyncio.Semaphore(max_concurrent)

    @property
    def max_concurrent(self) -> int:
        return self._max_concurrent

    @property
    def active_sessions(self) -> int:
        return self._max_concurrent - self._semaphore._value

    @asynccontextmanager
    async def session(self) -> AsyncIterator[RenderPage]:
        # Import here to avoid loading Playwright on startup
        from playwright.async_api import async_playwright

        async with self._semaphore:
            logger.debug(f"Render slot acquired ({self.active_sessions}/{self._max_concurrent} active)")
            async with async_playwright() as p:
                try:
                    browser = await p.chromium.launch(
                        headless=self._headless,
                        args=["--no-sandbox", "--disable-setuid-sandbox"],
                    )
                except Exception as e:
                    raise EngineError(f"Failed to launch Chromium: {e}")

                try:
                    page = await browser.new_page(viewport=VIEWPORT, device_scale_factor=1)
                    yield PlaywrightPage(page)
                finally:
                    await browser.close()
                    logger.debug("Chromium closed")


async def validate_playwright() -> Optional[str]:
    """
    Render a tiny PDF to check Chromium works.

    Returns:
        None if Playwright works, otherwise the error message
    """
    try:
        from playwright.async_api import async_playwright

        async with async_playwright() as p:
            browser = await p.chromium.launch(headless=True)
            try:
                page = await browser.new_page()
                await page.set_content("<html><body><h1>Test</h1></body></html>")
                test_pdf = await page.pdf(format="A4")
            finally:
                await browser.close()

        if not test_pdf:
            return "Test PDF generation returned empty result"
        logger.info(f"Playwright validation successful - generated {len(test_pdf)} byte test PDF")
        return None
    except Exception as e:
        return str(e)
