"""
Browser Engine Service

Owns the single headless Chromium instance shared by every conversion.
The browser is launched once at startup; each conversion derives an
isolated browser context with one page from it and closes it afterwards.
"""

import logging
from contextlib import asynccontextmanager
from typing import AsyncIterator, List, Optional

from playwright.async_api import async_playwright, Browser, Page, Playwright

logger = logging.getLogger(__name__)

CHROMIUM_ARGS: List[str] = [
    "--disable-gpu",
    "--no-sandbox",
    "--disable-dev-shm-usage",
    "--disable-setuid-sandbox",
    "--no-first-run",
    "--no-zygote",
    "--disable-extensions",
    "--disable-background-networking",
    "--disable-sync",
    "--disable-translate",
]


class EngineNotRunningError(RuntimeError):
    pass


class BrowserEngine:
    """Long-lived Playwright Chromium instance."""

    def __init__(self, headless: bool = True, max_sessions: int = 16):
        self.headless = headless
        self.max_sessions = max_sessions
        self._playwright: Optional[Playwright] = None
        self._browser: Optional[Browser] = None
        self._active_sessions = 0

    async def __aenter__(self):
        await self.start()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.stop()

    async def start(self) -> None:
        """Launch Chromium and open/close one context to warm it up."""
        if self._browser is not None:
            return

        logger.info(f"Launching Chromium (headless={self.headless})")
        self._playwright = await async_playwright().start()
        try:
            self._browser = await self._playwright.chromium.launch(
                headless=self.headless,
                args=CHROMIUM_ARGS,
            )
            warmup = await self._browser.new_context()
            await warmup.close()
        except Exception:
            await self.stop()
            raise
        logger.info(f"Chromium {self._browser.version} ready")

    async def stop(self) -> None:
        if self._browser:
            try:
                await self._browser.close()
            except Exception as e:
                logger.warning(f"Failed to close browser cleanly: {str(e)}")
            self._browser = None
        if self._playwright:
            await self._playwright.stop()
            self._playwright = None
        logger.info("Browser engine stopped")

    @property
    def is_running(self) -> bool:
        return self._browser is not None and self._browser.is_connected()

    @property
    def state(self) -> str:
        return "running" if self.is_running else "stopped"

    @property
    def active_sessions(self) -> int:
        return self._active_sessions

    @asynccontextmanager
    async def task_context(self) -> AsyncIterator[Page]:
        """
        Yield a page in a fresh, isolated browser context.

        The context is closed on every exit path, including cancellation.
        """
        if self._browser is None:
            raise EngineNotRunningError("Browser engine is not running")

        context = await self._browser.new_context()
        self._active_sessions += 1
        try:
            page = await context.new_page()
            yield page
        finally:
            self._active_sessions -= 1
            try:
                await context.close()
                logger.debug("Browser context closed")
            except Exception as e:
                logger.warning(f"Failed to close browser context: {str(e)}")
