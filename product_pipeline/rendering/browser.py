# product_pipeline/rendering/browser.py

"""Playwright Chromium launcher used as the render pool's factory."""

import asyncio
import logging

from playwright.async_api import Browser, Playwright, async_playwright

from product_pipeline.config.settings import Settings

logger = logging.getLogger("product_pipeline.browser")


class BrowserLauncher:
    """Starts Playwright once and launches headless Chromium instances."""

    def __init__(self, headless: bool = True) -> None:
        self.headless = headless
        self._playwright: Playwright | None = None
        self._start_lock = asyncio.Lock()

    async def _ensure_started(self) -> Playwright:
        async with self._start_lock:
            if self._playwright is None:
                self._playwright = await async_playwright().start()
                logger.info("Playwright driver started")
            return self._playwright

    async def launch(self) -> Browser:
        """Launch a new headless Chromium browser."""
        playwright = await self._ensure_started()
        browser = await playwright.chromium.launch(
            headless=self.headless,
            args=Settings.BROWSER_ARGS,
        )
        logger.debug("Chromium %s launched", browser.version)
        return browser

    async def close_browser(self, browser: Browser) -> None:
        """Close one browser; safe to call on a disconnected browser."""
        if browser.is_connected():
            await browser.close()

    async def stop(self) -> None:
        """Stop the Playwright driver after all browsers are closed."""
        if self._playwright is not None:
            await self._playwright.stop()
            self._playwright = None
            logger.info("Playwright driver stopped")
