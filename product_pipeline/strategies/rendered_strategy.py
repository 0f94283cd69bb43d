# product_pipeline/strategies/rendered_strategy.py

"""Headless-browser rendering for pages that build content client-side."""

from typing import Any

from playwright.async_api import Browser
from playwright.async_api import Error as PlaywrightError
from playwright.async_api import TimeoutError as PlaywrightTimeoutError

from product_pipeline.config.settings import Settings
from product_pipeline.currency.detector import CurrencyDetector
from product_pipeline.models.errors import (
    PoolClosedError,
    ResourceExhaustedError,
    StrategyFailure,
)
from product_pipeline.models.product import RawRecord
from product_pipeline.rendering.pool import RenderPool
from product_pipeline.strategies.base_strategy import (
    ExtractionStrategy,
    load_site_selectors,
    site_domain,
)
from product_pipeline.strategies.page_parser import parse_product_html

# Scroll in steps so lazy-loaded gallery images get a real src
_SCROLL_SCRIPT = """
async () => {
    for (let y = 0; y < document.body.scrollHeight; y += 600) {
        window.scrollTo(0, y);
        await new Promise((r) => setTimeout(r, 100));
    }
    window.scrollTo(0, 0);
}
"""


class RenderedStrategy(ExtractionStrategy):
    """Render the page in a pooled browser, then parse the final DOM.

    Every render holds one pool resource for its whole duration and
    gives it back on every exit path, including cancellation.
    """

    name = "rendered"

    def __init__(
        self,
        render_pool: RenderPool[Browser],
        detector: CurrencyDetector | None = None,
    ) -> None:
        super().__init__()
        self.pool = render_pool
        self.detector = detector or CurrencyDetector()

    async def try_extract(self, url: str) -> RawRecord:
        try:
            async with self.pool.session(
                timeout=Settings.RENDER_ACQUIRE_TIMEOUT
            ) as browser:
                html = await self._render(browser, url)
        except (ResourceExhaustedError, PoolClosedError) as exc:
            raise StrategyFailure(self.name, str(exc)) from exc

        selectors = load_site_selectors(site_domain(url))
        record = parse_product_html(html, url, selectors, self.detector)
        if not record.has_required_fields():
            raise StrategyFailure(self.name, "no product name after render")
        return record

    async def _render(self, browser: Browser, url: str) -> str:
        if not browser.is_connected():
            await self.pool.discard(browser)
            raise StrategyFailure(self.name, "browser disconnected")

        context: Any = await browser.new_context(
            user_agent=Settings.BROWSER_USER_AGENT,
            locale="en-US",
        )
        try:
            page = await context.new_page()
            try:
                await page.goto(
                    url,
                    wait_until="domcontentloaded",
                    timeout=Settings.RENDER_NAVIGATION_TIMEOUT,
                )
            except PlaywrightTimeoutError as exc:
                raise StrategyFailure(
                    self.name, "navigation timed out"
                ) from exc
            except PlaywrightError as exc:
                if not browser.is_connected():
                    await self.pool.discard(browser)
                raise StrategyFailure(
                    self.name, f"navigation failed: {exc.message}"
                ) from exc

            try:
                await page.wait_for_load_state(
                    "networkidle", timeout=Settings.RENDER_IDLE_TIMEOUT
                )
            except PlaywrightTimeoutError:
                self.logger.debug(
                    "[%s] %s never went network-idle, using current DOM",
                    self.name,
                    url,
                )
            await page.evaluate(_SCROLL_SCRIPT)
            html: str = await page.content()
            return html
        finally:
            try:
                await context.close()
            except PlaywrightError as exc:
                self.logger.debug(
                    "[%s] Context close failed: %s", self.name, exc
                )
