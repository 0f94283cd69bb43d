# product_pipeline/strategies/managed_strategy.py

"""Last-resort extraction through the Firecrawl managed scraping API."""

import asyncio
from typing import Any

from firecrawl import Firecrawl

from product_pipeline.config.settings import Settings
from product_pipeline.currency.detector import CurrencyDetector
from product_pipeline.models.errors import StrategyFailure
from product_pipeline.models.product import RawRecord
from product_pipeline.strategies.base_strategy import (
    ExtractionStrategy,
    load_site_selectors,
    site_domain,
)
from product_pipeline.strategies.page_parser import parse_product_html


def _metadata_title(metadata: Any) -> str:
    if isinstance(metadata, dict):
        title = metadata.get("title") or metadata.get("og:title")
    else:
        title = getattr(metadata, "title", None) or getattr(
            metadata, "og_title", None
        )
    return str(title or "").strip()


class FirecrawlStrategy(ExtractionStrategy):
    """Delegate rendering to Firecrawl and parse the returned HTML.

    Costs money per call, so it sits at the end of the chain.  Without
    an API key the strategy fails immediately.
    """

    name = "firecrawl"

    def __init__(
        self,
        api_key: str | None = None,
        detector: CurrencyDetector | None = None,
    ) -> None:
        super().__init__()
        self.api_key = api_key or Settings.FIRECRAWL_API_KEY
        self.detector = detector or CurrencyDetector()
        self._client: Any = None

    def _get_client(self) -> Any:
        if self._client is None:
            self._client = Firecrawl(api_key=self.api_key)
        return self._client

    async def try_extract(self, url: str) -> RawRecord:
        if not self.api_key:
            raise StrategyFailure(self.name, "FIRECRAWL_API_KEY not set")

        client = self._get_client()
        try:
            document: Any = await asyncio.to_thread(
                client.scrape, url, formats=["html"]
            )
        except Exception as exc:
            raise StrategyFailure(
                self.name, f"Firecrawl request failed: {exc}"
            ) from exc

        html = str(getattr(document, "html", "") or "")
        if not html:
            raise StrategyFailure(self.name, "Firecrawl returned no HTML")

        selectors = load_site_selectors(site_domain(url))
        record = parse_product_html(html, url, selectors, self.detector)
        if not record.name:
            record.name = _metadata_title(getattr(document, "metadata", None))
        if not record.has_required_fields():
            raise StrategyFailure(self.name, "no product name in HTML")
        self.logger.info(
            "[%s] Extracted %s via Firecrawl (%d chars of HTML)",
            self.name,
            url,
            len(html),
        )
        return record
