# product_pipeline/strategies/static_strategy.py

"""Plain HTTP fetch plus HTML parsing; no JavaScript execution."""

import asyncio

from product_pipeline.currency.detector import CurrencyDetector
from product_pipeline.models.errors import StrategyFailure
from product_pipeline.models.product import RawRecord
from product_pipeline.strategies.base_strategy import (
    BaseFetchStrategy,
    load_site_selectors,
    site_domain,
)
from product_pipeline.strategies.page_parser import parse_product_html


class StaticHtmlStrategy(BaseFetchStrategy):
    """Fetch the server-rendered page and parse it."""

    name = "static_html"

    def __init__(self, detector: CurrencyDetector | None = None) -> None:
        super().__init__()
        self.detector = detector or CurrencyDetector()

    async def try_extract(self, url: str) -> RawRecord:
        html = await asyncio.to_thread(self._get_html, url)
        if not html:
            raise StrategyFailure(self.name, "page fetch failed")

        selectors = load_site_selectors(site_domain(url))
        record = parse_product_html(html, url, selectors, self.detector)
        if not record.has_required_fields():
            raise StrategyFailure(self.name, "no product name in HTML")
        return record
