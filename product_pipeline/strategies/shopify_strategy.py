# product_pipeline/strategies/shopify_strategy.py

"""Shopify storefronts via the public ``/products/<handle>.json`` endpoint."""

import asyncio
from typing import Any
from urllib.parse import urlsplit, urlunsplit

from bs4 import BeautifulSoup

from product_pipeline.currency.detector import CurrencyDetector, parse_price
from product_pipeline.models.errors import StrategyFailure
from product_pipeline.models.product import (
    ImageOrigin,
    RawCandidateImage,
    RawRecord,
)
from product_pipeline.strategies.base_strategy import BaseFetchStrategy


def product_json_url(url: str) -> str | None:
    """Return the ``.json`` endpoint for a Shopify product URL."""
    parts = urlsplit(url)
    path = parts.path.rstrip("/")
    if "/products/" not in path:
        return None
    if not path.endswith(".json"):
        path += ".json"
    return urlunsplit((parts.scheme, parts.netloc, path, "", ""))


class ShopifyJsonStrategy(BaseFetchStrategy):
    """Reads the structured product JSON every Shopify store exposes.

    Cheapest strategy in the chain: one small JSON request, no HTML
    parsing.  URLs without a ``/products/`` segment are skipped.
    """

    name = "shopify_json"

    def __init__(self, detector: CurrencyDetector | None = None) -> None:
        super().__init__()
        self.detector = detector or CurrencyDetector()

    async def try_extract(self, url: str) -> RawRecord:
        json_url = product_json_url(url)
        if json_url is None:
            raise StrategyFailure(
                self.name, "not applicable: not a /products/ URL"
            )

        headers = {
            **self.settings.DEFAULT_HEADERS,
            "Accept": "application/json",
        }
        resp = await asyncio.to_thread(self._fetch_get, json_url, headers)
        if resp is None:
            raise StrategyFailure(self.name, f"no response from {json_url}")
        try:
            payload: dict[str, Any] = resp.json()
        except ValueError as exc:
            raise StrategyFailure(
                self.name, "product endpoint did not return JSON"
            ) from exc

        product = payload.get("product")
        if not isinstance(product, dict):
            raise StrategyFailure(self.name, "payload has no 'product'")
        return self._to_record(product, url)

    def _to_record(self, product: dict[str, Any], url: str) -> RawRecord:
        body_html = product.get("body_html") or ""
        record = RawRecord(
            name=str(product.get("title") or "").strip(),
            brand=str(product.get("vendor") or "").strip(),
            description=" ".join(
                BeautifulSoup(body_html, "lxml").get_text(" ").split()
            ),
        )

        variants = product.get("variants") or []
        if variants and isinstance(variants[0], dict):
            price_text = str(variants[0].get("price") or "")
            record.price_text = price_text
            record.price = parse_price(price_text) if price_text else None

        for image in product.get("images") or []:
            src = image.get("src") if isinstance(image, dict) else None
            if src:
                record.images.append(
                    RawCandidateImage(str(src), ImageOrigin.STRUCTURED_DATA)
                )

        if record.price is not None:
            record.currency = self.detector.detect(
                None, url, record.price_text
            )
        self.logger.debug(
            "[%s] %s: %d images from product JSON",
            self.name,
            record.name,
            len(record.images),
        )
        return record
