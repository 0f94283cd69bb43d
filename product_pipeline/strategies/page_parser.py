# product_pipeline/strategies/page_parser.py

"""Turn a product page's HTML into a :class:`RawRecord`.

Sources are layered strongest first: site selectors, JSON-LD, microdata,
OpenGraph/product meta tags, then plain DOM fallbacks.  A field already
filled by a stronger source is never overwritten.
"""

import json
import logging
import re
from collections.abc import Iterator
from typing import Any
from urllib.parse import urljoin

from bs4 import BeautifulSoup, Tag

from product_pipeline.currency.detector import CurrencyDetector, parse_price
from product_pipeline.models.product import (
    ImageOrigin,
    RawCandidateImage,
    RawRecord,
)

logger = logging.getLogger("product_pipeline.parser")

_GALLERY_SELECTORS = (
    "[class*='gallery'] img",
    "[class*='product-image'] img",
    "[class*='product__media'] img",
    "[class*='pdp'] img",
    "[data-testid*='product-image'] img",
    "picture img",
)

_SKIP_IMAGE_TOKENS = (
    "placeholder",
    "loading",
    "spinner",
    "logo",
    "icon",
    "sprite",
    "badge",
    "data:image",
)

_ZARA_IMAGE_RE = re.compile(
    r"https://static\.zara\.net[^\"'\s,]+?\.(?:jpg|jpeg|png|webp)"
    r"(?:\?[^\"'\s,]*)?",
    re.I,
)
_ZARA_PRODUCT_ID_RE = re.compile(r"-p(\d+)\.html")


def _absolute(page_url: str, src: str) -> str:
    """Resolve a site-relative image URL against the page URL."""
    src = src.strip()
    if src.startswith(("http://", "https://", "//", "data:")):
        return src
    return urljoin(page_url, src)


def _clean_text(value: Any) -> str:
    if value is None:
        return ""
    text = BeautifulSoup(str(value), "lxml").get_text(" ")
    return " ".join(text.split())


def _as_list(value: Any) -> list[Any]:
    if value is None:
        return []
    if isinstance(value, list):
        return value
    return [value]


# ── JSON-LD ─────────────────────────────────────────────────────────


def _is_product(node: Any) -> bool:
    if not isinstance(node, dict):
        return False
    node_type = node.get("@type")
    types = node_type if isinstance(node_type, list) else [node_type]
    return "Product" in types or "ProductGroup" in types


def _iter_json_ld_products(soup: BeautifulSoup) -> Iterator[dict[str, Any]]:
    for script in soup.find_all(
        "script", attrs={"type": "application/ld+json"}
    ):
        raw = script.string or script.get_text()
        if not raw:
            continue
        try:
            data = json.loads(raw)
        except json.JSONDecodeError:
            logger.debug("Skipping unparseable JSON-LD block")
            continue

        nodes: list[Any] = _as_list(data)
        for node in list(nodes):
            if isinstance(node, dict):
                nodes.extend(_as_list(node.get("@graph")))
                main = node.get("mainEntity")
                if isinstance(main, dict):
                    nodes.append(main)
        for node in nodes:
            if _is_product(node):
                yield node


def _json_ld_image_urls(value: Any) -> list[str]:
    urls: list[str] = []
    for item in _as_list(value):
        if isinstance(item, str):
            urls.append(item)
        elif isinstance(item, dict):
            url = item.get("contentUrl") or item.get("url")
            if isinstance(url, str):
                urls.append(url)
    return urls


def _apply_json_ld(soup: BeautifulSoup, url: str, record: RawRecord) -> None:
    for product in _iter_json_ld_products(soup):
        if not record.name and product.get("name"):
            record.name = _clean_text(product["name"])

        brand = product.get("brand")
        if not record.brand and brand:
            if isinstance(brand, dict):
                record.brand = _clean_text(brand.get("name", ""))
            else:
                record.brand = _clean_text(brand)

        if not record.description and product.get("description"):
            record.description = _clean_text(product["description"])

        offers = _as_list(product.get("offers"))
        if offers and isinstance(offers[0], dict):
            offer = offers[0]
            if record.currency is None and offer.get("priceCurrency"):
                record.currency = str(offer["priceCurrency"]).upper()
            raw_price = offer.get("price") or offer.get("lowPrice")
            if record.price is None and raw_price not in (None, ""):
                if isinstance(raw_price, str):
                    record.price_text = record.price_text or raw_price
                record.price = parse_price(raw_price, record.currency)

        for src in _json_ld_image_urls(product.get("image")):
            record.images.append(
                RawCandidateImage(
                    _absolute(url, src), ImageOrigin.STRUCTURED_DATA
                )
            )


# ── Microdata ───────────────────────────────────────────────────────


def _itemprop(scope: Tag, prop: str) -> str:
    tag = scope.find(attrs={"itemprop": prop})
    if not isinstance(tag, Tag):
        return ""
    content = tag.get("content")
    if content:
        return str(content).strip()
    return tag.get_text(" ", strip=True)


def _apply_microdata(
    soup: BeautifulSoup, url: str, record: RawRecord
) -> None:
    scope = soup.find(attrs={"itemtype": re.compile(r"schema\.org/Product")})
    if not isinstance(scope, Tag):
        return
    if not record.name:
        record.name = _itemprop(scope, "name")
    if not record.brand:
        record.brand = _itemprop(scope, "brand")
    if not record.description:
        record.description = _itemprop(scope, "description")
    if record.currency is None:
        currency = _itemprop(scope, "priceCurrency")
        record.currency = currency.upper() if currency else None
    if record.price is None:
        price_text = _itemprop(scope, "price")
        if price_text:
            record.price_text = record.price_text or price_text
            record.price = parse_price(price_text, record.currency)
    for tag in scope.find_all(attrs={"itemprop": "image"}):
        src = tag.get("content") or tag.get("src") or tag.get("href")
        if src:
            record.images.append(
                RawCandidateImage(
                    _absolute(url, str(src)), ImageOrigin.STRUCTURED_DATA
                )
            )


# ── OpenGraph / product meta ────────────────────────────────────────


def _meta(soup: BeautifulSoup, *names: str) -> str:
    for name in names:
        tag = soup.find("meta", attrs={"property": name}) or soup.find(
            "meta", attrs={"name": name}
        )
        if isinstance(tag, Tag) and tag.get("content"):
            return str(tag["content"]).strip()
    return ""


def _apply_open_graph(
    soup: BeautifulSoup, url: str, record: RawRecord
) -> None:
    if not record.name:
        record.name = _clean_text(_meta(soup, "og:title", "product:title"))
    if not record.description:
        record.description = _meta(
            soup, "og:description", "product:description", "description"
        )
    if not record.brand:
        record.brand = _meta(soup, "product:brand", "og:brand")
    if record.currency is None:
        currency = _meta(
            soup, "product:price:currency", "og:price:currency"
        )
        record.currency = currency.upper() if currency else None
    if record.price is None:
        price_text = _meta(
            soup, "product:price:amount", "og:price:amount", "product:price"
        )
        if price_text:
            record.price_text = record.price_text or price_text
            record.price = parse_price(price_text, record.currency)

    for prop in ("og:image", "og:image:secure_url", "twitter:image"):
        for tag in soup.find_all("meta", attrs={"property": prop}) + soup.find_all(
            "meta", attrs={"name": prop}
        ):
            if tag.get("content"):
                record.images.append(
                    RawCandidateImage(
                        _absolute(url, str(tag["content"])), ImageOrigin.META
                    )
                )


# ── Site selectors and DOM fallbacks ───────────────────────────────


def _select_text(soup: BeautifulSoup, selector: str | None) -> str:
    if not selector:
        return ""
    tag = soup.select_one(selector)
    return tag.get_text(" ", strip=True) if tag else ""


def _largest_srcset_entry(srcset: str) -> str:
    best_url = ""
    best_width = -1
    for part in srcset.split(","):
        pieces = part.strip().split()
        if not pieces:
            continue
        width = 0
        if len(pieces) > 1 and pieces[1].endswith("w"):
            try:
                width = int(pieces[1][:-1])
            except ValueError:
                width = 0
        if width > best_width:
            best_url, best_width = pieces[0], width
    return best_url


def _image_src(tag: Tag) -> str:
    srcset = tag.get("srcset") or tag.get("data-srcset")
    if srcset:
        url = _largest_srcset_entry(str(srcset))
        if url:
            return url
    for attr in ("data-zoom-image", "data-src", "data-original", "src"):
        value = tag.get(attr)
        if value:
            return str(value)
    return ""


def _gallery_images(
    soup: BeautifulSoup, url: str, selector: str | None
) -> list[RawCandidateImage]:
    selectors = [selector] if selector else list(_GALLERY_SELECTORS)
    found: list[RawCandidateImage] = []
    for css in selectors:
        for tag in soup.select(css):
            src = _image_src(tag)
            if not src or any(t in src.lower() for t in _SKIP_IMAGE_TOKENS):
                continue
            found.append(
                RawCandidateImage(_absolute(url, src), ImageOrigin.GALLERY)
            )
        if found:
            break
    return found


def extract_zara_images(html: str, url: str) -> list[RawCandidateImage]:
    """Main gallery images for a Zara product, found in the raw HTML."""
    match = _ZARA_PRODUCT_ID_RE.search(url)
    if not match:
        return []
    product_id = match.group(1)
    images: list[RawCandidateImage] = []
    for img in dict.fromkeys(_ZARA_IMAGE_RE.findall(html)):
        lower = img.lower()
        if product_id not in img:
            continue
        if any(t in lower for t in ("thumb", "icon", "badge", "logo")):
            continue
        images.append(RawCandidateImage(img, ImageOrigin.GALLERY))
    return images


def parse_product_html(
    html: str,
    url: str,
    selectors: dict[str, str] | None = None,
    detector: CurrencyDetector | None = None,
) -> RawRecord:
    """Extract a raw product record from *html*.

    ``selectors`` is the optional site table (``name``, ``brand``,
    ``price``, ``images``, ``brand_default``, ``currency``).
    """
    selectors = selectors or {}
    soup = BeautifulSoup(html, "lxml")
    record = RawRecord()

    # Site-specific selectors win when present
    record.name = _select_text(soup, selectors.get("name"))
    record.brand = _select_text(soup, selectors.get("brand"))
    if selectors.get("currency"):
        record.currency = selectors["currency"].upper()
    site_price = _select_text(soup, selectors.get("price"))
    if site_price:
        record.price_text = site_price
        record.price = parse_price(site_price, record.currency)

    _apply_json_ld(soup, url, record)
    _apply_microdata(soup, url, record)
    _apply_open_graph(soup, url, record)

    if not record.name:
        h1 = soup.find("h1")
        record.name = h1.get_text(" ", strip=True) if h1 else ""
    if not record.brand:
        record.brand = selectors.get("brand_default", "")

    record.images.extend(_gallery_images(soup, url, selectors.get("images")))
    if "zara.com" in url:
        record.images.extend(extract_zara_images(html, url))

    if record.currency is None and record.price is not None:
        record.currency = (detector or CurrencyDetector()).detect(
            soup, url, record.price_text
        )
    if record.price_text and record.currency:
        # Separators in "1.299" only resolve once the currency is known
        reparsed = parse_price(record.price_text, record.currency)
        if reparsed is not None:
            record.price = reparsed

    logger.debug(
        "Parsed %s: name=%r price=%s %s images=%d",
        url,
        record.name,
        record.price,
        record.currency,
        len(record.images),
    )
    return record
