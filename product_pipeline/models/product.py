# product_pipeline/models/product.py

"""Product data models for inter-module data flow."""

import re
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any

UNKNOWN_CURRENCY = "UNKNOWN"

_CURRENCY_CODE_RE = re.compile(r"^[A-Z]{3}$")


class ImageOrigin:
    """Where on the page a candidate image URL was found."""

    META = "meta"
    STRUCTURED_DATA = "structured_data"
    GALLERY = "gallery"


def normalise_currency_code(code: str | None) -> str:
    """Upper-case a currency code, or return the ``UNKNOWN`` sentinel."""
    if not code:
        return UNKNOWN_CURRENCY
    cleaned = code.strip().upper()
    if _CURRENCY_CODE_RE.match(cleaned):
        return cleaned
    return UNKNOWN_CURRENCY


@dataclass
class RawCandidateImage:
    """An image URL discovered by a strategy, before canonicalization."""

    url: str
    origin: str = ImageOrigin.GALLERY


@dataclass
class RawRecord:
    """Unnormalised product data as produced by one strategy."""

    name: str = ""
    brand: str = ""
    description: str = ""
    price: float | None = None
    currency: str | None = None
    images: list[RawCandidateImage] = field(
        default_factory=lambda: list[RawCandidateImage]()
    )
    price_text: str = ""

    def has_required_fields(self) -> bool:
        """A record is usable only when it carries a product name."""
        return bool(self.name and self.name.strip())


@dataclass
class CanonicalImage:
    """The single best-quality URL for a group of size variants."""

    key: str
    url: str


@dataclass
class ProductRecord:
    """Normalised product data returned by the pipeline."""

    name: str
    source_url: str
    strategy: str
    brand: str = ""
    description: str = ""
    images: list[CanonicalImage] = field(
        default_factory=lambda: list[CanonicalImage]()
    )
    price: float | None = None
    currency: str = UNKNOWN_CURRENCY
    converted_price: float | None = None
    reporting_currency: str = "USD"
    exchange_rate: float | None = None
    extracted_at: datetime = field(
        default_factory=lambda: datetime.now(timezone.utc)
    )

    def __post_init__(self) -> None:
        priced = (
            self.price is not None,
            self.converted_price is not None,
            self.exchange_rate is not None,
        )
        if any(priced) and not all(priced):
            msg = (
                "price, converted_price and exchange_rate must be "
                "set together"
            )
            raise ValueError(msg)
        if (
            self.currency != UNKNOWN_CURRENCY
            and not _CURRENCY_CODE_RE.match(self.currency)
        ):
            msg = f"Invalid currency code: {self.currency!r}"
            raise ValueError(msg)

    @property
    def image_urls(self) -> list[str]:
        """Surviving image URLs in page order."""
        return [img.url for img in self.images]

    def to_dict(self) -> dict[str, Any]:
        """Serialise to plain JSON-friendly data."""
        return {
            "name": self.name,
            "brand": self.brand,
            "description": self.description,
            "images": self.image_urls,
            "price": self.price,
            "currency": self.currency,
            "converted_price": self.converted_price,
            "reporting_currency": self.reporting_currency,
            "exchange_rate": self.exchange_rate,
            "source_url": self.source_url,
            "strategy": self.strategy,
            "extracted_at": self.extracted_at.isoformat(),
        }
