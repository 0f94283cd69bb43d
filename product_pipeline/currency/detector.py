# product_pipeline/currency/detector.py

"""Multi-layered currency detection from HTML, URL and price text."""

import json
import logging
import re
from typing import Any
from urllib.parse import urlsplit

from bs4 import BeautifulSoup

logger = logging.getLogger("product_pipeline.currency")

# Currencies whose sites write prices as 1.234,56
_DECIMAL_COMMA_CURRENCIES = frozenset({"EUR", "DKK", "SEK", "NOK"})


class CurrencyDetector:
    """Detect a product page's currency from the strongest available signal.

    Signals are tried strongest first: site configuration, JSON-LD
    offers, price meta tags, the ``<html lang>`` attribute, symbols in
    the price text, and finally the domain's TLD.
    """

    # Checked in insertion order; "kr" is handled separately
    CURRENCY_PATTERNS: dict[str, re.Pattern[str]] = {
        "SEK": re.compile(r"\bSEK\b|svenska kronor", re.I),
        "NOK": re.compile(r"\bNOK\b|norske kroner", re.I),
        "DKK": re.compile(r"\bDKK\b|danske kroner", re.I),
        "CAD": re.compile(r"\bCAD\b|C\$", re.I),
        "AUD": re.compile(r"\bAUD\b|A\$", re.I),
        "NZD": re.compile(r"\bNZD\b|NZ\$", re.I),
        "SGD": re.compile(r"\bSGD\b|S\$", re.I),
        "HKD": re.compile(r"\bHKD\b|HK\$", re.I),
        "EUR": re.compile(r"€|\bEUR\b|\beuros?\b", re.I),
        "GBP": re.compile(r"£|\bGBP\b", re.I),
        "CHF": re.compile(r"\bCHF\b|Swiss franc", re.I),
        "JPY": re.compile(r"\bJPY\b|\byen\b", re.I),
        "CNY": re.compile(r"\bCNY\b|\byuan\b|\bRMB\b", re.I),
        "KRW": re.compile(r"₩|\bKRW\b", re.I),
        "INR": re.compile(r"₹|\bINR\b", re.I),
        "USD": re.compile(r"\$|\bUSD\b", re.I),
    }

    TLD_CURRENCIES: dict[str, str] = {
        ".dk": "DKK",
        ".se": "SEK",
        ".no": "NOK",
        ".fi": "EUR",
        ".de": "EUR",
        ".fr": "EUR",
        ".es": "EUR",
        ".it": "EUR",
        ".nl": "EUR",
        ".be": "EUR",
        ".at": "EUR",
        ".pt": "EUR",
        ".ie": "EUR",
        ".uk": "GBP",
        ".ch": "CHF",
        ".ca": "CAD",
        ".au": "AUD",
        ".nz": "NZD",
        ".jp": "JPY",
        ".cn": "CNY",
        ".kr": "KRW",
        ".sg": "SGD",
        ".hk": "HKD",
        ".in": "INR",
    }

    LANG_CURRENCIES: dict[str, str] = {
        "da-DK": "DKK",
        "sv-SE": "SEK",
        "nb-NO": "NOK",
        "nn-NO": "NOK",
        "fi-FI": "EUR",
        "de-DE": "EUR",
        "de-AT": "EUR",
        "de-CH": "CHF",
        "fr-FR": "EUR",
        "fr-BE": "EUR",
        "fr-CH": "CHF",
        "fr-CA": "CAD",
        "es-ES": "EUR",
        "it-IT": "EUR",
        "nl-NL": "EUR",
        "nl-BE": "EUR",
        "en-GB": "GBP",
        "en-US": "USD",
        "en-CA": "CAD",
        "en-AU": "AUD",
        "en-NZ": "NZD",
        "en-SG": "SGD",
        "en-HK": "HKD",
        "en-IN": "INR",
        "ja-JP": "JPY",
        "zh-CN": "CNY",
        "ko-KR": "KRW",
    }

    SITE_CURRENCIES: dict[str, str] = {
        "stelstores.com": "DKK",
        "ganni.com": "DKK",
        "stine-goya.com": "DKK",
        "norseprojects.com": "EUR",
        "weekday.com": "EUR",
        "arket.com": "EUR",
    }

    _META_PROPERTIES = (
        "product:price:currency",
        "og:price:currency",
        "product:currency",
    )

    def detect(
        self,
        html: str | BeautifulSoup | None,
        url: str,
        price_text: str | None = None,
    ) -> str | None:
        """Return the best-guess ISO code, or ``None`` if nothing matched."""
        soup: BeautifulSoup | None
        if isinstance(html, BeautifulSoup):
            soup = html
        elif html:
            soup = BeautifulSoup(html, "lxml")
        else:
            soup = None

        checks: list[tuple[str, str | None]] = [
            ("site_config", self.from_site_config(url)),
        ]
        if soup is not None:
            checks.append(("json_ld", self.from_json_ld(soup)))
            checks.append(("meta_tags", self.from_meta_tags(soup)))
            checks.append(("html_lang", self.from_lang_attribute(soup)))
        if price_text:
            checks.append(("price_text", self.from_price_text(price_text)))
        checks.append(("tld", self.from_tld(url)))

        for source, currency in checks:
            if currency:
                logger.debug(
                    "Currency %s detected for %s via %s",
                    currency,
                    url,
                    source,
                )
                return currency

        logger.debug("No currency signal found for %s", url)
        return None

    @staticmethod
    def _hostname(url: str) -> str:
        try:
            host = (urlsplit(url).hostname or "").lower()
        except ValueError:
            return ""
        return host.removeprefix("www.")

    def from_site_config(self, url: str) -> str | None:
        return self.SITE_CURRENCIES.get(self._hostname(url))

    @staticmethod
    def _offers_currency(node: Any) -> str | None:
        if not isinstance(node, dict):
            return None
        if node.get("@type") != "Product":
            return None
        offers = node.get("offers")
        if isinstance(offers, list):
            offers = offers[0] if offers else None
        if isinstance(offers, dict) and offers.get("priceCurrency"):
            return str(offers["priceCurrency"]).upper()
        return None

    def from_json_ld(self, soup: BeautifulSoup) -> str | None:
        for script in soup.find_all(
            "script", attrs={"type": "application/ld+json"}
        ):
            try:
                data = json.loads(script.string or "")
            except (json.JSONDecodeError, TypeError):
                continue
            nodes = data if isinstance(data, list) else [data]
            if isinstance(data, dict) and isinstance(
                data.get("@graph"), list
            ):
                nodes = nodes + data["@graph"]
            for node in nodes:
                currency = self._offers_currency(node)
                if currency:
                    return currency
        return None

    def from_meta_tags(self, soup: BeautifulSoup) -> str | None:
        for prop in self._META_PROPERTIES:
            tag = soup.find("meta", attrs={"property": prop})
            content = str(tag.get("content", "")).strip() if tag else ""
            if re.fullmatch(r"[A-Za-z]{3}", content):
                return content.upper()
        tag = soup.find("meta", attrs={"itemprop": "priceCurrency"})
        content = str(tag.get("content", "")).strip() if tag else ""
        if re.fullmatch(r"[A-Za-z]{3}", content):
            return content.upper()
        return None

    def from_lang_attribute(self, soup: BeautifulSoup) -> str | None:
        html_tag = soup.find("html")
        lang = str(html_tag.get("lang", "")) if html_tag else ""
        match = re.fullmatch(r"([a-z]{2})[-_]([A-Za-z]{2})", lang.strip())
        if not match:
            return None
        key = f"{match.group(1)}-{match.group(2).upper()}"
        return self.LANG_CURRENCIES.get(key)

    def from_price_text(self, price_text: str) -> str | None:
        if re.search(r"\bkr\b", price_text, re.I):
            for code in ("DKK", "SEK", "NOK"):
                if code in price_text.upper():
                    return code
            # Bare "kr" is most often Danish on fashion storefronts
            return "DKK"
        for currency, pattern in self.CURRENCY_PATTERNS.items():
            if pattern.search(price_text):
                return currency
        return None

    def from_tld(self, url: str) -> str | None:
        host = self._hostname(url)
        for tld, currency in self.TLD_CURRENCIES.items():
            if host.endswith(tld):
                return currency
        return None


def parse_price(
    text: str | float | int | None,
    currency: str | None = None,
) -> float | None:
    """Parse a price such as ``'$1,299.00'`` or ``'1.299,00 kr'``.

    Returns ``None`` when no number can be found.
    """
    if text is None:
        return None
    if isinstance(text, (int, float)):
        return float(text)

    cleaned = re.sub(r"[A-Za-z]{3}", "", text)
    cleaned = re.sub(r"[^\d.,\-]", "", cleaned).strip(".,")
    if not re.search(r"\d", cleaned):
        return None

    if "," in cleaned and "." in cleaned:
        # Whichever separator comes last is the decimal mark
        decimal_comma = cleaned.rfind(",") > cleaned.rfind(".")
    elif "," in cleaned:
        decimal_comma = bool(re.search(r",\d{1,2}$", cleaned))
    else:
        # "1.299" is a thousands separator only for decimal-comma locales
        decimal_comma = (
            currency in _DECIMAL_COMMA_CURRENCIES
            and bool(re.search(r"\.\d{3}$", cleaned))
        )
    if decimal_comma:
        cleaned = cleaned.replace(".", "").replace(",", ".")
    else:
        cleaned = cleaned.replace(",", "")

    match = re.search(r"-?\d+(?:\.\d+)?", cleaned)
    return float(match.group(0)) if match else None
