# product_pipeline/strategies/base_strategy.py

"""Extraction strategy interface and the shared HTTP fetching base."""

import json
import logging
import threading
import time
from abc import ABC, abstractmethod
from typing import Any
from urllib.parse import urlsplit

import cloudscraper  # type: ignore[import-untyped]
from curl_cffi import requests as curl_requests

from product_pipeline.config.settings import Settings
from product_pipeline.models.product import RawRecord


def site_domain(url: str) -> str:
    """Host of *url* without a leading ``www.``."""
    try:
        host = (urlsplit(url).hostname or "").lower()
    except ValueError:
        return ""
    return host.removeprefix("www.")


def load_site_selectors(domain: str) -> dict[str, str]:
    """Selector table for *domain* from selectors.json (may be empty)."""
    with open(Settings.SELECTORS_PATH) as f:
        all_selectors: dict[str, Any] = json.load(f)
    for site, selectors in all_selectors.items():
        if domain == site or domain.endswith("." + site):
            result: dict[str, str] = selectors
            return result
    return {}


class ExtractionStrategy(ABC):
    """One pluggable way of turning a product URL into a RawRecord.

    Implementations raise :class:`StrategyFailure` (or any exception)
    when they cannot produce a record; the orchestrator records the
    reason and moves on to the next strategy.
    """

    name: str = "strategy"

    def __init__(self) -> None:
        self.logger = logging.getLogger(
            f"product_pipeline.strategy.{self.name}"
        )

    @abstractmethod
    async def try_extract(self, url: str) -> RawRecord:
        """Attempt to extract a raw product record from *url*."""
        ...


class DomainCircuitBreaker:
    """Per-domain circuit breaker shared by concurrent requests."""

    def __init__(
        self,
        threshold: int | None = None,
        cooldown: float | None = None,
    ) -> None:
        self.threshold = threshold or Settings.CIRCUIT_BREAKER_THRESHOLD
        self.cooldown = (
            cooldown
            if cooldown is not None
            else Settings.CIRCUIT_BREAKER_COOLDOWN
        )
        self._lock = threading.Lock()
        self._failures: dict[str, int] = {}
        self._opened_at: dict[str, float] = {}

    def is_open(self, domain: str) -> bool:
        """Return True if requests to *domain* are currently blocked.

        After the cooldown the breaker goes half-open and lets a
        single probe request through.
        """
        with self._lock:
            opened_at = self._opened_at.get(domain)
            if opened_at is None:
                return False
            if time.time() - opened_at >= self.cooldown:
                del self._opened_at[domain]
                self._failures[domain] = self.threshold - 1
                return False
            return True

    def record_success(self, domain: str) -> None:
        with self._lock:
            self._failures.pop(domain, None)
            self._opened_at.pop(domain, None)

    def record_failure(self, domain: str) -> bool:
        """Count a failure; return True if this opened the breaker."""
        with self._lock:
            count = self._failures.get(domain, 0) + 1
            self._failures[domain] = count
            if count >= self.threshold and domain not in self._opened_at:
                self._opened_at[domain] = time.time()
                return True
            return False


class BaseFetchStrategy(ExtractionStrategy):
    """Strategy base with browser-impersonating HTTP fetching.

    Requests go through curl_cffi first and fall back to cloudscraper.
    Retries escalate the delay on 403/429 and CAPTCHA pages; repeated
    failures trip a per-domain circuit breaker.
    """

    # Cloudflare challenge page markers (checked before keyword scan)
    _CF_CHALLENGE_MARKERS: list[str] = [
        "challenges.cloudflare.com",
        "cdn-cgi/challenge-platform",
        "just a moment",
        "cf-turnstile",
        "cf_chl_opt",
    ]

    def __init__(self) -> None:
        super().__init__()
        self.settings = Settings()
        self.session = curl_requests.Session(
            impersonate=self.settings.IMPERSONATE_BROWSER
        )
        self.circuit = DomainCircuitBreaker()
        self._request_timeout: int = self.settings.REQUEST_TIMEOUT

    def _validate_response(self, text: str) -> bool:
        """Check for Cloudflare challenge pages and CAPTCHA indicators."""
        if text.lstrip().startswith(("{", "[")):
            return True
        lower = text.lower()

        for marker in self._CF_CHALLENGE_MARKERS:
            if marker in lower:
                self.logger.warning(
                    "[%s] Cloudflare challenge detected (marker: '%s')",
                    self.name,
                    marker,
                )
                return False

        # Skip the keyword scan on pages with real content to avoid
        # false positives from review widgets and footers
        has_body_content = "<body" in lower and len(text) > 5000
        if not has_body_content:
            for keyword in self.settings.CAPTCHA_KEYWORDS:
                if keyword in lower:
                    self.logger.warning(
                        "[%s] CAPTCHA keyword '%s' detected",
                        self.name,
                        keyword,
                    )
                    return False
        return True

    def _fetch_get(
        self,
        url: str,
        headers: dict[str, str],
    ) -> curl_requests.Response | None:
        """GET with retries, adaptive delay, and circuit breaker."""
        domain = site_domain(url)
        if self.circuit.is_open(domain):
            self.logger.info(
                "[%s] Circuit open for %s, skipping fetch",
                self.name,
                domain,
            )
            return None

        delay = self.settings.REQUEST_DELAY
        max_delay = (
            self.settings.REQUEST_DELAY
            * self.settings.MAX_DELAY_MULTIPLIER
        )
        for attempt in range(self.settings.MAX_RETRIES):
            try:
                resp = self.session.get(
                    url,
                    headers=headers,
                    timeout=self._request_timeout,
                    allow_redirects=True,
                )
                if resp.status_code == 200:
                    if self._validate_response(resp.text):
                        self.circuit.record_success(domain)
                        return resp
                    delay = min(delay * 2, max_delay)
                    time.sleep(delay)
                    continue
                self.logger.warning(
                    "[%s] HTTP %d for %s on attempt %d",
                    self.name,
                    resp.status_code,
                    url,
                    attempt + 1,
                )
                if resp.status_code == 404:
                    break
                if resp.status_code in (429, 403):
                    delay = min(delay * 2, max_delay)
                    self.logger.warning(
                        "[%s] Rate-limited, delay escalated to %.1fs",
                        self.name,
                        delay,
                    )
                    time.sleep(delay)
            except Exception as exc:
                self.logger.warning(
                    "[%s] Request error on attempt %d: %s",
                    self.name,
                    attempt + 1,
                    exc,
                    exc_info=True,
                )
                time.sleep(delay * (attempt + 1))

        if self.circuit.record_failure(domain):
            self.logger.error(
                "[%s] Circuit breaker opened for %s",
                self.name,
                domain,
            )
        return None

    def _get_html(self, url: str) -> str | None:
        """Fetch a page, falling back to cloudscraper on failure."""
        headers: dict[str, str] = {
            **self.settings.DEFAULT_HEADERS,
            "Referer": f"https://{site_domain(url)}/",
        }

        # Primary: curl_cffi (browser-impersonating TLS)
        resp = self._fetch_get(url, headers)
        if resp:
            return str(resp.text)

        if self.circuit.is_open(site_domain(url)):
            return None

        # Fallback: cloudscraper (JS challenge solver)
        self.logger.info(
            "[%s] curl_cffi exhausted, falling back to cloudscraper",
            self.name,
        )
        try:
            _cs: Any = cloudscraper
            scraper: Any = _cs.create_scraper()
            fallback_resp: Any = scraper.get(
                url,
                headers=headers,
                timeout=self._request_timeout,
            )
            if fallback_resp.status_code == 200 and self._validate_response(
                str(fallback_resp.text)
            ):
                return str(fallback_resp.text)
        except Exception as e:
            self.logger.error(
                "[%s] cloudscraper fallback also failed: %s",
                self.name,
                e,
                exc_info=True,
            )

        return None
