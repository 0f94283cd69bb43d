# product_pipeline/currency/rate_cache.py

"""Exchange-rate cache with a refresh TTL and a static fallback table.

All rates are expressed relative to the reporting currency (the
*pivot*).  A cross rate is ``rate[to] / rate[from]``.

Unknown currency codes are treated as a rate of 1.0 instead of raising.
That favours availability over correctness: a currency-detection miss
must never block extraction, so callers may receive an unconverted
amount labelled with the reporting currency.
"""

import asyncio
import logging
import threading
import time
from collections.abc import Callable, Mapping
from typing import Any

from curl_cffi import requests as curl_requests

from product_pipeline.config.settings import Settings
from product_pipeline.models.errors import RateRefreshError
from product_pipeline.models.exchange_rates import (
    Conversion,
    ExchangeRateSet,
)

logger = logging.getLogger("product_pipeline.rates")

RateFetcher = Callable[[], Mapping[str, Any]]

_CURRENCY_SYMBOLS: dict[str, str] = {
    "USD": "$",
    "EUR": "€",
    "GBP": "£",
    "DKK": "kr",
    "SEK": "kr",
    "NOK": "kr",
    "CHF": "Fr",
    "CAD": "C$",
    "AUD": "A$",
    "NZD": "NZ$",
    "JPY": "¥",
    "CNY": "¥",
    "KRW": "₩",
    "SGD": "S$",
    "HKD": "HK$",
    "INR": "₹",
}


def fetch_live_rates() -> Mapping[str, Any]:
    """GET the live rate table (blocking; run it in a worker thread)."""
    session = curl_requests.Session(
        impersonate=Settings.IMPERSONATE_BROWSER
    )
    try:
        resp = session.get(
            Settings.RATE_API_URL,
            headers={"Accept": "application/json"},
            timeout=Settings.RATE_API_TIMEOUT,
        )
    finally:
        session.close()
    if resp.status_code != 200:
        msg = f"Rate API returned HTTP {resp.status_code}"
        raise RateRefreshError(msg)
    payload: dict[str, Any] = resp.json()
    rates = payload.get("rates")
    if not isinstance(rates, dict):
        msg = "Rate API payload has no 'rates' table"
        raise RateRefreshError(msg)
    return rates


class RateCache:
    """Holds the current :class:`ExchangeRateSet` and converts amounts.

    The current set is a single reference that is swapped, never
    edited, so concurrent readers always see a complete set.  At most
    one refresh runs at a time: the caller that starts it awaits it,
    while callers racing past the staleness check keep using the
    current set.
    """

    def __init__(
        self,
        fetcher: RateFetcher | None = None,
        reporting_currency: str | None = None,
        fallback_rates: Mapping[str, float] | None = None,
        refresh_interval: float | None = None,
        retry_interval: float | None = None,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._fetcher = fetcher or fetch_live_rates
        self.reporting_currency = (
            reporting_currency or Settings.REPORTING_CURRENCY
        ).upper()
        self._refresh_interval = (
            refresh_interval
            if refresh_interval is not None
            else Settings.RATE_REFRESH_INTERVAL
        )
        self._retry_interval = (
            retry_interval
            if retry_interval is not None
            else Settings.RATE_RETRY_INTERVAL
        )
        self._clock = clock
        self._lock = threading.Lock()
        self._refreshing = False
        self._last_attempt: float | None = None
        self._current = ExchangeRateSet(
            rates=fallback_rates or Settings.FALLBACK_RATES,
            base=self.reporting_currency,
            refreshed_at=None,
            is_fallback=True,
        )

    # ── Inspection ───────────────────────────────────────

    def snapshot(self) -> ExchangeRateSet:
        """Return the current rate set (immutable)."""
        return self._current

    # ── Refresh ──────────────────────────────────────────

    def _is_stale(self, now: float) -> bool:
        current = self._current
        expired = (
            current.is_fallback
            or current.refreshed_at is None
            or now - current.refreshed_at >= self._refresh_interval
        )
        if not expired:
            return False
        # A recent attempt failed; don't hammer the rate API
        return (
            self._last_attempt is None
            or now - self._last_attempt >= self._retry_interval
        )

    def _build_set(self, raw: Mapping[str, Any], now: float) -> ExchangeRateSet:
        rates: dict[str, float] = {}
        for code, value in raw.items():
            try:
                rate = float(value)
            except (TypeError, ValueError):
                continue
            if rate > 0:
                rates[str(code).upper()] = rate
        pivot = rates.get(self.reporting_currency)
        if pivot is None:
            msg = (
                f"Live rates do not include the reporting currency "
                f"{self.reporting_currency}"
            )
            raise RateRefreshError(msg)
        if pivot != 1.0:
            # Re-base so that the reporting currency is exactly 1.0
            rates = {code: rate / pivot for code, rate in rates.items()}
        return ExchangeRateSet(
            rates=rates,
            base=self.reporting_currency,
            refreshed_at=now,
            is_fallback=False,
        )

    async def refresh(self, force: bool = False) -> bool:
        """Refresh from the live source if stale (or *force*).

        Returns True if a new set was installed.  Failures are logged
        and leave the current set in place.
        """
        now = self._clock()
        with self._lock:
            if self._refreshing:
                return False
            if not force and not self._is_stale(now):
                return False
            self._refreshing = True
            self._last_attempt = now

        installed = False
        try:
            logger.info("Refreshing exchange rates")
            raw = await asyncio.to_thread(self._fetcher)
            new_set = self._build_set(raw, self._clock())
            with self._lock:
                self._current = new_set
                self._last_attempt = None
            installed = True
        except Exception as exc:
            logger.warning(
                "Exchange rate refresh failed, keeping %s set: %s",
                "fallback" if self._current.is_fallback else "previous",
                exc,
            )
        finally:
            with self._lock:
                self._refreshing = False

        if not installed:
            return False
        logger.info(
            "Exchange rates updated (%d currencies)",
            len(new_set.rates),
        )
        return True

    # ── Conversion ───────────────────────────────────────

    @staticmethod
    def _lookup(rates: ExchangeRateSet, code: str) -> float:
        rate = rates.get(code)
        if rate is None:
            logger.debug(
                "Unknown currency %s, assuming rate 1.0", code
            )
            return 1.0
        return rate

    async def get_rate(
        self,
        from_currency: str,
        to_currency: str | None = None,
    ) -> float:
        """Rate that converts one unit of *from* into *to*."""
        source = from_currency.upper()
        target = (to_currency or self.reporting_currency).upper()
        if source == target:
            return 1.0
        await self.refresh()
        rates = self._current
        return self._lookup(rates, target) / self._lookup(rates, source)

    async def convert(
        self,
        amount: float,
        from_currency: str,
        to_currency: str | None = None,
    ) -> Conversion:
        """Convert *amount*; the result is rounded to two decimals."""
        source = from_currency.upper()
        target = (to_currency or self.reporting_currency).upper()
        if source == target:
            return Conversion(
                original_amount=amount,
                original_currency=source,
                converted_amount=amount,
                target_currency=target,
                rate=1.0,
                rates_live=not self._current.is_fallback,
            )

        rate = await self.get_rate(source, target)
        return Conversion(
            original_amount=amount,
            original_currency=source,
            converted_amount=round(amount * rate, 2),
            target_currency=target,
            rate=rate,
            rates_live=not self._current.is_fallback,
        )

    async def batch_convert(
        self,
        amounts: list[float],
        from_currency: str,
        to_currency: str | None = None,
    ) -> list[Conversion]:
        """Convert several amounts using a single rate lookup."""
        source = from_currency.upper()
        target = (to_currency or self.reporting_currency).upper()
        rate = await self.get_rate(source, target)
        live = not self._current.is_fallback
        return [
            Conversion(
                original_amount=amount,
                original_currency=source,
                converted_amount=(
                    amount if rate == 1.0 else round(amount * rate, 2)
                ),
                target_currency=target,
                rate=rate,
                rates_live=live,
            )
            for amount in amounts
        ]

    @staticmethod
    def format_amount(amount: float, currency: str) -> str:
        """Format *amount* using the currency's usual display convention."""
        code = currency.upper()
        symbol = _CURRENCY_SYMBOLS.get(code, code)
        if code in ("USD", "CAD", "AUD", "NZD", "SGD", "HKD", "GBP", "INR"):
            return f"{symbol}{amount:,.2f}"
        if code == "EUR":
            return f"{amount:.2f}".replace(".", ",") + f" {symbol}"
        if code in ("DKK", "SEK", "NOK"):
            return f"{amount:,.0f}".replace(",", ".") + f" {symbol}"
        if code in ("JPY", "KRW"):
            return f"{symbol}{round(amount):,}"
        return f"{amount:.2f} {code}"
