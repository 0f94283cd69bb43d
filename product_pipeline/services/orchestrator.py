# product_pipeline/services/orchestrator.py

"""Runs the ordered extraction-strategy chain and normalises the winner."""

import asyncio
import importlib
import itertools
import logging
import time
from typing import Any
from urllib.parse import urlsplit

from product_pipeline.config.settings import Settings
from product_pipeline.currency.detector import CurrencyDetector
from product_pipeline.currency.rate_cache import RateCache
from product_pipeline.images.canonicalizer import canonicalize
from product_pipeline.models.errors import (
    ChainExhausted,
    ExtractionTimeout,
    InvalidURLError,
    StrategyFailure,
)
from product_pipeline.models.product import (
    UNKNOWN_CURRENCY,
    ProductRecord,
    RawRecord,
    normalise_currency_code,
)
from product_pipeline.rendering.pool import RenderPool
from product_pipeline.services.metrics import ExtractionMetrics
from product_pipeline.storage.result_cache import BoundedCache
from product_pipeline.strategies.base_strategy import (
    ExtractionStrategy,
    site_domain,
)

logger = logging.getLogger("product_pipeline.orchestrator")


def _load_strategy_class(dotted_path: str) -> type[Any]:
    """Dynamically import a strategy class from its dotted module path."""
    module_path, class_name = dotted_path.rsplit(".", 1)
    module = importlib.import_module(module_path)
    cls: type[Any] = getattr(module, class_name)
    return cls


def build_strategies(
    render_pool: RenderPool[Any],
    registry: list[dict[str, str]] | None = None,
) -> list[ExtractionStrategy]:
    """Instantiate the strategy chain from the registry, in order."""
    strategies: list[ExtractionStrategy] = []
    for entry in registry or Settings.EXTRACTION_STRATEGIES:
        cls = _load_strategy_class(entry["strategy"])
        if entry.get("render") == "true":
            strategies.append(cls(render_pool))
        else:
            strategies.append(cls())
    return strategies


def validate_url(url: str) -> str:
    """Return *url* stripped, or raise :class:`InvalidURLError`."""
    if not isinstance(url, str) or not url.strip():
        msg = "URL must be a non-empty string"
        raise InvalidURLError(msg)
    cleaned = url.strip()
    try:
        parts = urlsplit(cleaned)
        host = parts.hostname
    except ValueError as exc:
        msg = f"Malformed URL: {cleaned!r}"
        raise InvalidURLError(msg) from exc
    if parts.scheme.lower() not in ("http", "https") or not host:
        msg = f"Not an absolute http(s) URL: {cleaned!r}"
        raise InvalidURLError(msg)
    return cleaned


class ScrapeOrchestrator:
    """Tries each strategy in priority order; the first success wins.

    Strategies run one after another inside a single task.  Any
    exception a strategy raises is recorded as a diagnostic and the
    chain moves on; only cancellation and the caller's deadline stop
    it early.
    """

    def __init__(
        self,
        strategies: list[ExtractionStrategy],
        rate_cache: RateCache,
        metrics: ExtractionMetrics | None = None,
        result_cache: BoundedCache[ProductRecord] | None = None,
        detector: CurrencyDetector | None = None,
    ) -> None:
        if not strategies:
            msg = "At least one extraction strategy is required"
            raise ValueError(msg)
        self.strategies = list(strategies)
        self.rate_cache = rate_cache
        self.metrics = metrics or ExtractionMetrics()
        self.result_cache = result_cache
        self.detector = detector or CurrencyDetector()
        self._attempts = itertools.count(1)

    @property
    def strategy_names(self) -> list[str]:
        return [s.name for s in self.strategies]

    # ── Public API ───────────────────────────────────────

    async def extract(
        self, url: str, timeout: float | None = None
    ) -> ProductRecord:
        """Extract and normalise the product at *url*.

        Raises:
            InvalidURLError: *url* is not an absolute http(s) URL.
            ChainExhausted: every strategy failed.
            ExtractionTimeout: *timeout* elapsed first.
        """
        url = validate_url(url)
        attempt = next(self._attempts)

        if self.result_cache is not None:
            cached = self.result_cache.get(url)
            if cached is not None:
                logger.info("Cache hit for %s (attempt #%d)", url, attempt)
                self.metrics.record_cache_hit()
                return cached

        site = site_domain(url)
        failures: list[StrategyFailure] = []
        running: list[str] = []
        start = time.monotonic()

        try:
            async with asyncio.timeout(timeout):
                winner, raw = await self._run_chain(
                    url, site, failures, running
                )
                record = await self._normalise(url, winner, raw)
        except TimeoutError as exc:
            elapsed = time.monotonic() - start
            if running:
                # The strategy that was cut off counts as a failure
                failures.append(
                    StrategyFailure(running[0], "cancelled by deadline")
                )
                self.metrics.record_failure(running[0], site)
            self.metrics.record_timeout()
            logger.warning(
                "Extraction of %s timed out after %.1fs "
                "(attempt #%d, %d strategies failed)",
                url,
                elapsed,
                attempt,
                len(failures),
            )
            raise ExtractionTimeout(url, attempt, failures, elapsed) from exc

        if record is None:
            elapsed = time.monotonic() - start
            self.metrics.record_exhausted()
            error = ChainExhausted(url, attempt, failures, elapsed)
            logger.error("%s: %s", error, error.to_dict()["reasons"])
            raise error

        if self.result_cache is not None:
            self.result_cache.put(url, record)
        logger.info(
            "Extracted %s via %s in %.2fs (attempt #%d)",
            url,
            record.strategy,
            time.monotonic() - start,
            attempt,
        )
        return record

    # ── Chain ────────────────────────────────────────────

    async def _run_chain(
        self,
        url: str,
        site: str,
        failures: list[StrategyFailure],
        running: list[str],
    ) -> tuple[str, RawRecord | None]:
        """Run strategies until one succeeds.

        ``running`` holds the name of the strategy in flight so a
        deadline can attribute the cut-off.
        """
        for strategy in self.strategies:
            running[:] = [strategy.name]
            self.metrics.record_attempt(strategy.name, site)
            logger.debug("Trying %s for %s", strategy.name, url)
            try:
                raw = await strategy.try_extract(url)
            except StrategyFailure as exc:
                failure = exc
            except Exception as exc:
                logger.warning(
                    "Strategy %s raised for %s: %s",
                    strategy.name,
                    url,
                    exc,
                    exc_info=True,
                )
                failure = StrategyFailure(
                    strategy.name, f"{type(exc).__name__}: {exc}"
                )
            else:
                if raw is not None and raw.has_required_fields():
                    running.clear()
                    self.metrics.record_success(strategy.name, site)
                    return strategy.name, raw
                failure = StrategyFailure(
                    strategy.name, "record is missing a product name"
                )

            running.clear()
            if failure.strategy != strategy.name:
                failure = StrategyFailure(strategy.name, failure.reason)
            failures.append(failure)
            self.metrics.record_failure(strategy.name, site)
            logger.info("Strategy failed for %s: %s", url, failure)

        return "", None

    # ── Normalisation ────────────────────────────────────

    async def _normalise(
        self, url: str, strategy: str, raw: RawRecord | None
    ) -> ProductRecord | None:
        if raw is None:
            return None

        images = canonicalize(raw.images)
        self.metrics.record_malformed_images(images.malformed_count)

        currency = UNKNOWN_CURRENCY
        converted: float | None = None
        rate: float | None = None
        if raw.price is not None:
            currency = normalise_currency_code(
                raw.currency
                or self.detector.detect(None, url, raw.price_text or None)
            )
            if currency == UNKNOWN_CURRENCY:
                logger.warning(
                    "No currency detected for %s; price passed through "
                    "at rate 1.0",
                    url,
                )
            conversion = await self.rate_cache.convert(
                raw.price, currency, self.rate_cache.reporting_currency
            )
            converted = conversion.converted_amount
            rate = conversion.rate

        return ProductRecord(
            name=raw.name.strip(),
            brand=raw.brand.strip(),
            description=raw.description.strip(),
            images=images.images,
            price=raw.price,
            currency=currency,
            converted_price=converted,
            reporting_currency=self.rate_cache.reporting_currency,
            exchange_rate=rate,
            source_url=url,
            strategy=strategy,
        )
