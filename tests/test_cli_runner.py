# tests/test_cli_runner.py

"""Tests for the headless CLI runner."""

import io
import json
import unittest
from unittest.mock import patch

from product_pipeline.cli.runner import cli_extract, run_rates
from product_pipeline.currency.rate_cache import RateCache
from product_pipeline.models.errors import RateRefreshError, StrategyFailure
from product_pipeline.models.product import RawRecord
from product_pipeline.services.extraction_service import ExtractionService
from product_pipeline.services.orchestrator import ScrapeOrchestrator
from product_pipeline.strategies.base_strategy import ExtractionStrategy


class _Scripted(ExtractionStrategy):
    name = "scripted"

    def __init__(self, record: RawRecord | None) -> None:
        super().__init__()
        self.record = record

    async def try_extract(self, url: str) -> RawRecord:
        if self.record is None:
            raise StrategyFailure(self.name, "blocked")
        return self.record


def _failing_fetch() -> dict[str, float]:
    raise RateRefreshError("offline")


def _service(
    record: RawRecord | None = None, fetcher: object = None
) -> ExtractionService:
    rates = RateCache(
        fetcher=fetcher or (lambda: {"USD": 1.0, "GBP": 0.8}),  # type: ignore[arg-type]
        reporting_currency="USD",
    )
    return ExtractionService(ScrapeOrchestrator([_Scripted(record)], rates))


class TestCliExtract(unittest.IsolatedAsyncioTestCase):
    """Exit codes and stdout payloads."""

    async def test_json_success(self) -> None:
        service = _service(RawRecord(name="Scarf", price=8.0, currency="GBP"))
        with patch("sys.stdout", new_callable=io.StringIO) as out:
            code = await cli_extract(
                "https://shop.co.uk/p/scarf", None, "json", service=service
            )
        self.assertEqual(code, 0)
        payload = json.loads(out.getvalue())
        self.assertEqual(payload["name"], "Scarf")
        self.assertEqual(payload["converted_price"], 10.0)

    async def test_table_success(self) -> None:
        service = _service(RawRecord(name="Scarf"))
        with patch("sys.stdout", new_callable=io.StringIO) as out:
            code = await cli_extract(
                "https://shop.com/p/scarf", None, "table", service=service
            )
        self.assertEqual(code, 0)
        self.assertIn("Scarf", out.getvalue())

    async def test_failure_exit_code(self) -> None:
        with patch("sys.stdout", new_callable=io.StringIO) as out:
            code = await cli_extract(
                "https://shop.com/p/scarf", None, "json", service=_service()
            )
        self.assertEqual(code, 1)
        payload = json.loads(out.getvalue())
        self.assertFalse(payload["ok"])
        self.assertEqual(
            payload["error"]["reasons"],
            [{"strategy": "scripted", "reason": "blocked"}],
        )


class TestRunRates(unittest.IsolatedAsyncioTestCase):
    """Rate table output."""

    async def test_live_rates(self) -> None:
        with patch("sys.stdout", new_callable=io.StringIO) as out:
            code = await run_rates(service=_service())
        self.assertEqual(code, 0)
        self.assertIn("GBP", out.getvalue())

    async def test_fallback_still_exits_zero(self) -> None:
        with patch("sys.stdout", new_callable=io.StringIO) as out:
            code = await run_rates(service=_service(fetcher=_failing_fetch))
        self.assertEqual(code, 0)
        self.assertIn("EUR", out.getvalue())


if __name__ == "__main__":
    unittest.main()
