# tests/test_extraction_service.py

"""Tests for the service boundary."""

import unittest
from unittest.mock import AsyncMock, MagicMock

from product_pipeline.currency.rate_cache import RateCache
from product_pipeline.models.errors import StrategyFailure
from product_pipeline.models.product import RawRecord
from product_pipeline.services.extraction_service import (
    NO_DATA_MESSAGE,
    ExtractionService,
)
from product_pipeline.services.orchestrator import ScrapeOrchestrator
from product_pipeline.strategies.base_strategy import ExtractionStrategy


class _Scripted(ExtractionStrategy):
    name = "scripted"

    def __init__(self, record: RawRecord | None = None) -> None:
        super().__init__()
        self.record = record

    async def try_extract(self, url: str) -> RawRecord:
        if self.record is None:
            raise StrategyFailure(self.name, "HTTP 403")
        return self.record


def _fetch_rates() -> dict[str, float]:
    return {"USD": 1.0, "EUR": 0.5}


def _service(record: RawRecord | None = None, **kwargs: object) -> ExtractionService:
    orchestrator = ScrapeOrchestrator(
        [_Scripted(record)], RateCache(fetcher=_fetch_rates, reporting_currency="USD")
    )
    return ExtractionService(orchestrator, **kwargs)  # type: ignore[arg-type]


class TestExtract(unittest.IsolatedAsyncioTestCase):
    """Errors become structured responses."""

    async def test_success(self) -> None:
        service = _service(RawRecord(name="Knit", price=10.0, currency="EUR"))
        response = await service.extract("https://shop.com/p/knit")
        self.assertTrue(response.ok)
        assert response.record is not None
        self.assertEqual(response.record["name"], "Knit")
        self.assertEqual(response.record["converted_price"], 20.0)
        self.assertNotIn("error", response.to_dict())

    async def test_exhausted_is_generic_message(self) -> None:
        response = await _service().extract("https://shop.com/p/knit")
        self.assertFalse(response.ok)
        self.assertEqual(response.error["message"], NO_DATA_MESSAGE)
        self.assertFalse(response.error["timed_out"])
        self.assertEqual(
            response.error["reasons"],
            [{"strategy": "scripted", "reason": "HTTP 403"}],
        )
        self.assertNotIn("Traceback", str(response.to_dict()))

    async def test_invalid_url(self) -> None:
        response = await _service().extract("not-a-url")
        self.assertFalse(response.ok)
        self.assertTrue(response.error["invalid_url"])
        self.assertNotIn("record", response.to_dict())


class TestSnapshotsAndLifecycle(unittest.IsolatedAsyncioTestCase):
    """Inspection helpers and shutdown."""

    async def test_rate_snapshot_starts_on_fallback(self) -> None:
        snapshot = _service().rate_snapshot()
        self.assertTrue(snapshot["is_fallback"])
        self.assertEqual(snapshot["refreshed_at"], "never")

    async def test_refresh_rates(self) -> None:
        snapshot = await _service().refresh_rates()
        self.assertFalse(snapshot["is_fallback"])
        self.assertEqual(snapshot["rates"]["EUR"], 0.5)

    async def test_metrics_snapshot(self) -> None:
        service = _service(RawRecord(name="Knit"))
        await service.extract("https://shop.com/p/knit")
        self.assertEqual(service.metrics_snapshot()["extractions"], 1)

    async def test_close_is_idempotent(self) -> None:
        pool = MagicMock()
        pool.close = AsyncMock()
        launcher = MagicMock()
        launcher.stop = AsyncMock()
        service = _service(render_pool=pool, launcher=launcher)
        await service.close()
        await service.close()
        pool.close.assert_awaited_once()
        launcher.stop.assert_awaited_once()

    async def test_context_manager_closes(self) -> None:
        pool = MagicMock()
        pool.close = AsyncMock()
        async with _service(render_pool=pool) as service:
            self.assertIsInstance(service, ExtractionService)
        pool.close.assert_awaited_once()

    async def test_create_default_wiring(self) -> None:
        service = ExtractionService.create_default()
        self.assertEqual(
            service.orchestrator.strategy_names,
            ["shopify_json", "static_html", "rendered", "firecrawl"],
        )
        self.assertIsNotNone(service.orchestrator.result_cache)
        # Nothing was launched, so shutdown has nothing to tear down
        await service.close()


if __name__ == "__main__":
    unittest.main()
