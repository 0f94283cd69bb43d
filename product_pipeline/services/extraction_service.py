# product_pipeline/services/extraction_service.py

"""Thin service boundary around the orchestrator.

Turns pipeline errors into structured responses and owns the lifetime
of the shared collaborators (render pool, rate cache, metrics).
"""

import logging
from dataclasses import dataclass, field
from types import TracebackType
from typing import Any

from playwright.async_api import Browser

from product_pipeline.currency.rate_cache import RateCache
from product_pipeline.models.errors import (
    ChainExhausted,
    ExtractionTimeout,
    InvalidURLError,
)
from product_pipeline.rendering.browser import BrowserLauncher
from product_pipeline.rendering.pool import RenderPool
from product_pipeline.services.metrics import ExtractionMetrics
from product_pipeline.services.orchestrator import (
    ScrapeOrchestrator,
    build_strategies,
)
from product_pipeline.storage.result_cache import BoundedCache

logger = logging.getLogger("product_pipeline.service")

NO_DATA_MESSAGE = "No product data available for this URL."


@dataclass
class ExtractionResponse:
    """Outcome of one extraction request, safe to serialise."""

    url: str
    ok: bool
    record: dict[str, Any] | None = None
    error: dict[str, Any] = field(
        default_factory=lambda: dict[str, Any]()
    )

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {"url": self.url, "ok": self.ok}
        if self.ok:
            data["record"] = self.record
        else:
            data["error"] = self.error
        return data


class ExtractionService:
    """Public entry point: ``extract``, snapshots and shutdown."""

    def __init__(
        self,
        orchestrator: ScrapeOrchestrator,
        render_pool: RenderPool[Any] | None = None,
        launcher: BrowserLauncher | None = None,
    ) -> None:
        self.orchestrator = orchestrator
        self.render_pool = render_pool
        self.launcher = launcher
        self._closed = False

    @classmethod
    def create_default(cls) -> "ExtractionService":
        """Wire the production chain from Settings."""
        launcher = BrowserLauncher()
        pool: RenderPool[Browser] = RenderPool(
            factory=launcher.launch,
            closer=launcher.close_browser,
        )
        orchestrator = ScrapeOrchestrator(
            strategies=build_strategies(pool),
            rate_cache=RateCache(),
            metrics=ExtractionMetrics(),
            result_cache=BoundedCache(),
        )
        return cls(orchestrator, render_pool=pool, launcher=launcher)

    async def extract(
        self, url: str, timeout: float | None = None
    ) -> ExtractionResponse:
        """Extract *url*; never raises for pipeline failures."""
        try:
            record = await self.orchestrator.extract(url, timeout=timeout)
        except InvalidURLError as exc:
            return ExtractionResponse(
                url=str(url),
                ok=False,
                error={"message": str(exc), "invalid_url": True},
            )
        except (ChainExhausted, ExtractionTimeout) as exc:
            return ExtractionResponse(
                url=str(url),
                ok=False,
                error={
                    "message": NO_DATA_MESSAGE,
                    "timed_out": isinstance(exc, ExtractionTimeout),
                    **exc.to_dict(),
                },
            )
        return ExtractionResponse(url=str(url), ok=True, record=record.to_dict())

    def metrics_snapshot(self) -> dict[str, Any]:
        return self.orchestrator.metrics.snapshot()

    def rate_snapshot(self) -> dict[str, Any]:
        return self.orchestrator.rate_cache.snapshot().to_dict()

    async def refresh_rates(self) -> dict[str, Any]:
        """Force a rate refresh and return the resulting snapshot."""
        await self.orchestrator.rate_cache.refresh(force=True)
        return self.rate_snapshot()

    async def close(self) -> None:
        """Shut down the render pool and the Playwright driver once."""
        if self._closed:
            return
        self._closed = True
        if self.render_pool is not None:
            await self.render_pool.close()
        if self.launcher is not None:
            await self.launcher.stop()
        logger.info("Extraction service closed")

    async def __aenter__(self) -> "ExtractionService":
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        tb: TracebackType | None,
    ) -> None:
        await self.close()
