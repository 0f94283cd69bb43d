# product_pipeline/models/errors.py

"""Exception hierarchy for the extraction pipeline.

Only :class:`ChainExhausted`, :class:`ExtractionTimeout` and
:class:`InvalidURLError` leave the orchestrator; everything else is
absorbed and reported as diagnostic detail.
"""

from typing import Any


class PipelineError(Exception):
    """Base class for all pipeline errors."""


class InvalidURLError(PipelineError, ValueError):
    """The submitted URL is not an absolute http(s) URL."""


class StrategyFailure(PipelineError):
    """A single strategy could not produce a usable record."""

    def __init__(self, strategy: str, reason: str) -> None:
        super().__init__(f"[{strategy}] {reason}")
        self.strategy = strategy
        self.reason = reason


class _ChainDiagnostics(PipelineError):
    """Shared fields for terminal errors that carry per-strategy reasons."""

    def __init__(
        self,
        message: str,
        url: str,
        attempt: int,
        failures: list[StrategyFailure],
        elapsed: float,
    ) -> None:
        super().__init__(message)
        self.url = url
        self.attempt = attempt
        self.failures = list(failures)
        self.elapsed = elapsed

    @property
    def failed_strategies(self) -> list[str]:
        return [f.strategy for f in self.failures]

    def to_dict(self) -> dict[str, Any]:
        """Structured, traceback-free form for the service boundary."""
        return {
            "url": self.url,
            "attempt": self.attempt,
            "failed_strategies": self.failed_strategies,
            "reasons": [
                {"strategy": f.strategy, "reason": f.reason}
                for f in self.failures
            ],
            "elapsed_seconds": round(self.elapsed, 3),
        }


class ChainExhausted(_ChainDiagnostics):
    """Every configured strategy failed for a URL."""

    def __init__(
        self,
        url: str,
        attempt: int,
        failures: list[StrategyFailure],
        elapsed: float,
    ) -> None:
        super().__init__(
            f"All {len(failures)} strategies failed for {url} "
            f"(attempt #{attempt})",
            url,
            attempt,
            failures,
            elapsed,
        )


class ExtractionTimeout(_ChainDiagnostics, TimeoutError):
    """The caller's deadline elapsed before any strategy succeeded."""

    def __init__(
        self,
        url: str,
        attempt: int,
        failures: list[StrategyFailure],
        elapsed: float,
    ) -> None:
        super().__init__(
            f"Extraction of {url} timed out after {elapsed:.1f}s "
            f"(attempt #{attempt})",
            url,
            attempt,
            failures,
            elapsed,
        )


class RateRefreshError(PipelineError):
    """The live exchange-rate source returned no usable data."""


class ResourceExhaustedError(PipelineError):
    """No render resource became available before the deadline."""


class PoolClosedError(PipelineError):
    """The render pool was shut down."""
