# product_pipeline/models/exchange_rates.py

"""Exchange rate snapshot and conversion result models."""

from collections.abc import Mapping
from dataclasses import dataclass, field
from datetime import datetime, timezone
from types import MappingProxyType


@dataclass(frozen=True)
class ExchangeRateSet:
    """Immutable set of rates relative to the reporting currency.

    A refresh builds a new instance; the current one is never edited.
    """

    rates: Mapping[str, float]
    base: str = "USD"
    refreshed_at: float | None = None
    is_fallback: bool = True

    def __post_init__(self) -> None:
        # Freeze the mapping so shared readers cannot mutate it
        frozen = MappingProxyType(
            {k.upper(): float(v) for k, v in self.rates.items()}
        )
        object.__setattr__(self, "rates", frozen)

    def get(self, currency: str) -> float | None:
        """Rate for *currency*, or ``None`` when the code is unknown."""
        return self.rates.get(currency.upper())

    def to_dict(self) -> dict[str, object]:
        """Serialise for operational inspection."""
        refreshed = (
            datetime.fromtimestamp(
                self.refreshed_at, tz=timezone.utc
            ).isoformat()
            if self.refreshed_at is not None
            else "never"
        )
        return {
            "base": self.base,
            "rates": dict(self.rates),
            "refreshed_at": refreshed,
            "is_fallback": self.is_fallback,
        }


@dataclass
class Conversion:
    """Result of converting one amount between currencies."""

    original_amount: float
    original_currency: str
    converted_amount: float
    target_currency: str
    rate: float
    rates_live: bool = False
    converted_at: datetime = field(
        default_factory=lambda: datetime.now(timezone.utc)
    )
