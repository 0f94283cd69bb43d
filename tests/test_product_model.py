# tests/test_product_model.py

"""Tests for the product and exchange-rate data models."""

import dataclasses
import json
import unittest

from product_pipeline.models.errors import (
    ChainExhausted,
    ExtractionTimeout,
    InvalidURLError,
    PipelineError,
    StrategyFailure,
)
from product_pipeline.models.exchange_rates import ExchangeRateSet
from product_pipeline.models.product import (
    UNKNOWN_CURRENCY,
    CanonicalImage,
    ProductRecord,
    RawRecord,
    normalise_currency_code,
)


class TestProductRecord(unittest.TestCase):
    """ProductRecord construction invariants."""

    def test_unpriced_record_is_valid(self) -> None:
        """A record without any price fields is allowed."""
        record = ProductRecord(
            name="Wool Coat", source_url="https://a.com", strategy="x"
        )
        self.assertIsNone(record.price)
        self.assertEqual(record.currency, UNKNOWN_CURRENCY)

    def test_price_without_conversion_rejected(self) -> None:
        """price and converted_price must be present together."""
        with self.assertRaises(ValueError):
            ProductRecord(
                name="Wool Coat",
                source_url="https://a.com",
                strategy="x",
                price=100.0,
                currency="EUR",
            )

    def test_invalid_currency_code_rejected(self) -> None:
        """Currency must be three upper-case letters or UNKNOWN."""
        with self.assertRaises(ValueError):
            ProductRecord(
                name="Wool Coat",
                source_url="https://a.com",
                strategy="x",
                currency="euro",
            )

    def test_to_dict_is_json_serialisable(self) -> None:
        """to_dict output survives json.dumps."""
        record = ProductRecord(
            name="Wool Coat",
            source_url="https://a.com/p",
            strategy="static_html",
            images=[CanonicalImage(key="k", url="https://img/a.jpg")],
            price=100.0,
            currency="EUR",
            converted_price=108.7,
            exchange_rate=1.087,
        )
        data = json.loads(json.dumps(record.to_dict()))
        self.assertEqual(data["images"], ["https://img/a.jpg"])
        self.assertEqual(data["strategy"], "static_html")
        self.assertEqual(data["converted_price"], 108.7)


class TestRawRecord(unittest.TestCase):
    """RawRecord required-field check."""

    def test_blank_name_is_not_usable(self) -> None:
        self.assertFalse(RawRecord(name="   ").has_required_fields())

    def test_named_record_is_usable(self) -> None:
        self.assertTrue(RawRecord(name="Shirt").has_required_fields())


class TestCurrencyCode(unittest.TestCase):
    """normalise_currency_code behaviour."""

    def test_lower_case_is_upper_cased(self) -> None:
        self.assertEqual(normalise_currency_code(" dkk "), "DKK")

    def test_missing_code_is_unknown(self) -> None:
        self.assertEqual(normalise_currency_code(None), UNKNOWN_CURRENCY)
        self.assertEqual(normalise_currency_code(""), UNKNOWN_CURRENCY)

    def test_garbage_is_unknown(self) -> None:
        self.assertEqual(normalise_currency_code("kr."), UNKNOWN_CURRENCY)


class TestExchangeRateSet(unittest.TestCase):
    """ExchangeRateSet is immutable once built."""

    def test_rates_mapping_is_read_only(self) -> None:
        rates = ExchangeRateSet(rates={"usd": 1.0, "eur": 0.9})
        with self.assertRaises(TypeError):
            rates.rates["EUR"] = 2.0  # type: ignore[index]

    def test_fields_are_frozen(self) -> None:
        rates = ExchangeRateSet(rates={"USD": 1.0})
        with self.assertRaises(dataclasses.FrozenInstanceError):
            rates.is_fallback = False  # type: ignore[misc]

    def test_source_dict_mutation_does_not_leak(self) -> None:
        source = {"USD": 1.0, "EUR": 0.9}
        rates = ExchangeRateSet(rates=source)
        source["EUR"] = 5.0
        self.assertEqual(rates.get("eur"), 0.9)

    def test_to_dict_marks_never_refreshed(self) -> None:
        data = ExchangeRateSet(rates={"USD": 1.0}).to_dict()
        self.assertEqual(data["refreshed_at"], "never")
        self.assertTrue(data["is_fallback"])


class TestErrors(unittest.TestCase):
    """Exception hierarchy and diagnostics."""

    def _failures(self) -> list[StrategyFailure]:
        return [
            StrategyFailure("static_html", "HTTP 403"),
            StrategyFailure("rendered", "navigation timed out"),
        ]

    def test_chain_exhausted_diagnostics(self) -> None:
        error = ChainExhausted("https://a.com", 3, self._failures(), 1.23456)
        data = error.to_dict()
        self.assertEqual(
            data["failed_strategies"], ["static_html", "rendered"]
        )
        self.assertEqual(
            data["reasons"][0], {"strategy": "static_html", "reason": "HTTP 403"}
        )
        self.assertEqual(data["elapsed_seconds"], 1.235)
        self.assertEqual(data["attempt"], 3)
        self.assertNotIn("Traceback", json.dumps(data))

    def test_timeout_is_a_timeout_error(self) -> None:
        error = ExtractionTimeout("https://a.com", 1, [], 2.0)
        self.assertIsInstance(error, TimeoutError)
        self.assertIsInstance(error, PipelineError)

    def test_invalid_url_is_a_value_error(self) -> None:
        self.assertTrue(issubclass(InvalidURLError, ValueError))

    def test_strategy_failure_message(self) -> None:
        failure = StrategyFailure("firecrawl", "no API key")
        self.assertEqual(str(failure), "[firecrawl] no API key")


if __name__ == "__main__":
    unittest.main()
