# product_pipeline/services/metrics.py

"""In-process extraction counters per strategy and per site."""

import threading
from collections import defaultdict
from typing import Any


class _Counts:
    __slots__ = ("attempts", "successes", "failures")

    def __init__(self) -> None:
        self.attempts = 0
        self.successes = 0
        self.failures = 0

    def as_dict(self) -> dict[str, Any]:
        rate = self.successes / self.attempts if self.attempts else 0.0
        return {
            "attempts": self.attempts,
            "successes": self.successes,
            "failures": self.failures,
            "success_rate": round(rate, 3),
        }


class ExtractionMetrics:
    """Thread-safe counters; :meth:`snapshot` returns plain dicts."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._strategies: dict[str, _Counts] = defaultdict(_Counts)
        self._sites: dict[str, _Counts] = defaultdict(_Counts)
        self._by_site: dict[str, dict[str, _Counts]] = defaultdict(
            lambda: defaultdict(_Counts)
        )
        self._extractions = 0
        self._exhausted = 0
        self._timeouts = 0
        self._cache_hits = 0
        self._malformed_images = 0

    def record_attempt(self, strategy: str, site: str) -> None:
        with self._lock:
            self._strategies[strategy].attempts += 1
            self._sites[site].attempts += 1
            self._by_site[site][strategy].attempts += 1

    def record_success(self, strategy: str, site: str) -> None:
        with self._lock:
            self._strategies[strategy].successes += 1
            self._sites[site].successes += 1
            self._by_site[site][strategy].successes += 1
            self._extractions += 1

    def record_failure(self, strategy: str, site: str) -> None:
        with self._lock:
            self._strategies[strategy].failures += 1
            self._sites[site].failures += 1
            self._by_site[site][strategy].failures += 1

    def record_exhausted(self) -> None:
        with self._lock:
            self._exhausted += 1

    def record_timeout(self) -> None:
        with self._lock:
            self._timeouts += 1

    def record_cache_hit(self) -> None:
        with self._lock:
            self._cache_hits += 1

    def record_malformed_images(self, count: int) -> None:
        if count <= 0:
            return
        with self._lock:
            self._malformed_images += count

    def snapshot(self) -> dict[str, Any]:
        """Copy of all counters, safe to serialise."""
        with self._lock:
            return {
                "extractions": self._extractions,
                "exhausted": self._exhausted,
                "timeouts": self._timeouts,
                "cache_hits": self._cache_hits,
                "malformed_images": self._malformed_images,
                "strategies": {
                    name: c.as_dict()
                    for name, c in self._strategies.items()
                },
                "sites": {
                    name: {
                        **c.as_dict(),
                        "strategies": {
                            strategy: counts.as_dict()
                            for strategy, counts in self._by_site[
                                name
                            ].items()
                        },
                    }
                    for name, c in self._sites.items()
                },
            }
