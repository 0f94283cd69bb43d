# product_pipeline/config/settings.py

"""Central configuration for the product extraction pipeline."""

import os
from pathlib import Path

from curl_cffi.requests import BrowserTypeLiteral
from dotenv import load_dotenv

load_dotenv()


class Settings:
    """Central configuration for the product extraction pipeline."""

    # --- Fetching ---
    REQUEST_DELAY: float = 1.0          # Base delay between retries
    REQUEST_TIMEOUT: int = 15           # Seconds before a request times out
    MAX_RETRIES: int = 3                # Retry count on transient failures

    # --- Resilience ---
    CIRCUIT_BREAKER_THRESHOLD: int = 3  # Consecutive failures to trip
    CIRCUIT_BREAKER_COOLDOWN: float = 120.0  # Secs before half-open probe
    MAX_DELAY_MULTIPLIER: int = 8       # Cap for adaptive backoff
    CAPTCHA_KEYWORDS: list[str] = [
        "captcha",
        "verify you are human",
        "unusual traffic",
        "automated requests",
    ]

    # --- Browser Impersonation ---
    IMPERSONATE_BROWSER: BrowserTypeLiteral = "chrome131"
    DEFAULT_HEADERS: dict[str, str] = {
        "Accept": (
            "text/html,application/xhtml+xml,"
            "application/xml;q=0.9,image/avif,"
            "image/webp,image/apng,*/*;q=0.8"
        ),
        "Accept-Language": "en-US,en;q=0.9",
        "sec-ch-ua": (
            '"Google Chrome";v="131", '
            '"Chromium";v="131", '
            '"Not_A Brand";v="24"'
        ),
        "sec-ch-ua-mobile": "?0",
        "sec-ch-ua-platform": '"Windows"',
        "sec-fetch-dest": "document",
        "sec-fetch-mode": "navigate",
        "sec-fetch-site": "none",
        "sec-fetch-user": "?1",
        "Upgrade-Insecure-Requests": "1",
    }

    # --- Rendering ---
    MAX_RENDER_RESOURCES: int = int(os.getenv("MAX_BROWSERS", "2"))
    RENDER_ACQUIRE_TIMEOUT: float = 30.0   # Secs to wait for a browser
    RENDER_NAVIGATION_TIMEOUT: int = 45_000  # Playwright timeouts are ms
    RENDER_IDLE_TIMEOUT: int = 5_000
    BROWSER_ARGS: list[str] = [
        "--no-sandbox",
        "--disable-setuid-sandbox",
        "--disable-dev-shm-usage",
        "--disable-accelerated-2d-canvas",
        "--no-first-run",
        "--no-zygote",
        "--disable-gpu",
        "--disable-blink-features=AutomationControlled",
    ]
    BROWSER_USER_AGENT: str = (
        "Mozilla/5.0 (Windows NT 10.0; Win64; x64) "
        "AppleWebKit/537.36 (KHTML, like Gecko) "
        "Chrome/131.0.0.0 Safari/537.36"
    )

    # --- Managed extraction ---
    FIRECRAWL_API_KEY: str = os.getenv("FIRECRAWL_API_KEY", "")

    # --- Currency ---
    REPORTING_CURRENCY: str = os.getenv("REPORTING_CURRENCY", "USD")
    RATE_API_URL: str = "https://api.exchangerate-api.com/v4/latest/USD"
    RATE_API_TIMEOUT: int = 5
    RATE_REFRESH_INTERVAL: float = 6 * 60 * 60.0   # Live set lifetime
    RATE_RETRY_INTERVAL: float = 5 * 60.0          # After a failed refresh
    FALLBACK_RATES: dict[str, float] = {
        "USD": 1.0,
        "EUR": 0.92,
        "GBP": 0.79,
        "DKK": 6.88,
        "SEK": 10.89,
        "NOK": 10.98,
        "CHF": 0.91,
        "CAD": 1.36,
        "AUD": 1.54,
        "NZD": 1.66,
        "JPY": 149.50,
        "CNY": 7.29,
        "KRW": 1341.25,
        "SGD": 1.35,
        "HKD": 7.81,
        "INR": 83.12,
    }

    # --- Result cache ---
    RESULT_CACHE_SIZE: int = 100
    RESULT_CACHE_TTL: float = 3600.0

    # --- Paths ---
    BASE_DIR: Path = Path(__file__).resolve().parent.parent.parent
    SELECTORS_PATH: Path = (
        BASE_DIR / "product_pipeline" / "config" / "selectors.json"
    )
    LOGS_DIR: Path = BASE_DIR / "logs"

    # --- Strategies (priority order: cheapest first) ---
    EXTRACTION_STRATEGIES: list[dict[str, str]] = [
        {
            "id": "shopify_json",
            "label": "Shopify product JSON",
            "strategy": (
                "product_pipeline.strategies.shopify_strategy"
                ".ShopifyJsonStrategy"
            ),
        },
        {
            "id": "static_html",
            "label": "Static HTML",
            "strategy": (
                "product_pipeline.strategies.static_strategy"
                ".StaticHtmlStrategy"
            ),
        },
        {
            "id": "rendered",
            "label": "Rendered browser",
            "strategy": (
                "product_pipeline.strategies.rendered_strategy"
                ".RenderedStrategy"
            ),
            "render": "true",
        },
        {
            "id": "firecrawl",
            "label": "Firecrawl",
            "strategy": (
                "product_pipeline.strategies.managed_strategy"
                ".FirecrawlStrategy"
            ),
        },
    ]
