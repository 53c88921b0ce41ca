# backend/config.py
from dotenv import load_dotenv, find_dotenv
import os
import logging

# Load nearest .env from project tree, don't override existing process env
load_dotenv(find_dotenv(usecwd=True), override=False)

logger = logging.getLogger(__name__)

SUPPORTED_EXCHANGES = ("binance", "kraken")

class Settings:
    """Live price service configuration."""

    # Upstream selection
    LIVE_PRICE_EXCHANGE = (os.getenv("LIVE_PRICE_EXCHANGE") or "binance").strip().lower()
    LIVE_PRICE_QUOTE = (os.getenv("LIVE_PRICE_QUOTE") or "USDT").strip().upper()

    # Query / lifecycle timings
    LIVE_PRICE_GRACE_MS = int(os.getenv("LIVE_PRICE_GRACE_MS", "500"))
    LIVE_PRICE_IDLE_TIMEOUT_S = float(os.getenv("LIVE_PRICE_IDLE_TIMEOUT_S", "60"))
    LIVE_PRICE_SWEEP_INTERVAL_S = float(os.getenv("LIVE_PRICE_SWEEP_INTERVAL_S", "30"))
    LIVE_PRICE_CONNECT_TIMEOUT_S = float(os.getenv("LIVE_PRICE_CONNECT_TIMEOUT_S", "10"))

    # Push listeners drop ticks beyond this many queued prices
    LIVE_PRICE_WATCH_QUEUE_SIZE = int(os.getenv("LIVE_PRICE_WATCH_QUEUE_SIZE", "100"))

    # Upstream endpoints
    BINANCE_WS_BASE = (os.getenv("BINANCE_WS_BASE") or "wss://stream.binance.com:443/ws").strip().rstrip("/")
    KRAKEN_WS_URL = (os.getenv("KRAKEN_WS_URL") or "wss://ws.kraken.com").strip()

    # Logging
    LOG_LEVEL = (os.getenv("LOG_LEVEL") or "INFO").strip().upper()
    LOG_DIR = (os.getenv("LOG_DIR") or ".run").strip()

    def __init__(self):
        if self.LIVE_PRICE_EXCHANGE not in SUPPORTED_EXCHANGES:
            logger.warning(
                f"Unknown LIVE_PRICE_EXCHANGE={self.LIVE_PRICE_EXCHANGE}, "
                f"expected one of {SUPPORTED_EXCHANGES}"
            )

        if self.LIVE_PRICE_IDLE_TIMEOUT_S <= self.LIVE_PRICE_GRACE_MS / 1000.0:
            logger.warning("LIVE_PRICE_IDLE_TIMEOUT_S is shorter than the grace period")

    @property
    def grace_period_s(self) -> float:
        return self.LIVE_PRICE_GRACE_MS / 1000.0

settings = Settings()
