"""
Exchange adapters for the live price manager.

Binance subscribes through the URL (one ``<pair>@trade`` stream per socket),
Kraken connects to a generic endpoint and subscribes to the ``ticker``
channel after the socket opens. Both map a frame to a last traded price or
to ``None`` for heartbeats, status events and anything else.
"""

import logging
import re
from typing import Any, Dict, Optional

from backend.config import settings
from backend.errors import ConfigurationError, ValidationError

logger = logging.getLogger("price_adapters")

_SYMBOL_RE = re.compile(r"^[A-Za-z0-9]{1,20}$")


def _to_price(raw: Any) -> Optional[float]:
    try:
        price = float(raw)
    except (TypeError, ValueError):
        return None
    if price != price or price <= 0:  # NaN or non-positive
        return None
    return price


class _BaseAdapter:
    name = "base"

    def __init__(self, quote: str):
        self.quote = quote.strip().upper()

    def normalize_symbol(self, symbol: str) -> str:
        candidate = (symbol or "").strip()
        if not _SYMBOL_RE.match(candidate):
            raise ValidationError(
                f"Invalid symbol: {symbol!r}",
                details={"symbol": symbol, "exchange": self.name}
            )
        return candidate.upper()

    def rejection_reason(self, message: Any) -> Optional[str]:
        return None


class BinanceTradeAdapter(_BaseAdapter):
    """Raw trade stream: ``wss://stream.binance.com:443/ws/btcusdt@trade``."""

    name = "binance"

    def __init__(self, quote: str = "USDT", base_url: Optional[str] = None):
        super().__init__(quote)
        self.base_url = (base_url or settings.BINANCE_WS_BASE).rstrip("/")

    def stream_name(self, symbol: str) -> str:
        return f"{symbol.lower()}{self.quote.lower()}@trade"

    def stream_url(self, symbol: str) -> str:
        return f"{self.base_url}/{self.stream_name(symbol)}"

    def subscribe_message(self, symbol: str) -> Optional[Dict[str, Any]]:
        return None

    def parse_price(self, message: Any) -> Optional[float]:
        # {"e": "trade", "s": "BTCUSDT", "p": "68000.12", ...}
        if not isinstance(message, dict) or message.get("e") != "trade":
            return None
        return _to_price(message.get("p"))


class KrakenTickerAdapter(_BaseAdapter):
    """Public v1 socket with an explicit ``ticker`` subscription."""

    name = "kraken"

    # Kraken's websocket pairs use ISO-style asset codes
    ASSET_ALIASES = {"BTC": "XBT", "DOGE": "XDG"}

    def __init__(self, quote: str = "USDT", url: Optional[str] = None):
        super().__init__(quote)
        self.url = url or settings.KRAKEN_WS_URL

    def pair(self, symbol: str) -> str:
        base = self.ASSET_ALIASES.get(symbol.upper(), symbol.upper())
        quote = self.ASSET_ALIASES.get(self.quote, self.quote)
        return f"{base}/{quote}"

    def stream_url(self, symbol: str) -> str:
        return self.url

    def subscribe_message(self, symbol: str) -> Optional[Dict[str, Any]]:
        return {
            "event": "subscribe",
            "pair": [self.pair(symbol)],
            "subscription": {"name": "ticker"}
        }

    def parse_price(self, message: Any) -> Optional[float]:
        # [channelID, {"c": ["68000.10000", "0.0012"], ...}, "ticker", "XBT/USDT"]
        if not isinstance(message, list) or len(message) < 2:
            return None
        payload = message[1]
        if not isinstance(payload, dict):
            return None
        close = payload.get("c")
        if not isinstance(close, list) or not close:
            return None
        return _to_price(close[0])

    def rejection_reason(self, message: Any) -> Optional[str]:
        if (
            isinstance(message, dict)
            and message.get("event") == "subscriptionStatus"
            and message.get("status") == "error"
        ):
            return str(message.get("errorMessage") or "subscription rejected")
        return None


ADAPTERS = {
    BinanceTradeAdapter.name: BinanceTradeAdapter,
    KrakenTickerAdapter.name: KrakenTickerAdapter,
}


def build_adapter(exchange: Optional[str] = None, quote: Optional[str] = None):
    """Adapter for the configured (or given) exchange."""
    name = (exchange or settings.LIVE_PRICE_EXCHANGE).strip().lower()
    adapter_cls = ADAPTERS.get(name)
    if adapter_cls is None:
        raise ConfigurationError(
            f"Unsupported exchange: {name}",
            details={"supported": sorted(ADAPTERS)}
        )
    adapter = adapter_cls(quote=quote or settings.LIVE_PRICE_QUOTE)
    logger.info(f"[price_adapters] Using {adapter.name} with quote {adapter.quote}")
    return adapter
