"""
Price Feed Protocols
Interfaces between the connection manager and a specific exchange stream.
"""

from typing import Any, AsyncIterator, Awaitable, Dict, Optional, Protocol, Union
from abc import abstractmethod


class PriceSocket(Protocol):
    """Minimal surface of an open upstream socket."""

    async def send(self, message: Union[str, bytes]) -> None:
        ...

    async def close(self) -> None:
        ...

    def __aiter__(self) -> AsyncIterator[Union[str, bytes]]:
        ...


class Connector(Protocol):
    """Opens a socket to a URL (``websockets.connect`` or a test double)."""

    def __call__(self, url: str) -> Awaitable[PriceSocket]:
        ...


class PriceFeedAdapter(Protocol):
    """Protocol-specific knowledge for one exchange's real-time stream."""

    name: str
    quote: str

    @abstractmethod
    def normalize_symbol(self, symbol: str) -> str:
        """Canonical table key for a user-supplied symbol."""
        ...

    @abstractmethod
    def stream_url(self, symbol: str) -> str:
        """Endpoint to connect to for this symbol."""
        ...

    @abstractmethod
    def subscribe_message(self, symbol: str) -> Optional[Dict[str, Any]]:
        """Control message sent right after connect, or None if the URL subscribes."""
        ...

    @abstractmethod
    def parse_price(self, message: Any) -> Optional[float]:
        """Last traded price carried by a decoded frame, None for anything else."""
        ...

    @abstractmethod
    def rejection_reason(self, message: Any) -> Optional[str]:
        """Reason text if the frame rejects our subscription."""
        ...
