"""
Protocols
Lightweight Protocols for interface clarity and decoupling.
"""

from .price_feed import Connector, PriceFeedAdapter, PriceSocket

__all__ = [
    "Connector",
    "PriceFeedAdapter",
    "PriceSocket"
]
