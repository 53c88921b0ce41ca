"""
Live price schemas using Pydantic for validation and serialization.
"""

from pydantic import BaseModel, Field
from typing import List, Optional

class LivePriceInput(BaseModel):
    """Price query for a single cryptocurrency."""
    cryptocurrency: str = Field(..., min_length=1, max_length=20, description="Ticker symbol, e.g. BTC or ETH")

class LivePriceOutput(BaseModel):
    """Latest observed price; omitted until the first tick arrives."""
    price: Optional[float] = Field(None, description="The latest price of the cryptocurrency")

class ConnectionSnapshot(BaseModel):
    """Read-only view of one connection table entry."""
    symbol: str
    state: str                      # connecting | open | streaming | closed
    last_price: Optional[float] = None
    last_update: float              # epoch seconds of last parsed tick (or entry creation)
    idle_s: float                   # seconds since last_update

class FeedStatus(BaseModel):
    """Connection table overview."""
    exchange: str
    quote: str
    connections: List[ConnectionSnapshot]

class PriceTick(BaseModel):
    """Frame pushed to websocket watchers."""
    symbol: str
    price: float
