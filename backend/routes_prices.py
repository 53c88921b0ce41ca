"""
Live price endpoints.
Thin HTTP/WebSocket layer over the LivePriceManager stored on app.state.
"""

from fastapi import APIRouter, Request, WebSocket, WebSocketDisconnect
import logging

from backend.errors import CryptoVisionError, sanitize_error_message
from backend.schemas.prices import FeedStatus, LivePriceInput, LivePriceOutput, PriceTick
from backend.services.live_price import LivePriceManager, get_live_price

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/prices", tags=["prices"])

def _manager(app) -> LivePriceManager:
    return app.state.live_price_manager

@router.get("/status", response_model=FeedStatus)
async def price_status(request: Request) -> FeedStatus:
    """Connection table overview (one row per tracked symbol)."""
    manager = _manager(request.app)
    return FeedStatus(
        exchange=manager.adapter.name,
        quote=manager.adapter.quote,
        connections=manager.snapshot()
    )

@router.post("/live", response_model=LivePriceOutput, response_model_exclude_none=True)
async def live_price(payload: LivePriceInput, request: Request) -> LivePriceOutput:
    """Latest price for the requested cryptocurrency; `price` is omitted until the first tick."""
    return await get_live_price(payload, _manager(request.app))

@router.get("/{cryptocurrency}", response_model=LivePriceOutput, response_model_exclude_none=True)
async def price_for(cryptocurrency: str, request: Request) -> LivePriceOutput:
    price = await _manager(request.app).get_price(cryptocurrency)
    return LivePriceOutput(price=price)

@router.websocket("/ws/{cryptocurrency}")
async def price_stream(websocket: WebSocket, cryptocurrency: str):
    """
    Push every tick for one symbol to the client.

    The socket is closed (code 1011) when the upstream connection is torn
    down; clients reconnect to resubscribe.
    """
    manager = _manager(websocket.app)
    await websocket.accept()

    try:
        symbol = manager.adapter.normalize_symbol(cryptocurrency)
    except CryptoVisionError as e:
        await websocket.send_json({"error": e.error_code, "message": sanitize_error_message(e.message)})
        await websocket.close(code=1008)
        return

    try:
        async for price in manager.watch(symbol):
            await websocket.send_json(PriceTick(symbol=symbol, price=price).model_dump())
        await websocket.close(code=1011, reason="upstream closed")
    except WebSocketDisconnect:
        logger.info(f"Price stream client disconnected for {symbol}")
