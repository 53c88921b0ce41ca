"""
CryptoVision Live Price Service - FastAPI Backend

Serves best-effort live cryptocurrency prices from per-symbol exchange
websockets, with an idle sweep that releases symbols nobody asks for.
"""

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from typing import Any, Dict, Optional
import logging

from backend.config import settings
from backend.middleware.error_handler import register_exception_handlers
from backend.observability.logs import setup_log_rotation, setup_logging
from backend.observability.metrics import create_metrics_router
from backend.routes_prices import router as prices_router
from backend.services.live_price import LivePriceManager, get_live_price_manager
from backend.util.async_tools import shutdown_supervised_tasks

# Setup logging
setup_logging(settings.LOG_LEVEL)
logger = logging.getLogger(__name__)

def create_app(manager: Optional[LivePriceManager] = None, *, rotate_logs: bool = True) -> FastAPI:
    """Build the app around ``manager`` (the process-wide manager by default)."""
    app = FastAPI(title="CryptoVision Live Prices", version="1.0")

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_methods=["GET", "POST"],
        allow_headers=["*"],
    )

    register_exception_handlers(app)
    app.include_router(prices_router)
    app.include_router(create_metrics_router())

    app.state.live_price_manager = manager or get_live_price_manager()

    @app.on_event("startup")
    async def startup_event():
        """Initialize services on startup."""
        if rotate_logs:
            setup_log_rotation(settings.LOG_DIR)

        live_prices: LivePriceManager = app.state.live_price_manager
        await live_prices.start()
        logger.info(f"Live price manager started ({live_prices.adapter.name}/{live_prices.adapter.quote})")

    @app.on_event("shutdown")
    async def shutdown_event():
        """Cleanup services on shutdown."""
        await app.state.live_price_manager.stop()
        logger.info("Live price manager stopped")

        await shutdown_supervised_tasks()
        logger.info("All supervised tasks shut down")

    @app.get("/health")
    async def health() -> Dict[str, Any]:
        return app.state.live_price_manager.get_health_metrics()

    return app

app = create_app()

if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=8000)
