"""
Live Price Stream Manager.

Keeps at most one upstream websocket per tracked symbol. ``get_price`` opens a
connection on first use, waits a short grace period for the first tick and
returns whatever price the table holds by then. A supervised background sweep
terminates connections that stopped ticking.

Entry lifecycle:
    (absent) -> CONNECTING -> OPEN -> STREAMING -> CLOSED -> (absent)

Any terminal event (connect failure, rejected subscription, transport error,
remote close, idle timeout, shutdown) removes the entry. The next query for
the symbol starts from scratch with a fresh handshake.
"""

import asyncio
import json
import logging
import time
import uuid
from dataclasses import dataclass, field
from enum import Enum
from threading import RLock
from typing import Any, AsyncIterator, Callable, Dict, List, Optional, Set, Tuple

import websockets

from backend.config import settings
from backend.errors import SubscriptionRejectedError
from backend.observability.metrics import (
    record_open_connections, record_price_query, record_ws_connect_failure,
    record_ws_eviction, record_ws_handshake, record_ws_tick
)
from backend.protocols.price_feed import Connector, PriceFeedAdapter, PriceSocket
from backend.schemas.prices import ConnectionSnapshot, LivePriceInput, LivePriceOutput
from backend.services.price_adapters import build_adapter
from backend.util.async_tools import create_supervised_task, timeout

logger = logging.getLogger("live_price")


class ConnectionState(str, Enum):
    CONNECTING = "connecting"
    OPEN = "open"
    STREAMING = "streaming"
    CLOSED = "closed"


def _offer(queue: asyncio.Queue, item: Optional[float]) -> None:
    # Full queue: drop the oldest item so the newest always lands
    if queue.full():
        queue.get_nowait()
    queue.put_nowait(item)


@dataclass(eq=False)
class ConnectionEntry:
    """One tracked symbol and the socket that feeds it."""
    symbol: str
    last_update: float
    state: ConnectionState = ConnectionState.CONNECTING
    handle: Optional[PriceSocket] = None
    last_price: Optional[float] = None
    task: Optional[asyncio.Task] = None
    listeners: Set[asyncio.Queue] = field(default_factory=set)

    @property
    def healthy(self) -> bool:
        if self.state is ConnectionState.CLOSED:
            return False
        return self.task is None or not self.task.done()

    def apply_tick(self, price: float, now: float) -> None:
        self.last_price = price
        self.last_update = now
        self.state = ConnectionState.STREAMING
        for queue in list(self.listeners):
            _offer(queue, price)

    def terminate(self) -> None:
        """Mark closed, stop the reader task and end every listener stream."""
        already_closed = self.state is ConnectionState.CLOSED
        self.state = ConnectionState.CLOSED

        # The reader closes its socket on the way out
        task = self.task
        if task is not None and not task.done() and task is not asyncio.current_task():
            task.cancel()

        if not already_closed:
            for queue in list(self.listeners):
                _offer(queue, None)


class ConnectionTable:
    """Symbol -> ConnectionEntry, at most one entry per symbol."""

    def __init__(self):
        self._entries: Dict[str, ConnectionEntry] = {}
        self._lock = RLock()

    def get(self, symbol: str) -> Optional[ConnectionEntry]:
        with self._lock:
            return self._entries.get(symbol)

    def put(self, symbol: str, entry: ConnectionEntry) -> None:
        with self._lock:
            self._entries[symbol] = entry

    def remove(self, symbol: str, entry: Optional[ConnectionEntry] = None) -> bool:
        """Remove ``symbol``; with ``entry`` given, only if it is still the current one."""
        with self._lock:
            current = self._entries.get(symbol)
            if current is None or (entry is not None and current is not entry):
                return False
            del self._entries[symbol]
            return True

    def items(self) -> List[Tuple[str, ConnectionEntry]]:
        with self._lock:
            return list(self._entries.items())

    def symbols(self) -> List[str]:
        with self._lock:
            return list(self._entries)

    def __contains__(self, symbol: str) -> bool:
        with self._lock:
            return symbol in self._entries

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)


async def websocket_connect(url: str) -> PriceSocket:
    """Default connector: a plain ``websockets`` client connection."""
    return await websockets.connect(url, close_timeout=5)


class LivePriceManager:
    """Best-effort latest price per symbol over lazily opened upstream sockets."""

    def __init__(
        self,
        adapter: Optional[PriceFeedAdapter] = None,
        connector: Optional[Connector] = None,
        *,
        table: Optional[ConnectionTable] = None,
        grace_period_s: Optional[float] = None,
        idle_timeout_s: Optional[float] = None,
        sweep_interval_s: Optional[float] = None,
        connect_timeout_s: Optional[float] = None,
        watch_queue_size: Optional[int] = None,
        clock: Optional[Callable[[], float]] = None,
    ):
        self.adapter = adapter if adapter is not None else build_adapter()
        self.table = table if table is not None else ConnectionTable()
        self._connect = connector or websocket_connect
        # Idle clock for last_update; snapshots convert it to epoch seconds
        self._clock = clock or time.monotonic

        self.grace_period_s = settings.grace_period_s if grace_period_s is None else grace_period_s
        self.idle_timeout_s = settings.LIVE_PRICE_IDLE_TIMEOUT_S if idle_timeout_s is None else idle_timeout_s
        self.sweep_interval_s = settings.LIVE_PRICE_SWEEP_INTERVAL_S if sweep_interval_s is None else sweep_interval_s
        self.connect_timeout_s = settings.LIVE_PRICE_CONNECT_TIMEOUT_S if connect_timeout_s is None else connect_timeout_s
        self.watch_queue_size = settings.LIVE_PRICE_WATCH_QUEUE_SIZE if watch_queue_size is None else watch_queue_size

        self.manager_id = uuid.uuid4().hex[:8]
        self.running = False
        self._sweep_task: Optional[asyncio.Task] = None

        # Counters
        self.handshakes = 0
        self.total_ticks = 0
        self.evictions: Dict[str, int] = {}

    # ------------------------------------------------------------------ lifecycle

    async def start(self) -> None:
        """Start the idle sweeper."""
        if self.running:
            logger.warning("[live_price] Manager already running")
            return
        self._ensure_sweeper()

    def _ensure_sweeper(self) -> None:
        if self.running:
            return
        self.running = True
        self._sweep_task = create_supervised_task(
            self._sweep_loop(),
            name=f"live_price_sweep:{self.manager_id}"
        )
        logger.info(
            f"[live_price] Started ({self.adapter.name}, idle={self.idle_timeout_s}s, "
            f"sweep={self.sweep_interval_s}s, grace={self.grace_period_s}s)"
        )

    async def stop(self) -> None:
        """Stop the sweeper and terminate every tracked connection."""
        self.running = False

        if self._sweep_task is not None:
            self._sweep_task.cancel()
            await asyncio.gather(self._sweep_task, return_exceptions=True)
            self._sweep_task = None

        tasks = []
        for symbol, entry in self.table.items():
            self._evict(symbol, entry, "shutdown")
            if entry.task is not None:
                tasks.append(entry.task)
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)

        logger.info("[live_price] Manager stopped")

    # ------------------------------------------------------------------ queries

    async def get_price(self, symbol: str) -> Optional[float]:
        """
        Latest observed price for ``symbol`` or None if no tick arrived yet.

        Opens a connection when the symbol is untracked (or its entry closed),
        then always waits the grace period before reading the table back.
        Upstream failures never propagate; only an unusable symbol raises
        ``ValidationError``.
        """
        key = self.adapter.normalize_symbol(symbol)
        started = time.perf_counter()

        self._ensure_sweeper()
        self._ensure_connection(key)

        await asyncio.sleep(self.grace_period_s)

        current = self.table.get(key)
        price = current.last_price if current is not None else None
        record_price_query(price is not None, (time.perf_counter() - started) * 1000)
        return price

    async def watch(self, symbol: str) -> AsyncIterator[float]:
        """Yield the known price (if any) and then every new tick until the entry is torn down."""
        key = self.adapter.normalize_symbol(symbol)
        self._ensure_sweeper()
        entry = self._ensure_connection(key)

        queue: asyncio.Queue = asyncio.Queue(maxsize=max(1, self.watch_queue_size))
        entry.listeners.add(queue)
        try:
            if entry.last_price is not None:
                yield entry.last_price
            while True:
                price = await queue.get()
                if price is None:
                    return
                yield price
        finally:
            entry.listeners.discard(queue)

    # ------------------------------------------------------------------ table management

    def _ensure_connection(self, symbol: str) -> ConnectionEntry:
        entry = self.table.get(symbol)
        if entry is not None and entry.healthy:
            return entry

        if entry is not None:
            logger.info(f"[live_price] Replacing closed connection for {symbol}")
            self._evict(symbol, entry, "stale")

        entry = ConnectionEntry(symbol=symbol, last_update=self._clock())
        self.table.put(symbol, entry)
        self.handshakes += 1
        record_ws_handshake(self.adapter.name)
        record_open_connections(len(self.table))

        entry.task = asyncio.create_task(self._run_connection(entry), name=f"live_price:{symbol}")
        return entry

    def _evict(self, symbol: str, entry: ConnectionEntry, reason: str) -> bool:
        entry.terminate()
        removed = self.table.remove(symbol, entry)
        if removed:
            self.evictions[reason] = self.evictions.get(reason, 0) + 1
            record_ws_eviction(reason)
            record_open_connections(len(self.table))
        return removed

    async def _run_connection(self, entry: ConnectionEntry) -> None:
        symbol = entry.symbol
        url = self.adapter.stream_url(symbol)
        ws: Optional[PriceSocket] = None

        try:
            try:
                ws = await timeout(self._connect(url), self.connect_timeout_s)
            except asyncio.CancelledError:
                raise
            except Exception as e:
                logger.warning(f"[live_price] Connect failed for {symbol} ({url}): {e}")
                record_ws_connect_failure(self.adapter.name, type(e).__name__)
                self._evict(symbol, entry, "connect_failed")
                return

            entry.handle = ws
            if entry.state is ConnectionState.CLOSED:
                return
            entry.state = ConnectionState.OPEN
            logger.info(f"[live_price] Connected {symbol} via {self.adapter.name}")

            subscription = self.adapter.subscribe_message(symbol)
            if subscription is not None:
                await ws.send(json.dumps(subscription))
                logger.debug(f"[live_price] Subscribe sent for {symbol}: {subscription}")

            async for raw in ws:
                self._handle_message(entry, raw)

            logger.info(f"[live_price] WebSocket closed for {symbol}")
            self._evict(symbol, entry, "remote_closed")

        except asyncio.CancelledError:
            raise
        except SubscriptionRejectedError as e:
            logger.warning(f"[live_price] Subscription rejected for {symbol}: {e.message}")
            self._evict(symbol, entry, "rejected")
        except Exception as e:
            logger.error(f"[live_price] WebSocket error for {symbol}: {e}")
            self._evict(symbol, entry, "error")
        finally:
            if ws is not None:
                try:
                    await ws.close()
                except Exception as e:
                    logger.debug(f"[live_price] Close failed for {symbol}: {e}")

    def _handle_message(self, entry: ConnectionEntry, raw: Any) -> None:
        """Apply one upstream frame; frames that carry no price are ignored."""
        try:
            message = json.loads(raw)
        except (TypeError, ValueError):
            logger.debug(f"[live_price] Ignoring undecodable frame for {entry.symbol}")
            return

        reason = self.adapter.rejection_reason(message)
        if reason is not None:
            raise SubscriptionRejectedError(
                reason,
                details={"symbol": entry.symbol, "exchange": self.adapter.name}
            )

        price = self.adapter.parse_price(message)
        if price is None or entry.state is ConnectionState.CLOSED:
            return

        entry.apply_tick(price, self._clock())
        self.total_ticks += 1
        record_ws_tick(self.adapter.name)

    # ------------------------------------------------------------------ idle sweep

    async def sweep_idle(self) -> List[str]:
        """Evict entries whose last tick is older than the idle threshold."""
        now = self._clock()
        evicted: List[str] = []
        tasks = []

        for symbol, entry in self.table.items():
            idle_s = now - entry.last_update
            if idle_s <= self.idle_timeout_s:
                continue
            if self._evict(symbol, entry, "idle_timeout"):
                evicted.append(symbol)
                if entry.task is not None:
                    tasks.append(entry.task)
                logger.info(f"[live_price] Closed inactive WebSocket for {symbol} (idle {idle_s:.1f}s)")

        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
        return evicted

    async def _sweep_loop(self) -> None:
        while self.running:
            await asyncio.sleep(self.sweep_interval_s)
            try:
                await self.sweep_idle()
            except Exception as e:
                logger.error(f"[live_price] Idle sweep failed: {e}")

    # ------------------------------------------------------------------ introspection

    def snapshot(self) -> List[ConnectionSnapshot]:
        """Table rows with last_update reported as epoch seconds."""
        now = self._clock()
        wall_now = time.time()
        rows = []
        for symbol, entry in sorted(self.table.items()):
            idle_s = max(0.0, now - entry.last_update)
            rows.append(ConnectionSnapshot(
                symbol=symbol,
                state=entry.state.value,
                last_price=entry.last_price,
                last_update=wall_now - idle_s,
                idle_s=round(idle_s, 3)
            ))
        return rows

    def get_health_metrics(self) -> Dict[str, Any]:
        return {
            "exchange": self.adapter.name,
            "quote": self.adapter.quote,
            "running": self.running,
            "connections": len(self.table),
            "symbols": sorted(self.table.symbols()),
            "handshakes": self.handshakes,
            "total_ticks": self.total_ticks,
            "evictions": dict(self.evictions),
            "grace_period_s": self.grace_period_s,
            "idle_timeout_s": self.idle_timeout_s,
        }


# Global manager instance
_manager: Optional[LivePriceManager] = None

def get_live_price_manager() -> LivePriceManager:
    """Get (and lazily build) the process-wide manager."""
    global _manager
    if _manager is None:
        _manager = LivePriceManager()
    return _manager

async def get_live_price(payload: LivePriceInput, manager: Optional[LivePriceManager] = None) -> LivePriceOutput:
    """Latest price for ``payload.cryptocurrency``; ``price`` is None until a tick arrives."""
    manager = manager or get_live_price_manager()
    price = await manager.get_price(payload.cryptocurrency)
    return LivePriceOutput(price=price)
