"""
Pytest Configuration
Fake exchange transport, deterministic time and manager factories.
"""

import asyncio
import json
import pytest
from typing import Any, Callable, List, Optional

from backend.observability.metrics import get_metrics_registry
from backend.services.live_price import LivePriceManager
from backend.services.price_adapters import BinanceTradeAdapter, KrakenTickerAdapter


class FakeSocket:
    """In-memory stand-in for an upstream websocket."""

    def __init__(self, url: str):
        self.url = url
        self.sent: List[str] = []
        self.closed = False
        self._inbox: asyncio.Queue = asyncio.Queue()

    # upstream side
    def push(self, payload: Any) -> None:
        """Deliver a frame (dicts/lists are JSON encoded, strings sent as-is)."""
        raw = payload if isinstance(payload, (str, bytes)) else json.dumps(payload)
        self._inbox.put_nowait(raw)

    def fail(self, exc: BaseException) -> None:
        self._inbox.put_nowait(exc)

    def remote_close(self) -> None:
        self._inbox.put_nowait(None)

    # client side
    async def send(self, message) -> None:
        self.sent.append(message)

    async def close(self) -> None:
        self.closed = True
        self._inbox.put_nowait(None)

    def __aiter__(self):
        return self

    async def __anext__(self):
        item = await self._inbox.get()
        if item is None:
            raise StopAsyncIteration
        if isinstance(item, BaseException):
            raise item
        return item


class FakeExchange:
    """Connector that records every handshake and hands out FakeSockets."""

    def __init__(self, script: Optional[List[Any]] = None):
        self.sockets: List[FakeSocket] = []
        self.connect_delay: float = 0.0
        self.connect_error: Optional[BaseException] = None
        # Frames queued on every new socket; None means remote close
        self.script: List[Any] = list(script or [])

    @property
    def handshakes(self) -> int:
        return len(self.sockets)

    @property
    def last(self) -> FakeSocket:
        return self.sockets[-1]

    async def __call__(self, url: str) -> FakeSocket:
        socket = FakeSocket(url)
        self.sockets.append(socket)
        for frame in self.script:
            if frame is None:
                socket.remote_close()
            else:
                socket.push(frame)
        if self.connect_delay:
            await asyncio.sleep(self.connect_delay)
        if self.connect_error is not None:
            raise self.connect_error
        return socket


@pytest.fixture
def fake_exchange() -> FakeExchange:
    return FakeExchange()


@pytest.fixture
def settle():
    """Let background reader tasks run, optionally until ``predicate()`` holds."""
    async def _settle(predicate: Optional[Callable[[], bool]] = None, timeout: float = 1.0) -> None:
        if predicate is None:
            await asyncio.sleep(0.01)
            return
        deadline = asyncio.get_running_loop().time() + timeout
        while not predicate():
            if asyncio.get_running_loop().time() > deadline:
                raise AssertionError("condition not reached before timeout")
            await asyncio.sleep(0.001)

    return _settle


class DeterministicClock:
    """Manually advanced stand-in for the manager's idle clock."""

    def __init__(self, start: float = 1000.0):
        self._now = start

    def time(self) -> float:
        return self._now

    def advance(self, seconds: float) -> None:
        if seconds < 0:
            raise ValueError("clock cannot run backwards")
        self._now += seconds


@pytest.fixture
def deterministic_time() -> DeterministicClock:
    """Frozen clock; tests move it forward explicitly."""
    return DeterministicClock()


@pytest.fixture
async def make_manager(fake_exchange, deterministic_time):
    """Factory for managers wired to the fake exchange; stopped on teardown."""
    created: List[LivePriceManager] = []

    def _make(adapter=None, **overrides) -> LivePriceManager:
        options = dict(
            grace_period_s=0.2,
            idle_timeout_s=60.0,
            sweep_interval_s=3600.0,
            connect_timeout_s=1.0,
            clock=deterministic_time.time,
        )
        options.update(overrides)
        manager = LivePriceManager(
            adapter or BinanceTradeAdapter(quote="USDT", base_url="wss://stream.test/ws"),
            fake_exchange,
            **options
        )
        created.append(manager)
        return manager

    yield _make

    for mgr in created:
        await mgr.stop()


@pytest.fixture
def manager(make_manager) -> LivePriceManager:
    return make_manager()


@pytest.fixture
def kraken_manager(make_manager) -> LivePriceManager:
    return make_manager(adapter=KrakenTickerAdapter(quote="USDT", url="wss://kraken.test"))


@pytest.fixture(autouse=True)
def setup_test_env():
    """Reset global metrics between tests."""
    get_metrics_registry().reset()
    yield
    get_metrics_registry().reset()


def pytest_configure(config):
    """Register custom markers."""
    config.addinivalue_line("markers", "slow: marks tests as slow")
    config.addinivalue_line("markers", "integration: marks tests as integration tests")
    config.addinivalue_line("markers", "deterministic: marks tests as deterministic")
