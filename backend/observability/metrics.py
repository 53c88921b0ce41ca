"""
Observability metrics for monitoring and debugging.
Tracks upstream handshakes, ticks, evictions and price queries.
"""

from fastapi import APIRouter, Response
from typing import Dict, List
import json

# Simple metrics tracking without Prometheus dependency
class SimpleMetrics:
    """Simple metrics tracking for observability."""

    def __init__(self):
        self.counters: Dict[str, int] = {}
        self.gauges: Dict[str, float] = {}
        self.histograms: Dict[str, List[float]] = {}

    @staticmethod
    def _key(name: str, labels: Dict[str, str] = None) -> str:
        return f"{name}_{json.dumps(labels or {}, sort_keys=True)}"

    def inc_counter(self, name: str, labels: Dict[str, str] = None):
        """Increment a counter."""
        key = self._key(name, labels)
        self.counters[key] = self.counters.get(key, 0) + 1

    def get_counter(self, name: str, labels: Dict[str, str] = None) -> int:
        return self.counters.get(self._key(name, labels), 0)

    def set_gauge(self, name: str, value: float, labels: Dict[str, str] = None):
        """Set a gauge value."""
        self.gauges[self._key(name, labels)] = value

    def observe_histogram(self, name: str, value: float, labels: Dict[str, str] = None):
        """Observe a histogram value."""
        key = self._key(name, labels)
        if key not in self.histograms:
            self.histograms[key] = []
        self.histograms[key].append(value)
        # Keep only last 1000 samples
        if len(self.histograms[key]) > 1000:
            self.histograms[key] = self.histograms[key][-1000:]

    def reset(self):
        self.counters.clear()
        self.gauges.clear()
        self.histograms.clear()

    def get_metrics(self) -> str:
        """Get metrics in text format."""
        lines = []
        for key, value in self.counters.items():
            lines.append(f"# TYPE {key.split('_{')[0]} counter")
            lines.append(f"{key} {value}")
        for key, value in self.gauges.items():
            lines.append(f"# TYPE {key.split('_{')[0]} gauge")
            lines.append(f"{key} {value}")
        for key, values in self.histograms.items():
            if values:
                lines.append(f"# TYPE {key.split('_{')[0]} histogram")
                lines.append(f"{key}_count {len(values)}")
                lines.append(f"{key}_sum {sum(values)}")
                lines.append(f"{key}_avg {sum(values)/len(values)}")
        return "\n".join(lines)

# Global metrics instance
_metrics = SimpleMetrics()

def get_metrics_registry() -> SimpleMetrics:
    return _metrics

def record_ws_handshake(exchange: str):
    """Record an upstream connection attempt."""
    _metrics.inc_counter("ws_handshakes", {"exchange": exchange})

def record_ws_connect_failure(exchange: str, reason: str):
    _metrics.inc_counter("ws_connect_failures", {"exchange": exchange, "reason": reason})

def record_ws_tick(exchange: str):
    """Record a parsed price tick."""
    _metrics.inc_counter("ws_ticks", {"exchange": exchange})

def record_ws_eviction(reason: str):
    """Record a connection table eviction (error, remote_closed, idle_timeout, shutdown)."""
    _metrics.inc_counter("ws_evictions", {"reason": reason})

def record_open_connections(count: int):
    _metrics.set_gauge("ws_open_connections", count)

def record_price_query(hit: bool, duration_ms: float):
    """Record a get_price call and whether a price was known (no per-symbol series)."""
    _metrics.inc_counter("price_queries", {"result": "hit" if hit else "miss"})
    _metrics.observe_histogram("price_query_ms", duration_ms)

def get_metrics() -> str:
    """Get metrics in text format."""
    return _metrics.get_metrics()

def create_metrics_router() -> APIRouter:
    """Create FastAPI router for metrics endpoint."""
    router = APIRouter()

    @router.get("/ops/metrics")
    def metrics():
        """Metrics endpoint."""
        return Response(get_metrics(), media_type="text/plain")

    return router
