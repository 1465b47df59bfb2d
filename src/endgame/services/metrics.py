"""
Prometheus metrics for the endgame bot.

All metrics use the ``endgame_`` prefix and live in the emitter's own
registry; serving them over HTTP is left to the host process.
"""
from decimal import Decimal
from typing import Optional

from prometheus_client import (
    CollectorRegistry,
    Counter,
    Gauge,
    generate_latest,
)


class MetricsEmitter:
    """Write-only metrics facade.

    Usage:
        metrics = MetricsEmitter()
        metrics.record_opportunity()
        metrics.record_trade("MATCHED")
        text = metrics.get_metrics()
    """

    def __init__(self, registry: Optional[CollectorRegistry] = None) -> None:
        self._registry = registry or CollectorRegistry()

        self._feed_connected = Gauge(
            "endgame_feed_connected",
            "Market feed connection status (1=connected, 0=disconnected)",
            registry=self._registry,
        )
        self._feed_reconnects = Counter(
            "endgame_feed_reconnects_total",
            "Market feed reconnection attempts",
            registry=self._registry,
        )
        self._watchlist_size = Gauge(
            "endgame_watchlist_markets",
            "Markets currently on the watchlist",
            registry=self._registry,
        )
        self._scans = Counter(
            "endgame_market_scans_total",
            "Market scans by result",
            ["result"],
            registry=self._registry,
        )
        self._opportunities = Counter(
            "endgame_opportunities_total",
            "Opportunities detected",
            registry=self._registry,
        )
        self._trades = Counter(
            "endgame_trades_total",
            "Trades by final status",
            ["status"],
            registry=self._registry,
        )
        self._opportunities_dropped = Counter(
            "endgame_opportunities_dropped_total",
            "Queued opportunities dropped before execution",
            ["reason"],
            registry=self._registry,
        )
        self._open_exposure = Gauge(
            "endgame_open_exposure_usd",
            "Cost basis of open positions in USD",
            registry=self._registry,
        )
        self._open_positions = Gauge(
            "endgame_open_positions",
            "Number of open positions",
            registry=self._registry,
        )
        self._daily_pnl = Gauge(
            "endgame_daily_pnl_usd",
            "Realized P&L for the current UTC day",
            registry=self._registry,
        )

    @property
    def registry(self) -> CollectorRegistry:
        return self._registry

    def update_feed_status(self, connected: bool) -> None:
        self._feed_connected.set(1 if connected else 0)

    def record_feed_reconnect(self) -> None:
        self._feed_reconnects.inc()

    def record_scan(self, success: bool, watchlist_size: Optional[int] = None) -> None:
        self._scans.labels(result="success" if success else "failure").inc()
        if watchlist_size is not None:
            self._watchlist_size.set(watchlist_size)

    def record_opportunity(self) -> None:
        self._opportunities.inc()

    def record_dropped_opportunity(self, reason: str) -> None:
        self._opportunities_dropped.labels(reason=reason).inc()

    def record_trade(self, status: str) -> None:
        self._trades.labels(status=status).inc()

    def update_ledger(
        self,
        open_exposure: Decimal,
        open_positions: int,
        daily_pnl: Decimal,
    ) -> None:
        self._open_exposure.set(float(open_exposure))
        self._open_positions.set(open_positions)
        self._daily_pnl.set(float(daily_pnl))

    def get_metrics(self) -> bytes:
        """Prometheus text exposition of the registry."""
        return generate_latest(self._registry)
