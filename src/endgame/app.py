"""
Endgame application wiring and lifecycle.

Builds every component explicitly, routes host events between them and
owns the single scheduler. Startup order:
1. Open the ledger store and restore positions
2. Connect the venue (read-only without a private key)
3. Connect the market feed
4. First market scan, feed subscription and settlement pass
5. Start the detector and status reporting

Shutdown runs in reverse: stop producing opportunities, let the in-flight
order finish, cancel every scheduled task, disconnect the feed, then close
the store and venue.
"""
import asyncio
import signal
from decimal import Decimal
from typing import Any, Optional

import structlog

from endgame import __version__
from endgame.core import events as channels
from endgame.core.config import ConfigManager, TradingSettings
from endgame.core.events import EventBus, EventHandler
from endgame.core.lifecycle import BaseComponent, HealthCheckResult, HealthStatus
from endgame.core.scheduler import Scheduler
from endgame.domain.market import Market
from endgame.domain.trading import Opportunity, Trade
from endgame.integrations.polymarket.client import PolymarketVenue
from endgame.integrations.polymarket.feed import MarketFeed
from endgame.integrations.polymarket.types import PolymarketSettings
from endgame.integrations.venue import VenueClient
from endgame.services.detector import OpportunityDetector
from endgame.services.executor import OrderExecutor
from endgame.services.ledger import PositionLedger
from endgame.services.metrics import MetricsEmitter
from endgame.services.scanner import MarketScanner
from endgame.services.settlement import SettlementWatcher
from endgame.services.state_store import SqliteLedgerStore

DEFAULT_DB_PATH = "./data/endgame.db"


class EndgameApp(BaseComponent):
    """Composition root for the bot.

    Usage:
        app = EndgameApp(ConfigManager(Path("config/default.toml")))
        exit_code = await app.run_forever()   # until SIGINT/SIGTERM
    """

    def __init__(
        self,
        config: ConfigManager,
        venue: Optional[VenueClient] = None,
        feed: Optional[MarketFeed] = None,
        store: Optional[Any] = None,
        scheduler: Optional[Scheduler] = None,
        metrics: Optional[MetricsEmitter] = None,
    ) -> None:
        super().__init__(name="endgame_app")
        self._config = config
        self._settings = TradingSettings.from_config(config)
        self._dry_run = config.get_bool("bot.dry_run", True)
        self._log = structlog.get_logger("endgame.app").bind(component="app")

        poly_settings = PolymarketSettings.from_config(config)

        self._event_bus = EventBus()
        self._scheduler = scheduler or Scheduler()
        self._metrics = metrics or MetricsEmitter()
        self._venue = venue or PolymarketVenue(poly_settings)
        self._feed = feed or MarketFeed(poly_settings, metrics=self._metrics)
        self._store = store or SqliteLedgerStore(config.get_str("database.path", DEFAULT_DB_PATH))

        self._ledger = PositionLedger(
            self._settings,
            store=self._store,
            event_bus=self._event_bus,
            metrics=self._metrics,
        )
        self._scanner = MarketScanner(
            self._venue, self._settings, self._scheduler, metrics=self._metrics
        )
        self._detector = OpportunityDetector(
            self._feed,
            self._venue,
            self._scanner,
            self._event_bus,
            self._settings,
            self._scheduler,
            metrics=self._metrics,
        )
        self._executor = OrderExecutor(
            self._venue,
            self._event_bus,
            self._settings,
            risk_gate=self.risk_gate,
            metrics=self._metrics,
        )
        self._settlement = SettlementWatcher(self._ledger)

        self._shutdown_event = asyncio.Event()
        self._exit_code = 0
        self._signals_installed = False

    @property
    def settings(self) -> TradingSettings:
        return self._settings

    @property
    def event_bus(self) -> EventBus:
        return self._event_bus

    @property
    def scheduler(self) -> Scheduler:
        return self._scheduler

    @property
    def ledger(self) -> PositionLedger:
        return self._ledger

    @property
    def scanner(self) -> MarketScanner:
        return self._scanner

    @property
    def detector(self) -> OpportunityDetector:
        return self._detector

    @property
    def executor(self) -> OrderExecutor:
        return self._executor

    @property
    def dry_run(self) -> bool:
        return self._dry_run

    @property
    def exit_code(self) -> int:
        return self._exit_code

    @property
    def trading_enabled(self) -> bool:
        return not self._dry_run and self._venue.is_authenticated_for_trading()

    # ------------------------------------------------------------------
    # lifecycle
    # ------------------------------------------------------------------

    async def _do_start(self) -> None:
        s = self._settings
        self._shutdown_event.clear()
        self._log.info(
            "starting_endgame",
            version=__version__,
            dry_run=self._dry_run,
            min_certainty_price=str(s.min_certainty_price),
            max_buy_price=str(s.max_buy_price),
            max_position_size=str(s.max_position_size),
            max_total_exposure=str(s.max_total_exposure),
        )

        connect_store = getattr(self._store, "connect", None)
        if connect_store is not None:
            await connect_store()
        await self._ledger.load()

        connect_venue = getattr(self._venue, "connect", None)
        if connect_venue is not None:
            await connect_venue()
        if self.trading_enabled:
            self._executor.enable()
        else:
            self._executor.disable()
            self._log.warning(
                "read_only_mode",
                dry_run=self._dry_run,
                authenticated=self._venue.is_authenticated_for_trading(),
            )

        self._subscribe_handlers()

        connected = await self._feed.connect()
        if not connected:
            self._log.warning("feed_not_connected_at_startup")

        self._scanner.add_listener(self._after_scan)
        await self._scanner.start()
        await self._detector.start()

        self._scheduler.every("status_report", s.status_report_interval, self.report_status)
        self._install_signal_handlers()
        self._log.info("endgame_started", watched_markets=len(self._scanner.watchlist))

    async def _do_stop(self) -> None:
        self._log.info("stopping_endgame")
        self._remove_signal_handlers()
        self._executor.disable()

        await self._detector.stop()
        await self._scanner.stop()
        await self._executor.stop()
        self._unsubscribe_handlers()
        await self._scheduler.shutdown()
        await self._feed.disconnect()

        self._ledger.log_summary()

        close_store = getattr(self._store, "close", None)
        if close_store is not None:
            await close_store()
        close_venue = getattr(self._venue, "close", None)
        if close_venue is not None:
            await close_venue()

        self._log.info("endgame_stopped", exit_code=self._exit_code)

    async def _do_health_check(self) -> HealthCheckResult:
        issues = []
        for name, component in (
            ("feed", self._feed),
            ("scanner", self._scanner),
            ("detector", self._detector),
        ):
            result = await component.health_check()
            if result.status != HealthStatus.HEALTHY:
                issues.append(f"{name}: {result.message}")

        if issues:
            return HealthCheckResult.degraded("; ".join(issues), dry_run=self._dry_run)
        return HealthCheckResult.healthy(
            uptime_seconds=self.uptime_seconds,
            dry_run=self._dry_run,
        )

    async def run_forever(self) -> int:
        """Start, wait for a shutdown request, stop. Returns the process exit code."""
        try:
            await self.start()
            await self._shutdown_event.wait()
        finally:
            await self.stop()
        return self._exit_code

    def request_shutdown(self, exit_code: Optional[int] = None) -> None:
        if exit_code is not None:
            self._exit_code = exit_code
        self._shutdown_event.set()

    # ------------------------------------------------------------------
    # event routing
    # ------------------------------------------------------------------

    def _handlers(self) -> list[tuple[str, EventHandler]]:
        return [
            (channels.OPPORTUNITY, self._on_opportunity),
            (channels.TRADE_EXECUTED, self._on_trade_executed),
            (channels.TRADE_FAILED, self._on_trade_failed),
            (channels.FEED_DISCONNECTED, self._on_feed_disconnected),
            (channels.FEED_EXHAUSTED, self._on_feed_exhausted),
        ]

    def _subscribe_handlers(self) -> None:
        for channel, handler in self._handlers():
            self._event_bus.subscribe(channel, handler)

    def _unsubscribe_handlers(self) -> None:
        for channel, handler in self._handlers():
            self._event_bus.unsubscribe(channel, handler)

    def risk_gate(self, opportunity: Opportunity, size: Decimal) -> bool:
        """Exposure and daily-loss limits plus the per-market position cap."""
        if not self._ledger.can_open_new_position(size, opportunity.price):
            self._log.debug("risk_limits_reached", market_id=opportunity.market_id)
            return False
        existing = self._ledger.open_positions_for_market(opportunity.market_id)
        if len(existing) >= self._settings.max_positions_per_market:
            self._log.debug(
                "max_positions_per_market_reached",
                market_id=opportunity.market_id,
                count=len(existing),
            )
            return False
        return True

    async def _on_opportunity(self, event: dict[str, Any]) -> None:
        opportunity: Opportunity = event["opportunity"]

        if self.trading_enabled:
            self._executor.queue_opportunity(opportunity)
            return

        size = self._executor.order_size_for(opportunity)
        if not self.risk_gate(opportunity, size):
            return
        self._log.info(
            "simulated_trade",
            market_id=opportunity.market_id,
            token_id=opportunity.token_id,
            outcome=opportunity.outcome,
            price=str(opportunity.price),
            size=str(size),
            expected_profit=f"{opportunity.expected_profit:.4f}",
        )

    async def _on_trade_executed(self, event: dict[str, Any]) -> None:
        trade: Trade = event["trade"]
        await self._ledger.add_position(trade)

    async def _on_trade_failed(self, event: dict[str, Any]) -> None:
        trade: Trade = event["trade"]
        self._log.warning("trade_failed", trade_id=trade.trade_id, error=event.get("error"))

    async def _on_feed_disconnected(self, event: dict[str, Any]) -> None:
        self._log.warning("feed_disconnected", reason=event.get("reason"))

    async def _on_feed_exhausted(self, event: dict[str, Any]) -> None:
        self._log.error("feed_reconnect_exhausted", attempts=event.get("attempts"))
        self.request_shutdown(exit_code=1)

    async def _after_scan(self, markets: list[Market]) -> None:
        await self._detector.subscribe_to_markets()
        await self._settlement.reconcile(markets)

    async def report_status(self) -> None:
        stats = self._ledger.stats
        self._log.info(
            "bot_status",
            watched_markets=len(self._scanner.watchlist),
            open_positions=len(self._ledger.open_positions()),
            total_exposure=f"{self._ledger.total_exposure:.2f}",
            daily_pnl=f"{self._ledger.daily_pnl:.2f}",
            total_trades=stats.total_trades,
            win_rate=f"{stats.win_rate * 100:.1f}%",
            feed_connected=self._feed.is_connected,
            execution_queue=self._executor.queue_length,
            events_published=self._event_bus.published_count,
        )

    # ------------------------------------------------------------------
    # signals
    # ------------------------------------------------------------------

    def _install_signal_handlers(self) -> None:
        loop = asyncio.get_running_loop()
        for sig in (signal.SIGTERM, signal.SIGINT):
            try:
                loop.add_signal_handler(sig, self._handle_signal, sig)
            except (NotImplementedError, RuntimeError):
                self._log.warning("signal_handlers_unavailable")
                return
        self._signals_installed = True

    def _remove_signal_handlers(self) -> None:
        if not self._signals_installed:
            return
        loop = asyncio.get_running_loop()
        for sig in (signal.SIGTERM, signal.SIGINT):
            loop.remove_signal_handler(sig)
        self._signals_installed = False

    def _handle_signal(self, sig: signal.Signals) -> None:
        self._log.info("shutdown_signal_received", signal=sig.name)
        self.request_shutdown()
