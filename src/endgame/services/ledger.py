"""Position Ledger - positions, P&L aggregates and the risk checks built on them.

Exposure is the cost basis (``entry_price * size``) of every OPEN position;
PENDING_RESOLUTION positions are left out. New positions are refused when
they would push exposure past the configured ceiling or when the day's
realized P&L is already below the negative daily loss limit. The daily P&L
resets the first time the ledger is touched on a new UTC day.

State is persisted after every mutation. A failed save is logged and the
in-memory state remains authoritative.
"""

from dataclasses import replace
from datetime import date, datetime, timezone
from decimal import Decimal
from typing import Callable, Optional

import structlog

from endgame.core import events as channels
from endgame.core.config import TradingSettings
from endgame.core.events import EventBus
from endgame.domain.trading import (
    Position,
    PositionStatus,
    Trade,
    TradeStatus,
    TradingStats,
)
from endgame.services.metrics import MetricsEmitter
from endgame.services.state_store import LedgerSnapshot, LedgerStore

log = structlog.get_logger()


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class PositionLedger:
    """Owns every Position and the running TradingStats."""

    def __init__(
        self,
        settings: TradingSettings,
        store: Optional[LedgerStore] = None,
        event_bus: Optional[EventBus] = None,
        metrics: Optional[MetricsEmitter] = None,
        clock: Callable[[], datetime] = _utcnow,
    ):
        self._settings = settings
        self._store = store
        self._event_bus = event_bus
        self._metrics = metrics
        self._clock = clock
        self._log = log.bind(component="position_ledger")

        self._positions: dict[str, Position] = {}
        self._stats = TradingStats()
        self._daily_pnl = Decimal("0")
        self._daily_date: date = clock().date()

    # ------------------------------------------------------------------
    # queries
    # ------------------------------------------------------------------

    @property
    def positions(self) -> dict[str, Position]:
        return dict(self._positions)

    @property
    def stats(self) -> TradingStats:
        return replace(self._stats)

    @property
    def daily_pnl(self) -> Decimal:
        self._roll_day()
        return self._daily_pnl

    def get_position(self, position_id: str) -> Optional[Position]:
        return self._positions.get(position_id)

    def open_positions(self) -> list[Position]:
        return [p for p in self._positions.values() if p.status == PositionStatus.OPEN]

    def unresolved_positions(self) -> list[Position]:
        """OPEN and PENDING_RESOLUTION positions, i.e. everything still to settle."""
        return [p for p in self._positions.values() if not p.is_resolved]

    def open_positions_for_market(self, market_id: str) -> list[Position]:
        return [p for p in self.open_positions() if p.market_id == market_id]

    @property
    def total_exposure(self) -> Decimal:
        return sum((p.cost for p in self.open_positions()), Decimal("0"))

    def can_open_new_position(self, size: Decimal, price: Decimal) -> bool:
        """Whether a ``size`` @ ``price`` buy fits inside exposure and loss limits."""
        self._roll_day()
        current = self.total_exposure
        projected = current + size * price

        if projected > self._settings.max_total_exposure:
            self._log.debug(
                "max_exposure_reached",
                current_exposure=str(current),
                projected_exposure=str(projected),
                limit=str(self._settings.max_total_exposure),
            )
            return False

        if self._daily_pnl < -self._settings.daily_loss_limit:
            self._log.debug(
                "daily_loss_limit_reached",
                daily_pnl=str(self._daily_pnl),
                limit=str(self._settings.daily_loss_limit),
            )
            return False

        return True

    # ------------------------------------------------------------------
    # mutations
    # ------------------------------------------------------------------

    async def load(self) -> None:
        """Restore state from the store, if one is configured."""
        if self._store is None:
            return
        try:
            snapshot = await self._store.load()
        except Exception as e:
            self._log.error("ledger_load_failed", error=str(e))
            return
        if snapshot is None:
            self._log.info("ledger_empty")
            return

        self._positions = dict(snapshot.positions)
        self._stats = snapshot.stats
        today = self._clock().date()
        if snapshot.daily_pnl_date == today:
            self._daily_pnl = snapshot.daily_pnl
        self._daily_date = today
        self._log.info(
            "ledger_loaded",
            positions=len(self._positions),
            open_positions=len(self.open_positions()),
            total_trades=self._stats.total_trades,
        )
        self._update_metrics()

    async def add_position(self, trade: Trade) -> Optional[Position]:
        """Record an OPEN position for a matched trade."""
        if trade.status not in (TradeStatus.MATCHED, TradeStatus.CONFIRMED):
            self._log.warning(
                "add_position_unmatched_trade",
                trade_id=trade.trade_id,
                status=trade.status.value,
            )
            return None
        if trade.trade_id in self._positions:
            self._log.warning("position_already_recorded", position_id=trade.trade_id)
            return self._positions[trade.trade_id]

        self._roll_day()
        position = Position.from_trade(trade)
        self._positions[position.position_id] = position
        self._stats.total_trades += 1

        self._log.info(
            "position_added",
            position_id=position.position_id,
            token_id=position.token_id,
            entry_price=str(position.entry_price),
            size=str(position.size),
            cost=f"{position.cost:.2f}",
        )
        await self._persist()
        await self._publish(channels.POSITION_OPENED, {"position": position})
        return position

    async def mark_pending_resolution(self, position_id: str) -> Optional[Position]:
        """Flag an OPEN position whose market closed without a declared winner."""
        position = self._positions.get(position_id)
        if position is None or position.status != PositionStatus.OPEN:
            return None
        position.status = PositionStatus.PENDING_RESOLUTION
        self._log.info("position_pending_resolution", position_id=position_id)
        await self._persist()
        return position

    async def resolve_position(self, position_id: str, is_winner: bool) -> Optional[Position]:
        """Settle a position: winners pay $1 per share, losers nothing."""
        position = self._positions.get(position_id)
        if position is None:
            self._log.warning("position_not_found", position_id=position_id)
            return None
        if position.is_resolved:
            self._log.warning(
                "position_already_resolved",
                position_id=position_id,
                status=position.status.value,
            )
            return None

        self._roll_day()
        pnl = position.settlement_pnl(is_winner)
        position.status = (
            PositionStatus.RESOLVED_WIN if is_winner else PositionStatus.RESOLVED_LOSS
        )
        position.realized_pnl = pnl
        position.resolved_at = self._clock()

        self._stats.record(pnl, is_winner)
        self._daily_pnl += pnl

        self._log.info(
            "position_resolved",
            position_id=position_id,
            is_winner=is_winner,
            cost=f"{position.cost:.2f}",
            payout=f"{(position.size if is_winner else Decimal('0')):.2f}",
            pnl=f"{pnl:.2f}",
            daily_pnl=f"{self._daily_pnl:.2f}",
        )
        await self._persist()
        await self._publish(channels.POSITION_RESOLVED, {"position": position, "pnl": pnl})
        return position

    def log_summary(self) -> None:
        self._roll_day()
        self._log.info(
            "position_summary",
            open_positions=len(self.open_positions()),
            total_exposure=f"{self.total_exposure:.2f}",
            daily_pnl=f"{self._daily_pnl:.2f}",
            total_trades=self._stats.total_trades,
            win_rate=f"{self._stats.win_rate * 100:.1f}%",
            net_profit=f"{self._stats.net_profit:.2f}",
        )

    def snapshot(self) -> LedgerSnapshot:
        return LedgerSnapshot(
            positions=dict(self._positions),
            stats=self.stats,
            daily_pnl=self._daily_pnl,
            daily_pnl_date=self._daily_date,
        )

    # ------------------------------------------------------------------
    # internals
    # ------------------------------------------------------------------

    def _roll_day(self) -> None:
        today = self._clock().date()
        if today != self._daily_date:
            self._log.info(
                "daily_reset",
                previous_date=self._daily_date.isoformat(),
                previous_pnl=f"{self._daily_pnl:.2f}",
            )
            self._daily_pnl = Decimal("0")
            self._daily_date = today

    async def _persist(self) -> None:
        self._update_metrics()
        if self._store is None:
            return
        try:
            await self._store.save(self.snapshot())
        except Exception as e:
            self._log.error("ledger_save_failed", error=str(e))

    async def _publish(self, channel: str, payload: dict) -> None:
        if self._event_bus is not None:
            await self._event_bus.publish(channel, payload)

    def _update_metrics(self) -> None:
        if self._metrics:
            self._metrics.update_ledger(
                self.total_exposure,
                len(self.open_positions()),
                self._daily_pnl,
            )
