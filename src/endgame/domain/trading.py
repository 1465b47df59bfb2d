"""
Trading domain models: opportunities, trades, positions and running stats.

Sizes are share counts; a winning share settles at $1.00, so the cost of a
position is ``entry_price * size`` and its payout on a win is ``size``.
"""
import time
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from decimal import Decimal
from enum import Enum
from typing import Optional


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def new_trade_id() -> str:
    """Unique, time-ordered trade id, e.g. ``trade_1718000000000_3f2a9c1b``."""
    return f"trade_{int(time.time() * 1000)}_{uuid.uuid4().hex[:8]}"


class OrderSide(str, Enum):
    BUY = "BUY"
    SELL = "SELL"


class OrderType(str, Enum):
    FOK = "FOK"  # Fill or Kill
    GTC = "GTC"  # Good til Cancelled


class TradeStatus(str, Enum):
    PENDING = "PENDING"
    MATCHED = "MATCHED"
    CONFIRMED = "CONFIRMED"
    FAILED = "FAILED"


class PositionStatus(str, Enum):
    OPEN = "OPEN"
    PENDING_RESOLUTION = "PENDING_RESOLUTION"
    RESOLVED_WIN = "RESOLVED_WIN"
    RESOLVED_LOSS = "RESOLVED_LOSS"

    @property
    def is_resolved(self) -> bool:
        return self in (PositionStatus.RESOLVED_WIN, PositionStatus.RESOLVED_LOSS)


@dataclass(frozen=True)
class Opportunity:
    """A buyable near-certain outcome observed on the book."""
    market_id: str
    token_id: str
    outcome: str
    price: Decimal
    expected_profit: Decimal
    confidence: Decimal
    detected_at: datetime = field(default_factory=_utcnow)

    def age_seconds(self, now: Optional[datetime] = None) -> float:
        now = now or _utcnow()
        return (now - self.detected_at).total_seconds()


@dataclass(frozen=True)
class OrderResponse:
    """Venue reply to an order submission."""
    success: bool
    order_id: Optional[str] = None
    status: Optional[str] = None
    error: Optional[str] = None


@dataclass
class Trade:
    """One order submission and its outcome."""
    trade_id: str
    market_id: str
    token_id: str
    side: OrderSide
    price: Decimal
    size: Decimal
    status: TradeStatus = TradeStatus.PENDING
    outcome: str = ""
    order_id: Optional[str] = None
    error: Optional[str] = None
    timestamp: datetime = field(default_factory=_utcnow)

    @property
    def cost(self) -> Decimal:
        return self.price * self.size


@dataclass
class Position:
    """Holding created by a matched trade. Never deleted; only status moves."""
    position_id: str
    market_id: str
    token_id: str
    outcome: str
    entry_price: Decimal
    size: Decimal
    status: PositionStatus = PositionStatus.OPEN
    opened_at: datetime = field(default_factory=_utcnow)
    resolved_at: Optional[datetime] = None
    realized_pnl: Optional[Decimal] = None

    @property
    def cost(self) -> Decimal:
        return self.entry_price * self.size

    @property
    def is_open(self) -> bool:
        return self.status == PositionStatus.OPEN

    @property
    def is_resolved(self) -> bool:
        return self.status.is_resolved

    def settlement_pnl(self, is_winner: bool) -> Decimal:
        payout = self.size if is_winner else Decimal("0")
        return payout - self.cost

    @classmethod
    def from_trade(cls, trade: Trade) -> "Position":
        return cls(
            position_id=trade.trade_id,
            market_id=trade.market_id,
            token_id=trade.token_id,
            outcome=trade.outcome,
            entry_price=trade.price,
            size=trade.size,
            opened_at=trade.timestamp,
        )


@dataclass
class TradingStats:
    """Aggregates over resolved positions. ``win_rate`` is a 0..1 ratio."""
    total_trades: int = 0
    winning_trades: int = 0
    losing_trades: int = 0
    total_profit: Decimal = Decimal("0")
    total_loss: Decimal = Decimal("0")
    win_rate: Decimal = Decimal("0")
    average_profit: Decimal = Decimal("0")
    largest_win: Decimal = Decimal("0")
    largest_loss: Decimal = Decimal("0")

    @property
    def resolved_trades(self) -> int:
        return self.winning_trades + self.losing_trades

    @property
    def net_profit(self) -> Decimal:
        return self.total_profit - self.total_loss

    def record(self, pnl: Decimal, is_winner: bool) -> None:
        """Fold one resolution into the aggregates."""
        if is_winner:
            self.winning_trades += 1
            self.total_profit += pnl
            self.largest_win = max(self.largest_win, pnl)
        else:
            self.losing_trades += 1
            self.total_loss += abs(pnl)
            self.largest_loss = max(self.largest_loss, abs(pnl))

        resolved = self.resolved_trades
        self.win_rate = Decimal(self.winning_trades) / Decimal(resolved)
        self.average_profit = self.net_profit / Decimal(resolved)
