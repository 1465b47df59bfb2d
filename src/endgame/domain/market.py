"""
Market domain models.

Markets and tokens are immutable snapshots taken at scan time; a later scan
supersedes them wholesale. Order book snapshots are transient.
"""
from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from decimal import Decimal
from typing import Optional


@dataclass(frozen=True)
class Token:
    """One outcome of a market. ``price`` is the last trade probability."""
    token_id: str
    outcome: str
    price: Decimal = Decimal("0")
    winner: bool = False


@dataclass(frozen=True)
class Market:
    """A binary or multi-outcome prediction market."""
    market_id: str
    question: str
    tokens: tuple[Token, ...] = ()
    end_date: Optional[datetime] = None
    active: bool = True
    closed: bool = False
    archived: bool = False
    condition_id: str = ""
    slug: str = ""
    liquidity: Decimal = Decimal("0")
    volume: Decimal = Decimal("0")

    def hours_until_end(self, now: Optional[datetime] = None) -> Optional[float]:
        """Hours until the scheduled end, negative once past. None if unknown."""
        if self.end_date is None:
            return None
        now = now or datetime.now(timezone.utc)
        return (self.end_date - now).total_seconds() / 3600

    def highest_price_token(self) -> Optional[Token]:
        """The max-price token; the first listed wins ties."""
        if not self.tokens:
            return None
        return max(self.tokens, key=lambda t: t.price)

    def winning_token(self) -> Optional[Token]:
        for token in self.tokens:
            if token.winner:
                return token
        return None

    def token(self, token_id: str) -> Optional[Token]:
        for token in self.tokens:
            if token.token_id == token_id:
                return token
        return None


@dataclass(frozen=True)
class WatchedMarket:
    """A market currently on the watchlist."""
    market: Market
    added_at: datetime
    high_price_token: Token

    @property
    def market_id(self) -> str:
        return self.market.market_id

    def refreshed(self, market: Market) -> "WatchedMarket":
        """Same watch entry, new snapshot. ``added_at`` is kept."""
        high = market.highest_price_token() or self.high_price_token
        return replace(self, market=market, high_price_token=high)


@dataclass(frozen=True)
class OrderBookLevel:
    """Single price level."""
    price: Decimal
    size: Decimal


@dataclass(frozen=True)
class OrderBookSnapshot:
    """Book for one asset. Bids best-first descending, asks best-first ascending."""
    asset_id: str
    bids: tuple[OrderBookLevel, ...] = ()
    asks: tuple[OrderBookLevel, ...] = ()
    min_order_size: Decimal = Decimal("0")
    tick_size: Decimal = Decimal("0.01")
    timestamp: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    @classmethod
    def from_levels(
        cls,
        asset_id: str,
        bids: list[OrderBookLevel],
        asks: list[OrderBookLevel],
        **kwargs,
    ) -> "OrderBookSnapshot":
        """Build a snapshot, sorting sides into best-first order."""
        return cls(
            asset_id=asset_id,
            bids=tuple(sorted(bids, key=lambda lvl: lvl.price, reverse=True)),
            asks=tuple(sorted(asks, key=lambda lvl: lvl.price)),
            **kwargs,
        )

    @property
    def best_bid(self) -> Optional[OrderBookLevel]:
        return self.bids[0] if self.bids else None

    @property
    def best_ask(self) -> Optional[OrderBookLevel]:
        return self.asks[0] if self.asks else None

    @property
    def spread(self) -> Optional[Decimal]:
        if self.best_bid is None or self.best_ask is None:
            return None
        return self.best_ask.price - self.best_bid.price


def parse_levels(levels) -> list[OrderBookLevel]:
    """Parse wire book levels.

    Accepts ``[{"price": "0.98", "size": "120"}, ...]`` or ``[[0.98, 120], ...]``
    and skips empty or malformed entries.
    """
    result = []
    for level in levels or []:
        if isinstance(level, dict):
            price, size = level.get("price"), level.get("size")
        elif isinstance(level, (list, tuple)) and len(level) >= 2:
            price, size = level[0], level[1]
        else:
            continue
        if price is None or size is None:
            continue
        size_d = Decimal(str(size))
        if size_d > 0:
            result.append(OrderBookLevel(price=Decimal(str(price)), size=size_d))
    return result
