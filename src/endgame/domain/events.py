"""
Typed events emitted by the market feed.

The feed yields exactly these values to its single consumer loop.
"""
from dataclasses import dataclass, field
from datetime import datetime, timezone
from decimal import Decimal
from typing import Optional, Union

from endgame.domain.market import OrderBookSnapshot


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass(frozen=True)
class FeedConnected:
    reconnect_count: int = 0
    timestamp: datetime = field(default_factory=_utcnow)


@dataclass(frozen=True)
class FeedDisconnected:
    reason: str = ""
    timestamp: datetime = field(default_factory=_utcnow)


@dataclass(frozen=True)
class PriceChanged:
    asset_id: str
    price: Decimal
    side: Optional[str] = None
    timestamp: datetime = field(default_factory=_utcnow)


@dataclass(frozen=True)
class BookUpdated:
    snapshot: OrderBookSnapshot

    @property
    def asset_id(self) -> str:
        return self.snapshot.asset_id


@dataclass(frozen=True)
class ReconnectExhausted:
    attempts: int
    timestamp: datetime = field(default_factory=_utcnow)


FeedEvent = Union[FeedConnected, FeedDisconnected, PriceChanged, BookUpdated, ReconnectExhausted]
