"""Domain models - markets, order books, trading records and feed events."""

from endgame.domain.events import (
    BookUpdated,
    FeedConnected,
    FeedDisconnected,
    FeedEvent,
    PriceChanged,
    ReconnectExhausted,
)
from endgame.domain.market import (
    Market,
    OrderBookLevel,
    OrderBookSnapshot,
    Token,
    WatchedMarket,
)
from endgame.domain.trading import (
    Opportunity,
    OrderResponse,
    OrderSide,
    OrderType,
    Position,
    PositionStatus,
    Trade,
    TradeStatus,
    TradingStats,
)

__all__ = [
    "BookUpdated",
    "FeedConnected",
    "FeedDisconnected",
    "FeedEvent",
    "PriceChanged",
    "ReconnectExhausted",
    "Market",
    "OrderBookLevel",
    "OrderBookSnapshot",
    "Token",
    "WatchedMarket",
    "Opportunity",
    "OrderResponse",
    "OrderSide",
    "OrderType",
    "Position",
    "PositionStatus",
    "Trade",
    "TradeStatus",
    "TradingStats",
]
