"""
Shared pytest fixtures for endgame tests.

Provides:
- a fake venue with scriptable markets, books and order results
- an in-memory ledger store
- factories for markets, books and opportunities
"""
from datetime import datetime, timedelta, timezone
from decimal import Decimal
from typing import Optional
from unittest.mock import AsyncMock, MagicMock

import pytest

from endgame.core.config import TradingSettings
from endgame.domain.market import Market, OrderBookLevel, OrderBookSnapshot, Token
from endgame.domain.trading import Opportunity, OrderResponse, OrderSide, OrderType
from endgame.services.state_store import LedgerSnapshot


class FakeVenue:
    """In-memory VenueClient.

    ``markets`` is returned by ``fetch_all_markets`` (or ``markets_error`` is
    raised), ``books`` maps token id to snapshot, and ``order_responses``
    are consumed in order by ``submit_order`` (default: success).
    """

    def __init__(self, authenticated: bool = True):
        self.markets: list[Market] = []
        self.markets_error: Optional[Exception] = None
        self.books: dict[str, OrderBookSnapshot] = {}
        self.order_responses: list[OrderResponse] = []
        self.submitted: list[tuple] = []
        self.book_requests: list[str] = []
        self.authenticated = authenticated
        self.connected = False
        self.closed = False

    async def connect(self) -> None:
        self.connected = True

    async def close(self) -> None:
        self.closed = True

    def is_authenticated_for_trading(self) -> bool:
        return self.authenticated

    async def fetch_all_markets(self) -> list[Market]:
        if self.markets_error is not None:
            raise self.markets_error
        return list(self.markets)

    async def fetch_order_book(self, token_id: str) -> Optional[OrderBookSnapshot]:
        self.book_requests.append(token_id)
        return self.books.get(token_id)

    async def submit_order(
        self,
        token_id: str,
        side: OrderSide,
        price: Decimal,
        size: Decimal,
        order_type: OrderType = OrderType.FOK,
    ) -> OrderResponse:
        self.submitted.append((token_id, side, price, size, order_type))
        if self.order_responses:
            return self.order_responses.pop(0)
        return OrderResponse(success=True, order_id=f"order-{len(self.submitted)}")


class MemoryLedgerStore:
    """LedgerStore keeping the last saved snapshot in memory."""

    def __init__(self, snapshot: Optional[LedgerSnapshot] = None):
        self.snapshot = snapshot
        self.saves = 0
        self.fail_saves = False

    async def load(self) -> Optional[LedgerSnapshot]:
        return self.snapshot

    async def save(self, snapshot: LedgerSnapshot) -> None:
        if self.fail_saves:
            raise RuntimeError("disk full")
        self.saves += 1
        self.snapshot = snapshot


@pytest.fixture
def settings() -> TradingSettings:
    """Default trading settings."""
    return TradingSettings()


@pytest.fixture
def fake_venue() -> FakeVenue:
    return FakeVenue()


@pytest.fixture
def memory_store() -> MemoryLedgerStore:
    return MemoryLedgerStore()


@pytest.fixture
def mock_event_bus():
    """Mock EventBus recording publishes."""
    bus = MagicMock()
    bus.publish = AsyncMock()
    bus.subscribe = MagicMock()
    bus.unsubscribe = MagicMock()
    return bus


@pytest.fixture
def make_market():
    """Factory for a two-outcome market ending ``hours`` from now."""

    def _make(
        market_id: str = "cond-1",
        yes_price: str = "0.985",
        no_price: Optional[str] = None,
        hours: Optional[float] = 6.0,
        active: bool = True,
        closed: bool = False,
        archived: bool = False,
        winner: Optional[str] = None,
    ) -> Market:
        yes = Decimal(yes_price)
        no = Decimal(no_price) if no_price is not None else Decimal("1") - yes
        end_date = None
        if hours is not None:
            end_date = datetime.now(timezone.utc) + timedelta(hours=hours)
        return Market(
            market_id=market_id,
            condition_id=market_id,
            question=f"Will {market_id} resolve YES?",
            tokens=(
                Token(f"{market_id}-yes", "Yes", yes, winner == "Yes"),
                Token(f"{market_id}-no", "No", no, winner == "No"),
            ),
            end_date=end_date,
            active=active,
            closed=closed,
            archived=archived,
        )

    return _make


@pytest.fixture
def make_book():
    """Factory for a one-level-per-side order book."""

    def _make(
        asset_id: str,
        ask: str = "0.985",
        ask_size: str = "200",
        bid: Optional[str] = "0.97",
        bid_size: str = "100",
        min_order_size: str = "5",
    ) -> OrderBookSnapshot:
        bids = [OrderBookLevel(Decimal(bid), Decimal(bid_size))] if bid else []
        asks = [OrderBookLevel(Decimal(ask), Decimal(ask_size))] if ask else []
        return OrderBookSnapshot.from_levels(
            asset_id,
            bids,
            asks,
            min_order_size=Decimal(min_order_size),
        )

    return _make


@pytest.fixture
def make_opportunity():
    """Factory for an opportunity detected ``age`` seconds ago."""

    def _make(
        market_id: str = "cond-1",
        token_id: str = "cond-1-yes",
        price: str = "0.98",
        expected_profit: str = "0.01",
        age: float = 0.0,
    ) -> Opportunity:
        p = Decimal(price)
        return Opportunity(
            market_id=market_id,
            token_id=token_id,
            outcome="Yes",
            price=p,
            expected_profit=Decimal(expected_profit),
            confidence=p * 100,
            detected_at=datetime.now(timezone.utc) - timedelta(seconds=age),
        )

    return _make
