"""Trading venue contract used by scanner, detector and executor."""

from decimal import Decimal
from typing import Optional, Protocol, runtime_checkable

from endgame.domain.market import Market, OrderBookSnapshot
from endgame.domain.trading import OrderResponse, OrderSide, OrderType


class VenueError(Exception):
    """Venue call failed after retries."""

    pass


@runtime_checkable
class VenueClient(Protocol):
    """What the core needs from a trading venue.

    ``fetch_all_markets`` may raise ``VenueError``. ``fetch_order_book``
    returns None when the book is unavailable. ``submit_order`` reports
    failure in the returned ``OrderResponse`` rather than raising.
    """

    async def fetch_all_markets(self) -> list[Market]:
        ...

    async def fetch_order_book(self, token_id: str) -> Optional[OrderBookSnapshot]:
        ...

    async def submit_order(
        self,
        token_id: str,
        side: OrderSide,
        price: Decimal,
        size: Decimal,
        order_type: OrderType,
    ) -> OrderResponse:
        ...

    def is_authenticated_for_trading(self) -> bool:
        ...
