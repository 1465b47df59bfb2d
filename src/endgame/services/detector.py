"""Opportunity Detector - turns order books into buy opportunities.

Inputs:
- feed price changes: a price inside the buy band triggers an on-demand
  book fetch for that asset
- feed book updates: evaluated directly
- a periodic refresh of every watched market's highest-priced token

A book is an opportunity when its best ask sits in
``[min_certainty_price, max_buy_price]``, the ask size covers the venue's
minimum order size, and ``(1 - ask) * min(ask_size, max_position_size)``
reaches ``min_profit_threshold``. Repeated detections of the same book are
all emitted; downstream gating decides what to trade.
"""

from decimal import Decimal
from typing import Optional

import structlog

from endgame.core import events as channels
from endgame.core.config import TradingSettings
from endgame.core.events import EventBus
from endgame.core.lifecycle import BaseComponent, HealthCheckResult
from endgame.core.scheduler import Scheduler
from endgame.domain.events import (
    BookUpdated,
    FeedConnected,
    FeedDisconnected,
    FeedEvent,
    PriceChanged,
    ReconnectExhausted,
)
from endgame.domain.market import OrderBookSnapshot
from endgame.domain.trading import Opportunity
from endgame.integrations.polymarket.feed import MarketFeed
from endgame.integrations.venue import VenueClient
from endgame.services.metrics import MetricsEmitter
from endgame.services.scanner import MarketScanner

log = structlog.get_logger()


class OpportunityDetector(BaseComponent):
    """Single consumer of the market feed and emitter of opportunities."""

    def __init__(
        self,
        feed: MarketFeed,
        venue: VenueClient,
        scanner: MarketScanner,
        event_bus: EventBus,
        settings: TradingSettings,
        scheduler: Scheduler,
        metrics: Optional[MetricsEmitter] = None,
    ):
        super().__init__(name="opportunity_detector")
        self._feed = feed
        self._venue = venue
        self._scanner = scanner
        self._event_bus = event_bus
        self._settings = settings
        self._scheduler = scheduler
        self._metrics = metrics
        self._log = log.bind(component="opportunity_detector")

        self._last_prices: dict[str, Decimal] = {}
        self._subscribed: set[str] = set()
        self._opportunities_found = 0

    @property
    def opportunities_found(self) -> int:
        return self._opportunities_found

    def get_last_price(self, asset_id: str) -> Optional[Decimal]:
        return self._last_prices.get(asset_id)

    def in_buy_band(self, price: Decimal) -> bool:
        return self._settings.min_certainty_price <= price <= self._settings.max_buy_price

    async def _do_start(self) -> None:
        self._log.info("starting_opportunity_detector")
        self._scheduler.spawn("feed_consumer", self.consume_feed())
        await self.refresh_order_books()
        self._scheduler.every(
            "order_book_refresh",
            self._settings.order_book_refresh_interval,
            self.refresh_order_books,
        )

    async def _do_stop(self) -> None:
        self._scheduler.cancel("order_book_refresh")
        self._scheduler.cancel("feed_consumer")
        self._log.info("opportunity_detector_stopped")

    async def _do_health_check(self) -> HealthCheckResult:
        if not self._scheduler.is_scheduled("feed_consumer"):
            return HealthCheckResult.degraded("Feed consumer not running")
        return HealthCheckResult.healthy(
            opportunities_found=self._opportunities_found,
            tracked_prices=len(self._last_prices),
        )

    async def subscribe_to_markets(self) -> None:
        """Sync the feed with the watchlist: push watched token ids, forget evicted ones."""
        token_ids = self._scanner.get_token_ids()
        stale = self._subscribed - set(token_ids)
        if stale:
            self._feed.unsubscribe(sorted(stale))
            for asset_id in stale:
                self._last_prices.pop(asset_id, None)
            self._log.info("unsubscribed_evicted_tokens", count=len(stale))
        self._subscribed = set(token_ids)

        if token_ids:
            await self._feed.subscribe(token_ids)
            self._log.info("subscribed_to_market_tokens", count=len(token_ids))

    async def consume_feed(self) -> None:
        async for event in self._feed.events():
            try:
                await self.handle_feed_event(event)
            except Exception as e:
                self._log.error(
                    "feed_event_failed",
                    event=type(event).__name__,
                    error=str(e),
                )

    async def handle_feed_event(self, event: FeedEvent) -> None:
        if isinstance(event, PriceChanged):
            await self._on_price_change(event)
        elif isinstance(event, BookUpdated):
            await self.analyze(event.snapshot)
        elif isinstance(event, FeedConnected):
            await self._event_bus.publish(
                channels.FEED_CONNECTED, {"reconnect_count": event.reconnect_count}
            )
            await self.subscribe_to_markets()
        elif isinstance(event, FeedDisconnected):
            await self._event_bus.publish(channels.FEED_DISCONNECTED, {"reason": event.reason})
        elif isinstance(event, ReconnectExhausted):
            await self._event_bus.publish(channels.FEED_EXHAUSTED, {"attempts": event.attempts})

    async def _on_price_change(self, event: PriceChanged) -> None:
        previous = self._last_prices.get(event.asset_id)
        self._last_prices[event.asset_id] = event.price

        if self.in_buy_band(event.price):
            self._log.debug(
                "price_in_buy_band",
                asset_id=event.asset_id,
                price=str(event.price),
                previous=str(previous) if previous is not None else None,
            )
            await self.check_order_book(event.asset_id)

    async def refresh_order_books(self) -> None:
        for market_id, token in self._scanner.get_high_price_tokens():
            try:
                await self.check_order_book(token.token_id)
            except Exception as e:
                self._log.error(
                    "order_book_check_failed",
                    market_id=market_id,
                    token_id=token.token_id,
                    error=str(e),
                )

    async def check_order_book(self, token_id: str) -> Optional[Opportunity]:
        book = await self._venue.fetch_order_book(token_id)
        if book is None:
            return None
        return await self.analyze(book)

    def evaluate(self, book: OrderBookSnapshot) -> Optional[Opportunity]:
        """Apply the opportunity rule to ``book``. Pure apart from the watchlist lookup."""
        best = book.best_ask
        if best is None:
            return None
        if not self.in_buy_band(best.price):
            return None
        if best.size < book.min_order_size:
            return None

        fill_size = min(best.size, self._settings.max_position_size)
        expected_profit = (Decimal("1") - best.price) * fill_size
        if expected_profit < self._settings.min_profit_threshold:
            return None

        found = self._scanner.find_token(book.asset_id)
        if found is None:
            self._log.debug("opportunity_token_not_watched", token_id=book.asset_id)
            return None
        market, token = found

        return Opportunity(
            market_id=market.market_id,
            token_id=token.token_id,
            outcome=token.outcome,
            price=best.price,
            expected_profit=expected_profit,
            confidence=best.price * 100,
        )

    async def analyze(self, book: OrderBookSnapshot) -> Optional[Opportunity]:
        opportunity = self.evaluate(book)
        if opportunity is None:
            return None

        self._opportunities_found += 1
        if self._metrics:
            self._metrics.record_opportunity()

        best = book.best_ask
        self._log.info(
            "opportunity_detected",
            market_id=opportunity.market_id,
            token_id=opportunity.token_id,
            outcome=opportunity.outcome,
            price=str(opportunity.price),
            size=str(best.size) if best else None,
            spread=str(book.spread) if book.spread is not None else None,
            expected_profit=f"{opportunity.expected_profit:.4f}",
            profit_pct=f"{(1 - opportunity.price) / opportunity.price * 100:.2f}%",
        )
        await self._event_bus.publish(channels.OPPORTUNITY, {"opportunity": opportunity})
        return opportunity
