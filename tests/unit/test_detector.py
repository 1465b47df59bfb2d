"""
Unit tests for the OpportunityDetector.
"""
import asyncio
from decimal import Decimal
from unittest.mock import AsyncMock, MagicMock

import pytest
import pytest_asyncio

from endgame.core import events as channels
from endgame.core.events import EventBus
from endgame.core.scheduler import Scheduler
from endgame.domain.events import (
    BookUpdated,
    FeedConnected,
    FeedDisconnected,
    PriceChanged,
    ReconnectExhausted,
)
from endgame.services.detector import OpportunityDetector
from endgame.services.metrics import MetricsEmitter
from endgame.services.scanner import MarketScanner


class Recorder:
    """Collects payloads published on the bus."""

    def __init__(self, bus: EventBus):
        self.events: list[tuple[str, dict]] = []
        for channel in (
            channels.OPPORTUNITY,
            channels.FEED_CONNECTED,
            channels.FEED_DISCONNECTED,
            channels.FEED_EXHAUSTED,
        ):
            bus.subscribe(channel, self._handler(channel))

    def _handler(self, channel):
        async def handle(event):
            self.events.append((channel, event))

        return handle

    def on(self, channel: str) -> list[dict]:
        return [event for name, event in self.events if name == channel]


@pytest.fixture
def feed():
    feed = MagicMock()
    feed.subscribe = AsyncMock()
    return feed


@pytest.fixture
def scheduler():
    return Scheduler()


@pytest.fixture
def bus():
    return EventBus()


@pytest.fixture
def recorder(bus):
    return Recorder(bus)


@pytest_asyncio.fixture
async def scanner(fake_venue, settings, scheduler, make_market):
    fake_venue.markets = [make_market("m1", yes_price="0.985", hours=4)]
    scanner = MarketScanner(fake_venue, settings, scheduler)
    await scanner.scan()
    return scanner


@pytest.fixture
def metrics():
    return MetricsEmitter()


@pytest.fixture
def detector(feed, fake_venue, scanner, bus, settings, scheduler, metrics):
    return OpportunityDetector(feed, fake_venue, scanner, bus, settings, scheduler, metrics=metrics)


class TestEvaluate:
    @pytest.mark.asyncio
    async def test_opportunity_in_band(self, detector, make_book):
        opp = detector.evaluate(make_book("m1-yes", ask="0.985", ask_size="200"))

        assert opp is not None
        assert opp.market_id == "m1"
        assert opp.token_id == "m1-yes"
        assert opp.outcome == "Yes"
        assert opp.price == Decimal("0.985")
        assert opp.expected_profit == Decimal("3.000")
        assert opp.confidence == Decimal("98.5")

    @pytest.mark.asyncio
    async def test_band_edges_are_inclusive(self, detector, make_book):
        assert detector.evaluate(make_book("m1-yes", ask="0.98")) is not None
        assert detector.evaluate(make_book("m1-yes", ask="0.995")) is not None
        assert detector.evaluate(make_book("m1-yes", ask="0.979")) is None
        assert detector.evaluate(make_book("m1-yes", ask="0.996")) is None

    @pytest.mark.asyncio
    async def test_ask_size_below_minimum(self, detector, make_book):
        book = make_book("m1-yes", ask="0.985", ask_size="4", min_order_size="5")
        assert detector.evaluate(book) is None

    @pytest.mark.asyncio
    async def test_profit_threshold(self, detector, make_book):
        at_threshold = make_book("m1-yes", ask="0.995", ask_size="1", min_order_size="0")
        below = make_book("m1-yes", ask="0.995", ask_size="0.5", min_order_size="0")

        assert detector.evaluate(at_threshold).expected_profit == Decimal("0.005")
        assert detector.evaluate(below) is None

    @pytest.mark.asyncio
    async def test_fill_size_capped_at_max_position(self, detector, make_book):
        opp = detector.evaluate(make_book("m1-yes", ask="0.99", ask_size="10000"))
        assert opp.expected_profit == Decimal("5.00")

    @pytest.mark.asyncio
    async def test_unwatched_token(self, detector, make_book):
        assert detector.evaluate(make_book("elsewhere", ask="0.985")) is None

    @pytest.mark.asyncio
    async def test_empty_ask_side(self, detector, make_book):
        assert detector.evaluate(make_book("m1-yes", ask=None)) is None


class TestAnalyze:
    @pytest.mark.asyncio
    async def test_publishes_opportunity(self, detector, recorder, metrics, make_book):
        opp = await detector.analyze(make_book("m1-yes"))

        assert recorder.on(channels.OPPORTUNITY) == [{"opportunity": opp}]
        assert detector.opportunities_found == 1
        assert metrics.registry.get_sample_value("endgame_opportunities_total") == 1.0

    @pytest.mark.asyncio
    async def test_repeated_detections_all_emitted(self, detector, recorder, make_book):
        book = make_book("m1-yes")
        await detector.analyze(book)
        await detector.analyze(book)

        assert len(recorder.on(channels.OPPORTUNITY)) == 2

    @pytest.mark.asyncio
    async def test_no_opportunity_publishes_nothing(self, detector, recorder, make_book):
        assert await detector.analyze(make_book("m1-yes", ask="0.5")) is None
        assert recorder.events == []


class TestFeedEvents:
    @pytest.mark.asyncio
    async def test_price_in_band_triggers_book_check(
        self, detector, fake_venue, recorder, make_book
    ):
        fake_venue.books["m1-yes"] = make_book("m1-yes")

        await detector.handle_feed_event(PriceChanged("m1-yes", Decimal("0.985")))

        assert fake_venue.book_requests == ["m1-yes"]
        assert detector.get_last_price("m1-yes") == Decimal("0.985")
        assert len(recorder.on(channels.OPPORTUNITY)) == 1

    @pytest.mark.asyncio
    async def test_price_out_of_band_only_recorded(self, detector, fake_venue):
        await detector.handle_feed_event(PriceChanged("m1-no", Decimal("0.015")))

        assert fake_venue.book_requests == []
        assert detector.get_last_price("m1-no") == Decimal("0.015")

    @pytest.mark.asyncio
    async def test_book_update_is_analyzed(self, detector, recorder, make_book):
        await detector.handle_feed_event(BookUpdated(make_book("m1-yes")))
        assert len(recorder.on(channels.OPPORTUNITY)) == 1

    @pytest.mark.asyncio
    async def test_connected_resubscribes(self, detector, feed, recorder):
        await detector.handle_feed_event(FeedConnected(reconnect_count=2))

        assert recorder.on(channels.FEED_CONNECTED) == [{"reconnect_count": 2}]
        feed.subscribe.assert_awaited_once_with(["m1-yes", "m1-no"])

    @pytest.mark.asyncio
    async def test_evicted_market_tokens_are_unsubscribed(
        self, detector, feed, scanner, fake_venue, make_market
    ):
        await detector.subscribe_to_markets()
        await detector.handle_feed_event(PriceChanged("m1-no", Decimal("0.015")))
        feed.unsubscribe.assert_not_called()

        fake_venue.markets = [make_market("m2", yes_price="0.99", hours=3)]
        await scanner.scan()
        await detector.subscribe_to_markets()

        feed.unsubscribe.assert_called_once_with(["m1-no", "m1-yes"])
        feed.subscribe.assert_awaited_with(["m2-yes", "m2-no"])
        assert detector.get_last_price("m1-no") is None

    @pytest.mark.asyncio
    async def test_disconnect_and_exhaustion_are_forwarded(self, detector, recorder):
        await detector.handle_feed_event(FeedDisconnected(reason="closed"))
        await detector.handle_feed_event(ReconnectExhausted(attempts=10))

        assert recorder.on(channels.FEED_DISCONNECTED) == [{"reason": "closed"}]
        assert recorder.on(channels.FEED_EXHAUSTED) == [{"attempts": 10}]

    @pytest.mark.asyncio
    async def test_consume_feed_survives_handler_errors(
        self, detector, feed, fake_venue, recorder, make_book
    ):
        async def events():
            yield PriceChanged("m1-yes", Decimal("0.985"))
            yield BookUpdated(make_book("m1-yes"))

        feed.events = events
        fake_venue.fetch_order_book = AsyncMock(side_effect=RuntimeError("boom"))

        await detector.consume_feed()

        assert len(recorder.on(channels.OPPORTUNITY)) == 1


class TestRefresh:
    @pytest.mark.asyncio
    async def test_checks_high_price_tokens(self, detector, fake_venue, recorder, make_book):
        fake_venue.books["m1-yes"] = make_book("m1-yes")

        await detector.refresh_order_books()

        assert fake_venue.book_requests == ["m1-yes"]
        assert len(recorder.on(channels.OPPORTUNITY)) == 1

    @pytest.mark.asyncio
    async def test_missing_book_is_skipped(self, detector, fake_venue, recorder):
        await detector.refresh_order_books()

        assert fake_venue.book_requests == ["m1-yes"]
        assert recorder.events == []


class TestLifecycle:
    @pytest.mark.asyncio
    async def test_start_spawns_consumer_and_refresh(self, detector, feed, scheduler):
        gate = asyncio.Event()

        async def events():
            await gate.wait()
            return
            yield

        feed.events = events

        await detector.start()
        assert scheduler.is_scheduled("feed_consumer")
        assert scheduler.is_scheduled("order_book_refresh")

        await detector.stop()
        assert not scheduler.is_scheduled("feed_consumer")
        assert not scheduler.is_scheduled("order_book_refresh")
        await scheduler.shutdown()
