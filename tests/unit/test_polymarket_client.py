"""
Unit tests for the Polymarket venue client.

REST calls go through httpx.MockTransport; the signing client is patched.
"""
from datetime import datetime, timezone
from decimal import Decimal
from unittest.mock import MagicMock, patch

import httpx
import pytest
from py_clob_client.clob_types import OrderType as ClobOrderType

from endgame.domain.trading import OrderSide, OrderType
from endgame.integrations.polymarket.client import (
    PolymarketVenue,
    parse_book,
    parse_market,
)
from endgame.integrations.polymarket.types import PolymarketSettings
from endgame.integrations.venue import VenueClient, VenueError

BASE_URL = "https://clob.example.test"

RAW_MARKET = {
    "condition_id": "0xcond",
    "question": "Will it rain?",
    "market_slug": "will-it-rain",
    "end_date_iso": "2026-06-01T12:00:00Z",
    "active": True,
    "closed": False,
    "archived": False,
    "tokens": [
        {"token_id": "111", "outcome": "Yes", "price": 0.985, "winner": False},
        {"token_id": "222", "outcome": "No", "price": 0.015, "winner": False},
    ],
}


def make_venue(handler, settings: PolymarketSettings | None = None) -> PolymarketVenue:
    client = httpx.AsyncClient(base_url=BASE_URL, transport=httpx.MockTransport(handler))
    return PolymarketVenue(settings or PolymarketSettings(clob_url=BASE_URL), http_client=client)


class TestParsing:
    def test_parse_market(self):
        market = parse_market(RAW_MARKET)

        assert market.market_id == "0xcond"
        assert market.slug == "will-it-rain"
        assert market.end_date == datetime(2026, 6, 1, 12, tzinfo=timezone.utc)
        assert [t.token_id for t in market.tokens] == ["111", "222"]
        assert market.tokens[0].price == Decimal("0.985")
        assert market.active and not market.closed

    def test_parse_market_tolerates_missing_fields(self):
        market = parse_market({"condition_id": "c", "end_date_iso": "not a date", "tokens": None})
        assert market.end_date is None
        assert market.tokens == ()
        assert market.active is False

    def test_parse_market_naive_end_date_is_utc(self):
        market = parse_market({"condition_id": "c", "end_date_iso": "2026-06-01T12:00:00"})
        assert market.end_date.tzinfo == timezone.utc

    def test_parse_book(self):
        book = parse_book(
            {
                "bids": [{"price": "0.97", "size": "5"}],
                "asks": [{"price": "0.99", "size": "7"}, {"price": "0.98", "size": "3"}],
                "min_order_size": "5",
                "tick_size": "0.001",
            },
            token_id="111",
        )
        assert book.asset_id == "111"
        assert book.best_ask.price == Decimal("0.98")
        assert book.min_order_size == Decimal("5")
        assert book.tick_size == Decimal("0.001")


class TestFetchMarkets:
    @pytest.mark.asyncio
    async def test_follows_cursor_until_end(self):
        cursors = []

        def handler(request: httpx.Request) -> httpx.Response:
            cursor = request.url.params.get("next_cursor")
            cursors.append(cursor)
            if cursor is None:
                return httpx.Response(200, json={"data": [RAW_MARKET], "next_cursor": "MTA="})
            second = dict(RAW_MARKET, condition_id="0xother")
            return httpx.Response(200, json={"data": [second], "next_cursor": "LTE="})

        venue = make_venue(handler)
        await venue.connect()
        markets = await venue.fetch_all_markets()
        await venue.close()

        assert [m.market_id for m in markets] == ["0xcond", "0xother"]
        assert cursors == [None, "MTA="]

    @pytest.mark.asyncio
    async def test_stops_on_empty_page(self):
        def handler(request):
            return httpx.Response(200, json={"data": [], "next_cursor": "MTA="})

        venue = make_venue(handler)
        await venue.connect()
        assert await venue.fetch_all_markets() == []
        await venue.close()

    @pytest.mark.asyncio
    async def test_http_error_raises_venue_error(self):
        def handler(request):
            return httpx.Response(503, json={"error": "unavailable"})

        venue = make_venue(handler)
        await venue.connect()
        with pytest.raises(VenueError):
            await venue.fetch_all_markets()
        await venue.close()

    @pytest.mark.asyncio
    async def test_transport_error_is_retried(self):
        calls = []

        def handler(request):
            calls.append(request)
            if len(calls) == 1:
                raise httpx.ConnectError("connection reset")
            return httpx.Response(200, json={"data": [RAW_MARKET], "next_cursor": "LTE="})

        venue = make_venue(handler)
        await venue.connect()
        markets = await venue.fetch_all_markets()
        await venue.close()

        assert len(calls) == 2
        assert len(markets) == 1

    @pytest.mark.asyncio
    async def test_requires_connect(self):
        venue = PolymarketVenue(PolymarketSettings())
        with pytest.raises(VenueError):
            await venue.fetch_all_markets()


class TestFetchOrderBook:
    @pytest.mark.asyncio
    async def test_fetches_book_for_token(self):
        def handler(request):
            assert request.url.path == "/book"
            assert request.url.params["token_id"] == "111"
            return httpx.Response(
                200,
                json={"asset_id": "111", "asks": [{"price": "0.985", "size": "40"}], "bids": []},
            )

        venue = make_venue(handler)
        await venue.connect()
        book = await venue.fetch_order_book("111")
        await venue.close()

        assert book.asset_id == "111"
        assert book.best_ask.size == Decimal("40")

    @pytest.mark.asyncio
    async def test_missing_book_returns_none(self):
        def handler(request):
            return httpx.Response(404, json={"error": "No orderbook exists"})

        venue = make_venue(handler)
        await venue.connect()
        assert await venue.fetch_order_book("999") is None
        await venue.close()


class TestSubmitOrder:
    @pytest.mark.asyncio
    async def test_read_only_refuses(self):
        venue = make_venue(lambda request: httpx.Response(200, json={}))
        await venue.connect()

        assert isinstance(venue, VenueClient)
        assert not venue.is_authenticated_for_trading()
        response = await venue.submit_order("111", OrderSide.BUY, Decimal("0.98"), Decimal("10"))
        await venue.close()

        assert response.success is False
        assert response.error == "Client not authenticated for trading"

    @pytest.mark.asyncio
    async def test_submits_fok_through_signing_client(self):
        settings = PolymarketSettings(clob_url=BASE_URL, private_key="0xkey")
        venue = make_venue(lambda request: httpx.Response(200, json={}), settings)
        clob = MagicMock()
        clob.create_order.return_value = "signed-order"
        clob.post_order.return_value = {"success": True, "orderID": "0xorder", "status": "matched"}

        with patch("endgame.integrations.polymarket.client.ClobClient", return_value=clob):
            await venue.connect()

        assert venue.is_authenticated_for_trading()
        clob.create_or_derive_api_creds.assert_called_once()

        response = await venue.submit_order(
            "111", OrderSide.BUY, Decimal("0.985"), Decimal("101.5"), OrderType.FOK
        )
        await venue.close()

        assert response.success is True
        assert response.order_id == "0xorder"
        order_args = clob.create_order.call_args.args[0]
        assert order_args.token_id == "111"
        assert order_args.price == 0.985
        assert order_args.size == 101.5
        assert order_args.side == "BUY"
        clob.post_order.assert_called_once_with("signed-order", orderType=ClobOrderType.FOK)

    @pytest.mark.asyncio
    async def test_rejection_is_reported(self):
        settings = PolymarketSettings(clob_url=BASE_URL, private_key="0xkey", api_key="k")
        venue = make_venue(lambda request: httpx.Response(200, json={}), settings)
        clob = MagicMock()
        clob.post_order.return_value = {"success": False, "errorMsg": "not enough balance"}

        with patch("endgame.integrations.polymarket.client.ClobClient", return_value=clob):
            await venue.connect()

        clob.create_or_derive_api_creds.assert_not_called()
        response = await venue.submit_order("111", OrderSide.BUY, Decimal("0.98"), Decimal("10"))
        await venue.close()

        assert response.success is False
        assert response.error == "not enough balance"

    @pytest.mark.asyncio
    async def test_signing_failure_is_reported(self):
        settings = PolymarketSettings(clob_url=BASE_URL, private_key="0xkey", api_key="k")
        venue = make_venue(lambda request: httpx.Response(200, json={}), settings)
        clob = MagicMock()
        clob.create_order.side_effect = ValueError("bad tick size")

        with patch("endgame.integrations.polymarket.client.ClobClient", return_value=clob):
            await venue.connect()

        response = await venue.submit_order("111", OrderSide.BUY, Decimal("0.98"), Decimal("10"))
        await venue.close()

        assert response.success is False
        assert "bad tick size" in response.error

    @pytest.mark.asyncio
    async def test_auth_failure_raises(self):
        settings = PolymarketSettings(clob_url=BASE_URL, private_key="0xkey")
        venue = make_venue(lambda request: httpx.Response(200, json={}), settings)
        clob = MagicMock()
        clob.create_or_derive_api_creds.side_effect = RuntimeError("bad key")

        with patch("endgame.integrations.polymarket.client.ClobClient", return_value=clob):
            with pytest.raises(VenueError):
                await venue.connect()

        assert not venue.is_authenticated_for_trading()
        await venue.close()
