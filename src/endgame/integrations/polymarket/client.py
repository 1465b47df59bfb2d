"""Polymarket CLOB venue client.

Market discovery and order books come from the public REST API over httpx.
Order signing and submission go through py-clob-client, which is synchronous,
so those calls run in a thread pool.
"""

import asyncio
from concurrent.futures import ThreadPoolExecutor
from datetime import datetime, timezone
from decimal import Decimal, InvalidOperation
from typing import Any, Optional

import httpx
import structlog
from py_clob_client.client import ClobClient
from py_clob_client.clob_types import ApiCreds, OrderArgs
from py_clob_client.clob_types import OrderType as ClobOrderType
from tenacity import (
    retry,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from endgame.domain.market import Market, OrderBookSnapshot, Token, parse_levels
from endgame.domain.trading import OrderResponse, OrderSide, OrderType
from endgame.integrations.polymarket.types import END_CURSOR, PolymarketSettings
from endgame.integrations.venue import VenueError

log = structlog.get_logger()

RETRY_ATTEMPTS = 3
RETRY_WAIT_MIN = 1
RETRY_WAIT_MAX = 10

_CLOB_ORDER_TYPES = {
    OrderType.FOK: ClobOrderType.FOK,
    OrderType.GTC: ClobOrderType.GTC,
}


def _decimal(value: Any, default: str = "0") -> Decimal:
    if value is None or value == "":
        return Decimal(default)
    try:
        return Decimal(str(value))
    except InvalidOperation:
        return Decimal(default)


def _parse_end_date(value: Optional[str]) -> Optional[datetime]:
    if not value:
        return None
    try:
        parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
    except ValueError:
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def parse_market(raw: dict[str, Any]) -> Market:
    """Map a CLOB ``/markets`` entry onto a Market.

    The CLOB listing keys markets by ``condition_id`` and carries neither
    liquidity nor volume, so both stay zero.
    """
    tokens = tuple(
        Token(
            token_id=str(t.get("token_id", "")),
            outcome=str(t.get("outcome", "")),
            price=_decimal(t.get("price")),
            winner=bool(t.get("winner", False)),
        )
        for t in raw.get("tokens") or []
        if t.get("token_id")
    )
    condition_id = str(raw.get("condition_id", ""))
    return Market(
        market_id=condition_id,
        condition_id=condition_id,
        question=raw.get("question", ""),
        slug=raw.get("market_slug", ""),
        tokens=tokens,
        end_date=_parse_end_date(raw.get("end_date_iso")),
        active=bool(raw.get("active", False)),
        closed=bool(raw.get("closed", False)),
        archived=bool(raw.get("archived", False)),
    )


def parse_book(
    raw: dict[str, Any],
    token_id: str = "",
    default_min_order_size: str = "0",
) -> OrderBookSnapshot:
    """Map a ``/book`` reply (or a feed ``book`` message) onto a snapshot."""
    return OrderBookSnapshot.from_levels(
        asset_id=str(raw.get("asset_id") or token_id),
        bids=parse_levels(raw.get("bids")),
        asks=parse_levels(raw.get("asks")),
        min_order_size=_decimal(raw.get("min_order_size"), default_min_order_size),
        tick_size=_decimal(raw.get("tick_size"), "0.01"),
    )


class PolymarketVenue:
    """Async venue client for the Polymarket CLOB.

    Read-only until a private key is configured; ``submit_order`` refuses to
    trade without one.
    """

    def __init__(
        self,
        settings: PolymarketSettings,
        http_client: Optional[httpx.AsyncClient] = None,
        executor: Optional[ThreadPoolExecutor] = None,
    ):
        self._settings = settings
        self._http = http_client
        self._owns_http = http_client is None
        self._executor = executor or ThreadPoolExecutor(max_workers=2)
        self._clob: Optional[ClobClient] = None
        self._authenticated = False
        self._log = log.bind(component="polymarket_venue")

    async def connect(self) -> None:
        """Open the HTTP client and, with a key configured, the signing client."""
        if self._http is None:
            transport = None
            if self._settings.http_proxy:
                transport = httpx.AsyncHTTPTransport(proxy=self._settings.http_proxy)
            self._http = httpx.AsyncClient(
                base_url=self._settings.clob_url.rstrip("/"),
                timeout=self._settings.http_timeout,
                transport=transport,
                headers={"Accept": "application/json"},
            )

        if self._settings.can_trade and self._clob is None:
            try:
                self._clob = await self._run_sync(self._create_signing_client)
            except Exception as e:
                self._log.error("clob_auth_failed", error=str(e))
                raise VenueError(f"Failed to initialise trading client: {e}") from e
            self._authenticated = True
            self._log.info(
                "clob_client_authenticated",
                proxy_wallet=self._settings.proxy_wallet,
            )
        elif not self._settings.can_trade:
            self._log.info("clob_client_read_only")

    async def close(self) -> None:
        if self._http is not None and self._owns_http:
            await self._http.aclose()
        self._http = None
        self._clob = None
        self._authenticated = False
        self._executor.shutdown(wait=False)
        self._log.info("polymarket_venue_closed")

    async def __aenter__(self) -> "PolymarketVenue":
        await self.connect()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        await self.close()

    def is_authenticated_for_trading(self) -> bool:
        return self._authenticated

    def _create_signing_client(self) -> ClobClient:
        s = self._settings
        client = ClobClient(
            host=s.clob_url.rstrip("/"),
            key=s.private_key,
            chain_id=s.chain_id,
            signature_type=s.signature_type,
            funder=s.proxy_wallet or None,
        )
        if s.api_key:
            creds = ApiCreds(
                api_key=s.api_key,
                api_secret=s.api_secret,
                api_passphrase=s.api_passphrase,
            )
        else:
            creds = client.create_or_derive_api_creds()
        client.set_api_creds(creds)
        return client

    async def _run_sync(self, func, *args, **kwargs):
        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(self._executor, lambda: func(*args, **kwargs))

    def _ensure_http(self) -> httpx.AsyncClient:
        if self._http is None:
            raise VenueError("Venue not connected. Call connect() first.")
        return self._http

    @retry(
        stop=stop_after_attempt(RETRY_ATTEMPTS),
        wait=wait_exponential(multiplier=1, min=RETRY_WAIT_MIN, max=RETRY_WAIT_MAX),
        retry=retry_if_exception_type(httpx.TransportError),
        reraise=True,
    )
    async def _get_json(self, path: str, params: Optional[dict[str, Any]] = None) -> Any:
        response = await self._ensure_http().get(path, params=params)
        response.raise_for_status()
        return response.json()

    async def fetch_all_markets(self) -> list[Market]:
        """Walk every ``/markets`` page until the end cursor.

        Raises:
            VenueError: on any transport or HTTP failure.
        """
        markets: list[Market] = []
        cursor: Optional[str] = None

        try:
            while True:
                params = {"next_cursor": cursor} if cursor else None
                page = await self._get_json("/markets", params=params)
                data = page.get("data") or []
                if not data:
                    break

                markets.extend(parse_market(m) for m in data)
                cursor = page.get("next_cursor")
                self._log.debug(
                    "markets_page_fetched",
                    fetched=len(data),
                    total=len(markets),
                    next_cursor=cursor,
                )
                if not cursor or cursor == END_CURSOR:
                    break
        except (httpx.HTTPError, ValueError) as e:
            self._log.error("markets_fetch_failed", error=str(e), fetched=len(markets))
            raise VenueError(f"Failed to fetch markets: {e}") from e

        self._log.info("markets_fetched", total=len(markets))
        return markets

    async def fetch_order_book(self, token_id: str) -> Optional[OrderBookSnapshot]:
        try:
            raw = await self._get_json("/book", params={"token_id": token_id})
        except (httpx.HTTPError, ValueError) as e:
            self._log.warning("order_book_fetch_failed", token_id=token_id, error=str(e))
            return None
        return parse_book(raw, token_id)

    async def submit_order(
        self,
        token_id: str,
        side: OrderSide,
        price: Decimal,
        size: Decimal,
        order_type: OrderType = OrderType.FOK,
    ) -> OrderResponse:
        if self._clob is None or not self._authenticated:
            return OrderResponse(success=False, error="Client not authenticated for trading")

        self._log.info(
            "placing_order",
            token_id=token_id,
            side=side.value,
            price=str(price),
            size=str(size),
            order_type=order_type.value,
        )

        order_args = OrderArgs(
            token_id=token_id,
            price=float(price),
            size=float(size),
            side=side.value,
        )
        client = self._clob

        try:
            signed = await self._run_sync(client.create_order, order_args)
            result = await self._run_sync(
                client.post_order, signed, orderType=_CLOB_ORDER_TYPES[order_type]
            )
        except Exception as e:
            self._log.error("order_submit_error", token_id=token_id, error=str(e))
            return OrderResponse(success=False, error=str(e))

        if not isinstance(result, dict):
            result = {"success": bool(result)}

        if result.get("success"):
            order_id = result.get("orderID") or result.get("id")
            self._log.info("order_placed", order_id=order_id, status=result.get("status"))
            return OrderResponse(
                success=True,
                order_id=order_id,
                status=result.get("status"),
            )

        error = result.get("errorMsg") or "order rejected"
        self._log.warning("order_rejected", token_id=token_id, error=error)
        return OrderResponse(success=False, status=result.get("status"), error=error)
