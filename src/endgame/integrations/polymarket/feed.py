"""Polymarket market-channel WebSocket feed.

Connects to the public market channel, keeps a deduplicated set of asset
subscriptions (replayed on every reconnect) and turns wire messages into
typed feed events for a single consumer.

Reconnection uses bounded exponential backoff: attempt ``n`` waits
``base * 2 ** (n - 1)`` seconds. Once the attempt limit is reached the feed
emits ``ReconnectExhausted`` and stops trying. Keepalive pings are sent on a
fixed interval; a missing pong is not treated as a failure.
"""

import asyncio
import json
from decimal import Decimal, InvalidOperation
from typing import Any, AsyncIterator, Awaitable, Callable, Iterable, Optional

import structlog
import websockets
from websockets.exceptions import ConnectionClosed

from endgame.core.lifecycle import HealthCheckResult
from endgame.domain.events import (
    BookUpdated,
    FeedConnected,
    FeedDisconnected,
    FeedEvent,
    PriceChanged,
    ReconnectExhausted,
)
from endgame.integrations.polymarket.client import parse_book
from endgame.integrations.polymarket.types import PolymarketSettings
from endgame.services.metrics import MetricsEmitter

log = structlog.get_logger()

# Feed book messages carry no minimum order size
FEED_BOOK_MIN_ORDER_SIZE = "1"

_END_OF_STREAM = object()


class FeedError(Exception):
    """Error raised by the market feed."""

    pass


def backoff_delay(attempt: int, base: float) -> float:
    """Delay before reconnect attempt ``attempt`` (1-based)."""
    return base * (2 ** (attempt - 1))


class MarketFeed:
    """Real-time push feed for order book and price updates.

    Usage:
        feed = MarketFeed(settings)
        await feed.connect()
        await feed.subscribe(["123", "456"])
        async for event in feed.events():
            ...
        await feed.disconnect()
    """

    def __init__(
        self,
        settings: PolymarketSettings,
        metrics: Optional[MetricsEmitter] = None,
        backoff_sleep: Optional[Callable[[float], Awaitable[None]]] = None,
    ):
        self._url = settings.ws_url
        self._base_delay = settings.reconnect_base_delay
        self._max_attempts = settings.max_reconnect_attempts
        self._ping_interval = settings.ping_interval
        self._metrics = metrics
        self._backoff_sleep = backoff_sleep or asyncio.sleep
        self._log = log.bind(component="market_feed")

        self._ws: Optional[Any] = None
        self._subscriptions: dict[str, None] = {}
        self._queue: asyncio.Queue = asyncio.Queue()

        self._should_run = False
        self._run_task: Optional[asyncio.Task] = None
        self._ping_task: Optional[asyncio.Task] = None
        self._first_outcome: Optional[asyncio.Future] = None

        self._attempts = 0
        self._reconnect_count = 0
        self._exhausted = False

    @property
    def is_connected(self) -> bool:
        return self._ws is not None

    @property
    def is_exhausted(self) -> bool:
        return self._exhausted

    @property
    def subscribed_assets(self) -> list[str]:
        return list(self._subscriptions)

    @property
    def reconnect_attempts(self) -> int:
        return self._attempts

    async def connect(self) -> bool:
        """Start the connection loop and wait for the first attempt to settle.

        No-op while already connected or connecting. Returns whether the
        feed is connected; on failure reconnection continues in the
        background.
        """
        if self._run_task is not None and not self._run_task.done():
            if self._first_outcome is not None and not self._first_outcome.done():
                await asyncio.shield(self._first_outcome)
            return self.is_connected

        self._drop_end_markers()
        self._should_run = True
        self._exhausted = False
        self._attempts = 0
        self._first_outcome = asyncio.get_running_loop().create_future()
        self._run_task = asyncio.create_task(self._run(), name="market_feed")
        await asyncio.shield(self._first_outcome)
        return self.is_connected

    async def disconnect(self) -> None:
        """Close the connection, forget subscriptions and end the event stream."""
        self._should_run = False
        task, self._run_task = self._run_task, None
        if task is not None and not task.done():
            task.cancel()
            try:
                await task
            except asyncio.CancelledError:
                pass
        await self._close_socket()
        self._resolve_first_outcome()
        self._subscriptions.clear()
        self._queue.put_nowait(_END_OF_STREAM)
        self._log.info("feed_disconnected")

    async def subscribe(self, asset_ids: Iterable[str]) -> None:
        """Add assets to the subscription set; new ones are sent immediately."""
        new_ids = []
        for asset_id in asset_ids:
            aid = str(asset_id)
            if aid not in self._subscriptions:
                self._subscriptions[aid] = None
                new_ids.append(aid)

        if new_ids and self._ws is not None:
            await self._send_subscribe(new_ids)
        elif new_ids:
            self._log.debug("subscribe_deferred", count=len(new_ids))

    def unsubscribe(self, asset_ids: Iterable[str]) -> None:
        """Forget assets locally; the market channel has no unsubscribe message."""
        for asset_id in asset_ids:
            self._subscriptions.pop(str(asset_id), None)

    async def events(self) -> AsyncIterator[FeedEvent]:
        """Yield feed events until ``disconnect()`` ends the stream.

        Calling again after a reconnect starts a fresh iteration over the
        same queue.
        """
        while True:
            item = await self._queue.get()
            if item is _END_OF_STREAM:
                return
            yield item

    async def health_check(self) -> HealthCheckResult:
        if self._exhausted:
            return HealthCheckResult.unhealthy("Reconnect attempts exhausted")
        if not self.is_connected:
            return HealthCheckResult.degraded(
                "Not connected", reconnect_attempts=self._attempts
            )
        return HealthCheckResult.healthy(
            subscriptions=len(self._subscriptions),
            reconnects=self._reconnect_count,
        )

    # ------------------------------------------------------------------
    # connection loop
    # ------------------------------------------------------------------

    async def _run(self) -> None:
        while self._should_run:
            try:
                self._log.info("connecting_to_feed", url=self._url)
                ws = await websockets.connect(
                    self._url,
                    ping_interval=None,
                    close_timeout=5.0,
                )
            except Exception as e:
                self._log.warning("feed_connect_failed", error=str(e))
                self._resolve_first_outcome()
                if not await self._wait_before_reconnect():
                    return
                continue

            await self._on_open(ws)
            reason = "closed"
            try:
                await self._receive(ws)
            except ConnectionClosed as e:
                reason = f"connection closed: {e}"
                self._log.warning("feed_connection_closed", error=str(e))
            except Exception as e:
                reason = str(e)
                self._log.error("feed_receive_error", error=str(e))
            finally:
                await self._close_socket()

            if not self._should_run:
                return

            self._emit(FeedDisconnected(reason=reason))
            if not await self._wait_before_reconnect():
                return

    async def _on_open(self, ws: Any) -> None:
        self._ws = ws
        self._attempts = 0
        if self._metrics:
            self._metrics.update_feed_status(True)
        self._log.info("feed_connected", reconnects=self._reconnect_count)
        self._emit(FeedConnected(reconnect_count=self._reconnect_count))
        self._resolve_first_outcome()

        if self._subscriptions:
            await self._send_subscribe(list(self._subscriptions))
        self._ping_task = asyncio.create_task(self._ping_loop(ws), name="market_feed_ping")

    async def _wait_before_reconnect(self) -> bool:
        """Sleep out the next backoff step. False once attempts are exhausted."""
        self._attempts += 1
        if self._attempts > self._max_attempts:
            self._exhausted = True
            self._should_run = False
            self._log.error("max_reconnect_attempts_reached", attempts=self._max_attempts)
            self._emit(ReconnectExhausted(attempts=self._max_attempts))
            return False

        delay = backoff_delay(self._attempts, self._base_delay)
        self._reconnect_count += 1
        if self._metrics:
            self._metrics.record_feed_reconnect()
        self._log.info("reconnecting", attempt=self._attempts, delay=delay)
        await self._backoff_sleep(delay)
        return self._should_run

    async def _close_socket(self) -> None:
        ping_task, self._ping_task = self._ping_task, None
        if ping_task is not None and not ping_task.done():
            ping_task.cancel()
            try:
                await ping_task
            except asyncio.CancelledError:
                pass

        ws, self._ws = self._ws, None
        if ws is not None:
            try:
                await ws.close()
            except Exception as e:
                self._log.debug("feed_close_error", error=str(e))
            if self._metrics:
                self._metrics.update_feed_status(False)

    async def _ping_loop(self, ws: Any) -> None:
        while True:
            await asyncio.sleep(self._ping_interval)
            try:
                # Pong waiter is not awaited
                await ws.ping()
            except ConnectionClosed:
                return
            except Exception as e:
                self._log.debug("ping_failed", error=str(e))

    def _resolve_first_outcome(self) -> None:
        if self._first_outcome is not None and not self._first_outcome.done():
            self._first_outcome.set_result(None)

    def _drop_end_markers(self) -> None:
        pending = []
        while not self._queue.empty():
            item = self._queue.get_nowait()
            if item is not _END_OF_STREAM:
                pending.append(item)
        for item in pending:
            self._queue.put_nowait(item)

    def _emit(self, event: FeedEvent) -> None:
        self._queue.put_nowait(event)

    async def _send_subscribe(self, asset_ids: list[str]) -> None:
        if self._ws is None or not asset_ids:
            return
        message = {"type": "market", "assets_ids": asset_ids}
        try:
            await self._ws.send(json.dumps(message))
        except ConnectionClosed as e:
            # Replayed on the next connect
            self._log.warning("subscribe_send_failed", error=str(e))
            return
        self._log.debug("subscribe_sent", count=len(asset_ids))

    # ------------------------------------------------------------------
    # message parsing
    # ------------------------------------------------------------------

    async def _receive(self, ws: Any) -> None:
        async for raw in ws:
            try:
                await self._process_message(raw)
            except (AttributeError, KeyError, TypeError, ValueError, InvalidOperation) as e:
                self._log.warning("message_processing_error", error=str(e))

    async def _process_message(self, raw: Any) -> None:
        """Handle one frame.

        Frames are JSON objects, JSON arrays of objects, or the text
        heartbeats ``PING``/``PONG``.
        """
        if isinstance(raw, bytes):
            raw = raw.decode("utf-8")

        if raw in ("PONG", "pong"):
            return
        if raw in ("PING", "ping"):
            if self._ws is not None:
                await self._ws.send("PONG")
            return

        try:
            data = json.loads(raw)
        except json.JSONDecodeError:
            self._log.debug("unparseable_message", raw=raw[:200])
            return

        messages = data if isinstance(data, list) else [data]
        for message in messages:
            if isinstance(message, dict):
                self._process_single(message)

    def _process_single(self, data: dict[str, Any]) -> None:
        event_type = data.get("event_type") or data.get("type")

        if event_type == "book":
            snapshot = parse_book(data, default_min_order_size=FEED_BOOK_MIN_ORDER_SIZE)
            if snapshot.asset_id:
                self._emit(BookUpdated(snapshot=snapshot))
        elif event_type == "price_change" or "price_changes" in data:
            for event in self._parse_price_changes(data):
                self._emit(event)
        elif event_type == "last_trade_price":
            self._log.debug("last_trade_price", asset_id=data.get("asset_id"), price=data.get("price"))
        elif event_type == "tick_size_change":
            self._log.debug("tick_size_changed", asset_id=data.get("asset_id"))
        elif event_type == "error":
            self._log.error("feed_error_message", data=data)

    def _parse_price_changes(self, data: dict[str, Any]) -> list[PriceChanged]:
        """Price updates arrive in three shapes.

        - ``{"price_changes": [{"asset_id", "price", "side"}, ...]}``
        - ``{"asset_id", "changes": [{"price", "side"}, ...]}``
        - ``{"asset_id", "price", "side"}``
        """
        parent_asset = str(data.get("asset_id") or "")
        if "price_changes" in data:
            changes = data["price_changes"] or []
        elif "changes" in data:
            changes = data["changes"] or []
        else:
            changes = [data]

        events = []
        for change in changes:
            if not isinstance(change, dict):
                continue
            asset_id = str(change.get("asset_id") or parent_asset)
            price = change.get("price")
            if not asset_id or price is None:
                continue
            events.append(
                PriceChanged(
                    asset_id=asset_id,
                    price=Decimal(str(price)),
                    side=change.get("side"),
                )
            )
        return events
