"""
In-process event bus for host notifications.

Components publish dict payloads on named channels; handlers subscribe with
exact names or glob patterns ("position_*"). Dispatch happens inline on the
publisher's task, in subscription order.
"""
import fnmatch
from dataclasses import asdict, is_dataclass
from typing import Any, Callable, Coroutine

import structlog

log = structlog.get_logger()

EventHandler = Callable[[dict[str, Any]], Coroutine[Any, Any, None]]

# Channel names
OPPORTUNITY = "opportunity"
TRADE_EXECUTED = "trade_executed"
TRADE_FAILED = "trade_failed"
POSITION_OPENED = "position_opened"
POSITION_RESOLVED = "position_resolved"
FEED_CONNECTED = "feed_connected"
FEED_DISCONNECTED = "feed_disconnected"
FEED_EXHAUSTED = "feed_exhausted"


def to_payload(obj: Any) -> dict[str, Any]:
    """Flatten a dataclass into a plain dict, keeping Decimal/datetime values."""
    if is_dataclass(obj) and not isinstance(obj, type):
        return asdict(obj)
    if isinstance(obj, dict):
        return dict(obj)
    raise TypeError(f"Cannot convert {type(obj).__name__} to event payload")


class EventBus:
    """Publish/subscribe within one event loop.

    Usage:
        bus = EventBus()

        async def on_trade(event):
            ...

        bus.subscribe("trade_*", on_trade)
        await bus.publish("trade_executed", {"trade": trade})
    """

    def __init__(self) -> None:
        self._handlers: dict[str, list[EventHandler]] = {}
        self._published = 0
        self._log = log.bind(component="event_bus")

    @property
    def published_count(self) -> int:
        return self._published

    def subscribe(self, pattern: str, handler: EventHandler) -> None:
        self._handlers.setdefault(pattern, []).append(handler)

    def unsubscribe(self, pattern: str, handler: EventHandler | None = None) -> None:
        if handler is None:
            self._handlers.pop(pattern, None)
            return
        handlers = self._handlers.get(pattern, [])
        if handler in handlers:
            handlers.remove(handler)
        if not handlers:
            self._handlers.pop(pattern, None)

    async def publish(self, channel: str, event: dict[str, Any] | Any) -> None:
        """Deliver ``event`` to every handler whose pattern matches ``channel``.

        A handler that raises is logged; the remaining handlers still run.
        """
        payload = to_payload(event)
        self._published += 1

        for pattern, handlers in list(self._handlers.items()):
            if not self._pattern_matches(pattern, channel):
                continue
            for handler in list(handlers):
                try:
                    await handler(payload)
                except Exception as e:
                    self._log.error(
                        "event_handler_failed",
                        channel=channel,
                        handler=getattr(handler, "__qualname__", repr(handler)),
                        error=str(e),
                    )

    def _pattern_matches(self, pattern: str, channel: str) -> bool:
        if pattern == channel:
            return True
        if "*" not in pattern and "?" not in pattern:
            return False
        return fnmatch.fnmatchcase(channel, pattern)
