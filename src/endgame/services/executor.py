"""Order Executor - sizes opportunities and submits fill-or-kill buys.

Opportunities are queued FIFO and drained by a single worker, so at most
one submission is ever in flight. The worker drops anything older than the
freshness window, asks the risk gate about the rest, and pauses briefly
after each submission to stay under the venue's rate limits.
"""

import asyncio
from collections import deque
from datetime import datetime, timezone
from decimal import ROUND_DOWN, Decimal
from typing import Awaitable, Callable, Optional

import structlog

from endgame.core import events as channels
from endgame.core.config import TradingSettings
from endgame.core.events import EventBus
from endgame.domain.trading import (
    Opportunity,
    OrderSide,
    OrderType,
    Trade,
    TradeStatus,
    new_trade_id,
)
from endgame.integrations.venue import VenueClient
from endgame.services.metrics import MetricsEmitter

log = structlog.get_logger()

MAX_SIZE_MULTIPLIER = Decimal("2")
CENT = Decimal("0.01")

RiskGate = Callable[[Opportunity, Decimal], bool]


def calculate_order_size(
    default_order_size: Decimal,
    expected_profit: Decimal,
    min_profit_threshold: Decimal,
    max_position_size: Decimal,
) -> Decimal:
    """``min(max_position, default * min(2, expected / min_profit))`` floored to cents.

    Always within ``[0, max_position_size]``. A non-positive profit threshold
    gets the full 2x multiplier.
    """
    if min_profit_threshold > 0:
        multiplier = min(MAX_SIZE_MULTIPLIER, expected_profit / min_profit_threshold)
    else:
        multiplier = MAX_SIZE_MULTIPLIER

    size = min(max_position_size, default_order_size * multiplier)
    size = max(Decimal("0"), size)
    return size.quantize(CENT, rounding=ROUND_DOWN)


class OrderExecutor:
    """Serialized order submission with staleness and risk checks."""

    def __init__(
        self,
        venue: VenueClient,
        event_bus: EventBus,
        settings: TradingSettings,
        risk_gate: Optional[RiskGate] = None,
        metrics: Optional[MetricsEmitter] = None,
        sleep: Optional[Callable[[float], Awaitable[None]]] = None,
    ):
        self._venue = venue
        self._event_bus = event_bus
        self._settings = settings
        self._risk_gate = risk_gate
        self._metrics = metrics
        self._sleep = sleep or asyncio.sleep
        self._log = log.bind(component="order_executor")

        self._enabled = True
        self._queue: deque[Opportunity] = deque()
        self._processing = False
        self._worker: Optional[asyncio.Task] = None
        self._stopping = False

    @property
    def is_enabled(self) -> bool:
        return self._enabled

    @property
    def queue_length(self) -> int:
        return len(self._queue)

    @property
    def is_processing(self) -> bool:
        return self._processing

    def set_risk_gate(self, gate: RiskGate) -> None:
        self._risk_gate = gate

    def enable(self) -> None:
        self._enabled = True
        self._log.info("execution_enabled")

    def disable(self) -> None:
        self._enabled = False
        self._log.info("execution_disabled")

    def order_size_for(self, opportunity: Opportunity) -> Decimal:
        s = self._settings
        return calculate_order_size(
            s.default_order_size,
            opportunity.expected_profit,
            s.min_profit_threshold,
            s.max_position_size,
        )

    async def execute_opportunity(self, opportunity: Opportunity) -> Optional[Trade]:
        """Submit a FOK buy for ``opportunity``.

        Returns None without submitting when execution is disabled, the venue
        cannot trade, or the computed size is zero. Otherwise returns the
        trade as MATCHED or FAILED.
        """
        if not self._enabled:
            self._log.warning("execution_disabled_skip", token_id=opportunity.token_id)
            return None

        if not self._venue.is_authenticated_for_trading():
            self._log.warning("venue_not_authenticated", token_id=opportunity.token_id)
            return None

        size = self.order_size_for(opportunity)
        if size <= 0:
            self._log.warning(
                "order_size_too_small",
                token_id=opportunity.token_id,
                expected_profit=str(opportunity.expected_profit),
            )
            return None

        trade = Trade(
            trade_id=new_trade_id(),
            market_id=opportunity.market_id,
            token_id=opportunity.token_id,
            outcome=opportunity.outcome,
            side=OrderSide.BUY,
            price=opportunity.price,
            size=size,
        )
        self._log.info(
            "executing_trade",
            trade_id=trade.trade_id,
            token_id=trade.token_id,
            price=str(trade.price),
            size=str(size),
        )

        try:
            response = await self._venue.submit_order(
                opportunity.token_id,
                OrderSide.BUY,
                opportunity.price,
                size,
                OrderType.FOK,
            )
        except Exception as e:
            trade.status = TradeStatus.FAILED
            trade.error = str(e)
            self._log.error("trade_execution_error", trade_id=trade.trade_id, error=str(e))
            await self._publish_result(trade)
            return trade

        if response.success:
            trade.status = TradeStatus.MATCHED
            trade.order_id = response.order_id
            self._log.info(
                "trade_executed",
                trade_id=trade.trade_id,
                order_id=response.order_id,
                cost=f"{trade.cost:.2f}",
            )
        else:
            trade.status = TradeStatus.FAILED
            trade.error = response.error
            self._log.warning(
                "trade_execution_failed",
                trade_id=trade.trade_id,
                error=response.error,
            )

        await self._publish_result(trade)
        return trade

    async def _publish_result(self, trade: Trade) -> None:
        if self._metrics:
            self._metrics.record_trade(trade.status.value)
        channel = (
            channels.TRADE_EXECUTED
            if trade.status == TradeStatus.MATCHED
            else channels.TRADE_FAILED
        )
        await self._event_bus.publish(channel, {"trade": trade, "error": trade.error})

    def queue_opportunity(self, opportunity: Opportunity) -> None:
        """Append to the FIFO and make sure the worker is draining it."""
        if self._stopping:
            self._log.debug("executor_stopping_drop", token_id=opportunity.token_id)
            return
        self._queue.append(opportunity)
        if not self._processing:
            self._processing = True
            self._worker = asyncio.create_task(self._drain(), name="order_executor")

    async def _drain(self) -> None:
        try:
            while self._queue and not self._stopping:
                opportunity = self._queue.popleft()

                age = opportunity.age_seconds(datetime.now(timezone.utc))
                if age > self._settings.opportunity_ttl:
                    self._log.debug(
                        "opportunity_expired",
                        token_id=opportunity.token_id,
                        age_seconds=round(age, 3),
                    )
                    if self._metrics:
                        self._metrics.record_dropped_opportunity("stale")
                    continue

                size = self.order_size_for(opportunity)
                if self._risk_gate is not None and not self._risk_gate(opportunity, size):
                    self._log.debug(
                        "opportunity_rejected_by_risk",
                        market_id=opportunity.market_id,
                        token_id=opportunity.token_id,
                        size=str(size),
                    )
                    if self._metrics:
                        self._metrics.record_dropped_opportunity("risk")
                    continue

                try:
                    await self.execute_opportunity(opportunity)
                except Exception as e:
                    self._log.error("execute_opportunity_failed", error=str(e))
                await self._sleep(self._settings.submission_delay)
        finally:
            self._processing = False

    async def stop(self) -> None:
        """Let the in-flight submission finish and discard what is still queued."""
        self._stopping = True
        dropped = len(self._queue)
        self._queue.clear()
        worker, self._worker = self._worker, None
        if worker is not None and not worker.done():
            await asyncio.gather(worker, return_exceptions=True)
        self._log.info("order_executor_stopped", discarded=dropped)
