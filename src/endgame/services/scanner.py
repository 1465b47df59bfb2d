"""Market Scanner - maintains the watchlist of near-resolution markets.

Each scan fetches every market from the venue, filters the eligible ones and
swaps in a freshly built watchlist in one assignment, so readers always see
either the previous scan's result or the new one.

Eligibility:
- active, not closed, not archived
- ends within 24h: some token priced at or above the certainty threshold
- ends later than 24h: some token priced at or above the strict threshold
- already past its end time, or no end time at all: never eligible
"""

from datetime import datetime, timezone
from types import MappingProxyType
from typing import Awaitable, Callable, Mapping, Optional

import structlog

from endgame.core.config import TradingSettings
from endgame.core.lifecycle import BaseComponent, HealthCheckResult
from endgame.core.scheduler import Scheduler
from endgame.domain.market import Market, Token, WatchedMarket
from endgame.integrations.venue import VenueClient, VenueError
from endgame.services.metrics import MetricsEmitter

log = structlog.get_logger()

NEAR_RESOLUTION_HOURS = 24.0

ScanListener = Callable[[list[Market]], Awaitable[None]]


def is_eligible(
    market: Market,
    settings: TradingSettings,
    now: Optional[datetime] = None,
) -> bool:
    """Whether ``market`` belongs on the watchlist at ``now``."""
    if not market.active or market.closed or market.archived:
        return False

    hours_left = market.hours_until_end(now)
    if hours_left is None or hours_left <= 0:
        return False

    if hours_left <= NEAR_RESOLUTION_HOURS:
        threshold = settings.min_certainty_price
    else:
        threshold = settings.strict_certainty_price

    return any(token.price >= threshold for token in market.tokens)


class MarketScanner(BaseComponent):
    """Periodic scanner owning the watchlist."""

    def __init__(
        self,
        venue: VenueClient,
        settings: TradingSettings,
        scheduler: Scheduler,
        metrics: Optional[MetricsEmitter] = None,
    ):
        super().__init__(name="market_scanner")
        self._venue = venue
        self._settings = settings
        self._scheduler = scheduler
        self._metrics = metrics
        self._log = log.bind(component="market_scanner")

        self._watchlist: dict[str, WatchedMarket] = {}
        self._last_markets: list[Market] = []
        self._last_scan_at: Optional[datetime] = None
        self._listeners: list[ScanListener] = []

    @property
    def watchlist(self) -> Mapping[str, WatchedMarket]:
        """Read-only view of the current watchlist, keyed by market id."""
        return MappingProxyType(self._watchlist)

    @property
    def last_markets(self) -> list[Market]:
        """Every market from the most recent successful fetch."""
        return list(self._last_markets)

    @property
    def last_scan_at(self) -> Optional[datetime]:
        return self._last_scan_at

    def add_listener(self, listener: ScanListener) -> None:
        """Call ``listener(markets)`` after every successful scan."""
        self._listeners.append(listener)

    async def _do_start(self) -> None:
        self._log.info(
            "starting_market_scanner",
            interval=self._settings.market_scan_interval,
        )
        await self.scan()
        self._scheduler.every("market_scan", self._settings.market_scan_interval, self.scan)

    async def _do_stop(self) -> None:
        self._scheduler.cancel("market_scan")
        self._log.info("market_scanner_stopped")

    async def _do_health_check(self) -> HealthCheckResult:
        return HealthCheckResult.healthy(
            watched_markets=len(self._watchlist),
            last_scan_at=self._last_scan_at.isoformat() if self._last_scan_at else None,
        )

    async def scan(self) -> None:
        """Fetch all markets and rebuild the watchlist.

        On a venue failure the previous watchlist stays in place and the
        next scheduled scan retries.
        """
        try:
            markets = await self._venue.fetch_all_markets()
        except VenueError as e:
            self._log.error("market_scan_failed", error=str(e))
            if self._metrics:
                self._metrics.record_scan(False)
            return

        now = datetime.now(timezone.utc)
        previous = self._watchlist
        fresh: dict[str, WatchedMarket] = {}

        for market in markets:
            if not is_eligible(market, self._settings, now):
                continue
            high = market.highest_price_token()
            if high is None:
                continue
            existing = previous.get(market.market_id)
            if existing is not None:
                fresh[market.market_id] = existing.refreshed(market)
            else:
                fresh[market.market_id] = WatchedMarket(
                    market=market,
                    added_at=now,
                    high_price_token=high,
                )

        added = fresh.keys() - previous.keys()
        removed = previous.keys() - fresh.keys()

        self._watchlist = fresh
        self._last_markets = markets
        self._last_scan_at = now

        self._log.info(
            "market_scan_completed",
            total=len(markets),
            eligible=len(fresh),
            added=len(added),
            removed=len(removed),
        )
        for market_id in added:
            wm = fresh[market_id]
            self._log.debug(
                "market_added_to_watchlist",
                market_id=market_id,
                question=wm.market.question[:80],
                price=str(wm.high_price_token.price),
            )

        if self._metrics:
            self._metrics.record_scan(True, watchlist_size=len(fresh))

        for listener in list(self._listeners):
            try:
                await listener(markets)
            except Exception as e:
                self._log.error("scan_listener_failed", error=str(e))

    def get_high_price_tokens(self) -> list[tuple[str, Token]]:
        """``(market_id, token)`` for each watched market's highest-priced token."""
        return [(mid, wm.high_price_token) for mid, wm in self._watchlist.items()]

    def get_token_ids(self) -> list[str]:
        """Every token id across watched markets."""
        return [
            token.token_id
            for wm in self._watchlist.values()
            for token in wm.market.tokens
        ]

    def find_token(self, token_id: str) -> Optional[tuple[Market, Token]]:
        """Locate a watched token and its market."""
        for wm in self._watchlist.values():
            token = wm.market.token(token_id)
            if token is not None:
                return wm.market, token
        return None
