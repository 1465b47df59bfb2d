"""Settlement Watcher - resolves ledger positions once their markets close.

Runs after every market scan against the full market snapshot. For each
unresolved position whose market is closed:
- a token flagged as winner settles the position (win iff it is our token)
- no winner flagged yet moves an OPEN position to PENDING_RESOLUTION
"""

from typing import Iterable

import structlog

from endgame.domain.market import Market
from endgame.services.ledger import PositionLedger

log = structlog.get_logger()


class SettlementWatcher:
    def __init__(self, ledger: PositionLedger):
        self._ledger = ledger
        self._log = log.bind(component="settlement_watcher")

    async def reconcile(self, markets: Iterable[Market]) -> int:
        """Settle what the snapshot allows. Returns the number of positions resolved."""
        unresolved = self._ledger.unresolved_positions()
        if not unresolved:
            return 0

        closed = {m.market_id: m for m in markets if m.closed}
        resolved = 0

        for position in unresolved:
            market = closed.get(position.market_id)
            if market is None:
                continue

            winner = market.winning_token()
            if winner is None:
                await self._ledger.mark_pending_resolution(position.position_id)
                continue

            is_winner = winner.token_id == position.token_id
            if await self._ledger.resolve_position(position.position_id, is_winner):
                resolved += 1

        if resolved:
            self._log.info("positions_settled", count=resolved)
        return resolved
