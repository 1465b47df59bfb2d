"""
Unit tests for the SQLite ledger store.
"""
from datetime import date, datetime, timezone
from decimal import Decimal

import pytest

from endgame.domain.trading import Position, PositionStatus, TradingStats
from endgame.services.state_store import LedgerSnapshot, SqliteLedgerStore


def make_snapshot() -> LedgerSnapshot:
    opened = datetime(2026, 5, 1, 9, 30, tzinfo=timezone.utc)
    won = Position(
        position_id="trade_1",
        market_id="m1",
        token_id="m1-yes",
        outcome="Yes",
        entry_price=Decimal("0.98"),
        size=Decimal("100"),
        status=PositionStatus.RESOLVED_WIN,
        opened_at=opened,
        resolved_at=datetime(2026, 5, 1, 18, tzinfo=timezone.utc),
        realized_pnl=Decimal("2.00"),
    )
    open_position = Position(
        position_id="trade_2",
        market_id="m2",
        token_id="m2-no",
        outcome="No",
        entry_price=Decimal("0.985"),
        size=Decimal("101.53"),
        opened_at=opened,
    )
    stats = TradingStats(total_trades=2)
    stats.record(Decimal("2.00"), True)
    return LedgerSnapshot(
        positions={p.position_id: p for p in (won, open_position)},
        stats=stats,
        daily_pnl=Decimal("2.00"),
        daily_pnl_date=date(2026, 5, 1),
    )


class TestConnection:
    @pytest.mark.asyncio
    async def test_connect_and_close(self, tmp_path):
        store = SqliteLedgerStore(str(tmp_path / "nested" / "ledger.db"))
        assert not store.is_connected

        await store.connect()
        assert store.is_connected
        assert (tmp_path / "nested" / "ledger.db").exists()

        await store.close()
        assert not store.is_connected

    @pytest.mark.asyncio
    async def test_requires_connect(self, tmp_path):
        store = SqliteLedgerStore(str(tmp_path / "ledger.db"))
        with pytest.raises(RuntimeError):
            await store.load()


class TestRoundTrip:
    @pytest.mark.asyncio
    async def test_empty_database_loads_none(self):
        store = SqliteLedgerStore(":memory:")
        await store.connect()
        assert await store.load() is None
        await store.close()

    @pytest.mark.asyncio
    async def test_save_then_load(self, tmp_path):
        path = str(tmp_path / "ledger.db")
        snapshot = make_snapshot()

        store = SqliteLedgerStore(path)
        await store.connect()
        await store.save(snapshot)
        await store.close()

        reopened = SqliteLedgerStore(path)
        await reopened.connect()
        loaded = await reopened.load()
        await reopened.close()

        assert loaded.positions == snapshot.positions
        assert loaded.stats == snapshot.stats
        assert loaded.daily_pnl == Decimal("2.00")
        assert loaded.daily_pnl_date == date(2026, 5, 1)
        assert loaded.positions["trade_2"].size == Decimal("101.53")
        assert loaded.positions["trade_2"].resolved_at is None
        assert loaded.positions["trade_2"].realized_pnl is None

    @pytest.mark.asyncio
    async def test_save_replaces_previous_state(self):
        store = SqliteLedgerStore(":memory:")
        await store.connect()
        snapshot = make_snapshot()
        await store.save(snapshot)

        del snapshot.positions["trade_1"]
        snapshot.positions["trade_2"].status = PositionStatus.PENDING_RESOLUTION
        await store.save(snapshot)
        loaded = await store.load()
        await store.close()

        assert list(loaded.positions) == ["trade_2"]
        assert loaded.positions["trade_2"].status == PositionStatus.PENDING_RESOLUTION
