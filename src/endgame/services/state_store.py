"""Ledger persistence on async SQLite.

The ledger saves its whole state after every mutation and reads it back
once at startup. Each save rewrites positions and aggregates inside a single
transaction. Money values are stored as TEXT so Decimals round-trip exactly.
"""

import asyncio
from dataclasses import dataclass, field
from datetime import date, datetime
from decimal import Decimal
from pathlib import Path
from typing import Optional, Protocol

import aiosqlite
import structlog

from endgame.domain.trading import Position, PositionStatus, TradingStats

log = structlog.get_logger()

SCHEMA_VERSION = 1

SCHEMA_SQL = """
CREATE TABLE IF NOT EXISTS positions (
    position_id TEXT PRIMARY KEY,
    market_id TEXT NOT NULL,
    token_id TEXT NOT NULL,
    outcome TEXT NOT NULL DEFAULT '',
    entry_price TEXT NOT NULL,
    size TEXT NOT NULL,
    status TEXT NOT NULL,
    opened_at TEXT NOT NULL,
    resolved_at TEXT,
    realized_pnl TEXT
);

CREATE TABLE IF NOT EXISTS ledger_stats (
    id INTEGER PRIMARY KEY CHECK (id = 1),
    total_trades INTEGER NOT NULL DEFAULT 0,
    winning_trades INTEGER NOT NULL DEFAULT 0,
    losing_trades INTEGER NOT NULL DEFAULT 0,
    total_profit TEXT NOT NULL DEFAULT '0',
    total_loss TEXT NOT NULL DEFAULT '0',
    win_rate TEXT NOT NULL DEFAULT '0',
    average_profit TEXT NOT NULL DEFAULT '0',
    largest_win TEXT NOT NULL DEFAULT '0',
    largest_loss TEXT NOT NULL DEFAULT '0',
    daily_pnl TEXT NOT NULL DEFAULT '0',
    daily_pnl_date TEXT,
    updated_at TEXT DEFAULT CURRENT_TIMESTAMP
);

CREATE INDEX IF NOT EXISTS idx_positions_status ON positions(status);
CREATE INDEX IF NOT EXISTS idx_positions_market ON positions(market_id);

CREATE TABLE IF NOT EXISTS schema_version (
    version INTEGER PRIMARY KEY
);
INSERT OR IGNORE INTO schema_version (version) VALUES (1);
"""


@dataclass
class LedgerSnapshot:
    """Everything the ledger needs to resume after a restart."""

    positions: dict[str, Position] = field(default_factory=dict)
    stats: TradingStats = field(default_factory=TradingStats)
    daily_pnl: Decimal = Decimal("0")
    daily_pnl_date: Optional[date] = None


class LedgerStore(Protocol):
    """Persistence contract for the position ledger."""

    async def load(self) -> Optional[LedgerSnapshot]:
        ...

    async def save(self, snapshot: LedgerSnapshot) -> None:
        ...


class SqliteLedgerStore:
    """SQLite-backed ``LedgerStore``.

    Usage:
        store = SqliteLedgerStore("./data/endgame.db")
        await store.connect()
        snapshot = await store.load()
        ...
        await store.save(snapshot)
        await store.close()
    """

    def __init__(self, db_path: str):
        self._db_path = db_path
        self._connection: Optional[aiosqlite.Connection] = None
        self._lock = asyncio.Lock()
        self._log = log.bind(component="ledger_store")

    @property
    def is_connected(self) -> bool:
        return self._connection is not None

    async def connect(self) -> None:
        async with self._lock:
            if self._connection is not None:
                return
            if self._db_path != ":memory:":
                Path(self._db_path).parent.mkdir(parents=True, exist_ok=True)

            self._connection = await aiosqlite.connect(self._db_path)
            self._connection.row_factory = aiosqlite.Row
            await self._connection.execute("PRAGMA journal_mode=WAL")
            await self._connection.execute("PRAGMA synchronous=NORMAL")
            await self._connection.executescript(SCHEMA_SQL)
            await self._connection.commit()
        self._log.info("ledger_store_connected", path=self._db_path)

    async def close(self) -> None:
        async with self._lock:
            if self._connection is not None:
                await self._connection.close()
                self._connection = None
        self._log.info("ledger_store_closed")

    def _ensure_connected(self) -> aiosqlite.Connection:
        if self._connection is None:
            raise RuntimeError("Ledger store not connected")
        return self._connection

    async def save(self, snapshot: LedgerSnapshot) -> None:
        """Replace the stored state with ``snapshot``."""
        conn = self._ensure_connected()
        stats = snapshot.stats
        async with self._lock:
            try:
                await conn.execute("DELETE FROM positions")
                await conn.executemany(
                    """
                    INSERT INTO positions (
                        position_id, market_id, token_id, outcome, entry_price,
                        size, status, opened_at, resolved_at, realized_pnl
                    ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                    """,
                    [_position_row(p) for p in snapshot.positions.values()],
                )
                await conn.execute(
                    """
                    INSERT OR REPLACE INTO ledger_stats (
                        id, total_trades, winning_trades, losing_trades,
                        total_profit, total_loss, win_rate, average_profit,
                        largest_win, largest_loss, daily_pnl, daily_pnl_date,
                        updated_at
                    ) VALUES (1, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, CURRENT_TIMESTAMP)
                    """,
                    (
                        stats.total_trades,
                        stats.winning_trades,
                        stats.losing_trades,
                        str(stats.total_profit),
                        str(stats.total_loss),
                        str(stats.win_rate),
                        str(stats.average_profit),
                        str(stats.largest_win),
                        str(stats.largest_loss),
                        str(snapshot.daily_pnl),
                        snapshot.daily_pnl_date.isoformat() if snapshot.daily_pnl_date else None,
                    ),
                )
                await conn.commit()
            except Exception:
                await conn.rollback()
                raise

    async def load(self) -> Optional[LedgerSnapshot]:
        """Read the stored state, or None if nothing was ever saved."""
        conn = self._ensure_connected()

        async with conn.execute("SELECT * FROM ledger_stats WHERE id = 1") as cursor:
            stats_row = await cursor.fetchone()
        async with conn.execute("SELECT * FROM positions ORDER BY opened_at") as cursor:
            position_rows = await cursor.fetchall()

        if stats_row is None and not position_rows:
            return None

        positions = {row["position_id"]: _row_to_position(row) for row in position_rows}
        snapshot = LedgerSnapshot(positions=positions)

        if stats_row is not None:
            snapshot.stats = TradingStats(
                total_trades=stats_row["total_trades"],
                winning_trades=stats_row["winning_trades"],
                losing_trades=stats_row["losing_trades"],
                total_profit=Decimal(stats_row["total_profit"]),
                total_loss=Decimal(stats_row["total_loss"]),
                win_rate=Decimal(stats_row["win_rate"]),
                average_profit=Decimal(stats_row["average_profit"]),
                largest_win=Decimal(stats_row["largest_win"]),
                largest_loss=Decimal(stats_row["largest_loss"]),
            )
            snapshot.daily_pnl = Decimal(stats_row["daily_pnl"])
            if stats_row["daily_pnl_date"]:
                snapshot.daily_pnl_date = date.fromisoformat(stats_row["daily_pnl_date"])

        return snapshot


def _position_row(p: Position) -> tuple:
    return (
        p.position_id,
        p.market_id,
        p.token_id,
        p.outcome,
        str(p.entry_price),
        str(p.size),
        p.status.value,
        p.opened_at.isoformat(),
        p.resolved_at.isoformat() if p.resolved_at else None,
        str(p.realized_pnl) if p.realized_pnl is not None else None,
    )


def _row_to_position(row: aiosqlite.Row) -> Position:
    return Position(
        position_id=row["position_id"],
        market_id=row["market_id"],
        token_id=row["token_id"],
        outcome=row["outcome"],
        entry_price=Decimal(row["entry_price"]),
        size=Decimal(row["size"]),
        status=PositionStatus(row["status"]),
        opened_at=datetime.fromisoformat(row["opened_at"]),
        resolved_at=datetime.fromisoformat(row["resolved_at"]) if row["resolved_at"] else None,
        realized_pnl=Decimal(row["realized_pnl"]) if row["realized_pnl"] is not None else None,
    )
