"""SQLite persistence for cycles, logs, positions and the watchlist."""
from __future__ import annotations

import json
import logging
import sqlite3
from contextlib import contextmanager
from dataclasses import replace
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Iterator

from ..errors import StorageConnectionError, StorageError
from ..models import (
    DetectionCycle,
    ExitReason,
    LogEntry,
    LogLevel,
    Position,
    PositionStatus,
    WatchlistEntry,
    WatchStatus,
)

logger = logging.getLogger(__name__)

CREATE_CYCLE_TABLE = """
CREATE TABLE IF NOT EXISTS detection_cycles (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    cycle_timestamp TEXT NOT NULL,
    total_pools_found INTEGER NOT NULL DEFAULT 0,
    new_pools_found INTEGER NOT NULL DEFAULT 0,
    active_positions INTEGER NOT NULL DEFAULT 0,
    watchlist_size INTEGER NOT NULL DEFAULT 0
);
"""

CREATE_LOG_TABLE = """
CREATE TABLE IF NOT EXISTS logs (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    cycle_id INTEGER REFERENCES detection_cycles(id),
    level TEXT NOT NULL,
    message TEXT NOT NULL,
    details TEXT,
    timestamp TEXT NOT NULL
);
"""

CREATE_POSITION_TABLE = """
CREATE TABLE IF NOT EXISTS positions (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    pool_id TEXT NOT NULL,
    symbol TEXT NOT NULL,
    project TEXT NOT NULL,
    status TEXT NOT NULL,
    entry_timestamp TEXT NOT NULL,
    entry_apy REAL NOT NULL,
    entry_reward_apy REAL,
    entry_tvl REAL,
    entry_risk_score INTEGER,
    is_new INTEGER NOT NULL DEFAULT 0,
    detection_reason TEXT,
    exit_timestamp TEXT,
    exit_apy REAL,
    exit_reason TEXT,
    profit_loss REAL NOT NULL DEFAULT 0,
    cycle_id INTEGER REFERENCES detection_cycles(id)
);
"""

CREATE_POSITION_INDEX = """
CREATE INDEX IF NOT EXISTS idx_positions_status ON positions (status, pool_id);
"""

CREATE_WATCHLIST_TABLE = """
CREATE TABLE IF NOT EXISTS watchlist_pools (
    pool_id TEXT PRIMARY KEY,
    symbol TEXT NOT NULL,
    project TEXT NOT NULL,
    first_seen TEXT NOT NULL,
    is_new INTEGER NOT NULL DEFAULT 0,
    last_checked TEXT NOT NULL,
    status TEXT NOT NULL
);
"""

_POSITION_COLUMNS = (
    "id, pool_id, symbol, project, status, entry_timestamp, entry_apy, "
    "entry_reward_apy, entry_tvl, entry_risk_score, is_new, detection_reason, "
    "exit_timestamp, exit_apy, exit_reason, profit_loss, cycle_id"
)


def _to_text(value: datetime | None) -> str | None:
    if value is None:
        return None
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc).isoformat(timespec="microseconds")


def _from_text(value: str | None) -> datetime | None:
    if value is None:
        return None
    return datetime.fromisoformat(value)


def _row_to_position(row: sqlite3.Row) -> Position:
    return Position(
        id=row["id"],
        pool_id=row["pool_id"],
        symbol=row["symbol"],
        project=row["project"],
        status=PositionStatus(row["status"]),
        entry_timestamp=_from_text(row["entry_timestamp"]),
        entry_apy=row["entry_apy"],
        entry_reward_apy=row["entry_reward_apy"] or 0.0,
        entry_tvl=row["entry_tvl"] or 0.0,
        entry_risk_score=row["entry_risk_score"] or 0,
        is_new=bool(row["is_new"]),
        detection_reason=row["detection_reason"] or "",
        exit_timestamp=_from_text(row["exit_timestamp"]),
        exit_apy=row["exit_apy"],
        exit_reason=ExitReason(row["exit_reason"]) if row["exit_reason"] else None,
        profit_loss=row["profit_loss"] or 0.0,
        cycle_id=row["cycle_id"],
    )


def _row_to_watchlist(row: sqlite3.Row) -> WatchlistEntry:
    return WatchlistEntry(
        pool_id=row["pool_id"],
        symbol=row["symbol"],
        project=row["project"],
        first_seen=_from_text(row["first_seen"]),
        last_checked=_from_text(row["last_checked"]),
        is_new=bool(row["is_new"]),
        status=WatchStatus(row["status"]),
    )


def _row_to_cycle(row: sqlite3.Row) -> DetectionCycle:
    return DetectionCycle(
        id=row["id"],
        timestamp=_from_text(row["cycle_timestamp"]),
        total_pools_found=row["total_pools_found"],
        new_pools_found=row["new_pools_found"],
        active_positions=row["active_positions"],
        watchlist_size=row["watchlist_size"],
    )


class SQLiteStorage:
    """SQLite-backed storage; each mutating call commits its own transaction."""

    def __init__(self, database_path: str | Path) -> None:
        self._database_path = Path(database_path)
        try:
            self._initialize()
        except (sqlite3.Error, OSError) as e:
            raise StorageConnectionError(
                f"Cannot open database {self._database_path}: {e}"
            ) from e

    def _initialize(self) -> None:
        self._database_path.parent.mkdir(parents=True, exist_ok=True)
        con = sqlite3.connect(self._database_path)
        try:
            con.execute(CREATE_CYCLE_TABLE)
            con.execute(CREATE_LOG_TABLE)
            con.execute(CREATE_POSITION_TABLE)
            con.execute(CREATE_POSITION_INDEX)
            con.execute(CREATE_WATCHLIST_TABLE)
            con.commit()
        finally:
            con.close()
        logger.info("Storage ready at %s", self._database_path)

    @contextmanager
    def _connect(self) -> Iterator[sqlite3.Connection]:
        try:
            con = sqlite3.connect(self._database_path)
        except sqlite3.Error as e:
            raise StorageError(f"Cannot connect to {self._database_path}: {e}") from e
        con.row_factory = sqlite3.Row
        try:
            yield con
            con.commit()
        except sqlite3.Error as e:
            con.rollback()
            raise StorageError(str(e)) from e
        finally:
            con.close()

    def close(self) -> None:
        """Connections are per call; nothing is held open."""

    # ------------------------------------------------------------------
    # Detection cycles
    # ------------------------------------------------------------------

    def start_cycle(self, timestamp: datetime) -> DetectionCycle:
        with self._connect() as con:
            cur = con.execute(
                "INSERT INTO detection_cycles (cycle_timestamp) VALUES (?)",
                (_to_text(timestamp),),
            )
            cycle_id = cur.lastrowid
        return DetectionCycle(id=cycle_id, timestamp=timestamp)

    def finish_cycle(
        self,
        cycle_id: int,
        *,
        total_pools_found: int,
        new_pools_found: int,
        active_positions: int,
        watchlist_size: int,
    ) -> None:
        with self._connect() as con:
            con.execute(
                """
                UPDATE detection_cycles SET
                    total_pools_found = ?,
                    new_pools_found = ?,
                    active_positions = ?,
                    watchlist_size = ?
                WHERE id = ?
                """,
                (total_pools_found, new_pools_found, active_positions, watchlist_size, cycle_id),
            )

    def list_cycles(self, limit: int = 20) -> list[DetectionCycle]:
        with self._connect() as con:
            rows = con.execute(
                "SELECT * FROM detection_cycles ORDER BY id DESC LIMIT ?", (limit,)
            ).fetchall()
        return [_row_to_cycle(row) for row in rows]

    # ------------------------------------------------------------------
    # Logs
    # ------------------------------------------------------------------

    def add_log(
        self,
        cycle_id: int | None,
        level: LogLevel,
        message: str,
        details: dict[str, Any] | None = None,
        timestamp: datetime | None = None,
    ) -> None:
        timestamp = timestamp or datetime.now(timezone.utc)
        with self._connect() as con:
            con.execute(
                "INSERT INTO logs (cycle_id, level, message, details, timestamp) "
                "VALUES (?, ?, ?, ?, ?)",
                (
                    cycle_id,
                    LogLevel(level).value,
                    message,
                    json.dumps(details, default=str) if details else None,
                    _to_text(timestamp),
                ),
            )

    def list_logs(
        self,
        limit: int = 100,
        level: LogLevel | None = None,
        cycle_id: int | None = None,
    ) -> list[LogEntry]:
        clauses: list[str] = []
        params: list[Any] = []
        if level is not None:
            clauses.append("level = ?")
            params.append(LogLevel(level).value)
        if cycle_id is not None:
            clauses.append("cycle_id = ?")
            params.append(cycle_id)
        where = f"WHERE {' AND '.join(clauses)}" if clauses else ""

        with self._connect() as con:
            rows = con.execute(
                f"SELECT * FROM logs {where} ORDER BY id DESC LIMIT ?",
                (*params, limit),
            ).fetchall()
        return [
            LogEntry(
                id=row["id"],
                cycle_id=row["cycle_id"],
                level=LogLevel(row["level"]),
                message=row["message"],
                details=json.loads(row["details"]) if row["details"] else {},
                timestamp=_from_text(row["timestamp"]),
            )
            for row in rows
        ]

    # ------------------------------------------------------------------
    # Positions
    # ------------------------------------------------------------------

    def add_position(self, position: Position) -> Position:
        with self._connect() as con:
            cur = con.execute(
                """
                INSERT INTO positions (
                    pool_id, symbol, project, status, entry_timestamp, entry_apy,
                    entry_reward_apy, entry_tvl, entry_risk_score, is_new,
                    detection_reason, cycle_id
                ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    position.pool_id,
                    position.symbol,
                    position.project,
                    position.status.value,
                    _to_text(position.entry_timestamp),
                    position.entry_apy,
                    position.entry_reward_apy,
                    position.entry_tvl,
                    position.entry_risk_score,
                    int(position.is_new),
                    position.detection_reason,
                    position.cycle_id,
                ),
            )
            position_id = cur.lastrowid
        return replace(position, id=position_id)

    def close_position(self, position: Position) -> bool:
        """Persist the exit fields of an exited position (active rows only).

        Returns False when the stored row was no longer active.
        """
        if position.id is None or position.is_active:
            raise ValueError("close_position expects a stored, exited position")
        with self._connect() as con:
            cur = con.execute(
                """
                UPDATE positions SET
                    status = ?,
                    exit_timestamp = ?,
                    exit_apy = ?,
                    exit_reason = ?,
                    profit_loss = ?
                WHERE id = ? AND status = ?
                """,
                (
                    position.status.value,
                    _to_text(position.exit_timestamp),
                    position.exit_apy,
                    position.exit_reason.value if position.exit_reason else None,
                    position.profit_loss,
                    position.id,
                    PositionStatus.ACTIVE.value,
                ),
            )
            recorded = cur.rowcount > 0
        if not recorded:
            logger.warning("Position %s was not active; exit not recorded", position.id)
        return recorded

    def get_position(self, position_id: int) -> Position | None:
        with self._connect() as con:
            row = con.execute(
                f"SELECT {_POSITION_COLUMNS} FROM positions WHERE id = ?", (position_id,)
            ).fetchone()
        return _row_to_position(row) if row else None

    def list_active_positions(self) -> list[Position]:
        with self._connect() as con:
            rows = con.execute(
                f"SELECT {_POSITION_COLUMNS} FROM positions WHERE status = ? "
                "ORDER BY entry_timestamp DESC",
                (PositionStatus.ACTIVE.value,),
            ).fetchall()
        return [_row_to_position(row) for row in rows]

    def list_exited_positions(self, limit: int = 50, offset: int = 0) -> list[Position]:
        with self._connect() as con:
            rows = con.execute(
                f"SELECT {_POSITION_COLUMNS} FROM positions WHERE status = ? "
                "ORDER BY exit_timestamp DESC, id DESC LIMIT ? OFFSET ?",
                (PositionStatus.EXITED.value, limit, offset),
            ).fetchall()
        return [_row_to_position(row) for row in rows]

    def list_positions(self) -> list[Position]:
        with self._connect() as con:
            rows = con.execute(
                f"SELECT {_POSITION_COLUMNS} FROM positions ORDER BY entry_timestamp DESC"
            ).fetchall()
        return [_row_to_position(row) for row in rows]

    # ------------------------------------------------------------------
    # Watchlist
    # ------------------------------------------------------------------

    def add_watchlist_entry(self, entry: WatchlistEntry) -> bool:
        """Insert ``entry`` unless its pool is already present. Returns True if inserted."""
        with self._connect() as con:
            cur = con.execute(
                """
                INSERT OR IGNORE INTO watchlist_pools
                    (pool_id, symbol, project, first_seen, is_new, last_checked, status)
                VALUES (?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    entry.pool_id,
                    entry.symbol,
                    entry.project,
                    _to_text(entry.first_seen),
                    int(entry.is_new),
                    _to_text(entry.last_checked),
                    entry.status.value,
                ),
            )
            return cur.rowcount > 0

    def list_watchlist(self, status: WatchStatus | None = None) -> list[WatchlistEntry]:
        with self._connect() as con:
            if status is None:
                rows = con.execute(
                    "SELECT * FROM watchlist_pools ORDER BY first_seen DESC"
                ).fetchall()
            else:
                rows = con.execute(
                    "SELECT * FROM watchlist_pools WHERE status = ? ORDER BY first_seen DESC",
                    (WatchStatus(status).value,),
                ).fetchall()
        return [_row_to_watchlist(row) for row in rows]

    def mark_watchlist_invested(self, pool_id: str, timestamp: datetime) -> None:
        with self._connect() as con:
            con.execute(
                "UPDATE watchlist_pools SET status = ?, last_checked = ? "
                "WHERE pool_id = ? AND status = ?",
                (
                    WatchStatus.INVESTED.value,
                    _to_text(timestamp),
                    pool_id,
                    WatchStatus.WATCHING.value,
                ),
            )

    def touch_watchlist(self, pool_ids: list[str], timestamp: datetime) -> None:
        if not pool_ids:
            return
        with self._connect() as con:
            con.executemany(
                "UPDATE watchlist_pools SET last_checked = ? WHERE pool_id = ?",
                [(_to_text(timestamp), pool_id) for pool_id in pool_ids],
            )

    def delete_watchlist_older_than(
        self,
        cutoff: datetime,
        status: WatchStatus,
        keep: frozenset[str] = frozenset(),
    ) -> int:
        """Delete entries with ``status`` first seen before ``cutoff``, except ``keep``."""
        with self._connect() as con:
            rows = con.execute(
                "SELECT pool_id FROM watchlist_pools WHERE status = ? AND first_seen < ?",
                (WatchStatus(status).value, _to_text(cutoff)),
            ).fetchall()
            doomed = [row["pool_id"] for row in rows if row["pool_id"] not in keep]
            con.executemany(
                "DELETE FROM watchlist_pools WHERE pool_id = ?",
                [(pool_id,) for pool_id in doomed],
            )
        return len(doomed)
