"""Storage protocol — persistence of cycles, logs, positions and the watchlist."""
from datetime import datetime
from typing import Any, Protocol

from ..models import (
    DetectionCycle,
    LogEntry,
    LogLevel,
    Position,
    WatchlistEntry,
    WatchStatus,
)


class Storage(Protocol):
    """Narrow persistence interface; every mutating call is its own unit of work."""

    # Cycles
    def start_cycle(self, timestamp: datetime) -> DetectionCycle: ...

    def finish_cycle(
        self,
        cycle_id: int,
        *,
        total_pools_found: int,
        new_pools_found: int,
        active_positions: int,
        watchlist_size: int,
    ) -> None: ...

    def list_cycles(self, limit: int = 20) -> list[DetectionCycle]: ...

    # Logs
    def add_log(
        self,
        cycle_id: int | None,
        level: LogLevel,
        message: str,
        details: dict[str, Any] | None = None,
        timestamp: datetime | None = None,
    ) -> None: ...

    def list_logs(
        self,
        limit: int = 100,
        level: LogLevel | None = None,
        cycle_id: int | None = None,
    ) -> list[LogEntry]: ...

    # Positions
    def add_position(self, position: Position) -> Position: ...

    def close_position(self, position: Position) -> bool: ...

    def get_position(self, position_id: int) -> Position | None: ...

    def list_active_positions(self) -> list[Position]: ...

    def list_exited_positions(self, limit: int = 50, offset: int = 0) -> list[Position]: ...

    def list_positions(self) -> list[Position]: ...

    # Watchlist
    def add_watchlist_entry(self, entry: WatchlistEntry) -> bool: ...

    def list_watchlist(self, status: WatchStatus | None = None) -> list[WatchlistEntry]: ...

    def mark_watchlist_invested(self, pool_id: str, timestamp: datetime) -> None: ...

    def touch_watchlist(self, pool_ids: list[str], timestamp: datetime) -> None: ...

    def delete_watchlist_older_than(
        self,
        cutoff: datetime,
        status: WatchStatus,
        keep: frozenset[str] = frozenset(),
    ) -> int: ...

    def close(self) -> None: ...
