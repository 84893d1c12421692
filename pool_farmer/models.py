"""Data models — pool snapshots, watchlist entries, positions, cycles."""
from __future__ import annotations

from dataclasses import dataclass, field, replace
from datetime import datetime
from enum import Enum
from typing import Any


class WatchStatus(str, Enum):
    WATCHING = "watching"
    INVESTED = "invested"
    IGNORED = "ignored"


class PositionStatus(str, Enum):
    ACTIVE = "active"
    EXITED = "exited"


class ExitReason(str, Enum):
    TIME_EXIT = "time_exit"
    APY_DROP = "apy_drop"
    RISK_EXIT = "risk_exit"
    REBALANCED = "rebalanced"
    MANUAL = "manual"


class LogLevel(str, Enum):
    INFO = "info"
    WARN = "warn"
    ERROR = "error"


NO_REWARD_TOKEN = "none"


@dataclass(frozen=True)
class PoolSnapshot:
    """One pool as reported by the data source in a single fetch.

    Optional metrics default to neutral values: 0 for ratios and growth,
    False for risk flags, ``"single"`` exposure.
    """

    pool_id: str
    symbol: str
    project: str
    chain: str
    apy: float
    apy_base: float = 0.0
    apy_reward: float = 0.0
    reward_tokens: tuple[str, ...] = ()
    tvl_usd: float = 0.0
    tvl_growth_pct_1d: float = 0.0
    sigma: float = 0.0
    il_risk: bool = False
    predicted_down: bool = False
    exposure: str = "single"
    volume_usd_1d: float = 0.0
    first_seen_at: datetime | None = None

    @property
    def reward_ratio(self) -> float:
        """Share of total APY coming from reward incentives."""
        if self.apy <= 0:
            return 0.0
        return self.apy_reward / self.apy

    @property
    def primary_reward_token(self) -> str:
        return self.reward_tokens[0] if self.reward_tokens else NO_REWARD_TOKEN


@dataclass(frozen=True)
class ScoredPool:
    """A snapshot enriched with this cycle's classification and scores."""

    pool: PoolSnapshot
    risk_score: int
    profit_potential: float
    is_new: bool
    detection_reason: str

    @property
    def pool_id(self) -> str:
        return self.pool.pool_id

    @property
    def apy(self) -> float:
        return self.pool.apy


@dataclass(frozen=True)
class WatchlistEntry:
    pool_id: str
    symbol: str
    project: str
    first_seen: datetime
    last_checked: datetime
    is_new: bool = False
    status: WatchStatus = WatchStatus.WATCHING


@dataclass(frozen=True)
class Position:
    """Simulated allocation to one pool. Exited positions are terminal."""

    pool_id: str
    symbol: str
    project: str
    entry_timestamp: datetime
    entry_apy: float
    entry_reward_apy: float = 0.0
    entry_tvl: float = 0.0
    entry_risk_score: int = 0
    is_new: bool = False
    detection_reason: str = ""
    status: PositionStatus = PositionStatus.ACTIVE
    exit_timestamp: datetime | None = None
    exit_apy: float | None = None
    exit_reason: ExitReason | None = None
    profit_loss: float = 0.0
    cycle_id: int | None = None
    id: int | None = None

    @property
    def is_active(self) -> bool:
        return self.status is PositionStatus.ACTIVE

    def close(
        self,
        exit_timestamp: datetime,
        exit_apy: float,
        reason: ExitReason,
        profit_loss: float,
    ) -> Position:
        """Return the exited copy of this position."""
        if not self.is_active:
            raise ValueError(f"Position {self.id} ({self.symbol}) is already exited")
        if exit_timestamp < self.entry_timestamp:
            raise ValueError("Exit timestamp precedes entry timestamp")
        return replace(
            self,
            status=PositionStatus.EXITED,
            exit_timestamp=exit_timestamp,
            exit_apy=exit_apy,
            exit_reason=reason,
            profit_loss=profit_loss,
        )


@dataclass(frozen=True)
class DetectionCycle:
    id: int
    timestamp: datetime
    total_pools_found: int = 0
    new_pools_found: int = 0
    active_positions: int = 0
    watchlist_size: int = 0


@dataclass(frozen=True)
class LogEntry:
    cycle_id: int | None
    level: LogLevel
    message: str
    timestamp: datetime
    details: dict[str, Any] = field(default_factory=dict)
    id: int | None = None
