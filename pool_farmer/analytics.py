"""Simulated yield computation and portfolio analytics.

All returns use daily compounding of a single static rate: the midpoint of
the entry and exit APY, applied over the actual hold duration::

    final = P * (1 + r/n) ** (n * t),   r = avg_apy / 100,  t = hold_days / 365
"""
from __future__ import annotations

from collections import defaultdict
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Iterable, Mapping

from .config import PortfolioConfig
from .models import PoolSnapshot, Position

SECONDS_PER_DAY = 86400.0
DAYS_PER_YEAR = 365.0


@dataclass(frozen=True)
class YieldResult:
    principal: float
    entry_apy: float
    exit_apy: float
    avg_apy: float
    hold_days: float
    time_in_years: float
    final_amount: float
    total_return: float
    return_percentage: float
    annualized_return: float
    daily_return: float

    @property
    def is_profit(self) -> bool:
        return self.total_return > 0


def compound(principal: float, apy: float, days: float, periods: int = 365) -> float:
    """Final amount of ``principal`` at ``apy`` percent compounded ``periods`` times a year."""
    years = days / DAYS_PER_YEAR
    return principal * (1 + (apy / 100) / periods) ** (periods * years)


def calculate_yield(
    position: Position,
    exit_timestamp: datetime | None = None,
    exit_apy: float | None = None,
    *,
    principal_usd: float = 1000.0,
    compounding_periods: int = 365,
) -> YieldResult:
    """Simulated return of ``position`` held until ``exit_timestamp``.

    Exited positions default to their stored exit time and APY; active ones
    to now and their entry APY.
    """
    if exit_timestamp is None:
        exit_timestamp = position.exit_timestamp or datetime.now(timezone.utc)
    if exit_apy is None:
        exit_apy = position.exit_apy if position.exit_apy is not None else position.entry_apy

    hold_days = max(
        (exit_timestamp - position.entry_timestamp).total_seconds() / SECONDS_PER_DAY, 0.0
    )
    years = hold_days / DAYS_PER_YEAR
    avg_apy = (position.entry_apy + exit_apy) / 2

    final_amount = compound(principal_usd, avg_apy, hold_days, compounding_periods)
    total_return = final_amount - principal_usd
    return_pct = total_return / principal_usd * 100

    return YieldResult(
        principal=principal_usd,
        entry_apy=position.entry_apy,
        exit_apy=exit_apy,
        avg_apy=avg_apy,
        hold_days=hold_days,
        time_in_years=years,
        final_amount=final_amount,
        total_return=total_return,
        return_percentage=return_pct,
        annualized_return=return_pct / years if years > 0 else 0.0,
        daily_return=return_pct / hold_days if hold_days > 0 else 0.0,
    )


def simulate_investment(apy: float, days: float, principal_usd: float = 1000.0,
                        compounding_periods: int = 365) -> YieldResult:
    """Projected return for a fresh position at a constant ``apy``."""
    years = days / DAYS_PER_YEAR
    final_amount = compound(principal_usd, apy, days, compounding_periods)
    total_return = final_amount - principal_usd
    return_pct = total_return / principal_usd * 100
    return YieldResult(
        principal=principal_usd,
        entry_apy=apy,
        exit_apy=apy,
        avg_apy=apy,
        hold_days=days,
        time_in_years=years,
        final_amount=final_amount,
        total_return=total_return,
        return_percentage=return_pct,
        annualized_return=return_pct / years if years > 0 else 0.0,
        daily_return=return_pct / days if days > 0 else 0.0,
    )


def risk_adjusted_return(result: YieldResult, risk_score: int) -> float:
    """Return percentage discounted by ``1 + risk/10``."""
    return result.return_percentage / (1 + risk_score / 10)


# ---------------------------------------------------------------------------
# Portfolio-level aggregates
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class PortfolioYield:
    total_invested: float = 0.0
    total_current_value: float = 0.0
    total_returns: float = 0.0
    return_percentage: float = 0.0
    average_hold_days: float = 0.0
    profitable_positions: int = 0
    total_positions: int = 0
    position_yields: tuple[tuple[Position, YieldResult], ...] = ()

    @property
    def win_rate(self) -> float:
        if not self.total_positions:
            return 0.0
        return self.profitable_positions / self.total_positions * 100


@dataclass(frozen=True)
class YieldAnalytics:
    overall: PortfolioYield
    active: PortfolioYield
    exited: PortfolioYield
    best: tuple[Position, YieldResult] | None = None
    worst: tuple[Position, YieldResult] | None = None
    monthly: dict[str, dict[str, float]] = field(default_factory=dict)


def _position_yield(
    position: Position,
    pool_index: Mapping[str, PoolSnapshot],
    now: datetime,
    config: PortfolioConfig,
) -> YieldResult:
    if position.is_active:
        current = pool_index.get(position.pool_id)
        exit_apy = current.apy if current is not None else position.entry_apy
        exit_at = now
    else:
        exit_apy = position.exit_apy if position.exit_apy is not None else position.entry_apy
        exit_at = position.exit_timestamp or now
    return calculate_yield(
        position,
        exit_at,
        exit_apy,
        principal_usd=config.principal_usd,
        compounding_periods=config.compounding_periods,
    )


def portfolio_yield(
    positions: Iterable[Position],
    config: PortfolioConfig,
    pool_index: Mapping[str, PoolSnapshot] | None = None,
    now: datetime | None = None,
) -> PortfolioYield:
    """Aggregate simulated returns across positions.

    Active positions are valued at the current APY when ``pool_index`` has
    the pool, else at their entry APY.
    """
    pool_index = pool_index or {}
    now = now or datetime.now(timezone.utc)

    pairs = tuple(
        (p, _position_yield(p, pool_index, now, config)) for p in positions
    )
    if not pairs:
        return PortfolioYield()

    invested = sum(y.principal for _, y in pairs)
    value = sum(y.final_amount for _, y in pairs)
    returns = sum(y.total_return for _, y in pairs)
    return PortfolioYield(
        total_invested=invested,
        total_current_value=value,
        total_returns=returns,
        return_percentage=returns / invested * 100 if invested else 0.0,
        average_hold_days=sum(y.hold_days for _, y in pairs) / len(pairs),
        profitable_positions=sum(1 for _, y in pairs if y.is_profit),
        total_positions=len(pairs),
        position_yields=pairs,
    )


def yield_analytics(
    positions: Iterable[Position],
    config: PortfolioConfig,
    pool_index: Mapping[str, PoolSnapshot] | None = None,
    now: datetime | None = None,
) -> YieldAnalytics:
    """Overall/active/exited summaries, best and worst performer, monthly breakdown."""
    positions = list(positions)
    overall = portfolio_yield(positions, config, pool_index, now)
    active = portfolio_yield([p for p in positions if p.is_active], config, pool_index, now)
    exited = portfolio_yield(
        [p for p in positions if not p.is_active], config, pool_index, now
    )

    ranked = sorted(
        overall.position_yields, key=lambda pair: pair[1].return_percentage, reverse=True
    )

    monthly: dict[str, dict[str, float]] = defaultdict(
        lambda: {"invested": 0.0, "returns": 0.0, "positions": 0}
    )
    for position, result in overall.position_yields:
        bucket = monthly[position.entry_timestamp.strftime("%Y-%m")]
        bucket["invested"] += result.principal
        bucket["returns"] += result.total_return
        bucket["positions"] += 1

    return YieldAnalytics(
        overall=overall,
        active=active,
        exited=exited,
        best=ranked[0] if ranked else None,
        worst=ranked[-1] if ranked else None,
        monthly=dict(monthly),
    )


# ---------------------------------------------------------------------------
# Forward projections
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class PositionProjection:
    position: Position
    current: YieldResult
    projected: YieldResult
    projected_apy: float

    @property
    def additional_return(self) -> float:
        return self.projected.total_return - self.current.total_return


@dataclass(frozen=True)
class YieldProjection:
    days: int
    positions: tuple[PositionProjection, ...] = ()

    @property
    def total_current_value(self) -> float:
        return sum(p.current.final_amount for p in self.positions)

    @property
    def total_projected_value(self) -> float:
        return sum(p.projected.final_amount for p in self.positions)

    @property
    def total_additional_return(self) -> float:
        return sum(p.additional_return for p in self.positions)

    @property
    def average_daily_return(self) -> float:
        if not self.positions or self.days <= 0:
            return 0.0
        return self.total_additional_return / (len(self.positions) * self.days)


def project_future_yields(
    active: Iterable[Position],
    config: PortfolioConfig,
    pool_index: Mapping[str, PoolSnapshot],
    now: datetime | None = None,
    days: int = 30,
) -> YieldProjection:
    """Value active positions now and ``days`` ahead at their current APY.

    Positions whose pool is missing from ``pool_index`` are left out.
    """
    now = now or datetime.now(timezone.utc)
    horizon = now + timedelta(days=days)
    projections = []
    for position in active:
        current_pool = pool_index.get(position.pool_id)
        if current_pool is None:
            continue
        kwargs = dict(
            principal_usd=config.principal_usd,
            compounding_periods=config.compounding_periods,
        )
        projections.append(
            PositionProjection(
                position=position,
                current=calculate_yield(position, now, current_pool.apy, **kwargs),
                projected=calculate_yield(position, horizon, current_pool.apy, **kwargs),
                projected_apy=current_pool.apy,
            )
        )
    return YieldProjection(days=days, positions=tuple(projections))
