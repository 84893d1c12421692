"""Position lifecycle: exit checks, rebalancing and investment."""
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Mapping

from ..analysis import PoolClassifier, PoolScorer, PoolSelector, enrich_pool, validate_candidates
from ..analytics import calculate_yield, simulate_investment
from ..config import DetectionConfig, PortfolioConfig
from ..interfaces.storage import Storage
from ..models import ExitReason, PoolSnapshot, Position, ScoredPool, WatchlistEntry
from .journal import CycleJournal
from .watchlist import Watchlist

logger = logging.getLogger(__name__)


@dataclass
class InvestmentOutcome:
    opened: list[Position] = field(default_factory=list)
    rebalanced: list[Position] = field(default_factory=list)


class PortfolioManager:
    """Owns the active positions of the simulated portfolio."""

    def __init__(
        self,
        storage: Storage,
        config: PortfolioConfig,
        detection: DetectionConfig,
        chain: str,
        classifier: PoolClassifier,
        scorer: PoolScorer,
        selector: PoolSelector,
        watchlist: Watchlist,
        journal: CycleJournal,
    ) -> None:
        self._storage = storage
        self._config = config
        self._detection = detection
        self._chain = chain
        self._classifier = classifier
        self._scorer = scorer
        self._selector = selector
        self._watchlist = watchlist
        self._journal = journal

    # ------------------------------------------------------------------
    # Read views
    # ------------------------------------------------------------------

    def active_positions(self) -> list[Position]:
        return self._storage.list_active_positions()

    def exited_positions(self, limit: int = 50, offset: int = 0) -> list[Position]:
        return self._storage.list_exited_positions(limit, offset)

    # ------------------------------------------------------------------
    # Exits
    # ------------------------------------------------------------------

    def exit_reason(
        self, position: Position, current: PoolSnapshot, now: datetime
    ) -> ExitReason | None:
        """First matching exit rule: hold time, APY drop, then risk."""
        cfg = self._config
        held_hours = (now - position.entry_timestamp).total_seconds() / 3600
        if held_hours >= cfg.hold_duration_hours:
            return ExitReason.TIME_EXIT

        if position.entry_apy > 0:
            drop = (position.entry_apy - current.apy) / position.entry_apy
            if drop >= cfg.apy_drop_ratio:
                return ExitReason.APY_DROP

        if self._scorer.risk_score(current) > cfg.max_exit_risk_score:
            return ExitReason.RISK_EXIT
        return None

    def _close(
        self, position: Position, exit_apy: float, reason: ExitReason, now: datetime
    ) -> Position | None:
        """Close and persist ``position``; None when storage no longer holds it active."""
        result = calculate_yield(
            position,
            now,
            exit_apy,
            principal_usd=self._config.principal_usd,
            compounding_periods=self._config.compounding_periods,
        )
        closed = position.close(now, exit_apy, reason, result.total_return)
        if not self._storage.close_position(closed):
            return None
        self._journal.info(
            f"Exited {position.symbol} ({position.project}): {reason.value}",
            position_id=position.id,
            pool_id=position.pool_id,
            entry_apy=position.entry_apy,
            exit_apy=exit_apy,
            hold_days=round(result.hold_days, 4),
            profit_loss=round(result.total_return, 2),
        )
        return closed

    def check_for_exits(
        self, pool_index: Mapping[str, PoolSnapshot], now: datetime
    ) -> list[Position]:
        """Close every active position whose exit rules fire.

        Positions whose pool is missing from ``pool_index`` are kept as they
        are, with a warning.
        """
        exited: list[Position] = []
        for position in self._storage.list_active_positions():
            current = pool_index.get(position.pool_id)
            if current is None:
                self._journal.warn(
                    f"No current data for {position.symbol}; keeping position",
                    position_id=position.id,
                    pool_id=position.pool_id,
                )
                continue

            reason = self.exit_reason(position, current, now)
            if reason is None:
                continue
            closed = self._close(position, current.apy, reason, now)
            if closed is not None:
                exited.append(closed)
        return exited

    def require_active(self, position_id: int) -> Position:
        position = self._storage.get_position(position_id)
        if position is None:
            raise ValueError(f"Position {position_id} does not exist")
        if not position.is_active:
            raise ValueError(f"Position {position_id} is already exited")
        return position

    def manual_exit(
        self,
        position_id: int,
        pool_index: Mapping[str, PoolSnapshot] | None = None,
        now: datetime | None = None,
    ) -> Position:
        """Close one active position with reason ``manual``.

        Exit APY is the current one when ``pool_index`` has the pool, else
        the entry APY.
        """
        now = now or datetime.now(timezone.utc)
        position = self.require_active(position_id)

        current = (pool_index or {}).get(position.pool_id)
        exit_apy = current.apy if current is not None else position.entry_apy
        closed = self._close(position, exit_apy, ExitReason.MANUAL, now)
        if closed is None:
            raise ValueError(f"Position {position_id} is already exited")
        return closed

    # ------------------------------------------------------------------
    # Investment
    # ------------------------------------------------------------------

    def _rebalance(
        self,
        active: list[Position],
        candidates: list[ScoredPool],
        pool_index: Mapping[str, PoolSnapshot],
        now: datetime,
    ) -> tuple[list[Position], list[ScoredPool]]:
        """Swap the weakest holding for each clearly better candidate.

        ``active`` is updated in place. Returns the closed positions and
        the candidates that earned the freed slots.
        """
        margin = self._config.rebalance_margin_apy
        closed: list[Position] = []
        promoted: list[ScoredPool] = []
        for candidate in candidates:
            if not active or len(active) + len(promoted) < self._config.max_active_positions:
                break
            weakest = min(active, key=lambda p: p.entry_apy)
            if candidate.apy <= weakest.entry_apy + margin:
                continue

            current = pool_index.get(weakest.pool_id)
            exit_apy = current.apy if current is not None else weakest.entry_apy
            swapped = self._close(weakest, exit_apy, ExitReason.REBALANCED, now)
            active.remove(weakest)
            if swapped is not None:
                closed.append(swapped)
            promoted.append(candidate)
            logger.info(
                "Rebalancing %s (%.2f%%) into %s (%.2f%%)",
                weakest.symbol, weakest.entry_apy, candidate.pool.symbol, candidate.apy,
            )
        return closed, promoted

    def _open(self, candidate: ScoredPool, cycle_id: int | None, now: datetime) -> Position:
        pool = candidate.pool
        position = self._storage.add_position(
            Position(
                pool_id=pool.pool_id,
                symbol=pool.symbol,
                project=pool.project,
                entry_timestamp=now,
                entry_apy=pool.apy,
                entry_reward_apy=pool.apy_reward,
                entry_tvl=pool.tvl_usd,
                entry_risk_score=candidate.risk_score,
                is_new=candidate.is_new,
                detection_reason=candidate.detection_reason,
                cycle_id=cycle_id,
            )
        )
        self._watchlist.mark_invested(pool.pool_id, now)

        estimate = simulate_investment(
            pool.apy, 1, self._config.principal_usd, self._config.compounding_periods
        )
        self._journal.info(
            f"Invested in {pool.symbol} ({pool.project}) at {pool.apy:.2f}% APY",
            position_id=position.id,
            pool_id=pool.pool_id,
            risk_score=candidate.risk_score,
            profit_potential=round(candidate.profit_potential, 4),
            estimated_daily_return=round(estimate.total_return, 2),
        )
        return position

    def invest_from_watchlist(
        self,
        matured: list[WatchlistEntry],
        pool_index: Mapping[str, PoolSnapshot],
        now: datetime,
        cycle_id: int | None = None,
    ) -> InvestmentOutcome:
        """Open positions on matured watchlist pools that still qualify."""
        outcome = InvestmentOutcome()
        if not matured:
            logger.info("No matured watchlist pools yet")
            return outcome

        validated = validate_candidates(matured, pool_index, self._detection, self._chain)
        selected = self._selector.select(
            enrich_pool(pool, self._classifier, self._scorer, now) for pool in validated
        )

        active = self._storage.list_active_positions()
        held = {p.pool_id for p in active}
        candidates = [c for c in selected if c.pool_id not in held]
        if not candidates:
            return outcome

        promoted: list[ScoredPool] = []
        if len(active) >= self._config.max_active_positions:
            outcome.rebalanced, promoted = self._rebalance(active, candidates, pool_index, now)

        slots = self._config.max_active_positions - len(active)
        queue = promoted + [c for c in candidates if c not in promoted]
        for candidate in queue[: max(slots, 0)]:
            outcome.opened.append(self._open(candidate, cycle_id, now))

        logger.info(
            "Investment step: %d validated, %d selected, %d opened, %d rebalanced",
            len(validated), len(selected), len(outcome.opened), len(outcome.rebalanced),
        )
        return outcome
