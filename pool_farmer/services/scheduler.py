"""Cycle orchestration — detection, watchlist, exits and investment, once per tick."""
from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Callable

from ..analysis import PoolClassifier, PoolScorer, PoolSelector, detection_candidates
from ..analytics import portfolio_yield, project_future_yields, yield_analytics
from ..config import AppConfig
from ..errors import PoolSourceError, StorageError
from ..interfaces.notifier import Notifier
from ..interfaces.pool_source import PoolSource
from ..interfaces.storage import Storage
from ..models import PoolSnapshot, Position
from .journal import CycleJournal
from .portfolio import PortfolioManager
from .watchlist import Watchlist

logger = logging.getLogger(__name__)

PROJECTION_DAYS = (7, 30, 90)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
class CycleReport:
    cycle_id: int | None
    started_at: datetime
    pools_observed: int = 0
    new_pools: int = 0
    watchlist_added: int = 0
    watchlist_pruned: int = 0
    exits: list[Position] = field(default_factory=list)
    opened: list[Position] = field(default_factory=list)
    rebalanced: list[Position] = field(default_factory=list)
    active_positions: int = 0
    watchlist_size: int = 0
    degraded: bool = False
    failed: bool = False
    errors: list[str] = field(default_factory=list)
    duration_seconds: float = 0.0


class CycleScheduler:
    """Runs engine cycles one at a time, on demand or on a fixed cadence."""

    def __init__(
        self,
        config: AppConfig,
        storage: Storage,
        source: PoolSource,
        notifiers: list[Notifier] | None = None,
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        self._config = config
        self._storage = storage
        self._source = source
        self._notifiers = notifiers or []
        self._clock = clock
        self._lock = asyncio.Lock()

        self._classifier = PoolClassifier(config.detection)
        self._scorer = PoolScorer(config.scoring)
        self.journal = CycleJournal(storage, clock)
        self.watchlist = Watchlist(storage, config.watchlist)
        self.portfolio = PortfolioManager(
            storage,
            config.portfolio,
            config.detection,
            config.engine.target_chain,
            self._classifier,
            self._scorer,
            PoolSelector(config.selection),
            self.watchlist,
            self.journal,
        )

        self._last_pools: dict[str, PoolSnapshot] = {}
        self._last_fetch_at: datetime | None = None

    # ------------------------------------------------------------------
    # Notification dispatch
    # ------------------------------------------------------------------

    async def _send_log(self, message: str, silent: bool = True) -> None:
        for notifier in self._notifiers:
            try:
                await notifier.send_log(message, silent=silent)
            except Exception as e:
                logger.error("Notifier send_log failed: %s", e)

    async def _send_alert(self, message: str, subject: str = "") -> None:
        for notifier in self._notifiers:
            try:
                await notifier.send_alert(message, subject=subject)
            except Exception as e:
                logger.error("Notifier send_alert failed: %s", e)

    @staticmethod
    def _format_exit(position: Position) -> str:
        icon = "🟢" if position.profit_loss > 0 else "🔴"
        return (
            f"{icon} {position.symbol} · {position.project}\n"
            f"\n"
            f"Reason: {position.exit_reason.value if position.exit_reason else '—'}\n"
            f"APY: {position.entry_apy:.2f}% → {position.exit_apy or 0:.2f}%\n"
            f"P/L: ${position.profit_loss:,.2f}\n"
            f"\n"
            f"{position.exit_timestamp:%Y-%m-%d %H:%M:%S} UTC"
        )

    @staticmethod
    def _format_summary(report: CycleReport) -> str:
        status = "⚠️ degraded" if report.degraded else "✅ ok"
        if report.failed:
            status = "🚨 failed"
        return (
            f"🔄 Cycle {report.cycle_id} · {status}\n"
            f"\n"
            f"Pools: {report.pools_observed} ({report.new_pools} new)\n"
            f"Watchlist: +{report.watchlist_added} / -{report.watchlist_pruned}"
            f" · {report.watchlist_size} total\n"
            f"Exits: {len(report.exits)} · Rebalanced: {len(report.rebalanced)}"
            f" · Opened: {len(report.opened)}\n"
            f"Active positions: {report.active_positions}\n"
            f"\n"
            f"{report.started_at:%Y-%m-%d %H:%M:%S} UTC"
        )

    # ------------------------------------------------------------------
    # Cycle
    # ------------------------------------------------------------------

    async def _fetch_universe(self, now: datetime) -> dict[str, PoolSnapshot]:
        pools = await self._source.fetch_pools()
        index = {pool.pool_id: pool for pool in pools}
        self._last_pools = index
        self._last_fetch_at = now
        return index

    def _cached_universe(self, now: datetime) -> dict[str, PoolSnapshot] | None:
        max_age = timedelta(minutes=self._config.source.cache_max_age_minutes)
        if self._last_fetch_at is None or now - self._last_fetch_at > max_age:
            return None
        return self._last_pools

    def _phase_failed(self, report: CycleReport, phase: str, error: StorageError) -> None:
        report.failed = True
        report.errors.append(f"{phase}: {error}")
        self.journal.error(f"{phase} failed: {error}")

    async def run_cycle(self) -> CycleReport | None:
        """Run one cycle; returns None when a previous cycle is still in flight."""
        if self._lock.locked():
            logger.warning("Previous cycle still running; skipping this tick")
            return None
        async with self._lock:
            return await self._run_cycle()

    async def _run_cycle(self) -> CycleReport:
        started = time.monotonic()
        now = self._clock()
        cfg = self._config

        try:
            cycle = self._storage.start_cycle(now)
        except StorageError as e:
            logger.error("Cannot start cycle: %s", e)
            report = CycleReport(cycle_id=None, started_at=now, failed=True, errors=[str(e)])
            return report

        report = CycleReport(cycle_id=cycle.id, started_at=now)
        self.journal.cycle_id = cycle.id
        self.journal.info(f"Cycle {cycle.id} started")

        try:
            pool_index = await self._fetch_universe(now)
        except PoolSourceError as e:
            report.degraded = True
            self.journal.warn(
                f"Pool data unavailable, skipping detection, exits and investment: {e}"
            )
            pool_index = None

        # Detection and watchlist ingest
        if pool_index is not None:
            candidates = detection_candidates(
                pool_index.values(),
                self._classifier,
                self._scorer,
                cfg.detection,
                cfg.engine.target_chain,
                now,
            )
            report.pools_observed = len(pool_index)
            report.new_pools = sum(1 for c in candidates if c.is_new)
            try:
                report.watchlist_added = self.watchlist.ingest(candidates, now)
            except StorageError as e:
                self._phase_failed(report, "Watchlist ingest", e)

        try:
            held = [p.pool_id for p in self.portfolio.active_positions()]
            report.watchlist_pruned = self.watchlist.prune(now, held)
        except StorageError as e:
            self._phase_failed(report, "Watchlist pruning", e)

        # Exits are decided on fresh data only; positions are kept as they are otherwise
        if pool_index is None:
            self.journal.warn("No current pool data; exit checks skipped, positions kept")
        else:
            try:
                report.exits = self.portfolio.check_for_exits(pool_index, now)
            except StorageError as e:
                self._phase_failed(report, "Exit checks", e)

        if pool_index is not None:
            try:
                outcome = self.portfolio.invest_from_watchlist(
                    self.watchlist.matured(now), pool_index, now, cycle.id
                )
                report.opened = outcome.opened
                report.rebalanced = outcome.rebalanced
            except StorageError as e:
                self._phase_failed(report, "Investment", e)

        try:
            active = self.portfolio.active_positions()
            report.active_positions = len(active)
            report.watchlist_size = self.watchlist.size()
            self._storage.finish_cycle(
                cycle.id,
                total_pools_found=report.pools_observed,
                new_pools_found=report.new_pools,
                active_positions=report.active_positions,
                watchlist_size=report.watchlist_size,
            )
            # Valuation only: last-known APYs stand in for a failed fetch
            valuation_index = (
                pool_index if pool_index is not None else self._cached_universe(now)
            )
            summary = portfolio_yield(active, cfg.portfolio, valuation_index, now)
            self.journal.info(
                f"Cycle {cycle.id} finished: {report.active_positions} active positions, "
                f"{report.watchlist_size} watched pools",
                unrealized_returns=round(summary.total_returns, 2),
                exits=len(report.exits),
                opened=len(report.opened),
                rebalanced=len(report.rebalanced),
                degraded=report.degraded,
            )
        except StorageError as e:
            self._phase_failed(report, "Cycle summary", e)

        report.duration_seconds = time.monotonic() - started
        for position in report.exits + report.rebalanced:
            await self._send_alert(
                self._format_exit(position), subject=f"Position exited: {position.symbol}"
            )
        await self._send_log(self._format_summary(report))
        return report

    # ------------------------------------------------------------------
    # Continuous operation
    # ------------------------------------------------------------------

    async def run_forever(
        self,
        interval_minutes: int | None = None,
        stop_event: asyncio.Event | None = None,
    ) -> None:
        """Run a cycle now and then on a fixed cadence until ``stop_event`` is set.

        Ticks missed because a cycle overran are dropped, not queued.
        """
        interval = (interval_minutes or self._config.engine.cycle_interval_minutes) * 60
        stop_event = stop_event or asyncio.Event()
        loop = asyncio.get_running_loop()
        logger.info("Starting cycle loop (every %d minutes)", interval // 60)

        next_tick = loop.time()
        while not stop_event.is_set():
            try:
                await self.run_cycle()
            except Exception as e:
                logger.exception("Unexpected error in cycle: %s", e)

            next_tick += interval
            behind = loop.time() - next_tick
            if behind > 0:
                missed = int(behind // interval) + 1
                logger.warning("Cycle overran; skipping %d tick(s)", missed)
                next_tick += missed * interval

            try:
                await asyncio.wait_for(stop_event.wait(), timeout=next_tick - loop.time())
            except asyncio.TimeoutError:
                pass
        logger.info("Cycle loop stopped")

    # ------------------------------------------------------------------
    # Manual operations
    # ------------------------------------------------------------------

    async def manual_exit(self, position_id: int) -> Position:
        """Close one active position at its current APY and send the exit alert.

        Falls back to last-known pool data, then to the entry APY, when the
        fetch fails. Raises ``ValueError`` for unknown or exited positions.
        """
        async with self._lock:
            self.portfolio.require_active(position_id)
            now = self._clock()
            try:
                pool_index = await self._fetch_universe(now)
            except PoolSourceError as e:
                logger.warning("Pricing manual exit without fresh pool data: %s", e)
                pool_index = self._cached_universe(now) or {}

            self.journal.cycle_id = None
            position = self.portfolio.manual_exit(position_id, pool_index, now)

        await self._send_alert(
            self._format_exit(position), subject=f"Position exited: {position.symbol}"
        )
        return position

    # ------------------------------------------------------------------
    # Reporting
    # ------------------------------------------------------------------

    async def generate_report(self) -> str:
        """Build the yield report over all positions and send it as an alert."""
        now = self._clock()
        try:
            pool_index = await self._fetch_universe(now)
        except PoolSourceError as e:
            logger.warning("Reporting with entry APYs, pool data unavailable: %s", e)
            pool_index = {}

        positions = self._storage.list_positions()
        analytics = yield_analytics(positions, self._config.portfolio, pool_index, now)
        lines = [
            "📋 Yield Report",
            "",
            f"Positions: {analytics.overall.total_positions}"
            f" ({analytics.active.total_positions} active,"
            f" {analytics.exited.total_positions} exited)",
            f"Invested: ${analytics.overall.total_invested:,.2f}",
            f"Returns: ${analytics.overall.total_returns:,.2f}"
            f" ({analytics.overall.return_percentage:.2f}%)",
            f"Realized: ${analytics.exited.total_returns:,.2f}"
            f" · Win rate: {analytics.exited.win_rate:.1f}%",
            f"Avg hold: {analytics.overall.average_hold_days:.2f} days",
        ]
        if analytics.best is not None and analytics.worst is not None:
            best, best_yield = analytics.best
            worst, worst_yield = analytics.worst
            lines += [
                "",
                f"Best: {best.symbol} {best_yield.return_percentage:.2f}%",
                f"Worst: {worst.symbol} {worst_yield.return_percentage:.2f}%",
            ]
        for month, bucket in sorted(analytics.monthly.items()):
            lines.append(
                f"{month}: {int(bucket['positions'])} positions,"
                f" ${bucket['returns']:,.2f}"
            )

        active = [p for p in positions if p.is_active]
        if active:
            lines.append("")
            for days in PROJECTION_DAYS:
                projection = project_future_yields(
                    active, self._config.portfolio, pool_index, now, days
                )
                lines.append(
                    f"{days}-day projection: ${projection.total_current_value:,.2f}"
                    f" → ${projection.total_projected_value:,.2f}"
                    f" (+${projection.total_additional_return:,.2f})"
                )
        lines += ["", f"{now:%Y-%m-%d %H:%M:%S} UTC"]

        report = "\n".join(lines)
        await self._send_alert(report)
        logger.info("Yield report generated")
        return report
