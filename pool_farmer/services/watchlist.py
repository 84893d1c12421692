"""Maturation watchlist for candidate pools.

Entries start as ``watching`` when a pool first shows up among the top
detection candidates, become ``invested`` when the portfolio opens a
position on them, and are deleted once they outlive the pruning horizon.
"""
from __future__ import annotations

import logging
from datetime import datetime, timedelta
from typing import Iterable

from ..config import WatchlistConfig
from ..interfaces.storage import Storage
from ..models import ScoredPool, WatchlistEntry, WatchStatus

logger = logging.getLogger(__name__)


class Watchlist:
    def __init__(self, storage: Storage, config: WatchlistConfig) -> None:
        self._storage = storage
        self._config = config

    @property
    def min_age(self) -> timedelta:
        return timedelta(minutes=self._config.min_age_minutes)

    @property
    def max_age(self) -> timedelta:
        return timedelta(days=self._config.max_age_days)

    def ingest(self, candidates: Iterable[ScoredPool], now: datetime) -> int:
        """Insert the first N candidates, in detection order, that are not already listed.

        Existing entries are left untouched apart from ``last_checked``.
        Returns the number of newly inserted entries.
        """
        top = list(candidates)[: self._config.top_n]
        added = 0
        seen: list[str] = []
        for scored in top:
            entry = WatchlistEntry(
                pool_id=scored.pool_id,
                symbol=scored.pool.symbol,
                project=scored.pool.project,
                first_seen=now,
                last_checked=now,
                is_new=scored.is_new,
            )
            if self._storage.add_watchlist_entry(entry):
                added += 1
                logger.info(
                    "Watching %s (%s) at %.2f%% APY: %s",
                    scored.pool.symbol, scored.pool.project, scored.apy,
                    scored.detection_reason,
                )
            else:
                seen.append(scored.pool_id)
        self._storage.touch_watchlist(seen, now)
        return added

    def prune(self, now: datetime, held_pool_ids: Iterable[str] = ()) -> int:
        """Delete entries older than the pruning horizon.

        Watching entries go unconditionally. Invested entries go once no
        active position holds the pool, so the pool can be detected again.
        """
        cutoff = now - self.max_age
        removed = self._storage.delete_watchlist_older_than(cutoff, WatchStatus.WATCHING)
        removed += self._storage.delete_watchlist_older_than(
            cutoff, WatchStatus.INVESTED, keep=frozenset(held_pool_ids)
        )
        if removed:
            logger.info("Pruned %d stale watchlist entries", removed)
        return removed

    def matured(self, now: datetime) -> list[WatchlistEntry]:
        """Watching entries observed for at least the minimum age."""
        cutoff = now - self.min_age
        return [
            entry
            for entry in self._storage.list_watchlist(WatchStatus.WATCHING)
            if entry.first_seen <= cutoff
        ]

    def mark_invested(self, pool_id: str, now: datetime) -> None:
        self._storage.mark_watchlist_invested(pool_id, now)

    def entries(self, status: WatchStatus | None = None) -> list[WatchlistEntry]:
        return self._storage.list_watchlist(status)

    def size(self) -> int:
        return len(self._storage.list_watchlist())
