"""Unit tests for the maturation watchlist."""
from __future__ import annotations

from datetime import timedelta

import pytest

from pool_farmer.analysis import PoolClassifier, PoolScorer, detection_candidates
from pool_farmer.config import WatchlistConfig
from pool_farmer.models import ScoredPool, WatchStatus
from pool_farmer.services import Watchlist
from pool_farmer.storage import SQLiteStorage


def _candidate(make_pool, pool_id: str, apy: float) -> ScoredPool:
    return ScoredPool(
        pool=make_pool(pool_id, apy=apy),
        risk_score=1,
        profit_potential=apy / 1000,
        is_new=True,
        detection_reason="tvl growth",
    )


@pytest.fixture()
def watchlist(storage: SQLiteStorage) -> Watchlist:
    return Watchlist(storage, WatchlistConfig(top_n=3, min_age_minutes=15, max_age_days=7))


class TestIngest:
    def test_inserts_first_n_in_detection_order(
        self, watchlist: Watchlist, make_pool, now
    ) -> None:
        candidates = [_candidate(make_pool, f"p{i}", 90.0 - i * 10) for i in range(5)]
        added = watchlist.ingest(candidates, now)

        assert added == 3
        assert {e.pool_id for e in watchlist.entries()} == {"p0", "p1", "p2"}
        assert all(e.status is WatchStatus.WATCHING and e.is_new for e in watchlist.entries())

    def test_new_pool_keeps_its_slot_over_higher_apy_pools(
        self, storage: SQLiteStorage, app_config, make_pool, now
    ) -> None:
        pools = [
            make_pool("fresh", apy=45.0, symbol="FRESH-LAUNCH-USDC"),
            make_pool("est1", apy=90.0),
            make_pool("est2", apy=95.0),
        ]
        candidates = detection_candidates(
            pools,
            PoolClassifier(app_config.detection),
            PoolScorer(app_config.scoring),
            app_config.detection,
            app_config.engine.target_chain,
            now,
        )
        watchlist = Watchlist(storage, WatchlistConfig(top_n=2))

        watchlist.ingest(candidates, now)

        assert {e.pool_id for e in watchlist.entries()} == {"fresh", "est2"}

    def test_existing_entries_are_not_reset(self, watchlist: Watchlist, make_pool, now) -> None:
        watchlist.ingest([_candidate(make_pool, "p1", 80.0)], now)
        later = now + timedelta(hours=2)
        added = watchlist.ingest([_candidate(make_pool, "p1", 90.0)], later)

        (entry,) = watchlist.entries()
        assert added == 0
        assert entry.first_seen == now
        assert entry.last_checked == later


class TestMatured:
    def test_min_age_gate(self, watchlist: Watchlist, make_pool, now) -> None:
        watchlist.ingest([_candidate(make_pool, "p1", 80.0)], now)
        assert watchlist.matured(now + timedelta(minutes=14)) == []
        assert [e.pool_id for e in watchlist.matured(now + timedelta(minutes=15))] == ["p1"]

    def test_invested_entries_are_not_matured(
        self, watchlist: Watchlist, make_pool, now
    ) -> None:
        watchlist.ingest([_candidate(make_pool, "p1", 80.0)], now)
        watchlist.mark_invested("p1", now + timedelta(minutes=20))
        assert watchlist.matured(now + timedelta(hours=1)) == []
        assert watchlist.entries(WatchStatus.INVESTED)[0].pool_id == "p1"


class TestPrune:
    def test_stale_watching_entries_removed(
        self, watchlist: Watchlist, make_pool, now
    ) -> None:
        watchlist.ingest([_candidate(make_pool, "old", 80.0)], now)
        watchlist.ingest([_candidate(make_pool, "fresh", 80.0)], now + timedelta(days=6))

        removed = watchlist.prune(now + timedelta(days=7, minutes=1))

        assert removed == 1
        assert [e.pool_id for e in watchlist.entries()] == ["fresh"]

    def test_entry_at_horizon_is_kept(self, watchlist: Watchlist, make_pool, now) -> None:
        watchlist.ingest([_candidate(make_pool, "edge", 80.0)], now)
        assert watchlist.prune(now + timedelta(days=7)) == 0

    def test_invested_entries_kept_while_held(
        self, watchlist: Watchlist, make_pool, now
    ) -> None:
        watchlist.ingest([_candidate(make_pool, "held", 80.0)], now)
        watchlist.ingest([_candidate(make_pool, "sold", 70.0)], now)
        watchlist.mark_invested("held", now)
        watchlist.mark_invested("sold", now)

        removed = watchlist.prune(now + timedelta(days=8), held_pool_ids=["held"])

        assert removed == 1
        assert [e.pool_id for e in watchlist.entries()] == ["held"]

    def test_status_never_reverts_to_watching(
        self, watchlist: Watchlist, make_pool, now
    ) -> None:
        watchlist.ingest([_candidate(make_pool, "p1", 80.0)], now)
        watchlist.mark_invested("p1", now)
        watchlist.ingest([_candidate(make_pool, "p1", 80.0)], now + timedelta(hours=1))
        assert watchlist.entries()[0].status is WatchStatus.INVESTED
