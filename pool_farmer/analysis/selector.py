"""Candidate filtering, re-validation and diversified selection."""
from __future__ import annotations

import logging
from collections import defaultdict
from datetime import datetime
from typing import Iterable, Mapping

from ..config import DetectionConfig, SelectionConfig
from ..models import PoolSnapshot, ScoredPool, WatchlistEntry
from .classifier import PoolClassifier
from .scorer import PoolScorer, enrich_pool

logger = logging.getLogger(__name__)


def passes_floors(pool: PoolSnapshot, config: DetectionConfig, chain: str) -> bool:
    """Minimum APY / TVL / reward floors for an incentive-driven pool."""
    return (
        pool.chain == chain
        and pool.apy > config.min_apy
        and pool.tvl_usd > config.min_tvl
        and pool.apy_reward >= config.min_reward_apy
        and pool.reward_ratio >= config.min_reward_apy_ratio
    )


def detection_candidates(
    pools: Iterable[PoolSnapshot],
    classifier: PoolClassifier,
    scorer: PoolScorer,
    config: DetectionConfig,
    chain: str,
    now: datetime | None = None,
) -> list[ScoredPool]:
    """Score the incentive-driven pools; new pools first, each group by APY."""
    scored = [
        enrich_pool(pool, classifier, scorer, now)
        for pool in pools
        if passes_floors(pool, config, chain)
    ]
    new = sorted((p for p in scored if p.is_new), key=lambda p: p.apy, reverse=True)
    established = sorted(
        (p for p in scored if not p.is_new), key=lambda p: p.apy, reverse=True
    )
    logger.info(
        "Classified %d pools as new, %d as established", len(new), len(established)
    )
    return new + established


def validate_candidates(
    entries: Iterable[WatchlistEntry],
    pool_index: Mapping[str, PoolSnapshot],
    config: DetectionConfig,
    chain: str,
) -> list[PoolSnapshot]:
    """Cross-check matured watchlist entries against freshly fetched data.

    Entries missing from the fresh data or failing the floors are dropped
    silently. Result is sorted by APY, highest first.
    """
    validated: list[PoolSnapshot] = []
    for entry in entries:
        fresh = pool_index.get(entry.pool_id)
        if fresh is None:
            logger.debug("Watchlist pool %s not in fresh data", entry.symbol)
            continue
        if not passes_floors(fresh, config, chain):
            logger.debug("Watchlist pool %s no longer meets the floors", entry.symbol)
            continue
        validated.append(fresh)

    return sorted(validated, key=lambda p: p.apy, reverse=True)


class PoolSelector:
    """Risk ceiling, per-reward-token cap, then a global cap by profit potential."""

    def __init__(self, config: SelectionConfig) -> None:
        self._config = config

    def select(self, pools: Iterable[ScoredPool]) -> list[ScoredPool]:
        cfg = self._config
        pools = list(pools)
        acceptable = [p for p in pools if p.risk_score <= cfg.max_risk_score]

        groups: dict[str, list[ScoredPool]] = defaultdict(list)
        for pool in acceptable:
            groups[pool.pool.primary_reward_token].append(pool)

        survivors: list[ScoredPool] = []
        for group in groups.values():
            group.sort(key=lambda p: p.profit_potential, reverse=True)
            survivors.extend(group[: cfg.max_per_token])

        survivors.sort(key=lambda p: p.profit_potential, reverse=True)
        selected = survivors[: cfg.max_total]
        logger.info(
            "Selected %d of %d candidates (%d within risk ceiling, %d reward groups)",
            len(selected), len(pools), len(acceptable), len(groups),
        )
        return selected
