"""Risk and profit-potential scoring.

Both scores are pure functions of one :class:`PoolSnapshot` and the
scoring configuration; nothing is carried between cycles.
"""
from __future__ import annotations

import math
from datetime import datetime

from ..config import ScoringConfig
from ..models import PoolSnapshot, ScoredPool
from .classifier import PoolClassifier

MAX_RISK_SCORE = 10


class PoolScorer:
    """Compute the additive risk score and the normalised profit potential."""

    def __init__(self, config: ScoringConfig) -> None:
        self._config = config

    def risk_score(self, pool: PoolSnapshot) -> int:
        """Additive heuristic clamped to [0, 10]."""
        cfg = self._config
        risk = 0
        if pool.apy > cfg.risk_apy_threshold:
            risk += 3
        if pool.tvl_usd < cfg.risk_low_tvl_threshold:
            risk += 2
        if pool.reward_ratio > cfg.high_reward_ratio_threshold:
            risk += 2
        if pool.exposure != "single":
            risk += 1
        if pool.predicted_down:
            risk += 2
        if pool.il_risk:
            risk += 1
        if pool.sigma > cfg.volatility_sigma_threshold:
            risk += 1
        return max(0, min(risk, MAX_RISK_SCORE))

    def profit_potential(self, pool: PoolSnapshot) -> float:
        """Weighted blend of APY, TVL depth and turnover.

        The APY term is not clamped: pools outside the reference window
        score outside [0, 1], which only affects relative ranking.
        """
        cfg = self._config
        normalized_apy = (pool.apy - cfg.apy_min) / (cfg.apy_max - cfg.apy_min)
        normalized_tvl = math.log10(max(pool.tvl_usd, 0.0) + 1) / math.log10(cfg.tvl_max)
        turnover = pool.volume_usd_1d / max(pool.tvl_usd, 1.0)
        return (
            0.6 * normalized_apy
            + 0.3 * normalized_tvl
            + 0.1 * min(turnover, cfg.volume_tvl_cap)
        )


def enrich_pool(
    pool: PoolSnapshot,
    classifier: PoolClassifier,
    scorer: PoolScorer,
    now: datetime | None = None,
) -> ScoredPool:
    classification = classifier.classify(pool, now)
    return ScoredPool(
        pool=pool,
        risk_score=scorer.risk_score(pool),
        profit_potential=scorer.profit_potential(pool),
        is_new=classification.is_new,
        detection_reason=classification.reason,
    )
