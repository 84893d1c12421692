"""New-vs-established pool classification — pure heuristics, no I/O."""
from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timezone

from ..config import DetectionConfig
from ..models import PoolSnapshot


@dataclass(frozen=True)
class Classification:
    is_new: bool
    reason: str


ESTABLISHED = Classification(is_new=False, reason="established")


class PoolClassifier:
    """Flag a pool as "new" when any single weak signal fires.

    Signals are checked in a fixed order and the first one that fires is
    reported as the reason. False positives are tolerated; candidates are
    re-validated against live data before any position is opened.
    """

    def __init__(self, config: DetectionConfig) -> None:
        self._config = config

    def classify(self, pool: PoolSnapshot, now: datetime | None = None) -> Classification:
        cfg = self._config
        now = now or datetime.now(timezone.utc)

        if pool.first_seen_at is not None:
            age_days = (now - pool.first_seen_at).total_seconds() / 86400
            if age_days < cfg.new_pool_age_days:
                return Classification(True, f"first seen {age_days:.1f}d ago")

        if pool.apy > cfg.high_apy_threshold:
            return Classification(True, f"APY {pool.apy:.1f}% above {cfg.high_apy_threshold:g}%")

        if pool.tvl_usd < cfg.low_tvl_threshold and pool.apy > cfg.medium_apy_threshold:
            return Classification(True, "low TVL with elevated APY")

        if (
            pool.reward_ratio > cfg.high_reward_ratio_threshold
            and pool.apy > cfg.medium_apy_threshold
        ):
            return Classification(True, f"reward-driven APY ({pool.reward_ratio:.0%} rewards)")

        if pool.tvl_growth_pct_1d > cfg.tvl_growth_pct_threshold:
            return Classification(True, f"TVL grew {pool.tvl_growth_pct_1d:.1f}% in 1d")

        keyword = self._matching_keyword(pool)
        if keyword:
            return Classification(True, f"keyword '{keyword}'")

        return ESTABLISHED

    def _matching_keyword(self, pool: PoolSnapshot) -> str | None:
        project = pool.project.lower()
        symbol = pool.symbol.lower()
        for keyword in self._config.keywords:
            if keyword in project or keyword in symbol:
                return keyword
        return None
