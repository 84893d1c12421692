"""Shared test fixtures and sample data."""
from __future__ import annotations

import textwrap
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Callable

import pytest

from pool_farmer.config import (
    AppConfig,
    DetectionConfig,
    PortfolioConfig,
    ScoringConfig,
    SelectionConfig,
    WatchlistConfig,
)
from pool_farmer.models import PoolSnapshot, Position
from pool_farmer.storage import SQLiteStorage

NOW = datetime(2025, 3, 1, 12, 0, tzinfo=timezone.utc)
CHAIN = "Solana"


# ---------------------------------------------------------------------------
# Config fixtures
# ---------------------------------------------------------------------------


@pytest.fixture()
def now() -> datetime:
    return NOW


@pytest.fixture()
def app_config() -> AppConfig:
    return AppConfig()


@pytest.fixture()
def detection_config() -> DetectionConfig:
    return DetectionConfig()


@pytest.fixture()
def scoring_config() -> ScoringConfig:
    return ScoringConfig()


@pytest.fixture()
def selection_config() -> SelectionConfig:
    return SelectionConfig()


@pytest.fixture()
def watchlist_config() -> WatchlistConfig:
    return WatchlistConfig()


@pytest.fixture()
def portfolio_config() -> PortfolioConfig:
    return PortfolioConfig()


# ---------------------------------------------------------------------------
# Model fixtures
# ---------------------------------------------------------------------------


def build_pool(pool_id: str = "pool-1", **overrides: Any) -> PoolSnapshot:
    """An established, low-risk Solana pool that passes every detection floor."""
    fields: dict[str, Any] = {
        "pool_id": pool_id,
        "symbol": f"{pool_id.upper()}-USDC",
        "project": "orca",
        "chain": CHAIN,
        "apy": 50.0,
        "apy_base": 20.0,
        "apy_reward": 30.0,
        "reward_tokens": ("ORCA",),
        "tvl_usd": 2_000_000.0,
        "volume_usd_1d": 500_000.0,
    }
    fields.update(overrides)
    return PoolSnapshot(**fields)


@pytest.fixture()
def make_pool() -> Callable[..., PoolSnapshot]:
    return build_pool


def build_position(pool_id: str = "pool-1", **overrides: Any) -> Position:
    fields: dict[str, Any] = {
        "pool_id": pool_id,
        "symbol": f"{pool_id.upper()}-USDC",
        "project": "orca",
        "entry_timestamp": NOW,
        "entry_apy": 80.0,
        "entry_reward_apy": 50.0,
        "entry_tvl": 1_000_000.0,
        "entry_risk_score": 2,
    }
    fields.update(overrides)
    return Position(**fields)


@pytest.fixture()
def make_position() -> Callable[..., Position]:
    return build_position


# ---------------------------------------------------------------------------
# Storage fixture
# ---------------------------------------------------------------------------


@pytest.fixture()
def storage(tmp_path: Path) -> SQLiteStorage:
    return SQLiteStorage(tmp_path / "farmer.sqlite3")


# ---------------------------------------------------------------------------
# Config YAML fixture
# ---------------------------------------------------------------------------

SAMPLE_YAML = textwrap.dedent("""\
    engine:
      cycle_interval_minutes: 30
      target_chain: Solana
    source:
      url: "https://yields.example.com/pools"
      timeout_seconds: 5
      max_attempts: 2
    detection:
      min_apy: 40
      keywords: [NEW, Launch]
    selection:
      max_risk_score: 7
      max_per_token: 2
      max_total: 5
    watchlist:
      top_n: 10
      min_age_minutes: 30
    portfolio:
      max_active_positions: 5
      hold_duration_hours: 48
      apy_drop_ratio: 0.5
    storage:
      database_path: data/test.sqlite3
    notifications:
      telegram:
        enabled: true
        alert_bot_token: "tok1"
        log_bot_token: "${TEST_LOG_TOKEN}"
        chat_id: 999
""")


@pytest.fixture()
def sample_yaml_path(tmp_path: Path) -> Path:
    cfg_file = tmp_path / "config.yaml"
    cfg_file.write_text(SAMPLE_YAML)
    return cfg_file


# ---------------------------------------------------------------------------
# Sample DefiLlama records
# ---------------------------------------------------------------------------


@pytest.fixture()
def sample_raw_pool() -> dict:
    return {
        "pool": "8f3c-raydium-sol-usdc",
        "chain": "Solana",
        "project": "raydium-amm",
        "symbol": "SOL-USDC",
        "tvlUsd": 1_250_000,
        "apyBase": 12.5,
        "apyReward": 87.5,
        "apy": 100.0,
        "rewardTokens": ["RAY", "SOL"],
        "ilRisk": "yes",
        "exposure": "multi",
        "predictions": {"predictedClass": "Down", "predictedProbability": 71},
        "sigma": 4.2,
        "volumeUsd1d": 300_000,
        "tvlGrowthPct1d": 12.0,
    }
