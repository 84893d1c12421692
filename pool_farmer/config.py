"""Configuration loader — reads config.yaml, interpolates env vars, validates."""
from __future__ import annotations

import logging
import os
import re
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import yaml
from dotenv import load_dotenv

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Frozen config dataclasses
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class EngineConfig:
    cycle_interval_minutes: int = 15
    target_chain: str = "Solana"


@dataclass(frozen=True)
class SourceConfig:
    url: str = "https://yields.llama.fi/pools"
    timeout_seconds: float = 10.0
    max_attempts: int = 3
    retry_backoff_seconds: float = 2.0
    cache_max_age_minutes: int = 60


@dataclass(frozen=True)
class DetectionConfig:
    # Floors re-applied to watchlist candidates before investing
    min_apy: float = 30.0
    min_tvl: float = 50_000.0
    min_reward_apy: float = 15.0
    min_reward_apy_ratio: float = 0.3
    # "New pool" signals
    new_pool_age_days: float = 14.0
    high_apy_threshold: float = 300.0
    medium_apy_threshold: float = 60.0
    low_tvl_threshold: float = 800_000.0
    high_reward_ratio_threshold: float = 0.7
    tvl_growth_pct_threshold: float = 30.0
    keywords: tuple[str, ...] = ("new", "launch", "genesis", "fresh")


@dataclass(frozen=True)
class ScoringConfig:
    risk_apy_threshold: float = 100.0
    risk_low_tvl_threshold: float = 100_000.0
    high_reward_ratio_threshold: float = 0.7
    volatility_sigma_threshold: float = 3.0
    # Fixed normalisation window for profit potential
    apy_min: float = 0.0
    apy_max: float = 1000.0
    tvl_max: float = 1_000_000_000.0
    volume_tvl_cap: float = 1.0


@dataclass(frozen=True)
class SelectionConfig:
    max_risk_score: int = 8
    max_per_token: int = 3
    max_total: int = 8


@dataclass(frozen=True)
class WatchlistConfig:
    top_n: int = 15
    min_age_minutes: int = 15
    max_age_days: int = 7


@dataclass(frozen=True)
class PortfolioConfig:
    max_active_positions: int = 8
    hold_duration_hours: float = 24.0
    apy_drop_ratio: float = 0.3
    max_exit_risk_score: int = 9
    rebalance_margin_apy: float = 20.0
    principal_usd: float = 1000.0
    compounding_periods: int = 365


@dataclass(frozen=True)
class StorageConfig:
    database_path: str = "pool_farmer.sqlite3"


@dataclass(frozen=True)
class TelegramConfig:
    enabled: bool = False
    alert_bot_token: str = ""
    log_bot_token: str = ""
    chat_id: str = ""


@dataclass(frozen=True)
class NotificationsConfig:
    telegram: TelegramConfig = field(default_factory=TelegramConfig)


@dataclass(frozen=True)
class AppConfig:
    engine: EngineConfig = field(default_factory=EngineConfig)
    source: SourceConfig = field(default_factory=SourceConfig)
    detection: DetectionConfig = field(default_factory=DetectionConfig)
    scoring: ScoringConfig = field(default_factory=ScoringConfig)
    selection: SelectionConfig = field(default_factory=SelectionConfig)
    watchlist: WatchlistConfig = field(default_factory=WatchlistConfig)
    portfolio: PortfolioConfig = field(default_factory=PortfolioConfig)
    storage: StorageConfig = field(default_factory=StorageConfig)
    notifications: NotificationsConfig = field(default_factory=NotificationsConfig)


# ---------------------------------------------------------------------------
# Env interpolation
# ---------------------------------------------------------------------------

_ENV_VAR_RE = re.compile(r"\$\{([^}]+)}")


def _interpolate_env(value: Any) -> Any:
    """Recursively replace ${VAR} references with environment variable values."""
    if isinstance(value, str):
        return _ENV_VAR_RE.sub(lambda m: os.environ.get(m.group(1), ""), value)
    if isinstance(value, dict):
        return {k: _interpolate_env(v) for k, v in value.items()}
    if isinstance(value, list):
        return [_interpolate_env(item) for item in value]
    return value


# ---------------------------------------------------------------------------
# YAML → dataclass builders
# ---------------------------------------------------------------------------


def _build_engine(raw: dict[str, Any]) -> EngineConfig:
    return EngineConfig(
        cycle_interval_minutes=int(raw.get("cycle_interval_minutes", 15)),
        target_chain=str(raw.get("target_chain", "Solana")),
    )


def _build_source(raw: dict[str, Any]) -> SourceConfig:
    return SourceConfig(
        url=raw.get("url", SourceConfig.url),
        timeout_seconds=float(raw.get("timeout_seconds", 10.0)),
        max_attempts=int(raw.get("max_attempts", 3)),
        retry_backoff_seconds=float(raw.get("retry_backoff_seconds", 2.0)),
        cache_max_age_minutes=int(raw.get("cache_max_age_minutes", 60)),
    )


def _build_detection(raw: dict[str, Any]) -> DetectionConfig:
    defaults = DetectionConfig()
    return DetectionConfig(
        min_apy=float(raw.get("min_apy", defaults.min_apy)),
        min_tvl=float(raw.get("min_tvl", defaults.min_tvl)),
        min_reward_apy=float(raw.get("min_reward_apy", defaults.min_reward_apy)),
        min_reward_apy_ratio=float(
            raw.get("min_reward_apy_ratio", defaults.min_reward_apy_ratio)
        ),
        new_pool_age_days=float(raw.get("new_pool_age_days", defaults.new_pool_age_days)),
        high_apy_threshold=float(
            raw.get("high_apy_threshold", defaults.high_apy_threshold)
        ),
        medium_apy_threshold=float(
            raw.get("medium_apy_threshold", defaults.medium_apy_threshold)
        ),
        low_tvl_threshold=float(raw.get("low_tvl_threshold", defaults.low_tvl_threshold)),
        high_reward_ratio_threshold=float(
            raw.get("high_reward_ratio_threshold", defaults.high_reward_ratio_threshold)
        ),
        tvl_growth_pct_threshold=float(
            raw.get("tvl_growth_pct_threshold", defaults.tvl_growth_pct_threshold)
        ),
        keywords=tuple(
            str(k).lower() for k in raw.get("keywords", defaults.keywords)
        ),
    )


def _build_scoring(raw: dict[str, Any]) -> ScoringConfig:
    defaults = ScoringConfig()
    return ScoringConfig(
        risk_apy_threshold=float(
            raw.get("risk_apy_threshold", defaults.risk_apy_threshold)
        ),
        risk_low_tvl_threshold=float(
            raw.get("risk_low_tvl_threshold", defaults.risk_low_tvl_threshold)
        ),
        high_reward_ratio_threshold=float(
            raw.get("high_reward_ratio_threshold", defaults.high_reward_ratio_threshold)
        ),
        volatility_sigma_threshold=float(
            raw.get("volatility_sigma_threshold", defaults.volatility_sigma_threshold)
        ),
        apy_min=float(raw.get("apy_min", defaults.apy_min)),
        apy_max=float(raw.get("apy_max", defaults.apy_max)),
        tvl_max=float(raw.get("tvl_max", defaults.tvl_max)),
        volume_tvl_cap=float(raw.get("volume_tvl_cap", defaults.volume_tvl_cap)),
    )


def _build_selection(raw: dict[str, Any]) -> SelectionConfig:
    return SelectionConfig(
        max_risk_score=int(raw.get("max_risk_score", 8)),
        max_per_token=int(raw.get("max_per_token", 3)),
        max_total=int(raw.get("max_total", 8)),
    )


def _build_watchlist(raw: dict[str, Any]) -> WatchlistConfig:
    return WatchlistConfig(
        top_n=int(raw.get("top_n", 15)),
        min_age_minutes=int(raw.get("min_age_minutes", 15)),
        max_age_days=int(raw.get("max_age_days", 7)),
    )


def _build_portfolio(raw: dict[str, Any]) -> PortfolioConfig:
    defaults = PortfolioConfig()
    return PortfolioConfig(
        max_active_positions=int(
            raw.get("max_active_positions", defaults.max_active_positions)
        ),
        hold_duration_hours=float(
            raw.get("hold_duration_hours", defaults.hold_duration_hours)
        ),
        apy_drop_ratio=float(raw.get("apy_drop_ratio", defaults.apy_drop_ratio)),
        max_exit_risk_score=int(
            raw.get("max_exit_risk_score", defaults.max_exit_risk_score)
        ),
        rebalance_margin_apy=float(
            raw.get("rebalance_margin_apy", defaults.rebalance_margin_apy)
        ),
        principal_usd=float(raw.get("principal_usd", defaults.principal_usd)),
        compounding_periods=int(
            raw.get("compounding_periods", defaults.compounding_periods)
        ),
    )


def _build_storage(raw: dict[str, Any]) -> StorageConfig:
    return StorageConfig(
        database_path=str(raw.get("database_path", StorageConfig.database_path)),
    )


def _build_notifications(raw: dict[str, Any]) -> NotificationsConfig:
    tg = raw.get("telegram", {})
    return NotificationsConfig(
        telegram=TelegramConfig(
            enabled=bool(tg.get("enabled", False)),
            alert_bot_token=tg.get("alert_bot_token", ""),
            log_bot_token=tg.get("log_bot_token", ""),
            chat_id=str(tg.get("chat_id", "")),
        ),
    )


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------


def load_config(config_path: str | Path | None = None) -> AppConfig:
    """Load and validate application configuration from YAML + .env.

    Args:
        config_path: Path to config.yaml. Defaults to ``config.yaml`` in the
            project root (one level up from this package).
    """
    load_dotenv()

    if config_path is None:
        config_path = Path(__file__).resolve().parent.parent / "config.yaml"
    config_path = Path(config_path)

    if not config_path.exists():
        raise FileNotFoundError(f"Config file not found: {config_path}")

    with open(config_path) as f:
        raw = yaml.safe_load(f) or {}

    raw = _interpolate_env(raw)

    cfg = AppConfig(
        engine=_build_engine(raw.get("engine", {})),
        source=_build_source(raw.get("source", {})),
        detection=_build_detection(raw.get("detection", {})),
        scoring=_build_scoring(raw.get("scoring", {})),
        selection=_build_selection(raw.get("selection", {})),
        watchlist=_build_watchlist(raw.get("watchlist", {})),
        portfolio=_build_portfolio(raw.get("portfolio", {})),
        storage=_build_storage(raw.get("storage", {})),
        notifications=_build_notifications(raw.get("notifications", {})),
    )

    _validate(cfg)
    logger.info("Configuration loaded from %s", config_path)
    return cfg


def _validate(cfg: AppConfig) -> None:
    """Raise on invalid configuration."""
    if not cfg.engine.target_chain:
        raise ValueError("A target chain must be configured")
    if cfg.engine.cycle_interval_minutes <= 0:
        raise ValueError("cycle_interval_minutes must be positive")

    if cfg.source.max_attempts < 1:
        raise ValueError("source.max_attempts must be at least 1")
    if cfg.source.timeout_seconds <= 0:
        raise ValueError("source.timeout_seconds must be positive")

    for name in ("min_reward_apy_ratio", "high_reward_ratio_threshold"):
        value = getattr(cfg.detection, name)
        if not 0 < value <= 1:
            raise ValueError(f"detection.{name} must be within (0, 1], got {value}")

    if cfg.scoring.apy_max <= cfg.scoring.apy_min:
        raise ValueError("scoring.apy_max must be greater than scoring.apy_min")
    if cfg.scoring.tvl_max <= 1:
        raise ValueError("scoring.tvl_max must be greater than 1")

    sel = cfg.selection
    if sel.max_per_token < 1 or sel.max_total < 1:
        raise ValueError("selection.max_per_token and max_total must be positive")
    if not 0 <= sel.max_risk_score <= 10:
        raise ValueError("selection.max_risk_score must be within [0, 10]")

    wl = cfg.watchlist
    if wl.top_n < 1:
        raise ValueError("watchlist.top_n must be positive")
    if wl.min_age_minutes >= wl.max_age_days * 24 * 60:
        raise ValueError("watchlist.min_age_minutes must be shorter than max_age_days")

    pf = cfg.portfolio
    if pf.max_active_positions < 1:
        raise ValueError("portfolio.max_active_positions must be positive")
    if pf.hold_duration_hours <= 0:
        raise ValueError("portfolio.hold_duration_hours must be positive")
    if not 0 < pf.apy_drop_ratio <= 1:
        raise ValueError("portfolio.apy_drop_ratio must be within (0, 1]")
    if pf.max_exit_risk_score <= sel.max_risk_score:
        raise ValueError(
            "portfolio.max_exit_risk_score must be higher than selection.max_risk_score"
        )
    if pf.principal_usd <= 0 or pf.compounding_periods < 1:
        raise ValueError("portfolio.principal_usd and compounding_periods must be positive")
