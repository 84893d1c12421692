"""DefiLlama yields client — fetches and parses the pool universe."""
from __future__ import annotations

import asyncio
import logging
import ssl
from datetime import datetime, timezone
from typing import Any

import aiohttp
import certifi

from ..config import SourceConfig
from ..errors import PoolSourceError
from ..models import PoolSnapshot

logger = logging.getLogger(__name__)


def _as_float(value: Any) -> float:
    try:
        return float(value) if value is not None else 0.0
    except (TypeError, ValueError):
        return 0.0


def _parse_timestamp(value: Any) -> datetime | None:
    """Parse ISO-8601 strings or epoch seconds/milliseconds into aware UTC datetimes."""
    if value is None or value == "":
        return None
    if isinstance(value, (int, float)):
        seconds = value / 1000 if value > 1e11 else value
        return datetime.fromtimestamp(seconds, tz=timezone.utc)
    try:
        parsed = datetime.fromisoformat(str(value).replace("Z", "+00:00"))
    except ValueError:
        logger.debug("Unparseable firstSeenAt value: %r", value)
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def parse_pool_record(item: dict[str, Any]) -> PoolSnapshot | None:
    """Convert one raw DefiLlama record into a :class:`PoolSnapshot`.

    Returns None for records without an identifier.
    """
    pool_id = item.get("pool") or item.get("id")
    if not pool_id:
        return None

    apy_base = _as_float(item.get("apyBase"))
    apy_reward = _as_float(item.get("apyReward"))
    apy = item.get("apy")
    apy = _as_float(apy) if apy is not None else apy_base + apy_reward

    predictions = item.get("predictions") or {}
    predicted_class = str(predictions.get("predictedClass") or "")

    return PoolSnapshot(
        pool_id=str(pool_id),
        symbol=str(item.get("symbol", "")),
        project=str(item.get("project", "")),
        chain=str(item.get("chain", "")),
        apy=apy,
        apy_base=apy_base,
        apy_reward=apy_reward,
        reward_tokens=tuple(str(t) for t in (item.get("rewardTokens") or ())),
        tvl_usd=_as_float(item.get("tvlUsd")),
        tvl_growth_pct_1d=_as_float(item.get("tvlGrowthPct1d")),
        sigma=_as_float(item.get("sigma")),
        il_risk=str(item.get("ilRisk", "")).lower() == "yes",
        predicted_down=predicted_class.lower().startswith("down"),
        exposure=str(item.get("exposure") or "single"),
        volume_usd_1d=_as_float(item.get("volumeUsd1d")),
        first_seen_at=_parse_timestamp(item.get("firstSeenAt")),
    )


class DefiLlamaSource:
    """Fetch the pool universe of one chain from the DefiLlama yields API."""

    def __init__(self, config: SourceConfig, chain: str) -> None:
        self.url = config.url
        self.timeout = config.timeout_seconds
        self.max_attempts = config.max_attempts
        self.backoff = config.retry_backoff_seconds
        self.chain = chain

    async def _get_json(self) -> Any:
        ssl_context = ssl.create_default_context(cafile=certifi.where())
        connector = aiohttp.TCPConnector(ssl=ssl_context)

        async with aiohttp.ClientSession(connector=connector) as session:
            async with session.get(
                self.url, timeout=aiohttp.ClientTimeout(total=self.timeout)
            ) as response:
                if response.status != 200:
                    raise PoolSourceError(
                        f"DefiLlama returned HTTP {response.status}"
                    )
                return await response.json()

    async def fetch_raw(self) -> list[dict[str, Any]]:
        """Fetch raw records, retrying with exponential backoff."""
        last_error: Exception | None = None
        for attempt in range(1, self.max_attempts + 1):
            try:
                payload = await self._get_json()
                data = payload.get("data") if isinstance(payload, dict) else None
                if not isinstance(data, list):
                    raise PoolSourceError("DefiLlama payload has no 'data' array")
                return data
            except (aiohttp.ClientError, asyncio.TimeoutError, ValueError, PoolSourceError) as e:
                last_error = e
                logger.warning(
                    "DefiLlama fetch attempt %d/%d failed: %s",
                    attempt, self.max_attempts, e or type(e).__name__,
                )
                if attempt < self.max_attempts:
                    await asyncio.sleep(self.backoff * 2 ** (attempt - 1))

        raise PoolSourceError(
            f"DefiLlama fetch failed after {self.max_attempts} attempts: {last_error}"
        )

    async def fetch_pools(self) -> list[PoolSnapshot]:
        """Fetch and parse all pools on the configured chain."""
        raw = await self.fetch_raw()
        pools: list[PoolSnapshot] = []
        for item in raw:
            if not isinstance(item, dict):
                logger.debug("Skipping non-object pool record: %r", item)
                continue
            if item.get("chain") != self.chain:
                continue
            snapshot = parse_pool_record(item)
            if snapshot is not None:
                pools.append(snapshot)

        logger.info(
            "Fetched %d %s pools (of %d total) from DefiLlama",
            len(pools), self.chain, len(raw),
        )
        return pools

    async def fetch_pool(self, pool_id: str) -> PoolSnapshot | None:
        """Return the current snapshot of a single pool, or None if absent."""
        for pool in await self.fetch_pools():
            if pool.pool_id == pool_id:
                return pool
        return None
