"""Integration tests for the DefiLlama source — HTTP, retries and chain filtering."""
from __future__ import annotations

import asyncio
import json
from unittest.mock import AsyncMock, MagicMock, patch

import aiohttp
import pytest

from pool_farmer.config import SourceConfig
from pool_farmer.errors import PoolSourceError
from pool_farmer.sources import DefiLlamaSource

MODULE = "pool_farmer.sources.defillama"


@pytest.fixture()
def source() -> DefiLlamaSource:
    return DefiLlamaSource(
        SourceConfig(url="https://yields.example.com/pools", max_attempts=3),
        chain="Solana",
    )


def _response(status: int = 200, payload: dict | None = None):
    mock_response = AsyncMock()
    mock_response.status = status
    mock_response.json = AsyncMock(return_value=payload or {})
    mock_response.__aenter__ = AsyncMock(return_value=mock_response)
    mock_response.__aexit__ = AsyncMock(return_value=None)
    return mock_response


def _session(*responses):
    """A mock aiohttp session whose successive GETs yield ``responses``."""
    mock_session = AsyncMock()
    mock_session.get = MagicMock(side_effect=list(responses))
    mock_session.__aenter__ = AsyncMock(return_value=mock_session)
    mock_session.__aexit__ = AsyncMock(return_value=None)
    return mock_session


PAYLOAD = {
    "status": "success",
    "data": [
        {"pool": "sol-1", "chain": "Solana", "symbol": "SOL-USDC", "project": "orca",
         "apy": 80, "apyReward": 50, "tvlUsd": 900000, "rewardTokens": ["ORCA"]},
        {"pool": "eth-1", "chain": "Ethereum", "symbol": "ETH-USDC", "project": "uniswap-v3",
         "apy": 12, "tvlUsd": 50000000},
        {"chain": "Solana", "symbol": "BROKEN", "apy": 999},
    ],
}


class TestFetchPools:
    @pytest.mark.asyncio
    async def test_filters_to_target_chain(self, source: DefiLlamaSource) -> None:
        mock_session = _session(_response(payload=PAYLOAD))

        with patch(f"{MODULE}.aiohttp.ClientSession", return_value=mock_session):
            with patch(f"{MODULE}.aiohttp.TCPConnector"):
                pools = await source.fetch_pools()

        assert [p.pool_id for p in pools] == ["sol-1"]
        assert pools[0].reward_tokens == ("ORCA",)

    @pytest.mark.asyncio
    async def test_fetch_pool_by_id(self, source: DefiLlamaSource) -> None:
        with patch(f"{MODULE}.aiohttp.ClientSession",
                   side_effect=[_session(_response(payload=PAYLOAD)),
                                _session(_response(payload=PAYLOAD))]):
            with patch(f"{MODULE}.aiohttp.TCPConnector"):
                found = await source.fetch_pool("sol-1")
                missing = await source.fetch_pool("eth-1")

        assert found is not None and found.apy == 80.0
        assert missing is None


class TestRetries:
    @pytest.mark.asyncio
    async def test_retries_after_server_error(self, source: DefiLlamaSource) -> None:
        sessions = [_session(_response(status=502)), _session(_response(payload=PAYLOAD))]
        sleep = AsyncMock()

        with patch(f"{MODULE}.aiohttp.ClientSession", side_effect=sessions):
            with patch(f"{MODULE}.aiohttp.TCPConnector"):
                with patch(f"{MODULE}.asyncio.sleep", sleep):
                    pools = await source.fetch_pools()

        assert len(pools) == 1
        sleep.assert_awaited_once_with(2.0)

    @pytest.mark.asyncio
    async def test_gives_up_after_max_attempts(self, source: DefiLlamaSource) -> None:
        failing = MagicMock(side_effect=aiohttp.ClientConnectionError("refused"))
        mock_session = AsyncMock()
        mock_session.get = failing
        mock_session.__aenter__ = AsyncMock(return_value=mock_session)
        mock_session.__aexit__ = AsyncMock(return_value=None)
        sleep = AsyncMock()

        with patch(f"{MODULE}.aiohttp.ClientSession", return_value=mock_session):
            with patch(f"{MODULE}.aiohttp.TCPConnector"):
                with patch(f"{MODULE}.asyncio.sleep", sleep):
                    with pytest.raises(PoolSourceError, match="after 3 attempts"):
                        await source.fetch_pools()

        assert failing.call_count == 3
        assert [c.args[0] for c in sleep.await_args_list] == [2.0, 4.0]

    @pytest.mark.asyncio
    async def test_timeout_is_retried(self, source: DefiLlamaSource) -> None:
        mock_session = AsyncMock()
        mock_session.get = MagicMock(side_effect=asyncio.TimeoutError())
        mock_session.__aenter__ = AsyncMock(return_value=mock_session)
        mock_session.__aexit__ = AsyncMock(return_value=None)

        with patch(f"{MODULE}.aiohttp.ClientSession", return_value=mock_session):
            with patch(f"{MODULE}.aiohttp.TCPConnector"):
                with patch(f"{MODULE}.asyncio.sleep", AsyncMock()):
                    with pytest.raises(PoolSourceError):
                        await source.fetch_pools()

    @pytest.mark.asyncio
    async def test_malformed_payload(self, source: DefiLlamaSource) -> None:
        sessions = [_session(_response(payload={"status": "error"})) for _ in range(3)]

        with patch(f"{MODULE}.aiohttp.ClientSession", side_effect=sessions):
            with patch(f"{MODULE}.aiohttp.TCPConnector"):
                with patch(f"{MODULE}.asyncio.sleep", AsyncMock()):
                    with pytest.raises(PoolSourceError, match="no 'data' array"):
                        await source.fetch_pools()

    @pytest.mark.asyncio
    async def test_undecodable_body_is_retried_then_raised(
        self, source: DefiLlamaSource
    ) -> None:
        def _bad_json():
            response = _response()
            response.json = AsyncMock(
                side_effect=json.JSONDecodeError("Expecting value", "<html>", 0)
            )
            return response

        sessions = [_session(_bad_json()) for _ in range(3)]

        with patch(f"{MODULE}.aiohttp.ClientSession", side_effect=sessions):
            with patch(f"{MODULE}.aiohttp.TCPConnector"):
                with patch(f"{MODULE}.asyncio.sleep", AsyncMock()) as mock_sleep:
                    with pytest.raises(PoolSourceError, match="after 3 attempts"):
                        await source.fetch_pools()

        assert mock_sleep.await_count == 2

    @pytest.mark.asyncio
    async def test_non_object_records_are_skipped(self, source: DefiLlamaSource) -> None:
        payload = {"data": ["oops", None, 42, *PAYLOAD["data"]]}
        mock_session = _session(_response(payload=payload))

        with patch(f"{MODULE}.aiohttp.ClientSession", return_value=mock_session):
            with patch(f"{MODULE}.aiohttp.TCPConnector"):
                pools = await source.fetch_pools()

        assert [p.pool_id for p in pools] == ["sol-1"]
