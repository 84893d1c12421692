"""Unit tests for root logger setup used by the CLI."""
from __future__ import annotations

import logging

import pytest

from pool_farmer.logging_setup import configure_logging


class TestConfigureLogging:
    @pytest.mark.parametrize(
        "name, expected",
        [("INFO", logging.INFO), ("DEBUG", logging.DEBUG), ("warning", logging.WARNING)],
    )
    def test_cli_level_names(self, name: str, expected: int) -> None:
        configure_logging(name)
        assert logging.getLogger().level == expected

    def test_unknown_level_falls_back_to_info(self) -> None:
        configure_logging("VERBOSE")
        assert logging.getLogger().level == logging.INFO

    def test_http_client_stays_quiet_in_debug(self) -> None:
        configure_logging("DEBUG")
        assert logging.getLogger("aiohttp").level == logging.WARNING

    def test_engine_records_reach_stdout(self, capsys: pytest.CaptureFixture[str]) -> None:
        configure_logging("INFO")
        logging.getLogger("pool_farmer.services.scheduler").info("Cycle 7 started")
        out = capsys.readouterr().out
        assert "pool_farmer.services.scheduler" in out
        assert "Cycle 7 started" in out
