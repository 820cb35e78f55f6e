"""Tests for configuration loading and the command-line entry point."""

from __future__ import annotations

import logging

import pytest

from convergence.__main__ import build_parser, main
from convergence.config import ConfigError, EngineConfig
from convergence.datastore import DataStore

A = "0x" + "a1" * 20
B = "0x" + "b2" * 20


@pytest.fixture(autouse=True)
def restore_root_logging():
    root = logging.getLogger()
    handlers, level = list(root.handlers), root.level
    yield
    root.handlers[:] = handlers
    root.setLevel(level)


class TestEngineConfig:
    def test_env_override(self, monkeypatch) -> None:
        monkeypatch.setenv("CONVERGENCE_MIN_AGREEMENT", "0.7")
        monkeypatch.setenv("CONVERGENCE_EXPIRY_HOURS", "6")
        config = EngineConfig(_env_file=None)
        assert config.MIN_AGREEMENT == pytest.approx(0.7)
        assert config.EXPIRY_HOURS == pytest.approx(6.0)

    def test_defaults(self, config) -> None:
        assert config.MIN_AGREEMENT == pytest.approx(0.65)
        assert config.ELITE_MIN_PNL_7D == 25_000
        assert config.STRONG_MIXED == {"elite": 1, "good": 2}

    def test_missing_db_path_is_fatal(self) -> None:
        with pytest.raises(ConfigError):
            EngineConfig(_env_file=None, DB_PATH="").validate_required()

    def test_api_key_required_when_enforced(self) -> None:
        with pytest.raises(ConfigError):
            EngineConfig(_env_file=None, REQUIRE_API_KEY=True).validate_required()
        EngineConfig(_env_file=None, REQUIRE_API_KEY=True, API_KEY="k").validate_required()


class TestCli:
    def test_parser_requires_command(self) -> None:
        with pytest.raises(SystemExit):
            build_parser().parse_args([])

    def test_parser_backtest_options(self) -> None:
        args = build_parser().parse_args(["backtest", "--days", "30", "--max-signals", "50"])
        assert (args.command, args.days, args.max_signals) == ("backtest", 30, 50)

    def test_invalid_config_exits_nonzero(self, monkeypatch) -> None:
        monkeypatch.setenv("CONVERGENCE_DB_PATH", "")
        assert main(["sweep"]) == 1

    def test_seed_from_args_and_file(self, tmp_path, capsys) -> None:
        db_path = tmp_path / "cli.db"
        seed_file = tmp_path / "wallets.txt"
        seed_file.write_text(f"# tracked desks\n{B}\n\n")

        assert main(["--db-path", str(db_path), "seed", A, "--file", str(seed_file)]) == 0
        assert "seeded=2 of 2" in capsys.readouterr().out

        with DataStore(str(db_path)) as ds:
            assert set(ds.list_wallets_for_analysis()) == {A, B}

    def test_sweep_on_empty_store(self, tmp_path, capsys) -> None:
        assert main(["--db-path", str(tmp_path / "cli.db"), "sweep"]) == 0
        assert "expired=0" in capsys.readouterr().out

    def test_performance_on_empty_store(self, tmp_path, capsys) -> None:
        assert main(["--db-path", str(tmp_path / "cli.db"), "performance", "--days", "7"]) == 0
        assert "closed=0 of 0" in capsys.readouterr().out
