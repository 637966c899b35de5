from pathlib import Path

import pytest

from focus_ledger.config import DEFAULT_DB_PATH, DEFAULT_PORT, DEFAULT_TICK_SECONDS, LedgerConfig, get_config

ENV_VARS = ("FOCUS_LEDGER_DB", "FOCUS_LEDGER_HOST", "FOCUS_LEDGER_PORT", "FOCUS_LEDGER_TICK_SECONDS")


def clear_env(monkeypatch):
    for name in ENV_VARS:
        monkeypatch.delenv(name, raising=False)


class TestGetConfig:
    def test_defaults(self, monkeypatch):
        clear_env(monkeypatch)
        config = get_config()
        assert config.db_path == DEFAULT_DB_PATH
        assert config.host == "127.0.0.1"
        assert config.port == DEFAULT_PORT
        assert config.tick_seconds == DEFAULT_TICK_SECONDS

    def test_from_env(self, monkeypatch, tmp_path):
        clear_env(monkeypatch)
        monkeypatch.setenv("FOCUS_LEDGER_DB", str(tmp_path / "x.db"))
        monkeypatch.setenv("FOCUS_LEDGER_HOST", "0.0.0.0")
        monkeypatch.setenv("FOCUS_LEDGER_PORT", "9000")
        monkeypatch.setenv("FOCUS_LEDGER_TICK_SECONDS", "0.5")
        config = get_config()
        assert config.db_path == Path(tmp_path / "x.db")
        assert config.host == "0.0.0.0"
        assert config.port == 9000
        assert config.tick_seconds == 0.5

    def test_malformed_numbers_fall_back(self, monkeypatch):
        clear_env(monkeypatch)
        monkeypatch.setenv("FOCUS_LEDGER_PORT", "eighty")
        monkeypatch.setenv("FOCUS_LEDGER_TICK_SECONDS", "-1")
        config = get_config()
        assert config.port == DEFAULT_PORT
        assert config.tick_seconds == DEFAULT_TICK_SECONDS


class TestBaseUrl:
    @pytest.mark.parametrize("host", ["0.0.0.0", "::", ""])
    def test_wildcard_bind_is_reached_over_loopback(self, host):
        assert LedgerConfig(host=host, port=9000).base_url == "http://127.0.0.1:9000"

    def test_named_host(self):
        assert LedgerConfig(host="studio.local").base_url == f"http://studio.local:{DEFAULT_PORT}"
