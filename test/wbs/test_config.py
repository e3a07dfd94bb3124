"""
Tests for configuration resolution and logging setup.
"""

import logging
import sys
from pathlib import Path

import pytest

from wbs_manager.config import (
    DB_RELATIVE_PATH,
    DEFAULT_SERVER_NAME,
    configure_logging,
    load_config,
    resolve_database_path,
)


@pytest.fixture(autouse=True)
def clean_env(monkeypatch):
    for name in ("WBS_MCP_DATA_DIR", "WBS_MCP_DB_PATH", "WBS_MCP_LOG_LEVEL", "WBS_MCP_SERVER_NAME"):
        monkeypatch.delenv(name, raising=False)


class TestDatabasePath:

    def test_defaults_to_working_directory(self, monkeypatch, tmp_path):
        monkeypatch.chdir(tmp_path)
        assert resolve_database_path() == tmp_path / DB_RELATIVE_PATH

    def test_data_dir_from_environment(self, monkeypatch, tmp_path):
        monkeypatch.setenv("WBS_MCP_DATA_DIR", str(tmp_path))
        assert resolve_database_path() == tmp_path / "data" / "wbs.db"

    def test_db_path_wins_over_data_dir(self, monkeypatch, tmp_path):
        monkeypatch.setenv("WBS_MCP_DATA_DIR", str(tmp_path / "ignored"))
        monkeypatch.setenv("WBS_MCP_DB_PATH", str(tmp_path / "explicit.db"))
        assert resolve_database_path() == tmp_path / "explicit.db"

    def test_explicit_arguments_win_over_environment(self, monkeypatch, tmp_path):
        monkeypatch.setenv("WBS_MCP_DB_PATH", str(tmp_path / "env.db"))
        assert resolve_database_path(db_path=str(tmp_path / "arg.db")) == tmp_path / "arg.db"

    def test_blank_values_ignored(self, monkeypatch, tmp_path):
        monkeypatch.chdir(tmp_path)
        monkeypatch.setenv("WBS_MCP_DB_PATH", "   ")
        assert resolve_database_path(data_dir="") == tmp_path / DB_RELATIVE_PATH

    def test_user_home_expanded(self):
        assert resolve_database_path(db_path="~/wbs.db") == Path.home() / "wbs.db"


class TestLoadConfig:

    def test_defaults(self, monkeypatch, tmp_path):
        monkeypatch.chdir(tmp_path)
        config = load_config()
        assert config.log_level == "INFO"
        assert config.server_name == DEFAULT_SERVER_NAME

    def test_environment(self, monkeypatch, tmp_path):
        monkeypatch.setenv("WBS_MCP_LOG_LEVEL", "debug")
        monkeypatch.setenv("WBS_MCP_SERVER_NAME", "planner")
        config = load_config(data_dir=str(tmp_path))
        assert config.log_level == "DEBUG"
        assert config.server_name == "planner"
        assert config.database_path == tmp_path / DB_RELATIVE_PATH

    def test_argument_overrides_log_level(self, monkeypatch):
        monkeypatch.setenv("WBS_MCP_LOG_LEVEL", "ERROR")
        assert load_config(log_level="warning").log_level == "WARNING"


class TestConfigureLogging:

    def teardown_method(self):
        configure_logging("WARNING")

    def test_logs_to_stderr(self):
        configure_logging("DEBUG")
        root = logging.getLogger()
        assert root.level == logging.DEBUG
        assert any(getattr(handler, "stream", None) is sys.stderr for handler in root.handlers)

    def test_unknown_level_falls_back_to_info(self):
        configure_logging("CHATTY")
        assert logging.getLogger().level == logging.INFO
