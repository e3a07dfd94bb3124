"""
Test Suite for the Click CLI

Argument parsing, database bootstrap, YAML import and server startup.
The MCP server is patched out so nothing binds a port or reads stdin.
"""

import logging
import tempfile
from pathlib import Path
from unittest.mock import MagicMock, patch

import pytest
import yaml
from click.testing import CliRunner

from wbs_manager.cli import main
from wbs_manager.database import WbsDatabase


@pytest.fixture
def workdir():
    with tempfile.TemporaryDirectory(prefix="test_wbs_cli_") as tmp_dir:
        yield Path(tmp_dir)


@pytest.fixture
def runner():
    return CliRunner()


@pytest.fixture(autouse=True)
def restore_logging():
    """main() reconfigures the root logger onto CliRunner's stderr; undo that."""
    root = logging.getLogger()
    handlers, level = root.handlers[:], root.level
    yield
    root.handlers[:] = handlers
    root.setLevel(level)


class TestArgumentParsing:
    """Test CLI options."""

    def test_help(self, runner):
        result = runner.invoke(main, ["--help"])
        assert result.exit_code == 0
        assert "--mcp-transport" in result.output
        assert "--import-yaml" in result.output

    def test_invalid_transport(self, runner):
        result = runner.invoke(main, ["--mcp-transport", "carrier-pigeon"])
        assert result.exit_code != 0
        assert "carrier-pigeon" in result.output

    def test_missing_yaml_file(self, runner, workdir):
        result = runner.invoke(main, ["--data-dir", str(workdir), "--import-yaml", str(workdir / "nope.yaml")])
        assert result.exit_code != 0


class TestBootstrap:
    """Database creation, reset and import without serving."""

    def test_no_serve_creates_database(self, runner, workdir):
        result = runner.invoke(main, ["--data-dir", str(workdir), "--no-serve"])
        assert result.exit_code == 0, result.output
        assert (workdir / "data" / "wbs.db").exists()

    def test_db_path_overrides_data_dir(self, runner, workdir):
        target = workdir / "custom" / "tasks.db"
        result = runner.invoke(main, ["--data-dir", str(workdir), "--db-path", str(target), "--no-serve"])
        assert result.exit_code == 0, result.output
        assert target.exists()
        assert not (workdir / "data" / "wbs.db").exists()

    def test_import_yaml(self, runner, workdir):
        plan = workdir / "plan.yaml"
        plan.write_text(yaml.safe_dump({
            "artifacts": [{"title": "Spec doc"}],
            "tasks": [{"title": "Plan", "children": [{"title": "Step"}]}],
        }))
        db_file = workdir / "wbs.db"

        result = runner.invoke(main, ["--db-path", str(db_file), "--import-yaml", str(plan), "--no-serve"])
        assert result.exit_code == 0, result.output

        with WbsDatabase(str(db_file)) as database:
            assert database.fetchone("SELECT COUNT(1) AS n FROM tasks")["n"] == 2
            assert database.fetchone("SELECT COUNT(1) AS n FROM artifacts")["n"] == 1

    def test_import_failure_is_reported(self, runner, workdir):
        plan = workdir / "broken.yaml"
        plan.write_text("tasks: [unclosed")
        result = runner.invoke(main, ["--db-path", str(workdir / "wbs.db"), "--import-yaml", str(plan), "--no-serve"])
        assert result.exit_code == 1
        assert "Invalid YAML" in result.output

    def test_reset_wipes_existing_data(self, runner, workdir):
        db_file = workdir / "wbs.db"
        with WbsDatabase(str(db_file)) as database:
            database.execute(
                "INSERT INTO tasks (id, title, created_at, updated_at) VALUES ('old', 'Old', 'x', 'x')"
            )

        result = runner.invoke(main, ["--db-path", str(db_file), "--reset", "--no-serve"])
        assert result.exit_code == 0, result.output
        with WbsDatabase(str(db_file)) as database:
            assert database.fetchone("SELECT COUNT(1) AS n FROM tasks")["n"] == 0


class TestServing:
    """Server startup with the MCP server mocked."""

    def test_default_stdio(self, runner, workdir):
        server = MagicMock()
        with patch("wbs_manager.cli.create_mcp_server", return_value=server) as factory:
            result = runner.invoke(main, ["--data-dir", str(workdir)])
        assert result.exit_code == 0, result.output
        factory.assert_called_once()
        server.start_server_sync.assert_called_once_with(transport="stdio", host="127.0.0.1", port=8765)

    def test_http_transport_options(self, runner, workdir):
        server = MagicMock()
        with patch("wbs_manager.cli.create_mcp_server", return_value=server):
            result = runner.invoke(main, [
                "--data-dir", str(workdir), "--mcp-transport", "http", "--host", "0.0.0.0", "--port", "9100",
            ])
        assert result.exit_code == 0, result.output
        server.start_server_sync.assert_called_once_with(transport="http", host="0.0.0.0", port=9100)

    def test_keyboard_interrupt_exits_cleanly(self, runner, workdir):
        server = MagicMock()
        server.start_server_sync.side_effect = KeyboardInterrupt
        with patch("wbs_manager.cli.create_mcp_server", return_value=server):
            result = runner.invoke(main, ["--data-dir", str(workdir)])
        assert result.exit_code == 0
