"""Tests for CLI main module."""

from unittest.mock import MagicMock, patch

import pytest
import typer
from typer.testing import CliRunner

from scvmm.cli.main import _run_cli_command, app
from scvmm.controller.store import StoreError


runner = CliRunner()


@patch("scvmm.cli.main.console")
def test_run_cli_command_success(mock_console):
    """Test the CLI command runner on a successful execution."""
    mock_handler = MagicMock(return_value=True)

    _run_cli_command(mock_handler, "store", "default", name="web")

    mock_handler.assert_called_once_with("store", "default", name="web")
    mock_console.print.assert_not_called()


@patch("scvmm.cli.main.console")
def test_run_cli_command_known_error(mock_console):
    """Test the CLI command runner when a store error is raised."""
    mock_handler = MagicMock(side_effect=StoreError("Error reading web.yaml"))

    with pytest.raises(typer.Exit) as exc_info:
        _run_cli_command(mock_handler)

    mock_console.print.assert_called_once_with("[red]Error:[/red] Error reading web.yaml")
    assert exc_info.value.exit_code == 1


@patch("scvmm.cli.main.console")
def test_run_cli_command_false_result(mock_console):
    with pytest.raises(typer.Exit) as exc_info:
        _run_cli_command(MagicMock(return_value=False))

    assert exc_info.value.exit_code == 1


def test_run_cli_command_unexpected_error_propagates():
    with pytest.raises(KeyError):
        _run_cli_command(MagicMock(side_effect=KeyError("bug")))


@pytest.fixture
def config_dir(tmp_path):
    (tmp_path / "config.yaml").write_text(f"agent:\n  store_dir: {tmp_path / 'store'}\n")
    return tmp_path


class TestCommands:
    """Test command wiring through the Typer app."""

    def test_list_empty(self, config_dir):
        result = runner.invoke(app, ["list", "--config-dir", str(config_dir)])

        assert result.exit_code == 0
        assert "ScvmmMachines" in result.output

    def test_status_missing_machine(self, config_dir):
        result = runner.invoke(app, ["status", "web", "--config-dir", str(config_dir)])

        assert result.exit_code == 1
        assert "not found" in result.output

    def test_delete_requires_confirmation(self, config_dir):
        with patch("scvmm.cli.main.delete_machine") as mock_delete:
            result = runner.invoke(app, ["delete", "web", "--config-dir", str(config_dir)], input="n\n")

        assert result.exit_code != 0
        mock_delete.assert_not_called()

    def test_delete_forced(self, config_dir):
        with patch("scvmm.cli.main.delete_machine", return_value=True) as mock_delete:
            result = runner.invoke(app, ["delete", "web", "-n", "team-a", "--force", "--config-dir", str(config_dir)])

        assert result.exit_code == 0
        _, namespace, name = mock_delete.call_args[0]
        assert (namespace, name) == ("team-a", "web")

    def test_invalid_config(self, tmp_path):
        (tmp_path / "config.yaml").write_text("agent:\n  workers: 0\n")

        result = runner.invoke(app, ["list", "--config-dir", str(tmp_path)])

        assert result.exit_code == 1
        assert "Error" in result.output

    def test_config_dir_from_environment(self, config_dir):
        result = runner.invoke(app, ["list"], env={"SCVMM_CONFIG_DIR": str(config_dir)})

        assert result.exit_code == 0

    def test_run(self, config_dir):
        with patch("scvmm.cli.main.run_agent", new_callable=MagicMock) as mock_run:
            with patch("scvmm.cli.main.asyncio.run") as mock_asyncio_run:
                result = runner.invoke(app, ["run", "--config-dir", str(config_dir)])

        assert result.exit_code == 0
        mock_run.assert_called_once_with(config_dir)
        mock_asyncio_run.assert_called_once()
