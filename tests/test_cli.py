"""Tests for the click command line."""

import json
from unittest.mock import AsyncMock, MagicMock

import pytest
from click.testing import CliRunner

from tmuxcomposer import cli as cli_module
from tmuxcomposer.cli import cli


@pytest.fixture(autouse=True)
def no_logging_setup(monkeypatch):
    monkeypatch.setattr(cli_module, "setup_logging", lambda level=None: None)


@pytest.fixture
def runner():
    return CliRunner()


class TestCli:
    def test_help_lists_commands(self, runner):
        result = runner.invoke(cli, ["--help"])

        assert result.exit_code == 0
        for command in ("watch-session", "automate", "list-matchers"):
            assert command in result.output

    def test_socket_flags_are_exclusive(self, runner):
        result = runner.invoke(cli, ["-L", "a", "-S", "/tmp/b", "list-matchers"])

        assert result.exit_code == 2
        assert "mutually exclusive" in result.output

    def test_list_matchers_json(self, runner):
        result = runner.invoke(cli, ["list-matchers", "--json"])

        assert result.exit_code == 0
        rules = json.loads(result.output)
        assert rules[0]["name"] == "trust-folder"
        assert rules[1]["response"] == "<S-Tab><S-Tab>"

    def test_list_matchers_table(self, runner):
        result = runner.invoke(cli, ["list-matchers"])

        assert result.exit_code == 0
        assert "Matchers" in result.output

    def test_rules_file(self, runner, tmp_path):
        path = tmp_path / "rules.json"
        path.write_text(json.dumps([{"name": "ok", "trigger": ["Continue?"], "response": "y<Enter>"}]))

        result = runner.invoke(cli, ["list-matchers", "--json", "--rules", str(path)])

        assert [rule["name"] for rule in json.loads(result.output)] == ["ok"]

    def test_invalid_rules_file(self, runner, tmp_path):
        path = tmp_path / "rules.json"
        path.write_text(json.dumps([{"name": "bad", "trigger": [], "response": "<Enter>"}]))

        result = runner.invoke(cli, ["list-matchers", "--rules", str(path)])

        assert result.exit_code == 1
        assert "Invalid matcher rules" in result.output

    def test_unknown_skip(self, runner):
        result = runner.invoke(cli, ["automate", "--skip", "no-such-rule"])

        assert result.exit_code == 2
        assert "no-such-rule" in result.output

    def test_automate_passes_skip_mapping(self, runner, monkeypatch):
        automator = MagicMock()
        automator.run = AsyncMock(return_value=0)
        factory = MagicMock(return_value=automator)
        monkeypatch.setattr(cli_module, "Automator", factory)
        monkeypatch.setattr(cli_module, "TmuxClient", MagicMock())
        monkeypatch.setattr(cli_module, "create_detector", MagicMock())

        result = runner.invoke(cli, ["automate", "--skip", "trust-folder", "--quiet"])

        assert result.exit_code == 0
        assert factory.call_args.kwargs["skip"] == {"trust-folder": True}

    def test_watch_session_exit_code(self, runner, monkeypatch):
        watcher = MagicMock()
        watcher.run = AsyncMock(return_value=1)
        factory = MagicMock(return_value=watcher)
        monkeypatch.setattr(cli_module, "SessionWatcher", factory)

        result = runner.invoke(cli, ["watch-session", "-t", "work", "--no-reconnect", "--quiet"])

        assert result.exit_code == 1
        assert factory.call_args.kwargs["session"] == "work"
        assert factory.call_args.kwargs["reconnect"] is False
