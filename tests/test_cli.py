# tests/test_cli.py
"""Tests for the command-line entry point."""
from __future__ import annotations

from unittest.mock import AsyncMock, MagicMock

import pytest

from interactbot import __main__ as cli
from interactbot.config import Settings
from interactbot.core.errors import RegistrationError
from interactbot.core.registry import SyncMode, SyncResult


def _settings() -> Settings:
    return Settings(_env_file=None, application_id="111", public_key="ab" * 32)


class TestParser:

    def test_defaults(self):
        args = cli.build_parser().parse_args([])
        assert args.port is None
        assert args.install_commands is False
        assert args.teardown_commands is False

    def test_install_and_teardown_are_exclusive(self):
        with pytest.raises(SystemExit):
            cli.build_parser().parse_args(["--install-commands", "--teardown-commands"])

    def test_overrides(self):
        args = cli.build_parser().parse_args(["--port", "9000", "--project", "proj", "--secret-id", "key"])
        s = cli.apply_overrides(_settings(), args)
        assert (s.port, s.project_id, s.secret_id) == (9000, "proj", "key")

    def test_no_overrides_keeps_settings(self):
        base = _settings()
        assert cli.apply_overrides(base, cli.build_parser().parse_args([])) is base


class TestMain:

    def test_install_commands(self, monkeypatch, capsys):
        sync = AsyncMock(return_value=SyncResult(SyncMode.INSTALL, synced=["version", "generate"]))
        monkeypatch.setattr(cli, "settings", _settings())
        monkeypatch.setattr("interactbot.bootstrap.sync_commands", sync)
        monkeypatch.setattr(cli, "setup_logging", MagicMock())

        assert cli.main(["--install-commands"]) == 0

        assert sync.await_args.args[1] is SyncMode.INSTALL
        assert "version, generate" in capsys.readouterr().out

    def test_teardown_commands(self, monkeypatch):
        sync = AsyncMock(return_value=SyncResult(SyncMode.TEARDOWN, synced=["version"], failed=["generate"]))
        monkeypatch.setattr(cli, "settings", _settings())
        monkeypatch.setattr("interactbot.bootstrap.sync_commands", sync)
        monkeypatch.setattr(cli, "setup_logging", MagicMock())

        assert cli.main(["--teardown-commands"]) == 0
        assert sync.await_args.args[1] is SyncMode.TEARDOWN

    def test_install_failure_exits_nonzero(self, monkeypatch):
        sync = AsyncMock(side_effect=RegistrationError("generate", "HTTP 400"))
        monkeypatch.setattr(cli, "settings", _settings())
        monkeypatch.setattr("interactbot.bootstrap.sync_commands", sync)
        monkeypatch.setattr(cli, "setup_logging", MagicMock())

        assert cli.main(["--install-commands"]) == 1

    def test_serves_by_default(self, monkeypatch):
        serve = MagicMock()
        monkeypatch.setattr(cli, "settings", _settings())
        monkeypatch.setattr(cli, "serve", serve)
        monkeypatch.setattr(cli, "setup_logging", MagicMock())

        assert cli.main(["--port", "9001"]) == 0
        assert serve.call_args.args[0].port == 9001
