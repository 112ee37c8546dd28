from __future__ import annotations

import logging
import sys
from pathlib import Path
from typing import Any

import pytest
from typer.testing import CliRunner

from itemsense_connector import cli
from itemsense_connector.config import CONFIG_ENV_VAR, ConnectorConfig
from itemsense_connector.models import ConnectorEvent
from itemsense_connector.security import SensitiveDataLogFilter

runner = CliRunner()


def test_run_command_loads_config_and_runs(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.delenv(CONFIG_ENV_VAR, raising=False)
    config_file = tmp_path / "connector.yaml"
    config_file.write_text("connector:\n  hostname: itemsense.local\n  roles: item\n", encoding="utf-8")
    captured: dict[str, Any] = {}

    async def _fake_run(config: ConnectorConfig) -> None:
        captured["config"] = config

    monkeypatch.setattr(cli, "run_connector", _fake_run)
    monkeypatch.setattr(cli, "configure_logging", lambda level="INFO": None)

    result = runner.invoke(cli.app, ["run", "--config", str(config_file)])

    assert result.exit_code == 0
    assert captured["config"].hostname == "itemsense.local"


def test_run_command_reports_missing_config(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.delenv(CONFIG_ENV_VAR, raising=False)
    monkeypatch.setattr(cli, "configure_logging", lambda level="INFO": None)

    result = runner.invoke(cli.app, ["run", "-c", str(tmp_path / "missing.yaml")])

    assert result.exit_code == 2
    assert "Config file not found" in result.output


def test_serve_command_runs_serve_loop(monkeypatch: pytest.MonkeyPatch) -> None:
    calls: list[str] = []

    async def _fake_serve() -> None:
        calls.append("serve")

    monkeypatch.setattr(cli, "serve_connector", _fake_serve)
    monkeypatch.setattr(cli, "configure_logging", lambda level="INFO": None)

    result = runner.invoke(cli.app, ["serve"])

    assert result.exit_code == 0
    assert calls == ["serve"]


def test_main_prints_version(monkeypatch: pytest.MonkeyPatch, capsys: pytest.CaptureFixture[str]) -> None:
    monkeypatch.setattr(sys, "argv", ["itemsense-connector", "--version"])

    with pytest.raises(SystemExit) as exc_info:
        cli.main()

    assert exc_info.value.code == 0
    assert capsys.readouterr().out.startswith("itemsense-connector ")


def test_main_maps_keyboard_interrupt(monkeypatch: pytest.MonkeyPatch) -> None:
    def _interrupt() -> None:
        raise KeyboardInterrupt

    monkeypatch.setattr(sys, "argv", ["itemsense-connector", "serve"])
    monkeypatch.setattr(cli, "app", _interrupt)

    with pytest.raises(SystemExit) as exc_info:
        cli.main()

    assert exc_info.value.code == 130


def test_configure_logging_installs_redacting_handler() -> None:
    root = logging.getLogger()
    previous_handlers, previous_level = root.handlers[:], root.level
    try:
        cli.configure_logging("debug")

        assert root.level == logging.DEBUG
        assert len(root.handlers) == 1
        assert any(isinstance(item, SensitiveDataLogFilter) for item in root.handlers[0].filters)
    finally:
        root.handlers = previous_handlers
        root.setLevel(previous_level)


def test_log_event_levels(caplog: pytest.LogCaptureFixture) -> None:
    with caplog.at_level(logging.INFO, logger="itemsense_connector.cli"):
        cli._log_event(ConnectorEvent.ERROR, RuntimeError("boom"))
        cli._log_event(ConnectorEvent.ITEM_QUEUE_MESSAGE, {"epc": "E1"})

    levels = [record.levelno for record in caplog.records]
    assert levels == [logging.ERROR, logging.INFO]
    assert "boom" in caplog.records[0].getMessage()
