# tests/test_app.py
"""Tests for the command line entry point"""

import logging
from unittest.mock import MagicMock

import pytest

import app
from ollama_supervisor.config.settings import InvalidPortError
from ollama_supervisor.models.types import (
    DiagnosticReport,
    EngineInstallation,
    HealthState,
    HealthStatus,
    HealthTier,
    ModelRecord,
    PlatformId,
)
from ollama_supervisor.services import control_plane as cp
from ollama_supervisor.services.exceptions import NotInstalledError


@pytest.fixture
def control(monkeypatch):
    """Fake control plane returned by get_control_plane()"""
    plane = MagicMock()
    plane.get_platform.return_value = PlatformId.LINUX
    plane.get_base_url.return_value = "http://127.0.0.1:11434"
    plane.get_port.return_value = 11434
    monkeypatch.setattr(cp, "get_control_plane", lambda: plane)
    monkeypatch.setattr(app, "setup_logging", lambda verbose=False: (None, None))
    return plane


def test_parser_requires_a_command():
    with pytest.raises(SystemExit):
        app.build_parser().parse_args([])


def test_parser_generate_arguments():
    args = app.build_parser().parse_args(["generate", "llama2", "hello there"])
    assert args.command == "generate"
    assert args.model == "llama2"
    assert args.prompt == "hello there"


def test_status_running_exits_zero(control, capsys):
    health = HealthStatus(HealthState.RUNNING, HealthTier.TCP, "confirmed by TCP on port 11434")
    control.supervisor.installation_status.return_value = EngineInstallation(True, True, "0.3.12", health)

    assert app.main(["status"]) == 0
    out = capsys.readouterr().out
    assert "running" in out
    assert "0.3.12" in out


def test_status_stopped_exits_one(control):
    health = HealthStatus(HealthState.STOPPED, None, "not answering on port 11434")
    control.supervisor.installation_status.return_value = EngineInstallation(True, False, None, health)

    assert app.main(["status"]) == 1


def test_repair_prints_report(control, capsys):
    report = DiagnosticReport()
    report.ok("Engine responded on port 11434 (attempt 1)")
    report.success = True
    control.repair.run.return_value = report

    assert app.main(["repair"]) == 0
    assert "✓ Engine responded" in capsys.readouterr().out


def test_list_prints_names(control, capsys):
    control.inventory.list.return_value = [ModelRecord("llama2:latest", size="3.8 GB")]

    assert app.main(["list"]) == 0
    assert "llama2:latest  3.8 GB" in capsys.readouterr().out


def test_engine_error_exits_one(control):
    control.supervisor.start.side_effect = NotInstalledError("Ollama is not installed")

    assert app.main(["start"]) == 1


def test_port_option_applied_before_command(control):
    control.inventory.remove.return_value = "Model 'x' removed"

    assert app.main(["--port", "11500", "rm", "x"]) == 0
    control.set_port.assert_called_once_with(11500)


def test_invalid_port_exits_two(control):
    control.set_port.side_effect = InvalidPortError("Port 80 is outside the allowed range")

    assert app.main(["port", "80"]) == 2


def test_port_command_persists(control, capsys):
    assert app.main(["port", "11600"]) == 0
    control.set_port.assert_called_once_with(11600, persist=True)


def test_setup_logging_writes_log_file(monkeypatch, tmp_path):
    log_path = tmp_path / "logs" / "supervisor.log"
    monkeypatch.setattr(app, "get_log_path", lambda: log_path)
    root = logging.getLogger()
    saved_handlers = root.handlers[:]
    saved_level = root.level
    try:
        console_handler, file_handler = app.setup_logging()
        assert file_handler is not None
        logging.getLogger("ollama_supervisor.test").debug("hello log")
        file_handler.flush()
        assert "hello log" in log_path.read_text(encoding="utf-8")
    finally:
        for handler in root.handlers[:]:
            root.removeHandler(handler)
            if handler not in saved_handlers:
                handler.close()
        for handler in saved_handlers:
            root.addHandler(handler)
        root.setLevel(saved_level)
