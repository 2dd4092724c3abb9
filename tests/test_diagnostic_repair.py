from __future__ import annotations

from unittest.mock import MagicMock

import pytest

from ollama_supervisor.config.settings import PortConfig
from ollama_supervisor.models.types import (
    ExecutableCandidate,
    HealthState,
    HealthStatus,
    HealthTier,
    LaunchAttempt,
    LaunchOutcome,
    ModelRecord,
    PlatformId,
    StepMarker,
)
from ollama_supervisor.services.diagnostic_repair import DiagnosticRepair
from ollama_supervisor.services.exceptions import (
    LaunchFailedError,
    SubcommandFailedError,
)

CANDIDATE = ExecutableCandidate("/usr/local/bin/ollama", is_absolute=True)
STOPPED = HealthStatus(HealthState.STOPPED)
RUNNING = HealthStatus(HealthState.RUNNING, HealthTier.TCP)
PROCESS_ONLY = HealthStatus(HealthState.RUNNING, HealthTier.PROCESS_TABLE)


def _supervisor(statuses, port_config=None):
    supervisor = MagicMock()
    supervisor.platform_id = PlatformId.LINUX
    supervisor.port_config = port_config or PortConfig()
    supervisor.locate_executable.return_value = CANDIDATE
    supervisor.start.return_value = LaunchAttempt("nohup", CANDIDATE, LaunchOutcome.SUCCESS, pid=7)
    supervisor.status.side_effect = list(statuses)
    return supervisor


def _repair(supervisor, inventory=None, **kwargs):
    sleeps: list[float] = []
    repair = DiagnosticRepair(supervisor, inventory, sleep=sleeps.append, **kwargs)
    return repair, sleeps


def test_success_on_fourth_poll_reports_four_attempts() -> None:
    supervisor = _supervisor([STOPPED, STOPPED, STOPPED, RUNNING])
    inventory = MagicMock()
    inventory.list.return_value = [ModelRecord("llama2"), ModelRecord("mistral")]
    repair, sleeps = _repair(supervisor, inventory)

    report = repair.run()

    assert report.success is True
    assert report.poll_attempts == 4
    assert supervisor.status.call_count == 4
    # settle delay, then one sleep between each of the four polls
    assert sleeps == [2.0, 1.0, 1.0, 1.0]
    assert report.steps[-1].marker is StepMarker.OK
    assert "Models available: 2" in report.render()
    supervisor.start.assert_called_once_with([CANDIDATE])


def test_failure_after_ten_polls_includes_count_and_guidance() -> None:
    supervisor = _supervisor([STOPPED] * 10)
    repair, sleeps = _repair(supervisor)

    report = repair.run()

    assert report.success is False
    assert report.poll_attempts == 10
    assert supervisor.status.call_count == 10
    assert len(sleeps) == 1 + 9
    text = report.render()
    assert "did not respond after 10 attempts on port 11434" in text
    assert "ollama serve" in text
    assert text.endswith("Repair failed")


def test_process_only_result_keeps_polling_with_warning() -> None:
    supervisor = _supervisor([PROCESS_ONLY, PROCESS_ONLY, RUNNING])
    repair, _ = _repair(supervisor)

    report = repair.run()

    assert report.success is True
    assert report.poll_attempts == 3
    warnings = [s for s in report.steps if s.marker is StepMarker.WARN]
    assert len(warnings) == 1
    assert "not answering yet" in warnings[0].message


def test_missing_executable_fails_fast() -> None:
    supervisor = _supervisor([])
    supervisor.locate_executable.return_value = None
    repair, _ = _repair(supervisor)

    report = repair.run()

    assert report.success is False
    assert report.poll_attempts == 0
    supervisor.start.assert_not_called()
    assert any(s.marker is StepMarker.FAIL and "not found" in s.message for s in report.steps)
    assert "ollama.com" in report.render()


def test_launch_failure_lists_every_attempt() -> None:
    supervisor = _supervisor([])
    attempts = [
        LaunchAttempt("nohup", CANDIDATE, LaunchOutcome.SPAWN_ERROR, error="Permission denied"),
        LaunchAttempt("detached", CANDIDATE, LaunchOutcome.SPAWN_ERROR, error="Address already in use"),
    ]
    supervisor.start.side_effect = LaunchFailedError(attempts)
    repair, _ = _repair(supervisor)

    report = repair.run()

    assert report.success is False
    text = report.render()
    assert "Permission denied" in text
    assert "Address already in use" in text
    supervisor.status.assert_not_called()


def test_stop_failure_is_only_a_warning() -> None:
    supervisor = _supervisor([RUNNING])
    supervisor.stop.side_effect = SubcommandFailedError(["pkill"], 3, "denied")
    repair, _ = _repair(supervisor)

    report = repair.run()

    assert report.success is True
    assert report.steps[0].marker is StepMarker.WARN


def test_listing_failure_does_not_invalidate_success() -> None:
    supervisor = _supervisor([RUNNING])
    inventory = MagicMock()
    inventory.list.side_effect = SubcommandFailedError(["ollama", "list"], 1, "boom")
    repair, _ = _repair(supervisor, inventory)

    report = repair.run()

    assert report.success is True
    assert report.steps[-1].marker is StepMarker.WARN


def test_unexpected_error_still_produces_report() -> None:
    supervisor = _supervisor([])
    supervisor.locate_executable.side_effect = RuntimeError("kaboom")
    repair, _ = _repair(supervisor)

    report = repair.run()

    assert report.success is False
    assert "kaboom" in report.render()


def test_failure_message_uses_current_port() -> None:
    config = PortConfig()
    config.set_port(11500)
    supervisor = _supervisor([STOPPED] * 3, port_config=config)
    repair, _ = _repair(supervisor, max_polls=3)

    report = repair.run()

    assert "did not respond after 3 attempts on port 11500" in report.render()


def test_max_polls_must_be_positive() -> None:
    with pytest.raises(ValueError):
        DiagnosticRepair(MagicMock(), max_polls=0)
