from __future__ import annotations

import subprocess
from typing import Optional

import pytest

from ollama_supervisor.models.types import ExecutableCandidate, LaunchOutcome, PlatformId
from ollama_supervisor.services import launch_strategies as ls
from ollama_supervisor.services.exceptions import LaunchFailedError


class _FakeProc:
    def __init__(self, returncode: Optional[int] = None, pid: int = 4242) -> None:
        self._returncode = returncode
        self.pid = pid

    def wait(self, timeout=None):
        if self._returncode is None:
            raise subprocess.TimeoutExpired("ollama", timeout)
        return self._returncode

    def poll(self):
        return self._returncode


class _FakeResolver:
    def __init__(self, existing: set[str]) -> None:
        self.existing = existing

    def resolve_executable(self, candidate, search_path):
        if candidate.is_absolute:
            return candidate.path if candidate.path in self.existing else None
        return f"/usr/local/bin/{candidate.path}" if candidate.path in self.existing else None


class _RecordingPopen:
    """Fails for the listed strategy commands, succeeds otherwise."""

    def __init__(self, failures: Optional[dict] = None) -> None:
        self.failures = failures or {}
        self.calls: list[tuple[object, dict]] = []

    def __call__(self, command, **kwargs):
        self.calls.append((command, kwargs))
        key = command[0] if isinstance(command, list) else command.split()[0]
        outcome = self.failures.get(key)
        if isinstance(outcome, BaseException):
            raise outcome
        if isinstance(outcome, int):
            return _FakeProc(returncode=outcome)
        return _FakeProc()


BARE = ExecutableCandidate("ollama", is_absolute=False)


def _chain(platform_id: PlatformId, popen, existing=("ollama",), grace: float = 0.3):
    return ls.LaunchStrategyChain(
        platform_id=platform_id,
        resolver=_FakeResolver(set(existing)),
        popen=popen,
        spawn_grace_period=grace,
    )


def test_strategy_order_per_platform() -> None:
    posix = _chain(PlatformId.LINUX, _RecordingPopen())
    windows = _chain(PlatformId.WINDOWS, _RecordingPopen())

    assert [s.name for s in posix.strategies] == ["nohup", "detached", "shell"]
    assert [s.name for s in windows.strategies] == ["detached", "shell", "no-window"]


def test_first_strategy_success_stops_chain() -> None:
    popen = _RecordingPopen()
    chain = _chain(PlatformId.LINUX, popen)

    attempt = chain.start([BARE], {"PATH": "/usr/bin"}, 11434)

    assert attempt.strategy == "nohup"
    assert attempt.outcome is LaunchOutcome.SUCCESS
    assert attempt.pid == 4242
    assert len(popen.calls) == 1
    command, kwargs = popen.calls[0]
    assert command == ["nohup", "/usr/local/bin/ollama", "serve"]
    assert kwargs["env"]["OLLAMA_HOST"] == "127.0.0.1:11434"
    assert kwargs["stdout"] is subprocess.DEVNULL
    assert kwargs["start_new_session"] is True


def test_early_nonzero_exit_counts_as_spawn_error() -> None:
    popen = _RecordingPopen({"nohup": 127})
    chain = _chain(PlatformId.MACOS, popen)

    attempt = chain.start([BARE], {"PATH": "/usr/bin"}, 11500)

    assert attempt.strategy == "detached"
    first = chain.last_attempts[0]
    assert first.outcome is LaunchOutcome.SPAWN_ERROR
    assert "127" in first.error


def test_zero_grace_period_uses_poll() -> None:
    popen = _RecordingPopen({"nohup": 1})
    chain = _chain(PlatformId.LINUX, popen, grace=0)

    attempt = chain.start([BARE], {}, 11434)

    assert attempt.strategy == "detached"


def test_all_failures_aggregate_every_attempt() -> None:
    popen = _RecordingPopen(
        {
            "nohup": PermissionError("Permission denied"),
            "/usr/local/bin/ollama": OSError("Address already in use"),
            "/bin/sh": FileNotFoundError("No such file: /bin/sh"),
        }
    )
    chain = _chain(PlatformId.LINUX, popen)
    missing = ExecutableCandidate("/opt/none/ollama", is_absolute=True)

    with pytest.raises(LaunchFailedError) as excinfo:
        chain.start([BARE, missing], {"PATH": "/usr/bin"}, 11434)

    err = excinfo.value
    assert [a.strategy for a in err.attempts] == ["nohup", "detached", "shell", "resolve"]
    assert [a.outcome for a in err.attempts] == [
        LaunchOutcome.SPAWN_ERROR,
        LaunchOutcome.SPAWN_ERROR,
        LaunchOutcome.SPAWN_ERROR,
        LaunchOutcome.SKIPPED_MISSING,
    ]
    message = str(err)
    assert "Permission denied" in message
    assert "Address already in use" in message
    assert "/opt/none/ollama" in message
    assert err.all_missing is False


def test_all_candidates_missing() -> None:
    chain = _chain(PlatformId.LINUX, _RecordingPopen(), existing=())

    with pytest.raises(LaunchFailedError) as excinfo:
        chain.start([BARE], {}, 11434)

    assert excinfo.value.all_missing is True


def test_shell_strategy_exports_path_inline() -> None:
    command = ls.ShellSpawnStrategy().build_command(
        "/opt/homebrew/bin/ollama", {"PATH": "/usr/bin:/opt/homebrew/bin"}, PlatformId.MACOS
    )

    assert command[:2] == ["/bin/sh", "-c"]
    assert command[2].startswith("export PATH=/usr/bin:/opt/homebrew/bin;")
    assert command[2].endswith("serve >/dev/null 2>&1 &")


def test_shell_strategy_windows_uses_cmd_start() -> None:
    command = ls.ShellSpawnStrategy().build_command(
        "C:\\Ollama\\ollama.exe", {"Path": "C:\\Windows"}, PlatformId.WINDOWS
    )

    assert command == 'cmd /C set "PATH=C:\\Windows" && start "" /B "C:\\Ollama\\ollama.exe" serve'


def test_windows_creation_flags() -> None:
    detached = ls.DetachedSpawnStrategy().popen_kwargs(PlatformId.WINDOWS)
    no_window = ls.NoWindowSpawnStrategy().popen_kwargs(PlatformId.WINDOWS)

    assert detached["creationflags"] == ls.DETACHED_PROCESS | ls.CREATE_NEW_PROCESS_GROUP
    assert no_window["creationflags"] == ls.CREATE_NO_WINDOW
    assert "start_new_session" not in detached
