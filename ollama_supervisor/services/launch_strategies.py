# ollama_supervisor/services/launch_strategies.py
"""
Ways to start `ollama serve` as a background process, tried in order.

The chain stops at the first strategy that *spawns*; whether the engine then
serves requests is the HealthChecker's business. Every failed attempt is kept
because the right advice differs by cause (missing file, permission denied,
port already in use).
"""

from __future__ import annotations

import logging
import shlex
import subprocess
from typing import Callable, Mapping, Optional, Sequence, Union

from ollama_supervisor.models.types import (
    ExecutableCandidate,
    LaunchAttempt,
    LaunchOutcome,
    PlatformId,
)
from ollama_supervisor.services.exceptions import LaunchFailedError
from ollama_supervisor.services.platform_paths import CURRENT_PLATFORM, PathResolver
from ollama_supervisor.services.process_runner import CREATE_NO_WINDOW

logger = logging.getLogger(__name__)

DETACHED_PROCESS = 0x00000008
CREATE_NEW_PROCESS_GROUP = 0x00000200

_POSIX_PLATFORMS = frozenset({PlatformId.MACOS, PlatformId.LINUX, PlatformId.UNKNOWN})

Command = Union[Sequence[str], str]
Popen = Callable[..., "subprocess.Popen"]


def _env_path(env: Mapping[str, str]) -> str:
    for key, value in env.items():
        if key.upper() == "PATH":
            return value
    return ""


class LaunchStrategy:
    """One method of spawning the engine; subclasses fill in the command."""

    name = "base"
    platforms: Optional[frozenset[PlatformId]] = None  # None = every platform

    def applies_to(self, platform_id: PlatformId) -> bool:
        return self.platforms is None or platform_id in self.platforms

    def build_command(
        self, executable: str, env: Mapping[str, str], platform_id: PlatformId
    ) -> Command:
        raise NotImplementedError

    def popen_kwargs(self, platform_id: PlatformId) -> dict:
        kwargs: dict = {
            "stdin": subprocess.DEVNULL,
            "stdout": subprocess.DEVNULL,
            "stderr": subprocess.DEVNULL,
            "close_fds": True,
        }
        if platform_id is not PlatformId.WINDOWS:
            kwargs["start_new_session"] = True
        return kwargs

    def spawn(
        self,
        executable: str,
        env: Mapping[str, str],
        platform_id: PlatformId,
        popen: Popen,
    ) -> "subprocess.Popen":
        command = self.build_command(executable, env, platform_id)
        logger.info("Launching engine via %s: %s", self.name, command)
        return popen(command, env=dict(env), **self.popen_kwargs(platform_id))

    def __repr__(self) -> str:
        return f"<{type(self).__name__} {self.name}>"


class NohupStrategy(LaunchStrategy):
    """Daemonizing wrapper; survives the parent's session ending."""

    name = "nohup"
    platforms = _POSIX_PLATFORMS

    def build_command(self, executable, env, platform_id):
        return ["nohup", executable, "serve"]


class DetachedSpawnStrategy(LaunchStrategy):
    name = "detached"

    def build_command(self, executable, env, platform_id):
        return [executable, "serve"]

    def popen_kwargs(self, platform_id):
        kwargs = super().popen_kwargs(platform_id)
        if platform_id is PlatformId.WINDOWS:
            kwargs["creationflags"] = DETACHED_PROCESS | CREATE_NEW_PROCESS_GROUP
        return kwargs


class ShellSpawnStrategy(LaunchStrategy):
    """Shell wrapper that exports the augmented PATH inline and backgrounds serve."""

    name = "shell"

    def build_command(self, executable, env, platform_id):
        path = _env_path(env)
        if platform_id is PlatformId.WINDOWS:
            # cmd does not understand list2cmdline's backslash escaping; pass one string
            return f'cmd /C set "PATH={path}" && start "" /B "{executable}" serve'
        script = (
            f"export PATH={shlex.quote(path)}; "
            f"{shlex.quote(executable)} serve >/dev/null 2>&1 &"
        )
        return ["/bin/sh", "-c", script]

    def popen_kwargs(self, platform_id):
        kwargs = super().popen_kwargs(platform_id)
        if platform_id is PlatformId.WINDOWS:
            kwargs["creationflags"] = CREATE_NO_WINDOW
        return kwargs


class NoWindowSpawnStrategy(LaunchStrategy):
    """Console launcher spawn that never opens a console window."""

    name = "no-window"
    platforms = frozenset({PlatformId.WINDOWS})

    def build_command(self, executable, env, platform_id):
        return [executable, "serve"]

    def popen_kwargs(self, platform_id):
        kwargs = super().popen_kwargs(platform_id)
        kwargs["creationflags"] = CREATE_NO_WINDOW
        return kwargs


def default_strategies() -> list[LaunchStrategy]:
    return [
        NohupStrategy(),
        DetachedSpawnStrategy(),
        ShellSpawnStrategy(),
        NoWindowSpawnStrategy(),
    ]


class LaunchStrategyChain:
    """Tries every applicable strategy for every candidate, left to right."""

    def __init__(
        self,
        strategies: Optional[Sequence[LaunchStrategy]] = None,
        platform_id: Optional[PlatformId] = None,
        *,
        resolver: Optional[PathResolver] = None,
        popen: Optional[Popen] = None,
        spawn_grace_period: float = 0.3,
    ) -> None:
        self.platform_id = platform_id or CURRENT_PLATFORM
        all_strategies = list(strategies) if strategies is not None else default_strategies()
        self.strategies = [s for s in all_strategies if s.applies_to(self.platform_id)]
        self._resolver = resolver or PathResolver(self.platform_id)
        self._popen = popen or subprocess.Popen
        self._spawn_grace_period = spawn_grace_period
        self.last_attempts: list[LaunchAttempt] = []

    def start(
        self,
        candidates: Sequence[ExecutableCandidate],
        env: Mapping[str, str],
        port: int,
        host: str = "127.0.0.1",
    ) -> LaunchAttempt:
        """Spawn the engine; return the first successful attempt.

        Raises:
            LaunchFailedError: every candidate x strategy failed; carries all attempts
        """
        child_env = dict(env)
        child_env["OLLAMA_HOST"] = f"{host}:{port}"
        search_path = _env_path(child_env)

        attempts: list[LaunchAttempt] = []
        self.last_attempts = attempts
        for candidate in candidates:
            executable = self._resolver.resolve_executable(candidate, search_path)
            if executable is None:
                attempts.append(
                    LaunchAttempt("resolve", candidate, LaunchOutcome.SKIPPED_MISSING)
                )
                continue
            for strategy in self.strategies:
                attempt = self._attempt(strategy, candidate, executable, child_env)
                attempts.append(attempt)
                if attempt.succeeded:
                    logger.info("Engine spawned: %s", attempt.describe())
                    return attempt
                logger.info("Launch attempt failed: %s", attempt.describe())

        raise LaunchFailedError(attempts)

    def _attempt(
        self,
        strategy: LaunchStrategy,
        candidate: ExecutableCandidate,
        executable: str,
        env: Mapping[str, str],
    ) -> LaunchAttempt:
        try:
            proc = strategy.spawn(executable, env, self.platform_id, self._popen)
        except (OSError, ValueError) as e:
            return LaunchAttempt(
                strategy.name,
                candidate,
                LaunchOutcome.SPAWN_ERROR,
                error=f"{type(e).__name__}: {e}",
            )

        returncode = self._early_exit_code(proc)
        if returncode is not None and returncode != 0:
            return LaunchAttempt(
                strategy.name,
                candidate,
                LaunchOutcome.SPAWN_ERROR,
                error=f"exited immediately with code {returncode}",
            )
        return LaunchAttempt(
            strategy.name,
            candidate,
            LaunchOutcome.SUCCESS,
            pid=getattr(proc, "pid", None),
        )

    def _early_exit_code(self, proc: "subprocess.Popen") -> Optional[int]:
        if self._spawn_grace_period <= 0:
            return proc.poll()
        try:
            return proc.wait(timeout=self._spawn_grace_period)
        except subprocess.TimeoutExpired:
            return None
