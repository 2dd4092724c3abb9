# ollama_supervisor/services/process_runner.py
"""
Synchronous external commands and process-table access.

Kill and list operations are keyed by the engine's image name, never by a
handle this program holds: the engine may have been started by anything.
"""

from __future__ import annotations

import logging
import os
import subprocess
from typing import Callable, Mapping, Optional, Sequence

import psutil

from ollama_supervisor.models.types import CommandResult, PlatformId
from ollama_supervisor.services.exceptions import IndeterminateError, SubcommandFailedError
from ollama_supervisor.services.platform_paths import CURRENT_PLATFORM

logger = logging.getLogger(__name__)

CREATE_NO_WINDOW = 0x08000000

ENGINE_IMAGE_NAMES: dict[PlatformId, tuple[str, ...]] = {
    PlatformId.MACOS: ("ollama", "Ollama"),
    PlatformId.WINDOWS: ("ollama.exe", "ollama app.exe"),
    PlatformId.LINUX: ("ollama",),
    PlatformId.UNKNOWN: ("ollama", "ollama.exe"),
}

_KILL_COMMANDS: dict[PlatformId, tuple[tuple[str, ...], ...]] = {
    PlatformId.MACOS: (
        ("pkill", "-KILL", "-x", "ollama"),
        ("pkill", "-KILL", "-x", "Ollama"),
    ),
    PlatformId.WINDOWS: (
        ("taskkill", "/F", "/IM", "ollama.exe"),
        ("taskkill", "/F", "/IM", "ollama app.exe"),
    ),
    PlatformId.LINUX: (("pkill", "-KILL", "-x", "ollama"),),
    PlatformId.UNKNOWN: (("pkill", "-KILL", "-x", "ollama"),),
}

# Exit codes meaning "nothing matched" (pkill: 1, taskkill: 128)
_NO_MATCH_RETURNCODES: dict[PlatformId, frozenset[int]] = {
    PlatformId.WINDOWS: frozenset({128}),
}
_DEFAULT_NO_MATCH_RETURNCODES = frozenset({1})

Runner = Callable[..., "subprocess.CompletedProcess[str]"]


def no_window_flags(platform_id: PlatformId) -> int:
    if platform_id is PlatformId.WINDOWS:
        return getattr(subprocess, "CREATE_NO_WINDOW", CREATE_NO_WINDOW)
    return 0


def run_command(
    argv: Sequence[str],
    *,
    env: Optional[Mapping[str, str]] = None,
    timeout: float = 30.0,
    platform_id: Optional[PlatformId] = None,
    runner: Optional[Runner] = None,
) -> CommandResult:
    """Run `argv` to completion and capture its output.

    OSError (missing executable, permission denied) and
    subprocess.TimeoutExpired propagate; callers convert them.
    """
    platform_id = platform_id or CURRENT_PLATFORM
    runner = runner or subprocess.run
    kwargs: dict = {}
    flags = no_window_flags(platform_id)
    if flags:
        kwargs["creationflags"] = flags
    logger.debug("Running: %s", " ".join(argv))
    completed = runner(
        list(argv),
        stdout=subprocess.PIPE,
        stderr=subprocess.PIPE,
        stdin=subprocess.DEVNULL,
        env=dict(env) if env is not None else None,
        timeout=timeout,
        check=False,
        text=True,
        encoding="utf-8",
        errors="replace",
        **kwargs,
    )
    return CommandResult(
        argv=tuple(argv),
        returncode=completed.returncode,
        stdout=completed.stdout or "",
        stderr=completed.stderr or "",
    )


def _matches_image(name: Optional[str], image_names: Sequence[str]) -> bool:
    if not name:
        return False
    lowered = name.lower()
    return any(lowered == image.lower() for image in image_names)


def find_engine_processes(
    platform_id: Optional[PlatformId] = None,
    process_iter: Optional[Callable[..., object]] = None,
) -> list:
    """Processes whose image name is the engine's.

    Raises IndeterminateError when the process table cannot be read at all.
    Individual processes we may not inspect are skipped.
    """
    platform_id = platform_id or CURRENT_PLATFORM
    process_iter = process_iter or psutil.process_iter
    image_names = ENGINE_IMAGE_NAMES.get(platform_id, ENGINE_IMAGE_NAMES[PlatformId.UNKNOWN])
    own_pid = os.getpid()
    matches = []
    try:
        for proc in process_iter(["pid", "name"]):
            info = getattr(proc, "info", None) or {}
            if info.get("pid") == own_pid:
                continue
            if _matches_image(info.get("name"), image_names):
                matches.append(proc)
    except (psutil.Error, OSError) as e:
        raise IndeterminateError(f"Could not read the process table: {e}") from e
    return matches


def _kill_with_psutil(platform_id: PlatformId, process_iter=None) -> int:
    killed = 0
    for proc in find_engine_processes(platform_id, process_iter):
        try:
            proc.kill()
            killed += 1
        except psutil.NoSuchProcess:
            continue
        except psutil.AccessDenied as e:
            raise SubcommandFailedError(
                ("kill", str(getattr(proc, "pid", "?"))),
                None,
                str(e),
                message=f"Permission denied while stopping pid {getattr(proc, 'pid', '?')}: {e}",
            ) from e
    return killed


def kill_by_image_name(
    platform_id: Optional[PlatformId] = None,
    *,
    env: Optional[Mapping[str, str]] = None,
    timeout: float = 15.0,
    runner: Optional[Runner] = None,
    process_iter=None,
) -> list[str]:
    """Force-terminate every engine process. Idempotent.

    Returns one human-readable line per command issued. "No matching process"
    counts as success. When the OS kill tool itself is missing, the process
    table is walked with psutil instead.
    """
    platform_id = platform_id or CURRENT_PLATFORM
    no_match = _NO_MATCH_RETURNCODES.get(platform_id, _DEFAULT_NO_MATCH_RETURNCODES)
    messages: list[str] = []
    for argv in _KILL_COMMANDS.get(platform_id, _KILL_COMMANDS[PlatformId.UNKNOWN]):
        command_text = " ".join(argv)
        try:
            result = run_command(
                argv, env=env, timeout=timeout, platform_id=platform_id, runner=runner
            )
        except FileNotFoundError:
            logger.info("%s is not available, falling back to process table", argv[0])
            killed = _kill_with_psutil(platform_id, process_iter)
            messages.append(f"{argv[0]} unavailable; terminated {killed} process(es) directly")
            # The direct walk already covers every image name
            break
        except subprocess.TimeoutExpired as e:
            raise SubcommandFailedError(
                argv, None, f"timed out after {e.timeout}s"
            ) from e
        except OSError as e:
            raise SubcommandFailedError(argv, None, str(e)) from e

        if result.ok:
            messages.append(f"{command_text}: terminated")
            continue
        stderr_lower = result.stderr.lower()
        if result.returncode in no_match or "not found" in stderr_lower:
            messages.append(f"{command_text}: no matching process")
            continue
        raise SubcommandFailedError(argv, result.returncode, result.stderr)
    return messages
