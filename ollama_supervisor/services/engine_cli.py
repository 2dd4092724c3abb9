# ollama_supervisor/services/engine_cli.py
"""
Engine CLI subcommands (`--version`, `list`, `pull`, `rm`).

Always invoked as argv vectors with an explicitly built environment: augmented
PATH, and OLLAMA_HOST pointing at the configured port so the CLI talks to the
same server the supervisor probes.
"""

from __future__ import annotations

import logging
import re
import subprocess
from typing import Optional

from ollama_supervisor.config.settings import PortConfig
from ollama_supervisor.models.types import CommandResult, PlatformId
from ollama_supervisor.services.exceptions import NotInstalledError, SubcommandFailedError
from ollama_supervisor.services.platform_paths import (
    CURRENT_PLATFORM,
    ExtendedEnvironment,
    PathResolver,
)
from ollama_supervisor.services.process_runner import Runner, run_command

logger = logging.getLogger(__name__)

_RE_VERSION = re.compile(r"(\d+\.\d+(?:\.\d+)?(?:[-+][0-9A-Za-z.\-]+)?)")


def parse_version(text: str) -> Optional[str]:
    """Pull `0.3.12` out of `ollama version is 0.3.12` (or similar)."""
    for line in reversed(text.splitlines()):
        if "version" not in line.lower():
            continue
        m = _RE_VERSION.search(line)
        if m:
            return m.group(1)
    m = _RE_VERSION.search(text)
    return m.group(1) if m else None


class EngineCLI:
    def __init__(
        self,
        port_config: PortConfig,
        platform_id: Optional[PlatformId] = None,
        *,
        environment: Optional[ExtendedEnvironment] = None,
        resolver: Optional[PathResolver] = None,
        runner: Optional[Runner] = None,
        timeout_s: float = 30.0,
        pull_timeout_s: float = 3600.0,
    ) -> None:
        self._port_config = port_config
        self.platform_id = platform_id or CURRENT_PLATFORM
        self._environment = environment or ExtendedEnvironment(self.platform_id)
        self._resolver = resolver or PathResolver(self.platform_id)
        self._runner = runner
        self._timeout_s = timeout_s
        self._pull_timeout_s = pull_timeout_s

    def _executable(self, search_path: str) -> str:
        candidate = self._resolver.locate(search_path)
        if candidate is not None:
            resolved = self._resolver.resolve_executable(candidate, search_path)
            if resolved:
                return resolved
        raise NotInstalledError(
            "The ollama executable was not found on PATH or in any known install location"
        )

    def run(self, *args: str, timeout: Optional[float] = None) -> CommandResult:
        """Run one subcommand; non-zero exit raises SubcommandFailedError with stderr."""
        env = self._environment.child_env(self._port_config.host_port())
        search_path = next((v for k, v in env.items() if k.upper() == "PATH"), "")
        argv = [self._executable(search_path), *args]
        timeout = timeout if timeout is not None else self._timeout_s
        try:
            result = run_command(
                argv, env=env, timeout=timeout, platform_id=self.platform_id, runner=self._runner
            )
        except FileNotFoundError as e:
            raise NotInstalledError(f"Failed to run {' '.join(argv)}: {e}") from e
        except subprocess.TimeoutExpired as e:
            raise SubcommandFailedError(argv, None, f"timed out after {e.timeout}s") from e
        except OSError as e:
            raise SubcommandFailedError(argv, None, str(e)) from e

        if not result.ok:
            raise SubcommandFailedError(argv, result.returncode, result.stderr)
        return result

    def version(self) -> str:
        result = self.run("--version", timeout=min(self._timeout_s, 10.0))
        text = result.stdout.strip() or result.stderr.strip()
        return parse_version(text) or text

    def list_text(self) -> str:
        return self.run("list").stdout

    def pull(self, name: str) -> str:
        logger.info("Pulling model: %s", name)
        return self.run("pull", name, timeout=self._pull_timeout_s).stdout.strip()

    def remove(self, name: str) -> str:
        logger.info("Removing model: %s", name)
        return self.run("rm", name).stdout.strip()
