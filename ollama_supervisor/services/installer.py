# ollama_supervisor/services/installer.py
"""
Engine installation.

Only macOS has an unattended path (Homebrew). Everywhere else the user is
pointed at the official installer; the installer is treated as an opaque
command either way.
"""

from __future__ import annotations

import logging
import subprocess
from dataclasses import dataclass, field
from typing import Optional

from ollama_supervisor.models.types import PlatformId
from ollama_supervisor.services.exceptions import NotInstalledError, SubcommandFailedError
from ollama_supervisor.services.platform_paths import (
    CURRENT_PLATFORM,
    ENGINE_COMMAND,
    ExtendedEnvironment,
    PathResolver,
)
from ollama_supervisor.services.process_runner import Runner, run_command

logger = logging.getLogger(__name__)

DOWNLOAD_PAGE = "https://ollama.com/download"

_DOWNLOAD_URLS: dict[PlatformId, str] = {
    PlatformId.MACOS: "https://ollama.com/download/Ollama-darwin.zip",
    PlatformId.WINDOWS: "https://ollama.com/download/OllamaSetup.exe",
}

_MANUAL_INSTRUCTIONS: dict[PlatformId, str] = {
    PlatformId.WINDOWS: (
        f"Download and run the installer from {_DOWNLOAD_URLS[PlatformId.WINDOWS]}"
    ),
    PlatformId.LINUX: (
        "Install with `curl -fsSL https://ollama.com/install.sh | sh` "
        f"or follow {DOWNLOAD_PAGE}"
    ),
}

_BREW_FALLBACK_PATHS = (
    "/opt/homebrew/bin/brew",
    "/usr/local/bin/brew",
    "/home/linuxbrew/.linuxbrew/bin/brew",
)

_BREW_INSTALL_TIMEOUT_S = 1800.0


def download_url(platform_id: PlatformId) -> str:
    """Official installer URL for a platform.

    Raises:
        ValueError: no packaged installer exists for the platform
    """
    try:
        return _DOWNLOAD_URLS[platform_id]
    except KeyError:
        raise ValueError(
            f"No installer download for {platform_id.display_name}; see {DOWNLOAD_PAGE}"
        ) from None


@dataclass
class InstallResult:
    message: str
    debug: list[str] = field(default_factory=list)


class Installer:
    def __init__(
        self,
        platform_id: Optional[PlatformId] = None,
        *,
        environment: Optional[ExtendedEnvironment] = None,
        resolver: Optional[PathResolver] = None,
        runner: Optional[Runner] = None,
        install_timeout_s: float = _BREW_INSTALL_TIMEOUT_S,
    ) -> None:
        self.platform_id = platform_id or CURRENT_PLATFORM
        self._environment = environment or ExtendedEnvironment(self.platform_id)
        self._resolver = resolver or PathResolver(self.platform_id)
        self._runner = runner
        self._install_timeout_s = install_timeout_s

    def find_brew(self, debug: Optional[list[str]] = None) -> Optional[str]:
        debug = debug if debug is not None else []
        search_path = self._environment.augmented_path()
        found = self._resolver.which("brew", search_path)
        if found:
            debug.append(f"brew found on PATH: {found}")
            return found
        debug.append("brew not found on PATH")
        for path in _BREW_FALLBACK_PATHS:
            if self._resolver.exists(path):
                debug.append(f"brew found at {path}")
                return path
            debug.append(f"brew not at {path}")
        return None

    def install(self) -> InstallResult:
        """Install the engine.

        Raises:
            NotInstalledError: no unattended install on this platform, or Homebrew missing
            SubcommandFailedError: the install command ran and failed
        """
        if self.platform_id is not PlatformId.MACOS:
            guidance = _MANUAL_INSTRUCTIONS.get(self.platform_id, f"See {DOWNLOAD_PAGE}")
            raise NotInstalledError(
                f"Automatic installation is not supported on {self.platform_id.display_name}. "
                f"{guidance}"
            )

        debug: list[str] = []
        brew = self.find_brew(debug)
        if brew is None:
            raise NotInstalledError(
                "Homebrew was not found. Install Homebrew from https://brew.sh "
                f"or download Ollama from {download_url(PlatformId.MACOS)}"
            )

        env = self._environment.child_env()
        self._run([brew, "--version"], env, 30.0, debug)
        logger.info("Installing %s with Homebrew", ENGINE_COMMAND)
        result = self._run([brew, "install", ENGINE_COMMAND], env, self._install_timeout_s, debug)
        if result.stdout.strip():
            debug.append(result.stdout.strip())
        return InstallResult(f"{ENGINE_COMMAND} installed with Homebrew", debug)

    def _run(self, argv: list[str], env, timeout: float, debug: list[str]):
        debug.append(f"$ {' '.join(argv)}")
        try:
            result = run_command(
                argv, env=env, timeout=timeout, platform_id=self.platform_id, runner=self._runner
            )
        except subprocess.TimeoutExpired as e:
            raise SubcommandFailedError(argv, None, f"timed out after {e.timeout}s") from e
        except OSError as e:
            raise SubcommandFailedError(argv, None, str(e)) from e
        debug.append(f"exit code {result.returncode}")
        if not result.ok:
            raise SubcommandFailedError(argv, result.returncode, result.stderr)
        return result
