# ollama_supervisor/services/platform_paths.py
"""
Where the engine lives, and which PATH a child process needs to find it.

GUI-launched processes on macOS/Linux often inherit a minimal PATH (an app
started from Finder never sees the shell profile), so package-manager install
locations are missing. Every external command is therefore run with the
augmented PATH built here, never the inherited one.

All platform differences are expressed as tables keyed by PlatformId; adding a
platform means adding rows, not branches.
"""

from __future__ import annotations

import logging
import ntpath
import os
import platform
import posixpath
import shutil
from pathlib import Path
from typing import Mapping, Optional

from ollama_supervisor.models.types import ExecutableCandidate, PlatformId

logger = logging.getLogger(__name__)

ENGINE_COMMAND = "ollama"

# (environment variable holding the base directory, path relative to it).
# A base of None means the second element is already absolute.
_Location = tuple[Optional[str], str]

_INSTALL_LOCATIONS: dict[PlatformId, tuple[_Location, ...]] = {
    PlatformId.MACOS: (
        ("HOME", ".local/bin/ollama"),
        (None, "/opt/homebrew/bin/ollama"),
        (None, "/usr/local/bin/ollama"),
        (None, "/Applications/Ollama.app/Contents/Resources/ollama"),
        ("HOME", "Applications/Ollama.app/Contents/Resources/ollama"),
    ),
    PlatformId.WINDOWS: (
        ("LOCALAPPDATA", "Programs\\Ollama\\ollama.exe"),
        ("ProgramFiles", "Ollama\\ollama.exe"),
        ("ProgramFiles(x86)", "Ollama\\ollama.exe"),
    ),
    PlatformId.LINUX: (
        ("HOME", ".local/bin/ollama"),
        (None, "/usr/local/bin/ollama"),
        (None, "/usr/bin/ollama"),
        (None, "/snap/bin/ollama"),
        (None, "/home/linuxbrew/.linuxbrew/bin/ollama"),
    ),
    PlatformId.UNKNOWN: (),
}

_EXTRA_BIN_DIRS: dict[PlatformId, tuple[_Location, ...]] = {
    PlatformId.MACOS: (
        (None, "/opt/homebrew/bin"),
        (None, "/usr/local/bin"),
        (None, "/usr/bin"),
        (None, "/bin"),
        (None, "/usr/sbin"),
        (None, "/sbin"),
    ),
    PlatformId.WINDOWS: (
        ("LOCALAPPDATA", "Programs\\Ollama"),
        ("ProgramFiles", "Ollama"),
        ("SystemRoot", "System32"),
    ),
    PlatformId.LINUX: (
        (None, "/usr/local/bin"),
        (None, "/usr/bin"),
        (None, "/bin"),
        (None, "/snap/bin"),
        ("HOME", ".local/bin"),
    ),
    PlatformId.UNKNOWN: (),
}

# Windows defaults when the variable is absent from the environment
_DEFAULT_BASES = {
    "ProgramFiles": "C:\\Program Files",
    "ProgramFiles(x86)": "C:\\Program Files (x86)",
    "SystemRoot": "C:\\Windows",
}

_PATH_SEPARATORS = {PlatformId.WINDOWS: ";"}
_NO_PROXY_LOCAL_HOSTS = ("127.0.0.1", "localhost")


def detect_platform(system: Optional[str] = None) -> PlatformId:
    name = (system if system is not None else platform.system()).strip().lower()
    if name == "darwin":
        return PlatformId.MACOS
    if name == "windows":
        return PlatformId.WINDOWS
    if name == "linux":
        return PlatformId.LINUX
    return PlatformId.UNKNOWN


CURRENT_PLATFORM = detect_platform()


def get_platform() -> PlatformId:
    return CURRENT_PLATFORM


def executable_name(platform_id: PlatformId) -> str:
    if platform_id is PlatformId.WINDOWS:
        return f"{ENGINE_COMMAND}.exe"
    return ENGINE_COMMAND


def path_separator(platform_id: PlatformId) -> str:
    return _PATH_SEPARATORS.get(platform_id, ":")


def _path_module(platform_id: PlatformId):
    return ntpath if platform_id is PlatformId.WINDOWS else posixpath


def _lookup(env: Mapping[str, str], key: str, platform_id: PlatformId) -> Optional[str]:
    value = env.get(key)
    if value is None and platform_id is PlatformId.WINDOWS:
        lowered = key.lower()
        for k, v in env.items():
            if k.lower() == lowered:
                value = v
                break
    if value is None and platform_id is PlatformId.WINDOWS:
        if key == "LOCALAPPDATA":
            profile = _lookup(env, "USERPROFILE", platform_id)
            if profile:
                return ntpath.join(profile, "AppData", "Local")
        return _DEFAULT_BASES.get(key)
    return value or None


def expand_location(location: _Location, platform_id: PlatformId, env: Mapping[str, str]) -> Optional[str]:
    base_key, rest = location
    if base_key is None:
        return rest
    base = _lookup(env, base_key, platform_id)
    if not base:
        return None
    return _path_module(platform_id).join(base, rest)


def _normalize_dir(path: str, platform_id: PlatformId) -> str:
    trimmed = path.strip().rstrip("/\\") or path.strip()
    if platform_id is PlatformId.WINDOWS:
        return trimmed.replace("/", "\\").lower()
    return trimmed


def resolve_candidates(
    platform_id: PlatformId, env: Optional[Mapping[str, str]] = None
) -> list[ExecutableCandidate]:
    """Ordered executable candidates: bare command first, then install dirs."""
    env = os.environ if env is None else env
    candidates = [ExecutableCandidate(executable_name(platform_id), is_absolute=False)]
    seen: set[str] = set()
    for location in _INSTALL_LOCATIONS.get(platform_id, ()):
        expanded = expand_location(location, platform_id, env)
        if not expanded:
            continue
        key = _normalize_dir(expanded, platform_id)
        if key in seen:
            continue
        seen.add(key)
        candidates.append(ExecutableCandidate(expanded, is_absolute=True))
    return candidates


def build_augmented_path(
    platform_id: PlatformId,
    base_path: Optional[str],
    env: Optional[Mapping[str, str]] = None,
) -> str:
    """Append the platform's well-known binary dirs missing from `base_path`.

    Idempotent: feeding the result back in returns it unchanged.
    """
    env = os.environ if env is None else env
    sep = path_separator(platform_id)
    base_path = base_path or ""
    present = {
        _normalize_dir(entry, platform_id)
        for entry in base_path.split(sep)
        if entry.strip()
    }

    added: list[str] = []
    for location in _EXTRA_BIN_DIRS.get(platform_id, ()):
        expanded = expand_location(location, platform_id, env)
        if not expanded:
            continue
        key = _normalize_dir(expanded, platform_id)
        if key in present:
            continue
        present.add(key)
        added.append(expanded)

    if not added:
        return base_path
    stripped = base_path.rstrip(sep)
    if not stripped:
        return sep.join(added)
    return sep.join([stripped] + added)


class PathResolver:
    """Produces and checks executable candidates for one platform."""

    def __init__(
        self,
        platform_id: Optional[PlatformId] = None,
        env: Optional[Mapping[str, str]] = None,
    ) -> None:
        self.platform_id = platform_id or CURRENT_PLATFORM
        self._env = env

    def _current_env(self) -> Mapping[str, str]:
        return os.environ if self._env is None else self._env

    def resolve_candidates(self, platform_id: Optional[PlatformId] = None) -> list[ExecutableCandidate]:
        return resolve_candidates(platform_id or self.platform_id, self._current_env())

    @staticmethod
    def exists(path: str) -> bool:
        try:
            return Path(path).is_file()
        except (OSError, ValueError):
            return False

    @staticmethod
    def which(name: str, search_path: Optional[str]) -> Optional[str]:
        try:
            return shutil.which(name, path=search_path)
        except (OSError, ValueError):
            logger.debug("which(%s) failed", name, exc_info=True)
            return None

    def resolve_executable(
        self, candidate: ExecutableCandidate, search_path: Optional[str]
    ) -> Optional[str]:
        """Concrete path for a candidate, or None when it does not resolve."""
        if candidate.is_absolute:
            return candidate.path if self.exists(candidate.path) else None
        return self.which(candidate.path, search_path)

    def locate(self, search_path: Optional[str] = None) -> Optional[ExecutableCandidate]:
        """First candidate that resolves; None means "not installed"."""
        if search_path is None:
            search_path = build_augmented_path(
                self.platform_id, self._current_env().get("PATH", ""), self._current_env()
            )
        for candidate in self.resolve_candidates():
            if self.resolve_executable(candidate, search_path):
                return candidate
        return None


class ExtendedEnvironment:
    """Builds PATH strings and environment blocks for child processes."""

    def __init__(
        self,
        platform_id: Optional[PlatformId] = None,
        env: Optional[Mapping[str, str]] = None,
    ) -> None:
        self.platform_id = platform_id or CURRENT_PLATFORM
        self._env = env

    def _current_env(self) -> Mapping[str, str]:
        return os.environ if self._env is None else self._env

    def augmented_path(self, base_path: Optional[str] = None) -> str:
        env = self._current_env()
        if base_path is None:
            base_path = env.get("PATH", "")
        return build_augmented_path(self.platform_id, base_path, env)

    def child_env(self, engine_host: Optional[str] = None) -> dict[str, str]:
        """Environment block for a spawned child.

        Args:
            engine_host: `host:port` the engine should bind; exported as OLLAMA_HOST
        """
        env = dict(self._current_env())
        path_key = "PATH"
        if self.platform_id is PlatformId.WINDOWS:
            # Windows keeps whatever casing the parent used ("Path" is common)
            for key in list(env.keys()):
                if key.upper() == "PATH":
                    path_key = key
                    break
        env[path_key] = build_augmented_path(self.platform_id, env.get(path_key, ""), env)
        if engine_host:
            env["OLLAMA_HOST"] = engine_host
        no_proxy = ",".join(_merge_no_proxy_items(env))
        env["NO_PROXY"] = no_proxy
        env["no_proxy"] = no_proxy
        return env


def _merge_no_proxy_items(env: Mapping[str, str]) -> list[str]:
    items: list[str] = []
    seen: set[str] = set()
    for name in ("NO_PROXY", "no_proxy"):
        raw = env.get(name, "")
        for item in raw.split(","):
            token = item.strip()
            if not token:
                continue
            lowered = token.lower()
            if lowered in seen:
                continue
            items.append(token)
            seen.add(lowered)
    for host in _NO_PROXY_LOCAL_HOSTS:
        lowered = host.lower()
        if lowered in seen:
            continue
        items.append(host)
        seen.add(lowered)
    return items
