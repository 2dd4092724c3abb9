# ollama_supervisor/config/settings.py
"""
Application settings management for Ollama Supervisor.

Settings file separation:
- settings.template.json: developer defaults (overwritten on update)
- user_settings.json: only the values the user changed
- On load the template is read first, then user_settings overrides it

Cache:
- _settings_cache: AppSettings instances keyed by path
- load() prefers the cache and only re-reads when a file mtime changes
- save() refreshes the cache
- invalidate_settings_cache() clears it explicitly

The engine port is the one value that may change while the process runs. It
lives in PortConfig, which every component reads through get_port().
"""

import logging
import threading
from dataclasses import dataclass
from pathlib import Path
from typing import Optional
import json

# Module logger
logger = logging.getLogger(__name__)

# Settings cache: path -> (mtime_template, mtime_user, AppSettings)
_settings_cache: dict[str, tuple[float, float, "AppSettings"]] = {}
_settings_cache_lock = threading.Lock()

DEFAULT_ENGINE_PORT = 11434
MIN_ENGINE_PORT = 1024
MAX_ENGINE_PORT = 65535
ENGINE_HOST = "127.0.0.1"

# Keys the user may change (saved to user_settings.json)
USER_SETTINGS_KEYS = {
    "engine_port",
}


class InvalidPortError(ValueError):
    """Raised when a port outside the registered TCP range is requested."""

    pass


def validate_port(port: object) -> int:
    """Return `port` as int if it lies in [1024, 65535], else raise InvalidPortError."""
    if isinstance(port, bool):
        raise InvalidPortError(f"Port must be an integer, got {port!r}")
    try:
        value = int(port)  # type: ignore[arg-type]
    except (TypeError, ValueError) as e:
        raise InvalidPortError(f"Port must be an integer, got {port!r}") from e
    if isinstance(port, float) and port != value:
        raise InvalidPortError(f"Port must be an integer, got {port!r}")
    if value < MIN_ENGINE_PORT or value > MAX_ENGINE_PORT:
        raise InvalidPortError(
            f"Port {value} is outside the allowed range {MIN_ENGINE_PORT}-{MAX_ENGINE_PORT}"
        )
    return value


@dataclass
class AppSettings:
    """Application settings"""

    # Engine
    engine_port: int = DEFAULT_ENGINE_PORT

    # Health probes (seconds)
    tcp_probe_timeout: float = 1.0
    http_probe_timeout: float = 3.0

    # Engine CLI (seconds)
    command_timeout: int = 30
    pull_timeout: int = 3600
    generate_timeout: int = 120

    # Launch
    spawn_grace_period: float = 0.3     # Early-exit window after a spawn

    # Diagnostic repair
    repair_max_polls: int = 10
    repair_poll_interval: float = 1.0
    repair_settle_delay: float = 2.0

    @classmethod
    def load(cls, path: Path, use_cache: bool = True) -> "AppSettings":
        """Load settings for `path` (config/settings.json).

        The template next to it supplies every field; user_settings.json may
        override USER_SETTINGS_KEYS. An unchanged pair of files returns the
        cached instance unless use_cache is False.
        """
        template_path, user_path = _settings_files(path)
        cache_key = str(path.resolve())
        mtimes = _mtimes(template_path, user_path)

        if use_cache:
            with _settings_cache_lock:
                cached = _settings_cache.get(cache_key)
            if cached is not None and cached[:2] == mtimes:
                logger.debug("Using cached settings for: %s", path)
                return cached[2]

        data = _read_json(template_path)
        user_data = _read_json(user_path)
        data.update({k: v for k, v in user_data.items() if k in USER_SETTINGS_KEYS})

        known_fields = set(cls.__dataclass_fields__)
        settings = cls(**{k: v for k, v in data.items() if k in known_fields})
        settings._validate()

        with _settings_cache_lock:
            _settings_cache[cache_key] = (*mtimes, settings)
        return settings

    def _reset(self, name: str, default, reason: str) -> None:
        logger.warning("%s %s (%r), resetting to %r", name, reason, getattr(self, name), default)
        setattr(self, name, default)

    def _validate(self) -> None:
        """Reset out-of-range values to their defaults, with a warning each."""
        try:
            self.engine_port = validate_port(self.engine_port)
        except InvalidPortError as e:
            logger.warning("%s, resetting to %d", e, DEFAULT_ENGINE_PORT)
            self.engine_port = DEFAULT_ENGINE_PORT

        if self.tcp_probe_timeout <= 0 or self.tcp_probe_timeout > 5:
            self._reset("tcp_probe_timeout", 1.0, "out of range")
        if self.http_probe_timeout <= 0 or self.http_probe_timeout > 5:
            self._reset("http_probe_timeout", 3.0, "out of range")

        if self.command_timeout < 1:
            self._reset("command_timeout", 30, "too small")
        if self.pull_timeout < self.command_timeout:
            self._reset("pull_timeout", 3600, "shorter than command_timeout")
        if self.generate_timeout < 1:
            self._reset("generate_timeout", 120, "too small")

        if self.spawn_grace_period < 0:
            self._reset("spawn_grace_period", 0.3, "negative")

        # The repair loop must stay bounded
        if self.repair_max_polls < 1 or self.repair_max_polls > 120:
            self._reset("repair_max_polls", 10, "out of range")
        if self.repair_poll_interval <= 0:
            self._reset("repair_poll_interval", 1.0, "not positive")
        if self.repair_settle_delay < 0:
            self._reset("repair_settle_delay", 2.0, "negative")

    def save(self, path: Path) -> None:
        """Write USER_SETTINGS_KEYS to user_settings.json and refresh the cache.

        The template is never modified.
        """
        template_path, user_path = _settings_files(path)
        user_path.parent.mkdir(parents=True, exist_ok=True)

        data = {key: getattr(self, key) for key in sorted(USER_SETTINGS_KEYS)}
        with open(user_path, 'w', encoding='utf-8') as f:
            json.dump(data, f, indent=2, ensure_ascii=False)
        logger.debug("Saved user settings to: %s", user_path)

        with _settings_cache_lock:
            _settings_cache[str(path.resolve())] = (*_mtimes(template_path, user_path), self)


def _settings_files(path: Path) -> tuple[Path, Path]:
    """(template, user_settings) that sit next to `path`"""
    return path.parent / "settings.template.json", path.parent / "user_settings.json"


def _mtimes(*paths: Path) -> tuple[float, ...]:
    return tuple(p.stat().st_mtime if p.exists() else 0.0 for p in paths)


def _read_json(path: Path) -> dict:
    """Object stored in `path`; missing, unreadable or non-object files give {}."""
    if not path.exists():
        return {}
    try:
        with open(path, 'r', encoding='utf-8-sig') as f:
            data = json.load(f)
    except (json.JSONDecodeError, UnicodeDecodeError) as e:
        logger.warning("Failed to load settings from %s: %s", path, e)
        return {}
    if not isinstance(data, dict):
        logger.warning("Ignoring %s: expected a JSON object", path)
        return {}
    logger.debug("Loaded settings from: %s", path)
    return data


class PortConfig:
    """Process-wide owner of the engine port.

    One setter, one read accessor. Components hold a reference to this object
    and call get_port() on every use; none of them keeps its own copy.
    """

    def __init__(self, port: int = DEFAULT_ENGINE_PORT, host: str = ENGINE_HOST) -> None:
        self._lock = threading.Lock()
        self._port = validate_port(port)
        self._host = host

    @classmethod
    def from_settings(cls, settings: AppSettings) -> "PortConfig":
        return cls(settings.engine_port)

    @property
    def host(self) -> str:
        return self._host

    def get_port(self) -> int:
        with self._lock:
            return self._port

    def set_port(self, port: object) -> int:
        value = validate_port(port)
        with self._lock:
            previous = self._port
            self._port = value
        if previous != value:
            logger.info("Engine port changed: %d -> %d", previous, value)
        return value

    def base_url(self) -> str:
        return f"http://{self._host}:{self.get_port()}"

    def host_port(self) -> str:
        """`host:port` form used for the engine's OLLAMA_HOST variable"""
        return f"{self._host}:{self.get_port()}"


def get_default_settings_path() -> Path:
    """Get default settings file path"""
    return Path(__file__).parent.parent.parent / "config" / "settings.json"


def invalidate_settings_cache(path: Optional[Path] = None) -> None:
    """Invalidate settings cache.

    Args:
        path: clear only this path's entry; None clears everything
    """
    with _settings_cache_lock:
        if path is None:
            _settings_cache.clear()
            logger.debug("Cleared all settings cache")
        else:
            cache_key = str(path.resolve())
            if cache_key in _settings_cache:
                del _settings_cache[cache_key]
                logger.debug("Cleared settings cache for: %s", path)
