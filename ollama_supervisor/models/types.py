# ollama_supervisor/models/types.py
"""
Core data types for Ollama Supervisor.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Optional


class PlatformId(Enum):
    """Operating system family; fixed at process start"""
    MACOS = "macos"
    WINDOWS = "windows"
    LINUX = "linux"
    UNKNOWN = "unknown"

    @property
    def display_name(self) -> str:
        names = {
            PlatformId.MACOS: "macOS",
            PlatformId.WINDOWS: "Windows",
            PlatformId.LINUX: "Linux",
        }
        return names.get(self, "Unknown Platform")


@dataclass(frozen=True)
class ExecutableCandidate:
    """
    One possible location of the engine executable.

    Absolute paths must be existence-checked before use; bare names are resolved
    by the OS loader through the augmented PATH.
    """
    path: str
    is_absolute: bool

    def __str__(self) -> str:
        return self.path


class LaunchOutcome(Enum):
    """Result of a single strategy/candidate attempt"""
    SUCCESS = "success"
    SPAWN_ERROR = "spawn_error"
    SKIPPED_MISSING = "skipped_missing"


@dataclass(frozen=True)
class LaunchAttempt:
    strategy: str
    candidate: ExecutableCandidate
    outcome: LaunchOutcome
    error: Optional[str] = None
    pid: Optional[int] = None

    @property
    def succeeded(self) -> bool:
        return self.outcome is LaunchOutcome.SUCCESS

    def describe(self) -> str:
        if self.outcome is LaunchOutcome.SUCCESS:
            pid_text = f" (pid {self.pid})" if self.pid is not None else ""
            return f"{self.strategy} {self.candidate}: started{pid_text}"
        if self.outcome is LaunchOutcome.SKIPPED_MISSING:
            return f"{self.strategy} {self.candidate}: skipped, file does not exist"
        return f"{self.strategy} {self.candidate}: {self.error or 'spawn failed'}"


class HealthState(Enum):
    RUNNING = "running"
    STOPPED = "stopped"
    INDETERMINATE = "indeterminate"


class HealthTier(Enum):
    """Verification level that produced a health verdict"""
    TCP = 1
    HTTP = 2
    PROCESS_TABLE = 3


@dataclass(frozen=True)
class HealthStatus:
    """
    Outcome of one health probe. Never cached; every query re-probes.

    A RUNNING verdict from the process table only means the process exists. It
    may not be accepting connections yet, so `verified_by_network` is False.
    """
    state: HealthState
    tier: Optional[HealthTier] = None
    detail: str = ""

    @property
    def is_running(self) -> bool:
        return self.state is HealthState.RUNNING

    @property
    def verified_by_network(self) -> bool:
        return self.is_running and self.tier in (HealthTier.TCP, HealthTier.HTTP)


@dataclass(frozen=True)
class ModelRecord:
    """
    A model known to the engine. Identity is the name string.
    """
    name: str
    model_id: Optional[str] = field(default=None, compare=False)
    size: Optional[str] = field(default=None, compare=False)
    modified: Optional[str] = field(default=None, compare=False)

    @property
    def tag(self) -> Optional[str]:
        """Tag part of `name:tag`, if present"""
        if ":" not in self.name:
            return None
        return self.name.split(":", 1)[1] or None


class StepMarker(Enum):
    OK = "✓"
    FAIL = "✗"
    WARN = "⚠"
    INFO = "•"


@dataclass(frozen=True)
class DiagnosticStep:
    marker: StepMarker
    message: str

    def __str__(self) -> str:
        return f"{self.marker.value} {self.message}"


@dataclass
class DiagnosticReport:
    """
    Completed record of a repair run: ordered, append-only steps plus the
    final verdict.
    """
    _steps: list[DiagnosticStep] = field(default_factory=list)
    success: bool = False
    poll_attempts: int = 0

    @property
    def steps(self) -> tuple[DiagnosticStep, ...]:
        return tuple(self._steps)

    def add(self, marker: StepMarker, message: str) -> None:
        self._steps.append(DiagnosticStep(marker, message))

    def ok(self, message: str) -> None:
        self.add(StepMarker.OK, message)

    def fail(self, message: str) -> None:
        self.add(StepMarker.FAIL, message)

    def warn(self, message: str) -> None:
        self.add(StepMarker.WARN, message)

    def info(self, message: str) -> None:
        self.add(StepMarker.INFO, message)

    def lines(self) -> list[str]:
        return [str(step) for step in self._steps]

    def render(self) -> str:
        verdict = "Repair succeeded" if self.success else "Repair failed"
        return "\n".join(self.lines() + [verdict])


@dataclass(frozen=True)
class EngineInstallation:
    """Combined installed/running/version snapshot for setup screens"""
    is_installed: bool
    is_running: bool
    version: Optional[str] = None
    health: Optional[HealthStatus] = None


@dataclass(frozen=True)
class CommandResult:
    """Completed external command"""
    argv: tuple[str, ...]
    returncode: int
    stdout: str = ""
    stderr: str = ""

    @property
    def ok(self) -> bool:
        return self.returncode == 0
