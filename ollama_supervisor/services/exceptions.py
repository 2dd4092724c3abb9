# ollama_supervisor/services/exceptions.py
"""
Error kinds raised by the supervisor services.

Every external-process or network failure is converted into one of these at its
call site, with the original OS/process message embedded verbatim. The caller
usually has nothing better to do than show that message to the user.
"""

from __future__ import annotations

from typing import Optional, Sequence

from ollama_supervisor.models.types import LaunchAttempt, LaunchOutcome


class EngineError(RuntimeError):
    pass


class NotInstalledError(EngineError):
    """No candidate executable resolves."""

    def __init__(self, message: str, attempts: Sequence[LaunchAttempt] = ()) -> None:
        super().__init__(message)
        self.attempts: list[LaunchAttempt] = list(attempts)


class LaunchFailedError(EngineError):
    """Every strategy/candidate combination failed to spawn."""

    def __init__(self, attempts: Sequence[LaunchAttempt], message: Optional[str] = None) -> None:
        self.attempts: list[LaunchAttempt] = list(attempts)
        if message is None:
            message = self._format(self.attempts)
        super().__init__(message)

    @staticmethod
    def _format(attempts: Sequence[LaunchAttempt]) -> str:
        if not attempts:
            return "Failed to start the engine: no launch attempts were made"
        lines = [f"Failed to start the engine after {len(attempts)} attempt(s):"]
        lines.extend(f"  - {attempt.describe()}" for attempt in attempts)
        return "\n".join(lines)

    @property
    def all_missing(self) -> bool:
        """True when no attempt found an executable to run."""
        return all(
            attempt.outcome is LaunchOutcome.SKIPPED_MISSING for attempt in self.attempts
        )


class UnreachableError(EngineError):
    """The engine was spawned (or expected) but never answered."""

    pass


class EngineAPIError(EngineError):
    """The engine answered over HTTP, but with an error."""

    def __init__(self, message: str, status: Optional[int] = None, body: str = "") -> None:
        super().__init__(message)
        self.status = status
        self.body = body


class SubcommandFailedError(EngineError):
    """An engine or OS command ran but exited non-zero."""

    def __init__(
        self,
        argv: Sequence[str],
        returncode: Optional[int],
        stderr: str,
        message: Optional[str] = None,
    ) -> None:
        self.argv = tuple(argv)
        self.returncode = returncode
        self.stderr = stderr
        if message is None:
            detail = stderr.strip() or f"exit code {returncode}"
            message = f"'{' '.join(self.argv)}' failed: {detail}"
        super().__init__(message)


class ParseFailureError(EngineError):
    """Expected tabular or JSON structure was not found in the output."""

    def __init__(self, message: str, raw: str = "") -> None:
        super().__init__(message)
        self.raw = raw


class IndeterminateError(EngineError):
    """The OS probing mechanism itself could not be invoked."""

    pass
