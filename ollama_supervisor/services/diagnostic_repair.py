# ollama_supervisor/services/diagnostic_repair.py
"""
Stop, restart and verify the engine, recording every step.

The workflow is bounded: one stop, one settle delay, one launch, and at most
`max_polls` health probes. Every branch ends in a fully populated report.
"""

from __future__ import annotations

import logging
import time
from typing import Callable, Optional

from ollama_supervisor.models.types import DiagnosticReport, PlatformId
from ollama_supervisor.services.exceptions import (
    EngineError,
    LaunchFailedError,
    NotInstalledError,
)
from ollama_supervisor.services.model_inventory import ModelInventory
from ollama_supervisor.services.service_supervisor import ServiceSupervisor

logger = logging.getLogger(__name__)

_INSTALL_GUIDANCE: dict[PlatformId, str] = {
    PlatformId.MACOS: "Install Ollama with `brew install ollama` or from https://ollama.com/download",
    PlatformId.WINDOWS: "Install Ollama from https://ollama.com/download (OllamaSetup.exe)",
    PlatformId.LINUX: "Install Ollama with `curl -fsSL https://ollama.com/install.sh | sh`",
}
_DEFAULT_INSTALL_GUIDANCE = "Install Ollama from https://ollama.com/download"


def _unresponsive_guidance(port: int) -> str:
    return (
        f"Check whether another program is using port {port}, "
        f"try running `ollama serve` in a terminal to see its error output, "
        f"and restart the computer if the problem persists"
    )


class DiagnosticRepair:
    def __init__(
        self,
        supervisor: ServiceSupervisor,
        inventory: Optional[ModelInventory] = None,
        *,
        max_polls: int = 10,
        poll_interval_s: float = 1.0,
        settle_delay_s: float = 2.0,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        if max_polls < 1:
            raise ValueError("max_polls must be at least 1")
        self._supervisor = supervisor
        self._inventory = inventory
        self._max_polls = max_polls
        self._poll_interval_s = poll_interval_s
        self._settle_delay_s = settle_delay_s
        self._sleep = sleep

    def run(self) -> DiagnosticReport:
        """Run the repair workflow. Never raises; failures end up in the report."""
        report = DiagnosticReport()
        try:
            self._run(report)
        except Exception as e:
            logger.exception("Repair aborted unexpectedly")
            report.fail(f"Unexpected error: {type(e).__name__}: {e}")
            report.success = False
        for line in report.lines():
            logger.info("Repair: %s", line)
        return report

    def _run(self, report: DiagnosticReport) -> None:
        supervisor = self._supervisor

        # 1. stop
        try:
            supervisor.stop()
            report.ok("Stopped existing engine processes")
        except EngineError as e:
            report.warn(f"Could not stop existing engine processes: {e}")

        # 2. settle
        if self._settle_delay_s > 0:
            self._sleep(self._settle_delay_s)

        # 3. locate
        candidate = supervisor.locate_executable()
        if candidate is None:
            report.fail("Ollama executable not found")
            report.info(_INSTALL_GUIDANCE.get(supervisor.platform_id, _DEFAULT_INSTALL_GUIDANCE))
            return
        report.ok(f"Found executable: {candidate.path}")

        # 4. launch
        port = supervisor.port_config.get_port()
        try:
            attempt = supervisor.start([candidate])
        except (LaunchFailedError, NotInstalledError) as e:
            report.fail(f"Failed to launch the engine on port {port}")
            for failed in e.attempts:
                report.info(failed.describe())
            if isinstance(e, NotInstalledError):
                report.info(_INSTALL_GUIDANCE.get(supervisor.platform_id, _DEFAULT_INSTALL_GUIDANCE))
            return
        report.ok(f"Launched engine via {attempt.strategy} on port {port}")

        # 5. poll
        confirmed = False
        warned_process_only = False
        for poll in range(1, self._max_polls + 1):
            report.poll_attempts = poll
            health = supervisor.status()
            current_port = supervisor.port_config.get_port()
            if health.verified_by_network:
                confirmed = True
                report.ok(f"Engine responded on port {current_port} (attempt {poll})")
                break
            if health.is_running and not warned_process_only:
                report.warn(
                    f"Engine process is running but port {current_port} is not answering yet"
                )
                warned_process_only = True
            if poll < self._max_polls:
                self._sleep(self._poll_interval_s)

        if not confirmed:
            port = supervisor.port_config.get_port()
            report.fail(f"Engine did not respond after {report.poll_attempts} attempts on port {port}")
            report.info(_unresponsive_guidance(port))
            report.success = False
            return

        # 6. enrich
        if self._inventory is not None:
            try:
                records = self._inventory.list()
                report.ok(f"Models available: {len(records)}")
            except EngineError as e:
                report.warn(f"Could not list models: {e}")

        report.success = True
