# ollama_supervisor/services/service_supervisor.py
"""
Start, stop and query the engine.

No started/stopped flag is kept here: the engine can be launched or killed by
anything outside this program, so every answer is re-derived from the
HealthChecker.
"""

from __future__ import annotations

import logging
from typing import Optional, Sequence

from ollama_supervisor.config.settings import PortConfig
from ollama_supervisor.models.types import (
    EngineInstallation,
    ExecutableCandidate,
    HealthStatus,
    LaunchAttempt,
    PlatformId,
)
from ollama_supervisor.services.engine_cli import EngineCLI
from ollama_supervisor.services.exceptions import (
    EngineError,
    LaunchFailedError,
    NotInstalledError,
)
from ollama_supervisor.services.health_checker import HealthChecker
from ollama_supervisor.services.launch_strategies import LaunchStrategyChain
from ollama_supervisor.services.platform_paths import (
    CURRENT_PLATFORM,
    ExtendedEnvironment,
    PathResolver,
)
from ollama_supervisor.services.process_runner import Runner, kill_by_image_name

logger = logging.getLogger(__name__)

_NOT_INSTALLED_MESSAGE = (
    "Ollama is not installed: the executable was not found on PATH "
    "or in any known install location"
)


class ServiceSupervisor:
    def __init__(
        self,
        port_config: PortConfig,
        platform_id: Optional[PlatformId] = None,
        *,
        resolver: Optional[PathResolver] = None,
        environment: Optional[ExtendedEnvironment] = None,
        chain: Optional[LaunchStrategyChain] = None,
        health_checker: Optional[HealthChecker] = None,
        cli: Optional[EngineCLI] = None,
        runner: Optional[Runner] = None,
        process_iter=None,
        kill_timeout_s: float = 15.0,
    ) -> None:
        self.port_config = port_config
        self.platform_id = platform_id or CURRENT_PLATFORM
        self.resolver = resolver or PathResolver(self.platform_id)
        self.environment = environment or ExtendedEnvironment(self.platform_id)
        self.chain = chain or LaunchStrategyChain(platform_id=self.platform_id, resolver=self.resolver)
        self.health_checker = health_checker or HealthChecker(port_config, self.platform_id)
        self.cli = cli or EngineCLI(
            port_config,
            self.platform_id,
            environment=self.environment,
            resolver=self.resolver,
            runner=runner,
        )
        self._runner = runner
        self._process_iter = process_iter
        self._kill_timeout_s = kill_timeout_s

    def start(self, candidates: Optional[Sequence[ExecutableCandidate]] = None) -> LaunchAttempt:
        """Spawn `ollama serve` on the configured port.

        Returns as soon as a strategy has spawned the process; it does not wait
        for the engine to answer. Call status() for that.

        Raises:
            NotInstalledError: no candidate resolved to an executable
            LaunchFailedError: executables exist but every spawn failed
        """
        if candidates is None:
            candidates = self.resolver.resolve_candidates()
        port = self.port_config.get_port()
        env = self.environment.child_env(f"{self.port_config.host}:{port}")
        logger.info("Starting engine on port %d (%d candidate(s))", port, len(candidates))
        try:
            return self.chain.start(candidates, env, port, self.port_config.host)
        except LaunchFailedError as e:
            if e.all_missing:
                raise NotInstalledError(_NOT_INSTALLED_MESSAGE, e.attempts) from e
            raise

    def stop(self) -> list[str]:
        """Force-terminate every engine process. Stopping a stopped engine succeeds.

        Raises:
            SubcommandFailedError: the kill command itself failed
        """
        env = self.environment.child_env()
        messages = kill_by_image_name(
            self.platform_id,
            env=env,
            timeout=self._kill_timeout_s,
            runner=self._runner,
            process_iter=self._process_iter,
        )
        for message in messages:
            logger.info("Stop: %s", message)
        return messages

    def status(self, timeout: Optional[float] = None) -> HealthStatus:
        return self.health_checker.probe(self.port_config.get_port(), timeout)

    def locate_executable(self) -> Optional[ExecutableCandidate]:
        return self.resolver.locate(self.environment.augmented_path())

    def is_installed(self) -> bool:
        return self.locate_executable() is not None

    def version(self) -> str:
        return self.cli.version()

    def installation_status(self) -> EngineInstallation:
        """Installed / running / version snapshot. Never raises."""
        installed = self.is_installed()
        health = self.status()
        version: Optional[str] = None
        if installed:
            try:
                version = self.version()
            except EngineError as e:
                logger.debug("Version query failed: %s", e)
        return EngineInstallation(
            is_installed=installed,
            is_running=health.is_running,
            version=version,
            health=health,
        )
