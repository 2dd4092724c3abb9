# ollama_supervisor/services/control_plane.py
"""
Single entry point for UI code.

Builds every service from one AppSettings and one shared PortConfig, so a port
change is seen by the supervisor, health checker, CLI and HTTP client at once.
"""

from __future__ import annotations

import logging
import threading
from pathlib import Path
from typing import Optional

from ollama_supervisor.config.settings import (
    AppSettings,
    PortConfig,
    get_default_settings_path,
)
from ollama_supervisor.models.types import PlatformId
from ollama_supervisor.services.diagnostic_repair import DiagnosticRepair
from ollama_supervisor.services.engine_api import EngineAPI
from ollama_supervisor.services.engine_cli import EngineCLI
from ollama_supervisor.services.health_checker import HealthChecker
from ollama_supervisor.services.installer import Installer
from ollama_supervisor.services.launch_strategies import LaunchStrategyChain
from ollama_supervisor.services.model_inventory import ModelInventory
from ollama_supervisor.services.platform_paths import (
    CURRENT_PLATFORM,
    ExtendedEnvironment,
    PathResolver,
)
from ollama_supervisor.services.service_supervisor import ServiceSupervisor

logger = logging.getLogger(__name__)


class ControlPlane:
    def __init__(
        self,
        settings: Optional[AppSettings] = None,
        settings_path: Optional[Path] = None,
        platform_id: Optional[PlatformId] = None,
    ) -> None:
        self.settings_path = settings_path or get_default_settings_path()
        if settings is None:
            settings = AppSettings.load(self.settings_path)
        self.settings = settings
        self.platform_id = platform_id or CURRENT_PLATFORM
        self.port_config = PortConfig.from_settings(settings)

        self.resolver = PathResolver(self.platform_id)
        self.environment = ExtendedEnvironment(self.platform_id)
        self.cli = EngineCLI(
            self.port_config,
            self.platform_id,
            environment=self.environment,
            resolver=self.resolver,
            timeout_s=settings.command_timeout,
            pull_timeout_s=settings.pull_timeout,
        )
        self.api = EngineAPI(
            self.port_config,
            timeout_s=settings.http_probe_timeout,
            generate_timeout_s=settings.generate_timeout,
        )
        self.health_checker = HealthChecker(
            self.port_config,
            self.platform_id,
            tcp_timeout_s=settings.tcp_probe_timeout,
            http_timeout_s=settings.http_probe_timeout,
        )
        self.supervisor = ServiceSupervisor(
            self.port_config,
            self.platform_id,
            resolver=self.resolver,
            environment=self.environment,
            chain=LaunchStrategyChain(
                platform_id=self.platform_id,
                resolver=self.resolver,
                spawn_grace_period=settings.spawn_grace_period,
            ),
            health_checker=self.health_checker,
            cli=self.cli,
        )
        self.inventory = ModelInventory(self.cli, self.api, self.platform_id)
        self.repair = DiagnosticRepair(
            self.supervisor,
            self.inventory,
            max_polls=settings.repair_max_polls,
            poll_interval_s=settings.repair_poll_interval,
            settle_delay_s=settings.repair_settle_delay,
        )
        self.installer = Installer(
            self.platform_id,
            environment=self.environment,
            resolver=self.resolver,
        )

    def get_port(self) -> int:
        return self.port_config.get_port()

    def set_port(self, port: object, persist: bool = False) -> int:
        """Change the engine port for every component.

        Raises:
            InvalidPortError: port outside [1024, 65535]; nothing changes
        """
        value = self.port_config.set_port(port)
        self.settings.engine_port = value
        if persist:
            self.settings.save(self.settings_path)
            logger.info("Saved engine port %d to %s", value, self.settings_path.parent)
        return value

    def get_base_url(self) -> str:
        return self.port_config.base_url()

    def get_platform(self) -> PlatformId:
        return self.platform_id


_control_plane: Optional[ControlPlane] = None
_control_plane_lock = threading.Lock()


def get_control_plane() -> ControlPlane:
    global _control_plane
    with _control_plane_lock:
        if _control_plane is None:
            _control_plane = ControlPlane()
        return _control_plane
