# ollama_supervisor/services/__init__.py
"""
Service layer for Ollama Supervisor.

Services are lazy-loaded so importing the package stays cheap.
Use explicit imports like:
    from ollama_supervisor.services.service_supervisor import ServiceSupervisor
"""

# Fast imports - error kinds
from .exceptions import (
    EngineError,
    NotInstalledError,
    LaunchFailedError,
    UnreachableError,
    EngineAPIError,
    SubcommandFailedError,
    ParseFailureError,
    IndeterminateError,
)

# Lazy-loaded services via __getattr__
_LAZY_IMPORTS = {
    'PathResolver': 'platform_paths',
    'ExtendedEnvironment': 'platform_paths',
    'LaunchStrategyChain': 'launch_strategies',
    'HealthChecker': 'health_checker',
    'EngineAPI': 'engine_api',
    'EngineCLI': 'engine_cli',
    'ModelInventory': 'model_inventory',
    'ServiceSupervisor': 'service_supervisor',
    'DiagnosticRepair': 'diagnostic_repair',
    'Installer': 'installer',
    'InstallResult': 'installer',
    'ControlPlane': 'control_plane',
    'get_control_plane': 'control_plane',
}

# Submodules that can be accessed via __getattr__ (for patching support)
_SUBMODULES = {
    'platform_paths',
    'process_runner',
    'launch_strategies',
    'health_checker',
    'engine_api',
    'engine_cli',
    'model_inventory',
    'service_supervisor',
    'diagnostic_repair',
    'installer',
    'control_plane',
}


def __getattr__(name: str):
    """Lazy-load service modules on first access."""
    import importlib
    # Support accessing submodules directly (for unittest.mock.patch)
    if name in _SUBMODULES:
        return importlib.import_module(f'.{name}', __package__)
    if name in _LAZY_IMPORTS:
        module_name = _LAZY_IMPORTS[name]
        module = importlib.import_module(f'.{module_name}', __package__)
        return getattr(module, name)
    raise AttributeError(f"module {__name__!r} has no attribute {name!r}")


__all__ = [
    'EngineError',
    'NotInstalledError',
    'LaunchFailedError',
    'UnreachableError',
    'EngineAPIError',
    'SubcommandFailedError',
    'ParseFailureError',
    'IndeterminateError',
    'PathResolver',
    'ExtendedEnvironment',
    'LaunchStrategyChain',
    'HealthChecker',
    'EngineAPI',
    'EngineCLI',
    'ModelInventory',
    'ServiceSupervisor',
    'DiagnosticRepair',
    'Installer',
    'InstallResult',
    'ControlPlane',
    'get_control_plane',
]
