"""
Data models for Ollama Supervisor.
"""

from .types import (
    PlatformId,
    ExecutableCandidate,
    LaunchOutcome,
    LaunchAttempt,
    HealthState,
    HealthTier,
    HealthStatus,
    ModelRecord,
    StepMarker,
    DiagnosticStep,
    DiagnosticReport,
    EngineInstallation,
    CommandResult,
)

__all__ = [
    'PlatformId',
    'ExecutableCandidate',
    'LaunchOutcome',
    'LaunchAttempt',
    'HealthState',
    'HealthTier',
    'HealthStatus',
    'ModelRecord',
    'StepMarker',
    'DiagnosticStep',
    'DiagnosticReport',
    'EngineInstallation',
    'CommandResult',
]
