# ollama_supervisor/services/health_checker.py
"""
Is the engine actually serving?

Tiers, evaluated in order with early exit:
1. TCP connect to 127.0.0.1:port (authoritative on success)
2. HTTP GET on the status endpoint
3. Process-table scan for the engine's image name (weak: the process may not
   accept connections yet)

Each tier answers True (positive), False (negative) or raises ProbeError when
the probing mechanism itself could not be used. All-negative is STOPPED,
all-erred is INDETERMINATE.
"""

from __future__ import annotations

import http.client
import json
import logging
import socket
import urllib.error
import urllib.request
from typing import Callable, Optional

from ollama_supervisor.config.settings import PortConfig
from ollama_supervisor.models.types import HealthState, HealthStatus, HealthTier, PlatformId
from ollama_supervisor.services.engine_api import STATUS_PATH, build_local_opener, http_get
from ollama_supervisor.services.exceptions import IndeterminateError
from ollama_supervisor.services.platform_paths import CURRENT_PLATFORM
from ollama_supervisor.services.process_runner import find_engine_processes

logger = logging.getLogger(__name__)

# Raw-text markers accepted when the body is not a clean JSON object
_STATUS_MARKERS = ('"models"',)


class ProbeError(Exception):
    """The probing mechanism itself failed (not a negative answer)."""

    pass


TierProbe = Callable[[str, int, float], bool]


def probe_tcp(host: str, port: int, timeout_s: float) -> bool:
    try:
        with socket.create_connection((host, port), timeout=timeout_s):
            return True
    except (ConnectionRefusedError, ConnectionResetError, socket.timeout, TimeoutError):
        return False
    except OSError as e:
        # Unreachable network, permission denied by a local firewall, ...
        raise ProbeError(f"TCP probe could not run: {e}") from e


def looks_like_status_body(body: str) -> bool:
    """True when the body is a JSON object or contains a known marker field."""
    text = body.strip()
    if text.startswith("{") and text.endswith("}"):
        try:
            if isinstance(json.loads(text), dict):
                return True
        except ValueError:
            pass
    return any(marker in text for marker in _STATUS_MARKERS)


# Transport failures that mean "nothing usable is listening", not "cannot probe"
_NEGATIVE_ERRORS = (
    ConnectionRefusedError,
    ConnectionResetError,
    ConnectionAbortedError,
    socket.timeout,
    TimeoutError,
    http.client.HTTPException,
)


def make_http_probe(opener: Optional[urllib.request.OpenerDirector] = None) -> TierProbe:
    def probe_http(host: str, port: int, timeout_s: float) -> bool:
        url = f"http://{host}:{port}{STATUS_PATH}"
        try:
            body, status = http_get(url, timeout_s, opener or build_local_opener())
        except urllib.error.URLError as e:
            reason = e.reason
            if isinstance(reason, _NEGATIVE_ERRORS):
                logger.debug("HTTP probe %s: %s", url, reason)
                return False
            raise ProbeError(f"HTTP probe could not run: {reason}") from e
        except _NEGATIVE_ERRORS as e:
            logger.debug("HTTP probe %s: %s", url, e)
            return False
        except OSError as e:
            raise ProbeError(f"HTTP probe could not run: {e}") from e
        if status >= 400:
            return False
        return looks_like_status_body(body)

    return probe_http


def make_process_probe(platform_id: PlatformId, process_iter=None) -> TierProbe:
    def probe_process_table(host: str, port: int, timeout_s: float) -> bool:
        try:
            return bool(find_engine_processes(platform_id, process_iter))
        except IndeterminateError as e:
            raise ProbeError(str(e)) from e

    return probe_process_table


class HealthChecker:
    def __init__(
        self,
        port_config: PortConfig,
        platform_id: Optional[PlatformId] = None,
        *,
        tcp_timeout_s: float = 1.0,
        http_timeout_s: float = 3.0,
        tcp_probe: Optional[TierProbe] = None,
        http_probe: Optional[TierProbe] = None,
        process_probe: Optional[TierProbe] = None,
    ) -> None:
        self._port_config = port_config
        self.platform_id = platform_id or CURRENT_PLATFORM
        self._tcp_timeout_s = tcp_timeout_s
        self._http_timeout_s = http_timeout_s
        self._tiers: list[tuple[HealthTier, TierProbe]] = [
            (HealthTier.TCP, tcp_probe or probe_tcp),
            (HealthTier.HTTP, http_probe or make_http_probe()),
            (HealthTier.PROCESS_TABLE, process_probe or make_process_probe(self.platform_id)),
        ]

    def _timeout_for(self, tier: HealthTier, override: Optional[float]) -> float:
        if override is not None:
            return override
        if tier is HealthTier.TCP:
            return self._tcp_timeout_s
        return self._http_timeout_s

    def probe(self, port: Optional[int] = None, timeout: Optional[float] = None) -> HealthStatus:
        """Probe the engine. Never raises, never caches."""
        if port is None:
            port = self._port_config.get_port()
        host = self._port_config.host

        errors: list[str] = []
        any_answer = False
        for tier, tier_probe in self._tiers:
            try:
                positive = tier_probe(host, port, self._timeout_for(tier, timeout))
            except ProbeError as e:
                errors.append(f"{tier.name}: {e}")
                continue
            except Exception as e:
                logger.debug("Health tier %s crashed", tier.name, exc_info=True)
                errors.append(f"{tier.name}: {type(e).__name__}: {e}")
                continue
            any_answer = True
            if positive:
                detail = f"confirmed by {tier.name} on port {port}"
                if tier is HealthTier.PROCESS_TABLE:
                    detail = f"process found but port {port} is not answering yet"
                return HealthStatus(HealthState.RUNNING, tier, detail)

        if not any_answer:
            return HealthStatus(
                HealthState.INDETERMINATE,
                None,
                "; ".join(errors) or "no health tier could run",
            )
        detail = f"not answering on port {port}"
        if errors:
            detail += " (" + "; ".join(errors) + ")"
        return HealthStatus(HealthState.STOPPED, None, detail)
