# ollama_supervisor/services/engine_api.py
"""
Minimal client for the engine's local HTTP surface.

Response bodies are treated as loosely structured JSON: fields are picked out
where present instead of validating a schema, since the engine's output format
is not versioned from our side. Requests always bypass any configured proxy.
"""

from __future__ import annotations

import json
import logging
import urllib.error
import urllib.request
from typing import Any, Optional, Sequence

from ollama_supervisor.config.settings import PortConfig
from ollama_supervisor.services.exceptions import (
    EngineAPIError,
    ParseFailureError,
    UnreachableError,
)

logger = logging.getLogger(__name__)

STATUS_PATH = "/api/tags"
GENERATE_PATH = "/api/generate"
_LOAD_PROMPT = "hello"


def build_local_opener() -> urllib.request.OpenerDirector:
    """Opener that never routes localhost traffic through a proxy."""
    return urllib.request.build_opener(urllib.request.ProxyHandler({}))


def http_get(
    url: str,
    timeout_s: float,
    opener: Optional[urllib.request.OpenerDirector] = None,
) -> tuple[str, int]:
    """GET `url` and return (body, status).

    HTTP error statuses are returned, not raised. Transport failures propagate
    as URLError/OSError so callers can tell a refused port from a blocked one.
    """
    opener = opener or build_local_opener()
    req = urllib.request.Request(url, method="GET")
    try:
        with opener.open(req, timeout=timeout_s) as resp:
            raw = resp.read()
            status_code = resp.getcode()
    except urllib.error.HTTPError as e:
        try:
            raw = e.read() or b""
        except OSError:
            raw = b""
        return raw.decode("utf-8", errors="replace"), e.code
    return raw.decode("utf-8", errors="replace"), status_code


def http_get_text(
    url: str,
    timeout_s: float,
    opener: Optional[urllib.request.OpenerDirector] = None,
) -> tuple[Optional[str], Optional[int], Optional[str]]:
    """GET `url` and return (body, status, error); exactly one of body/error is set."""
    try:
        body, status_code = http_get(url, timeout_s, opener)
    except Exception as e:
        return None, None, str(e)
    return body, status_code, None


def _loads_object(text: str) -> Optional[dict]:
    try:
        obj = json.loads(text)
    except (json.JSONDecodeError, ValueError):
        return None
    return obj if isinstance(obj, dict) else None


class EngineAPI:
    """HTTP calls against PortConfig.base_url(), read fresh on every request."""

    def __init__(
        self,
        port_config: PortConfig,
        *,
        opener: Optional[urllib.request.OpenerDirector] = None,
        timeout_s: float = 3.0,
        generate_timeout_s: float = 120.0,
    ) -> None:
        self._port_config = port_config
        self._opener = opener or build_local_opener()
        self._timeout_s = timeout_s
        self._generate_timeout_s = generate_timeout_s

    def _url(self, path: str) -> str:
        return f"{self._port_config.base_url()}{path}"

    def tags_text(self, timeout_s: Optional[float] = None) -> str:
        """Raw body of the status/tags endpoint."""
        url = self._url(STATUS_PATH)
        body, status, error = http_get_text(
            url, timeout_s if timeout_s is not None else self._timeout_s, self._opener
        )
        if body is None:
            raise UnreachableError(f"GET {url} failed: {error}")
        if status is not None and status >= 400:
            raise EngineAPIError(f"GET {url} returned HTTP {status}", status, body)
        return body

    def _post(self, path: str, payload: dict[str, Any], timeout_s: float):
        url = self._url(path)
        data = json.dumps(payload, ensure_ascii=False).encode("utf-8")
        req = urllib.request.Request(
            url,
            data=data,
            method="POST",
            headers={"Content-Type": "application/json", "Accept": "application/json"},
        )
        try:
            return self._opener.open(req, timeout=timeout_s)
        except urllib.error.HTTPError as e:
            try:
                body = e.read().decode("utf-8", errors="replace")
            except Exception:
                body = ""
            raise EngineAPIError(
                f"POST {url} returned HTTP {e.code}: {body.strip() or e.reason}", e.code, body
            ) from e
        except (urllib.error.URLError, OSError) as e:
            raise UnreachableError(f"POST {url} failed: {e}") from e

    def generate(
        self,
        model: str,
        prompt: str,
        images: Optional[Sequence[str]] = None,
        timeout_s: Optional[float] = None,
    ) -> str:
        """Run a prompt and return the concatenated response text.

        The engine streams newline-delimited JSON objects, each carrying a
        `response` fragment. Lines that are not JSON are skipped. If nothing
        was collected, the whole body is parsed as one JSON object.
        """
        payload: dict[str, Any] = {"model": model, "prompt": prompt}
        if images:
            payload["images"] = list(images)
        timeout = timeout_s if timeout_s is not None else self._generate_timeout_s

        collected: list[str] = []
        raw_lines: list[str] = []
        try:
            with self._post(GENERATE_PATH, payload, timeout) as resp:
                for raw_line in resp:
                    line = raw_line.decode("utf-8", errors="replace").strip()
                    if not line:
                        continue
                    raw_lines.append(line)
                    obj = _loads_object(line)
                    if obj is None:
                        continue
                    if obj.get("error"):
                        raise EngineAPIError(
                            f"Model '{model}' returned an error: {obj['error']}", None, line
                        )
                    fragment = obj.get("response")
                    if isinstance(fragment, str):
                        collected.append(fragment)
        except (OSError, urllib.error.URLError) as e:
            raise UnreachableError(f"Reading the response for '{model}' failed: {e}") from e

        if collected:
            return "".join(collected)

        body = "\n".join(raw_lines)
        obj = _loads_object(body)
        if obj is not None and isinstance(obj.get("response"), str):
            return obj["response"]
        if body:
            return body
        raise ParseFailureError(f"Empty response from model '{model}'", body)

    def load_model(self, model: str, timeout_s: Optional[float] = None) -> str:
        """Warm a model into memory with a tiny non-streaming prompt."""
        payload = {"model": model, "prompt": _LOAD_PROMPT, "stream": False}
        timeout = timeout_s if timeout_s is not None else self._generate_timeout_s
        try:
            with self._post(GENERATE_PATH, payload, timeout) as resp:
                body = resp.read().decode("utf-8", errors="replace")
        except (OSError, urllib.error.URLError) as e:
            raise UnreachableError(f"Loading '{model}' failed: {e}") from e
        obj = _loads_object(body)
        if obj is None:
            raise ParseFailureError(f"Unexpected response while loading '{model}'", body)
        if obj.get("error"):
            raise EngineAPIError(f"Failed to load model '{model}': {obj['error']}", None, body)
        logger.info("Model loaded: %s", model)
        return f"Model '{model}' loaded"

    def unload_model(self, model: str, timeout_s: Optional[float] = None) -> str:
        """Ask the engine to evict a model immediately (keep_alive=0)."""
        payload = {"model": model, "keep_alive": 0}
        timeout = timeout_s if timeout_s is not None else self._timeout_s * 5
        try:
            with self._post(GENERATE_PATH, payload, timeout) as resp:
                body = resp.read().decode("utf-8", errors="replace")
        except (OSError, urllib.error.URLError) as e:
            raise UnreachableError(f"Unloading '{model}' failed: {e}") from e
        obj = _loads_object(body)
        if obj is not None and obj.get("error"):
            raise EngineAPIError(f"Failed to unload model '{model}': {obj['error']}", None, body)
        logger.info("Model unloaded: %s", model)
        return f"Model '{model}' unloaded"
