# ollama_supervisor/services/model_inventory.py
"""
Models managed by the engine: list, pull, remove.

The engine CLI is the primary source of truth. When `list` fails, the local
HTTP API is scanned for `"name"` fields instead; that response shape is not
guaranteed, so the fallback is a degraded last resort.
"""

from __future__ import annotations

import logging
import os
import re
from pathlib import Path
from typing import Mapping, Optional

from ollama_supervisor.models.types import ModelRecord, PlatformId
from ollama_supervisor.services.engine_api import EngineAPI
from ollama_supervisor.services.engine_cli import EngineCLI
from ollama_supervisor.services.exceptions import (
    EngineError,
    NotInstalledError,
    ParseFailureError,
    SubcommandFailedError,
)
from ollama_supervisor.services.platform_paths import CURRENT_PLATFORM, expand_location

logger = logging.getLogger(__name__)

# Sizes as printed by `ollama list`: "3.8 GB", "3.8GB", "776 MB", "512 B"
_RE_SIZE = re.compile(r"\b(\d+(?:\.\d+)?\s?(?:[KMGTP]i?B|B))\b")
_RE_NAME_FIELD = re.compile(r'"name"\s*:\s*"((?:[^"\\]|\\.)*)"')
_MODELS_MARKER = '"models"'

# Platforms where the HTTP API is consulted when the CLI listing fails
_HTTP_LIST_FALLBACK: dict[PlatformId, bool] = {
    PlatformId.MACOS: True,
    PlatformId.WINDOWS: True,
    PlatformId.LINUX: True,
    PlatformId.UNKNOWN: False,
}

_MODEL_DIRS: dict[PlatformId, tuple[tuple[Optional[str], str], ...]] = {
    PlatformId.MACOS: (
        ("HOME", ".ollama/models"),
        (None, "/usr/local/share/ollama/models"),
        (None, "/opt/homebrew/share/ollama/models"),
    ),
    PlatformId.WINDOWS: (
        ("USERPROFILE", ".ollama\\models"),
        ("LOCALAPPDATA", "Ollama\\models"),
    ),
    PlatformId.LINUX: (
        ("HOME", ".ollama/models"),
        (None, "/usr/share/ollama/.ollama/models"),
    ),
    PlatformId.UNKNOWN: (("HOME", ".ollama/models"),),
}

_DEFAULT_REGISTRY = "registry.ollama.ai"
_DEFAULT_NAMESPACE = "library"


def parse_model_table(text: str) -> list[ModelRecord]:
    """Parse `ollama list` output.

    Assumptions about the table:
    - the first non-blank line is a header whose first column is NAME
    - every other non-blank line is one model; its first whitespace-separated
      token is the model name
    - when the header has an ID column right after NAME, the second token is
      the model digest
    - the size is the first "<number> <unit>" group after those tokens, and
      whatever follows it is the MODIFIED column

    A header-only (or empty) body yields an empty list.

    Raises:
        ParseFailureError: output does not start with a NAME header
    """
    lines = [line for line in text.splitlines() if line.strip()]
    if not lines:
        return []

    header = [column.upper() for column in lines[0].split()]
    if not header or header[0] != "NAME":
        raise ParseFailureError("Unexpected `list` output: no NAME header", text)
    has_id = len(header) > 1 and header[1] == "ID"
    has_size = "SIZE" in header
    has_modified = "MODIFIED" in header

    records: list[ModelRecord] = []
    for line in lines[1:]:
        tokens = line.split()
        name = tokens[0]
        model_id = tokens[1] if has_id and len(tokens) > 1 else None

        rest = line.split(name, 1)[1]
        if model_id:
            rest = rest.split(model_id, 1)[1]
        size: Optional[str] = None
        modified: Optional[str] = None
        if has_size:
            m = _RE_SIZE.search(rest)
            if m:
                size = m.group(1)
                rest = rest[m.end():]
        if has_modified:
            modified = rest.strip() or None
        records.append(ModelRecord(name=name, model_id=model_id, size=size, modified=modified))
    return records


def extract_model_names(text: str) -> list[str]:
    """Scan an API body for `"name": "..."` fields, in order, without duplicates.

    Raises:
        ParseFailureError: neither a models marker nor any name field present
    """
    names: list[str] = []
    seen: set[str] = set()
    for m in _RE_NAME_FIELD.finditer(text):
        name = m.group(1).replace('\\"', '"').strip()
        if not name or name in seen:
            continue
        seen.add(name)
        names.append(name)
    if not names and _MODELS_MARKER not in text:
        raise ParseFailureError("No model list found in the API response", text)
    return names


class ModelInventory:
    def __init__(
        self,
        cli: EngineCLI,
        api: Optional[EngineAPI] = None,
        platform_id: Optional[PlatformId] = None,
        *,
        env: Optional[Mapping[str, str]] = None,
    ) -> None:
        self._cli = cli
        self._api = api
        self.platform_id = platform_id or CURRENT_PLATFORM
        self._env = env

    def list(self) -> list[ModelRecord]:
        try:
            text = self._cli.list_text()
        except (SubcommandFailedError, NotInstalledError) as cli_error:
            if self._api is None or not _HTTP_LIST_FALLBACK.get(self.platform_id, False):
                raise
            logger.warning("`ollama list` failed (%s); trying the HTTP API", cli_error)
            try:
                body = self._api.tags_text()
                names = extract_model_names(body)
            except EngineError as api_error:
                logger.debug("HTTP model listing failed: %s", api_error)
                raise cli_error
            return [ModelRecord(name=name) for name in names]
        return parse_model_table(text)

    def names(self) -> list[str]:
        return [record.name for record in self.list()]

    def pull(self, name: str) -> str:
        name = _require_name(name)
        output = self._cli.pull(name)
        return f"Model '{name}' downloaded. {output}".strip()

    def remove(self, name: str) -> str:
        name = _require_name(name)
        self._cli.remove(name)
        return f"Model '{name}' removed"

    def model_dirs(self) -> list[Path]:
        env = os.environ if self._env is None else self._env
        dirs: list[Path] = []
        override = env.get("OLLAMA_MODELS")
        if override:
            dirs.append(Path(override))
        for location in _MODEL_DIRS.get(self.platform_id, ()):
            expanded = expand_location(location, self.platform_id, env)
            if expanded and Path(expanded) not in dirs:
                dirs.append(Path(expanded))
        return dirs

    def discover_local_models(self) -> list[str]:
        """`name:tag` entries found in the engine's on-disk manifest store."""
        found: list[str] = []
        for models_dir in self.model_dirs():
            manifests = models_dir / "manifests"
            try:
                if not manifests.is_dir():
                    continue
                entries = sorted(p for p in manifests.glob("*/*/*/*") if p.is_file())
            except OSError:
                logger.debug("Failed to scan %s", manifests, exc_info=True)
                continue
            for tag_path in entries:
                name = _manifest_to_name(tag_path.relative_to(manifests).parts)
                if name not in found:
                    found.append(name)
        return found

    def scan(self) -> list[str]:
        """Union of the engine's own listing and the on-disk manifests."""
        names: list[str] = []
        try:
            names.extend(self.names())
        except EngineError as e:
            logger.info("Model listing unavailable during scan: %s", e)
        for name in self.discover_local_models():
            if name not in names:
                names.append(name)
        return names


def _manifest_to_name(parts: tuple[str, ...]) -> str:
    registry, namespace, model, tag = parts
    if registry == _DEFAULT_REGISTRY and namespace == _DEFAULT_NAMESPACE:
        return f"{model}:{tag}"
    if registry == _DEFAULT_REGISTRY:
        return f"{namespace}/{model}:{tag}"
    return f"{registry}/{namespace}/{model}:{tag}"


def _require_name(name: str) -> str:
    cleaned = (name or "").strip()
    if not cleaned:
        raise ValueError("Model name must not be empty")
    return cleaned
