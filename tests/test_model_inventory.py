from __future__ import annotations

from pathlib import Path
from unittest.mock import MagicMock

import pytest

from ollama_supervisor.models.types import ModelRecord, PlatformId
from ollama_supervisor.services import model_inventory as mi
from ollama_supervisor.services.exceptions import (
    NotInstalledError,
    ParseFailureError,
    SubcommandFailedError,
    UnreachableError,
)

LIST_OUTPUT = """NAME                    ID              SIZE      MODIFIED
llama2:latest           78e26419b446    3.8 GB    2 weeks ago
mistral:7b              61e88e884507    4.1 GB    3 days ago
"""


def test_parse_simple_table() -> None:
    records = mi.parse_model_table("NAME SIZE\nllama2 3.8GB\nmistral 4.1GB\n")

    assert [r.name for r in records] == ["llama2", "mistral"]
    assert records[0].size == "3.8GB"
    assert records[0].model_id is None


def test_parse_full_table() -> None:
    records = mi.parse_model_table(LIST_OUTPUT)

    assert records == [ModelRecord("llama2:latest"), ModelRecord("mistral:7b")]
    first = records[0]
    assert first.model_id == "78e26419b446"
    assert first.size == "3.8 GB"
    assert first.modified == "2 weeks ago"
    assert first.tag == "latest"


@pytest.mark.parametrize("text", ["", "\n\n", "NAME    ID    SIZE    MODIFIED\n"])
def test_header_only_or_empty_is_empty_list(text: str) -> None:
    assert mi.parse_model_table(text) == []


def test_missing_header_is_parse_failure() -> None:
    with pytest.raises(ParseFailureError) as excinfo:
        mi.parse_model_table("Error: could not connect to ollama app\n")

    assert "could not connect" in excinfo.value.raw


def test_extract_model_names_dedupes_in_order() -> None:
    body = '{"models":[{"name":"llama2:latest","model":"llama2:latest"},{"name":"mistral:7b"},{"name":"llama2:latest"}]}'

    assert mi.extract_model_names(body) == ["llama2:latest", "mistral:7b"]


def test_extract_model_names_empty_models_list() -> None:
    assert mi.extract_model_names('{"models":[]}') == []


def test_extract_model_names_unrecognized_body() -> None:
    with pytest.raises(ParseFailureError):
        mi.extract_model_names("<html>proxy error</html>")


def _inventory(platform_id=PlatformId.LINUX, env=None):
    cli = MagicMock()
    api = MagicMock()
    return mi.ModelInventory(cli, api, platform_id, env=env or {}), cli, api


def test_list_uses_cli_first() -> None:
    inventory, cli, api = _inventory()
    cli.list_text.return_value = LIST_OUTPUT

    assert [r.name for r in inventory.list()] == ["llama2:latest", "mistral:7b"]
    api.tags_text.assert_not_called()


def test_list_falls_back_to_http_when_cli_fails() -> None:
    inventory, cli, api = _inventory()
    cli.list_text.side_effect = SubcommandFailedError(["ollama", "list"], 1, "boom")
    api.tags_text.return_value = '{"models":[{"name":"phi3:mini"}]}'

    assert inventory.list() == [ModelRecord("phi3:mini")]


def test_list_reraises_cli_error_when_fallback_fails() -> None:
    inventory, cli, api = _inventory()
    cli_error = NotInstalledError("ollama missing")
    cli.list_text.side_effect = cli_error
    api.tags_text.side_effect = UnreachableError("connection refused")

    with pytest.raises(NotInstalledError) as excinfo:
        inventory.list()

    assert excinfo.value is cli_error


def test_list_no_fallback_on_unknown_platform() -> None:
    inventory, cli, api = _inventory(PlatformId.UNKNOWN)
    cli.list_text.side_effect = SubcommandFailedError(["ollama", "list"], 1, "boom")

    with pytest.raises(SubcommandFailedError):
        inventory.list()
    api.tags_text.assert_not_called()


def test_pull_and_remove_delegate_to_cli() -> None:
    inventory, cli, _ = _inventory()
    cli.pull.return_value = "success"

    assert "llama2" in inventory.pull(" llama2 ")
    cli.pull.assert_called_once_with("llama2")
    assert inventory.remove("llama2") == "Model 'llama2' removed"
    cli.remove.assert_called_once_with("llama2")


@pytest.mark.parametrize("name", ["", "   ", None])
def test_pull_rejects_empty_name(name) -> None:
    inventory, cli, _ = _inventory()

    with pytest.raises(ValueError):
        inventory.pull(name)
    cli.pull.assert_not_called()


def test_remove_missing_model_surfaces_stderr() -> None:
    inventory, cli, _ = _inventory()
    cli.remove.side_effect = SubcommandFailedError(
        ["ollama", "rm", "nope"], 1, "Error: model 'nope' not found"
    )

    with pytest.raises(SubcommandFailedError) as excinfo:
        inventory.remove("nope")

    assert "model 'nope' not found" in str(excinfo.value)


def _write_manifest(root: Path, registry: str, namespace: str, model: str, tag: str) -> None:
    path = root / "manifests" / registry / namespace / model
    path.mkdir(parents=True, exist_ok=True)
    (path / tag).write_text("{}")


def test_discover_local_models_from_ollama_models(tmp_path: Path) -> None:
    _write_manifest(tmp_path, "registry.ollama.ai", "library", "llama2", "latest")
    _write_manifest(tmp_path, "registry.ollama.ai", "someuser", "tiny", "q4")
    _write_manifest(tmp_path, "hf.co", "org", "model", "v1")
    inventory, _, _ = _inventory(env={"OLLAMA_MODELS": str(tmp_path)})

    names = inventory.discover_local_models()

    assert sorted(names) == ["hf.co/org/model:v1", "llama2:latest", "someuser/tiny:q4"]


def test_discover_local_models_uses_home_default(tmp_path: Path) -> None:
    _write_manifest(tmp_path / ".ollama" / "models", "registry.ollama.ai", "library", "phi3", "mini")
    inventory, _, _ = _inventory(env={"HOME": str(tmp_path)})

    assert inventory.model_dirs()[0] == tmp_path / ".ollama" / "models"
    assert inventory.discover_local_models() == ["phi3:mini"]


def test_scan_unions_listing_and_disk(tmp_path: Path) -> None:
    _write_manifest(tmp_path, "registry.ollama.ai", "library", "llama2", "latest")
    _write_manifest(tmp_path, "registry.ollama.ai", "library", "qwen", "7b")
    inventory, cli, _ = _inventory(env={"OLLAMA_MODELS": str(tmp_path)})
    cli.list_text.return_value = "NAME SIZE\nllama2:latest 3.8GB\n"

    assert inventory.scan() == ["llama2:latest", "qwen:7b"]


def test_scan_survives_listing_failure(tmp_path: Path) -> None:
    _write_manifest(tmp_path, "registry.ollama.ai", "library", "qwen", "7b")
    inventory, cli, api = _inventory(env={"OLLAMA_MODELS": str(tmp_path)})
    cli.list_text.side_effect = NotInstalledError("missing")
    api.tags_text.side_effect = UnreachableError("down")

    assert inventory.scan() == ["qwen:7b"]
