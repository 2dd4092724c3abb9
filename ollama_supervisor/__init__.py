# ollama_supervisor/__init__.py
"""
Ollama Supervisor - control plane for a locally installed Ollama engine

Locates, starts, stops, health-checks and repairs an Ollama daemon that the
host application neither bundles nor owns.
"""

from pathlib import Path


def _get_version() -> str:
    """
    Read the version from pyproject.toml.

    The installed distribution metadata can lag behind a source checkout, so the
    checkout's pyproject.toml wins when it is present.

    Returns:
        str: version string (e.g. "0.3.0")
    """
    try:
        import tomllib  # Python 3.11+ standard library

        pyproject_path = Path(__file__).parent.parent / "pyproject.toml"
        if pyproject_path.exists():
            with open(pyproject_path, "rb") as f:
                data = tomllib.load(f)
            return data.get("project", {}).get("version", "0.0.0")
    except Exception:
        pass

    try:
        import importlib.metadata

        return importlib.metadata.version("ollama-supervisor")
    except Exception:
        pass

    # Fallback: hardcoded version
    return "0.3.0"


__version__ = _get_version()
__app_name__ = "Ollama Supervisor"
