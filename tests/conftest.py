from __future__ import annotations

import sys
from pathlib import Path

import pytest

# Make `app` and `ollama_supervisor` importable when pytest is started through
# its entrypoint, where `sys.path[0]` may not be the repo root.
_PROJECT_ROOT = Path(__file__).resolve().parents[1]
if str(_PROJECT_ROOT) not in sys.path:
    sys.path.insert(0, str(_PROJECT_ROOT))

from ollama_supervisor.config.settings import invalidate_settings_cache  # noqa: E402


@pytest.fixture(autouse=True)
def _fresh_settings_cache():
    """AppSettings.load caches by path; keep tests independent of each other."""
    invalidate_settings_cache()
    yield
    invalidate_settings_cache()
