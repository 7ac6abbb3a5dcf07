"""Shared fixtures: src on the import path and a clean SmartPick environment per test."""

import sys
from pathlib import Path

import pytest


def ensure_src_on_path() -> None:
    root = Path(__file__).resolve().parent.parent
    src_path = root / "src"
    if str(src_path) not in sys.path:
        sys.path.append(str(src_path))
    if str(root) not in sys.path:
        sys.path.append(str(root))


ensure_src_on_path()

_SMARTPICK_ENV = (
    "SP_API_BASE_URL",
    "SP_API_FALLBACK_BASE_URL",
    "SP_RECOMMENDATIONS_PATH",
    "SP_VISION_SEARCH_PATH",
    "SP_API_TIMEOUT_SECONDS",
    "SP_API_MAX_RETRIES",
    "SP_API_TOKEN",
    "SP_VISION_TOP_K",
    "SP_STRICT_VISION_MODE",
    "SP_ENABLE_MARKETPLACE_FALLBACK",
    "SP_RESOLVE_TIMEOUT_SECONDS",
    "SP_GROQ_VISION_MODEL",
    "SP_GROQ_TIMEOUT_SECONDS",
    "SP_GROQ_MAX_RETRIES",
    "GROQ_API_KEY",
    "GROQ_API_BASE_URL",
)


@pytest.fixture(autouse=True)
def clean_env(monkeypatch):
    for name in _SMARTPICK_ENV:
        monkeypatch.delenv(name, raising=False)
    yield


@pytest.fixture
def make_service():
    from smartpick_assistant.service import ShoppingAssistantService

    def _make(backend, groq=None):
        return ShoppingAssistantService(backend=backend, groq=groq)

    return _make
