"""
Pytest configuration file for the RAG assistant tests.

Makes the src/ layout importable without installation and keeps the test run
from picking up a developer's .env or writing logs into the project root.
"""

import os
import sys
import warnings
from pathlib import Path

import pytest

sys.path.insert(0, str(Path(__file__).parent / "src"))

CONFIG_VARIABLES = (
    "OLLAMA_HOST", "LLM_MODEL", "EMBEDDING_MODEL", "KNOWLEDGE_BASE_PATH", "CHAT_HISTORY_PATH",
    "PROMPTS_PATH", "MEMORY_BUDGET_GB", "CONTEXT_TOP_K", "CONTEXT_THRESHOLD", "SEARCH_THRESHOLD",
    "HISTORY_LIMIT", "EMBEDDING_DIMENSION", "CONNECT_TIMEOUT", "GENERATION_TIMEOUT",
    "USE_CHAT_API", "SPEECH_ENABLED", "TTS_COMMAND", "LOG_DIR",
)


def pytest_configure(config):
    """Configure pytest to suppress specific warnings."""
    # urllib3 warns about LibreSSL on some macOS Pythons
    warnings.filterwarnings("ignore", message=".*urllib3 v2 only supports OpenSSL.*")


@pytest.fixture(autouse=True)
def isolated_environment(monkeypatch, tmp_path):
    """Run every test in a scratch directory with no assistant variables set."""
    for name in CONFIG_VARIABLES:
        monkeypatch.delenv(name, raising=False)
    monkeypatch.setenv("LOG_DIR", str(tmp_path / "logs"))
    monkeypatch.chdir(tmp_path)
    yield
