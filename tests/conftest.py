"""
Shared fixtures for the RAG assistant tests.
"""

import shutil
import tempfile

import pytest

from rag_assistant.config import AssistantConfig


@pytest.fixture
def temp_dir():
    """Create a temporary directory for tests"""
    temp_dir = tempfile.mkdtemp()
    yield temp_dir
    shutil.rmtree(temp_dir)


@pytest.fixture
def config(temp_dir):
    """Configuration pointing every file into the temporary directory"""
    return AssistantConfig(
        knowledge_base_path=f"{temp_dir}/knowledge_base.bin",
        chat_history_path=f"{temp_dir}/chat_history.bin",
        prompts_path=f"{temp_dir}/prompts.json",
        log_dir=f"{temp_dir}/logs",
        generation_timeout=60.0,
    )
