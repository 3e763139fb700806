"""
Test suite for configuration loading
"""

import logging

import pytest

from rag_assistant.config import GIB, AssistantConfig
from rag_assistant.exceptions import ConfigurationError
from rag_assistant.logging_setup import configure_logging


class TestAssistantConfig:
    """Test cases for environment-driven configuration"""

    def test_defaults(self, tmp_path):
        config = AssistantConfig.from_env(str(tmp_path / "missing.env"))

        assert config.ollama_host == "http://localhost:11434"
        assert config.llm_model == "deepseek-coder-v2:16b"
        assert config.embedding_model == "all-minilm:22m"
        assert config.memory_budget_bytes == 70 * GIB
        assert config.context_top_k == 5
        assert config.context_threshold == 0.5
        assert config.history_limit == 50
        assert config.speech_enabled is False

    def test_environment_overrides(self, monkeypatch, tmp_path):
        monkeypatch.setenv("OLLAMA_HOST", "http://gpu-box:11434/")
        monkeypatch.setenv("LLM_MODEL", "llama3.2")
        monkeypatch.setenv("MEMORY_BUDGET_GB", "0.5")
        monkeypatch.setenv("CONTEXT_TOP_K", "3")
        monkeypatch.setenv("USE_CHAT_API", "yes")
        monkeypatch.setenv("SPEECH_ENABLED", "true")

        config = AssistantConfig.from_env(str(tmp_path / "missing.env"))

        assert config.ollama_host == "http://gpu-box:11434"
        assert config.llm_model == "llama3.2"
        assert config.memory_budget_bytes == GIB // 2
        assert config.context_top_k == 3
        assert config.use_chat_api is True
        assert config.speech_enabled is True

    def test_env_file(self, tmp_path):
        env_file = tmp_path / ".env"
        env_file.write_text("EMBEDDING_MODEL=nomic-embed-text\nHISTORY_LIMIT=10\n")

        config = AssistantConfig.from_env(str(env_file))

        assert config.embedding_model == "nomic-embed-text"
        assert config.history_limit == 10

    def test_invalid_number(self, monkeypatch, tmp_path):
        monkeypatch.setenv("CONTEXT_TOP_K", "many")
        with pytest.raises(ConfigurationError) as exc_info:
            AssistantConfig.from_env(str(tmp_path / "missing.env"))
        assert exc_info.value.variable == "CONTEXT_TOP_K"

    def test_below_minimum(self, monkeypatch, tmp_path):
        monkeypatch.setenv("HISTORY_LIMIT", "1")
        with pytest.raises(ConfigurationError):
            AssistantConfig.from_env(str(tmp_path / "missing.env"))

    def test_direct_validation(self):
        with pytest.raises(ConfigurationError):
            AssistantConfig(context_threshold=1.5)

    def test_as_dict(self):
        assert AssistantConfig().as_dict()["tts_command"] == "espeak -s 150 -v en"


class TestConfigureLogging:

    def test_creates_timestamped_log_file(self, tmp_path):
        root = logging.getLogger()
        log_file = configure_logging("unit", str(tmp_path / "logs"))
        try:
            logging.getLogger("rag_assistant.test").info("hello log")
            for handler in root.handlers:
                handler.flush()

            assert log_file.parent == tmp_path / "logs"
            assert log_file.name.startswith("unit_")
            assert "INFO - hello log" in log_file.read_text()
            assert logging.getLogger("urllib3").level == logging.WARNING
        finally:
            for handler in root.handlers[:]:
                handler.close()
                root.removeHandler(handler)
