"""
Configuration loading for the RAG assistant.

Values come from environment variables, optionally read from a ``.env`` file
through python-dotenv, with defaults suitable for a local Ollama server.
"""

import os
from dataclasses import asdict, dataclass
from typing import Any, Callable, Dict, Optional

from dotenv import load_dotenv

from .exceptions import ConfigurationError

GIB = 1024 ** 3


def _env_str(name: str, default: str) -> str:
    value = os.getenv(name)
    return value.strip() if value and value.strip() else default


def _env_number(name: str, default, cast: Callable, minimum=None):
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default
    try:
        value = cast(raw.strip())
    except ValueError:
        raise ConfigurationError(f"{name} must be a {cast.__name__}, got {raw!r}", variable=name)
    if minimum is not None and value < minimum:
        raise ConfigurationError(f"{name} must be >= {minimum}, got {value}", variable=name)
    return value


def _env_bool(name: str, default: bool) -> bool:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default
    return raw.strip().lower() in ("1", "true", "yes", "on")


@dataclass
class AssistantConfig:
    ollama_host: str = "http://localhost:11434"
    llm_model: str = "deepseek-coder-v2:16b"
    embedding_model: str = "all-minilm:22m"
    knowledge_base_path: str = "knowledge_base.bin"
    chat_history_path: str = "chat_history.bin"
    prompts_path: str = "prompts.json"
    memory_budget_bytes: int = 70 * GIB
    context_top_k: int = 5
    context_threshold: float = 0.5
    search_threshold: float = 0.3
    history_limit: int = 50
    embedding_dimension: int = 384
    connect_timeout: float = 30.0
    generation_timeout: float = 300.0
    use_chat_api: bool = False
    speech_enabled: bool = False
    tts_command: str = "espeak -s 150 -v en"
    log_dir: str = "./logs"

    def __post_init__(self):
        if self.history_limit < 2:
            raise ConfigurationError("history_limit must keep the system message and one turn",
                                     variable="HISTORY_LIMIT")
        if not -1.0 <= self.context_threshold <= 1.0:
            raise ConfigurationError("context_threshold must be within [-1, 1]",
                                     variable="CONTEXT_THRESHOLD")
        self.ollama_host = self.ollama_host.rstrip("/")

    @classmethod
    def from_env(cls, env_file: Optional[str] = None) -> "AssistantConfig":
        """
        Build a configuration from the environment.

        Args:
            env_file: Optional path to a .env file; defaults to the nearest one

        Raises:
            ConfigurationError: If a numeric variable cannot be parsed
        """
        load_dotenv(env_file)
        defaults = cls()
        budget_gb = _env_number("MEMORY_BUDGET_GB", defaults.memory_budget_bytes / GIB, float, 0.001)
        return cls(
            ollama_host=_env_str("OLLAMA_HOST", defaults.ollama_host),
            llm_model=_env_str("LLM_MODEL", defaults.llm_model),
            embedding_model=_env_str("EMBEDDING_MODEL", defaults.embedding_model),
            knowledge_base_path=_env_str("KNOWLEDGE_BASE_PATH", defaults.knowledge_base_path),
            chat_history_path=_env_str("CHAT_HISTORY_PATH", defaults.chat_history_path),
            prompts_path=_env_str("PROMPTS_PATH", defaults.prompts_path),
            memory_budget_bytes=int(budget_gb * GIB),
            context_top_k=_env_number("CONTEXT_TOP_K", defaults.context_top_k, int, 1),
            context_threshold=_env_number("CONTEXT_THRESHOLD", defaults.context_threshold, float),
            search_threshold=_env_number("SEARCH_THRESHOLD", defaults.search_threshold, float),
            history_limit=_env_number("HISTORY_LIMIT", defaults.history_limit, int, 2),
            embedding_dimension=_env_number("EMBEDDING_DIMENSION", defaults.embedding_dimension, int, 1),
            connect_timeout=_env_number("CONNECT_TIMEOUT", defaults.connect_timeout, float, 0.1),
            generation_timeout=_env_number("GENERATION_TIMEOUT", defaults.generation_timeout, float, 0.1),
            use_chat_api=_env_bool("USE_CHAT_API", defaults.use_chat_api),
            speech_enabled=_env_bool("SPEECH_ENABLED", defaults.speech_enabled),
            tts_command=_env_str("TTS_COMMAND", defaults.tts_command),
            log_dir=_env_str("LOG_DIR", defaults.log_dir),
        )

    def as_dict(self) -> Dict[str, Any]:
        return asdict(self)
