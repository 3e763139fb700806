"""
Assistant facade used by the command line and web front ends.

The Assistant is the composition root: it builds the knowledge store, chat
history store, Ollama clients, narrator and RAG pipeline from an
AssistantConfig and exposes the operations the front ends need.
"""

import logging
import threading
from typing import Any, Callable, Dict, List, Optional

from .chat_history import ChatHistoryStore, apply_retention
from .config import AssistantConfig
from .embeddings import EmbeddingService
from .exceptions import NarrationError, ProviderUnavailableError
from .knowledge_store import KnowledgeStore
from .models import Document, Message, Role, SearchResult
from .narration import SpeechNarrator
from .ollama_client import OllamaClient
from .performance_monitor import PerformanceMonitor
from .prompts import PromptStore, PromptTemplates
from .rag_pipeline import RAGPipeline, RAGResponse

logger = logging.getLogger(__name__)

INITIAL_KNOWLEDGE_SOURCE = "initial knowledge base"
INITIAL_KNOWLEDGE = [
    "Ollama is a tool for running large language models locally. It serves a REST API on port 11434 "
    "with endpoints such as /api/generate, /api/chat, /api/embeddings and /api/tags.",
    "Retrieval-augmented generation (RAG) combines a search over a knowledge base with text generation: "
    "the most relevant documents are added to the prompt so the model can ground its answer.",
    "An embedding is a fixed-length numeric vector that represents the meaning of a text. "
    "Texts with similar meaning have embeddings with a high cosine similarity.",
    "Cosine similarity is the dot product of two vectors divided by the product of their lengths. "
    "It ranges from -1 to 1 and ignores the magnitude of the vectors.",
    "all-minilm is a small sentence embedding model producing 384-dimensional vectors. "
    "It can be installed in Ollama with 'ollama pull all-minilm:22m'.",
    "Python is a high-level programming language known for its readable syntax and its large "
    "ecosystem of libraries for data processing, web services and machine learning.",
    "JSON (JavaScript Object Notation) is a lightweight text format for structured data made of "
    "objects, arrays, strings, numbers, booleans and null.",
]


class Assistant:
    """
    One conversation session over a shared knowledge base.

    Questions are processed one at a time: appending to the history,
    answering and persisting happen under a session lock.
    """

    def __init__(
        self,
        config: AssistantConfig,
        knowledge_store: Optional[KnowledgeStore] = None,
        history_store: Optional[ChatHistoryStore] = None,
        embedding_service: Optional[EmbeddingService] = None,
        ollama_client: Optional[OllamaClient] = None,
        narrator: Optional[Callable[[str], None]] = None,
        prompt_store: Optional[PromptStore] = None,
    ):
        self.config = config
        self.knowledge_store = knowledge_store or KnowledgeStore(
            config.knowledge_base_path, config.memory_budget_bytes
        )
        self.history_store = history_store or ChatHistoryStore(config.chat_history_path)
        self.embedding_service = embedding_service or EmbeddingService(
            config.ollama_host, config.embedding_model, config.connect_timeout, config.embedding_dimension
        )
        self.ollama_client = ollama_client or OllamaClient(
            config.ollama_host, config.llm_model, config.connect_timeout, config.generation_timeout
        )
        self.narrator = narrator if narrator is not None else self._create_narrator(config.tts_command)
        self.prompt_store = prompt_store or PromptStore(config.prompts_path)
        self.templates = self.prompt_store.load()
        self.performance_monitor = PerformanceMonitor()

        self.pipeline = RAGPipeline(
            self.knowledge_store,
            self.embedding_service,
            self.ollama_client,
            templates=self.templates,
            narrator=self.narrator,
            context_top_k=config.context_top_k,
            context_threshold=config.context_threshold,
            search_threshold=config.search_threshold,
            generation_timeout=config.generation_timeout,
            use_chat_api=config.use_chat_api,
        )

        self.speech_enabled = config.speech_enabled
        self._session_lock = threading.Lock()
        self.chat_history: List[Message] = self._load_chat_history()

    @staticmethod
    def _create_narrator(command: str) -> Optional[SpeechNarrator]:
        try:
            return SpeechNarrator(command)
        except NarrationError as e:
            logger.warning(f"Narration unavailable: {e}")
            return None

    def _system_message(self) -> Message:
        return Message(Role.SYSTEM, self.templates.system_prompt)

    def _load_chat_history(self) -> List[Message]:
        history = self.history_store.load()
        if not history or history[0].role is not Role.SYSTEM:
            history.insert(0, self._system_message())
            logger.info("Started a new chat history")
        return apply_retention(history, self.config.history_limit)

    # Questions

    def ask_question(self, question: str, on_token: Optional[Callable[[str], None]] = None) -> str:
        """
        Answer a question and record both turns in the persisted history.

        Raises:
            ValueError: If the question is empty
        """
        return self.ask(question, on_token).answer

    def ask(self, question: str, on_token: Optional[Callable[[str], None]] = None) -> RAGResponse:
        """Like ask_question but returns the full RAGResponse."""
        if not question or not question.strip():
            raise ValueError("Question cannot be empty")
        question = question.strip()

        with self._session_lock:
            # history only changes once the answer is complete
            history = self.chat_history + [Message(Role.USER, question)]
            with self.performance_monitor.measure("answer"):
                response = self.pipeline.answer(
                    question, list(history), self.speech_enabled and self.narrator is not None, on_token
                )
            history.append(Message(Role.ASSISTANT, response.answer))
            self.chat_history = apply_retention(history, self.config.history_limit)
            self.history_store.save(self.chat_history)
        return response

    def get_chat_history(self) -> List[Message]:
        return list(self.chat_history)

    def clear_chat_history(self) -> None:
        """Drop every message except the system message and persist."""
        with self._session_lock:
            if self.chat_history and self.chat_history[0].role is Role.SYSTEM:
                system_message = self.chat_history[0]
            else:
                system_message = self._system_message()
            self.chat_history = [system_message]
            self.history_store.save(self.chat_history)
        logger.info("Chat history cleared")

    # Knowledge

    def add_knowledge(self, content: str, source: str = "user input") -> Document:
        """
        Raises:
            ValueError: If the content is empty
        """
        return self.pipeline.add_knowledge(content, source)

    def search_knowledge(self, query: str, top_k: int = 3) -> List[SearchResult]:
        return self.pipeline.search_knowledge(query, top_k)

    def load_initial_knowledge(self) -> int:
        """Seed the built-in facts into an empty knowledge base."""
        if self.knowledge_store.get_document_count() > 0:
            return 0
        for fact in INITIAL_KNOWLEDGE:
            self.add_knowledge(fact, INITIAL_KNOWLEDGE_SOURCE)
        logger.info(f"Loaded {len(INITIAL_KNOWLEDGE)} initial facts")
        return len(INITIAL_KNOWLEDGE)

    # Models

    def get_current_model(self) -> str:
        return self.ollama_client.model

    def get_embedding_model(self) -> str:
        return self.embedding_service.model

    def get_available_models(self) -> List[str]:
        return self.ollama_client.list_models()

    def get_available_embedding_models(self) -> List[str]:
        try:
            installed = self.ollama_client.list_models()
        except ProviderUnavailableError as e:
            logger.warning(f"Cannot list models: {e}")
            installed = []
        return self.embedding_service.get_available_embedding_models(installed)

    def switch_model(self, model_name: str) -> bool:
        """Use ``model_name`` for answers if the server has it."""
        try:
            available = self.ollama_client.list_models()
        except ProviderUnavailableError as e:
            logger.error(f"Cannot switch model: {e}")
            return False
        if model_name not in available:
            logger.warning(f"Model {model_name} not found. Available: {', '.join(available)}")
            return False
        self.ollama_client.model = model_name
        logger.info(f"Answer model switched to {model_name}")
        return True

    def switch_embedding_model(self, model_name: str) -> bool:
        """Use ``model_name`` for embeddings if it produces them."""
        if not self.embedding_service.check_embedding_support(model_name):
            logger.warning(f"Model {model_name} does not support embeddings or is unavailable")
            return False
        self.embedding_service.model = model_name
        logger.info(f"Embedding model switched to {model_name}")
        return True

    def pull_model(self, model_name: str) -> bool:
        return self.ollama_client.pull_model(model_name)

    def delete_model(self, model_name: str) -> bool:
        return self.ollama_client.delete_model(model_name)

    def copy_model(self, source_model: str, target_model: str) -> bool:
        return self.ollama_client.copy_model(source_model, target_model)

    def get_model_info(self, model_name: str) -> Dict[str, Any]:
        return self.ollama_client.get_model_info(model_name)

    # Prompts

    def update_prompt(self, name: str, text: str) -> PromptTemplates:
        """
        Replace one prompt template, persist it and use it for the next answer.

        A new system prompt also replaces the system message heading the chat
        history.

        Raises:
            ValueError: If the name is unknown or the template is invalid
        """
        templates = self.templates.with_template(name, text)
        self.prompt_store.save(templates)
        with self._session_lock:
            self.templates = self.pipeline.templates = templates
            if name == "system":
                self.chat_history = [self._system_message()] + self.chat_history[1:]
                self.history_store.save(self.chat_history)
        logger.info(f"Prompt '{name}' updated")
        return templates

    def reset_prompts(self) -> PromptTemplates:
        """Go back to the built-in templates."""
        with self._session_lock:
            self.templates = self.pipeline.templates = self.prompt_store.reset()
        return self.templates

    # Speech and statistics

    def set_speech_enabled(self, enabled: bool) -> None:
        self.speech_enabled = enabled
        logger.info(f"Speech {'enabled' if enabled else 'disabled'}")

    def is_speech_enabled(self) -> bool:
        return self.speech_enabled

    def get_statistics(self) -> Dict[str, Any]:
        stats = self.pipeline.get_statistics()
        stats.update({
            "chat_history_size": len(self.chat_history) - 1,
            "llm_model": self.get_current_model(),
            "embedding_model": self.get_embedding_model(),
            "speech_enabled": self.speech_enabled,
            "performance": self.performance_monitor.get_performance_summary(),
        })
        return stats

    def health_check(self) -> Dict[str, Any]:
        return {
            "ollama_reachable": self.ollama_client.is_available(),
            "knowledge_base": str(self.knowledge_store.storage_path),
            "documents": self.knowledge_store.get_document_count(),
            "narrator_available": bool(self.narrator is not None
                                       and getattr(self.narrator, "is_available", lambda: True)()),
        }

    def close(self) -> None:
        self.ollama_client.close()
        self.embedding_service.close()

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()


def create_assistant(config: Optional[AssistantConfig] = None, **kwargs) -> Assistant:
    """
    Factory function to create an assistant

    Args:
        config: Configuration; read from the environment when omitted
        **kwargs: Collaborators overriding the ones built from the configuration

    Returns:
        Configured assistant
    """
    return Assistant(config or AssistantConfig.from_env(), **kwargs)
