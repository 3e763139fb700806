"""
RAG Pipeline - Retrieval, prompt assembly and streaming generation

This module answers one question at a time against the knowledge base:

1. Embed the question
2. Retrieve the best matching documents (top 5, similarity >= 0.5)
3. Render the earlier conversation as a plain transcript
4. Fill the context-aware prompt template, or the fallback template when no
   document matched
5. Stream the answer from the generation model, narrating finished sentences
   outside fenced code blocks when speech is enabled

Provider failures never escape: the answer becomes an apology carrying the
failure detail, so the conversation turn can still be recorded. A stream that
runs past the generation timeout is cancelled and its partial answer returned.

Example Usage:
    ```python
    pipeline = RAGPipeline(store, embedding_service, ollama_client)
    response = pipeline.answer("What port does Ollama use?", history)
    print(response.answer)
    ```

Classes:
    RAGResponse: Answer text plus retrieval and timing metadata.
    RAGPipeline: The retrieval-augmented generation control flow.
"""

import logging
import queue
import threading
import time
from dataclasses import dataclass, field
from functools import partial
from typing import Any, Callable, Dict, Iterator, List, Optional

from .embeddings import EmbeddingService
from .exceptions import GenerationTimeoutError, ProviderUnavailableError
from .knowledge_store import KnowledgeStore
from .models import Document, Message, Role, SearchResult
from .narration import NarrationContext
from .ollama_client import OllamaClient
from .prompts import PromptTemplates

logger = logging.getLogger(__name__)

APOLOGY_TEMPLATE = "Sorry, an error occurred while contacting the model: {detail}"
ROLE_LABELS = {Role.USER: "User", Role.ASSISTANT: "Assistant", Role.SYSTEM: "System"}

# events passed from the stream reader thread
_TOKEN = "token"
_DONE = "done"
_TIMED_OUT = "timed_out"
_FAILED = "failed"
_CRASHED = "crashed"


def _read_stream(open_stream: Callable[[], Iterator[str]], events: "queue.Queue", stop: threading.Event) -> None:
    """Pump tokens from the generation stream into ``events`` until done or stopped."""
    stream = None
    try:
        stream = open_stream()
        for token in stream:
            if stop.is_set():
                return
            events.put((_TOKEN, token))
        events.put((_DONE, None))
    except GenerationTimeoutError as e:
        events.put((_TIMED_OUT, e))
    except ProviderUnavailableError as e:
        events.put((_FAILED, e))
    except Exception as e:
        events.put((_CRASHED, e))
    finally:
        close = getattr(stream, "close", None)
        if close is not None:
            close()


@dataclass
class RAGResponse:
    """
    Result of answering one question.

    Attributes:
        answer (str): The full answer text, partial if the stream was cancelled
        query (str): The original question
        sources (List[Dict[str, Any]]): Retrieved documents (id, source, similarity)
        context_used (bool): Whether the context-aware template was used
        cancelled (bool): The stream hit the generation timeout
        failed (bool): The provider failed and the answer carries an apology
        metadata (Dict[str, Any]): Timing and narration counters
    """
    answer: str
    query: str = ""
    sources: List[Dict[str, Any]] = field(default_factory=list)
    context_used: bool = False
    cancelled: bool = False
    failed: bool = False
    metadata: Dict[str, Any] = field(default_factory=dict)

    def __post_init__(self):
        if not isinstance(self.answer, str):
            raise ValueError("Answer must be a string")
        self.metadata.setdefault("response_length", len(self.answer))


def format_history(history: List[Message]) -> str:
    """
    Role-labelled transcript of the earlier conversation.

    Skips the system message at index 0 and the last message, which is the
    question currently being answered.
    """
    lines = []
    for message in history[1:-1]:
        lines.append(f"{ROLE_LABELS[message.role]}: {message.content}\n")
    return "".join(lines)


class RAGPipeline:
    """
    Retrieval-augmented generation over a KnowledgeStore.

    The pipeline keeps no per-answer state on the instance, so one pipeline
    may serve several sessions concurrently.
    """

    def __init__(
        self,
        knowledge_store: KnowledgeStore,
        embedding_service: EmbeddingService,
        generator: OllamaClient,
        templates: Optional[PromptTemplates] = None,
        narrator: Optional[Callable[[str], None]] = None,
        context_top_k: int = 5,
        context_threshold: float = 0.5,
        search_threshold: float = 0.3,
        generation_timeout: float = 300.0,
        use_chat_api: bool = False,
    ):
        self.knowledge_store = knowledge_store
        self.embedding_service = embedding_service
        self.generator = generator
        self.templates = templates or PromptTemplates()
        self.narrator = narrator
        self.context_top_k = context_top_k
        self.context_threshold = context_threshold
        self.search_threshold = search_threshold
        self.generation_timeout = generation_timeout
        self.use_chat_api = use_chat_api

    def answer(
        self,
        question: str,
        history: List[Message],
        speech_enabled: bool = False,
        on_token: Optional[Callable[[str], None]] = None,
    ) -> RAGResponse:
        """
        Answer ``question`` given the conversation so far.

        Args:
            question: The user question
            history: Transcript whose last message is this question
            speech_enabled: Narrate finished sentences through the narrator
            on_token: Called with every streamed token, e.g. for display

        Returns:
            RAGResponse with the accumulated answer

        Raises:
            InvalidVectorDimensionError: If stored embeddings do not match the query embedding
        """
        start_time = time.perf_counter()

        query_vector = self.embedding_service.embed(question)
        results = self.knowledge_store.search_similar(query_vector, self.context_top_k, self.context_threshold)
        context = KnowledgeStore.format_context(results) if results else None
        history_text = format_history(history)

        if context:
            logger.info(f"Found {len(results)} relevant documents; answering with context")
        else:
            logger.info("No relevant documents found; answering from model knowledge and history")

        narration = NarrationContext(self.narrator, enabled=speech_enabled)
        cancelled, failed = self._stream_answer(question, history, history_text, context, narration, on_token)

        answer = narration.answer
        if failed:
            apology = APOLOGY_TEMPLATE.format(detail=failed)
            answer = f"{answer}\n\n{apology}" if answer else apology

        elapsed = time.perf_counter() - start_time
        return RAGResponse(
            answer=answer,
            query=question,
            sources=[
                {"id": r.document.id, "source": r.document.source, "similarity": round(r.similarity, 3)}
                for r in results
            ],
            context_used=context is not None,
            cancelled=cancelled,
            failed=bool(failed),
            metadata={"elapsed_seconds": round(elapsed, 3), "model": self.generator.model},
        )

    def _stream_answer(self, question, history, history_text, context, narration, on_token):
        """
        Drive the generation stream into ``narration``.

        The stream is read on a worker thread so a server that stops sending
        cannot hold the caller past the deadline. Tokens are narrated and
        forwarded on the calling thread.

        Returns:
            (cancelled, failure detail or None)
        """
        deadline = time.monotonic() + self.generation_timeout
        if self.use_chat_api:
            open_stream = partial(self.generator.stream_chat, self.build_messages(question, history, context),
                                  read_timeout=self.generation_timeout)
        else:
            open_stream = partial(self.generator.stream_generate, self.build_prompt(question, history_text, context),
                                  read_timeout=self.generation_timeout)

        events: "queue.Queue" = queue.Queue()
        stop = threading.Event()
        reader = threading.Thread(target=_read_stream, args=(open_stream, events, stop),
                                  name="generation-stream", daemon=True)
        reader.start()
        try:
            while True:
                remaining = deadline - time.monotonic()
                if remaining <= 0:
                    return self._cancel(narration), None
                try:
                    kind, value = events.get(timeout=remaining)
                except queue.Empty:
                    return self._cancel(narration), None

                if kind == _DONE:
                    return False, None
                if kind == _TIMED_OUT:
                    return self._cancel(narration), None
                if kind == _FAILED:
                    logger.error(f"Generation failed: {value}")
                    return False, str(value)
                if kind == _CRASHED:
                    raise value

                narration.feed(value)
                if on_token is not None:
                    on_token(value)
        finally:
            stop.set()

    def _cancel(self, narration: NarrationContext) -> bool:
        logger.warning(
            f"Generation exceeded {self.generation_timeout:.0f}s; "
            f"returning partial answer ({len(narration.answer)} chars)"
        )
        return True

    def build_prompt(self, question: str, history_text: str, context: Optional[str]) -> str:
        if context:
            return self.templates.render_rag(history_text, context, question)
        return self.templates.render_fallback(history_text, question)

    def build_messages(self, question: str, history: List[Message], context: Optional[str]) -> List[Dict[str, str]]:
        """Role-tagged equivalent of build_prompt for the chat endpoint."""
        messages = [{"role": Role.SYSTEM.value, "content": self.templates.system_prompt}]
        messages.extend(message.to_chat_message() for message in history[1:-1])
        if context:
            content = f"{context}\nCurrent user question: {question}"
        else:
            content = question
        messages.append({"role": Role.USER.value, "content": content})
        return messages

    def add_knowledge(self, content: str, source: str = "user input") -> Document:
        """Embed ``content`` and store it as a new document."""
        if not content or not content.strip():
            raise ValueError("Content cannot be empty")
        document = Document(content=content.strip(), source=source or "user input")
        vector = self.embedding_service.embed(document.content)
        self.knowledge_store.add_document(document, vector)
        return document

    def search_knowledge(self, query: str, top_k: int = 3) -> List[SearchResult]:
        if not query or not query.strip():
            raise ValueError("Query cannot be empty")
        vector = self.embedding_service.embed(query)
        return self.knowledge_store.search_similar(vector, top_k, self.search_threshold)

    def get_statistics(self) -> Dict[str, Any]:
        return {
            "total_documents": self.knowledge_store.get_document_count(),
            "memory_usage": f"{self.knowledge_store.get_memory_usage_percentage():.2f}%",
        }
