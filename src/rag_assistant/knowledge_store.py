"""
Knowledge Store Module - Documents, Embeddings and Similarity Search

This module implements the assistant's knowledge base: an in-memory repository
of text documents and their embeddings, persisted to a single binary file and
searched with exact cosine similarity.

Core Functionality:
- Insertion-ordered storage of documents with exactly one embedding each
- Exact linear similarity search with an inclusive threshold and a stable
  tie-break on insertion order
- Write-through persistence: every addition rewrites the whole file
- Lossy-but-safe loading: a corrupt header yields an empty store, a corrupt
  record is skipped

File Format (big-endian):
    header   magic "VDB1" | version | record count | reserved   (4 x uint32)
    record   uint32 length, then id, content, source, metadata JSON,
             created-at ISO text (each uint32 length + UTF-8 bytes),
             then uint32 dimension + float64 values

Example Usage:
    ```python
    from rag_assistant.knowledge_store import KnowledgeStore
    from rag_assistant.models import Document

    store = KnowledgeStore("knowledge_base.bin")
    store.add_document(Document("Ollama listens on 11434", "notes"), [0.1, 0.9, 0.0])
    for result in store.search_similar([0.1, 0.8, 0.0], top_k=3, threshold=0.5):
        print(f"{result.similarity:.3f} {result.document.content}")
    ```

Classes:
    KnowledgeStore: Document and embedding repository with binary persistence.
"""

import json
import logging
import threading
from datetime import datetime
from pathlib import Path
from typing import Dict, List, Optional, Sequence, Union

from .binary_codec import (
    RecordReader,
    RecordWriter,
    iter_records,
    pack_header,
    unpack_header,
    write_atomic,
)
from .exceptions import DuplicateDocumentError, InvalidVectorDimensionError, MalformedPersistedDataError
from .models import Document, EmbeddingVector, SearchResult

logger = logging.getLogger(__name__)

MAGIC = 0x56444231  # "VDB1"
VERSION = 1

DEFAULT_MEMORY_BUDGET = 70 * 1024 ** 3
DOCUMENT_COST_BYTES = 1024
EMBEDDING_COST_BYTES = 4096


class KnowledgeStore:
    """
    In-memory document and embedding store with write-through binary persistence.

    Additions are serialized by a writer lock; searches read a snapshot of
    the insertion-order index and may miss an addition that is in flight.
    """

    def __init__(self, storage_path: Union[str, Path] = "knowledge_base.bin",
                 memory_budget_bytes: int = DEFAULT_MEMORY_BUDGET, autoload: bool = True):
        """
        Initialize the knowledge store

        Args:
            storage_path: Binary file holding the knowledge base
            memory_budget_bytes: Budget the advisory memory estimate is compared against
            autoload: Load the existing file on construction
        """
        self.storage_path = Path(storage_path)
        self.memory_budget_bytes = memory_budget_bytes
        self._documents: Dict[str, Document] = {}
        self._embeddings: Dict[str, EmbeddingVector] = {}
        self._index: List[str] = []
        self._write_lock = threading.Lock()

        if autoload:
            self.load()

    def add_document(self, document: Document, vector: Union[EmbeddingVector, Sequence[float]],
                     strict: bool = False) -> bool:
        """
        Add a document with its embedding and persist the whole store.

        A document whose id is already stored is ignored, or rejected with
        DuplicateDocumentError when ``strict`` is set. A failed disk write
        is logged and the in-memory state is kept.

        Returns:
            True if the document was added
        """
        with self._write_lock:
            if document.id in self._documents:
                if strict:
                    raise DuplicateDocumentError(document.id)
                logger.warning(f"Document {document.id} already exists, ignoring")
                return False

            if isinstance(vector, EmbeddingVector):
                embedding = vector
                embedding.document_id = document.id
            else:
                embedding = EmbeddingVector(document.id, vector)

            document.embedding = embedding
            self._documents[document.id] = document
            self._embeddings[document.id] = embedding
            self._index.append(document.id)

            usage = self.get_memory_usage_percentage()
            if usage > 100.0:
                logger.warning(f"Knowledge base exceeds its memory budget: {usage:.2f}%")

            self._persist()

        logger.info(f"Added document {document.id} from '{document.source}' "
                    f"(total: {len(self._index)})")
        return True

    def search_similar(self, query_vector: Union[EmbeddingVector, Sequence[float]],
                       top_k: int = 5, threshold: float = 0.0) -> List[SearchResult]:
        """
        Find the stored documents most similar to a query vector.

        Args:
            query_vector: Query embedding
            top_k: Maximum number of results
            threshold: Minimum similarity (inclusive)

        Returns:
            Results sorted by descending similarity; equal scores keep insertion order

        Raises:
            InvalidVectorDimensionError: If the query and a stored embedding differ in length
        """
        if top_k <= 0:
            raise ValueError("top_k must be positive")

        query = query_vector if isinstance(query_vector, EmbeddingVector) else EmbeddingVector(None, query_vector)
        snapshot = list(self._index)

        results = []
        for doc_id in snapshot:
            embedding = self._embeddings.get(doc_id)
            document = self._documents.get(doc_id)
            if embedding is None or document is None:
                # removed by a concurrent clear()
                continue
            if embedding.dimension != query.dimension:
                raise InvalidVectorDimensionError(embedding.dimension, query.dimension)
            similarity = query.cosine_similarity(embedding)
            if similarity >= threshold:
                results.append(SearchResult(document, embedding, similarity))

        # sorted() is stable, so ties stay in insertion order
        results = sorted(results, key=lambda r: r.similarity, reverse=True)
        return results[:top_k]

    def get_context_for_query(self, query: str, query_vector: Union[EmbeddingVector, Sequence[float]],
                              top_k: int = 5, threshold: float = 0.5) -> Optional[str]:
        """
        Format the best matching documents as a context block for a prompt.

        Returns:
            The context text, or None if no document reaches the threshold
        """
        results = self.search_similar(query_vector, top_k, threshold)
        if not results:
            logger.debug(f"No context found for query: {query[:60]}")
            return None
        return self.format_context(results)

    @staticmethod
    def format_context(results: List[SearchResult]) -> str:
        """Render search results as one section per document."""
        context = ["Relevant information from the knowledge base:\n\n"]
        for result in results:
            context.append(f"=== Document from {result.document.source} ===\n")
            context.append(f"Similarity: {result.similarity:.3f}\n")
            context.append(f"{result.document.content}\n\n")
        return "".join(context)

    def get_document(self, doc_id: str) -> Optional[Document]:
        return self._documents.get(doc_id)

    def list_documents(self) -> List[Document]:
        """Documents in insertion order."""
        return [self._documents[doc_id] for doc_id in list(self._index)]

    def get_document_count(self) -> int:
        return len(self._index)

    def get_memory_usage_percentage(self) -> float:
        """Advisory estimate of memory use against the configured budget."""
        used = len(self._documents) * DOCUMENT_COST_BYTES + len(self._embeddings) * EMBEDDING_COST_BYTES
        return used / self.memory_budget_bytes * 100.0

    def get_statistics(self) -> Dict[str, object]:
        dimension = None
        if self._index:
            dimension = self._embeddings[self._index[0]].dimension
        return {
            "total_documents": len(self._documents),
            "total_embeddings": len(self._embeddings),
            "embedding_dimension": dimension,
            "memory_usage_percent": round(self.get_memory_usage_percentage(), 6),
            "storage_path": str(self.storage_path),
        }

    def clear(self) -> None:
        """Remove every document and rewrite the file."""
        with self._write_lock:
            self._documents.clear()
            self._embeddings.clear()
            self._index.clear()
            self._persist()
        logger.info("Knowledge base cleared")

    # Persistence

    def save(self) -> bool:
        with self._write_lock:
            return self._persist()

    def _persist(self) -> bool:
        """Rewrite the whole file. Caller holds the writer lock."""
        try:
            chunks = [pack_header(MAGIC, VERSION, len(self._index))]
            for doc_id in self._index:
                chunks.append(self._encode_record(self._documents[doc_id], self._embeddings[doc_id]))
            write_atomic(self.storage_path, b"".join(chunks))
            logger.debug(f"Knowledge base saved: {len(self._index)} documents -> {self.storage_path}")
            return True
        except OSError as e:
            logger.error(f"Failed to save knowledge base to {self.storage_path}: {e}")
            return False

    @staticmethod
    def _encode_record(document: Document, embedding: EmbeddingVector) -> bytes:
        return (
            RecordWriter()
            .write_text(document.id)
            .write_text(document.content)
            .write_text(document.source)
            .write_text(json.dumps(document.metadata, ensure_ascii=False))
            .write_text(document.created_at.isoformat())
            .write_floats(embedding.values)
            .to_bytes()
        )

    @staticmethod
    def _decode_record(body: bytes, index: int) -> Document:
        reader = RecordReader(body)
        try:
            doc_id = reader.read_text()
            content = reader.read_text()
            source = reader.read_text()
            metadata = json.loads(reader.read_text())
            created_at = datetime.fromisoformat(reader.read_text())
            values = reader.read_floats()
        except (ValueError, MalformedPersistedDataError) as e:
            # json.JSONDecodeError is a ValueError
            raise MalformedPersistedDataError(f"Cannot decode record {index}: {e}", record_index=index) from e
        if not isinstance(metadata, dict):
            raise MalformedPersistedDataError(f"Record {index} metadata is not an object", record_index=index)

        document = Document.from_persisted(
            doc_id, content, source, {str(k): str(v) for k, v in metadata.items()}, created_at
        )
        document.embedding = EmbeddingVector(doc_id, values)
        return document

    def load(self) -> int:
        """
        Replace the in-memory state with the contents of the storage file.

        Never raises on bad data: a missing file or an unreadable or corrupt
        header leaves an empty store, a corrupt record is skipped.

        Returns:
            Number of documents loaded
        """
        with self._write_lock:
            self._documents.clear()
            self._embeddings.clear()
            self._index.clear()

            if not self.storage_path.exists():
                logger.info(f"No knowledge base at {self.storage_path}, starting empty")
                return 0

            try:
                data = self.storage_path.read_bytes()
                count = unpack_header(data, MAGIC, VERSION)
            except (OSError, MalformedPersistedDataError) as e:
                logger.error(f"Cannot load knowledge base {self.storage_path}: {e}; starting empty")
                return 0

            for index, body in iter_records(data, count):
                if isinstance(body, MalformedPersistedDataError):
                    logger.error(f"Knowledge base truncated at record {index}: {body}")
                    break
                try:
                    document = self._decode_record(body, index)
                except MalformedPersistedDataError as e:
                    logger.warning(f"Skipping record {index}: {e}")
                    continue
                if document.id in self._documents:
                    logger.warning(f"Skipping record {index}: duplicate id {document.id}")
                    continue
                self._documents[document.id] = document
                self._embeddings[document.id] = document.embedding
                self._index.append(document.id)

            logger.info(f"Loaded {len(self._index)} documents from {self.storage_path}")
            return len(self._index)
