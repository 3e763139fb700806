"""
Domain model shared by the knowledge store, chat history and RAG pipeline.

Documents and embeddings live in the knowledge store, messages in the chat
history; search results are transient and never persisted.
"""

import time
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Dict, Optional, Sequence

import numpy as np

from .exceptions import InvalidVectorDimensionError


class EmbeddingVector:
    """
    Embedding of a single document.

    The L2 norm is computed once at construction; it is never persisted and
    always derived from the values it describes.
    """

    __slots__ = ("document_id", "values", "norm")

    def __init__(self, document_id: Optional[str], values: Sequence[float]):
        self.document_id = document_id
        self.values = np.asarray(values, dtype=np.float64).ravel()
        self.norm = float(np.linalg.norm(self.values))

    @property
    def dimension(self) -> int:
        return int(self.values.shape[0])

    def cosine_similarity(self, other: "EmbeddingVector") -> float:
        """
        Cosine similarity with another vector of the same dimension.

        Returns 0.0 when either vector has zero norm.

        Raises:
            InvalidVectorDimensionError: If the dimensions differ
        """
        if self.dimension != other.dimension:
            raise InvalidVectorDimensionError(self.dimension, other.dimension)
        if self.norm == 0.0 or other.norm == 0.0:
            return 0.0
        return float(np.dot(self.values, other.values) / (self.norm * other.norm))

    def __len__(self) -> int:
        return self.dimension

    def __repr__(self) -> str:
        return f"EmbeddingVector(document_id={self.document_id!r}, dimension={self.dimension})"


def cosine_similarity(a: Sequence[float], b: Sequence[float]) -> float:
    """Cosine similarity of two raw vectors, 0.0 if either norm is zero."""
    return EmbeddingVector(None, a).cosine_similarity(EmbeddingVector(None, b))


@dataclass
class Document:
    """A knowledge document. Never mutated after it is stored."""

    content: str
    source: str
    id: str = field(default_factory=lambda: str(uuid.uuid4()))
    created_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    metadata: Dict[str, str] = field(default_factory=dict)
    embedding: Optional[EmbeddingVector] = field(default=None, repr=False, compare=False)

    def __post_init__(self):
        self.metadata.setdefault("source", self.source)
        self.metadata.setdefault("created", self.created_at.isoformat())

    @classmethod
    def from_persisted(
        cls,
        doc_id: str,
        content: str,
        source: str,
        metadata: Dict[str, str],
        created_at: datetime,
    ) -> "Document":
        """Rebuild a document with the identifier and timestamp read from disk."""
        return cls(
            content=content,
            source=source,
            id=doc_id,
            created_at=created_at,
            metadata=dict(metadata),
        )


class Role(Enum):
    SYSTEM = "system"
    USER = "user"
    ASSISTANT = "assistant"


@dataclass
class Message:
    """One entry of the chat transcript."""

    role: Role
    content: str
    metadata: Dict[str, str] = field(default_factory=dict)

    def __post_init__(self):
        if not isinstance(self.role, Role):
            raise ValueError(f"Invalid role: {self.role!r}")
        self.metadata.setdefault("timestamp", str(int(time.time() * 1000)))

    def to_chat_message(self) -> Dict[str, str]:
        """Role-tagged form used by the chat endpoint."""
        return {"role": self.role.value, "content": self.content}


@dataclass
class SearchResult:
    document: Document
    embedding: EmbeddingVector
    similarity: float
