"""
Custom exceptions for the RAG assistant.
"""


class RAGAssistantError(Exception):
    """Base exception for all RAG assistant errors."""
    pass


class ConfigurationError(RAGAssistantError):
    """
    Error in assistant configuration.

    Raised when an environment variable holds a value that cannot be
    converted to the expected type or lies outside its valid range.
    """

    def __init__(self, message: str, variable: str = None):
        super().__init__(message)
        self.variable = variable


class MalformedPersistedDataError(RAGAssistantError):
    """
    Error decoding a persisted knowledge base or chat history file.

    Raised when:
    - The file header carries an unknown magic number or version
    - A record is truncated or its fields cannot be decoded

    Loaders recover from it by degrading to an empty store or skipping the
    offending record.
    """

    def __init__(self, message: str, record_index: int = None):
        super().__init__(message)
        self.record_index = record_index


class ProviderUnavailableError(RAGAssistantError):
    """
    Error communicating with the embedding or generation provider.

    Raised when:
    - Provider is unreachable
    - Request times out
    - Provider returns an error response
    """

    def __init__(self, message: str, provider: str = None, status_code: int = None):
        super().__init__(message)
        self.provider = provider
        self.status_code = status_code


class GenerationTimeoutError(ProviderUnavailableError):
    """The provider stopped sending data for longer than the read timeout."""
    pass


class DuplicateDocumentError(RAGAssistantError):
    """A document with the same identifier is already stored."""

    def __init__(self, document_id: str):
        super().__init__(f"Document already exists: {document_id}")
        self.document_id = document_id


class InvalidVectorDimensionError(RAGAssistantError):
    """
    Two vectors of different length were compared.

    This points at an embedding model mismatch (for example the embedding
    model was switched after documents were stored) and is never recovered.
    """

    def __init__(self, expected: int, actual: int):
        super().__init__(f"Vector dimension mismatch: expected {expected}, got {actual}")
        self.expected = expected
        self.actual = actual


class NarrationError(RAGAssistantError):
    """The text-to-speech executable is missing or failed."""
    pass
