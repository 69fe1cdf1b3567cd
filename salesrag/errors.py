"""Exceptions raised by the retrieval and persistence layers."""


class SalesRAGError(Exception):
    """Base class for SalesRAG errors."""


class EmbeddingUnavailableError(SalesRAGError):
    """The embedding provider failed or timed out."""


class SearchUnavailableError(SalesRAGError):
    """A vector store collection could not be searched."""


class WriteFailedError(SalesRAGError):
    """A record could not be persisted to the vector store."""


class ConfigurationMismatchError(SalesRAGError):
    """Provider and store disagree on setup, e.g. vector dimensions."""


class RecordValidationError(SalesRAGError, ValueError):
    """A record supplied by the caller is missing or has invalid fields."""
