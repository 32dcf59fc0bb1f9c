"""
Error taxonomy for the retrieval-augmentation core.

Every failure raised by a collaborator (embedding provider, vector store,
document store, chat model) is re-classified into one of these classes
before it leaves the engine or the document manager:

    RAGProxyError
    ├── InvalidRequestError        malformed input, nothing was done
    ├── DocumentNotFoundError      read of an absent document
    ├── EmbeddingError             provider returned no usable vector
    ├── UpstreamProviderError      chat model call failed
    └── ServiceUnavailableError    retriable by the caller
        ├── QueryEmbeddingError    query could not be embedded
        └── StoreError             vector/document store operation failed
            ├── StoreNotReadyError store used before initialize() succeeded
            └── PartialWriteError  document saga stopped between steps
"""

from __future__ import annotations


class RAGProxyError(Exception):
    """Base class for all classified errors."""

    def __init__(self, message: str, cause: Exception | None = None):
        super().__init__(message)
        self.cause = cause


class InvalidRequestError(RAGProxyError):
    """Input failed validation before any retrieval or store work."""


class DocumentNotFoundError(RAGProxyError):
    """The requested document does not exist."""

    def __init__(self, document_id: str):
        super().__init__(f"Document not found: {document_id!r}")
        self.document_id = document_id


class EmbeddingError(RAGProxyError):
    """The embedding provider produced no usable vector for a text."""


class UpstreamProviderError(RAGProxyError):
    """The chat model call failed (network, quota, auth, bad response)."""


class ServiceUnavailableError(RAGProxyError):
    """A dependency is unavailable; the caller may retry later."""


class QueryEmbeddingError(ServiceUnavailableError):
    """The query text could not be embedded, so nothing can be retrieved."""


class StoreError(ServiceUnavailableError):
    """A vector store or document store operation failed."""


class StoreNotReadyError(StoreError):
    """A store handle was used before it finished initializing."""

    def __init__(self, component: str, state: str):
        super().__init__(f"{component} is not ready (state: {state})")
        self.component = component
        self.state = state


class PartialWriteError(StoreError):
    """
    A multi-store document operation stopped part-way through.

    The stores are not rolled back. Re-running the same operation converges
    them, since every step is an upsert or an idempotent delete.
    """

    def __init__(
        self,
        operation: str,
        document_id: str,
        failed_step: str,
        completed_steps: list[str],
        cause: Exception,
    ):
        super().__init__(
            f"{operation} of document {document_id!r} failed at step '{failed_step}' "
            f"after {completed_steps or 'no steps'}: {cause}",
            cause=cause,
        )
        self.operation = operation
        self.document_id = document_id
        self.failed_step = failed_step
        self.completed_steps = completed_steps
