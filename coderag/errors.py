"""
Exception hierarchy shared by the indexing and query pipelines.

Failures below the repository boundary (unreadable file, untokenizable
document, a chunk that cannot be embedded) are logged and skipped by the
components themselves and never surface as these types.  Everything that
does reach a caller derives from ``CodeRagError`` so front ends can map it to
a user-facing message with ``describe_error``.
"""

from __future__ import annotations

import errno
from typing import Any, Optional

import httpx


class CodeRagError(Exception):
    """Base class for all pipeline failures."""


class ConfigurationError(CodeRagError):
    """Malformed or missing configuration; fatal at startup."""


class EmbeddingError(CodeRagError):
    """The embedding backend failed to load or to produce a vector."""


class EmbeddingNotInitializedError(EmbeddingError, RuntimeError):
    """``embed`` was called before ``initialize``."""


class VectorStoreError(CodeRagError):
    """A vector-store call failed."""


class CollectionNotFoundError(VectorStoreError):
    def __init__(self, collection_name: str) -> None:
        super().__init__(f"Collection '{collection_name}' does not exist")
        self.collection_name = collection_name


class VectorDimensionError(VectorStoreError):
    def __init__(self, expected: int, actual: int) -> None:
        super().__init__(f"Vector dimension {actual} != collection dimension {expected}")
        self.expected = expected
        self.actual = actual


class UpsertError(VectorStoreError):
    def __init__(self, point_id: Any, message: str) -> None:
        super().__init__(f"Upsert of point {point_id} failed: {message}")
        self.point_id = point_id


class GenerationError(CodeRagError):
    """The text-generation service failed."""


class GenerationAuthError(GenerationError):
    """The generation service rejected the credentials."""


class ModelUnavailableError(GenerationError):
    """The requested model is not accessible or not loaded upstream."""


class InvalidQuestionError(CodeRagError, ValueError):
    """The question is empty or not a string."""


class NoRelevantContextError(CodeRagError):
    """The search returned nothing to build a context from."""

    def __init__(self, collection_name: Optional[str] = None) -> None:
        message = "No relevant context found"
        if collection_name:
            message += f" in collection '{collection_name}'"
        super().__init__(message)
        self.collection_name = collection_name


class IndexingInProgressError(CodeRagError):
    """An indexing run is already writing to the collection."""


class QueryTimeoutError(CodeRagError, TimeoutError):
    def __init__(self, timeout_s: float) -> None:
        super().__init__(f"Query did not complete within {timeout_s:g}s")
        self.timeout_s = timeout_s


_TRANSIENT_ERRNOS = {
    errno.ECONNRESET,
    errno.ECONNABORTED,
    errno.EPIPE,
    errno.ETIMEDOUT,
}

_TRANSIENT_HTTPX = (
    httpx.ConnectError,
    httpx.ReadError,
    httpx.WriteError,
    httpx.RemoteProtocolError,
    httpx.ReadTimeout,
)


def is_transient_network_error(exc: BaseException) -> bool:
    """Return True if ``exc`` (or an exception it wraps) is a socket-level hiccup.

    Only connection resets, aborted or broken connections and the matching
    httpx transport errors qualify.  Application errors returned by the
    store never do, even when they arrive over the network.
    """
    seen = set()
    current: Optional[BaseException] = exc
    while current is not None and id(current) not in seen:
        seen.add(id(current))
        if isinstance(current, (ConnectionResetError, ConnectionAbortedError, BrokenPipeError)):
            return True
        if isinstance(current, _TRANSIENT_HTTPX):
            return True
        if isinstance(current, OSError) and current.errno in _TRANSIENT_ERRNOS:
            return True
        current = current.__cause__ or current.__context__
    return False


def describe_error(exc: BaseException) -> str:
    """Translate a failure into the message shown to an end user."""
    if isinstance(exc, NoRelevantContextError):
        return "No indexed content matches this question. Index the repositories first or rephrase the question."
    if isinstance(exc, InvalidQuestionError):
        return f"Invalid input: {exc}"
    if isinstance(exc, GenerationAuthError):
        return "The generation service rejected the access token. Check HF_TOKEN."
    if isinstance(exc, ModelUnavailableError):
        return "The upstream model is unavailable right now. Try again later or pick another LLM_MODEL."
    if isinstance(exc, QueryTimeoutError):
        return f"The question took too long to answer ({exc.timeout_s:g}s limit)."
    if isinstance(exc, IndexingInProgressError):
        return "An indexing run is already in progress. Try again when it has finished."
    if isinstance(exc, CollectionNotFoundError):
        return f"No index found ({exc}). Run the indexer first."
    if isinstance(exc, ConfigurationError):
        return f"Configuration error: {exc}"
    if isinstance(exc, CodeRagError):
        return f"Request failed: {exc}"
    return "An unexpected error occurred."
