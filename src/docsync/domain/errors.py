"""Errors raised by document store adapters."""

from __future__ import annotations


class StoreError(RuntimeError):
    """Base class for failures reported by a document store."""


class StoreUnavailableError(StoreError):
    """Raised when the store cannot be reached or answered with a server error."""


class DocumentNotFoundError(StoreError):
    """Raised when a write targets a document id that does not exist."""

    def __init__(self, document_id: str) -> None:
        super().__init__(f"Document not found: {document_id}")
        self.document_id = document_id


class DocumentConflictError(StoreError):
    """Raised on duplicate creates and on revision mismatches."""

    def __init__(self, message: str, *, document_id: str | None = None) -> None:
        super().__init__(message)
        self.document_id = document_id


class DocumentValidationError(StoreError):
    """Raised when the store rejects a document payload."""


class UnsupportedQueryError(StoreError):
    """Raised when an adapter is asked for a query it does not implement."""
