"""Public interface for the Sanity content store adapter."""

from __future__ import annotations

from .client import SanityClient
from .schema import ErrorResponse, MutationResponse, MutationResult, QueryResponse
from .store import GROQ_QUERIES, SanityDocumentStore

__all__ = [
    "GROQ_QUERIES",
    "ErrorResponse",
    "MutationResponse",
    "MutationResult",
    "QueryResponse",
    "SanityClient",
    "SanityDocumentStore",
]
