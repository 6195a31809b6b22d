"""SQLAlchemy adapter package for docsync."""

from __future__ import annotations

from .mappings import UTCDateTime, create_all_tables, document_table, metadata
from .store import SqlAlchemyDocumentStore

__all__ = [
    "SqlAlchemyDocumentStore",
    "UTCDateTime",
    "create_all_tables",
    "document_table",
    "metadata",
]
