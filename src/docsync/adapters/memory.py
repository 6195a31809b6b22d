"""In-process document store used for dry runs and tests."""

from __future__ import annotations

import copy
import threading
from dataclasses import dataclass
from datetime import datetime
from logging import getLogger
from typing import TYPE_CHECKING, Any

from docsync.domain.errors import (
    DocumentConflictError,
    DocumentNotFoundError,
    UnsupportedQueryError,
)
from docsync.domain.model import CREATED_AT_FIELD, ID_FIELD, REV_FIELD, TYPE_FIELD
from docsync.domain.normalization import latest_invoice_number
from docsync.domain.ports import DocumentPatch, StoreQuery, SystemClock

from .records import apply_set, new_revision, require_identity, stamp

if TYPE_CHECKING:
    from collections.abc import Iterable, Mapping

    from docsync.domain.model import Document
    from docsync.domain.ports import Clock

log = getLogger(__name__)


@dataclass(frozen=True, slots=True)
class StoreOperation:
    """One write recorded by :class:`InMemoryDocumentStore`."""

    kind: str
    document_id: str
    fields: tuple[str, ...] = ()


class InMemoryDocumentStore:
    """Thread-safe dict-backed store with revisions and timestamps.

    Every write is appended to ``operations`` so callers can assert on what was
    (or was not) written.
    """

    def __init__(
        self, documents: Iterable[Mapping[str, Any]] = (), *, clock: Clock | None = None
    ) -> None:
        self.clock = clock or SystemClock()
        self.operations: list[StoreOperation] = []
        self._documents: dict[str, Document] = {}
        self._lock = threading.RLock()
        for document in documents:
            self.seed(document)

    def seed(self, document: Mapping[str, Any]) -> Document:
        """Insert or replace ``document`` without recording an operation."""

        document_id, _ = require_identity(document)
        now = self._now()
        stored = stamp(document, revision=new_revision(), created_at=now, updated_at=now)
        with self._lock:
            self._documents[document_id] = stored
        return copy.deepcopy(stored)

    def get(self, document_id: str) -> Document | None:
        with self._lock:
            stored = self._documents.get(document_id)
            return copy.deepcopy(stored) if stored is not None else None

    def clear_operations(self) -> None:
        with self._lock:
            self.operations.clear()

    def fetch_one(
        self, query: StoreQuery, params: Mapping[str, object] | None = None
    ) -> Document | None:
        values = params or {}
        if query is StoreQuery.DOCUMENT_BY_ID:
            return self.get(str(values.get("id", "")))
        if query is StoreQuery.LATEST_INVOICE_NUMBER:
            prefix = str(values.get("prefix", ""))
            with self._lock:
                numbers = [
                    document.get("invoiceNumber")
                    for document in self._documents.values()
                    if document.get(TYPE_FIELD) == "invoice"
                ]
            latest = latest_invoice_number(numbers, prefix)
            return {"invoiceNumber": latest} if latest else None
        raise UnsupportedQueryError(f"fetch_one does not support {query}")

    def fetch_many(
        self, query: StoreQuery, params: Mapping[str, object] | None = None
    ) -> list[Document]:
        values = params or {}
        if query is StoreQuery.TYPES_BY_IDS:
            raw_ids = values.get("ids")
            ids = [str(item) for item in raw_ids] if isinstance(raw_ids, list | tuple) else []
            with self._lock:
                return [
                    {ID_FIELD: document_id, TYPE_FIELD: self._documents[document_id][TYPE_FIELD]}
                    for document_id in dict.fromkeys(ids)
                    if document_id in self._documents
                ]
        raise UnsupportedQueryError(f"fetch_many does not support {query}")

    def create(self, document: Document) -> Document:
        document_id, _ = require_identity(document)
        now = self._now()
        with self._lock:
            if document_id in self._documents:
                raise DocumentConflictError(
                    f"Document already exists: {document_id}", document_id=document_id
                )
            stored = stamp(document, revision=new_revision(), created_at=now, updated_at=now)
            self._documents[document_id] = stored
            self.operations.append(StoreOperation("create", document_id, tuple(document)))
            return copy.deepcopy(stored)

    def create_or_replace(self, document: Document) -> Document:
        document_id, _ = require_identity(document)
        now = self._now()
        with self._lock:
            previous = self._documents.get(document_id)
            created_at = _parse_created(previous) or now
            stored = stamp(document, revision=new_revision(), created_at=created_at, updated_at=now)
            self._documents[document_id] = stored
            self.operations.append(
                StoreOperation("create_or_replace", document_id, tuple(document))
            )
            return copy.deepcopy(stored)

    def patch(self, document_id: str) -> DocumentPatch:
        return DocumentPatch(document_id=document_id, committer=self._commit_patch)

    def _commit_patch(
        self, document_id: str, fields: dict[str, object], revision: str | None
    ) -> Document:
        now = self._now()
        with self._lock:
            current = self._documents.get(document_id)
            if current is None:
                raise DocumentNotFoundError(document_id)
            if revision is not None and current.get(REV_FIELD) != revision:
                raise DocumentConflictError(
                    f"Revision mismatch for {document_id}: expected {revision}, "
                    f"found {current.get(REV_FIELD)}",
                    document_id=document_id,
                )
            merged = apply_set(current, fields)
            stored = stamp(
                merged,
                revision=new_revision(),
                created_at=_parse_created(current) or now,
                updated_at=now,
            )
            self._documents[document_id] = stored
            self.operations.append(StoreOperation("patch", document_id, tuple(fields)))
            log.debug("Patched %s: %s", document_id, sorted(fields))
            return copy.deepcopy(stored)

    def _now(self) -> datetime:
        return self.clock.now()


def _parse_created(document: Mapping[str, Any] | None) -> datetime | None:
    if document is None:
        return None
    raw = document.get(CREATED_AT_FIELD)
    if not isinstance(raw, str):
        return None
    try:
        return datetime.fromisoformat(raw)
    except ValueError:
        return None
