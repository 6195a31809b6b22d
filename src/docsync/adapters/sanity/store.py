"""``DocumentStore`` implementation backed by the Sanity content lake."""

from __future__ import annotations

from dataclasses import dataclass, field
from logging import getLogger
from typing import TYPE_CHECKING, Any, Final

from docsync.domain.errors import StoreUnavailableError, UnsupportedQueryError
from docsync.domain.model import ID_FIELD
from docsync.domain.normalization import latest_invoice_number
from docsync.domain.ports import DocumentPatch, StoreQuery

from .client import SanityClient

if TYPE_CHECKING:
    from collections.abc import Mapping

    from docsync.domain.model import Document
    from docsync.domain.ports import DocumentStore

log = getLogger(__name__)

GROQ_QUERIES: Final[Mapping[StoreQuery, str]] = {
    StoreQuery.DOCUMENT_BY_ID: "*[_id == $id][0]",
    StoreQuery.TYPES_BY_IDS: "*[_id in $ids]{_id, _type}",
    StoreQuery.LATEST_INVOICE_NUMBER: (
        '*[_type == "invoice" && defined(invoiceNumber) '
        "&& string::startsWith(invoiceNumber, $prefix)].invoiceNumber"
    ),
}


@dataclass(slots=True)
class SanityDocumentStore:
    client: SanityClient = field(default_factory=SanityClient)

    def fetch_one(
        self, query: StoreQuery, params: Mapping[str, object] | None = None
    ) -> Document | None:
        if query not in (StoreQuery.DOCUMENT_BY_ID, StoreQuery.LATEST_INVOICE_NUMBER):
            raise UnsupportedQueryError(f"fetch_one does not support {query}")
        result = self.client.query(GROQ_QUERIES[query], params)
        if query is StoreQuery.LATEST_INVOICE_NUMBER:
            numbers = result if isinstance(result, list) else []
            latest = latest_invoice_number(numbers, str((params or {}).get("prefix", "")))
            return {"invoiceNumber": latest} if latest else None
        if result is None:
            return None
        if not isinstance(result, dict):
            raise StoreUnavailableError(f"Unexpected result for {query}: {type(result).__name__}")
        return result

    def fetch_many(
        self, query: StoreQuery, params: Mapping[str, object] | None = None
    ) -> list[Document]:
        if query is not StoreQuery.TYPES_BY_IDS:
            raise UnsupportedQueryError(f"fetch_many does not support {query}")
        result = self.client.query(GROQ_QUERIES[query], params)
        if not isinstance(result, list):
            return []
        return [row for row in result if isinstance(row, dict)]

    def create(self, document: Document) -> Document:
        return self._mutate_document({"create": document}, document)

    def create_or_replace(self, document: Document) -> Document:
        return self._mutate_document({"createOrReplace": document}, document)

    def patch(self, document_id: str) -> DocumentPatch:
        return DocumentPatch(document_id=document_id, committer=self._commit_patch)

    def _commit_patch(
        self, document_id: str, fields: dict[str, object], revision: str | None
    ) -> Document:
        operation: dict[str, Any] = {"id": document_id, "set": fields}
        if revision is not None:
            operation["ifRevisionID"] = revision
        log.debug("Patching %s: %s", document_id, sorted(fields))
        return self._mutate_document({"patch": operation}, {ID_FIELD: document_id, **fields})

    def _mutate_document(self, mutation: dict[str, Any], fallback: Document) -> Document:
        response = self.client.mutate([mutation])
        return response.first_document() or dict(fallback)


if TYPE_CHECKING:
    _store_check: DocumentStore = SanityDocumentStore()
