"""Ports consumed by the synchronization engine."""

from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import StrEnum
from typing import TYPE_CHECKING, Protocol, runtime_checkable

if TYPE_CHECKING:
    from collections.abc import Mapping

    from .model import Document


class StoreQuery(StrEnum):
    """Named queries every document store adapter implements.

    ``DOCUMENT_BY_ID`` takes ``{"id": str}`` and returns the document or ``None``.
    ``TYPES_BY_IDS`` takes ``{"ids": list[str]}`` and returns ``{_id, _type}`` rows.
    ``LATEST_INVOICE_NUMBER`` takes ``{"prefix": str}`` and returns
    ``{"invoiceNumber": str}`` for the matching invoice with the highest numeric
    counter, or ``None``.
    """

    DOCUMENT_BY_ID = "document_by_id"
    TYPES_BY_IDS = "types_by_ids"
    LATEST_INVOICE_NUMBER = "latest_invoice_number"


type PatchCommitter = Callable[[str, dict[str, object], str | None], Document]


@dataclass(slots=True)
class DocumentPatch:
    """Partial-merge builder returned by ``DocumentStore.patch``."""

    document_id: str
    committer: PatchCommitter
    fields: dict[str, object] = field(default_factory=dict[str, object])
    revision: str | None = None

    def set(self, fields: Mapping[str, object]) -> DocumentPatch:
        self.fields.update(fields)
        return self

    def if_revision(self, revision: str | None) -> DocumentPatch:
        """Reject the commit if the stored revision no longer matches ``revision``."""

        self.revision = revision
        return self

    def commit(self) -> Document:
        return self.committer(self.document_id, dict(self.fields), self.revision)


@runtime_checkable
class DocumentStore(Protocol):
    """Minimal contract of the external content store."""

    def fetch_one(
        self, query: StoreQuery, params: Mapping[str, object] | None = None
    ) -> Document | None: ...

    def fetch_many(
        self, query: StoreQuery, params: Mapping[str, object] | None = None
    ) -> list[Document]: ...

    def create(self, document: Document) -> Document: ...

    def create_or_replace(self, document: Document) -> Document: ...

    def patch(self, document_id: str) -> DocumentPatch: ...


class Clock(Protocol):
    def now(self) -> datetime: ...


class SystemClock:
    def now(self) -> datetime:
        return datetime.now(UTC)
