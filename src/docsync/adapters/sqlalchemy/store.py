"""Document store persisted in a relational database through SQLAlchemy Core."""

from __future__ import annotations

from contextlib import contextmanager
from logging import getLogger
from typing import TYPE_CHECKING, Any

from sqlalchemy import insert, select, update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session, sessionmaker

from docsync.adapters.records import apply_set, new_revision, require_identity, stamp
from docsync.domain.errors import (
    DocumentConflictError,
    DocumentNotFoundError,
    StoreUnavailableError,
    UnsupportedQueryError,
)
from docsync.domain.model import ID_FIELD, TYPE_FIELD
from docsync.domain.normalization import latest_invoice_number
from docsync.domain.ports import DocumentPatch, StoreQuery, SystemClock

from .mappings import document_table

if TYPE_CHECKING:
    from collections.abc import Iterator, Mapping
    from sqlalchemy.engine import Engine

    from docsync.domain.model import Document
    from docsync.domain.ports import Clock

log = getLogger(__name__)


class SqlAlchemyDocumentStore:
    """Stores each document as a JSON body keyed by ``_id``.

    Every call runs in its own transaction, so the store can be shared across
    worker threads.
    """

    def __init__(self, engine: Engine, *, clock: Clock | None = None) -> None:
        self.engine = engine
        self.clock = clock or SystemClock()
        self.session_factory: sessionmaker[Session] = sessionmaker(
            bind=engine, expire_on_commit=False
        )

    def fetch_one(
        self, query: StoreQuery, params: Mapping[str, object] | None = None
    ) -> Document | None:
        values = params or {}
        if query is StoreQuery.DOCUMENT_BY_ID:
            with self._transaction() as session:
                body = session.execute(
                    select(document_table.c.body).where(
                        document_table.c.id == str(values.get("id", ""))
                    )
                ).scalar_one_or_none()
            return dict(body) if body is not None else None
        if query is StoreQuery.LATEST_INVOICE_NUMBER:
            number = document_table.c.body["invoiceNumber"].as_string()
            prefix = str(values.get("prefix", ""))
            # zero padding varies, so the counter is compared numerically in Python
            statement = select(number).where(
                document_table.c.type == "invoice",
                number.startswith(prefix, autoescape=True),
            )
            with self._transaction() as session:
                numbers = session.execute(statement).scalars().all()
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
            if not ids:
                return []
            statement = select(document_table.c.id, document_table.c.type).where(
                document_table.c.id.in_(ids)
            )
            with self._transaction() as session:
                rows = session.execute(statement).all()
            return [{ID_FIELD: row.id, TYPE_FIELD: row.type} for row in rows]
        raise UnsupportedQueryError(f"fetch_many does not support {query}")

    def create(self, document: Document) -> Document:
        document_id, document_type = require_identity(document)
        now = self.clock.now()
        revision = new_revision()
        stored = stamp(document, revision=revision, created_at=now, updated_at=now)
        with self._transaction() as session:
            exists = session.execute(
                select(document_table.c.id).where(document_table.c.id == document_id)
            ).scalar_one_or_none()
            if exists is not None:
                raise DocumentConflictError(
                    f"Document already exists: {document_id}", document_id=document_id
                )
            session.execute(
                insert(document_table).values(
                    id=document_id,
                    type=document_type,
                    rev=revision,
                    created_at=now,
                    updated_at=now,
                    body=stored,
                )
            )
        return stored

    def create_or_replace(self, document: Document) -> Document:
        document_id, document_type = require_identity(document)
        now = self.clock.now()
        revision = new_revision()
        with self._transaction() as session:
            created_at = session.execute(
                select(document_table.c.created_at).where(document_table.c.id == document_id)
            ).scalar_one_or_none()
            stored = stamp(
                document, revision=revision, created_at=created_at or now, updated_at=now
            )
            values: dict[str, Any] = {
                "type": document_type,
                "rev": revision,
                "updated_at": now,
                "body": stored,
            }
            if created_at is None:
                session.execute(
                    insert(document_table).values(id=document_id, created_at=now, **values)
                )
            else:
                session.execute(
                    update(document_table).where(document_table.c.id == document_id).values(values)
                )
        return stored

    def patch(self, document_id: str) -> DocumentPatch:
        return DocumentPatch(document_id=document_id, committer=self._commit_patch)

    def _commit_patch(
        self, document_id: str, fields: dict[str, object], revision: str | None
    ) -> Document:
        now = self.clock.now()
        with self._transaction() as session:
            row = session.execute(
                select(
                    document_table.c.rev, document_table.c.created_at, document_table.c.body
                ).where(document_table.c.id == document_id)
            ).one_or_none()
            if row is None:
                raise DocumentNotFoundError(document_id)
            if revision is not None and row.rev != revision:
                raise _revision_mismatch(document_id, revision, row.rev)

            next_revision = new_revision()
            stored = stamp(
                apply_set(row.body, fields),
                revision=next_revision,
                created_at=row.created_at,
                updated_at=now,
            )
            result = session.execute(
                update(document_table)
                .where(document_table.c.id == document_id, document_table.c.rev == row.rev)
                .values(rev=next_revision, updated_at=now, body=stored)
            )
            if result.rowcount != 1:
                raise _revision_mismatch(document_id, row.rev, None)
        log.debug("Patched %s: %s", document_id, sorted(fields))
        return stored

    @contextmanager
    def _transaction(self) -> Iterator[Session]:
        try:
            with self.session_factory() as session, session.begin():
                yield session
        except IntegrityError as exc:
            raise DocumentConflictError(f"Integrity violation: {exc.orig}") from exc
        except SQLAlchemyError as exc:
            log.exception("Document store transaction failed")
            raise StoreUnavailableError(str(exc)) from exc


def _revision_mismatch(
    document_id: str, expected: str, found: str | None
) -> DocumentConflictError:
    return DocumentConflictError(
        f"Revision mismatch for {document_id}: expected {expected}, found {found}",
        document_id=document_id,
    )