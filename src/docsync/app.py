"""Application orchestration entry points."""

from __future__ import annotations

from logging import getLogger
from typing import TYPE_CHECKING, Any

from sqlalchemy import create_engine

from docsync.adapters.events import parse_change_event
from docsync.adapters.memory import InMemoryDocumentStore
from docsync.adapters.sanity import SanityClient, SanityDocumentStore
from docsync.adapters.sqlalchemy import SqlAlchemyDocumentStore, create_all_tables
from docsync.config import (
    StoreBackend,
    get_database_config,
    get_sanity_config,
    get_store_backend,
    get_sync_config,
)
from docsync.domain import ChangeEvent, DocumentMappingEngine, DocumentNotFoundError, StoreQuery

if TYPE_CHECKING:
    from collections.abc import Mapping

    from docsync.config import SyncConfig
    from docsync.domain import Clock, DocumentStore, SyncOutcome


log = getLogger(__name__)


def create_document_store(
    backend: StoreBackend | str | None = None,
    *,
    clock: Clock | None = None,
) -> DocumentStore:
    """Build the document store selected by ``backend`` or ``DOCSYNC_STORE``."""

    resolved = get_store_backend(backend)
    log.info("Using %s document store", resolved)
    if resolved is StoreBackend.MEMORY:
        return InMemoryDocumentStore(clock=clock)
    if resolved is StoreBackend.SANITY:
        return SanityDocumentStore(client=SanityClient(config=get_sanity_config()))

    engine = create_engine(get_database_config().uri, future=True)
    create_all_tables(engine)
    return SqlAlchemyDocumentStore(engine, clock=clock)


def build_mapping_engine(
    store: DocumentStore | None = None,
    *,
    config: SyncConfig | None = None,
    clock: Clock | None = None,
) -> DocumentMappingEngine:
    return DocumentMappingEngine(
        store or create_document_store(clock=clock),
        clock=clock,
        config=config or get_sync_config(),
    )


def sync_change_event(
    payload: ChangeEvent | str | bytes | Mapping[str, Any],
    *,
    engine: DocumentMappingEngine | None = None,
) -> SyncOutcome:
    """Run the mapping engine for one change-event payload."""

    event = payload if isinstance(payload, ChangeEvent) else parse_change_event(payload)
    effective_engine = engine or build_mapping_engine()
    log.info(
        "Handling %s event for %s (%s)",
        event.operation or "change",
        event.document_id,
        event.document_type,
    )
    outcome = effective_engine.handle(event)
    _log_outcome(outcome)
    return outcome


def sync_stored_document(
    document_id: str,
    *,
    engine: DocumentMappingEngine | None = None,
) -> SyncOutcome:
    """Re-run the mapping engine for a document already in the store."""

    effective_engine = engine or build_mapping_engine()
    document = effective_engine.store.fetch_one(StoreQuery.DOCUMENT_BY_ID, {"id": document_id})
    if document is None:
        raise DocumentNotFoundError(document_id)
    outcome = effective_engine.sync_document(document)
    _log_outcome(outcome)
    return outcome


def _log_outcome(outcome: SyncOutcome) -> None:
    if outcome.noop:
        log.info("Finished sync for %s: nothing to do", outcome.base_id or "<invalid document>")
        return
    log.info(
        "Finished sync for %s: relationships=%s, referenced_types=%s, "
        "mapping_written=%s, reverse_synced=%s",
        outcome.base_id,
        [f"{entry.target_id}:{entry.action}" for entry in outcome.relationships],
        outcome.referenced_types,
        outcome.mapping_written,
        outcome.reverse_synced,
    )
