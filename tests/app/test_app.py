from __future__ import annotations

import json
from typing import TYPE_CHECKING

import pytest
from sqlalchemy import inspect

from docsync.adapters.memory import InMemoryDocumentStore
from docsync.adapters.sqlalchemy import SqlAlchemyDocumentStore
from docsync.app import (
    build_mapping_engine,
    create_document_store,
    sync_change_event,
    sync_stored_document,
)
from docsync.config import MissingConfigurationError
from docsync.domain import DocumentNotFoundError, RelationshipAction
from tests.helpers.documents import make_order, make_product

if TYPE_CHECKING:
    from pathlib import Path

    from docsync.domain import DocumentMappingEngine


def test_memory_backend(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("DOCSYNC_STORE", "sqlite")

    assert isinstance(create_document_store("memory"), InMemoryDocumentStore)


def test_sqlite_backend_creates_schema(monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> None:
    monkeypatch.delenv("DOCSYNC_STORE", raising=False)
    monkeypatch.setenv("DATABASE_URI", f"sqlite+pysqlite:///{tmp_path / 'app.db'}")

    store = create_document_store()

    assert isinstance(store, SqlAlchemyDocumentStore)
    assert "documents" in inspect(store.engine).get_table_names()
    store.engine.dispose()


def test_sanity_backend_requires_credentials(monkeypatch: pytest.MonkeyPatch) -> None:
    for name in ("SANITY_PROJECT_ID", "SANITY_DATASET", "SANITY_API_TOKEN"):
        monkeypatch.delenv(name, raising=False)

    with pytest.raises(MissingConfigurationError):
        create_document_store("sanity")


def test_build_mapping_engine_reads_sync_config(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("DOCSYNC_INVOICE_PREFIX", "bill")
    store = InMemoryDocumentStore()

    engine = build_mapping_engine(store)

    assert engine.store is store
    assert engine.config.invoice_prefix == "BILL"


def test_sync_change_event_accepts_raw_json(
    engine: DocumentMappingEngine, memory_store: InMemoryDocumentStore
) -> None:
    order = memory_store.seed(make_order())
    payload = json.dumps({"id": "order-1", "operation": "create", "currentSnapshot": order})

    outcome = sync_change_event(payload, engine=engine)

    assert outcome.base_id == "order-1"
    assert outcome.relationships[0].action is RelationshipAction.CREATED
    assert memory_store.get("invoice-A100") is not None


def test_sync_stored_document(
    engine: DocumentMappingEngine, memory_store: InMemoryDocumentStore
) -> None:
    memory_store.seed(make_product())

    outcome = sync_stored_document("product-1", engine=engine)

    assert [entry.target_id for entry in outcome.relationships] == ["map-product-carbon-hood"]
    with pytest.raises(DocumentNotFoundError):
        sync_stored_document("product-404", engine=engine)
