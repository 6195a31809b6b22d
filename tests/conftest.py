from __future__ import annotations

from datetime import UTC, datetime, timedelta
from typing import TYPE_CHECKING

import pytest
from sqlalchemy import create_engine

from docsync.adapters.memory import InMemoryDocumentStore
from docsync.adapters.sqlalchemy import SqlAlchemyDocumentStore, create_all_tables
from docsync.config import SyncConfig
from docsync.domain import DocumentMappingEngine

if TYPE_CHECKING:
    from collections.abc import Iterator
    from pathlib import Path

    from sqlalchemy.engine import Engine


class FixedClock:
    """Clock returning a fixed instant that tests can advance explicitly."""

    def __init__(self, start: datetime | None = None) -> None:
        self.current = start or datetime(2025, 3, 1, 12, 0, tzinfo=UTC)

    def now(self) -> datetime:
        return self.current

    def advance(self, **delta: float) -> None:
        self.current += timedelta(**delta)


@pytest.fixture
def clock() -> FixedClock:
    return FixedClock()


@pytest.fixture
def sync_config() -> SyncConfig:
    return SyncConfig(invoice_prefix="INV", reverse_concurrency=2)


@pytest.fixture
def memory_store(clock: FixedClock) -> InMemoryDocumentStore:
    return InMemoryDocumentStore(clock=clock)


@pytest.fixture
def engine(
    memory_store: InMemoryDocumentStore, clock: FixedClock, sync_config: SyncConfig
) -> DocumentMappingEngine:
    return DocumentMappingEngine(memory_store, clock=clock, config=sync_config)


@pytest.fixture
def sqlite_engine(tmp_path: Path) -> Iterator[Engine]:
    # file-backed so worker threads share one database
    engine = create_engine(f"sqlite+pysqlite:///{tmp_path / 'docsync.db'}", future=True)
    create_all_tables(engine)
    try:
        yield engine
    finally:
        engine.dispose()


@pytest.fixture
def sqlite_store(sqlite_engine: Engine, clock: FixedClock) -> SqlAlchemyDocumentStore:
    return SqlAlchemyDocumentStore(sqlite_engine, clock=clock)
