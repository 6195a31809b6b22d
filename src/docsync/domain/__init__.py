"""Document relationship synchronization domain."""

from __future__ import annotations

from .errors import (
    DocumentConflictError,
    DocumentNotFoundError,
    DocumentValidationError,
    StoreError,
    StoreUnavailableError,
    UnsupportedQueryError,
)
from .model import (
    ChangeEvent,
    Document,
    RelationshipAction,
    RelationshipEntry,
    SyncOutcome,
)
from .orchestrator import DocumentMappingEngine, apply_rule
from .ports import Clock, DocumentPatch, DocumentStore, StoreQuery, SystemClock
from .rules import DEFAULT_RULES, RelationshipRule, RuleContext, RuleDecision

__all__ = [
    "DEFAULT_RULES",
    "ChangeEvent",
    "Clock",
    "Document",
    "DocumentConflictError",
    "DocumentMappingEngine",
    "DocumentNotFoundError",
    "DocumentPatch",
    "DocumentStore",
    "DocumentValidationError",
    "RelationshipAction",
    "RelationshipEntry",
    "RelationshipRule",
    "RuleContext",
    "RuleDecision",
    "StoreError",
    "StoreQuery",
    "StoreUnavailableError",
    "SyncOutcome",
    "SystemClock",
    "UnsupportedQueryError",
    "apply_rule",
]
