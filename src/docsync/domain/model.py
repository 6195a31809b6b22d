"""Records exchanged between the synchronization stages.

Documents travel through the engine in the content store's native shape: plain
mappings with ``_id``/``_type`` identity, store-managed ``_rev``/``_createdAt``/
``_updatedAt`` fields and ``{"_type": "reference", "_ref": ...}`` cross-links.
"""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import StrEnum
from typing import Any, Final

type Document = dict[str, Any]

ID_FIELD: Final = "_id"
TYPE_FIELD: Final = "_type"
REF_FIELD: Final = "_ref"
REV_FIELD: Final = "_rev"
CREATED_AT_FIELD: Final = "_createdAt"
UPDATED_AT_FIELD: Final = "_updatedAt"
SYSTEM_FIELDS: Final = frozenset({REV_FIELD, CREATED_AT_FIELD, UPDATED_AT_FIELD})

REFERENCE_MARKER: Final = "reference"
DRAFT_PREFIX: Final = "drafts."
SYNC_SOURCE: Final = "docsync"

REVERSE_REASON: Final = "Reverse relationship maintained"


class RelationshipAction(StrEnum):
    CREATED = "created"
    UPDATED = "updated"
    UNCHANGED = "unchanged"
    SKIPPED = "skipped"


@dataclass(frozen=True, slots=True)
class RelationshipEntry:
    """One logged outcome of a relationship rule (or its reverse mirror)."""

    target_id: str
    target_type: str
    action: RelationshipAction
    reason: str

    @property
    def is_reverse(self) -> bool:
        return self.reason == REVERSE_REASON

    def to_record(self, *, timestamp: str) -> Document:
        return {
            "_key": self.target_id,
            "target": as_reference(self.target_id),
            "targetType": self.target_type,
            "action": self.action.value,
            "reason": self.reason,
            "updatedAt": timestamp,
        }

    @classmethod
    def from_record(cls, record: object) -> RelationshipEntry | None:
        """Parse a stored relationship record, returning ``None`` for malformed ones."""

        if not isinstance(record, Mapping):
            return None
        target = record.get("target")
        target_id = target.get(REF_FIELD) if isinstance(target, Mapping) else None
        if not isinstance(target_id, str) or not target_id:
            target_id = record.get("_key")
        if not isinstance(target_id, str) or not target_id:
            return None
        try:
            action = RelationshipAction(record.get("action"))
        except ValueError:
            return None
        target_type = record.get("targetType")
        reason = record.get("reason")
        return cls(
            target_id=target_id,
            target_type=target_type if isinstance(target_type, str) else "unknown",
            action=action,
            reason=reason if isinstance(reason, str) else "",
        )


@dataclass(frozen=True, slots=True)
class ChangeEvent:
    """A create/update notification for one document."""

    current: Mapping[str, Any] | None
    document_id: str | None = None
    document_type: str | None = None
    operation: str | None = None
    previous: Mapping[str, Any] | None = None
    timestamp: datetime | None = None


@dataclass(slots=True)
class SyncOutcome:
    """Summary of one engine invocation."""

    base_id: str = ""
    source_type: str = ""
    relationships: list[RelationshipEntry] = field(default_factory=list[RelationshipEntry])
    referenced_types: list[str] = field(default_factory=list[str])
    mapping_written: bool = False
    reverse_synced: int = 0
    noop: bool = False


def as_reference(document_id: str) -> Document:
    return {TYPE_FIELD: REFERENCE_MARKER, REF_FIELD: document_id}


def format_timestamp(value: datetime) -> str:
    """Render ``value`` as the store's UTC ISO-8601 timestamp string."""

    if value.tzinfo is None:
        value = value.replace(tzinfo=UTC)
    return value.astimezone(UTC).isoformat(timespec="milliseconds").replace("+00:00", "Z")
