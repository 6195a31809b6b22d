"""Create-or-enrich writes for derived records and full-replace mapping records.

Nothing here retries. Derived-record writes raise store errors to the caller so
they can be recorded against the relationship; mapping-record and
back-reference writes log and continue.
"""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass, field
from enum import StrEnum
from logging import getLogger
from typing import TYPE_CHECKING, Any, Final

from .errors import StoreError
from .model import (
    ID_FIELD,
    REF_FIELD,
    REV_FIELD,
    SYSTEM_FIELDS,
    TYPE_FIELD,
    RelationshipAction,
    RelationshipEntry,
    as_reference,
)
from .normalization import normalize_id
from .ports import StoreQuery

if TYPE_CHECKING:
    from collections.abc import Iterable, Sequence

    from .model import Document
    from .ports import DocumentStore

log = getLogger(__name__)

MAPPING_PREFIX: Final = "map-"
_VOLATILE_FIELD: Final = "updatedAt"


class MergePolicy(StrEnum):
    """How a desired field value is merged into an existing derived record."""

    OVERRIDE = "override"  # non-empty desired value that differs
    FILL = "fill"  # only when the existing value is empty
    REPLACE = "replace"  # any difference, empty values included
    REFERENCE = "reference"  # compare ``_ref`` after draft normalization


@dataclass(frozen=True, slots=True)
class BackReference:
    document_id: str
    field_name: str
    reference_id: str


@dataclass(frozen=True, slots=True)
class DerivedPlan:
    """Everything needed to create or enrich one derived record.

    ``payload`` is written verbatim on creation. ``desired`` and ``policies``
    drive the field-level diff against an existing record; ``stamp`` is merged
    into non-empty patches only.
    """

    target_id: str
    target_type: str
    payload: Mapping[str, Any]
    desired: Mapping[str, Any]
    policies: Mapping[str, MergePolicy]
    reasons: Mapping[RelationshipAction, str]
    stamp: Mapping[str, Any] = field(default_factory=dict[str, Any])
    back_references: tuple[BackReference, ...] = ()


@dataclass(frozen=True, slots=True)
class UpsertResult:
    action: RelationshipAction
    applied_fields: tuple[str, ...] = ()


def is_empty(value: object) -> bool:
    if value is None:
        return True
    if isinstance(value, str):
        return not value.strip()
    if isinstance(value, list | tuple | Mapping):
        return len(value) == 0
    return False


def compute_patch(
    desired: Mapping[str, Any],
    existing: Mapping[str, Any],
    policies: Mapping[str, MergePolicy],
) -> dict[str, Any]:
    """Return the minimal set of fields to write so ``existing`` reflects ``desired``.

    Existing values are kept unless the policy for a field allows the desired
    value to win. Structured values compare by deep equality.
    """

    patch: dict[str, Any] = {}
    for name, policy in policies.items():
        wanted = desired.get(name)
        current = existing.get(name)
        if policy is MergePolicy.OVERRIDE:
            changed = not is_empty(wanted) and wanted != current
        elif policy is MergePolicy.FILL:
            changed = is_empty(current) and not is_empty(wanted)
        elif policy is MergePolicy.REFERENCE:
            changed = not is_empty(wanted) and (
                _reference_target(wanted) != _reference_target(current)
            )
        else:
            changed = wanted != current
        if changed:
            patch[name] = wanted
    return patch


def load_existing(store: DocumentStore, document_id: str) -> Document | None:
    """Fetch ``document_id``; read failures are logged and treated as absent."""

    try:
        return store.fetch_one(StoreQuery.DOCUMENT_BY_ID, {"id": document_id})
    except StoreError as exc:
        log.warning("Unable to read candidate record %s: %s", document_id, exc)
        return None


def upsert_derived(
    store: DocumentStore, plan: DerivedPlan, existing: Mapping[str, Any] | None
) -> UpsertResult:
    """Create ``plan.target_id`` or patch the fields that changed.

    Patches are guarded by the revision of ``existing``; a concurrent write
    surfaces as ``DocumentConflictError``.
    """

    if existing is None:
        store.create(dict(plan.payload))
        log.info("Created %s %s", plan.target_type, plan.target_id)
        applied = tuple(name for name in plan.payload if name not in (ID_FIELD, TYPE_FIELD))
        return UpsertResult(RelationshipAction.CREATED, applied)

    patch = compute_patch(plan.desired, existing, plan.policies)
    if not patch:
        return UpsertResult(RelationshipAction.UNCHANGED)

    patch.update(plan.stamp)
    revision = existing.get(REV_FIELD)
    store.patch(plan.target_id).set(patch).if_revision(
        revision if isinstance(revision, str) else None
    ).commit()
    log.info("Updated %s %s: %s", plan.target_type, plan.target_id, sorted(patch))
    return UpsertResult(RelationshipAction.UPDATED, tuple(patch))


def ensure_reference_field(
    store: DocumentStore, document_id: str, field_name: str, reference_id: str
) -> bool:
    """Point ``field_name`` of ``document_id`` at ``reference_id`` if it does not already.

    Missing records are left alone. Returns whether a write happened.
    """

    if not document_id or not reference_id:
        return False
    try:
        current = store.fetch_one(StoreQuery.DOCUMENT_BY_ID, {"id": document_id})
        if current is None:
            return False
        if _reference_target(current.get(field_name)) == normalize_id(reference_id):
            return False
        store.patch(document_id).set({field_name: as_reference(reference_id)}).commit()
    except StoreError as exc:
        log.warning(
            "Failed to set reference field %s on %s -> %s: %s",
            field_name,
            document_id,
            reference_id,
            exc,
        )
        return False
    return True


def mapping_id(base_id: str) -> str:
    return f"{MAPPING_PREFIX}{base_id}"


def mapping_type(document_type: str) -> str:
    return f"{MAPPING_PREFIX}{document_type or 'unknown'}"


def stored_relationships(record: Mapping[str, Any] | None) -> list[RelationshipEntry]:
    if record is None:
        return []
    raw = record.get("relationships")
    if not isinstance(raw, list):
        return []
    entries = [RelationshipEntry.from_record(item) for item in raw]
    return [entry for entry in entries if entry is not None]


def merge_relationships(
    entries: Iterable[RelationshipEntry],
    existing_record: Mapping[str, Any] | None,
    *,
    retain_forward: bool = False,
) -> list[RelationshipEntry]:
    """Combine this run's entries with the ones already stored on a mapping record.

    Stored reverse entries survive unless this run supersedes them; stored
    forward entries survive only with ``retain_forward``. An ``unchanged``
    entry keeps the last effective action and reason stored for its target.
    """

    stored = {entry.target_id: entry for entry in stored_relationships(existing_record)}
    merged: list[RelationshipEntry] = []
    claimed: set[str] = set()
    for entry in entries:
        previous = stored.get(entry.target_id)
        if (
            entry.action is RelationshipAction.UNCHANGED
            and previous is not None
            and previous.action is not RelationshipAction.SKIPPED
            and not previous.is_reverse
            and previous.target_type == entry.target_type
        ):
            entry = previous
        if entry.target_id in claimed:
            continue
        claimed.add(entry.target_id)
        merged.append(entry)

    for previous in stored.values():
        if previous.target_id in claimed:
            continue
        if previous.is_reverse or retain_forward:
            claimed.add(previous.target_id)
            merged.append(previous)

    # forward entries keep their order, reverse entries follow sorted by target
    return sorted(
        merged, key=lambda entry: (entry.is_reverse, entry.target_id if entry.is_reverse else "")
    )


def build_mapping_record(
    document: Mapping[str, Any],
    *,
    base_id: str,
    status: str,
    tags: Sequence[str],
    referenced_types: Sequence[str],
    relationships: Sequence[RelationshipEntry],
    summary: Mapping[str, Any] | None,
    timestamp: str,
) -> Document:
    document_type = document.get(TYPE_FIELD)
    source_type = document_type if isinstance(document_type, str) else "unknown"
    return {
        ID_FIELD: mapping_id(base_id),
        TYPE_FIELD: mapping_type(source_type),
        "source": as_reference(base_id),
        "sourceType": source_type,
        "sourceStatus": status,
        "sourceTags": list(tags),
        "referencedTypes": list(referenced_types),
        "updatedAt": timestamp,
        "summary": dict(summary) if summary else None,
        "relationships": [entry.to_record(timestamp=timestamp) for entry in relationships],
    }


def write_mapping_record(
    store: DocumentStore, record: Document, existing: Mapping[str, Any] | None
) -> bool:
    """Replace the mapping record unless the stored projection is already identical.

    Returns whether a write happened; failures are logged, never raised.
    """

    if existing is not None and _comparable(existing) == _comparable(record):
        log.debug("Mapping record %s already current", record[ID_FIELD])
        return False
    try:
        store.create_or_replace(record)
    except StoreError:
        log.exception(
            "Failed to upsert mapping record %s (%s)", record[ID_FIELD], record[TYPE_FIELD]
        )
        return False
    return True


def _comparable(record: Mapping[str, Any]) -> dict[str, Any]:
    projection = {
        key: value
        for key, value in record.items()
        if key not in SYSTEM_FIELDS and key != _VOLATILE_FIELD
    }
    relationships = projection.get("relationships")
    if isinstance(relationships, list):
        projection["relationships"] = [
            {key: value for key, value in item.items() if key != _VOLATILE_FIELD}
            if isinstance(item, Mapping)
            else item
            for item in relationships
        ]
    return projection


def _reference_target(value: object) -> str:
    if not isinstance(value, Mapping):
        return ""
    return normalize_id(value.get(REF_FIELD))
