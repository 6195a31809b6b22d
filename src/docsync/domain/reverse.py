"""Mirror forward relationships into the target's own mapping record.

Best effort: every target is synchronized independently and failures are
logged, never raised.
"""

from __future__ import annotations

import concurrent.futures as cf
from logging import getLogger
from typing import TYPE_CHECKING

from .model import REVERSE_REASON, RelationshipAction, RelationshipEntry
from .normalization import normalize_document
from .ports import StoreQuery
from .references import DEFAULT_MAX_DEPTH, extract_references, resolve_referenced_types
from .summary import build_summary
from .upsert import build_mapping_record, mapping_id, merge_relationships, write_mapping_record

if TYPE_CHECKING:
    from collections.abc import Sequence

    from .ports import DocumentStore

log = getLogger(__name__)


def reverse_sync_target(
    store: DocumentStore,
    entry: RelationshipEntry,
    *,
    source_id: str,
    source_type: str,
    timestamp: str,
    max_depth: int = DEFAULT_MAX_DEPTH,
) -> bool:
    """Rebuild the target's mapping record with a reverse entry pointing at the source.

    Returns whether the target's mapping record was written. Store read errors
    propagate.
    """

    target = store.fetch_one(StoreQuery.DOCUMENT_BY_ID, {"id": entry.target_id})
    if target is None:
        log.debug("Reverse sync target %s not found", entry.target_id)
        return False
    view = normalize_document(target)
    if view is None:
        log.warning("Reverse sync target %s has no usable identity", entry.target_id)
        return False

    referenced_types = resolve_referenced_types(
        store, extract_references(target, max_depth=max_depth)
    )
    existing = store.fetch_one(StoreQuery.DOCUMENT_BY_ID, {"id": mapping_id(view.base_id)})
    reverse = RelationshipEntry(
        target_id=source_id,
        target_type=source_type,
        action=RelationshipAction.UPDATED,
        reason=REVERSE_REASON,
    )
    record = build_mapping_record(
        target,
        base_id=view.base_id,
        status=view.status,
        tags=view.sorted_tags,
        referenced_types=referenced_types,
        relationships=merge_relationships([reverse], existing, retain_forward=True),
        summary=build_summary(target),
        timestamp=timestamp,
    )
    return write_mapping_record(store, record, existing)


def propagate_reverse(
    store: DocumentStore,
    entries: Sequence[RelationshipEntry],
    *,
    source_id: str,
    source_type: str,
    timestamp: str,
    concurrency: int = 4,
    max_depth: int = DEFAULT_MAX_DEPTH,
) -> int:
    """Reverse-sync every non-skipped entry on a worker pool; returns how many were written.

    No event loop is involved, so callers running inside one are safe.
    """

    targets = [
        entry
        for entry in entries
        if entry.target_id and entry.action is not RelationshipAction.SKIPPED
    ]
    if not targets:
        return 0

    synced = 0
    with cf.ThreadPoolExecutor(
        max_workers=max(1, concurrency), thread_name_prefix="reverse-sync"
    ) as executor:
        futures = [
            executor.submit(
                reverse_sync_target,
                store,
                entry,
                source_id=source_id,
                source_type=source_type,
                timestamp=timestamp,
                max_depth=max_depth,
            )
            for entry in targets
        ]
        for entry, future in zip(targets, futures, strict=True):
            error = future.exception()
            if error is not None:
                log.warning(
                    "Failed to synchronize reverse mapping %s -> %s: %s",
                    source_id,
                    entry.target_id,
                    error,
                )
            elif future.result():
                synced += 1
    return synced
