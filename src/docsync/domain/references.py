"""Collect embedded cross-references from an arbitrary document tree."""

from __future__ import annotations

from collections.abc import Mapping
from logging import getLogger
from typing import TYPE_CHECKING, Final

from .errors import StoreError
from .model import REF_FIELD, REFERENCE_MARKER, TYPE_FIELD
from .ports import StoreQuery

if TYPE_CHECKING:
    from collections.abc import Sequence

    from .ports import DocumentStore

log = getLogger(__name__)

DEFAULT_MAX_DEPTH: Final = 64
_MARKER_FIELDS: Final = frozenset({REF_FIELD, TYPE_FIELD})


def extract_references(document: object, *, max_depth: int = DEFAULT_MAX_DEPTH) -> list[str]:
    """Return referenced ids in first-seen order, without duplicates.

    Traversal is depth-first over mappings and lists using an explicit stack.
    Nesting deeper than ``max_depth`` stops the walk and returns what was found
    so far.
    """

    found: list[str] = []
    seen: set[str] = set()
    stack: list[tuple[object, int]] = [(document, 0)]
    while stack:
        node, depth = stack.pop()
        if depth > max_depth:
            log.warning(
                "Reference extraction exceeded depth %s; returning partial result", max_depth
            )
            return found

        children: list[object]
        if isinstance(node, Mapping):
            ref = _reference_id(node)
            if ref is not None and ref not in seen:
                seen.add(ref)
                found.append(ref)
            children = [child for key, child in node.items() if key not in _MARKER_FIELDS]
        elif isinstance(node, list | tuple):
            children = list(node)
        else:
            continue
        stack.extend((child, depth + 1) for child in reversed(children))
    return found


def resolve_referenced_types(store: DocumentStore, reference_ids: Sequence[str]) -> list[str]:
    """Look up the ``_type`` of every referenced id; sorted and de-duplicated."""

    if not reference_ids:
        return []
    try:
        rows = store.fetch_many(StoreQuery.TYPES_BY_IDS, {"ids": list(reference_ids)})
    except StoreError as exc:
        log.warning("Failed to resolve referenced document types for %s: %s", reference_ids, exc)
        return []
    types = {
        row[TYPE_FIELD]
        for row in rows
        if isinstance(row, Mapping) and isinstance(row.get(TYPE_FIELD), str) and row[TYPE_FIELD]
    }
    return sorted(types)


def _reference_id(node: Mapping[object, object]) -> str | None:
    if node.get(TYPE_FIELD) != REFERENCE_MARKER:
        return None
    ref = node.get(REF_FIELD)
    if isinstance(ref, str) and ref:
        return ref
    return None
