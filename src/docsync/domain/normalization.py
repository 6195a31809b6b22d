"""Canonical view of an incoming document: identity, status and tags.

Every function here is pure and total: unrecognized shapes degrade to empty
strings and empty sets instead of raising.
"""

from __future__ import annotations

import re
from collections.abc import Mapping
from dataclasses import dataclass
from typing import TYPE_CHECKING, Final

from .model import DRAFT_PREFIX, ID_FIELD, TYPE_FIELD

if TYPE_CHECKING:
    from collections.abc import Iterable

# first non-empty wins
STATUS_FIELDS: Final = ("status", "state", "orderStatus", "paymentStatus")
_TAG_OBJECT_FIELDS: Final = ("value", "label")
_LEADING_DIGITS: Final = re.compile(r"\d+")


@dataclass(frozen=True, slots=True)
class NormalizedView:
    base_id: str
    document_type: str
    status: str
    tags: frozenset[str]

    @property
    def sorted_tags(self) -> list[str]:
        return sorted(self.tags)


def normalize_id(document_id: object) -> str:
    """Strip the draft prefix from ``document_id``."""

    if not isinstance(document_id, str) or not document_id:
        return ""
    return document_id.removeprefix(DRAFT_PREFIX)


def draft_id(document_id: str) -> str:
    return f"{DRAFT_PREFIX}{normalize_id(document_id)}"


def normalize_status(document: object) -> str:
    if not isinstance(document, Mapping):
        return ""
    for field_name in STATUS_FIELDS:
        candidate = document.get(field_name)
        if isinstance(candidate, str) and candidate.strip():
            return candidate.strip().lower()
    return ""


def collect_tags(document: object) -> frozenset[str]:
    if not isinstance(document, Mapping):
        return frozenset()
    raw = document.get("tags")
    items: Iterable[object] = raw if isinstance(raw, list | tuple) else (raw,)
    tags: set[str] = set()
    for item in items:
        text = _tag_text(item)
        if text is None:
            continue
        for part in text.split(","):
            tag = part.strip().lower()
            if tag:
                tags.add(tag)
    return frozenset(tags)


def normalize_document(document: Mapping[str, object]) -> NormalizedView | None:
    """Build the canonical view, or ``None`` when identity is missing."""

    base_id = normalize_id(document.get(ID_FIELD))
    document_type = document.get(TYPE_FIELD)
    if not base_id or not isinstance(document_type, str) or not document_type:
        return None
    return NormalizedView(
        base_id=base_id,
        document_type=document_type,
        status=normalize_status(document),
        tags=collect_tags(document),
    )


def invoice_sequence(number: object, prefix: str) -> int | None:
    """Counter of a ``<prefix>NNN`` invoice number, ``None`` when the prefix does not match.

    A suffix without leading digits counts as zero.
    """

    if not isinstance(number, str) or not number.startswith(prefix):
        return None
    digits = _LEADING_DIGITS.match(number.removeprefix(prefix))
    return int(digits.group()) if digits else 0


def latest_invoice_number(numbers: Iterable[object], prefix: str) -> str | None:
    """Pick the number with the highest counter, compared numerically so padding is irrelevant."""

    candidates = [
        (sequence, number)
        for number in numbers
        if isinstance(number, str) and (sequence := invoice_sequence(number, prefix)) is not None
    ]
    return max(candidates)[1] if candidates else None


def _tag_text(value: object) -> str | None:
    if isinstance(value, str):
        return value
    if isinstance(value, bool):
        return None
    if isinstance(value, int | float):
        return str(value)
    if isinstance(value, Mapping):
        for key in _TAG_OBJECT_FIELDS:
            candidate = value.get(key)
            if isinstance(candidate, str) and candidate.strip():
                return candidate
    return None
