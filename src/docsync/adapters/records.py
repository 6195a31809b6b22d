"""Document lifecycle helpers shared by the local store adapters."""

from __future__ import annotations

import copy
import uuid
from typing import TYPE_CHECKING, Any

from docsync.domain.errors import DocumentValidationError
from docsync.domain.model import (
    CREATED_AT_FIELD,
    ID_FIELD,
    REV_FIELD,
    TYPE_FIELD,
    UPDATED_AT_FIELD,
    format_timestamp,
)

if TYPE_CHECKING:
    from collections.abc import Mapping
    from datetime import datetime

    from docsync.domain.model import Document


def new_revision() -> str:
    return uuid.uuid4().hex


def require_identity(document: Mapping[str, Any]) -> tuple[str, str]:
    """Return ``(id, type)`` or raise ``DocumentValidationError``."""

    document_id = document.get(ID_FIELD)
    document_type = document.get(TYPE_FIELD)
    if not isinstance(document_id, str) or not document_id:
        raise DocumentValidationError("Document is missing an _id")
    if not isinstance(document_type, str) or not document_type:
        raise DocumentValidationError(f"Document {document_id} is missing a _type")
    return document_id, document_type


def stamp(
    document: Mapping[str, Any],
    *,
    revision: str,
    created_at: datetime,
    updated_at: datetime,
) -> Document:
    """Deep-copy ``document`` and set the store-managed system fields."""

    stamped = copy.deepcopy(dict(document))
    stamped[REV_FIELD] = revision
    stamped[CREATED_AT_FIELD] = format_timestamp(created_at)
    stamped[UPDATED_AT_FIELD] = format_timestamp(updated_at)
    return stamped


def apply_set(document: Mapping[str, Any], fields: Mapping[str, Any]) -> Document:
    """Merge top-level ``fields`` into a copy of ``document``; identity is immutable."""

    merged = copy.deepcopy(dict(document))
    for name, value in fields.items():
        if name in (ID_FIELD, TYPE_FIELD):
            raise DocumentValidationError(f"Cannot patch identity field {name}")
        merged[name] = copy.deepcopy(value)
    return merged
