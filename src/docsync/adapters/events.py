"""Pydantic schema for incoming change-event payloads."""

from __future__ import annotations

import json
import logging
from collections.abc import Mapping
from datetime import datetime
from typing import Any, ClassVar

from pydantic import AliasChoices, BaseModel, ConfigDict, Field

from docsync.domain.model import ID_FIELD, TYPE_FIELD, ChangeEvent

log = logging.getLogger(__name__)


class ChangeEventPayload(BaseModel):
    """Envelope around a created or updated document.

    Accepts the envelope's canonical names (``currentSnapshot`` and friends) and
    the aliases emitted by document-function runtimes (``document``, ``before``).
    """

    model_config = ConfigDict(extra="allow", populate_by_name=True)
    _logged_extra_keys: ClassVar[set[str]] = set()

    document_id: str | None = Field(default=None, validation_alias=AliasChoices("id", "documentId"))
    document_type: str | None = Field(
        default=None, validation_alias=AliasChoices("type", "documentType")
    )
    operation: str | None = None
    previous: dict[str, Any] | None = Field(
        default=None,
        validation_alias=AliasChoices("previousSnapshot", "previousDocument", "before"),
    )
    current: dict[str, Any] | None = Field(
        default=None,
        validation_alias=AliasChoices("currentSnapshot", "document", "after"),
    )
    timestamp: datetime | None = None

    def model_post_init(self, _context: object, /) -> None:
        extras = self.__pydantic_extra__
        if not extras:
            return
        new_keys = set(extras).difference(self._logged_extra_keys)
        if not new_keys:
            return
        self._logged_extra_keys.update(new_keys)
        log.warning("Change event: unmodeled keys: %s", ", ".join(sorted(new_keys)))

    def to_domain(self) -> ChangeEvent:
        current = self.current
        return ChangeEvent(
            current=current,
            document_id=self.document_id or _identity(current, ID_FIELD),
            document_type=self.document_type or _identity(current, TYPE_FIELD),
            operation=self.operation,
            previous=self.previous,
            timestamp=self.timestamp,
        )


def parse_change_event(raw: str | bytes | Mapping[str, Any]) -> ChangeEvent:
    """Validate ``raw`` and translate it into a domain ``ChangeEvent``.

    A bare document (one carrying ``_id`` at the top level) is treated as the
    current snapshot of an update. Raises ``ValueError`` on malformed input.
    """

    data = json.loads(raw) if isinstance(raw, str | bytes) else raw
    if not isinstance(data, Mapping):
        raise ValueError("Change event payload must be a JSON object")
    if ID_FIELD in data:
        return ChangeEvent(
            current=dict(data),
            document_id=_identity(data, ID_FIELD),
            document_type=_identity(data, TYPE_FIELD),
            operation="update",
        )
    return ChangeEventPayload.model_validate(data).to_domain()


def _identity(document: Mapping[str, Any] | None, field_name: str) -> str | None:
    if document is None:
        return None
    value = document.get(field_name)
    return value if isinstance(value, str) and value else None
