"""Synchronization defaults for the document mapping engine."""

from __future__ import annotations

import re
from dataclasses import dataclass

from .env import int_env_var, optional_env_var

DEFAULT_INVOICE_PREFIX = "INV"
DEFAULT_REVERSE_CONCURRENCY = 4
DEFAULT_REFERENCE_MAX_DEPTH = 64

_PREFIX_STRIP = re.compile(r"[^A-Za-z0-9]")


def sanitize_invoice_prefix(value: str | None) -> str:
    """Reduce ``value`` to upper-case alphanumerics, falling back to ``INV``."""

    cleaned = _PREFIX_STRIP.sub("", value or "").upper()
    return cleaned or DEFAULT_INVOICE_PREFIX


@dataclass(frozen=True, slots=True)
class SyncConfig:
    invoice_prefix: str = DEFAULT_INVOICE_PREFIX
    reverse_concurrency: int = DEFAULT_REVERSE_CONCURRENCY
    reference_max_depth: int = DEFAULT_REFERENCE_MAX_DEPTH


def get_sync_config() -> SyncConfig:
    return SyncConfig(
        invoice_prefix=sanitize_invoice_prefix(
            optional_env_var("DOCSYNC_INVOICE_PREFIX", "INVOICE_PREFIX")
        ),
        reverse_concurrency=int_env_var(
            "DOCSYNC_REVERSE_CONCURRENCY", DEFAULT_REVERSE_CONCURRENCY, minimum=1
        ),
        reference_max_depth=int_env_var(
            "DOCSYNC_REFERENCE_MAX_DEPTH", DEFAULT_REFERENCE_MAX_DEPTH, minimum=1
        ),
    )
