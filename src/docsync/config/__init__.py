"""Application configuration helpers."""

from __future__ import annotations

from docsync.common.logging import configure_logging

from .env import optional_env_var, require_env_var, require_env_vars
from .errors import ConfigurationError, MissingConfigurationError
from .http_resilience import RateLimit, ResilienceConfig, RetryPolicy
from .sanity import SanityConfig, get_sanity_config
from .storage import (
    DatabaseConfig,
    StorageConfig,
    StoreBackend,
    get_database_config,
    get_storage_config,
    get_store_backend,
)
from .sync import SyncConfig, get_sync_config, sanitize_invoice_prefix

__all__ = [
    "ConfigurationError",
    "DatabaseConfig",
    "MissingConfigurationError",
    "RateLimit",
    "ResilienceConfig",
    "RetryPolicy",
    "SanityConfig",
    "StorageConfig",
    "StoreBackend",
    "SyncConfig",
    "configure_logging",
    "get_database_config",
    "get_sanity_config",
    "get_storage_config",
    "get_store_backend",
    "get_sync_config",
    "optional_env_var",
    "require_env_var",
    "require_env_vars",
    "sanitize_invoice_prefix",
]
