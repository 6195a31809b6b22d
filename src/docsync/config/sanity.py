"""Sanity content store configuration values."""

from __future__ import annotations

from dataclasses import dataclass

from .env import optional_env_var, require_env_vars
from .http_resilience import RateLimit, ResilienceConfig, RetryPolicy

DEFAULT_SANITY_API_VERSION = "2024-10-01"
SANITY_TIMEOUT_SECONDS = 15.0


@dataclass(frozen=True, slots=True)
class SanityConfig:
    project_id: str
    dataset: str
    token: str
    api_version: str
    resilience: ResilienceConfig


def sanity_base_url(project_id: str, api_version: str) -> str:
    return f"https://{project_id}.api.sanity.io/v{api_version.removeprefix('v')}/"


def get_sanity_config(*, resilience: ResilienceConfig | None = None) -> SanityConfig:
    values = require_env_vars(("SANITY_PROJECT_ID", "SANITY_DATASET", "SANITY_API_TOKEN"))
    project_id = values["SANITY_PROJECT_ID"]
    dataset = values["SANITY_DATASET"]
    token = values["SANITY_API_TOKEN"]
    api_version = optional_env_var("SANITY_API_VERSION") or DEFAULT_SANITY_API_VERSION

    return SanityConfig(
        project_id=project_id,
        dataset=dataset,
        token=token,
        api_version=api_version,
        resilience=resilience
        or ResilienceConfig(
            name="sanity",
            base_url=sanity_base_url(project_id, api_version),
            timeout_seconds=SANITY_TIMEOUT_SECONDS,
            retry=RetryPolicy(total=3),
            ratelimit=RateLimit(max_calls=25, per_seconds=1.0),
            default_headers={"Authorization": f"Bearer {token}"},
        ),
    )
