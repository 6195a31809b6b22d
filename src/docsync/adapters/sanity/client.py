"""HTTP client for the Sanity query and mutation endpoints."""

from __future__ import annotations

import asyncio
import json
import threading
import weakref
from contextlib import suppress
from dataclasses import dataclass, field
from logging import getLogger
from typing import TYPE_CHECKING, Any

import httpx
from pydantic import ValidationError

from docsync.adapters.http_resilience import ResilientClient, build_limiter
from docsync.config.sanity import get_sanity_config
from docsync.domain.errors import (
    DocumentConflictError,
    DocumentNotFoundError,
    DocumentValidationError,
    StoreError,
    StoreUnavailableError,
)

from .schema import ErrorResponse, MutationResponse, QueryResponse

if TYPE_CHECKING:
    from collections.abc import Callable, Coroutine, Mapping

    from aiolimiter import AsyncLimiter

    from docsync.config.http_resilience import ResilienceConfig
    from docsync.config.sanity import SanityConfig

log = getLogger(__name__)

type ClientFactory = Callable[[ResilienceConfig, AsyncLimiter | None], ResilientClient]


def _default_client_factory(
    config: ResilienceConfig, limiter: AsyncLimiter | None
) -> ResilientClient:
    return ResilientClient(config, limiter=limiter)


def _run_loop(loop: asyncio.AbstractEventLoop) -> None:
    asyncio.set_event_loop(loop)
    try:
        loop.run_forever()
    finally:
        loop.close()


def _stop_loop(loop: asyncio.AbstractEventLoop) -> None:
    # the loop may close between the check and the call
    with suppress(RuntimeError):
        if not loop.is_closed():
            loop.call_soon_threadsafe(loop.stop)


@dataclass(slots=True, weakref_slot=True)
class SanityClient:
    """Synchronous facade over the async Sanity HTTP API.

    Calls from any thread run on one private event loop, so they draw from a
    single rate limiter and also work when the caller is inside a running
    loop. Each request opens its own resilient client.
    """

    config: SanityConfig = field(default_factory=get_sanity_config)
    client_factory: ClientFactory = field(default=_default_client_factory)
    limiter: AsyncLimiter | None = field(init=False, repr=False, default=None)
    _loop: asyncio.AbstractEventLoop | None = field(init=False, repr=False, default=None)
    _lock: threading.Lock = field(init=False, repr=False, default_factory=threading.Lock)

    def __post_init__(self) -> None:
        self.limiter = build_limiter(self.config.resilience.ratelimit)

    def query(self, groq: str, params: Mapping[str, object] | None = None) -> Any:
        return self._run(self._query(groq, params or {}))

    def mutate(self, mutations: list[dict[str, Any]]) -> MutationResponse:
        return self._run(self._mutate(mutations))

    def close(self) -> None:
        with self._lock:
            loop, self._loop = self._loop, None
        if loop is not None:
            _stop_loop(loop)

    def _run[TResult](self, coro: Coroutine[Any, Any, TResult]) -> TResult:
        return asyncio.run_coroutine_threadsafe(coro, self._event_loop()).result()

    def _event_loop(self) -> asyncio.AbstractEventLoop:
        with self._lock:
            if self._loop is None:
                loop = asyncio.new_event_loop()
                threading.Thread(
                    target=_run_loop,
                    args=(loop,),
                    name=f"{self.config.resilience.name}-io",
                    daemon=True,
                ).start()
                weakref.finalize(self, _stop_loop, loop)
                self._loop = loop
            return self._loop

    async def _query(self, groq: str, params: Mapping[str, object]) -> Any:
        query_params = {"query": groq}
        # GROQ parameters travel as JSON-encoded ``$name`` query arguments
        query_params.update({f"${name}": json.dumps(value) for name, value in params.items()})
        payload = await self._request(
            "GET", f"data/query/{self.config.dataset}", params=query_params
        )
        try:
            return QueryResponse.model_validate(payload).result
        except ValidationError as exc:
            raise StoreUnavailableError("Unexpected Sanity query response payload") from exc

    async def _mutate(self, mutations: list[dict[str, Any]]) -> MutationResponse:
        payload = await self._request(
            "POST",
            f"data/mutate/{self.config.dataset}",
            params={"returnDocuments": "true", "visibility": "sync"},
            json={"mutations": mutations},
        )
        try:
            return MutationResponse.model_validate(payload)
        except ValidationError as exc:
            raise StoreUnavailableError("Unexpected Sanity mutation response payload") from exc

    async def _request(self, method: str, url: str, **kwargs: Any) -> object:
        try:
            async with self.client_factory(self.config.resilience, self.limiter) as client:
                response = await client.request(method, url, **kwargs)
        except httpx.HTTPError as exc:
            log.warning("Sanity %s %s failed: %s", method, url, exc)
            raise StoreUnavailableError(f"Sanity request failed: {exc}") from exc

        if response.is_error:
            raise _error_for(response)
        try:
            return response.json()
        except json.JSONDecodeError as exc:
            raise StoreUnavailableError("Sanity returned a non-JSON response") from exc


def _error_for(response: httpx.Response) -> StoreError:
    try:
        description = ErrorResponse.model_validate(response.json()).description
    except (json.JSONDecodeError, ValidationError):
        description = response.text or response.reason_phrase
    log.error("Sanity API error %s: %s", response.status_code, description)

    status = response.status_code
    if status == httpx.codes.CONFLICT:
        return DocumentConflictError(description)
    if status == httpx.codes.NOT_FOUND:
        return DocumentNotFoundError(description)
    if status in {httpx.codes.BAD_REQUEST, httpx.codes.UNPROCESSABLE_ENTITY}:
        return DocumentValidationError(description)
    return StoreUnavailableError(f"Sanity API error {status}: {description}")
