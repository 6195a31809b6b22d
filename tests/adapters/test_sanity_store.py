from __future__ import annotations

import asyncio
import json
from collections.abc import Callable  # noqa: TC003
from typing import TYPE_CHECKING

import httpx
import pytest

from docsync.adapters.http_resilience import ResilientClient
from docsync.adapters.sanity import GROQ_QUERIES, SanityClient, SanityDocumentStore
from docsync.config.http_resilience import RateLimit, ResilienceConfig, RetryPolicy
from docsync.config.sanity import SanityConfig, get_sanity_config, sanity_base_url
from docsync.domain.errors import (
    DocumentConflictError,
    DocumentNotFoundError,
    DocumentValidationError,
    StoreUnavailableError,
    UnsupportedQueryError,
)
from docsync.domain.ports import StoreQuery

if TYPE_CHECKING:
    from aiolimiter import AsyncLimiter

BASE_URL = "https://proj.api.sanity.io/v2024-10-01/"

type Handler = Callable[[httpx.Request], httpx.Response]


def _config(
    retry: RetryPolicy | None = None, ratelimit: RateLimit | None = None
) -> SanityConfig:
    return SanityConfig(
        project_id="proj",
        dataset="production",
        token="secret",
        api_version="2024-10-01",
        resilience=ResilienceConfig(
            name="sanity-test",
            base_url=BASE_URL,
            retry=retry or RetryPolicy(total=0),
            ratelimit=ratelimit,
            default_headers={"Authorization": "Bearer secret"},
        ),
    )


def _make_store(handler: Handler, retry: RetryPolicy | None = None) -> SanityDocumentStore:
    def factory(resilience: ResilienceConfig, limiter: AsyncLimiter | None) -> ResilientClient:
        return ResilientClient(
            resilience, limiter=limiter, transport=httpx.MockTransport(handler)
        )

    return SanityDocumentStore(client=SanityClient(config=_config(retry), client_factory=factory))


def _mutation_response(document: dict[str, object]) -> httpx.Response:
    return httpx.Response(
        200,
        json={
            "transactionId": "tx-1",
            "results": [{"id": document["_id"], "operation": "update", "document": document}],
        },
    )


def test_fetch_one_sends_groq_with_json_params() -> None:
    seen: list[httpx.Request] = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(request)
        return httpx.Response(200, json={"result": {"_id": "order-1", "_type": "order"}})

    store = _make_store(handler)

    document = store.fetch_one(StoreQuery.DOCUMENT_BY_ID, {"id": "order-1"})

    assert document == {"_id": "order-1", "_type": "order"}
    request = seen[0]
    assert request.method == "GET"
    assert request.url.path == "/v2024-10-01/data/query/production"
    assert request.url.params["query"] == GROQ_QUERIES[StoreQuery.DOCUMENT_BY_ID]
    assert request.url.params["$id"] == '"order-1"'
    assert request.headers["Authorization"] == "Bearer secret"


def test_fetch_one_returns_none_for_null_result() -> None:
    store = _make_store(lambda _: httpx.Response(200, json={"result": None, "ms": 2}))

    assert store.fetch_one(StoreQuery.LATEST_INVOICE_NUMBER, {"prefix": "INV-"}) is None


def test_fetch_many_keeps_only_objects() -> None:
    payload = {"result": [{"_id": "customer-1", "_type": "customer"}, None, "junk"]}
    store = _make_store(lambda _: httpx.Response(200, json=payload))

    rows = store.fetch_many(StoreQuery.TYPES_BY_IDS, {"ids": ["customer-1"]})

    assert rows == [{"_id": "customer-1", "_type": "customer"}]


def test_unsupported_queries_are_rejected_before_any_request() -> None:
    def handler(_: httpx.Request) -> httpx.Response:
        pytest.fail("no request expected")

    store = _make_store(handler)

    with pytest.raises(UnsupportedQueryError):
        store.fetch_many(StoreQuery.DOCUMENT_BY_ID, {"id": "x"})
    with pytest.raises(UnsupportedQueryError):
        store.fetch_one(StoreQuery.TYPES_BY_IDS, {"ids": []})


def test_patch_sends_revision_guard() -> None:
    bodies: list[dict[str, object]] = []

    def handler(request: httpx.Request) -> httpx.Response:
        bodies.append(json.loads(request.content))
        assert request.method == "POST"
        assert request.url.path == "/v2024-10-01/data/mutate/production"
        assert request.url.params["returnDocuments"] == "true"
        return _mutation_response({"_id": "invoice-1", "_type": "invoice", "status": "paid"})

    store = _make_store(handler)

    result = store.patch("invoice-1").set({"status": "paid"}).if_revision("rev-1").commit()

    assert result["status"] == "paid"
    assert bodies == [
        {
            "mutations": [
                {"patch": {"id": "invoice-1", "set": {"status": "paid"}, "ifRevisionID": "rev-1"}}
            ]
        }
    ]


def test_create_and_replace_use_their_mutation_kinds() -> None:
    kinds: list[str] = []

    def handler(request: httpx.Request) -> httpx.Response:
        mutation = json.loads(request.content)["mutations"][0]
        kinds.extend(mutation)
        return httpx.Response(200, json={"transactionId": "tx-1", "results": []})

    store = _make_store(handler)
    document = {"_id": "map-order-1", "_type": "map-order"}

    assert store.create(dict(document)) == document
    assert store.create_or_replace(dict(document)) == document
    assert kinds == ["create", "createOrReplace"]


@pytest.mark.parametrize(
    ("status", "error_type"),
    [
        (409, DocumentConflictError),
        (404, DocumentNotFoundError),
        (400, DocumentValidationError),
        (503, StoreUnavailableError),
    ],
)
def test_api_errors_map_to_store_errors(status: int, error_type: type[Exception]) -> None:
    body = {"error": {"description": "Document has been modified", "type": "mutationError"}}
    store = _make_store(lambda _: httpx.Response(status, json=body))

    with pytest.raises(error_type):
        store.create({"_id": "invoice-1", "_type": "invoice"})


def test_flat_error_message_is_used() -> None:
    store = _make_store(
        lambda _: httpx.Response(409, json={"message": "Revision mismatch", "statusCode": 409})
    )

    with pytest.raises(DocumentConflictError, match="Revision mismatch"):
        store.patch("invoice-1").set({"status": "paid"}).if_revision("rev-0").commit()


def test_network_failure_is_store_unavailable() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("connection refused", request=request)

    store = _make_store(handler)

    with pytest.raises(StoreUnavailableError):
        store.create_or_replace({"_id": "map-order-1", "_type": "map-order"})


def test_queries_are_retried_on_transient_errors() -> None:
    calls = 0

    def handler(_: httpx.Request) -> httpx.Response:
        nonlocal calls
        calls += 1
        if calls == 1:
            return httpx.Response(503, json={"message": "busy"})
        return httpx.Response(200, json={"result": {"_id": "order-1", "_type": "order"}})

    store = _make_store(handler, RetryPolicy(total=2, backoff_factor=0, backoff_jitter=0))

    assert store.fetch_one(StoreQuery.DOCUMENT_BY_ID, {"id": "order-1"}) is not None
    assert calls == 2


def test_unexpected_payload_is_store_unavailable() -> None:
    store = _make_store(lambda _: httpx.Response(200, json={"results": "nope"}))

    with pytest.raises(StoreUnavailableError):
        store.create({"_id": "invoice-1", "_type": "invoice"})


def test_sanity_config_from_environment(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("SANITY_PROJECT_ID", "abc123")
    monkeypatch.setenv("SANITY_DATASET", "staging")
    monkeypatch.setenv("SANITY_API_TOKEN", "tok")
    monkeypatch.setenv("SANITY_API_VERSION", "v2025-02-19")

    config = get_sanity_config()

    assert config.dataset == "staging"
    assert config.resilience.base_url == "https://abc123.api.sanity.io/v2025-02-19/"
    assert config.resilience.default_headers == {"Authorization": "Bearer tok"}
    assert sanity_base_url("abc123", "2021-06-07") == "https://abc123.api.sanity.io/v2021-06-07/"


def test_requests_share_one_rate_limiter() -> None:
    limiters: list[AsyncLimiter | None] = []
    transport = httpx.MockTransport(lambda _: httpx.Response(200, json={"result": None}))

    def factory(resilience: ResilienceConfig, limiter: AsyncLimiter | None) -> ResilientClient:
        client = ResilientClient(resilience, limiter=limiter, transport=transport)
        limiters.append(client.limiter)
        return client

    client = SanityClient(
        config=_config(ratelimit=RateLimit(max_calls=25, per_seconds=1.0)),
        client_factory=factory,
    )

    assert client.query("*[_id == $id][0]", {"id": "order-1"}) is None
    assert client.query("*[_id == $id][0]", {"id": "order-2"}) is None
    assert len(limiters) == 2
    assert limiters[0] is not None
    assert limiters[0] is limiters[1] is client.limiter
    client.close()


def test_store_calls_work_inside_running_event_loop() -> None:
    store = _make_store(
        lambda _: httpx.Response(200, json={"result": {"_id": "order-1", "_type": "order"}})
    )

    async def webhook() -> object:
        return store.fetch_one(StoreQuery.DOCUMENT_BY_ID, {"id": "order-1"})

    assert asyncio.run(webhook()) == {"_id": "order-1", "_type": "order"}


def test_latest_invoice_number_picks_highest_counter() -> None:
    seen: list[httpx.Request] = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(request)
        return httpx.Response(200, json={"result": ["INV-99", "INV-000100", None, "INV-7"]})

    store = _make_store(handler)

    latest = store.fetch_one(StoreQuery.LATEST_INVOICE_NUMBER, {"prefix": "INV-"})

    assert latest == {"invoiceNumber": "INV-000100"}
    assert seen[0].url.params["$prefix"] == '"INV-"'
