from __future__ import annotations

from typing import TYPE_CHECKING, Any

import pytest

from docsync.config import SyncConfig
from docsync.domain.model import as_reference
from docsync.domain.normalization import normalize_document
from docsync.domain.rules import (
    DEFAULT_RULES,
    DEFAULT_SERVICE,
    DEFAULT_SHIP_FROM,
    DEFAULT_SHIP_TO,
    DEFAULT_WEIGHT,
    InvoiceForOrderRule,
    ProductMapRule,
    RuleContext,
    ShippingLabelForInvoiceRule,
    resolve_invoice_number,
)
from docsync.domain.upsert import BackReference, compute_patch
from tests.helpers.documents import make_invoice, make_order, make_product

if TYPE_CHECKING:
    from collections.abc import Mapping

    from docsync.adapters.memory import InMemoryDocumentStore
    from tests.conftest import FixedClock


def _context(
    store: InMemoryDocumentStore,
    clock: FixedClock,
    document: Mapping[str, Any],
    referenced_types: list[str] | None = None,
) -> RuleContext:
    view = normalize_document(document)
    assert view is not None
    return RuleContext(
        document=document,
        view=view,
        referenced_types=referenced_types or [],
        store=store,
        config=SyncConfig(invoice_prefix="INV"),
        now=clock.now(),
    )


def test_default_rules_cover_each_source_type() -> None:
    assert {name: rule.target_type for name, rule in DEFAULT_RULES.items()} == {
        "order": "invoice",
        "invoice": "shippingLabel",
        "product": "productMap",
    }


def test_pending_order_is_not_invoiced(
    memory_store: InMemoryDocumentStore, clock: FixedClock
) -> None:
    decision = InvoiceForOrderRule().decide(
        _context(memory_store, clock, make_order(status="pending"))
    )

    assert decision.target_id == "invoice-A100"
    assert decision.skip_reason == "Order not marked for invoicing"


@pytest.mark.parametrize(
    ("status", "tags"),
    [
        ("paid", None),
        ("Fulfilled", None),
        ("pending", [{"value": "Needs-Invoice"}]),
        ("pending", "rush, requires-invoice"),
    ],
)
def test_paid_or_tagged_orders_are_invoiced(
    memory_store: InMemoryDocumentStore, clock: FixedClock, status: str, tags: Any
) -> None:
    order = make_order(status=status, tags=tags)

    decision = InvoiceForOrderRule().decide(_context(memory_store, clock, order))

    assert decision.skip_reason is None
    assert decision.target_id == "invoice-A100"


def test_existing_invoice_reference_wins_over_order_number(
    memory_store: InMemoryDocumentStore, clock: FixedClock
) -> None:
    order = make_order(invoiceRef=as_reference("drafts.invoice-legacy"))

    decision = InvoiceForOrderRule().decide(_context(memory_store, clock, order))

    assert decision.target_id == "invoice-legacy"


def test_order_without_number_falls_back_to_base_id(
    memory_store: InMemoryDocumentStore, clock: FixedClock
) -> None:
    order = make_order("drafts.order-7", order_number=None)

    decision = InvoiceForOrderRule().decide(_context(memory_store, clock, order))

    assert decision.target_id == "invoice-order-7"


def test_unsafe_order_number_generates_next_invoice_number(
    memory_store: InMemoryDocumentStore,
) -> None:
    for counter in range(1, 5):
        memory_store.seed(
            make_invoice(f"invoice-{counter}", invoice_number=f"INV-{counter:06d}")
        )
    memory_store.seed(make_invoice("invoice-other", invoice_number="OTHER-000099"))

    assert resolve_invoice_number(memory_store, "INV", None, "A 100") == "INV-000005"


def test_invoice_numbering_starts_at_one(memory_store: InMemoryDocumentStore) -> None:
    assert resolve_invoice_number(memory_store, "INV", None, None) == "INV-000001"


def test_invoice_numbering_follows_highest_counter_not_string_order(
    memory_store: InMemoryDocumentStore,
) -> None:
    memory_store.seed(make_invoice("invoice-1", invoice_number="INV-99"))
    memory_store.seed(make_invoice("invoice-2", invoice_number="INV-000100"))

    assert resolve_invoice_number(memory_store, "INV", None, None) == "INV-000101"


def test_existing_invoice_number_is_kept(memory_store: InMemoryDocumentStore) -> None:
    existing = {"invoiceNumber": "INV-000042"}

    assert resolve_invoice_number(memory_store, "INV", existing, "A100") == "INV-000042"
    assert resolve_invoice_number(memory_store, "INV", None, "A-100") == "A-100"


def test_invoice_plan_links_both_directions(
    memory_store: InMemoryDocumentStore, clock: FixedClock
) -> None:
    order = make_order(
        "drafts.order-1",
        customerRef=as_reference("customer-1"),
        amountShipping=0,
    )

    plan = InvoiceForOrderRule().build_plan(
        _context(memory_store, clock, order), "invoice-A100", None
    )

    assert plan.payload["invoiceNumber"] == "A100"
    assert plan.payload["orderRef"] == as_reference("order-1")
    assert plan.payload["customerRef"] == as_reference("customer-1")
    assert plan.payload["amountShipping"] == 0
    assert plan.payload["status"] == "paid"
    assert plan.payload["metadata"] == {
        "orderId": "order-1",
        "syncedAt": "2025-03-01T12:00:00.000Z",
        "source": "docsync",
    }
    assert "shipTo" not in plan.payload
    assert plan.back_references == (
        BackReference("order-1", "invoiceRef", "invoice-A100"),
        BackReference("drafts.order-1", "invoiceRef", "invoice-A100"),
        BackReference("invoice-A100", "orderRef", "order-1"),
    )


def test_invoice_plan_keeps_existing_identity_fields(
    memory_store: InMemoryDocumentStore, clock: FixedClock
) -> None:
    order = make_order(order_number="A200", shipTo={"name": "Dana"})
    existing = {
        "invoiceNumber": "INV-000001",
        "orderNumber": "A100",
        "orderRef": as_reference("drafts.order-1"),
        "shipTo": {"name": "Old"},
    }

    plan = InvoiceForOrderRule().build_plan(
        _context(memory_store, clock, order), "invoice-A100", existing
    )

    assert compute_patch(plan.desired, existing, plan.policies) == {"shipTo": {"name": "Dana"}}


@pytest.mark.parametrize(
    ("status", "fields"),
    [
        ("paid", {}),
        ("draft", {"tags": ["ship-now"]}),
        ("draft", {"trackingNumber": "1Z999"}),
        ("draft", {"shippingLabelUrl": "https://labels.example/1.pdf"}),
    ],
)
def test_invoice_ready_for_shipping_gets_label(
    memory_store: InMemoryDocumentStore,
    clock: FixedClock,
    status: str,
    fields: dict[str, Any],
) -> None:
    invoice = make_invoice(status=status, **fields)

    decision = ShippingLabelForInvoiceRule().decide(_context(memory_store, clock, invoice))

    assert decision.skip_reason is None
    assert decision.target_id == "shippingLabel-A100"


def test_draft_invoice_without_tracking_is_skipped(
    memory_store: InMemoryDocumentStore, clock: FixedClock
) -> None:
    invoice = make_invoice(invoice_number=None, status="draft")

    decision = ShippingLabelForInvoiceRule().decide(_context(memory_store, clock, invoice))

    assert decision.target_id == "shippingLabel-invoice-A100"
    assert decision.skip_reason == "Invoice not ready for shipping"


def test_new_label_is_scaffolded_from_defaults(
    memory_store: InMemoryDocumentStore, clock: FixedClock
) -> None:
    plan = ShippingLabelForInvoiceRule().build_plan(
        _context(memory_store, clock, make_invoice()), "shippingLabel-A100", None
    )

    assert plan.payload["name"] == "Label A100"
    assert plan.payload["ship_to"] == DEFAULT_SHIP_TO
    assert plan.payload["ship_from"] == DEFAULT_SHIP_FROM
    assert plan.payload["weight"] == DEFAULT_WEIGHT
    assert plan.payload["serviceSelection"] == DEFAULT_SERVICE
    assert "trackingNumber" not in plan.payload
    assert "labelUrl" not in plan.payload


def test_label_update_never_clears_existing_values(
    memory_store: InMemoryDocumentStore, clock: FixedClock
) -> None:
    custom_ship_to = {"name": "Dana", "postal_code": "10001"}
    existing = {
        "ship_to": custom_ship_to,
        "ship_from": dict(DEFAULT_SHIP_FROM),
        "weight": {"value": 3, "unit": "pound"},
        "dimensions": {"length": 1, "width": 1, "height": 1},
        "serviceSelection": "fedex_ground",
        "trackingNumber": "1Z999",
    }

    plan = ShippingLabelForInvoiceRule().build_plan(
        _context(memory_store, clock, make_invoice(trackingNumber="")),
        "shippingLabel-A100",
        existing,
    )

    assert compute_patch(plan.desired, existing, plan.policies) == {}


def test_label_follows_invoice_changes(
    memory_store: InMemoryDocumentStore, clock: FixedClock
) -> None:
    existing = {"ship_to": {"name": "Old"}, "trackingNumber": "1Z999"}
    invoice = make_invoice(shipTo={"name": "Dana"}, trackingNumber="1Z000")

    plan = ShippingLabelForInvoiceRule().build_plan(
        _context(memory_store, clock, invoice), "shippingLabel-A100", existing
    )
    patch = compute_patch(plan.desired, existing, plan.policies)

    assert patch["ship_to"] == {"name": "Dana"}
    assert patch["trackingNumber"] == "1Z000"
    assert patch["ship_from"] == DEFAULT_SHIP_FROM


@pytest.mark.parametrize(
    ("slug", "sku", "expected"),
    [
        ("carbon-hood", "HOOD-1", "map-product-carbon-hood"),
        (None, "HOOD-1", "map-product-HOOD-1"),
        (None, None, "map-product-product-1"),
    ],
)
def test_product_map_identity(
    memory_store: InMemoryDocumentStore,
    clock: FixedClock,
    slug: str | None,
    sku: str | None,
    expected: str,
) -> None:
    product = make_product(slug=slug, sku=sku)

    decision = ProductMapRule().decide(_context(memory_store, clock, product))

    assert decision.target_id == expected
    assert decision.skip_reason is None


def test_product_map_plan_mirrors_product(
    memory_store: InMemoryDocumentStore, clock: FixedClock
) -> None:
    product = make_product(status="Active", tags=["Featured", "sale"])

    plan = ProductMapRule().build_plan(
        _context(memory_store, clock, product, ["category"]), "map-product-carbon-hood", None
    )

    assert plan.payload == {
        "_id": "map-product-carbon-hood",
        "_type": "productMap",
        "product": as_reference("product-1"),
        "productSku": "HOOD-1",
        "productSlug": "carbon-hood",
        "status": "active",
        "tags": ["featured", "sale"],
        "referencedTypes": ["category"],
        "syncedAt": "2025-03-01T12:00:00.000Z",
    }
