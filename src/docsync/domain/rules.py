"""Per-source-type policies deciding which derived record a document maintains."""

from __future__ import annotations

import re
from collections.abc import Mapping
from dataclasses import dataclass
from logging import getLogger
from typing import TYPE_CHECKING, Any, Final, Protocol

from .model import (
    ID_FIELD,
    SYNC_SOURCE,
    TYPE_FIELD,
    RelationshipAction,
    as_reference,
    format_timestamp,
)
from .normalization import draft_id, invoice_sequence, normalize_id
from .ports import StoreQuery
from .summary import clean_string
from .upsert import BackReference, DerivedPlan, MergePolicy, is_empty

if TYPE_CHECKING:
    from datetime import datetime

    from ..config.sync import SyncConfig
    from .model import Document
    from .normalization import NormalizedView
    from .ports import DocumentStore

log = getLogger(__name__)

INVOICE_TAGS: Final = frozenset({"requires-invoice", "needs-invoice"})
INVOICE_STATUSES: Final = frozenset({"paid", "fulfilled", "shipped", "completed", "complete"})
SHIPPING_TAGS: Final = frozenset({"requires-shipping", "ship-now"})
SHIPPING_STATUSES: Final = frozenset({"paid", "fulfilled", "ready-to-ship", "ready_to_ship"})

DEFAULT_SHIP_FROM: Final[Mapping[str, str]] = {
    "name": "Shipping Department",
    "address_line1": "123 Warehouse Rd",
    "city_locality": "Mooresville",
    "state_province": "NC",
    "postal_code": "28117",
    "country_code": "US",
}
DEFAULT_SHIP_TO: Final[Mapping[str, str]] = {
    "name": "Customer TBD",
    "address_line1": "123 Shipping Ln",
    "city_locality": "City",
    "state_province": "NC",
    "postal_code": "00000",
    "country_code": "US",
}
DEFAULT_WEIGHT: Final[Mapping[str, object]] = {"value": 1, "unit": "pound"}
DEFAULT_DIMENSIONS: Final[Mapping[str, int]] = {"length": 12, "width": 9, "height": 4}
DEFAULT_SERVICE: Final = "ups_ground"

_SAFE_NUMBER = re.compile(r"^[A-Za-z0-9-]+$")


@dataclass(frozen=True, slots=True)
class RuleContext:
    document: Mapping[str, Any]
    view: NormalizedView
    referenced_types: list[str]
    store: DocumentStore
    config: SyncConfig
    now: datetime

    @property
    def timestamp(self) -> str:
        return format_timestamp(self.now)


@dataclass(frozen=True, slots=True)
class RuleDecision:
    target_id: str
    skip_reason: str | None = None

    @classmethod
    def link(cls, target_id: str) -> RuleDecision:
        return cls(target_id)

    @classmethod
    def skip(cls, target_id: str, reason: str) -> RuleDecision:
        return cls(target_id, reason)


class RelationshipRule(Protocol):
    """Maintains one derived record for documents of ``source_type``."""

    @property
    def source_type(self) -> str: ...

    @property
    def target_type(self) -> str: ...

    @property
    def failure_reason(self) -> str: ...

    def decide(self, ctx: RuleContext) -> RuleDecision: ...

    def build_plan(
        self, ctx: RuleContext, target_id: str, existing: Mapping[str, Any] | None
    ) -> DerivedPlan: ...


class InvoiceForOrderRule:
    """Paid or explicitly tagged orders get exactly one invoice."""

    source_type = "order"
    target_type = "invoice"
    failure_reason = "Invoice upsert failed"

    def decide(self, ctx: RuleContext) -> RuleDecision:
        target_id = self.target_id(ctx)
        if ctx.view.tags & INVOICE_TAGS or ctx.view.status in INVOICE_STATUSES:
            return RuleDecision.link(target_id)
        log.info(
            "Order %s skipped invoice sync (status=%r, tags=%s)",
            ctx.view.base_id,
            ctx.view.status,
            ctx.view.sorted_tags,
        )
        return RuleDecision.skip(target_id, "Order not marked for invoicing")

    def target_id(self, ctx: RuleContext) -> str:
        existing_ref = _mapping(ctx.document.get("invoiceRef")).get("_ref")
        linked = normalize_id(existing_ref)
        if linked:
            return linked
        return f"invoice-{_order_number(ctx.document) or ctx.view.base_id}"

    def build_plan(
        self, ctx: RuleContext, target_id: str, existing: Mapping[str, Any] | None
    ) -> DerivedPlan:
        document = ctx.document
        base_id = ctx.view.base_id
        order_number = _order_number(document)
        invoice_number = resolve_invoice_number(
            ctx.store, ctx.config.invoice_prefix, existing, order_number
        )
        shipping = {
            "shipTo": _present(document.get("shipTo")),
            "weight": _present(document.get("weight")),
            "dimensions": _present(document.get("dimensions")),
            "amountShipping": _present(document.get("amountShipping")),
        }
        payload = _without_none(
            {
                ID_FIELD: target_id,
                TYPE_FIELD: self.target_type,
                "title": f"Invoice {order_number}" if order_number else f"Invoice for {base_id}",
                "invoiceNumber": invoice_number,
                "orderNumber": order_number or invoice_number,
                "orderRef": as_reference(base_id),
                "status": "paid" if ctx.view.status == "paid" else "pending",
                "customerRef": _present(document.get("customerRef"))
                or _present(document.get("customer")),
                **shipping,
                "metadata": {
                    "orderId": base_id,
                    "syncedAt": ctx.timestamp,
                    "source": SYNC_SOURCE,
                },
            }
        )
        return DerivedPlan(
            target_id=target_id,
            target_type=self.target_type,
            payload=payload,
            desired={
                "orderRef": as_reference(base_id),
                "invoiceNumber": invoice_number,
                "orderNumber": order_number,
                **shipping,
            },
            policies={
                "orderRef": MergePolicy.REFERENCE,
                "invoiceNumber": MergePolicy.FILL,
                "orderNumber": MergePolicy.FILL,
                "shipTo": MergePolicy.OVERRIDE,
                "weight": MergePolicy.OVERRIDE,
                "dimensions": MergePolicy.OVERRIDE,
                "amountShipping": MergePolicy.OVERRIDE,
            },
            reasons={
                RelationshipAction.CREATED: "Invoice created for fulfilled order",
                RelationshipAction.UPDATED: "Invoice synced with order",
                RelationshipAction.UNCHANGED: "Invoice synced with order",
            },
            back_references=(
                BackReference(base_id, "invoiceRef", target_id),
                BackReference(draft_id(base_id), "invoiceRef", target_id),
                BackReference(target_id, "orderRef", base_id),
            ),
        )


class ShippingLabelForInvoiceRule:
    """Invoices that are ready to ship, or already in flight, get a shipping label."""

    source_type = "invoice"
    target_type = "shippingLabel"
    failure_reason = "Shipping label upsert failed"

    def decide(self, ctx: RuleContext) -> RuleDecision:
        target_id = self.target_id(ctx)
        document = ctx.document
        if (
            ctx.view.tags & SHIPPING_TAGS
            or ctx.view.status in SHIPPING_STATUSES
            or not is_empty(document.get("shippingLabelUrl"))
            or not is_empty(document.get("trackingNumber"))
        ):
            return RuleDecision.link(target_id)
        log.info(
            "Invoice %s skipped shipping label sync (status=%r, tags=%s)",
            ctx.view.base_id,
            ctx.view.status,
            ctx.view.sorted_tags,
        )
        return RuleDecision.skip(target_id, "Invoice not ready for shipping")

    def target_id(self, ctx: RuleContext) -> str:
        invoice_number = clean_string(ctx.document.get("invoiceNumber"))
        return f"shippingLabel-{invoice_number or ctx.view.base_id}"

    def build_plan(
        self, ctx: RuleContext, target_id: str, existing: Mapping[str, Any] | None
    ) -> DerivedPlan:
        document = ctx.document
        prior: Mapping[str, Any] = existing or {}
        invoice_number = clean_string(document.get("invoiceNumber"))
        carrier = clean_string(document.get("shippingCarrier"))
        label_url = clean_string(document.get("shippingLabelUrl"))
        tracking_number = clean_string(document.get("trackingNumber"))

        # invoice value, then the label's current value, then the fixed default
        physical = {
            "ship_to": _first_present(
                document.get("shipTo"), prior.get("ship_to"), DEFAULT_SHIP_TO
            ),
            "ship_from": _first_present(
                document.get("ship_from"), prior.get("ship_from"), DEFAULT_SHIP_FROM
            ),
            "weight": _first_present(document.get("weight"), prior.get("weight"), DEFAULT_WEIGHT),
            "dimensions": _first_present(
                document.get("dimensions"), prior.get("dimensions"), DEFAULT_DIMENSIONS
            ),
        }
        name = f"Label {invoice_number}" if invoice_number else f"Label for {ctx.view.base_id}"
        payload = _without_none(
            {
                ID_FIELD: target_id,
                TYPE_FIELD: self.target_type,
                "name": name,
                **physical,
                "serviceSelection": carrier
                or _present(prior.get("serviceSelection"))
                or DEFAULT_SERVICE,
                "trackingNumber": tracking_number or _present(prior.get("trackingNumber")),
                "labelUrl": label_url or _present(prior.get("labelUrl")),
                "metadata": {
                    "invoiceId": ctx.view.base_id,
                    "syncedAt": ctx.timestamp,
                    "source": SYNC_SOURCE,
                },
            }
        )
        return DerivedPlan(
            target_id=target_id,
            target_type=self.target_type,
            payload=payload,
            desired={
                **physical,
                "serviceSelection": carrier,
                "labelUrl": label_url,
                "trackingNumber": tracking_number,
            },
            policies={
                "ship_to": MergePolicy.REPLACE,
                "ship_from": MergePolicy.REPLACE,
                "weight": MergePolicy.REPLACE,
                "dimensions": MergePolicy.REPLACE,
                "serviceSelection": MergePolicy.OVERRIDE,
                "labelUrl": MergePolicy.OVERRIDE,
                "trackingNumber": MergePolicy.OVERRIDE,
            },
            reasons={
                RelationshipAction.CREATED: "Shipping label scaffolded from invoice",
                RelationshipAction.UPDATED: "Shipping label synced with invoice",
                RelationshipAction.UNCHANGED: "Shipping label already linked",
            },
        )


class ProductMapRule:
    """Every product keeps a product mapping record in step with it."""

    source_type = "product"
    target_type = "productMap"
    failure_reason = "Product mapping upsert failed"

    def decide(self, ctx: RuleContext) -> RuleDecision:
        return RuleDecision.link(self.target_id(ctx))

    def target_id(self, ctx: RuleContext) -> str:
        slug, sku = _product_keys(ctx.document)
        return f"map-product-{slug or sku or ctx.view.base_id}"

    def build_plan(
        self, ctx: RuleContext, target_id: str, existing: Mapping[str, Any] | None
    ) -> DerivedPlan:
        slug, sku = _product_keys(ctx.document)
        desired = {
            "product": as_reference(ctx.view.base_id),
            "productSku": sku,
            "productSlug": slug,
            "status": ctx.view.status,
            "tags": ctx.view.sorted_tags,
            "referencedTypes": list(ctx.referenced_types),
        }
        stamp = {"syncedAt": ctx.timestamp}
        return DerivedPlan(
            target_id=target_id,
            target_type=self.target_type,
            payload=_without_none(
                {ID_FIELD: target_id, TYPE_FIELD: self.target_type, **desired, **stamp}
            ),
            desired=desired,
            policies={
                "product": MergePolicy.REFERENCE,
                "productSku": MergePolicy.REPLACE,
                "productSlug": MergePolicy.REPLACE,
                "status": MergePolicy.REPLACE,
                "tags": MergePolicy.REPLACE,
                "referencedTypes": MergePolicy.REPLACE,
            },
            reasons={
                RelationshipAction.CREATED: "Product mapping initialized",
                RelationshipAction.UPDATED: "Product mapping refreshed",
                RelationshipAction.UNCHANGED: "Product mapping already current",
            },
            stamp=stamp,
        )


def default_rules() -> dict[str, RelationshipRule]:
    rules: tuple[RelationshipRule, ...] = (
        InvoiceForOrderRule(),
        ShippingLabelForInvoiceRule(),
        ProductMapRule(),
    )
    return {rule.source_type: rule for rule in rules}


DEFAULT_RULES: Final[Mapping[str, RelationshipRule]] = default_rules()


def resolve_invoice_number(
    store: DocumentStore,
    prefix: str,
    existing: Mapping[str, Any] | None,
    order_number: str | None,
) -> str:
    """Existing invoice number, else a safe order number, else the next generated one."""

    current = clean_string(existing.get("invoiceNumber")) if existing else None
    if current:
        return current
    if order_number and _SAFE_NUMBER.match(order_number):
        return order_number
    return generate_invoice_number(store, prefix)


def generate_invoice_number(store: DocumentStore, prefix: str) -> str:
    """Increment the highest stored ``<prefix>-NNNNNN`` invoice number.

    Store errors propagate; the caller records them against the relationship.
    """

    head = f"{prefix}-"
    latest = store.fetch_one(StoreQuery.LATEST_INVOICE_NUMBER, {"prefix": head})
    counter = invoice_sequence(latest.get("invoiceNumber") if latest else None, head)
    return f"{head}{(counter or 0) + 1:06d}"


def _order_number(document: Mapping[str, Any]) -> str | None:
    return clean_string(document.get("orderNumber"))


def _product_keys(document: Mapping[str, Any]) -> tuple[str | None, str | None]:
    slug = clean_string(_mapping(document.get("slug")).get("current"))
    return slug, clean_string(document.get("sku"))


def _mapping(value: object) -> Mapping[str, Any]:
    return value if isinstance(value, Mapping) else {}


def _present(value: Any) -> Any:
    return None if is_empty(value) else value


def _first_present(*candidates: Any) -> Any:
    for candidate in candidates:
        if not is_empty(candidate):
            return dict(candidate) if isinstance(candidate, Mapping) else candidate
    return None


def _without_none(payload: Mapping[str, Any]) -> Document:
    return {key: value for key, value in payload.items() if value is not None}
