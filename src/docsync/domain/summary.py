"""Compact, cleaned per-type summaries stored on mapping records.

Summaries are size-capped: top-level collections keep their first 25 items,
nested string and metadata arrays their first 20. Everything is passed through
``clean`` so empty values never reach the store.
"""

from __future__ import annotations

import math
from collections.abc import Callable, Mapping
from typing import Any, Final

from .model import CREATED_AT_FIELD, REF_FIELD, TYPE_FIELD, UPDATED_AT_FIELD
from .normalization import collect_tags, normalize_status

type Summary = dict[str, Any]

TOP_LEVEL_LIMIT: Final = 25
NESTED_LIMIT: Final = 20


def clean(value: object) -> Any:
    """Recursively drop ``None``, blank strings, non-finite numbers and empty containers.

    Returns ``None`` when nothing survives.
    """

    if value is None:
        return None
    if isinstance(value, str):
        return value.strip() or None
    if isinstance(value, bool):
        return value
    if isinstance(value, int | float):
        return value if math.isfinite(value) else None
    if isinstance(value, Mapping):
        cleaned = {str(key): clean(child) for key, child in value.items()}
        pruned = {key: child for key, child in cleaned.items() if child is not None}
        return pruned or None
    if isinstance(value, list | tuple):
        items = [item for item in (clean(entry) for entry in value) if item is not None]
        return items or None
    return None


def clean_string(value: object) -> str | None:
    if value is None:
        return None
    if isinstance(value, str):
        return value.strip() or None
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, int):
        return str(value)
    if isinstance(value, float):
        if not math.isfinite(value):
            return None
        return str(int(value)) if value.is_integer() else str(value)
    return None


def clean_number(value: object) -> int | float | None:
    if isinstance(value, bool):
        return None
    if isinstance(value, int | float):
        return value if math.isfinite(value) else None
    if isinstance(value, str):
        text = value.strip()
        if not text:
            return None
        try:
            return int(text)
        except ValueError:
            pass
        try:
            parsed = float(text)
        except ValueError:
            return None
        return parsed if math.isfinite(parsed) else None
    return None


def coerce_string_list(value: object) -> list[str]:
    """Coerce lists, comma-separated strings and scalars into trimmed strings."""

    if value is None:
        return []
    if isinstance(value, list | tuple):
        coerced: list[str] = []
        for item in value:
            if isinstance(item, str):
                coerced.append(item.strip())
            elif isinstance(item, int | float) and not isinstance(item, bool):
                coerced.append(clean_string(item) or "")
        return [item for item in coerced if item]
    if isinstance(value, str):
        return [part.strip() for part in value.split(",") if part.strip()]
    if isinstance(value, int | float | bool):
        text = clean_string(value)
        return [text] if text else []
    return []


def clean_string_list(value: object, limit: int = 10) -> list[str] | None:
    unique = list(dict.fromkeys(coerce_string_list(value)))
    if not unique:
        return None
    return unique[:limit]


def limit_list[T](values: list[T] | None, limit: int = NESTED_LIMIT) -> list[T] | None:
    if not values:
        return None
    return values[:limit]


def build_summary(document: Mapping[str, Any]) -> Summary | None:
    """Return the cleaned summary for ``document`` based on its ``_type``."""

    builder = _BUILDERS.get(str(document.get(TYPE_FIELD)), _summarize_fallback)
    summary = clean(builder(document))
    return summary if isinstance(summary, dict) else None


def _base_meta(document: Mapping[str, Any]) -> Summary:
    return {
        "status": normalize_status(document) or None,
        "tags": sorted(collect_tags(document)),
        "updatedAt": document.get(UPDATED_AT_FIELD) or document.get(CREATED_AT_FIELD),
        "orderNumber": clean_string(document.get("orderNumber")),
        "invoiceNumber": clean_string(document.get("invoiceNumber")),
        "createdAt": clean_string(document.get("createdAt") or document.get(CREATED_AT_FIELD)),
    }


def _ref_of(*candidates: object) -> str | None:
    for candidate in candidates:
        if isinstance(candidate, Mapping):
            ref = clean_string(candidate.get(REF_FIELD))
            if ref:
                return ref
    return None


def _mapping(value: object) -> Mapping[str, Any]:
    return value if isinstance(value, Mapping) else {}


def _slug(document: Mapping[str, Any]) -> str | None:
    return clean_string(_mapping(document.get("slug")).get("current"))


def _summarize_order(document: Mapping[str, Any]) -> Summary:
    cart = document.get("cart")
    cart_items = (
        limit_list(
            [
                item
                for item in (
                    _sanitize_cart_item(entry) for entry in cart if isinstance(entry, Mapping)
                )
                if item is not None
            ],
            TOP_LEVEL_LIMIT,
        )
        if isinstance(cart, list)
        else None
    )
    return {
        **_base_meta(document),
        "customer": {
            "name": clean_string(document.get("customerName")),
            "email": clean_string(document.get("customerEmail")),
            "referenceId": _ref_of(document.get("customerRef"), document.get("customer")),
        },
        "totals": {
            "total": clean_number(document.get("totalAmount")),
            "subtotal": clean_number(document.get("amountSubtotal")),
            "tax": clean_number(document.get("amountTax")),
            "shipping": clean_number(document.get("amountShipping")),
            "currency": clean_string(document.get("currency")),
        },
        "payment": {
            "paymentStatus": clean_string(
                document.get("paymentStatus") or document.get("stripePaymentIntentStatus")
            ),
            "paymentIntentId": clean_string(document.get("paymentIntentId")),
            "stripeIntentStatus": clean_string(document.get("stripePaymentIntentStatus")),
            "cardBrand": clean_string(document.get("cardBrand")),
            "cardLast4": clean_string(document.get("cardLast4")),
            "receiptUrl": clean_string(document.get("receiptUrl")),
            "failureCode": clean_string(document.get("paymentFailureCode")),
            "failureMessage": clean_string(document.get("paymentFailureMessage")),
        },
        "stripe": {
            "source": clean_string(document.get("stripeSource")),
            "checkoutSessionId": clean_string(document.get("stripeSessionId")),
            "checkoutStatus": clean_string(
                document.get("stripeCheckoutStatus") or document.get("stripeSessionStatus")
            ),
            "checkoutMode": clean_string(document.get("stripeCheckoutMode")),
            "createdAt": clean_string(document.get("stripeCreatedAt")),
            "lastSyncedAt": clean_string(document.get("stripeLastSyncedAt")),
            "summary": document.get("stripeSummary"),
        },
        "shipping": {
            "address": document.get("shippingAddress"),
            "selectedRate": document.get("selectedService"),
            "selectedAmount": clean_number(document.get("selectedShippingAmount")),
            "selectedCurrency": clean_string(document.get("selectedShippingCurrency")),
            "deliveryDays": clean_number(document.get("shippingDeliveryDays")),
            "estimatedDeliveryDate": clean_string(document.get("shippingEstimatedDeliveryDate")),
            "serviceCode": clean_string(document.get("shippingServiceCode")),
            "serviceName": clean_string(document.get("shippingServiceName")),
            "metadata": document.get("shippingMetadata"),
        },
        "fulfillment": {
            "carrier": clean_string(document.get("shippingCarrier")),
            "weight": document.get("weight"),
            "dimensions": document.get("dimensions"),
            "shippingLabelUrl": clean_string(document.get("shippingLabelUrl")),
            "trackingNumber": clean_string(document.get("trackingNumber")),
            "trackingUrl": clean_string(document.get("trackingUrl")),
            "packingSlipUrl": clean_string(document.get("packingSlipUrl")),
        },
        "cart": cart_items,
        "events": _sanitize_order_events(document.get("orderEvents")),
        "shippingLog": _sanitize_shipping_log(document.get("shippingLog")),
    }


def _summarize_invoice(document: Mapping[str, Any]) -> Summary:
    return {
        **_base_meta(document),
        "orderRefId": _ref_of(document.get("orderRef")),
        "customerRefId": _ref_of(document.get("customerRef"), document.get("customer")),
        "status": clean_string(document.get("status") or document.get("paymentStatus")),
        "amounts": {
            "shipping": clean_number(document.get("amountShipping")),
            "currency": clean_string(document.get("currency")),
        },
        "shipping": {
            "shipTo": document.get("shipTo"),
            "weight": document.get("weight"),
            "dimensions": document.get("dimensions"),
            "carrier": clean_string(document.get("shippingCarrier")),
        },
        "fulfillment": {
            "shippingLabelUrl": clean_string(document.get("shippingLabelUrl")),
            "trackingNumber": clean_string(document.get("trackingNumber")),
            "trackingUrl": clean_string(document.get("trackingUrl")),
        },
        "stripe": {"summary": document.get("stripeSummary")},
    }


def _summarize_shipping_label(document: Mapping[str, Any]) -> Summary:
    metadata = _mapping(document.get("metadata"))
    return {
        **_base_meta(document),
        "shipFrom": document.get("ship_from"),
        "shipTo": document.get("shipTo") or document.get("ship_to"),
        "weight": document.get("weight"),
        "dimensions": document.get("dimensions"),
        "serviceSelection": clean_string(document.get("shippingCarrier"))
        or clean_string(document.get("serviceSelection")),
        "trackingNumber": clean_string(document.get("trackingNumber")),
        "labelUrl": clean_string(document.get("shippingLabelUrl") or document.get("labelUrl")),
        "metadata": document.get("metadata"),
        "links": {
            "invoiceId": clean_string(metadata.get("invoiceId")),
            "orderId": clean_string(metadata.get("orderId")),
        },
    }


def _summarize_product(document: Mapping[str, Any]) -> Summary:
    return {
        **_base_meta(document),
        "slug": _slug(document),
        "sku": clean_string(document.get("sku")),
    }


def _summarize_fallback(document: Mapping[str, Any]) -> Summary:
    return {
        **_base_meta(document),
        "title": clean_string(document.get("title")),
        "slug": _slug(document),
    }


_BUILDERS: Final[dict[str, Callable[[Mapping[str, Any]], Summary]]] = {
    "order": _summarize_order,
    "invoice": _summarize_invoice,
    "shippingLabel": _summarize_shipping_label,
    "product": _summarize_product,
}


def _sanitize_metadata_entry(entry: object) -> Summary | None:
    if not isinstance(entry, Mapping):
        return None
    return clean(
        {
            "key": clean_string(entry.get("key")),
            "value": clean_string(entry.get("value")),
            "source": clean_string(entry.get("source")),
        }
    )


def _sanitize_cart_item(item: Mapping[str, Any]) -> Summary | None:
    raw_entries = item.get("metadataEntries")
    if not isinstance(raw_entries, list):
        raw_entries = item.get("metadata")
    metadata_entries = (
        limit_list(
            [
                entry
                for entry in (_sanitize_metadata_entry(raw) for raw in raw_entries)
                if entry is not None
            ],
            NESTED_LIMIT,
        )
        if isinstance(raw_entries, list)
        else None
    )

    item_metadata = _mapping(item.get("metadata"))
    option_summary = clean_string(item_metadata.get("option_summary", item.get("optionSummary")))
    upgrades = clean_string_list(item_metadata.get("upgrades", item.get("upgrades")), NESTED_LIMIT)

    result = clean(
        {
            "id": clean_string(item.get("id")),
            "productSlug": clean_string(item.get("productSlug")),
            "stripeProductId": clean_string(item.get("stripeProductId")),
            "stripePriceId": clean_string(item.get("stripePriceId")),
            "sku": clean_string(item.get("sku")),
            "name": clean_string(item.get("name")),
            "productName": clean_string(item.get("productName")),
            "description": clean_string(item.get("description")),
            "optionSummary": clean_string(item.get("optionSummary")),
            "optionDetails": clean_string_list(item.get("optionDetails"), NESTED_LIMIT),
            "upgrades": clean_string_list(item.get("upgrades"), NESTED_LIMIT),
            "customizations": clean_string_list(item.get("customizations"), NESTED_LIMIT),
            "price": clean_number(item.get("price")),
            "quantity": clean_number(item.get("quantity")),
            "categories": clean_string_list(item.get("categories"), NESTED_LIMIT),
            "metadata": {"option_summary": option_summary, "upgrades": upgrades},
            "metadataEntries": metadata_entries,
        }
    )
    return result if isinstance(result, dict) else None


def _sanitize_order_events(events: object) -> list[Summary] | None:
    if not isinstance(events, list):
        return None
    items = [
        cleaned
        for cleaned in (
            clean(
                {
                    "type": clean_string(entry.get("type")),
                    "status": clean_string(entry.get("status")),
                    "label": clean_string(entry.get("label")),
                    "message": clean_string(entry.get("message")),
                    "amount": clean_number(entry.get("amount")),
                    "currency": clean_string(entry.get("currency")),
                    "stripeEventId": clean_string(entry.get("stripeEventId")),
                    "createdAt": clean_string(entry.get("createdAt")),
                }
            )
            for entry in events
            if isinstance(entry, Mapping)
        )
        if cleaned is not None
    ]
    return limit_list(items, TOP_LEVEL_LIMIT)


def _sanitize_shipping_log(entries: object) -> list[Summary] | None:
    if not isinstance(entries, list):
        return None
    items = [
        cleaned
        for cleaned in (
            clean(
                {
                    "status": clean_string(entry.get("status")),
                    "message": clean_string(entry.get("message")),
                    "trackingNumber": clean_string(entry.get("trackingNumber")),
                    "trackingUrl": clean_string(entry.get("trackingUrl")),
                    "createdAt": clean_string(entry.get("createdAt")),
                }
            )
            for entry in entries
            if isinstance(entry, Mapping)
        )
        if cleaned is not None
    ]
    return limit_list(items, TOP_LEVEL_LIMIT)
