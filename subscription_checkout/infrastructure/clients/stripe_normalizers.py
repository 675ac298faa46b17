from __future__ import annotations

from collections.abc import Mapping
from datetime import datetime, timezone
from decimal import Decimal
from typing import Any

from subscription_checkout.application.dto.stripe import (
    InvoiceDiscountRef,
    StripeChargeData,
    StripeCouponData,
    StripeCustomerData,
    StripeInvoiceData,
    StripeInvoiceLineData,
    StripePaymentIntentData,
    StripePriceData,
    StripePromotionCodeData,
    StripeScheduleData,
    StripeSetupIntentData,
    StripeSubscriptionData,
    StripeSubscriptionItemData,
    StripeWebhookEvent,
)


# Accepts StripeObject instances and plain dicts from fixtures.
def _get(obj: Any, key: str, default: Any = None) -> Any:
    if obj is None:
        return default
    if isinstance(obj, Mapping):
        value = obj.get(key, default)
    else:
        value = getattr(obj, key, default)
    return default if value is None else value


def _path(obj: Any, *keys: str) -> Any:
    for key in keys:
        obj = _get(obj, key)
        if obj is None:
            return None
    return obj


def _ref_id(value: Any) -> str | None:
    """Expandable field: either the id string or the expanded object."""
    if value is None:
        return None
    if isinstance(value, str):
        return value
    ref = _get(value, "id")
    return str(ref) if ref else None


def _list_data(value: Any) -> list:
    if value is None:
        return []
    if isinstance(value, (list, tuple)):
        return list(value)
    return list(_get(value, "data", []) or [])


def _metadata(obj: Any) -> dict[str, str]:
    raw = _get(obj, "metadata") or {}
    if not isinstance(raw, Mapping) and hasattr(raw, "to_dict"):
        raw = raw.to_dict()
    return {str(key): str(value) for key, value in dict(raw).items() if value is not None}


def _to_datetime(value: int | None) -> datetime | None:
    if value is None:
        return None
    return datetime.fromtimestamp(int(value), tz=timezone.utc)


def _int(value: Any, default: int = 0) -> int:
    return default if value is None else int(value)


def _optional_int(value: Any) -> int | None:
    return None if value is None else int(value)


def normalize_coupon(obj: Any) -> StripeCouponData:
    percent_off = _get(obj, "percent_off")
    return StripeCouponData(
        id=str(_get(obj, "id")),
        valid=bool(_get(obj, "valid", True)),
        percent_off=Decimal(str(percent_off)) if percent_off is not None else None,
        amount_off=_optional_int(_get(obj, "amount_off")),
        currency=_get(obj, "currency"),
        duration=str(_get(obj, "duration", "once")),
        duration_in_months=_optional_int(_get(obj, "duration_in_months")),
        applies_to_products=tuple(_path(obj, "applies_to", "products") or ()),
        name=_get(obj, "name"),
    )


def _discount_coupon(discount: Any) -> Any:
    # Newer API versions nest the coupon under discount.source.
    return _get(discount, "coupon") or _path(discount, "source", "coupon")


def normalize_customer(obj: Any) -> StripeCustomerData:
    return StripeCustomerData(
        id=str(_get(obj, "id")),
        email=_get(obj, "email"),
        name=_get(obj, "name"),
        metadata=_metadata(obj),
        discount_coupon_id=_ref_id(_discount_coupon(_get(obj, "discount"))),
    )


def normalize_promotion_code(obj: Any) -> StripePromotionCodeData:
    coupon = _get(obj, "coupon") or _path(obj, "promotion", "coupon")
    return StripePromotionCodeData(
        id=str(_get(obj, "id")),
        code=str(_get(obj, "code", "")),
        active=bool(_get(obj, "active", False)),
        coupon_id=_ref_id(coupon),
    )


def normalize_price(obj: Any) -> StripePriceData:
    return StripePriceData(
        id=str(_get(obj, "id")),
        unit_amount=_optional_int(_get(obj, "unit_amount")),
        currency=str(_get(obj, "currency", "eur")),
        recurring_interval=_path(obj, "recurring", "interval"),
        product_id=_ref_id(_get(obj, "product")),
    )


def normalize_subscription(obj: Any) -> StripeSubscriptionData:
    items = tuple(
        StripeSubscriptionItemData(
            id=str(_get(item, "id")),
            price_id=_ref_id(_get(item, "price")),
            unit_amount=_optional_int(_path(item, "price", "unit_amount")),
            quantity=_int(_get(item, "quantity"), 1),
        )
        for item in _list_data(_get(obj, "items"))
    )

    coupon = _discount_coupon(_get(obj, "discount"))
    if coupon is None:
        for discount in _list_data(_get(obj, "discounts")):
            coupon = _discount_coupon(discount)
            if coupon is not None:
                break

    return StripeSubscriptionData(
        id=str(_get(obj, "id")),
        customer_id=_ref_id(_get(obj, "customer")),
        status=str(_get(obj, "status", "")),
        schedule_id=_ref_id(_get(obj, "schedule")),
        latest_invoice_id=_ref_id(_get(obj, "latest_invoice")),
        items=items,
        discount_coupon=normalize_coupon(coupon) if coupon is not None and not isinstance(coupon, str) else None,
        metadata=_metadata(obj),
        canceled_at=_to_datetime(_get(obj, "canceled_at")),
    )


def normalize_schedule(obj: Any) -> StripeScheduleData:
    return StripeScheduleData(
        id=str(_get(obj, "id")),
        customer_id=_ref_id(_get(obj, "customer")),
        subscription_id=_ref_id(_get(obj, "subscription")),
        status=str(_get(obj, "status", "")),
        metadata=_metadata(obj),
        completed_at=_to_datetime(_get(obj, "completed_at")),
        canceled_at=_to_datetime(_get(obj, "canceled_at")),
    )


def normalize_invoice_line(obj: Any) -> StripeInvoiceLineData:
    price = _get(obj, "price") or _path(obj, "pricing", "price_details", "price")
    unit_amount = _path(obj, "price", "unit_amount")
    if unit_amount is None:
        unit_amount = _path(obj, "pricing", "unit_amount_decimal")
    subscription_id = _ref_id(_get(obj, "subscription")) or _ref_id(
        _path(obj, "parent", "subscription_item_details", "subscription")
    )
    line_type = _get(obj, "type")
    if line_type is None:
        parent_type = _path(obj, "parent", "type")
        line_type = "subscription" if parent_type == "subscription_item_details" else parent_type
    return StripeInvoiceLineData(
        id=str(_get(obj, "id")),
        description=_get(obj, "description"),
        amount=_int(_get(obj, "amount")),
        amount_total=_optional_int(_get(obj, "amount_total")),
        quantity=_int(_get(obj, "quantity"), 1),
        unit_amount=int(Decimal(str(unit_amount))) if unit_amount is not None else None,
        price_id=_ref_id(price),
        price_is_recurring=_path(obj, "price", "recurring") is not None,
        line_type=line_type,
        subscription_id=subscription_id,
        discount_amounts=tuple(_int(_get(entry, "amount")) for entry in _list_data(_get(obj, "discount_amounts"))),
    )


def resolve_invoice_payment_intent_id(obj: Any) -> str | None:
    payment_intent_id = _ref_id(_get(obj, "payment_intent"))
    if payment_intent_id:
        return payment_intent_id
    for payment in _list_data(_get(obj, "payments")):
        payment_intent_id = _ref_id(_path(payment, "payment", "payment_intent"))
        if payment_intent_id:
            return payment_intent_id
    secret = _invoice_client_secret(obj)
    if secret and "_secret_" in secret:
        prefix = secret.split("_secret_", 1)[0]
        if prefix.startswith("pi_"):
            return prefix
    return None


def _invoice_client_secret(obj: Any) -> str | None:
    payment_intent = _get(obj, "payment_intent")
    if payment_intent is not None and not isinstance(payment_intent, str) and _get(payment_intent, "client_secret"):
        return str(_get(payment_intent, "client_secret"))
    secret = _path(obj, "confirmation_secret", "client_secret")
    return str(secret) if secret else None


def normalize_invoice(obj: Any) -> StripeInvoiceData:
    subscription_id = _ref_id(_get(obj, "subscription")) or _ref_id(
        _path(obj, "parent", "subscription_details", "subscription")
    )
    discounts = tuple(
        InvoiceDiscountRef(
            discount_id=discount if isinstance(discount, str) else _ref_id(discount),
            coupon_id=None if isinstance(discount, str) else _ref_id(_discount_coupon(discount)),
        )
        for discount in _list_data(_get(obj, "discounts"))
    )
    total_tax_amounts = tuple(_int(_get(entry, "amount")) for entry in _list_data(_get(obj, "total_tax_amounts")))
    if not total_tax_amounts:
        total_tax_amounts = tuple(_int(_get(entry, "amount")) for entry in _list_data(_get(obj, "total_taxes")))
    return StripeInvoiceData(
        id=str(_get(obj, "id")),
        customer_id=_ref_id(_get(obj, "customer")),
        subscription_id=subscription_id,
        status=_get(obj, "status"),
        amount_due=_int(_get(obj, "amount_due")),
        amount_paid=_int(_get(obj, "amount_paid")),
        subtotal=_int(_get(obj, "subtotal")),
        total=_int(_get(obj, "total")),
        currency=_get(obj, "currency"),
        payment_intent_id=resolve_invoice_payment_intent_id(obj),
        client_secret=_invoice_client_secret(obj),
        billing_reason=_get(obj, "billing_reason"),
        default_payment_method_id=_ref_id(_get(obj, "default_payment_method")),
        lines=tuple(normalize_invoice_line(line) for line in _list_data(_get(obj, "lines"))),
        discounts=discounts,
        total_discount_amounts=tuple(
            _int(_get(entry, "amount")) for entry in _list_data(_get(obj, "total_discount_amounts"))
        ),
        total_tax_amounts=total_tax_amounts,
        metadata=_metadata(obj),
        paid_at=_to_datetime(_path(obj, "status_transitions", "paid_at")),
    )


def normalize_payment_intent(obj: Any) -> StripePaymentIntentData:
    last_error = _get(obj, "last_payment_error")
    return StripePaymentIntentData(
        id=str(_get(obj, "id")),
        status=_get(obj, "status"),
        amount=_int(_get(obj, "amount")),
        amount_received=_int(_get(obj, "amount_received")),
        currency=_get(obj, "currency"),
        customer_id=_ref_id(_get(obj, "customer")),
        invoice_id=_ref_id(_get(obj, "invoice")) or _metadata(obj).get("invoice_id"),
        payment_method_id=_ref_id(_get(obj, "payment_method")),
        client_secret=_get(obj, "client_secret"),
        metadata=_metadata(obj),
        last_error_code=_get(last_error, "code"),
        last_error_message=_get(last_error, "message"),
    )


def normalize_setup_intent(obj: Any) -> StripeSetupIntentData:
    return StripeSetupIntentData(
        id=str(_get(obj, "id")),
        status=_get(obj, "status"),
        customer_id=_ref_id(_get(obj, "customer")),
        payment_method_id=_ref_id(_get(obj, "payment_method")),
        client_secret=_get(obj, "client_secret"),
        metadata=_metadata(obj),
    )


def normalize_charge(obj: Any) -> StripeChargeData:
    return StripeChargeData(
        id=str(_get(obj, "id")),
        customer_id=_ref_id(_get(obj, "customer")),
        payment_intent_id=_ref_id(_get(obj, "payment_intent")),
        amount_refunded=_int(_get(obj, "amount_refunded")),
        refunded=bool(_get(obj, "refunded", False)),
        currency=_get(obj, "currency"),
    )


def normalize_event(event: Any) -> StripeWebhookEvent:
    event_id = str(_get(event, "id", ""))
    event_type = str(_get(event, "type", ""))
    data_object = _path(event, "data", "object") or {}
    object_type = _get(data_object, "object")

    base = {"event_id": event_id, "event_type": event_type, "object_type": object_type}
    if object_type == "invoice":
        invoice = normalize_invoice(data_object)
        return StripeWebhookEvent(**base, invoice=invoice, invoice_id=invoice.id)
    if object_type == "invoice_payment":
        return StripeWebhookEvent(**base, invoice_id=_ref_id(_get(data_object, "invoice")))
    if object_type == "payment_intent":
        return StripeWebhookEvent(**base, payment_intent=normalize_payment_intent(data_object))
    if object_type == "setup_intent":
        return StripeWebhookEvent(**base, setup_intent=normalize_setup_intent(data_object))
    if object_type == "subscription":
        return StripeWebhookEvent(**base, subscription=normalize_subscription(data_object))
    if object_type == "subscription_schedule":
        return StripeWebhookEvent(**base, schedule=normalize_schedule(data_object))
    if object_type == "charge":
        return StripeWebhookEvent(**base, charge=normalize_charge(data_object))
    return StripeWebhookEvent(**base)
