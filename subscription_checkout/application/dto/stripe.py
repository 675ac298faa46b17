from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal


@dataclass(frozen=True)
class StripeCustomerData:
    id: str
    email: str | None
    name: str | None
    metadata: dict[str, str] = field(default_factory=dict)
    discount_coupon_id: str | None = None


@dataclass(frozen=True)
class StripeCouponData:
    id: str
    valid: bool
    percent_off: Decimal | None
    amount_off: int | None
    currency: str | None
    duration: str
    duration_in_months: int | None
    applies_to_products: tuple[str, ...] = ()
    name: str | None = None


@dataclass(frozen=True)
class StripePromotionCodeData:
    id: str
    code: str
    active: bool
    coupon_id: str | None


@dataclass(frozen=True)
class StripePriceData:
    id: str
    unit_amount: int | None
    currency: str
    recurring_interval: str | None
    product_id: str | None


@dataclass(frozen=True)
class StripeSubscriptionItemData:
    id: str
    price_id: str | None
    unit_amount: int | None
    quantity: int


@dataclass(frozen=True)
class StripeSubscriptionData:
    id: str
    customer_id: str | None
    status: str
    schedule_id: str | None
    latest_invoice_id: str | None
    items: tuple[StripeSubscriptionItemData, ...] = ()
    discount_coupon: StripeCouponData | None = None
    metadata: dict[str, str] = field(default_factory=dict)
    canceled_at: datetime | None = None


@dataclass(frozen=True)
class StripeScheduleData:
    id: str
    customer_id: str | None
    subscription_id: str | None
    status: str
    metadata: dict[str, str] = field(default_factory=dict)
    completed_at: datetime | None = None
    canceled_at: datetime | None = None


@dataclass(frozen=True)
class StripeInvoiceLineData:
    id: str
    description: str | None
    amount: int
    amount_total: int | None
    quantity: int
    unit_amount: int | None
    price_id: str | None
    price_is_recurring: bool
    line_type: str | None
    subscription_id: str | None
    discount_amounts: tuple[int, ...] = ()


@dataclass(frozen=True)
class InvoiceDiscountRef:
    discount_id: str | None
    coupon_id: str | None


@dataclass(frozen=True)
class StripeInvoiceData:
    id: str
    customer_id: str | None
    subscription_id: str | None
    status: str | None
    amount_due: int
    amount_paid: int
    subtotal: int
    total: int
    currency: str | None
    payment_intent_id: str | None
    client_secret: str | None
    billing_reason: str | None = None
    default_payment_method_id: str | None = None
    lines: tuple[StripeInvoiceLineData, ...] = ()
    discounts: tuple[InvoiceDiscountRef, ...] = ()
    total_discount_amounts: tuple[int, ...] = ()
    total_tax_amounts: tuple[int, ...] = ()
    metadata: dict[str, str] = field(default_factory=dict)
    paid_at: datetime | None = None

    @property
    def total_discount_amount(self) -> int:
        return sum(self.total_discount_amounts)

    @property
    def total_tax_amount(self) -> int:
        return sum(self.total_tax_amounts)


@dataclass(frozen=True)
class StripePaymentIntentData:
    id: str
    status: str | None
    amount: int
    amount_received: int
    currency: str | None
    customer_id: str | None
    invoice_id: str | None
    payment_method_id: str | None
    client_secret: str | None = None
    metadata: dict[str, str] = field(default_factory=dict)
    last_error_code: str | None = None
    last_error_message: str | None = None


@dataclass(frozen=True)
class StripeSetupIntentData:
    id: str
    status: str | None
    customer_id: str | None
    payment_method_id: str | None
    client_secret: str | None
    metadata: dict[str, str] = field(default_factory=dict)


@dataclass(frozen=True)
class StripeChargeData:
    id: str
    customer_id: str | None
    payment_intent_id: str | None
    amount_refunded: int
    refunded: bool
    currency: str | None


@dataclass(frozen=True)
class StripeWebhookEvent:
    event_id: str
    event_type: str
    object_type: str | None
    invoice: StripeInvoiceData | None = None
    invoice_id: str | None = None
    payment_intent: StripePaymentIntentData | None = None
    setup_intent: StripeSetupIntentData | None = None
    subscription: StripeSubscriptionData | None = None
    schedule: StripeScheduleData | None = None
    charge: StripeChargeData | None = None
