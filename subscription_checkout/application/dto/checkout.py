from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import Literal

from subscription_checkout.application.dto.stripe import StripeScheduleData, StripeSubscriptionData
from subscription_checkout.domain.entities.discount import DiscountDescriptor
from subscription_checkout.domain.entities.pricing import PricingPreview, PricingSummary


PaymentHandleKind = Literal["payment_intent", "setup_intent"]


@dataclass(frozen=True)
class PaymentHandle:
    kind: PaymentHandleKind
    id: str | None
    client_secret: str


@dataclass(frozen=True)
class CreateCheckoutInput:
    submission_id: str
    additional_languages: list[str] = field(default_factory=list)
    discount_code: str | None = None


@dataclass(frozen=True)
class CreateCheckoutOutput:
    payment_required: bool
    payment_handle: PaymentHandle
    customer_id: str
    subscription_id: str
    subscription_schedule_id: str
    invoice_id: str
    summary: PricingSummary
    coupon_id: str | None = None
    invoice_total: int = 0
    invoice_discount: int = 0


@dataclass(frozen=True)
class ScheduleResult:
    schedule: StripeScheduleData
    subscription: StripeSubscriptionData


@dataclass(frozen=True)
class InvoiceFinalizationResult:
    invoice_id: str
    payment_handle: PaymentHandle
    summary: PricingSummary
    invoice_total: int
    invoice_discount: int
    tax_amount: int
    tax_currency: str | None


@dataclass(frozen=True)
class RateLimitStatus:
    allowed: bool
    attempts_remaining: int
    reset_at: datetime


@dataclass(frozen=True)
class ValidateDiscountInput:
    code: str


@dataclass(frozen=True)
class ValidateDiscountOutput:
    valid: bool
    discount: DiscountDescriptor | None = None


@dataclass(frozen=True)
class PreviewPricingInput:
    additional_languages: list[str] = field(default_factory=list)
    discount_code: str | None = None


@dataclass(frozen=True)
class PreviewPricingOutput:
    preview: PricingPreview
    currency: str
    base_price: int
    addon_unit_price: int
    addon_count: int
    discount: DiscountDescriptor | None = None
