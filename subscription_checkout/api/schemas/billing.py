from __future__ import annotations

from typing import Literal

from pydantic import BaseModel, Field


class CreateCheckoutRequest(BaseModel):
    submission_id: str = Field(..., min_length=1, description="Id da submission do onboarding (UUID).")
    session_id: str | None = Field(None, description="Id da sessao de onboarding (UUID), opcional.")
    additional_languages: list[str] = Field(default_factory=list, description="Codigos ISO 639-1 dos add-ons.")
    discount_code: str | None = Field(None, description="Promotion code ou coupon id.")


class PricingLineItemResponse(BaseModel):
    id: str
    description: str
    amount: int
    original_amount: int
    quantity: int
    discount_amount: int
    is_recurring: bool


class PricingSummaryResponse(BaseModel):
    subtotal: int
    total: int
    discount_amount: int
    recurring_amount: int
    recurring_discount: int
    tax_amount: int
    currency: str
    line_items: list[PricingLineItemResponse]


class StripeIdsResponse(BaseModel):
    customer_id: str
    subscription_id: str
    subscription_schedule_id: str
    payment_id: str | None
    invoice_id: str


class CreateCheckoutResponse(BaseModel):
    submission_id: str
    payment_required: bool
    client_secret: str
    payment_handle_kind: Literal["payment_intent", "setup_intent"]
    coupon_id: str | None = None
    invoice_total: int
    invoice_discount: int = 0
    stripe_ids: StripeIdsResponse
    pricing_summary: PricingSummaryResponse


class StripeWebhookResponse(BaseModel):
    event_type: str
    handled: bool
    matched: bool = True
    duplicate: bool = False


class ValidateDiscountRequest(BaseModel):
    code: str = Field(..., min_length=1)


class DiscountResponse(BaseModel):
    coupon_id: str
    code: str
    promotion_code_id: str | None = None
    percent_off: float | None = None
    amount_off: int | None = None
    currency: str | None = None
    duration: Literal["once", "forever", "repeating"]
    duration_in_months: int | None = None
    restricted_to_base: bool = False


class ValidateDiscountResponse(BaseModel):
    valid: bool
    discount: DiscountResponse | None = None


class PricingPreviewRequest(BaseModel):
    additional_languages: list[str] = Field(default_factory=list)
    discount_code: str | None = None


class PricingPreviewResponse(BaseModel):
    currency: str
    base_price: int
    addon_unit_price: int
    addon_count: int
    subtotal: int
    due_today: int
    discount_amount: int
    recurring_amount: int
    recurring_discount: int
    recurring_description: Literal["full_price", "discounted", "discounted_then_full"]
    discounted_months: int | None = None
    discount: DiscountResponse | None = None
