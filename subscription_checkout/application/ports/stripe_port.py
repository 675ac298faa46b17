from __future__ import annotations

from datetime import datetime
from typing import Protocol

from subscription_checkout.application.dto.stripe import (
    StripeCouponData,
    StripeCustomerData,
    StripeInvoiceData,
    StripePaymentIntentData,
    StripePriceData,
    StripePromotionCodeData,
    StripeScheduleData,
    StripeSetupIntentData,
    StripeSubscriptionData,
    StripeWebhookEvent,
)


class StripePort(Protocol):
    def find_customer_by_email(self, *, email: str) -> StripeCustomerData | None:
        ...

    def create_customer(
        self,
        *,
        email: str,
        name: str,
        metadata: dict[str, str],
        idempotency_key: str,
    ) -> StripeCustomerData:
        ...

    def update_customer_metadata(self, *, customer_id: str, metadata: dict[str, str]) -> None:
        ...

    def retrieve_customer(self, *, customer_id: str) -> StripeCustomerData:
        ...

    def set_customer_default_payment_method(self, *, customer_id: str, payment_method_id: str) -> None:
        ...

    def find_active_promotion_code(self, *, code: str) -> StripePromotionCodeData | None:
        ...

    def retrieve_coupon(self, *, coupon_id: str) -> StripeCouponData:
        ...

    def retrieve_price(self, *, price_id: str) -> StripePriceData:
        ...

    def create_subscription_schedule(
        self,
        *,
        customer_id: str,
        price_id: str,
        coupon_id: str | None,
        end_date: datetime,
        metadata: dict[str, str],
    ) -> StripeScheduleData:
        ...

    def cancel_subscription_schedule(self, *, schedule_id: str) -> None:
        ...

    def retrieve_subscription(self, *, subscription_id: str) -> StripeSubscriptionData:
        ...

    def update_subscription_settings(self, *, subscription_id: str, metadata: dict[str, str]) -> None:
        ...

    def set_subscription_default_payment_method(self, *, subscription_id: str, payment_method_id: str) -> None:
        ...

    def cancel_subscription(self, *, subscription_id: str) -> None:
        ...

    def create_invoice_item(
        self,
        *,
        customer_id: str,
        invoice_id: str,
        price_id: str,
        description: str,
        metadata: dict[str, str],
    ) -> str:
        ...

    def update_invoice(self, *, invoice_id: str, metadata: dict[str, str], coupon_id: str | None) -> None:
        ...

    def finalize_invoice(self, *, invoice_id: str) -> StripeInvoiceData:
        ...

    def retrieve_invoice(self, *, invoice_id: str) -> StripeInvoiceData:
        ...

    def retrieve_invoice_discount_coupon_id(self, *, invoice_id: str, discount_id: str) -> str | None:
        ...

    def retrieve_payment_intent(self, *, payment_intent_id: str) -> StripePaymentIntentData:
        ...

    def update_payment_intent_metadata(self, *, payment_intent_id: str, metadata: dict[str, str]) -> None:
        ...

    def create_setup_intent(self, *, customer_id: str, metadata: dict[str, str]) -> StripeSetupIntentData:
        ...

    def verify_webhook(self, *, signature: str, payload: bytes) -> StripeWebhookEvent:
        ...
