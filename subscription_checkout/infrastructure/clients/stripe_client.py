from __future__ import annotations

import logging
from datetime import datetime
from typing import Any, Callable, TypeVar

import stripe

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
from subscription_checkout.application.ports.stripe_port import StripePort
from subscription_checkout.domain.exceptions import (
    BillingError,
    PaymentProviderError,
    ProviderResourceMissingError,
    WebhookSignatureError,
)
from subscription_checkout.infrastructure.clients.stripe_normalizers import (
    normalize_coupon,
    normalize_customer,
    normalize_event,
    normalize_invoice,
    normalize_payment_intent,
    normalize_price,
    normalize_promotion_code,
    normalize_schedule,
    normalize_setup_intent,
    normalize_subscription,
)


logger = logging.getLogger(__name__)

TResult = TypeVar("TResult")

INVOICE_EXPAND = ["confirmation_secret", "payments", "discounts"]
SUBSCRIPTION_EXPAND = ["discounts.source.coupon"]


def _call(message: str, fn: Callable[..., TResult], *args: Any, **kwargs: Any) -> TResult:
    try:
        return fn(*args, **kwargs)
    except stripe.InvalidRequestError as exc:
        if getattr(exc, "code", None) == "resource_missing":
            raise ProviderResourceMissingError(message) from exc
        raise PaymentProviderError(message) from exc
    except stripe.StripeError as exc:
        raise PaymentProviderError(message) from exc


class StripeClient(StripePort):
    def __init__(self, *, secret_key: str, webhook_secret: str, api_version: str | None = None):
        stripe.api_key = secret_key
        if api_version:
            stripe.api_version = api_version
        self._webhook_secret = webhook_secret

    # customers

    def find_customer_by_email(self, *, email: str) -> StripeCustomerData | None:
        customers = _call("Failed to search Stripe customers.", stripe.Customer.list, email=email, limit=1)
        if not customers.data:
            return None
        return normalize_customer(customers.data[0])

    def create_customer(
        self,
        *,
        email: str,
        name: str,
        metadata: dict[str, str],
        idempotency_key: str,
    ) -> StripeCustomerData:
        customer = _call(
            "Failed to create Stripe customer.",
            stripe.Customer.create,
            email=email,
            name=name,
            metadata=metadata,
            idempotency_key=idempotency_key,
        )
        if not getattr(customer, "id", None):
            raise BillingError("Stripe customer id is missing.")
        return normalize_customer(customer)

    def update_customer_metadata(self, *, customer_id: str, metadata: dict[str, str]) -> None:
        _call("Failed to update Stripe customer.", stripe.Customer.modify, customer_id, metadata=metadata)

    def retrieve_customer(self, *, customer_id: str) -> StripeCustomerData:
        customer = _call("Failed to retrieve Stripe customer.", stripe.Customer.retrieve, customer_id)
        return normalize_customer(customer)

    def set_customer_default_payment_method(self, *, customer_id: str, payment_method_id: str) -> None:
        _call(
            "Failed to set customer default payment method.",
            stripe.Customer.modify,
            customer_id,
            invoice_settings={"default_payment_method": payment_method_id},
        )

    # discounts and prices

    def find_active_promotion_code(self, *, code: str) -> StripePromotionCodeData | None:
        promotion_codes = _call(
            "Failed to search Stripe promotion codes.",
            stripe.PromotionCode.list,
            code=code,
            active=True,
            limit=1,
        )
        if not promotion_codes.data:
            return None
        return normalize_promotion_code(promotion_codes.data[0])

    def retrieve_coupon(self, *, coupon_id: str) -> StripeCouponData:
        coupon = _call("Failed to retrieve Stripe coupon.", stripe.Coupon.retrieve, coupon_id)
        return normalize_coupon(coupon)

    def retrieve_price(self, *, price_id: str) -> StripePriceData:
        price = _call("Failed to retrieve Stripe price.", stripe.Price.retrieve, price_id)
        return normalize_price(price)

    # schedules and subscriptions

    def create_subscription_schedule(
        self,
        *,
        customer_id: str,
        price_id: str,
        coupon_id: str | None,
        end_date: datetime,
        metadata: dict[str, str],
    ) -> StripeScheduleData:
        phase: dict[str, Any] = {
            "items": [{"price": price_id, "quantity": 1}],
            "end_date": int(end_date.timestamp()),
        }
        if coupon_id:
            phase["discounts"] = [{"coupon": coupon_id}]
        schedule = _call(
            "Failed to create Stripe subscription schedule.",
            stripe.SubscriptionSchedule.create,
            customer=customer_id,
            start_date="now",
            end_behavior="release",
            phases=[phase],
            metadata=metadata,
        )
        return normalize_schedule(schedule)

    def cancel_subscription_schedule(self, *, schedule_id: str) -> None:
        _call("Failed to cancel Stripe subscription schedule.", stripe.SubscriptionSchedule.cancel, schedule_id)

    def retrieve_subscription(self, *, subscription_id: str) -> StripeSubscriptionData:
        subscription = _call(
            "Failed to retrieve Stripe subscription.",
            stripe.Subscription.retrieve,
            subscription_id,
            expand=SUBSCRIPTION_EXPAND,
        )
        return normalize_subscription(subscription)

    def update_subscription_settings(self, *, subscription_id: str, metadata: dict[str, str]) -> None:
        _call(
            "Failed to update Stripe subscription.",
            stripe.Subscription.modify,
            subscription_id,
            metadata=metadata,
            payment_settings={"save_default_payment_method": "on_subscription"},
            automatic_tax={"enabled": True},
        )

    def set_subscription_default_payment_method(self, *, subscription_id: str, payment_method_id: str) -> None:
        _call(
            "Failed to set subscription default payment method.",
            stripe.Subscription.modify,
            subscription_id,
            default_payment_method=payment_method_id,
        )

    def cancel_subscription(self, *, subscription_id: str) -> None:
        _call("Failed to cancel Stripe subscription.", stripe.Subscription.cancel, subscription_id)

    # invoices

    def create_invoice_item(
        self,
        *,
        customer_id: str,
        invoice_id: str,
        price_id: str,
        description: str,
        metadata: dict[str, str],
    ) -> str:
        item = _call(
            "Failed to create Stripe invoice item.",
            stripe.InvoiceItem.create,
            customer=customer_id,
            invoice=invoice_id,
            pricing={"price": price_id},
            description=description,
            metadata=metadata,
        )
        return str(item.id)

    def update_invoice(self, *, invoice_id: str, metadata: dict[str, str], coupon_id: str | None) -> None:
        payload: dict[str, Any] = {"metadata": metadata}
        if coupon_id:
            payload["discounts"] = [{"coupon": coupon_id}]
        _call("Failed to update Stripe invoice.", stripe.Invoice.modify, invoice_id, **payload)

    def finalize_invoice(self, *, invoice_id: str) -> StripeInvoiceData:
        invoice = _call(
            "Failed to finalize Stripe invoice.",
            stripe.Invoice.finalize_invoice,
            invoice_id,
            expand=INVOICE_EXPAND,
        )
        return normalize_invoice(invoice)

    def retrieve_invoice(self, *, invoice_id: str) -> StripeInvoiceData:
        invoice = _call("Failed to retrieve Stripe invoice.", stripe.Invoice.retrieve, invoice_id, expand=INVOICE_EXPAND)
        return normalize_invoice(invoice)

    def retrieve_invoice_discount_coupon_id(self, *, invoice_id: str, discount_id: str) -> str | None:
        invoice = self.retrieve_invoice(invoice_id=invoice_id)
        for discount in invoice.discounts:
            if discount.discount_id == discount_id:
                return discount.coupon_id
        return None

    # intents

    def retrieve_payment_intent(self, *, payment_intent_id: str) -> StripePaymentIntentData:
        payment_intent = _call("Failed to retrieve Stripe payment intent.", stripe.PaymentIntent.retrieve, payment_intent_id)
        return normalize_payment_intent(payment_intent)

    def update_payment_intent_metadata(self, *, payment_intent_id: str, metadata: dict[str, str]) -> None:
        _call("Failed to update Stripe payment intent.", stripe.PaymentIntent.modify, payment_intent_id, metadata=metadata)

    def create_setup_intent(self, *, customer_id: str, metadata: dict[str, str]) -> StripeSetupIntentData:
        setup_intent = _call(
            "Failed to create Stripe setup intent.",
            stripe.SetupIntent.create,
            customer=customer_id,
            payment_method_types=["card"],
            usage="off_session",
            metadata=metadata,
        )
        return normalize_setup_intent(setup_intent)

    # webhooks

    def verify_webhook(self, *, signature: str, payload: bytes) -> StripeWebhookEvent:
        try:
            event = stripe.Webhook.construct_event(payload=payload, sig_header=signature, secret=self._webhook_secret)
        except (stripe.SignatureVerificationError, ValueError) as exc:
            raise WebhookSignatureError("Invalid Stripe webhook signature.") from exc

        normalized = normalize_event(event)
        logger.info(
            "stripe: webhook_verified event_id=%s event_type=%s object_type=%s",
            normalized.event_id,
            normalized.event_type,
            normalized.object_type,
        )
        return normalized
