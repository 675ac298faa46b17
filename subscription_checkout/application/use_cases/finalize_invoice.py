from __future__ import annotations

import logging

from subscription_checkout.application.dto.checkout import InvoiceFinalizationResult, PaymentHandle
from subscription_checkout.application.dto.stripe import StripeInvoiceData, StripeSubscriptionData
from subscription_checkout.application.ports.stripe_port import StripePort
from subscription_checkout.application.ports.submission_port import SubmissionPort
from subscription_checkout.domain.entities.add_on import get_language
from subscription_checkout.domain.entities.discount import DiscountDescriptor
from subscription_checkout.domain.exceptions import (
    BillingError,
    CheckoutError,
    CheckoutErrorCode,
    SubmissionPersistenceError,
)
from subscription_checkout.domain.services.pricing_summary import build_pricing_summary
from subscription_checkout.shared.retry import retry_call


logger = logging.getLogger(__name__)


class InvoiceFinalizer:
    def __init__(
        self,
        *,
        stripe_port: StripePort,
        submission_port: SubmissionPort,
        base_price_id: str,
        addon_price_id: str,
        retry_attempts: int = 2,
        retry_delay_seconds: float = 0.3,
    ):
        self._stripe_port = stripe_port
        self._submission_port = submission_port
        self._base_price_id = base_price_id
        self._addon_price_id = addon_price_id
        self._retry_attempts = retry_attempts
        self._retry_delay_seconds = retry_delay_seconds

    def finalize(
        self,
        *,
        customer_id: str,
        subscription: StripeSubscriptionData,
        language_codes: list[str],
        submission_id: str,
        session_id: str,
        discount: DiscountDescriptor | None,
    ) -> InvoiceFinalizationResult:
        coupon_id = discount.coupon_id if discount else None
        invoice_id = subscription.latest_invoice_id
        if not invoice_id:
            raise BillingError("No invoice found for subscription.")

        for code in language_codes:
            language = get_language(code)
            if language is None:
                raise BillingError(f"Unknown language add-on: {code}.")
            self._stripe_port.create_invoice_item(
                customer_id=customer_id,
                invoice_id=invoice_id,
                price_id=self._addon_price_id,
                description=language.invoice_description,
                metadata={"language_code": code, "one_time": "true"},
            )

        # Coupon on the invoice too; subscription-level discounts do not reach invoice items.
        self._stripe_port.update_invoice(
            invoice_id=invoice_id,
            metadata={
                "submission_id": submission_id,
                "session_id": session_id,
                "is_initial_payment": "true",
            },
            coupon_id=coupon_id,
        )

        invoice = self._stripe_port.finalize_invoice(invoice_id=invoice_id)
        summary = build_pricing_summary(invoice, base_price_id=self._base_price_id, discount=discount)
        logger.info(
            "invoice: finalized invoice_id=%s total=%s amount_due=%s discount=%s coupon_id=%s",
            invoice.id,
            invoice.total,
            invoice.amount_due,
            invoice.total_discount_amount,
            coupon_id,
        )

        if invoice.amount_due <= 0:
            handle = self._collect_payment_method(
                invoice=invoice,
                customer_id=customer_id,
                subscription_id=subscription.id,
                submission_id=submission_id,
                session_id=session_id,
            )
        else:
            handle = self._payment_intent_handle(
                invoice=invoice,
                submission_id=submission_id,
                session_id=session_id,
            )

        return InvoiceFinalizationResult(
            invoice_id=invoice.id,
            payment_handle=handle,
            summary=summary,
            invoice_total=invoice.total if invoice.amount_due > 0 else 0,
            invoice_discount=invoice.total_discount_amount,
            tax_amount=summary.tax_amount,
            tax_currency=invoice.currency,
        )

    def _payment_intent_handle(
        self,
        *,
        invoice: StripeInvoiceData,
        submission_id: str,
        session_id: str,
    ) -> PaymentHandle:
        if invoice.payment_intent_id:
            self._stripe_port.update_payment_intent_metadata(
                payment_intent_id=invoice.payment_intent_id,
                metadata={
                    "submission_id": submission_id,
                    "session_id": session_id,
                    "invoice_id": invoice.id,
                },
            )
        else:
            logger.warning("invoice: payment_intent_unresolved invoice_id=%s", invoice.id)

        if not invoice.client_secret:
            raise BillingError("Invoice confirmation secret not available.")
        return PaymentHandle(
            kind="payment_intent",
            id=invoice.payment_intent_id,
            client_secret=invoice.client_secret,
        )

    def _collect_payment_method(
        self,
        *,
        invoice: StripeInvoiceData,
        customer_id: str,
        subscription_id: str,
        submission_id: str,
        session_id: str,
    ) -> PaymentHandle:
        # No charge is possible for a zero invoice; keep a card on file for renewals.
        setup_intent = self._stripe_port.create_setup_intent(
            customer_id=customer_id,
            metadata={
                "submission_id": submission_id,
                "session_id": session_id,
                "invoice_id": invoice.id,
                "subscription_id": subscription_id,
            },
        )
        if not setup_intent.client_secret:
            raise BillingError("SetupIntent created but client_secret is missing.")

        try:
            retry_call(
                lambda: self._submission_port.update_submission(
                    submission_id=submission_id,
                    values={"stripe_payment_id": setup_intent.id},
                ),
                attempts=self._retry_attempts,
                delay_seconds=self._retry_delay_seconds,
                is_retryable=lambda exc: isinstance(exc, SubmissionPersistenceError),
                label="setup_intent_id_persist",
            )
        except SubmissionPersistenceError as exc:
            logger.error(
                "invoice: setup_intent_persist_failed submission_id=%s setup_intent_id=%s error=%s",
                submission_id,
                setup_intent.id,
                exc,
            )
            raise CheckoutError(
                CheckoutErrorCode.SUBMISSION_UPDATE_FAILED,
                "Failed to persist checkout session. Please try again.",
            ) from exc

        logger.info(
            "invoice: setup_intent_created submission_id=%s setup_intent_id=%s invoice_id=%s",
            submission_id,
            setup_intent.id,
            invoice.id,
        )
        return PaymentHandle(kind="setup_intent", id=setup_intent.id, client_secret=setup_intent.client_secret)
