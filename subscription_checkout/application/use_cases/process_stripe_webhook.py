from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Callable

from subscription_checkout.application.dto.stripe import (
    StripeCouponData,
    StripeInvoiceData,
    StripeSubscriptionData,
    StripeWebhookEvent,
)
from subscription_checkout.application.dto.webhook import StripeWebhookInput, StripeWebhookOutput
from subscription_checkout.application.ports.email_notifier_port import EmailNotifierPort
from subscription_checkout.application.ports.stripe_port import StripePort
from subscription_checkout.application.ports.submission_port import SubmissionPort
from subscription_checkout.application.ports.webhook_event_port import WebhookEventPort
from subscription_checkout.application.use_cases.billing_common import non_null, utcnow
from subscription_checkout.application.use_cases.submission_lookup import LookupKeys, SubmissionLookup
from subscription_checkout.domain.entities.submission import (
    Submission,
    customer_business_name,
    customer_email,
    customer_locale,
    selected_language_codes,
)
from subscription_checkout.domain.exceptions import (
    AnalyticsSessionMissingError,
    AnalyticsWriteError,
    PaymentProviderError,
    ProviderResourceMissingError,
    WebhookEventInFlightError,
    WebhookProcessingError,
)
from subscription_checkout.domain.services.pricing_preview import discount_for_amount


logger = logging.getLogger(__name__)

DEFAULT_BUSINESS_NAME = "Unknown Business"
UNKNOWN_EMAIL = "unknown@example.com"

INVOICE_PAID_EVENTS = ("invoice.paid", "invoice.payment_succeeded", "invoice_payment.paid")


@dataclass(frozen=True)
class _DiscountResolution:
    coupon_id: str | None = None
    discount_amount: int = 0
    recurring_discount: int = 0
    info: dict[str, Any] = field(default_factory=dict)


class ProcessStripeWebhookUseCase:
    def __init__(
        self,
        *,
        stripe_port: StripePort,
        submission_port: SubmissionPort,
        webhook_event_port: WebhookEventPort,
        email_notifier: EmailNotifierPort,
        submission_lookup: SubmissionLookup,
    ):
        self._stripe_port = stripe_port
        self._submission_port = submission_port
        self._webhook_event_port = webhook_event_port
        self._email_notifier = email_notifier
        self._lookup = submission_lookup
        self._handlers: dict[str, Callable[[StripeWebhookEvent], bool]] = {
            **{event_type: self._handle_invoice_paid for event_type in INVOICE_PAID_EVENTS},
            "payment_intent.succeeded": self._handle_payment_intent_succeeded,
            "setup_intent.succeeded": self._handle_setup_intent_succeeded,
            "customer.subscription.created": self._handle_subscription_created,
            "customer.subscription.updated": self._handle_subscription_updated,
            "customer.subscription.deleted": self._handle_subscription_deleted,
            "subscription_schedule.completed": self._handle_schedule_event,
            "subscription_schedule.canceled": self._handle_schedule_event,
            "charge.refunded": self._handle_charge_refunded,
            "payment_intent.payment_failed": self._handle_payment_failed,
        }

    def execute(self, command: StripeWebhookInput) -> StripeWebhookOutput:
        event = self._stripe_port.verify_webhook(signature=command.signature, payload=command.payload)

        claim = self._webhook_event_port.claim_webhook_event(event_id=event.event_id, event_type=event.event_type)
        if claim == "in_flight":
            # Non-2xx so the provider redelivers after the running claim finishes or goes stale.
            logger.warning("webhook: event_in_flight event_id=%s event_type=%s", event.event_id, event.event_type)
            raise WebhookEventInFlightError(f"Event {event.event_id} is already being processed.")
        if claim == "duplicate":
            logger.info("webhook: duplicate_event event_id=%s event_type=%s", event.event_id, event.event_type)
            return StripeWebhookOutput(
                event_id=event.event_id,
                event_type=event.event_type,
                handled=False,
                duplicate=True,
            )

        handler = self._handlers.get(event.event_type)
        if handler is None:
            self._webhook_event_port.mark_webhook_event(event_id=event.event_id, status="completed")
            return StripeWebhookOutput(event_id=event.event_id, event_type=event.event_type, handled=False)

        try:
            matched = handler(event)
        except Exception as exc:
            logger.exception("webhook: handler_failed event_id=%s event_type=%s", event.event_id, event.event_type)
            self._webhook_event_port.mark_webhook_event(
                event_id=event.event_id,
                status="failed",
                error_message=str(exc)[:500],
            )
            if isinstance(exc, WebhookProcessingError):
                raise
            raise WebhookProcessingError(f"Failed to process {event.event_type}.") from exc

        if not matched:
            # Acknowledged so the provider stops retrying, but kept visible for monitoring.
            logger.warning("webhook: unmatched_event event_id=%s event_type=%s", event.event_id, event.event_type)
            self._webhook_event_port.mark_webhook_event(event_id=event.event_id, status="unmatched")
            return StripeWebhookOutput(
                event_id=event.event_id,
                event_type=event.event_type,
                handled=True,
                matched=False,
            )

        self._webhook_event_port.mark_webhook_event(event_id=event.event_id, status="completed")
        return StripeWebhookOutput(event_id=event.event_id, event_type=event.event_type, handled=True)

    # invoice.paid / invoice.payment_succeeded / invoice_payment.paid

    def _handle_invoice_paid(self, event: StripeWebhookEvent) -> bool:
        invoice = self._invoice_for_event(event)
        if invoice is None:
            raise WebhookProcessingError("Invoice not found for event.")

        subscription_id = invoice.subscription_id or invoice.metadata.get("subscription_id")
        customer_id = invoice.customer_id or invoice.metadata.get("customer_id")
        subscription = self._safe_retrieve_subscription(subscription_id)
        keys = LookupKeys(
            schedule_id=subscription.schedule_id if subscription else None,
            customer_id=customer_id,
            subscription_id=subscription_id,
            submission_id=invoice.metadata.get("submission_id")
            or (subscription.metadata.get("submission_id") if subscription else None),
            payment_intent_id=invoice.payment_intent_id,
        )
        found = self._lookup.find(keys)
        if found is None:
            return False
        submission = found.submission
        becomes_paid = self._can_mark_paid(submission, payment_ref=invoice.id)

        discount = self._resolve_discount(invoice=invoice, subscription=subscription, customer_id=customer_id)
        currency = (invoice.currency or "eur").upper()
        schedule_id = submission.stripe_subscription_schedule_id or keys.schedule_id
        values: dict[str, Any] = {
            "payment_amount": invoice.total,
            "currency": currency,
            "discount_code": discount.coupon_id,
            "discount_amount": discount.discount_amount or None,
            "payment_completed_at": invoice.paid_at or submission.payment_completed_at or utcnow(),
            "payment_metadata": {
                "invoice_id": invoice.id,
                "payment_method": invoice.default_payment_method_id,
                "billing_reason": invoice.billing_reason,
                "schedule_id": schedule_id,
                "subtotal": invoice.subtotal,
                "discount_amount": discount.discount_amount,
                "recurring_discount": discount.recurring_discount,
                "discount_info": discount.info,
            },
        }
        # Ids only ever move forward; a thinner event never clears them.
        values.update(
            non_null(
                stripe_payment_id=invoice.payment_intent_id,
                stripe_customer_id=customer_id,
                stripe_subscription_id=subscription_id,
                stripe_subscription_schedule_id=schedule_id,
                stripe_invoice_id=invoice.id,
            )
        )
        if becomes_paid:
            values["status"] = "paid"
        self._submission_port.update_submission(submission_id=submission.id, values=values)
        logger.info(
            "webhook: submission_paid submission_id=%s invoice_id=%s amount=%s found_by=%s",
            submission.id,
            invoice.id,
            invoice.total,
            found.found_by,
        )

        self._log_analytics(
            session_id=submission.session_id,
            event_type="payment_succeeded",
            event_data={
                "submission_id": submission.id,
                "stripe_payment_id": invoice.payment_intent_id,
                "amount": invoice.amount_paid,
                "currency": invoice.currency,
            },
        )
        if becomes_paid:
            self._notify_payment(
                submission,
                amount=invoice.amount_paid,
                currency=currency,
                payment_id=invoice.payment_intent_id or "",
            )
        return True

    def _handle_payment_intent_succeeded(self, event: StripeWebhookEvent) -> bool:
        payment_intent = event.payment_intent
        if payment_intent is None:
            raise WebhookProcessingError("Payment intent event missing payload.")

        invoice = self._safe_retrieve_invoice(payment_intent.invoice_id)
        subscription_id = (invoice.subscription_id if invoice else None) or payment_intent.metadata.get(
            "subscription_id"
        )
        linked_subscription = self._safe_retrieve_subscription(subscription_id)
        keys = LookupKeys(
            schedule_id=linked_subscription.schedule_id if linked_subscription else None,
            customer_id=payment_intent.customer_id,
            subscription_id=subscription_id,
            submission_id=payment_intent.metadata.get("submission_id"),
        )
        found = self._lookup.find(keys)
        if found is None:
            return False
        submission = found.submission
        becomes_paid = self._can_mark_paid(submission, payment_ref=payment_intent.id)

        subscription = linked_subscription
        if submission.stripe_subscription_id and (
            subscription is None or subscription.id != submission.stripe_subscription_id
        ):
            subscription = self._safe_retrieve_subscription(submission.stripe_subscription_id)
        discount = self._resolve_discount(
            invoice=invoice,
            subscription=subscription,
            customer_id=payment_intent.customer_id,
        )
        discount_amount = discount.discount_amount or discount.recurring_discount
        subtotal = invoice.subtotal if invoice else payment_intent.amount + discount_amount
        currency = (payment_intent.currency or "eur").upper()

        values: dict[str, Any] = {
            "payment_amount": payment_intent.amount,
            "currency": currency,
            "discount_code": discount.coupon_id,
            "discount_amount": discount_amount or None,
            "payment_completed_at": submission.payment_completed_at or utcnow(),
            "payment_metadata": {
                "payment_intent_id": payment_intent.id,
                "invoice_id": payment_intent.invoice_id,
                "payment_method": payment_intent.payment_method_id,
                "amount_charged": payment_intent.amount,
                "currency": currency,
                "subtotal": subtotal,
                "discount_amount": discount_amount,
                "recurring_discount": discount.recurring_discount,
                "discount_info": discount.info,
            },
        }
        values.update(non_null(stripe_payment_id=payment_intent.id, stripe_customer_id=payment_intent.customer_id))
        if becomes_paid:
            values["status"] = "paid"
        self._submission_port.update_submission(submission_id=submission.id, values=values)
        logger.info(
            "webhook: submission_paid submission_id=%s payment_intent_id=%s amount=%s found_by=%s",
            submission.id,
            payment_intent.id,
            payment_intent.amount,
            found.found_by,
        )

        self._log_analytics(
            session_id=submission.session_id,
            event_type="payment_succeeded",
            event_data={
                "payment_intent_id": payment_intent.id,
                "amount": payment_intent.amount,
                "currency": payment_intent.currency,
            },
        )
        if becomes_paid:
            self._notify_payment(submission, amount=payment_intent.amount, currency=currency, payment_id=payment_intent.id)
        return True

    def _handle_setup_intent_succeeded(self, event: StripeWebhookEvent) -> bool:
        setup_intent = event.setup_intent
        if setup_intent is None:
            raise WebhookProcessingError("Setup intent event missing payload.")

        submission_id = setup_intent.metadata.get("submission_id")
        subscription_id = setup_intent.metadata.get("subscription_id")
        customer_id = setup_intent.customer_id
        submission: Submission | None = None

        if not submission_id:
            submission = self._submission_port.find_submission_by_payment_id(payment_id=setup_intent.id)
            if submission is None:
                logger.warning("webhook: setup_intent_without_submission setup_intent_id=%s", setup_intent.id)
                return False
            submission_id = submission.id
            logger.info(
                "webhook: setup_intent_enriched setup_intent_id=%s submission_id=%s",
                setup_intent.id,
                submission_id,
            )
        else:
            submission = self._submission_port.get_submission_by_id(submission_id=submission_id)

        if submission is not None:
            subscription_id = subscription_id or submission.stripe_subscription_id
            customer_id = customer_id or submission.stripe_customer_id

        if not setup_intent.payment_method_id:
            raise WebhookProcessingError("SetupIntent succeeded but no payment method attached.")
        payment_method_id = setup_intent.payment_method_id

        if subscription_id:
            try:
                self._stripe_port.set_subscription_default_payment_method(
                    subscription_id=subscription_id,
                    payment_method_id=payment_method_id,
                )
            except ProviderResourceMissingError:
                logger.warning(
                    "webhook: subscription_missing_for_payment_method subscription_id=%s setup_intent_id=%s",
                    subscription_id,
                    setup_intent.id,
                )

        if customer_id:
            try:
                self._stripe_port.set_customer_default_payment_method(
                    customer_id=customer_id,
                    payment_method_id=payment_method_id,
                )
            except ProviderResourceMissingError:
                logger.warning(
                    "webhook: customer_missing_for_payment_method customer_id=%s setup_intent_id=%s",
                    customer_id,
                    setup_intent.id,
                )
        else:
            logger.warning(
                "webhook: setup_intent_without_customer setup_intent_id=%s submission_id=%s",
                setup_intent.id,
                submission_id,
            )

        if submission is not None and self._can_mark_paid(submission, payment_ref=setup_intent.id):
            self._submission_port.update_submission(
                submission_id=submission.id,
                values={
                    "status": "paid",
                    "payment_completed_at": submission.payment_completed_at or utcnow(),
                    **non_null(stripe_subscription_id=subscription_id, stripe_customer_id=customer_id),
                },
            )
            logger.info("webhook: submission_paid submission_id=%s setup_intent_id=%s", submission.id, setup_intent.id)
            self._notify_payment(
                submission,
                amount=0,
                currency=(submission.currency or "eur").upper(),
                payment_id=setup_intent.id,
            )

        self._log_analytics(
            session_id=setup_intent.metadata.get("session_id") or (submission.session_id if submission else None),
            event_type="setup_intent_succeeded",
            event_data={
                "setup_intent_id": setup_intent.id,
                "submission_id": submission_id,
                "subscription_id": subscription_id,
                "payment_method_id": payment_method_id,
            },
        )
        return True

    def _handle_subscription_created(self, event: StripeWebhookEvent) -> bool:
        subscription = self._require_subscription(event)
        found = self._lookup.find(self._subscription_keys(subscription))
        if found is None:
            return False
        submission = found.submission

        values: dict[str, Any]
        if submission.stripe_subscription_id and submission.stripe_subscription_id != subscription.id:
            # A retried checkout produced a second subscription; keep the recorded one.
            logger.warning(
                "webhook: subscription_id_conflict submission_id=%s existing=%s incoming=%s",
                submission.id,
                submission.stripe_subscription_id,
                subscription.id,
            )
            values = {}
        else:
            values = non_null(
                stripe_subscription_id=subscription.id,
                stripe_customer_id=subscription.customer_id,
                stripe_subscription_schedule_id=subscription.schedule_id,
            )
        if values:
            self._submission_port.update_submission(submission_id=submission.id, values=values)

        self._log_analytics(
            session_id=submission.session_id,
            event_type="subscription_created",
            event_data={
                "submission_id": submission.id,
                "subscription_id": subscription.id,
                "customer_id": subscription.customer_id,
                "schedule_id": subscription.schedule_id,
            },
        )
        return True

    def _handle_subscription_updated(self, event: StripeWebhookEvent) -> bool:
        subscription = self._require_subscription(event)
        self._log_analytics(
            session_id=None,
            event_type="subscription_updated",
            event_data={"subscription_id": subscription.id, "status": subscription.status},
        )
        return True

    def _handle_subscription_deleted(self, event: StripeWebhookEvent) -> bool:
        subscription = self._require_subscription(event)
        canceled_at = subscription.canceled_at or utcnow()
        found = self._lookup.find(self._subscription_keys(subscription))

        if found is not None:
            submission = found.submission
            current = submission.stripe_subscription_id
            # No recorded subscription means a checkout reset or release cancelled this one.
            stale = current != subscription.id and (
                bool(current) or found.found_by not in ("schedule_id", "subscription_id")
            )
            if stale:
                logger.warning(
                    "webhook: stale_subscription_deleted submission_id=%s current=%s deleted=%s found_by=%s",
                    submission.id,
                    current,
                    subscription.id,
                    found.found_by,
                )
            elif submission.status != "cancelled":
                self._submission_port.update_submission(submission_id=submission.id, values={"status": "cancelled"})
                logger.info(
                    "webhook: submission_cancelled submission_id=%s subscription_id=%s",
                    submission.id,
                    subscription.id,
                )
                self._notify_cancellation(submission, subscription_id=subscription.id, canceled_at=canceled_at)

        self._log_analytics(
            session_id=None,
            event_type="subscription_deleted",
            event_data={"subscription_id": subscription.id, "canceled_at": canceled_at.isoformat()},
        )
        return found is not None

    def _handle_schedule_event(self, event: StripeWebhookEvent) -> bool:
        schedule = event.schedule
        if schedule is None:
            raise WebhookProcessingError("Schedule event missing payload.")
        completed = event.event_type.endswith("completed")
        timestamp = schedule.completed_at if completed else schedule.canceled_at
        self._log_analytics(
            session_id=None,
            event_type="schedule_completed" if completed else "schedule_canceled",
            event_data={
                "schedule_id": schedule.id,
                ("completed_at" if completed else "canceled_at"): timestamp.isoformat() if timestamp else None,
            },
        )
        return True

    def _handle_charge_refunded(self, event: StripeWebhookEvent) -> bool:
        charge = event.charge
        if charge is None:
            raise WebhookProcessingError("Charge event missing payload.")
        self._log_analytics(
            session_id=None,
            event_type="charge_refunded",
            event_data={
                "charge_id": charge.id,
                "amount_refunded": charge.amount_refunded,
                "refunded": charge.refunded,
            },
        )
        return True

    def _handle_payment_failed(self, event: StripeWebhookEvent) -> bool:
        payment_intent = event.payment_intent
        if payment_intent is None:
            raise WebhookProcessingError("Payment intent event missing payload.")
        self._log_analytics(
            session_id=None,
            event_type="payment_failed",
            event_data={
                "payment_intent_id": payment_intent.id,
                "error_code": payment_intent.last_error_code,
                "error_message": payment_intent.last_error_message,
            },
        )
        return True

    # helpers

    def _can_mark_paid(self, submission: Submission, *, payment_ref: str | None) -> bool:
        # cancelled is terminal; late payment events only record amounts.
        if submission.status == "cancelled":
            logger.warning(
                "webhook: payment_after_cancellation submission_id=%s payment_ref=%s",
                submission.id,
                payment_ref,
            )
            return False
        return submission.status != "paid"

    def _require_subscription(self, event: StripeWebhookEvent) -> StripeSubscriptionData:
        if event.subscription is None:
            raise WebhookProcessingError("Stripe subscription event missing payload.")
        return event.subscription

    def _subscription_keys(self, subscription: StripeSubscriptionData) -> LookupKeys:
        return LookupKeys(
            schedule_id=subscription.schedule_id,
            customer_id=subscription.customer_id,
            subscription_id=subscription.id,
            submission_id=subscription.metadata.get("submission_id"),
        )

    def _invoice_for_event(self, event: StripeWebhookEvent) -> StripeInvoiceData | None:
        if event.invoice is not None:
            return event.invoice
        return self._safe_retrieve_invoice(event.invoice_id)

    def _safe_retrieve_invoice(self, invoice_id: str | None) -> StripeInvoiceData | None:
        if not invoice_id:
            return None
        try:
            return self._stripe_port.retrieve_invoice(invoice_id=invoice_id)
        except PaymentProviderError as exc:
            logger.warning("webhook: invoice_unavailable invoice_id=%s error=%s", invoice_id, exc)
            return None

    def _safe_retrieve_subscription(self, subscription_id: str | None) -> StripeSubscriptionData | None:
        if not subscription_id:
            return None
        try:
            return self._stripe_port.retrieve_subscription(subscription_id=subscription_id)
        except PaymentProviderError as exc:
            logger.warning("webhook: subscription_unavailable subscription_id=%s error=%s", subscription_id, exc)
            return None

    def _resolve_discount(
        self,
        *,
        invoice: StripeInvoiceData | None,
        subscription: StripeSubscriptionData | None,
        customer_id: str | None,
    ) -> _DiscountResolution:
        coupon_id: str | None = None
        discount_amount = invoice.total_discount_amount if invoice else 0

        if invoice is not None and discount_amount > 0 and invoice.discounts:
            first = invoice.discounts[0]
            coupon_id = first.coupon_id
            if not coupon_id and first.discount_id:
                try:
                    coupon_id = self._stripe_port.retrieve_invoice_discount_coupon_id(
                        invoice_id=invoice.id,
                        discount_id=first.discount_id,
                    )
                except PaymentProviderError as exc:
                    logger.warning("webhook: discount_unavailable discount_id=%s error=%s", first.discount_id, exc)

        if not coupon_id and customer_id:
            try:
                coupon_id = self._stripe_port.retrieve_customer(customer_id=customer_id).discount_coupon_id
            except PaymentProviderError as exc:
                logger.warning("webhook: customer_unavailable customer_id=%s error=%s", customer_id, exc)

        recurring_discount = 0
        info: dict[str, Any] = {}
        coupon: StripeCouponData | None = subscription.discount_coupon if subscription else None
        if coupon is not None:
            coupon_id = coupon_id or coupon.id
            info = {
                "coupon_id": coupon.id,
                "duration": coupon.duration,
                "duration_in_months": coupon.duration_in_months,
                "percent_off": float(coupon.percent_off) if coupon.percent_off is not None else None,
                "amount_off": coupon.amount_off,
            }
            if subscription.items:
                recurring_discount = discount_for_amount(
                    subscription.items[0].unit_amount or 0,
                    percent_off=coupon.percent_off,
                    amount_off=coupon.amount_off,
                )

        return _DiscountResolution(
            coupon_id=coupon_id,
            discount_amount=discount_amount,
            recurring_discount=recurring_discount,
            info=info,
        )

    def _log_analytics(self, *, session_id: str | None, event_type: str, event_data: dict[str, Any]) -> None:
        try:
            self._submission_port.insert_analytics_event(
                session_id=session_id,
                event_type=event_type,
                event_data=event_data,
            )
        except AnalyticsSessionMissingError:
            logger.warning("webhook: analytics_session_missing session_id=%s event_type=%s", session_id, event_type)
        except AnalyticsWriteError as exc:
            logger.error("webhook: analytics_failed event_type=%s error=%s", event_type, exc)

    def _notify_payment(self, submission: Submission, *, amount: int, currency: str, payment_id: str) -> None:
        business_name = customer_business_name(submission) or DEFAULT_BUSINESS_NAME
        email = customer_email(submission) or UNKNOWN_EMAIL
        try:
            self._email_notifier.send_payment_notification(
                submission_id=submission.id,
                business_name=business_name,
                email=email,
                amount=amount,
                currency=currency,
                payment_id=payment_id,
                additional_languages=selected_language_codes(submission),
            )
        except Exception:  # noqa: BLE001
            logger.exception("webhook: payment_notification_failed submission_id=%s", submission.id)
        try:
            self._email_notifier.send_payment_success_confirmation(
                email=email,
                business_name=business_name,
                amount=amount,
                currency=currency,
                locale=customer_locale(submission),
            )
        except Exception:  # noqa: BLE001
            logger.exception("webhook: payment_confirmation_failed submission_id=%s", submission.id)

    def _notify_cancellation(self, submission: Submission, *, subscription_id: str, canceled_at) -> None:
        business_name = customer_business_name(submission) or DEFAULT_BUSINESS_NAME
        email = customer_email(submission) or UNKNOWN_EMAIL
        try:
            self._email_notifier.send_cancellation_confirmation(
                email=email,
                business_name=business_name,
                locale=customer_locale(submission),
            )
        except Exception:  # noqa: BLE001
            logger.exception("webhook: cancellation_confirmation_failed submission_id=%s", submission.id)
        try:
            self._email_notifier.send_cancellation_notification(
                submission_id=submission.id,
                business_name=business_name,
                email=email,
                subscription_id=subscription_id,
                canceled_at=canceled_at,
            )
        except Exception:  # noqa: BLE001
            logger.exception("webhook: cancellation_notification_failed submission_id=%s", submission.id)
