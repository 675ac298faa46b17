from __future__ import annotations

import logging
from dataclasses import replace
from datetime import timedelta
from typing import Any

from subscription_checkout.application.dto.checkout import (
    CreateCheckoutInput,
    CreateCheckoutOutput,
    RateLimitStatus,
)
from subscription_checkout.application.ports.stripe_port import StripePort
from subscription_checkout.application.ports.submission_port import SubmissionPort
from subscription_checkout.application.use_cases.billing_common import utcnow
from subscription_checkout.application.use_cases.build_subscription_schedule import SubscriptionScheduleBuilder
from subscription_checkout.application.use_cases.finalize_invoice import InvoiceFinalizer
from subscription_checkout.application.use_cases.resolve_customer import CustomerResolver
from subscription_checkout.application.use_cases.validate_discount import DiscountValidator
from subscription_checkout.domain.entities.add_on import invalid_language_codes
from subscription_checkout.domain.entities.discount import DiscountDescriptor
from subscription_checkout.domain.entities.submission import (
    Submission,
    customer_business_name,
    customer_email,
    selected_language_codes,
    unique_codes,
)
from subscription_checkout.domain.exceptions import (
    AnalyticsWriteError,
    BillingError,
    CheckoutError,
    CheckoutErrorCode,
    ProviderResourceMissingError,
    PaymentProviderError,
    RateLimitExceededError,
    SubmissionNotFoundError,
    SubmissionPersistenceError,
)
from subscription_checkout.shared.retry import retry_call


logger = logging.getLogger(__name__)

PAYMENT_ATTEMPT_EVENT = "payment_attempt"
DEFAULT_BUSINESS_NAME = "Unknown Business"

RESET_PAYMENT_FIELDS = (
    "stripe_subscription_id",
    "stripe_subscription_schedule_id",
    "stripe_payment_id",
    "payment_amount",
    "payment_completed_at",
    "payment_metadata",
)


class CreateCheckoutUseCase:
    def __init__(
        self,
        *,
        stripe_port: StripePort,
        submission_port: SubmissionPort,
        customer_resolver: CustomerResolver,
        discount_validator: DiscountValidator,
        schedule_builder: SubscriptionScheduleBuilder,
        invoice_finalizer: InvoiceFinalizer,
        base_price_id: str,
        max_attempts: int = 5,
        attempt_window_seconds: int = 3600,
        retry_attempts: int = 2,
        retry_delay_seconds: float = 0.3,
        load_retry_delay_seconds: float = 0.25,
    ):
        self._stripe_port = stripe_port
        self._submission_port = submission_port
        self._customer_resolver = customer_resolver
        self._discount_validator = discount_validator
        self._schedule_builder = schedule_builder
        self._invoice_finalizer = invoice_finalizer
        self._base_price_id = base_price_id
        self._max_attempts = max_attempts
        self._attempt_window = timedelta(seconds=attempt_window_seconds)
        self._retry_attempts = retry_attempts
        self._retry_delay_seconds = retry_delay_seconds
        self._load_retry_delay_seconds = load_retry_delay_seconds

    def execute(self, command: CreateCheckoutInput) -> CreateCheckoutOutput:
        submission = self._load_submission(command.submission_id)
        if not submission.session_id:
            raise CheckoutError(CheckoutErrorCode.MISSING_SESSION_ID, "Session ID not found for submission.")
        session_id = submission.session_id

        # Persisted selection wins over what the client sent.
        languages = selected_language_codes(submission) or unique_codes(command.additional_languages)

        if submission.stripe_subscription_id:
            submission = self._reset_existing_checkout(submission)

        invalid = invalid_language_codes(languages)
        if invalid:
            raise CheckoutError(
                CheckoutErrorCode.INVALID_LANGUAGE_CODE,
                f"Invalid language codes: {', '.join(invalid)}",
            )

        rate_limit = self.check_rate_limit(session_id)
        if not rate_limit.allowed:
            raise RateLimitExceededError(
                attempts_remaining=rate_limit.attempts_remaining,
                reset_at=rate_limit.reset_at,
            )
        self._log_attempt(session_id=session_id, submission_id=submission.id, language_count=len(languages))

        email = customer_email(submission)
        if not email:
            raise CheckoutError(CheckoutErrorCode.MISSING_CUSTOMER_EMAIL, "Customer email not found in submission.")

        try:
            return self._create_provider_checkout(
                submission=submission,
                session_id=session_id,
                email=email,
                languages=languages,
                discount_code=(command.discount_code or "").strip() or None,
            )
        except BillingError as exc:
            logger.exception("checkout: provider_error submission_id=%s", submission.id)
            raise CheckoutError(
                CheckoutErrorCode.STRIPE_API_ERROR,
                "Failed to create checkout session. Please try again.",
            ) from exc

    def check_rate_limit(self, session_id: str) -> RateLimitStatus:
        now = utcnow()
        recent = self._submission_port.count_analytics_events(
            session_id=session_id,
            event_type=PAYMENT_ATTEMPT_EVENT,
            since=now - self._attempt_window,
        )
        allowed = recent < self._max_attempts
        return RateLimitStatus(
            allowed=allowed,
            attempts_remaining=self._max_attempts - recent if allowed else 0,
            reset_at=now + self._attempt_window,
        )

    def _create_provider_checkout(
        self,
        *,
        submission: Submission,
        session_id: str,
        email: str,
        languages: list[str],
        discount_code: str | None,
    ) -> CreateCheckoutOutput:
        customer_id = self._customer_resolver.find_or_create(
            email=email,
            display_name=customer_business_name(submission) or DEFAULT_BUSINESS_NAME,
            metadata={"submission_id": submission.id, "session_id": session_id},
        )

        discount: DiscountDescriptor | None = None
        if discount_code:
            discount = self._discount_validator.validate(discount_code)
            if discount is None:
                raise CheckoutError(
                    CheckoutErrorCode.INVALID_DISCOUNT_CODE,
                    f"Discount code '{discount_code}' is not valid or has expired",
                )
        form_data = _with_discount_code(submission.form_data, discount_code if discount else None)
        coupon_id = discount.coupon_id if discount else None

        base_metadata = {"submission_id": submission.id, "session_id": session_id}
        scheduled = self._schedule_builder.create(
            customer_id=customer_id,
            price_id=self._base_price_id,
            coupon_id=coupon_id,
            metadata=base_metadata,
        )
        subscription_metadata = {**base_metadata, "additional_languages": ",".join(languages)}
        if coupon_id:
            subscription_metadata["discount_code"] = coupon_id

        # Until the ids are persisted nothing points at this schedule, so a failure releases it.
        try:
            self._schedule_builder.configure_subscription(
                subscription=scheduled.subscription,
                metadata=subscription_metadata,
            )
            finalized = self._invoice_finalizer.finalize(
                customer_id=customer_id,
                subscription=scheduled.subscription,
                language_codes=languages,
                submission_id=submission.id,
                session_id=session_id,
                discount=discount,
            )
            values = {
                "stripe_customer_id": customer_id,
                "stripe_subscription_id": scheduled.subscription.id,
                "stripe_subscription_schedule_id": scheduled.schedule.id,
                "stripe_payment_id": finalized.payment_handle.id,
                "stripe_invoice_id": finalized.invoice_id,
                "payment_summary": finalized.summary.as_dict(),
                "payment_tax_amount": finalized.tax_amount,
                "payment_tax_currency": finalized.tax_currency,
                "form_data": form_data,
            }
            self._persist_checkout(submission_id=submission.id, values=values)
        except (BillingError, CheckoutError):
            self._release_schedule(schedule_id=scheduled.schedule.id, submission_id=submission.id)
            raise

        logger.info(
            "checkout: persisted submission_id=%s customer_id=%s subscription_id=%s schedule_id=%s handle=%s",
            submission.id,
            customer_id,
            scheduled.subscription.id,
            scheduled.schedule.id,
            finalized.payment_handle.kind,
        )

        return CreateCheckoutOutput(
            payment_required=True,
            payment_handle=finalized.payment_handle,
            customer_id=customer_id,
            subscription_id=scheduled.subscription.id,
            subscription_schedule_id=scheduled.schedule.id,
            invoice_id=finalized.invoice_id,
            summary=finalized.summary,
            coupon_id=coupon_id,
            invoice_total=finalized.invoice_total,
            invoice_discount=finalized.invoice_discount,
        )

    def _load_submission(self, submission_id: str) -> Submission:
        def load() -> Submission:
            submission = self._submission_port.get_submission_by_id(submission_id=submission_id)
            if submission is None:
                raise SubmissionNotFoundError(submission_id)
            return submission

        try:
            return retry_call(
                load,
                attempts=2,
                delay_seconds=self._load_retry_delay_seconds,
                is_retryable=lambda exc: isinstance(exc, SubmissionNotFoundError),
                label="submission_load",
            )
        except SubmissionNotFoundError as exc:
            logger.warning("checkout: submission_not_found submission_id=%s", submission_id)
            raise CheckoutError(
                CheckoutErrorCode.INVALID_SUBMISSION_ID,
                "Submission not found or not in submitted status",
            ) from exc

    def _reset_existing_checkout(self, submission: Submission) -> Submission:
        logger.warning(
            "checkout: existing_subscription_reset submission_id=%s subscription_id=%s schedule_id=%s",
            submission.id,
            submission.stripe_subscription_id,
            submission.stripe_subscription_schedule_id,
        )
        schedule_cancelled = False
        if submission.stripe_subscription_schedule_id:
            schedule_cancelled = self._cancel_quietly(
                lambda: self._stripe_port.cancel_subscription_schedule(
                    schedule_id=submission.stripe_subscription_schedule_id
                ),
                resource="schedule",
                resource_id=submission.stripe_subscription_schedule_id,
                submission_id=submission.id,
            )
        # Cancelling a schedule also cancels the subscription it manages.
        if submission.stripe_subscription_id and not schedule_cancelled:
            self._cancel_quietly(
                lambda: self._stripe_port.cancel_subscription(subscription_id=submission.stripe_subscription_id),
                resource="subscription",
                resource_id=submission.stripe_subscription_id,
                submission_id=submission.id,
            )

        values: dict[str, Any] = {field_name: None for field_name in RESET_PAYMENT_FIELDS}
        status = "submitted" if submission.status == "paid" else submission.status
        values["status"] = status
        self._persist_checkout(submission_id=submission.id, values=values)
        return replace(submission, status=status, **{field_name: None for field_name in RESET_PAYMENT_FIELDS})

    def _cancel_quietly(self, cancel, *, resource: str, resource_id: str, submission_id: str) -> bool:
        try:
            cancel()
        except ProviderResourceMissingError:
            logger.warning(
                "checkout: %s_already_missing %s_id=%s submission_id=%s",
                resource,
                resource,
                resource_id,
                submission_id,
            )
            return False
        except PaymentProviderError as exc:
            logger.error(
                "checkout: %s_cancel_failed %s_id=%s submission_id=%s error=%s",
                resource,
                resource,
                resource_id,
                submission_id,
                exc,
            )
            raise CheckoutError(
                CheckoutErrorCode.STRIPE_API_ERROR,
                "Failed to reset previous checkout. Please try again.",
            ) from exc
        return True

    def _release_schedule(self, *, schedule_id: str, submission_id: str) -> None:
        try:
            self._stripe_port.cancel_subscription_schedule(schedule_id=schedule_id)
        except PaymentProviderError as exc:
            logger.error(
                "checkout: schedule_release_failed schedule_id=%s submission_id=%s error=%s",
                schedule_id,
                submission_id,
                exc,
            )
            return
        logger.warning("checkout: schedule_released schedule_id=%s submission_id=%s", schedule_id, submission_id)

    def _log_attempt(self, *, session_id: str, submission_id: str, language_count: int) -> None:
        try:
            self._submission_port.insert_analytics_event(
                session_id=session_id,
                event_type=PAYMENT_ATTEMPT_EVENT,
                event_data={"submission_id": submission_id, "language_count": language_count},
            )
        except AnalyticsWriteError as exc:
            logger.warning("checkout: attempt_log_failed session_id=%s error=%s", session_id, exc)

    def _persist_checkout(self, *, submission_id: str, values: dict[str, Any]) -> None:
        try:
            retry_call(
                lambda: self._submission_port.update_submission(submission_id=submission_id, values=values),
                attempts=self._retry_attempts,
                delay_seconds=self._retry_delay_seconds,
                is_retryable=lambda exc: isinstance(exc, SubmissionPersistenceError),
                label="submission_update",
            )
        except SubmissionPersistenceError as exc:
            logger.error(
                "checkout: submission_update_failed submission_id=%s keys=%s error=%s "
                "(provider state may be ahead of the local record; operator attention required)",
                submission_id,
                sorted(values),
                exc,
            )
            raise CheckoutError(
                CheckoutErrorCode.SUBMISSION_UPDATE_FAILED,
                "Failed to persist checkout session. Please try again.",
            ) from exc


def _with_discount_code(form_data: dict[str, Any], discount_code: str | None) -> dict[str, Any]:
    updated = dict(form_data or {})
    step14 = dict(updated.get("step14") or {})
    if discount_code:
        updated["discountCode"] = discount_code
        step14["discountCode"] = discount_code
        updated["step14"] = step14
        return updated

    updated.pop("discountCode", None)
    if "discountCode" in step14:
        step14.pop("discountCode")
        updated["step14"] = step14
    return updated
