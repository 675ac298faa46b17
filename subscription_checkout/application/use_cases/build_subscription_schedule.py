from __future__ import annotations

import logging
from datetime import timedelta

from subscription_checkout.application.dto.checkout import ScheduleResult
from subscription_checkout.application.dto.stripe import StripeSubscriptionData
from subscription_checkout.application.ports.stripe_port import StripePort
from subscription_checkout.application.use_cases.billing_common import utcnow
from subscription_checkout.domain.exceptions import (
    BillingError,
    CheckoutError,
    CheckoutErrorCode,
    PaymentProviderError,
)
from subscription_checkout.shared.retry import retry_call


logger = logging.getLogger(__name__)

DAYS_PER_COMMITMENT_MONTH = 30


class SubscriptionScheduleBuilder:
    def __init__(
        self,
        *,
        stripe_port: StripePort,
        commitment_months: int = 12,
        retry_attempts: int = 2,
        retry_delay_seconds: float = 0.3,
    ):
        self._stripe_port = stripe_port
        self._commitment_months = commitment_months
        self._retry_attempts = retry_attempts
        self._retry_delay_seconds = retry_delay_seconds

    def create(
        self,
        *,
        customer_id: str,
        price_id: str,
        coupon_id: str | None,
        metadata: dict[str, str],
    ) -> ScheduleResult:
        end_date = utcnow() + timedelta(days=DAYS_PER_COMMITMENT_MONTH * self._commitment_months)
        schedule = self._stripe_port.create_subscription_schedule(
            customer_id=customer_id,
            price_id=price_id,
            coupon_id=coupon_id,
            end_date=end_date,
            metadata={**metadata, "commitment_months": str(self._commitment_months)},
        )
        if not schedule.subscription_id:
            raise BillingError("Subscription not created by schedule.")

        subscription = self._stripe_port.retrieve_subscription(subscription_id=schedule.subscription_id)
        logger.info(
            "schedule: created schedule_id=%s subscription_id=%s coupon_id=%s",
            schedule.id,
            subscription.id,
            coupon_id,
        )
        return ScheduleResult(schedule=schedule, subscription=subscription)

    def configure_subscription(self, *, subscription: StripeSubscriptionData, metadata: dict[str, str]) -> None:
        """Tag the subscription and enable tax and payment-method reuse for renewals."""
        merged = {
            **subscription.metadata,
            **metadata,
            "commitment_months": str(self._commitment_months),
        }
        try:
            retry_call(
                lambda: self._stripe_port.update_subscription_settings(
                    subscription_id=subscription.id,
                    metadata=merged,
                ),
                attempts=self._retry_attempts,
                delay_seconds=self._retry_delay_seconds,
                is_retryable=lambda exc: isinstance(exc, PaymentProviderError),
                label="subscription_metadata_update",
            )
        except PaymentProviderError as exc:
            logger.error(
                "schedule: metadata_update_failed subscription_id=%s error=%s",
                subscription.id,
                exc,
            )
            raise CheckoutError(
                CheckoutErrorCode.SUBSCRIPTION_METADATA_UPDATE_FAILED,
                "Failed to update subscription metadata. Please try again.",
            ) from exc
