from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Callable

from subscription_checkout.application.ports.stripe_port import StripePort
from subscription_checkout.application.ports.submission_port import SubmissionPort
from subscription_checkout.domain.entities.submission import Submission
from subscription_checkout.domain.exceptions import PaymentProviderError


logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class LookupKeys:
    schedule_id: str | None = None
    customer_id: str | None = None
    subscription_id: str | None = None
    submission_id: str | None = None
    payment_intent_id: str | None = None


@dataclass(frozen=True)
class LookupResult:
    submission: Submission
    found_by: str


LookupStrategy = Callable[[LookupKeys], "Submission | None"]


class SubmissionLookup:
    """Ordered strategies for mapping provider ids back to a submission; first hit wins."""

    def __init__(self, *, submission_port: SubmissionPort, stripe_port: StripePort):
        self._submission_port = submission_port
        self._stripe_port = stripe_port
        self.strategies: list[tuple[str, LookupStrategy]] = [
            ("schedule_id", self.by_schedule_id),
            ("customer_id", self.by_customer_id),
            ("subscription_id", self.by_subscription_id),
            ("metadata", self.by_metadata),
            ("payment_intent", self.by_payment_intent),
        ]

    def find(self, keys: LookupKeys) -> LookupResult | None:
        for name, strategy in self.strategies:
            submission = strategy(keys)
            if submission is not None:
                logger.info("lookup: matched found_by=%s submission_id=%s", name, submission.id)
                return LookupResult(submission=submission, found_by=name)
        return None

    def by_schedule_id(self, keys: LookupKeys) -> Submission | None:
        if not keys.schedule_id:
            return None
        return self._submission_port.find_submission_by_schedule_id(schedule_id=keys.schedule_id)

    def by_customer_id(self, keys: LookupKeys) -> Submission | None:
        if not keys.customer_id:
            return None
        return self._submission_port.find_submission_by_customer_id(customer_id=keys.customer_id)

    def by_subscription_id(self, keys: LookupKeys) -> Submission | None:
        if not keys.subscription_id:
            return None
        return self._submission_port.find_submission_by_subscription_id(subscription_id=keys.subscription_id)

    def by_metadata(self, keys: LookupKeys) -> Submission | None:
        if not keys.submission_id:
            return None
        return self._submission_port.get_submission_by_id(submission_id=keys.submission_id)

    def by_payment_intent(self, keys: LookupKeys) -> Submission | None:
        if not keys.payment_intent_id:
            return None
        try:
            payment_intent = self._stripe_port.retrieve_payment_intent(payment_intent_id=keys.payment_intent_id)
        except PaymentProviderError as exc:
            logger.warning(
                "lookup: payment_intent_unavailable payment_intent_id=%s error=%s",
                keys.payment_intent_id,
                exc,
            )
            return None

        if payment_intent.customer_id and payment_intent.customer_id != keys.customer_id:
            submission = self._submission_port.find_submission_by_customer_id(customer_id=payment_intent.customer_id)
            if submission is not None:
                return submission

        submission_id = payment_intent.metadata.get("submission_id")
        if submission_id:
            return self._submission_port.get_submission_by_id(submission_id=submission_id)
        return None
