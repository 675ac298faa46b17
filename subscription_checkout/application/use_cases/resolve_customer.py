from __future__ import annotations

import logging

from subscription_checkout.application.ports.stripe_port import StripePort
from subscription_checkout.application.use_cases.billing_common import customer_idempotency_key, normalize_email


logger = logging.getLogger(__name__)

SIGNUP_SOURCE = "web_onboarding"


class CustomerResolver:
    def __init__(self, *, stripe_port: StripePort):
        self._stripe_port = stripe_port

    def find_or_create(self, *, email: str, display_name: str, metadata: dict[str, str]) -> str:
        email = normalize_email(email)
        existing = self._stripe_port.find_customer_by_email(email=email)
        if existing is not None:
            merged = {**existing.metadata, **metadata, "signup_source": SIGNUP_SOURCE}
            if merged != existing.metadata:
                self._stripe_port.update_customer_metadata(customer_id=existing.id, metadata=merged)
            logger.info("customer: reused customer_id=%s", existing.id)
            return existing.id

        create_metadata = {**metadata, "signup_source": SIGNUP_SOURCE}
        customer = self._stripe_port.create_customer(
            email=email,
            name=display_name,
            metadata=create_metadata,
            idempotency_key=customer_idempotency_key(
                email=email,
                name=display_name,
                metadata=create_metadata,
            ),
        )
        logger.info("customer: created customer_id=%s", customer.id)
        return customer.id
