from __future__ import annotations

import logging

from subscription_checkout.application.dto.checkout import ValidateDiscountInput, ValidateDiscountOutput
from subscription_checkout.application.dto.stripe import StripeCouponData
from subscription_checkout.application.ports.stripe_port import StripePort
from subscription_checkout.domain.entities.discount import DiscountDescriptor
from subscription_checkout.domain.exceptions import DiscountDescriptorError, ProviderResourceMissingError


logger = logging.getLogger(__name__)


class DiscountValidator:
    """Resolve a user-entered code to a discount descriptor.

    Promotion codes are tried first; the raw input is then treated as a coupon
    id. A missing resource means "invalid code"; any other provider failure
    propagates.
    """

    def __init__(self, *, stripe_port: StripePort):
        self._stripe_port = stripe_port

    def validate(self, code: str) -> DiscountDescriptor | None:
        code = (code or "").strip()
        if not code:
            return None

        try:
            promotion = self._stripe_port.find_active_promotion_code(code=code)
            if promotion is not None:
                if not promotion.coupon_id:
                    logger.warning("discount: promotion_without_coupon code=%s", code)
                    return None
                coupon = self._stripe_port.retrieve_coupon(coupon_id=promotion.coupon_id)
                return self._to_descriptor(coupon, code=code, promotion_code_id=promotion.id)

            coupon = self._stripe_port.retrieve_coupon(coupon_id=code)
        except ProviderResourceMissingError:
            logger.info("discount: unknown_code code=%s", code)
            return None

        return self._to_descriptor(coupon, code=code, promotion_code_id=None)

    def _to_descriptor(
        self,
        coupon: StripeCouponData,
        *,
        code: str,
        promotion_code_id: str | None,
    ) -> DiscountDescriptor | None:
        if not coupon.valid:
            logger.info("discount: coupon_not_valid code=%s coupon_id=%s", code, coupon.id)
            return None
        try:
            return DiscountDescriptor(
                coupon_id=coupon.id,
                code=code,
                promotion_code_id=promotion_code_id,
                percent_off=coupon.percent_off,
                amount_off=coupon.amount_off,
                currency=coupon.currency,
                duration=coupon.duration,
                duration_in_months=coupon.duration_in_months if coupon.duration == "repeating" else None,
                applies_to_products=coupon.applies_to_products,
            )
        except DiscountDescriptorError as exc:
            logger.warning("discount: malformed_coupon coupon_id=%s error=%s", coupon.id, exc)
            return None


class ValidateDiscountCodeUseCase:
    def __init__(self, *, discount_validator: DiscountValidator):
        self._discount_validator = discount_validator

    def execute(self, command: ValidateDiscountInput) -> ValidateDiscountOutput:
        descriptor = self._discount_validator.validate(command.code)
        return ValidateDiscountOutput(valid=descriptor is not None, discount=descriptor)
