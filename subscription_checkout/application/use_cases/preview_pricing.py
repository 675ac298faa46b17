from __future__ import annotations

import logging

from subscription_checkout.application.dto.checkout import PreviewPricingInput, PreviewPricingOutput
from subscription_checkout.application.ports.stripe_port import StripePort
from subscription_checkout.application.use_cases.validate_discount import DiscountValidator
from subscription_checkout.domain.entities.add_on import invalid_language_codes
from subscription_checkout.domain.entities.submission import unique_codes
from subscription_checkout.domain.exceptions import BillingError, CheckoutError, CheckoutErrorCode
from subscription_checkout.domain.services.pricing_preview import calculate_pricing_preview


logger = logging.getLogger(__name__)


class PreviewPricingUseCase:
    def __init__(
        self,
        *,
        stripe_port: StripePort,
        discount_validator: DiscountValidator,
        base_price_id: str,
        addon_price_id: str,
    ):
        self._stripe_port = stripe_port
        self._discount_validator = discount_validator
        self._base_price_id = base_price_id
        self._addon_price_id = addon_price_id

    def execute(self, command: PreviewPricingInput) -> PreviewPricingOutput:
        codes = unique_codes(command.additional_languages)
        invalid = invalid_language_codes(codes)
        if invalid:
            raise CheckoutError(
                CheckoutErrorCode.INVALID_LANGUAGE_CODE,
                f"Invalid language codes: {', '.join(invalid)}",
            )

        discount = None
        if command.discount_code:
            discount = self._discount_validator.validate(command.discount_code)
            if discount is None:
                raise CheckoutError(CheckoutErrorCode.INVALID_DISCOUNT_CODE, "Invalid discount code.")

        base_price = self._stripe_port.retrieve_price(price_id=self._base_price_id)
        addon_price = self._stripe_port.retrieve_price(price_id=self._addon_price_id)
        if base_price.unit_amount is None or addon_price.unit_amount is None:
            raise BillingError("Configured prices must have a unit amount.")

        preview = calculate_pricing_preview(
            base_price=base_price.unit_amount,
            addon_unit_price=addon_price.unit_amount,
            addon_count=len(codes),
            discount=discount,
        )
        logger.info(
            "pricing: preview addon_count=%s coupon_id=%s due_today=%s",
            len(codes),
            discount.coupon_id if discount else None,
            preview.due_today,
        )
        return PreviewPricingOutput(
            preview=preview,
            currency=(base_price.currency or "eur").lower(),
            base_price=base_price.unit_amount,
            addon_unit_price=addon_price.unit_amount,
            addon_count=len(codes),
            discount=discount,
        )
