from __future__ import annotations

from decimal import Decimal

import pytest

from subscription_checkout.application.dto.checkout import ValidateDiscountInput
from subscription_checkout.application.dto.stripe import StripePromotionCodeData
from subscription_checkout.application.use_cases.validate_discount import (
    DiscountValidator,
    ValidateDiscountCodeUseCase,
)
from subscription_checkout.domain.exceptions import PaymentProviderError
from tests.fakes import FakeStripePort, make_coupon


def _stripe_with_promotion(code: str = "WELCOME10", coupon_id: str | None = "coupon_10") -> FakeStripePort:
    stripe = FakeStripePort()
    stripe.coupons["coupon_10"] = make_coupon("coupon_10", percent_off="10")
    stripe.promotion_codes[code] = StripePromotionCodeData(id="promo_1", code=code, active=True, coupon_id=coupon_id)
    return stripe


def test_promotion_code_resolves_to_descriptor():
    validator = DiscountValidator(stripe_port=_stripe_with_promotion())

    descriptor = validator.validate("  WELCOME10 ")

    assert descriptor is not None
    assert descriptor.coupon_id == "coupon_10"
    assert descriptor.promotion_code_id == "promo_1"
    assert descriptor.percent_off == Decimal("10")
    assert descriptor.duration == "once"


def test_raw_coupon_id_is_accepted_when_no_promotion_code_matches():
    stripe = FakeStripePort()
    stripe.coupons["FOREVER20"] = make_coupon("FOREVER20", percent_off="20", duration="forever")
    validator = DiscountValidator(stripe_port=stripe)

    descriptor = validator.validate("FOREVER20")

    assert descriptor is not None
    assert descriptor.promotion_code_id is None
    assert descriptor.duration == "forever"


def test_unknown_code_is_invalid():
    validator = DiscountValidator(stripe_port=FakeStripePort())

    assert validator.validate("NOPE") is None


def test_blank_code_is_invalid_without_provider_calls():
    stripe = FakeStripePort()
    validator = DiscountValidator(stripe_port=stripe)

    assert validator.validate("   ") is None
    assert stripe.calls == []


def test_expired_coupon_is_invalid():
    stripe = FakeStripePort()
    stripe.coupons["OLD"] = make_coupon("OLD", valid=False)

    assert DiscountValidator(stripe_port=stripe).validate("OLD") is None


def test_promotion_without_coupon_is_invalid():
    validator = DiscountValidator(stripe_port=_stripe_with_promotion(coupon_id=None))

    assert validator.validate("WELCOME10") is None


def test_malformed_coupon_is_invalid():
    stripe = FakeStripePort()
    stripe.coupons["BROKEN"] = make_coupon("BROKEN", percent_off=None, amount_off=None)

    assert DiscountValidator(stripe_port=stripe).validate("BROKEN") is None


def test_provider_failure_propagates():
    stripe = FakeStripePort()
    stripe.errors["find_active_promotion_code"] = PaymentProviderError("stripe down")

    with pytest.raises(PaymentProviderError):
        DiscountValidator(stripe_port=stripe).validate("WELCOME10")


def test_use_case_reports_validity():
    use_case = ValidateDiscountCodeUseCase(discount_validator=DiscountValidator(stripe_port=_stripe_with_promotion()))

    valid = use_case.execute(ValidateDiscountInput(code="WELCOME10"))
    invalid = use_case.execute(ValidateDiscountInput(code="UNKNOWN"))

    assert valid.valid is True
    assert valid.discount.coupon_id == "coupon_10"
    assert invalid.valid is False
    assert invalid.discount is None
