from __future__ import annotations

from decimal import ROUND_HALF_UP, Decimal

from subscription_checkout.domain.entities.discount import DiscountDescriptor
from subscription_checkout.domain.entities.pricing import PricingPreview
from subscription_checkout.domain.exceptions import PricingInputError


def round_minor_units(value: Decimal) -> int:
    return int(value.quantize(Decimal("1"), rounding=ROUND_HALF_UP))


def discount_for_amount(
    amount: int,
    *,
    percent_off: Decimal | None,
    amount_off: int | None,
) -> int:
    if amount <= 0:
        return 0
    if percent_off is not None:
        return min(amount, round_minor_units(Decimal(amount) * Decimal(percent_off) / Decimal("100")))
    if amount_off is not None:
        return min(amount, amount_off)
    return 0


def calculate_pricing_preview(
    *,
    base_price: int,
    addon_unit_price: int,
    addon_count: int,
    discount: DiscountDescriptor | None,
    restricted_to_base: bool | None = None,
) -> PricingPreview:
    """Compute what the customer pays today and on each renewal.

    Add-ons are one-time charges on the first invoice; only the base price
    recurs. ``restricted_to_base`` defaults to the coupon's own product
    restriction when not given explicitly.
    """
    if base_price < 0 or addon_unit_price < 0:
        raise PricingInputError("Prices must be non-negative.")
    if addon_count < 0:
        raise PricingInputError("addon_count must be non-negative.")

    subtotal = base_price + addon_unit_price * addon_count
    if discount is None:
        return PricingPreview(
            subtotal=subtotal,
            due_today=subtotal,
            discount_amount=0,
            recurring_amount=base_price,
            recurring_discount=0,
            recurring_description="full_price",
        )

    if restricted_to_base is None:
        restricted_to_base = discount.restricted_to_base
    discountable = base_price if restricted_to_base else subtotal
    discount_amount = discount_for_amount(
        discountable,
        percent_off=discount.percent_off,
        amount_off=discount.amount_off,
    )
    due_today = subtotal - discount_amount

    if discount.duration == "once":
        return PricingPreview(
            subtotal=subtotal,
            due_today=due_today,
            discount_amount=discount_amount,
            recurring_amount=base_price,
            recurring_discount=0,
            recurring_description="full_price",
        )

    recurring_discount = discount_for_amount(
        base_price,
        percent_off=discount.percent_off,
        amount_off=discount.amount_off,
    )
    if discount.duration == "forever":
        return PricingPreview(
            subtotal=subtotal,
            due_today=due_today,
            discount_amount=discount_amount,
            recurring_amount=base_price - recurring_discount,
            recurring_discount=recurring_discount,
            recurring_description="discounted",
        )

    # repeating: the first invoice consumes one of the discounted months
    return PricingPreview(
        subtotal=subtotal,
        due_today=due_today,
        discount_amount=discount_amount,
        recurring_amount=base_price - recurring_discount,
        recurring_discount=recurring_discount,
        recurring_description="discounted_then_full",
        discounted_months=discount.duration_in_months,
    )
