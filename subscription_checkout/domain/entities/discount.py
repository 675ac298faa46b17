from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal
from typing import Literal

from subscription_checkout.domain.exceptions import DiscountDescriptorError


DiscountDuration = Literal["once", "forever", "repeating"]


@dataclass(frozen=True)
class DiscountDescriptor:
    """Cupom normalizado (percent_off XOR amount_off)."""

    coupon_id: str
    code: str
    promotion_code_id: str | None
    percent_off: Decimal | None
    amount_off: int | None
    currency: str | None
    duration: DiscountDuration
    duration_in_months: int | None
    applies_to_products: tuple[str, ...] = ()

    def __post_init__(self) -> None:
        if (self.percent_off is None) == (self.amount_off is None):
            raise DiscountDescriptorError("Coupon must define exactly one of percent_off or amount_off.")
        if self.percent_off is not None and not (Decimal("0") < self.percent_off <= Decimal("100")):
            raise DiscountDescriptorError("percent_off must be in (0, 100].")
        if self.amount_off is not None and self.amount_off <= 0:
            raise DiscountDescriptorError("amount_off must be positive.")
        if self.duration not in ("once", "forever", "repeating"):
            raise DiscountDescriptorError(f"Unsupported coupon duration: {self.duration}.")
        if self.duration == "repeating" and not self.duration_in_months:
            raise DiscountDescriptorError("Repeating coupons require duration_in_months.")
        if self.duration != "repeating" and self.duration_in_months is not None:
            raise DiscountDescriptorError("duration_in_months is only valid for repeating coupons.")

    @property
    def restricted_to_base(self) -> bool:
        return bool(self.applies_to_products)

    def as_metadata(self) -> dict:
        return {
            "coupon_id": self.coupon_id,
            "code": self.code,
            "promotion_code_id": self.promotion_code_id,
            "percent_off": float(self.percent_off) if self.percent_off is not None else None,
            "amount_off": self.amount_off,
            "currency": self.currency,
            "duration": self.duration,
            "duration_in_months": self.duration_in_months,
            "restricted_to_base": self.restricted_to_base,
        }
