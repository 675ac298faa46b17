from __future__ import annotations

from dataclasses import dataclass, field
from typing import Literal


RecurringDescription = Literal["full_price", "discounted", "discounted_then_full"]


@dataclass(frozen=True)
class PricingPreview:
    subtotal: int
    due_today: int
    discount_amount: int
    recurring_amount: int
    recurring_discount: int
    recurring_description: RecurringDescription
    discounted_months: int | None = None


@dataclass(frozen=True)
class PricingLineItem:
    id: str
    description: str
    amount: int
    original_amount: int
    quantity: int
    discount_amount: int
    is_recurring: bool


@dataclass(frozen=True)
class PricingSummary:
    subtotal: int
    total: int
    discount_amount: int
    recurring_amount: int
    recurring_discount: int
    tax_amount: int
    currency: str
    line_items: list[PricingLineItem] = field(default_factory=list)

    def as_dict(self) -> dict:
        return {
            "subtotal": self.subtotal,
            "total": self.total,
            "discountAmount": self.discount_amount,
            "recurringAmount": self.recurring_amount,
            "recurringDiscount": self.recurring_discount,
            "taxAmount": self.tax_amount,
            "currency": self.currency,
            "lineItems": [
                {
                    "id": item.id,
                    "description": item.description,
                    "amount": item.amount,
                    "originalAmount": item.original_amount,
                    "quantity": item.quantity,
                    "discountAmount": item.discount_amount,
                    "isRecurring": item.is_recurring,
                }
                for item in self.line_items
            ],
        }
