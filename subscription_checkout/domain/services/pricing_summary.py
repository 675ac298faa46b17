from __future__ import annotations

from typing import TYPE_CHECKING

from subscription_checkout.domain.entities.discount import DiscountDescriptor
from subscription_checkout.domain.entities.pricing import PricingLineItem, PricingSummary
from subscription_checkout.domain.services.pricing_preview import discount_for_amount

if TYPE_CHECKING:
    from subscription_checkout.application.dto.stripe import StripeInvoiceData, StripeInvoiceLineData


DEFAULT_CURRENCY = "eur"


def _is_recurring_line(line: StripeInvoiceLineData, base_price_id: str | None) -> bool:
    if line.subscription_id or line.price_is_recurring or line.line_type == "subscription":
        return True
    if base_price_id and line.price_id == base_price_id:
        return True
    return "Base Package" in (line.description or "")


def summarize_invoice_line(line: StripeInvoiceLineData, *, base_price_id: str | None) -> PricingLineItem:
    discount = sum(line.discount_amounts)
    if line.amount_total is not None:
        final_amount = line.amount_total
        original_amount = final_amount + discount
    else:
        final_amount = max(line.amount - discount, 0)
        original_amount = line.amount

    if line.unit_amount:
        original_amount = max(original_amount, line.unit_amount * line.quantity)

    line_discount = discount if discount > 0 else max(original_amount - final_amount, 0)
    return PricingLineItem(
        id=line.id,
        description=line.description or "Line item",
        amount=final_amount,
        original_amount=original_amount,
        quantity=line.quantity,
        discount_amount=line_discount,
        is_recurring=_is_recurring_line(line, base_price_id),
    )


def build_pricing_summary(
    invoice: StripeInvoiceData,
    *,
    base_price_id: str | None,
    discount: DiscountDescriptor | None = None,
) -> PricingSummary:
    """Derive the display summary from a finalized invoice.

    The invoice is authoritative for what is due today. The renewal amount is
    the undiscounted recurring price with the coupon re-applied only when it
    outlives the first invoice.
    """
    items = [summarize_invoice_line(line, base_price_id=base_price_id) for line in invoice.lines]
    recurring = [item for item in items if item.is_recurring]

    tax_amount = invoice.total_tax_amount
    invoice_discount = invoice.total_discount_amount
    line_discount = sum(item.discount_amount for item in items)
    if invoice_discount > 0:
        discount_amount = invoice_discount
    elif line_discount > 0:
        discount_amount = line_discount
    else:
        discount_amount = max(invoice.subtotal + tax_amount - invoice.total, 0)

    recurring_original = sum(item.original_amount for item in recurring)
    recurring_discount = 0
    if discount is not None and discount.duration != "once":
        recurring_discount = discount_for_amount(
            recurring_original,
            percent_off=discount.percent_off,
            amount_off=discount.amount_off,
        )

    return PricingSummary(
        subtotal=invoice.subtotal,
        total=invoice.total,
        discount_amount=discount_amount,
        recurring_amount=recurring_original - recurring_discount,
        recurring_discount=recurring_discount,
        tax_amount=tax_amount,
        currency=invoice.currency or DEFAULT_CURRENCY,
        line_items=items,
    )
