from __future__ import annotations

import json
from typing import Any, Mapping

from subscription_checkout.domain.entities.submission import Submission


def _as_str(value: Any) -> str:
    return str(value)


def _optional_str(value: Any) -> str | None:
    return None if value is None else str(value)


def _json_dict(value: Any) -> dict[str, Any] | None:
    if value is None:
        return None
    if isinstance(value, (str, bytes)):
        value = json.loads(value)
    return dict(value)


def map_row_to_submission(row: Mapping[str, Any]) -> Submission:
    return Submission(
        id=_as_str(row["id"]),
        session_id=_optional_str(row.get("session_id")),
        status=row["status"],
        email=row.get("email"),
        business_name=row.get("business_name"),
        form_data=_json_dict(row.get("form_data")) or {},
        metadata=_json_dict(row.get("metadata")) or {},
        stripe_customer_id=row.get("stripe_customer_id"),
        stripe_subscription_id=row.get("stripe_subscription_id"),
        stripe_subscription_schedule_id=row.get("stripe_subscription_schedule_id"),
        stripe_payment_id=row.get("stripe_payment_id"),
        stripe_invoice_id=row.get("stripe_invoice_id"),
        payment_amount=row.get("payment_amount"),
        currency=row.get("currency"),
        discount_code=row.get("discount_code"),
        discount_amount=row.get("discount_amount"),
        payment_completed_at=row.get("payment_completed_at"),
        payment_metadata=_json_dict(row.get("payment_metadata")),
        payment_summary=_json_dict(row.get("payment_summary")),
        payment_tax_amount=row.get("payment_tax_amount"),
        payment_tax_currency=row.get("payment_tax_currency"),
        created_at=row.get("created_at"),
        updated_at=row.get("updated_at"),
    )
