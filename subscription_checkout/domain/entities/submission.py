from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Literal


SubmissionStatus = Literal["draft", "submitted", "paid", "cancelled"]


@dataclass(frozen=True)
class Submission:
    id: str
    session_id: str | None
    status: SubmissionStatus
    email: str | None
    business_name: str | None
    form_data: dict[str, Any] = field(default_factory=dict)
    metadata: dict[str, Any] = field(default_factory=dict)
    stripe_customer_id: str | None = None
    stripe_subscription_id: str | None = None
    stripe_subscription_schedule_id: str | None = None
    stripe_payment_id: str | None = None
    stripe_invoice_id: str | None = None
    payment_amount: int | None = None
    currency: str | None = None
    discount_code: str | None = None
    discount_amount: int | None = None
    payment_completed_at: datetime | None = None
    payment_metadata: dict[str, Any] | None = None
    payment_summary: dict[str, Any] | None = None
    payment_tax_amount: int | None = None
    payment_tax_currency: str | None = None
    created_at: datetime | None = None
    updated_at: datetime | None = None


# Form data layout changed over time; newer keys first.
def customer_email(submission: Submission) -> str | None:
    form = submission.form_data or {}
    step3 = form.get("step3") or {}
    return form.get("email") or form.get("businessEmail") or step3.get("businessEmail") or submission.email


def customer_business_name(submission: Submission) -> str | None:
    form = submission.form_data or {}
    step3 = form.get("step3") or {}
    return form.get("businessName") or step3.get("businessName") or submission.business_name


def selected_language_codes(submission: Submission) -> list[str]:
    form = submission.form_data or {}
    step13 = form.get("step13") or {}
    raw = step13.get("additionalLanguages") or form.get("additionalLanguages") or []
    return unique_codes(raw)


def customer_locale(submission: Submission) -> str:
    locale = (submission.metadata or {}).get("locale")
    return locale if locale in {"en", "it"} else "en"


def unique_codes(raw: Any) -> list[str]:
    if not isinstance(raw, (list, tuple)):
        return []
    seen: list[str] = []
    for code in raw:
        if isinstance(code, str) and code not in seen:
            seen.append(code)
    return seen
