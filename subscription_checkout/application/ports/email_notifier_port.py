from __future__ import annotations

from datetime import datetime
from typing import Protocol


class EmailNotifierPort(Protocol):
    def send_payment_notification(
        self,
        *,
        submission_id: str,
        business_name: str,
        email: str,
        amount: int,
        currency: str,
        payment_id: str,
        additional_languages: list[str],
    ) -> None:
        ...

    def send_payment_success_confirmation(
        self,
        *,
        email: str,
        business_name: str,
        amount: int,
        currency: str,
        locale: str,
    ) -> None:
        ...

    def send_cancellation_confirmation(self, *, email: str, business_name: str, locale: str) -> None:
        ...

    def send_cancellation_notification(
        self,
        *,
        submission_id: str,
        business_name: str,
        email: str,
        subscription_id: str,
        canceled_at: datetime,
    ) -> None:
        ...
