from __future__ import annotations

from datetime import datetime
from typing import Any, Mapping, Protocol

from subscription_checkout.domain.entities.submission import Submission


class SubmissionPort(Protocol):
    def get_submission_by_id(self, *, submission_id: str) -> Submission | None:
        ...

    def find_submission_by_schedule_id(self, *, schedule_id: str) -> Submission | None:
        ...

    def find_submission_by_customer_id(self, *, customer_id: str) -> Submission | None:
        ...

    def find_submission_by_subscription_id(self, *, subscription_id: str) -> Submission | None:
        ...

    def find_submission_by_payment_id(self, *, payment_id: str) -> Submission | None:
        ...

    def update_submission(self, *, submission_id: str, values: Mapping[str, Any]) -> None:
        ...

    def count_analytics_events(self, *, session_id: str, event_type: str, since: datetime) -> int:
        ...

    def insert_analytics_event(
        self,
        *,
        session_id: str | None,
        event_type: str,
        event_data: dict[str, Any],
    ) -> None:
        ...
