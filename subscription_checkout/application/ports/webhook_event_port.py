from __future__ import annotations

from typing import Literal, Protocol


WebhookEventStatus = Literal["processing", "completed", "failed", "unmatched"]
WebhookClaim = Literal["claimed", "duplicate", "in_flight"]


class WebhookEventPort(Protocol):
    def claim_webhook_event(self, *, event_id: str, event_type: str) -> WebhookClaim:
        ...

    def mark_webhook_event(
        self,
        *,
        event_id: str,
        status: WebhookEventStatus,
        error_message: str | None = None,
    ) -> None:
        ...
