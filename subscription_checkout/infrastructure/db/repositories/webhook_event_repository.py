from __future__ import annotations

from sqlalchemy import text

from subscription_checkout.application.ports.webhook_event_port import (
    WebhookClaim,
    WebhookEventPort,
    WebhookEventStatus,
)


# A claim left in "processing" this long is assumed to belong to a crashed worker.
STALE_CLAIM_MINUTES = 10


class SqlWebhookEventRepository(WebhookEventPort):
    def __init__(self, engine):
        self._engine = engine

    def claim_webhook_event(self, *, event_id: str, event_type: str) -> WebhookClaim:
        claim_sql = f"""
            INSERT INTO public.stripe_webhook_events (event_id, event_type, status)
            VALUES (:event_id, :event_type, 'processing')
            ON CONFLICT (event_id) DO UPDATE
            SET status = 'processing',
                attempts = public.stripe_webhook_events.attempts + 1,
                error_message = NULL,
                claimed_at = now()
            WHERE public.stripe_webhook_events.status = 'failed'
               OR (
                    public.stripe_webhook_events.status = 'processing'
                    AND public.stripe_webhook_events.claimed_at < now() - interval '{STALE_CLAIM_MINUTES} minutes'
               )
            RETURNING event_id
        """
        status_sql = """
            SELECT status
            FROM public.stripe_webhook_events
            WHERE event_id = :event_id
        """
        with self._engine.begin() as conn:
            row = conn.execute(text(claim_sql), {"event_id": event_id, "event_type": event_type}).first()
            if row is not None:
                return "claimed"
            existing = conn.execute(text(status_sql), {"event_id": event_id}).scalar_one_or_none()
        return "in_flight" if existing == "processing" else "duplicate"

    def mark_webhook_event(
        self,
        *,
        event_id: str,
        status: WebhookEventStatus,
        error_message: str | None = None,
    ) -> None:
        sql = """
            UPDATE public.stripe_webhook_events
            SET status = :status,
                error_message = :error_message,
                processed_at = now()
            WHERE event_id = :event_id
        """
        with self._engine.begin() as conn:
            conn.execute(
                text(sql),
                {"event_id": event_id, "status": status, "error_message": error_message},
            )
