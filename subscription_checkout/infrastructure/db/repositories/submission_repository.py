from __future__ import annotations

import json
from datetime import datetime
from typing import Any, Mapping
from uuid import UUID

from sqlalchemy import text
from sqlalchemy.exc import IntegrityError, SQLAlchemyError

from subscription_checkout.application.ports.submission_port import SubmissionPort
from subscription_checkout.domain.exceptions import (
    AnalyticsSessionMissingError,
    AnalyticsWriteError,
    SubmissionNotFoundError,
    SubmissionPersistenceError,
)
from subscription_checkout.infrastructure.db.mappers.submission_mapper import map_row_to_submission
from subscription_checkout.infrastructure.db.models.onboarding import JSON_COLUMNS, SUBMISSION_PAYMENT_COLUMNS


FOREIGN_KEY_VIOLATION = "23503"

SUBMISSION_COLUMNS = """
    id, session_id, status, email, business_name, form_data, metadata,
    stripe_customer_id, stripe_subscription_id, stripe_subscription_schedule_id,
    stripe_payment_id, stripe_invoice_id, payment_amount, currency,
    discount_code, discount_amount, payment_completed_at, payment_metadata,
    payment_summary, payment_tax_amount, payment_tax_currency, created_at, updated_at
"""


def _is_uuid(value: str) -> bool:
    try:
        UUID(str(value))
    except ValueError:
        return False
    return True


def _sqlstate(exc: SQLAlchemyError) -> str | None:
    orig = getattr(exc, "orig", None)
    return getattr(orig, "sqlstate", None) or getattr(orig, "pgcode", None)


class SqlSubmissionRepository(SubmissionPort):
    def __init__(self, engine):
        self._engine = engine

    def get_submission_by_id(self, *, submission_id: str):
        if not _is_uuid(submission_id):
            return None
        sql = f"""
            SELECT {SUBMISSION_COLUMNS}
            FROM public.onboarding_submissions
            WHERE id = :submission_id
            LIMIT 1
        """
        return self._fetch_one(sql, {"submission_id": submission_id})

    def find_submission_by_schedule_id(self, *, schedule_id: str):
        sql = f"""
            SELECT {SUBMISSION_COLUMNS}
            FROM public.onboarding_submissions
            WHERE stripe_subscription_schedule_id = :schedule_id
            ORDER BY created_at DESC
            LIMIT 1
        """
        return self._fetch_one(sql, {"schedule_id": schedule_id})

    def find_submission_by_customer_id(self, *, customer_id: str):
        sql = f"""
            SELECT {SUBMISSION_COLUMNS}
            FROM public.onboarding_submissions
            WHERE stripe_customer_id = :customer_id
            ORDER BY created_at DESC
            LIMIT 1
        """
        return self._fetch_one(sql, {"customer_id": customer_id})

    def find_submission_by_subscription_id(self, *, subscription_id: str):
        sql = f"""
            SELECT {SUBMISSION_COLUMNS}
            FROM public.onboarding_submissions
            WHERE stripe_subscription_id = :subscription_id
            ORDER BY created_at DESC
            LIMIT 1
        """
        return self._fetch_one(sql, {"subscription_id": subscription_id})

    def find_submission_by_payment_id(self, *, payment_id: str):
        sql = f"""
            SELECT {SUBMISSION_COLUMNS}
            FROM public.onboarding_submissions
            WHERE stripe_payment_id = :payment_id
            ORDER BY created_at DESC
            LIMIT 1
        """
        return self._fetch_one(sql, {"payment_id": payment_id})

    def update_submission(self, *, submission_id: str, values: Mapping[str, Any]) -> None:
        unknown = set(values) - SUBMISSION_PAYMENT_COLUMNS
        if unknown:
            raise ValueError(f"Unsupported submission columns: {', '.join(sorted(unknown))}")
        if not values:
            return

        assignments = []
        params: dict[str, Any] = {"submission_id": submission_id}
        for column in sorted(values):
            value = values[column]
            if column in JSON_COLUMNS:
                assignments.append(f"{column} = CAST(:{column} AS jsonb)")
                params[column] = None if value is None else json.dumps(value, default=str)
            else:
                assignments.append(f"{column} = :{column}")
                params[column] = value

        sql = f"""
            UPDATE public.onboarding_submissions
            SET {", ".join(assignments)},
                updated_at = now()
            WHERE id = :submission_id
        """
        try:
            with self._engine.begin() as conn:
                result = conn.execute(text(sql), params)
        except SQLAlchemyError as exc:
            raise SubmissionPersistenceError(f"Failed to update submission {submission_id}.") from exc
        if result.rowcount == 0:
            raise SubmissionNotFoundError(f"Submission {submission_id} not found.")

    def count_analytics_events(self, *, session_id: str, event_type: str, since: datetime) -> int:
        sql = """
            SELECT COUNT(*) AS total
            FROM public.onboarding_analytics
            WHERE session_id = :session_id
              AND event_type = :event_type
              AND created_at >= :since
        """
        with self._engine.connect() as conn:
            row = conn.execute(
                text(sql),
                {"session_id": session_id, "event_type": event_type, "since": since},
            ).mappings().one()
        return int(row["total"])

    def insert_analytics_event(
        self,
        *,
        session_id: str | None,
        event_type: str,
        event_data: dict[str, Any],
    ) -> None:
        sql = """
            INSERT INTO public.onboarding_analytics (session_id, event_type, category, metadata)
            VALUES (:session_id, :event_type, 'system_event', CAST(:metadata AS jsonb))
        """
        params = {
            "session_id": session_id,
            "event_type": event_type,
            "metadata": json.dumps(event_data, default=str),
        }
        try:
            with self._engine.begin() as conn:
                conn.execute(text(sql), params)
        except IntegrityError as exc:
            if _sqlstate(exc) == FOREIGN_KEY_VIOLATION:
                raise AnalyticsSessionMissingError(f"Session {session_id} no longer exists.") from exc
            raise AnalyticsWriteError(f"Failed to record {event_type}.") from exc
        except SQLAlchemyError as exc:
            raise AnalyticsWriteError(f"Failed to record {event_type}.") from exc

    def _fetch_one(self, sql: str, params: dict[str, Any]):
        with self._engine.connect() as conn:
            row = conn.execute(text(sql), params).mappings().first()
        if row is None:
            return None
        return map_row_to_submission(row)
