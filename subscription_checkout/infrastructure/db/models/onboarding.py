from __future__ import annotations

from datetime import datetime
from uuid import UUID

from sqlalchemy import BigInteger, DateTime, ForeignKey, Integer, Text, text
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.dialects.postgresql import UUID as PGUUID
from sqlalchemy.orm import Mapped, mapped_column

from subscription_checkout.infrastructure.db.engine import Base


class OnboardingSessionModel(Base):
    __tablename__ = "onboarding_sessions"
    __table_args__ = ({"schema": "public"},)

    id: Mapped[UUID] = mapped_column(PGUUID(as_uuid=True), primary_key=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, server_default=text("now()"))


class OnboardingSubmissionModel(Base):
    __tablename__ = "onboarding_submissions"
    __table_args__ = ({"schema": "public"},)

    id: Mapped[UUID] = mapped_column(PGUUID(as_uuid=True), primary_key=True)
    session_id: Mapped[UUID | None] = mapped_column(
        PGUUID(as_uuid=True),
        ForeignKey("public.onboarding_sessions.id", ondelete="SET NULL"),
        nullable=True,
    )
    status: Mapped[str] = mapped_column(Text, nullable=False, server_default=text("'submitted'"))
    email: Mapped[str | None] = mapped_column(Text, nullable=True)
    business_name: Mapped[str | None] = mapped_column(Text, nullable=True)
    form_data: Mapped[dict] = mapped_column(JSONB, nullable=False, server_default=text("'{}'::jsonb"))
    metadata_: Mapped[dict | None] = mapped_column("metadata", JSONB, nullable=True)
    stripe_customer_id: Mapped[str | None] = mapped_column(Text, nullable=True, index=True)
    stripe_subscription_id: Mapped[str | None] = mapped_column(Text, nullable=True, index=True)
    stripe_subscription_schedule_id: Mapped[str | None] = mapped_column(Text, nullable=True, index=True)
    stripe_payment_id: Mapped[str | None] = mapped_column(Text, nullable=True, index=True)
    stripe_invoice_id: Mapped[str | None] = mapped_column(Text, nullable=True, index=True)
    payment_amount: Mapped[int | None] = mapped_column(BigInteger, nullable=True)
    currency: Mapped[str | None] = mapped_column(Text, nullable=True)
    discount_code: Mapped[str | None] = mapped_column(Text, nullable=True)
    discount_amount: Mapped[int | None] = mapped_column(BigInteger, nullable=True)
    payment_completed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    payment_metadata: Mapped[dict | None] = mapped_column(JSONB, nullable=True)
    payment_summary: Mapped[dict | None] = mapped_column(JSONB, nullable=True)
    payment_tax_amount: Mapped[int | None] = mapped_column(Integer, nullable=True)
    payment_tax_currency: Mapped[str | None] = mapped_column(Text, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, server_default=text("now()"))
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, server_default=text("now()"))


class OnboardingAnalyticsModel(Base):
    __tablename__ = "onboarding_analytics"
    __table_args__ = ({"schema": "public"},)

    id: Mapped[int] = mapped_column(BigInteger, primary_key=True, autoincrement=True)
    session_id: Mapped[UUID | None] = mapped_column(
        PGUUID(as_uuid=True),
        ForeignKey("public.onboarding_sessions.id", ondelete="CASCADE"),
        nullable=True,
    )
    event_type: Mapped[str] = mapped_column(Text, nullable=False)
    category: Mapped[str] = mapped_column(Text, nullable=False, server_default=text("'system_event'"))
    metadata_: Mapped[dict] = mapped_column("metadata", JSONB, nullable=False, server_default=text("'{}'::jsonb"))
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, server_default=text("now()"))


class StripeWebhookEventModel(Base):
    __tablename__ = "stripe_webhook_events"
    __table_args__ = ({"schema": "public"},)

    event_id: Mapped[str] = mapped_column(Text, primary_key=True)
    event_type: Mapped[str] = mapped_column(Text, nullable=False)
    status: Mapped[str] = mapped_column(Text, nullable=False, server_default=text("'processing'"))
    attempts: Mapped[int] = mapped_column(Integer, nullable=False, server_default=text("1"))
    error_message: Mapped[str | None] = mapped_column(Text, nullable=True)
    received_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, server_default=text("now()"))
    claimed_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, server_default=text("now()"))
    processed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)


# Columns the payment flows may write; everything else on the row belongs to onboarding.
SUBMISSION_PAYMENT_COLUMNS: frozenset[str] = frozenset(
    {
        "status",
        "form_data",
        "stripe_customer_id",
        "stripe_subscription_id",
        "stripe_subscription_schedule_id",
        "stripe_payment_id",
        "stripe_invoice_id",
        "payment_amount",
        "currency",
        "discount_code",
        "discount_amount",
        "payment_completed_at",
        "payment_metadata",
        "payment_summary",
        "payment_tax_amount",
        "payment_tax_currency",
    }
)
JSON_COLUMNS: frozenset[str] = frozenset(
    column.name
    for column in OnboardingSubmissionModel.__table__.columns
    if isinstance(column.type, JSONB)
)
