from __future__ import annotations

from functools import lru_cache

from fastapi import HTTPException

from subscription_checkout.application.use_cases.build_subscription_schedule import SubscriptionScheduleBuilder
from subscription_checkout.application.use_cases.create_checkout import CreateCheckoutUseCase
from subscription_checkout.application.use_cases.finalize_invoice import InvoiceFinalizer
from subscription_checkout.application.use_cases.preview_pricing import PreviewPricingUseCase
from subscription_checkout.application.use_cases.process_stripe_webhook import ProcessStripeWebhookUseCase
from subscription_checkout.application.use_cases.resolve_customer import CustomerResolver
from subscription_checkout.application.use_cases.submission_lookup import SubmissionLookup
from subscription_checkout.application.use_cases.validate_discount import (
    DiscountValidator,
    ValidateDiscountCodeUseCase,
)
from subscription_checkout.infrastructure.clients.resend_email_client import (
    ResendEmailClient,
    ResendEmailClientSettings,
)
from subscription_checkout.infrastructure.clients.stripe_client import StripeClient
from subscription_checkout.infrastructure.db.engine import get_engine
from subscription_checkout.infrastructure.db.repositories.submission_repository import SqlSubmissionRepository
from subscription_checkout.infrastructure.db.repositories.webhook_event_repository import SqlWebhookEventRepository
from subscription_checkout.shared.config import get_settings


def _get_db_engine():
    settings = get_settings()
    if not settings.postgres_dsn:
        raise HTTPException(status_code=500, detail="POSTGRES_DSN is required.")
    return get_engine(settings.postgres_dsn)


@lru_cache(maxsize=1)
def _get_stripe_client() -> StripeClient:
    settings = get_settings()
    if not settings.stripe_secret_key:
        raise HTTPException(status_code=500, detail="STRIPE_SECRET_KEY is required.")
    if not settings.stripe_webhook_secret:
        raise HTTPException(status_code=500, detail="STRIPE_WEBHOOK_SECRET is required.")
    return StripeClient(
        secret_key=settings.stripe_secret_key,
        webhook_secret=settings.stripe_webhook_secret,
        api_version=settings.stripe_api_version,
    )


@lru_cache(maxsize=1)
def _get_email_client() -> ResendEmailClient:
    settings = get_settings()
    return ResendEmailClient(
        ResendEmailClientSettings(
            api_key=settings.resend_api_key,
            api_base=settings.resend_api_base,
            sender=settings.email_from,
            admin_email=settings.admin_email,
            timeout_seconds=settings.email_timeout_seconds,
        )
    )


def _require_price_ids() -> tuple[str, str]:
    settings = get_settings()
    if not settings.base_package_price_id or not settings.language_addon_price_id:
        raise HTTPException(
            status_code=500,
            detail="STRIPE_BASE_PACKAGE_PRICE_ID and STRIPE_LANGUAGE_ADDON_PRICE_ID are required.",
        )
    return settings.base_package_price_id, settings.language_addon_price_id


def _get_submission_repository() -> SqlSubmissionRepository:
    return SqlSubmissionRepository(_get_db_engine())


def _get_discount_validator() -> DiscountValidator:
    return DiscountValidator(stripe_port=_get_stripe_client())


def get_create_checkout_use_case() -> CreateCheckoutUseCase:
    settings = get_settings()
    base_price_id, addon_price_id = _require_price_ids()
    stripe_port = _get_stripe_client()
    submission_port = _get_submission_repository()
    return CreateCheckoutUseCase(
        stripe_port=stripe_port,
        submission_port=submission_port,
        customer_resolver=CustomerResolver(stripe_port=stripe_port),
        discount_validator=_get_discount_validator(),
        schedule_builder=SubscriptionScheduleBuilder(
            stripe_port=stripe_port,
            commitment_months=settings.commitment_months,
            retry_attempts=settings.retry_attempts,
            retry_delay_seconds=settings.retry_delay_seconds,
        ),
        invoice_finalizer=InvoiceFinalizer(
            stripe_port=stripe_port,
            submission_port=submission_port,
            base_price_id=base_price_id,
            addon_price_id=addon_price_id,
            retry_attempts=settings.retry_attempts,
            retry_delay_seconds=settings.retry_delay_seconds,
        ),
        base_price_id=base_price_id,
        max_attempts=settings.checkout_max_attempts,
        attempt_window_seconds=settings.checkout_attempt_window_seconds,
        retry_attempts=settings.retry_attempts,
        retry_delay_seconds=settings.retry_delay_seconds,
    )


def get_process_stripe_webhook_use_case() -> ProcessStripeWebhookUseCase:
    stripe_port = _get_stripe_client()
    submission_port = _get_submission_repository()
    return ProcessStripeWebhookUseCase(
        stripe_port=stripe_port,
        submission_port=submission_port,
        webhook_event_port=SqlWebhookEventRepository(_get_db_engine()),
        email_notifier=_get_email_client(),
        submission_lookup=SubmissionLookup(submission_port=submission_port, stripe_port=stripe_port),
    )


def get_validate_discount_code_use_case() -> ValidateDiscountCodeUseCase:
    return ValidateDiscountCodeUseCase(discount_validator=_get_discount_validator())


def get_preview_pricing_use_case() -> PreviewPricingUseCase:
    base_price_id, addon_price_id = _require_price_ids()
    return PreviewPricingUseCase(
        stripe_port=_get_stripe_client(),
        discount_validator=_get_discount_validator(),
        base_price_id=base_price_id,
        addon_price_id=addon_price_id,
    )
