from __future__ import annotations

import logging
from dataclasses import asdict
from math import ceil
from uuid import UUID

from fastapi import APIRouter, Depends, Header, HTTPException, Request

from subscription_checkout.api.deps import (
    get_create_checkout_use_case,
    get_preview_pricing_use_case,
    get_process_stripe_webhook_use_case,
    get_validate_discount_code_use_case,
)
from subscription_checkout.api.schemas.billing import (
    CreateCheckoutRequest,
    CreateCheckoutResponse,
    DiscountResponse,
    PricingLineItemResponse,
    PricingPreviewRequest,
    PricingPreviewResponse,
    PricingSummaryResponse,
    StripeIdsResponse,
    StripeWebhookResponse,
    ValidateDiscountRequest,
    ValidateDiscountResponse,
)
from subscription_checkout.application.dto.checkout import (
    CreateCheckoutInput,
    PreviewPricingInput,
    ValidateDiscountInput,
)
from subscription_checkout.application.dto.webhook import StripeWebhookInput
from subscription_checkout.application.use_cases.billing_common import utcnow
from subscription_checkout.application.use_cases.create_checkout import CreateCheckoutUseCase
from subscription_checkout.application.use_cases.preview_pricing import PreviewPricingUseCase
from subscription_checkout.application.use_cases.process_stripe_webhook import ProcessStripeWebhookUseCase
from subscription_checkout.application.use_cases.validate_discount import ValidateDiscountCodeUseCase
from subscription_checkout.domain.entities.discount import DiscountDescriptor
from subscription_checkout.domain.entities.pricing import PricingSummary
from subscription_checkout.domain.exceptions import (
    BillingError,
    CheckoutError,
    CheckoutErrorCode,
    RateLimitExceededError,
    WebhookEventInFlightError,
    WebhookProcessingError,
    WebhookSignatureError,
)


logger = logging.getLogger(__name__)

router = APIRouter()

CHECKOUT_ERROR_STATUS = {
    CheckoutErrorCode.INVALID_SUBMISSION_ID: 400,
    CheckoutErrorCode.INVALID_SESSION_ID: 400,
    CheckoutErrorCode.MISSING_SESSION_ID: 400,
    CheckoutErrorCode.INVALID_LANGUAGE_CODE: 400,
    CheckoutErrorCode.INVALID_DISCOUNT_CODE: 400,
    CheckoutErrorCode.MISSING_CUSTOMER_EMAIL: 400,
    CheckoutErrorCode.RATE_LIMIT_EXCEEDED: 429,
    CheckoutErrorCode.SUBSCRIPTION_METADATA_UPDATE_FAILED: 500,
    CheckoutErrorCode.SUBMISSION_UPDATE_FAILED: 500,
    CheckoutErrorCode.STRIPE_API_ERROR: 502,
}


def _is_uuid(value: str) -> bool:
    try:
        UUID(value)
    except ValueError:
        return False
    return True


def _checkout_http_error(exc: CheckoutError) -> HTTPException:
    detail: dict = {"code": exc.code.value, "message": exc.message}
    headers = None
    if isinstance(exc, RateLimitExceededError):
        detail["attempts_remaining"] = exc.attempts_remaining
        detail["reset_at"] = exc.reset_at.isoformat()
        retry_after = max(0, ceil((exc.reset_at - utcnow()).total_seconds()))
        headers = {"Retry-After": str(retry_after)}
    return HTTPException(status_code=CHECKOUT_ERROR_STATUS.get(exc.code, 500), detail=detail, headers=headers)


def _provider_http_error(exc: BillingError) -> HTTPException:
    return HTTPException(
        status_code=502,
        detail={"code": CheckoutErrorCode.STRIPE_API_ERROR.value, "message": str(exc)},
    )


def _summary_response(summary: PricingSummary) -> PricingSummaryResponse:
    return PricingSummaryResponse(
        subtotal=summary.subtotal,
        total=summary.total,
        discount_amount=summary.discount_amount,
        recurring_amount=summary.recurring_amount,
        recurring_discount=summary.recurring_discount,
        tax_amount=summary.tax_amount,
        currency=summary.currency,
        line_items=[PricingLineItemResponse(**asdict(item)) for item in summary.line_items],
    )


def _discount_response(discount: DiscountDescriptor | None) -> DiscountResponse | None:
    if discount is None:
        return None
    return DiscountResponse(**discount.as_metadata())


@router.post("/v1/billing/checkout", response_model=CreateCheckoutResponse)
def create_checkout(
    req: CreateCheckoutRequest,
    use_case: CreateCheckoutUseCase = Depends(get_create_checkout_use_case),
):
    if not _is_uuid(req.submission_id):
        raise _checkout_http_error(
            CheckoutError(CheckoutErrorCode.INVALID_SUBMISSION_ID, "Submission ID must be a valid UUID")
        )
    if req.session_id and not _is_uuid(req.session_id):
        raise _checkout_http_error(
            CheckoutError(CheckoutErrorCode.INVALID_SESSION_ID, "Session ID must be a valid UUID")
        )

    try:
        output = use_case.execute(
            CreateCheckoutInput(
                submission_id=req.submission_id,
                additional_languages=req.additional_languages,
                discount_code=req.discount_code,
            )
        )
    except CheckoutError as exc:
        logger.warning(
            "billing: checkout_failed submission_id=%s code=%s message=%s",
            req.submission_id,
            exc.code.value,
            exc.message,
        )
        raise _checkout_http_error(exc) from exc

    return CreateCheckoutResponse(
        submission_id=req.submission_id,
        payment_required=output.payment_required,
        client_secret=output.payment_handle.client_secret,
        payment_handle_kind=output.payment_handle.kind,
        coupon_id=output.coupon_id,
        invoice_total=output.invoice_total,
        invoice_discount=output.invoice_discount,
        stripe_ids=StripeIdsResponse(
            customer_id=output.customer_id,
            subscription_id=output.subscription_id,
            subscription_schedule_id=output.subscription_schedule_id,
            payment_id=output.payment_handle.id,
            invoice_id=output.invoice_id,
        ),
        pricing_summary=_summary_response(output.summary),
    )


@router.post("/v1/billing/webhook", response_model=StripeWebhookResponse)
async def stripe_webhook(
    request: Request,
    stripe_signature: str = Header(..., alias="Stripe-Signature"),
    use_case: ProcessStripeWebhookUseCase = Depends(get_process_stripe_webhook_use_case),
):
    payload = await request.body()
    try:
        output = use_case.execute(
            StripeWebhookInput(
                signature=stripe_signature,
                payload=payload,
            )
        )
    except WebhookSignatureError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    except WebhookEventInFlightError as exc:
        raise HTTPException(status_code=409, detail=str(exc)) from exc
    except WebhookProcessingError as exc:
        raise HTTPException(status_code=500, detail=str(exc)) from exc

    return StripeWebhookResponse(
        event_type=output.event_type,
        handled=output.handled,
        matched=output.matched,
        duplicate=output.duplicate,
    )


@router.post("/v1/billing/discounts/validate", response_model=ValidateDiscountResponse)
def validate_discount(
    req: ValidateDiscountRequest,
    use_case: ValidateDiscountCodeUseCase = Depends(get_validate_discount_code_use_case),
):
    try:
        output = use_case.execute(ValidateDiscountInput(code=req.code))
    except BillingError as exc:
        raise _provider_http_error(exc) from exc

    return ValidateDiscountResponse(valid=output.valid, discount=_discount_response(output.discount))


@router.post("/v1/billing/pricing-preview", response_model=PricingPreviewResponse)
def pricing_preview(
    req: PricingPreviewRequest,
    use_case: PreviewPricingUseCase = Depends(get_preview_pricing_use_case),
):
    try:
        output = use_case.execute(
            PreviewPricingInput(
                additional_languages=req.additional_languages,
                discount_code=req.discount_code,
            )
        )
    except CheckoutError as exc:
        raise _checkout_http_error(exc) from exc
    except BillingError as exc:
        raise _provider_http_error(exc) from exc

    preview = output.preview
    return PricingPreviewResponse(
        currency=output.currency,
        base_price=output.base_price,
        addon_unit_price=output.addon_unit_price,
        addon_count=output.addon_count,
        subtotal=preview.subtotal,
        due_today=preview.due_today,
        discount_amount=preview.discount_amount,
        recurring_amount=preview.recurring_amount,
        recurring_discount=preview.recurring_discount,
        recurring_description=preview.recurring_description,
        discounted_months=preview.discounted_months,
        discount=_discount_response(output.discount),
    )
