from __future__ import annotations

from datetime import datetime
from enum import Enum


class DomainError(Exception):
    """Base para erros de dominio."""


class BillingError(DomainError):
    """Falha generica no fluxo de cobranca."""


class PaymentProviderError(BillingError):
    """Chamada ao Stripe falhou."""


class ProviderResourceMissingError(PaymentProviderError):
    """Recurso nao existe (ou ja foi removido) no Stripe."""


class WebhookSignatureError(BillingError):
    """Assinatura do webhook invalida."""


class WebhookProcessingError(BillingError):
    """Evento nao pode ser processado; o Stripe deve reenviar."""


class WebhookEventInFlightError(WebhookProcessingError):
    """Evento ainda em processamento por outra entrega."""


class DiscountDescriptorError(DomainError):
    """Cupom com formato invalido."""


class SubmissionPersistenceError(DomainError):
    """Falha transitoria ao gravar a submission."""


class AnalyticsWriteError(DomainError):
    """Falha ao gravar evento de analytics."""


class AnalyticsSessionMissingError(AnalyticsWriteError):
    """Sessao referenciada pelo evento ja foi removida."""


class CheckoutErrorCode(str, Enum):
    INVALID_SUBMISSION_ID = "INVALID_SUBMISSION_ID"
    INVALID_SESSION_ID = "INVALID_SESSION_ID"
    MISSING_SESSION_ID = "MISSING_SESSION_ID"
    INVALID_LANGUAGE_CODE = "INVALID_LANGUAGE_CODE"
    RATE_LIMIT_EXCEEDED = "RATE_LIMIT_EXCEEDED"
    INVALID_DISCOUNT_CODE = "INVALID_DISCOUNT_CODE"
    MISSING_CUSTOMER_EMAIL = "MISSING_CUSTOMER_EMAIL"
    SUBSCRIPTION_METADATA_UPDATE_FAILED = "SUBSCRIPTION_METADATA_UPDATE_FAILED"
    SUBMISSION_UPDATE_FAILED = "SUBMISSION_UPDATE_FAILED"
    STRIPE_API_ERROR = "STRIPE_API_ERROR"


class CheckoutError(DomainError):
    """Erro de checkout com codigo estavel para o cliente."""

    def __init__(self, code: CheckoutErrorCode, message: str):
        super().__init__(message)
        self.code = code
        self.message = message


class RateLimitExceededError(CheckoutError):
    def __init__(self, *, attempts_remaining: int, reset_at: datetime):
        super().__init__(
            CheckoutErrorCode.RATE_LIMIT_EXCEEDED,
            "Too many payment attempts. Please try again in 1 hour.",
        )
        self.attempts_remaining = attempts_remaining
        self.reset_at = reset_at


class PricingInputError(DomainError):
    """Parametros invalidos para calculo de preco."""


class SubmissionNotFoundError(DomainError):
    """Submission nao encontrada."""


class NotificationError(DomainError):
    """Falha ao enviar e-mail transacional."""
