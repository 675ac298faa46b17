from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal

import httpx

from subscription_checkout.application.ports.email_notifier_port import EmailNotifierPort
from subscription_checkout.domain.entities.add_on import get_language
from subscription_checkout.domain.exceptions import NotificationError


logger = logging.getLogger(__name__)


PAYMENT_SUCCESS_SUBJECTS = {
    "en": "Your new website is on its way",
    "it": "Il tuo nuovo sito web è in arrivo",
}
CANCELLATION_SUBJECTS = {
    "en": "Your subscription has been cancelled",
    "it": "Il tuo abbonamento è stato cancellato",
}


@dataclass(frozen=True)
class ResendEmailClientSettings:
    api_key: str
    api_base: str
    sender: str
    admin_email: str
    timeout_seconds: float


def format_amount(amount: int, currency: str) -> str:
    value = (Decimal(amount) / Decimal(100)).quantize(Decimal("0.01"))
    symbol = "€" if currency.upper() == "EUR" else f"{currency.upper()} "
    return f"{symbol}{value}"


class ResendEmailClient(EmailNotifierPort):
    def __init__(self, settings: ResendEmailClientSettings):
        self._settings = settings

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
        languages = [
            language.name_en
            for language in (get_language(code) for code in additional_languages)
            if language is not None
        ]
        lines = [
            f"Business: {business_name}",
            f"Customer email: {email}",
            f"Amount: {format_amount(amount, currency)}",
            f"Payment id: {payment_id}",
            f"Submission id: {submission_id}",
            f"Additional languages: {', '.join(languages) if languages else 'none'}",
        ]
        self._send_admin(
            subject=f"Payment Received: {business_name} - {format_amount(amount, currency)}",
            text="\n".join(lines),
            category="payment_notification",
        )

    def send_payment_success_confirmation(
        self,
        *,
        email: str,
        business_name: str,
        amount: int,
        currency: str,
        locale: str,
    ) -> None:
        if locale == "it":
            body = (
                f"Grazie {business_name}! Abbiamo ricevuto il tuo pagamento di "
                f"{format_amount(amount, currency)}. Il nostro team ha iniziato a lavorare al tuo sito web."
            )
        else:
            body = (
                f"Thank you {business_name}! We received your payment of "
                f"{format_amount(amount, currency)}. Our team has started working on your website."
            )
        self._send(
            to=email,
            subject=PAYMENT_SUCCESS_SUBJECTS.get(locale, PAYMENT_SUCCESS_SUBJECTS["en"]),
            text=body,
            category="payment_success",
        )

    def send_cancellation_confirmation(self, *, email: str, business_name: str, locale: str) -> None:
        if locale == "it":
            body = f"Ciao {business_name}, il tuo abbonamento è stato cancellato."
        else:
            body = f"Hi {business_name}, your subscription has been cancelled."
        self._send(
            to=email,
            subject=CANCELLATION_SUBJECTS.get(locale, CANCELLATION_SUBJECTS["en"]),
            text=body,
            category="cancellation_confirmation",
        )

    def send_cancellation_notification(
        self,
        *,
        submission_id: str,
        business_name: str,
        email: str,
        subscription_id: str,
        canceled_at: datetime,
    ) -> None:
        lines = [
            f"Business: {business_name}",
            f"Customer email: {email}",
            f"Subscription id: {subscription_id}",
            f"Submission id: {submission_id}",
            f"Cancelled at: {canceled_at.isoformat()}",
        ]
        self._send_admin(
            subject=f"Subscription Cancelled: {business_name}",
            text="\n".join(lines),
            category="cancellation_notification",
        )

    def _send_admin(self, *, subject: str, text: str, category: str) -> None:
        if not self._settings.admin_email:
            logger.info("email: admin_email_not_configured category=%s", category)
            return
        self._send(to=self._settings.admin_email, subject=subject, text=text, category=category)

    def _send(self, *, to: str, subject: str, text: str, category: str) -> None:
        if not self._settings.api_key:
            logger.info("email: skipped_no_api_key category=%s to=%s", category, to)
            return

        try:
            with httpx.Client(timeout=self._settings.timeout_seconds) as client:
                response = client.post(
                    f"{self._settings.api_base.rstrip('/')}/emails",
                    headers={"Authorization": f"Bearer {self._settings.api_key}"},
                    json={
                        "from": self._settings.sender,
                        "to": [to],
                        "subject": subject,
                        "text": text,
                        "tags": [{"name": "category", "value": category}],
                    },
                )
                response.raise_for_status()
        except httpx.HTTPError as exc:
            raise NotificationError(f"Failed to send {category} email.") from exc

        logger.info("email: sent category=%s to=%s", category, to)
