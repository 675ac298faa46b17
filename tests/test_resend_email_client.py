from __future__ import annotations

import json
from datetime import datetime, timezone

import httpx
import pytest

from subscription_checkout.domain.exceptions import NotificationError
from subscription_checkout.infrastructure.clients.resend_email_client import (
    ResendEmailClient,
    ResendEmailClientSettings,
    format_amount,
)


def _settings(**overrides) -> ResendEmailClientSettings:
    values = {
        "api_key": "re_test",
        "api_base": "https://api.resend.test/",
        "sender": "noreply@example.com",
        "admin_email": "admin@example.com",
        "timeout_seconds": 5.0,
    }
    values.update(overrides)
    return ResendEmailClientSettings(**values)


@pytest.fixture
def outbox(monkeypatch: pytest.MonkeyPatch) -> list[httpx.Request]:
    requests: list[httpx.Request] = []
    real_client = httpx.Client

    def handler(request: httpx.Request) -> httpx.Response:
        requests.append(request)
        if request.headers["Authorization"] == "Bearer re_broken":
            return httpx.Response(500, json={"message": "internal"})
        return httpx.Response(200, json={"id": "email_1"})

    monkeypatch.setattr(httpx, "Client", lambda **kwargs: real_client(transport=httpx.MockTransport(handler), **kwargs))
    return requests


def test_format_amount():
    assert format_amount(3150, "eur") == "€31.50"
    assert format_amount(0, "EUR") == "€0.00"
    assert format_amount(1999, "usd") == "USD 19.99"


def test_payment_notification_goes_to_admin(outbox):
    ResendEmailClient(_settings()).send_payment_notification(
        submission_id="sub-1",
        business_name="Trattoria Roma",
        email="owner@example.com",
        amount=8500,
        currency="EUR",
        payment_id="pi_1",
        additional_languages=["fr", "xx"],
    )

    request = outbox[0]
    body = json.loads(request.content)
    assert str(request.url) == "https://api.resend.test/emails"
    assert body["to"] == ["admin@example.com"]
    assert body["subject"] == "Payment Received: Trattoria Roma - €85.00"
    assert "Additional languages: French" in body["text"]


def test_customer_confirmation_uses_locale(outbox):
    ResendEmailClient(_settings()).send_payment_success_confirmation(
        email="owner@example.com",
        business_name="Trattoria Roma",
        amount=0,
        currency="EUR",
        locale="it",
    )

    body = json.loads(outbox[0].content)
    assert body["to"] == ["owner@example.com"]
    assert body["subject"] == "Il tuo nuovo sito web è in arrivo"
    assert "€0.00" in body["text"]


def test_cancellation_notification_includes_timestamp(outbox):
    ResendEmailClient(_settings()).send_cancellation_notification(
        submission_id="sub-1",
        business_name="Trattoria Roma",
        email="owner@example.com",
        subscription_id="sub_1",
        canceled_at=datetime(2026, 6, 1, tzinfo=timezone.utc),
    )

    body = json.loads(outbox[0].content)
    assert body["subject"] == "Subscription Cancelled: Trattoria Roma"
    assert "2026-06-01T00:00:00+00:00" in body["text"]


def test_admin_mail_skipped_without_admin_address(outbox):
    ResendEmailClient(_settings(admin_email="")).send_cancellation_notification(
        submission_id="sub-1",
        business_name="Trattoria Roma",
        email="owner@example.com",
        subscription_id="sub_1",
        canceled_at=datetime(2026, 6, 1, tzinfo=timezone.utc),
    )

    assert outbox == []


def test_sending_skipped_without_api_key(outbox):
    ResendEmailClient(_settings(api_key="")).send_cancellation_confirmation(
        email="owner@example.com",
        business_name="Trattoria Roma",
        locale="en",
    )

    assert outbox == []


def test_provider_error_raises_notification_error(outbox):
    with pytest.raises(NotificationError):
        ResendEmailClient(_settings(api_key="re_broken")).send_cancellation_confirmation(
            email="owner@example.com",
            business_name="Trattoria Roma",
            locale="en",
        )
