from __future__ import annotations

import hashlib
import hmac
import json
import time

import pytest
import stripe

from subscription_checkout.domain.exceptions import (
    PaymentProviderError,
    ProviderResourceMissingError,
    WebhookSignatureError,
)
from subscription_checkout.infrastructure.clients.stripe_client import StripeClient, _call


WEBHOOK_SECRET = "whsec_test"


def _sign(payload: bytes, secret: str = WEBHOOK_SECRET) -> str:
    timestamp = int(time.time())
    signed = f"{timestamp}.{payload.decode('utf-8')}".encode("utf-8")
    signature = hmac.new(secret.encode("utf-8"), signed, hashlib.sha256).hexdigest()
    return f"t={timestamp},v1={signature}"


@pytest.fixture
def client() -> StripeClient:
    return StripeClient(secret_key="sk_test_123", webhook_secret=WEBHOOK_SECRET)


def test_verify_webhook_normalizes_event(client):
    payload = json.dumps(
        {
            "id": "evt_1",
            "object": "event",
            "type": "payment_intent.succeeded",
            "data": {
                "object": {
                    "id": "pi_1",
                    "object": "payment_intent",
                    "amount": 3500,
                    "amount_received": 3500,
                    "currency": "eur",
                    "customer": "cus_1",
                    "status": "succeeded",
                    "metadata": {"submission_id": "sub-1"},
                }
            },
        }
    ).encode("utf-8")

    event = client.verify_webhook(signature=_sign(payload), payload=payload)

    assert event.event_id == "evt_1"
    assert event.object_type == "payment_intent"
    assert event.payment_intent.amount == 3500
    assert event.payment_intent.metadata == {"submission_id": "sub-1"}


def test_verify_webhook_rejects_bad_signature(client):
    payload = b'{"id": "evt_1", "object": "event", "type": "invoice.paid", "data": {"object": {}}}'

    with pytest.raises(WebhookSignatureError):
        client.verify_webhook(signature=_sign(payload, secret="whsec_other"), payload=payload)


def test_verify_webhook_rejects_malformed_header(client):
    with pytest.raises(WebhookSignatureError):
        client.verify_webhook(signature="garbage", payload=b"{}")


def test_call_maps_missing_resource():
    def missing():
        raise stripe.InvalidRequestError("No such invoice", "id", code="resource_missing")

    with pytest.raises(ProviderResourceMissingError):
        _call("Failed to retrieve invoice.", missing)


def test_call_maps_other_stripe_errors():
    def invalid():
        raise stripe.InvalidRequestError("Bad param", "coupon")

    def unavailable():
        raise stripe.APIConnectionError("network down")

    with pytest.raises(PaymentProviderError) as invalid_info:
        _call("Failed to update invoice.", invalid)
    with pytest.raises(PaymentProviderError):
        _call("Failed to update invoice.", unavailable)

    assert not isinstance(invalid_info.value, ProviderResourceMissingError)
