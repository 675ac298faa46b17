from __future__ import annotations

import pytest

from subscription_checkout.application.use_cases.build_subscription_schedule import SubscriptionScheduleBuilder
from subscription_checkout.application.use_cases.finalize_invoice import InvoiceFinalizer
from subscription_checkout.domain.exceptions import (
    BillingError,
    CheckoutError,
    CheckoutErrorCode,
    PaymentProviderError,
)
from tests.fakes import (
    ADDON_PRICE_ID,
    BASE_PRICE_ID,
    SESSION_ID,
    SUBMISSION_ID,
    FakeStripePort,
    FakeSubmissionPort,
    addon_line,
    base_line,
    make_discount,
    make_invoice,
    make_submission,
)


@pytest.fixture(autouse=True)
def no_sleep(monkeypatch: pytest.MonkeyPatch):
    monkeypatch.setattr("subscription_checkout.shared.retry.time.sleep", lambda _seconds: None)


def _setup(stripe: FakeStripePort, submissions: FakeSubmissionPort | None = None):
    submissions = submissions or FakeSubmissionPort(make_submission())
    scheduled = SubscriptionScheduleBuilder(stripe_port=stripe).create(
        customer_id="cus_1",
        price_id=BASE_PRICE_ID,
        coupon_id=None,
        metadata={},
    )
    finalizer = InvoiceFinalizer(
        stripe_port=stripe,
        submission_port=submissions,
        base_price_id=BASE_PRICE_ID,
        addon_price_id=ADDON_PRICE_ID,
    )
    return finalizer, scheduled.subscription, submissions


def _finalize(finalizer: InvoiceFinalizer, subscription, *, languages=(), discount=None):
    return finalizer.finalize(
        customer_id="cus_1",
        subscription=subscription,
        language_codes=list(languages),
        submission_id=SUBMISSION_ID,
        session_id=SESSION_ID,
        discount=discount,
    )


def test_adds_one_time_items_and_returns_payment_intent_handle():
    stripe = FakeStripePort()
    stripe.next_invoice = make_invoice(lines=(base_line(), addon_line("fr"), addon_line("de")))
    finalizer, subscription, _ = _setup(stripe)

    result = _finalize(finalizer, subscription, languages=["fr", "de"])

    items = stripe.called("create_invoice_item")
    assert [item["description"] for item in items] == ["French Language Add-on", "German Language Add-on"]
    assert all(item["price_id"] == ADDON_PRICE_ID for item in items)
    assert items[0]["metadata"] == {"language_code": "fr", "one_time": "true"}
    assert result.payment_handle.kind == "payment_intent"
    assert result.payment_handle.id == "pi_1"
    assert result.summary.total == 13500
    assert result.summary.recurring_amount == 3500
    metadata_update = stripe.called("update_payment_intent_metadata")[0]
    assert metadata_update["metadata"]["submission_id"] == SUBMISSION_ID


def test_coupon_is_applied_to_invoice_before_finalization():
    stripe = FakeStripePort()
    stripe.next_invoice = make_invoice(lines=(base_line(discount=350),), discount=350)
    finalizer, subscription, _ = _setup(stripe)

    result = _finalize(finalizer, subscription, discount=make_discount())

    update = stripe.called("update_invoice")[0]
    assert update["coupon_id"] == "coupon_10"
    assert update["metadata"]["is_initial_payment"] == "true"
    names = [name for name, _ in stripe.calls]
    assert names.index("update_invoice") < names.index("finalize_invoice")
    assert result.invoice_discount == 350
    assert result.invoice_total == 3150
    assert result.summary.recurring_amount == 3500
    assert result.summary.recurring_discount == 0


def test_invoice_update_failure_is_fatal():
    stripe = FakeStripePort()
    finalizer, subscription, _ = _setup(stripe)
    stripe.errors["update_invoice"] = PaymentProviderError("boom")

    with pytest.raises(PaymentProviderError):
        _finalize(finalizer, subscription, discount=make_discount())

    assert stripe.called("finalize_invoice") == []


def test_zero_amount_invoice_collects_card_with_setup_intent():
    stripe = FakeStripePort()
    stripe.next_invoice = make_invoice(lines=(base_line(discount=3500),), discount=3500)
    finalizer, subscription, submissions = _setup(stripe)

    result = _finalize(finalizer, subscription, discount=make_discount("coupon_100", percent_off="100"))

    assert result.payment_handle.kind == "setup_intent"
    assert result.payment_handle.client_secret.startswith("seti_")
    assert result.invoice_total == 0
    setup_call = stripe.called("create_setup_intent")[0]
    assert setup_call["metadata"]["subscription_id"] == subscription.id
    assert submissions.submissions[SUBMISSION_ID].stripe_payment_id == result.payment_handle.id


def test_setup_intent_persist_failure_surfaces_submission_update_failed():
    stripe = FakeStripePort()
    stripe.next_invoice = make_invoice(lines=(base_line(discount=3500),), discount=3500)
    submissions = FakeSubmissionPort(make_submission())
    submissions.failing_updates = 2
    finalizer, subscription, _ = _setup(stripe, submissions)

    with pytest.raises(CheckoutError) as exc_info:
        _finalize(finalizer, subscription)

    assert exc_info.value.code == CheckoutErrorCode.SUBMISSION_UPDATE_FAILED


def test_missing_client_secret_is_a_billing_error():
    stripe = FakeStripePort()
    stripe.next_invoice = make_invoice(payment_intent_id=None)
    finalizer, subscription, _ = _setup(stripe)

    with pytest.raises(BillingError):
        _finalize(finalizer, subscription)


def test_forever_coupon_keeps_discount_on_renewal_amount():
    stripe = FakeStripePort()
    stripe.next_invoice = make_invoice(lines=(base_line(discount=700), addon_line("fr")), discount=700)
    finalizer, subscription, _ = _setup(stripe)

    result = _finalize(
        finalizer,
        subscription,
        languages=["fr"],
        discount=make_discount("coupon_20", percent_off="20", duration="forever"),
    )

    assert result.summary.total == 7800
    assert result.summary.recurring_amount == 2800
    assert result.summary.recurring_discount == 700
