from __future__ import annotations

from dataclasses import replace

import pytest

from subscription_checkout.application.dto.checkout import CreateCheckoutInput
from subscription_checkout.application.dto.stripe import (
    StripeChargeData,
    StripePaymentIntentData,
    StripeSetupIntentData,
    StripeSubscriptionData,
    StripeSubscriptionItemData,
    StripeWebhookEvent,
)
from subscription_checkout.application.dto.webhook import StripeWebhookInput
from subscription_checkout.application.use_cases.build_subscription_schedule import SubscriptionScheduleBuilder
from subscription_checkout.application.use_cases.create_checkout import CreateCheckoutUseCase
from subscription_checkout.application.use_cases.finalize_invoice import InvoiceFinalizer
from subscription_checkout.application.use_cases.process_stripe_webhook import ProcessStripeWebhookUseCase
from subscription_checkout.application.use_cases.resolve_customer import CustomerResolver
from subscription_checkout.application.use_cases.submission_lookup import SubmissionLookup
from subscription_checkout.application.use_cases.validate_discount import DiscountValidator
from subscription_checkout.domain.exceptions import (
    AnalyticsSessionMissingError,
    AnalyticsWriteError,
    CheckoutError,
    CheckoutErrorCode,
    WebhookEventInFlightError,
    WebhookProcessingError,
)
from tests.fakes import (
    ADDON_PRICE_ID,
    BASE_PRICE,
    BASE_PRICE_ID,
    SESSION_ID,
    SUBMISSION_ID,
    FakeEmailNotifier,
    FakeStripePort,
    FakeSubmissionPort,
    FakeWebhookEventPort,
    make_coupon,
    make_invoice,
    make_submission,
    utc,
)


COMMAND = StripeWebhookInput(signature="t=1,v1=abc", payload=b"{}")


class Harness:
    def __init__(self, *submissions):
        self.stripe = FakeStripePort()
        self.submissions = FakeSubmissionPort(*submissions)
        self.ledger = FakeWebhookEventPort()
        self.email = FakeEmailNotifier()
        self.use_case = ProcessStripeWebhookUseCase(
            stripe_port=self.stripe,
            submission_port=self.submissions,
            webhook_event_port=self.ledger,
            email_notifier=self.email,
            submission_lookup=SubmissionLookup(submission_port=self.submissions, stripe_port=self.stripe),
        )

    def deliver(self, event_type: str, *, event_id: str = "evt_1", **payload):
        self.stripe.webhook_event = StripeWebhookEvent(
            event_id=event_id,
            event_type=event_type,
            object_type=None,
            **payload,
        )
        return self.use_case.execute(COMMAND)

    @property
    def saved(self):
        return self.submissions.submissions[SUBMISSION_ID]


def _checked_out(**overrides):
    values = {
        "stripe_customer_id": "cus_1",
        "stripe_subscription_id": "sub_1",
        "stripe_subscription_schedule_id": "sub_sched_1",
    }
    values.update(overrides)
    return make_submission(**values)


def _subscription(subscription_id: str = "sub_1", **overrides) -> StripeSubscriptionData:
    values = {
        "id": subscription_id,
        "customer_id": "cus_1",
        "status": "active",
        "schedule_id": "sub_sched_1",
        "latest_invoice_id": "in_1",
        "items": (StripeSubscriptionItemData(id="si_1", price_id=BASE_PRICE_ID, unit_amount=BASE_PRICE, quantity=1),),
    }
    values.update(overrides)
    return StripeSubscriptionData(**values)


def _payment_intent(**overrides) -> StripePaymentIntentData:
    values = {
        "id": "pi_1",
        "status": "succeeded",
        "amount": 3500,
        "amount_received": 3500,
        "currency": "eur",
        "customer_id": "cus_1",
        "invoice_id": None,
        "payment_method_id": "pm_1",
        "metadata": {"submission_id": SUBMISSION_ID},
    }
    values.update(overrides)
    return StripePaymentIntentData(**values)


def test_invoice_paid_marks_submission_paid_and_notifies():
    harness = Harness(_checked_out())
    invoice = replace(make_invoice(), amount_paid=3500, paid_at=utc(2026, 3, 1))

    result = harness.deliver("invoice.paid", invoice=invoice)

    assert result.handled is True
    assert result.matched is True
    saved = harness.saved
    assert saved.status == "paid"
    assert saved.payment_amount == 3500
    assert saved.currency == "EUR"
    assert saved.payment_completed_at == utc(2026, 3, 1)
    assert saved.stripe_payment_id == "pi_1"
    assert saved.stripe_invoice_id == "in_1"
    assert saved.payment_metadata["invoice_id"] == "in_1"
    assert harness.email.kinds() == ["payment_notification", "payment_success_confirmation"]
    notification = harness.email.sent[0][1]
    assert notification["email"] == "owner@example.com"
    assert notification["business_name"] == "Trattoria Roma"
    assert notification["currency"] == "EUR"
    assert harness.submissions.events("payment_succeeded")[0]["session_id"] == SESSION_ID
    assert harness.ledger.events["evt_1"] == "completed"


def test_replayed_event_is_reported_as_duplicate():
    harness = Harness(_checked_out())
    invoice = replace(make_invoice(), amount_paid=3500)
    harness.deliver("invoice.paid", invoice=invoice)
    updates_after_first = len(harness.submissions.updates)

    result = harness.deliver("invoice.paid", invoice=invoice)

    assert result.duplicate is True
    assert result.handled is False
    assert len(harness.submissions.updates) == updates_after_first
    assert len(harness.email.sent) == 2


def test_second_payment_event_for_paid_submission_sends_no_emails():
    harness = Harness(_checked_out(status="paid"))

    harness.deliver("invoice.payment_succeeded", invoice=make_invoice())

    assert harness.saved.status == "paid"
    assert harness.email.sent == []


def test_thin_invoice_never_clears_known_ids():
    harness = Harness(_checked_out())
    invoice = make_invoice(subscription_id=None)

    harness.deliver("invoice.paid", invoice=invoice)

    assert harness.saved.stripe_subscription_id == "sub_1"
    assert harness.saved.stripe_subscription_schedule_id == "sub_sched_1"
    assert "stripe_subscription_id" not in harness.submissions.updates[-1][1]


def test_invoice_payment_event_loads_invoice_by_id():
    harness = Harness(_checked_out())
    harness.stripe.invoices["in_7"] = make_invoice(invoice_id="in_7")

    result = harness.deliver("invoice_payment.paid", invoice_id="in_7")

    assert result.matched is True
    assert harness.saved.stripe_invoice_id == "in_7"


def test_invoice_paid_without_invoice_fails_and_is_retryable():
    harness = Harness(_checked_out())

    with pytest.raises(WebhookProcessingError):
        harness.deliver("invoice_payment.paid", invoice_id="in_missing")

    assert harness.ledger.events["evt_1"] == "failed"
    assert harness.ledger.errors["evt_1"]


def test_discount_details_come_from_subscription_coupon():
    harness = Harness(_checked_out())
    coupon = make_coupon("coupon_20", percent_off="20", duration="forever")
    harness.stripe.subscriptions["sub_1"] = _subscription(discount_coupon=coupon)
    invoice = make_invoice(discount=700)

    harness.deliver("invoice.paid", invoice=invoice)

    saved = harness.saved
    assert saved.discount_code == "coupon_20"
    assert saved.discount_amount == 700
    assert saved.payment_metadata["recurring_discount"] == 700
    assert saved.payment_metadata["discount_info"]["duration"] == "forever"


def test_unmatched_event_is_acknowledged_and_flagged():
    harness = Harness()

    result = harness.deliver("invoice.paid", invoice=make_invoice(customer_id="cus_other", payment_intent_id=None))

    assert result.handled is True
    assert result.matched is False
    assert harness.ledger.events["evt_1"] == "unmatched"
    assert harness.email.sent == []


def test_unknown_event_type_is_acknowledged():
    harness = Harness()

    result = harness.deliver("customer.created")

    assert result.handled is False
    assert harness.ledger.events["evt_1"] == "completed"


def test_failed_event_can_be_claimed_again():
    harness = Harness(_checked_out())
    harness.submissions.failing_updates = 1
    invoice = make_invoice()

    with pytest.raises(WebhookProcessingError):
        harness.deliver("invoice.paid", invoice=invoice)
    assert harness.ledger.events["evt_1"] == "failed"

    result = harness.deliver("invoice.paid", invoice=invoice)

    assert result.duplicate is False
    assert harness.saved.status == "paid"
    assert harness.ledger.events["evt_1"] == "completed"


def test_payment_intent_succeeded_matches_by_metadata():
    harness = Harness(make_submission())

    result = harness.deliver("payment_intent.succeeded", payment_intent=_payment_intent(customer_id="cus_9"))

    assert result.matched is True
    saved = harness.saved
    assert saved.status == "paid"
    assert saved.payment_amount == 3500
    assert saved.stripe_payment_id == "pi_1"
    assert saved.stripe_customer_id == "cus_9"
    assert harness.email.kinds() == ["payment_notification", "payment_success_confirmation"]


def test_setup_intent_stores_card_and_marks_paid():
    harness = Harness(_checked_out(stripe_payment_id="seti_1"))
    setup_intent = StripeSetupIntentData(
        id="seti_1",
        status="succeeded",
        customer_id="cus_1",
        payment_method_id="pm_1",
        client_secret=None,
        metadata={"submission_id": SUBMISSION_ID, "subscription_id": "sub_1", "session_id": SESSION_ID},
    )

    result = harness.deliver("setup_intent.succeeded", setup_intent=setup_intent)

    assert result.matched is True
    assert harness.stripe.called("set_subscription_default_payment_method") == [
        {"subscription_id": "sub_1", "payment_method_id": "pm_1"}
    ]
    assert harness.stripe.called("set_customer_default_payment_method") == [
        {"customer_id": "cus_1", "payment_method_id": "pm_1"}
    ]
    assert harness.saved.status == "paid"
    assert harness.email.sent[0][1]["amount"] == 0
    assert harness.submissions.events("setup_intent_succeeded")[0]["session_id"] == SESSION_ID


def test_setup_intent_found_by_payment_id_when_metadata_missing():
    harness = Harness(_checked_out(stripe_payment_id="seti_1"))
    setup_intent = StripeSetupIntentData(
        id="seti_1",
        status="succeeded",
        customer_id=None,
        payment_method_id="pm_1",
        client_secret=None,
    )

    harness.deliver("setup_intent.succeeded", setup_intent=setup_intent)

    assert harness.stripe.called("set_subscription_default_payment_method")[0]["subscription_id"] == "sub_1"
    assert harness.stripe.called("set_customer_default_payment_method")[0]["customer_id"] == "cus_1"


def test_setup_intent_without_payment_method_fails():
    harness = Harness(_checked_out())
    setup_intent = StripeSetupIntentData(
        id="seti_1",
        status="succeeded",
        customer_id="cus_1",
        payment_method_id=None,
        client_secret=None,
        metadata={"submission_id": SUBMISSION_ID},
    )

    with pytest.raises(WebhookProcessingError):
        harness.deliver("setup_intent.succeeded", setup_intent=setup_intent)

    assert harness.ledger.events["evt_1"] == "failed"


def test_subscription_created_fills_missing_ids():
    harness = Harness(make_submission(stripe_customer_id="cus_1"))

    harness.deliver("customer.subscription.created", subscription=_subscription())

    assert harness.saved.stripe_subscription_id == "sub_1"
    assert harness.saved.stripe_subscription_schedule_id == "sub_sched_1"


def test_subscription_created_keeps_recorded_subscription():
    harness = Harness(_checked_out(stripe_subscription_schedule_id=None))

    harness.deliver("customer.subscription.created", subscription=_subscription("sub_2", schedule_id=None))

    assert harness.saved.stripe_subscription_id == "sub_1"
    assert harness.submissions.updates == []
    assert harness.submissions.events("subscription_created")


def test_subscription_deleted_cancels_and_notifies():
    harness = Harness(_checked_out(status="paid"))
    canceled_at = utc(2026, 6, 1)

    harness.deliver("customer.subscription.deleted", subscription=_subscription(canceled_at=canceled_at))

    assert harness.saved.status == "cancelled"
    assert harness.email.kinds() == ["cancellation_confirmation", "cancellation_notification"]
    assert harness.email.sent[1][1]["canceled_at"] == canceled_at
    deleted = harness.submissions.events("subscription_deleted")[0]
    assert deleted["event_data"]["canceled_at"] == canceled_at.isoformat()


def test_stale_subscription_deletion_is_ignored():
    harness = Harness(_checked_out(status="paid", stripe_subscription_id="sub_new"))

    result = harness.deliver(
        "customer.subscription.deleted",
        subscription=_subscription("sub_old", schedule_id="sub_sched_1"),
    )

    assert result.matched is True
    assert harness.saved.status == "paid"
    assert harness.email.sent == []


def test_analytics_failures_do_not_fail_the_event():
    harness = Harness(_checked_out())
    harness.submissions.analytics_error = AnalyticsSessionMissingError("gone")

    result = harness.deliver("invoice.paid", invoice=make_invoice())

    assert result.handled is True
    assert harness.ledger.events["evt_1"] == "completed"

    harness.submissions.analytics_error = AnalyticsWriteError("db down")
    charge = StripeChargeData(
        id="ch_1",
        customer_id="cus_1",
        payment_intent_id="pi_1",
        amount_refunded=3500,
        refunded=True,
        currency="eur",
    )
    assert harness.deliver("charge.refunded", event_id="evt_2", charge=charge).handled is True


def test_email_failure_does_not_fail_the_event():
    harness = Harness(_checked_out())
    harness.email.fail_on.add("payment_notification")

    result = harness.deliver("invoice.paid", invoice=make_invoice())

    assert result.handled is True
    assert harness.email.kinds() == ["payment_success_confirmation"]


def test_payment_failed_is_logged_to_analytics():
    harness = Harness()
    payment_intent = _payment_intent(
        status="requires_payment_method",
        last_error_code="card_declined",
        last_error_message="Your card was declined.",
    )

    result = harness.deliver("payment_intent.payment_failed", payment_intent=payment_intent)

    assert result.matched is True
    event = harness.submissions.events("payment_failed")[0]
    assert event["session_id"] is None
    assert event["event_data"]["error_code"] == "card_declined"


def test_deletion_of_subscription_cancelled_by_failed_retry_is_ignored():
    harness = Harness(
        _checked_out(status="paid", stripe_subscription_id="sub_old", stripe_subscription_schedule_id="sub_sched_old")
    )
    checkout = CreateCheckoutUseCase(
        stripe_port=harness.stripe,
        submission_port=harness.submissions,
        customer_resolver=CustomerResolver(stripe_port=harness.stripe),
        discount_validator=DiscountValidator(stripe_port=harness.stripe),
        schedule_builder=SubscriptionScheduleBuilder(stripe_port=harness.stripe),
        invoice_finalizer=InvoiceFinalizer(
            stripe_port=harness.stripe,
            submission_port=harness.submissions,
            base_price_id=BASE_PRICE_ID,
            addon_price_id=ADDON_PRICE_ID,
        ),
        base_price_id=BASE_PRICE_ID,
    )
    with pytest.raises(CheckoutError) as exc_info:
        checkout.execute(CreateCheckoutInput(submission_id=SUBMISSION_ID, discount_code="NOPE"))
    assert exc_info.value.code == CheckoutErrorCode.INVALID_DISCOUNT_CODE
    assert harness.stripe.called("cancel_subscription_schedule") == [{"schedule_id": "sub_sched_old"}]

    result = harness.deliver(
        "customer.subscription.deleted",
        subscription=_subscription("sub_old", schedule_id="sub_sched_old"),
    )

    assert result.matched is True
    assert harness.saved.status == "submitted"
    assert harness.email.sent == []


def test_late_payment_events_do_not_reopen_cancelled_submission():
    harness = Harness(_checked_out(status="paid"))
    harness.deliver("customer.subscription.deleted", subscription=_subscription())
    assert harness.saved.status == "cancelled"

    harness.deliver("invoice.paid", event_id="evt_2", invoice=replace(make_invoice(), amount_paid=3500))
    harness.deliver("payment_intent.succeeded", event_id="evt_3", payment_intent=_payment_intent())

    assert harness.saved.status == "cancelled"
    assert harness.saved.payment_amount == 3500
    assert harness.email.kinds() == ["cancellation_confirmation", "cancellation_notification"]
    assert "status" not in harness.submissions.updates[-1][1]


def test_setup_intent_after_cancellation_keeps_submission_cancelled():
    harness = Harness(_checked_out(status="cancelled", stripe_payment_id="seti_1"))
    setup_intent = StripeSetupIntentData(
        id="seti_1",
        status="succeeded",
        customer_id="cus_1",
        payment_method_id="pm_1",
        client_secret=None,
        metadata={"submission_id": SUBMISSION_ID, "subscription_id": "sub_1"},
    )

    harness.deliver("setup_intent.succeeded", setup_intent=setup_intent)

    assert harness.saved.status == "cancelled"
    assert harness.email.sent == []


def test_invoice_paid_and_payment_succeeded_for_same_invoice_converge():
    harness = Harness(_checked_out())
    harness.stripe.subscriptions["sub_1"] = _subscription(discount_coupon=make_coupon("coupon_10", duration="once"))
    invoice = replace(make_invoice(discount=350), amount_paid=3150)

    harness.deliver("invoice.paid", event_id="evt_1", invoice=invoice)
    after_first = harness.saved
    harness.deliver("invoice.payment_succeeded", event_id="evt_2", invoice=invoice)
    after_second = harness.saved

    assert len(harness.submissions.updates) == 2
    assert after_second == after_first
    assert after_second.status == "paid"
    assert after_second.payment_amount == 3150
    assert after_second.discount_code == "coupon_10"
    assert after_second.discount_amount == 350
    assert harness.email.kinds() == ["payment_notification", "payment_success_confirmation"]


def test_redelivery_during_running_claim_is_rejected_for_retry():
    harness = Harness(_checked_out())
    harness.ledger.events["evt_1"] = "processing"

    with pytest.raises(WebhookEventInFlightError):
        harness.deliver("invoice.paid", invoice=make_invoice())

    assert harness.ledger.events["evt_1"] == "processing"
    assert harness.submissions.updates == []
    assert harness.email.sent == []
