from __future__ import annotations

from subscription_checkout.application.dto.stripe import StripePaymentIntentData
from subscription_checkout.application.use_cases.submission_lookup import LookupKeys, SubmissionLookup
from tests.fakes import SUBMISSION_ID, FakeStripePort, FakeSubmissionPort, make_submission


def _payment_intent(**overrides) -> StripePaymentIntentData:
    values = {
        "id": "pi_1",
        "status": "succeeded",
        "amount": 3500,
        "amount_received": 3500,
        "currency": "eur",
        "customer_id": None,
        "invoice_id": None,
        "payment_method_id": None,
        "metadata": {},
    }
    values.update(overrides)
    return StripePaymentIntentData(**values)


def test_schedule_id_wins_over_customer_id():
    by_schedule = make_submission(id="a", stripe_subscription_schedule_id="sub_sched_1")
    by_customer = make_submission(id="b", stripe_customer_id="cus_1")
    lookup = SubmissionLookup(
        submission_port=FakeSubmissionPort(by_schedule, by_customer),
        stripe_port=FakeStripePort(),
    )

    result = lookup.find(LookupKeys(schedule_id="sub_sched_1", customer_id="cus_1"))

    assert result.submission.id == "a"
    assert result.found_by == "schedule_id"


def test_falls_through_to_metadata_submission_id():
    lookup = SubmissionLookup(
        submission_port=FakeSubmissionPort(make_submission()),
        stripe_port=FakeStripePort(),
    )

    result = lookup.find(LookupKeys(customer_id="cus_unknown", submission_id=SUBMISSION_ID))

    assert result.found_by == "metadata"


def test_payment_intent_customer_is_used_as_last_resort():
    stripe = FakeStripePort()
    stripe.payment_intents["pi_1"] = _payment_intent(customer_id="cus_real")
    lookup = SubmissionLookup(
        submission_port=FakeSubmissionPort(make_submission(stripe_customer_id="cus_real")),
        stripe_port=stripe,
    )

    result = lookup.find(LookupKeys(customer_id="cus_other", payment_intent_id="pi_1"))

    assert result.found_by == "payment_intent"


def test_payment_intent_metadata_is_used_when_customer_unknown():
    stripe = FakeStripePort()
    stripe.payment_intents["pi_1"] = _payment_intent(metadata={"submission_id": SUBMISSION_ID})
    lookup = SubmissionLookup(submission_port=FakeSubmissionPort(make_submission()), stripe_port=stripe)

    assert lookup.find(LookupKeys(payment_intent_id="pi_1")).submission.id == SUBMISSION_ID


def test_unavailable_payment_intent_means_no_match():
    lookup = SubmissionLookup(submission_port=FakeSubmissionPort(make_submission()), stripe_port=FakeStripePort())

    assert lookup.find(LookupKeys(payment_intent_id="pi_missing")) is None


def test_no_keys_means_no_queries():
    lookup = SubmissionLookup(submission_port=FakeSubmissionPort(make_submission()), stripe_port=FakeStripePort())

    assert lookup.find(LookupKeys()) is None
