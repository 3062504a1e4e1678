from decimal import Decimal

import pytest
from django.urls import reverse

from billing.models import (
    BillingEventDeadLetter,
    CreditTransaction,
    PaymentIdempotencyKey,
    PaymentStatus,
    RefundRecord,
    StripePayment,
    WebhookEventLog,
)
from billing.services.credit_ledger import get_balance
from billing.services.provider_http import ProviderError
from billing.tests.conftest import post_json

WEBHOOK_URL = reverse("billing:stripe-webhook")
VERIFY_URL = reverse("billing:stripe-verify")
REFUND_URL = reverse("billing:admin-stripe-refund")


def _session(user, session_id="cs_test_abc", **overrides):
    session = {
        "id": session_id,
        "object": "checkout.session",
        "payment_status": "paid",
        "amount_total": 999,
        "currency": "usd",
        "payment_intent": "pi_test_abc",
        "customer_email": user.email,
        "metadata": {"user_id": str(user.pk), "credits": "10"},
    }
    session.update(overrides)
    return session


def _event(session, event_id="evt_test_1", event_type="checkout.session.completed"):
    return {"id": event_id, "type": event_type, "data": {"object": session}}


@pytest.mark.django_db
def test_webhook_credits_session_and_replays_response(api_client, user, fake_stripe):
    event = _event(_session(user))

    first = post_json(api_client, WEBHOOK_URL, event)
    second = post_json(api_client, WEBHOOK_URL, event)

    assert first.status_code == 200
    assert first.json() == {
        "success": True,
        "creditsAdded": 10,
        "newBalance": 10,
        "alreadyProcessed": False,
        "received": True,
    }
    assert second.status_code == 200
    assert second.json()["alreadyProcessed"] is True
    assert second.json()["newBalance"] == 10
    assert get_balance(user.pk, "full") == 10

    payment = StripePayment.objects.get(session_id="cs_test_abc")
    assert payment.status == PaymentStatus.COMPLETED
    assert payment.amount_usd == Decimal("9.99")
    assert payment.payment_intent_id == "pi_test_abc"
    assert WebhookEventLog.objects.get(event_id="evt_test_1").handled is True


@pytest.mark.django_db
def test_distinct_events_for_same_session_credit_once(api_client, user, fake_stripe):
    session = _session(user)

    post_json(api_client, WEBHOOK_URL, _event(session, event_id="evt_a"))
    response = post_json(api_client, WEBHOOK_URL, _event(session, event_id="evt_b"))

    assert response.json()["alreadyProcessed"] is True
    assert get_balance(user.pk, "full") == 10
    assert CreditTransaction.objects.filter(kind=CreditTransaction.Kind.PURCHASE).count() == 1


@pytest.mark.django_db
def test_webhook_then_verify_credits_once(api_client, auth_client, user, fake_stripe):
    session = _session(user)
    fake_stripe.sessions[session["id"]] = session

    post_json(api_client, WEBHOOK_URL, _event(session))
    response = post_json(auth_client, VERIFY_URL, {"sessionId": session["id"]})

    assert response.status_code == 200
    assert response.json() == {"success": True, "creditsAdded": 10, "newBalance": 10, "alreadyProcessed": True}
    assert get_balance(user.pk, "full") == 10
    assert PaymentIdempotencyKey.objects.filter(provider="stripe", key=session["id"]).count() == 1


@pytest.mark.django_db
def test_verify_then_webhook_credits_once(api_client, auth_client, user, fake_stripe):
    session = _session(user)
    fake_stripe.sessions[session["id"]] = session

    verify = post_json(auth_client, VERIFY_URL, {"sessionId": session["id"]})
    webhook = post_json(api_client, WEBHOOK_URL, _event(session))

    assert verify.json()["alreadyProcessed"] is False
    assert webhook.json()["alreadyProcessed"] is True
    assert get_balance(user.pk, "full") == 10


@pytest.mark.django_db
def test_verify_rejects_session_owned_by_another_user(auth_client, user, other_user, fake_stripe):
    session = _session(other_user)
    fake_stripe.sessions[session["id"]] = session

    response = post_json(auth_client, VERIFY_URL, {"sessionId": session["id"]})

    assert response.status_code == 403
    assert get_balance(other_user.pk, "full") == 0
    assert not PaymentIdempotencyKey.objects.exists()


@pytest.mark.django_db
def test_verify_unpaid_session_credits_nothing(auth_client, user, fake_stripe):
    session = _session(user, payment_status="unpaid")
    fake_stripe.sessions[session["id"]] = session

    response = post_json(auth_client, VERIFY_URL, {"sessionId": session["id"]})

    assert response.status_code == 200
    assert response.json() == {"success": False, "status": "unpaid"}
    assert get_balance(user.pk, "full") == 0


@pytest.mark.django_db
def test_verify_requires_authentication(api_client, fake_stripe):
    response = post_json(api_client, VERIFY_URL, {"sessionId": "cs_test_abc"})

    assert response.status_code in (401, 403)


@pytest.mark.django_db
def test_verify_maps_provider_failure_to_bad_gateway(auth_client, fake_stripe):
    response = post_json(auth_client, VERIFY_URL, {"sessionId": "cs_missing"})

    assert response.status_code == 502
    assert response.json() == {"success": False, "error": "Failed to verify payment"}


@pytest.mark.django_db
def test_webhook_without_metadata_is_acknowledged(api_client, user, fake_stripe):
    session = _session(user, metadata={})

    response = post_json(api_client, WEBHOOK_URL, _event(session))

    assert response.status_code == 200
    assert response.json() == {"success": True, "received": True}
    assert get_balance(user.pk, "full") == 0
    assert WebhookEventLog.objects.get(event_id="evt_test_1").status == WebhookEventLog.Status.IGNORED


@pytest.mark.django_db
def test_unexpected_failure_is_dead_lettered_and_rolled_back(api_client, user, fake_stripe, monkeypatch):
    from billing.adapters import stripe as stripe_adapter

    def explode(*args, **kwargs):
        raise RuntimeError("ledger unavailable")

    monkeypatch.setattr(stripe_adapter, "credit_payment", explode)

    response = post_json(api_client, WEBHOOK_URL, _event(_session(user)))

    assert response.status_code == 500
    assert get_balance(user.pk, "full") == 0
    assert not StripePayment.objects.exists()
    dead_letter = BillingEventDeadLetter.objects.get(provider="stripe", event_id="evt_test_1")
    assert "ledger unavailable" in dead_letter.failure_reason
    log_entry = WebhookEventLog.objects.get(event_id="evt_test_1")
    assert log_entry.handled is False
    assert log_entry.status == WebhookEventLog.Status.FAILED


@pytest.mark.django_db
def test_payment_failed_event_marks_pending_payment(api_client, user, fake_stripe):
    StripePayment.objects.create(user=user, session_id="cs_pending", payment_intent_id="pi_fail", credits=10)
    event = _event(
        {"id": "pi_fail", "last_payment_error": {"message": "Card declined"}},
        event_id="evt_fail",
        event_type="payment_intent.payment_failed",
    )

    response = post_json(api_client, WEBHOOK_URL, event)

    payment = StripePayment.objects.get(session_id="cs_pending")
    assert response.status_code == 200
    assert payment.status == PaymentStatus.FAILED
    assert payment.failure_reason == "Card declined"


@pytest.mark.django_db
def test_declined_attempt_followed_by_paid_session_completes_payment(api_client, staff_client, user, fake_stripe):
    StripePayment.objects.create(
        user=user,
        session_id="cs_test_abc",
        payment_intent_id="pi_test_abc",
        credits=10,
        amount_usd=Decimal("9.99"),
    )
    declined = _event(
        {"id": "pi_test_abc", "last_payment_error": {"message": "Card declined"}},
        event_id="evt_declined",
        event_type="payment_intent.payment_failed",
    )
    post_json(api_client, WEBHOOK_URL, declined)

    response = post_json(api_client, WEBHOOK_URL, _event(_session(user), event_id="evt_paid"))

    assert response.json()["creditsAdded"] == 10
    assert get_balance(user.pk, "full") == 10
    payment = StripePayment.objects.get(session_id="cs_test_abc")
    assert payment.status == PaymentStatus.COMPLETED
    assert payment.completed_at is not None

    refund = post_json(staff_client, REFUND_URL, {"paymentIntentId": "pi_test_abc"})

    assert refund.status_code == 200
    assert get_balance(user.pk, "full") == 0


@pytest.mark.django_db
def test_admin_partial_refund_deducts_proportional_credits(api_client, staff_client, user, fake_stripe):
    post_json(api_client, WEBHOOK_URL, _event(_session(user)))

    response = post_json(staff_client, REFUND_URL, {"paymentIntentId": "pi_test_abc", "amount": 500})

    assert response.status_code == 200
    body = response.json()
    assert body["refund"]["credits_deducted"] == 6
    assert body["refund"]["amount"] == 500
    assert get_balance(user.pk, "full") == 4
    payment = StripePayment.objects.get(session_id="cs_test_abc")
    assert payment.status == PaymentStatus.PARTIALLY_REFUNDED
    refund = RefundRecord.objects.get(payment=payment)
    assert refund.amount_usd == Decimal("5.00")
    assert refund.transaction.kind == CreditTransaction.Kind.REFUND


@pytest.mark.django_db
def test_admin_full_refund_clamps_spent_credits(api_client, staff_client, user, fake_stripe):
    from billing.services.credit_ledger import deduct_credits

    post_json(api_client, WEBHOOK_URL, _event(_session(user)))
    deduct_credits(user.pk, "full", 7)

    response = post_json(staff_client, REFUND_URL, {"paymentIntentId": "pi_test_abc"})

    assert response.status_code == 200
    assert response.json()["refund"]["credits_deducted"] == 3
    assert get_balance(user.pk, "full") == 0
    assert StripePayment.objects.get(session_id="cs_test_abc").status == PaymentStatus.REFUNDED
    assert fake_stripe.refund_calls[0]["amount_minor"] is None


@pytest.mark.django_db
def test_admin_refund_provider_failure_changes_nothing(api_client, staff_client, user, fake_stripe):
    post_json(api_client, WEBHOOK_URL, _event(_session(user)))
    fake_stripe.refund_error = ProviderError("charge already refunded", status_code=400)

    response = post_json(staff_client, REFUND_URL, {"paymentIntentId": "pi_test_abc"})

    assert response.status_code == 502
    assert get_balance(user.pk, "full") == 10
    assert StripePayment.objects.get(session_id="cs_test_abc").status == PaymentStatus.COMPLETED
    assert not RefundRecord.objects.exists()


@pytest.mark.django_db
def test_admin_refund_unknown_payment(staff_client, fake_stripe):
    response = post_json(staff_client, REFUND_URL, {"paymentIntentId": "pi_unknown"})

    assert response.status_code == 404


@pytest.mark.django_db
def test_refund_requires_staff(auth_client, fake_stripe):
    response = post_json(auth_client, REFUND_URL, {"paymentIntentId": "pi_test_abc"})

    assert response.status_code == 403


@pytest.mark.django_db
def test_verify_adds_to_existing_balance_once(auth_client, user, fake_stripe, grant_credits):
    grant_credits(user, 5)
    session = _session(user)
    fake_stripe.sessions[session["id"]] = session

    first = post_json(auth_client, VERIFY_URL, {"sessionId": session["id"]})
    second = post_json(auth_client, VERIFY_URL, {"sessionId": session["id"]})

    assert first.json()["newBalance"] == 15
    assert second.json() == {"success": True, "creditsAdded": 10, "newBalance": 15, "alreadyProcessed": True}
    assert CreditTransaction.objects.filter(user=user, kind=CreditTransaction.Kind.PURCHASE).count() == 1


@pytest.mark.django_db
def test_failing_side_effect_does_not_change_payment_response(
    api_client, user, fake_stripe, monkeypatch, django_capture_on_commit_callbacks
):
    from billing.models import OutboxMessage
    from billing.services import notifications

    def broken(message):
        raise ProviderError("push gateway down", status_code=503)

    monkeypatch.setitem(notifications.CHANNEL_HANDLERS, OutboxMessage.Kind.PUSH, broken)

    with django_capture_on_commit_callbacks(execute=True):
        response = post_json(api_client, WEBHOOK_URL, _event(_session(user)))

    assert response.status_code == 200
    assert response.json()["newBalance"] == 10
    push = OutboxMessage.objects.get(kind=OutboxMessage.Kind.PUSH)
    assert push.status == OutboxMessage.Status.PENDING
    assert push.attempts == 1
    assert OutboxMessage.objects.get(kind=OutboxMessage.Kind.NOTIFICATION).status == OutboxMessage.Status.DELIVERED


@pytest.mark.django_db
def test_webhook_with_unknown_credit_type_is_rejected(api_client, user, fake_stripe):
    session = _session(user, metadata={"user_id": str(user.pk), "credits": "10", "credit_type": "platinum"})

    response = post_json(api_client, WEBHOOK_URL, _event(session))

    assert response.status_code == 400
    assert response.json()["success"] is False
    assert get_balance(user.pk, "full") == 0
    assert not BillingEventDeadLetter.objects.exists()
    assert not StripePayment.objects.exists()


@pytest.mark.django_db
def test_verify_with_unknown_credit_type_is_bad_request(auth_client, user, fake_stripe):
    session = _session(user, metadata={"user_id": str(user.pk), "credits": "10", "credit_type": "platinum"})
    fake_stripe.sessions[session["id"]] = session

    response = post_json(auth_client, VERIFY_URL, {"sessionId": session["id"]})

    assert response.status_code == 400
    assert response.json()["success"] is False
    assert get_balance(user.pk, "full") == 0
