from decimal import Decimal

import pytest
from django.urls import reverse

from billing.models import PaymentStatus, PayPalPayment
from billing.services.credit_ledger import get_balance
from billing.tests.conftest import post_json

WEBHOOK_URL = reverse("billing:paypal-webhook")
VERIFY_URL = reverse("billing:paypal-verify")


@pytest.fixture
def paypal_payment(user):
    return PayPalPayment.objects.create(
        user=user,
        order_id="ORDER-1",
        credits=25,
        amount_usd=Decimal("19.99"),
    )


def _completed_order(order_id="ORDER-1", capture_id="CAPTURE-1"):
    return {
        "id": order_id,
        "status": "COMPLETED",
        "payer": {
            "payer_id": "PAYER-1",
            "email_address": "buyer@example.com",
            "name": {"given_name": "Alice", "surname": "Buyer"},
        },
        "purchase_units": [{"payments": {"captures": [{"id": capture_id, "status": "COMPLETED"}]}}],
    }


def _capture_event(event_id="WH-1", order_id="ORDER-1", capture_id="CAPTURE-1"):
    return {
        "id": event_id,
        "event_type": "PAYMENT.CAPTURE.COMPLETED",
        "resource": {
            "id": capture_id,
            "status": "COMPLETED",
            "supplementary_data": {"related_ids": {"order_id": order_id}},
        },
    }


@pytest.mark.django_db
def test_verify_captures_approved_order(auth_client, user, paypal_payment, fake_paypal):
    fake_paypal.orders["ORDER-1"] = {"id": "ORDER-1", "status": "APPROVED"}
    fake_paypal.captured["ORDER-1"] = _completed_order()

    response = post_json(auth_client, VERIFY_URL, {"orderId": "ORDER-1"})

    assert response.status_code == 200
    assert response.json() == {
        "success": True,
        "creditsAdded": 25,
        "newBalance": 25,
        "alreadyProcessed": False,
        "amountPaid": "19.99",
    }
    assert fake_paypal.capture_calls == ["ORDER-1"]
    paypal_payment.refresh_from_db()
    assert paypal_payment.status == PaymentStatus.COMPLETED
    assert paypal_payment.capture_id == "CAPTURE-1"
    assert paypal_payment.payer_email == "buyer@example.com"
    assert paypal_payment.payer_name == "Alice Buyer"


@pytest.mark.django_db
def test_verify_of_completed_payment_does_not_call_provider(auth_client, user, paypal_payment, fake_paypal):
    fake_paypal.orders["ORDER-1"] = _completed_order()
    post_json(auth_client, VERIFY_URL, {"orderId": "ORDER-1"})
    fake_paypal.orders.clear()

    response = post_json(auth_client, VERIFY_URL, {"orderId": "ORDER-1"})

    assert response.status_code == 200
    assert response.json()["alreadyProcessed"] is True
    assert response.json()["newBalance"] == 25
    assert get_balance(user.pk, "full") == 25


@pytest.mark.django_db
def test_verify_pending_order_credits_nothing(auth_client, user, paypal_payment, fake_paypal):
    fake_paypal.orders["ORDER-1"] = {"id": "ORDER-1", "status": "PAYER_ACTION_REQUIRED"}

    response = post_json(auth_client, VERIFY_URL, {"orderId": "ORDER-1"})

    assert response.json() == {"success": False, "status": "PAYER_ACTION_REQUIRED"}
    assert get_balance(user.pk, "full") == 0


@pytest.mark.django_db
def test_verify_unknown_order_is_not_found(auth_client, fake_paypal):
    response = post_json(auth_client, VERIFY_URL, {"orderId": "ORDER-404"})

    assert response.status_code == 404


@pytest.mark.django_db
def test_verify_rejects_other_users_order(api_client, other_user, paypal_payment, fake_paypal):
    api_client.force_authenticate(user=other_user)

    response = post_json(api_client, VERIFY_URL, {"orderId": "ORDER-1"})

    assert response.status_code == 403
    assert fake_paypal.capture_calls == []


@pytest.mark.django_db
def test_capture_webhook_then_verify_credits_once(api_client, auth_client, user, paypal_payment, fake_paypal):
    fake_paypal.orders["ORDER-1"] = _completed_order()
    webhook = post_json(api_client, WEBHOOK_URL, _capture_event())
    verify = post_json(auth_client, VERIFY_URL, {"orderId": "ORDER-1"})

    assert webhook.status_code == 200
    assert webhook.json()["creditsAdded"] == 25
    assert verify.json()["alreadyProcessed"] is True
    assert get_balance(user.pk, "full") == 25


@pytest.mark.django_db
def test_capture_webhook_redelivery_replays_response(api_client, user, paypal_payment, fake_paypal):
    fake_paypal.orders["ORDER-1"] = _completed_order()
    first = post_json(api_client, WEBHOOK_URL, _capture_event())
    second = post_json(api_client, WEBHOOK_URL, _capture_event())

    assert first.json()["alreadyProcessed"] is False
    assert second.json()["alreadyProcessed"] is True
    assert second.json()["creditsAdded"] == 25
    assert get_balance(user.pk, "full") == 25


@pytest.mark.django_db
def test_order_approved_webhook_moves_payment_forward(api_client, paypal_payment, fake_paypal):
    event = {
        "id": "WH-APPROVED",
        "event_type": "CHECKOUT.ORDER.APPROVED",
        "resource": {"id": "ORDER-1", "payer": {"payer_id": "PAYER-1", "email_address": "buyer@example.com"}},
    }

    response = post_json(api_client, WEBHOOK_URL, event)

    paypal_payment.refresh_from_db()
    assert response.status_code == 200
    assert paypal_payment.status == PaymentStatus.APPROVED
    assert paypal_payment.payer_id == "PAYER-1"


@pytest.mark.django_db
def test_webhook_rejects_malformed_body(api_client):
    response = api_client.post(WEBHOOK_URL, data="not-json", content_type="application/json")

    assert response.status_code == 400


@pytest.mark.django_db
def test_capture_webhook_for_unpaid_order_credits_nothing(api_client, user, paypal_payment, fake_paypal):
    fake_paypal.orders["ORDER-1"] = {"id": "ORDER-1", "status": "APPROVED"}

    response = post_json(api_client, WEBHOOK_URL, _capture_event(capture_id="CAPTURE-FORGED"))

    assert response.status_code == 200
    assert response.json()["status"] == "APPROVED"
    assert "creditsAdded" not in response.json()
    assert get_balance(user.pk, "full") == 0
    paypal_payment.refresh_from_db()
    assert paypal_payment.status == PaymentStatus.PENDING
    assert paypal_payment.capture_id == ""


@pytest.mark.django_db
def test_capture_webhook_takes_capture_and_payer_from_order(api_client, paypal_payment, fake_paypal):
    fake_paypal.orders["ORDER-1"] = _completed_order(capture_id="CAPTURE-REAL")

    post_json(api_client, WEBHOOK_URL, _capture_event(capture_id="CAPTURE-REAL"))

    paypal_payment.refresh_from_db()
    assert paypal_payment.status == PaymentStatus.COMPLETED
    assert paypal_payment.capture_id == "CAPTURE-REAL"
    assert paypal_payment.payer_email == "buyer@example.com"


@pytest.mark.django_db
def test_capture_webhook_for_completed_payment_reports_balance(api_client, user, paypal_payment, fake_paypal):
    fake_paypal.orders["ORDER-1"] = _completed_order()
    post_json(api_client, WEBHOOK_URL, _capture_event(event_id="WH-1"))
    fake_paypal.orders.clear()

    response = post_json(api_client, WEBHOOK_URL, _capture_event(event_id="WH-2"))

    assert response.status_code == 200
    assert response.json()["alreadyProcessed"] is True
    assert response.json()["newBalance"] == 25
    assert get_balance(user.pk, "full") == 25
