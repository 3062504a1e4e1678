from decimal import Decimal

import pytest
from django.urls import reverse

from billing.models import DodoPayment, PaymentStatus, WebhookEventLog
from billing.services.credit_ledger import get_balance
from billing.tests.conftest import post_json

WEBHOOK_URL = reverse("billing:dodo-webhook")


def _succeeded(user, payment_id="pay_001", **metadata):
    values = {"user_id": str(user.pk), "credits": "40"}
    values.update(metadata)
    return {
        "type": "payment.succeeded",
        "data": {
            "payment_id": payment_id,
            "total_amount": 2999,
            "currency": "USD",
            "receipt_url": "https://dodo.example.com/receipts/pay_001",
            "metadata": values,
        },
    }


@pytest.mark.django_db
def test_payment_succeeded_credits_and_records_payment(api_client, user):
    response = post_json(api_client, WEBHOOK_URL, _succeeded(user), HTTP_WEBHOOK_ID="msg_1")

    assert response.status_code == 200
    assert response.json() == {"success": True, "creditsAdded": 40, "newBalance": 40, "alreadyProcessed": False}
    payment = DodoPayment.objects.get(payment_id="pay_001")
    assert payment.status == PaymentStatus.COMPLETED
    assert payment.amount_usd == Decimal("29.99")
    assert payment.receipt_url == "https://dodo.example.com/receipts/pay_001"


@pytest.mark.django_db
def test_redelivery_with_same_webhook_id_is_replayed(api_client, user):
    post_json(api_client, WEBHOOK_URL, _succeeded(user), HTTP_WEBHOOK_ID="msg_1")
    response = post_json(api_client, WEBHOOK_URL, _succeeded(user), HTTP_WEBHOOK_ID="msg_1")

    assert response.json()["alreadyProcessed"] is True
    assert get_balance(user.pk, "full") == 40
    assert WebhookEventLog.objects.filter(provider="dodo").count() == 1


@pytest.mark.django_db
def test_different_deliveries_for_same_payment_credit_once(api_client, user):
    post_json(api_client, WEBHOOK_URL, _succeeded(user), HTTP_WEBHOOK_ID="msg_1")
    response = post_json(api_client, WEBHOOK_URL, _succeeded(user), HTTP_WEBHOOK_ID="msg_2")

    assert response.json()["alreadyProcessed"] is True
    assert get_balance(user.pk, "full") == 40


@pytest.mark.django_db
def test_event_without_ids_falls_back_to_type_and_payment(api_client, user):
    post_json(api_client, WEBHOOK_URL, _succeeded(user))

    assert WebhookEventLog.objects.get(provider="dodo").event_id == "payment.succeeded:pay_001"


@pytest.mark.django_db
def test_similarity_credits_go_to_their_own_balance(api_client, user):
    post_json(api_client, WEBHOOK_URL, _succeeded(user, credit_type="similarity"), HTTP_WEBHOOK_ID="msg_sim")

    assert get_balance(user.pk, "similarity") == 40
    assert get_balance(user.pk, "full") == 0


@pytest.mark.django_db
def test_missing_user_is_rejected(api_client, user):
    event = _succeeded(user)
    event["data"]["metadata"] = {"credits": "40"}

    response = post_json(api_client, WEBHOOK_URL, event, HTTP_WEBHOOK_ID="msg_nouser")

    assert response.status_code == 400
    assert response.json() == {"success": False, "error": "User not found"}
    assert not DodoPayment.objects.exists()


@pytest.mark.django_db
def test_existing_checkout_record_supplies_purchase_details(api_client, user):
    DodoPayment.objects.create(
        user=user,
        checkout_session_id="pay_002",
        credits=15,
        amount_usd=Decimal("12.00"),
    )
    event = {"type": "payment.succeeded", "data": {"payment_id": "pay_002", "total_amount": 1200}}

    response = post_json(api_client, WEBHOOK_URL, event, HTTP_WEBHOOK_ID="msg_3")

    assert response.json()["creditsAdded"] == 15
    payment = DodoPayment.objects.get(checkout_session_id="pay_002")
    assert payment.status == PaymentStatus.COMPLETED
    assert payment.payment_id == "pay_002"


@pytest.mark.django_db
def test_refund_event_marks_payment_without_clawback(api_client, user):
    post_json(api_client, WEBHOOK_URL, _succeeded(user), HTTP_WEBHOOK_ID="msg_1")
    refund = {"type": "payment.refunded", "data": {"payment_id": "pay_001"}}

    response = post_json(api_client, WEBHOOK_URL, refund, HTTP_WEBHOOK_ID="msg_refund")

    assert response.status_code == 200
    assert DodoPayment.objects.get(payment_id="pay_001").status == PaymentStatus.REFUNDED
    assert get_balance(user.pk, "full") == 40


@pytest.mark.django_db
def test_failed_event_after_completion_is_ignored(api_client, user):
    post_json(api_client, WEBHOOK_URL, _succeeded(user), HTTP_WEBHOOK_ID="msg_1")
    failed = {"type": "payment.failed", "data": {"payment_id": "pay_001", "error_message": "late decline"}}

    response = post_json(api_client, WEBHOOK_URL, failed, HTTP_WEBHOOK_ID="msg_failed")

    assert response.status_code == 200
    assert DodoPayment.objects.get(payment_id="pay_001").status == PaymentStatus.COMPLETED


@pytest.mark.django_db
def test_success_after_failed_attempt_completes_payment(api_client, user):
    DodoPayment.objects.create(user=user, payment_id="pay_001", credits=40, amount_usd=Decimal("29.99"))
    failed = {"type": "payment.failed", "data": {"payment_id": "pay_001", "error_message": "insufficient funds"}}
    post_json(api_client, WEBHOOK_URL, failed, HTTP_WEBHOOK_ID="msg_failed")
    assert DodoPayment.objects.get(payment_id="pay_001").status == PaymentStatus.FAILED

    response = post_json(api_client, WEBHOOK_URL, _succeeded(user), HTTP_WEBHOOK_ID="msg_paid")

    assert response.json()["creditsAdded"] == 40
    assert get_balance(user.pk, "full") == 40
    assert DodoPayment.objects.get(payment_id="pay_001").status == PaymentStatus.COMPLETED


@pytest.mark.django_db
def test_unknown_credit_type_is_rejected(api_client, user):
    response = post_json(api_client, WEBHOOK_URL, _succeeded(user, credit_type="platinum"), HTTP_WEBHOOK_ID="msg_1")

    assert response.status_code == 400
    assert response.json()["success"] is False
    assert get_balance(user.pk, "full") == 0
    assert not DodoPayment.objects.exists()
