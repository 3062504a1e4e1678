import pytest
from django.contrib.auth import get_user_model
from django.urls import reverse

from billing.models import CreditTransaction, CreditValidity, OutboxMessage, PaymentIdempotencyKey
from billing.services.credit_ledger import get_balance
from billing.tests.conftest import post_json

ADJUST_URL = reverse("billing:admin-credit-adjust")
PREREGISTER_URL = reverse("billing:admin-preregister")


@pytest.mark.django_db
def test_admin_add_with_expiry_creates_validity(staff_client, staff_user, user):
    response = post_json(
        staff_client,
        ADJUST_URL,
        {"user_id": user.pk, "action": "add", "amount": 50, "credit_type": "full", "expires_in_days": 30},
    )

    assert response.status_code == 200
    body = response.json()
    assert body["amount"] == 50
    assert body["newBalance"] == 50
    assert body["expiresAt"] is not None

    transaction = CreditTransaction.objects.get(pk=body["transactionId"])
    assert transaction.kind == CreditTransaction.Kind.ADD
    assert transaction.performed_by == staff_user
    assert CreditValidity.objects.get(user=user).transaction == transaction


@pytest.mark.django_db
def test_admin_deduct_clamps_to_balance(staff_client, user, grant_credits):
    grant_credits(user, 5)

    response = post_json(
        staff_client,
        ADJUST_URL,
        {"user_id": user.pk, "action": "deduct", "amount": 20, "credit_type": "full", "reason": "chargeback"},
    )

    assert response.status_code == 200
    assert response.json()["amount"] == -5
    assert get_balance(user.pk, "full") == 0
    deduction = CreditTransaction.objects.get(user=user, kind=CreditTransaction.Kind.DEDUCT)
    assert deduction.metadata == {"reason": "chargeback"}


@pytest.mark.django_db
def test_admin_deduct_rejects_expiry(staff_client, user):
    response = post_json(
        staff_client,
        ADJUST_URL,
        {"user_id": user.pk, "action": "deduct", "amount": 1, "expires_in_days": 10},
    )

    assert response.status_code == 400


@pytest.mark.django_db
def test_admin_request_key_makes_retry_a_no_op(staff_client, user):
    payload = {"user_id": user.pk, "action": "add", "amount": 10, "request_key": "ticket-42"}

    first = post_json(staff_client, ADJUST_URL, payload)
    second = post_json(staff_client, ADJUST_URL, payload)

    assert first.json()["alreadyProcessed"] is False
    assert second.json()["alreadyProcessed"] is True
    assert second.json()["newBalance"] == 10
    assert get_balance(user.pk, "full") == 10
    assert PaymentIdempotencyKey.objects.get(key="ticket-42").provider == "admin"


@pytest.mark.django_db
def test_admin_adjust_unknown_user(staff_client):
    response = post_json(staff_client, ADJUST_URL, {"user_id": 999999, "action": "add", "amount": 1})

    assert response.status_code == 404


@pytest.mark.django_db
def test_admin_adjust_requires_staff(auth_client, user):
    response = post_json(auth_client, ADJUST_URL, {"user_id": user.pk, "action": "add", "amount": 1})

    assert response.status_code == 403
    assert get_balance(user.pk, "full") == 0


@pytest.mark.django_db
def test_preregister_creates_account_with_credits(staff_client):
    response = post_json(
        staff_client,
        PREREGISTER_URL,
        {"email": "New.Customer@Example.com", "credits": 100, "credit_type": "similarity", "expiry_days": 90},
    )

    assert response.status_code == 201
    new_user = get_user_model().objects.get(email="new.customer@example.com")
    assert response.json()["userId"] == new_user.pk
    assert new_user.has_usable_password() is False
    assert get_balance(new_user.pk, "similarity_only") == 100
    assert CreditValidity.objects.get(user=new_user).credits_amount == 100

    welcome = OutboxMessage.objects.get(user=new_user, kind=OutboxMessage.Kind.EMAIL)
    assert welcome.payload["template"] == "preregistration_welcome"
    assert welcome.payload["context"]["validity"] == "90 days"


@pytest.mark.django_db
def test_preregister_existing_email_conflicts(staff_client, user):
    response = post_json(staff_client, PREREGISTER_URL, {"email": "ALICE@example.com", "credits": 10})

    assert response.status_code == 409
    assert get_balance(user.pk, "full") == 0
