import json
from typing import Any, Dict, List

import pytest
from django.contrib.auth import get_user_model
from rest_framework.test import APIClient

from backend.celery import app as celery_app
from billing.models import CreditTransaction
from billing.services import clients
from billing.services.credit_ledger import apply_delta
from billing.services.provider_http import ProviderError


class FakeStripeGateway:
    """Stands in for ``StripeGateway``; sessions are served from a dict."""

    def __init__(self):
        self.sessions: Dict[str, Dict[str, Any]] = {}
        self.refund_calls: List[Dict[str, Any]] = []
        self.refund_error = None

    def parse_event(self, payload, sig_header):
        return json.loads(payload)

    def retrieve_checkout_session(self, session_id):
        try:
            return self.sessions[session_id]
        except KeyError:
            raise ProviderError("No such checkout.session", status_code=404) from None

    def create_refund(self, *, payment_intent, amount_minor=None, reason=None, idempotency_key=None, metadata=None):
        if self.refund_error is not None:
            raise self.refund_error
        self.refund_calls.append(
            {
                "payment_intent": payment_intent,
                "amount_minor": amount_minor,
                "reason": reason,
                "idempotency_key": idempotency_key,
            }
        )
        return {
            "id": f"re_test_{len(self.refund_calls):08d}",
            "amount": amount_minor,
            "status": "succeeded",
        }


class FakePayPalClient:
    def __init__(self):
        self.orders: Dict[str, Dict[str, Any]] = {}
        self.captured: Dict[str, Dict[str, Any]] = {}
        self.capture_calls: List[str] = []

    def get_order(self, order_id):
        if order_id not in self.orders:
            raise ProviderError("RESOURCE_NOT_FOUND", status_code=404)
        return self.orders[order_id]

    def capture_order(self, order_id):
        self.capture_calls.append(order_id)
        return self.captured[order_id]


class FakeVivaClient:
    def __init__(self):
        self.orders: Dict[str, Dict[str, Any]] = {}
        self.error = None

    def get_order(self, order_code):
        if self.error is not None:
            raise self.error
        return self.orders[str(order_code)]


@pytest.fixture(autouse=True)
def eager_celery(monkeypatch):
    monkeypatch.setattr(celery_app.conf, "CELERY_TASK_ALWAYS_EAGER", True)
    monkeypatch.setattr(celery_app.conf, "CELERY_TASK_EAGER_PROPAGATES", True)


@pytest.fixture(autouse=True)
def billing_settings(settings):
    settings.CREDIT_DEFAULT_VALIDITY_DAYS = 365
    settings.OUTBOX_MAX_ATTEMPTS = 3
    settings.OUTBOX_RETRY_BASE_SECONDS = 30
    settings.PUSH_GATEWAY_URL = ""
    settings.VIVA_WEBHOOK_VERIFICATION_KEY = "viva-key"
    return settings


@pytest.fixture
def user(db):
    return get_user_model().objects.create_user(
        username="alice",
        email="alice@example.com",
        password="pass1234",
    )


@pytest.fixture
def other_user(db):
    return get_user_model().objects.create_user(
        username="bob",
        email="bob@example.com",
        password="pass1234",
    )


@pytest.fixture
def staff_user(db):
    return get_user_model().objects.create_user(
        username="admin",
        email="admin@example.com",
        password="pass1234",
        is_staff=True,
    )


@pytest.fixture
def api_client():
    return APIClient()


@pytest.fixture
def auth_client(api_client, user):
    api_client.force_authenticate(user=user)
    return api_client


@pytest.fixture
def staff_client(api_client, staff_user):
    api_client.force_authenticate(user=staff_user)
    return api_client


@pytest.fixture
def fake_stripe(monkeypatch):
    gateway = FakeStripeGateway()
    monkeypatch.setattr(clients, "get_stripe_client", lambda: gateway)
    return gateway


@pytest.fixture
def fake_paypal(monkeypatch):
    client = FakePayPalClient()
    monkeypatch.setattr(clients, "get_paypal_client", lambda: client)
    return client


@pytest.fixture
def fake_viva(monkeypatch):
    client = FakeVivaClient()
    monkeypatch.setattr(clients, "get_viva_client", lambda: client)
    return client


@pytest.fixture
def grant_credits():
    """Seed a balance through the ledger so transaction sums stay consistent."""

    def _grant(user, amount, credit_type="full"):
        return apply_delta(
            user.pk,
            credit_type,
            amount,
            kind=CreditTransaction.Kind.ADD,
            description="Seed credits",
        )

    return _grant


def post_json(client, url, payload, **extra):
    return client.post(url, data=json.dumps(payload), content_type="application/json", **extra)
