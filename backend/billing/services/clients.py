"""Factories for provider clients.

Views and tasks ask these functions for a client on every call instead of
sharing module-level SDK state, so settings overrides apply immediately and
tests can substitute fakes with ``monkeypatch``.
"""
from __future__ import annotations

from django.conf import settings

from billing.services.paypal import PayPalClient
from billing.services.push import PushGatewayClient
from billing.services.stripe_payments import StripeGateway
from billing.services.viva import VivaClient


def _timeout():
    return getattr(settings, "PROVIDER_HTTP_TIMEOUT", 15)


def get_stripe_client() -> StripeGateway:
    return StripeGateway(
        api_key=getattr(settings, "STRIPE_SECRET_KEY", ""),
        webhook_secret=getattr(settings, "STRIPE_WEBHOOK_SECRET", ""),
        api_version=getattr(settings, "STRIPE_API_VERSION", None),
    )


def get_paypal_client() -> PayPalClient:
    return PayPalClient(
        client_id=getattr(settings, "PAYPAL_CLIENT_ID", ""),
        client_secret=getattr(settings, "PAYPAL_CLIENT_SECRET", ""),
        mode=getattr(settings, "PAYPAL_MODE", "sandbox"),
        timeout=_timeout(),
    )


def get_viva_client() -> VivaClient:
    return VivaClient(
        client_id=getattr(settings, "VIVA_CLIENT_ID", ""),
        client_secret=getattr(settings, "VIVA_CLIENT_SECRET", ""),
        environment=getattr(settings, "VIVA_ENVIRONMENT", "demo"),
        timeout=_timeout(),
    )


def get_push_client() -> PushGatewayClient:
    return PushGatewayClient(
        url=getattr(settings, "PUSH_GATEWAY_URL", ""),
        token=getattr(settings, "PUSH_GATEWAY_TOKEN", ""),
        timeout=_timeout(),
    )
