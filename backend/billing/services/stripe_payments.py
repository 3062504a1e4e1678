"""Stripe gateway used by the webhook, verification and refund flows."""
from __future__ import annotations

import json
import logging
import time
from typing import Any, Dict, Optional

import stripe

from billing.observability.metrics import PROVIDER_REQUEST_LATENCY
from billing.services.provider_http import ProviderConfigurationError, ProviderError, ProviderSignatureError

logger = logging.getLogger(__name__)

VALID_REFUND_REASONS = {"duplicate", "fraudulent", "requested_by_customer"}


def _to_dict(obj: Any) -> Dict[str, Any]:
    if obj is None:
        return {}
    if isinstance(obj, dict) and not hasattr(obj, "to_dict"):
        return obj
    to_dict = getattr(obj, "to_dict", None)
    if callable(to_dict):
        return to_dict()
    return dict(obj)


class StripeGateway:
    """Thin wrapper over the Stripe SDK; credentials travel with each call instead of module globals."""

    provider = "stripe"

    def __init__(self, *, api_key: str, webhook_secret: str = "", api_version: Optional[str] = None):
        self.api_key = api_key
        self.webhook_secret = webhook_secret
        self.api_version = api_version

    def _request_options(self) -> Dict[str, Any]:
        if not self.api_key:
            raise ProviderConfigurationError("STRIPE_SECRET_KEY is not configured.")
        options: Dict[str, Any] = {"api_key": self.api_key}
        if self.api_version:
            options["stripe_version"] = self.api_version
        return options

    def parse_event(self, payload: str, sig_header: Optional[str]) -> Dict[str, Any]:
        """Validate (when a secret is configured) and deserialize a webhook payload."""

        if not self.webhook_secret:
            try:
                event = json.loads(payload or "")
            except ValueError as exc:
                raise ProviderError("Malformed Stripe webhook payload.") from exc
            if not isinstance(event, dict):
                raise ProviderError("Malformed Stripe webhook payload.")
            return event

        if not sig_header:
            raise ProviderSignatureError("Stripe-Signature header is missing.")

        try:
            event = stripe.Webhook.construct_event(payload=payload, sig_header=sig_header, secret=self.webhook_secret)
        except stripe.SignatureVerificationError as exc:
            logger.warning("Stripe webhook signature verification failed: %s", exc)
            raise ProviderSignatureError("Stripe webhook signature verification failed.") from exc
        except ValueError as exc:
            logger.error("Received malformed Stripe webhook payload: %s", exc)
            raise ProviderError("Malformed Stripe webhook payload.") from exc
        return _to_dict(event)

    def retrieve_checkout_session(self, session_id: str) -> Dict[str, Any]:
        if not session_id:
            raise ValueError("session_id is required.")

        options = self._request_options()
        started = time.monotonic()
        try:
            session = stripe.checkout.Session.retrieve(session_id, **options)
        except stripe.StripeError as exc:
            logger.warning("Failed to retrieve Stripe checkout session %s: %s", session_id, exc)
            raise ProviderError(str(exc), status_code=getattr(exc, "http_status", None)) from exc
        finally:
            PROVIDER_REQUEST_LATENCY.labels(provider=self.provider, operation="retrieve_session").observe(
                time.monotonic() - started
            )
        return _to_dict(session)

    def create_refund(
        self,
        *,
        payment_intent: str,
        amount_minor: Optional[int] = None,
        reason: Optional[str] = None,
        idempotency_key: Optional[str] = None,
        metadata: Optional[Dict[str, str]] = None,
    ) -> Dict[str, Any]:
        """Create a refund for a payment intent; ``amount_minor=None`` refunds in full."""

        if not payment_intent:
            raise ValueError("payment_intent is required.")
        if amount_minor is not None and amount_minor <= 0:
            raise ValueError("amount_minor must be positive.")

        params: Dict[str, Any] = {"payment_intent": payment_intent}
        if amount_minor is not None:
            params["amount"] = amount_minor
        if reason in VALID_REFUND_REASONS:
            params["reason"] = reason
        if metadata:
            params["metadata"] = metadata
        if idempotency_key:
            params["idempotency_key"] = idempotency_key

        options = self._request_options()
        started = time.monotonic()
        try:
            refund = stripe.Refund.create(**params, **options)
        except stripe.StripeError as exc:
            logger.warning("Failed to create Stripe refund for payment %s: %s", payment_intent, exc)
            raise ProviderError(str(exc), status_code=getattr(exc, "http_status", None)) from exc
        finally:
            PROVIDER_REQUEST_LATENCY.labels(provider=self.provider, operation="create_refund").observe(
                time.monotonic() - started
            )
        return _to_dict(refund)
