"""Provider webhook endpoints.

Each view decodes the request, derives the provider's event identity and hands
the payload to :func:`billing.webhooks.process_webhook`, which deduplicates on
``(provider, event_id)`` and replays the first response to redeliveries.
"""
from __future__ import annotations

import json
import logging
from typing import Any, Dict, Optional

from django.conf import settings
from django.utils.decorators import method_decorator
from django.views.decorators.csrf import csrf_exempt
from rest_framework.response import Response
from rest_framework.views import APIView

from billing.adapters import dodo, get_dispatcher, viva
from billing.models import PaymentProvider
from billing.services import clients
from billing.services.provider_http import ProviderConfigurationError, ProviderError, ProviderSignatureError
from billing.webhooks import process_webhook

logger = logging.getLogger(__name__)


def _decode_payload(body: bytes) -> Optional[str]:
    if not body:
        return ""
    try:
        return body.decode("utf-8")
    except UnicodeDecodeError:
        return None


def _load_json(body: bytes) -> Optional[Dict[str, Any]]:
    payload = _decode_payload(body)
    if not payload:
        return None
    try:
        event = json.loads(payload)
    except ValueError:
        return None
    return event if isinstance(event, dict) else None


def _invalid_payload(provider: str) -> Response:
    logger.error("Unable to decode %s webhook payload.", provider)
    return Response({"success": False, "error": "Invalid payload"}, status=400)


def _run(provider: str, event_id: Optional[str], event_type: Optional[str], event: Dict[str, Any]) -> Response:
    result = process_webhook(
        provider=provider,
        event_id=event_id,
        event_type=event_type,
        payload=event,
        dispatch=get_dispatcher(provider),
    )
    return Response(result.body, status=result.http_status)


@method_decorator(csrf_exempt, name="dispatch")
class StripeWebhookView(APIView):
    """Receive Stripe events; the signature is checked when a webhook secret is configured."""

    authentication_classes = []
    permission_classes = []
    http_method_names = ["post"]

    def post(self, request, *args, **kwargs):  # noqa: D401 - DRF signature
        payload = _decode_payload(request.body)
        if payload is None:
            return _invalid_payload("Stripe")

        try:
            event = clients.get_stripe_client().parse_event(payload, request.headers.get("Stripe-Signature") or "")
        except ProviderSignatureError:
            logger.warning("Stripe webhook signature verification failed.")
            return Response({"success": False, "error": "Invalid signature"}, status=400)
        except ProviderConfigurationError as exc:
            logger.error("Stripe webhook configuration error: %s", exc)
            return Response({"success": False, "error": "Webhook not configured"}, status=500)
        except ProviderError as exc:
            logger.warning("Stripe webhook rejected due to malformed payload: %s", exc)
            return Response({"success": False, "error": "Invalid payload"}, status=400)

        logger.info("Stripe webhook event received: %s (%s)", event.get("type"), event.get("id"))
        return _run(PaymentProvider.STRIPE, event.get("id"), event.get("type"), event)


@method_decorator(csrf_exempt, name="dispatch")
class PayPalWebhookView(APIView):
    authentication_classes = []
    permission_classes = []
    http_method_names = ["post"]

    def post(self, request, *args, **kwargs):  # noqa: D401 - DRF signature
        event = _load_json(request.body)
        if event is None:
            return _invalid_payload("PayPal")

        event_type = event.get("event_type")
        logger.info("PayPal webhook event received: %s (%s)", event_type, event.get("id"))
        return _run(PaymentProvider.PAYPAL, event.get("id"), event_type, event)


@method_decorator(csrf_exempt, name="dispatch")
class DodoWebhookView(APIView):
    """Dodo delivers Standard Webhooks; ``webhook-id`` identifies a delivery."""

    authentication_classes = []
    permission_classes = []
    http_method_names = ["post"]

    def post(self, request, *args, **kwargs):  # noqa: D401 - DRF signature
        event = _load_json(request.body)
        if event is None:
            return _invalid_payload("Dodo")

        event_type = dodo.event_type_of(event)
        event_id = request.headers.get("webhook-id") or event.get("id") or event.get("event_id")
        if not event_id:
            payment_id = dodo.payment_id_of(event)
            event_id = f"{event_type}:{payment_id}" if event_type and payment_id else None

        logger.info("Dodo webhook event received: %s (%s)", event_type, event_id)
        return _run(PaymentProvider.DODO, event_id, event_type, event)


@method_decorator(csrf_exempt, name="dispatch")
class VivaWebhookView(APIView):
    """Viva validates the endpoint with a GET before delivering events by POST."""

    authentication_classes = []
    permission_classes = []
    http_method_names = ["get", "post"]

    def get(self, request, *args, **kwargs):  # noqa: D401 - DRF signature
        key = getattr(settings, "VIVA_WEBHOOK_VERIFICATION_KEY", "")
        if not key:
            logger.error("VIVA_WEBHOOK_VERIFICATION_KEY is not configured.")
            return Response({"success": False, "error": "Webhook not configured"}, status=500)
        return Response({"Key": key})

    def post(self, request, *args, **kwargs):  # noqa: D401 - DRF signature
        event = _load_json(request.body)
        if event is None:
            return _invalid_payload("Viva")

        event_type = event.get("EventTypeId")
        event_id = viva.event_id_of(event)
        logger.info("Viva webhook event received: %s (%s)", event_type, event_id)
        return _run(PaymentProvider.VIVA, event_id, str(event_type) if event_type is not None else "", event)
