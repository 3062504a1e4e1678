"""Client-triggered payment verification after a checkout redirect."""
from __future__ import annotations

import logging

from rest_framework import status
from rest_framework.permissions import AllowAny, IsAuthenticated
from rest_framework.response import Response
from rest_framework.views import APIView

from billing.adapters import paypal, stripe, viva
from billing.adapters.common import VerificationError
from billing.serializers import PayPalVerifySerializer, StripeVerifySerializer, VivaVerifySerializer
from billing.services import clients
from billing.services.provider_http import ProviderConfigurationError, ProviderError

logger = logging.getLogger(__name__)

PROVIDER_FAILURE = {"success": False, "error": "Failed to verify payment"}


def _verify(provider: str, call) -> Response:
    try:
        result = call()
    except VerificationError as exc:
        return Response({"success": False, "error": str(exc)}, status=exc.http_status)
    except ProviderConfigurationError as exc:
        logger.error("%s verification is not configured: %s", provider, exc)
        return Response({"success": False, "error": "Payment provider not configured"}, status=500)
    except ProviderError as exc:
        logger.warning("%s verification failed: %s", provider, exc)
        return Response(PROVIDER_FAILURE, status=status.HTTP_502_BAD_GATEWAY)
    return Response(result.as_response())


class StripeVerifyView(APIView):
    permission_classes = [IsAuthenticated]

    def post(self, request):
        serializer = StripeVerifySerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        session_id = serializer.validated_data["sessionId"].strip()
        return _verify(
            "Stripe",
            lambda: stripe.verify_checkout_session(
                user=request.user,
                session_id=session_id,
                gateway=clients.get_stripe_client(),
            ),
        )


class PayPalVerifyView(APIView):
    permission_classes = [IsAuthenticated]

    def post(self, request):
        serializer = PayPalVerifySerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        order_id = serializer.validated_data["orderId"].strip()
        return _verify(
            "PayPal",
            lambda: paypal.verify_order(user=request.user, order_id=order_id, client=clients.get_paypal_client()),
        )


class VivaVerifyView(APIView):
    """Viva redirects the browser back with ``s``/``t`` query values; the order owner is credited."""

    authentication_classes = []
    permission_classes = [AllowAny]

    def post(self, request):
        serializer = VivaVerifySerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        data = serializer.validated_data
        return _verify(
            "Viva",
            lambda: viva.verify_order(
                order_code=data["orderCode"],
                transaction_id=data["transactionId"],
                client=clients.get_viva_client(),
            ),
        )
