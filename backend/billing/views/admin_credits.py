"""Administrator endpoints: manual credit adjustments, pre-registration and Stripe refunds."""
from __future__ import annotations

import logging

from django.contrib.auth import get_user_model
from rest_framework import status
from rest_framework.permissions import IsAdminUser
from rest_framework.response import Response
from rest_framework.views import APIView

from billing.serializers import AdminCreditAdjustSerializer, PreregisterSerializer, StripeRefundSerializer
from billing.services import clients
from billing.services.admin_credits import UserAlreadyExists, admin_adjust, preregister_user_with_credits
from billing.services.provider_http import ProviderConfigurationError, ProviderError
from billing.services.refunds import PaymentNotFound, RefundError, refund_stripe_payment

logger = logging.getLogger(__name__)

User = get_user_model()


class AdminCreditAdjustView(APIView):
    permission_classes = [IsAdminUser]

    def post(self, request):
        serializer = AdminCreditAdjustSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        data = serializer.validated_data

        if not User.objects.filter(pk=data["user_id"]).exists():
            return Response({"success": False, "error": "User not found"}, status=status.HTTP_404_NOT_FOUND)

        try:
            result = admin_adjust(
                data["user_id"],
                data["credit_type"],
                data["action"],
                data["amount"],
                request.user,
                expires_in_days=data.get("expires_in_days"),
                reason=data["reason"],
                request_key=data.get("request_key") or None,
            )
        except ValueError as exc:
            return Response({"success": False, "error": str(exc)}, status=status.HTTP_400_BAD_REQUEST)

        return Response(result.as_response())


class AdminPreregisterView(APIView):
    permission_classes = [IsAdminUser]

    def post(self, request):
        serializer = PreregisterSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        data = serializer.validated_data

        try:
            result = preregister_user_with_credits(
                data["email"],
                data["credits"],
                data["credit_type"],
                actor=request.user,
                expiry_days=data.get("expiry_days"),
                full_name=data["full_name"],
            )
        except UserAlreadyExists as exc:
            return Response({"success": False, "error": str(exc)}, status=status.HTTP_409_CONFLICT)
        except ValueError as exc:
            return Response({"success": False, "error": str(exc)}, status=status.HTTP_400_BAD_REQUEST)

        body = result.as_response()
        body["userId"] = result.transaction.user_id if result.transaction else None
        return Response(body, status=status.HTTP_201_CREATED)


class AdminStripeRefundView(APIView):
    permission_classes = [IsAdminUser]

    def post(self, request):
        serializer = StripeRefundSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        data = serializer.validated_data

        try:
            outcome = refund_stripe_payment(
                data["paymentIntentId"],
                actor=request.user,
                gateway=clients.get_stripe_client(),
                amount_minor=data.get("amount"),
                reason=data.get("reason") or None,
            )
        except PaymentNotFound as exc:
            return Response({"success": False, "error": str(exc)}, status=status.HTTP_404_NOT_FOUND)
        except RefundError as exc:
            return Response({"success": False, "error": str(exc)}, status=status.HTTP_400_BAD_REQUEST)
        except ProviderConfigurationError as exc:
            logger.error("Stripe refund is not configured: %s", exc)
            return Response({"success": False, "error": "Stripe not configured"}, status=500)
        except ProviderError as exc:
            logger.warning("Stripe refund for %s failed: %s", data["paymentIntentId"], exc)
            return Response({"success": False, "error": str(exc)}, status=status.HTTP_502_BAD_GATEWAY)

        return Response(outcome.as_response())
