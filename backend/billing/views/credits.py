"""Credit balance, ledger and usage endpoints for the signed-in customer."""
from __future__ import annotations

import logging

from rest_framework import status
from rest_framework.permissions import IsAuthenticated
from rest_framework.response import Response
from rest_framework.views import APIView
from rest_framework.viewsets import ReadOnlyModelViewSet

from billing.filters import CreditTransactionFilter, CreditValidityFilter
from billing.models import CreditTransaction, CreditType, CreditValidity
from billing.pagination import BoundedPageNumberPagination
from billing.serializers import CreditDeductSerializer, CreditTransactionSerializer, CreditValiditySerializer
from billing.services.credit_ledger import InsufficientCredits, deduct_credits, get_balances

logger = logging.getLogger(__name__)


class CreditBalanceView(APIView):
    permission_classes = [IsAuthenticated]

    def get(self, request):
        balances = get_balances(request.user.pk)
        return Response(
            {
                "success": True,
                "credit_balance": balances[CreditType.FULL],
                "similarity_credit_balance": balances[CreditType.SIMILARITY_ONLY],
            }
        )


class CreditTransactionViewSet(ReadOnlyModelViewSet):
    serializer_class = CreditTransactionSerializer
    permission_classes = [IsAuthenticated]
    pagination_class = BoundedPageNumberPagination
    filterset_class = CreditTransactionFilter
    ordering_fields = ("created_at", "amount", "kind")
    ordering = ("-created_at",)

    def get_queryset(self):
        return (
            CreditTransaction.objects.select_related("performed_by")
            .filter(user=self.request.user)
            .order_by("-created_at")
        )


class CreditValidityViewSet(ReadOnlyModelViewSet):
    serializer_class = CreditValiditySerializer
    permission_classes = [IsAuthenticated]
    pagination_class = BoundedPageNumberPagination
    filterset_class = CreditValidityFilter
    ordering_fields = ("expires_at", "created_at")
    ordering = ("expires_at",)

    def get_queryset(self):
        return CreditValidity.objects.filter(user=self.request.user).order_by("expires_at")


class CreditDeductView(APIView):
    """Spend credits when a document is submitted for scanning."""

    permission_classes = [IsAuthenticated]

    def post(self, request):
        serializer = CreditDeductSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        data = serializer.validated_data

        try:
            result = deduct_credits(
                request.user.pk,
                data["credit_type"],
                data["amount"],
                description=data["description"],
            )
        except InsufficientCredits as exc:
            logger.info(
                "User %s has %s %s credits; %s requested.",
                request.user.pk,
                exc.available,
                data["credit_type"],
                exc.requested,
            )
            return Response(
                {"success": False, "error": "Insufficient credits", "available": exc.available},
                status=status.HTTP_402_PAYMENT_REQUIRED,
            )

        return Response(
            {
                "success": True,
                "creditsUsed": -result.amount,
                "newBalance": result.after,
                "creditType": result.credit_type,
            }
        )
