"""DRF serializers for credit balances, payment verification and admin credit tools."""
from __future__ import annotations

from typing import Any, Dict

from django.utils.translation import gettext_lazy as _
from rest_framework import serializers

from billing.models import CreditTransaction, CreditType, CreditValidity, RefundRecord
from billing.services.admin_credits import ADD, DEDUCT
from billing.services.stripe_payments import VALID_REFUND_REASONS

CREDIT_TYPE_CHOICES = [CreditType.FULL, CreditType.SIMILARITY_ONLY, "similarity", "general"]


class CreditTypeField(serializers.ChoiceField):
    """Accept the legacy spellings used by the dashboard and normalise them."""

    def __init__(self, **kwargs):
        kwargs.setdefault("default", CreditType.FULL)
        super().__init__(choices=CREDIT_TYPE_CHOICES, **kwargs)

    def to_internal_value(self, data):
        value = super().to_internal_value(data)
        return CreditType.normalize(value)


class CreditTransactionSerializer(serializers.ModelSerializer):
    performed_by_email = serializers.EmailField(source="performed_by.email", read_only=True, default=None)

    class Meta:
        model = CreditTransaction
        fields = (
            "id",
            "amount",
            "balance_before",
            "balance_after",
            "kind",
            "credit_type",
            "description",
            "performed_by_email",
            "metadata",
            "created_at",
        )
        read_only_fields = fields


class CreditValiditySerializer(serializers.ModelSerializer):
    class Meta:
        model = CreditValidity
        fields = (
            "id",
            "credit_type",
            "credits_amount",
            "remaining_credits",
            "expires_at",
            "expired",
            "expired_at",
            "credits_expired_unused",
            "created_at",
        )
        read_only_fields = fields


class RefundRecordSerializer(serializers.ModelSerializer):
    payment_intent_id = serializers.CharField(source="payment.payment_intent_id", read_only=True)

    class Meta:
        model = RefundRecord
        fields = (
            "id",
            "stripe_refund_id",
            "payment_intent_id",
            "amount_usd",
            "credits_deducted",
            "status",
            "reason",
            "created_at",
        )
        read_only_fields = fields


class StripeVerifySerializer(serializers.Serializer):
    sessionId = serializers.CharField(required=False, allow_blank=True, default="")


class PayPalVerifySerializer(serializers.Serializer):
    orderId = serializers.CharField(required=False, allow_blank=True, default="")


class VivaVerifySerializer(serializers.Serializer):
    orderCode = serializers.CharField(required=False, allow_blank=True, default="")
    transactionId = serializers.CharField(required=False, allow_blank=True, default="")


class CreditDeductSerializer(serializers.Serializer):
    amount = serializers.IntegerField(min_value=1)
    credit_type = CreditTypeField()
    description = serializers.CharField(required=False, allow_blank=True, default="", max_length=500)


class AdminCreditAdjustSerializer(serializers.Serializer):
    user_id = serializers.IntegerField()
    action = serializers.ChoiceField(choices=[ADD, DEDUCT])
    amount = serializers.IntegerField(min_value=1)
    credit_type = CreditTypeField()
    expires_in_days = serializers.IntegerField(min_value=1, required=False, allow_null=True)
    reason = serializers.CharField(required=False, allow_blank=True, default="", max_length=500)
    request_key = serializers.CharField(required=False, allow_blank=True, max_length=255)

    def validate(self, attrs: Dict[str, Any]) -> Dict[str, Any]:
        attrs = super().validate(attrs)
        if attrs["action"] == DEDUCT and attrs.get("expires_in_days"):
            raise serializers.ValidationError({"expires_in_days": [_("Expiry only applies to added credits.")]})
        return attrs


class PreregisterSerializer(serializers.Serializer):
    email = serializers.EmailField()
    credits = serializers.IntegerField(min_value=1)
    credit_type = CreditTypeField()
    expiry_days = serializers.IntegerField(min_value=1, required=False, allow_null=True)
    full_name = serializers.CharField(required=False, allow_blank=True, default="", max_length=255)


class StripeRefundSerializer(serializers.Serializer):
    paymentIntentId = serializers.CharField()
    amount = serializers.IntegerField(min_value=1, required=False, allow_null=True)
    reason = serializers.ChoiceField(choices=sorted(VALID_REFUND_REASONS), required=False, allow_blank=True)
