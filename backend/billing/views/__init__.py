"""Billing API views: provider webhooks, payment verification, credits and admin tools."""
from billing.views.admin_credits import AdminCreditAdjustView, AdminPreregisterView, AdminStripeRefundView
from billing.views.credits import CreditBalanceView, CreditDeductView, CreditTransactionViewSet, CreditValidityViewSet
from billing.views.verify import PayPalVerifyView, StripeVerifyView, VivaVerifyView
from billing.views.webhooks import DodoWebhookView, PayPalWebhookView, StripeWebhookView, VivaWebhookView

__all__ = [
    "AdminCreditAdjustView",
    "AdminPreregisterView",
    "AdminStripeRefundView",
    "CreditBalanceView",
    "CreditDeductView",
    "CreditTransactionViewSet",
    "CreditValidityViewSet",
    "DodoWebhookView",
    "PayPalVerifyView",
    "PayPalWebhookView",
    "StripeVerifyView",
    "StripeWebhookView",
    "VivaVerifyView",
    "VivaWebhookView",
]
