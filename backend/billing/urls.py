"""URL routes for billing endpoints."""
from django.urls import path

from .views import (
    AdminCreditAdjustView,
    AdminPreregisterView,
    AdminStripeRefundView,
    CreditBalanceView,
    CreditDeductView,
    CreditTransactionViewSet,
    CreditValidityViewSet,
    DodoWebhookView,
    PayPalVerifyView,
    PayPalWebhookView,
    StripeVerifyView,
    StripeWebhookView,
    VivaVerifyView,
    VivaWebhookView,
)

app_name = "billing"

urlpatterns = [
    path("webhook/stripe/", StripeWebhookView.as_view(), name="stripe-webhook"),
    path("webhook/paypal/", PayPalWebhookView.as_view(), name="paypal-webhook"),
    path("webhook/dodo/", DodoWebhookView.as_view(), name="dodo-webhook"),
    path("webhook/viva/", VivaWebhookView.as_view(), name="viva-webhook"),
    path("verify/stripe/", StripeVerifyView.as_view(), name="stripe-verify"),
    path("verify/paypal/", PayPalVerifyView.as_view(), name="paypal-verify"),
    path("verify/viva/", VivaVerifyView.as_view(), name="viva-verify"),
    path("credits/", CreditBalanceView.as_view(), name="credit-balance"),
    path(
        "credits/transactions/",
        CreditTransactionViewSet.as_view({"get": "list"}),
        name="credit-transactions",
    ),
    path(
        "credits/validity/",
        CreditValidityViewSet.as_view({"get": "list"}),
        name="credit-validity",
    ),
    path("credits/deduct/", CreditDeductView.as_view(), name="credit-deduct"),
    path("admin/credits/adjust/", AdminCreditAdjustView.as_view(), name="admin-credit-adjust"),
    path("admin/users/preregister/", AdminPreregisterView.as_view(), name="admin-preregister"),
    path("admin/refunds/stripe/", AdminStripeRefundView.as_view(), name="admin-stripe-refund"),
]
