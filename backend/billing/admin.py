from django.contrib import admin
from django.urls import reverse
from django.utils.html import format_html

from .models import (
    BillingEventDeadLetter,
    CreditProfile,
    CreditTransaction,
    CreditValidity,
    DodoPayment,
    InvoiceRecord,
    OutboxMessage,
    PaymentIdempotencyKey,
    PayPalPayment,
    PricingPackage,
    PushSubscription,
    ReceiptRecord,
    RefundRecord,
    StripePayment,
    UserNotification,
    VivaPayment,
    WebhookEventLog,
)


class ReadOnlyAdminMixin:
    """Ledger-style records are written by services only."""

    def has_add_permission(self, request):
        return False

    def has_change_permission(self, request, obj=None):
        return False

    def has_delete_permission(self, request, obj=None):
        return False


@admin.register(CreditProfile)
class CreditProfileAdmin(admin.ModelAdmin):
    list_display = ("user", "credit_balance", "similarity_credit_balance", "updated_at")
    search_fields = ("user__username", "user__email")
    readonly_fields = ("user", "credit_balance", "similarity_credit_balance", "created_at", "updated_at")
    ordering = ("user__username",)
    list_select_related = ("user",)

    def has_add_permission(self, request):
        return False


@admin.register(CreditTransaction)
class CreditTransactionAdmin(ReadOnlyAdminMixin, admin.ModelAdmin):
    list_display = (
        "id",
        "user",
        "kind",
        "credit_type",
        "amount",
        "balance_before",
        "balance_after",
        "performed_by",
        "created_at",
    )
    search_fields = ("id", "user__username", "user__email", "description")
    list_filter = ("kind", "credit_type", "created_at")
    ordering = ("-created_at",)
    list_select_related = ("user", "performed_by")
    raw_id_fields = ("user", "performed_by", "claim")


@admin.register(PaymentIdempotencyKey)
class PaymentIdempotencyKeyAdmin(ReadOnlyAdminMixin, admin.ModelAdmin):
    list_display = ("key", "provider", "user", "status", "attempts", "created_at", "completed_at")
    search_fields = ("key", "user__email")
    list_filter = ("provider", "status")
    ordering = ("-created_at",)
    list_select_related = ("user",)


@admin.register(PricingPackage)
class PricingPackageAdmin(admin.ModelAdmin):
    list_display = ("name", "credits", "credit_type", "price_usd", "validity_days", "is_active")
    list_filter = ("credit_type", "is_active")
    search_fields = ("name",)
    ordering = ("credit_type", "credits")


@admin.register(CreditValidity)
class CreditValidityAdmin(admin.ModelAdmin):
    list_display = (
        "user",
        "credit_type",
        "credits_amount",
        "remaining_credits",
        "expires_at",
        "expired",
        "credits_expired_unused",
    )
    search_fields = ("user__username", "user__email")
    list_filter = ("credit_type", "expired")
    readonly_fields = ("expired", "expired_at", "credits_expired_unused", "transaction", "created_at", "updated_at")
    ordering = ("expires_at",)
    list_select_related = ("user",)
    raw_id_fields = ("user", "transaction", "package")

    def has_delete_permission(self, request, obj=None):
        return False


class ProviderPaymentAdmin(admin.ModelAdmin):
    list_filter = ("status", "credit_type", "created_at")
    readonly_fields = ("status", "completed_at", "created_at", "updated_at")
    ordering = ("-created_at",)
    list_select_related = ("user",)
    raw_id_fields = ("user",)

    def has_delete_permission(self, request, obj=None):
        return False


@admin.register(StripePayment)
class StripePaymentAdmin(ProviderPaymentAdmin):
    list_display = ("session_id", "user", "credits", "amount_usd", "status", "payment_intent_id", "created_at")
    search_fields = ("session_id", "payment_intent_id", "customer_email", "user__email")


@admin.register(PayPalPayment)
class PayPalPaymentAdmin(ProviderPaymentAdmin):
    list_display = ("order_id", "user", "credits", "amount_usd", "status", "capture_id", "created_at")
    search_fields = ("order_id", "capture_id", "payer_email", "user__email")


@admin.register(DodoPayment)
class DodoPaymentAdmin(ProviderPaymentAdmin):
    list_display = ("payment_id", "checkout_session_id", "user", "credits", "amount_usd", "status", "created_at")
    search_fields = ("payment_id", "checkout_session_id", "user__email")


@admin.register(VivaPayment)
class VivaPaymentAdmin(ProviderPaymentAdmin):
    list_display = ("order_code", "user", "credits", "amount_usd", "status", "transaction_id", "created_at")
    search_fields = ("order_code", "transaction_id", "user__email")


@admin.register(RefundRecord)
class RefundRecordAdmin(ReadOnlyAdminMixin, admin.ModelAdmin):
    list_display = ("stripe_refund_id", "payment_link", "amount_usd", "credits_deducted", "status", "performed_by", "created_at")
    search_fields = ("stripe_refund_id", "payment__payment_intent_id")
    list_filter = ("status",)
    ordering = ("-created_at",)
    list_select_related = ("payment", "performed_by")

    @admin.display(description="Payment")
    def payment_link(self, obj):
        url = reverse("admin:billing_stripepayment_change", args=[obj.payment_id])
        return format_html('<a href="{}">{}</a>', url, obj.payment.session_id)


@admin.register(WebhookEventLog)
class WebhookEventLogAdmin(admin.ModelAdmin):
    list_display = ("provider", "event_id", "event_type", "status", "handled", "processed_at", "created_at")
    search_fields = ("event_id", "event_type")
    list_filter = ("provider", "status", "handled")
    readonly_fields = ("payload_hash", "response", "last_error", "created_at", "processed_at")
    ordering = ("-created_at",)


@admin.register(BillingEventDeadLetter)
class BillingEventDeadLetterAdmin(admin.ModelAdmin):
    list_display = ("provider", "event_id", "event_type", "retry_count", "last_attempt_at", "created_at")
    search_fields = ("event_id", "event_type", "failure_reason")
    list_filter = ("provider", "event_type")
    readonly_fields = ("payload", "failure_reason", "retry_count", "last_attempt_at", "created_at")
    ordering = ("-created_at",)


@admin.register(OutboxMessage)
class OutboxMessageAdmin(admin.ModelAdmin):
    list_display = ("id", "kind", "user", "status", "attempts", "available_at", "delivered_at")
    search_fields = ("id", "dedupe_key", "user__email")
    list_filter = ("kind", "status")
    readonly_fields = ("attempts", "last_error", "delivered_at", "created_at", "updated_at")
    ordering = ("-created_at",)
    list_select_related = ("user",)


@admin.register(UserNotification)
class UserNotificationAdmin(admin.ModelAdmin):
    list_display = ("user", "title", "notification_type", "is_read", "created_at")
    search_fields = ("title", "user__email")
    list_filter = ("notification_type", "is_read")
    ordering = ("-created_at",)
    list_select_related = ("user",)


@admin.register(PushSubscription)
class PushSubscriptionAdmin(admin.ModelAdmin):
    list_display = ("user", "endpoint", "is_active", "last_failure_at", "created_at")
    search_fields = ("endpoint", "user__email")
    list_filter = ("is_active",)
    list_select_related = ("user",)


@admin.register(InvoiceRecord)
class InvoiceRecordAdmin(admin.ModelAdmin):
    list_display = ("invoice_number", "user", "provider", "amount_usd", "credits", "status", "issued_at")
    search_fields = ("invoice_number", "payment_reference", "customer_email")
    list_filter = ("provider", "status")
    ordering = ("-issued_at",)


@admin.register(ReceiptRecord)
class ReceiptRecordAdmin(admin.ModelAdmin):
    list_display = ("receipt_number", "user", "provider", "amount_paid", "credits", "payment_method", "issued_at")
    search_fields = ("receipt_number", "payment_reference")
    list_filter = ("provider",)
    ordering = ("-issued_at",)
