"""Billing models for credit balances, the credit ledger, payment reconciliation and side effects."""
import uuid
from decimal import Decimal

from django.conf import settings
from django.core.exceptions import ValidationError
from django.core.validators import MinValueValidator
from django.db import models
from django.db.models import F, Q
from django.utils import timezone

User = settings.AUTH_USER_MODEL


class CreditType(models.TextChoices):
    FULL = "full", "Full"
    SIMILARITY_ONLY = "similarity_only", "Similarity only"

    @classmethod
    def normalize(cls, value) -> str:
        """Map provider/legacy spellings onto a credit type value."""
        if value in (None, ""):
            return cls.FULL
        text = str(value).strip().lower()
        if text in {"full", "general"}:
            return cls.FULL
        if text in {"similarity", "similarity_only", "similarity-only"}:
            return cls.SIMILARITY_ONLY
        raise ValueError(f"Unknown credit type '{value}'.")


BALANCE_FIELDS = {
    CreditType.FULL: "credit_balance",
    CreditType.SIMILARITY_ONLY: "similarity_credit_balance",
}


class PaymentProvider(models.TextChoices):
    STRIPE = "stripe", "Stripe"
    PAYPAL = "paypal", "PayPal"
    DODO = "dodo", "Dodo Payments"
    VIVA = "viva", "Viva.com"
    ADMIN = "admin", "Admin"


class CreditProfile(models.Model):
    """Current credit balances for a user; mutated only through the credit ledger."""

    user = models.OneToOneField(
        User,
        on_delete=models.CASCADE,
        related_name="credit_profile",
        help_text="User owning these balances.",
    )
    credit_balance = models.IntegerField(
        default=0,
        validators=[MinValueValidator(0)],
        help_text="Full credits usable for every scan type.",
    )
    similarity_credit_balance = models.IntegerField(
        default=0,
        validators=[MinValueValidator(0)],
        help_text="Credits restricted to similarity scans.",
    )
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        db_table = "billing_credit_profile"
        verbose_name = "Credit profile"
        verbose_name_plural = "Credit profiles"
        ordering = ["user__id"]
        constraints = [
            models.CheckConstraint(
                condition=Q(credit_balance__gte=0),
                name="credit_profile_balance_non_negative",
            ),
            models.CheckConstraint(
                condition=Q(similarity_credit_balance__gte=0),
                name="credit_profile_similarity_balance_non_negative",
            ),
        ]

    def save(self, *args, **kwargs):
        self.full_clean()
        return super().save(*args, **kwargs)

    def __str__(self):
        return f"CreditProfile<{self.user_id}:{self.credit_balance}/{self.similarity_credit_balance}>"

    def balance_for(self, credit_type: str) -> int:
        return getattr(self, BALANCE_FIELDS[CreditType.normalize(credit_type)])

    @classmethod
    def get_or_create_for_user(cls, user) -> "CreditProfile":
        profile, _ = cls.objects.get_or_create(user=user)
        return profile


class PaymentIdempotencyKey(models.Model):
    """Claim on an external payment event; the unique insert is the only duplicate guard."""

    class Status(models.TextChoices):
        PENDING = "pending", "Pending"
        COMPLETED = "completed", "Completed"

    id = models.BigAutoField(primary_key=True)
    key = models.CharField(max_length=255)
    provider = models.CharField(max_length=20, choices=PaymentProvider.choices)
    user = models.ForeignKey(
        User,
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name="payment_claims",
    )
    status = models.CharField(max_length=20, choices=Status.choices, default=Status.PENDING)
    payload = models.JSONField(
        blank=True,
        null=True,
        help_text="Credit intent used to re-drive a claim left pending.",
    )
    attempts = models.PositiveIntegerField(default=0)
    last_error = models.TextField(blank=True)
    created_at = models.DateTimeField(auto_now_add=True)
    completed_at = models.DateTimeField(null=True, blank=True)

    class Meta:
        db_table = "billing_payment_idempotency_key"
        verbose_name = "Payment idempotency key"
        verbose_name_plural = "Payment idempotency keys"
        ordering = ["-created_at"]
        constraints = [
            models.UniqueConstraint(fields=["key", "provider"], name="payment_idempotency_key_provider_unique"),
        ]
        indexes = [
            models.Index(fields=["status", "created_at"], name="payment_claim_status_idx"),
        ]

    def delete(self, *args, **kwargs):
        raise ValidationError("Payment idempotency keys are permanent and cannot be deleted.")

    def __str__(self):
        return f"PaymentIdempotencyKey<{self.provider}:{self.key}:{self.status}>"


class CreditTransaction(models.Model):
    """Immutable audit trail for every credit balance change."""

    class Kind(models.TextChoices):
        PURCHASE = "purchase", "Purchase"
        DEDUCTION = "deduction", "Deduction"
        REFUND = "refund", "Refund"
        EXPIRATION = "expiration", "Expiration"
        ADD = "add", "Admin add"
        DEDUCT = "deduct", "Admin deduct"

    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    user = models.ForeignKey(
        User,
        on_delete=models.CASCADE,
        related_name="credit_transactions",
    )
    amount = models.IntegerField(help_text="Signed credit amount; positive credits, negative debits.")
    balance_before = models.IntegerField()
    balance_after = models.IntegerField()
    kind = models.CharField(max_length=20, choices=Kind.choices)
    credit_type = models.CharField(max_length=20, choices=CreditType.choices, default=CreditType.FULL)
    description = models.TextField(blank=True)
    performed_by = models.ForeignKey(
        User,
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name="performed_credit_transactions",
        help_text="Administrator responsible for manual changes.",
    )
    claim = models.ForeignKey(
        PaymentIdempotencyKey,
        on_delete=models.PROTECT,
        null=True,
        blank=True,
        related_name="transactions",
        help_text="Idempotency claim that authorised this mutation.",
    )
    metadata = models.JSONField(blank=True, null=True)
    created_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        db_table = "billing_credit_transaction"
        verbose_name = "Credit transaction"
        verbose_name_plural = "Credit transactions"
        ordering = ["-created_at"]
        constraints = [
            models.CheckConstraint(condition=~Q(amount=0), name="credit_transaction_non_zero"),
            models.CheckConstraint(
                condition=Q(balance_after=F("balance_before") + F("amount")),
                name="credit_transaction_balance_arithmetic",
            ),
            models.CheckConstraint(condition=Q(balance_after__gte=0), name="credit_transaction_after_non_negative"),
        ]
        indexes = [
            models.Index(fields=["user", "credit_type", "created_at"], name="credit_tx_user_type_idx"),
            models.Index(fields=["kind"], name="credit_tx_kind_idx"),
        ]

    def clean(self):
        super().clean()
        if self.amount == 0:
            raise ValidationError("Amount must be non-zero.")
        if self.balance_after != self.balance_before + self.amount:
            raise ValidationError("balance_after must equal balance_before + amount.")

    def save(self, *args, **kwargs):
        if not self._state.adding:
            raise ValidationError("CreditTransaction records are immutable.")
        self.full_clean()
        return super().save(*args, **kwargs)

    def delete(self, *args, **kwargs):
        raise ValidationError("CreditTransaction records are immutable.")

    def __str__(self):
        return f"CreditTransaction<{self.kind}:{self.amount} {self.credit_type} for {self.user_id}>"


class PricingPackage(models.Model):
    """Purchasable credit bundle; ``validity_days`` defines the expiry policy."""

    id = models.BigAutoField(primary_key=True)
    name = models.CharField(max_length=100)
    credits = models.PositiveIntegerField()
    price_usd = models.DecimalField(max_digits=10, decimal_places=2)
    credit_type = models.CharField(max_length=20, choices=CreditType.choices, default=CreditType.FULL)
    validity_days = models.PositiveIntegerField(
        null=True,
        blank=True,
        help_text="Days until purchased credits expire; empty means they never expire.",
    )
    is_active = models.BooleanField(default=True)
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        db_table = "billing_pricing_package"
        verbose_name = "Pricing package"
        verbose_name_plural = "Pricing packages"
        ordering = ["credit_type", "credits"]

    def __str__(self):
        return f"PricingPackage<{self.name}:{self.credits} {self.credit_type}>"


class CreditValidity(models.Model):
    """A batch of credits with its own expiry, tracked apart from the aggregate balance."""

    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    user = models.ForeignKey(
        User,
        on_delete=models.CASCADE,
        related_name="credit_validities",
    )
    credit_type = models.CharField(max_length=20, choices=CreditType.choices, default=CreditType.FULL)
    credits_amount = models.PositiveIntegerField()
    remaining_credits = models.PositiveIntegerField()
    expires_at = models.DateTimeField()
    expired = models.BooleanField(default=False)
    expired_at = models.DateTimeField(null=True, blank=True)
    credits_expired_unused = models.PositiveIntegerField(
        null=True,
        blank=True,
        help_text="Remaining credits at the moment the batch expired.",
    )
    transaction = models.ForeignKey(
        CreditTransaction,
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name="validities",
    )
    package = models.ForeignKey(
        PricingPackage,
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name="validities",
    )
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        db_table = "billing_credit_validity"
        verbose_name = "Credit validity"
        verbose_name_plural = "Credit validities"
        ordering = ["expires_at"]
        constraints = [
            models.CheckConstraint(
                condition=Q(remaining_credits__lte=F("credits_amount")),
                name="credit_validity_remaining_within_amount",
            ),
            models.CheckConstraint(
                condition=Q(expired=False) | Q(remaining_credits=0),
                name="credit_validity_expired_is_empty",
            ),
        ]
        indexes = [
            models.Index(fields=["expired", "expires_at"], name="credit_validity_due_idx"),
            models.Index(fields=["user", "credit_type"], name="credit_validity_user_idx"),
        ]

    def clean(self):
        super().clean()
        if self.remaining_credits is not None and self.credits_amount is not None:
            if self.remaining_credits > self.credits_amount:
                raise ValidationError("remaining_credits cannot exceed credits_amount.")
        if self.expired and self.remaining_credits:
            raise ValidationError("Expired validity records must not keep remaining credits.")

    def save(self, *args, **kwargs):
        self.full_clean()
        return super().save(*args, **kwargs)

    def delete(self, *args, **kwargs):
        raise ValidationError("Credit validity records are kept for audit and cannot be deleted.")

    def __str__(self):
        return f"CreditValidity<{self.user_id}:{self.remaining_credits}/{self.credits_amount} until {self.expires_at:%Y-%m-%d}>"


class InvalidPaymentTransition(ValidationError):
    """Raised when a payment record would move backwards in its lifecycle."""


class PaymentStatus(models.TextChoices):
    PENDING = "pending", "Pending"
    APPROVED = "approved", "Approved"
    COMPLETED = "completed", "Completed"
    FAILED = "failed", "Failed"
    CANCELED = "canceled", "Canceled"
    EXPIRED = "expired", "Expired"
    PARTIALLY_REFUNDED = "partially_refunded", "Partially refunded"
    REFUNDED = "refunded", "Refunded"


ALLOWED_PAYMENT_TRANSITIONS = {
    PaymentStatus.PENDING: {
        PaymentStatus.APPROVED,
        PaymentStatus.COMPLETED,
        PaymentStatus.FAILED,
        PaymentStatus.CANCELED,
        PaymentStatus.EXPIRED,
    },
    PaymentStatus.APPROVED: {
        PaymentStatus.COMPLETED,
        PaymentStatus.FAILED,
        PaymentStatus.CANCELED,
    },
    PaymentStatus.COMPLETED: {PaymentStatus.PARTIALLY_REFUNDED, PaymentStatus.REFUNDED},
    PaymentStatus.PARTIALLY_REFUNDED: {PaymentStatus.PARTIALLY_REFUNDED, PaymentStatus.REFUNDED},
    PaymentStatus.FAILED: {PaymentStatus.COMPLETED},
    PaymentStatus.CANCELED: set(),
    PaymentStatus.EXPIRED: set(),
    PaymentStatus.REFUNDED: set(),
}


class ProviderPayment(models.Model):
    """Shared lifecycle for a provider-side payment awaiting reconciliation."""

    provider: str = ""

    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    user = models.ForeignKey(
        User,
        on_delete=models.CASCADE,
        related_name="%(class)s_records",
    )
    credits = models.PositiveIntegerField()
    credit_type = models.CharField(max_length=20, choices=CreditType.choices, default=CreditType.FULL)
    amount_usd = models.DecimalField(max_digits=10, decimal_places=2, default=Decimal("0.00"))
    currency = models.CharField(max_length=3, default="usd")
    status = models.CharField(max_length=20, choices=PaymentStatus.choices, default=PaymentStatus.PENDING)
    failure_reason = models.CharField(max_length=255, blank=True)
    completed_at = models.DateTimeField(null=True, blank=True)
    metadata = models.JSONField(blank=True, null=True)
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        abstract = True
        ordering = ["-created_at"]

    def can_transition_to(self, status: str) -> bool:
        return status == self.status or status in ALLOWED_PAYMENT_TRANSITIONS.get(self.status, set())

    def transition_to(self, status: str, **fields) -> bool:
        """Move to ``status`` and persist ``fields``; returns False when already there."""

        if not self.can_transition_to(status):
            raise InvalidPaymentTransition(
                f"{type(self).__name__} {self.pk} cannot move from '{self.status}' to '{status}'."
            )

        changed = status != self.status
        update_fields = {"updated_at"}
        if changed:
            self.status = status
            update_fields.add("status")
            if status == PaymentStatus.COMPLETED:
                self.completed_at = timezone.now()
                update_fields.add("completed_at")
        for name, value in fields.items():
            if value in (None, "") or getattr(self, name) == value:
                continue
            setattr(self, name, value)
            update_fields.add(name)

        if len(update_fields) > 1:
            self.save(update_fields=sorted(update_fields))
        return changed

    @property
    def is_completed(self) -> bool:
        return self.status in {
            PaymentStatus.COMPLETED,
            PaymentStatus.PARTIALLY_REFUNDED,
            PaymentStatus.REFUNDED,
        }


class StripePayment(ProviderPayment):
    provider = PaymentProvider.STRIPE

    session_id = models.CharField(max_length=255, unique=True)
    payment_intent_id = models.CharField(max_length=255, blank=True, db_index=True)
    customer_email = models.EmailField(blank=True)

    class Meta(ProviderPayment.Meta):
        db_table = "billing_stripe_payment"
        verbose_name = "Stripe payment"
        verbose_name_plural = "Stripe payments"

    def __str__(self):
        return f"StripePayment<{self.session_id}:{self.status}>"


class PayPalPayment(ProviderPayment):
    provider = PaymentProvider.PAYPAL

    order_id = models.CharField(max_length=255, unique=True)
    capture_id = models.CharField(max_length=255, blank=True, db_index=True)
    payer_id = models.CharField(max_length=255, blank=True)
    payer_email = models.EmailField(blank=True)
    payer_name = models.CharField(max_length=255, blank=True)

    class Meta(ProviderPayment.Meta):
        db_table = "billing_paypal_payment"
        verbose_name = "PayPal payment"
        verbose_name_plural = "PayPal payments"

    def __str__(self):
        return f"PayPalPayment<{self.order_id}:{self.status}>"


class DodoPayment(ProviderPayment):
    provider = PaymentProvider.DODO

    payment_id = models.CharField(max_length=255, unique=True, null=True, blank=True)
    checkout_session_id = models.CharField(max_length=255, blank=True, db_index=True)
    receipt_url = models.URLField(max_length=512, blank=True)

    class Meta(ProviderPayment.Meta):
        db_table = "billing_dodo_payment"
        verbose_name = "Dodo payment"
        verbose_name_plural = "Dodo payments"

    def __str__(self):
        return f"DodoPayment<{self.payment_id or self.checkout_session_id}:{self.status}>"


class VivaPayment(ProviderPayment):
    provider = PaymentProvider.VIVA

    order_code = models.CharField(max_length=64, unique=True)
    transaction_id = models.CharField(max_length=255, blank=True)

    class Meta(ProviderPayment.Meta):
        db_table = "billing_viva_payment"
        verbose_name = "Viva payment"
        verbose_name_plural = "Viva payments"

    def __str__(self):
        return f"VivaPayment<{self.order_code}:{self.status}>"


class RefundRecord(models.Model):
    """Stripe refund issued by an administrator and the credits it clawed back."""

    class Status(models.TextChoices):
        PENDING = "pending", "Pending"
        SUCCEEDED = "succeeded", "Succeeded"
        FAILED = "failed", "Failed"
        CANCELED = "canceled", "Canceled"

    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    payment = models.ForeignKey(
        StripePayment,
        on_delete=models.PROTECT,
        related_name="refunds",
    )
    stripe_refund_id = models.CharField(max_length=255, unique=True)
    amount_usd = models.DecimalField(max_digits=10, decimal_places=2)
    credits_deducted = models.PositiveIntegerField(default=0)
    status = models.CharField(max_length=16, choices=Status.choices)
    reason = models.CharField(max_length=255, blank=True)
    performed_by = models.ForeignKey(
        User,
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name="performed_refunds",
    )
    transaction = models.OneToOneField(
        CreditTransaction,
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name="refund",
    )
    metadata = models.JSONField(blank=True, null=True)
    created_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        db_table = "billing_refund_record"
        verbose_name = "Refund record"
        verbose_name_plural = "Refund records"
        ordering = ["-created_at"]

    def __str__(self):
        return f"RefundRecord<{self.stripe_refund_id}:{self.status}>"


class WebhookEventLog(models.Model):
    """Keeps track of received provider webhook events to drop redeliveries early."""

    class Status(models.TextChoices):
        RECEIVED = "received", "Received"
        PROCESSING = "processing", "Processing"
        PROCESSED = "processed", "Processed"
        IGNORED = "ignored", "Ignored"
        FAILED = "failed", "Failed"

    id = models.BigAutoField(primary_key=True)
    provider = models.CharField(max_length=20, choices=PaymentProvider.choices)
    event_id = models.CharField(max_length=255)
    event_type = models.CharField(max_length=255, blank=True)
    payload_hash = models.CharField(
        max_length=64,
        blank=True,
        help_text="SHA256 of the raw payload for drift detection.",
    )
    status = models.CharField(
        max_length=20,
        choices=Status.choices,
        default=Status.RECEIVED,
    )
    handled = models.BooleanField(
        default=False,
        help_text="True once the event has been fully processed.",
    )
    detail = models.CharField(max_length=255, blank=True)
    last_error = models.TextField(blank=True)
    response = models.JSONField(
        blank=True,
        null=True,
        help_text="Body returned for the first delivery; replayed for redeliveries.",
    )
    user = models.ForeignKey(
        User,
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name="webhook_events",
    )
    created_at = models.DateTimeField(auto_now_add=True)
    processed_at = models.DateTimeField(null=True, blank=True)

    class Meta:
        db_table = "billing_webhook_event_log"
        verbose_name = "Webhook event log"
        verbose_name_plural = "Webhook event logs"
        ordering = ["-created_at"]
        constraints = [
            models.UniqueConstraint(fields=["provider", "event_id"], name="webhook_event_provider_unique"),
        ]
        indexes = [
            models.Index(fields=["status"], name="webhook_event_status_idx"),
            models.Index(fields=["event_type"], name="webhook_event_type_idx"),
        ]

    def __str__(self):
        return f"WebhookEventLog<{self.provider}:{self.event_id}:{self.status}>"


class BillingEventDeadLetter(models.Model):
    """Persist provider events that could not be processed."""

    id = models.BigAutoField(primary_key=True)
    provider = models.CharField(max_length=20, choices=PaymentProvider.choices)
    event_id = models.CharField(max_length=255)
    event_type = models.CharField(max_length=255, blank=True)
    payload = models.JSONField(help_text="Raw event payload that failed processing.")
    failure_reason = models.TextField(help_text="Summary of why handling failed.")
    retry_count = models.PositiveIntegerField(default=0)
    last_attempt_at = models.DateTimeField(
        null=True,
        blank=True,
        help_text="Most recent attempt timestamp.",
    )
    created_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        db_table = "billing_event_dead_letter"
        verbose_name = "Billing dead-letter event"
        verbose_name_plural = "Billing dead-letter events"
        ordering = ["-created_at"]
        constraints = [
            models.UniqueConstraint(fields=["provider", "event_id"], name="dead_letter_provider_event_unique"),
        ]

    def __str__(self):
        return f"BillingEventDeadLetter<{self.provider}:{self.event_id}>"


class OutboxMessage(models.Model):
    """Side-effect intent written in the same transaction as the balance change."""

    class Kind(models.TextChoices):
        NOTIFICATION = "notification", "In-app notification"
        PUSH = "push", "Push notification"
        EMAIL = "email", "Email"
        INVOICE = "invoice", "Invoice"
        RECEIPT = "receipt", "Receipt"

    class Status(models.TextChoices):
        PENDING = "pending", "Pending"
        DELIVERED = "delivered", "Delivered"
        FAILED = "failed", "Failed"

    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    kind = models.CharField(max_length=20, choices=Kind.choices)
    user = models.ForeignKey(
        User,
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name="outbox_messages",
    )
    payload = models.JSONField(default=dict, blank=True)
    status = models.CharField(max_length=20, choices=Status.choices, default=Status.PENDING)
    attempts = models.PositiveIntegerField(default=0)
    last_error = models.TextField(blank=True)
    available_at = models.DateTimeField(default=timezone.now)
    delivered_at = models.DateTimeField(null=True, blank=True)
    dedupe_key = models.CharField(max_length=255, unique=True, null=True, blank=True)
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        db_table = "billing_outbox_message"
        verbose_name = "Outbox message"
        verbose_name_plural = "Outbox messages"
        ordering = ["created_at"]
        indexes = [
            models.Index(fields=["status", "available_at"], name="outbox_due_idx"),
        ]

    def __str__(self):
        return f"OutboxMessage<{self.kind}:{self.status}>"


class UserNotification(models.Model):
    """In-app notification shown in the dashboard bell."""

    id = models.BigAutoField(primary_key=True)
    user = models.ForeignKey(
        User,
        on_delete=models.CASCADE,
        related_name="notifications",
    )
    title = models.CharField(max_length=255)
    message = models.TextField()
    notification_type = models.CharField(max_length=50, default="info")
    data = models.JSONField(blank=True, null=True)
    is_read = models.BooleanField(default=False)
    created_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        db_table = "billing_user_notification"
        verbose_name = "User notification"
        verbose_name_plural = "User notifications"
        ordering = ["-created_at"]

    def __str__(self):
        return f"UserNotification<{self.user_id}:{self.title}>"


class PushSubscription(models.Model):
    """Browser push endpoint registered by a user."""

    id = models.BigAutoField(primary_key=True)
    user = models.ForeignKey(
        User,
        on_delete=models.CASCADE,
        related_name="push_subscriptions",
    )
    endpoint = models.URLField(max_length=1024, unique=True)
    p256dh = models.CharField(max_length=255)
    auth = models.CharField(max_length=255)
    is_active = models.BooleanField(default=True)
    last_failure_at = models.DateTimeField(null=True, blank=True)
    created_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        db_table = "billing_push_subscription"
        verbose_name = "Push subscription"
        verbose_name_plural = "Push subscriptions"
        ordering = ["-created_at"]

    def __str__(self):
        return f"PushSubscription<{self.user_id}:{'active' if self.is_active else 'inactive'}>"


class InvoiceRecord(models.Model):
    """Invoice generated for a completed credit purchase."""

    class Status(models.TextChoices):
        PAID = "paid", "Paid"
        VOID = "void", "Void"

    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    invoice_number = models.CharField(max_length=32, unique=True)
    user = models.ForeignKey(
        User,
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name="invoices",
    )
    provider = models.CharField(max_length=20, choices=PaymentProvider.choices)
    payment_reference = models.CharField(max_length=255)
    amount_usd = models.DecimalField(max_digits=10, decimal_places=2)
    currency = models.CharField(max_length=3, default="usd")
    credits = models.PositiveIntegerField()
    description = models.CharField(max_length=255, default="Plagiarism & AI Content Analysis Service")
    customer_name = models.CharField(max_length=255, blank=True)
    customer_email = models.EmailField(blank=True)
    status = models.CharField(max_length=10, choices=Status.choices, default=Status.PAID)
    issued_at = models.DateTimeField(default=timezone.now)
    metadata = models.JSONField(blank=True, null=True)
    created_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        db_table = "billing_invoice_record"
        verbose_name = "Invoice record"
        verbose_name_plural = "Invoice records"
        ordering = ["-issued_at"]
        constraints = [
            models.UniqueConstraint(fields=["provider", "payment_reference"], name="invoice_payment_unique"),
        ]

    def __str__(self):
        return f"InvoiceRecord<{self.invoice_number}>"


class ReceiptRecord(models.Model):
    """Receipt confirming the amount actually paid for a purchase."""

    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    receipt_number = models.CharField(max_length=32, unique=True)
    user = models.ForeignKey(
        User,
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name="receipts",
    )
    invoice = models.ForeignKey(
        InvoiceRecord,
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name="receipts",
    )
    provider = models.CharField(max_length=20, choices=PaymentProvider.choices)
    payment_reference = models.CharField(max_length=255)
    payment_method = models.CharField(max_length=50)
    amount_paid = models.DecimalField(max_digits=10, decimal_places=2)
    currency = models.CharField(max_length=3, default="usd")
    credits = models.PositiveIntegerField()
    receipt_url = models.URLField(max_length=512, blank=True)
    issued_at = models.DateTimeField(default=timezone.now)
    created_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        db_table = "billing_receipt_record"
        verbose_name = "Receipt record"
        verbose_name_plural = "Receipt records"
        ordering = ["-issued_at"]
        constraints = [
            models.UniqueConstraint(fields=["provider", "payment_reference"], name="receipt_payment_unique"),
        ]

    def __str__(self):
        return f"ReceiptRecord<{self.receipt_number}>"
