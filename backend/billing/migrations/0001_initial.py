import decimal
import uuid

import django.core.validators
import django.db.models.deletion
import django.utils.timezone
from django.conf import settings
from django.db import migrations, models

CREDIT_TYPE_CHOICES = [("full", "Full"), ("similarity_only", "Similarity only")]

PROVIDER_CHOICES = [
    ("stripe", "Stripe"),
    ("paypal", "PayPal"),
    ("dodo", "Dodo Payments"),
    ("viva", "Viva.com"),
    ("admin", "Admin"),
]

PAYMENT_STATUS_CHOICES = [
    ("pending", "Pending"),
    ("approved", "Approved"),
    ("completed", "Completed"),
    ("failed", "Failed"),
    ("canceled", "Canceled"),
    ("expired", "Expired"),
    ("partially_refunded", "Partially refunded"),
    ("refunded", "Refunded"),
]


def provider_payment_fields(related_name):
    return [
        ("id", models.UUIDField(default=uuid.uuid4, editable=False, primary_key=True, serialize=False)),
        ("credits", models.PositiveIntegerField()),
        ("credit_type", models.CharField(choices=CREDIT_TYPE_CHOICES, default="full", max_length=20)),
        ("amount_usd", models.DecimalField(decimal_places=2, default=decimal.Decimal("0.00"), max_digits=10)),
        ("currency", models.CharField(default="usd", max_length=3)),
        ("status", models.CharField(choices=PAYMENT_STATUS_CHOICES, default="pending", max_length=20)),
        ("failure_reason", models.CharField(blank=True, max_length=255)),
        ("completed_at", models.DateTimeField(blank=True, null=True)),
        ("metadata", models.JSONField(blank=True, null=True)),
        ("created_at", models.DateTimeField(auto_now_add=True)),
        ("updated_at", models.DateTimeField(auto_now=True)),
        (
            "user",
            models.ForeignKey(
                on_delete=django.db.models.deletion.CASCADE,
                related_name=related_name,
                to=settings.AUTH_USER_MODEL,
            ),
        ),
    ]


class Migration(migrations.Migration):

    initial = True

    dependencies = [
        migrations.swappable_dependency(settings.AUTH_USER_MODEL),
    ]

    operations = [
        migrations.CreateModel(
            name="CreditProfile",
            fields=[
                ("id", models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name="ID")),
                (
                    "credit_balance",
                    models.IntegerField(
                        default=0,
                        help_text="Full credits usable for every scan type.",
                        validators=[django.core.validators.MinValueValidator(0)],
                    ),
                ),
                (
                    "similarity_credit_balance",
                    models.IntegerField(
                        default=0,
                        help_text="Credits restricted to similarity scans.",
                        validators=[django.core.validators.MinValueValidator(0)],
                    ),
                ),
                ("created_at", models.DateTimeField(auto_now_add=True)),
                ("updated_at", models.DateTimeField(auto_now=True)),
                (
                    "user",
                    models.OneToOneField(
                        help_text="User owning these balances.",
                        on_delete=django.db.models.deletion.CASCADE,
                        related_name="credit_profile",
                        to=settings.AUTH_USER_MODEL,
                    ),
                ),
            ],
            options={
                "verbose_name": "Credit profile",
                "verbose_name_plural": "Credit profiles",
                "db_table": "billing_credit_profile",
                "ordering": ["user__id"],
                "constraints": [
                    models.CheckConstraint(
                        condition=models.Q(("credit_balance__gte", 0)),
                        name="credit_profile_balance_non_negative",
                    ),
                    models.CheckConstraint(
                        condition=models.Q(("similarity_credit_balance__gte", 0)),
                        name="credit_profile_similarity_balance_non_negative",
                    ),
                ],
            },
        ),
        migrations.CreateModel(
            name="PaymentIdempotencyKey",
            fields=[
                ("id", models.BigAutoField(primary_key=True, serialize=False)),
                ("key", models.CharField(max_length=255)),
                ("provider", models.CharField(choices=PROVIDER_CHOICES, max_length=20)),
                (
                    "status",
                    models.CharField(
                        choices=[("pending", "Pending"), ("completed", "Completed")],
                        default="pending",
                        max_length=20,
                    ),
                ),
                (
                    "payload",
                    models.JSONField(
                        blank=True,
                        help_text="Credit intent used to re-drive a claim left pending.",
                        null=True,
                    ),
                ),
                ("attempts", models.PositiveIntegerField(default=0)),
                ("last_error", models.TextField(blank=True)),
                ("created_at", models.DateTimeField(auto_now_add=True)),
                ("completed_at", models.DateTimeField(blank=True, null=True)),
                (
                    "user",
                    models.ForeignKey(
                        blank=True,
                        null=True,
                        on_delete=django.db.models.deletion.SET_NULL,
                        related_name="payment_claims",
                        to=settings.AUTH_USER_MODEL,
                    ),
                ),
            ],
            options={
                "verbose_name": "Payment idempotency key",
                "verbose_name_plural": "Payment idempotency keys",
                "db_table": "billing_payment_idempotency_key",
                "ordering": ["-created_at"],
                "indexes": [models.Index(fields=["status", "created_at"], name="payment_claim_status_idx")],
                "constraints": [
                    models.UniqueConstraint(fields=("key", "provider"), name="payment_idempotency_key_provider_unique"),
                ],
            },
        ),
        migrations.CreateModel(
            name="CreditTransaction",
            fields=[
                ("id", models.UUIDField(default=uuid.uuid4, editable=False, primary_key=True, serialize=False)),
                ("amount", models.IntegerField(help_text="Signed credit amount; positive credits, negative debits.")),
                ("balance_before", models.IntegerField()),
                ("balance_after", models.IntegerField()),
                (
                    "kind",
                    models.CharField(
                        choices=[
                            ("purchase", "Purchase"),
                            ("deduction", "Deduction"),
                            ("refund", "Refund"),
                            ("expiration", "Expiration"),
                            ("add", "Admin add"),
                            ("deduct", "Admin deduct"),
                        ],
                        max_length=20,
                    ),
                ),
                ("credit_type", models.CharField(choices=CREDIT_TYPE_CHOICES, default="full", max_length=20)),
                ("description", models.TextField(blank=True)),
                ("metadata", models.JSONField(blank=True, null=True)),
                ("created_at", models.DateTimeField(auto_now_add=True)),
                (
                    "claim",
                    models.ForeignKey(
                        blank=True,
                        help_text="Idempotency claim that authorised this mutation.",
                        null=True,
                        on_delete=django.db.models.deletion.PROTECT,
                        related_name="transactions",
                        to="billing.paymentidempotencykey",
                    ),
                ),
                (
                    "performed_by",
                    models.ForeignKey(
                        blank=True,
                        help_text="Administrator responsible for manual changes.",
                        null=True,
                        on_delete=django.db.models.deletion.SET_NULL,
                        related_name="performed_credit_transactions",
                        to=settings.AUTH_USER_MODEL,
                    ),
                ),
                (
                    "user",
                    models.ForeignKey(
                        on_delete=django.db.models.deletion.CASCADE,
                        related_name="credit_transactions",
                        to=settings.AUTH_USER_MODEL,
                    ),
                ),
            ],
            options={
                "verbose_name": "Credit transaction",
                "verbose_name_plural": "Credit transactions",
                "db_table": "billing_credit_transaction",
                "ordering": ["-created_at"],
                "indexes": [
                    models.Index(fields=["user", "credit_type", "created_at"], name="credit_tx_user_type_idx"),
                    models.Index(fields=["kind"], name="credit_tx_kind_idx"),
                ],
                "constraints": [
                    models.CheckConstraint(
                        condition=models.Q(("amount", 0), _negated=True),
                        name="credit_transaction_non_zero",
                    ),
                    models.CheckConstraint(
                        condition=models.Q(
                            ("balance_after", models.F("balance_before") + models.F("amount"))
                        ),
                        name="credit_transaction_balance_arithmetic",
                    ),
                    models.CheckConstraint(
                        condition=models.Q(("balance_after__gte", 0)),
                        name="credit_transaction_after_non_negative",
                    ),
                ],
            },
        ),
        migrations.CreateModel(
            name="PricingPackage",
            fields=[
                ("id", models.BigAutoField(primary_key=True, serialize=False)),
                ("name", models.CharField(max_length=100)),
                ("credits", models.PositiveIntegerField()),
                ("price_usd", models.DecimalField(decimal_places=2, max_digits=10)),
                ("credit_type", models.CharField(choices=CREDIT_TYPE_CHOICES, default="full", max_length=20)),
                (
                    "validity_days",
                    models.PositiveIntegerField(
                        blank=True,
                        help_text="Days until purchased credits expire; empty means they never expire.",
                        null=True,
                    ),
                ),
                ("is_active", models.BooleanField(default=True)),
                ("created_at", models.DateTimeField(auto_now_add=True)),
                ("updated_at", models.DateTimeField(auto_now=True)),
            ],
            options={
                "verbose_name": "Pricing package",
                "verbose_name_plural": "Pricing packages",
                "db_table": "billing_pricing_package",
                "ordering": ["credit_type", "credits"],
            },
        ),
        migrations.CreateModel(
            name="CreditValidity",
            fields=[
                ("id", models.UUIDField(default=uuid.uuid4, editable=False, primary_key=True, serialize=False)),
                ("credit_type", models.CharField(choices=CREDIT_TYPE_CHOICES, default="full", max_length=20)),
                ("credits_amount", models.PositiveIntegerField()),
                ("remaining_credits", models.PositiveIntegerField()),
                ("expires_at", models.DateTimeField()),
                ("expired", models.BooleanField(default=False)),
                ("expired_at", models.DateTimeField(blank=True, null=True)),
                (
                    "credits_expired_unused",
                    models.PositiveIntegerField(
                        blank=True,
                        help_text="Remaining credits at the moment the batch expired.",
                        null=True,
                    ),
                ),
                ("created_at", models.DateTimeField(auto_now_add=True)),
                ("updated_at", models.DateTimeField(auto_now=True)),
                (
                    "package",
                    models.ForeignKey(
                        blank=True,
                        null=True,
                        on_delete=django.db.models.deletion.SET_NULL,
                        related_name="validities",
                        to="billing.pricingpackage",
                    ),
                ),
                (
                    "transaction",
                    models.ForeignKey(
                        blank=True,
                        null=True,
                        on_delete=django.db.models.deletion.SET_NULL,
                        related_name="validities",
                        to="billing.credittransaction",
                    ),
                ),
                (
                    "user",
                    models.ForeignKey(
                        on_delete=django.db.models.deletion.CASCADE,
                        related_name="credit_validities",
                        to=settings.AUTH_USER_MODEL,
                    ),
                ),
            ],
            options={
                "verbose_name": "Credit validity",
                "verbose_name_plural": "Credit validities",
                "db_table": "billing_credit_validity",
                "ordering": ["expires_at"],
                "indexes": [
                    models.Index(fields=["expired", "expires_at"], name="credit_validity_due_idx"),
                    models.Index(fields=["user", "credit_type"], name="credit_validity_user_idx"),
                ],
                "constraints": [
                    models.CheckConstraint(
                        condition=models.Q(("remaining_credits__lte", models.F("credits_amount"))),
                        name="credit_validity_remaining_within_amount",
                    ),
                    models.CheckConstraint(
                        condition=models.Q(("expired", False), ("remaining_credits", 0), _connector="OR"),
                        name="credit_validity_expired_is_empty",
                    ),
                ],
            },
        ),
        migrations.CreateModel(
            name="StripePayment",
            fields=provider_payment_fields("stripepayment_records")
            + [
                ("session_id", models.CharField(max_length=255, unique=True)),
                ("payment_intent_id", models.CharField(blank=True, db_index=True, max_length=255)),
                ("customer_email", models.EmailField(blank=True, max_length=254)),
            ],
            options={
                "verbose_name": "Stripe payment",
                "verbose_name_plural": "Stripe payments",
                "db_table": "billing_stripe_payment",
                "ordering": ["-created_at"],
                "abstract": False,
            },
        ),
        migrations.CreateModel(
            name="PayPalPayment",
            fields=provider_payment_fields("paypalpayment_records")
            + [
                ("order_id", models.CharField(max_length=255, unique=True)),
                ("capture_id", models.CharField(blank=True, db_index=True, max_length=255)),
                ("payer_id", models.CharField(blank=True, max_length=255)),
                ("payer_email", models.EmailField(blank=True, max_length=254)),
                ("payer_name", models.CharField(blank=True, max_length=255)),
            ],
            options={
                "verbose_name": "PayPal payment",
                "verbose_name_plural": "PayPal payments",
                "db_table": "billing_paypal_payment",
                "ordering": ["-created_at"],
                "abstract": False,
            },
        ),
        migrations.CreateModel(
            name="DodoPayment",
            fields=provider_payment_fields("dodopayment_records")
            + [
                ("payment_id", models.CharField(blank=True, max_length=255, null=True, unique=True)),
                ("checkout_session_id", models.CharField(blank=True, db_index=True, max_length=255)),
                ("receipt_url", models.URLField(blank=True, max_length=512)),
            ],
            options={
                "verbose_name": "Dodo payment",
                "verbose_name_plural": "Dodo payments",
                "db_table": "billing_dodo_payment",
                "ordering": ["-created_at"],
                "abstract": False,
            },
        ),
        migrations.CreateModel(
            name="VivaPayment",
            fields=provider_payment_fields("vivapayment_records")
            + [
                ("order_code", models.CharField(max_length=64, unique=True)),
                ("transaction_id", models.CharField(blank=True, max_length=255)),
            ],
            options={
                "verbose_name": "Viva payment",
                "verbose_name_plural": "Viva payments",
                "db_table": "billing_viva_payment",
                "ordering": ["-created_at"],
                "abstract": False,
            },
        ),
        migrations.CreateModel(
            name="RefundRecord",
            fields=[
                ("id", models.UUIDField(default=uuid.uuid4, editable=False, primary_key=True, serialize=False)),
                ("stripe_refund_id", models.CharField(max_length=255, unique=True)),
                ("amount_usd", models.DecimalField(decimal_places=2, max_digits=10)),
                ("credits_deducted", models.PositiveIntegerField(default=0)),
                (
                    "status",
                    models.CharField(
                        choices=[
                            ("pending", "Pending"),
                            ("succeeded", "Succeeded"),
                            ("failed", "Failed"),
                            ("canceled", "Canceled"),
                        ],
                        max_length=16,
                    ),
                ),
                ("reason", models.CharField(blank=True, max_length=255)),
                ("metadata", models.JSONField(blank=True, null=True)),
                ("created_at", models.DateTimeField(auto_now_add=True)),
                (
                    "payment",
                    models.ForeignKey(
                        on_delete=django.db.models.deletion.PROTECT,
                        related_name="refunds",
                        to="billing.stripepayment",
                    ),
                ),
                (
                    "performed_by",
                    models.ForeignKey(
                        blank=True,
                        null=True,
                        on_delete=django.db.models.deletion.SET_NULL,
                        related_name="performed_refunds",
                        to=settings.AUTH_USER_MODEL,
                    ),
                ),
                (
                    "transaction",
                    models.OneToOneField(
                        blank=True,
                        null=True,
                        on_delete=django.db.models.deletion.SET_NULL,
                        related_name="refund",
                        to="billing.credittransaction",
                    ),
                ),
            ],
            options={
                "verbose_name": "Refund record",
                "verbose_name_plural": "Refund records",
                "db_table": "billing_refund_record",
                "ordering": ["-created_at"],
            },
        ),
        migrations.CreateModel(
            name="WebhookEventLog",
            fields=[
                ("id", models.BigAutoField(primary_key=True, serialize=False)),
                ("provider", models.CharField(choices=PROVIDER_CHOICES, max_length=20)),
                ("event_id", models.CharField(max_length=255)),
                ("event_type", models.CharField(blank=True, max_length=255)),
                (
                    "payload_hash",
                    models.CharField(
                        blank=True,
                        help_text="SHA256 of the raw payload for drift detection.",
                        max_length=64,
                    ),
                ),
                (
                    "status",
                    models.CharField(
                        choices=[
                            ("received", "Received"),
                            ("processing", "Processing"),
                            ("processed", "Processed"),
                            ("ignored", "Ignored"),
                            ("failed", "Failed"),
                        ],
                        default="received",
                        max_length=20,
                    ),
                ),
                (
                    "handled",
                    models.BooleanField(default=False, help_text="True once the event has been fully processed."),
                ),
                ("detail", models.CharField(blank=True, max_length=255)),
                ("last_error", models.TextField(blank=True)),
                (
                    "response",
                    models.JSONField(
                        blank=True,
                        help_text="Body returned for the first delivery; replayed for redeliveries.",
                        null=True,
                    ),
                ),
                ("created_at", models.DateTimeField(auto_now_add=True)),
                ("processed_at", models.DateTimeField(blank=True, null=True)),
                (
                    "user",
                    models.ForeignKey(
                        blank=True,
                        null=True,
                        on_delete=django.db.models.deletion.SET_NULL,
                        related_name="webhook_events",
                        to=settings.AUTH_USER_MODEL,
                    ),
                ),
            ],
            options={
                "verbose_name": "Webhook event log",
                "verbose_name_plural": "Webhook event logs",
                "db_table": "billing_webhook_event_log",
                "ordering": ["-created_at"],
                "indexes": [
                    models.Index(fields=["status"], name="webhook_event_status_idx"),
                    models.Index(fields=["event_type"], name="webhook_event_type_idx"),
                ],
                "constraints": [
                    models.UniqueConstraint(fields=("provider", "event_id"), name="webhook_event_provider_unique"),
                ],
            },
        ),
        migrations.CreateModel(
            name="BillingEventDeadLetter",
            fields=[
                ("id", models.BigAutoField(primary_key=True, serialize=False)),
                ("provider", models.CharField(choices=PROVIDER_CHOICES, max_length=20)),
                ("event_id", models.CharField(max_length=255)),
                ("event_type", models.CharField(blank=True, max_length=255)),
                ("payload", models.JSONField(help_text="Raw event payload that failed processing.")),
                ("failure_reason", models.TextField(help_text="Summary of why handling failed.")),
                ("retry_count", models.PositiveIntegerField(default=0)),
                (
                    "last_attempt_at",
                    models.DateTimeField(blank=True, help_text="Most recent attempt timestamp.", null=True),
                ),
                ("created_at", models.DateTimeField(auto_now_add=True)),
            ],
            options={
                "verbose_name": "Billing dead-letter event",
                "verbose_name_plural": "Billing dead-letter events",
                "db_table": "billing_event_dead_letter",
                "ordering": ["-created_at"],
                "constraints": [
                    models.UniqueConstraint(fields=("provider", "event_id"), name="dead_letter_provider_event_unique"),
                ],
            },
        ),
        migrations.CreateModel(
            name="OutboxMessage",
            fields=[
                ("id", models.UUIDField(default=uuid.uuid4, editable=False, primary_key=True, serialize=False)),
                (
                    "kind",
                    models.CharField(
                        choices=[
                            ("notification", "In-app notification"),
                            ("push", "Push notification"),
                            ("email", "Email"),
                            ("invoice", "Invoice"),
                            ("receipt", "Receipt"),
                        ],
                        max_length=20,
                    ),
                ),
                ("payload", models.JSONField(blank=True, default=dict)),
                (
                    "status",
                    models.CharField(
                        choices=[("pending", "Pending"), ("delivered", "Delivered"), ("failed", "Failed")],
                        default="pending",
                        max_length=20,
                    ),
                ),
                ("attempts", models.PositiveIntegerField(default=0)),
                ("last_error", models.TextField(blank=True)),
                ("available_at", models.DateTimeField(default=django.utils.timezone.now)),
                ("delivered_at", models.DateTimeField(blank=True, null=True)),
                ("dedupe_key", models.CharField(blank=True, max_length=255, null=True, unique=True)),
                ("created_at", models.DateTimeField(auto_now_add=True)),
                ("updated_at", models.DateTimeField(auto_now=True)),
                (
                    "user",
                    models.ForeignKey(
                        blank=True,
                        null=True,
                        on_delete=django.db.models.deletion.SET_NULL,
                        related_name="outbox_messages",
                        to=settings.AUTH_USER_MODEL,
                    ),
                ),
            ],
            options={
                "verbose_name": "Outbox message",
                "verbose_name_plural": "Outbox messages",
                "db_table": "billing_outbox_message",
                "ordering": ["created_at"],
                "indexes": [models.Index(fields=["status", "available_at"], name="outbox_due_idx")],
            },
        ),
        migrations.CreateModel(
            name="UserNotification",
            fields=[
                ("id", models.BigAutoField(primary_key=True, serialize=False)),
                ("title", models.CharField(max_length=255)),
                ("message", models.TextField()),
                ("notification_type", models.CharField(default="info", max_length=50)),
                ("data", models.JSONField(blank=True, null=True)),
                ("is_read", models.BooleanField(default=False)),
                ("created_at", models.DateTimeField(auto_now_add=True)),
                (
                    "user",
                    models.ForeignKey(
                        on_delete=django.db.models.deletion.CASCADE,
                        related_name="notifications",
                        to=settings.AUTH_USER_MODEL,
                    ),
                ),
            ],
            options={
                "verbose_name": "User notification",
                "verbose_name_plural": "User notifications",
                "db_table": "billing_user_notification",
                "ordering": ["-created_at"],
            },
        ),
        migrations.CreateModel(
            name="PushSubscription",
            fields=[
                ("id", models.BigAutoField(primary_key=True, serialize=False)),
                ("endpoint", models.URLField(max_length=1024, unique=True)),
                ("p256dh", models.CharField(max_length=255)),
                ("auth", models.CharField(max_length=255)),
                ("is_active", models.BooleanField(default=True)),
                ("last_failure_at", models.DateTimeField(blank=True, null=True)),
                ("created_at", models.DateTimeField(auto_now_add=True)),
                (
                    "user",
                    models.ForeignKey(
                        on_delete=django.db.models.deletion.CASCADE,
                        related_name="push_subscriptions",
                        to=settings.AUTH_USER_MODEL,
                    ),
                ),
            ],
            options={
                "verbose_name": "Push subscription",
                "verbose_name_plural": "Push subscriptions",
                "db_table": "billing_push_subscription",
                "ordering": ["-created_at"],
            },
        ),
        migrations.CreateModel(
            name="InvoiceRecord",
            fields=[
                ("id", models.UUIDField(default=uuid.uuid4, editable=False, primary_key=True, serialize=False)),
                ("invoice_number", models.CharField(max_length=32, unique=True)),
                ("provider", models.CharField(choices=PROVIDER_CHOICES, max_length=20)),
                ("payment_reference", models.CharField(max_length=255)),
                ("amount_usd", models.DecimalField(decimal_places=2, max_digits=10)),
                ("currency", models.CharField(default="usd", max_length=3)),
                ("credits", models.PositiveIntegerField()),
                (
                    "description",
                    models.CharField(default="Plagiarism & AI Content Analysis Service", max_length=255),
                ),
                ("customer_name", models.CharField(blank=True, max_length=255)),
                ("customer_email", models.EmailField(blank=True, max_length=254)),
                (
                    "status",
                    models.CharField(choices=[("paid", "Paid"), ("void", "Void")], default="paid", max_length=10),
                ),
                ("issued_at", models.DateTimeField(default=django.utils.timezone.now)),
                ("metadata", models.JSONField(blank=True, null=True)),
                ("created_at", models.DateTimeField(auto_now_add=True)),
                (
                    "user",
                    models.ForeignKey(
                        blank=True,
                        null=True,
                        on_delete=django.db.models.deletion.SET_NULL,
                        related_name="invoices",
                        to=settings.AUTH_USER_MODEL,
                    ),
                ),
            ],
            options={
                "verbose_name": "Invoice record",
                "verbose_name_plural": "Invoice records",
                "db_table": "billing_invoice_record",
                "ordering": ["-issued_at"],
                "constraints": [
                    models.UniqueConstraint(fields=("provider", "payment_reference"), name="invoice_payment_unique"),
                ],
            },
        ),
        migrations.CreateModel(
            name="ReceiptRecord",
            fields=[
                ("id", models.UUIDField(default=uuid.uuid4, editable=False, primary_key=True, serialize=False)),
                ("receipt_number", models.CharField(max_length=32, unique=True)),
                ("provider", models.CharField(choices=PROVIDER_CHOICES, max_length=20)),
                ("payment_reference", models.CharField(max_length=255)),
                ("payment_method", models.CharField(max_length=50)),
                ("amount_paid", models.DecimalField(decimal_places=2, max_digits=10)),
                ("currency", models.CharField(default="usd", max_length=3)),
                ("credits", models.PositiveIntegerField()),
                ("receipt_url", models.URLField(blank=True, max_length=512)),
                ("issued_at", models.DateTimeField(default=django.utils.timezone.now)),
                ("created_at", models.DateTimeField(auto_now_add=True)),
                (
                    "invoice",
                    models.ForeignKey(
                        blank=True,
                        null=True,
                        on_delete=django.db.models.deletion.SET_NULL,
                        related_name="receipts",
                        to="billing.invoicerecord",
                    ),
                ),
                (
                    "user",
                    models.ForeignKey(
                        blank=True,
                        null=True,
                        on_delete=django.db.models.deletion.SET_NULL,
                        related_name="receipts",
                        to=settings.AUTH_USER_MODEL,
                    ),
                ),
            ],
            options={
                "verbose_name": "Receipt record",
                "verbose_name_plural": "Receipt records",
                "db_table": "billing_receipt_record",
                "ordering": ["-issued_at"],
                "constraints": [
                    models.UniqueConstraint(fields=("provider", "payment_reference"), name="receipt_payment_unique"),
                ],
            },
        ),
    ]
