"""Prometheus metrics helpers for the credit domain."""
from __future__ import annotations

from prometheus_client import Counter, Histogram

CREDITS_APPLIED = Counter(
    "billing_credits_applied_total",
    "Credits moved through the ledger",
    labelnames=("kind", "credit_type"),
)

PAYMENT_CLAIMS = Counter(
    "billing_payment_claims_total",
    "Idempotency claim outcomes per provider",
    labelnames=("provider", "outcome"),
)

INSUFFICIENT_CREDITS = Counter(
    "billing_insufficient_credits_total",
    "Deductions rejected for lack of credits",
    labelnames=("credit_type",),
)

WEBHOOK_EVENTS = Counter(
    "billing_webhook_events_total",
    "Provider webhook events by processing status",
    labelnames=("provider", "status"),
)

WEBHOOK_BACKLOG = Counter(
    "billing_webhook_dead_letter_total",
    "Total dead-lettered provider webhook events",
    labelnames=("provider", "event_type"),
)

OUTBOX_DELIVERIES = Counter(
    "billing_outbox_deliveries_total",
    "Side-effect delivery attempts by channel and result",
    labelnames=("kind", "result"),
)

CREDITS_EXPIRED = Counter(
    "billing_credits_expired_total",
    "Credits removed by the expiry sweep",
    labelnames=("credit_type",),
)

PROVIDER_REQUEST_LATENCY = Histogram(
    "billing_provider_request_duration_seconds",
    "Latency of outbound payment provider requests",
    labelnames=("provider", "operation"),
    buckets=(0.05, 0.1, 0.25, 0.5, 1, 2, 5, 10),
)
