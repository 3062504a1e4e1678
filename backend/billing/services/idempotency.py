"""Idempotency guard: claim external payment events exactly once."""
from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Optional, Union

from django.db import IntegrityError, transaction
from django.utils import timezone

from billing.models import PaymentIdempotencyKey
from billing.observability.metrics import PAYMENT_CLAIMS

logger = logging.getLogger(__name__)


class IdempotencyError(Exception):
    """Raised when a claim cannot be recorded or is used incorrectly."""


@dataclass(frozen=True)
class Claimed:
    """The caller owns the event and must apply the mutation."""

    claim: PaymentIdempotencyKey


@dataclass(frozen=True)
class AlreadyProcessed:
    """Another caller (or an earlier delivery) already owns the event."""

    claim: Optional[PaymentIdempotencyKey]


ClaimOutcome = Union[Claimed, AlreadyProcessed]


def claim(
    event_key: str,
    provider: str,
    user_id: Any = None,
    *,
    payload: Optional[dict] = None,
) -> ClaimOutcome:
    """Insert the ``(event_key, provider)`` row; a unique violation means the event was seen before.

    The insert runs in a savepoint so a duplicate does not poison an enclosing
    transaction. Database errors other than the uniqueness violation propagate.
    """

    if not event_key:
        raise IdempotencyError("An event key is required to claim a payment event.")
    if not provider:
        raise IdempotencyError("A provider is required to claim a payment event.")

    key = str(event_key)
    try:
        with transaction.atomic():
            record = PaymentIdempotencyKey.objects.create(
                key=key,
                provider=provider,
                user_id=user_id,
                payload=payload,
            )
    except IntegrityError:
        existing = PaymentIdempotencyKey.objects.filter(key=key, provider=provider).first()
        if existing is None:
            # The violation was not the (key, provider) uniqueness constraint.
            raise
        PAYMENT_CLAIMS.labels(provider=provider, outcome="duplicate").inc()
        logger.info("Payment event %s/%s already claimed (status=%s).", provider, key, existing.status)
        return AlreadyProcessed(claim=existing)

    PAYMENT_CLAIMS.labels(provider=provider, outcome="claimed").inc()
    return Claimed(claim=record)


def complete_claim(record: PaymentIdempotencyKey) -> PaymentIdempotencyKey:
    if record.status == PaymentIdempotencyKey.Status.COMPLETED:
        return record
    record.status = PaymentIdempotencyKey.Status.COMPLETED
    record.completed_at = timezone.now()
    record.last_error = ""
    record.save(update_fields=["status", "completed_at", "last_error"])
    return record


def note_claim_failure(record: PaymentIdempotencyKey, error: str) -> None:
    record.attempts = (record.attempts or 0) + 1
    record.last_error = error[:2000]
    record.save(update_fields=["attempts", "last_error"])


def stale_pending_claims(older_than):
    """Pending claims created before ``older_than``, oldest first."""

    return PaymentIdempotencyKey.objects.filter(
        status=PaymentIdempotencyKey.Status.PENDING,
        created_at__lt=older_than,
    ).order_by("created_at")
