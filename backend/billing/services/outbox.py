"""Transactional outbox for post-payment side effects."""
from __future__ import annotations

import logging
from datetime import timedelta
from typing import Any, Dict, Optional

from django.conf import settings
from django.db import transaction
from django.utils import timezone

from billing.models import OutboxMessage
from billing.observability.metrics import OUTBOX_DELIVERIES

logger = logging.getLogger(__name__)


def enqueue(
    kind: str,
    user_id: Any,
    payload: Dict[str, Any],
    *,
    dedupe_key: Optional[str] = None,
) -> OutboxMessage:
    """Record a side-effect intent inside the caller's transaction.

    Delivery is scheduled only once that transaction commits, so nothing is
    announced for a balance change that was rolled back.
    """

    defaults = {"kind": kind, "user_id": user_id, "payload": payload}
    if dedupe_key:
        message, created = OutboxMessage.objects.get_or_create(dedupe_key=dedupe_key, defaults=defaults)
        if not created:
            return message
    else:
        message = OutboxMessage.objects.create(**defaults)

    message_id = str(message.pk)
    transaction.on_commit(lambda: _schedule_delivery(message_id))
    return message


def _schedule_delivery(message_id: str) -> None:
    from billing.tasks import deliver_outbox_message

    try:
        deliver_outbox_message.delay(message_id)
    except Exception:  # broker outage: the periodic drain picks the message up
        logger.exception("Could not queue delivery of outbox message %s.", message_id)


def deliver(message_id: Any) -> str:
    """Run the channel handler for one message and record the outcome."""

    from billing.services.notifications import get_channel_handler

    with transaction.atomic():
        message = OutboxMessage.objects.select_for_update().filter(pk=message_id).first()
        if message is None:
            logger.warning("Outbox message %s no longer exists.", message_id)
            return "missing"
        if message.status != OutboxMessage.Status.PENDING:
            return message.status

        message.attempts += 1
        try:
            with transaction.atomic():
                get_channel_handler(message.kind)(message)
        except Exception as exc:
            _record_failure(message, exc)
            return message.status

        message.status = OutboxMessage.Status.DELIVERED
        message.delivered_at = timezone.now()
        message.last_error = ""
        message.save(update_fields=["status", "attempts", "delivered_at", "last_error", "updated_at"])

    OUTBOX_DELIVERIES.labels(kind=message.kind, result="delivered").inc()
    return message.status


def due_message_ids(limit: int = 100) -> list:
    return list(
        OutboxMessage.objects.filter(
            status=OutboxMessage.Status.PENDING,
            available_at__lte=timezone.now(),
        )
        .order_by("available_at")
        .values_list("pk", flat=True)[:limit]
    )


def _record_failure(message: OutboxMessage, exc: Exception) -> None:
    max_attempts = getattr(settings, "OUTBOX_MAX_ATTEMPTS", 6) or 1
    base_delay = getattr(settings, "OUTBOX_RETRY_BASE_SECONDS", 30) or 1

    message.last_error = f"{type(exc).__name__}: {exc}"[:2000]
    if message.attempts >= max_attempts:
        message.status = OutboxMessage.Status.FAILED
        OUTBOX_DELIVERIES.labels(kind=message.kind, result="failed").inc()
        logger.error(
            "Giving up on %s outbox message %s after %s attempts: %s",
            message.kind,
            message.pk,
            message.attempts,
            message.last_error,
        )
    else:
        message.available_at = timezone.now() + timedelta(seconds=base_delay * (2 ** (message.attempts - 1)))
        OUTBOX_DELIVERIES.labels(kind=message.kind, result="retry").inc()
        logger.warning(
            "Delivery of %s outbox message %s failed (attempt %s); retrying at %s: %s",
            message.kind,
            message.pk,
            message.attempts,
            message.available_at.isoformat(),
            message.last_error,
        )
    message.save(update_fields=["status", "attempts", "last_error", "available_at", "updated_at"])
