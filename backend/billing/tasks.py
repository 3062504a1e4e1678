"""Celery tasks for credit expiry, side-effect delivery and payment reconciliation."""
from __future__ import annotations

import logging
from datetime import timedelta
from typing import Any, Dict, Optional

from celery import shared_task
from django.db import OperationalError
from django.utils import timezone

from billing.adapters import get_dispatcher
from billing.models import BillingEventDeadLetter
from billing.services import outbox
from billing.services.credit_validity import expire_due_credits
from billing.services.reconciliation import reconcile_pending_claims
from billing.webhooks import HandlerResult, cleanup_event_logs, process_webhook

logger = logging.getLogger(__name__)

DRAIN_BATCH_SIZE = 200


@shared_task(bind=True, queue="billing", autoretry_for=(OperationalError,), retry_backoff=True, max_retries=3)
def expire_credits(self) -> Dict[str, Any]:
    """Expire every validity batch whose deadline has passed."""

    summary = expire_due_credits()
    logger.info(
        "Credit expiry sweep finished: processed=%s errors=%s",
        summary["processed"],
        len(summary["errors"]),
    )
    return summary


@shared_task(bind=True, queue="billing", autoretry_for=(OperationalError,), retry_backoff=True, max_retries=5)
def deliver_outbox_message(self, message_id: str) -> str:
    return outbox.deliver(message_id)


@shared_task(queue="billing")
def drain_outbox(limit: int = DRAIN_BATCH_SIZE) -> Dict[str, int]:
    """Deliver pending outbox messages whose retry time has come."""

    stats: Dict[str, int] = {}
    for message_id in outbox.due_message_ids(limit):
        status = str(outbox.deliver(message_id))
        stats[status] = stats.get(status, 0) + 1

    if stats:
        logger.info("Outbox drain results: %s", stats)
    return stats


@shared_task(bind=True, queue="billing", autoretry_for=(OperationalError,), retry_backoff=True, max_retries=3)
def reconcile_payment_claims(self, older_than_minutes: Optional[int] = None) -> Dict[str, int]:
    """Finish or re-drive payment claims left pending by an interrupted handler."""

    older_than = None
    if older_than_minutes is not None:
        older_than = timezone.now() - timedelta(minutes=older_than_minutes)
    return reconcile_pending_claims(older_than=older_than)


@shared_task(bind=True, queue="billing")
def replay_webhook_event(self, dead_letter_id: int) -> Dict[str, Any]:
    """Run a dead-lettered webhook payload through its provider dispatcher again."""

    dead_letter = BillingEventDeadLetter.objects.filter(pk=dead_letter_id).first()
    if dead_letter is None:
        logger.warning("Dead-letter event %s no longer exists.", dead_letter_id)
        return {"status": "missing", "detail": ""}

    result = process_webhook(
        provider=dead_letter.provider,
        event_id=dead_letter.event_id,
        event_type=dead_letter.event_type,
        payload=dict(dead_letter.payload or {}),
        dispatch=get_dispatcher(dead_letter.provider),
    )

    if result.status in {HandlerResult.PROCESSED, HandlerResult.IGNORED, HandlerResult.ALREADY_PROCESSED}:
        dead_letter.delete()
        logger.info("Replayed %s event %s: %s", dead_letter.provider, dead_letter.event_id, result.status)
    else:
        logger.warning(
            "Replay of %s event %s failed with %s: %s",
            dead_letter.provider,
            dead_letter.event_id,
            result.status,
            result.detail,
        )
    return {"status": result.status, "detail": result.detail}


@shared_task(queue="maintenance")
def cleanup_webhook_event_logs(days: int = 7) -> int:
    """Remove handled webhook events older than ``days`` days."""

    return cleanup_event_logs(days=days)
