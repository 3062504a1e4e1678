"""Provider-agnostic webhook processing: receipt log, dispatch, dead-lettering."""
from __future__ import annotations

import hashlib
import json
import logging
import uuid
from dataclasses import dataclass, field
from datetime import timedelta
from typing import Any, Callable, Dict, Optional, Tuple

from django.db import transaction
from django.utils import timezone

from billing.models import BillingEventDeadLetter, WebhookEventLog
from billing.observability.logging import log_billing_event
from billing.observability.metrics import WEBHOOK_BACKLOG, WEBHOOK_EVENTS

logger = logging.getLogger(__name__)


class WebhookProcessingError(Exception):
    """Raised when a webhook cannot be processed because its content is unusable."""


@dataclass(frozen=True)
class HandlerResult:
    """Outcome of a webhook handler invocation."""

    status: str
    detail: str = ""
    body: Dict[str, Any] = field(default_factory=lambda: {"success": True, "received": True})
    http_status: int = 200
    user_id: Optional[Any] = None

    PROCESSED = "processed"
    IGNORED = "ignored"
    DEAD_LETTER = "dead_letter"
    ALREADY_PROCESSED = "already_processed"
    ERROR = "error"


Dispatcher = Callable[..., HandlerResult]


def ignored(detail: str, **body: Any) -> HandlerResult:
    payload = {"success": True, "received": True}
    payload.update(body)
    return HandlerResult(status=HandlerResult.IGNORED, detail=detail, body=payload)


def process_webhook(
    *,
    provider: str,
    event_id: Optional[str],
    event_type: Optional[str],
    payload: Dict[str, Any],
    dispatch: Dispatcher,
) -> HandlerResult:
    """Run ``dispatch`` for an event at most once per ``(provider, event_id)``.

    Redeliveries of a handled event get the stored response back.
    ``WebhookProcessingError`` becomes a 400. Any other exception rolls the
    handler back, dead-letters the payload and becomes a 500.
    """

    log_entry, already_processed = reserve_event_log(provider, event_id, event_type, hash_event_payload(payload))
    if already_processed:
        WEBHOOK_EVENTS.labels(provider=provider, status="duplicate").inc()
        logger.info(
            "Skipping %s event %s (%s); status=%s",
            provider,
            event_id,
            event_type,
            log_entry.status,
        )
        body = dict(log_entry.response or {"success": True, "received": True})
        body["alreadyProcessed"] = True
        return HandlerResult(status=HandlerResult.ALREADY_PROCESSED, body=body, user_id=log_entry.user_id)

    try:
        with transaction.atomic():
            result = dispatch(event_id=event_id or "", event_type=event_type or "", payload=payload)
    except WebhookProcessingError as exc:
        logger.warning("Webhook processing error for %s event %s: %s", provider, event_id, exc)
        mark_event_failed(log_entry, str(exc))
        WEBHOOK_EVENTS.labels(provider=provider, status="rejected").inc()
        return HandlerResult(
            status=HandlerResult.ERROR,
            detail=str(exc),
            body={"success": False, "error": str(exc)},
            http_status=400,
        )
    except Exception as exc:
        logger.exception("Unexpected error processing %s event %s", provider, event_id)
        record_dead_letter(
            provider=provider,
            event_id=event_id,
            event_type=event_type,
            reason=f"{type(exc).__name__}: {exc}",
            payload=payload,
        )
        mark_event_failed(log_entry, str(exc))
        WEBHOOK_EVENTS.labels(provider=provider, status=HandlerResult.DEAD_LETTER).inc()
        return HandlerResult(
            status=HandlerResult.DEAD_LETTER,
            detail=str(exc),
            body={"success": False, "error": "Webhook processing failed"},
            http_status=500,
        )

    if result.http_status >= 400:
        mark_event_failed(log_entry, result.detail or result.status)
    else:
        status = (
            WebhookEventLog.Status.PROCESSED
            if result.status == HandlerResult.PROCESSED
            else WebhookEventLog.Status.IGNORED
        )
        mark_event_completed(log_entry, status, detail=result.detail, user_id=result.user_id, response=result.body)

    WEBHOOK_EVENTS.labels(provider=provider, status=result.status).inc()
    log_billing_event(
        message="webhook.handled",
        provider=provider,
        user_id=result.user_id,
        event_key=event_id,
        extra={"event_type": event_type, "status": result.status, "detail": result.detail},
    )
    return result


def reserve_event_log(
    provider: str,
    event_id: Optional[str],
    event_type: Optional[str],
    payload_hash: str,
) -> Tuple[Optional[WebhookEventLog], bool]:
    if not event_id:
        logger.warning("Received %s event without identifier; proceeding without receipt log.", provider)
        return None, False

    with transaction.atomic():
        log_entry = WebhookEventLog.objects.select_for_update().filter(provider=provider, event_id=event_id).first()
        if log_entry:
            if log_entry.handled:
                return log_entry, True

            log_entry.event_type = event_type or log_entry.event_type
            log_entry.status = WebhookEventLog.Status.PROCESSING
            log_entry.last_error = ""
            log_entry.processed_at = None
            if payload_hash:
                log_entry.payload_hash = payload_hash
            log_entry.save(update_fields=["event_type", "status", "last_error", "processed_at", "payload_hash"])
            return log_entry, False

        log_entry = WebhookEventLog.objects.create(
            provider=provider,
            event_id=event_id,
            event_type=event_type or "",
            status=WebhookEventLog.Status.PROCESSING,
            payload_hash=payload_hash or "",
        )
        return log_entry, False


def mark_event_completed(
    log_entry: Optional[WebhookEventLog],
    status: str,
    *,
    detail: str = "",
    user_id: Optional[Any] = None,
    response: Optional[Dict[str, Any]] = None,
) -> None:
    if not log_entry:
        return

    log_entry.status = status
    log_entry.processed_at = timezone.now()
    log_entry.last_error = ""
    log_entry.handled = True
    log_entry.detail = (detail or "")[:255]
    log_entry.response = response
    updates = ["status", "processed_at", "last_error", "handled", "detail", "response"]

    if user_id and log_entry.user_id != user_id:
        log_entry.user_id = user_id
        updates.append("user")

    log_entry.save(update_fields=updates)


def mark_event_failed(log_entry: Optional[WebhookEventLog], error: str) -> None:
    if not log_entry:
        return

    log_entry.status = WebhookEventLog.Status.FAILED
    log_entry.last_error = error
    log_entry.processed_at = None
    log_entry.handled = False
    log_entry.save(update_fields=["status", "last_error", "processed_at", "handled"])


def record_dead_letter(
    *,
    provider: str,
    event_id: Optional[str],
    event_type: Optional[str],
    reason: Optional[str],
    payload: Dict[str, Any],
) -> BillingEventDeadLetter:
    identifier = event_id or f"anon:{uuid.uuid4()}"
    defaults = {
        "event_type": event_type or "",
        "payload": payload,
        "failure_reason": reason or "unknown",
        "last_attempt_at": timezone.now(),
    }
    dead_letter, created = BillingEventDeadLetter.objects.get_or_create(
        provider=provider,
        event_id=identifier,
        defaults=defaults,
    )

    if not created:
        dead_letter.payload = payload
        dead_letter.failure_reason = defaults["failure_reason"]
        dead_letter.last_attempt_at = defaults["last_attempt_at"]
        dead_letter.retry_count = (dead_letter.retry_count or 0) + 1
        dead_letter.save(update_fields=["payload", "failure_reason", "last_attempt_at", "retry_count"])

    WEBHOOK_BACKLOG.labels(provider=provider, event_type=event_type or "unknown").inc()
    return dead_letter


def hash_event_payload(event_data: Dict[str, Any]) -> str:
    try:
        serialized = json.dumps(event_data, sort_keys=True, separators=(",", ":"))
    except TypeError:
        serialized = json.dumps(event_data, sort_keys=True, default=str)
    return hashlib.sha256(serialized.encode("utf-8")).hexdigest()


def cleanup_event_logs(days: int = 7) -> int:
    cutoff = timezone.now() - timedelta(days=days)
    deleted, _ = WebhookEventLog.objects.filter(
        status__in=[WebhookEventLog.Status.PROCESSED, WebhookEventLog.Status.IGNORED],
        handled=True,
        processed_at__lt=cutoff,
    ).delete()
    logger.info("Cleaned up %s handled webhook events older than %s days.", deleted, days)
    return deleted
