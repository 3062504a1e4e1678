"""Outbox channel handlers: in-app notifications, push, e-mail, invoices and receipts.

Each handler receives an ``OutboxMessage`` and raises on failure; the outbox
records the error and retries later. Handlers must be safe to run again for a
message whose previous attempt failed part-way.
"""
from __future__ import annotations

import logging
from decimal import Decimal
from typing import Callable, Dict, Optional

from django.conf import settings
from django.contrib.auth import get_user_model
from django.core.mail import send_mail
from django.db import IntegrityError, transaction
from django.template.loader import render_to_string
from django.utils import timezone
from django.utils.html import strip_tags

from billing.models import InvoiceRecord, OutboxMessage, PushSubscription, ReceiptRecord, UserNotification
from billing.services.clients import get_push_client
from billing.services.provider_http import ProviderError
from billing.services.push import PushSubscriptionGone

logger = logging.getLogger(__name__)

User = get_user_model()

DOCUMENT_NUMBER_ATTEMPTS = 5

ChannelHandler = Callable[[OutboxMessage], None]


def deliver_notification(message: OutboxMessage) -> None:
    payload = message.payload or {}
    if message.user_id is None:
        logger.warning("Notification message %s has no recipient; dropping.", message.pk)
        return
    UserNotification.objects.create(
        user_id=message.user_id,
        title=payload.get("title", "")[:255],
        message=payload.get("message", ""),
        notification_type=payload.get("type", "info"),
        data=payload.get("data"),
    )


def deliver_push(message: OutboxMessage) -> None:
    client = get_push_client()
    if not client.enabled:
        logger.debug("PUSH_GATEWAY_URL is not configured; skipping push message %s.", message.pk)
        return

    payload = message.payload or {}
    subscriptions = list(PushSubscription.objects.filter(user_id=message.user_id, is_active=True))
    if not subscriptions:
        return

    sent = 0
    errors = []
    for subscription in subscriptions:
        try:
            client.send(
                subscription,
                title=payload.get("title", ""),
                body=payload.get("body", ""),
                data=payload.get("data"),
            )
            sent += 1
        except PushSubscriptionGone:
            subscription.is_active = False
            subscription.last_failure_at = timezone.now()
            subscription.save(update_fields=["is_active", "last_failure_at"])
            logger.info("Deactivated expired push subscription %s for user %s.", subscription.pk, message.user_id)
        except ProviderError as exc:
            errors.append(str(exc))
            subscription.last_failure_at = timezone.now()
            subscription.save(update_fields=["last_failure_at"])

    if errors and not sent:
        raise ProviderError(f"Push delivery failed for every subscription: {'; '.join(errors)}")


def deliver_email(message: OutboxMessage) -> None:
    payload = message.payload or {}
    recipient = payload.get("to")
    user = None
    if message.user_id is not None:
        user = User.objects.filter(pk=message.user_id).first()
        if not recipient and user is not None:
            recipient = user.email
    if not recipient:
        logger.warning("E-mail message %s has no recipient address; dropping.", message.pk)
        return

    context = {
        "user": user,
        "site_name": getattr(settings, "SITE_NAME", "Plagiarism Checker"),
        "site_url": getattr(settings, "SITE_URL", ""),
    }
    context.update(payload.get("context") or {})

    html_message = render_to_string(f"emails/{payload['template']}.html", context)
    send_mail(
        subject=payload.get("subject", ""),
        message=strip_tags(html_message),
        from_email=settings.DEFAULT_FROM_EMAIL,
        recipient_list=[recipient],
        html_message=html_message,
        fail_silently=False,
    )
    logger.info("Sent %s e-mail to %s.", payload["template"], recipient)


def deliver_invoice(message: OutboxMessage) -> None:
    payload = message.payload or {}
    provider = payload["provider"]
    reference = payload["payment_reference"]
    if InvoiceRecord.objects.filter(provider=provider, payment_reference=reference).exists():
        logger.info("Invoice for %s payment %s already exists.", provider, reference)
        return

    _create_numbered(
        InvoiceRecord,
        "invoice_number",
        "INV",
        user_id=message.user_id,
        provider=provider,
        payment_reference=reference,
        amount_usd=Decimal(str(payload.get("amount_usd") or "0")),
        currency=payload.get("currency") or "usd",
        credits=payload.get("credits") or 0,
        customer_name=payload.get("customer_name") or "",
        customer_email=payload.get("customer_email") or "",
        metadata=payload.get("metadata"),
    )


def deliver_receipt(message: OutboxMessage) -> None:
    payload = message.payload or {}
    provider = payload["provider"]
    reference = payload["payment_reference"]
    if ReceiptRecord.objects.filter(provider=provider, payment_reference=reference).exists():
        logger.info("Receipt for %s payment %s already exists.", provider, reference)
        return

    _create_numbered(
        ReceiptRecord,
        "receipt_number",
        "RCP",
        user_id=message.user_id,
        invoice=InvoiceRecord.objects.filter(provider=provider, payment_reference=reference).first(),
        provider=provider,
        payment_reference=reference,
        payment_method=payload.get("payment_method") or provider,
        amount_paid=Decimal(str(payload.get("amount_paid") or "0")),
        currency=payload.get("currency") or "usd",
        credits=payload.get("credits") or 0,
        receipt_url=payload.get("receipt_url") or "",
    )


def next_document_number(model, field: str, prefix: str, *, now=None) -> str:
    """Return the next ``PREFIX-YYYYMMDD-NNNN`` number for today."""

    stamp = f"{prefix}-{(now or timezone.now()):%Y%m%d}-"
    latest = (
        model.objects.filter(**{f"{field}__startswith": stamp})
        .order_by(f"-{field}")
        .values_list(field, flat=True)
        .first()
    )
    sequence = int(latest.rsplit("-", 1)[-1]) + 1 if latest else 1
    return f"{stamp}{sequence:04d}"


def _create_numbered(model, field: str, prefix: str, **values):
    for attempt in range(1, DOCUMENT_NUMBER_ATTEMPTS + 1):
        values[field] = next_document_number(model, field, prefix)
        try:
            with transaction.atomic():
                return model.objects.create(**values)
        except IntegrityError:
            if model.objects.filter(
                provider=values["provider"], payment_reference=values["payment_reference"]
            ).exists():
                return None
            if attempt == DOCUMENT_NUMBER_ATTEMPTS:
                raise
            logger.info("%s number %s taken; retrying.", model.__name__, values[field])
    return None


CHANNEL_HANDLERS: Dict[str, ChannelHandler] = {
    OutboxMessage.Kind.NOTIFICATION: deliver_notification,
    OutboxMessage.Kind.PUSH: deliver_push,
    OutboxMessage.Kind.EMAIL: deliver_email,
    OutboxMessage.Kind.INVOICE: deliver_invoice,
    OutboxMessage.Kind.RECEIPT: deliver_receipt,
}


def get_channel_handler(kind: str) -> ChannelHandler:
    handler: Optional[ChannelHandler] = CHANNEL_HANDLERS.get(kind)
    if handler is None:
        raise ValueError(f"No channel handler registered for outbox kind '{kind}'.")
    return handler
