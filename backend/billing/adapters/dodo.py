"""Dodo Payments webhook adapter."""
from __future__ import annotations

import logging
from typing import Any, Dict, Optional, Tuple

from django.db import transaction
from django.db.models import Q

from billing.adapters.common import credit_type_from, minor_to_decimal, move_payment, parse_credits, resolve_user_id
from billing.models import DodoPayment, PaymentProvider, PaymentStatus
from billing.services.reconciliation import PaymentCredit, credit_payment
from billing.webhooks import HandlerResult, WebhookProcessingError, ignored

logger = logging.getLogger(__name__)

SUCCEEDED_EVENTS = {"payment.succeeded", "payment_success", "payment.completed"}
FAILED_EVENTS = {"payment.failed", "payment_failed"}
REFUNDED_EVENTS = {"payment.refunded", "refund.created"}


def event_type_of(event: Dict[str, Any]) -> str:
    return event.get("type") or event.get("event_type") or ""


def payment_data(event: Dict[str, Any]) -> Dict[str, Any]:
    return event.get("data") or event


def payment_id_of(event: Dict[str, Any]) -> str:
    data = payment_data(event)
    return str(data.get("payment_id") or data.get("id") or "")


def dispatch_event(*, event_id: str, event_type: str, payload: Dict[str, Any]) -> HandlerResult:
    if event_type in SUCCEEDED_EVENTS:
        return _handle_payment_succeeded(payload)
    if event_type in FAILED_EVENTS:
        return _handle_status_change(payload, PaymentStatus.FAILED)
    if event_type in REFUNDED_EVENTS:
        return _handle_status_change(payload, PaymentStatus.REFUNDED)

    logger.info("Ignoring unsupported Dodo event type '%s'.", event_type)
    return ignored("Unsupported event type")


def _find_payment(payment_id: str, *, for_update: bool = False) -> Optional[DodoPayment]:
    if not payment_id:
        return None
    queryset = DodoPayment.objects.filter(Q(payment_id=payment_id) | Q(checkout_session_id=payment_id))
    if for_update:
        queryset = queryset.select_for_update()
    return queryset.order_by("-created_at").first()


def _resolve_purchase(data: Dict[str, Any], payment: Optional[DodoPayment]) -> Tuple[Any, int, str]:
    metadata = data.get("metadata") or {}
    user_id = resolve_user_id(metadata.get("user_id"))
    credits = parse_credits(metadata.get("credits"))
    credit_type = metadata.get("credit_type")
    if payment is not None:
        user_id = user_id or payment.user_id
        credits = credits or payment.credits
        credit_type = credit_type or payment.credit_type
    return user_id, credits, credit_type_from(credit_type, WebhookProcessingError)


def _handle_payment_succeeded(event: Dict[str, Any]) -> HandlerResult:
    data = payment_data(event)
    payment_id = payment_id_of(event)
    if not payment_id:
        raise WebhookProcessingError("Payment ID missing from Dodo event.")

    payment = _find_payment(payment_id, for_update=True)
    user_id, credits, credit_type = _resolve_purchase(data, payment)
    if not user_id:
        logger.error("Could not determine user for Dodo payment %s.", payment_id)
        raise WebhookProcessingError("User not found")
    if credits <= 0:
        return ignored("No credits to add")

    currency = (data.get("currency") or "usd").lower()
    amount = minor_to_decimal(data.get("total_amount") or data.get("amount"), currency)
    receipt_url = data.get("receipt_url") or ""

    with transaction.atomic():
        if payment is None:
            payment = DodoPayment.objects.create(
                payment_id=payment_id,
                user_id=user_id,
                credits=credits,
                credit_type=credit_type,
                amount_usd=amount or 0,
                currency=currency,
            )

        def on_credited(_ledger_result):
            move_payment(payment, PaymentStatus.COMPLETED, receipt_url=receipt_url, payment_id=payment_id)

        result = credit_payment(
            PaymentCredit(
                provider=PaymentProvider.DODO,
                event_key=payment_id,
                user_id=user_id,
                credits=credits,
                credit_type=credit_type,
                description=f"Dodo Payments - {credits} credits",
                amount_usd=payment.amount_usd or amount,
                currency=currency,
                payment_method="dodo",
                receipt_url=receipt_url,
                payment=payment,
            ),
            on_credited=on_credited,
        )

    return HandlerResult(
        status=HandlerResult.PROCESSED,
        detail="Credits applied" if not result.already_processed else "Already processed",
        body=result.as_response(),
        user_id=user_id,
    )


def _handle_status_change(event: Dict[str, Any], status: str) -> HandlerResult:
    payment_id = payment_id_of(event)
    payment = _find_payment(payment_id, for_update=True)
    if payment is None:
        logger.warning("Dodo %s event for unknown payment %s.", status, payment_id)
        return ignored("Payment not found")

    data = payment_data(event)
    fields = {}
    if status == PaymentStatus.FAILED:
        fields["failure_reason"] = (data.get("error_message") or data.get("failure_reason") or "")[:255]
    if not move_payment(payment, status, **fields):
        return ignored(f"Payment already {payment.status}")
    return HandlerResult(status=HandlerResult.PROCESSED, detail=f"Payment marked {status}", user_id=payment.user_id)
