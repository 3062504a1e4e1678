"""Viva.com smart checkout adapter: order verification and webhook events."""
from __future__ import annotations

import logging
from typing import Any, Dict, Optional

from django.db import transaction

from billing.adapters.common import PaymentRecordNotFound, VerificationError, move_payment
from billing.models import PaymentProvider, PaymentStatus, VivaPayment
from billing.services import clients
from billing.services.credit_ledger import get_balance
from billing.services.reconciliation import PaymentCredit, ReconciliationResult, credit_payment
from billing.services.viva import (
    VIVA_EVENT_TRANSACTION_FAILED,
    VIVA_EVENT_TRANSACTION_PAYMENT_CREATED,
    VIVA_STATE_CANCELED,
    VIVA_STATE_EXPIRED,
    VIVA_STATE_NAMES,
    VIVA_STATE_PAID,
    VivaClient,
)
from billing.webhooks import HandlerResult, ignored

logger = logging.getLogger(__name__)

TERMINAL_STATES = {
    VIVA_STATE_EXPIRED: PaymentStatus.EXPIRED,
    VIVA_STATE_CANCELED: PaymentStatus.CANCELED,
}


def event_id_of(payload: Dict[str, Any]) -> Optional[str]:
    """Viva events carry no id of their own; type, order and transaction identify a delivery."""

    data = payload.get("EventData") or {}
    order_code = data.get("OrderCode")
    if payload.get("EventTypeId") is None or not order_code:
        return None
    return f"{payload['EventTypeId']}:{order_code}:{data.get('TransactionId') or ''}"


def verify_order(*, order_code: str, client: VivaClient, transaction_id: str = "") -> ReconciliationResult:
    order_code = str(order_code or "").strip()
    if not order_code:
        raise VerificationError("Order code is required")

    payment = VivaPayment.objects.filter(order_code=order_code).first()
    if payment is None:
        raise PaymentRecordNotFound("Payment not found")

    if payment.is_completed:
        return ReconciliationResult(
            success=True,
            credits_added=payment.credits,
            new_balance=get_balance(payment.user_id, payment.credit_type),
            already_processed=True,
            credit_type=payment.credit_type,
            extra={"amountPaid": str(payment.amount_usd), "status": "completed"},
        )

    order = client.get_order(order_code)
    state = order.get("StateId")
    logger.info("Viva order %s has StateId=%s.", order_code, state)

    if state == VIVA_STATE_PAID:
        result = _credit_order(payment, transaction_id=transaction_id or order.get("TransactionId") or "")
        return result.with_extra(amountPaid=str(payment.amount_usd), status="completed")

    if state in TERMINAL_STATES:
        with transaction.atomic():
            locked = VivaPayment.objects.select_for_update().get(pk=payment.pk)
            move_payment(locked, TERMINAL_STATES[state])
    return ReconciliationResult.not_completed(VIVA_STATE_NAMES.get(state, "unknown"))


def dispatch_event(*, event_id: str, event_type: str, payload: Dict[str, Any]) -> HandlerResult:
    event_type_id = payload.get("EventTypeId")
    if event_type_id == VIVA_EVENT_TRANSACTION_PAYMENT_CREATED:
        return _handle_payment_created(payload)
    if event_type_id == VIVA_EVENT_TRANSACTION_FAILED:
        return _handle_transaction_failed(payload)

    logger.info("Ignoring unsupported Viva event type %s.", event_type_id)
    return ignored("Unsupported event type")


def _handle_payment_created(payload: Dict[str, Any]) -> HandlerResult:
    data = payload.get("EventData") or {}
    order_code = str(data.get("OrderCode") or "")
    payment = VivaPayment.objects.filter(order_code=order_code).first() if order_code else None
    if payment is None:
        logger.error("Viva payment not found for order %s.", order_code)
        return ignored("Payment not found", success=False, error="Payment not found")
    if payment.is_completed:
        return ignored(
            "Already processed",
            message="Already processed",
            alreadyProcessed=True,
            newBalance=get_balance(payment.user_id, payment.credit_type),
        )

    order = clients.get_viva_client().get_order(order_code)
    state = order.get("StateId")
    if state != VIVA_STATE_PAID:
        logger.warning("Viva event for order %s not confirmed; order StateId=%s.", order_code, state)
        return ignored("Order not paid", status=VIVA_STATE_NAMES.get(state, "unknown"))

    result = _credit_order(payment, transaction_id=data.get("TransactionId") or order.get("TransactionId") or "")
    return HandlerResult(
        status=HandlerResult.PROCESSED,
        detail="Credits applied" if not result.already_processed else "Already processed",
        body=result.as_response(),
        user_id=payment.user_id,
    )


def _handle_transaction_failed(payload: Dict[str, Any]) -> HandlerResult:
    data = payload.get("EventData") or {}
    order_code = str(data.get("OrderCode") or "")
    payment = VivaPayment.objects.select_for_update().filter(order_code=order_code).first() if order_code else None
    if not move_payment(payment, PaymentStatus.FAILED, failure_reason=f"Viva transaction {data.get('TransactionId') or ''} failed"):
        return ignored("No pending payment to fail")
    return HandlerResult(status=HandlerResult.PROCESSED, detail="Payment marked failed", user_id=payment.user_id)


def _credit_order(payment: VivaPayment, *, transaction_id: str) -> ReconciliationResult:
    with transaction.atomic():
        payment = VivaPayment.objects.select_for_update().get(pk=payment.pk)

        def on_credited(_ledger_result):
            move_payment(payment, PaymentStatus.COMPLETED, transaction_id=transaction_id)

        return credit_payment(
            PaymentCredit(
                provider=PaymentProvider.VIVA,
                event_key=payment.order_code,
                user_id=payment.user_id,
                credits=payment.credits,
                credit_type=payment.credit_type,
                description=f"Viva.com payment - Order {payment.order_code}",
                amount_usd=payment.amount_usd,
                currency=payment.currency,
                payment_method="Viva.com",
                payment=payment,
            ),
            on_credited=on_credited,
        )
