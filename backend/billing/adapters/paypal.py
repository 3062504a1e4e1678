"""PayPal orders adapter: webhook events and client-triggered order verification."""
from __future__ import annotations

import logging
from typing import Any, Dict, Optional

from django.db import transaction

from billing.adapters.common import PaymentOwnershipError, PaymentRecordNotFound, VerificationError, move_payment
from billing.models import PaymentProvider, PaymentStatus, PayPalPayment
from billing.services import clients
from billing.services.credit_ledger import get_balance
from billing.services.paypal import PayPalClient, first_capture, payer_details
from billing.services.reconciliation import PaymentCredit, ReconciliationResult, credit_payment
from billing.webhooks import HandlerResult, ignored

logger = logging.getLogger(__name__)


def dispatch_event(*, event_id: str, event_type: str, payload: Dict[str, Any]) -> HandlerResult:
    handler = {
        "CHECKOUT.ORDER.APPROVED": _handle_order_approved,
        "PAYMENT.CAPTURE.COMPLETED": _handle_capture_completed,
    }.get(event_type)

    if handler is None:
        logger.info("Ignoring unsupported PayPal event type '%s'.", event_type)
        return ignored("Unsupported event type")

    return handler(event_id=event_id, payload=payload)


def verify_order(*, user, order_id: str, client: PayPalClient) -> ReconciliationResult:
    """Capture (when approved) and credit a PayPal order for its owner."""

    if not order_id:
        raise VerificationError("Order ID is required")

    payment = PayPalPayment.objects.filter(order_id=order_id).first()
    if payment is None:
        raise PaymentRecordNotFound("Payment not found")
    if payment.user_id != user.pk:
        raise PaymentOwnershipError("This payment belongs to another account.")

    if payment.is_completed:
        return ReconciliationResult(
            success=True,
            credits_added=payment.credits,
            new_balance=get_balance(payment.user_id, payment.credit_type),
            already_processed=True,
            credit_type=payment.credit_type,
            extra={"amountPaid": str(payment.amount_usd)},
        )

    order = client.get_order(order_id)
    status = (order.get("status") or "").upper()
    if status == "APPROVED":
        order = client.capture_order(order_id)
        status = (order.get("status") or "").upper()

    if status != "COMPLETED":
        logger.info("PayPal order %s is %s; nothing to credit yet.", order_id, status)
        return ReconciliationResult.not_completed(status or "UNKNOWN")

    capture_id = first_capture(order).get("id") or ""
    result = _credit_order(
        payment,
        capture_id=capture_id,
        payer=payer_details(order),
        description=f"PayPal purchase - {payment.credits} credits",
    )
    return result.with_extra(amountPaid=str(payment.amount_usd))


def _handle_order_approved(*, event_id: str, payload: Dict[str, Any]) -> HandlerResult:
    resource = payload.get("resource") or {}
    order_id = resource.get("id")
    payment = PayPalPayment.objects.select_for_update().filter(order_id=order_id).first() if order_id else None
    if payment is None:
        logger.warning("PayPal order %s approved but no payment record exists.", order_id)
        return ignored("Payment not found")
    if payment.status != PaymentStatus.PENDING:
        return ignored(f"Payment already {payment.status}")

    move_payment(payment, PaymentStatus.APPROVED, **payer_details(resource))
    return HandlerResult(status=HandlerResult.PROCESSED, detail="Order approved", user_id=payment.user_id)


def _handle_capture_completed(*, event_id: str, payload: Dict[str, Any]) -> HandlerResult:
    resource = payload.get("resource") or {}
    capture_id = resource.get("id") or ""
    order_id = _resolve_order_id(resource, capture_id)
    if not order_id:
        logger.error("Could not determine PayPal order for capture %s.", capture_id)
        return ignored("Could not determine order ID")

    payment = PayPalPayment.objects.filter(order_id=order_id).first()
    if payment is None:
        logger.error("PayPal payment not found for order %s.", order_id)
        return ignored("Payment not found")
    if payment.is_completed:
        logger.info("PayPal payment %s already completed.", order_id)
        return ignored(
            "Payment already completed",
            alreadyProcessed=True,
            newBalance=get_balance(payment.user_id, payment.credit_type),
        )

    order = clients.get_paypal_client().get_order(order_id)
    status = (order.get("status") or "").upper()
    if status != "COMPLETED":
        logger.warning("PayPal capture %s reported for order %s, which is %s.", capture_id, order_id, status)
        return ignored("Order not completed", status=status or "UNKNOWN")

    result = _credit_order(
        payment,
        capture_id=first_capture(order).get("id") or capture_id,
        payer=payer_details(order),
        description=f"PayPal purchase - {payment.credits} credits",
    )
    return HandlerResult(
        status=HandlerResult.PROCESSED,
        detail="Credits applied" if not result.already_processed else "Already processed",
        body=dict(result.as_response(), received=True),
        user_id=payment.user_id,
    )


def _resolve_order_id(resource: Dict[str, Any], capture_id: str) -> Optional[str]:
    related = ((resource.get("supplementary_data") or {}).get("related_ids") or {})
    order_id = related.get("order_id")
    if order_id:
        return order_id
    if capture_id:
        return PayPalPayment.objects.filter(capture_id=capture_id).values_list("order_id", flat=True).first()
    return None


def _credit_order(payment: PayPalPayment, *, capture_id: str, payer: Dict[str, str], description: str) -> ReconciliationResult:
    with transaction.atomic():
        payment = PayPalPayment.objects.select_for_update().get(pk=payment.pk)

        def on_credited(_ledger_result):
            move_payment(payment, PaymentStatus.COMPLETED, capture_id=capture_id, **payer)

        return credit_payment(
            PaymentCredit(
                provider=PaymentProvider.PAYPAL,
                event_key=payment.order_id,
                user_id=payment.user_id,
                credits=payment.credits,
                credit_type=payment.credit_type,
                description=description,
                amount_usd=payment.amount_usd,
                currency=payment.currency,
                payment_method="PayPal",
                payment=payment,
            ),
            on_credited=on_credited,
        )
