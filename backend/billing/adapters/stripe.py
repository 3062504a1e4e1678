"""Stripe checkout adapter: webhook events and client-triggered session verification."""
from __future__ import annotations

import logging
from typing import Any, Dict

from django.db import transaction

from billing.adapters.common import (
    PaymentOwnershipError,
    VerificationError,
    credit_type_from,
    minor_to_decimal,
    move_payment,
    parse_credits,
    resolve_user_id,
)
from billing.models import PaymentProvider, PaymentStatus, StripePayment
from billing.services.reconciliation import PaymentCredit, ReconciliationResult, credit_payment
from billing.services.stripe_payments import StripeGateway
from billing.webhooks import HandlerResult, WebhookProcessingError, ignored

logger = logging.getLogger(__name__)


def dispatch_event(*, event_id: str, event_type: str, payload: Dict[str, Any]) -> HandlerResult:
    """Route a Stripe webhook event to its dedicated handler."""

    handler = {
        "checkout.session.completed": _handle_checkout_session_completed,
        "payment_intent.succeeded": _handle_payment_intent_succeeded,
        "payment_intent.payment_failed": _handle_payment_intent_failed,
    }.get(event_type)

    if handler is None:
        logger.info("Ignoring unsupported Stripe event type '%s'.", event_type)
        return ignored("Unsupported event type")

    return handler(event_id=event_id, payload=payload)


def verify_checkout_session(*, user, session_id: str, gateway: StripeGateway) -> ReconciliationResult:
    """Credit a paid checkout session for the signed-in customer who owns it."""

    if not session_id:
        raise VerificationError("Session ID is required")

    session = gateway.retrieve_checkout_session(session_id)
    payment_status = session.get("payment_status") or "unpaid"
    metadata = session.get("metadata") or {}
    owner = metadata.get("user_id")
    credits = parse_credits(metadata.get("credits"))

    if owner and str(owner) != str(user.pk):
        logger.warning("User %s tried to verify Stripe session %s owned by %s.", user.pk, session_id, owner)
        raise PaymentOwnershipError("This payment belongs to another account.")

    if payment_status != "paid" or credits <= 0 or not owner:
        return ReconciliationResult.not_completed(payment_status)

    return _credit_session(
        session,
        user_id=user.pk,
        credits=credits,
        credit_type=credit_type_from(metadata.get("credit_type"), VerificationError),
        description=f"Stripe payment - Session: {session_id[-8:]}",
    )


def _handle_checkout_session_completed(*, event_id: str, payload: Dict[str, Any]) -> HandlerResult:
    session = (payload.get("data") or {}).get("object") or {}
    metadata = session.get("metadata") or {}
    credits = parse_credits(metadata.get("credits"))
    user_id = resolve_user_id(metadata.get("user_id"))

    if not user_id or credits <= 0:
        logger.warning("Stripe session %s is missing user or credit metadata.", session.get("id"))
        return ignored("Missing metadata")
    if session.get("payment_status") != "paid":
        logger.info("Stripe session %s completed with payment_status=%s.", session.get("id"), session.get("payment_status"))
        return ignored("Session not paid")

    result = _credit_session(
        session,
        user_id=user_id,
        credits=credits,
        credit_type=credit_type_from(metadata.get("credit_type"), WebhookProcessingError),
        description=f"Stripe purchase - {credits} credits",
    )
    return HandlerResult(
        status=HandlerResult.PROCESSED,
        detail="Credits applied" if not result.already_processed else "Already processed",
        body=dict(result.as_response(), received=True),
        user_id=user_id,
    )


def _handle_payment_intent_succeeded(*, event_id: str, payload: Dict[str, Any]) -> HandlerResult:
    intent = (payload.get("data") or {}).get("object") or {}
    logger.info("Stripe payment intent %s succeeded for %s.", intent.get("id"), intent.get("amount"))
    return ignored("Logged")


def _handle_payment_intent_failed(*, event_id: str, payload: Dict[str, Any]) -> HandlerResult:
    intent = (payload.get("data") or {}).get("object") or {}
    intent_id = intent.get("id")
    error = (intent.get("last_payment_error") or {}).get("message") or "Payment failed"
    logger.info("Stripe payment intent %s failed: %s", intent_id, error)

    payment = StripePayment.objects.select_for_update().filter(payment_intent_id=intent_id).first() if intent_id else None
    if not move_payment(payment, PaymentStatus.FAILED, failure_reason=error[:255]):
        return ignored("No pending payment to fail")
    return HandlerResult(status=HandlerResult.PROCESSED, detail="Payment marked failed", user_id=payment.user_id)


def _credit_session(
    session: Dict[str, Any], *, user_id, credits: int, credit_type: str, description: str
) -> ReconciliationResult:
    session_id = session["id"]
    currency = (session.get("currency") or "usd").lower()
    amount = minor_to_decimal(session.get("amount_total"), currency)
    payment_intent = session.get("payment_intent") or ""
    if isinstance(payment_intent, dict):
        payment_intent = payment_intent.get("id") or ""
    customer_email = session.get("customer_email") or (session.get("customer_details") or {}).get("email") or ""

    with transaction.atomic():
        payment, _ = StripePayment.objects.select_for_update().get_or_create(
            session_id=session_id,
            defaults={
                "user_id": user_id,
                "credits": credits,
                "credit_type": credit_type,
                "amount_usd": amount or 0,
                "currency": currency,
                "payment_intent_id": payment_intent,
                "customer_email": customer_email,
            },
        )

        def on_credited(_ledger_result):
            move_payment(
                payment,
                PaymentStatus.COMPLETED,
                payment_intent_id=payment_intent,
                customer_email=customer_email,
            )

        return credit_payment(
            PaymentCredit(
                provider=PaymentProvider.STRIPE,
                event_key=session_id,
                user_id=user_id,
                credits=credits,
                credit_type=credit_type,
                description=description,
                amount_usd=amount if amount is not None else payment.amount_usd,
                currency=currency,
                payment_method="Stripe",
                payment=payment,
            ),
            on_credited=on_credited,
        )
