"""Administrator-initiated Stripe refunds and the credit claw-back that goes with them."""
from __future__ import annotations

import logging
from dataclasses import dataclass
from decimal import Decimal
from typing import Any, Dict, Optional

from django.db import transaction
from django.db.models import Sum

from billing.models import (
    CreditTransaction,
    OutboxMessage,
    PaymentProvider,
    PaymentStatus,
    RefundRecord,
    StripePayment,
)
from billing.observability.logging import log_billing_event
from billing.services import idempotency, outbox
from billing.services.credit_ledger import apply_delta, consume_validity
from billing.services.stripe_payments import StripeGateway

logger = logging.getLogger(__name__)

DEFAULT_REFUND_REASON = "requested_by_customer"


class RefundError(Exception):
    """Raised when a refund request cannot be honoured."""


class PaymentNotFound(RefundError):
    """Raised when no Stripe payment matches the payment intent."""


@dataclass(frozen=True)
class RefundOutcome:
    refund: RefundRecord
    amount_minor: int
    already_processed: bool = False

    def as_response(self) -> Dict[str, Any]:
        return {
            "success": True,
            "alreadyProcessed": self.already_processed,
            "refund": {
                "id": self.refund.stripe_refund_id,
                "amount": self.amount_minor,
                "credits_deducted": self.refund.credits_deducted,
                "status": self.refund.status,
            },
        }


def credits_for_refund(credits: int, refund_minor: int, total_minor: int) -> int:
    """Credits proportional to the refunded share, rounded up and capped at ``credits``."""

    if total_minor <= 0:
        raise RefundError("Cannot refund a payment without an amount.")
    return min(credits, -(-credits * refund_minor // total_minor))


def refund_stripe_payment(
    payment_intent_id: str,
    *,
    actor,
    gateway: StripeGateway,
    amount_minor: Optional[int] = None,
    reason: Optional[str] = None,
) -> RefundOutcome:
    """Refund a Stripe payment and deduct the matching share of its credits.

    The provider call happens before any local write, so a provider failure
    leaves the balance and the payment untouched.
    """

    if not payment_intent_id:
        raise RefundError("Payment Intent ID is required.")

    payment = StripePayment.objects.filter(payment_intent_id=payment_intent_id).first()
    if payment is None:
        raise PaymentNotFound("Payment not found in database.")
    if payment.status not in (PaymentStatus.COMPLETED, PaymentStatus.PARTIALLY_REFUNDED):
        raise RefundError(f"Payment is {payment.status}; only completed payments can be refunded.")

    total_minor = int((payment.amount_usd * 100).to_integral_value())
    if amount_minor is not None and not 0 < amount_minor < total_minor:
        amount_minor = None

    reason = reason or DEFAULT_REFUND_REASON
    previous_refunds = payment.refunds.count()
    stripe_refund = gateway.create_refund(
        payment_intent=payment_intent_id,
        amount_minor=amount_minor,
        reason=reason,
        idempotency_key=f"refund-{payment.pk}-{previous_refunds}-{amount_minor or 'full'}",
        metadata={"payment_id": str(payment.pk)},
    )
    refund_id = stripe_refund["id"]
    refunded_minor = int(stripe_refund.get("amount") or amount_minor or total_minor)
    credits_to_deduct = credits_for_refund(payment.credits, refunded_minor, total_minor)

    with transaction.atomic():
        outcome = idempotency.claim(f"refund:{refund_id}", PaymentProvider.STRIPE, payment.user_id)
        if isinstance(outcome, idempotency.AlreadyProcessed):
            existing = RefundRecord.objects.get(stripe_refund_id=refund_id)
            return RefundOutcome(refund=existing, amount_minor=refunded_minor, already_processed=True)

        ledger_tx = None
        deducted = 0
        if credits_to_deduct > 0:
            result = apply_delta(
                payment.user_id,
                payment.credit_type,
                -credits_to_deduct,
                kind=CreditTransaction.Kind.REFUND,
                description=(
                    f"Admin refund - {credits_to_deduct} credits deducted - Refund: {refund_id[-8:]}"
                ),
                actor=actor,
                claim=outcome.claim,
                clamp=True,
                metadata={"stripe_refund_id": refund_id, "payment_intent_id": payment_intent_id},
            )
            ledger_tx = result.transaction
            deducted = -result.amount
            if deducted:
                consume_validity(payment.user_id, payment.credit_type, deducted)

        refund = RefundRecord.objects.create(
            payment=payment,
            stripe_refund_id=refund_id,
            amount_usd=Decimal(refunded_minor) / 100,
            credits_deducted=deducted,
            status=_refund_status(stripe_refund.get("status")),
            reason=reason,
            performed_by=actor,
            transaction=ledger_tx,
            metadata={"requested_credits": credits_to_deduct},
        )

        refunded_total = payment.refunds.aggregate(total=Sum("amount_usd"))["total"] or Decimal("0")
        payment.refresh_from_db()
        payment.transition_to(
            PaymentStatus.REFUNDED if refunded_total >= payment.amount_usd else PaymentStatus.PARTIALLY_REFUNDED
        )

        _enqueue_refund_notices(payment, refund, refunded_minor)
        idempotency.complete_claim(outcome.claim)

    log_billing_event(
        message="payment.refunded",
        provider=PaymentProvider.STRIPE,
        user_id=payment.user_id,
        actor=str(getattr(actor, "pk", "")) or None,
        event_key=refund_id,
        extra={"amount_minor": refunded_minor, "credits_deducted": deducted},
    )
    return RefundOutcome(refund=refund, amount_minor=refunded_minor)


def _refund_status(value: Optional[str]) -> str:
    status = (value or "").lower()
    if status in RefundRecord.Status.values:
        return status
    return RefundRecord.Status.PENDING


def _enqueue_refund_notices(payment: StripePayment, refund: RefundRecord, refunded_minor: int) -> None:
    amount = f"${refunded_minor / 100:.2f}"
    outbox.enqueue(
        OutboxMessage.Kind.NOTIFICATION,
        payment.user_id,
        {
            "title": "Refund Processed",
            "message": (
                f"A refund of {amount} has been processed. "
                f"{refund.credits_deducted} credits have been deducted from your account."
            ),
            "type": "refund",
            "data": {"refund_id": refund.stripe_refund_id},
        },
        dedupe_key=f"refund:{refund.stripe_refund_id}:notification",
    )
    outbox.enqueue(
        OutboxMessage.Kind.PUSH,
        payment.user_id,
        {
            "title": "Refund Processed",
            "body": f"{amount} refunded, {refund.credits_deducted} credits deducted.",
            "data": {"type": "refund", "url": "/dashboard/payments"},
        },
        dedupe_key=f"refund:{refund.stripe_refund_id}:push",
    )
    outbox.enqueue(
        OutboxMessage.Kind.EMAIL,
        payment.user_id,
        {
            "template": "refund_processed",
            "subject": "Your refund has been processed",
            "context": {"amount": amount, "credits_deducted": refund.credits_deducted},
        },
        dedupe_key=f"refund:{refund.stripe_refund_id}:email",
    )
