"""Shared reconciliation pipeline: every provider credits purchases through ``credit_payment``."""
from __future__ import annotations

import logging
from dataclasses import dataclass, field, replace
from datetime import timedelta
from decimal import Decimal
from typing import Any, Callable, Dict, Optional

from django.apps import apps
from django.conf import settings
from django.contrib.auth import get_user_model
from django.db import transaction
from django.utils import timezone

from billing.models import (
    CreditTransaction,
    CreditType,
    OutboxMessage,
    PaymentIdempotencyKey,
    PaymentStatus,
    ProviderPayment,
)
from billing.observability.logging import log_billing_event
from billing.services import credit_validity, idempotency, outbox
from billing.services.credit_ledger import LedgerResult, apply_delta, get_balance

logger = logging.getLogger(__name__)

User = get_user_model()

OnCredited = Callable[[LedgerResult], None]


@dataclass(frozen=True)
class PaymentCredit:
    """A provider-confirmed purchase, ready to be credited exactly once."""

    provider: str
    event_key: str
    user_id: Any
    credits: int
    credit_type: str = CreditType.FULL
    description: str = ""
    amount_usd: Optional[Decimal] = None
    currency: str = "usd"
    payment_method: str = ""
    receipt_url: str = ""
    payment: Optional[ProviderPayment] = None
    metadata: Dict[str, Any] = field(default_factory=dict)

    @property
    def payment_reference(self) -> str:
        return self.event_key

    def as_payload(self) -> Dict[str, Any]:
        """JSON form stored on the claim so a stuck claim can be replayed."""

        payload = {
            "user_id": str(self.user_id),
            "credits": self.credits,
            "credit_type": CreditType.normalize(self.credit_type),
            "description": self.description,
            "amount_usd": str(self.amount_usd) if self.amount_usd is not None else None,
            "currency": self.currency,
            "payment_method": self.payment_method,
            "receipt_url": self.receipt_url,
            "metadata": self.metadata,
        }
        if self.payment is not None:
            payload["payment"] = {"model": self.payment._meta.label, "pk": str(self.payment.pk)}
        return payload

    @classmethod
    def from_claim(cls, claim: PaymentIdempotencyKey) -> "PaymentCredit":
        payload = claim.payload or {}
        payment = None
        reference = payload.get("payment") or {}
        if reference.get("model"):
            model = apps.get_model(reference["model"])
            payment = model.objects.filter(pk=reference.get("pk")).first()
        amount = payload.get("amount_usd")
        return cls(
            provider=claim.provider,
            event_key=claim.key,
            user_id=payload.get("user_id") or claim.user_id,
            credits=int(payload["credits"]),
            credit_type=payload.get("credit_type") or CreditType.FULL,
            description=payload.get("description") or "",
            amount_usd=Decimal(amount) if amount is not None else None,
            currency=payload.get("currency") or "usd",
            payment_method=payload.get("payment_method") or "",
            receipt_url=payload.get("receipt_url") or "",
            payment=payment,
            metadata=payload.get("metadata") or {},
        )


@dataclass(frozen=True)
class ReconciliationResult:
    success: bool
    credits_added: int
    new_balance: int
    already_processed: bool = False
    credit_type: str = CreditType.FULL
    extra: Dict[str, Any] = field(default_factory=dict)

    @classmethod
    def not_completed(cls, status: str, **extra: Any) -> "ReconciliationResult":
        """Provider reports the payment as not (yet) paid; nothing was credited."""
        return cls(success=False, credits_added=0, new_balance=0, extra=dict(extra, status=status))

    def as_response(self) -> Dict[str, Any]:
        if not self.success:
            body: Dict[str, Any] = {"success": False}
        else:
            body = {
                "success": True,
                "creditsAdded": self.credits_added,
                "newBalance": self.new_balance,
                "alreadyProcessed": self.already_processed,
            }
        body.update(self.extra)
        return body

    def with_extra(self, **extra: Any) -> "ReconciliationResult":
        return replace(self, extra=dict(self.extra, **extra))


def credit_payment(credit: PaymentCredit, *, on_credited: Optional[OnCredited] = None) -> ReconciliationResult:
    """Claim the payment, credit the balance and queue side effects in one transaction.

    ``on_credited`` runs inside the same transaction after the ledger write and
    is where adapters update their payment record. Without it the attached
    payment record is simply marked completed.
    """

    if credit.credits <= 0:
        raise ValueError("A purchase must add a positive number of credits.")

    credit_type = CreditType.normalize(credit.credit_type)
    with transaction.atomic():
        outcome = idempotency.claim(
            credit.event_key,
            credit.provider,
            credit.user_id,
            payload=credit.as_payload(),
        )
        if isinstance(outcome, idempotency.AlreadyProcessed):
            balance = get_balance(credit.user_id, credit_type)
            log_billing_event(
                message="payment.already_processed",
                provider=credit.provider,
                user_id=credit.user_id,
                event_key=credit.event_key,
                extra={"balance": balance},
            )
            return ReconciliationResult(
                success=True,
                credits_added=credit.credits,
                new_balance=balance,
                already_processed=True,
                credit_type=credit_type,
            )

        ledger_result = _apply_credit(credit, outcome.claim, on_credited)

    log_billing_event(
        message="payment.credited",
        provider=credit.provider,
        user_id=credit.user_id,
        event_key=credit.event_key,
        extra={"credits": credit.credits, "credit_type": credit_type, "balance": ledger_result.after},
    )
    return ReconciliationResult(
        success=True,
        credits_added=credit.credits,
        new_balance=ledger_result.after,
        credit_type=credit_type,
    )


def _apply_credit(
    credit: PaymentCredit,
    claim: PaymentIdempotencyKey,
    on_credited: Optional[OnCredited],
) -> LedgerResult:
    credit_type = CreditType.normalize(credit.credit_type)
    metadata = {"provider": credit.provider, "payment_reference": credit.payment_reference}
    metadata.update(credit.metadata or {})

    ledger_result = apply_delta(
        credit.user_id,
        credit_type,
        credit.credits,
        kind=CreditTransaction.Kind.PURCHASE,
        description=credit.description or f"{credit.provider.title()} payment",
        claim=claim,
        metadata=metadata,
    )

    package = credit_validity.match_package(credit.credits, credit_type)
    expires_at = credit_validity.resolve_expiry(credit.credits, credit_type, package=package)
    if expires_at is not None:
        credit_validity.attach(
            credit.user_id,
            credit_type,
            credit.credits,
            expires_at,
            transaction=ledger_result.transaction,
            package=package,
        )

    if on_credited is not None:
        on_credited(ledger_result)
    elif credit.payment is not None:
        complete_payment(credit.payment)

    enqueue_purchase_side_effects(credit, ledger_result.after)
    idempotency.complete_claim(claim)
    return ledger_result


def complete_payment(payment: ProviderPayment, **fields) -> bool:
    """Mark a payment completed unless it already moved on (e.g. refunded)."""

    if payment.is_completed and payment.status != PaymentStatus.COMPLETED:
        return False
    return payment.transition_to(PaymentStatus.COMPLETED, **fields)


def enqueue_purchase_side_effects(credit: PaymentCredit, new_balance: int) -> None:
    user = User.objects.filter(pk=credit.user_id).first()
    customer_email = getattr(user, "email", "") or ""
    customer_name = getattr(user, "display_name", "") or ""
    base_key = f"{credit.provider}:{credit.event_key}"
    credit_type = CreditType.normalize(credit.credit_type)

    outbox.enqueue(
        OutboxMessage.Kind.NOTIFICATION,
        credit.user_id,
        {
            "title": "Payment Confirmed",
            "message": f"{credit.credits} credits added to your account!",
            "type": "payment",
            "data": {"credits": credit.credits, "credit_type": credit_type, "provider": credit.provider},
        },
        dedupe_key=f"{base_key}:notification",
    )
    outbox.enqueue(
        OutboxMessage.Kind.PUSH,
        credit.user_id,
        {
            "title": "Payment Confirmed",
            "body": f"{credit.credits} credits added to your account!",
            "data": {"url": "/dashboard"},
        },
        dedupe_key=f"{base_key}:push",
    )
    outbox.enqueue(
        OutboxMessage.Kind.EMAIL,
        credit.user_id,
        {
            "template": "payment_confirmation",
            "subject": "Payment confirmed",
            "context": {
                "credits": credit.credits,
                "credit_type": credit_type,
                "new_balance": new_balance,
                "amount_usd": str(credit.amount_usd) if credit.amount_usd is not None else None,
                "provider": credit.provider,
            },
        },
        dedupe_key=f"{base_key}:email",
    )

    if credit.amount_usd is None:
        return

    document = {
        "provider": credit.provider,
        "payment_reference": credit.payment_reference,
        "credits": credit.credits,
        "currency": credit.currency,
        "customer_email": customer_email,
        "customer_name": customer_name,
    }
    outbox.enqueue(
        OutboxMessage.Kind.INVOICE,
        credit.user_id,
        dict(document, amount_usd=str(credit.amount_usd)),
        dedupe_key=f"{base_key}:invoice",
    )
    outbox.enqueue(
        OutboxMessage.Kind.RECEIPT,
        credit.user_id,
        dict(
            document,
            amount_paid=str(credit.amount_usd),
            payment_method=credit.payment_method or credit.provider,
            receipt_url=credit.receipt_url,
        ),
        dedupe_key=f"{base_key}:receipt",
    )


def reconcile_pending_claims(older_than=None) -> Dict[str, int]:
    """Finish or re-drive claims left ``pending`` before ``older_than``.

    A claim whose transaction exists is only marked completed. A claim with a
    stored intent but no transaction is credited now. Anything else is left
    pending with the error recorded for manual review.
    """

    if older_than is None:
        stale_after = getattr(settings, "PAYMENT_CLAIM_STALE_AFTER", timedelta(minutes=15))
        older_than = timezone.now() - stale_after

    summary = {"completed": 0, "redriven": 0, "needs_review": 0, "skipped": 0}
    claim_ids = list(idempotency.stale_pending_claims(older_than).values_list("pk", flat=True))
    for claim_id in claim_ids:
        try:
            outcome = _reconcile_claim(claim_id)
        except Exception as exc:
            logger.exception("Failed to reconcile payment claim %s.", claim_id)
            record = PaymentIdempotencyKey.objects.filter(pk=claim_id).first()
            if record is not None:
                idempotency.note_claim_failure(record, f"{type(exc).__name__}: {exc}")
            outcome = "needs_review"
        summary[outcome] += 1

    if claim_ids:
        logger.info("Reconciled %s stale payment claim(s): %s", len(claim_ids), summary)
    return summary


def _reconcile_claim(claim_id) -> str:
    with transaction.atomic():
        record = (
            PaymentIdempotencyKey.objects.select_for_update()
            .filter(pk=claim_id, status=PaymentIdempotencyKey.Status.PENDING)
            .first()
        )
        if record is None:
            return "skipped"

        if record.transactions.exists():
            idempotency.complete_claim(record)
            logger.info("Claim %s/%s already had its transaction; marked completed.", record.provider, record.key)
            return "completed"

        if record.payload and record.payload.get("credits"):
            credit = PaymentCredit.from_claim(record)
            _apply_credit(credit, record, on_credited=None)
            log_billing_event(
                message="payment.claim_redriven",
                provider=record.provider,
                user_id=credit.user_id,
                event_key=record.key,
                extra={"credits": credit.credits},
                level=logging.WARNING,
            )
            return "redriven"

        idempotency.note_claim_failure(record, "Pending claim has no credit intent to replay.")

    logger.error("Payment claim %s/%s needs manual review: no transaction and no intent.", record.provider, record.key)
    return "needs_review"
