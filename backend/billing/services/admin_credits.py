"""Manual credit changes performed by administrators."""
from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import timedelta
from typing import Any, Dict, Optional

from django.contrib.auth import get_user_model
from django.db import IntegrityError, transaction
from django.utils import timezone

from billing.models import CreditTransaction, CreditType, CreditValidity, OutboxMessage, PaymentProvider
from billing.observability.logging import log_billing_event
from billing.services import credit_validity, idempotency, outbox
from billing.services.credit_ledger import LedgerResult, apply_delta, consume_validity, get_balance

logger = logging.getLogger(__name__)

User = get_user_model()

ADD = "add"
DEDUCT = "deduct"

CREDIT_TYPE_LABELS = {
    CreditType.FULL: "Full",
    CreditType.SIMILARITY_ONLY: "Similarity",
}


class UserAlreadyExists(Exception):
    """Raised when pre-registering an e-mail that already has an account."""


@dataclass(frozen=True)
class AdminAdjustResult:
    amount: int
    new_balance: int
    credit_type: str
    transaction: Optional[CreditTransaction] = None
    validity: Optional[CreditValidity] = None
    already_processed: bool = False

    def as_response(self) -> Dict[str, Any]:
        return {
            "success": True,
            "amount": self.amount,
            "newBalance": self.new_balance,
            "creditType": self.credit_type,
            "transactionId": str(self.transaction.pk) if self.transaction else None,
            "expiresAt": self.validity.expires_at.isoformat() if self.validity else None,
            "alreadyProcessed": self.already_processed,
        }


def admin_adjust(
    user_id: Any,
    credit_type: str,
    action: str,
    amount: int,
    actor,
    *,
    expires_in_days: Optional[int] = None,
    reason: str = "",
    request_key: Optional[str] = None,
) -> AdminAdjustResult:
    """Add or deduct credits on behalf of ``actor``.

    Deductions clamp to the available balance. Additions with
    ``expires_in_days`` get a validity batch linked to their transaction.
    Passing ``request_key`` makes a retried admin request a no-op.
    """

    if action not in (ADD, DEDUCT):
        raise ValueError(f"Unsupported admin action '{action}'.")
    if amount <= 0:
        raise ValueError("Amount must be a positive integer.")
    if expires_in_days is not None and expires_in_days <= 0:
        raise ValueError("expires_in_days must be positive.")

    credit_type = CreditType.normalize(credit_type)
    label = CREDIT_TYPE_LABELS[credit_type]
    metadata = {"reason": reason} if reason else None

    with transaction.atomic():
        claim = None
        if request_key:
            outcome = idempotency.claim(
                request_key,
                PaymentProvider.ADMIN,
                user_id,
                payload={"action": action, "amount": amount, "credit_type": credit_type},
            )
            if isinstance(outcome, idempotency.AlreadyProcessed):
                return AdminAdjustResult(
                    amount=0,
                    new_balance=get_balance(user_id, credit_type),
                    credit_type=credit_type,
                    already_processed=True,
                )
            claim = outcome.claim

        validity = None
        if action == ADD:
            result = apply_delta(
                user_id,
                credit_type,
                amount,
                kind=CreditTransaction.Kind.ADD,
                description=f"{label} credits added by admin",
                actor=actor,
                claim=claim,
                metadata=metadata,
            )
            if expires_in_days:
                validity = credit_validity.attach(
                    user_id,
                    credit_type,
                    amount,
                    timezone.now() + timedelta(days=expires_in_days),
                    transaction=result.transaction,
                )
        else:
            result = apply_delta(
                user_id,
                credit_type,
                -amount,
                kind=CreditTransaction.Kind.DEDUCT,
                description=f"{label} credits deducted by admin",
                actor=actor,
                claim=claim,
                clamp=True,
                metadata=metadata,
            )
            if result.amount:
                consume_validity(user_id, credit_type, -result.amount)

        if claim is not None:
            idempotency.complete_claim(claim)

    _log_adjustment(action, user_id, actor, result)
    return AdminAdjustResult(
        amount=result.amount,
        new_balance=result.after,
        credit_type=credit_type,
        transaction=result.transaction,
        validity=validity,
    )


def preregister_user_with_credits(
    email: str,
    credits: int,
    credit_type: str,
    *,
    actor,
    expiry_days: Optional[int] = None,
    full_name: str = "",
) -> AdminAdjustResult:
    """Create an account for ``email`` that already holds ``credits``.

    The account gets an unusable password; the welcome e-mail points the
    customer at the password reset flow.
    """

    email = (email or "").strip().lower()
    if not email:
        raise ValueError("Email is required.")
    if credits <= 0:
        raise ValueError("Credit amount must be positive.")
    if expiry_days is not None and expiry_days <= 0:
        raise ValueError("expiry_days must be positive.")

    credit_type = CreditType.normalize(credit_type)
    if User.objects.filter(email__iexact=email).exists():
        raise UserAlreadyExists(
            "This email is already registered. Use the existing credit management to add credits."
        )

    with transaction.atomic():
        try:
            with transaction.atomic():
                user = User(username=email, email=email, full_name=full_name)
                user.set_unusable_password()
                user.save()
        except IntegrityError as exc:
            raise UserAlreadyExists("This email is already registered.") from exc

        result = apply_delta(
            user.pk,
            credit_type,
            credits,
            kind=CreditTransaction.Kind.ADD,
            description="Pre-registration credits added by admin",
            actor=actor,
        )
        validity = None
        if expiry_days:
            validity = credit_validity.attach(
                user.pk,
                credit_type,
                credits,
                timezone.now() + timedelta(days=expiry_days),
                transaction=result.transaction,
            )

        outbox.enqueue(
            OutboxMessage.Kind.EMAIL,
            user.pk,
            {
                "template": "preregistration_welcome",
                "subject": "Your account is ready",
                "context": {
                    "credits": credits,
                    "credit_type": credit_type,
                    "credit_type_label": f"{CREDIT_TYPE_LABELS[credit_type]} Credits",
                    "validity": f"{expiry_days} days" if expiry_days else "No expiry",
                },
            },
            dedupe_key=f"preregister:{user.pk}:email",
        )

    _log_adjustment("preregister", user.pk, actor, result)
    return AdminAdjustResult(
        amount=result.amount,
        new_balance=result.after,
        credit_type=credit_type,
        transaction=result.transaction,
        validity=validity,
    )


def _log_adjustment(action: str, user_id: Any, actor, result: LedgerResult) -> None:
    log_billing_event(
        message=f"credits.admin_{action}",
        provider=PaymentProvider.ADMIN,
        user_id=user_id,
        actor=str(getattr(actor, "pk", actor)) if actor is not None else None,
        extra={"amount": result.amount, "credit_type": result.credit_type, "balance": result.after},
    )
