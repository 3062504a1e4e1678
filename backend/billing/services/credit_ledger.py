"""Credit ledger: every balance change goes through ``apply_delta``."""
from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Optional

from django.contrib.auth import get_user_model
from django.db import transaction
from django.db.models import F
from django.utils import timezone

from billing.models import (
    BALANCE_FIELDS,
    CreditProfile,
    CreditTransaction,
    CreditType,
    CreditValidity,
    PaymentIdempotencyKey,
)
from billing.observability.metrics import CREDITS_APPLIED, INSUFFICIENT_CREDITS

logger = logging.getLogger(__name__)

User = get_user_model()


class CreditLedgerError(Exception):
    """Base exception for credit ledger operations."""


class CreditProfileNotFound(CreditLedgerError):
    """Raised when the user owning the balance does not exist."""


class InsufficientCredits(CreditLedgerError):
    """Raised when a deduction would drive a balance below zero."""

    def __init__(self, message: str, *, available: int = 0, requested: int = 0):
        super().__init__(message)
        self.available = available
        self.requested = requested


@dataclass(frozen=True)
class LedgerResult:
    before: int
    after: int
    amount: int
    credit_type: str
    transaction: Optional[CreditTransaction]

    @property
    def created(self) -> bool:
        return self.transaction is not None


def apply_delta(
    user_id: Any,
    credit_type: str,
    amount: int,
    *,
    kind: str,
    description: str = "",
    actor=None,
    claim: Optional[PaymentIdempotencyKey] = None,
    clamp: bool = False,
    metadata: Optional[dict] = None,
) -> LedgerResult:
    """Apply a signed ``amount`` to one balance and append the matching transaction.

    The profile row is locked and the balance is written with an atomic
    increment, so concurrent mutations for the same user serialise. With
    ``clamp`` a debit is limited to the available balance; without it an
    overdraft raises ``InsufficientCredits`` and nothing is written.
    """

    if not isinstance(amount, int) or isinstance(amount, bool):
        raise ValueError("Ledger amounts must be integers.")
    if amount == 0:
        raise ValueError("Amount must be non-zero for ledger operations.")

    credit_type = CreditType.normalize(credit_type)
    field = BALANCE_FIELDS[credit_type]

    with transaction.atomic():
        profile = _lock_profile(user_id)
        before = getattr(profile, field)

        delta = amount
        if delta < 0 and clamp:
            delta = -min(-delta, before)

        if before + delta < 0:
            INSUFFICIENT_CREDITS.labels(credit_type=credit_type).inc()
            raise InsufficientCredits(
                f"Insufficient {credit_type} credits: requested {-delta}, available {before}.",
                available=before,
                requested=-delta,
            )

        if delta == 0:
            logger.info(
                "Clamped %s debit for user %s to zero; balance already empty.",
                credit_type,
                profile.user_id,
            )
            return LedgerResult(before=before, after=before, amount=0, credit_type=credit_type, transaction=None)

        CreditProfile.objects.filter(pk=profile.pk).update(
            **{field: F(field) + delta, "updated_at": timezone.now()}
        )
        after = before + delta

        record = CreditTransaction.objects.create(
            user_id=profile.user_id,
            amount=delta,
            balance_before=before,
            balance_after=after,
            kind=kind,
            credit_type=credit_type,
            description=description or "",
            performed_by=actor,
            claim=claim,
            metadata=metadata or None,
        )

    CREDITS_APPLIED.labels(kind=kind, credit_type=credit_type).inc(abs(delta))
    logger.info(
        "Applied %s %s credits (%s) for user %s: %s -> %s",
        delta,
        credit_type,
        kind,
        profile.user_id,
        before,
        after,
    )
    return LedgerResult(before=before, after=after, amount=delta, credit_type=credit_type, transaction=record)


def deduct_credits(
    user_id: Any,
    credit_type: str,
    amount: int,
    *,
    description: str = "",
    metadata: Optional[dict] = None,
) -> LedgerResult:
    """Spend credits for a scan; never overdraws and burns the soonest-expiring batches first."""

    if amount <= 0:
        raise ValueError("Amount must be a positive integer for deductions.")

    with transaction.atomic():
        result = apply_delta(
            user_id,
            credit_type,
            -amount,
            kind=CreditTransaction.Kind.DEDUCTION,
            description=description or f"Used {amount} credit{'s' if amount != 1 else ''}",
            metadata=metadata,
        )
        consume_validity(user_id, result.credit_type, amount)
    return result


def get_balance(user_id: Any, credit_type: str) -> int:
    profile = CreditProfile.objects.filter(user_id=user_id).first()
    if profile is None:
        return 0
    return profile.balance_for(credit_type)


def get_balances(user_id: Any) -> dict:
    profile = CreditProfile.objects.filter(user_id=user_id).first()
    return {
        CreditType.FULL: profile.credit_balance if profile else 0,
        CreditType.SIMILARITY_ONLY: profile.similarity_credit_balance if profile else 0,
    }


def consume_validity(user_id: Any, credit_type: str, amount: int) -> None:
    """Draw ``amount`` down from the live validity batches, soonest expiry first."""

    remaining = amount
    batches = (
        CreditValidity.objects.select_for_update()
        .filter(user_id=user_id, credit_type=credit_type, expired=False, remaining_credits__gt=0)
        .order_by("expires_at")
    )
    for batch in batches:
        if remaining <= 0:
            break
        used = min(batch.remaining_credits, remaining)
        batch.remaining_credits -= used
        batch.save(update_fields=["remaining_credits", "updated_at"])
        remaining -= used


def _lock_profile(user_id: Any) -> CreditProfile:
    try:
        exists = User.objects.filter(pk=user_id).exists()
    except (ValueError, TypeError):
        exists = False
    if not exists:
        raise CreditProfileNotFound(f"User {user_id} does not exist.")
    profile, _ = CreditProfile.objects.get_or_create(user_id=user_id)
    return CreditProfile.objects.select_for_update().get(pk=profile.pk)
