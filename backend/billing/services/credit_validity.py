"""Credit validity tracking and the expiry sweep."""
from __future__ import annotations

import logging
from datetime import datetime, timedelta
from typing import Any, Dict, List, Optional

from django.conf import settings
from django.db import transaction
from django.utils import timezone

from billing.models import CreditProfile, CreditTransaction, CreditType, CreditValidity, OutboxMessage, PricingPackage
from billing.observability.logging import log_billing_event
from billing.observability.metrics import CREDITS_EXPIRED
from billing.services import outbox
from billing.services.credit_ledger import apply_delta

logger = logging.getLogger(__name__)

_UNSET = object()


def attach(
    user_id: Any,
    credit_type: str,
    amount: int,
    expires_at: datetime,
    *,
    transaction: Optional[CreditTransaction] = None,
    package: Optional[PricingPackage] = None,
) -> CreditValidity:
    """Record a batch of ``amount`` credits that lapses at ``expires_at``."""

    if amount <= 0:
        raise ValueError("Validity batches need a positive credit amount.")
    return CreditValidity.objects.create(
        user_id=user_id,
        credit_type=CreditType.normalize(credit_type),
        credits_amount=amount,
        remaining_credits=amount,
        expires_at=expires_at,
        transaction=transaction,
        package=package,
    )


def match_package(credits: int, credit_type: str) -> Optional[PricingPackage]:
    return (
        PricingPackage.objects.filter(
            credits=credits,
            credit_type=CreditType.normalize(credit_type),
            is_active=True,
        )
        .order_by("-updated_at")
        .first()
    )


def resolve_expiry(credits: int, credit_type: str, *, now=None, package=_UNSET) -> Optional[datetime]:
    """Expiry for a purchase of ``credits``; ``None`` means the credits never lapse.

    A matching active package decides on its own, even when it has no
    ``validity_days``. Otherwise ``CREDIT_DEFAULT_VALIDITY_DAYS`` applies.
    """

    now = now or timezone.now()
    if package is _UNSET:
        package = match_package(credits, credit_type)
    if package is not None:
        days = package.validity_days
    else:
        days = getattr(settings, "CREDIT_DEFAULT_VALIDITY_DAYS", 365)
    if not days:
        return None
    return now + timedelta(days=days)


def expire_due_credits(now=None) -> Dict[str, Any]:
    """Expire every unexpired batch whose ``expires_at`` has passed.

    Each batch is handled in its own transaction; a failure is collected in
    ``errors`` and the sweep moves on.
    """

    now = now or timezone.now()
    due_ids = list(
        CreditValidity.objects.filter(expired=False, expires_at__lt=now)
        .order_by("expires_at")
        .values_list("pk", flat=True)
    )

    processed = 0
    errors: List[str] = []
    for validity_id in due_ids:
        try:
            if _expire_one(validity_id, now):
                processed += 1
        except Exception as exc:
            logger.exception("Failed to expire credit validity %s.", validity_id)
            errors.append(f"Credit {validity_id}: {exc}")

    logger.info("Credit expiry sweep processed %s record(s) with %s error(s).", processed, len(errors))
    return {"success": True, "processed": processed, "errors": errors}


def _expire_one(validity_id, now) -> bool:
    with transaction.atomic():
        record = (
            CreditValidity.objects.select_for_update(skip_locked=True)
            .filter(pk=validity_id, expired=False, expires_at__lt=now)
            .first()
        )
        if record is None:
            return False

        remaining = record.remaining_credits
        deducted = 0
        if remaining > 0:
            profile = CreditProfile.objects.select_for_update().filter(user_id=record.user_id).first()
            available = profile.balance_for(record.credit_type) if profile else 0
            deducted = min(remaining, available)
            if deducted > 0:
                apply_delta(
                    record.user_id,
                    record.credit_type,
                    -deducted,
                    kind=CreditTransaction.Kind.EXPIRATION,
                    description=f"Time-limited credits expired ({deducted} credits)",
                    clamp=True,
                    metadata={"validity_id": str(record.pk)},
                )
                outbox.enqueue(
                    OutboxMessage.Kind.NOTIFICATION,
                    record.user_id,
                    {
                        "title": "Credits Expired",
                        "message": (
                            f"{deducted} time-limited credits have expired and been removed from your balance."
                        ),
                        "type": "credits_expired",
                        "data": {"credits": deducted, "credit_type": record.credit_type},
                    },
                    dedupe_key=f"credits-expired:{record.pk}:notification",
                )
                outbox.enqueue(
                    OutboxMessage.Kind.EMAIL,
                    record.user_id,
                    {
                        "template": "credits_expired",
                        "subject": "Your credits have expired",
                        "context": {"credits": deducted, "credit_type": record.credit_type},
                    },
                    dedupe_key=f"credits-expired:{record.pk}:email",
                )

        record.expired = True
        record.expired_at = now
        record.remaining_credits = 0
        record.credits_expired_unused = remaining
        record.save(update_fields=["expired", "expired_at", "remaining_credits", "credits_expired_unused", "updated_at"])

    if deducted:
        CREDITS_EXPIRED.labels(credit_type=record.credit_type).inc(deducted)
    log_billing_event(
        message="credits.expired",
        user_id=record.user_id,
        extra={
            "validity_id": str(record.pk),
            "credit_type": record.credit_type,
            "unused": remaining,
            "deducted": deducted,
        },
    )
    return True
