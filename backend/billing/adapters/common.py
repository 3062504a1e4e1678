"""Helpers shared by the provider adapters."""
from __future__ import annotations

import logging
from decimal import Decimal, InvalidOperation
from typing import Any, Optional, Type

from django.contrib.auth import get_user_model

from billing.models import CreditType, InvalidPaymentTransition, ProviderPayment

logger = logging.getLogger(__name__)

User = get_user_model()

ZERO_DECIMAL_CURRENCIES: set[str] = {
    "bif",
    "clp",
    "djf",
    "gnf",
    "jpy",
    "kmf",
    "krw",
    "mga",
    "pyg",
    "rwf",
    "ugx",
    "vnd",
    "vuv",
    "xaf",
    "xof",
    "xpf",
}


class VerificationError(Exception):
    """Raised when a client-triggered verification request cannot be served."""

    http_status = 400


class PaymentRecordNotFound(VerificationError):
    http_status = 404


class PaymentOwnershipError(VerificationError):
    http_status = 403


def parse_credits(value: Any) -> int:
    """Credits from provider metadata; anything unparsable counts as zero."""

    try:
        return int(str(value).strip()) if value not in (None, "") else 0
    except (TypeError, ValueError):
        logger.warning("Ignoring invalid credit quantity %r in provider metadata.", value)
        return 0


def credit_type_from(value: Any, error: Type[Exception]) -> str:
    """Credit type from provider metadata; an unknown spelling raises ``error``."""

    try:
        return CreditType.normalize(value)
    except ValueError as exc:
        logger.warning("Rejecting provider metadata with credit type %r.", value)
        raise error(str(exc)) from exc


def minor_to_decimal(value: Any, currency: str = "usd") -> Optional[Decimal]:
    if value in (None, ""):
        return None
    divisor = Decimal("1") if (currency or "").lower() in ZERO_DECIMAL_CURRENCIES else Decimal("100")
    try:
        return (Decimal(str(value)) / divisor).quantize(Decimal("0.01"))
    except InvalidOperation:
        return None


def resolve_user_id(value: Any) -> Optional[Any]:
    if value in (None, ""):
        return None
    try:
        return User.objects.filter(pk=value).values_list("pk", flat=True).first()
    except (ValueError, TypeError):
        return None


def move_payment(payment: Optional[ProviderPayment], status: str, **fields) -> bool:
    """Transition ``payment`` when its lifecycle allows it; returns whether the status changed."""

    if payment is None:
        return False
    try:
        return payment.transition_to(status, **fields)
    except InvalidPaymentTransition:
        logger.info(
            "Ignoring %s transition of %s %s from '%s'.",
            status,
            type(payment).__name__,
            payment.pk,
            payment.status,
        )
        return False
