"""Provider adapters translating webhook and verification traffic into reconciliation calls."""
from __future__ import annotations

from billing.adapters import dodo, paypal, stripe, viva
from billing.models import PaymentProvider

WEBHOOK_DISPATCHERS = {
    PaymentProvider.STRIPE: stripe.dispatch_event,
    PaymentProvider.PAYPAL: paypal.dispatch_event,
    PaymentProvider.DODO: dodo.dispatch_event,
    PaymentProvider.VIVA: viva.dispatch_event,
}


def get_dispatcher(provider: str):
    try:
        return WEBHOOK_DISPATCHERS[provider]
    except KeyError as exc:
        raise ValueError(f"No webhook dispatcher registered for provider '{provider}'.") from exc
