from datetime import timedelta
from decimal import Decimal

import pytest
from django.utils import timezone

from billing.models import (
    CreditTransaction,
    CreditValidity,
    OutboxMessage,
    PaymentIdempotencyKey,
    PaymentStatus,
    StripePayment,
)
from billing.services import idempotency
from billing.services.credit_ledger import get_balance
from billing.services.reconciliation import PaymentCredit, credit_payment, reconcile_pending_claims


def _credit(user, **overrides):
    values = {
        "provider": "stripe",
        "event_key": "cs_test_123",
        "user_id": user.pk,
        "credits": 10,
        "description": "Stripe payment - 10 credits",
        "amount_usd": Decimal("9.99"),
    }
    values.update(overrides)
    return PaymentCredit(**values)


@pytest.mark.django_db
def test_credit_payment_applies_once(user):
    first = credit_payment(_credit(user))
    second = credit_payment(_credit(user))

    assert first.as_response() == {"success": True, "creditsAdded": 10, "newBalance": 10, "alreadyProcessed": False}
    assert second.already_processed is True
    assert second.new_balance == 10
    assert get_balance(user.pk, "full") == 10
    assert CreditTransaction.objects.filter(kind=CreditTransaction.Kind.PURCHASE).count() == 1

    claim = PaymentIdempotencyKey.objects.get(key="cs_test_123", provider="stripe")
    assert claim.status == PaymentIdempotencyKey.Status.COMPLETED
    assert claim.transactions.count() == 1


@pytest.mark.django_db
def test_credit_payment_queues_all_side_effects(user):
    credit_payment(_credit(user))

    kinds = sorted(OutboxMessage.objects.values_list("kind", flat=True))
    assert kinds == sorted(
        [
            OutboxMessage.Kind.NOTIFICATION,
            OutboxMessage.Kind.PUSH,
            OutboxMessage.Kind.EMAIL,
            OutboxMessage.Kind.INVOICE,
            OutboxMessage.Kind.RECEIPT,
        ]
    )


@pytest.mark.django_db
def test_credit_payment_without_amount_skips_documents(user):
    credit_payment(_credit(user, amount_usd=None))

    kinds = set(OutboxMessage.objects.values_list("kind", flat=True))
    assert OutboxMessage.Kind.INVOICE not in kinds
    assert OutboxMessage.Kind.RECEIPT not in kinds


@pytest.mark.django_db
def test_credit_payment_attaches_validity(user):
    credit_payment(_credit(user))

    validity = CreditValidity.objects.get(user=user)
    assert validity.credits_amount == 10
    assert validity.remaining_credits == 10
    assert validity.transaction.kind == CreditTransaction.Kind.PURCHASE
    assert validity.expires_at > timezone.now() + timedelta(days=364)


@pytest.mark.django_db
def test_credit_payment_completes_payment_record(user):
    payment = StripePayment.objects.create(user=user, session_id="cs_test_123", credits=10, amount_usd=Decimal("9.99"))

    credit_payment(_credit(user, payment=payment))

    payment.refresh_from_db()
    assert payment.status == PaymentStatus.COMPLETED
    assert payment.completed_at is not None


@pytest.mark.django_db
def test_credit_payment_rejects_non_positive_credits(user):
    with pytest.raises(ValueError):
        credit_payment(_credit(user, credits=0))
    assert not PaymentIdempotencyKey.objects.exists()


@pytest.mark.django_db
def test_failure_after_claim_rolls_back_everything(user):
    def explode(ledger_result):
        raise RuntimeError("payment record update failed")

    with pytest.raises(RuntimeError):
        credit_payment(_credit(user), on_credited=explode)

    assert not PaymentIdempotencyKey.objects.exists()
    assert not OutboxMessage.objects.exists()
    assert get_balance(user.pk, "full") == 0

    retried = credit_payment(_credit(user))
    assert retried.already_processed is False
    assert get_balance(user.pk, "full") == 10


@pytest.mark.django_db
def test_reconcile_redrives_claim_without_transaction(user):
    credit = _credit(user, event_key="cs_stuck")
    outcome = idempotency.claim(credit.event_key, credit.provider, user.pk, payload=credit.as_payload())
    PaymentIdempotencyKey.objects.filter(pk=outcome.claim.pk).update(created_at=timezone.now() - timedelta(hours=1))

    summary = reconcile_pending_claims()

    assert summary == {"completed": 0, "redriven": 1, "needs_review": 0, "skipped": 0}
    assert get_balance(user.pk, "full") == 10
    claim = PaymentIdempotencyKey.objects.get(pk=outcome.claim.pk)
    assert claim.status == PaymentIdempotencyKey.Status.COMPLETED
    assert claim.transactions.count() == 1

    assert reconcile_pending_claims()["redriven"] == 0
    assert get_balance(user.pk, "full") == 10


@pytest.mark.django_db
def test_reconcile_completes_claim_that_already_has_transaction(user):
    credit_payment(_credit(user, event_key="cs_done"))
    PaymentIdempotencyKey.objects.filter(key="cs_done").update(
        status=PaymentIdempotencyKey.Status.PENDING,
        completed_at=None,
        created_at=timezone.now() - timedelta(hours=1),
    )

    summary = reconcile_pending_claims()

    assert summary["completed"] == 1
    assert get_balance(user.pk, "full") == 10
    assert PaymentIdempotencyKey.objects.get(key="cs_done").status == PaymentIdempotencyKey.Status.COMPLETED


@pytest.mark.django_db
def test_reconcile_flags_claim_without_intent(user):
    outcome = idempotency.claim("evt_orphan", "paypal", user.pk)
    PaymentIdempotencyKey.objects.filter(pk=outcome.claim.pk).update(created_at=timezone.now() - timedelta(hours=1))

    summary = reconcile_pending_claims()

    claim = PaymentIdempotencyKey.objects.get(pk=outcome.claim.pk)
    assert summary["needs_review"] == 1
    assert claim.status == PaymentIdempotencyKey.Status.PENDING
    assert claim.attempts == 1
    assert "no credit intent" in claim.last_error


@pytest.mark.django_db
def test_reconcile_leaves_fresh_claims_alone(user):
    credit = _credit(user, event_key="cs_in_flight")
    idempotency.claim(credit.event_key, credit.provider, user.pk, payload=credit.as_payload())

    summary = reconcile_pending_claims()

    assert summary == {"completed": 0, "redriven": 0, "needs_review": 0, "skipped": 0}
    assert get_balance(user.pk, "full") == 0
