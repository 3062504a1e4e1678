from datetime import timedelta
from io import StringIO

import pytest
from django.core.management import CommandError, call_command
from django.utils import timezone

from billing.models import BillingEventDeadLetter, OutboxMessage, WebhookEventLog
from billing.services import credit_validity, outbox
from billing.services.credit_ledger import get_balance
from billing.tasks import cleanup_webhook_event_logs, expire_credits, reconcile_payment_claims, replay_webhook_event


def _dead_letter(user, event_id="evt_dead_1", credits="10"):
    session = {
        "id": f"cs_{event_id}",
        "payment_status": "paid",
        "amount_total": 999,
        "currency": "usd",
        "metadata": {"user_id": str(user.pk), "credits": credits},
    }
    return BillingEventDeadLetter.objects.create(
        provider="stripe",
        event_id=event_id,
        event_type="checkout.session.completed",
        payload={"id": event_id, "type": "checkout.session.completed", "data": {"object": session}},
        failure_reason="OperationalError: database is locked",
    )


@pytest.mark.django_db
def test_replay_credits_and_clears_dead_letter(user):
    dead_letter = _dead_letter(user)

    result = replay_webhook_event.delay(dead_letter.pk).get()

    assert result["status"] == "processed"
    assert get_balance(user.pk, "full") == 10
    assert not BillingEventDeadLetter.objects.exists()
    assert WebhookEventLog.objects.get(event_id="evt_dead_1").handled is True


@pytest.mark.django_db
def test_failed_replay_keeps_dead_letter(user, monkeypatch):
    from billing.adapters import stripe as stripe_adapter

    def explode(*args, **kwargs):
        raise RuntimeError("still broken")

    monkeypatch.setattr(stripe_adapter, "credit_payment", explode)
    dead_letter = _dead_letter(user)

    result = replay_webhook_event.run(dead_letter.pk)

    dead_letter.refresh_from_db()
    assert result["status"] == "dead_letter"
    assert dead_letter.retry_count == 1
    assert "still broken" in dead_letter.failure_reason
    assert get_balance(user.pk, "full") == 0


@pytest.mark.django_db
def test_replay_command_dry_run_changes_nothing(user):
    _dead_letter(user)
    stdout = StringIO()

    call_command("replay_billing_deadletter", "--dry-run", stdout=stdout)

    assert "1 events would be replayed" in stdout.getvalue()
    assert BillingEventDeadLetter.objects.count() == 1
    assert get_balance(user.pk, "full") == 0


@pytest.mark.django_db
def test_replay_command_filters_by_event_id(user):
    _dead_letter(user, event_id="evt_dead_1")
    _dead_letter(user, event_id="evt_dead_2", credits="5")
    stdout = StringIO()

    call_command("replay_billing_deadletter", "--event-id", "evt_dead_2", stdout=stdout)

    assert "1 succeeded, 0 failed" in stdout.getvalue()
    assert get_balance(user.pk, "full") == 5
    assert list(BillingEventDeadLetter.objects.values_list("event_id", flat=True)) == ["evt_dead_1"]


@pytest.mark.django_db
def test_expire_task_and_command(user, grant_credits):
    grant_credits(user, 10)
    credit_validity.attach(user.pk, "full", 4, timezone.now() - timedelta(days=1))

    summary = expire_credits.delay().get()
    stdout = StringIO()
    call_command("expire_credits", stdout=stdout)

    assert summary["processed"] == 1
    assert "Expired 0 batch(es)" in stdout.getvalue()
    assert get_balance(user.pk, "full") == 6


@pytest.mark.django_db
def test_expire_command_accepts_custom_now(user, grant_credits):
    grant_credits(user, 10)
    credit_validity.attach(user.pk, "full", 4, timezone.now() + timedelta(days=2))

    call_command("expire_credits", "--now", (timezone.now() + timedelta(days=3)).isoformat(), stdout=StringIO())

    assert get_balance(user.pk, "full") == 6


def test_expire_command_rejects_bad_timestamp():
    with pytest.raises(CommandError):
        call_command("expire_credits", "--now", "yesterday-ish", stdout=StringIO())


@pytest.mark.django_db
def test_drain_command_delivers_pending_messages(user):
    outbox.enqueue(OutboxMessage.Kind.NOTIFICATION, user.pk, {"title": "Hello", "message": "hi"})
    stdout = StringIO()

    call_command("drain_outbox", stdout=stdout)

    assert OutboxMessage.objects.get().status == OutboxMessage.Status.DELIVERED


@pytest.mark.django_db
def test_reconcile_task_honours_age_threshold(user):
    from billing.services import idempotency
    from billing.services.reconciliation import PaymentCredit

    credit = PaymentCredit(provider="paypal", event_key="ORDER-STUCK", user_id=user.pk, credits=8)
    idempotency.claim(credit.event_key, credit.provider, user.pk, payload=credit.as_payload())

    assert reconcile_payment_claims.run(older_than_minutes=30)["redriven"] == 0
    assert reconcile_payment_claims.run(older_than_minutes=-1)["redriven"] == 1
    assert get_balance(user.pk, "full") == 8


@pytest.mark.django_db
def test_cleanup_removes_old_handled_events():
    old = WebhookEventLog.objects.create(
        provider="stripe",
        event_id="evt_old",
        status=WebhookEventLog.Status.PROCESSED,
        handled=True,
        processed_at=timezone.now() - timedelta(days=10),
    )
    WebhookEventLog.objects.create(
        provider="stripe",
        event_id="evt_recent",
        status=WebhookEventLog.Status.PROCESSED,
        handled=True,
        processed_at=timezone.now(),
    )

    assert cleanup_webhook_event_logs(days=7) == 1
    assert not WebhookEventLog.objects.filter(pk=old.pk).exists()
