from datetime import timedelta

import pytest
from django.db import transaction
from django.utils import timezone

from billing.models import InvoiceRecord, OutboxMessage, PushSubscription, ReceiptRecord, UserNotification
from billing.services import notifications, outbox
from billing.services.credit_ledger import get_balance
from billing.services.provider_http import ProviderError
from billing.services.push import PushSubscriptionGone
from billing.tasks import drain_outbox


def _notification(**overrides):
    payload = {"title": "Payment Confirmed", "message": "10 credits added to your account!", "type": "payment"}
    payload.update(overrides)
    return payload


@pytest.mark.django_db
def test_delivery_is_scheduled_only_after_commit(user, django_capture_on_commit_callbacks):
    with django_capture_on_commit_callbacks(execute=True) as callbacks:
        message = outbox.enqueue(OutboxMessage.Kind.NOTIFICATION, user.pk, _notification())
        assert UserNotification.objects.count() == 0

    message.refresh_from_db()
    assert len(callbacks) == 1
    assert message.status == OutboxMessage.Status.DELIVERED
    assert message.attempts == 1
    assert UserNotification.objects.get(user=user).title == "Payment Confirmed"


@pytest.mark.django_db
def test_rolled_back_enqueue_leaves_nothing_behind(user, django_capture_on_commit_callbacks):
    with django_capture_on_commit_callbacks(execute=True) as callbacks:
        with pytest.raises(RuntimeError):
            with transaction.atomic():
                outbox.enqueue(OutboxMessage.Kind.NOTIFICATION, user.pk, _notification())
                raise RuntimeError("balance update failed")

    assert callbacks == []
    assert not OutboxMessage.objects.exists()


@pytest.mark.django_db
def test_dedupe_key_returns_existing_message(user):
    first = outbox.enqueue(OutboxMessage.Kind.PUSH, user.pk, {"title": "a"}, dedupe_key="stripe:cs_1:push")
    second = outbox.enqueue(OutboxMessage.Kind.PUSH, user.pk, {"title": "b"}, dedupe_key="stripe:cs_1:push")

    assert first.pk == second.pk
    assert OutboxMessage.objects.count() == 1


@pytest.mark.django_db
def test_failed_delivery_backs_off_then_gives_up(user, monkeypatch):
    def broken(message):
        raise ProviderError("gateway down", status_code=503)

    monkeypatch.setitem(notifications.CHANNEL_HANDLERS, OutboxMessage.Kind.PUSH, broken)
    message = outbox.enqueue(OutboxMessage.Kind.PUSH, user.pk, {"title": "Payment Confirmed"})

    before = timezone.now()
    assert outbox.deliver(message.pk) == OutboxMessage.Status.PENDING
    message.refresh_from_db()
    assert message.attempts == 1
    assert "gateway down" in message.last_error
    assert message.available_at >= before + timedelta(seconds=30)

    assert outbox.deliver(message.pk) == OutboxMessage.Status.PENDING
    message.refresh_from_db()
    assert message.available_at >= before + timedelta(seconds=60)

    assert outbox.deliver(message.pk) == OutboxMessage.Status.FAILED
    message.refresh_from_db()
    assert message.attempts == 3
    assert message.status == OutboxMessage.Status.FAILED


@pytest.mark.django_db
def test_failure_in_one_channel_does_not_block_others(user, grant_credits, monkeypatch):
    def broken(message):
        raise ProviderError("gateway down", status_code=503)

    monkeypatch.setitem(notifications.CHANNEL_HANDLERS, OutboxMessage.Kind.PUSH, broken)
    grant_credits(user, 15)
    push = outbox.enqueue(OutboxMessage.Kind.PUSH, user.pk, {"title": "Payment Confirmed"})
    note = outbox.enqueue(OutboxMessage.Kind.NOTIFICATION, user.pk, _notification())

    stats = drain_outbox()

    push.refresh_from_db()
    note.refresh_from_db()
    assert stats == {"pending": 1, "delivered": 1}
    assert push.status == OutboxMessage.Status.PENDING
    assert note.status == OutboxMessage.Status.DELIVERED
    assert get_balance(user.pk, "full") == 15


@pytest.mark.django_db
def test_drain_skips_messages_not_yet_due(user):
    message = outbox.enqueue(OutboxMessage.Kind.NOTIFICATION, user.pk, _notification())
    OutboxMessage.objects.filter(pk=message.pk).update(available_at=timezone.now() + timedelta(minutes=5))

    assert drain_outbox() == {}
    message.refresh_from_db()
    assert message.status == OutboxMessage.Status.PENDING


@pytest.mark.django_db
def test_delivered_message_is_not_sent_twice(user):
    message = outbox.enqueue(OutboxMessage.Kind.NOTIFICATION, user.pk, _notification())

    outbox.deliver(message.pk)
    outbox.deliver(message.pk)

    assert UserNotification.objects.filter(user=user).count() == 1


@pytest.mark.django_db
def test_email_channel_renders_template(user, mailoutbox):
    message = outbox.enqueue(
        OutboxMessage.Kind.EMAIL,
        user.pk,
        {
            "template": "payment_confirmation",
            "subject": "Payment confirmed",
            "context": {"credits": 10, "credit_type": "full", "new_balance": 10, "provider": "stripe"},
        },
    )

    assert outbox.deliver(message.pk) == OutboxMessage.Status.DELIVERED
    assert len(mailoutbox) == 1
    assert mailoutbox[0].to == ["alice@example.com"]
    assert mailoutbox[0].subject == "Payment confirmed"


@pytest.mark.django_db
def test_invoice_and_receipt_numbers_are_sequential(user, other_user):
    for index, owner in enumerate((user, other_user), start=1):
        document = {"provider": "stripe", "payment_reference": f"cs_{index}", "credits": 10, "currency": "usd"}
        invoice = outbox.enqueue(OutboxMessage.Kind.INVOICE, owner.pk, dict(document, amount_usd="9.99"))
        receipt = outbox.enqueue(OutboxMessage.Kind.RECEIPT, owner.pk, dict(document, amount_paid="9.99"))
        outbox.deliver(invoice.pk)
        outbox.deliver(receipt.pk)

    stamp = timezone.now().strftime("%Y%m%d")
    numbers = sorted(InvoiceRecord.objects.values_list("invoice_number", flat=True))
    assert numbers == [f"INV-{stamp}-0001", f"INV-{stamp}-0002"]
    receipt = ReceiptRecord.objects.get(payment_reference="cs_2")
    assert receipt.receipt_number == f"RCP-{stamp}-0002"
    assert receipt.invoice.payment_reference == "cs_2"


@pytest.mark.django_db
def test_push_deactivates_gone_subscriptions(user, settings, monkeypatch):
    settings.PUSH_GATEWAY_URL = "https://push.example.com/send"
    gone = PushSubscription.objects.create(user=user, endpoint="https://push.example.com/a", p256dh="k", auth="a")
    live = PushSubscription.objects.create(user=user, endpoint="https://push.example.com/b", p256dh="k", auth="a")

    class FakePushClient:
        enabled = True

        def __init__(self):
            self.sent = []

        def send(self, subscription, *, title, body, data=None):
            if subscription.pk == gone.pk:
                raise PushSubscriptionGone("410 Gone")
            self.sent.append(subscription.pk)

    client = FakePushClient()
    monkeypatch.setattr(notifications, "get_push_client", lambda: client)
    message = outbox.enqueue(OutboxMessage.Kind.PUSH, user.pk, {"title": "Payment Confirmed", "body": "ok"})

    assert outbox.deliver(message.pk) == OutboxMessage.Status.DELIVERED
    gone.refresh_from_db()
    live.refresh_from_db()
    assert client.sent == [live.pk]
    assert gone.is_active is False
    assert live.is_active is True
