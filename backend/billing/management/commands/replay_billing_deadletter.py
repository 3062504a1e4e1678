"""Management command to replay billing dead-letter webhook events."""
from __future__ import annotations

from typing import Iterable, Optional

from django.core.management.base import BaseCommand, CommandError

from billing.models import BillingEventDeadLetter, PaymentProvider
from billing.tasks import replay_webhook_event
from billing.webhooks import HandlerResult

REPLAYED = {HandlerResult.PROCESSED, HandlerResult.IGNORED, HandlerResult.ALREADY_PROCESSED}


class Command(BaseCommand):
    help = "Replay stored billing dead-letter events through the normal webhook pipeline."

    def add_arguments(self, parser) -> None:
        parser.add_argument(
            "--provider",
            choices=PaymentProvider.values,
            help="Replay only events received from this provider.",
        )
        parser.add_argument(
            "--event-id",
            dest="event_ids",
            action="append",
            help="Replay only the specified provider event id. Can be supplied multiple times.",
        )
        parser.add_argument(
            "--limit",
            type=int,
            default=None,
            help="Maximum number of events to replay in this run.",
        )
        parser.add_argument(
            "--dry-run",
            action="store_true",
            help="Preview events that would be replayed without performing any changes.",
        )

    def handle(self, *args, **options) -> None:
        provider: Optional[str] = options.get("provider")
        event_ids: Optional[Iterable[str]] = options.get("event_ids")
        limit: Optional[int] = options.get("limit")
        dry_run: bool = options.get("dry_run")

        queryset = BillingEventDeadLetter.objects.order_by("created_at")
        if provider:
            queryset = queryset.filter(provider=provider)
        if event_ids:
            queryset = queryset.filter(event_id__in=list(event_ids))

        dead_letters = list(queryset[:limit] if limit is not None else queryset)
        total = len(dead_letters)
        if total == 0:
            self.stdout.write(self.style.WARNING("No dead-letter events matched the requested filters."))
            return

        processed = 0
        failed = 0

        for dead_letter in dead_letters:
            self.stdout.write(f"Replaying {dead_letter.provider} event {dead_letter.event_id}")
            if dry_run:
                continue

            result = replay_webhook_event.run(dead_letter.pk)
            if result.get("status") in REPLAYED:
                processed += 1
            else:
                failed += 1
                self.stdout.write(self.style.ERROR(f"  {result.get('status')}: {result.get('detail')}"))

        if dry_run:
            self.stdout.write(
                self.style.WARNING(f"Dry run complete. {total} events would be replayed.")
            )
            return

        summary = f"Replay complete: {processed} succeeded, {failed} failed, {total} total."
        if failed:
            raise CommandError(summary)
        self.stdout.write(self.style.SUCCESS(summary))
