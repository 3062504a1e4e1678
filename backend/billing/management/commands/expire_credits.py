"""Expire credit validity batches whose deadline has passed."""
from __future__ import annotations

from django.core.management.base import BaseCommand, CommandError
from django.utils import timezone
from django.utils.dateparse import parse_datetime

from billing.services.credit_validity import expire_due_credits


class Command(BaseCommand):
    help = "Run the credit expiry sweep once, deducting unused credits from expired batches."

    def add_arguments(self, parser) -> None:
        parser.add_argument(
            "--now",
            help="ISO timestamp to treat as the current time (defaults to now).",
        )

    def handle(self, *args, **options) -> None:
        now = None
        if options.get("now"):
            now = parse_datetime(options["now"])
            if now is None:
                raise CommandError(f"Invalid timestamp: {options['now']}")
            if timezone.is_naive(now):
                now = timezone.make_aware(now)

        summary = expire_due_credits(now=now)
        for error in summary["errors"]:
            self.stdout.write(self.style.ERROR(f"  {error}"))

        message = f"Expired {summary['processed']} batch(es) with {len(summary['errors'])} error(s)."
        if summary["errors"]:
            raise CommandError(message)
        self.stdout.write(self.style.SUCCESS(message))
