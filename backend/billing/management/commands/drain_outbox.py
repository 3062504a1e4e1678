"""Deliver pending outbox messages that are due."""
from __future__ import annotations

from django.core.management.base import BaseCommand

from billing.tasks import drain_outbox


class Command(BaseCommand):
    help = "Deliver due side-effect messages (notifications, push, e-mail, invoices, receipts)."

    def add_arguments(self, parser) -> None:
        parser.add_argument("--limit", type=int, default=200, help="Maximum number of messages to deliver.")

    def handle(self, *args, **options) -> None:
        stats = drain_outbox.run(limit=options["limit"])
        if not stats:
            self.stdout.write("No outbox messages are due.")
            return
        summary = ", ".join(f"{count} {status}" for status, count in sorted(stats.items()))
        self.stdout.write(self.style.SUCCESS(f"Outbox drained: {summary}."))
