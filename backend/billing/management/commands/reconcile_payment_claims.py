"""Finish or re-drive payment claims that were left pending."""
from __future__ import annotations

from datetime import timedelta

from django.core.management.base import BaseCommand
from django.utils import timezone

from billing.services.reconciliation import reconcile_pending_claims


class Command(BaseCommand):
    help = "Reconcile pending payment idempotency claims older than the configured threshold."

    def add_arguments(self, parser) -> None:
        parser.add_argument(
            "--older-than-minutes",
            type=int,
            default=None,
            help="Only consider claims created at least this many minutes ago (defaults to PAYMENT_CLAIM_STALE_AFTER).",
        )

    def handle(self, *args, **options) -> None:
        minutes = options.get("older_than_minutes")
        older_than = timezone.now() - timedelta(minutes=minutes) if minutes is not None else None

        summary = reconcile_pending_claims(older_than=older_than)
        self.stdout.write(
            self.style.SUCCESS(
                "Claims reconciled: {completed} completed, {redriven} re-driven, "
                "{needs_review} need review, {skipped} skipped.".format(**summary)
            )
        )
        if summary["needs_review"]:
            self.stdout.write(self.style.WARNING("Some claims need manual review; see the billing log."))
