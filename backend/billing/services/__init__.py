"""Credit reconciliation services: idempotency guard, ledger, validity tracking and outbox."""
