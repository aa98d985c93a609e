"""Payment initiation, idempotency and transaction lookup."""
