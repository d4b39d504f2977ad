"""
Tests for payments app.

This package contains test modules for:
- test_models.py: Subscription, Payment, Payout, WebhookEvent model tests
- test_ledger_services.py: LedgerWriter charge, status and reversal writes
- test_pipeline.py: Webhook pipeline outcomes and every event handler
- test_concurrency.py: Lock contention and locked idempotency re-checks
- test_tasks.py: Celery intake and retry tasks

Usage:
    pytest payments/tests/
    pytest payments/tests/test_pipeline.py
"""
