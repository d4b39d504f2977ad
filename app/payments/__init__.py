"""
Payments app: the webhook-to-ledger core.

This app handles:
- Fee calculation under every fee model version (payments.fees)
- Idempotent intake of provider events (payments.idempotency)
- Per-subscription locking (payments.locks)
- Subscription state transitions (payments.state_machines)
- The atomic ledger write (payments.ledger)
- Post-commit side effects (payments.side_effects)
- Payout reconciliation (payments.services)

Usage:
    from payments.webhooks import process_event

    outcome = process_event(event_id, "charge.succeeded", payload)
"""
