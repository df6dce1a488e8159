"""Custom metrics for the Circulation Engine."""

from decimal import Decimal

import logfire

circulation_events = logfire.metric_counter(
    "circulation.events", description="Loan lifecycle events (issue/return) by outcome"
)

penalty_settlements = logfire.metric_counter(
    "circulation.penalties.settled", description="Penalty settlements by path"
)

penalty_amount_collected = logfire.metric_counter(
    "circulation.penalties.collected", unit="currency", description="Penalty money recorded as paid"
)

reconciliation_records = logfire.metric_counter(
    "circulation.reconciliation.records", description="Records touched by reconciliation by outcome"
)

bulk_approval_items = logfire.metric_counter(
    "circulation.requests.bulk_items", description="Bulk approval items by outcome"
)


def record_circulation_event(event_type: str, status: str) -> None:
    circulation_events.add(1, {"event_type": event_type, "status": status})


def record_settlement(method: str, amount: Decimal | None = None) -> None:
    penalty_settlements.add(1, {"method": method})
    if amount:
        penalty_amount_collected.add(float(amount), {"method": method})


def record_reconciliation(updated: int, unchanged: int, skipped: int) -> None:
    reconciliation_records.add(updated, {"outcome": "updated"})
    reconciliation_records.add(unchanged, {"outcome": "unchanged"})
    reconciliation_records.add(skipped, {"outcome": "skipped"})


def record_bulk_approval(approved: int, failed: int) -> None:
    bulk_approval_items.add(approved, {"outcome": "approved"})
    bulk_approval_items.add(failed, {"outcome": "failed"})
