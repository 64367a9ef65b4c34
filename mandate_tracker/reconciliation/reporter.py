"""
Aggregation Reporter

Per-cycle totals for the mandate list header: how much has been paid
this month, how much is still expected, and how many mandates sit in
each settlement.
"""

from datetime import datetime
from decimal import Decimal
from typing import Iterable

from mandate_tracker.cycle import month_key
from mandate_tracker.models.mandate import CycleSummary, Mandate, Settlement
from mandate_tracker.reconciliation.classifier import classify


def partition(
    mandates: Iterable[Mandate],
    now: datetime,
) -> dict[Settlement, list[Mandate]]:
    """
    Group mandates by settlement.
    
    Every settlement key is present; each mandate lands in exactly one
    group, and input order is kept within a group.
    """
    groups: dict[Settlement, list[Mandate]] = {s: [] for s in Settlement}
    for mandate in mandates:
        groups[classify(mandate, now)].append(mandate)
    return groups


def aggregate(mandates: Iterable[Mandate], now: datetime) -> CycleSummary:
    """
    Totals and counts for the cycle containing now.
    
    Skipped mandates count toward skipped_count only; they are neither
    paid nor projected.
    """
    groups = partition(mandates, now)
    paid = groups[Settlement.PAID]
    skipped = groups[Settlement.SKIPPED]
    pending = groups[Settlement.PENDING]
    
    return CycleSummary(
        month_key=month_key(now),
        total_paid=sum((m.amount for m in paid), Decimal("0")),
        projected_remaining=sum((m.amount for m in pending), Decimal("0")),
        paid_count=len(paid),
        skipped_count=len(skipped),
        unpaid_count=len(pending),
    )
