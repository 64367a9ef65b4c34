"""
Settlement Classifier

The single place that decides whether a mandate is Paid, Skipped or
Pending for the cycle containing `now`. Pure and stateless: the answer
depends only on the mandate's stored facts and the date passed in.
"""

from datetime import datetime

from mandate_tracker.cycle import month_key, same_cycle
from mandate_tracker.models.mandate import Mandate, Settlement


def is_paid_this_cycle(mandate: Mandate, now: datetime) -> bool:
    """True iff last_paid_date falls in now's calendar month and year."""
    if mandate.last_paid_date is None:
        return False
    return same_cycle(mandate.last_paid_date, now)


def is_skipped_this_cycle(mandate: Mandate, now: datetime) -> bool:
    """True iff now's month key is recorded in skipped_months."""
    return month_key(now) in mandate.skipped_months


def classify(mandate: Mandate, now: datetime) -> Settlement:
    """
    Settlement of a mandate for the cycle containing now.
    
    Paid dominates Skipped: a skip recorded earlier in a month that was
    later paid stays in skipped_months but has no effect.
    """
    if is_paid_this_cycle(mandate, now):
        return Settlement.PAID
    if is_skipped_this_cycle(mandate, now):
        return Settlement.SKIPPED
    return Settlement.PENDING
