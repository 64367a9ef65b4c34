"""
Shared fixtures for Mandate Tracker tests.

All tests run against the in-memory store with a controllable clock.
No real Google Sheets calls are made (the Sheets tests use mocks).
"""

from datetime import datetime
from decimal import Decimal
from typing import Any, Optional

import pytest

from mandate_tracker.audit import AuditLogger
from mandate_tracker.models.mandate import Category, Mandate
from mandate_tracker.orchestrator import MandateFlow
from mandate_tracker.reconciliation import ReconciliationEngine
from mandate_tracker.services.storage import (
    MANDATES,
    InMemoryAuditStorage,
    InMemoryDocumentStore,
)
from mandate_tracker.validation import MandateValidator


OWNER = "owner-1"


class FakeClock:
    """Clock whose time tests can move."""
    
    def __init__(self, now: datetime):
        self.now = now
    
    def __call__(self) -> datetime:
        return self.now


class FailingCommitStore(InMemoryDocumentStore):
    """In-memory store whose commits always fail."""
    
    def _commit(self, staged):
        raise RuntimeError("backend unavailable")


def make_mandate(
    mandate_id: str = "m1",
    name: str = "Rent",
    amount: str = "500.00",
    category: Category = Category.HOUSING,
    owner_id: str = OWNER,
    last_paid_date: Optional[datetime] = None,
    linked_transaction_id: Optional[str] = None,
    skipped_months: Optional[list[str]] = None,
) -> Mandate:
    return Mandate(
        id=mandate_id,
        owner_id=owner_id,
        name=name,
        category=category,
        amount=Decimal(amount),
        last_paid_date=last_paid_date,
        linked_transaction_id=linked_transaction_id,
        skipped_months=skipped_months or [],
    )


def seed(*mandates: Mandate, **collections: dict[str, dict[str, Any]]) -> dict:
    """Initial store contents holding the given mandates."""
    data = {MANDATES: {m.id: m.to_document() for m in mandates}}
    data.update(collections)
    return data


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock(datetime(2024, 3, 15, 10, 30))


@pytest.fixture
def store() -> InMemoryDocumentStore:
    return InMemoryDocumentStore(seed(make_mandate()))


@pytest.fixture
def audit_storage() -> InMemoryAuditStorage:
    return InMemoryAuditStorage()


@pytest.fixture
def audit_logger(audit_storage) -> AuditLogger:
    return AuditLogger(audit_storage)


@pytest.fixture
def engine(store, audit_logger, clock) -> ReconciliationEngine:
    return ReconciliationEngine(
        store=store,
        owner_id=OWNER,
        audit_logger=audit_logger,
        validator=MandateValidator(max_amount=100000),
        clock=clock,
    )


@pytest.fixture
def flow(engine, audit_logger) -> MandateFlow:
    return MandateFlow(engine=engine, audit_logger=audit_logger)
