"""
Tests for the ReconciliationEngine against the in-memory store.

Covers the payment lifecycle (pay, reset, skip, unskip), mandate
management, ledger entries and the all-or-nothing commit guarantee.
"""

import pytest
from datetime import datetime
from decimal import Decimal

from mandate_tracker.models.audit import AuditEventType
from mandate_tracker.models.mandate import Category, Settlement, TransactionType
from mandate_tracker.reconciliation import ReconciliationEngine, classify
from mandate_tracker.services.storage import (
    MANDATES,
    TRANSACTIONS,
    InMemoryDocumentStore,
    NotFoundError,
    StoreTransactionFailure,
)
from mandate_tracker.validation import MandateValidator, ValidationError

from tests.conftest import OWNER, FailingCommitStore, make_mandate, seed


def snapshot(store: InMemoryDocumentStore) -> dict:
    return {
        MANDATES: {d["id"]: d for d in store._collections.get(MANDATES, {}).values()},
        TRANSACTIONS: {d["id"]: d for d in store._collections.get(TRANSACTIONS, {}).values()},
    }


async def event_types(audit_storage) -> list[AuditEventType]:
    return [e.event_type for e in await audit_storage.get_recent_events()]


class TestPay:
    """Tests for ReconciliationEngine.pay."""
    
    @pytest.mark.asyncio
    async def test_pay_creates_linked_transaction(self, engine, store, clock):
        """Test paying records the ledger entry and marks the mandate paid."""
        mandate, txn = await engine.pay("m1", "650")
        
        assert mandate.amount == Decimal("650.00")
        assert mandate.last_paid_date == clock.now
        assert mandate.linked_transaction_id == txn.id
        assert classify(mandate, clock.now) == Settlement.PAID
        
        assert txn.amount == Decimal("650.00")
        assert txn.type == TransactionType.EXPENSE
        assert txn.category == Category.HOUSING
        assert txn.description == "Payment for Rent"
        assert txn.date == clock.now
        
        stored = await engine.get_mandate("m1")
        assert stored.linked_transaction_id == txn.id
        assert stored.amount == Decimal("650.00")
        assert await store.get_document(TRANSACTIONS, txn.id) is not None
    
    @pytest.mark.asyncio
    async def test_pay_keeps_other_fields(self, engine):
        """Test pay only touches the payment fields."""
        mandate, _ = await engine.pay("m1", Decimal("500"))
        assert mandate.name == "Rent"
        assert mandate.due_day == 1
        assert mandate.skipped_months == []
    
    @pytest.mark.asyncio
    @pytest.mark.parametrize("amount", ["0", "-5", "abc", "", None, "NaN"])
    async def test_pay_rejects_bad_amount_before_store(self, engine, store, amount):
        """Test invalid amounts are rejected and nothing is written."""
        before = snapshot(store)
        with pytest.raises(ValidationError):
            await engine.pay("m1", amount)
        assert snapshot(store) == before
    
    @pytest.mark.asyncio
    async def test_pay_missing_mandate(self, engine, store):
        """Test paying an unknown mandate raises NotFoundError and writes nothing."""
        with pytest.raises(NotFoundError):
            await engine.pay("nope", "100")
        assert snapshot(store)[TRANSACTIONS] == {}
    
    @pytest.mark.asyncio
    async def test_pay_foreign_mandate(self, clock):
        """Test another owner's mandate is not found."""
        store = InMemoryDocumentStore(seed(make_mandate(owner_id="someone-else")))
        engine = ReconciliationEngine(store, OWNER, clock=clock, validator=MandateValidator(max_amount=1000))
        with pytest.raises(NotFoundError):
            await engine.pay("m1", "100")
    
    @pytest.mark.asyncio
    async def test_pay_commit_failure_writes_nothing(self, clock):
        """Test a failed commit leaves both collections untouched."""
        store = FailingCommitStore(seed(make_mandate()))
        engine = ReconciliationEngine(store, OWNER, clock=clock, validator=MandateValidator(max_amount=1000))
        before = snapshot(store)
        
        with pytest.raises(StoreTransactionFailure):
            await engine.pay("m1", "650")
        
        assert snapshot(store) == before
        assert (await engine.get_mandate("m1")).last_paid_date is None
    
    @pytest.mark.asyncio
    async def test_pay_is_audited(self, engine, audit_storage):
        """Test a committed payment emits MANDATE_PAID."""
        await engine.pay("m1", "650")
        assert await event_types(audit_storage) == [AuditEventType.MANDATE_PAID]
    
    @pytest.mark.asyncio
    async def test_pay_twice_last_writer_wins(self, engine, store):
        """Test a second payment replaces the link and leaves both ledger entries."""
        _, first = await engine.pay("m1", "600")
        mandate, second = await engine.pay("m1", "700")
        assert mandate.linked_transaction_id == second.id
        assert mandate.amount == Decimal("700.00")
        assert set(snapshot(store)[TRANSACTIONS]) == {first.id, second.id}
    
    @pytest.mark.asyncio
    @pytest.mark.parametrize("formula,expected", [
        ("=20+30", Decimal("50.00")),
        ("=(20+30)*2", Decimal("100.00")),
    ])
    async def test_pay_with_formula_amount(self, engine, store, formula, expected):
        """Test a confirmed amount typed as a formula is calculated before paying."""
        mandate, txn = await engine.pay("m1", formula)
        assert mandate.amount == expected
        assert txn.amount == expected
        assert Decimal(snapshot(store)[TRANSACTIONS][txn.id]["amount"]) == expected
    
    @pytest.mark.asyncio
    async def test_pay_with_malformed_formula_writes_nothing(self, engine, store):
        """Test a malformed formula is rejected before the store is touched."""
        before = snapshot(store)
        with pytest.raises(ValidationError):
            await engine.pay("m1", "=20+")
        assert snapshot(store) == before


class TestReset:
    """Tests for ReconciliationEngine.reset."""
    
    @pytest.mark.asyncio
    async def test_reset_deletes_linked_transaction(self, engine, store, clock):
        """Test reset clears the payment and removes its ledger entry."""
        _, txn = await engine.pay("m1", "650")
        
        mandate = await engine.reset("m1")
        
        assert mandate.last_paid_date is None
        assert mandate.linked_transaction_id is None
        assert classify(mandate, clock.now) == Settlement.PENDING
        assert await store.get_document(TRANSACTIONS, txn.id) is None
        stored = await engine.get_mandate("m1")
        assert stored.last_paid_date is None
        assert stored.linked_transaction_id is None
    
    @pytest.mark.asyncio
    async def test_reset_keeps_paid_amount(self, engine):
        """Test the amount stays at the last paid value after reset."""
        await engine.pay("m1", "650")
        mandate = await engine.reset("m1")
        assert mandate.amount == Decimal("650.00")
    
    @pytest.mark.asyncio
    async def test_reset_without_link(self, engine, store):
        """Test resetting a never-paid mandate is harmless."""
        before = snapshot(store)[TRANSACTIONS]
        mandate = await engine.reset("m1")
        assert mandate.last_paid_date is None
        assert snapshot(store)[TRANSACTIONS] == before
    
    @pytest.mark.asyncio
    async def test_reset_after_transaction_already_deleted(self, engine):
        """Test reset succeeds when the linked entry was removed by the user."""
        _, txn = await engine.pay("m1", "650")
        await engine.delete_transaction(txn.id)
        mandate = await engine.reset("m1")
        assert mandate.linked_transaction_id is None
    
    @pytest.mark.asyncio
    async def test_reset_missing_mandate(self, engine):
        """Test resetting an unknown mandate raises NotFoundError."""
        with pytest.raises(NotFoundError):
            await engine.reset("nope")
    
    @pytest.mark.asyncio
    async def test_reset_commit_failure_keeps_payment(self, clock):
        """Test a failed reset leaves the mandate paid and the entry in place."""
        paid = make_mandate(last_paid_date=clock.now, linked_transaction_id="t1")
        txn = {"id": "t1", "ownerId": OWNER, "amount": "500.00", "description": "Payment for Rent",
               "category": "Housing", "type": "expense", "date": clock.now.isoformat()}
        store = FailingCommitStore(seed(paid, **{TRANSACTIONS: {"t1": txn}}))
        engine = ReconciliationEngine(store, OWNER, clock=clock, validator=MandateValidator(max_amount=1000))
        
        with pytest.raises(StoreTransactionFailure):
            await engine.reset("m1")
        
        assert (await engine.get_mandate("m1")).linked_transaction_id == "t1"
        assert await store.get_document(TRANSACTIONS, "t1") is not None
    
    @pytest.mark.asyncio
    async def test_reset_after_skip_returns_to_skipped(self, engine, store, clock):
        """Test resetting a payment made in a skipped month leaves the month skipped."""
        clock.now = datetime(2024, 3, 1, 9, 0)
        await engine.skip("m1")
        clock.now = datetime(2024, 3, 20, 9, 0)
        paid, txn = await engine.pay("m1", "650")
        assert classify(paid, clock.now) == Settlement.PAID
        
        mandate = await engine.reset("m1")
        
        assert classify(mandate, clock.now) == Settlement.SKIPPED
        assert mandate.skipped_months == ["2024-03"]
        assert mandate.linked_transaction_id is None
        assert await store.get_document(TRANSACTIONS, txn.id) is None
        stored = await engine.get_mandate("m1")
        assert classify(stored, clock.now) == Settlement.SKIPPED


class TestSkip:
    """Tests for skip and unskip."""
    
    @pytest.mark.asyncio
    async def test_skip_then_pay(self, engine, clock):
        """Test a skipped mandate becomes Paid when paid later in the month."""
        clock.now = datetime(2024, 3, 1, 9, 0)
        mandate = await engine.skip("m1")
        assert mandate.skipped_months == ["2024-03"]
        assert classify(mandate, clock.now) == Settlement.SKIPPED
        
        clock.now = datetime(2024, 3, 20, 9, 0)
        mandate, _ = await engine.pay("m1", "650")
        assert classify(mandate, clock.now) == Settlement.PAID
        assert mandate.skipped_months == ["2024-03"]
    
    @pytest.mark.asyncio
    async def test_skip_is_idempotent(self, engine, audit_storage):
        """Test skipping twice records the month once and audits once."""
        await engine.skip("m1")
        mandate = await engine.skip("m1")
        assert mandate.skipped_months == ["2024-03"]
        assert (await engine.get_mandate("m1")).skipped_months == ["2024-03"]
        assert await event_types(audit_storage) == [AuditEventType.MONTH_SKIPPED]
    
    @pytest.mark.asyncio
    async def test_skip_keeps_earlier_months(self, clock):
        """Test skipping appends to months already recorded."""
        store = InMemoryDocumentStore(seed(make_mandate(skipped_months=["2024-01"])))
        engine = ReconciliationEngine(store, OWNER, clock=clock, validator=MandateValidator(max_amount=1000))
        mandate = await engine.skip("m1")
        assert mandate.skipped_months == ["2024-01", "2024-03"]
    
    @pytest.mark.asyncio
    async def test_unskip_removes_only_current_month(self, clock):
        """Test unskip removes this month's key and nothing else."""
        store = InMemoryDocumentStore(seed(make_mandate(skipped_months=["2024-01", "2024-03"])))
        engine = ReconciliationEngine(store, OWNER, clock=clock, validator=MandateValidator(max_amount=1000))
        mandate = await engine.unskip("m1")
        assert mandate.skipped_months == ["2024-01"]
        assert classify(mandate, clock.now) == Settlement.PENDING
    
    @pytest.mark.asyncio
    async def test_unskip_when_not_skipped(self, engine, audit_storage):
        """Test unskip without a skip changes nothing and is not audited."""
        mandate = await engine.unskip("m1")
        assert mandate.skipped_months == []
        assert await event_types(audit_storage) == []
    
    @pytest.mark.asyncio
    async def test_skip_missing_mandate(self, engine):
        """Test skipping an unknown mandate raises NotFoundError."""
        with pytest.raises(NotFoundError):
            await engine.skip("nope")


class TestMandateManagement:
    """Tests for create, edit and delete."""
    
    @pytest.mark.asyncio
    async def test_create_mandate_starts_pending(self, engine, clock):
        """Test a new mandate has no payment and no skips."""
        mandate, result = await engine.create_mandate("Netflix", "Entertainment", "649")
        assert mandate.owner_id == OWNER
        assert mandate.amount == Decimal("649.00")
        assert mandate.due_day == 1
        assert classify(mandate, clock.now) == Settlement.PENDING
        assert result.is_valid
        assert result.warnings == []
        assert (await engine.get_mandate(mandate.id)).name == "Netflix"
    
    @pytest.mark.asyncio
    async def test_create_uses_default_due_day(self, store, clock):
        """Test mandates created without a due day get the configured default."""
        engine = ReconciliationEngine(
            store, OWNER, clock=clock,
            validator=MandateValidator(max_amount=1000),
            default_due_day=5,
        )
        mandate, _ = await engine.create_mandate("Gym", Category.HEALTH, "1200")
        assert mandate.due_day == 5
    
    @pytest.mark.asyncio
    async def test_create_duplicate_name_warns(self, engine):
        """Test a name clash is a warning, not an error."""
        mandate, result = await engine.create_mandate("rent", "Housing", "100")
        assert mandate.name == "rent"
        assert len(result.warnings) == 1
    
    @pytest.mark.asyncio
    async def test_create_invalid_writes_nothing(self, engine, store):
        """Test invalid input is rejected before the store is touched."""
        before = snapshot(store)
        with pytest.raises(ValidationError) as exc_info:
            await engine.create_mandate("R", "Salary", "-1")
        fields = {i.field for i in exc_info.value.issues}
        assert fields == {"name", "category", "amount"}
        assert snapshot(store) == before
    
    @pytest.mark.asyncio
    async def test_edit_mandate(self, engine):
        """Test editing changes only the given fields."""
        await engine.pay("m1", "650")
        mandate, result = await engine.edit_mandate("m1", {"name": "House Rent", "due_day": 7})
        assert result.is_valid
        stored = await engine.get_mandate("m1")
        assert stored.name == "House Rent"
        assert stored.due_day == 7
        assert stored.amount == Decimal("650.00")
        assert stored.linked_transaction_id is not None
    
    @pytest.mark.asyncio
    async def test_edit_rejects_settlement_fields(self, engine):
        """Test settlement facts cannot be edited directly."""
        with pytest.raises(ValidationError):
            await engine.edit_mandate("m1", {"last_paid_date": "2024-03-01"})
    
    @pytest.mark.asyncio
    async def test_edit_requires_changes(self, engine):
        """Test an empty edit is rejected."""
        with pytest.raises(ValidationError):
            await engine.edit_mandate("m1", {})
    
    @pytest.mark.asyncio
    async def test_edit_missing_mandate(self, engine):
        """Test editing an unknown mandate raises NotFoundError."""
        with pytest.raises(NotFoundError):
            await engine.edit_mandate("nope", {"name": "Water"})
    
    @pytest.mark.asyncio
    async def test_delete_keeps_ledger_entry(self, engine, store):
        """Test deleting a paid mandate keeps its transaction."""
        _, txn = await engine.pay("m1", "650")
        deleted = await engine.delete_mandate("m1")
        assert deleted.name == "Rent"
        assert await store.get_document(MANDATES, "m1") is None
        assert await store.get_document(TRANSACTIONS, txn.id) is not None
    
    @pytest.mark.asyncio
    async def test_list_mandates_skips_malformed(self, clock):
        """Test a malformed stored mandate is skipped, not fatal."""
        data = seed(make_mandate())
        data[MANDATES]["bad"] = {"id": "bad", "ownerId": OWNER, "name": "Broken", "amount": "x"}
        engine = ReconciliationEngine(
            InMemoryDocumentStore(data), OWNER, clock=clock,
            validator=MandateValidator(max_amount=1000),
        )
        assert [m.id for m in await engine.list_mandates()] == ["m1"]


class TestLedger:
    """Tests for direct ledger entries."""
    
    @pytest.mark.asyncio
    async def test_record_income(self, engine):
        """Test recording an income entry."""
        txn = await engine.record_transaction("50000", "March salary", "Salary", "income")
        assert txn.type == TransactionType.INCOME
        assert txn.category == Category.SALARY
        assert [t.id for t in await engine.list_transactions()] == [txn.id]
    
    @pytest.mark.asyncio
    async def test_record_rejects_bad_category(self, engine):
        """Test unknown categories are rejected."""
        with pytest.raises(ValidationError):
            await engine.record_transaction("10", "Coffee", "Coffee")
    
    @pytest.mark.asyncio
    async def test_list_transactions_newest_first(self, engine, clock):
        """Test the ledger is ordered newest first."""
        old = await engine.record_transaction("10", "Tea", "Food", date=datetime(2024, 3, 1))
        new = await engine.record_transaction("20", "Lunch", "Food", date=datetime(2024, 3, 10))
        assert [t.id for t in await engine.list_transactions()] == [new.id, old.id]
    
    @pytest.mark.asyncio
    async def test_delete_missing_transaction(self, engine):
        """Test deleting an unknown entry raises NotFoundError."""
        with pytest.raises(NotFoundError):
            await engine.delete_transaction("nope")
