"""
Tests for MandateFlow: user-facing results, error kinds and display order.
"""

import pytest
from decimal import Decimal
from types import SimpleNamespace

from mandate_tracker.config import AppSettings, StorageBackend
from mandate_tracker.models.audit import AuditEventType
from mandate_tracker.models.mandate import MandateView, Settlement
from mandate_tracker.orchestrator import (
    MandateFlow,
    create_app_components,
    order_for_display,
)
from mandate_tracker.reconciliation import ReconciliationEngine
from mandate_tracker.services.storage import InMemoryDocumentStore
from mandate_tracker.validation import MandateValidator

from tests.conftest import OWNER, FailingCommitStore, make_mandate, seed


class TestActions:
    """Tests for action results."""
    
    @pytest.mark.asyncio
    async def test_pay_success_message(self, flow):
        """Test a payment reports the mandate name and formatted amount."""
        result = await flow.pay("m1", "1650")
        assert result.success
        assert result.title == "Payment Confirmed"
        assert result.message == "Rent marked as paid for ₹1,650.00."
        assert result.transaction_id is not None
        assert result.error_kind is None
    
    @pytest.mark.asyncio
    async def test_pay_invalid_amount(self, flow, audit_storage):
        """Test invalid amounts come back as validation failures and are audited."""
        result = await flow.pay("m1", "-10")
        assert not result.success
        assert result.error_kind == "validation"
        assert result.error_message == "Amount must be a positive number."
        
        events = await audit_storage.get_events_by_entity("mandate", "m1")
        assert [e.event_type for e in events] == [AuditEventType.OPERATION_REJECTED]
    
    @pytest.mark.asyncio
    async def test_pay_missing_mandate(self, flow):
        """Test an unknown mandate is reported as not_found."""
        result = await flow.pay("nope", "10")
        assert not result.success
        assert result.error_kind == "not_found"
        assert result.message == "Could not mark bill as paid."
    
    @pytest.mark.asyncio
    async def test_pay_store_failure(self, clock, audit_logger, audit_storage):
        """Test a failed commit is reported as store_failure and audited."""
        engine = ReconciliationEngine(
            FailingCommitStore(seed(make_mandate())), OWNER,
            audit_logger=audit_logger, clock=clock,
            validator=MandateValidator(max_amount=1000),
        )
        flow = MandateFlow(engine, audit_logger)
        
        result = await flow.pay("m1", "650")
        
        assert not result.success
        assert result.error_kind == "store_failure"
        assert result.title == "Error"
        events = await audit_storage.get_events_by_entity("mandate", "m1")
        assert [e.event_type for e in events] == [AuditEventType.OPERATION_FAILED]
        assert events[0].error_code == "store_failure"
    
    @pytest.mark.asyncio
    async def test_reset_message(self, flow):
        """Test reset reports the mandate as pending."""
        await flow.pay("m1", "650")
        result = await flow.reset("m1")
        assert result.success
        assert result.title == "Payment Reset"
        assert result.message == "Rent has been marked as pending."
    
    @pytest.mark.asyncio
    async def test_reset_message_in_skipped_month(self, flow):
        """Test reset says the mandate stays skipped when the month was skipped."""
        await flow.skip("m1")
        await flow.pay("m1", "650")
        result = await flow.reset("m1")
        assert result.success
        assert result.message == "Rent has been reset and stays skipped for this month."
        view = next(v for v in await flow.list_mandates() if v.mandate.id == "m1")
        assert view.settlement == Settlement.SKIPPED
    
    @pytest.mark.asyncio
    async def test_skip_and_unskip_messages(self, flow):
        """Test skip and unskip results."""
        skipped = await flow.skip("m1")
        assert skipped.title == "Bill Skipped"
        assert skipped.message == "Rent marked as skipped for this month."
        
        unskipped = await flow.unskip("m1")
        assert unskipped.title == "Skip Removed"
        assert unskipped.message == "Rent is now pending for this month."
    
    @pytest.mark.asyncio
    async def test_create_with_warning(self, flow):
        """Test warnings are passed through on success."""
        result = await flow.create("Rent", "Housing", "250000")
        assert result.success
        assert result.message == "Bill added successfully."
        assert len(result.warnings) == 2
    
    @pytest.mark.asyncio
    async def test_create_invalid(self, flow):
        """Test invalid input is reported with the issue messages."""
        result = await flow.create("", "Housing", "100")
        assert not result.success
        assert result.error_kind == "validation"
        assert "Name is required" in result.message
    
    @pytest.mark.asyncio
    async def test_edit_and_delete(self, flow):
        """Test edit and delete results."""
        edited = await flow.edit("m1", amount="550")
        assert edited.success
        assert edited.message == "Bill updated successfully."
        
        deleted = await flow.delete("m1")
        assert deleted.title == "Bill Deleted"
        assert deleted.message == 'The bill "Rent" has been removed.'
        
        missing = await flow.delete("m1")
        assert missing.error_kind == "not_found"
    
    @pytest.mark.asyncio
    async def test_ledger_actions(self, flow):
        """Test recording and deleting a ledger entry."""
        recorded = await flow.record_transaction("120", "Groceries", "Grocery")
        assert recorded.success
        assert recorded.title == "Transaction Added"
        
        assert [t.id for t in await flow.list_transactions()] == [recorded.transaction_id]
        
        deleted = await flow.delete_transaction(recorded.transaction_id)
        assert deleted.title == "Transaction Deleted"
        assert await flow.list_transactions() == []
    
    @pytest.mark.asyncio
    async def test_history(self, flow):
        """Test a mandate's audit trail is returned oldest first."""
        await flow.skip("m1")
        await flow.pay("m1", "650")
        history = await flow.history("m1")
        assert [e.event_type for e in history] == [
            AuditEventType.MONTH_SKIPPED,
            AuditEventType.MANDATE_PAID,
        ]


class TestReads:
    """Tests for list and summary."""
    
    @pytest.fixture
    def flow(self, clock, audit_logger):
        mandates = [
            make_mandate("m1", "Rent", "15000.00", last_paid_date=clock.now),
            make_mandate("m2", "netflix", "649.00"),
            make_mandate("m3", "Broadband", "999.00", skipped_months=["2024-03"]),
        ]
        engine = ReconciliationEngine(
            InMemoryDocumentStore(seed(*mandates)), OWNER,
            audit_logger=audit_logger, clock=clock,
            validator=MandateValidator(max_amount=100000),
        )
        return MandateFlow(engine, audit_logger)
    
    @pytest.mark.asyncio
    async def test_list_sorted_by_name_paid_last(self, flow):
        """Test default order is by name with paid mandates last."""
        views = await flow.list_mandates()
        assert [v.mandate.id for v in views] == ["m3", "m2", "m1"]
        assert [v.settlement for v in views] == [Settlement.SKIPPED, Settlement.PENDING, Settlement.PAID]
    
    @pytest.mark.asyncio
    async def test_list_follows_order_hint(self, flow):
        """Test hinted ids come first, in hint order, paid still last."""
        views = await flow.list_mandates(order_hint=["m1", "m2", "unknown"])
        assert [v.mandate.id for v in views] == ["m2", "m3", "m1"]
    
    @pytest.mark.asyncio
    async def test_summary(self, flow):
        """Test the summary for the current cycle."""
        summary = await flow.summary()
        assert summary.month_key == "2024-03"
        assert summary.total_paid == Decimal("15000.00")
        assert summary.projected_remaining == Decimal("649.00")
        assert (summary.paid_count, summary.skipped_count, summary.unpaid_count) == (1, 1, 1)


class TestOrderForDisplay:
    """Tests for order_for_display."""
    
    def test_duplicate_hint_ids(self):
        """Test repeated ids in the hint are used once."""
        views = [
            MandateView(mandate=make_mandate("a", "Alpha"), settlement=Settlement.PENDING),
            MandateView(mandate=make_mandate("b", "Beta"), settlement=Settlement.PENDING),
        ]
        ordered = order_for_display(views, ["b", "b", "a"])
        assert [v.mandate.id for v in ordered] == ["b", "a"]


class TestCreateAppComponents:
    """Tests for the component factory."""
    
    def test_memory_backend(self):
        """Test the in-memory backend is wired by default."""
        settings = SimpleNamespace(app=AppSettings(storage_backend=StorageBackend.MEMORY, owner_id="me"))
        flow, engine = create_app_components(settings)
        assert isinstance(flow, MandateFlow)
        assert engine.owner_id == "me"
        assert isinstance(engine._store, InMemoryDocumentStore)
