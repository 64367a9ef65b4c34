"""
Main Orchestrator for Mandate Tracker

This module ties the components together and is the only surface a
UI talks to:
1. Mandate list (classified, in display order) and cycle summary
2. User actions (add/edit/delete, pay, reset, skip, unskip)
3. Direct ledger entries

DESIGN DECISION: The orchestrator enforces the boundaries:
- Writes only ever go through the ReconciliationEngine
- Every outcome, good or bad, comes back as an OperationResult the UI
  can show as-is; the error_kind tells a rejected input from a missing
  record from a failed write
- Every failure is audited

Display ordering (a saved drag order, paid bills sinking to the
bottom) lives here, not in the core: it never affects settlement.
"""

from decimal import Decimal
from typing import Any, Awaitable, Callable, Optional, Sequence
from uuid import UUID

import structlog

from mandate_tracker.audit import AuditLogger, create_correlation_id
from mandate_tracker.config import Settings, StorageBackend, get_settings
from mandate_tracker.cycle import Clock, make_clock
from mandate_tracker.models.audit import AuditEvent
from mandate_tracker.models.mandate import (
    CycleSummary,
    MandateView,
    OperationResult,
    Settlement,
    Transaction,
    TransactionType,
)
from mandate_tracker.reconciliation import ReconciliationEngine, aggregate, classify
from mandate_tracker.services.storage import (
    AuditStorageInterface,
    DocumentStoreInterface,
    GoogleSheetsAuditStorage,
    GoogleSheetsClient,
    GoogleSheetsDocumentStore,
    InMemoryAuditStorage,
    InMemoryDocumentStore,
    NotFoundError,
    StorageError,
)
from mandate_tracker.validation import MandateValidator, ValidationError


def format_inr(amount: Decimal) -> str:
    return f"₹{amount:,.2f}"


def order_for_display(
    views: list[MandateView],
    order_hint: Optional[Sequence[str]] = None,
) -> list[MandateView]:
    """
    Order mandates the way the list shows them.
    
    With an order hint (ids in the user's saved drag order), hinted
    mandates come first in that order and the rest follow in their
    given order; unknown ids in the hint are ignored. Without a hint,
    mandates are sorted by name. Paid mandates then move below unpaid
    ones, keeping their relative order.
    """
    if order_hint:
        by_id = {v.mandate.id: v for v in views}
        hint = list(dict.fromkeys(order_hint))
        ordered = [by_id[i] for i in hint if i in by_id]
        hinted = set(hint)
        ordered += [v for v in views if v.mandate.id not in hinted]
    else:
        ordered = sorted(views, key=lambda v: v.mandate.name.casefold())
    
    return sorted(ordered, key=lambda v: v.is_paid)


class MandateFlow:
    """
    Orchestrates the mandate page.
    
    Every action method returns an OperationResult and never raises for
    validation, not-found or storage failures; anything else propagates.
    """
    
    def __init__(
        self,
        engine: ReconciliationEngine,
        audit_logger: Optional[AuditLogger] = None,
    ):
        self._engine = engine
        self._audit_logger = audit_logger
        self._logger = structlog.get_logger()
    
    @property
    def engine(self) -> ReconciliationEngine:
        return self._engine
    
    # =========================================================================
    # READS
    # =========================================================================
    
    async def list_mandates(
        self,
        order_hint: Optional[Sequence[str]] = None,
    ) -> list[MandateView]:
        """Mandates with their settlement for the current cycle, in display order."""
        now = self._engine.now()
        views = [
            MandateView(mandate=m, settlement=classify(m, now))
            for m in await self._engine.list_mandates()
        ]
        return order_for_display(views, order_hint)
    
    async def summary(self) -> CycleSummary:
        """Totals and counts for the current cycle."""
        now = self._engine.now()
        return aggregate(await self._engine.list_mandates(), now)
    
    async def list_transactions(self) -> list[Transaction]:
        return await self._engine.list_transactions()
    
    async def history(self, mandate_id: str) -> list[AuditEvent]:
        """Audit trail of one mandate, oldest first (empty without audit storage)."""
        if not self._audit_logger or not self._audit_logger.storage:
            return []
        return await self._audit_logger.storage.get_events_by_entity("mandate", mandate_id)
    
    # =========================================================================
    # ACTIONS
    # =========================================================================
    
    async def _run(
        self,
        operation: str,
        mandate_id: Optional[str],
        action: Callable[[UUID], Awaitable[Any]],
        on_success: Callable[[Any], OperationResult],
        failure_message: str,
    ) -> OperationResult:
        """
        Run one engine call and translate its outcome.
        
        NotFoundError is checked before StorageError (it is a subclass).
        """
        correlation_id = create_correlation_id()
        
        try:
            outcome = await action(correlation_id)
        except ValidationError as e:
            if self._audit_logger:
                await self._audit_logger.log_operation_rejected(
                    operation=operation,
                    entity_id=mandate_id,
                    issues=[
                        {"field": i.field, "type": i.issue_type, "message": i.message}
                        for i in e.issues
                    ],
                    correlation_id=correlation_id,
                )
            return OperationResult(
                operation=operation,
                success=False,
                mandate_id=mandate_id,
                title="Invalid input",
                message=str(e),
                error_kind="validation",
                error_message=str(e),
            )
        except NotFoundError as e:
            return await self._failed(operation, mandate_id, "not_found", e, failure_message, correlation_id)
        except StorageError as e:
            return await self._failed(operation, mandate_id, "store_failure", e, failure_message, correlation_id)
        
        return on_success(outcome)
    
    async def _failed(
        self,
        operation: str,
        mandate_id: Optional[str],
        error_kind: str,
        error: Exception,
        failure_message: str,
        correlation_id: UUID,
    ) -> OperationResult:
        self._logger.error(
            "operation_failed",
            operation=operation,
            mandate_id=mandate_id,
            error_kind=error_kind,
            error=str(error),
        )
        if self._audit_logger:
            await self._audit_logger.log_operation_failed(
                operation=operation,
                entity_id=mandate_id,
                error_kind=error_kind,
                error_message=str(error),
                correlation_id=correlation_id,
            )
        return OperationResult(
            operation=operation,
            success=False,
            mandate_id=mandate_id,
            title="Error",
            message=failure_message,
            error_kind=error_kind,
            error_message=str(error),
        )
    
    async def create(
        self,
        name: Any,
        category: Any,
        amount: Any,
        due_day: Any = None,
    ) -> OperationResult:
        """Add a new mandate."""
        return await self._run(
            "create",
            None,
            lambda cid: self._engine.create_mandate(name, category, amount, due_day, correlation_id=cid),
            lambda outcome: OperationResult(
                operation="create",
                success=True,
                mandate_id=outcome[0].id,
                title="Success",
                message="Bill added successfully.",
                warnings=outcome[1].warnings,
            ),
            "Could not add the bill.",
        )
    
    async def edit(self, mandate_id: str, **changes: Any) -> OperationResult:
        """Change name, category, amount and/or due_day of a mandate."""
        return await self._run(
            "edit",
            mandate_id,
            lambda cid: self._engine.edit_mandate(mandate_id, changes, correlation_id=cid),
            lambda outcome: OperationResult(
                operation="edit",
                success=True,
                mandate_id=mandate_id,
                title="Success",
                message="Bill updated successfully.",
                warnings=outcome[1].warnings,
            ),
            "Could not update the bill.",
        )
    
    async def delete(self, mandate_id: str) -> OperationResult:
        """Delete a mandate (its past payment stays in the ledger)."""
        return await self._run(
            "delete",
            mandate_id,
            lambda cid: self._engine.delete_mandate(mandate_id, correlation_id=cid),
            lambda mandate: OperationResult(
                operation="delete",
                success=True,
                mandate_id=mandate_id,
                title="Bill Deleted",
                message=f'The bill "{mandate.name}" has been removed.',
            ),
            "Could not delete the bill.",
        )
    
    async def pay(self, mandate_id: str, confirmed_amount: Any) -> OperationResult:
        """Confirm payment of a mandate for the amount actually paid."""
        return await self._run(
            "pay",
            mandate_id,
            lambda cid: self._engine.pay(mandate_id, confirmed_amount, correlation_id=cid),
            lambda outcome: OperationResult(
                operation="pay",
                success=True,
                mandate_id=mandate_id,
                transaction_id=outcome[1].id,
                title="Payment Confirmed",
                message=f"{outcome[0].name} marked as paid for {format_inr(outcome[1].amount)}.",
            ),
            "Could not mark bill as paid.",
        )
    
    async def reset(self, mandate_id: str) -> OperationResult:
        """Undo this month's payment of a mandate."""
        return await self._run(
            "reset",
            mandate_id,
            lambda cid: self._engine.reset(mandate_id, correlation_id=cid),
            lambda mandate: OperationResult(
                operation="reset",
                success=True,
                mandate_id=mandate_id,
                title="Payment Reset",
                message=self._reset_message(mandate),
            ),
            "Could not reset the bill payment.",
        )
    
    def _reset_message(self, mandate) -> str:
        if classify(mandate, self._engine.now()) == Settlement.SKIPPED:
            return f"{mandate.name} has been reset and stays skipped for this month."
        return f"{mandate.name} has been marked as pending."
    
    async def skip(self, mandate_id: str) -> OperationResult:
        """Skip a mandate for the current month."""
        return await self._run(
            "skip",
            mandate_id,
            lambda cid: self._engine.skip(mandate_id, correlation_id=cid),
            lambda mandate: OperationResult(
                operation="skip",
                success=True,
                mandate_id=mandate_id,
                title="Bill Skipped",
                message=f"{mandate.name} marked as skipped for this month.",
            ),
            "Could not skip bill for this month.",
        )
    
    async def unskip(self, mandate_id: str) -> OperationResult:
        """Remove this month's skip from a mandate."""
        return await self._run(
            "unskip",
            mandate_id,
            lambda cid: self._engine.unskip(mandate_id, correlation_id=cid),
            lambda mandate: OperationResult(
                operation="unskip",
                success=True,
                mandate_id=mandate_id,
                title="Skip Removed",
                message=f"{mandate.name} is now pending for this month.",
            ),
            "Could not remove skip for this month.",
        )
    
    async def record_transaction(
        self,
        amount: Any,
        description: str,
        category: Any,
        transaction_type: Any = TransactionType.EXPENSE,
    ) -> OperationResult:
        """Add a ledger entry that is not tied to a mandate."""
        return await self._run(
            "record",
            None,
            lambda cid: self._engine.record_transaction(
                amount, description, category, transaction_type, correlation_id=cid
            ),
            lambda txn: OperationResult(
                operation="record",
                success=True,
                transaction_id=txn.id,
                title="Transaction Added",
                message=f"{txn.description} recorded for {format_inr(txn.amount)}.",
            ),
            "Could not add the transaction.",
        )
    
    async def delete_transaction(self, transaction_id: str) -> OperationResult:
        """Delete a ledger entry."""
        return await self._run(
            "delete_transaction",
            None,
            lambda cid: self._engine.delete_transaction(transaction_id, correlation_id=cid),
            lambda _: OperationResult(
                operation="delete_transaction",
                success=True,
                transaction_id=transaction_id,
                title="Transaction Deleted",
                message="The transaction has been removed.",
            ),
            "Could not delete the transaction.",
        )


def create_app_components(
    settings: Optional[Settings] = None,
    clock: Optional[Clock] = None,
) -> tuple[MandateFlow, ReconciliationEngine]:
    """
    Factory function to create all application components.
    
    Args:
        settings: Settings to use (cached settings if None)
        clock: Wall-clock reader (configured timezone if None)
    
    Returns:
        (mandate_flow, engine)
    """
    settings = settings or get_settings()
    app = settings.app
    logger = structlog.get_logger()
    
    store: DocumentStoreInterface
    audit_storage: AuditStorageInterface
    
    if app.storage_backend == StorageBackend.GOOGLE_SHEETS:
        try:
            sheets_client = GoogleSheetsClient(settings.google_sheets)
            store = GoogleSheetsDocumentStore(sheets_client)
            audit_storage = GoogleSheetsAuditStorage(sheets_client)
        except Exception as e:
            # Storage not configured - continue in memory, loudly
            logger.error("storage_not_configured", backend=app.storage_backend.value, error=str(e))
            store = InMemoryDocumentStore()
            audit_storage = InMemoryAuditStorage()
    else:
        store = InMemoryDocumentStore()
        audit_storage = InMemoryAuditStorage()
    
    audit_logger = AuditLogger(audit_storage)
    
    engine = ReconciliationEngine(
        store=store,
        owner_id=app.owner_id,
        audit_logger=audit_logger,
        validator=MandateValidator(max_amount=app.max_mandate_amount),
        clock=clock or make_clock(app.tzinfo),
        default_due_day=app.default_due_day,
    )
    flow = MandateFlow(engine=engine, audit_logger=audit_logger)
    
    return flow, engine
