"""
Reconciliation Engine

The only component allowed to write to the mandate and ledger stores.

OPERATIONS:
- pay:    one atomic transaction creates the ledger entry AND marks
          the mandate paid (lastPaidDate, amount, linkedTransactionId)
- reset:  one atomic batch clears the payment fields AND deletes the
          linked ledger entry, if any
- skip:   records the current month key in skippedMonths (idempotent)
- unskip: removes the current month key (idempotent)

plus the plain user edits (create/edit/delete mandate, record/delete
a ledger entry) so that no caller ever builds store writes itself.

GUARANTEES:
- Input is validated before any store call (ValidationError)
- Either every write of an operation commits or none does; a failed
  commit surfaces as StoreTransactionFailure and is never retried here
- Missing or foreign records surface as NotFoundError

Concurrent pays of one mandate are not serialized: each is atomic on
its own and the last writer wins field by field.
"""

from datetime import datetime
from typing import Any, Optional
from uuid import UUID

import structlog
from pydantic import ValidationError as PydanticValidationError
from pydantic.alias_generators import to_camel

from mandate_tracker.audit import AuditLogger
from mandate_tracker.cycle import Clock, make_clock, month_key
from mandate_tracker.models.mandate import (
    Category,
    Mandate,
    Transaction,
    TransactionType,
    ValidationIssue,
    ValidationResult,
)
from mandate_tracker.services.storage import (
    MANDATES,
    TRANSACTIONS,
    DocumentRef,
    DocumentStoreInterface,
    NotFoundError,
    Snapshot,
    StorageError,
    WriteOp,
)
from mandate_tracker.validation import MandateValidator, ValidationError, parse_amount


def _as_validation_error(exc: PydanticValidationError) -> ValidationError:
    issues = [
        ValidationIssue(
            field=".".join(str(p) for p in err["loc"]) or "input",
            issue_type="invalid_value",
            message=err["msg"],
            severity="error",
        )
        for err in exc.errors()
    ]
    return ValidationError.from_issues(issues)


def _document_fields(model: Mandate, *fields: str) -> dict[str, Any]:
    """Persisted (camelCase, JSON-safe) values of the named fields."""
    document = model.to_document()
    return {to_camel(f): document[to_camel(f)] for f in fields}


class ReconciliationEngine:
    """
    Executes mandate and ledger operations for one owner.
    
    "now" is read from the clock once per operation.
    """
    
    def __init__(
        self,
        store: DocumentStoreInterface,
        owner_id: str,
        audit_logger: Optional[AuditLogger] = None,
        validator: Optional[MandateValidator] = None,
        clock: Optional[Clock] = None,
        default_due_day: int = 1,
    ):
        """
        Args:
            store: Backend holding both collections
            owner_id: Owner whose records this engine manages
            audit_logger: Receives an event for every committed change
            validator: Mandate field validator (default thresholds if None)
            clock: Wall-clock reader; local time if None
            default_due_day: Due day for mandates created without one
        """
        self._store = store
        self._owner_id = owner_id
        self._audit = audit_logger
        self._validator = validator or MandateValidator()
        self._clock = clock or make_clock()
        self._default_due_day = default_due_day
        self._logger = structlog.get_logger()
    
    @property
    def owner_id(self) -> str:
        return self._owner_id
    
    def now(self) -> datetime:
        return self._clock()
    
    # =========================================================================
    # READS
    # =========================================================================
    
    def _owned_mandate(self, document: Optional[dict], mandate_id: str) -> Mandate:
        if document is None or document.get("ownerId") != self._owner_id:
            raise NotFoundError(f"Mandate not found: {mandate_id}")
        try:
            return Mandate.from_document(document)
        except PydanticValidationError as e:
            raise StorageError(f"Stored mandate {mandate_id} is malformed: {e}")
    
    async def get_mandate(self, mandate_id: str) -> Mandate:
        """
        Raises:
            NotFoundError: If the mandate is absent or belongs to another owner
        """
        document = await self._store.get_document(MANDATES, mandate_id)
        return self._owned_mandate(document, mandate_id)
    
    async def list_mandates(self) -> list[Mandate]:
        """All of the owner's mandates. Malformed documents are skipped."""
        mandates = []
        for document in await self._store.list_documents(MANDATES, owner_id=self._owner_id):
            try:
                mandates.append(Mandate.from_document(document))
            except PydanticValidationError as e:
                self._logger.warning(
                    "malformed_mandate_skipped",
                    mandate_id=document.get("id"),
                    error=str(e),
                )
        return mandates
    
    async def list_transactions(self) -> list[Transaction]:
        """The owner's ledger, newest first. Malformed documents are skipped."""
        transactions = []
        for document in await self._store.list_documents(TRANSACTIONS, owner_id=self._owner_id):
            try:
                transactions.append(Transaction.from_document(document))
            except PydanticValidationError as e:
                self._logger.warning(
                    "malformed_transaction_skipped",
                    transaction_id=document.get("id"),
                    error=str(e),
                )
        transactions.sort(key=lambda t: t.date, reverse=True)
        return transactions
    
    # =========================================================================
    # RECONCILIATION
    # =========================================================================
    
    async def pay(
        self,
        mandate_id: str,
        confirmed_amount: Any,
        correlation_id: Optional[UUID] = None,
    ) -> tuple[Mandate, Transaction]:
        """
        Mark a mandate paid for the current cycle.
        
        The confirmed amount may differ from the expected amount (variable
        bills); it becomes the mandate's new expected amount.
        
        Returns:
            (mandate_after, ledger_entry_created)
        
        Raises:
            ValidationError: If confirmed_amount is not a positive number
            NotFoundError: If the mandate does not exist
            StoreTransactionFailure: If the commit did not happen
        """
        amount = parse_amount(confirmed_amount, field="confirmed_amount")
        now = self._clock()
        ref = DocumentRef(MANDATES, mandate_id)
        transaction_id = self._store.new_document_id(TRANSACTIONS)
        committed: dict[str, Any] = {}
        
        def writer(snapshot: Snapshot) -> list[WriteOp]:
            mandate = self._owned_mandate(snapshot[ref], mandate_id)
            transaction = Transaction(
                id=transaction_id,
                owner_id=self._owner_id,
                amount=amount,
                description=f"Payment for {mandate.name}",
                category=mandate.category,
                type=TransactionType.EXPENSE,
                date=now,
            )
            paid = mandate.model_copy(update={
                "last_paid_date": now,
                "amount": amount,
                "linked_transaction_id": transaction_id,
            })
            committed["mandate"] = paid
            committed["transaction"] = transaction
            return [
                WriteOp.create(TRANSACTIONS, transaction_id, transaction.to_document()),
                WriteOp.update(
                    MANDATES,
                    mandate_id,
                    _document_fields(paid, "last_paid_date", "amount", "linked_transaction_id"),
                ),
            ]
        
        await self._store.run_transaction([ref], writer)
        
        mandate: Mandate = committed["mandate"]
        transaction: Transaction = committed["transaction"]
        if self._audit:
            await self._audit.log_mandate_paid(
                mandate_id=mandate_id,
                name=mandate.name,
                amount=str(amount),
                transaction_id=transaction.id,
                correlation_id=correlation_id,
            )
        return mandate, transaction
    
    async def reset(
        self,
        mandate_id: str,
        correlation_id: Optional[UUID] = None,
    ) -> Mandate:
        """
        Undo the current payment of a mandate.
        
        Clears lastPaidDate and linkedTransactionId and deletes the linked
        ledger entry in one batch. The amount is NOT restored to what it
        was before the payment.
        
        Returns:
            The mandate as it is after the reset
        
        Raises:
            NotFoundError: If the mandate does not exist
            StoreTransactionFailure: If the commit did not happen
        """
        mandate = await self.get_mandate(mandate_id)
        linked_id = mandate.linked_transaction_id
        
        cleared = mandate.model_copy(update={
            "last_paid_date": None,
            "linked_transaction_id": None,
        })
        write_ops = [
            WriteOp.update(
                MANDATES,
                mandate_id,
                _document_fields(cleared, "last_paid_date", "linked_transaction_id"),
            ),
        ]
        if linked_id:
            write_ops.append(WriteOp.delete(TRANSACTIONS, linked_id))
        
        await self._store.run_batch(write_ops)
        
        if self._audit:
            await self._audit.log_payment_reset(
                mandate_id=mandate_id,
                name=mandate.name,
                deleted_transaction_id=linked_id,
                correlation_id=correlation_id,
            )
        return cleared
    
    async def _update_skipped_months(
        self,
        mandate_id: str,
        key: str,
        add: bool,
    ) -> tuple[Mandate, bool]:
        """
        Read-modify-write of skippedMonths inside a transaction.
        
        Returns:
            (mandate_after, changed)
        """
        ref = DocumentRef(MANDATES, mandate_id)
        result: dict[str, Any] = {}
        
        def writer(snapshot: Snapshot) -> list[WriteOp]:
            mandate = self._owned_mandate(snapshot[ref], mandate_id)
            months = list(mandate.skipped_months)
            
            if add == (key in months):
                result["mandate"], result["changed"] = mandate, False
                return []
            
            months = months + [key] if add else [m for m in months if m != key]
            updated = mandate.model_copy(update={"skipped_months": months})
            result["mandate"], result["changed"] = updated, True
            return [WriteOp.update(MANDATES, mandate_id, _document_fields(updated, "skipped_months"))]
        
        await self._store.run_transaction([ref], writer)
        return result["mandate"], result["changed"]
    
    async def skip(
        self,
        mandate_id: str,
        correlation_id: Optional[UUID] = None,
    ) -> Mandate:
        """
        Record the current month as skipped. Calling it twice is harmless.
        
        Raises:
            NotFoundError: If the mandate does not exist
            StoreTransactionFailure: If the commit did not happen
        """
        key = month_key(self._clock())
        mandate, changed = await self._update_skipped_months(mandate_id, key, add=True)
        
        if changed and self._audit:
            await self._audit.log_month_skipped(
                mandate_id=mandate_id,
                name=mandate.name,
                month=key,
                correlation_id=correlation_id,
            )
        return mandate
    
    async def unskip(
        self,
        mandate_id: str,
        correlation_id: Optional[UUID] = None,
    ) -> Mandate:
        """
        Remove the current month from skippedMonths, if present.
        
        Raises:
            NotFoundError: If the mandate does not exist
            StoreTransactionFailure: If the commit did not happen
        """
        key = month_key(self._clock())
        mandate, changed = await self._update_skipped_months(mandate_id, key, add=False)
        
        if changed and self._audit:
            await self._audit.log_skip_removed(
                mandate_id=mandate_id,
                name=mandate.name,
                month=key,
                correlation_id=correlation_id,
            )
        return mandate
    
    # =========================================================================
    # MANDATE MANAGEMENT
    # =========================================================================
    
    async def create_mandate(
        self,
        name: Any,
        category: Any,
        amount: Any,
        due_day: Any = None,
        correlation_id: Optional[UUID] = None,
    ) -> tuple[Mandate, ValidationResult]:
        """
        Create a new mandate. It starts Pending: never paid, nothing skipped.
        
        Returns:
            (mandate, validation_result) - the result carries any warnings
        
        Raises:
            ValidationError: If a field is missing or invalid
        """
        fields = {"name": name, "category": category, "amount": amount}
        fields["due_day"] = self._default_due_day if due_day is None else due_day
        cleaned, result = self._validator.require_valid(fields)
        
        existing = await self.list_mandates()
        result.issues.extend(self._validator.duplicate_name_issues(cleaned["name"], existing, None))
        
        mandate = Mandate(
            id=self._store.new_document_id(MANDATES),
            owner_id=self._owner_id,
            **cleaned,
        )
        await self._store.create_document(MANDATES, mandate.to_document(), document_id=mandate.id)
        
        if self._audit:
            await self._audit.log_mandate_created(
                mandate_id=mandate.id,
                name=mandate.name,
                amount=str(mandate.amount),
                correlation_id=correlation_id,
            )
        return mandate, result
    
    async def edit_mandate(
        self,
        mandate_id: str,
        changes: dict[str, Any],
        correlation_id: Optional[UUID] = None,
    ) -> tuple[Mandate, ValidationResult]:
        """
        Change name, category, amount and/or due_day.
        
        Settlement facts cannot be edited here.
        
        Raises:
            ValidationError: If no change is given or a field is invalid
            NotFoundError: If the mandate does not exist
        """
        if not changes:
            raise ValidationError("Nothing to update", [ValidationIssue(
                field="changes",
                issue_type="missing",
                message="Nothing to update",
                severity="error",
            )])
        cleaned, result = self._validator.require_valid(changes)
        
        mandate = await self.get_mandate(mandate_id)
        if "name" in cleaned:
            existing = await self.list_mandates()
            result.issues.extend(
                self._validator.duplicate_name_issues(cleaned["name"], existing, mandate_id)
            )
        
        updated = mandate.model_copy(update=cleaned)
        await self._store.update_document(
            MANDATES,
            mandate_id,
            _document_fields(updated, *cleaned),
        )
        
        if self._audit:
            await self._audit.log_mandate_updated(
                mandate_id=mandate_id,
                changes={k: str(v.value if isinstance(v, Category) else v) for k, v in cleaned.items()},
                correlation_id=correlation_id,
            )
        return updated, result
    
    async def delete_mandate(
        self,
        mandate_id: str,
        correlation_id: Optional[UUID] = None,
    ) -> Mandate:
        """
        Delete a mandate. Its linked ledger entry, if any, is kept.
        
        Returns:
            The mandate as it was before deletion
        
        Raises:
            NotFoundError: If the mandate does not exist
        """
        mandate = await self.get_mandate(mandate_id)
        await self._store.delete_document(MANDATES, mandate_id)
        
        if self._audit:
            await self._audit.log_mandate_deleted(
                mandate_id=mandate_id,
                name=mandate.name,
                linked_transaction_id=mandate.linked_transaction_id,
                correlation_id=correlation_id,
            )
        return mandate
    
    # =========================================================================
    # LEDGER
    # =========================================================================
    
    async def record_transaction(
        self,
        amount: Any,
        description: str,
        category: Any,
        transaction_type: Any = TransactionType.EXPENSE,
        date: Optional[datetime] = None,
        correlation_id: Optional[UUID] = None,
    ) -> Transaction:
        """
        Add a user-entered ledger entry (not tied to any mandate).
        
        Raises:
            ValidationError: If any field is invalid
        """
        parsed_amount = parse_amount(amount)
        try:
            transaction = Transaction(
                id=self._store.new_document_id(TRANSACTIONS),
                owner_id=self._owner_id,
                amount=parsed_amount,
                description=description,
                category=category,
                type=transaction_type,
                date=date or self._clock(),
            )
        except PydanticValidationError as e:
            raise _as_validation_error(e)
        
        await self._store.create_document(
            TRANSACTIONS,
            transaction.to_document(),
            document_id=transaction.id,
        )
        
        if self._audit:
            await self._audit.log_transaction_recorded(
                transaction_id=transaction.id,
                description=transaction.description,
                amount=str(transaction.amount),
                transaction_type=transaction.type.value,
                correlation_id=correlation_id,
            )
        return transaction
    
    async def delete_transaction(
        self,
        transaction_id: str,
        correlation_id: Optional[UUID] = None,
    ) -> None:
        """
        Delete a ledger entry.
        
        A mandate still linking to it keeps the (now dangling) link until
        its next reset or payment.
        
        Raises:
            NotFoundError: If the transaction does not exist
        """
        document = await self._store.get_document(TRANSACTIONS, transaction_id)
        if document is None or document.get("ownerId") != self._owner_id:
            raise NotFoundError(f"Transaction not found: {transaction_id}")
        
        await self._store.delete_document(TRANSACTIONS, transaction_id)
        
        if self._audit:
            await self._audit.log_transaction_deleted(
                transaction_id=transaction_id,
                correlation_id=correlation_id,
            )
