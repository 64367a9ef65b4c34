"""
Audit Logger

DESIGN DECISION: Every change to a mandate or the ledger is logged.
This provides:
1. Complete traceability of payments, resets and skips
2. Debugging capability when a commit fails
3. A per-mandate history the user can look at

The audit logger:
- Is async to match the storage interface
- Gracefully handles failures (doesn't crash the app if logging fails)
- Supports correlation IDs to trace related events
"""

from typing import Any, Optional
from uuid import UUID, uuid4

import structlog

from mandate_tracker.models.audit import AuditEvent, AuditEventBuilder
from mandate_tracker.services.storage import AuditStorageInterface


# Configure structlog for local logging
structlog.configure(
    processors=[
        structlog.stdlib.filter_by_level,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.add_log_level,
        structlog.stdlib.PositionalArgumentsFormatter(),
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
        structlog.processors.UnicodeDecoder(),
        structlog.processors.JSONRenderer()
    ],
    wrapper_class=structlog.stdlib.BoundLogger,
    context_class=dict,
    logger_factory=structlog.stdlib.LoggerFactory(),
    cache_logger_on_first_use=True,
)


class AuditLogger:
    """
    Central audit logging service.
    
    Logs events both to:
    1. Structured local log (for debugging)
    2. Audit storage (for persistence and mandate history)
    """
    
    def __init__(
        self,
        storage: Optional[AuditStorageInterface] = None,
    ):
        """
        Initialize audit logger.
        
        Args:
            storage: Storage backend for persistence.
                    If None, only logs locally.
        """
        self._storage = storage
        self._logger = structlog.get_logger()
    
    @property
    def storage(self) -> Optional[AuditStorageInterface]:
        return self._storage
    
    async def log(self, event: AuditEvent) -> bool:
        """
        Log an audit event.
        
        Always logs locally. Persists to storage if available.
        
        Returns True if storage write succeeded (or no storage configured).
        """
        log_dict = event.to_log_dict()
        
        if event.severity.value in ("error", "critical"):
            self._logger.error("audit_event", **log_dict)
        elif event.severity.value == "warning":
            self._logger.warning("audit_event", **log_dict)
        else:
            self._logger.info("audit_event", **log_dict)
        
        if self._storage:
            try:
                return await self._storage.append_event(event)
            except Exception as e:
                # Log failure but don't raise
                self._logger.error(
                    "audit_storage_failed",
                    error=str(e),
                    event_id=str(event.event_id),
                )
                return False
        
        return True
    
    async def log_mandate_created(
        self,
        mandate_id: str,
        name: str,
        amount: str,
        correlation_id: Optional[UUID] = None,
    ) -> None:
        """Log mandate creation."""
        await self.log(AuditEventBuilder.mandate_created(
            mandate_id=mandate_id,
            name=name,
            amount=amount,
            correlation_id=correlation_id,
        ))
    
    async def log_mandate_updated(
        self,
        mandate_id: str,
        changes: dict[str, Any],
        correlation_id: Optional[UUID] = None,
    ) -> None:
        """Log an edit of name/category/amount/due day."""
        await self.log(AuditEventBuilder.mandate_updated(
            mandate_id=mandate_id,
            changes=changes,
            correlation_id=correlation_id,
        ))
    
    async def log_mandate_deleted(
        self,
        mandate_id: str,
        name: str,
        linked_transaction_id: Optional[str],
        correlation_id: Optional[UUID] = None,
    ) -> None:
        await self.log(AuditEventBuilder.mandate_deleted(
            mandate_id=mandate_id,
            name=name,
            linked_transaction_id=linked_transaction_id,
            correlation_id=correlation_id,
        ))
    
    async def log_mandate_paid(
        self,
        mandate_id: str,
        name: str,
        amount: str,
        transaction_id: str,
        correlation_id: Optional[UUID] = None,
    ) -> None:
        """Log a committed payment."""
        await self.log(AuditEventBuilder.mandate_paid(
            mandate_id=mandate_id,
            name=name,
            amount=amount,
            transaction_id=transaction_id,
            correlation_id=correlation_id,
        ))
    
    async def log_payment_reset(
        self,
        mandate_id: str,
        name: str,
        deleted_transaction_id: Optional[str],
        correlation_id: Optional[UUID] = None,
    ) -> None:
        """Log a committed reset."""
        await self.log(AuditEventBuilder.payment_reset(
            mandate_id=mandate_id,
            name=name,
            deleted_transaction_id=deleted_transaction_id,
            correlation_id=correlation_id,
        ))
    
    async def log_month_skipped(
        self,
        mandate_id: str,
        name: str,
        month: str,
        correlation_id: Optional[UUID] = None,
    ) -> None:
        await self.log(AuditEventBuilder.month_skipped(
            mandate_id=mandate_id,
            name=name,
            month=month,
            correlation_id=correlation_id,
        ))
    
    async def log_skip_removed(
        self,
        mandate_id: str,
        name: str,
        month: str,
        correlation_id: Optional[UUID] = None,
    ) -> None:
        await self.log(AuditEventBuilder.skip_removed(
            mandate_id=mandate_id,
            name=name,
            month=month,
            correlation_id=correlation_id,
        ))
    
    async def log_transaction_recorded(
        self,
        transaction_id: str,
        description: str,
        amount: str,
        transaction_type: str,
        correlation_id: Optional[UUID] = None,
    ) -> None:
        await self.log(AuditEventBuilder.transaction_recorded(
            transaction_id=transaction_id,
            description=description,
            amount=amount,
            transaction_type=transaction_type,
            correlation_id=correlation_id,
        ))
    
    async def log_transaction_deleted(
        self,
        transaction_id: str,
        correlation_id: Optional[UUID] = None,
    ) -> None:
        await self.log(AuditEventBuilder.transaction_deleted(
            transaction_id=transaction_id,
            correlation_id=correlation_id,
        ))
    
    async def log_operation_rejected(
        self,
        operation: str,
        entity_id: Optional[str],
        issues: list[dict],
        correlation_id: Optional[UUID] = None,
    ) -> None:
        """Log input rejected by validation."""
        await self.log(AuditEventBuilder.operation_rejected(
            operation=operation,
            entity_id=entity_id,
            issues=issues,
            correlation_id=correlation_id,
        ))
    
    async def log_operation_failed(
        self,
        operation: str,
        entity_id: Optional[str],
        error_kind: str,
        error_message: str,
        correlation_id: Optional[UUID] = None,
    ) -> None:
        """Log a missing record or a commit that did not happen."""
        await self.log(AuditEventBuilder.operation_failed(
            operation=operation,
            entity_id=entity_id,
            error_kind=error_kind,
            error_message=error_message,
            correlation_id=correlation_id,
        ))
    
    async def log_error(
        self,
        error_type: str,
        error_message: str,
        details: Optional[dict] = None,
        correlation_id: Optional[UUID] = None,
    ) -> None:
        """Log an error."""
        await self.log(AuditEventBuilder.system_error(
            error_type=error_type,
            error_message=error_message,
            details=details,
            correlation_id=correlation_id,
        ))


def create_correlation_id() -> UUID:
    """
    Create a new correlation ID for tracking related events.
    
    Use this at the start of a new user action (e.g., marking a bill paid).
    Pass it through all subsequent operations.
    """
    return uuid4()
