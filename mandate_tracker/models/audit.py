"""
Audit Models for Mandate Tracker

Every change to a mandate or the ledger is logged for audit purposes.
This provides:
1. A history of each mandate (when it was paid, reset, skipped)
2. Debugging information when a write fails
3. Ability to reconstruct why the ledger looks the way it does

DESIGN DECISION: Audit logs are append-only. We never delete or modify them.
"""

import json
from datetime import datetime
from enum import Enum
from typing import Any, Optional
from uuid import UUID, uuid4

from pydantic import BaseModel, Field


class AuditEventType(str, Enum):
    """Types of events we audit."""
    # Mandate management
    MANDATE_CREATED = "mandate_created"
    MANDATE_UPDATED = "mandate_updated"
    MANDATE_DELETED = "mandate_deleted"
    
    # Reconciliation
    MANDATE_PAID = "mandate_paid"
    PAYMENT_RESET = "payment_reset"
    MONTH_SKIPPED = "month_skipped"
    SKIP_REMOVED = "skip_removed"
    
    # Ledger
    TRANSACTION_RECORDED = "transaction_recorded"
    TRANSACTION_DELETED = "transaction_deleted"
    
    # Failures
    OPERATION_REJECTED = "operation_rejected"
    OPERATION_FAILED = "operation_failed"
    SYSTEM_ERROR = "system_error"


class AuditSeverity(str, Enum):
    """Severity level for audit events."""
    DEBUG = "debug"
    INFO = "info"
    WARNING = "warning"
    ERROR = "error"
    CRITICAL = "critical"


class AuditEvent(BaseModel):
    """
    A single audit event.
    
    This is the core unit of our audit trail.
    Every significant action creates one of these.
    """
    
    # Identity
    event_id: UUID = Field(
        default_factory=uuid4,
        description="Unique event identifier"
    )
    timestamp: datetime = Field(
        default_factory=datetime.now,
        description="When the event occurred"
    )
    
    # Event classification
    event_type: AuditEventType = Field(
        ...,
        description="Type of event"
    )
    severity: AuditSeverity = Field(
        default=AuditSeverity.INFO,
        description="Event severity"
    )
    
    # Context - what entity is this about?
    entity_type: Optional[str] = Field(
        default=None,
        description="Type of entity ('mandate' or 'transaction')"
    )
    entity_id: Optional[str] = Field(
        default=None,
        description="ID of the entity this event relates to"
    )
    
    # Correlation - for tracking related events
    correlation_id: Optional[UUID] = Field(
        default=None,
        description="ID to correlate related events (e.g., all events of one user action)"
    )
    
    description: str = Field(
        ...,
        max_length=500,
        description="Human-readable description of what happened"
    )
    details: dict[str, Any] = Field(
        default_factory=dict,
        description="Additional event-specific data"
    )
    
    # Error information (if applicable)
    error_code: Optional[str] = None
    error_message: Optional[str] = None
    
    is_user_action: bool = Field(
        default=False,
        description="Was this triggered by a user action?"
    )
    
    def to_log_dict(self) -> dict:
        """
        Convert to a dictionary suitable for structured logging.
        """
        return {
            "event_id": str(self.event_id),
            "timestamp": self.timestamp.isoformat(),
            "event_type": self.event_type.value,
            "severity": self.severity.value,
            "entity_type": self.entity_type,
            "entity_id": self.entity_id,
            "correlation_id": str(self.correlation_id) if self.correlation_id else None,
            "description": self.description,
            "details": self.details,
            "error_code": self.error_code,
            "error_message": self.error_message,
            "is_user_action": self.is_user_action,
        }
    
    def to_sheets_row(self) -> list:
        """
        Convert to a row suitable for Google Sheets storage.
        
        Returns columns in order:
        [event_id, timestamp, event_type, severity, entity_type, entity_id,
         correlation_id, description, details_json, error_code, error_message,
         is_user_action]
        """
        return [
            str(self.event_id),
            self.timestamp.isoformat(),
            self.event_type.value,
            self.severity.value,
            self.entity_type or "",
            self.entity_id or "",
            str(self.correlation_id) if self.correlation_id else "",
            self.description,
            json.dumps(self.details) if self.details else "",
            self.error_code or "",
            self.error_message or "",
            str(self.is_user_action),
        ]


class AuditEventBuilder:
    """
    Helper class to build audit events with common patterns.
    
    Usage:
        event = AuditEventBuilder.mandate_paid(mandate_id, "Rent", "650.00", txn_id, cid)
        event = AuditEventBuilder.month_skipped(mandate_id, "Rent", "2024-03", cid)
    """
    
    @staticmethod
    def mandate_created(
        mandate_id: str,
        name: str,
        amount: str,
        correlation_id: Optional[UUID] = None
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.MANDATE_CREATED,
            entity_type="mandate",
            entity_id=mandate_id,
            correlation_id=correlation_id,
            description=f"Mandate created: {name} - ₹{amount}",
            details={
                "name": name,
                "amount": amount,
            },
            is_user_action=True,
        )
    
    @staticmethod
    def mandate_updated(
        mandate_id: str,
        changes: dict[str, Any],
        correlation_id: Optional[UUID] = None
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.MANDATE_UPDATED,
            entity_type="mandate",
            entity_id=mandate_id,
            correlation_id=correlation_id,
            description=f"Mandate updated: {', '.join(sorted(changes)) or 'no changes'}",
            details={"changes": changes},
            is_user_action=True,
        )
    
    @staticmethod
    def mandate_deleted(
        mandate_id: str,
        name: str,
        linked_transaction_id: Optional[str],
        correlation_id: Optional[UUID] = None
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.MANDATE_DELETED,
            entity_type="mandate",
            entity_id=mandate_id,
            correlation_id=correlation_id,
            description=f"Mandate deleted: {name}",
            details={
                "name": name,
                "retained_transaction_id": linked_transaction_id,
            },
            is_user_action=True,
        )
    
    @staticmethod
    def mandate_paid(
        mandate_id: str,
        name: str,
        amount: str,
        transaction_id: str,
        correlation_id: Optional[UUID] = None
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.MANDATE_PAID,
            entity_type="mandate",
            entity_id=mandate_id,
            correlation_id=correlation_id,
            description=f"Mandate paid: {name} - ₹{amount}",
            details={
                "amount": amount,
                "transaction_id": transaction_id,
            },
            is_user_action=True,
        )
    
    @staticmethod
    def payment_reset(
        mandate_id: str,
        name: str,
        deleted_transaction_id: Optional[str],
        correlation_id: Optional[UUID] = None
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.PAYMENT_RESET,
            entity_type="mandate",
            entity_id=mandate_id,
            correlation_id=correlation_id,
            description=f"Payment reset: {name}",
            details={
                "deleted_transaction_id": deleted_transaction_id,
            },
            is_user_action=True,
        )
    
    @staticmethod
    def month_skipped(
        mandate_id: str,
        name: str,
        month: str,
        correlation_id: Optional[UUID] = None
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.MONTH_SKIPPED,
            entity_type="mandate",
            entity_id=mandate_id,
            correlation_id=correlation_id,
            description=f"{name} skipped for {month}",
            details={"month": month},
            is_user_action=True,
        )
    
    @staticmethod
    def skip_removed(
        mandate_id: str,
        name: str,
        month: str,
        correlation_id: Optional[UUID] = None
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.SKIP_REMOVED,
            entity_type="mandate",
            entity_id=mandate_id,
            correlation_id=correlation_id,
            description=f"Skip removed for {name} in {month}",
            details={"month": month},
            is_user_action=True,
        )
    
    @staticmethod
    def transaction_recorded(
        transaction_id: str,
        description: str,
        amount: str,
        transaction_type: str,
        correlation_id: Optional[UUID] = None
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.TRANSACTION_RECORDED,
            entity_type="transaction",
            entity_id=transaction_id,
            correlation_id=correlation_id,
            description=f"Transaction recorded: {description} - ₹{amount}",
            details={
                "amount": amount,
                "type": transaction_type,
            },
            is_user_action=True,
        )
    
    @staticmethod
    def transaction_deleted(
        transaction_id: str,
        correlation_id: Optional[UUID] = None
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.TRANSACTION_DELETED,
            entity_type="transaction",
            entity_id=transaction_id,
            correlation_id=correlation_id,
            description="Transaction deleted",
            is_user_action=True,
        )
    
    @staticmethod
    def operation_rejected(
        operation: str,
        entity_id: Optional[str],
        issues: list[dict],
        correlation_id: Optional[UUID] = None
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.OPERATION_REJECTED,
            severity=AuditSeverity.WARNING,
            entity_type="mandate" if entity_id else None,
            entity_id=entity_id,
            correlation_id=correlation_id,
            description=f"{operation.capitalize()} rejected with {len(issues)} issues",
            details={
                "operation": operation,
                "issues": issues,
            },
        )
    
    @staticmethod
    def operation_failed(
        operation: str,
        entity_id: Optional[str],
        error_kind: str,
        error_message: str,
        correlation_id: Optional[UUID] = None
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.OPERATION_FAILED,
            severity=AuditSeverity.ERROR,
            entity_type="mandate" if entity_id else None,
            entity_id=entity_id,
            correlation_id=correlation_id,
            description=f"{operation.capitalize()} failed: {error_kind}",
            error_code=error_kind,
            error_message=error_message,
            details={"operation": operation},
        )
    
    @staticmethod
    def system_error(
        error_type: str,
        error_message: str,
        details: Optional[dict] = None,
        correlation_id: Optional[UUID] = None
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.SYSTEM_ERROR,
            severity=AuditSeverity.ERROR,
            description=f"System error: {error_type}",
            error_message=error_message,
            details=details or {},
            correlation_id=correlation_id,
        )
