"""
Data Models Package

This package contains all Pydantic models used in the Mandate Tracker system.
All data flowing through the system must conform to these schemas.
"""

from mandate_tracker.models.mandate import (
    EXPENSE_CATEGORIES,
    INCOME_CATEGORIES,
    Category,
    CycleSummary,
    DocumentModel,
    Mandate,
    MandateView,
    OperationResult,
    Settlement,
    Transaction,
    TransactionType,
    ValidationIssue,
    ValidationResult,
)
from mandate_tracker.models.audit import (
    AuditEvent,
    AuditEventBuilder,
    AuditEventType,
    AuditSeverity,
)

__all__ = [
    # Mandate and ledger models
    "EXPENSE_CATEGORIES",
    "INCOME_CATEGORIES",
    "Category",
    "CycleSummary",
    "DocumentModel",
    "Mandate",
    "MandateView",
    "OperationResult",
    "Settlement",
    "Transaction",
    "TransactionType",
    "ValidationIssue",
    "ValidationResult",
    # Audit models
    "AuditEvent",
    "AuditEventBuilder",
    "AuditEventType",
    "AuditSeverity",
]
