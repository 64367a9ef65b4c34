"""
Core Data Models for Mandate Tracker

These models define the persisted shapes of mandates and ledger
transactions, plus the derived values (settlement, cycle summary)
the presentation layer consumes.

DESIGN DECISION: Persisted documents use camelCase field names
(lastPaidDate, linkedTransactionId, skippedMonths) while Python code
uses snake_case. Pydantic aliases bridge the two, so a document read
from any backend validates straight into a model.

Settlement status is NEVER a field. It is computed by the classifier
from lastPaidDate and skippedMonths every time it is needed.
"""

from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Any, Optional

from pydantic import (
    BaseModel,
    ConfigDict,
    Field,
    field_validator,
)
from pydantic.alias_generators import to_camel

from mandate_tracker.cycle import is_month_key


# =============================================================================
# ENUMS - Finite set of valid values
# =============================================================================

class Category(str, Enum):
    """
    Ledger categories.
    
    Income categories only ever appear on transactions.
    Mandates are expenses and must use one of EXPENSE_CATEGORIES.
    """
    # Income
    SALARY = "Salary"
    REFUNDS = "Refunds"
    OTHER_INCOME = "Other Income"
    
    # Expense
    HOUSING = "Housing"
    FOOD = "Food"
    TRANSPORT = "Transport"
    ENTERTAINMENT = "Entertainment"
    HEALTH = "Health"
    SHOPPING = "Shopping"
    GROCERY = "Grocery"
    UTILITIES = "Utilities"
    LOAN = "Loan"
    PERSONAL = "Personal"
    INVESTMENT = "Investment"
    INSURANCE = "Insurance"
    BROADBAND = "Broadband"
    CREDIT_CARD = "Credit Card"
    OTHER = "Other"
    
    @property
    def is_income(self) -> bool:
        return self in INCOME_CATEGORIES


INCOME_CATEGORIES = frozenset({
    Category.SALARY,
    Category.REFUNDS,
    Category.OTHER_INCOME,
})

EXPENSE_CATEGORIES = tuple(c for c in Category if c not in INCOME_CATEGORIES)


class TransactionType(str, Enum):
    """Direction of a ledger entry."""
    INCOME = "income"
    EXPENSE = "expense"


class Settlement(str, Enum):
    """
    Classification of a mandate for the current cycle.
    
    Derived, never persisted. Exactly one applies at any moment.
    """
    PAID = "paid"
    SKIPPED = "skipped"
    PENDING = "pending"


# =============================================================================
# PERSISTED DOCUMENTS
# =============================================================================

class DocumentModel(BaseModel):
    """Base for models stored as documents in a collection."""
    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        str_strip_whitespace=True,
    )
    
    def to_document(self) -> dict[str, Any]:
        """Serialize to the camelCase, JSON-safe document shape."""
        return self.model_dump(mode="json", by_alias=True)
    
    @classmethod
    def from_document(cls, data: dict[str, Any]):
        return cls.model_validate(data)


class Mandate(DocumentModel):
    """
    A recurring monthly obligation.
    
    amount is the CURRENT expected amount: every payment rebases it to
    what was actually paid, so future cycles project the new value.
    
    CRITICAL: last_paid_date, linked_transaction_id and skipped_months
    are settlement facts. Only the reconciliation engine changes them.
    """
    
    # Identity
    id: str = Field(
        ...,
        min_length=1,
        description="Opaque mandate ID"
    )
    owner_id: str = Field(
        ...,
        min_length=1,
        description="Owner of this mandate"
    )
    
    # Attributes
    name: str = Field(
        ...,
        min_length=1,
        max_length=100,
        description="Display name (e.g., Rent, Netflix)"
    )
    category: Category = Field(
        ...,
        description="Expense category"
    )
    amount: Decimal = Field(
        ...,
        gt=0,
        decimal_places=2,
        description="Current expected amount in INR"
    )
    due_day: int = Field(
        default=1,
        ge=1,
        le=31,
        description="Day of month the payment is due (informational)"
    )
    
    # Settlement facts
    last_paid_date: Optional[datetime] = Field(
        default=None,
        description="When the most recent payment was made"
    )
    linked_transaction_id: Optional[str] = Field(
        default=None,
        description="Ledger entry created by the most recent payment"
    )
    skipped_months: list[str] = Field(
        default_factory=list,
        description="Month keys (YYYY-MM) explicitly skipped"
    )
    
    @field_validator('category')
    @classmethod
    def validate_expense_category(cls, v: Category) -> Category:
        """Mandates are obligations; income categories make no sense."""
        if v.is_income:
            raise ValueError(f"Mandate category must be an expense category, got {v.value}")
        return v
    
    @field_validator('skipped_months')
    @classmethod
    def validate_skipped_months(cls, v: list[str]) -> list[str]:
        """Keys must be YYYY-MM; duplicates are collapsed (it's a set)."""
        for key in v:
            if not is_month_key(key):
                raise ValueError(f"Invalid month key: {key!r} (expected YYYY-MM)")
        return list(dict.fromkeys(v))


class Transaction(DocumentModel):
    """
    A ledger entry.
    
    Carries no back-reference to a mandate; the link lives on the
    mandate only.
    """
    
    id: str = Field(
        ...,
        min_length=1,
        description="Opaque transaction ID"
    )
    owner_id: str = Field(
        ...,
        min_length=1,
        description="Owner of this ledger entry"
    )
    amount: Decimal = Field(
        ...,
        gt=0,
        decimal_places=2,
        description="Amount in INR (always positive; see type)"
    )
    description: str = Field(
        ...,
        min_length=1,
        max_length=200,
    )
    category: Category
    type: TransactionType
    date: datetime


# =============================================================================
# VALIDATION MODELS
# =============================================================================

class ValidationIssue(BaseModel):
    """A single validation issue found."""
    
    field: str = Field(
        ...,
        description="Field with the issue"
    )
    issue_type: str = Field(
        ...,
        description="Type of issue (e.g., 'missing', 'invalid_value', 'suspicious_value')"
    )
    message: str = Field(
        ...,
        description="Human-readable description of the issue"
    )
    severity: str = Field(
        ...,
        pattern="^(error|warning|info)$",
        description="Issue severity"
    )
    suggested_fix: Optional[str] = Field(
        default=None,
        description="Suggested fix if available"
    )


class ValidationResult(BaseModel):
    """Outcome of validating user input for a mandate or payment."""
    
    validated_at: datetime = Field(
        default_factory=datetime.now
    )
    is_valid: bool = Field(
        ...,
        description="True when no error-level issue was found"
    )
    issues: list[ValidationIssue] = Field(
        default_factory=list,
        description="All validation issues found"
    )
    
    @property
    def has_errors(self) -> bool:
        """Check if there are any error-level issues."""
        return any(issue.severity == "error" for issue in self.issues)
    
    @property
    def error_count(self) -> int:
        """Count error-level issues."""
        return sum(1 for issue in self.issues if issue.severity == "error")
    
    @property
    def warnings(self) -> list[str]:
        """Messages of non-blocking issues."""
        return [i.message for i in self.issues if i.severity == "warning"]


# =============================================================================
# DERIVED / PRESENTATION MODELS
# =============================================================================

class CycleSummary(BaseModel):
    """
    Per-cycle totals derived from the classified mandate set.
    
    total_paid sums PAID mandates; projected_remaining sums PENDING
    mandates. Skipped mandates contribute to neither total.
    """
    
    month_key: str
    total_paid: Decimal = Decimal("0")
    projected_remaining: Decimal = Decimal("0")
    paid_count: int = Field(default=0, ge=0)
    skipped_count: int = Field(default=0, ge=0)
    unpaid_count: int = Field(default=0, ge=0)
    
    @property
    def total_count(self) -> int:
        return self.paid_count + self.skipped_count + self.unpaid_count


class MandateView(BaseModel):
    """A mandate paired with its settlement for the cycle being shown."""
    
    mandate: Mandate
    settlement: Settlement
    
    @property
    def is_paid(self) -> bool:
        return self.settlement == Settlement.PAID


class OperationResult(BaseModel):
    """
    What the presentation layer receives for every user action.
    
    success=False always comes with error_kind so the caller can tell
    a rejected input from a missing record from a failed write.
    """
    
    operation: str = Field(
        ...,
        pattern="^(create|edit|delete|pay|reset|skip|unskip|record|delete_transaction)$"
    )
    success: bool
    mandate_id: Optional[str] = None
    transaction_id: Optional[str] = None
    
    # User-facing text
    title: str
    message: str
    
    # Failure details
    error_kind: Optional[str] = Field(
        default=None,
        pattern="^(validation|not_found|store_failure)$"
    )
    error_message: Optional[str] = None
    warnings: list[str] = Field(default_factory=list)
