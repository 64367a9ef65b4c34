"""
Input Validation

Every user-supplied value (confirmed payment amount, mandate name,
category, amount, due day) is checked here BEFORE any store call.

Issues come in two severities:
- error: the operation is rejected (ValidationError), nothing is written
- warning: the operation proceeds; the message is shown to the user

IMPORTANT: Validation NEVER silently fixes issues beyond normalizing
an amount to two decimal places and trimming whitespace.

Amounts may be typed as a formula starting with "=" (e.g. "=20+30"),
as in a spreadsheet cell. The expression is evaluated with simpleeval,
never with eval.
"""

from decimal import ROUND_HALF_UP, Decimal, InvalidOperation
from typing import Any, Iterable, Optional

from simpleeval import InvalidExpression, simple_eval

from mandate_tracker.config import get_settings
from mandate_tracker.exceptions import MandateTrackerError
from mandate_tracker.models.mandate import (
    Category,
    Mandate,
    ValidationIssue,
    ValidationResult,
)


MIN_NAME_LENGTH = 2
MAX_NAME_LENGTH = 100
CENTS = Decimal("0.01")


class ValidationError(MandateTrackerError):
    """Input rejected before anything was written."""
    
    def __init__(self, message: str, issues: Optional[list[ValidationIssue]] = None):
        super().__init__(message)
        self.issues = issues or []
    
    @classmethod
    def from_issues(cls, issues: list[ValidationIssue]) -> "ValidationError":
        errors = [i.message for i in issues if i.severity == "error"]
        return cls("; ".join(errors) or "Invalid input", issues)


def _evaluate_formula(expression: str) -> Optional[float]:
    """Numeric result of a formula body, or None if it is not a valid number."""
    if not expression:
        return None
    try:
        result = simple_eval(expression, functions={}, names={})
    except (InvalidExpression, SyntaxError, ArithmeticError, LookupError, TypeError, ValueError):
        return None
    if isinstance(result, bool) or not isinstance(result, (int, float)):
        return None
    return result


def parse_amount(value: Any, field: str = "amount") -> Decimal:
    """
    Turn user input into a positive two-decimal amount.
    
    Accepts Decimal, int, float, numeric strings or a formula string
    such as "=(20+30)*2". A formula must evaluate to a number.
    
    Raises:
        ValidationError: If the value is not a finite positive number
    """
    def reject(message: str, issue_type: str = "invalid_value") -> ValidationError:
        return ValidationError(message, [ValidationIssue(
            field=field,
            issue_type=issue_type,
            message=message,
            severity="error",
            suggested_fix="Enter a positive amount, e.g. 650 or 650.50",
        )])
    
    if value is None or value == "":
        raise reject("Amount is required", "missing")
    if isinstance(value, bool):
        raise reject(f"Amount must be a number, got {value!r}")
    
    if isinstance(value, str) and value.strip().startswith("="):
        value = _evaluate_formula(value.strip()[1:].strip())
        if value is None:
            raise reject("Invalid formula", "invalid_formula")
    
    try:
        amount = Decimal(str(value).strip()) if not isinstance(value, Decimal) else value
    except (InvalidOperation, ValueError):
        raise reject(f"Amount must be a number, got {value!r}")
    
    if not amount.is_finite():
        raise reject("Amount must be a finite number")
    
    try:
        amount = amount.quantize(CENTS, rounding=ROUND_HALF_UP)
    except InvalidOperation:
        raise reject("Amount is too large")
    if amount <= 0:
        raise reject("Amount must be a positive number.")
    
    return amount


class MandateValidator:
    """
    Validates mandate fields on create and edit.
    
    Errors block the write; warnings (unusually large amount, a name
    already used by another mandate) are returned to the caller.
    """
    
    def __init__(self, max_amount: Optional[float] = None):
        """
        Args:
            max_amount: Amount above which a warning is raised.
                        Defaults to the configured max_mandate_amount.
        """
        if max_amount is None:
            max_amount = get_settings().app.max_mandate_amount
        self._max_amount = Decimal(str(max_amount))
    
    def _check_name(self, name: Any) -> tuple[Optional[str], list[ValidationIssue]]:
        if name is None or not str(name).strip():
            return None, [ValidationIssue(
                field="name",
                issue_type="missing",
                message="Name is required",
                severity="error",
            )]
        
        name = str(name).strip()
        if len(name) < MIN_NAME_LENGTH:
            return None, [ValidationIssue(
                field="name",
                issue_type="invalid_value",
                message=f"Name must be at least {MIN_NAME_LENGTH} characters.",
                severity="error",
            )]
        if len(name) > MAX_NAME_LENGTH:
            return None, [ValidationIssue(
                field="name",
                issue_type="invalid_value",
                message=f"Name must be at most {MAX_NAME_LENGTH} characters.",
                severity="error",
            )]
        return name, []
    
    def _check_category(self, category: Any) -> tuple[Optional[Category], list[ValidationIssue]]:
        if category is None or category == "":
            return None, [ValidationIssue(
                field="category",
                issue_type="missing",
                message="Please select a category.",
                severity="error",
            )]
        try:
            parsed = Category(category)
        except ValueError:
            return None, [ValidationIssue(
                field="category",
                issue_type="invalid_value",
                message=f"Unknown category: {category}",
                severity="error",
            )]
        if parsed.is_income:
            return None, [ValidationIssue(
                field="category",
                issue_type="invalid_value",
                message=f"{parsed.value} is an income category; mandates are expenses",
                severity="error",
                suggested_fix="Pick an expense category such as Housing or Utilities",
            )]
        return parsed, []
    
    def _check_amount(self, amount: Any) -> tuple[Optional[Decimal], list[ValidationIssue]]:
        try:
            parsed = parse_amount(amount)
        except ValidationError as e:
            return None, e.issues
        
        issues = []
        if parsed > self._max_amount:
            issues.append(ValidationIssue(
                field="amount",
                issue_type="suspicious_value",
                message=f"Amount (₹{parsed:,.2f}) seems unusually high",
                severity="warning",
                suggested_fix="Please verify this amount is correct",
            ))
        return parsed, issues
    
    def _check_due_day(self, due_day: Any) -> tuple[Optional[int], list[ValidationIssue]]:
        try:
            parsed = int(due_day)
        except (TypeError, ValueError):
            parsed = None
        if isinstance(due_day, bool) or parsed is None or not 1 <= parsed <= 31:
            return None, [ValidationIssue(
                field="due_day",
                issue_type="invalid_value",
                message="Due day must be a day of the month (1-31)",
                severity="error",
            )]
        return parsed, []
    
    def duplicate_name_issues(
        self,
        name: str,
        existing: Iterable[Mandate],
        exclude_id: Optional[str],
    ) -> list[ValidationIssue]:
        """Warn when another of the owner's mandates has the same name."""
        for mandate in existing:
            if mandate.id != exclude_id and mandate.name.casefold() == name.casefold():
                return [ValidationIssue(
                    field="name",
                    issue_type="potential_duplicate",
                    message=f"Another mandate is already named {mandate.name}",
                    severity="warning",
                    suggested_fix="Please verify this isn't a duplicate entry",
                )]
        return []
    
    def validate_fields(
        self,
        fields: dict[str, Any],
    ) -> tuple[dict[str, Any], ValidationResult]:
        """
        Validate the provided mandate fields.
        
        Only keys present in fields are checked, so the same method
        serves create (all fields) and edit (a subset).
        
        Args:
            fields: Any of name, category, amount, due_day
        
        Returns:
            (cleaned_fields, validation_result)
        """
        checks = {
            "name": self._check_name,
            "category": self._check_category,
            "amount": self._check_amount,
            "due_day": self._check_due_day,
        }
        
        cleaned: dict[str, Any] = {}
        issues: list[ValidationIssue] = []
        
        for key, value in fields.items():
            if key not in checks:
                issues.append(ValidationIssue(
                    field=key,
                    issue_type="unknown_field",
                    message=f"{key} cannot be edited",
                    severity="error",
                ))
                continue
            parsed, field_issues = checks[key](value)
            issues.extend(field_issues)
            if parsed is not None:
                cleaned[key] = parsed
        
        result = ValidationResult(
            is_valid=not any(i.severity == "error" for i in issues),
            issues=issues,
        )
        return cleaned, result
    
    def require_valid(
        self,
        fields: dict[str, Any],
    ) -> tuple[dict[str, Any], ValidationResult]:
        """
        Like validate_fields, but raises on any error-level issue.
        
        Raises:
            ValidationError: If any field is invalid
        """
        cleaned, result = self.validate_fields(fields)
        if not result.is_valid:
            raise ValidationError.from_issues(result.issues)
        return cleaned, result
