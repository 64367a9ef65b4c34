"""Input validation package."""

from mandate_tracker.validation.validator import (
    MandateValidator,
    ValidationError,
    parse_amount,
)

__all__ = ["MandateValidator", "ValidationError", "parse_amount"]
