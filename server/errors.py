"""Error types shared across the check-in integrity modules."""

from __future__ import annotations


class CheckInError(RuntimeError):
    """Base error for check-in verification failures."""


class CheckInValidationError(CheckInError):
    """Raised when a check-in payload fails validation.

    Carries every field-level violation, never just the first one.
    """

    def __init__(self, errors):
        self.errors = list(errors)
        summary = ", ".join(f"{e.field}: {e.message}" for e in self.errors)
        super().__init__(f"Check-in validation failed ({len(self.errors)} errors): {summary}")


class ConfigError(CheckInError):
    """Raised when a stored scoring threshold cannot be parsed."""


class SingularMatrixError(ArithmeticError):
    """Raised when inverting a matrix whose determinant is effectively zero."""


__all__ = [
    "CheckInError",
    "CheckInValidationError",
    "ConfigError",
    "SingularMatrixError",
]
