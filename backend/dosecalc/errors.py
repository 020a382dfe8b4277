# dosecalc/errors.py
"""
Exceptions raised by the calculator.

Out-of-range doses are not exceptions: they come back as an invalid
DoseRangeCheck so the caller can show them next to the other warnings.
"""
from typing import Any, Dict, List, Optional


class DoseCalcError(Exception):
    """Base class for calculator errors."""

    def __init__(self, message: str, context: Optional[Dict[str, Any]] = None):
        super().__init__(message)
        self.message = message
        self.context = context or {}

    def __str__(self) -> str:
        if self.context:
            ctx = ", ".join(f"{k}={v}" for k, v in self.context.items())
            return f"{self.message} [{ctx}]"
        return self.message


class NotFound(DoseCalcError):
    """Unknown component or stage id."""


class NotInitialized(DoseCalcError):
    """Reference data has not been loaded yet."""


class ValidationFailed(DoseCalcError):
    """Reference data failed schema or cross-reference checks."""

    def __init__(self, message: str, errors: Optional[List[str]] = None):
        super().__init__(message, {"errors": len(errors or [])})
        self.errors = list(errors or [])
