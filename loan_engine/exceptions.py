"""Exception hierarchy for the loan engine.

Every error is raised synchronously to the immediate caller. The engine is a
pure computation, so nothing here is retried or logged-and-swallowed.
"""

from __future__ import annotations

from typing import Optional


class LoanEngineError(Exception):
    """Base exception for all loan engine errors."""


class ConfigurationError(LoanEngineError):
    """Raised when a loan's rate or phase fields are incomplete or inconsistent."""


class ValidationError(LoanEngineError):
    """Raised when caller-supplied inputs are out of bounds.

    Attributes
    ----------
    field: Optional[str]
        Name of the offending input (e.g. ``"amount"``).
    bound: Optional[str]
        Which bound was violated: ``"lower"`` or ``"upper"``.
    """

    def __init__(self, message: str, field: Optional[str] = None, bound: Optional[str] = None) -> None:
        super().__init__(message)
        self.field = field
        self.bound = bound


class ArithmeticDegenerateError(LoanEngineError):
    """Raised when a closed-form solve would produce NaN or infinity."""


class LoanNotFoundError(LoanEngineError):
    """Raised when a referenced loan does not exist in the store."""
