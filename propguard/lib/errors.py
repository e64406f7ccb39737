"""
Error taxonomy for the risk engine.

Callers see only these exceptions:
- AccountNotFoundError: the account does not exist (no mutation performed)
- LockConflictError: a concurrent evaluation won the lock update; re-evaluate
- DependencyUnavailableError: a store or notifier is unreachable; retry on the
  next tick

Malformed sizing input is never raised; it degrades to the minimum lot size.
"""

from enum import Enum
from typing import Optional


class ErrorCategory(Enum):
    """Error categories for classification."""
    NOT_FOUND = "not_found"
    CONFLICT = "conflict"
    DEPENDENCY_UNAVAILABLE = "dependency_unavailable"


class RiskEngineError(Exception):
    """Base class for all risk engine errors."""

    category: ErrorCategory = ErrorCategory.DEPENDENCY_UNAVAILABLE
    retryable: bool = False

    def __init__(self, message: str, account_id: Optional[str] = None):
        super().__init__(message)
        self.account_id = account_id

    def to_dict(self) -> dict:
        """Convert to dictionary for logging and API responses."""
        return {
            "error": str(self),
            "category": self.category.value,
            "account_id": self.account_id,
            "retryable": self.retryable,
        }


class AccountNotFoundError(RiskEngineError):
    """Referenced account does not exist or belongs to another user."""

    category = ErrorCategory.NOT_FOUND
    retryable = False


class LockConflictError(RiskEngineError):
    """A concurrent lock update won the race."""

    category = ErrorCategory.CONFLICT
    retryable = True


class DependencyUnavailableError(RiskEngineError):
    """Backing store or notifier could not be reached."""

    category = ErrorCategory.DEPENDENCY_UNAVAILABLE
    retryable = True
