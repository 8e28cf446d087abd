"""
Flash-loan protocol exception hierarchy.

Provides typed exceptions for every failure kind of the lending protocol so
callers can react precisely, while still allowing catch-all handling through
the shared base class.
"""

from __future__ import annotations
from typing import Optional, Any, Dict


class FlashLoanError(Exception):
    """Base exception for all flash-loan protocol errors.

    Every failure aborts the current invocation in full; the protocol never
    retries internally. ``recoverable`` tells the calling party whether the
    same request may succeed later without intervention.

    Attributes:
        message: Human-readable error description
        details: Additional context about the error
        recoverable: Whether the operation can be retried
    """

    recoverable = False

    def __init__(
        self,
        message: str,
        details: Optional[Dict[str, Any]] = None,
        recoverable: Optional[bool] = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.details = details or {}
        if recoverable is not None:
            self.recoverable = recoverable


# ==================== Validation Errors ====================


class ValidationError(FlashLoanError):
    """Raised when a request or mutation fails input validation."""
    pass


class InvalidArgumentError(ValidationError):
    """Raised when a mutator receives malformed input.

    Examples: empty identifier, parameters violating their invariants,
    withdrawing fees when none have accrued.
    """
    pass


class NotFoundError(ValidationError):
    """Raised when an operation targets an unlisted or unknown key."""
    pass


class AmountOutOfRangeError(ValidationError):
    """Raised when a loan amount lies outside the asset's configured bounds."""

    def __init__(
        self,
        message: str,
        amount: Optional[int] = None,
        min_amount: Optional[int] = None,
        max_amount: Optional[int] = None,
        **kwargs: Any,
    ) -> None:
        super().__init__(message, **kwargs)
        self.amount = amount
        self.min_amount = min_amount
        self.max_amount = max_amount


class InsufficientLiquidityError(ValidationError):
    """Raised when the custodian cannot cover a loan or withdrawal."""
    recoverable = True  # Liquidity may be deposited later


class InsufficientBalanceError(ValidationError):
    """Raised when a token account lacks the balance for a transfer."""
    pass


# ==================== Authorization Errors ====================


class AuthorizationError(FlashLoanError):
    """Raised when an identity is not allowed to perform an operation."""
    pass


class NotAuthorizedError(AuthorizationError):
    """Raised when a privileged operation is called without admin rights."""
    pass


class CallerNotAuthorizedError(AuthorizationError):
    """Raised when a borrower is not on the authorized caller list."""
    pass


class AssetNotListedError(AuthorizationError):
    """Raised when a loan is requested for an asset that is not listed."""
    pass


# ==================== Execution Errors ====================


class ExecutionError(FlashLoanError):
    """Raised when a loan fails while executing."""
    pass


class ReentrancyError(ExecutionError):
    """Raised when a guarded operation is entered while already executing."""
    pass


class LoanNotRepaidError(ExecutionError):
    """Raised when the custodian balance is short after the borrower callback."""

    def __init__(
        self,
        message: str,
        expected_balance: Optional[int] = None,
        actual_balance: Optional[int] = None,
        **kwargs: Any,
    ) -> None:
        super().__init__(message, **kwargs)
        self.expected_balance = expected_balance
        self.actual_balance = actual_balance


class InvalidStateError(ExecutionError):
    """Raised when an internal accounting invariant is violated.

    Should be unreachable while the protocol invariants hold.
    """
    pass


# ==================== Configuration Errors ====================


class ConfigurationError(FlashLoanError):
    """Raised when required configuration is missing or invalid."""
    pass
