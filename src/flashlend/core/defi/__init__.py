"""
Flash-loan protocol components.

- Access Control: admin policies and the asset/caller registry
- Loan Parameters: per-asset bounds and premium rates
- Premium: premium computation in basis points
- Accounting: fee, volume and liquidity ledger
- Journal: all-or-nothing state transitions
- Flash Loans: the execution engine
"""

from .access_control import (
    AccessRegistry,
    AdminPolicy,
    OwnerAdminPolicy,
    StaticAdminPolicy,
)
from .accounting import AccountingLedger, LedgerEntry
from .events import (
    AssetDelisted,
    AssetListed,
    AuditEvent,
    AuditLog,
    CallerAuthorized,
    CallerRevoked,
    FeesWithdrawn,
    LiquidityDeposited,
    LiquidityWithdrawn,
    LoanExecuted,
    ParametersUpdated,
)
from .flash_loans import FlashLoanProvider, LoanExecution, LoanRequest, LoanState
from .journal import StateJournal
from .loan_parameters import BPS_DENOMINATOR, LoanParameters, LoanParameterStore
from .premium import PremiumCalculator
from .reentrancy import ReentrancyGuard
from .token_ledger import InMemoryTokenLedger, TokenLedger

__all__ = [
    # Access Control
    "AccessRegistry",
    "AdminPolicy",
    "OwnerAdminPolicy",
    "StaticAdminPolicy",
    # Parameters & Premium
    "BPS_DENOMINATOR",
    "LoanParameters",
    "LoanParameterStore",
    "PremiumCalculator",
    # Accounting
    "AccountingLedger",
    "LedgerEntry",
    # Tokens
    "TokenLedger",
    "InMemoryTokenLedger",
    # Execution
    "FlashLoanProvider",
    "LoanExecution",
    "LoanRequest",
    "LoanState",
    "ReentrancyGuard",
    "StateJournal",
    # Events
    "AuditEvent",
    "AuditLog",
    "LoanExecuted",
    "AssetListed",
    "AssetDelisted",
    "CallerAuthorized",
    "CallerRevoked",
    "FeesWithdrawn",
    "ParametersUpdated",
    "LiquidityDeposited",
    "LiquidityWithdrawn",
]
