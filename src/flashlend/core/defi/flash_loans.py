"""
Flash Loan Provider.

Lends pooled custodian liquidity to a borrower program for the duration of a
single call:
1. Guard: reject reentrant entry
2. Validate: asset listed, caller authorized, amount in range, liquidity
3. Disburse: snapshot custodial balance, compute premium, transfer out
4. Callback: hand control to the borrower program
5. Verify: custodial balance must be back to balance_before + premium
6. Commit: book the loan and emit the audit event

Any failure reverts every state change made by the invocation, including
token movements made by the borrower, and re-raises the original error.

Security features:
- Engine-wide reentrancy guard shared by all liquidity-moving operations
- Balance snapshots taken at fixed points, never re-derived lazily
- Borrower return value is advisory; only the balance check counts
- Admin authorization delegated to an injected policy
"""

from __future__ import annotations

import hashlib
import logging
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable, Iterable

from ..exceptions import (
    AmountOutOfRangeError,
    AssetNotListedError,
    CallerNotAuthorizedError,
    FlashLoanError,
    InsufficientLiquidityError,
    InvalidArgumentError,
    LoanNotRepaidError,
    NotFoundError,
    ReentrancyError,
)
from ..metrics import FlashLoanMetrics
from .access_control import (
    AccessRegistry,
    AdminPolicy,
    OwnerAdminPolicy,
    require_admin,
    require_identifier,
)
from .accounting import AccountingLedger, LedgerEntry
from .events import (
    AssetDelisted,
    AssetListed,
    AuditLog,
    CallerAuthorized,
    CallerRevoked,
    FeesWithdrawn,
    LiquidityDeposited,
    LiquidityWithdrawn,
    LoanExecuted,
    ParametersUpdated,
)
from .journal import StateJournal
from .loan_parameters import LoanParameters, LoanParameterStore
from .premium import PremiumCalculator
from .reentrancy import ReentrancyGuard
from .token_ledger import TokenLedger

logger = logging.getLogger(__name__)


class LoanState(Enum):
    """Lifecycle of one flash-loan invocation."""
    IDLE = "idle"
    VALIDATING = "validating"
    DISBURSED = "disbursed"
    AWAITING_CALLBACK = "awaiting_callback"
    VERIFYING = "verifying"
    COMMITTED = "committed"
    REVERTED = "reverted"


TERMINAL_STATES = frozenset({LoanState.COMMITTED, LoanState.REVERTED})

# Borrower contract: on_flash_loan(asset, amount, premium, payload) -> bool
FlashLoanCallback = Callable[[str, int, int, bytes], Any]


@dataclass(frozen=True)
class LoanRequest:
    """A single borrow request, never persisted past its invocation."""
    caller: str
    asset: str
    amount: int
    payload: bytes = b""


@dataclass
class LoanExecution:
    """Trace of one invocation through the loan state machine."""

    request: LoanRequest
    receiver: Any = None
    state: LoanState = LoanState.IDLE
    premium: int = 0
    balance_before: int = 0
    balance_after: int = 0
    callback_result: Any = None
    error: str | None = None
    history: list[LoanState] = field(default_factory=lambda: [LoanState.IDLE])

    def transition(self, new_state: LoanState) -> None:
        if self.state in TERMINAL_STATES:
            return
        self.state = new_state
        self.history.append(new_state)
        logger.debug(
            "Loan state transition",
            extra={
                "event": "flash_loan.transition",
                "asset": self.request.asset[:10] if isinstance(self.request.asset, str) else None,
                "state": new_state.value,
            },
        )


def resolve_callback(receiver: Any) -> FlashLoanCallback:
    """
    Return the borrower entry point.

    Accepts an object exposing ``on_flash_loan`` or a plain callable.
    """
    handler = getattr(receiver, "on_flash_loan", None)
    if callable(handler):
        return handler
    if callable(receiver):
        return receiver
    raise InvalidArgumentError("Receiver must be callable or implement on_flash_loan")


@dataclass
class FlashLoanProvider:
    """
    Flash-loan execution engine and administrative surface.

    The provider's ``address`` is the custodian account in the token ledger.
    Registry, parameter store, accounting ledger and (when it supports
    snapshots) the token ledger are journalled so every operation is atomic.
    """

    token_ledger: TokenLedger
    owner: str = ""
    admin_policy: AdminPolicy | None = None
    address: str = ""
    fee_beneficiary: str = ""
    initial_assets: dict[str, LoanParameters] = field(default_factory=dict)
    initial_callers: Iterable[str] = ()
    metrics: FlashLoanMetrics | None = None
    audit_log: AuditLog = field(default_factory=AuditLog)
    clock: Callable[[], float] = time.time

    last_execution: LoanExecution | None = field(default=None, init=False)

    def __post_init__(self) -> None:
        """Wire components and apply the initial configuration."""
        if not self.address:
            addr_hash = hashlib.sha3_256(
                f"flash_loan_provider:{self.owner}:{time.time()}".encode()
            ).digest()
            self.address = f"0x{addr_hash[-20:].hex()}"

        if self.admin_policy is None:
            self.admin_policy = OwnerAdminPolicy(owner=self.owner)
        if not self.fee_beneficiary:
            self.fee_beneficiary = self.owner
        require_identifier(self.fee_beneficiary, "fee_beneficiary")

        self.registry = AccessRegistry(admin_policy=self.admin_policy)
        self.params = LoanParameterStore(admin_policy=self.admin_policy)
        self.calculator = PremiumCalculator(store=self.params)
        self.ledger = AccountingLedger(custodial_balance=self.custodial_balance)
        self._guard = ReentrancyGuard(name=f"provider:{self.address[:10]}")

        self._journal = StateJournal(audit_log=self.audit_log)
        self._journal.register("registry", self.registry)
        self._journal.register("params", self.params)
        self._journal.register("ledger", self.ledger)
        if hasattr(self.token_ledger, "snapshot") and hasattr(self.token_ledger, "restore"):
            self._journal.register("tokens", self.token_ledger)
        else:
            logger.warning(
                "Token ledger is not journalled; transfer atomicity relies on the ledger itself",
                extra={"event": "flash_loan.tokens_not_journalled", "provider": self.address[:10]},
            )

        for asset, params in self.initial_assets.items():
            self.list_asset(self.owner, asset, params)
        for caller in self.initial_callers:
            self.authorize_caller(self.owner, caller)

    # ==================== Queries ====================

    def custodial_balance(self, asset: str) -> int:
        return self.token_ledger.balance_of(asset, self.address)

    def available_liquidity(self, asset: str) -> int:
        return self.ledger.available_liquidity(asset)

    def calculate_premium(self, asset: str, amount: int) -> int:
        return self.calculator.premium(asset, amount)

    def ledger_entry(self, asset: str) -> LedgerEntry:
        return self.ledger.entry(asset)

    @property
    def locked(self) -> bool:
        return self._guard.held

    def get_stats(self) -> dict[str, Any]:
        """Snapshot of per-asset configuration, ledger and liquidity."""
        assets = sorted(set(self.params.assets()) | set(self.ledger.assets()))
        return {
            "address": self.address,
            "listed_assets": sorted(self.registry.listed_assets()),
            "authorized_callers": len(self.registry.authorized_callers()),
            "assets": {
                asset: {
                    "params": self.params.get(asset).to_dict() if self.params.has(asset) else None,
                    "custodial_balance": self.custodial_balance(asset),
                    **self.ledger.entry(asset).to_dict(),
                }
                for asset in assets
            },
        }

    # ==================== Flash Loan ====================

    def execute_flash_loan(
        self,
        caller: str,
        asset: str,
        amount: int,
        receiver: Any,
        payload: bytes = b"",
    ) -> LoanExecution:
        """
        Lend ``amount`` of ``asset`` to ``caller`` for one callback.

        Args:
            caller: Borrowing identity; receives the principal
            asset: Asset to borrow
            amount: Principal in base units
            receiver: Borrower program, ``on_flash_loan`` object or callable
                taking (asset, amount, premium, payload)
            payload: Opaque data forwarded to the borrower

        Returns:
            The committed LoanExecution

        Raises:
            ReentrancyError: Provider already executing
            AssetNotListedError: Asset not listed
            CallerNotAuthorizedError: Caller not authorized
            AmountOutOfRangeError: Amount outside asset bounds
            InsufficientLiquidityError: Custodian cannot cover the loan
            LoanNotRepaidError: Balance short after the callback
            Exception: Anything the borrower raises, unchanged
        """
        request = LoanRequest(caller=caller, asset=asset, amount=amount, payload=payload)
        execution = LoanExecution(request=request, receiver=receiver)

        try:
            with self._guard.hold("execute_flash_loan"):
                execution.transition(LoanState.VALIDATING)
                with self._journal.transaction("execute_flash_loan"):
                    self._run_loan(execution)
            execution.transition(LoanState.COMMITTED)
        except BaseException as exc:
            execution.error = type(exc).__name__
            execution.transition(LoanState.REVERTED)
            self._record_failure(request, exc)
            raise
        finally:
            self.last_execution = execution

        logger.info(
            "Flash loan executed",
            extra={
                "event": "flash_loan.executed",
                "caller": caller[:10],
                "asset": asset[:10],
                "amount": amount,
                "premium": execution.premium,
            },
        )
        if self.metrics is not None:
            self.metrics.record_success(asset, amount, execution.premium)
        self._refresh_liquidity_gauge(asset)
        return execution

    def _run_loan(self, execution: LoanExecution) -> None:
        request = execution.request
        asset, amount = request.asset, request.amount

        self._validate_request(request)
        callback = resolve_callback(execution.receiver)

        # Disbursement
        execution.balance_before = self.custodial_balance(asset)
        execution.premium = self.calculator.premium(asset, amount)
        self.token_ledger.transfer(asset, self.address, request.caller, amount)
        execution.transition(LoanState.DISBURSED)

        # Callback
        execution.transition(LoanState.AWAITING_CALLBACK)
        started = time.perf_counter()
        execution.callback_result = callback(asset, amount, execution.premium, request.payload)
        if self.metrics is not None:
            self.metrics.callback_latency.observe(time.perf_counter() - started)
        execution.transition(LoanState.VERIFYING)

        if not execution.callback_result:
            logger.warning(
                "Borrower callback returned falsy result; relying on balance check",
                extra={"event": "flash_loan.callback_falsy", "asset": asset[:10]},
            )

        # Verification
        expected = execution.balance_before + execution.premium
        execution.balance_after = self.custodial_balance(asset)
        if execution.balance_after < expected:
            raise LoanNotRepaidError(
                f"Flash loan not repaid: expected balance {expected}, found {execution.balance_after}",
                expected_balance=expected,
                actual_balance=execution.balance_after,
                details={"asset": asset, "amount": amount, "premium": execution.premium},
            )

        # Commit
        self.ledger.record_successful_loan(asset, amount, execution.premium)
        self._journal.emit(
            LoanExecuted(
                caller=request.caller,
                asset=asset,
                amount=amount,
                premium=execution.premium,
                timestamp=self.clock(),
            )
        )

    def _validate_request(self, request: LoanRequest) -> LoanParameters:
        asset, amount = request.asset, request.amount

        if not self.registry.is_asset_listed(asset):
            raise AssetNotListedError(f"Asset {str(asset)[:10]} is not listed")
        if not self.registry.is_caller_authorized(request.caller):
            raise CallerNotAuthorizedError(f"Caller {str(request.caller)[:10]} is not authorized")

        params = self.params.get(asset)
        if isinstance(amount, bool) or not isinstance(amount, int):
            raise InvalidArgumentError("amount must be an integer")
        if amount < params.min_amount or amount > params.max_amount:
            raise AmountOutOfRangeError(
                f"Amount {amount} outside [{params.min_amount}, {params.max_amount}] for {asset[:10]}",
                amount=amount,
                min_amount=params.min_amount,
                max_amount=params.max_amount,
            )

        balance = self.custodial_balance(asset)
        if balance < amount:
            raise InsufficientLiquidityError(
                f"Insufficient liquidity: requested {amount}, custodian holds {balance}",
                details={"asset": asset, "amount": amount, "balance": balance},
            )
        return params

    def _record_failure(self, request: LoanRequest, exc: BaseException) -> None:
        reason = type(exc).__name__
        logger.warning(
            "Flash loan reverted",
            extra={
                "event": "flash_loan.reverted",
                "caller": str(request.caller)[:10],
                "asset": str(request.asset)[:10],
                "amount": request.amount if isinstance(request.amount, int) else None,
                "error_type": reason,
            },
        )
        if self.metrics is None:
            return
        asset_label = str(request.asset)
        self.metrics.record_failure(asset_label, reason)
        if isinstance(exc, ReentrancyError):
            self.metrics.reentrancy_blocked.labels(operation="execute_flash_loan").inc()

    # ==================== Asset Administration ====================

    def list_asset(self, admin: str, asset: str, params: LoanParameters) -> None:
        """
        List an asset for lending with its parameters.

        Raises:
            InvalidArgumentError: Asset already listed or parameters invalid
            NotAuthorizedError: Caller is not admin
        """
        with self._journal.transaction("list_asset"):
            require_identifier(asset, "asset")
            if self.registry.is_asset_listed(asset):
                raise InvalidArgumentError(
                    f"Asset {asset[:10]} already listed; use update_loan_parameters"
                )
            self.params.set(admin, asset, params)
            self.registry.list_asset(admin, asset)
            self._journal.emit(AssetListed(asset=asset, params=params))

    def update_loan_parameters(self, admin: str, asset: str, params: LoanParameters) -> None:
        """Replace an asset's parameters; listing it if it is not yet listed."""
        with self._journal.transaction("update_loan_parameters"):
            require_identifier(asset, "asset")
            if not self.registry.is_asset_listed(asset):
                self.list_asset(admin, asset, params)
                return
            self.params.set(admin, asset, params)
            self._journal.emit(ParametersUpdated(asset=asset, params=params))

    def delist_asset(self, admin: str, asset: str) -> None:
        """
        Stop lending an asset and drop its parameters.

        The asset's ledger entry is kept so accrued fees stay withdrawable.
        """
        with self._journal.transaction("delist_asset"):
            self.registry.delist_asset(admin, asset)
            self.params.clear(admin, asset)
            self._journal.emit(AssetDelisted(asset=asset))

    # ==================== Caller Administration ====================

    def authorize_caller(self, admin: str, caller: str) -> None:
        with self._journal.transaction("authorize_caller"):
            if self.registry.authorize_caller(admin, caller):
                self._journal.emit(CallerAuthorized(caller=caller))

    def revoke_caller(self, admin: str, caller: str) -> None:
        with self._journal.transaction("revoke_caller"):
            self.registry.revoke_caller(admin, caller)
            self._journal.emit(CallerRevoked(caller=caller))

    # ==================== Liquidity Administration ====================

    def deposit_liquidity(
        self,
        admin: str,
        asset: str,
        amount: int,
        source: str | None = None,
    ) -> None:
        """
        Move ``amount`` of ``asset`` from ``source`` (default: admin) into custody.

        Raises:
            NotAuthorizedError: Caller is not admin
            NotFoundError: Asset is not listed
            InvalidArgumentError: Amount not a positive integer
        """
        source = source or admin
        with self._guard.hold("deposit_liquidity"):
            with self._journal.transaction("deposit_liquidity"):
                require_admin(self.admin_policy, admin, "deposit_liquidity")
                if not self.registry.is_asset_listed(asset):
                    raise NotFoundError(f"Asset {str(asset)[:10]} is not listed")
                _require_positive(amount)
                self.token_ledger.transfer(asset, source, self.address, amount)
                self._journal.emit(LiquidityDeposited(asset=asset, amount=amount, source=source))

        logger.info(
            "Liquidity deposited",
            extra={"event": "flash_loan.liquidity_deposited", "asset": asset[:10], "amount": amount},
        )
        self._refresh_liquidity_gauge(asset)

    def withdraw_liquidity(
        self,
        admin: str,
        asset: str,
        amount: int,
        recipient: str | None = None,
    ) -> None:
        """
        Withdraw lendable liquidity (custodial balance net of fees).

        Raises:
            NotAuthorizedError: Caller is not admin
            InvalidArgumentError: Amount not a positive integer
            InsufficientLiquidityError: Amount exceeds available liquidity
        """
        recipient = recipient or self.fee_beneficiary
        with self._guard.hold("withdraw_liquidity"):
            with self._journal.transaction("withdraw_liquidity"):
                require_admin(self.admin_policy, admin, "withdraw_liquidity")
                _require_positive(amount)
                self.ledger.check_withdrawable(asset, amount)
                self.token_ledger.transfer(asset, self.address, recipient, amount)
                self._journal.emit(
                    LiquidityWithdrawn(asset=asset, amount=amount, recipient=recipient)
                )

        logger.info(
            "Liquidity withdrawn",
            extra={
                "event": "flash_loan.liquidity_withdrawn",
                "asset": asset[:10],
                "amount": amount,
                "recipient": recipient[:10],
            },
        )
        self._refresh_liquidity_gauge(asset)

    def withdraw_fees(self, admin: str, asset: str) -> int:
        """
        Pay all accrued premiums for ``asset`` to the fee beneficiary.

        Returns:
            Amount transferred

        Raises:
            NotAuthorizedError: Caller is not admin
            InvalidArgumentError: No fees accrued
        """
        with self._guard.hold("withdraw_fees"):
            with self._journal.transaction("withdraw_fees"):
                require_admin(self.admin_policy, admin, "withdraw_fees")
                amount = self.ledger.withdraw_fees(asset)
                self.token_ledger.transfer(asset, self.address, self.fee_beneficiary, amount)
                self._journal.emit(FeesWithdrawn(asset=asset, amount=amount))

        logger.info(
            "Fees withdrawn",
            extra={
                "event": "flash_loan.fees_withdrawn",
                "asset": asset[:10],
                "amount": amount,
                "beneficiary": self.fee_beneficiary[:10],
            },
        )
        if self.metrics is not None:
            self.metrics.fees_withdrawn.labels(asset=asset).inc(amount)
        self._refresh_liquidity_gauge(asset)
        return amount

    def _refresh_liquidity_gauge(self, asset: str) -> None:
        """Best-effort gauge update; runs after the operation has committed."""
        if self.metrics is None:
            return
        try:
            liquidity = self.available_liquidity(asset)
        except Exception as exc:
            logger.warning(
                "Liquidity gauge not refreshed",
                extra={
                    "event": "flash_loan.gauge_refresh_failed",
                    "asset": asset[:10],
                    "error_type": type(exc).__name__,
                },
            )
            return
        self.metrics.available_liquidity.labels(asset=asset).set(liquidity)


def _require_positive(amount: Any) -> int:
    if isinstance(amount, bool) or not isinstance(amount, int) or amount <= 0:
        raise InvalidArgumentError("amount must be a positive integer")
    return amount


__all__ = [
    "FlashLoanError",
    "FlashLoanProvider",
    "LoanExecution",
    "LoanRequest",
    "LoanState",
    "resolve_callback",
]
