"""
Flash-loan accounting ledger.

Tracks, per asset, the premiums collected, the principal volume lent and the
number of successful loans. Collected premiums stay in the custodian account
until withdrawn, so the liquidity that can be lent or withdrawn is the
custodial balance net of those fees.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field, replace
from typing import Any, Callable

from ..exceptions import InsufficientLiquidityError, InvalidArgumentError, InvalidStateError

logger = logging.getLogger(__name__)


@dataclass
class LedgerEntry:
    """Running totals for one asset."""

    fees_collected: int = 0
    volume_lent: int = 0
    loan_count: int = 0

    def to_dict(self) -> dict[str, int]:
        return {
            "fees_collected": self.fees_collected,
            "volume_lent": self.volume_lent,
            "loan_count": self.loan_count,
        }


@dataclass
class AccountingLedger:
    """
    Per-asset fee, volume and loan-count ledger.

    Args:
        custodial_balance: Callable returning the custodian's current balance
            of an asset; the ledger never caches it.
    """

    custodial_balance: Callable[[str], int]
    _entries: dict[str, LedgerEntry] = field(default_factory=dict)

    def entry(self, asset: str) -> LedgerEntry:
        """Copy of the asset's entry (zeroed if the asset was never lent)."""
        return replace(self._entries.get(asset, LedgerEntry()))

    def fees_collected(self, asset: str) -> int:
        return self._entries.get(asset, LedgerEntry()).fees_collected

    def assets(self) -> list[str]:
        return list(self._entries)

    def record_successful_loan(self, asset: str, amount: int, premium: int) -> LedgerEntry:
        """
        Book a verified, repaid loan.

        Must be called exactly once per successful execution and only after
        repayment has been verified.
        """
        if amount < 0 or premium < 0:
            raise InvalidStateError(
                "Cannot record negative loan amounts",
                details={"amount": amount, "premium": premium},
            )

        entry = self._entries.setdefault(asset, LedgerEntry())
        entry.volume_lent += amount
        entry.loan_count += 1
        entry.fees_collected += premium

        logger.debug(
            "Loan recorded",
            extra={
                "event": "ledger.loan_recorded",
                "asset": asset[:10],
                "amount": amount,
                "premium": premium,
                "loan_count": entry.loan_count,
            },
        )
        return replace(entry)

    def available_liquidity(self, asset: str) -> int:
        """
        Custodial balance not owed to the operator as fees.

        Raises:
            InvalidStateError: If fees exceed the custodial balance
        """
        balance = self.custodial_balance(asset)
        fees = self.fees_collected(asset)
        available = balance - fees
        if available < 0:
            logger.error(
                "Ledger invariant violated: fees exceed custodial balance",
                extra={
                    "event": "ledger.invariant_violated",
                    "asset": asset[:10],
                    "balance": balance,
                    "fees": fees,
                },
            )
            raise InvalidStateError(
                f"Fees collected ({fees}) exceed custodial balance ({balance}) for {asset[:10]}",
                details={"asset": asset, "balance": balance, "fees": fees},
            )
        return available

    def check_withdrawable(self, asset: str, amount: int) -> None:
        if amount > self.available_liquidity(asset):
            raise InsufficientLiquidityError(
                f"Requested {amount} exceeds available liquidity for {asset[:10]}",
                details={"asset": asset, "amount": amount},
            )

    def withdraw_fees(self, asset: str) -> int:
        """
        Zero the asset's collected fees.

        Returns:
            The amount that was owed; the caller moves the tokens.

        Raises:
            InvalidArgumentError: If no fees have accrued
        """
        entry = self._entries.get(asset)
        if entry is None or entry.fees_collected == 0:
            raise InvalidArgumentError(f"No fees to withdraw for {asset[:10]}")

        amount = entry.fees_collected
        entry.fees_collected = 0
        return amount

    # ==================== Journal ====================

    def snapshot(self) -> dict[str, Any]:
        return {"entries": {asset: replace(e) for asset, e in self._entries.items()}}

    def restore(self, snapshot: dict[str, Any]) -> None:
        self._entries = {asset: replace(e) for asset, e in snapshot.get("entries", {}).items()}
