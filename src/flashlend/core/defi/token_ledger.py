"""
Fungible token balances.

The protocol only needs two things from the token layer: an observable
``balance_of`` and an atomic ``transfer``. ``TokenLedger`` captures that
contract; ``InMemoryTokenLedger`` is a thread-safe implementation used by
simulations, the CLI and the test-suite. It supports snapshot/restore so it
can take part in the protocol's state journal.
"""

from __future__ import annotations

import logging
import threading
from collections import defaultdict
from typing import Any, Dict, Protocol, runtime_checkable

from ..exceptions import InsufficientBalanceError, InvalidArgumentError

logger = logging.getLogger(__name__)


@runtime_checkable
class TokenLedger(Protocol):
    """Token transfer collaborator."""

    def balance_of(self, asset: str, account: str) -> int:
        ...

    def transfer(self, asset: str, sender: str, recipient: str, amount: int) -> None:
        ...


class InMemoryTokenLedger:
    """
    Balances keyed by asset then account.

    Thread-safe: all reads and writes go through a reentrant lock.
    """

    def __init__(self, balances: Dict[str, Dict[str, int]] | None = None):
        self._lock = threading.RLock()
        self._balances: Dict[str, Dict[str, int]] = defaultdict(dict)
        for asset, accounts in (balances or {}).items():
            for account, amount in accounts.items():
                self.mint(asset, account, amount)

    @staticmethod
    def _validate_amount(amount: Any) -> int:
        if isinstance(amount, bool) or not isinstance(amount, int):
            raise InvalidArgumentError(f"Token amount must be an integer, got {type(amount).__name__}")
        if amount < 0:
            raise InvalidArgumentError("Token amount must be non-negative")
        return amount

    def balance_of(self, asset: str, account: str) -> int:
        with self._lock:
            return self._balances.get(asset, {}).get(account, 0)

    def total_supply(self, asset: str) -> int:
        with self._lock:
            return sum(self._balances.get(asset, {}).values())

    def mint(self, asset: str, account: str, amount: int) -> None:
        """Create ``amount`` new units in ``account``."""
        amount = self._validate_amount(amount)
        with self._lock:
            accounts = self._balances[asset]
            accounts[account] = accounts.get(account, 0) + amount

    def burn(self, asset: str, account: str, amount: int) -> None:
        amount = self._validate_amount(amount)
        with self._lock:
            balance = self.balance_of(asset, account)
            if balance < amount:
                raise InsufficientBalanceError(
                    f"Cannot burn {amount} {asset}: balance is {balance}",
                    details={"asset": asset, "account": account[:10]},
                )
            self._balances[asset][account] = balance - amount

    def transfer(self, asset: str, sender: str, recipient: str, amount: int) -> None:
        """
        Move ``amount`` of ``asset`` from ``sender`` to ``recipient``.

        Raises:
            InvalidArgumentError: Negative or non-integer amount
            InsufficientBalanceError: Sender balance too low
        """
        amount = self._validate_amount(amount)
        with self._lock:
            balance = self.balance_of(asset, sender)
            if balance < amount:
                raise InsufficientBalanceError(
                    f"Insufficient {asset} balance: have {balance}, need {amount}",
                    details={"asset": asset, "sender": sender[:10], "amount": amount},
                )
            accounts = self._balances[asset]
            accounts[sender] = balance - amount
            accounts[recipient] = accounts.get(recipient, 0) + amount

        logger.debug(
            "Token transfer",
            extra={
                "event": "token.transfer",
                "asset": asset[:10],
                "sender": sender[:10],
                "recipient": recipient[:10],
                "amount": amount,
            },
        )

    # ==================== Journal ====================

    def snapshot(self) -> Dict[str, Any]:
        with self._lock:
            return {
                "balances": {asset: dict(accounts) for asset, accounts in self._balances.items()},
            }

    def restore(self, snapshot: Dict[str, Any]) -> None:
        with self._lock:
            self._balances = defaultdict(dict)
            for asset, accounts in snapshot.get("balances", {}).items():
                self._balances[asset] = dict(accounts)
