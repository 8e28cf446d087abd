"""
Flash-loan premium computation.

premium = floor(amount * base_bps / 10000) + floor(amount * dynamic_bps / 10000)

Each term is truncated on its own, so two small rates can both round to zero
where their sum would not. The "dynamic" rate is a second flat rate; it
does not scale with loan size or utilization.
"""

from __future__ import annotations

from dataclasses import dataclass

from ..exceptions import InvalidArgumentError
from .loan_parameters import BPS_DENOMINATOR, LoanParameterStore


def mul_div(a: int, b: int, denominator: int) -> int:
    """
    Floor of (a * b) / denominator with exact integer arithmetic.

    Raises:
        ValueError: If denominator is zero
    """
    if denominator == 0:
        raise ValueError("Division by zero")

    return a * b // denominator


def bps_of(amount: int, rate_bps: int) -> int:
    """Floor of ``amount * rate_bps / 10000``."""
    return mul_div(amount, rate_bps, BPS_DENOMINATOR)


@dataclass
class PremiumCalculator:
    """Pure premium function backed by the loan parameter store."""

    store: LoanParameterStore

    def premium(self, asset: str, amount: int) -> int:
        """
        Premium owed on a loan of ``amount`` units of ``asset``.

        Raises:
            NotFoundError: If the asset has no parameters
            InvalidArgumentError: If amount is not a non-negative integer
        """
        if isinstance(amount, bool) or not isinstance(amount, int) or amount < 0:
            raise InvalidArgumentError("amount must be a non-negative integer")

        params = self.store.get(asset)
        return bps_of(amount, params.base_premium_rate_bps) + bps_of(
            amount, params.dynamic_premium_rate_bps
        )
