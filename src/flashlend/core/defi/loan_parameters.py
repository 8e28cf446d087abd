"""
Per-asset loan configuration.

Each listed asset owns exactly one LoanParameters record. Records are
immutable values; updating an asset replaces its record wholesale after the
new values pass validation.
"""

from __future__ import annotations

import logging
from dataclasses import asdict, dataclass, field
from typing import Any

from ..exceptions import InvalidArgumentError, NotFoundError
from .access_control import AdminPolicy, require_admin, require_identifier

logger = logging.getLogger(__name__)

# Basis points denominator (10000 = 100%)
BPS_DENOMINATOR = 10_000


@dataclass(frozen=True)
class LoanParameters:
    """
    Lending bounds and premium rates for one asset.

    ``dynamic_premium_rate_bps`` is applied as a second flat linear rate on
    top of ``base_premium_rate_bps``. ``max_duration`` is stored for
    interface compatibility and is not enforced: a flash loan always
    completes within a single invocation.
    """

    max_amount: int
    min_amount: int = 0
    base_premium_rate_bps: int = 0
    dynamic_premium_rate_bps: int = 0
    max_duration: int = 0

    def validate(self) -> None:
        """
        Check the record invariants.

        Raises:
            InvalidArgumentError: On any violation
        """
        for name, value in asdict(self).items():
            # bool is an int subclass but never a valid amount or rate
            if isinstance(value, bool) or not isinstance(value, int):
                raise InvalidArgumentError(f"{name} must be an integer, got {type(value).__name__}")
            if value < 0:
                raise InvalidArgumentError(f"{name} must be non-negative")

        if self.max_amount <= 0:
            raise InvalidArgumentError("max_amount must be positive")
        if self.min_amount > self.max_amount:
            raise InvalidArgumentError(
                f"min_amount ({self.min_amount}) exceeds max_amount ({self.max_amount})"
            )
        if self.base_premium_rate_bps > BPS_DENOMINATOR:
            raise InvalidArgumentError(
                f"base_premium_rate_bps ({self.base_premium_rate_bps}) exceeds {BPS_DENOMINATOR}"
            )

    def to_dict(self) -> dict[str, int]:
        return asdict(self)


@dataclass
class LoanParameterStore:
    """Admin-managed mapping of asset -> LoanParameters."""

    admin_policy: AdminPolicy
    _params: dict[str, LoanParameters] = field(default_factory=dict)

    def get(self, asset: str) -> LoanParameters:
        params = self._params.get(asset)
        if params is None:
            raise NotFoundError(f"No loan parameters for asset {str(asset)[:10]}")
        return params

    def has(self, asset: str) -> bool:
        return asset in self._params

    def assets(self) -> list[str]:
        return list(self._params)

    def set(self, admin: str, asset: str, params: LoanParameters) -> bool:
        """
        Store parameters for an asset, replacing any previous record.

        Args:
            admin: Caller, must be admin
            asset: Asset identifier
            params: New parameters

        Returns:
            True if the asset had no parameters before

        Raises:
            InvalidArgumentError: Bad identifier or invariant violation
            NotAuthorizedError: Caller is not admin
        """
        require_identifier(asset, "asset")
        require_admin(self.admin_policy, admin, "set_loan_parameters")
        if not isinstance(params, LoanParameters):
            raise InvalidArgumentError("params must be LoanParameters")
        params.validate()

        created = asset not in self._params
        self._params[asset] = params

        logger.info(
            "Loan parameters stored",
            extra={
                "event": "params.stored",
                "asset": asset[:10],
                "created": created,
                "max_amount": params.max_amount,
                "min_amount": params.min_amount,
                "base_bps": params.base_premium_rate_bps,
                "dynamic_bps": params.dynamic_premium_rate_bps,
            },
        )
        return created

    def clear(self, admin: str, asset: str) -> None:
        require_identifier(asset, "asset")
        require_admin(self.admin_policy, admin, "clear_loan_parameters")
        if asset not in self._params:
            raise NotFoundError(f"No loan parameters for asset {asset[:10]}")
        del self._params[asset]

        logger.info("Loan parameters cleared", extra={"event": "params.cleared", "asset": asset[:10]})

    # ==================== Journal ====================

    def snapshot(self) -> dict[str, Any]:
        # LoanParameters is frozen, a shallow copy of the mapping is enough
        return {"params": dict(self._params)}

    def restore(self, snapshot: dict[str, Any]) -> None:
        self._params = dict(snapshot.get("params", {}))
