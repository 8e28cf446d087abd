"""
Access control for the flash-loan protocol.

Two concerns live here:
- Admin authorization, delegated to an injected policy object so the
  protocol never hard-codes who its owner is.
- The access registry: which assets are listed for lending and which
  callers may borrow.

Every mutator validates its identifier, checks admin rights through the
policy, and writes an audit trail entry via structured logging.
"""

from __future__ import annotations

import copy
import logging
from dataclasses import dataclass, field
from typing import Any, Protocol, runtime_checkable

from ..exceptions import InvalidArgumentError, NotAuthorizedError, NotFoundError

logger = logging.getLogger(__name__)


@runtime_checkable
class AdminPolicy(Protocol):
    """Opaque "is-admin" predicate consulted by privileged operations."""

    def is_admin(self, identity: str) -> bool:
        ...


@dataclass
class OwnerAdminPolicy:
    """Single-owner policy: only ``owner`` holds admin rights."""

    owner: str = ""

    def __post_init__(self) -> None:
        if not self.owner:
            raise InvalidArgumentError("Owner identity is required")

    def is_admin(self, identity: str) -> bool:
        return bool(identity) and identity == self.owner


@dataclass
class StaticAdminPolicy:
    """
    Set-based policy with admin-managed membership.

    Only an existing admin may grant or revoke admin rights, and the last
    admin cannot be removed.
    """

    admins: set[str] = field(default_factory=set)

    def is_admin(self, identity: str) -> bool:
        return bool(identity) and identity in self.admins

    def grant_admin(self, caller: str, identity: str) -> None:
        require_admin(self, caller, "grant_admin")
        require_identifier(identity, "admin identity")
        self.admins.add(identity)
        logger.info(
            "Admin granted",
            extra={
                "event": "access.admin_granted",
                "identity": identity[:10],
                "admin": caller[:10],
            },
        )

    def revoke_admin(self, caller: str, identity: str) -> None:
        require_admin(self, caller, "revoke_admin")
        if identity not in self.admins:
            raise NotFoundError(f"{identity[:10]} is not an admin")
        if len(self.admins) == 1:
            raise InvalidArgumentError("Cannot revoke the last admin")
        self.admins.discard(identity)
        logger.info(
            "Admin revoked",
            extra={
                "event": "access.admin_revoked",
                "identity": identity[:10],
                "admin": caller[:10],
            },
        )


def require_identifier(value: Any, label: str) -> str:
    """Reject null, empty or non-string identifiers."""
    if not isinstance(value, str) or not value.strip():
        raise InvalidArgumentError(f"{label} must be a non-empty string")
    return value


def require_admin(policy: AdminPolicy, caller: str, operation: str) -> None:
    """
    Raise NotAuthorizedError unless ``caller`` is admin under ``policy``.

    Args:
        policy: Admin policy to consult
        caller: Identity invoking the operation
        operation: Operation name, for the audit trail

    Raises:
        NotAuthorizedError: If the policy denies admin rights
    """
    if not policy.is_admin(caller):
        logger.warning(
            "Access denied: admin required",
            extra={
                "event": "access.admin_required",
                "operation": operation,
                "caller": str(caller)[:10],
            },
        )
        raise NotAuthorizedError(
            f"Unauthorized: caller {str(caller)[:10]} cannot perform {operation}",
            details={"operation": operation},
        )


@dataclass
class AccessRegistry:
    """
    Listed assets and authorized borrowers.

    Membership sets are owned exclusively by the registry. Mutations are
    admin-only; reads are open.
    """

    admin_policy: AdminPolicy
    _listed_assets: set[str] = field(default_factory=set)
    _authorized_callers: set[str] = field(default_factory=set)

    # ==================== Queries ====================

    def is_asset_listed(self, asset: str) -> bool:
        return asset in self._listed_assets

    def is_caller_authorized(self, caller: str) -> bool:
        return caller in self._authorized_callers

    def listed_assets(self) -> set[str]:
        return set(self._listed_assets)

    def authorized_callers(self) -> set[str]:
        return set(self._authorized_callers)

    # ==================== Admin Mutations ====================

    def list_asset(self, admin: str, asset: str) -> bool:
        """
        Mark an asset as lendable.

        Returns:
            True if the asset was newly listed, False if it already was
        """
        require_identifier(asset, "asset")
        require_admin(self.admin_policy, admin, "list_asset")

        if asset in self._listed_assets:
            return False
        self._listed_assets.add(asset)

        logger.info(
            "Asset listed",
            extra={"event": "registry.asset_listed", "asset": asset[:10], "admin": admin[:10]},
        )
        return True

    def delist_asset(self, admin: str, asset: str) -> None:
        require_identifier(asset, "asset")
        require_admin(self.admin_policy, admin, "delist_asset")

        if asset not in self._listed_assets:
            raise NotFoundError(f"Asset {asset[:10]} is not listed")
        self._listed_assets.discard(asset)

        logger.info(
            "Asset delisted",
            extra={"event": "registry.asset_delisted", "asset": asset[:10], "admin": admin[:10]},
        )

    def authorize_caller(self, admin: str, caller: str) -> bool:
        """
        Allow ``caller`` to borrow.

        Returns:
            True if newly authorized, False if already authorized
        """
        require_identifier(caller, "caller")
        require_admin(self.admin_policy, admin, "authorize_caller")

        if caller in self._authorized_callers:
            return False
        self._authorized_callers.add(caller)

        logger.info(
            "Caller authorized",
            extra={"event": "registry.caller_authorized", "caller": caller[:10], "admin": admin[:10]},
        )
        return True

    def revoke_caller(self, admin: str, caller: str) -> None:
        require_identifier(caller, "caller")
        require_admin(self.admin_policy, admin, "revoke_caller")

        if caller not in self._authorized_callers:
            raise NotFoundError(f"Caller {caller[:10]} is not authorized")
        self._authorized_callers.discard(caller)

        logger.info(
            "Caller revoked",
            extra={"event": "registry.caller_revoked", "caller": caller[:10], "admin": admin[:10]},
        )

    # ==================== Journal ====================

    def snapshot(self) -> dict[str, Any]:
        return {
            "listed_assets": copy.copy(self._listed_assets),
            "authorized_callers": copy.copy(self._authorized_callers),
        }

    def restore(self, snapshot: dict[str, Any]) -> None:
        self._listed_assets = set(snapshot.get("listed_assets", set()))
        self._authorized_callers = set(snapshot.get("authorized_callers", set()))
