"""
Unit tests for admin policies and the access registry.
"""

import pytest

from flashlend.core.defi.access_control import (
    AccessRegistry,
    AdminPolicy,
    OwnerAdminPolicy,
    StaticAdminPolicy,
    require_admin,
    require_identifier,
)
from flashlend.core.exceptions import (
    InvalidArgumentError,
    NotAuthorizedError,
    NotFoundError,
)


@pytest.fixture
def registry():
    return AccessRegistry(admin_policy=OwnerAdminPolicy(owner="owner"))


class TestAdminPolicies:
    def test_owner_policy(self):
        policy = OwnerAdminPolicy(owner="owner")

        assert policy.is_admin("owner")
        assert not policy.is_admin("other")
        assert not policy.is_admin("")
        assert isinstance(policy, AdminPolicy)

    def test_owner_policy_requires_owner(self):
        with pytest.raises(InvalidArgumentError):
            OwnerAdminPolicy(owner="")

    def test_static_policy_grant_and_revoke(self):
        policy = StaticAdminPolicy(admins={"alice"})

        policy.grant_admin("alice", "bob")
        assert policy.is_admin("bob")

        policy.revoke_admin("bob", "alice")
        assert not policy.is_admin("alice")
        assert isinstance(policy, AdminPolicy)

    def test_static_policy_only_admin_can_grant(self):
        policy = StaticAdminPolicy(admins={"alice"})

        with pytest.raises(NotAuthorizedError):
            policy.grant_admin("mallory", "mallory")
        assert not policy.is_admin("mallory")

    def test_static_policy_keeps_last_admin(self):
        policy = StaticAdminPolicy(admins={"alice"})

        with pytest.raises(InvalidArgumentError):
            policy.revoke_admin("alice", "alice")
        assert policy.is_admin("alice")

    def test_static_policy_revoke_unknown(self):
        policy = StaticAdminPolicy(admins={"alice", "bob"})

        with pytest.raises(NotFoundError):
            policy.revoke_admin("alice", "carol")


class TestGuards:
    @pytest.mark.parametrize("value", [None, "", "   ", 42, b"USDC"])
    def test_require_identifier_rejects(self, value):
        with pytest.raises(InvalidArgumentError):
            require_identifier(value, "asset")

    def test_require_identifier_returns_value(self):
        assert require_identifier("USDC", "asset") == "USDC"

    def test_require_admin_reports_operation(self):
        with pytest.raises(NotAuthorizedError) as exc_info:
            require_admin(OwnerAdminPolicy(owner="owner"), "mallory", "withdraw_fees")

        assert exc_info.value.details == {"operation": "withdraw_fees"}
        assert "withdraw_fees" in exc_info.value.message


class TestAccessRegistry:
    def test_list_and_delist_asset(self, registry):
        assert registry.list_asset("owner", "USDC") is True
        assert registry.list_asset("owner", "USDC") is False
        assert registry.is_asset_listed("USDC")

        registry.delist_asset("owner", "USDC")
        assert not registry.is_asset_listed("USDC")

    def test_delist_unlisted_asset(self, registry):
        with pytest.raises(NotFoundError):
            registry.delist_asset("owner", "USDC")

    def test_authorize_and_revoke_caller(self, registry):
        assert registry.authorize_caller("owner", "alice") is True
        assert registry.authorize_caller("owner", "alice") is False
        assert registry.is_caller_authorized("alice")

        registry.revoke_caller("owner", "alice")
        assert not registry.is_caller_authorized("alice")

    def test_revoke_unknown_caller(self, registry):
        with pytest.raises(NotFoundError):
            registry.revoke_caller("owner", "alice")

    @pytest.mark.parametrize(
        "operation",
        ["list_asset", "delist_asset", "authorize_caller", "revoke_caller"],
    )
    def test_mutations_require_admin(self, registry, operation):
        with pytest.raises(NotAuthorizedError):
            getattr(registry, operation)("mallory", "USDC")

    def test_identifier_checked_before_admin(self, registry):
        with pytest.raises(InvalidArgumentError):
            registry.list_asset("mallory", "")

    def test_identifiers_are_case_sensitive(self, registry):
        registry.list_asset("owner", "USDC")

        assert not registry.is_asset_listed("usdc")

    def test_membership_views_are_copies(self, registry):
        registry.list_asset("owner", "USDC")

        registry.listed_assets().add("DAI")
        registry.authorized_callers().add("mallory")

        assert registry.listed_assets() == {"USDC"}
        assert registry.authorized_callers() == set()

    def test_snapshot_restore(self, registry):
        registry.list_asset("owner", "USDC")
        snapshot = registry.snapshot()

        registry.list_asset("owner", "DAI")
        registry.authorize_caller("owner", "alice")
        registry.restore(snapshot)

        assert registry.listed_assets() == {"USDC"}
        assert registry.authorized_callers() == set()
