"""
Attack-focused tests for FlashLoanProvider.

Targets:
- Reentrancy into guarded operations from the borrower callback
- Partial repayment and post-repayment siphoning
- Callback failures and state rollback
- Admin operations smuggled into a failing loan
"""

import threading

import pytest

from flashlend.core.defi.events import CallerAuthorized, LoanExecuted
from flashlend.core.defi.flash_loans import LoanState
from flashlend.core.exceptions import (
    LoanNotRepaidError,
    NotAuthorizedError,
    ReentrancyError,
)

pytestmark = pytest.mark.security


def _state(provider, tokens):
    """Observable protocol state used to check full rollback."""
    return {
        "custodian": tokens.balance_of("USDC", provider.address),
        "borrower": tokens.balance_of("USDC", "borrower"),
        "treasury": tokens.balance_of("USDC", "treasury"),
        "entry": provider.ledger_entry("USDC").to_dict(),
        "listed": provider.registry.listed_assets(),
        "callers": provider.registry.authorized_callers(),
        "events": len(provider.audit_log.history),
    }


def test_nested_flash_loan_is_rejected(provider, tokens, make_borrower):
    """A second loan opened from inside the callback hits the guard."""
    before = _state(provider, tokens)

    def reenter(asset, amount, premium, payload):
        provider.execute_flash_loan("borrower", asset, amount, make_borrower())
        return True

    with pytest.raises(ReentrancyError):
        provider.execute_flash_loan("borrower", "USDC", 1_000, reenter)

    assert _state(provider, tokens) == before
    assert not provider.locked


def test_caught_reentrancy_does_not_break_outer_loan(provider, tokens):
    """Borrower swallowing the rejection and repaying still commits once."""
    rejected = []

    def callback(asset, amount, premium, payload):
        try:
            provider.execute_flash_loan("borrower", asset, amount, lambda *a: True)
        except ReentrancyError as exc:
            rejected.append(exc)
        tokens.transfer(asset, "borrower", provider.address, amount + premium)
        return True

    execution = provider.execute_flash_loan("borrower", "USDC", 1_000, callback)

    assert len(rejected) == 1
    assert execution.state is LoanState.COMMITTED
    assert provider.last_execution is execution
    assert provider.ledger_entry("USDC").loan_count == 1
    assert len(provider.audit_log.events_of(LoanExecuted)) == 1


@pytest.mark.parametrize(
    "operation",
    [
        lambda p: p.withdraw_fees("owner", "USDC"),
        lambda p: p.withdraw_liquidity("owner", "USDC", 1_000),
        lambda p: p.deposit_liquidity("owner", "USDC", 1_000),
    ],
    ids=["withdraw_fees", "withdraw_liquidity", "deposit_liquidity"],
)
def test_liquidity_operations_blocked_during_loan(provider, tokens, make_borrower, operation):
    """Even the admin cannot move custodial funds while a loan is open."""
    provider.execute_flash_loan("borrower", "USDC", 10_000, make_borrower())
    tokens.mint("USDC", "owner", 1_000)
    repay = make_borrower()

    def callback(asset, amount, premium, payload):
        with pytest.raises(ReentrancyError):
            operation(provider)
        return repay(asset, amount, premium, payload)

    provider.execute_flash_loan("borrower", "USDC", 1_000, callback)

    assert provider.ledger_entry("USDC").fees_collected == 16
    assert tokens.balance_of("USDC", "owner") == 1_000


def test_partial_repayment_rejected(provider, tokens, make_borrower):
    """Repaying principal without the premium reverts everything."""
    before = _state(provider, tokens)

    with pytest.raises(LoanNotRepaidError):
        provider.execute_flash_loan("borrower", "USDC", 10_000, make_borrower(shortfall=15))

    assert _state(provider, tokens) == before


def test_borrower_keeping_principal_rejected(provider, tokens):
    before = _state(provider, tokens)

    with pytest.raises(LoanNotRepaidError):
        provider.execute_flash_loan("borrower", "USDC", 10_000, lambda *a: True)

    assert _state(provider, tokens) == before
    assert tokens.balance_of("USDC", "borrower") == 1_000


def test_siphon_after_repayment_rejected(provider, tokens, make_borrower):
    """Repay in full, then drain custody directly: balance check catches it."""
    before = _state(provider, tokens)
    repay = make_borrower()

    def siphon(asset, amount, premium, payload):
        repay(asset, amount, premium, payload)
        tokens.transfer(asset, provider.address, "attacker", 500)
        return True

    with pytest.raises(LoanNotRepaidError):
        provider.execute_flash_loan("borrower", "USDC", 1_000, siphon)

    assert _state(provider, tokens) == before
    assert tokens.balance_of("USDC", "attacker") == 0


def test_callback_exception_propagates_unchanged(provider, tokens):
    """The engine re-raises borrower errors rather than wrapping them."""
    before = _state(provider, tokens)

    class ArbitrageFailed(Exception):
        pass

    def callback(asset, amount, premium, payload):
        tokens.transfer(asset, "borrower", "dex", amount)
        raise ArbitrageFailed("slippage")

    with pytest.raises(ArbitrageFailed, match="slippage"):
        provider.execute_flash_loan("borrower", "USDC", 1_000, callback)

    assert _state(provider, tokens) == before
    assert tokens.balance_of("USDC", "dex") == 0
    assert provider.last_execution.error == "ArbitrageFailed"
    assert provider.last_execution.state is LoanState.REVERTED


def test_provider_usable_after_failed_loan(provider, make_borrower):
    with pytest.raises(LoanNotRepaidError):
        provider.execute_flash_loan("borrower", "USDC", 1_000, make_borrower(shortfall=1))

    execution = provider.execute_flash_loan("borrower", "USDC", 1_000, make_borrower())
    assert execution.state is LoanState.COMMITTED


def test_admin_change_inside_failed_loan_is_rolled_back(provider, tokens, make_borrower):
    """Side effects of the callback share the loan's fate."""
    before = _state(provider, tokens)
    underpay = make_borrower(shortfall=1)

    def callback(asset, amount, premium, payload):
        provider.authorize_caller("owner", "eve")
        return underpay(asset, amount, premium, payload)

    with pytest.raises(LoanNotRepaidError):
        provider.execute_flash_loan("borrower", "USDC", 1_000, callback)

    assert not provider.registry.is_caller_authorized("eve")
    assert _state(provider, tokens) == before


def test_admin_change_inside_committed_loan_is_published(provider, make_borrower):
    repay = make_borrower()

    def callback(asset, amount, premium, payload):
        provider.authorize_caller("owner", "eve")
        return repay(asset, amount, premium, payload)

    provider.execute_flash_loan("borrower", "USDC", 1_000, callback)

    names = [e.name for e in provider.audit_log.history[-2:]]
    assert names == ["CallerAuthorized", "LoanExecuted"]
    assert provider.audit_log.events_of(CallerAuthorized)[-1].caller == "eve"


def test_borrower_cannot_self_authorize(provider, make_borrower):
    repay = make_borrower()

    def callback(asset, amount, premium, payload):
        with pytest.raises(NotAuthorizedError):
            provider.authorize_caller("borrower", "borrower-2")
        return repay(asset, amount, premium, payload)

    provider.execute_flash_loan("borrower", "USDC", 1_000, callback)

    assert not provider.registry.is_caller_authorized("borrower-2")


def test_concurrent_thread_rejected_while_loan_open(provider, make_borrower):
    """A second thread entering mid-loan fails fast instead of racing."""
    errors = []
    repay = make_borrower()

    def contender():
        try:
            provider.execute_flash_loan("borrower", "USDC", 1_000, repay)
        except ReentrancyError as exc:
            errors.append(exc)

    def callback(asset, amount, premium, payload):
        thread = threading.Thread(target=contender)
        thread.start()
        thread.join(timeout=5)
        return repay(asset, amount, premium, payload)

    provider.execute_flash_loan("borrower", "USDC", 1_000, callback)

    assert len(errors) == 1
    assert provider.ledger_entry("USDC").loan_count == 1


def test_admin_change_from_other_thread_cannot_join_open_loan(provider, tokens, make_borrower):
    """Another thread's admin call is rejected, not folded into the loan."""
    before = _state(provider, tokens)
    outcome = []
    underpay = make_borrower(shortfall=1)

    def admin_thread():
        try:
            provider.authorize_caller("owner", "eve")
        except ReentrancyError:
            outcome.append("rejected")

    def callback(asset, amount, premium, payload):
        thread = threading.Thread(target=admin_thread)
        thread.start()
        thread.join(timeout=5)
        return underpay(asset, amount, premium, payload)

    with pytest.raises(LoanNotRepaidError):
        provider.execute_flash_loan("borrower", "USDC", 1_000, callback)

    assert outcome == ["rejected"]
    assert _state(provider, tokens) == before

    # Once the loan is closed the same change commits and is published
    provider.authorize_caller("owner", "eve")
    assert provider.registry.is_caller_authorized("eve")
    assert provider.audit_log.events_of(CallerAuthorized)[-1].caller == "eve"
