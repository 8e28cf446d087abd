"""
Shared fixtures for flash-loan tests.
"""

import pytest

from flashlend.core.defi.flash_loans import FlashLoanProvider
from flashlend.core.defi.loan_parameters import LoanParameters
from flashlend.core.defi.token_ledger import InMemoryTokenLedger

OWNER = "owner"
TREASURY = "treasury"
CUSTODIAN = "custodian"
BORROWER = "borrower"
FIXED_TIME = 1_700_000_000.0

SEED_LIQUIDITY = 50_000
BORROWER_FUNDS = 1_000


@pytest.fixture
def usdc_params():
    """USDC bounds and rates: premium 1 on 1000, 0 on 999."""
    return LoanParameters(
        max_amount=10_000,
        min_amount=100,
        base_premium_rate_bps=10,
        dynamic_premium_rate_bps=5,
    )


@pytest.fixture
def tokens():
    return InMemoryTokenLedger()


@pytest.fixture
def provider(tokens, usdc_params):
    """Provider with USDC listed, one authorized borrower and seeded liquidity."""
    provider = FlashLoanProvider(
        token_ledger=tokens,
        owner=OWNER,
        address=CUSTODIAN,
        fee_beneficiary=TREASURY,
        initial_assets={"USDC": usdc_params},
        initial_callers=[BORROWER],
        clock=lambda: FIXED_TIME,
    )
    tokens.mint("USDC", OWNER, SEED_LIQUIDITY)
    provider.deposit_liquidity(OWNER, "USDC", SEED_LIQUIDITY)
    # Borrower keeps some funds of its own to pay premiums
    tokens.mint("USDC", BORROWER, BORROWER_FUNDS)
    return provider


@pytest.fixture
def make_borrower(provider, tokens):
    """
    Factory for borrower callbacks.

    The callback repays principal plus premium minus ``shortfall`` from
    ``account`` into the custodian and returns ``result``.
    """

    def factory(account=BORROWER, shortfall=0, result=True, calls=None):
        def callback(asset, amount, premium, payload):
            if calls is not None:
                calls.append((asset, amount, premium, payload))
            tokens.transfer(asset, account, provider.address, amount + premium - shortfall)
            return result

        return callback

    return factory
