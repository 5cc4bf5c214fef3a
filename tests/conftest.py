"""
conftest.py - Shared pytest fixtures for ConverterRamp tests

Provides common fixtures used across unit and functional tests:
- A bare test-mode ledger
- A full environment (ledger, fake loan system, converter, ramp)
- Pre-requested loans with and without an oracle
- Lent loan ready for payment tests
"""

import pytest

from ramp import CallContext, Ledger, token

from tests.fakes import (
    ACCOUNTING, DAI, NATIVE,
    FakeOracle, RampEnvironment,
    build_environment,
)


# =============================================================================
# HELPER FUNCTIONS
# =============================================================================

def request_plain_loan(env: RampEnvironment, loan_id: str = "loan-1", amount: int = 1000) -> str:
    """Loan denominated in the accounting currency."""
    env.loans.request_loan(loan_id, "borrower", amount)
    return loan_id


def request_oracle_loan(env: RampEnvironment, loan_id: str = "loan-oracle", amount: int = 1000) -> str:
    """Loan priced through env.oracle; use HALF_RATE (1 token per 2 units) as oracle data."""
    env.loans.request_loan(loan_id, "borrower", amount, oracle=env.oracle)
    return loan_id


# =============================================================================
# FIXTURES
# =============================================================================

@pytest.fixture
def empty_ledger():
    """Test-mode ledger with no tokens registered."""
    return Ledger("test", verbose=False, test_mode=True)


@pytest.fixture
def token_ledger():
    """Ledger with RCN and DAI registered and two funded accounts."""
    ledger = Ledger("test", verbose=False, test_mode=True)
    ledger.register_currency(token(ACCOUNTING, "Ripio Credit Network"))
    ledger.register_currency(token(DAI, "Dai Stablecoin"))
    ledger.register_account("alice")
    ledger.register_account("bob")
    ledger.set_balance("alice", DAI, 10_000)
    ledger.set_balance("alice", ACCOUNTING, 10_000)
    return ledger


@pytest.fixture
def env():
    """Complete ramp environment; alice holds 1,000,000 DAI and native."""
    environment = build_environment()
    environment.fund("alice", DAI, 1_000_000)
    environment.fund("alice", NATIVE, 1_000_000)
    return environment


@pytest.fixture
def plain_loan(env):
    """Requested, unlent loan of 1000 RCN."""
    return request_plain_loan(env)


@pytest.fixture
def oracle_loan(env):
    """Requested, unlent loan of 1000 units priced at 1 RCN per 2 units."""
    return request_oracle_loan(env)


@pytest.fixture
def lent_loan(env, plain_loan):
    """plain_loan funded by alice with DAI (2000 DAI spent)."""
    env.approve_ramp("alice", DAI, 2000)
    env.ramp.lend(CallContext("alice"), env.converter, DAI, 2000, None, 0, plain_loan)
    return plain_loan


@pytest.fixture
def standalone_oracle():
    return FakeOracle("standalone_oracle")
