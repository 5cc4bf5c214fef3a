"""
test_settlement.py - Unit tests for ConverterRamp

Tests:
- Cost wrappers
- lend: token and native input, oracle and cosigner, refunds, ownership
- pay: partial, capped, native, zero-balance no-op
- Failure paths: payable, budget, allowance, cosigner, loan system, residual
- Stage tracking and status output
- emergency_withdraw authorization
"""

import pytest

from ramp import (
    CallContext, ConverterRamp, Operation, SettlementStage,
    PayableMismatch, CostExceedsBudget, TransferFailed, CosignerRejected,
    LoanSystemRejected, ResidualBalance, NotAuthorized, NoRoute,
    DEFAULT_RAMP_ACCOUNT,
)
from tests.fakes import (
    ACCOUNTING, DAI, HALF_RATE, NATIVE,
    FakeCosigner, build_environment,
)


ALICE = CallContext("alice")


def assert_ramp_empty(env):
    for currency in env.ledger.list_currencies():
        assert env.ledger.get_balance(env.ramp.account, currency) == 0
    assert env.ledger.standing_allowances(env.ramp.account) == {}


class TestConstruction:

    def test_registers_account(self, env):
        assert env.ledger.is_registered(DEFAULT_RAMP_ACCOUNT)

    def test_reuses_registered_account(self, env):
        ramp = ConverterRamp(env.ledger, env.loans, account=DEFAULT_RAMP_ACCOUNT)
        assert ramp.account == DEFAULT_RAMP_ACCOUNT


class TestCostWrappers:

    def test_get_lend_cost(self, env, oracle_loan):
        cosigner = FakeCosigner(cost=1234)
        assert env.ramp.get_lend_cost(env.converter, DAI, cosigner, oracle_loan, HALF_RATE) == 2234

    def test_get_pay_cost_with_fee(self, env, lent_loan):
        assert env.ramp.get_pay_cost_with_fee(env.converter, DAI, lent_loan, 400) == 808

    def test_no_route(self, env, plain_loan):
        env.converter.rates.clear()
        with pytest.raises(NoRoute):
            env.ramp.get_lend_cost(env.converter, DAI, None, plain_loan)


# ============================================================================
# LEND
# ============================================================================

class TestLend:
    """Successful lends."""

    def test_lend_with_token(self, env, plain_loan):
        env.approve_ramp("alice", DAI, 2500)
        receipt = env.ramp.lend(ALICE, env.converter, DAI, 2500, None, 0, plain_loan)

        assert receipt.operation == Operation.LEND
        assert receipt.pulled == 2500
        assert receipt.spent == 2000
        assert receipt.refunded == 500
        assert receipt.tokens == 1000
        assert receipt.applied == 1000
        assert env.ledger.get_balance("alice", DAI) == 1_000_000 - 2000
        assert env.ledger.get_balance("borrower", ACCOUNTING) == 1000
        assert env.ledger.allowance(DAI, "alice", env.ramp.account) == 0
        assert_ramp_empty(env)

    def test_ownership_transferred_to_caller(self, env, plain_loan):
        env.approve_ramp("alice", DAI, 2000)
        env.ramp.lend(ALICE, env.converter, DAI, 2000, None, 0, plain_loan)
        assert env.loans.loans[plain_loan].lender == "alice"
        assert env.loans.get_outstanding_balance(plain_loan) == 1000

    def test_lend_with_native(self, env, plain_loan):
        receipt = env.ramp.lend(CallContext("alice", 3500), env.converter, NATIVE, 3500, None, 0, plain_loan)
        assert receipt.spent == 3000
        assert receipt.refunded == 500
        assert env.ledger.get_balance("alice", NATIVE) == 1_000_000 - 3000
        assert_ramp_empty(env)

    def test_lend_in_accounting_currency(self, env, plain_loan):
        env.fund("alice", ACCOUNTING, 1200)
        env.approve_ramp("alice", ACCOUNTING, 1200)
        receipt = env.ramp.lend(ALICE, env.converter, ACCOUNTING, 1200, None, 0, plain_loan)
        assert receipt.spent == 1000
        assert env.ledger.get_balance("alice", ACCOUNTING) == 200
        assert env.converter.conversions == 0
        assert_ramp_empty(env)

    def test_lend_with_oracle_and_cosigner(self, env, oracle_loan):
        env.cosigner.cost = 1234
        env.approve_ramp("alice", DAI, 2234)
        receipt = env.ramp.lend(ALICE, env.converter, DAI, 2234, env.cosigner, 1234, oracle_loan, HALF_RATE)

        assert receipt.tokens == 1117
        assert receipt.spent == 2234
        assert env.ledger.get_balance("borrower", ACCOUNTING) == 500
        assert env.ledger.get_balance(env.cosigner.account, ACCOUNTING) == 617
        (read,) = env.ledger.events("ReadOracle")
        assert read.args == {"oracle": "oracle", "tokens": 1, "equivalent": 2}
        assert_ramp_empty(env)

    def test_lent_event(self, env, plain_loan):
        env.approve_ramp("alice", DAI, 2000)
        env.ramp.lend(ALICE, env.converter, DAI, 2000, None, 0, plain_loan)
        (lent,) = env.ledger.events("Lent")
        assert lent.args["loan_id"] == plain_loan
        assert lent.args["lender"] == "alice"
        assert lent.args["tokens"] == 1000

    def test_no_read_oracle_event_without_oracle(self, env, plain_loan):
        env.approve_ramp("alice", DAI, 2000)
        env.ramp.lend(ALICE, env.converter, DAI, 2000, None, 0, plain_loan)
        assert env.ledger.events("ReadOracle") == []


class TestLendFailures:
    """Every failed lend leaves the environment untouched."""

    def test_value_attached_to_token_lend(self, env, plain_loan):
        env.approve_ramp("alice", DAI, 2000)
        before = env.state()
        with pytest.raises(PayableMismatch):
            env.ramp.lend(CallContext("alice", 1), env.converter, DAI, 2000, None, 0, plain_loan)
        assert env.state() == before

    def test_native_value_mismatch(self, env, plain_loan):
        with pytest.raises(PayableMismatch):
            env.ramp.lend(CallContext("alice", 2999), env.converter, NATIVE, 3000, None, 0, plain_loan)

    def test_over_budget(self, env, plain_loan):
        env.approve_ramp("alice", DAI, 1999)
        before = env.state()
        with pytest.raises(CostExceedsBudget):
            env.ramp.lend(ALICE, env.converter, DAI, 1999, None, 0, plain_loan)
        assert env.state() == before
        assert env.converter.conversions == 0

    def test_missing_allowance(self, env, plain_loan):
        before = env.state()
        with pytest.raises(TransferFailed):
            env.ramp.lend(ALICE, env.converter, DAI, 2000, None, 0, plain_loan)
        assert env.state() == before

    def test_cosigner_cost_over_limit(self, env, oracle_loan):
        env.cosigner.cost = 1234
        env.approve_ramp("alice", DAI, 5000)
        before = env.state()
        with pytest.raises(CosignerRejected, match="exceeds limit"):
            env.ramp.lend(ALICE, env.converter, DAI, 5000, env.cosigner, 1233, oracle_loan, HALF_RATE)
        assert env.state() == before
        assert env.converter.conversions == 0

    def test_cosigner_declines(self, env, plain_loan):
        env.cosigner.declines = True
        env.approve_ramp("alice", DAI, 2000)
        before = env.state()
        with pytest.raises(CosignerRejected):
            env.ramp.lend(ALICE, env.converter, DAI, 2000, env.cosigner, 0, plain_loan)
        assert env.state() == before

    def test_loan_system_rejects(self, env, plain_loan):
        env.loans.fail_on = "lend"
        env.approve_ramp("alice", DAI, 2000)
        before = env.state()
        with pytest.raises(LoanSystemRejected):
            env.ramp.lend(ALICE, env.converter, DAI, 2000, None, 0, plain_loan)
        assert env.state() == before
        assert env.loans.loans[plain_loan].lender is None

    def test_already_lent(self, env, lent_loan):
        env.approve_ramp("bob", DAI, 2000)
        env.fund("bob", DAI, 2000)
        with pytest.raises(LoanSystemRejected, match="already lent"):
            env.ramp.lend(CallContext("bob"), env.converter, DAI, 2000, None, 0, lent_loan)

    def test_loan_system_undercharges(self, env, plain_loan):
        env.loans.undercharge = 1
        env.approve_ramp("alice", DAI, 2000)
        before = env.state()
        with pytest.raises(ResidualBalance):
            env.ramp.lend(ALICE, env.converter, DAI, 2000, None, 0, plain_loan)
        assert env.state() == before


# ============================================================================
# PAY
# ============================================================================

class TestPay:
    """Successful payments."""

    def test_partial_payment(self, env, lent_loan):
        env.approve_ramp("alice", DAI, 1000)
        receipt = env.ramp.pay(ALICE, env.converter, DAI, 400, 1000, lent_loan)

        assert receipt.operation == Operation.PAY
        assert receipt.applied == 400
        assert receipt.tokens == 404
        assert receipt.spent == 808
        assert receipt.refunded == 192
        assert env.loans.get_outstanding_balance(lent_loan) == 600
        assert env.ledger.get_balance("alice", ACCOUNTING) == 400
        assert env.ledger.get_balance("fee_collector", ACCOUNTING) == 4
        assert_ramp_empty(env)

    def test_payment_capped_at_outstanding(self, env, lent_loan):
        env.approve_ramp("alice", DAI, 3000)
        receipt = env.ramp.pay(ALICE, env.converter, DAI, 2000, 3000, lent_loan)
        assert receipt.applied == 1000
        assert receipt.spent == 2020
        assert receipt.refunded == 980
        assert env.loans.get_outstanding_balance(lent_loan) == 0
        assert_ramp_empty(env)

    def test_native_payment(self, env, lent_loan):
        receipt = env.ramp.pay(CallContext("alice", 2000), env.converter, NATIVE, 400, 2000, lent_loan)
        assert receipt.spent == 404 * 3
        assert receipt.refunded == 2000 - 1212
        assert_ramp_empty(env)

    def test_paid_event(self, env, lent_loan):
        env.approve_ramp("alice", DAI, 1000)
        env.ramp.pay(ALICE, env.converter, DAI, 400, 1000, lent_loan)
        (paid,) = env.ledger.events("Paid")
        assert paid.args["fee"] == 4
        assert paid.args["amount"] == 400

    def test_oracle_payment(self, env, oracle_loan):
        env.approve_ramp("alice", DAI, 1000)
        env.ramp.lend(ALICE, env.converter, DAI, 1000, None, 0, oracle_loan, HALF_RATE)
        env.approve_ramp("alice", DAI, 1000)
        receipt = env.ramp.pay(ALICE, env.converter, DAI, 401, 1000, oracle_loan, HALF_RATE)
        assert receipt.tokens == 204
        assert receipt.spent == 408
        assert len(env.ledger.events("ReadOracle")) == 2


class TestPayNoop:
    """Paying a loan with nothing outstanding moves nothing."""

    def test_unlent_loan(self, env, plain_loan):
        env.approve_ramp("alice", DAI, 1000)
        before = env.state()
        receipt = env.ramp.pay(ALICE, env.converter, DAI, 500, 1000, plain_loan)
        assert receipt.is_noop
        assert receipt.pulled == 0
        assert env.state() == before
        assert env.converter.estimates == 0
        assert env.converter.conversions == 0

    def test_noop_stage_is_done(self, env, plain_loan):
        env.ramp.pay(ALICE, env.converter, DAI, 500, 0, plain_loan)
        assert env.ramp.stage == SettlementStage.DONE


class TestPayFailures:

    def test_over_budget(self, env, lent_loan):
        env.approve_ramp("alice", DAI, 807)
        before = env.state()
        with pytest.raises(CostExceedsBudget):
            env.ramp.pay(ALICE, env.converter, DAI, 400, 807, lent_loan)
        assert env.state() == before

    def test_loan_system_rejects(self, env, lent_loan):
        env.loans.fail_on = "pay"
        env.approve_ramp("alice", DAI, 1000)
        before = env.state()
        with pytest.raises(LoanSystemRejected):
            env.ramp.pay(ALICE, env.converter, DAI, 400, 1000, lent_loan)
        assert env.state() == before
        assert env.loans.get_outstanding_balance(lent_loan) == 1000

    def test_loan_system_undercharges(self, env, lent_loan):
        env.loans.undercharge = 2
        env.approve_ramp("alice", DAI, 1000)
        with pytest.raises(ResidualBalance):
            env.ramp.pay(ALICE, env.converter, DAI, 400, 1000, lent_loan)


# ============================================================================
# STAGES AND OUTPUT
# ============================================================================

class TestStages:

    def test_success_reaches_done(self, env, lent_loan):
        assert env.ramp.stage == SettlementStage.DONE

    def test_failure_marks_failed(self, env, plain_loan):
        with pytest.raises(TransferFailed):
            env.ramp.lend(ALICE, env.converter, DAI, 2000, None, 0, plain_loan)
        assert env.ramp.stage == SettlementStage.FAILED


class TestStatusOutput:
    """Verbose ledgers print one line per settlement outcome."""

    def _env(self):
        env = build_environment(verbose=True)
        env.fund("alice", DAI, 10_000)
        env.loans.request_loan("loan-1", "borrower", 1000)
        return env

    def test_lend_success_line(self, capsys):
        env = self._env()
        env.approve_ramp("alice", DAI, 2000)
        env.ramp.lend(ALICE, env.converter, DAI, 2000, None, 0, "loan-1")
        assert "✓ LEND loan-1" in capsys.readouterr().out

    def test_failure_line_names_stage(self, capsys):
        env = self._env()
        env.loans.fail_on = "lend"
        env.approve_ramp("alice", DAI, 2000)
        with pytest.raises(LoanSystemRejected):
            env.ramp.lend(ALICE, env.converter, DAI, 2000, None, 0, "loan-1")
        assert "✗ FAILED at CONVERTED" in capsys.readouterr().out

    def test_noop_line(self, capsys):
        env = self._env()
        env.ramp.pay(ALICE, env.converter, DAI, 10, 0, "loan-1")
        assert "· PAY loan-1" in capsys.readouterr().out

    def test_quiet_ledger(self, env, plain_loan, capsys):
        env.approve_ramp("alice", DAI, 2000)
        env.ramp.lend(ALICE, env.converter, DAI, 2000, None, 0, plain_loan)
        assert capsys.readouterr().out == ""


# ============================================================================
# EMERGENCY WITHDRAW
# ============================================================================

class TestEmergencyWithdraw:

    def test_owner_withdraws(self, env):
        env.fund(env.ramp.account, DAI, 50)
        env.ramp.emergency_withdraw(CallContext("admin"), DAI, "bob", 50)
        assert env.ledger.get_balance("bob", DAI) == 50
        (event,) = env.ledger.events("EmergencyWithdraw")
        assert event.args == {"currency": DAI, "to": "bob", "amount": 50}

    def test_non_owner_rejected(self, env):
        env.fund(env.ramp.account, DAI, 50)
        with pytest.raises(NotAuthorized):
            env.ramp.emergency_withdraw(ALICE, DAI, "alice", 50)
        assert env.ledger.get_balance(env.ramp.account, DAI) == 50

    def test_no_owner_rejects_everyone(self, env):
        ramp = ConverterRamp(env.ledger, env.loans, account="ownerless")
        with pytest.raises(NotAuthorized):
            ramp.emergency_withdraw(CallContext("admin"), DAI, "admin", 0)

    def test_custom_authorization(self, env):
        ramp = ConverterRamp(env.ledger, env.loans, account="guarded", authorize=lambda sender: sender == "bob")
        env.fund("guarded", NATIVE, 9)
        ramp.emergency_withdraw(CallContext("bob"), NATIVE, "bob", 9)
        assert env.ledger.get_balance("bob", NATIVE) == 9
