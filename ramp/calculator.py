"""
calculator.py - Loan Cost Calculator

This module computes, before any conversion happens, the worst-case input a
caller must supply to lend to or pay a loan.

ARCHITECTURE (Pure Function Pattern):
=====================================

1. PURE CALCULATION FUNCTIONS (calculate_*):
   - Take every input explicitly; integer arithmetic only
   - Example: calculate_fee(123, 100, 10000) -> 2

2. FROZEN REQUIREMENTS (LendRequirement, PayRequirement):
   - Immutable snapshot of what a settlement must forward to the loan system

3. ADAPTER FUNCTIONS (load_*_requirement):
   - Read the loan system, cosigner and oracle once
   - The ONLY place that queries collaborators for amounts

4. CONVENIENCE FUNCTIONS (lend_cost, pay_cost):
   - Load the requirement, then quote the input through the Conversion Gateway

Rounding Policy:
    Fees round up:            fee = ceil(amount * fee_rate / fee_base)
    Oracle conversions round up, matching the loan system:
                              tokens = ceil(amount * rate.tokens / rate.equivalent)

Fee Accounting:
    effective = min(requested, outstanding)          (loan currency)
    tokens    = rate.to_tokens(effective)            (accounting tokens)
    required  = tokens + ceil(tokens * fee_rate / fee_base)
"""

from __future__ import annotations
from dataclasses import dataclass
from typing import Optional

from .core import (
    Amount, Converter, Cosigner, CurrencyId, LoanId, LoanSystem, Oracle,
    OracleRate,
    ceil_div, require_amount,
)
from .conversion import estimate_input
from .oracle import read_rate


# ============================================================================
# PURE CALCULATION FUNCTIONS
# ============================================================================

def calculate_fee(amount: Amount, fee_rate: int, fee_base: int) -> Amount:
    """
    Protocol fee on amount, rounded up.

    Example:
        calculate_fee(100, 100, 10000) -> 1
        calculate_fee(123, 100, 10000) -> 2   (1.23 rounded up)
    """
    require_amount("amount", amount)
    require_amount("fee_rate", fee_rate)
    if fee_base <= 0:
        raise ValueError(f"fee_base must be positive, got {fee_base}")
    return ceil_div(amount * fee_rate, fee_base)


def calculate_amount_with_fee(amount: Amount, fee_rate: int, fee_base: int) -> Amount:
    """amount plus its rounded-up fee."""
    return amount + calculate_fee(amount, fee_rate, fee_base)


def calculate_lend_amount(principal: Amount, cosigner_cost: Amount, rate: OracleRate) -> Amount:
    """Accounting tokens needed to fund principal plus the cosigner's cost."""
    require_amount("principal", principal)
    require_amount("cosigner_cost", cosigner_cost)
    return rate.to_tokens(principal + cosigner_cost)


def calculate_effective_payment(requested: Amount, outstanding: Amount) -> Amount:
    """Payment actually applied: the request capped at the outstanding balance."""
    require_amount("requested", requested)
    require_amount("outstanding", outstanding)
    return min(requested, outstanding)


def calculate_pay_amount(
    requested: Amount,
    outstanding: Amount,
    rate: OracleRate,
    fee_rate: int,
    fee_base: int,
) -> Amount:
    """
    Fee-inclusive accounting tokens needed to pay a loan.

    Example:
        outstanding=1000, requested=2000, identity rate, 1% fee
        effective=1000, tokens=1000, fee=10 -> 1010
    """
    effective = calculate_effective_payment(requested, outstanding)
    if effective == 0:
        return 0
    return calculate_amount_with_fee(rate.to_tokens(effective), fee_rate, fee_base)


# ============================================================================
# FROZEN REQUIREMENTS
# ============================================================================

@dataclass(frozen=True, slots=True)
class LendRequirement:
    """
    What a lend must forward to the loan system.

    Attributes:
        loan_id: Loan being funded
        principal: Requested amount, in loan currency
        cosigner_cost: Cosigner fee, zero without cosigner
        oracle: Oracle of the loan, None for accounting-currency loans
        rate: Decoded oracle rate
        tokens: Accounting tokens required
    """
    loan_id: LoanId
    principal: Amount
    cosigner_cost: Amount
    oracle: Optional[Oracle]
    rate: OracleRate
    tokens: Amount


@dataclass(frozen=True, slots=True)
class PayRequirement:
    """
    What a payment must forward to the loan system.

    Attributes:
        loan_id: Loan being paid
        requested: Payment asked for by the caller, in loan currency
        outstanding: Balance owed when the requirement was loaded
        effective: min(requested, outstanding)
        oracle: Oracle of the loan, None for accounting-currency loans or no-op payments
        rate: Decoded oracle rate
        fee: Protocol fee in accounting tokens
        tokens: Fee-inclusive accounting tokens required
    """
    loan_id: LoanId
    requested: Amount
    outstanding: Amount
    effective: Amount
    oracle: Optional[Oracle]
    rate: OracleRate
    fee: Amount
    tokens: Amount

    @property
    def is_noop(self) -> bool:
        return self.effective == 0


# ============================================================================
# ADAPTER FUNCTIONS
# ============================================================================

def load_lend_requirement(
    loan_system: LoanSystem,
    cosigner: Optional[Cosigner],
    loan_id: LoanId,
    oracle_data: bytes = b"",
    cosigner_data: bytes = b"",
) -> LendRequirement:
    """Read principal, cosigner cost and rate for a lend."""
    principal = require_amount("requested amount", loan_system.get_requested_amount(loan_id))
    cosigner_cost = 0
    if cosigner is not None:
        cosigner_cost = require_amount("cosigner cost", cosigner.request_cost(loan_id, cosigner_data))
    oracle, rate = read_rate(loan_system, loan_id, oracle_data)
    return LendRequirement(
        loan_id=loan_id,
        principal=principal,
        cosigner_cost=cosigner_cost,
        oracle=oracle,
        rate=rate,
        tokens=calculate_lend_amount(principal, cosigner_cost, rate),
    )


def load_pay_requirement(
    loan_system: LoanSystem,
    loan_id: LoanId,
    pay_amount: Amount,
    oracle_data: bytes = b"",
) -> PayRequirement:
    """
    Read the outstanding balance and rate for a payment.

    A loan with nothing outstanding yields a zero requirement; its oracle is
    not consulted.
    """
    require_amount("pay_amount", pay_amount)
    outstanding = require_amount("outstanding balance", loan_system.get_outstanding_balance(loan_id))
    effective = calculate_effective_payment(pay_amount, outstanding)
    if effective == 0:
        return PayRequirement(
            loan_id=loan_id,
            requested=pay_amount,
            outstanding=outstanding,
            effective=0,
            oracle=None,
            rate=OracleRate.identity(),
            fee=0,
            tokens=0,
        )

    oracle, rate = read_rate(loan_system, loan_id, oracle_data)
    tokens = calculate_pay_amount(pay_amount, outstanding, rate, loan_system.fee_rate, loan_system.fee_base)
    return PayRequirement(
        loan_id=loan_id,
        requested=pay_amount,
        outstanding=outstanding,
        effective=effective,
        oracle=oracle,
        rate=rate,
        fee=tokens - rate.to_tokens(effective),
        tokens=tokens,
    )


# ============================================================================
# CONVENIENCE FUNCTIONS
# ============================================================================

def lend_cost(
    converter: Converter,
    from_currency: CurrencyId,
    loan_system: LoanSystem,
    cosigner: Optional[Cosigner],
    loan_id: LoanId,
    oracle_data: bytes = b"",
    cosigner_data: bytes = b"",
) -> Amount:
    """
    Input of from_currency needed to lend to loan_id.

    Example:
        principal 1000, cosigner cost 1234, rate tokens:equivalent = 1:2
        -> converter quote for ceil(2234 / 2) = 1117 accounting tokens
    """
    requirement = load_lend_requirement(loan_system, cosigner, loan_id, oracle_data, cosigner_data)
    return estimate_input(converter, from_currency, loan_system.accounting_currency, requirement.tokens)


def pay_cost(
    converter: Converter,
    from_currency: CurrencyId,
    loan_system: LoanSystem,
    loan_id: LoanId,
    pay_amount: Amount,
    oracle_data: bytes = b"",
) -> Amount:
    """
    Input of from_currency needed to pay pay_amount (fee included) on loan_id.

    Returns 0 without querying the converter when nothing is outstanding.
    """
    requirement = load_pay_requirement(loan_system, loan_id, pay_amount, oracle_data)
    if requirement.is_noop:
        return 0
    return estimate_input(converter, from_currency, loan_system.accounting_currency, requirement.tokens)
