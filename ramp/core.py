"""
Core types and pure functions for the converter ramp.

This module provides the foundational data structures and protocols for the ramp:
1. Protocols: Converter, LoanSystem, Cosigner, Oracle and Participant capabilities
2. Immutable data structures: CallContext, OracleRate, ConversionIntent,
   SpendBudget, SettlementReceipt, Event
3. Exceptions: RampError and domain-specific error types
4. Type aliases: Amount, LoanId, CurrencyId, AccountId
5. Integer arithmetic: ceiling division and amount validation

All amounts are integers expressed in the smallest unit of their currency.
Nothing in this module moves value; see ledger.py for the host ledger.
"""

from __future__ import annotations
from dataclasses import dataclass, field
from decimal import Decimal
from enum import Enum
from typing import (
    Any, Dict, Mapping, Optional, Protocol, Tuple, runtime_checkable
)


# ============================================================================
# CONSTANTS
# ============================================================================

# Sentinel identifying the native currency in every currency parameter.
# Any other identifier is treated as a token registered in the host ledger.
NATIVE_CURRENCY = "0xEeeeeEeeeEeEeeEeEeEeeEEEeeeeEeeeeeeeEEeE"

NATIVE_DECIMALS = 18
DEFAULT_DECIMALS = 18

# Issuer account, exempt from balance checks. Only used by test fixtures.
SYSTEM_ACCOUNT = "system"


# ============================================================================
# TYPE ALIASES
# ============================================================================

# Integer quantity in a currency's smallest unit.
Amount = int

# Opaque identifier of a loan record owned by the loan system.
LoanId = str

CurrencyId = str
AccountId = str

# Mapping from currency identifier to balance for a single account.
BalanceMap = Dict[CurrencyId, Amount]


# ============================================================================
# EXCEPTIONS
# ============================================================================

class RampError(Exception):
    """Base exception for all ramp-related errors."""
    pass


class LedgerError(RampError):
    """Base exception for host ledger errors."""
    pass


class InsufficientFunds(LedgerError):
    """Raised when a transfer would leave an account with a negative balance."""
    pass


class InsufficientAllowance(LedgerError):
    """Raised when a spender draws more than the owner has authorized."""
    pass


class AccountNotRegistered(LedgerError):
    """Raised when operating on an account unknown to the ledger."""
    pass


class CurrencyNotRegistered(LedgerError):
    """Raised when operating on a currency unknown to the ledger."""
    pass


class PayableMismatch(RampError):
    """Raised when the attached native value does not match the declared spend."""
    pass


class InvalidTransferMode(RampError):
    """Raised when a pull is attempted with the wrong native/token mode."""
    pass


class TransferFailed(RampError):
    """Raised when funds cannot be pulled from the payer."""
    pass


class NativeTransferFailed(RampError):
    """Raised when a native-currency push does not fully succeed."""
    pass


class TokenTransferFailed(RampError):
    """Raised when a token push does not succeed."""
    pass


class NoRoute(RampError):
    """Raised when a converter cannot quote a currency pair."""
    pass


class ConversionFailed(RampError):
    """Raised when a converter cannot deliver the exact output within the maximum input."""
    pass


class CostExceedsBudget(RampError):
    """Raised when the required input exceeds the caller's declared maximum spend."""
    pass


class OracleDataMalformed(RampError):
    """Raised when oracle data cannot be decoded into a usable rate."""
    pass


class LoanSystemRejected(RampError):
    """Raised by a loan system that refuses a forwarded lend or payment."""
    pass


class CosignerRejected(LoanSystemRejected):
    """Raised when the cosigner declines or exceeds the caller's cost limit."""
    pass


class ResidualBalance(RampError):
    """Raised when a settlement would leave the ramp holding funds."""
    pass


class ReentrancyDetected(RampError):
    """Raised when a settlement entry point is re-entered during an external call."""
    pass


class NotAuthorized(RampError):
    """Raised when a restricted entry point is called by an unauthorized sender."""
    pass


# ============================================================================
# INTEGER ARITHMETIC
# ============================================================================

def require_amount(name: str, value: Any) -> Amount:
    """
    Validate that value is a non-negative integer amount.

    bool is rejected even though it subclasses int.

    Raises:
        ValueError: If value is not an int or is negative
    """
    if isinstance(value, bool) or not isinstance(value, int):
        raise ValueError(f"{name} must be an int amount, got {type(value).__name__}")
    if value < 0:
        raise ValueError(f"{name} must be non-negative, got {value}")
    return value


def ceil_div(numerator: int, denominator: int) -> int:
    """
    Integer division rounding toward positive infinity.

    Raises:
        ZeroDivisionError: If denominator is zero
    """
    if denominator == 0:
        raise ZeroDivisionError("ceil_div by zero")
    return -(-numerator // denominator)


def format_amount(amount: Amount, decimals: int) -> str:
    """Render an integer amount in whole-currency units, e.g. 1500000000000000000 -> '1.5'."""
    value = Decimal(amount).scaleb(-decimals).normalize()
    if value == value.to_integral_value():
        return str(int(value))
    return format(value, 'f')


# ============================================================================
# PROTOCOLS
# ============================================================================

@runtime_checkable
class Oracle(Protocol):
    """
    Price oracle attached to a loan.

    The oracle data blob is opaque to the ramp; only the oracle knows how to
    decode it. The decoded rate reads "`tokens` accounting tokens are worth
    `equivalent` units of the loan currency".
    """
    account: AccountId

    def decode_rate(self, oracle_data: bytes) -> Tuple[int, int]:
        """Return (tokens, equivalent) encoded in oracle_data."""
        ...


@runtime_checkable
class Cosigner(Protocol):
    """Third party that guarantees a loan for a fee quoted in loan currency."""
    account: AccountId

    def request_cost(self, loan_id: LoanId, cosigner_data: bytes) -> Amount:
        """Return the cosigner's fee, in loan currency, for guaranteeing loan_id."""
        ...


@runtime_checkable
class Converter(Protocol):
    """
    External currency converter.

    convert() must deliver exactly exact_output of to_currency to caller.
    Token input is drawn from caller through an allowance; native input is
    sent along with the call and the converter refunds what it does not use.
    """
    account: AccountId

    def estimate(self, from_currency: CurrencyId, to_currency: CurrencyId, exact_output: Amount) -> Amount:
        """Return the input required to obtain exact_output. Raises NoRoute if the pair is unsupported."""
        ...

    def convert(
        self,
        caller: AccountId,
        from_currency: CurrencyId,
        to_currency: CurrencyId,
        exact_output: Amount,
        max_input: Amount,
    ) -> Amount:
        """Swap into exactly exact_output spending at most max_input; return the input spent."""
        ...


@runtime_checkable
class LoanSystem(Protocol):
    """
    External loan-management system.

    Owns loan state, debt ownership and the accounting currency. The ramp only
    reads amounts from it and forwards lends and payments; tokens are drawn
    from the caller account through an allowance.
    """
    account: AccountId
    accounting_currency: CurrencyId
    fee_rate: int
    fee_base: int

    def get_requested_amount(self, loan_id: LoanId) -> Amount:
        """Principal requested by the borrower, in loan currency."""
        ...

    def get_outstanding_balance(self, loan_id: LoanId) -> Amount:
        """Amount still owed, in loan currency. Zero if never lent or fully paid."""
        ...

    def get_oracle(self, loan_id: LoanId) -> Optional[Oracle]:
        """Oracle used by the loan, or None when loan currency equals accounting currency."""
        ...

    def lend(
        self,
        caller: AccountId,
        loan_id: LoanId,
        oracle_data: bytes,
        cosigner: Optional[Cosigner],
        cosigner_limit_cost: Amount,
        cosigner_data: bytes,
        callback_data: bytes,
    ) -> None:
        """Fund loan_id from caller's tokens. caller becomes the debt owner."""
        ...

    def transfer_ownership(self, caller: AccountId, loan_id: LoanId, new_owner: AccountId) -> None:
        """Move ownership of the debt from caller to new_owner."""
        ...

    def pay_from(
        self,
        caller: AccountId,
        payer: AccountId,
        loan_id: LoanId,
        amount: Amount,
        oracle_data: bytes,
    ) -> Amount:
        """Pay up to amount (loan currency) on behalf of payer from caller's tokens; return amount applied."""
        ...


@runtime_checkable
class Participant(Protocol):
    """Stateful collaborator whose state joins the ledger's atomic scope."""

    def snapshot(self) -> Any:
        """Return an opaque copy of the current state."""
        ...

    def restore(self, state: Any) -> None:
        """Reinstate a state previously returned by snapshot()."""
        ...


# ============================================================================
# ENUMS
# ============================================================================

class SettlementStage(Enum):
    """
    Progress of a single settlement call.

    Stages advance strictly in declaration order; FAILED is reachable from
    any stage and means every effect has been rolled back.
    """
    START = "start"
    PULLED = "pulled"
    CONVERTED = "converted"
    FORWARDED = "forwarded"
    REFUNDED = "refunded"
    DONE = "done"
    FAILED = "failed"


class Operation(Enum):
    """Kind of settlement performed by the ramp."""
    LEND = "lend"
    PAY = "pay"


# ============================================================================
# CORE DATA STRUCTURES
# ============================================================================

def is_native(currency: CurrencyId) -> bool:
    """Return True if currency is the native-currency sentinel."""
    return currency.lower() == NATIVE_CURRENCY.lower()


@dataclass(frozen=True, slots=True)
class CallContext:
    """
    Caller-side information attached to an entry point call.

    Attributes:
        sender: Account invoking the ramp.
        value: Native currency attached to the call.
    """
    sender: AccountId
    value: Amount = 0

    def __post_init__(self):
        if not self.sender or not self.sender.strip():
            raise ValueError("CallContext sender cannot be empty")
        require_amount("value", self.value)


@dataclass(frozen=True, slots=True)
class OracleRate:
    """
    Conversion rate between loan currency and accounting tokens.

    `tokens` accounting tokens are worth `equivalent` units of loan currency.
    Conversions round up so the loan system is never under-paid.
    """
    tokens: int
    equivalent: int

    def __post_init__(self):
        for name in ("tokens", "equivalent"):
            value = getattr(self, name)
            if isinstance(value, bool) or not isinstance(value, int):
                raise OracleDataMalformed(f"oracle {name} must be an int, got {type(value).__name__}")
            if value <= 0:
                raise OracleDataMalformed(f"oracle {name} must be positive, got {value}")

    @classmethod
    def identity(cls) -> 'OracleRate':
        """Rate used by loans denominated in the accounting currency itself."""
        return cls(1, 1)

    @property
    def is_identity(self) -> bool:
        """True if one unit of loan currency is worth exactly one token."""
        return self.tokens == self.equivalent

    def to_tokens(self, amount: Amount) -> Amount:
        """Convert a loan-currency amount into accounting tokens, rounding up."""
        require_amount("amount", amount)
        if self.is_identity:
            return amount
        return ceil_div(amount * self.tokens, self.equivalent)


@dataclass(frozen=True, slots=True)
class ConversionIntent:
    """
    A single exact-output conversion requested from a converter.

    Exists only for the duration of one settlement call.
    """
    converter: AccountId
    from_currency: CurrencyId
    to_currency: CurrencyId
    amount_out: Amount
    max_input: Amount

    def __post_init__(self):
        require_amount("amount_out", self.amount_out)
        require_amount("max_input", self.max_input)

    def __repr__(self) -> str:
        return (f"ConversionIntent({self.amount_out} {self.to_currency} "
                f"for <= {self.max_input} {self.from_currency} via {self.converter})")


@dataclass(frozen=True, slots=True)
class SpendBudget:
    """Caller-declared ceiling on the input currency pulled by a settlement."""
    max_spend: Amount

    def __post_init__(self):
        require_amount("max_spend", self.max_spend)

    def require(self, cost: Amount) -> None:
        """
        Reject a cost that does not fit the budget.

        Raises:
            CostExceedsBudget: If cost > max_spend
        """
        if cost > self.max_spend:
            raise CostExceedsBudget(f"required {cost} exceeds max spend {self.max_spend}")


@dataclass(frozen=True, slots=True)
class SettlementReceipt:
    """
    Outcome of a successful lend or pay.

    Attributes:
        operation: LEND or PAY.
        loan_id: Loan that was lent or paid.
        payer: Account that supplied the input currency.
        from_currency: Input currency.
        max_spend: Declared budget.
        pulled: Input pulled from the payer (equals max_spend unless no-op).
        spent: Input consumed by the converter.
        refunded: Input returned to the payer.
        tokens: Accounting tokens forwarded to the loan system.
        applied: Loan-currency amount lent or credited on the loan.
    """
    operation: Operation
    loan_id: LoanId
    payer: AccountId
    from_currency: CurrencyId
    max_spend: Amount
    pulled: Amount
    spent: Amount
    refunded: Amount
    tokens: Amount
    applied: Amount

    def __post_init__(self):
        if self.refunded != self.pulled - self.spent:
            raise ValueError(
                f"refunded {self.refunded} != pulled {self.pulled} - spent {self.spent}"
            )
        if self.pulled > self.max_spend:
            raise ValueError(f"pulled {self.pulled} exceeds max spend {self.max_spend}")

    @property
    def residual(self) -> Amount:
        """Portion of the pulled input not consumed by the converter."""
        return self.pulled - self.spent

    @property
    def is_noop(self) -> bool:
        return self.pulled == 0 and self.tokens == 0 and self.applied == 0


@dataclass(frozen=True, slots=True)
class Event:
    """
    Audit record appended to the host ledger's event log.

    Attributes:
        sequence: Monotonic position in the log.
        name: Event name (e.g. "Transfer", "ReadOracle", "Lent").
        args: Event payload.
    """
    sequence: int
    name: str
    args: Mapping[str, Any] = field(default_factory=dict)

    def __repr__(self) -> str:
        payload = ", ".join(f"{k}={v!r}" for k, v in self.args.items())
        return f"Event#{self.sequence} {self.name}({payload})"
