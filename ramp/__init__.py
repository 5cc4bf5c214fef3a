"""
ramp - Converter Ramp Settlement Engine

Lend to, or pay down, loans of an external loan system using any currency a
converter can swap into the loan system's accounting currency.

Usage:
    from ramp import CallContext, ConverterRamp, Ledger, token

    ledger = Ledger("main", test_mode=True)
    ledger.register_currency(token("RCN", "Ripio Credit Network"))
    ledger.register_currency(token("DAI", "Dai Stablecoin"))
    ledger.register_account("alice")
    ledger.set_balance("alice", "DAI", 5000)

    ramp = ConverterRamp(ledger, loans, owner="admin")

    # Quote, then settle with the quote as the spend ceiling
    cost = ramp.get_lend_cost(converter, "DAI", None, "loan-1")
    ledger.approve("DAI", "alice", ramp.account, cost)
    receipt = ramp.lend(CallContext("alice"), converter, "DAI", cost, None, 0, "loan-1")
"""

# Core types
from .core import (
    Converter,
    LoanSystem,
    Cosigner,
    Oracle,
    Participant,
    CallContext,
    OracleRate,
    ConversionIntent,
    SpendBudget,
    SettlementReceipt,
    SettlementStage,
    Operation,
    Event,
    Amount,
    LoanId,
    CurrencyId,
    AccountId,
    RampError,
    LedgerError,
    InsufficientFunds,
    InsufficientAllowance,
    AccountNotRegistered,
    CurrencyNotRegistered,
    PayableMismatch,
    InvalidTransferMode,
    TransferFailed,
    NativeTransferFailed,
    TokenTransferFailed,
    NoRoute,
    ConversionFailed,
    CostExceedsBudget,
    OracleDataMalformed,
    LoanSystemRejected,
    CosignerRejected,
    ResidualBalance,
    ReentrancyDetected,
    NotAuthorized,
    is_native,
    ceil_div,
    require_amount,
    format_amount,
    NATIVE_CURRENCY,
    NATIVE_DECIMALS,
    DEFAULT_DECIMALS,
    SYSTEM_ACCOUNT,
)

# Host ledger
from .ledger import Ledger, Currency, token

# Currency abstraction
from .currency import check_payable, pull, push

# Conversion gateway
from .conversion import estimate_input, convert_exact

# Oracle relay
from .oracle import decode_rate, read_rate, record_rate

# Loan cost calculator
from .calculator import (
    calculate_fee,
    calculate_amount_with_fee,
    calculate_lend_amount,
    calculate_effective_payment,
    calculate_pay_amount,
    LendRequirement,
    PayRequirement,
    load_lend_requirement,
    load_pay_requirement,
    lend_cost,
    pay_cost,
)

# Settlement orchestrator
from .settlement import ConverterRamp, DEFAULT_RAMP_ACCOUNT


__all__ = [
    # Protocols
    'Converter',
    'LoanSystem',
    'Cosigner',
    'Oracle',
    'Participant',
    # Data structures
    'CallContext',
    'OracleRate',
    'ConversionIntent',
    'SpendBudget',
    'SettlementReceipt',
    'SettlementStage',
    'Operation',
    'Event',
    'Currency',
    'token',
    # Type aliases
    'Amount',
    'LoanId',
    'CurrencyId',
    'AccountId',
    # Exceptions
    'RampError',
    'LedgerError',
    'InsufficientFunds',
    'InsufficientAllowance',
    'AccountNotRegistered',
    'CurrencyNotRegistered',
    'PayableMismatch',
    'InvalidTransferMode',
    'TransferFailed',
    'NativeTransferFailed',
    'TokenTransferFailed',
    'NoRoute',
    'ConversionFailed',
    'CostExceedsBudget',
    'OracleDataMalformed',
    'LoanSystemRejected',
    'CosignerRejected',
    'ResidualBalance',
    'ReentrancyDetected',
    'NotAuthorized',
    # Constants
    'NATIVE_CURRENCY',
    'NATIVE_DECIMALS',
    'DEFAULT_DECIMALS',
    'SYSTEM_ACCOUNT',
    'DEFAULT_RAMP_ACCOUNT',
    # Helpers
    'is_native',
    'ceil_div',
    'require_amount',
    'format_amount',
    # Host ledger
    'Ledger',
    # Currency abstraction
    'check_payable',
    'pull',
    'push',
    # Conversion gateway
    'estimate_input',
    'convert_exact',
    # Oracle relay
    'decode_rate',
    'read_rate',
    'record_rate',
    # Loan cost calculator
    'calculate_fee',
    'calculate_amount_with_fee',
    'calculate_lend_amount',
    'calculate_effective_payment',
    'calculate_pay_amount',
    'LendRequirement',
    'PayRequirement',
    'load_lend_requirement',
    'load_pay_requirement',
    'lend_cost',
    'pay_cost',
    # Settlement orchestrator
    'ConverterRamp',
]

__version__ = '1.0.0'
