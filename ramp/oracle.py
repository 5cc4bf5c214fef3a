"""
oracle.py - Oracle Relay

Decodes the caller-supplied oracle data with the loan's own oracle so the rate
used for cost estimation is the rate the loan system will use for accounting.
The raw oracle data is forwarded unchanged to the loan system; this module
only reads it.
"""

from __future__ import annotations
from typing import Optional, Tuple

from .core import (
    LoanId, LoanSystem, Oracle, OracleDataMalformed, OracleRate,
)
from .ledger import Ledger


def decode_rate(oracle: Optional[Oracle], oracle_data: bytes) -> OracleRate:
    """
    Decode oracle_data with oracle.

    A loan without an oracle is denominated in the accounting currency and
    uses the identity rate; its oracle data is ignored.

    Raises:
        OracleDataMalformed: If the oracle returns something other than two positive ints
    """
    if oracle is None:
        return OracleRate.identity()
    decoded = oracle.decode_rate(oracle_data)
    if not isinstance(decoded, tuple) or len(decoded) != 2:
        raise OracleDataMalformed(f"oracle {oracle.account} returned {decoded!r}")
    tokens, equivalent = decoded
    return OracleRate(tokens, equivalent)


def read_rate(loan_system: LoanSystem, loan_id: LoanId, oracle_data: bytes) -> Tuple[Optional[Oracle], OracleRate]:
    """Look up the oracle of loan_id and decode oracle_data with it."""
    oracle = loan_system.get_oracle(loan_id)
    return oracle, decode_rate(oracle, oracle_data)


def record_rate(ledger: Ledger, oracle: Optional[Oracle], rate: OracleRate) -> None:
    """Emit a ReadOracle event for a rate used during a settlement."""
    if oracle is None:
        return
    ledger.emit("ReadOracle", oracle=oracle.account, tokens=rate.tokens, equivalent=rate.equivalent)
