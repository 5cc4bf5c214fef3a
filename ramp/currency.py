"""
currency.py - Native vs Token Currency Handling

Uniform pull / push over the two transfer modes of the host ledger:

1. Native currency: value is attached to the call (CallContext.value) and
   must match the declared amount exactly.
2. Token currency: no value may be attached; funds are drawn from the payer
   through an allowance granted to the ramp.

The functions move value but hold no state of their own.
"""

from __future__ import annotations

from .core import (
    AccountId, Amount, CallContext, CurrencyId,
    InvalidTransferMode, LedgerError, NativeTransferFailed, PayableMismatch,
    TokenTransferFailed, TransferFailed,
    is_native, require_amount,
)
from .ledger import Ledger


def check_payable(ctx: CallContext, currency: CurrencyId, max_spend: Amount) -> None:
    """
    Guard run before any external call of a settlement.

    Native input requires the attached value to equal max_spend; token input
    requires no value at all.

    Raises:
        PayableMismatch: If the attached value does not match the mode
    """
    require_amount("max_spend", max_spend)
    if is_native(currency):
        if ctx.value != max_spend:
            raise PayableMismatch(
                f"attached native value {ctx.value} != max spend {max_spend}"
            )
    elif ctx.value != 0:
        raise PayableMismatch(f"native value {ctx.value} attached to a {currency} call")


def pull(
    ledger: Ledger,
    ctx: CallContext,
    currency: CurrencyId,
    holder: AccountId,
    max_amount: Amount,
) -> Amount:
    """
    Move max_amount of currency from ctx.sender into holder.

    Args:
        ledger: Host ledger
        ctx: Call context (payer and attached native value)
        currency: Currency to pull
        holder: Account receiving the funds (the ramp)
        max_amount: Exact amount to pull

    Returns:
        The amount pulled (always max_amount)

    Raises:
        InvalidTransferMode: If native value is missing/mismatched, or attached to a token pull
        TransferFailed: If the payer's balance or allowance is insufficient
    """
    require_amount("max_amount", max_amount)
    if is_native(currency):
        if ctx.value != max_amount:
            raise InvalidTransferMode(
                f"pull: attached native value {ctx.value} != {max_amount}"
            )
        try:
            ledger.transfer(currency, ctx.sender, holder, max_amount)
        except LedgerError as exc:
            raise TransferFailed(f"pull: {exc}") from exc
        return max_amount

    if ctx.value != 0:
        raise InvalidTransferMode("pull: native value attached to a token pull")
    try:
        ledger.transfer_from(currency, holder, ctx.sender, holder, max_amount)
    except LedgerError as exc:
        raise TransferFailed(f"pull: {exc}") from exc
    return max_amount


def push(
    ledger: Ledger,
    currency: CurrencyId,
    holder: AccountId,
    recipient: AccountId,
    amount: Amount,
) -> None:
    """
    Send amount of currency from holder to recipient.

    A zero amount is a no-op.

    Raises:
        NativeTransferFailed: If a native transfer does not fully succeed
        TokenTransferFailed: If a token transfer does not succeed
    """
    require_amount("amount", amount)
    if amount == 0:
        return
    try:
        ledger.transfer(currency, holder, recipient, amount)
    except LedgerError as exc:
        if is_native(currency):
            raise NativeTransferFailed(f"push: {exc}") from exc
        raise TokenTransferFailed(f"push: {exc}") from exc
