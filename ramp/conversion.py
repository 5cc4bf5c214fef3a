"""
conversion.py - Conversion Gateway

Stateless adapter over an external Converter:

1. estimate_input() - read-only quote of the input needed for an exact output
2. convert_exact() - executes the swap for an exact output within a maximum input

The gateway never trusts the converter's return values for accounting: the
input spent and the output received are measured on the holder's balances.
Token authorizations granted to the converter never outlive the call.
"""

from __future__ import annotations

from .core import (
    AccountId, Amount, ConversionFailed, ConversionIntent, Converter,
    CurrencyId, NoRoute,
    is_native, require_amount,
)
from .currency import push
from .ledger import Ledger


def _same_currency(from_currency: CurrencyId, to_currency: CurrencyId) -> bool:
    if is_native(from_currency) or is_native(to_currency):
        return is_native(from_currency) and is_native(to_currency)
    return from_currency == to_currency


def estimate_input(
    converter: Converter,
    from_currency: CurrencyId,
    to_currency: CurrencyId,
    exact_output: Amount,
) -> Amount:
    """
    Quote the from_currency input required to obtain exact_output of to_currency.

    Zero output costs nothing and the converter is not consulted. Identical
    currencies need no conversion.

    Raises:
        NoRoute: If the converter cannot quote the pair or returns a malformed quote
    """
    require_amount("exact_output", exact_output)
    if exact_output == 0:
        return 0
    if _same_currency(from_currency, to_currency):
        return exact_output

    quote = converter.estimate(from_currency, to_currency, exact_output)
    if isinstance(quote, bool) or not isinstance(quote, int) or quote < 0:
        raise NoRoute(f"converter returned malformed quote {quote!r} for {from_currency}->{to_currency}")
    return quote


def convert_exact(
    ledger: Ledger,
    holder: AccountId,
    converter: Converter,
    from_currency: CurrencyId,
    to_currency: CurrencyId,
    exact_output: Amount,
    max_input: Amount,
) -> Amount:
    """
    Convert from_currency held by holder into exactly exact_output of to_currency.

    Token input is authorized to the converter for max_input and the
    authorization is reset to zero whatever the outcome. Native input is sent
    with the call; the converter refunds what it does not use.

    Args:
        ledger: Host ledger
        holder: Account owning the input and receiving the output (the ramp)
        converter: External converter
        from_currency: Input currency
        to_currency: Output currency
        exact_output: Output that must be received
        max_input: Upper bound on the input spent

    Returns:
        Input actually spent, measured on holder's balance

    Raises:
        ConversionFailed: If the output differs from exact_output or more than max_input was spent
    """
    intent = ConversionIntent(
        converter=converter.account,
        from_currency=from_currency,
        to_currency=to_currency,
        amount_out=exact_output,
        max_input=max_input,
    )
    if intent.amount_out == 0:
        return 0
    if _same_currency(from_currency, to_currency):
        if intent.amount_out > intent.max_input:
            raise ConversionFailed(f"{intent}: output exceeds maximum input")
        return intent.amount_out

    input_before = ledger.get_balance(holder, from_currency)
    output_before = ledger.get_balance(holder, to_currency)

    if is_native(from_currency):
        push(ledger, from_currency, holder, converter.account, max_input)
        converter.convert(holder, from_currency, to_currency, exact_output, max_input)
    else:
        ledger.approve(from_currency, holder, converter.account, max_input)
        try:
            converter.convert(holder, from_currency, to_currency, exact_output, max_input)
        finally:
            ledger.approve(from_currency, holder, converter.account, 0)

    spent = input_before - ledger.get_balance(holder, from_currency)
    received = ledger.get_balance(holder, to_currency) - output_before

    if received != exact_output:
        raise ConversionFailed(f"{intent}: received {received}")
    if spent < 0 or spent > max_input:
        raise ConversionFailed(f"{intent}: spent {spent}")
    return spent
