"""
ledger.py - Stateful Multi-Currency Host Ledger

The Ledger class is the host environment the ramp settles against. It holds
every currency balance, every spend authorization and the event log, and it
is the only module that mutates them.

Key responsibilities:
    - Maintains account balances for the native currency and registered tokens
    - Tracks allowances (owner -> spender authorizations) for token currencies
    - Records an append-only event log for auditing
    - Provides atomic() scopes: every effect inside a failing scope is undone,
      including the state of registered participants
    - Verifies conservation of total supply
"""

from __future__ import annotations
from collections import defaultdict
from contextlib import contextmanager
from dataclasses import dataclass
from typing import Any, Dict, Iterator, List, Optional, Set, Tuple
import copy

from .core import (
    # Types
    Amount, AccountId, BalanceMap, CurrencyId, Event, Participant,
    # Constants
    DEFAULT_DECIMALS, NATIVE_CURRENCY, NATIVE_DECIMALS, SYSTEM_ACCOUNT,
    # Exceptions
    LedgerError, InsufficientFunds, InsufficientAllowance,
    AccountNotRegistered, CurrencyNotRegistered,
    # Helpers
    format_amount, is_native, require_amount,
)


@dataclass(frozen=True, slots=True)
class Currency:
    """
    Definition of a currency held in the ledger.

    Attributes:
        symbol: Identifier used in every currency parameter (token address or NATIVE_CURRENCY).
        name: Human-readable name.
        decimals: Number of decimals of the smallest unit, used for display only.
    """
    symbol: CurrencyId
    name: str
    decimals: int = DEFAULT_DECIMALS

    def __post_init__(self):
        if not self.symbol or not self.symbol.strip():
            raise ValueError("Currency symbol cannot be empty")
        if self.decimals < 0:
            raise ValueError(f"Currency decimals must be non-negative, got {self.decimals}")

    @property
    def native(self) -> bool:
        return is_native(self.symbol)


def token(symbol: CurrencyId, name: str, decimals: int = DEFAULT_DECIMALS) -> Currency:
    """Create a token currency."""
    if is_native(symbol):
        raise ValueError("token symbol cannot be the native currency sentinel")
    return Currency(symbol=symbol, name=name, decimals=decimals)


class Ledger:
    """
    Multi-currency balance book with allowances, event log and atomic scopes.

    The native currency is registered automatically. Tokens must be registered
    with register_currency() before use.

    Design Principles:
        - Value is never created or destroyed by transfers; total supply only
          changes through set_balance(), which is restricted to test mode.
        - Every failure inside atomic() restores balances, allowances, the
          event log and every registered participant to their state at entry.

    Thread Safety:
        Not thread-safe. Each thread should maintain its own Ledger instance.

    Example:
        ledger = Ledger("main", test_mode=True)
        ledger.register_currency(token("RCN", "Ripio Credit Network"))
        ledger.register_account("alice")
        ledger.register_account("bob")
        ledger.set_balance("alice", "RCN", 1000)

        with ledger.atomic():
            ledger.transfer("RCN", "alice", "bob", 100)
    """

    def __init__(
        self,
        name: str,
        verbose: bool = True,
        test_mode: bool = False
    ):
        """
        Create a ledger.

        Args:
            name: Ledger identifier
            verbose: Enable status output (default: True)
            test_mode: Enable test mode to allow set_balance() calls (default: False)
        """
        self.name = name
        self.verbose = verbose
        self._test_mode = test_mode
        self.balances: Dict[AccountId, Dict[CurrencyId, Amount]] = {}
        self.currencies: Dict[CurrencyId, Currency] = {}
        self.registered_accounts: Set[AccountId] = set()
        # (currency, owner, spender) -> remaining authorization
        self.allowances: Dict[Tuple[CurrencyId, AccountId, AccountId], Amount] = {}
        self.event_log: List[Event] = []
        self._participants: List[Participant] = []

        self.registered_accounts.add(SYSTEM_ACCOUNT)
        self.balances[SYSTEM_ACCOUNT] = defaultdict(int)
        self.currencies[NATIVE_CURRENCY] = Currency(NATIVE_CURRENCY, "Native currency", NATIVE_DECIMALS)

    # ========================================================================
    # READ-ONLY ACCESS
    # ========================================================================

    def _currency_key(self, currency: CurrencyId) -> CurrencyId:
        """Resolve currency to its registered key (native sentinel is case-insensitive)."""
        if is_native(currency):
            return NATIVE_CURRENCY
        if currency not in self.currencies:
            raise CurrencyNotRegistered(f"Currency {currency} not registered")
        return currency

    def _require_account(self, account: AccountId) -> None:
        if account not in self.registered_accounts:
            raise AccountNotRegistered(f"Account {account} not registered")

    def get_balance(self, account: AccountId, currency: CurrencyId) -> Amount:
        """
        Get the balance of a currency held by an account.

        Raises:
            AccountNotRegistered: If account is not registered
            CurrencyNotRegistered: If currency is not registered
        """
        self._require_account(account)
        key = self._currency_key(currency)
        return self.balances[account].get(key, 0)

    def get_account_balances(self, account: AccountId) -> BalanceMap:
        """Get all non-zero balances for an account."""
        self._require_account(account)
        return {c: q for c, q in self.balances[account].items() if q}

    def allowance(self, currency: CurrencyId, owner: AccountId, spender: AccountId) -> Amount:
        """Remaining amount spender may draw from owner."""
        key = self._currency_key(currency)
        return self.allowances.get((key, owner, spender), 0)

    def standing_allowances(self, owner: AccountId) -> Dict[Tuple[CurrencyId, AccountId], Amount]:
        """All non-zero authorizations granted by owner, keyed by (currency, spender)."""
        return {
            (currency, spender): amount
            for (currency, o, spender), amount in self.allowances.items()
            if o == owner and amount
        }

    def get_currency(self, currency: CurrencyId) -> Currency:
        """Return the Currency definition for an identifier."""
        return self.currencies[self._currency_key(currency)]

    def list_accounts(self) -> Set[AccountId]:
        """List all registered account IDs."""
        return self.registered_accounts.copy()

    def list_currencies(self) -> List[CurrencyId]:
        """List all registered currency identifiers."""
        return sorted(self.currencies.keys())

    def is_registered(self, account: AccountId) -> bool:
        """Check if an account is registered."""
        return account in self.registered_accounts

    def events(self, name: Optional[str] = None) -> List[Event]:
        """Return the event log, optionally filtered by event name."""
        if name is None:
            return list(self.event_log)
        return [e for e in self.event_log if e.name == name]

    def total_supply(self, currency: CurrencyId) -> Amount:
        """
        Calculate total supply of a currency across all accounts.

        Raises:
            CurrencyNotRegistered: If currency is not registered
        """
        key = self._currency_key(currency)
        return sum(self.balances[a].get(key, 0) for a in sorted(self.registered_accounts))

    def verify_conservation(self, expected_supplies: Optional[Dict[CurrencyId, Amount]] = None) -> Dict[str, Any]:
        """
        Verify that total supplies match expected values.

        Args:
            expected_supplies: Optional dict mapping currencies to expected totals.
                              Without it, only current supplies are reported.

        Returns:
            Dict with keys:
            - 'valid': bool - True if every expected supply matches
            - 'supplies': Dict[str, int] - Current total supply per currency
            - 'discrepancies': List[Dict] - currency, expected, actual, difference

        Example:
            before = ledger.verify_conservation()['supplies']
            ramp.lend(...)
            assert ledger.verify_conservation(before)['valid']
        """
        supplies = {c: self.total_supply(c) for c in self.currencies}
        discrepancies = []
        for currency, expected in (expected_supplies or {}).items():
            actual = supplies.get(currency)
            if actual is None:
                discrepancies.append({
                    'currency': currency,
                    'expected': expected,
                    'actual': 0,
                    'difference': expected,
                    'error': 'currency not registered',
                })
            elif actual != expected:
                discrepancies.append({
                    'currency': currency,
                    'expected': expected,
                    'actual': actual,
                    'difference': actual - expected,
                })
        return {
            'valid': len(discrepancies) == 0,
            'supplies': supplies,
            'discrepancies': discrepancies,
        }

    # ========================================================================
    # REGISTRATION (Mutating)
    # ========================================================================

    def register_account(self, account: AccountId) -> AccountId:
        """
        Register a new account.

        Raises:
            ValueError: If account is empty or already registered
        """
        if not account or not account.strip():
            raise ValueError("Account id cannot be empty")
        if account in self.registered_accounts:
            raise ValueError(f"Account {account} already registered")
        self.registered_accounts.add(account)
        self.balances[account] = defaultdict(int)
        return account

    def register_currency(self, currency: Currency) -> None:
        """
        Register a token currency.

        Raises:
            ValueError: If the symbol is already registered
        """
        if currency.native or currency.symbol in self.currencies:
            raise ValueError(f"Currency {currency.symbol} already registered")
        self.currencies[currency.symbol] = currency
        if self.verbose:
            print(f"📝 Registered: {currency.symbol} ({currency.name}) [decimals={currency.decimals}]")

    def register_participant(self, participant: Participant) -> None:
        """Attach a stateful collaborator so atomic() restores it on failure."""
        if participant not in self._participants:
            self._participants.append(participant)

    def set_balance(self, account: AccountId, currency: CurrencyId, amount: Amount) -> None:
        """
        Set an account's balance directly.

        WARNING: This method bypasses conservation and is only available in
        test mode. Production code moves value with transfer() and transfer_from().

        Raises:
            LedgerError: If called when test_mode is False
        """
        if not self._test_mode:
            raise LedgerError(
                "set_balance() is disabled in production mode. "
                "Set test_mode=True when creating Ledger for testing."
            )
        self._require_account(account)
        key = self._currency_key(currency)
        self.balances[account][key] = require_amount("amount", amount)

    # ========================================================================
    # VALUE MOVEMENT (Mutating)
    # ========================================================================

    def transfer(self, currency: CurrencyId, source: AccountId, dest: AccountId, amount: Amount) -> None:
        """
        Move amount of currency from source to dest.

        A zero amount is a no-op. SYSTEM_ACCOUNT may go negative (issuance).

        Raises:
            AccountNotRegistered: If either account is unknown
            CurrencyNotRegistered: If currency is unknown
            InsufficientFunds: If source holds less than amount
            ValueError: If amount is malformed or source == dest
        """
        require_amount("amount", amount)
        key = self._currency_key(currency)
        self._require_account(source)
        self._require_account(dest)
        if source == dest:
            raise ValueError("Source and dest must be different")
        if amount == 0:
            return
        available = self.balances[source].get(key, 0)
        if source != SYSTEM_ACCOUNT and available < amount:
            raise InsufficientFunds(f"{source} {key}: balance {available} < {amount}")
        self.balances[source][key] = available - amount
        self.balances[dest][key] = self.balances[dest].get(key, 0) + amount
        self.emit("Transfer", currency=key, source=source, dest=dest, amount=amount)

    def approve(self, currency: CurrencyId, owner: AccountId, spender: AccountId, amount: Amount) -> None:
        """
        Authorize spender to draw up to amount of a token from owner.

        Overwrites any previous authorization; approve(..., 0) revokes it.

        Raises:
            LedgerError: If currency is the native currency
        """
        require_amount("amount", amount)
        key = self._currency_key(currency)
        if key == NATIVE_CURRENCY:
            raise LedgerError("native currency cannot be approved")
        self._require_account(owner)
        self._require_account(spender)
        if amount:
            self.allowances[(key, owner, spender)] = amount
        else:
            self.allowances.pop((key, owner, spender), None)
        self.emit("Approval", currency=key, owner=owner, spender=spender, amount=amount)

    def transfer_from(
        self,
        currency: CurrencyId,
        spender: AccountId,
        source: AccountId,
        dest: AccountId,
        amount: Amount,
    ) -> None:
        """
        Move a token from source to dest using spender's allowance.

        Raises:
            InsufficientAllowance: If spender is authorized for less than amount
            InsufficientFunds: If source holds less than amount
        """
        require_amount("amount", amount)
        key = self._currency_key(currency)
        if key == NATIVE_CURRENCY:
            raise LedgerError("native currency cannot be drawn with an allowance")
        if amount == 0:
            return
        granted = self.allowances.get((key, source, spender), 0)
        if granted < amount:
            raise InsufficientAllowance(
                f"{spender} may draw {granted} {key} from {source}, requested {amount}"
            )
        self.transfer(key, source, dest, amount)
        remaining = granted - amount
        if remaining:
            self.allowances[(key, source, spender)] = remaining
        else:
            del self.allowances[(key, source, spender)]

    def emit(self, name: str, **args: Any) -> Event:
        """Append an event to the log and return it."""
        event = Event(sequence=len(self.event_log), name=name, args=args)
        self.event_log.append(event)
        return event

    # ========================================================================
    # ATOMICITY
    # ========================================================================

    def _snapshot(self) -> Dict[str, Any]:
        return {
            'accounts': self.registered_accounts.copy(),
            'balances': {a: dict(b) for a, b in self.balances.items()},
            'allowances': dict(self.allowances),
            'event_count': len(self.event_log),
            'participants': [(p, p.snapshot()) for p in self._participants],
        }

    def _restore(self, snapshot: Dict[str, Any]) -> None:
        self.registered_accounts = snapshot['accounts']
        self.balances = {a: defaultdict(int, b) for a, b in snapshot['balances'].items()}
        self.allowances = dict(snapshot['allowances'])
        del self.event_log[snapshot['event_count']:]
        for participant, state in snapshot['participants']:
            participant.restore(state)

    @contextmanager
    def atomic(self) -> Iterator['Ledger']:
        """
        All-or-nothing scope.

        If the body raises, balances, allowances, the event log and every
        registered participant are restored to their state at entry and the
        exception propagates unchanged. Scopes nest; an inner failure caught
        by the outer body only undoes the inner scope.
        """
        snapshot = self._snapshot()
        try:
            yield self
        except BaseException:
            self._restore(snapshot)
            raise

    # ========================================================================
    # LEDGER OPERATIONS
    # ========================================================================

    def format(self, amount: Amount, currency: CurrencyId) -> str:
        """Render amount in whole units of currency for status output."""
        return format_amount(amount, self.get_currency(currency).decimals)

    def clone(self) -> Ledger:
        """
        Create a deep copy of this ledger's balances, allowances and log.

        Participants are not carried over: they belong to the original ledger.
        """
        cloned = Ledger.__new__(Ledger)
        cloned.name = self.name
        cloned.verbose = self.verbose
        cloned._test_mode = self._test_mode
        cloned.currencies = dict(self.currencies)
        cloned.registered_accounts = self.registered_accounts.copy()
        cloned.balances = {a: defaultdict(int, b) for a, b in self.balances.items()}
        cloned.allowances = dict(self.allowances)
        cloned.event_log = copy.copy(self.event_log)
        cloned._participants = []
        return cloned
