"""
settlement.py - Settlement Orchestrator

ConverterRamp sequences a lend or a payment made in a currency other than the
loan system's accounting currency:

    START -> PULLED -> CONVERTED -> FORWARDED -> REFUNDED -> DONE

Every settlement runs inside Ledger.atomic(). A failure at any stage restores
balances, allowances, the event log and the loan system's state, then the
exception propagates unchanged. On success the ramp holds exactly what it held
before the call.

Example:
    ramp = ConverterRamp(ledger, loans, owner="admin")
    cost = ramp.get_lend_cost(converter, "DAI", None, "loan-1")
    ramp.lend(CallContext("alice"), converter, "DAI", cost, None, 0, "loan-1")
"""

from __future__ import annotations
from contextlib import contextmanager
from typing import Callable, Dict, Iterator, Optional, Tuple

from .core import (
    AccountId, Amount, CallContext, Converter, Cosigner, CosignerRejected,
    CurrencyId, LoanId, LoanSystem, NotAuthorized, Operation,
    ReentrancyDetected, ResidualBalance, SettlementReceipt, SettlementStage,
    SpendBudget,
    is_native, require_amount,
)
from .calculator import (
    lend_cost, load_lend_requirement, load_pay_requirement, pay_cost,
)
from .conversion import convert_exact, estimate_input
from .currency import check_payable, pull, push
from .ledger import Ledger
from .oracle import record_rate


DEFAULT_RAMP_ACCOUNT = "converter_ramp"


class ConverterRamp:
    """
    Atomic lend / pay intermediary between a payer, a converter and a loan system.

    Attributes:
        ledger: Host ledger holding every balance
        loan_system: Loan-management system receiving lends and payments
        account: Ledger account of the ramp (registered on construction)
        owner: Account allowed to call emergency_withdraw() by default
        stage: Stage reached by the most recent settlement

    Thread Safety:
        Not thread-safe. Calls are sequential; a nested entry raises ReentrancyDetected.
    """

    def __init__(
        self,
        ledger: Ledger,
        loan_system: LoanSystem,
        account: AccountId = DEFAULT_RAMP_ACCOUNT,
        owner: Optional[AccountId] = None,
        authorize: Optional[Callable[[AccountId], bool]] = None,
    ):
        """
        Create a ramp bound to a ledger and a loan system.

        Args:
            ledger: Host ledger
            loan_system: Loan-management system
            account: Ledger account of the ramp
            owner: Account allowed to sweep stranded funds
            authorize: Override for the emergency_withdraw() check, called with the sender
        """
        self.ledger = ledger
        self.loan_system = loan_system
        self.account = account
        self.owner = owner
        self._authorize = authorize if authorize is not None else self._is_owner
        self._entered = False
        self.stage = SettlementStage.START
        if not ledger.is_registered(account):
            ledger.register_account(account)

    def _is_owner(self, sender: AccountId) -> bool:
        return self.owner is not None and sender == self.owner

    # ========================================================================
    # GUARDS
    # ========================================================================

    @contextmanager
    def _non_reentrant(self) -> Iterator[None]:
        if self._entered:
            raise ReentrancyDetected(f"{self.account} re-entered during an external call")
        self._entered = True
        try:
            yield
        finally:
            self._entered = False

    def _advance(self, stage: SettlementStage) -> None:
        self.stage = stage

    def _holdings(self, *currencies: CurrencyId) -> Dict[CurrencyId, Amount]:
        return {c: self.ledger.get_balance(self.account, c) for c in currencies}

    def _check_holdings(self, before: Dict[CurrencyId, Amount]) -> None:
        after = self._holdings(*before)
        for currency, amount in before.items():
            if after[currency] != amount:
                raise ResidualBalance(
                    f"{self.account} holds {after[currency]} {currency}, expected {amount}"
                )

    @contextmanager
    def _settlement(self, operation: Operation, loan_id: LoanId) -> Iterator[None]:
        """Reentrancy guard, atomic scope and status output around one settlement."""
        with self._non_reentrant():
            self._advance(SettlementStage.START)
            try:
                with self.ledger.atomic():
                    yield
            except Exception as exc:
                if self.ledger.verbose:
                    print(f"✗ FAILED at {self.stage.name}: {operation.name} {loan_id}: {exc}")
                self._advance(SettlementStage.FAILED)
                raise

    # ========================================================================
    # COST ESTIMATION (read-only)
    # ========================================================================

    def get_lend_cost(
        self,
        converter: Converter,
        from_currency: CurrencyId,
        cosigner: Optional[Cosigner],
        loan_id: LoanId,
        oracle_data: bytes = b"",
        cosigner_data: bytes = b"",
    ) -> Amount:
        """Input of from_currency needed to lend to loan_id, cosigner cost included."""
        return lend_cost(converter, from_currency, self.loan_system, cosigner, loan_id, oracle_data, cosigner_data)

    def get_pay_cost_with_fee(
        self,
        converter: Converter,
        from_currency: CurrencyId,
        loan_id: LoanId,
        pay_amount: Amount,
        oracle_data: bytes = b"",
    ) -> Amount:
        """Input of from_currency needed to pay pay_amount on loan_id, fee included."""
        return pay_cost(converter, from_currency, self.loan_system, loan_id, pay_amount, oracle_data)

    # ========================================================================
    # SETTLEMENT
    # ========================================================================

    def _convert_and_forward(
        self,
        ctx: CallContext,
        converter: Converter,
        from_currency: CurrencyId,
        max_spend: Amount,
        tokens: Amount,
        forward: Callable[[], Amount],
    ) -> Tuple[Amount, Amount]:
        """Shared pull -> convert -> forward -> refund sequence; returns (spent, applied)."""
        accounting = self.loan_system.accounting_currency
        cost = estimate_input(converter, from_currency, accounting, tokens)
        SpendBudget(max_spend).require(cost)

        before = self._holdings(from_currency, accounting)

        pull(self.ledger, ctx, from_currency, self.account, max_spend)
        self._advance(SettlementStage.PULLED)

        spent = convert_exact(self.ledger, self.account, converter, from_currency, accounting, tokens, max_spend)
        self._advance(SettlementStage.CONVERTED)

        self.ledger.approve(accounting, self.account, self.loan_system.account, tokens)
        applied = forward()
        self.ledger.approve(accounting, self.account, self.loan_system.account, 0)
        self._advance(SettlementStage.FORWARDED)

        push(self.ledger, from_currency, self.account, ctx.sender, max_spend - spent)
        self._advance(SettlementStage.REFUNDED)

        self._check_holdings(before)
        return spent, applied

    def lend(
        self,
        ctx: CallContext,
        converter: Converter,
        from_currency: CurrencyId,
        max_spend: Amount,
        cosigner: Optional[Cosigner],
        cosigner_limit_cost: Amount,
        loan_id: LoanId,
        oracle_data: bytes = b"",
        cosigner_data: bytes = b"",
        callback_data: bytes = b"",
    ) -> SettlementReceipt:
        """
        Fund loan_id with from_currency and hand the debt to the caller.

        Pulls exactly max_spend from ctx.sender, converts it into the accounting
        tokens the loan system requires, lends, transfers loan ownership to
        ctx.sender and refunds the unspent input.

        Args:
            ctx: Caller and attached native value (must equal max_spend for native input)
            converter: Converter used for from_currency -> accounting currency
            from_currency: Input currency
            max_spend: Upper bound on input pulled from the caller
            cosigner: Optional cosigner guaranteeing the loan
            cosigner_limit_cost: Highest cosigner cost the caller accepts
            loan_id: Loan to fund
            oracle_data: Opaque rate data, forwarded unchanged
            cosigner_data: Opaque cosigner data, forwarded unchanged
            callback_data: Opaque loan callback data, forwarded unchanged

        Returns:
            SettlementReceipt of the lend

        Raises:
            PayableMismatch: If attached native value does not match the input mode
            CosignerRejected: If the cosigner cost exceeds cosigner_limit_cost
            CostExceedsBudget: If the quoted input exceeds max_spend
            NoRoute, ConversionFailed: If the converter cannot deliver
            TransferFailed: If max_spend cannot be pulled from the caller
            LoanSystemRejected: If the loan system refuses the lend
            ResidualBalance: If the ramp would keep any funds
        """
        require_amount("cosigner_limit_cost", cosigner_limit_cost)
        with self._settlement(Operation.LEND, loan_id):
            check_payable(ctx, from_currency, max_spend)
            requirement = load_lend_requirement(self.loan_system, cosigner, loan_id, oracle_data, cosigner_data)
            if requirement.cosigner_cost > cosigner_limit_cost:
                raise CosignerRejected(
                    f"cosigner cost {requirement.cosigner_cost} exceeds limit {cosigner_limit_cost}"
                )

            def forward() -> Amount:
                record_rate(self.ledger, requirement.oracle, requirement.rate)
                self.loan_system.lend(
                    self.account, loan_id, oracle_data, cosigner,
                    cosigner_limit_cost, cosigner_data, callback_data,
                )
                self.loan_system.transfer_ownership(self.account, loan_id, ctx.sender)
                return requirement.principal

            spent, applied = self._convert_and_forward(
                ctx, converter, from_currency, max_spend, requirement.tokens, forward,
            )

            receipt = SettlementReceipt(
                operation=Operation.LEND,
                loan_id=loan_id,
                payer=ctx.sender,
                from_currency=from_currency,
                max_spend=max_spend,
                pulled=max_spend,
                spent=spent,
                refunded=max_spend - spent,
                tokens=requirement.tokens,
                applied=applied,
            )
            self.ledger.emit(
                "Lent", loan_id=loan_id, lender=ctx.sender, from_currency=from_currency,
                spent=spent, tokens=requirement.tokens, amount=applied,
            )
            self._advance(SettlementStage.DONE)

        if self.ledger.verbose:
            print(f"✓ LEND {loan_id}: {self._describe(receipt)}")
        return receipt

    def pay(
        self,
        ctx: CallContext,
        converter: Converter,
        from_currency: CurrencyId,
        pay_amount: Amount,
        max_spend: Amount,
        loan_id: LoanId,
        oracle_data: bytes = b"",
    ) -> SettlementReceipt:
        """
        Pay up to pay_amount (loan currency) on loan_id with from_currency.

        The payment is capped at the outstanding balance and the protocol fee
        is included in the converted amount. A loan with nothing outstanding is
        a no-op: nothing is pulled and neither the converter nor the loan
        system is called.

        Raises:
            PayableMismatch: If attached native value does not match the input mode
            CostExceedsBudget: If the quoted input exceeds max_spend
            NoRoute, ConversionFailed: If the converter cannot deliver
            TransferFailed: If max_spend cannot be pulled from the caller
            LoanSystemRejected: If the loan system refuses the payment
            ResidualBalance: If the loan system charged other than the computed amount
        """
        with self._settlement(Operation.PAY, loan_id):
            check_payable(ctx, from_currency, max_spend)
            requirement = load_pay_requirement(self.loan_system, loan_id, pay_amount, oracle_data)

            if requirement.is_noop:
                receipt = SettlementReceipt(
                    operation=Operation.PAY,
                    loan_id=loan_id,
                    payer=ctx.sender,
                    from_currency=from_currency,
                    max_spend=max_spend,
                    pulled=0,
                    spent=0,
                    refunded=0,
                    tokens=0,
                    applied=0,
                )
                self._advance(SettlementStage.DONE)
            else:
                def forward() -> Amount:
                    record_rate(self.ledger, requirement.oracle, requirement.rate)
                    return self.loan_system.pay_from(
                        self.account, ctx.sender, loan_id, requirement.effective, oracle_data,
                    )

                spent, applied = self._convert_and_forward(
                    ctx, converter, from_currency, max_spend, requirement.tokens, forward,
                )
                receipt = SettlementReceipt(
                    operation=Operation.PAY,
                    loan_id=loan_id,
                    payer=ctx.sender,
                    from_currency=from_currency,
                    max_spend=max_spend,
                    pulled=max_spend,
                    spent=spent,
                    refunded=max_spend - spent,
                    tokens=requirement.tokens,
                    applied=applied,
                )
                self.ledger.emit(
                    "Paid", loan_id=loan_id, payer=ctx.sender, from_currency=from_currency,
                    spent=spent, tokens=requirement.tokens, fee=requirement.fee, amount=applied,
                )
                self._advance(SettlementStage.DONE)

        if self.ledger.verbose:
            if receipt.is_noop:
                print(f"· PAY {loan_id}: nothing outstanding, no-op")
            else:
                print(f"✓ PAY {loan_id}: {self._describe(receipt)}")
        return receipt

    # ========================================================================
    # RECOVERY
    # ========================================================================

    def emergency_withdraw(self, ctx: CallContext, currency: CurrencyId, to: AccountId, amount: Amount) -> None:
        """
        Sweep funds stranded in the ramp account to `to`.

        Raises:
            NotAuthorized: If ctx.sender fails the authorization check
        """
        with self._non_reentrant():
            if not self._authorize(ctx.sender):
                raise NotAuthorized(f"{ctx.sender} may not withdraw from {self.account}")
            with self.ledger.atomic():
                push(self.ledger, currency, self.account, to, amount)
                self.ledger.emit("EmergencyWithdraw", currency=currency, to=to, amount=amount)
        if self.ledger.verbose:
            print(f"⚠️  EMERGENCY WITHDRAW: {self.ledger.format(amount, currency)} {currency} -> {to}")

    def _describe(self, receipt: SettlementReceipt) -> str:
        accounting = self.loan_system.accounting_currency
        unit = "native" if is_native(receipt.from_currency) else receipt.from_currency
        return (f"spent {self.ledger.format(receipt.spent, receipt.from_currency)} {unit}, "
                f"refunded {self.ledger.format(receipt.refunded, receipt.from_currency)}, "
                f"forwarded {self.ledger.format(receipt.tokens, accounting)} {accounting}")
