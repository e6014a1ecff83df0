"""
Allocation Strategy Module

Decides whether a transaction is early, late or on time with respect to an
installment, and in which order principal, interest, fees and penalties are
satisfied in each case. Strategies are named variants of StrategyType chosen
when the processor is built.
"""

from datetime import date
from dataclasses import dataclass
from typing import Callable, List, Optional, Union
from enum import Enum

from .currency import Money
from .schedule import RepaymentInstallment
from .charges import ChargeKind
from .transactions import LoanTransaction


class AllocationComponent(Enum):
    """Installment components, with the installment method that pays each"""
    PRINCIPAL = ("principal", "pay_principal_component")
    INTEREST = ("interest", "pay_interest_component")
    FEE = ("fee_charges", "pay_fee_charges_component")
    PENALTY = ("penalty_charges", "pay_penalty_charges_component")

    def __init__(self, label: str, payer: str):
        self.label = label
        self.payer = payer

    def pay(self, installment: RepaymentInstallment, transaction_date: date, amount: Money) -> Money:
        return getattr(installment, self.payer)(transaction_date, amount)

    @classmethod
    def for_charge_kind(cls, kind: ChargeKind) -> 'AllocationComponent':
        return cls.FEE if kind == ChargeKind.FEE else cls.PENALTY


PRINCIPAL = AllocationComponent.PRINCIPAL
INTEREST = AllocationComponent.INTEREST
FEE = AllocationComponent.FEE
PENALTY = AllocationComponent.PENALTY

PENALTIES_FEES_INTEREST_PRINCIPAL_ORDER = (PENALTY, FEE, INTEREST, PRINCIPAL)
INTEREST_PRINCIPAL_PENALTIES_FEES_ORDER = (INTEREST, PRINCIPAL, PENALTY, FEE)
PRINCIPAL_INTEREST_PENALTIES_FEES_ORDER = (PRINCIPAL, INTEREST, PENALTY, FEE)
PRINCIPAL_INTEREST_FEES_PENALTIES_ORDER = (PRINCIPAL, INTEREST, FEE, PENALTY)


class AdvanceRule(Enum):
    """How a strategy recognises a payment made ahead of schedule"""
    BEFORE_DUE_DATE = "before_due_date"
    BEFORE_DUE_DATE_AND_CLEARS_INSTALLMENT = "before_due_date_and_clears_installment"


class StrategyType(Enum):
    """Allocation strategies: (code, advance order, late order, on-time order, advance rule)"""
    PENALTIES_FEES_INTEREST_PRINCIPAL = (
        "penalties_fees_interest_principal",
        PENALTIES_FEES_INTEREST_PRINCIPAL_ORDER,
        PENALTIES_FEES_INTEREST_PRINCIPAL_ORDER,
        PENALTIES_FEES_INTEREST_PRINCIPAL_ORDER,
        AdvanceRule.BEFORE_DUE_DATE
    )
    INTEREST_PRINCIPAL_PENALTIES_FEES = (
        "interest_principal_penalties_fees",
        INTEREST_PRINCIPAL_PENALTIES_FEES_ORDER,
        INTEREST_PRINCIPAL_PENALTIES_FEES_ORDER,
        INTEREST_PRINCIPAL_PENALTIES_FEES_ORDER,
        AdvanceRule.BEFORE_DUE_DATE
    )
    PRINCIPAL_INTEREST_PENALTIES_FEES = (
        "principal_interest_penalties_fees",
        PRINCIPAL_INTEREST_PENALTIES_FEES_ORDER,
        PRINCIPAL_INTEREST_PENALTIES_FEES_ORDER,
        PRINCIPAL_INTEREST_PENALTIES_FEES_ORDER,
        AdvanceRule.BEFORE_DUE_DATE
    )
    OVERDUE_PENALTIES_FIRST = (
        "overdue_penalties_first",
        INTEREST_PRINCIPAL_PENALTIES_FEES_ORDER,
        PENALTIES_FEES_INTEREST_PRINCIPAL_ORDER,
        INTEREST_PRINCIPAL_PENALTIES_FEES_ORDER,
        AdvanceRule.BEFORE_DUE_DATE
    )
    EARLY_PAYMENT_PRINCIPAL_FIRST = (
        "early_payment_principal_first",
        PRINCIPAL_INTEREST_FEES_PENALTIES_ORDER,
        PENALTIES_FEES_INTEREST_PRINCIPAL_ORDER,
        PENALTIES_FEES_INTEREST_PRINCIPAL_ORDER,
        AdvanceRule.BEFORE_DUE_DATE_AND_CLEARS_INSTALLMENT
    )

    def __init__(self, code, advance_order, late_order, on_time_order, advance_rule):
        self.code = code
        self.advance_order = advance_order
        self.late_order = late_order
        self.on_time_order = on_time_order
        self.advance_rule = advance_rule

    @classmethod
    def from_code(cls, code: str) -> 'StrategyType':
        for strategy_type in cls:
            if strategy_type.code == code.lower():
                return strategy_type
        raise ValueError(f"Unknown allocation strategy: {code}")


@dataclass(frozen=True)
class Unconstrained:
    """Allocate the transaction's whole remaining amount"""


@dataclass(frozen=True)
class CappedAt:
    """Allocate at most ``amount``, to the fee or penalty component only"""
    amount: Money
    kind: ChargeKind

    def __post_init__(self):
        if self.amount.is_negative():
            raise ValueError("Processing cap cannot be negative")


UNCONSTRAINED = Unconstrained()

ProcessingLimit = Union[Unconstrained, CappedAt]

OverpaymentHook = Callable[[LoanTransaction, Money], None]


class AllocationStrategy:
    """
    Classification and component ordering for one StrategyType.

    The three handlers each apply as much of the amount as the installment
    can take and return what is left. ``on_overpayment`` is called with the
    transaction and the excess whenever a non-waiver transaction overpays
    the loan.
    """

    def __init__(
        self,
        strategy_type: StrategyType = StrategyType.PENALTIES_FEES_INTEREST_PRINCIPAL,
        on_overpayment: Optional[OverpaymentHook] = None
    ):
        self.strategy_type = strategy_type
        self._on_overpayment = on_overpayment

    @property
    def code(self) -> str:
        return self.strategy_type.code

    def is_transaction_in_advance_of_installment(
        self,
        installment_index: int,
        installments: List[RepaymentInstallment],
        transaction_date: date,
        transaction_amount: Money
    ) -> bool:
        current_installment = installments[installment_index]
        if not transaction_date < current_installment.due_date:
            return False
        if self.strategy_type.advance_rule == AdvanceRule.BEFORE_DUE_DATE_AND_CLEARS_INSTALLMENT:
            return transaction_amount >= current_installment.total_outstanding
        return True

    def is_transaction_a_late_repayment_on_installment(
        self,
        installment_index: int,
        installments: List[RepaymentInstallment],
        transaction_date: date
    ) -> bool:
        return transaction_date > installments[installment_index].due_date

    def handle_payment_in_advance(
        self,
        current_installment: RepaymentInstallment,
        installments: List[RepaymentInstallment],
        transaction: LoanTransaction,
        transaction_date: date,
        payment_in_advance: Money,
        limit: ProcessingLimit = UNCONSTRAINED
    ) -> Money:
        return self._apply_components(
            current_installment, transaction, transaction_date, payment_in_advance,
            self.strategy_type.advance_order, limit
        )

    def handle_late_repayment(
        self,
        current_installment: RepaymentInstallment,
        installments: List[RepaymentInstallment],
        transaction: LoanTransaction,
        transaction_amount_unprocessed: Money,
        limit: ProcessingLimit = UNCONSTRAINED
    ) -> Money:
        return self._apply_components(
            current_installment, transaction, transaction.transaction_date,
            transaction_amount_unprocessed, self.strategy_type.late_order, limit
        )

    def handle_on_time_payment(
        self,
        current_installment: RepaymentInstallment,
        transaction: LoanTransaction,
        transaction_amount_unprocessed: Money,
        limit: ProcessingLimit = UNCONSTRAINED
    ) -> Money:
        return self._apply_components(
            current_installment, transaction, transaction.transaction_date,
            transaction_amount_unprocessed, self.strategy_type.on_time_order, limit
        )

    def on_loan_overpayment(self, transaction: LoanTransaction, overpayment: Money) -> None:
        if self._on_overpayment is not None:
            self._on_overpayment(transaction, overpayment)

    def _apply_components(self, installment, transaction, transaction_date, amount, order, limit) -> Money:
        zero_amount = Money.zero(amount.currency)
        applied = {component: zero_amount for component in AllocationComponent}
        remaining = amount

        if transaction.is_interest_waiver:
            applied[INTEREST] = installment.waive_interest_component(transaction_date, remaining)
            remaining = remaining - applied[INTEREST]
        elif transaction.is_charge_payment:
            component = AllocationComponent.for_charge_kind(self._charge_kind(transaction, limit))
            applied[component] = component.pay(installment, transaction_date, remaining)
            remaining = remaining - applied[component]
        else:
            for component in order:
                if not remaining.is_positive():
                    break
                paid = component.pay(installment, transaction_date, remaining)
                applied[component] = applied[component] + paid
                remaining = remaining - paid

        transaction.update_components(applied[PRINCIPAL], applied[INTEREST], applied[FEE], applied[PENALTY])
        return remaining

    def _charge_kind(self, transaction: LoanTransaction, limit: ProcessingLimit) -> ChargeKind:
        if isinstance(limit, CappedAt):
            return limit.kind
        if transaction.charges_paid:
            return transaction.charges_paid[0].charge.kind
        return ChargeKind.FEE
