"""
Loan Transaction Module

Monetary events applied to a loan after disbursement, the component
breakdown the allocation engine assigns to them, and the record of
previously persisted transactions that a reprocessing pass replaced.
"""

from datetime import date
from dataclasses import dataclass, field
from typing import Dict, List, Optional, TYPE_CHECKING
from enum import Enum

from .currency import Money, Currency

if TYPE_CHECKING:
    from .charges import LoanCharge


class TransactionType(Enum):
    """Types of post-disbursement loan transactions"""
    REPAYMENT = "repayment"
    WAIVE_INTEREST = "waive_interest"
    RECOVERY_REPAYMENT = "recovery_repayment"   # Repayment after write-off
    WRITE_OFF = "write_off"
    CHARGE_PAYMENT = "charge_payment"           # Pays specific charges


@dataclass(frozen=True)
class ComponentBreakdown:
    """Principal/interest/fee/penalty split of a transaction"""
    principal: Money
    interest: Money
    fee_charges: Money
    penalty_charges: Money

    @classmethod
    def zero(cls, currency: Currency) -> 'ComponentBreakdown':
        zero_amount = Money.zero(currency)
        return cls(zero_amount, zero_amount, zero_amount, zero_amount)

    @property
    def total(self) -> Money:
        return self.principal + self.interest + self.fee_charges + self.penalty_charges


@dataclass(eq=False)
class ChargePaidBy:
    """Link recording how much of a transaction went to one charge"""
    transaction: 'LoanTransaction' = field(repr=False)
    charge: 'LoanCharge'
    amount: Money


@dataclass(eq=False)
class LoanTransaction:
    """
    One monetary event on a loan.

    A transaction without an id has never been persisted and is updated in
    place by the engine. A transaction with an id is previously recorded and
    is only ever compared against a freshly allocated copy.
    """
    transaction_type: TransactionType
    transaction_date: date
    amount: Money
    id: Optional[str] = None
    external_id: Optional[str] = None

    principal_portion: Money = None
    interest_portion: Money = None
    fee_charges_portion: Money = None
    penalty_charges_portion: Money = None
    overpayment_portion: Money = None

    charges_paid: List[ChargePaidBy] = field(default_factory=list)
    reversed: bool = False

    def __post_init__(self):
        if self.amount.is_negative():
            raise ValueError(f"Transaction amount cannot be negative: {self.amount.to_string()}")

        zero_amount = Money.zero(self.amount.currency)
        if self.principal_portion is None:
            self.principal_portion = zero_amount
        if self.interest_portion is None:
            self.interest_portion = zero_amount
        if self.fee_charges_portion is None:
            self.fee_charges_portion = zero_amount
        if self.penalty_charges_portion is None:
            self.penalty_charges_portion = zero_amount
        if self.overpayment_portion is None:
            self.overpayment_portion = zero_amount

    @property
    def currency(self) -> Currency:
        return self.amount.currency

    @property
    def is_new(self) -> bool:
        return self.id is None

    @property
    def is_repayment(self) -> bool:
        return self.transaction_type == TransactionType.REPAYMENT

    @property
    def is_interest_waiver(self) -> bool:
        return self.transaction_type == TransactionType.WAIVE_INTEREST

    @property
    def is_waiver(self) -> bool:
        return self.is_interest_waiver

    @property
    def is_not_waiver(self) -> bool:
        return not self.is_waiver

    @property
    def is_recovery_repayment(self) -> bool:
        return self.transaction_type == TransactionType.RECOVERY_REPAYMENT

    @property
    def is_write_off(self) -> bool:
        return self.transaction_type == TransactionType.WRITE_OFF

    @property
    def is_charge_payment(self) -> bool:
        return self.transaction_type == TransactionType.CHARGE_PAYMENT

    @property
    def is_allocatable(self) -> bool:
        """Kinds that are split across installments by the allocator"""
        return self.is_repayment or self.is_interest_waiver or self.is_recovery_repayment

    def breakdown(self) -> ComponentBreakdown:
        return ComponentBreakdown(
            principal=self.principal_portion,
            interest=self.interest_portion,
            fee_charges=self.fee_charges_portion,
            penalty_charges=self.penalty_charges_portion
        )

    def reset_derived_components(self) -> None:
        """Clear the breakdown; charge links are inputs for charge payments"""
        zero_amount = Money.zero(self.currency)
        self.principal_portion = zero_amount
        self.interest_portion = zero_amount
        self.fee_charges_portion = zero_amount
        self.penalty_charges_portion = zero_amount
        self.overpayment_portion = zero_amount
        if not self.is_charge_payment:
            self.charges_paid = []

    def update_components(
        self,
        principal: Money,
        interest: Money,
        fee_charges: Money,
        penalty_charges: Money
    ) -> None:
        """Add to the breakdown"""
        self.principal_portion = self.principal_portion + principal
        self.interest_portion = self.interest_portion + interest
        self.fee_charges_portion = self.fee_charges_portion + fee_charges
        self.penalty_charges_portion = self.penalty_charges_portion + penalty_charges

    def update_components_and_total(
        self,
        principal: Money,
        interest: Money,
        fee_charges: Money,
        penalty_charges: Money
    ) -> None:
        """Replace the breakdown and make the amount equal its total"""
        self.principal_portion = principal
        self.interest_portion = interest
        self.fee_charges_portion = fee_charges
        self.penalty_charges_portion = penalty_charges
        self.amount = principal + interest + fee_charges + penalty_charges

    def update_over_payments(self, amount: Money) -> None:
        self.overpayment_portion = amount

    def reverse(self) -> None:
        self.reversed = True

    def update_external_id(self, external_id: Optional[str]) -> None:
        self.external_id = external_id

    def add_charge_paid(self, charge: 'LoanCharge', amount: Money) -> ChargePaidBy:
        paid_by = ChargePaidBy(transaction=self, charge=charge, amount=amount)
        self.charges_paid.append(paid_by)
        return paid_by

    def copy_transaction_properties(self) -> 'LoanTransaction':
        """
        Unsaved copy used to re-allocate a previously recorded transaction.

        Charge links are carried over only for charge payments, where they
        name the charges being paid.
        """
        shadow = LoanTransaction(
            transaction_type=self.transaction_type,
            transaction_date=self.transaction_date,
            amount=self.amount,
            external_id=self.external_id
        )
        if self.is_charge_payment:
            for paid_by in self.charges_paid:
                shadow.add_charge_paid(paid_by.charge, paid_by.amount)
        return shadow


def transaction_amounts_match(
    currency: Currency,
    original: LoanTransaction,
    recomputed: LoanTransaction
) -> bool:
    """
    Compare two transactions by total and component breakdown.

    Both must be in ``currency``; the comparison is on rounded Money values.
    """
    if original.currency != currency or recomputed.currency != currency:
        raise ValueError(f"Transactions must both be in {currency.code}")
    return (
        original.amount == recomputed.amount
        and original.breakdown() == recomputed.breakdown()
    )


@dataclass
class ChangedTransactionDetail:
    """
    Previously persisted transactions replaced during reprocessing.

    Maps the original transaction id to the transaction that replaces it.
    The caller persists the reversal of each original and saves each
    replacement.
    """
    new_transaction_mappings: Dict[str, LoanTransaction] = field(default_factory=dict)

    def add_mapping(self, original_id: str, replacement: LoanTransaction) -> None:
        self.new_transaction_mappings[original_id] = replacement

    @property
    def is_empty(self) -> bool:
        return not self.new_transaction_mappings

    def __len__(self) -> int:
        return len(self.new_transaction_mappings)
