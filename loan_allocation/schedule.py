"""
Repayment Schedule Module

Installments of a loan amortization schedule and the component level
mutators (pay, waive, write off) the allocation engine drives. Expected
principal and interest come from the schedule generator; expected fees and
penalties are placed by the charge reprocessing step.
"""

from datetime import date
from dataclasses import dataclass
from typing import Optional

from .currency import Money, Currency


@dataclass
class RepaymentInstallment:
    """
    One scheduled due period of a loan.

    Each component tracks expected, paid, waived and written-off amounts;
    outstanding is always expected minus the three completions.
    """
    installment_number: int
    from_date: date                     # Period start (previous due date)
    due_date: date
    principal: Money
    interest_charged: Money
    fee_charges: Money = None
    penalty_charges: Money = None

    # Derived fields, reset at the start of every processing pass
    principal_completed: Money = None
    principal_written_off: Money = None
    interest_paid: Money = None
    interest_waived: Money = None
    interest_written_off: Money = None
    fee_charges_paid: Money = None
    fee_charges_waived: Money = None
    fee_charges_written_off: Money = None
    penalty_charges_paid: Money = None
    penalty_charges_waived: Money = None
    penalty_charges_written_off: Money = None
    total_paid_in_advance: Money = None
    total_paid_late: Money = None
    obligations_met: bool = False
    obligations_met_on_date: Optional[date] = None

    def __post_init__(self):
        if self.interest_charged.currency != self.principal.currency:
            raise ValueError("Interest currency must match principal currency")
        if self.due_date < self.from_date:
            raise ValueError(
                f"Installment {self.installment_number} due date {self.due_date} "
                f"precedes its period start {self.from_date}"
            )

        zero_amount = Money.zero(self.currency)
        for name in (
            'fee_charges', 'penalty_charges',
            'principal_completed', 'principal_written_off',
            'interest_paid', 'interest_waived', 'interest_written_off',
            'fee_charges_paid', 'fee_charges_waived', 'fee_charges_written_off',
            'penalty_charges_paid', 'penalty_charges_waived', 'penalty_charges_written_off',
            'total_paid_in_advance', 'total_paid_late',
        ):
            if getattr(self, name) is None:
                setattr(self, name, zero_amount)

    @property
    def currency(self) -> Currency:
        return self.principal.currency

    # Outstanding amounts

    @property
    def principal_outstanding(self) -> Money:
        return self.principal - self.principal_completed - self.principal_written_off

    @property
    def interest_outstanding(self) -> Money:
        return self.interest_charged - self.interest_paid - self.interest_waived - self.interest_written_off

    @property
    def fee_charges_outstanding(self) -> Money:
        return self.fee_charges - self.fee_charges_paid - self.fee_charges_waived - self.fee_charges_written_off

    @property
    def penalty_charges_outstanding(self) -> Money:
        return (self.penalty_charges - self.penalty_charges_paid
                - self.penalty_charges_waived - self.penalty_charges_written_off)

    @property
    def total_outstanding(self) -> Money:
        return (self.principal_outstanding + self.interest_outstanding
                + self.fee_charges_outstanding + self.penalty_charges_outstanding)

    @property
    def total_due(self) -> Money:
        return self.principal + self.interest_charged + self.fee_charges + self.penalty_charges

    @property
    def is_fully_paid_off(self) -> bool:
        return self.obligations_met

    @property
    def is_not_fully_paid_off(self) -> bool:
        return not self.obligations_met

    # Derived field maintenance

    def reset_derived_components(self) -> None:
        """Zero every paid, waived and written-off amount"""
        zero_amount = Money.zero(self.currency)
        self.principal_completed = zero_amount
        self.principal_written_off = zero_amount
        self.interest_paid = zero_amount
        self.interest_waived = zero_amount
        self.interest_written_off = zero_amount
        self.fee_charges_paid = zero_amount
        self.fee_charges_waived = zero_amount
        self.fee_charges_written_off = zero_amount
        self.penalty_charges_paid = zero_amount
        self.penalty_charges_waived = zero_amount
        self.penalty_charges_written_off = zero_amount
        self.total_paid_in_advance = zero_amount
        self.total_paid_late = zero_amount
        self.obligations_met = False
        self.obligations_met_on_date = None

    def update_derived_fields(self, currency: Currency, actual_disbursement_date: date) -> None:
        """An installment with nothing to pay is met as of disbursement"""
        if currency != self.currency:
            raise ValueError(
                f"Installment {self.installment_number} is in {self.currency.code}, "
                f"not {currency.code}"
            )
        if not self.obligations_met and self.total_outstanding.is_zero():
            self.obligations_met = True
            self.obligations_met_on_date = actual_disbursement_date

    def update_charge_portion(
        self,
        fee_charges_due: Money,
        fee_charges_waived: Money,
        penalty_charges_due: Money,
        penalty_charges_waived: Money
    ) -> None:
        """Set expected fee/penalty amounts placed by charge reprocessing"""
        self.fee_charges = fee_charges_due
        self.fee_charges_waived = fee_charges_waived
        self.penalty_charges = penalty_charges_due
        self.penalty_charges_waived = penalty_charges_waived

        if self.total_outstanding.is_positive():
            self.obligations_met = False
            self.obligations_met_on_date = None

    # Component mutators; each returns the amount actually applied

    def pay_principal_component(self, transaction_date: date, amount: Money) -> Money:
        applied = min(self.principal_outstanding, amount)
        self.principal_completed = self.principal_completed + applied
        self._track_advance_and_late_totals(transaction_date, applied)
        self._check_if_repayment_period_obligations_are_met(transaction_date)
        return applied

    def pay_interest_component(self, transaction_date: date, amount: Money) -> Money:
        applied = min(self.interest_outstanding, amount)
        self.interest_paid = self.interest_paid + applied
        self._track_advance_and_late_totals(transaction_date, applied)
        self._check_if_repayment_period_obligations_are_met(transaction_date)
        return applied

    def pay_fee_charges_component(self, transaction_date: date, amount: Money) -> Money:
        applied = min(self.fee_charges_outstanding, amount)
        self.fee_charges_paid = self.fee_charges_paid + applied
        self._track_advance_and_late_totals(transaction_date, applied)
        self._check_if_repayment_period_obligations_are_met(transaction_date)
        return applied

    def pay_penalty_charges_component(self, transaction_date: date, amount: Money) -> Money:
        applied = min(self.penalty_charges_outstanding, amount)
        self.penalty_charges_paid = self.penalty_charges_paid + applied
        self._track_advance_and_late_totals(transaction_date, applied)
        self._check_if_repayment_period_obligations_are_met(transaction_date)
        return applied

    def waive_interest_component(self, transaction_date: date, amount: Money) -> Money:
        waived = min(self.interest_outstanding, amount)
        self.interest_waived = self.interest_waived + waived
        self._check_if_repayment_period_obligations_are_met(transaction_date)
        return waived

    def write_off_outstanding_principal(self, transaction_date: date) -> Money:
        written_off = self.principal_outstanding
        self.principal_written_off = self.principal_written_off + written_off
        self._check_if_repayment_period_obligations_are_met(transaction_date)
        return written_off

    def write_off_outstanding_interest(self, transaction_date: date) -> Money:
        written_off = self.interest_outstanding
        self.interest_written_off = self.interest_written_off + written_off
        self._check_if_repayment_period_obligations_are_met(transaction_date)
        return written_off

    def write_off_outstanding_fee_charges(self, transaction_date: date) -> Money:
        written_off = self.fee_charges_outstanding
        self.fee_charges_written_off = self.fee_charges_written_off + written_off
        self._check_if_repayment_period_obligations_are_met(transaction_date)
        return written_off

    def write_off_outstanding_penalty_charges(self, transaction_date: date) -> Money:
        written_off = self.penalty_charges_outstanding
        self.penalty_charges_written_off = self.penalty_charges_written_off + written_off
        self._check_if_repayment_period_obligations_are_met(transaction_date)
        return written_off

    def _track_advance_and_late_totals(self, transaction_date: date, amount: Money) -> None:
        if transaction_date < self.due_date:
            self.total_paid_in_advance = self.total_paid_in_advance + amount
        elif transaction_date > self.due_date:
            self.total_paid_late = self.total_paid_late + amount

    def _check_if_repayment_period_obligations_are_met(self, transaction_date: date) -> None:
        self.obligations_met = self.total_outstanding.is_zero()
        self.obligations_met_on_date = transaction_date if self.obligations_met else None
