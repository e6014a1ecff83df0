"""
Loan Charges Module

Fees and penalties attached to a loan, their per-installment shares, and
the charge ledger that decides which unpaid charge a fee or penalty amount
settles first.
"""

from datetime import date
from dataclasses import dataclass, field
from typing import Iterable, List, Optional
from enum import Enum

from .currency import Money, Currency
from .schedule import RepaymentInstallment
from .transactions import LoanTransaction
from .logging_config import get_logger, log_action


class ChargeKind(Enum):
    """Which installment bucket a charge is collected in"""
    FEE = "fee"
    PENALTY = "penalty"


class ChargeTimeType(Enum):
    """When a charge falls due"""
    DISBURSEMENT = "disbursement"                # Collected at disbursement, never reprocessed
    SPECIFIED_DUE_DATE = "specified_due_date"    # Single due date
    INSTALLMENT_FEE = "installment_fee"          # One share per installment


@dataclass
class InstallmentCharge:
    """Share of an installment-fee charge owed on one installment"""
    installment: RepaymentInstallment
    amount: Money
    amount_paid: Money = None
    amount_waived: Money = None
    paid: bool = False

    def __post_init__(self):
        zero_amount = Money.zero(self.amount.currency)
        if self.amount_paid is None:
            self.amount_paid = zero_amount
        if self.amount_waived is None:
            self.amount_waived = zero_amount
        self.paid = self.amount_outstanding.is_zero()

    @property
    def due_date(self) -> date:
        return self.installment.due_date

    @property
    def installment_number(self) -> int:
        return self.installment.installment_number

    @property
    def amount_outstanding(self) -> Money:
        return self.amount - self.amount_paid - self.amount_waived

    @property
    def is_paid(self) -> bool:
        return self.paid

    def reset_paid_amount(self, currency: Currency) -> None:
        self.amount_paid = Money.zero(currency)
        self.paid = self.amount_outstanding.is_zero()

    def update_paid_amount_by(self, increment_by: Money, cap: Optional[Money] = None) -> Money:
        """Pay up to the outstanding share, never more than ``cap`` when given"""
        applied = min(self.amount_outstanding, increment_by)
        if cap is not None:
            applied = min(applied, cap)
        self.amount_paid = self.amount_paid + applied
        self.paid = self.amount_outstanding.is_zero()
        return applied


@dataclass(frozen=True)
class ChargePaidDetail:
    """An (amount, installment) pair a charge payment is routed through"""
    amount: Money
    installment: RepaymentInstallment
    is_fee_charge: bool

    @property
    def kind(self) -> ChargeKind:
        return ChargeKind.FEE if self.is_fee_charge else ChargeKind.PENALTY


@dataclass(eq=False)
class LoanCharge:
    """A fee or penalty applicable to a loan"""
    charge_id: str
    name: str
    kind: ChargeKind
    time_type: ChargeTimeType
    amount: Money
    due_date: Optional[date] = None
    amount_paid: Money = None
    amount_waived: Money = None
    paid: bool = False
    installment_charges: List[InstallmentCharge] = field(default_factory=list)

    def __post_init__(self):
        zero_amount = Money.zero(self.amount.currency)
        if self.amount_paid is None:
            self.amount_paid = zero_amount
        if self.amount_waived is None:
            self.amount_waived = zero_amount

        if self.time_type == ChargeTimeType.SPECIFIED_DUE_DATE and self.due_date is None:
            raise ValueError(f"Charge {self.charge_id} is due by date but has no due date")

        if self.time_type == ChargeTimeType.INSTALLMENT_FEE:
            if not self.installment_charges:
                raise ValueError(f"Installment fee {self.charge_id} has no installment shares")
            share_total = zero_amount
            for share in self.installment_charges:
                if share.amount.currency != self.amount.currency:
                    raise ValueError(f"Installment share currency must match charge {self.charge_id}")
                share_total = share_total + share.amount
            if share_total != self.amount:
                raise ValueError(
                    f"Installment shares of {self.charge_id} total {share_total.to_string()}, "
                    f"expected {self.amount.to_string()}"
                )
            self.installment_charges.sort(key=lambda share: share.due_date)

        self.paid = self.amount_outstanding.is_zero()

    @property
    def currency(self) -> Currency:
        return self.amount.currency

    @property
    def amount_outstanding(self) -> Money:
        return self.amount - self.amount_paid - self.amount_waived

    @property
    def is_fee_charge(self) -> bool:
        return self.kind == ChargeKind.FEE

    @property
    def is_penalty_charge(self) -> bool:
        return self.kind == ChargeKind.PENALTY

    @property
    def is_due_at_disbursement(self) -> bool:
        return self.time_type == ChargeTimeType.DISBURSEMENT

    @property
    def is_installment_fee(self) -> bool:
        return self.time_type == ChargeTimeType.INSTALLMENT_FEE

    @property
    def is_fully_paid(self) -> bool:
        return self.paid

    @property
    def is_not_fully_paid(self) -> bool:
        return not self.paid

    def reset_paid_amount(self, currency: Currency) -> None:
        """Clear paid state; waived amounts are kept"""
        self.amount_paid = Money.zero(currency)
        for share in self.installment_charges:
            share.reset_paid_amount(currency)
        self.paid = self.amount_outstanding.is_zero()

    def unpaid_installment_charge(self) -> Optional[InstallmentCharge]:
        """Earliest-due installment share still owing"""
        for share in self.installment_charges:
            if not share.is_paid:
                return share
        return None

    def installment_charge(self, installment_number: int) -> Optional[InstallmentCharge]:
        for share in self.installment_charges:
            if share.installment_number == installment_number:
                return share
        return None

    def earliest_unpaid_due_date(self) -> Optional[date]:
        """Due date used when ranking this charge against others"""
        if self.is_installment_fee:
            share = self.unpaid_installment_charge()
            return share.due_date if share else None
        return self.due_date

    def is_due_for_collection_from_and_up_to_and_including(
        self,
        from_not_inclusive: date,
        up_to_and_inclusive: date
    ) -> bool:
        if self.due_date is None:
            return False
        return from_not_inclusive < self.due_date <= up_to_and_inclusive

    def update_paid_amount_by(
        self,
        increment_by: Money,
        installment_number: Optional[int] = None,
        fee_amount: Optional[Money] = None
    ) -> Money:
        """
        Pay part of this charge and return the amount it absorbed.

        Installment fees pay through one share: the share of
        ``installment_number`` when given, otherwise the earliest unpaid one.
        ``fee_amount`` caps the share payment for charge-payment transactions.
        """
        if self.is_installment_fee:
            if installment_number is None:
                share = self.unpaid_installment_charge()
            else:
                share = self.installment_charge(installment_number)
            if share is None:
                return Money.zero(self.currency)
            process_amount = share.update_paid_amount_by(increment_by, fee_amount)
        else:
            process_amount = increment_by

        paid_on_this_charge = min(process_amount, self.amount_outstanding)
        self.amount_paid = self.amount_paid + paid_on_this_charge
        self.paid = self.amount_outstanding.is_zero()
        return paid_on_this_charge

    def fetch_repayment_installment(self, currency: Currency) -> List[ChargePaidDetail]:
        """One (outstanding share, installment) pair per unpaid installment share"""
        details = []
        for share in self.installment_charges:
            if not share.is_paid:
                details.append(ChargePaidDetail(
                    amount=Money(share.amount_outstanding.amount, currency),
                    installment=share.installment,
                    is_fee_charge=self.is_fee_charge
                ))
        return details


class ChargeLedger:
    """
    Paid/outstanding bookkeeping across the charges of one loan.

    Amounts are always applied to the earliest unpaid charge of the requested
    kind first. Charges due at disbursement are never selected.
    """

    def __init__(self, charges: Optional[Iterable[LoanCharge]] = None):
        self.charges: List[LoanCharge] = list(charges or [])
        self.logger = get_logger("loan_allocation.charges")

    def charges_of_kind(self, kind: ChargeKind) -> List[LoanCharge]:
        return [charge for charge in self.charges if charge.kind == kind]

    def find_earliest_unpaid_charge(self, kind: ChargeKind) -> Optional[LoanCharge]:
        """
        Pick the next charge of ``kind`` to pay.

        The installment-fee candidate is the one whose earliest unpaid share
        falls due first; the dated candidate is the one with the earliest due
        date. The installment-fee candidate wins unless the dated candidate
        is due strictly earlier.
        """
        earliest_dated_charge = None
        installment_fee_charge = None
        earliest_share = None

        for charge in self.charges_of_kind(kind):
            if charge.is_fully_paid or charge.is_due_at_disbursement:
                continue
            if charge.is_installment_fee:
                share = charge.unpaid_installment_charge()
                if share is None:
                    continue
                if earliest_share is None or earliest_share.due_date > share.due_date:
                    installment_fee_charge = charge
                    earliest_share = share
            elif earliest_dated_charge is None or charge.due_date < earliest_dated_charge.due_date:
                earliest_dated_charge = charge

        if earliest_dated_charge is None:
            return installment_fee_charge
        if earliest_share is not None and not earliest_dated_charge.due_date < earliest_share.due_date:
            return installment_fee_charge
        return earliest_dated_charge

    def update_charges_paid_amount_by(
        self,
        transaction: LoanTransaction,
        amount: Money,
        kind: ChargeKind,
        installment_number: Optional[int] = None
    ) -> Money:
        """
        Spread ``amount`` over unpaid charges of ``kind``, earliest first.

        Records a charge link on the transaction for every charge paid,
        except for charge-payment transactions whose links already name the
        charges. Returns the amount left over once no unpaid charge remains.
        """
        amount_remaining = amount
        fee_amount = amount if transaction.is_charge_payment else None

        while amount_remaining.is_positive():
            unpaid_charge = self.find_earliest_unpaid_charge(kind)
            if unpaid_charge is None:
                break

            paid_towards_charge = unpaid_charge.update_paid_amount_by(
                amount_remaining, installment_number, fee_amount
            )
            if paid_towards_charge.is_zero():
                break

            if not transaction.is_charge_payment:
                transaction.add_charge_paid(unpaid_charge, paid_towards_charge)
            amount_remaining = amount_remaining - paid_towards_charge

            log_action(
                self.logger, "debug", f"Charge {unpaid_charge.charge_id} paid {paid_towards_charge.to_string()}",
                action="pay_charge", resource=f"charge:{unpaid_charge.charge_id}",
                extra={
                    "transaction_id": transaction.id,
                    "kind": kind.value,
                    "outstanding": unpaid_charge.amount_outstanding.to_string()
                }
            )

        return amount_remaining
