"""
Charge Distribution Module

Places the expected fee and penalty amounts of a loan's charges on the
installments they fall due in. Run at the start of every full reprocessing
pass so waived or newly added charges are picked up.
"""

from datetime import date
from typing import Iterable, List

from .currency import Money, Currency
from .schedule import RepaymentInstallment
from .charges import LoanCharge


def installment_for_dated_charge(
    installments: List[RepaymentInstallment],
    charge: LoanCharge
) -> RepaymentInstallment:
    """
    Installment that collects a charge due on a specific date.

    Installment N collects charges due in ``(due date N-1, due date N]``.
    Charges due on or before the first due date, including any dated at or
    before disbursement, fall on the first installment; charges due after
    the last due date fall on the last installment.
    """
    if charge.due_date <= installments[0].due_date:
        return installments[0]
    for previous, installment in zip(installments, installments[1:]):
        if charge.is_due_for_collection_from_and_up_to_and_including(previous.due_date, installment.due_date):
            return installment
    return installments[-1]


class ChargeScheduleReprocessor:
    """
    Default charge reprocessing helper.

    Each installment collects its own installment-fee shares plus the dated
    charges that installment_for_dated_charge assigns to it. Charges due at
    disbursement are never placed on an installment.
    """

    def reprocess(
        self,
        currency: Currency,
        disbursement_date: date,
        installments: List[RepaymentInstallment],
        charges: Iterable[LoanCharge]
    ) -> None:
        charges = [charge for charge in charges if not charge.is_due_at_disbursement]
        self._check_installment_shares(installments, charges)

        dated_targets = {
            id(charge): installment_for_dated_charge(installments, charge)
            for charge in charges if not charge.is_installment_fee
        }

        for period in installments:
            fee_due = Money.zero(currency)
            fee_waived = Money.zero(currency)
            penalty_due = Money.zero(currency)
            penalty_waived = Money.zero(currency)

            for charge in charges:
                if charge.is_installment_fee:
                    share = charge.installment_charge(period.installment_number)
                    if share is None:
                        continue
                    due, waived = share.amount, share.amount_waived
                elif dated_targets[id(charge)] is period:
                    due, waived = charge.amount, charge.amount_waived
                else:
                    continue

                if charge.is_fee_charge:
                    fee_due = fee_due + due
                    fee_waived = fee_waived + waived
                else:
                    penalty_due = penalty_due + due
                    penalty_waived = penalty_waived + waived

            period.update_charge_portion(fee_due, fee_waived, penalty_due, penalty_waived)

    def _check_installment_shares(self, installments, charges) -> None:
        scheduled = {id(installment) for installment in installments}
        for charge in charges:
            for share in charge.installment_charges:
                if id(share.installment) not in scheduled:
                    raise ValueError(
                        f"Charge {charge.charge_id} has a share on installment "
                        f"{share.installment_number} which is not in the schedule"
                    )
