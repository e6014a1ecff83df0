"""
Repayment Schedule Transaction Processor

Allocates post-disbursement loan transactions against the repayment
schedule. Supports re-processing the entire transaction history whenever a
past-dated or amended transaction invalidates earlier allocations; previously
recorded transactions whose breakdown changes are reversed and replaced.
"""

from datetime import date
from dataclasses import dataclass, field
from typing import Dict, Iterable, List, Optional

from .currency import Money, Currency
from .schedule import RepaymentInstallment
from .charges import ChargeKind, ChargeLedger, ChargePaidDetail, LoanCharge
from .distribution import ChargeScheduleReprocessor, installment_for_dated_charge
from .transactions import (
    LoanTransaction, ChangedTransactionDetail, transaction_amounts_match
)
from .strategies import (
    AllocationStrategy, StrategyType, CappedAt, ProcessingLimit, OverpaymentHook,
    UNCONSTRAINED
)
from .config import AllocationConfig, get_config
from .logging_config import get_logger, log_action, setup_logging


@dataclass
class ScheduleContext:
    """Mutable schedule state owned by one processing call"""
    disbursement_date: date
    currency: Currency
    installments: List[RepaymentInstallment]
    charges: List[LoanCharge] = field(default_factory=list)


class RepaymentScheduleTransactionProcessor:
    """
    Allocation engine for one loan's repayment schedule.

    A processor holds no state between calls; each call mutates only the
    installments, charges and transactions handed to it. Calls made with
    ``currency=None`` use the processor's ``default_currency``.
    """

    def __init__(
        self,
        strategy: Optional[AllocationStrategy] = None,
        charge_reprocessor: Optional[ChargeScheduleReprocessor] = None,
        log_allocation_steps: bool = False,
        default_currency: Currency = Currency.USD
    ):
        self.strategy = strategy or AllocationStrategy()
        self.charge_reprocessor = charge_reprocessor or ChargeScheduleReprocessor()
        self.log_allocation_steps = log_allocation_steps
        self.default_currency = default_currency
        self.logger = get_logger("loan_allocation.processor")

    def handle_transactions(
        self,
        disbursement_date: date,
        transactions_post_disbursement: List[LoanTransaction],
        currency: Optional[Currency],
        installments: List[RepaymentInstallment],
        charges: Optional[Iterable[LoanCharge]] = None
    ) -> ChangedTransactionDetail:
        """
        Re-process the entire loan schedule from disbursement.

        Required whenever the transaction being processed falls before
        existing transactions, or an existing transaction was adjusted.

        Args:
            disbursement_date: Date the loan was disbursed
            transactions_post_disbursement: All transactions, in date order
            currency: Loan currency, or None for the processor default
            installments: Schedule, ordered by due date
            charges: Charges of the loan, in any order

        Returns:
            Mapping of previously recorded transactions to their replacements
        """
        context = self._build_context(disbursement_date, currency, installments, charges)

        log_action(
            self.logger, "info", "Reprocessing loan schedule",
            action="reprocess_schedule", resource="schedule",
            extra={
                "strategy": self.strategy.code,
                "installments": len(context.installments),
                "transactions": len(transactions_post_disbursement),
                "charges": len(context.charges)
            }
        )

        self._reset_charges(context)
        self._reset_installments(context)

        # re-place charges on installments, picking up waived or added charges
        self.charge_reprocessor.reprocess(
            context.currency, context.disbursement_date, context.installments, context.charges
        )

        ledger = ChargeLedger(context.charges)
        changed_transaction_detail = ChangedTransactionDetail()
        transactions_to_be_processed = []

        for transaction in transactions_post_disbursement:
            if transaction.reversed:
                continue
            self._check_currency(transaction, context.currency)
            if transaction.is_charge_payment:
                self._handle_charge_payment(context, transaction)
            else:
                transactions_to_be_processed.append(transaction)

        for transaction in transactions_to_be_processed:
            if transaction.is_allocatable:
                if transaction.is_new:
                    transaction.reset_derived_components()
                    self._handle_transaction(transaction, context.installments, ledger, UNCONSTRAINED)
                else:
                    self._reprocess_recorded_transaction(
                        context, transaction, ledger, changed_transaction_detail
                    )
            elif transaction.is_write_off:
                transaction.reset_derived_components()
                self.handle_write_off(transaction, context.currency, context.installments)

        log_action(
            self.logger, "info", "Loan schedule reprocessed",
            action="reprocess_schedule", resource="schedule",
            extra={
                "replaced_transactions": len(changed_transaction_detail),
                "total_due": self._total_due(context).to_string(),
                "total_outstanding": self._total_outstanding(context).to_string()
            }
        )
        return changed_transaction_detail

    def handle_transaction(
        self,
        transaction: LoanTransaction,
        currency: Optional[Currency],
        installments: List[RepaymentInstallment],
        charges: Optional[Iterable[LoanCharge]] = None
    ) -> None:
        """Apply the latest transaction on top of the current schedule state"""
        currency = self._resolve_currency(currency)
        if not installments:
            raise ValueError("Repayment schedule must contain at least one installment")
        self._check_currency(transaction, currency)
        self._handle_transaction(transaction, installments, ChargeLedger(charges), UNCONSTRAINED)

    def handle_write_off(
        self,
        transaction: LoanTransaction,
        currency: Optional[Currency],
        installments: List[RepaymentInstallment]
    ) -> None:
        """Write off everything still outstanding as of the transaction date"""
        currency = self._resolve_currency(currency)
        transaction_date = transaction.transaction_date
        principal_portion = Money.zero(currency)
        interest_portion = Money.zero(currency)
        fee_charges_portion = Money.zero(currency)
        penalty_charges_portion = Money.zero(currency)

        for installment in installments:
            if installment.is_not_fully_paid_off:
                principal_portion = principal_portion + installment.write_off_outstanding_principal(transaction_date)
                interest_portion = interest_portion + installment.write_off_outstanding_interest(transaction_date)
                fee_charges_portion = fee_charges_portion + installment.write_off_outstanding_fee_charges(transaction_date)
                penalty_charges_portion = (penalty_charges_portion
                                           + installment.write_off_outstanding_penalty_charges(transaction_date))

        transaction.update_components_and_total(
            principal_portion, interest_portion, fee_charges_portion, penalty_charges_portion
        )

        log_action(
            self.logger, "info", f"Loan written off: {transaction.amount.to_string()}",
            action="write_off", resource=f"transaction:{transaction.id}",
            extra={"transaction_date": transaction_date.isoformat()}
        )

    def handle_recalculation(
        self,
        disbursement_date: date,
        transactions_post_disbursement: List[LoanTransaction],
        currency: Optional[Currency],
        installments: List[RepaymentInstallment],
        current_installment: RepaymentInstallment,
        recalculation_dates: Dict[date, date]
    ) -> Dict[date, Money]:
        """
        Replay transactions for interest recalculation.

        Resets installments (without redistributing charges), then tracks the
        amounts paid early against ``current_installment``; see
        handle_repayment_schedule.
        """
        context = self._build_context(disbursement_date, currency, installments, None)
        self._reset_installments(context)
        return self.handle_repayment_schedule(
            transactions_post_disbursement, context.currency, installments, current_installment, recalculation_dates
        )

    def handle_repayment_schedule(
        self,
        transactions_post_disbursement: List[LoanTransaction],
        currency: Optional[Currency],
        installments: List[RepaymentInstallment],
        installment: RepaymentInstallment,
        recalculation_dates: Dict[date, date]
    ) -> Dict[date, Money]:
        """
        Replay transactions and report early payments on one installment.

        For each transaction dated after the installment's period start whose
        recalculation date is before the installment's due date, the drop in
        the installment's total outstanding since the previous such
        transaction is an early payment. Any amount left unallocated is also
        tracked. Each transaction date maps to the larger of the two when it
        is positive.

        Transactions are replayed on copies; the caller's transactions are
        left untouched.
        """
        currency = self._resolve_currency(currency)
        unprocessed_map: Dict[date, Money] = {}
        current_installment_outstanding = installment.total_outstanding

        for transaction in transactions_post_disbursement:
            if transaction.reversed or not transaction.is_allocatable:
                continue
            self._check_currency(transaction, currency)

            replay = transaction.copy_transaction_properties()
            unprocessed = self._process_transaction(replay, installments, UNCONSTRAINED)
            transaction_date = replay.transaction_date
            tracked = Money.zero(currency)

            if transaction_date > installment.from_date:
                if transaction_date not in recalculation_dates:
                    raise ValueError(f"No recalculation date for transaction dated {transaction_date}")
                if recalculation_dates[transaction_date] < installment.due_date:
                    early_payment = current_installment_outstanding - installment.total_outstanding
                    if early_payment.is_positive():
                        tracked = early_payment
                    current_installment_outstanding = installment.total_outstanding

            if unprocessed > tracked:
                tracked = unprocessed

            if tracked.is_positive():
                previous = unprocessed_map.get(transaction_date)
                if previous is None or tracked > previous:
                    unprocessed_map[transaction_date] = tracked

        return unprocessed_map

    def _reprocess_recorded_transaction(
        self,
        context: ScheduleContext,
        transaction: LoanTransaction,
        ledger: ChargeLedger,
        changed_transaction_detail: ChangedTransactionDetail
    ) -> None:
        """Allocate a copy and replace the original only if its breakdown changed"""
        shadow = transaction.copy_transaction_properties()
        shadow.reset_derived_components()
        self._handle_transaction(shadow, context.installments, ledger, UNCONSTRAINED)

        if transaction_amounts_match(context.currency, transaction, shadow):
            return

        transaction.reverse()
        transaction.update_external_id(None)
        changed_transaction_detail.add_mapping(transaction.id, shadow)

        log_action(
            self.logger, "info", f"Transaction {transaction.id} reversed and replaced",
            action="replace_transaction", resource=f"transaction:{transaction.id}",
            extra={
                "original": self._breakdown_summary(transaction),
                "replacement": self._breakdown_summary(shadow)
            }
        )

    def _handle_charge_payment(self, context: ScheduleContext, transaction: LoanTransaction) -> None:
        """
        Pay the charges a charge-payment transaction names.

        Each charge is expanded into (amount, installment) pairs: one per
        unpaid share of an installment fee, and one for a dated charge on the
        installment whose window holds its due date. The transaction amount
        is applied pair by pair, each slice allocated to that installment
        alone.
        """
        transfer_charges: List[LoanCharge] = []
        for paid_by in transaction.charges_paid:
            if paid_by.charge not in transfer_charges:
                transfer_charges.append(paid_by.charge)

        charge_paid_details: List[ChargePaidDetail] = []
        for charge in transfer_charges:
            if charge.is_installment_fee:
                charge_paid_details.extend(charge.fetch_repayment_installment(context.currency))
        charge_paid_details.extend(self._dated_charge_details(context, transfer_charges))

        for detail in charge_paid_details:
            if not any(detail.installment is installment for installment in context.installments):
                raise ValueError(
                    f"Charge payment {transaction.id} refers to installment "
                    f"{detail.installment.installment_number} outside the schedule"
                )

        transaction.reset_derived_components()
        ledger = ChargeLedger(transfer_charges)
        unprocessed = transaction.amount

        for detail in charge_paid_details:
            if not unprocessed.is_positive():
                break
            slice_amount = min(unprocessed, detail.amount)
            if not slice_amount.is_positive():
                continue
            left_over = self._handle_transaction_and_charges(
                transaction, [detail.installment], ledger, CappedAt(slice_amount, detail.kind)
            )
            unprocessed = unprocessed - slice_amount + left_over

        if unprocessed.is_positive():
            self._record_overpayment(transaction, unprocessed)

    def _dated_charge_details(self, context: ScheduleContext, charges: List[LoanCharge]) -> List[ChargePaidDetail]:
        details = []
        for charge in charges:
            if charge.is_installment_fee or charge.is_due_at_disbursement:
                continue
            details.append(ChargePaidDetail(
                amount=charge.amount_outstanding,
                installment=installment_for_dated_charge(context.installments, charge),
                is_fee_charge=charge.is_fee_charge
            ))
        return details

    def _handle_transaction(
        self,
        transaction: LoanTransaction,
        installments: List[RepaymentInstallment],
        ledger: ChargeLedger,
        limit: ProcessingLimit
    ) -> None:
        """
        Allocate one transaction; any remainder is an overpayment.

        A waiver never overpays: its total is cut down to the components it
        actually waived and the remainder is dropped.
        """
        unprocessed = self._handle_transaction_and_charges(transaction, installments, ledger, limit)

        if unprocessed.is_positive():
            if transaction.is_not_waiver:
                self._record_overpayment(transaction, unprocessed)
            else:
                transaction.update_components_and_total(
                    transaction.principal_portion, transaction.interest_portion,
                    transaction.fee_charges_portion, transaction.penalty_charges_portion
                )

    def _handle_transaction_and_charges(
        self,
        transaction: LoanTransaction,
        installments: List[RepaymentInstallment],
        ledger: ChargeLedger,
        limit: ProcessingLimit
    ) -> Money:
        unprocessed = self._process_transaction(transaction, installments, limit)

        if transaction.is_waiver:
            return unprocessed

        installment_number = None
        if transaction.is_charge_payment and len(installments) == 1:
            installment_number = installments[0].installment_number

        if isinstance(limit, CappedAt):
            applied = limit.amount - unprocessed
            if applied.is_positive():
                ledger.update_charges_paid_amount_by(transaction, applied, limit.kind, installment_number)
        else:
            if transaction.fee_charges_portion.is_positive():
                ledger.update_charges_paid_amount_by(
                    transaction, transaction.fee_charges_portion, ChargeKind.FEE, installment_number
                )
            if transaction.penalty_charges_portion.is_positive():
                ledger.update_charges_paid_amount_by(
                    transaction, transaction.penalty_charges_portion, ChargeKind.PENALTY, installment_number
                )
        return unprocessed

    def _process_transaction(
        self,
        transaction: LoanTransaction,
        installments: List[RepaymentInstallment],
        limit: ProcessingLimit
    ) -> Money:
        """Walk the installments in order, returning what could not be applied"""
        transaction_date = transaction.transaction_date
        if isinstance(limit, CappedAt):
            unprocessed = limit.amount
        else:
            unprocessed = transaction.amount

        for index, installment in enumerate(installments):
            if not unprocessed.is_positive():
                break
            if installment.is_fully_paid_off:
                continue

            before = unprocessed
            # is this transaction early/late/on-time for the current installment?
            if self.strategy.is_transaction_in_advance_of_installment(index, installments, transaction_date, unprocessed):
                classification = "advance"
                unprocessed = self.strategy.handle_payment_in_advance(
                    installment, installments, transaction, transaction_date, unprocessed, limit
                )
            elif self.strategy.is_transaction_a_late_repayment_on_installment(index, installments, transaction_date):
                classification = "late"
                unprocessed = self.strategy.handle_late_repayment(
                    installment, installments, transaction, unprocessed, limit
                )
            else:
                classification = "on_time"
                unprocessed = self.strategy.handle_on_time_payment(
                    installment, transaction, unprocessed, limit
                )

            if self.log_allocation_steps:
                log_action(
                    self.logger, "debug",
                    f"Installment {installment.installment_number} took {(before - unprocessed).to_string()}",
                    action="allocate", resource=f"installment:{installment.installment_number}",
                    extra={
                        "transaction_id": transaction.id,
                        "transaction_type": transaction.transaction_type.value,
                        "classification": classification,
                        "outstanding": installment.total_outstanding.to_string()
                    }
                )

        return unprocessed

    def _record_overpayment(self, transaction: LoanTransaction, overpayment: Money) -> None:
        self.strategy.on_loan_overpayment(transaction, overpayment)
        transaction.update_over_payments(overpayment)

        log_action(
            self.logger, "info", f"Loan overpaid by {overpayment.to_string()}",
            action="overpayment", resource=f"transaction:{transaction.id}",
            extra={
                "transaction_date": transaction.transaction_date.isoformat(),
                "transaction_amount": transaction.amount.to_string()
            }
        )

    def _build_context(self, disbursement_date, currency, installments, charges) -> ScheduleContext:
        currency = self._resolve_currency(currency)
        if installments is None or len(installments) == 0:
            raise ValueError("Repayment schedule must contain at least one installment")
        for previous, installment in zip(installments, installments[1:]):
            if installment.due_date < previous.due_date:
                raise ValueError(
                    f"Installment {installment.installment_number} is due before "
                    f"installment {previous.installment_number}"
                )
        charges = list(charges or [])
        for charge in charges:
            if charge.currency != currency:
                raise ValueError(f"Charge {charge.charge_id} is not in {currency.code}")
        return ScheduleContext(
            disbursement_date=disbursement_date,
            currency=currency,
            installments=installments,
            charges=charges
        )

    def _reset_charges(self, context: ScheduleContext) -> None:
        for charge in context.charges:
            if not charge.is_due_at_disbursement:
                charge.reset_paid_amount(context.currency)

    def _reset_installments(self, context: ScheduleContext) -> None:
        for installment in context.installments:
            installment.reset_derived_components()
            installment.update_derived_fields(context.currency, context.disbursement_date)

    def _resolve_currency(self, currency: Optional[Currency]) -> Currency:
        return self.default_currency if currency is None else currency

    def _check_currency(self, transaction: LoanTransaction, currency: Currency) -> None:
        if transaction.currency != currency:
            raise ValueError(
                f"Transaction {transaction.id} is in {transaction.currency.code}, not {currency.code}"
            )

    def _total_due(self, context: ScheduleContext) -> Money:
        total = Money.zero(context.currency)
        for installment in context.installments:
            total = total + installment.total_due
        return total

    def _total_outstanding(self, context: ScheduleContext) -> Money:
        total = Money.zero(context.currency)
        for installment in context.installments:
            total = total + installment.total_outstanding
        return total

    def _breakdown_summary(self, transaction: LoanTransaction) -> Dict[str, str]:
        breakdown = transaction.breakdown()
        return {
            "principal": breakdown.principal.to_string(),
            "interest": breakdown.interest.to_string(),
            "fee_charges": breakdown.fee_charges.to_string(),
            "penalty_charges": breakdown.penalty_charges.to_string()
        }


def create_processor(
    config: Optional[AllocationConfig] = None,
    on_overpayment: Optional[OverpaymentHook] = None
) -> RepaymentScheduleTransactionProcessor:
    """
    Build a processor from configuration.

    Also configures the ``loan_allocation`` loggers with the configured
    level and format.

    Raises:
        ValueError: If the configured strategy or currency code is unknown
    """
    config = config or get_config()
    default_currency = Currency.from_code(config.default_currency)
    strategy = AllocationStrategy(
        StrategyType.from_code(config.default_strategy),
        on_overpayment=on_overpayment
    )
    setup_logging(config.log_level, log_format=config.log_format)
    return RepaymentScheduleTransactionProcessor(
        strategy=strategy,
        log_allocation_steps=config.log_allocation_steps,
        default_currency=default_currency
    )
