"""
Test suite for loan transactions

Tests transaction validation, component breakdown bookkeeping, copies
used for re-allocation, and the changed transaction record.
"""

import pytest
from decimal import Decimal
from datetime import date

from loan_allocation.currency import Money, Currency
from loan_allocation.charges import ChargeKind, ChargeTimeType, LoanCharge
from loan_allocation.transactions import (
    LoanTransaction, TransactionType, ComponentBreakdown, ChangedTransactionDetail,
    transaction_amounts_match
)


def usd(amount) -> Money:
    return Money(Decimal(str(amount)), Currency.USD)


class TestLoanTransaction:
    """Test LoanTransaction bookkeeping"""

    def setup_method(self):
        """Set up test fixtures"""
        self.transaction = LoanTransaction(
            transaction_type=TransactionType.REPAYMENT,
            transaction_date=date(2024, 2, 1),
            amount=usd(110),
            id="TXN-1",
            external_id="EXT-1"
        )

    def test_negative_amount_rejected(self):
        with pytest.raises(ValueError, match="cannot be negative"):
            LoanTransaction(TransactionType.REPAYMENT, date(2024, 2, 1), usd(-1))

    def test_portions_default_to_zero(self):
        assert self.transaction.breakdown() == ComponentBreakdown.zero(Currency.USD)
        assert self.transaction.overpayment_portion == usd(0)
        assert not self.transaction.is_new

    def test_kind_checks(self):
        assert self.transaction.is_repayment
        assert self.transaction.is_allocatable
        assert self.transaction.is_not_waiver

        waiver = LoanTransaction(TransactionType.WAIVE_INTEREST, date(2024, 2, 1), usd(5))
        assert waiver.is_waiver
        assert waiver.is_allocatable
        assert waiver.is_new

        write_off = LoanTransaction(TransactionType.WRITE_OFF, date(2024, 2, 1), usd(0))
        assert write_off.is_write_off
        assert not write_off.is_allocatable

    def test_update_components_accumulates(self):
        self.transaction.update_components(usd(50), usd(10), usd(0), usd(0))
        self.transaction.update_components(usd(50), usd(0), usd(0), usd(0))

        assert self.transaction.principal_portion == usd(100)
        assert self.transaction.interest_portion == usd(10)
        assert self.transaction.breakdown().total == usd(110)

    def test_update_components_and_total(self):
        """Test replacing the breakdown also resets the amount"""
        self.transaction.update_components_and_total(usd(100), usd(10), usd(3), usd(2))

        assert self.transaction.amount == usd(115)
        assert self.transaction.fee_charges_portion == usd(3)
        assert self.transaction.penalty_charges_portion == usd(2)

    def test_reset_derived_components(self):
        charge = LoanCharge("FEE", "Fee", ChargeKind.FEE, ChargeTimeType.SPECIFIED_DUE_DATE,
                            usd(5), due_date=date(2024, 1, 15))
        self.transaction.update_components(usd(100), usd(10), usd(0), usd(0))
        self.transaction.update_over_payments(usd(5))
        self.transaction.add_charge_paid(charge, usd(5))

        self.transaction.reset_derived_components()

        assert self.transaction.breakdown().total == usd(0)
        assert self.transaction.overpayment_portion == usd(0)
        assert self.transaction.charges_paid == []
        assert self.transaction.amount == usd(110)

    def test_charge_payment_keeps_links_on_reset(self):
        """Test the charges named by a charge payment survive a reset"""
        charge = LoanCharge("FEE", "Fee", ChargeKind.FEE, ChargeTimeType.SPECIFIED_DUE_DATE,
                            usd(5), due_date=date(2024, 1, 15))
        charge_payment = LoanTransaction(TransactionType.CHARGE_PAYMENT, date(2024, 1, 20), usd(5))
        charge_payment.add_charge_paid(charge, usd(5))

        charge_payment.reset_derived_components()

        assert len(charge_payment.charges_paid) == 1
        assert charge_payment.charges_paid[0].transaction is charge_payment

    def test_copy_is_unsaved(self):
        """Test a copy keeps the event but not the identity or breakdown"""
        self.transaction.update_components(usd(100), usd(10), usd(0), usd(0))

        shadow = self.transaction.copy_transaction_properties()

        assert shadow.is_new
        assert shadow.transaction_type == TransactionType.REPAYMENT
        assert shadow.transaction_date == date(2024, 2, 1)
        assert shadow.amount == usd(110)
        assert shadow.external_id == "EXT-1"
        assert shadow.breakdown() == ComponentBreakdown.zero(Currency.USD)

    def test_reverse_and_external_id(self):
        self.transaction.reverse()
        self.transaction.update_external_id(None)

        assert self.transaction.reversed
        assert self.transaction.external_id is None


class TestTransactionAmountsMatch:
    """Test breakdown comparison"""

    def make(self, principal, interest):
        transaction = LoanTransaction(TransactionType.REPAYMENT, date(2024, 2, 1), usd(100))
        transaction.update_components(usd(principal), usd(interest), usd(0), usd(0))
        return transaction

    def test_same_breakdown_matches(self):
        assert transaction_amounts_match(Currency.USD, self.make(80, 20), self.make(80, 20))

    def test_different_breakdown_does_not_match(self):
        assert not transaction_amounts_match(Currency.USD, self.make(80, 20), self.make(60, 40))

    def test_different_currency_rejected(self):
        with pytest.raises(ValueError, match="must both be in EUR"):
            transaction_amounts_match(Currency.EUR, self.make(80, 20), self.make(80, 20))


class TestChangedTransactionDetail:
    """Test the replacement mapping"""

    def test_mapping(self):
        detail = ChangedTransactionDetail()
        assert detail.is_empty

        replacement = LoanTransaction(TransactionType.REPAYMENT, date(2024, 2, 1), usd(100))
        detail.add_mapping("TXN-7", replacement)

        assert not detail.is_empty
        assert len(detail) == 1
        assert detail.new_transaction_mappings["TXN-7"] is replacement
