"""
Test suite for configuration and logging

Tests environment-driven settings, processor construction from settings,
and structured log output.
"""

import json
import logging
import pytest
from decimal import Decimal
from datetime import date

from loan_allocation import config as config_module
from loan_allocation.config import AllocationConfig, get_config, reload_config
from loan_allocation.logging_config import JSONFormatter, setup_logging, get_logger, log_action
from loan_allocation.processor import create_processor
from loan_allocation.currency import Money, Currency
from loan_allocation.schedule import RepaymentInstallment
from loan_allocation.transactions import LoanTransaction, TransactionType
from loan_allocation.strategies import StrategyType


def eur(amount) -> Money:
    return Money(Decimal(str(amount)), Currency.EUR)


class TestAllocationConfig:
    """Test AllocationConfig settings"""

    def test_defaults(self, monkeypatch):
        """Test settings without any environment overrides"""
        for name in ("DEFAULT_STRATEGY", "DEFAULT_CURRENCY", "LOG_LEVEL", "LOG_FORMAT", "LOG_ALLOCATION_STEPS"):
            monkeypatch.delenv(f"LOAN_ALLOCATION_{name}", raising=False)

        settings = AllocationConfig(_env_file=None)

        assert settings.default_strategy == "penalties_fees_interest_principal"
        assert settings.default_currency == "USD"
        assert settings.log_level == "INFO"
        assert settings.log_format == "json"
        assert settings.log_allocation_steps is False

    def test_environment_override(self, monkeypatch):
        monkeypatch.setenv("LOAN_ALLOCATION_DEFAULT_STRATEGY", "interest_principal_penalties_fees")
        monkeypatch.setenv("LOAN_ALLOCATION_LOG_ALLOCATION_STEPS", "true")

        settings = AllocationConfig(_env_file=None)

        assert settings.default_strategy == "interest_principal_penalties_fees"
        assert settings.log_allocation_steps is True

    def test_reload_config(self, monkeypatch):
        """Test reload picks up environment changes"""
        monkeypatch.setenv("LOAN_ALLOCATION_DEFAULT_CURRENCY", "EUR")
        try:
            reloaded = reload_config()
            assert reloaded.default_currency == "EUR"
            assert get_config() is reloaded
        finally:
            monkeypatch.delenv("LOAN_ALLOCATION_DEFAULT_CURRENCY")
            reload_config()

        assert config_module.config.default_currency == "USD"


class TestCreateProcessor:
    """Test building processors from settings"""

    def teardown_method(self):
        logger = logging.getLogger("loan_allocation")
        for handler in logger.handlers[:]:
            logger.removeHandler(handler)
        logger.setLevel(logging.NOTSET)
        logger.propagate = True

    def test_configured_strategy(self):
        settings = AllocationConfig(
            _env_file=None, default_strategy="overdue_penalties_first", log_allocation_steps=True
        )

        processor = create_processor(settings)

        assert processor.strategy.strategy_type == StrategyType.OVERDUE_PENALTIES_FIRST
        assert processor.log_allocation_steps is True

    def test_strategy_code_case_insensitive(self):
        settings = AllocationConfig(_env_file=None, default_strategy="Early_Payment_Principal_First")

        processor = create_processor(settings)

        assert processor.strategy.strategy_type == StrategyType.EARLY_PAYMENT_PRINCIPAL_FIRST

    def test_unknown_strategy(self):
        """Test an unknown strategy code fails at construction"""
        settings = AllocationConfig(_env_file=None, default_strategy="newest_first")

        with pytest.raises(ValueError, match="Unknown allocation strategy"):
            create_processor(settings)

    def test_overpayment_hook_wired(self):
        calls = []
        processor = create_processor(
            AllocationConfig(_env_file=None), on_overpayment=lambda txn, amount: calls.append(amount)
        )

        processor.strategy.on_loan_overpayment(None, "excess")

        assert calls == ["excess"]

    def test_configured_default_currency(self):
        """Test calls without a currency use the configured one"""
        processor = create_processor(AllocationConfig(_env_file=None, default_currency="eur"))
        installments = [
            RepaymentInstallment(1, date(2024, 1, 1), date(2024, 2, 1), eur(100), eur(10))
        ]
        payment = LoanTransaction(TransactionType.REPAYMENT, date(2024, 2, 1), eur(110))

        processor.handle_transactions(date(2024, 1, 1), [payment], None, installments)

        assert processor.default_currency == Currency.EUR
        assert payment.principal_portion == eur(100)
        assert installments[0].is_fully_paid_off

    def test_unknown_currency(self):
        with pytest.raises(ValueError, match="Unsupported currency code"):
            create_processor(AllocationConfig(_env_file=None, default_currency="XYZ"))

    def test_logging_configured(self):
        """Test the configured log level and format are applied"""
        create_processor(AllocationConfig(_env_file=None, log_level="DEBUG", log_format="text"))

        logger = logging.getLogger("loan_allocation")
        assert logger.level == logging.DEBUG
        assert len(logger.handlers) == 1
        assert not isinstance(logger.handlers[0].formatter, JSONFormatter)

    def test_json_logging_by_default(self):
        create_processor(AllocationConfig(_env_file=None))

        logger = logging.getLogger("loan_allocation")
        assert logger.level == logging.INFO
        assert isinstance(logger.handlers[0].formatter, JSONFormatter)


class TestStructuredLogging:
    """Test JSON log output"""

    def setup_method(self):
        """Set up test fixtures"""
        self.logger_name = "loan_allocation_test"

    def teardown_method(self):
        logger = logging.getLogger(self.logger_name)
        for handler in logger.handlers[:]:
            logger.removeHandler(handler)

    def test_json_formatter_drops_empty_fields(self):
        record = logging.LogRecord("loan_allocation", logging.INFO, __name__, 0, "Pass done", (), None)
        record.action = "reprocess_schedule"

        entry = json.loads(JSONFormatter().format(record))

        assert entry["message"] == "Pass done"
        assert entry["action"] == "reprocess_schedule"
        assert entry["level"] == "INFO"
        assert "resource" not in entry
        assert "extra" not in entry

    def test_log_action_writes_json(self, capsys):
        logger = setup_logging("DEBUG", self.logger_name)

        log_action(
            logger, "info", "Loan overpaid by 30.00 USD",
            action="overpayment", resource="transaction:7",
            extra={"transaction_amount": "250.00 USD"}
        )

        entry = json.loads(capsys.readouterr().err.strip())
        assert entry["logger"] == self.logger_name
        assert entry["action"] == "overpayment"
        assert entry["resource"] == "transaction:7"
        assert entry["extra"] == {"transaction_amount": "250.00 USD"}

    def test_log_action_respects_level(self, capsys):
        logger = setup_logging("WARNING", self.logger_name)

        log_action(logger, "debug", "Installment 1 took 10.00 USD", action="allocate")

        assert capsys.readouterr().err == ""

    def test_text_format(self, capsys):
        logger = setup_logging("INFO", self.logger_name, log_format="text")

        logger.info("Reprocessing loan schedule")

        output = capsys.readouterr().err
        assert "INFO" in output
        assert "Reprocessing loan schedule" in output
        assert not output.startswith("{")

    def test_get_logger(self):
        assert get_logger("loan_allocation.processor").name == "loan_allocation.processor"
