"""Tests for config and logging."""

import json
import logging
import sys
from decimal import Decimal

from loan_engine.config import EngineConfig
from loan_engine.logging import JsonFormatter, get_logger, setup_logging


class TestEngineConfig:
    """Tests for EngineConfig."""

    def test_default_values(self) -> None:
        """Test default configuration values."""
        config = EngineConfig()

        assert config.log_level == "INFO"
        assert config.log_format == "standard"
        assert config.alert_days == (45, 21, 7, 2)
        assert config.default_bonification_cap == Decimal("0.01")
        assert config.fixed_rate_floor == Decimal("0.01")
        assert config.spread_floor == Decimal("0.004")
        assert config.max_rows == 120

    def test_from_env_default(self, monkeypatch) -> None:
        """Test creating config from an environment without overrides."""
        for name in (
            "LOAN_ENGINE_LOG_LEVEL",
            "LOAN_ENGINE_LOG_FORMAT",
            "LOAN_ENGINE_DATABASE_URL",
            "LOAN_ENGINE_ALERT_DAYS",
            "LOAN_ENGINE_BONIFICATION_CAP",
            "LOAN_ENGINE_FIXED_RATE_FLOOR",
            "LOAN_ENGINE_SPREAD_FLOOR",
            "LOAN_ENGINE_MAX_ROWS",
        ):
            monkeypatch.delenv(name, raising=False)

        config = EngineConfig.from_env()

        assert config == EngineConfig()

    def test_from_env_custom(self, monkeypatch) -> None:
        """Test creating config from custom environment variables."""
        monkeypatch.setenv("LOAN_ENGINE_LOG_LEVEL", "DEBUG")
        monkeypatch.setenv("LOAN_ENGINE_LOG_FORMAT", "json")
        monkeypatch.setenv("LOAN_ENGINE_DATABASE_URL", "sqlite:///:memory:")
        monkeypatch.setenv("LOAN_ENGINE_ALERT_DAYS", "7, 30,7,1")
        monkeypatch.setenv("LOAN_ENGINE_BONIFICATION_CAP", "0.015")
        monkeypatch.setenv("LOAN_ENGINE_SPREAD_FLOOR", "0.002")
        monkeypatch.setenv("LOAN_ENGINE_MAX_ROWS", "24")

        config = EngineConfig.from_env()

        assert config.log_level == "DEBUG"
        assert config.log_format == "json"
        assert config.database_url == "sqlite:///:memory:"
        assert config.alert_days == (30, 7, 1)
        assert config.default_bonification_cap == Decimal("0.015")
        assert config.spread_floor == Decimal("0.002")
        assert config.max_rows == 24


class TestSetupLogging:
    """Tests for setup_logging."""

    def test_levels(self, restore_root_logger) -> None:
        """Test that the root and package loggers follow the requested level."""
        setup_logging(level="DEBUG")

        assert restore_root_logger.level == logging.DEBUG
        assert logging.getLogger("loan_engine").level == logging.DEBUG
        assert logging.getLogger("loan_engine_web").level == logging.DEBUG
        assert logging.getLogger("sqlalchemy").level == logging.WARNING

    def test_invalid_level_defaults_to_info(self, restore_root_logger) -> None:
        """Test logging with an invalid level defaults to INFO."""
        setup_logging(level="LOUD")

        assert restore_root_logger.level == logging.INFO

    def test_replaces_handlers(self, restore_root_logger) -> None:
        """Test that setup_logging leaves exactly one handler."""
        restore_root_logger.addHandler(logging.StreamHandler())
        restore_root_logger.addHandler(logging.StreamHandler())

        setup_logging()

        assert len(restore_root_logger.handlers) == 1

    def test_json_format(self, restore_root_logger) -> None:
        """Test JSON format logging."""
        setup_logging(format_type="json")

        assert isinstance(restore_root_logger.handlers[0].formatter, JsonFormatter)


class TestJsonFormatter:
    """Tests for JsonFormatter."""

    def test_format(self) -> None:
        """Test that records become one JSON object per line."""
        record = logging.LogRecord(
            name="loan_engine.prepayment",
            level=logging.INFO,
            pathname=__file__,
            lineno=1,
            msg="Loan %s: applied prepayment",
            args=("loan-1",),
            exc_info=None,
        )

        data = json.loads(JsonFormatter().format(record))

        assert data["level"] == "INFO"
        assert data["logger"] == "loan_engine.prepayment"
        assert data["message"] == "Loan loan-1: applied prepayment"
        assert "timestamp" in data
        assert "loan_id" not in data

    def test_format_with_exception(self) -> None:
        """Test that exception info is included."""
        try:
            raise ValueError("boom")
        except ValueError:
            record = logging.LogRecord(
                name="loan_engine",
                level=logging.ERROR,
                pathname=__file__,
                lineno=1,
                msg="failed",
                args=(),
                exc_info=sys.exc_info(),
            )

        data = json.loads(JsonFormatter().format(record))

        assert "ValueError: boom" in data["exception"]

    def test_loan_context(self) -> None:
        """Test that loan context passed through extra becomes top-level fields."""
        record = logging.LogRecord(
            name="loan_engine.prepayment",
            level=logging.INFO,
            pathname=__file__,
            lineno=1,
            msg="applied prepayment",
            args=(),
            exc_info=None,
        )
        record.loan_id = "loan-1"

        data = json.loads(JsonFormatter().format(record))

        assert data["loan_id"] == "loan-1"


class TestGetLogger:
    """Tests for get_logger."""

    def test_returns_named_logger(self) -> None:
        """Test that loggers are shared by name."""
        assert get_logger("loan_engine.rates") is logging.getLogger("loan_engine.rates")
