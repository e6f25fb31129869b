"""Pytest configuration and fixtures."""

import dataclasses
import logging
from datetime import date
from decimal import Decimal
from typing import Any, Callable, Iterator

import pytest

from loan_engine.data_models import (
    Bonification,
    BonificationStatus,
    FixedRate,
    HomeInsuranceRule,
    Loan,
    PayrollRule,
)

LoanFactory = Callable[..., Loan]


@pytest.fixture
def signing_date() -> date:
    """Signing date of the reference mortgage."""
    return date(2025, 1, 15)


@pytest.fixture
def base_loan(signing_date: date) -> Loan:
    """180 000 at 3 % fixed over 360 months with a 1 % prepayment fee."""
    return Loan(
        id="loan-test-001",
        name="Reference mortgage",
        principal_initial=Decimal("180000"),
        principal_outstanding=Decimal("180000"),
        signing_date=signing_date,
        total_term_months=360,
        rate=FixedRate(annual_nominal_rate=Decimal("0.03")),
        property_id="prop-test-001",
        partial_prepayment_fee_rate=Decimal("0.01"),
    )


@pytest.fixture
def make_loan(base_loan: Loan) -> LoanFactory:
    """Build a variant of the reference loan with some fields replaced."""

    def _make(**overrides: Any) -> Loan:
        return dataclasses.replace(base_loan, **overrides)

    return _make


@pytest.fixture
def payroll_bonification() -> Bonification:
    """Payroll of at least 1 200 a month over 6 months, worth 0.30 pp."""
    return Bonification(
        id="payroll",
        name="Payroll",
        rate_reduction_points=Decimal("0.003"),
        rule=PayrollRule(min_monthly_amount=Decimal("1200")),
        lookback_months=6,
    )


@pytest.fixture
def home_insurance_bonification() -> Bonification:
    """Home insurance kept with the lender, worth 0.20 pp, already met."""
    return Bonification(
        id="home_insurance",
        name="Home insurance",
        rate_reduction_points=Decimal("0.002"),
        rule=HomeInsuranceRule(),
        status=BonificationStatus.MET,
    )


@pytest.fixture
def restore_root_logger() -> Iterator[logging.Logger]:
    """Put the root logger back the way the test found it.

    ``setup_logging`` replaces the root handlers, so tests that call it (directly
    or through the CLI) would otherwise leak a handler into later tests.
    """
    root = logging.getLogger()
    handlers, level = root.handlers[:], root.level
    yield root
    root.handlers[:] = handlers
    root.setLevel(level)
