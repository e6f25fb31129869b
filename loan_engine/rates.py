"""Rate resolver.

Given a loan and a 0-based period index, these functions compute the nominal
annual rate applicable to that period: the base rate dictated by the rate
configuration (fixed, variable or mixed) minus the discount of the
bonifications active when the period starts accruing.

The resolver never fetches index values. For variable rates the caller keeps
``current_index_value`` up to date after each review; between reviews the
rate is constant.
"""

from __future__ import annotations

from datetime import date
from decimal import Decimal
from typing import List, Optional

from .data_models import (
    Bonification,
    BonificationStatus,
    FixedRate,
    Loan,
    MixedRate,
    VariableRate,
)
from .exceptions import ConfigurationError
from .logging import get_logger
from .periods import accrual_window
from .utils import ZERO, add_months

logger = get_logger(__name__)


def _variable_base(rate: Optional[VariableRate], loan_id: str) -> Decimal:
    if rate is None:
        raise ConfigurationError(f"Loan {loan_id}: variable rate parameters are missing")
    if rate.current_index_value is None:
        raise ConfigurationError(f"Loan {loan_id}: variable rate requires current_index_value")
    if rate.spread is None:
        raise ConfigurationError(f"Loan {loan_id}: variable rate requires spread")
    return rate.current_index_value + rate.spread


def _check_tranche(rate: MixedRate, loan_id: str) -> int:
    if rate.fixed_tranche_months is None or rate.fixed_tranche_months <= 0:
        raise ConfigurationError(f"Loan {loan_id}: mixed rate requires a positive fixed_tranche_months")
    return rate.fixed_tranche_months


def resolve_base_rate(loan: Loan, period_index: int) -> Decimal:
    """Return the rate for ``period_index`` before any bonification discount.

    Raises
    ------
    ConfigurationError
        If the fields required by the loan's rate type are missing.
    """
    rate = loan.rate
    if isinstance(rate, FixedRate):
        if rate.annual_nominal_rate is None:
            raise ConfigurationError(f"Loan {loan.id}: fixed rate requires annual_nominal_rate")
        return rate.annual_nominal_rate
    if isinstance(rate, VariableRate):
        return _variable_base(rate, loan.id)
    if isinstance(rate, MixedRate):
        tranche = _check_tranche(rate, loan.id)
        if period_index < tranche:
            if rate.fixed_tranche_rate is None:
                raise ConfigurationError(f"Loan {loan.id}: mixed rate requires fixed_tranche_rate")
            return rate.fixed_tranche_rate
        return _variable_base(rate.variable, loan.id)
    raise ConfigurationError(f"Loan {loan.id}: unsupported rate configuration {type(rate).__name__}")


def bonification_counts(loan: Loan, bonification: Bonification, on_date: date) -> bool:
    """Whether ``bonification`` discounts a period starting on ``on_date``."""
    if loan.max_bonification_end_date is not None and on_date <= loan.max_bonification_end_date:
        return True
    if bonification.grace_months and on_date < add_months(loan.signing_date, bonification.grace_months):
        return True
    if bonification.status == BonificationStatus.MET:
        return True
    # a loss only applies from the first period accruing after it
    if bonification.status == BonificationStatus.LOST and bonification.lost_since is not None:
        return on_date < bonification.lost_since
    return False


def active_bonifications(loan: Loan, on_date: date) -> List[Bonification]:
    return [b for b in loan.bonifications if bonification_counts(loan, b, on_date)]


def cap_discount(loan: Loan, points: Decimal) -> Decimal:
    cap = loan.max_bonification_rate
    if cap is not None and points > cap:
        logger.debug("Loan %s: bonification points %s clamped to cap %s", loan.id, points, cap)
        return cap
    return points


def effective_discount(loan: Loan, on_date: date) -> Decimal:
    """Combined discount active on ``on_date``, clamped to the loan's cap."""
    points = sum((b.rate_reduction_points for b in active_bonifications(loan, on_date)), ZERO)
    return cap_discount(loan, points)


def apply_discount(base_rate: Decimal, discount: Decimal) -> Decimal:
    """Subtract ``discount`` from ``base_rate``; the result is never negative."""
    return max(ZERO, base_rate - discount)


def period_start(loan: Loan, period_index: int) -> date:
    return accrual_window(loan, period_index)[0]


def resolve_rate(loan: Loan, period_index: int) -> Decimal:
    """Return the nominal annual rate applicable to ``period_index``."""
    base = resolve_base_rate(loan, period_index)
    return apply_discount(base, effective_discount(loan, period_start(loan, period_index)))


def _review_period(rate: VariableRate, loan_id: str) -> int:
    if rate.review_period_months <= 0:
        raise ConfigurationError(f"Loan {loan_id}: review_period_months must be positive")
    return rate.review_period_months


def is_review_boundary(loan: Loan, period_index: int) -> bool:
    """Whether ``period_index`` opens a new rate-review interval.

    Variable loans review every ``review_period_months`` periods; mixed loans
    switch at the end of the fixed tranche and review from there on.
    """
    rate = loan.rate
    if isinstance(rate, VariableRate):
        review = _review_period(rate, loan.id)
        return period_index > 0 and period_index % review == 0
    if isinstance(rate, MixedRate):
        tranche = _check_tranche(rate, loan.id)
        if period_index < tranche:
            return False
        if period_index == tranche:
            return True
        if rate.variable is None:
            raise ConfigurationError(f"Loan {loan.id}: variable rate parameters are missing")
        return (period_index - tranche) % _review_period(rate.variable, loan.id) == 0
    return False


def next_review_date(loan: Loan, as_of: date) -> Optional[date]:
    """Date of the next rate review on or after ``as_of``, if the rate reviews."""
    rate = loan.rate
    variable = rate.variable if isinstance(rate, MixedRate) else rate
    if not isinstance(variable, VariableRate):
        return None
    if variable.next_review_date is not None and variable.next_review_date >= as_of:
        return variable.next_review_date
    for index in range(loan.total_term_months):
        if is_review_boundary(loan, index):
            start = period_start(loan, index)
            if start >= as_of:
                return start
    return None
