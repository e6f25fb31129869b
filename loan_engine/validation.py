"""Input-time validation of loans.

``validate_loan`` is meant for the edges of the system (CLI options, JSON
bodies) before a loan is stored or scheduled. Hard errors raise
``ValidationError``; configurations the engine tolerates but a borrower
should know about, such as bonification points above the cap, are logged
and returned as warnings.
"""

from __future__ import annotations

from decimal import Decimal
from typing import List, Optional

from .data_models import FixedRate, Loan, MixedRate, VariableRate
from .exceptions import ValidationError
from .logging import get_logger
from .utils import ZERO

logger = get_logger(__name__)


def _non_negative(value: Optional[Decimal], field: str) -> None:
    if value is not None and value < 0:
        raise ValidationError(f"{field} cannot be negative", field=field, bound="lower")


def _check_rate(loan: Loan) -> None:
    rate = loan.rate
    if isinstance(rate, FixedRate):
        _non_negative(rate.annual_nominal_rate, "rate.annual_nominal_rate")
    elif isinstance(rate, VariableRate):
        if rate.review_period_months <= 0:
            raise ValidationError(
                "rate.review_period_months must be positive",
                field="rate.review_period_months",
                bound="lower",
            )
    elif isinstance(rate, MixedRate):
        _non_negative(rate.fixed_tranche_rate, "rate.fixed_tranche_rate")
        if rate.fixed_tranche_months is not None and rate.fixed_tranche_months >= loan.total_term_months:
            raise ValidationError(
                "rate.fixed_tranche_months must be shorter than the term",
                field="rate.fixed_tranche_months",
                bound="upper",
            )
    else:
        raise ValidationError(f"Unsupported rate configuration: {type(rate).__name__}", field="rate")


def validate_loan(loan: Loan) -> List[str]:
    """Check a loan's inputs and return the warnings found.

    Raises
    ------
    ValidationError
        On the first input out of its bounds.
    """
    if not loan.id:
        raise ValidationError("id is required", field="id")
    if loan.principal_initial <= 0:
        raise ValidationError("principal_initial must be greater than 0", field="principal_initial", bound="lower")
    if loan.principal_outstanding < 0:
        raise ValidationError(
            "principal_outstanding cannot be negative", field="principal_outstanding", bound="lower"
        )
    if loan.total_term_months <= 0:
        raise ValidationError("total_term_months must be greater than 0", field="total_term_months", bound="lower")
    if not 0 <= loan.periods_elapsed <= loan.total_term_months:
        raise ValidationError(
            "periods_elapsed must be between 0 and total_term_months",
            field="periods_elapsed",
            bound="lower" if loan.periods_elapsed < 0 else "upper",
        )
    if loan.charge_day_of_month is not None and not 1 <= loan.charge_day_of_month <= 31:
        raise ValidationError(
            "charge_day_of_month must be between 1 and 31",
            field="charge_day_of_month",
            bound="lower" if loan.charge_day_of_month < 1 else "upper",
        )
    if loan.interest_only_months < 0 or loan.deferred_first_payment_months < 0:
        raise ValidationError("phase lengths cannot be negative", field="interest_only_months", bound="lower")
    if loan.deferred_first_payment_months + loan.interest_only_months >= loan.total_term_months:
        raise ValidationError(
            "deferred and interest-only months must leave at least one amortizing period",
            field="interest_only_months",
            bound="upper",
        )
    for name in ("partial_prepayment_fee_rate", "full_cancellation_fee_rate", "fixed_operation_cost"):
        _non_negative(getattr(loan, name), name)
    _non_negative(loan.max_bonification_rate, "max_bonification_rate")
    _check_rate(loan)

    seen = set()
    for bonification in loan.bonifications:
        if bonification.id in seen:
            raise ValidationError(f"Duplicate bonification id: {bonification.id}", field="bonifications")
        seen.add(bonification.id)
        _non_negative(bonification.rate_reduction_points, f"bonifications.{bonification.id}.rate_reduction_points")
        if bonification.lookback_months <= 0:
            raise ValidationError(
                "lookback_months must be positive",
                field=f"bonifications.{bonification.id}.lookback_months",
                bound="lower",
            )

    warnings: List[str] = []
    points = sum((b.rate_reduction_points for b in loan.bonifications if b.selected), ZERO)
    if loan.max_bonification_rate is not None and points > loan.max_bonification_rate:
        warnings.append(
            f"Selected bonifications add up to {points}, above the cap of "
            f"{loan.max_bonification_rate}; the discount will be clamped"
        )
    for warning in warnings:
        logger.warning("Loan %s: %s", loan.id, warning, extra={"loan_id": loan.id})
    return warnings
