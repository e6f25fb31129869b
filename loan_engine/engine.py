"""Core calculation engine: the schedule builder.

This module turns a loan snapshot into a ``PaymentPlan`` using the French
(constant annuity) amortization system. The period loop is a small state
machine over the period index with three phases:

``DEFERRED`` -> ``INTEREST_ONLY`` -> ``AMORTIZING``

Deferred periods charge nothing and capitalize (or waive) their interest,
interest-only periods charge the accrued interest, and amortizing periods
charge a constant installment that is recomputed over the remaining term
whenever the phase starts, the applicable rate changes or a rate review
boundary is crossed. Every money figure is rounded to cents half-up where it
is computed so the schedule matches a bank's printed one to the cent.
"""

from __future__ import annotations

from decimal import Decimal
from typing import Any, Dict, List, NamedTuple, Optional

from .data_models import DeferredInterest, Loan, PaymentPeriod, PaymentPlan, Phase
from .exceptions import ArithmeticDegenerateError, ConfigurationError
from .logging import get_logger
from .periods import accrual_window, charge_date
from .rates import is_review_boundary, resolve_rate
from .utils import ZERO, days_inclusive, round_money

logger = get_logger(__name__)

DAYS_PER_YEAR = Decimal(365)
MONTHS_PER_YEAR = Decimal(12)


class AmortizationRow(NamedTuple):
    installment: Decimal
    interest: Decimal
    principal: Decimal
    balance: Decimal


def french_payment(principal: Decimal, annual_rate: Decimal, periods: int) -> Decimal:
    """Return the constant installment that repays ``principal`` in ``periods``.

    The formula is:

        payment = P * r / (1 - (1 + r)^-n)

    where ``r`` is the monthly rate (``annual_rate / 12``). When the rate is
    zero the payment simplifies to ``P / n``. The result is rounded to cents.
    """
    if periods <= 0:
        raise ArithmeticDegenerateError("An annuity over zero periods is undefined")
    if principal <= 0:
        return ZERO
    monthly_rate = annual_rate / MONTHS_PER_YEAR
    if monthly_rate == 0:
        return round_money(principal / Decimal(periods))
    factor = (1 + monthly_rate) ** periods
    return round_money(principal * monthly_rate * factor / (factor - 1))


def accrued_interest(balance: Decimal, annual_rate: Decimal, days: int, prorated: bool) -> Decimal:
    """Interest for one period: monthly convention, or actual/365 when prorated."""
    if prorated:
        return round_money(balance * annual_rate / DAYS_PER_YEAR * Decimal(days))
    return round_money(balance * annual_rate / MONTHS_PER_YEAR)


def amortize(
    principal: Decimal,
    annual_rate: Decimal,
    periods: int,
    installment: Optional[Decimal] = None,
) -> List[AmortizationRow]:
    """Run standard amortizing periods at a constant rate.

    This is the amortizing step of ``build_schedule`` without the calendar.
    When ``installment`` is not given the French annuity for ``periods`` is
    used. The last period (or the first one whose installment covers the
    balance) settles the remaining principal.
    """
    rows: List[AmortizationRow] = []
    if periods <= 0 or principal <= 0:
        return rows
    if installment is None:
        installment = french_payment(principal, annual_rate, periods)
    balance = principal
    for number in range(1, periods + 1):
        interest = accrued_interest(balance, annual_rate, 0, prorated=False)
        if number == periods or installment - interest >= balance:
            principal_part = balance
        else:
            principal_part = installment - interest
            if principal_part <= 0:
                raise ArithmeticDegenerateError(
                    f"Installment {installment} does not cover interest {interest}"
                )
        balance -= principal_part
        rows.append(AmortizationRow(principal_part + interest, interest, principal_part, balance))
        if balance == 0:
            break
    return rows


def phase_for(loan: Loan, index: int) -> Phase:
    """Phase of the 0-based period ``index``."""
    if index < loan.deferred_first_payment_months:
        return Phase.DEFERRED
    if index < loan.deferred_first_payment_months + loan.interest_only_months:
        return Phase.INTEREST_ONLY
    return Phase.AMORTIZING


def needs_reannuity(
    installment: Optional[Decimal],
    previous_phase: Optional[Phase],
    previous_rate: Optional[Decimal],
    rate: Decimal,
    review_boundary: bool,
) -> bool:
    """Whether the annuity must be recomputed before an amortizing period."""
    return (
        installment is None
        or previous_phase != Phase.AMORTIZING
        or previous_rate != rate
        or review_boundary
    )


def check_terms(loan: Loan) -> None:
    """Raise ``ConfigurationError`` if the loan's term and phases cannot be scheduled."""
    if loan.total_term_months <= 0:
        raise ConfigurationError(f"Loan {loan.id}: total_term_months must be positive")
    if loan.interest_only_months < 0 or loan.deferred_first_payment_months < 0:
        raise ConfigurationError(f"Loan {loan.id}: phase lengths cannot be negative")
    if loan.deferred_first_payment_months + loan.interest_only_months >= loan.total_term_months:
        raise ConfigurationError(
            f"Loan {loan.id}: deferred and interest-only months leave no amortizing period"
        )
    if not 0 <= loan.periods_elapsed <= loan.total_term_months:
        raise ConfigurationError(f"Loan {loan.id}: periods_elapsed is outside the term")
    if not 1 <= loan.charge_day <= 31:
        raise ConfigurationError(f"Loan {loan.id}: charge_day_of_month must be between 1 and 31")


def build_schedule(loan: Loan) -> PaymentPlan:
    """Compute the payment plan of ``loan`` from its current state forward.

    Periods already settled (``loan.periods_elapsed``) are not repeated; the
    plan starts from ``loan.principal_outstanding``. The result depends only
    on the loan, so building twice yields identical plans.

    Raises
    ------
    ConfigurationError
        If the rate configuration or the phase lengths are inconsistent.
    """
    check_terms(loan)
    if loan.principal_outstanding <= 0:
        return PaymentPlan(
            loan_id=loan.id,
            periods=(),
            total_interest=ZERO,
            total_paid=ZERO,
            capitalized_interest=ZERO,
            final_payoff_date=None,
        )

    periods: List[PaymentPeriod] = []
    balance = loan.principal_outstanding
    installment: Optional[Decimal] = None
    previous_rate: Optional[Decimal] = None
    previous_phase: Optional[Phase] = None
    total_interest = ZERO
    total_paid = ZERO
    capitalized = ZERO

    for index in range(loan.periods_elapsed, loan.total_term_months):
        phase = phase_for(loan, index)
        rate = resolve_rate(loan, index)
        start, end = accrual_window(loan, index)
        days = days_inclusive(start, end)
        prorated = index == 0 and loan.prorate_first_period
        interest = accrued_interest(balance, rate, days, prorated)

        if phase == Phase.DEFERRED:
            if loan.deferred_interest == DeferredInterest.CAPITALIZE:
                balance += interest
                capitalized += interest
            else:
                interest = ZERO
            payment = ZERO
            principal_part = ZERO
        elif phase == Phase.INTEREST_ONLY:
            payment = interest
            principal_part = ZERO
        else:
            remaining = loan.total_term_months - index
            if needs_reannuity(installment, previous_phase, previous_rate, rate, is_review_boundary(loan, index)):
                installment = french_payment(balance, rate, remaining)
                logger.debug(
                    "Loan %s: annuity %s over %d periods at %s from period %d",
                    loan.id,
                    installment,
                    remaining,
                    rate,
                    index + 1,
                )
            if remaining == 1 or installment - interest >= balance:
                # Last payment: settle whatever principal is left
                principal_part = balance
            else:
                principal_part = max(ZERO, installment - interest)
            payment = principal_part + interest
            balance -= principal_part

        charged = charge_date(loan, index)
        periods.append(
            PaymentPeriod(
                number=index + 1,
                label=charged.strftime("%Y-%m"),
                accrual_start=start,
                accrual_end=end,
                accrual_days=days,
                charge_date=charged,
                annual_rate=rate,
                installment=payment,
                interest=interest,
                principal=principal_part,
                outstanding=balance,
                is_prorated=prorated,
                is_interest_only=phase == Phase.INTEREST_ONLY,
                is_deferred=phase == Phase.DEFERRED,
            )
        )
        total_interest += interest
        total_paid += payment
        previous_rate = rate
        previous_phase = phase

        if phase == Phase.AMORTIZING and balance == 0:
            break

    plan = PaymentPlan(
        loan_id=loan.id,
        periods=tuple(periods),
        total_interest=total_interest,
        total_paid=total_paid,
        capitalized_interest=capitalized,
        final_payoff_date=periods[-1].charge_date if periods else None,
    )
    logger.debug(
        "Built schedule for loan %s: %d periods, total interest %s",
        loan.id,
        len(periods),
        total_interest,
    )
    return plan


def plan_summary(loan: Loan, plan: PaymentPlan) -> Dict[str, Any]:
    """Headline figures of a plan, in the shape printed and exported by the CLI."""
    amortizing = [p for p in plan.periods if not p.is_deferred and not p.is_interest_only]
    return {
        "loan_id": loan.id,
        "principal_outstanding": loan.principal_outstanding,
        "current_rate": plan.periods[0].annual_rate if plan.periods else None,
        "installment": amortizing[0].installment if amortizing else ZERO,
        "max_installment": max((p.installment for p in plan.periods), default=ZERO),
        "total_interest": plan.total_interest,
        "total_paid": plan.total_paid,
        "capitalized_interest": plan.capitalized_interest,
        "payments": len(plan.periods),
        "first_charge_date": plan.periods[0].charge_date if plan.periods else None,
        "final_payoff_date": plan.final_payoff_date,
    }
