"""Prepayment simulator.

A partial prepayment lowers the outstanding principal and either keeps the
installment and shortens the term (``REDUCE_TERM``) or keeps the term and
lowers the installment (``REDUCE_PAYMENT``). ``simulate`` answers the what-if
question (fee, new term or installment, interest saved, break-even) without
touching the loan; ``apply_prepayment`` returns the new loan snapshot, from
which the caller regenerates the plan.

Deferred and interest-only periods still ahead are taken from the schedule
builder as they stand; the rest of the term is projected as standard
amortizing periods at the rate in force when amortization starts, using the
schedule builder's amortizing step. The committed plan therefore pays off on
the date the simulation reports.
"""

from __future__ import annotations

import dataclasses
from datetime import date
from decimal import ROUND_CEILING, Decimal
from typing import List, Optional, Sequence, Tuple, Union

from .data_models import Loan, PaymentPlan, Prepayment, ReductionMode, SimulationResult
from .engine import AmortizationRow, amortize, build_schedule, french_payment
from .exceptions import ArithmeticDegenerateError, ValidationError
from .logging import get_logger
from .periods import charge_date, final_charge_date, periods_settled_by
from .rates import resolve_rate
from .utils import ZERO, round_money, to_decimal

logger = get_logger(__name__)


def coerce_mode(mode: Union[ReductionMode, str]) -> ReductionMode:
    if isinstance(mode, ReductionMode):
        return mode
    try:
        return ReductionMode(str(mode).strip().upper())
    except ValueError:
        raise ValidationError(
            f"Unknown reduction mode: {mode}; use REDUCE_TERM or REDUCE_PAYMENT", field="mode"
        ) from None


def validate_amount(amount: Decimal, outstanding: Decimal) -> None:
    """Check ``0 < amount <= outstanding``, naming the violated bound."""
    if amount <= 0:
        raise ValidationError("amount must be greater than 0", field="amount", bound="lower")
    if amount > outstanding:
        raise ValidationError(
            f"amount must not exceed the outstanding principal ({outstanding})",
            field="amount",
            bound="upper",
        )


def prepayment_fee(loan: Loan, amount: Decimal) -> Decimal:
    """Fee charged by the lender: a rate on the amount plus a fixed cost."""
    return round_money(amount * loan.partial_prepayment_fee_rate) + loan.fixed_operation_cost


def cancellation_fee(loan: Loan, outstanding: Decimal) -> Decimal:
    """What closing the loan with ``outstanding`` still owed costs at the full-cancellation rate."""
    return round_money(outstanding * loan.full_cancellation_fee_rate) + loan.fixed_operation_cost


def solve_term(principal: Decimal, annual_rate: Decimal, installment: Decimal) -> int:
    """Whole months needed to repay ``principal`` with a fixed ``installment``.

    Closed form ``n = -ln(1 - P*r/I) / ln(1 + r)`` rounded up.

    Raises
    ------
    ArithmeticDegenerateError
        If the installment does not cover the first month's interest.
    """
    if principal <= 0:
        return 0
    if installment <= 0:
        raise ArithmeticDegenerateError("A non-positive installment never repays the principal")
    monthly_rate = annual_rate / 12
    if monthly_rate <= 0:
        return int((principal / installment).to_integral_value(rounding=ROUND_CEILING))
    ratio = principal * monthly_rate / installment
    if ratio >= 1:
        raise ArithmeticDegenerateError(
            f"Installment {installment} does not cover the interest on {principal}"
        )
    months = -(1 - ratio).ln() / (1 + monthly_rate).ln()
    return int(months.to_integral_value(rounding=ROUND_CEILING))


def break_even_months(
    original: Sequence[AmortizationRow],
    reduced: Sequence[AmortizationRow],
    fee: Decimal,
) -> Optional[int]:
    """Smallest period count whose cumulative interest saving covers ``fee``."""
    if fee <= 0:
        return 0
    saved = ZERO
    for number, row in enumerate(original, start=1):
        reduced_interest = reduced[number - 1].interest if number <= len(reduced) else ZERO
        saved += row.interest - reduced_interest
        if saved >= fee:
            return number
    return None


def balance_on(loan: Loan, plan: PaymentPlan, on_date: date) -> Tuple[int, Decimal]:
    """Periods settled by ``on_date`` and the principal outstanding after them."""
    settled = periods_settled_by(loan, on_date)
    balance = loan.principal_outstanding
    for period in plan.periods:
        if period.number > settled:
            break
        balance = period.outstanding
    return settled, balance


def _total_interest(rows: List[AmortizationRow]) -> Decimal:
    return sum((row.interest for row in rows), ZERO)


def lead_in(loan: Loan, settled: int, principal: Decimal) -> Tuple[List[AmortizationRow], Decimal]:
    """Deferred and interest-only periods still ahead after ``settled`` periods.

    Returns those periods, as the schedule builder charges them on
    ``principal``, and the balance amortization starts from.
    """
    first_amortizing = loan.deferred_first_payment_months + loan.interest_only_months
    if settled >= first_amortizing or principal <= 0:
        return [], principal
    plan = build_schedule(dataclasses.replace(loan, principal_outstanding=principal, periods_elapsed=settled))
    rows = [
        AmortizationRow(period.installment, period.interest, period.principal, period.outstanding)
        for period in plan.periods
        if period.number <= first_amortizing
    ]
    return rows, rows[-1].balance


def _project(
    loan: Loan,
    settled: int,
    principal: Decimal,
    amount: Decimal,
    on_date: date,
    mode: ReductionMode,
) -> SimulationResult:
    validate_amount(amount, principal)

    if loan.total_term_months - settled <= 0:
        raise ArithmeticDegenerateError(f"Loan {loan.id} has no remaining term on {on_date}")

    start = max(settled, loan.deferred_first_payment_months + loan.interest_only_months)
    amortizing = loan.total_term_months - start
    rate = resolve_rate(loan, start)
    fee = prepayment_fee(loan, amount)
    new_principal = principal - amount

    original_lead_in, balance = lead_in(loan, settled, principal)
    current_installment = french_payment(balance, rate, amortizing)
    original_rows = original_lead_in + amortize(balance, rate, amortizing, installment=current_installment)

    new_lead_in, new_balance = lead_in(loan, settled, new_principal)
    if mode == ReductionMode.REDUCE_PAYMENT:
        new_installment = french_payment(new_balance, rate, amortizing)
        new_rows = new_lead_in + amortize(new_balance, rate, amortizing, installment=new_installment)
    else:
        new_installment = current_installment if new_principal > 0 else ZERO
        term = min(solve_term(new_balance, rate, current_installment), amortizing)
        new_rows = new_lead_in + amortize(new_balance, rate, term, installment=current_installment)

    new_term = len(new_rows)
    new_payoff = charge_date(loan, settled + new_term - 1) if new_term else on_date
    interest_saved = _total_interest(original_rows) - _total_interest(new_rows)

    return SimulationResult(
        mode=mode,
        amount=amount,
        prepayment_date=on_date,
        fee=fee,
        principal_before=principal,
        principal_after=new_principal,
        current_installment=current_installment,
        new_installment=new_installment,
        remaining_term_months=len(original_rows),
        new_term_months=new_term,
        months_saved=len(original_rows) - new_term,
        original_payoff_date=final_charge_date(loan),
        new_payoff_date=new_payoff,
        interest_saved=interest_saved,
        break_even_months=break_even_months(original_rows, new_rows, fee),
        cancellation_fee=cancellation_fee(loan, principal) if new_principal == 0 else None,
    )


def simulate(
    loan: Loan,
    amount: Union[Decimal, int, str],
    on_date: date,
    mode: Union[ReductionMode, str],
) -> SimulationResult:
    """Simulate a partial prepayment of ``amount`` on ``on_date``.

    The principal prepaid against is the plan's balance after the last charge
    on or before ``on_date``.

    Raises
    ------
    ValidationError
        If ``amount`` is not within ``(0, outstanding]`` or ``mode`` is unknown.
    ArithmeticDegenerateError
        If no term remains or the term cannot be solved.
    ConfigurationError
        If the loan's rate configuration is incomplete.
    """
    mode = coerce_mode(mode)
    amount = to_decimal(amount)
    settled, principal = balance_on(loan, build_schedule(loan), on_date)
    return _project(loan, settled, principal, amount, on_date, mode)


def last_settlement_date(loan: Loan) -> date:
    """The loan's own notion of "now": the last settled charge, or the signing date."""
    if loan.periods_elapsed == 0:
        return loan.signing_date
    return charge_date(loan, loan.periods_elapsed - 1)


def apply_prepayment(
    loan: Loan,
    amount: Union[Decimal, int, str],
    on_date: Optional[date] = None,
    mode: Union[ReductionMode, str] = ReductionMode.REDUCE_PAYMENT,
) -> Loan:
    """Commit a prepayment and return the updated loan snapshot.

    Without ``on_date`` the prepayment is made against the loan's current
    outstanding principal. The returned loan has its outstanding principal
    lowered, its settled periods advanced to ``on_date`` and, in
    ``REDUCE_TERM`` mode, a shorter total term. The input loan is left
    untouched; regenerate the plan with ``build_schedule`` on the result.
    """
    mode = coerce_mode(mode)
    amount = to_decimal(amount)
    if on_date is None:
        on_date = last_settlement_date(loan)
        settled, principal = loan.periods_elapsed, loan.principal_outstanding
    else:
        settled, principal = balance_on(loan, build_schedule(loan), on_date)
    result = _project(loan, settled, principal, amount, on_date, mode)

    total_term = loan.total_term_months
    if mode == ReductionMode.REDUCE_TERM and result.new_term_months > 0:
        total_term = settled + result.new_term_months

    updated = dataclasses.replace(
        loan,
        principal_outstanding=result.principal_after,
        periods_elapsed=settled,
        total_term_months=total_term,
        prepayments=[
            *loan.prepayments,
            Prepayment(date=on_date, amount=result.amount, mode=mode, fee=result.fee),
        ],
    )
    logger.info(
        "Loan %s: applied prepayment of %s on %s (%s), outstanding %s -> %s",
        loan.id,
        result.amount,
        on_date,
        mode.value,
        result.principal_before,
        result.principal_after,
        extra={"loan_id": loan.id},
    )
    return updated
