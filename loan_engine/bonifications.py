"""Bonification evaluator.

Bonifications are contractual discounts on the loan rate granted while the
borrower keeps certain products with the lender (payroll, cards, insurance,
pension plan...). This module judges compliance from externally supplied
facts, prices what each bonification is worth, raises alerts ahead of the
evaluation date and plans the rate a borrower can expect at signing.

Statuses produced here are written back to a new loan snapshot with
``with_statuses``; a status change is a recompute trigger for the schedule.
"""

from __future__ import annotations

import dataclasses
from datetime import date, timedelta
from decimal import Decimal
from typing import Dict, Iterable, List, Mapping, Optional, Sequence, Tuple

from .config import EngineConfig
from .data_models import (
    AlarmRule,
    Bonification,
    BonificationAlert,
    BonificationEvaluation,
    BonificationIntent,
    BonificationReport,
    BonificationSavings,
    BonificationSavingsLine,
    BonificationStatus,
    CardRule,
    ComplianceFact,
    FixedRate,
    HomeInsuranceRule,
    LifeInsuranceRule,
    Loan,
    LossImpact,
    MixedRate,
    NextChange,
    OtherRule,
    PayrollRule,
    PensionPlanRule,
    RuleKind,
    VariableRate,
)
from .engine import french_payment
from .exceptions import ConfigurationError
from .logging import get_logger
from .rates import (
    active_bonifications,
    apply_discount,
    cap_discount,
    next_review_date,
    period_start,
    resolve_base_rate,
)
from .utils import ZERO, add_months, round_money

logger = get_logger(__name__)

DEFAULT_ALERT_DAYS: Tuple[int, ...] = (45, 21, 7, 2)
MONTHS_PER_YEAR = 12


# ---------------------------------------------------------------------------
# Pricing helpers
# ---------------------------------------------------------------------------


def _current_index(loan: Loan) -> int:
    """Index of the next period to be charged, bounded to the term."""
    return max(0, min(loan.periods_elapsed, loan.total_term_months - 1))


def _remaining_term(loan: Loan) -> int:
    return max(1, loan.total_term_months - loan.periods_elapsed)


def _payment(loan: Loan, annual_rate: Decimal) -> Decimal:
    return french_payment(loan.principal_outstanding, annual_rate, _remaining_term(loan))


def _rate_with(loan: Loan, base_rate: Decimal, bonifications: Iterable[Bonification]) -> Decimal:
    points = sum((b.rate_reduction_points for b in bonifications), ZERO)
    return apply_discount(base_rate, cap_discount(loan, points))


def calculate_bonification_savings(loan: Loan) -> BonificationSavings:
    """Base vs. bonified installment over the remaining term.

    Both payments use the current outstanding principal and the bonifications
    counting on the next period's accrual start. The saving is apportioned to
    each counting bonification by its share of the points; the last line
    absorbs the rounding difference so the breakdown adds up.
    """
    index = _current_index(loan)
    base_rate = resolve_base_rate(loan, index)
    active = active_bonifications(loan, period_start(loan, index))
    bonified_rate = _rate_with(loan, base_rate, active)

    base_payment = _payment(loan, base_rate)
    bonified_payment = _payment(loan, bonified_rate)
    per_month = base_payment - bonified_payment

    total_points = sum((b.rate_reduction_points for b in active), ZERO)
    lines: List[BonificationSavingsLine] = []
    allotted = ZERO
    for position, bonification in enumerate(active):
        if position == len(active) - 1:
            share = per_month - allotted
        elif total_points > 0:
            share = round_money(per_month * bonification.rate_reduction_points / total_points)
        else:
            share = ZERO
        allotted += share
        lines.append(
            BonificationSavingsLine(
                bonification_id=bonification.id,
                name=bonification.name,
                reduction_points=bonification.rate_reduction_points,
                savings_per_month=share,
                savings_per_year=share * MONTHS_PER_YEAR,
            )
        )

    return BonificationSavings(
        base_rate=base_rate,
        bonified_rate=bonified_rate,
        base_payment=base_payment,
        bonified_payment=bonified_payment,
        total_savings_per_month=per_month,
        total_savings_per_year=per_month * MONTHS_PER_YEAR,
        breakdown=tuple(lines),
    )


def bonification_loss_impact(loan: Loan, bonification_id: str) -> LossImpact:
    """Extra installment cost if ``bonification_id`` stopped counting.

    For a bonification that does not count yet this is what securing it is
    worth. Unknown ids have no impact.
    """
    target = next((b for b in loan.bonifications if b.id == bonification_id), None)
    if target is None:
        return LossImpact(ZERO, ZERO)

    index = _current_index(loan)
    base_rate = resolve_base_rate(loan, index)
    others = [b for b in active_bonifications(loan, period_start(loan, index)) if b.id != bonification_id]

    with_it = _payment(loan, _rate_with(loan, base_rate, [*others, target]))
    without_it = _payment(loan, _rate_with(loan, base_rate, others))
    per_month = without_it - with_it
    return LossImpact(
        additional_cost_per_month=per_month,
        additional_cost_per_year=per_month * MONTHS_PER_YEAR,
    )


def action_required(bonification: Bonification) -> str:
    """What the borrower must keep doing to retain ``bonification``."""
    rule = bonification.rule
    if isinstance(rule, PayrollRule):
        return (
            f"Keep a payroll of at least {rule.min_monthly_amount} per month "
            f"for {bonification.lookback_months} months"
        )
    if isinstance(rule, PensionPlanRule):
        if rule.min_monthly_contribution is not None:
            return f"Keep the pension plan active with at least {rule.min_monthly_contribution} per month"
        return "Keep the pension plan active"
    if isinstance(rule, HomeInsuranceRule):
        return "Keep the home insurance active"
    if isinstance(rule, LifeInsuranceRule):
        return "Keep the life insurance active"
    if isinstance(rule, CardRule):
        requirements = []
        if rule.min_monthly_transactions is not None:
            requirements.append(f"{rule.min_monthly_transactions} transactions/month")
        if rule.min_annual_amount is not None:
            requirements.append(f"spend at least {rule.min_annual_amount}/year")
        if not requirements:
            return "Keep the card active"
        return "Card usage: " + " or ".join(requirements)
    if isinstance(rule, AlarmRule):
        return "Keep the alarm service active"
    if isinstance(rule, OtherRule) and rule.description:
        return rule.description
    return "Meet the specific requirements"


# ---------------------------------------------------------------------------
# Evaluation
# ---------------------------------------------------------------------------


def evaluation_date_for(loan: Loan) -> Optional[date]:
    """The compliance evaluation date of the current bonification period."""
    if loan.evaluation_date is not None:
        return loan.evaluation_date
    if loan.period_end_date is not None:
        return loan.period_end_date - timedelta(days=loan.evaluation_offset_days)
    return None


def _in_guaranteed_window(loan: Loan, as_of: date) -> bool:
    return loan.max_bonification_end_date is not None and as_of <= loan.max_bonification_end_date


def judge(
    loan: Loan,
    bonification: Bonification,
    fact: Optional[ComplianceFact],
    as_of: date,
    evaluation_date: Optional[date],
) -> BonificationStatus:
    """Status of ``bonification`` on ``as_of`` given its compliance fact."""
    if fact is None:
        return bonification.status
    verdict = bonification.rule.complies(fact, bonification.lookback_months)
    if verdict is None:
        return BonificationStatus.PENDING
    if verdict:
        return BonificationStatus.MET
    if evaluation_date is None or as_of <= evaluation_date or _in_guaranteed_window(loan, as_of):
        return BonificationStatus.AT_RISK
    return BonificationStatus.LOST


def alert_bucket(days_until: int, alert_days: Sequence[int]) -> Optional[int]:
    """The tightest alert threshold ``days_until`` falls within, if any."""
    if days_until <= 0:
        return None
    matching = [threshold for threshold in alert_days if threshold >= days_until]
    return min(matching) if matching else None


def _lost_since(loan: Loan, as_of: date) -> date:
    if loan.period_end_date is not None and loan.period_end_date > as_of:
        return loan.period_end_date
    return as_of


def _apply_statuses(loan: Loan, reports: Iterable[BonificationReport], as_of: date) -> Loan:
    by_id = {report.bonification_id: report for report in reports}
    updated: List[Bonification] = []
    for bonification in loan.bonifications:
        report = by_id.get(bonification.id)
        if report is None or report.status == bonification.status:
            updated.append(bonification)
            continue
        lost_since = None
        if report.status == BonificationStatus.LOST:
            lost_since = bonification.lost_since or _lost_since(loan, as_of)
        updated.append(dataclasses.replace(bonification, status=report.status, lost_since=lost_since))
    return dataclasses.replace(loan, bonifications=updated)


def with_statuses(loan: Loan, evaluation: BonificationEvaluation) -> Loan:
    """Return a loan snapshot carrying the statuses of ``evaluation``.

    A bonification newly ``LOST`` stops counting from the application date
    (``period_end_date``) or the evaluation day, whichever is later.
    """
    return _apply_statuses(loan, evaluation.statuses, evaluation.as_of)


def evaluate_bonifications(
    loan: Loan,
    as_of: date,
    facts: Optional[Mapping[str, ComplianceFact]] = None,
    alert_days: Sequence[int] = DEFAULT_ALERT_DAYS,
) -> BonificationEvaluation:
    """Judge every bonification of ``loan`` on ``as_of``.

    Parameters
    ----------
    loan: Loan
        The loan whose bonifications are evaluated.
    as_of: date
        Evaluation day.
    facts: Mapping[str, ComplianceFact], optional
        Compliance facts keyed by bonification id. Bonifications without a
        fact keep their stored status.
    alert_days: Sequence[int]
        Alert thresholds in days before the evaluation date.

    Returns
    -------
    BonificationEvaluation
        Per-bonification reports, alerts for bonifications not yet met and
        the savings of the loan once the new statuses are applied.
    """
    facts = facts or {}
    evaluation_date = evaluation_date_for(loan)
    days_until = (evaluation_date - as_of).days if evaluation_date is not None else None

    reports: List[BonificationReport] = []
    for bonification in loan.bonifications:
        fact = facts.get(bonification.id)
        status = judge(loan, bonification, fact, as_of, evaluation_date)
        reports.append(
            BonificationReport(
                bonification_id=bonification.id,
                name=bonification.name,
                status=status,
                previous_status=bonification.status,
                evaluation_date=evaluation_date,
                application_date=loan.period_end_date,
                days_until_evaluation=days_until,
                progress=fact.progress if fact else "",
                missing=fact.missing if fact else "",
            )
        )

    updated = _apply_statuses(loan, reports, as_of)

    priced: List[BonificationReport] = []
    alerts: List[BonificationAlert] = []
    bonifications: Dict[str, Bonification] = {b.id: b for b in updated.bonifications}
    for report in reports:
        if report.status == BonificationStatus.MET:
            priced.append(report)
            continue
        impact = bonification_loss_impact(updated, report.bonification_id)
        priced.append(dataclasses.replace(report, economic_impact=impact))

        bucket = alert_bucket(days_until, alert_days) if days_until is not None else None
        if bucket is None:
            continue
        bonification = bonifications[report.bonification_id]
        alerts.append(
            BonificationAlert(
                bonification_id=report.bonification_id,
                alert_type=f"T-{bucket}",
                days_until_evaluation=days_until,
                message=(
                    f'Bonification "{report.name}" at risk. Missing: '
                    f"{report.missing or 'meet the requirements'}. If not met before "
                    f"{evaluation_date.isoformat()}, the installment rises by "
                    f"+{impact.additional_cost_per_month}/month "
                    f"(+{impact.additional_cost_per_year}/year)"
                    + (f" from {loan.period_end_date.isoformat()}." if loan.period_end_date else ".")
                ),
                economic_impact=impact,
                action_required=action_required(bonification),
            )
        )

    changed = [report for report in priced if report.changed]
    if changed:
        logger.info(
            "Loan %s: %d bonification status change(s) on %s",
            loan.id,
            len(changed),
            as_of,
            extra={"loan_id": loan.id},
        )
    return BonificationEvaluation(
        as_of=as_of,
        statuses=tuple(priced),
        alerts=tuple(alerts),
        savings=calculate_bonification_savings(updated),
    )


# ---------------------------------------------------------------------------
# Catalogue and intent at signing
# ---------------------------------------------------------------------------


def standard_bonifications() -> List[Bonification]:
    """The bonifications lenders usually offer, unselected and pending."""
    return [
        Bonification(
            id="payroll",
            name="Payroll",
            rate_reduction_points=Decimal("0.0030"),
            rule=PayrollRule(min_monthly_amount=Decimal("1200")),
            lookback_months=6,
            selected=False,
        ),
        Bonification(
            id="bills",
            name="Direct debits",
            rate_reduction_points=Decimal("0.0015"),
            rule=OtherRule(description="Direct debit of at least 3 bills per month"),
            lookback_months=3,
            selected=False,
        ),
        Bonification(
            id="home_insurance",
            name="Home insurance",
            rate_reduction_points=Decimal("0.0020"),
            rule=HomeInsuranceRule(),
            lookback_months=12,
            selected=False,
        ),
        Bonification(
            id="life_insurance",
            name="Life insurance",
            rate_reduction_points=Decimal("0.0015"),
            rule=LifeInsuranceRule(),
            lookback_months=12,
            selected=False,
        ),
        Bonification(
            id="credit_card",
            name="Credit card",
            rate_reduction_points=Decimal("0.0010"),
            rule=CardRule(min_annual_amount=Decimal("3600")),
            lookback_months=3,
            selected=False,
        ),
        Bonification(
            id="debit_card",
            name="Debit card",
            rate_reduction_points=Decimal("0.0005"),
            rule=CardRule(min_annual_amount=Decimal("1800")),
            lookback_months=3,
            selected=False,
        ),
        Bonification(
            id="pension_plan",
            name="Pension plan",
            rate_reduction_points=Decimal("0.0025"),
            rule=PensionPlanRule(min_monthly_contribution=Decimal("100")),
            lookback_months=6,
            selected=False,
        ),
        Bonification(
            id="alarm",
            name="Alarm",
            rate_reduction_points=Decimal("0.0010"),
            rule=AlarmRule(),
            lookback_months=12,
            selected=False,
        ),
    ]


def _card_flavour(bonification: Bonification) -> Optional[str]:
    if bonification.rule.kind != RuleKind.CARD:
        return None
    label = f"{bonification.id} {bonification.name}".lower()
    if "credit" in label:
        return "credit"
    if "debit" in label:
        return "debit"
    return None


def resolve_incompatibilities(
    bonifications: Sequence[Bonification],
) -> Tuple[List[Bonification], List[str]]:
    """Drop conflicting bonifications, keeping the larger discount.

    A credit card and a debit card bonification cannot be combined.
    """
    cards = [b for b in bonifications if _card_flavour(b) is not None]
    flavours = {_card_flavour(b) for b in cards}
    if flavours != {"credit", "debit"}:
        return list(bonifications), []

    best = max(cards, key=lambda b: b.rate_reduction_points)
    dropped = [b for b in cards if b.id != best.id]
    kept = [b for b in bonifications if b not in dropped]
    message = (
        f"Applied {best.name} and dropped {', '.join(b.name for b in dropped)} "
        "as incompatible"
    )
    return kept, [message]


def _floored(value: Decimal, points: Decimal, floor: Decimal) -> Decimal:
    # a floor never lifts a value that already sits below it
    return max(value - points, min(value, floor))


def _next_change(loan: Loan, applied: Sequence[Bonification], as_of: date) -> Optional[NextChange]:
    grace = max((b.grace_months for b in applied), default=0)
    if grace > 0:
        return NextChange(
            date=add_months(loan.signing_date, grace),
            kind="PROMOTION_END",
            description=f"End of promotion ({grace} months of grace)",
        )
    review = next_review_date(loan, as_of)
    if review is not None:
        return NextChange(date=review, kind="ANNUAL_REVIEW", description="Periodic review of conditions")
    return None


def plan_bonifications(
    loan: Loan,
    as_of: date,
    config: Optional[EngineConfig] = None,
) -> BonificationIntent:
    """Rate the borrower can expect at signing from the selected bonifications.

    The combined points are capped at the loan's ``max_bonification_rate``
    (or the configured default cap). Fixed and mixed loans floor the
    resulting rate at ``fixed_rate_floor``; variable loans floor the spread at
    ``spread_floor``.
    """
    config = config or EngineConfig()
    selected = [b for b in loan.bonifications if b.selected]
    applied, messages = resolve_incompatibilities(selected)

    requested = sum((b.rate_reduction_points for b in applied), ZERO)
    cap = loan.max_bonification_rate if loan.max_bonification_rate is not None else config.default_bonification_cap
    points = min(requested, cap)

    rate = loan.rate
    resulting_rate: Optional[Decimal] = None
    resulting_spread: Optional[Decimal] = None
    if isinstance(rate, VariableRate):
        if rate.spread is None or rate.current_index_value is None:
            raise ConfigurationError(f"Loan {loan.id}: variable rate requires spread and current_index_value")
        resulting_spread = _floored(rate.spread, points, config.spread_floor)
        resulting_rate = rate.current_index_value + resulting_spread
    elif isinstance(rate, (FixedRate, MixedRate)):
        resulting_rate = _floored(resolve_base_rate(loan, 0), points, config.fixed_rate_floor)
    else:
        raise ConfigurationError(f"Loan {loan.id}: unsupported rate configuration {type(rate).__name__}")

    logger.debug(
        "Loan %s: %d bonification(s) selected, %s of %s points applied",
        loan.id,
        len(applied),
        points,
        requested,
    )
    return BonificationIntent(
        points_requested=requested,
        points_applied=points,
        resulting_rate=resulting_rate,
        resulting_spread=resulting_spread,
        applied=tuple(applied),
        resolved_incompatibilities=tuple(messages),
        next_change=_next_change(loan, applied, as_of),
    )
