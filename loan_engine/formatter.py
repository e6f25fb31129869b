"""Output helpers for the loan engine CLI.

This module renders payment plans, summaries, prepayment simulations and
bonification evaluations as plain tab-separated or aligned text. Amounts are
printed with two decimals and rates as percentages; no locale formatting is
attempted.
"""

from __future__ import annotations

from decimal import Decimal
from typing import Any, Dict, Iterable, Optional

from .data_models import BonificationEvaluation, BonificationIntent, PaymentPeriod, SimulationResult


def _pct(rate: Optional[Decimal]) -> str:
    return "-" if rate is None else f"{rate * 100:.3f}%"


def print_summary(summary: Dict[str, Any]) -> None:
    """Print the headline figures of a plan in a human-readable format."""
    print("Summary")
    print("-" * 72)
    print(f"Loan               : {summary['loan_id']}")
    print(f"Outstanding        : {summary['principal_outstanding']:.2f}")
    print(f"Current rate       : {_pct(summary['current_rate'])}")
    print(f"Installment        : {summary['installment']:.2f}")
    if summary.get("max_installment") and summary["max_installment"] != summary["installment"]:
        print(f"Highest payment    : {summary['max_installment']:.2f}")
    print(f"Total interest     : {summary['total_interest']:.2f}")
    if summary.get("capitalized_interest"):
        print(f"Capitalized        : {summary['capitalized_interest']:.2f}")
    print(f"Total paid         : {summary['total_paid']:.2f}")
    print(f"Payments           : {summary['payments']}")
    print(f"First charge       : {summary['first_charge_date']}")
    print(f"Payoff date        : {summary['final_payoff_date']}")
    print("-" * 72)


def print_schedule(periods: Iterable[PaymentPeriod]) -> None:
    """Print the payment plan as a simple table.

    The ``Flag`` column marks prorated (``P``), interest-only (``I``) and
    deferred (``D``) periods.
    """
    headers = [
        "Period",
        "Month",
        "Charged",
        "Rate",
        "Payment",
        "Principal",
        "Interest",
        "EndBal",
        "Flag",
    ]
    print("\t".join(headers))
    for period in periods:
        flag = "".join(
            code
            for code, on in (("P", period.is_prorated), ("I", period.is_interest_only), ("D", period.is_deferred))
            if on
        )
        row = [
            str(period.number),
            period.label,
            period.charge_date.isoformat(),
            _pct(period.annual_rate),
            f"{period.installment:.2f}",
            f"{period.principal:.2f}",
            f"{period.interest:.2f}",
            f"{period.outstanding:.2f}",
            flag or "-",
        ]
        print("\t".join(row))


def print_simulation(result: SimulationResult) -> None:
    """Print the outcome of a prepayment simulation."""
    print(f"Prepayment ({result.mode.value})")
    print("-" * 72)
    print(f"Date               : {result.prepayment_date}")
    print(f"Amount             : {result.amount:.2f}")
    print(f"Fee                : {result.fee:.2f}")
    if result.cancellation_fee is not None:
        print(f"Cancellation fee   : {result.cancellation_fee:.2f}")
    print(f"Principal          : {result.principal_before:.2f} -> {result.principal_after:.2f}")
    print(f"Installment        : {result.current_installment:.2f} -> {result.new_installment:.2f}")
    print(f"Remaining term     : {result.remaining_term_months} -> {result.new_term_months} months")
    if result.months_saved:
        print(f"Term reduction     : {result.months_saved} months")
    print(f"Payoff date        : {result.original_payoff_date} -> {result.new_payoff_date}")
    print(f"Interest saved     : {result.interest_saved:.2f}")
    if result.break_even_months is None:
        print("Break-even         : never")
    else:
        print(f"Break-even         : {result.break_even_months} months")
    print("-" * 72)


def print_mode_comparison(reduce_term: SimulationResult, reduce_payment: SimulationResult) -> None:
    """Print both prepayment modes side by side.

    The difference column is ``REDUCE_PAYMENT - REDUCE_TERM``.
    """
    print("Comparison")
    print("=" * 72)
    print(f"{'Metric':20s} {'ReduceTerm':>15s} {'ReducePayment':>15s} {'Difference':>15s}")
    rows = [
        ("new_installment", reduce_term.new_installment, reduce_payment.new_installment),
        ("new_term_months", Decimal(reduce_term.new_term_months), Decimal(reduce_payment.new_term_months)),
        ("interest_saved", reduce_term.interest_saved, reduce_payment.interest_saved),
        ("fee", reduce_term.fee, reduce_payment.fee),
    ]
    for key, v1, v2 in rows:
        print(f"{key:20s} {v1:15.2f} {v2:15.2f} {v2 - v1:15.2f}")
    print("=" * 72)


def print_bonifications(evaluation: BonificationEvaluation) -> None:
    """Print bonification statuses, upcoming alerts and current savings."""
    print(f"Bonifications as of {evaluation.as_of}")
    print("-" * 72)
    print("\t".join(["Id", "Name", "Status", "Was", "Cost if lost/month"]))
    for report in evaluation.statuses:
        impact = report.economic_impact
        print(
            "\t".join(
                [
                    report.bonification_id,
                    report.name,
                    report.status.value,
                    report.previous_status.value,
                    f"{impact.additional_cost_per_month:.2f}" if impact else "-",
                ]
            )
        )
    if evaluation.alerts:
        print()
        print("Alerts")
        for alert in evaluation.alerts:
            print(f"[{alert.alert_type}] {alert.message}")
            print(f"        Action: {alert.action_required}")
    savings = evaluation.savings
    print()
    print(f"Base rate          : {_pct(savings.base_rate)}")
    print(f"Bonified rate      : {_pct(savings.bonified_rate)}")
    print(f"Savings            : {savings.total_savings_per_month:.2f}/month, {savings.total_savings_per_year:.2f}/year")
    print("-" * 72)


def print_intent(intent: BonificationIntent) -> None:
    """Print the rate expected at signing from the selected bonifications."""
    print("Bonifications at signing")
    print("-" * 72)
    for bonification in intent.applied:
        print(f"  {bonification.name:30s} -{bonification.rate_reduction_points * 100:.2f} pp")
    for message in intent.resolved_incompatibilities:
        print(f"  note: {message}")
    print(f"Points applied     : {intent.points_applied * 100:.2f} pp (requested {intent.points_requested * 100:.2f} pp)")
    if intent.resulting_spread is not None:
        print(f"Resulting spread   : {_pct(intent.resulting_spread)}")
    print(f"Resulting rate     : {_pct(intent.resulting_rate)}")
    if intent.next_change is not None:
        print(f"Next change        : {intent.next_change.date} ({intent.next_change.description})")
    print("-" * 72)
