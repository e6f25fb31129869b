"""Command-line interface for the loan engine.

This module uses the ``click`` library to implement a multi-command
interface. A loan is described either with options (principal, rate, term,
signing date...) or with a JSON file in the shape produced by
``serialization.loan_to_dict``. Users can print or export the payment plan,
view a summary, simulate a partial prepayment, compare both prepayment modes
and evaluate bonifications.
"""

from __future__ import annotations

import contextlib
import csv
import json
from datetime import date
from decimal import Decimal
from pathlib import Path
from typing import Any, Callable, Dict, Iterator, Optional

import click

from .bonifications import evaluate_bonifications, plan_bonifications
from .config import EngineConfig
from .data_models import (
    DeferredInterest,
    FixedRate,
    Loan,
    MixedRate,
    PaymentPlan,
    RateConfig,
    ReductionMode,
    VariableRate,
)
from .engine import build_schedule, plan_summary
from .exceptions import LoanEngineError, ValidationError
from .formatter import (
    print_bonifications,
    print_intent,
    print_mode_comparison,
    print_schedule,
    print_simulation,
    print_summary,
)
from .logging import setup_logging
from .prepayment import apply_prepayment, simulate
from .serialization import (
    evaluation_to_dict,
    facts_from_dict,
    intent_to_dict,
    loan_from_dict,
    plan_to_dict,
    serialize_value,
    simulation_to_dict,
)
from .utils import ZERO, decimal_from_str, parse_date, parse_year_month
from .validation import validate_loan


MODES = {"term": ReductionMode.REDUCE_TERM, "payment": ReductionMode.REDUCE_PAYMENT}


def parse_amount(value: str) -> Decimal:
    """Parse a numeric string with optional suffixes.

    Accepts plain numbers ("180000") and shorthand with ``k``/``m`` suffixes
    (e.g., "180k" meaning 180_000).
    """
    value = value.strip().lower().replace(",", "")
    factor = Decimal(1)
    if value.endswith("k"):
        factor = Decimal(1_000)
        value = value[:-1]
    elif value.endswith("m"):
        factor = Decimal(1_000_000)
        value = value[:-1]
    try:
        return decimal_from_str(value) * factor
    except ValueError:
        raise click.BadParameter(f"Invalid amount: {value}")


def parse_percent(value: Optional[str]) -> Optional[Decimal]:
    """Parse a percentage string ("3", "3.5%", "0.4") into a rate fraction."""
    if value is None:
        return None
    value = value.strip()
    if value.endswith("%"):
        value = value[:-1]
    try:
        return decimal_from_str(value) / 100
    except ValueError:
        raise click.BadParameter(f"Invalid percentage: {value}")


def parse_cli_date(value: str) -> date:
    """Parse ``YYYY-MM-DD``, or ``YYYY-MM`` meaning the first of the month."""
    try:
        if len(value.strip()) == 7:
            return parse_year_month(value)
        return parse_date(value)
    except ValueError as exc:
        raise click.BadParameter(str(exc))


@contextlib.contextmanager
def engine_errors() -> Iterator[None]:
    """Turn engine errors into click errors with a clean message."""
    try:
        yield
    except ValidationError as exc:
        raise click.BadParameter(str(exc), param_hint=exc.field)
    except LoanEngineError as exc:
        raise click.ClickException(str(exc))


def build_rate_from_options(
    rate_type: str,
    rate: Optional[str],
    index_value: Optional[str],
    spread: Optional[str],
    review_months: int,
    tranche_months: Optional[int],
) -> RateConfig:
    if rate_type == "fixed":
        if rate is None:
            raise click.BadParameter("A fixed rate needs --rate")
        return FixedRate(annual_nominal_rate=parse_percent(rate))
    variable = VariableRate(
        current_index_value=parse_percent(index_value),
        spread=parse_percent(spread),
        review_period_months=review_months,
    )
    if rate_type == "variable":
        return variable
    if rate is None or tranche_months is None:
        raise click.BadParameter("A mixed rate needs --rate and --tranche-months")
    return MixedRate(
        fixed_tranche_months=tranche_months,
        fixed_tranche_rate=parse_percent(rate),
        variable=variable,
    )


def build_loan_from_options(
    loan_file: Optional[str],
    principal: Optional[str],
    rate: Optional[str],
    term: Optional[int],
    signing_date: Optional[str],
    rate_type: str = "fixed",
    index_value: Optional[str] = None,
    spread: Optional[str] = None,
    review_months: int = 12,
    tranche_months: Optional[int] = None,
    charge_day: Optional[int] = None,
    interest_only: int = 0,
    deferred: int = 0,
    waive_deferred_interest: bool = False,
    prorate: bool = False,
    arrears: bool = False,
    partial_fee: Optional[str] = None,
    cancellation_fee: Optional[str] = None,
    fixed_cost: Optional[str] = None,
) -> Loan:
    """Build and validate a loan from a JSON file or from CLI options."""
    if loan_file:
        try:
            with Path(loan_file).open("r", encoding="utf-8") as f:
                data = json.load(f)
        except (OSError, json.JSONDecodeError) as exc:
            raise click.BadParameter(f"Cannot read loan file: {exc}", param_hint="--loan-file")
        with engine_errors():
            loan = loan_from_dict(data)
            validate_loan(loan)
        return loan

    missing = [
        name
        for name, value in (("--principal", principal), ("--term", term), ("--signing-date", signing_date))
        if value is None
    ]
    if missing:
        raise click.BadParameter(f"Missing {', '.join(missing)} (or use --loan-file)")
    principal_value = parse_amount(principal)
    loan = Loan(
        id="cli",
        name="CLI loan",
        principal_initial=principal_value,
        principal_outstanding=principal_value,
        signing_date=parse_cli_date(signing_date),
        total_term_months=term,
        rate=build_rate_from_options(rate_type, rate, index_value, spread, review_months, tranche_months),
        interest_only_months=interest_only,
        deferred_first_payment_months=deferred,
        deferred_interest=DeferredInterest.WAIVE if waive_deferred_interest else DeferredInterest.CAPITALIZE,
        prorate_first_period=prorate,
        charge_in_arrears=arrears,
        charge_day_of_month=charge_day,
        partial_prepayment_fee_rate=parse_percent(partial_fee) or ZERO,
        full_cancellation_fee_rate=parse_percent(cancellation_fee) or ZERO,
        fixed_operation_cost=parse_amount(fixed_cost) if fixed_cost else ZERO,
    )
    with engine_errors():
        validate_loan(loan)
    return loan


def loan_options(func: Callable[..., Any]) -> Callable[..., Any]:
    """Attach the options describing a loan to a command."""
    options = [
        click.option("--loan-file", "loan_file", type=click.Path(exists=True, dir_okay=False), help="Loan JSON file"),
        click.option("--principal", "-p", "principal", help="Loan amount (e.g. 180k)"),
        click.option("--rate", "-r", "rate", help="Annual nominal rate in percent (fixed rate or fixed tranche)"),
        click.option("--term", "-t", "term", type=int, help="Loan term in months"),
        click.option("--signing-date", "-s", "signing_date", help="Signing date (YYYY-MM-DD)"),
        click.option(
            "--rate-type",
            "rate_type",
            type=click.Choice(["fixed", "variable", "mixed"]),
            default="fixed",
            help="Rate type",
        ),
        click.option("--index-value", "index_value", help="Current reference index value in percent"),
        click.option("--spread", "spread", help="Spread over the index in percent"),
        click.option("--review-months", "review_months", type=int, default=12, help="Months between rate reviews"),
        click.option("--tranche-months", "tranche_months", type=int, help="Length of the fixed tranche (mixed rate)"),
        click.option("--charge-day", "charge_day", type=int, help="Billing day of month (1-31)"),
        click.option("--interest-only", "interest_only", type=int, default=0, help="Interest-only months"),
        click.option("--deferred", "deferred", type=int, default=0, help="Months before the first payment"),
        click.option(
            "--waive-deferred-interest",
            "waive_deferred_interest",
            is_flag=True,
            help="Waive interest of deferred months instead of capitalizing it",
        ),
        click.option("--prorate", "prorate", is_flag=True, help="Prorate the first period on actual/365"),
        click.option("--arrears", "arrears", is_flag=True, help="Charge each installment the month after it accrues"),
        click.option("--partial-fee", "partial_fee", help="Partial prepayment fee in percent"),
        click.option("--cancellation-fee", "cancellation_fee", help="Full cancellation fee in percent"),
        click.option("--fixed-cost", "fixed_cost", help="Fixed cost per prepayment operation"),
    ]
    for option in reversed(options):
        func = option(func)
    return func


def export_to_json(path: Path, data: Dict[str, Any]) -> None:
    """Export a result to a JSON file."""
    with path.open("w", encoding="utf-8") as f:
        json.dump(serialize_value(data), f, indent=2)


def export_to_csv(path: Path, plan: PaymentPlan) -> None:
    """Export a payment plan to a CSV file."""
    header = [
        "Period",
        "Month",
        "Accrual_Start",
        "Accrual_End",
        "Accrual_Days",
        "Charge_Date",
        "Annual_Rate",
        "Installment",
        "Principal",
        "Interest",
        "Outstanding",
        "Prorated",
        "Interest_Only",
        "Deferred",
    ]
    with path.open("w", newline="", encoding="utf-8") as f:
        writer = csv.writer(f)
        writer.writerow(header)
        for p in plan.periods:
            writer.writerow(
                [
                    p.number,
                    p.label,
                    p.accrual_start.isoformat(),
                    p.accrual_end.isoformat(),
                    p.accrual_days,
                    p.charge_date.isoformat(),
                    str(p.annual_rate),
                    str(p.installment),
                    str(p.principal),
                    str(p.interest),
                    str(p.outstanding),
                    p.is_prorated,
                    p.is_interest_only,
                    p.is_deferred,
                ]
            )


@click.group()
@click.option("--log-level", "log_level", help="Log level (overrides LOAN_ENGINE_LOG_LEVEL)")
@click.pass_context
def cli(ctx: click.Context, log_level: Optional[str]) -> None:
    """Mortgage schedules, prepayment simulations and bonification checks."""
    config = EngineConfig.from_env()
    if log_level:
        config.log_level = log_level
    setup_logging(config.log_level, config.log_format)
    ctx.obj = config


@cli.command()
@loan_options
@click.option("--output", "output", type=str, help="Output file path (.json or .csv)")
@click.pass_obj
def schedule(config: EngineConfig, output: Optional[str], **options: Any) -> None:
    """Compute and print the full payment plan."""
    loan = build_loan_from_options(**options)
    with engine_errors():
        plan = build_schedule(loan)
    summary_data = plan_summary(loan, plan)
    if output:
        path = Path(output)
        if path.suffix.lower() == ".json":
            export_to_json(path, {"summary": summary_data, "plan": plan_to_dict(plan)})
            click.echo(f"Schedule exported to {path}")
        elif path.suffix.lower() == ".csv":
            export_to_csv(path, plan)
            click.echo(f"Schedule exported to {path}")
        else:
            raise click.BadParameter("Unsupported output format; use .json or .csv")
    else:
        print_summary(summary_data)
        # Limit schedule length printed to avoid flooding the terminal
        max_rows = config.max_rows
        if len(plan.periods) > max_rows:
            click.echo(f"Schedule has {len(plan.periods)} rows; showing first {max_rows} rows.")
            print_schedule(plan.periods[:max_rows])
        else:
            print_schedule(plan.periods)


@cli.command()
@loan_options
@click.option("--output", "output", type=str, help="Output file path (.json)")
def summary(output: Optional[str], **options: Any) -> None:
    """Compute and print only the summary of a loan's plan."""
    loan = build_loan_from_options(**options)
    with engine_errors():
        plan = build_schedule(loan)
    summary_data = plan_summary(loan, plan)
    if output:
        path = Path(output)
        if path.suffix.lower() != ".json":
            raise click.BadParameter("Summary export must use .json extension")
        export_to_json(path, {"summary": summary_data})
        click.echo(f"Summary exported to {path}")
    else:
        print_summary(summary_data)


@cli.command(name="simulate")
@loan_options
@click.option("--amount", "-a", "amount", required=True, help="Prepayment amount")
@click.option("--date", "-d", "on_date", required=True, help="Prepayment date (YYYY-MM-DD)")
@click.option("--mode", "-m", "mode", type=click.Choice(sorted(MODES)), default="payment", help="What the prepayment reduces")
@click.option("--apply", "apply_it", is_flag=True, help="Apply the prepayment and print the new plan summary")
@click.option("--output", "output", type=str, help="Output file path (.json)")
def simulate_command(
    amount: str,
    on_date: str,
    mode: str,
    apply_it: bool,
    output: Optional[str],
    **options: Any,
) -> None:
    """Simulate a partial prepayment."""
    loan = build_loan_from_options(**options)
    prepay_date = parse_cli_date(on_date)
    with engine_errors():
        result = simulate(loan, parse_amount(amount), prepay_date, MODES[mode])
        new_summary = None
        if apply_it:
            updated = apply_prepayment(loan, result.amount, prepay_date, MODES[mode])
            new_summary = plan_summary(updated, build_schedule(updated))
    if output:
        path = Path(output)
        if path.suffix.lower() != ".json":
            raise click.BadParameter("Simulation export must use .json extension")
        data: Dict[str, Any] = {"simulation": simulation_to_dict(result)}
        if new_summary is not None:
            data["summary"] = new_summary
        export_to_json(path, data)
        click.echo(f"Simulation exported to {path}")
        return
    print_simulation(result)
    if new_summary is not None:
        print_summary(new_summary)


@cli.command(name="compare-modes")
@loan_options
@click.option("--amount", "-a", "amount", required=True, help="Prepayment amount")
@click.option("--date", "-d", "on_date", required=True, help="Prepayment date (YYYY-MM-DD)")
def compare_modes(amount: str, on_date: str, **options: Any) -> None:
    """Compare reducing the term with reducing the installment."""
    loan = build_loan_from_options(**options)
    prepay_date = parse_cli_date(on_date)
    value = parse_amount(amount)
    with engine_errors():
        reduce_term = simulate(loan, value, prepay_date, ReductionMode.REDUCE_TERM)
        reduce_payment = simulate(loan, value, prepay_date, ReductionMode.REDUCE_PAYMENT)
    print_mode_comparison(reduce_term, reduce_payment)


@cli.command()
@loan_options
@click.option("--as-of", "as_of", help="Evaluation date (YYYY-MM-DD), defaults to today")
@click.option("--facts-file", "facts_file", type=click.Path(exists=True, dir_okay=False), help="Compliance facts JSON keyed by bonification id")
@click.option("--intent", "intent", is_flag=True, help="Show the rate expected at signing from the selected bonifications")
@click.option("--output", "output", type=str, help="Output file path (.json)")
@click.pass_obj
def bonifications(
    config: EngineConfig,
    as_of: Optional[str],
    facts_file: Optional[str],
    intent: bool,
    output: Optional[str],
    **options: Any,
) -> None:
    """Evaluate a loan's bonifications."""
    loan = build_loan_from_options(**options)
    as_of_date = parse_cli_date(as_of) if as_of else date.today()
    facts = None
    if facts_file:
        with Path(facts_file).open("r", encoding="utf-8") as f:
            raw = json.load(f)
        with engine_errors():
            facts = facts_from_dict(raw)
    with engine_errors():
        if intent:
            result: Any = plan_bonifications(loan, as_of_date, config)
        else:
            result = evaluate_bonifications(loan, as_of_date, facts, config.alert_days)
    if output:
        path = Path(output)
        if path.suffix.lower() != ".json":
            raise click.BadParameter("Bonification export must use .json extension")
        export_to_json(path, intent_to_dict(result) if intent else evaluation_to_dict(result))
        click.echo(f"Bonifications exported to {path}")
    elif intent:
        print_intent(result)
    else:
        print_bonifications(result)


if __name__ == "__main__":
    cli()
