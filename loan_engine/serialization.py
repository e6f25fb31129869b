"""Conversion of engine models to and from JSON-ready dictionaries.

Decimals are written as strings so that no precision is lost on the way
through JSON, dates as ISO strings and enums as their values. Tagged
variants (rate configurations and bonification rules) carry their ``kind``.
"""

from __future__ import annotations

from dataclasses import fields, is_dataclass
from datetime import date, datetime
from decimal import Decimal
from enum import Enum
from typing import Any, Callable, Dict, Mapping, Optional, TypeVar

from .data_models import (
    AlarmRule,
    Bonification,
    BonificationEvaluation,
    BonificationIntent,
    BonificationRule,
    BonificationSavings,
    BonificationStatus,
    CardRule,
    ComplianceFact,
    DeferredInterest,
    FixedRate,
    HomeInsuranceRule,
    LifeInsuranceRule,
    Loan,
    MixedRate,
    OtherRule,
    PaymentPeriod,
    PaymentPlan,
    PayrollRule,
    PensionPlanRule,
    Prepayment,
    RateConfig,
    RateType,
    ReductionMode,
    RuleKind,
    SimulationResult,
    VariableRate,
)
from .exceptions import ValidationError
from .utils import ZERO, optional_date, optional_decimal, parse_date, to_decimal

T = TypeVar("T")


def serialize_value(value: Any) -> Any:
    """Serialize a value for JSON output."""
    if isinstance(value, Decimal):
        return str(value)
    elif isinstance(value, Enum):
        return value.value
    elif isinstance(value, datetime):
        return value.isoformat()
    elif isinstance(value, date):
        return value.isoformat()
    elif is_dataclass(value) and not isinstance(value, type):
        return dataclass_to_dict(value)
    elif isinstance(value, dict):
        return {k: serialize_value(v) for k, v in value.items()}
    elif isinstance(value, (list, tuple)):
        return [serialize_value(v) for v in value]
    return value


def dataclass_to_dict(obj: Any) -> Dict[str, Any]:
    """Convert a dataclass to a dict, tagging variants with their ``kind``."""
    result: Dict[str, Any] = {}
    kind = getattr(type(obj), "kind", None)
    if isinstance(kind, Enum):
        result["kind"] = kind.value
    for f in fields(obj):
        result[f.name] = serialize_value(getattr(obj, f.name))
    return result


def loan_to_dict(loan: Loan) -> Dict[str, Any]:
    return dataclass_to_dict(loan)


def plan_to_dict(plan: PaymentPlan) -> Dict[str, Any]:
    data = dataclass_to_dict(plan)
    data["number_of_periods"] = len(plan.periods)
    return data


def simulation_to_dict(result: SimulationResult) -> Dict[str, Any]:
    return dataclass_to_dict(result)


def savings_to_dict(savings: BonificationSavings) -> Dict[str, Any]:
    return dataclass_to_dict(savings)


def intent_to_dict(intent: BonificationIntent) -> Dict[str, Any]:
    return dataclass_to_dict(intent)


def evaluation_to_dict(evaluation: BonificationEvaluation) -> Dict[str, Any]:
    data = dataclass_to_dict(evaluation)
    for entry, report in zip(data["statuses"], evaluation.statuses):
        entry["changed"] = report.changed
    return data


# ---------------------------------------------------------------------------
# Parsing
# ---------------------------------------------------------------------------


def _field(data: Mapping[str, Any], key: str, convert: Callable[[Any], T], prefix: str = "") -> T:
    name = f"{prefix}{key}"
    if key not in data or data[key] is None:
        raise ValidationError(f"{name} is required", field=name)
    try:
        return convert(data[key])
    except (ValueError, TypeError) as exc:
        raise ValidationError(f"Invalid value for {name}: {data[key]!r}", field=name) from exc


def _optional(data: Mapping[str, Any], key: str, convert: Callable[[Any], T], default: T, prefix: str = "") -> T:
    if data.get(key) is None:
        return default
    return _field(data, key, convert, prefix)


def _enum(enum_type: Callable[[str], T]) -> Callable[[Any], T]:
    return lambda value: enum_type(str(value).strip().upper())


def _flag(value: Any) -> bool:
    if isinstance(value, bool):
        return value
    if isinstance(value, str) and value.strip().lower() in ("true", "1", "yes"):
        return True
    if isinstance(value, str) and value.strip().lower() in ("false", "0", "no"):
        return False
    raise ValueError(value)


def _optional_int(value: Any) -> Optional[int]:
    return None if value is None else int(value)


def variable_rate_from_dict(data: Mapping[str, Any], prefix: str = "rate.") -> VariableRate:
    return VariableRate(
        reference_index=str(data.get("reference_index") or "EURIBOR"),
        current_index_value=_optional(data, "current_index_value", optional_decimal, None, prefix),
        spread=_optional(data, "spread", optional_decimal, None, prefix),
        review_period_months=_optional(data, "review_period_months", int, 12, prefix),
        next_review_date=_optional(data, "next_review_date", optional_date, None, prefix),
    )


def rate_from_dict(data: Mapping[str, Any]) -> RateConfig:
    kind = _field(data, "kind", _enum(RateType), "rate.")
    if kind == RateType.FIXED:
        return FixedRate(annual_nominal_rate=_optional(data, "annual_nominal_rate", optional_decimal, None, "rate."))
    if kind == RateType.VARIABLE:
        return variable_rate_from_dict(data)
    variable = data.get("variable")
    return MixedRate(
        fixed_tranche_months=_optional(data, "fixed_tranche_months", _optional_int, None, "rate."),
        fixed_tranche_rate=_optional(data, "fixed_tranche_rate", optional_decimal, None, "rate."),
        variable=variable_rate_from_dict(variable, "rate.variable.") if variable else None,
    )


def rule_from_dict(data: Mapping[str, Any], prefix: str = "rule.") -> BonificationRule:
    kind = _field(data, "kind", _enum(RuleKind), prefix)
    if kind == RuleKind.PAYROLL:
        return PayrollRule(min_monthly_amount=_field(data, "min_monthly_amount", to_decimal, prefix))
    if kind == RuleKind.CARD:
        return CardRule(
            min_monthly_transactions=_optional(data, "min_monthly_transactions", _optional_int, None, prefix),
            min_annual_amount=_optional(data, "min_annual_amount", optional_decimal, None, prefix),
        )
    if kind == RuleKind.HOME_INSURANCE:
        return HomeInsuranceRule()
    if kind == RuleKind.LIFE_INSURANCE:
        return LifeInsuranceRule()
    if kind == RuleKind.PENSION_PLAN:
        return PensionPlanRule(
            min_monthly_contribution=_optional(data, "min_monthly_contribution", optional_decimal, None, prefix)
        )
    if kind == RuleKind.ALARM:
        return AlarmRule()
    return OtherRule(description=str(data.get("description") or ""))


def bonification_from_dict(data: Mapping[str, Any]) -> Bonification:
    bonification_id = _field(data, "id", str, "bonifications.")
    prefix = f"bonifications.{bonification_id}."
    return Bonification(
        id=bonification_id,
        name=str(data.get("name") or bonification_id),
        rate_reduction_points=_field(data, "rate_reduction_points", to_decimal, prefix),
        rule=rule_from_dict(_field(data, "rule", dict, prefix), f"{prefix}rule."),
        lookback_months=_optional(data, "lookback_months", int, 12, prefix),
        estimated_annual_cost=_optional(data, "estimated_annual_cost", to_decimal, ZERO, prefix),
        status=_optional(data, "status", _enum(BonificationStatus), BonificationStatus.PENDING, prefix),
        lost_since=_optional(data, "lost_since", optional_date, None, prefix),
        selected=_optional(data, "selected", _flag, True, prefix),
        grace_months=_optional(data, "grace_months", int, 0, prefix),
    )


def prepayment_from_dict(data: Mapping[str, Any]) -> Prepayment:
    return Prepayment(
        date=_field(data, "date", parse_date, "prepayments."),
        amount=_field(data, "amount", to_decimal, "prepayments."),
        mode=_field(data, "mode", _enum(ReductionMode), "prepayments."),
        fee=_optional(data, "fee", to_decimal, ZERO, "prepayments."),
    )


def loan_from_dict(data: Mapping[str, Any]) -> Loan:
    """Build a ``Loan`` from its dictionary form.

    ``principal_outstanding`` defaults to ``principal_initial``. Unknown keys
    are ignored.

    Raises
    ------
    ValidationError
        If a required key is missing or a value cannot be parsed.
    """
    principal_initial = _field(data, "principal_initial", to_decimal)
    return Loan(
        id=_field(data, "id", str),
        name=str(data.get("name") or data["id"]),
        principal_initial=principal_initial,
        principal_outstanding=_optional(data, "principal_outstanding", to_decimal, principal_initial),
        signing_date=_field(data, "signing_date", parse_date),
        total_term_months=_field(data, "total_term_months", int),
        rate=rate_from_dict(_field(data, "rate", dict)),
        property_id=data.get("property_id"),
        periods_elapsed=_optional(data, "periods_elapsed", int, 0),
        interest_only_months=_optional(data, "interest_only_months", int, 0),
        deferred_first_payment_months=_optional(data, "deferred_first_payment_months", int, 0),
        deferred_interest=_optional(
            data, "deferred_interest", _enum(DeferredInterest), DeferredInterest.CAPITALIZE
        ),
        prorate_first_period=_optional(data, "prorate_first_period", _flag, False),
        charge_in_arrears=_optional(data, "charge_in_arrears", _flag, False),
        charge_day_of_month=_optional(data, "charge_day_of_month", _optional_int, None),
        debit_account_id=data.get("debit_account_id"),
        partial_prepayment_fee_rate=_optional(data, "partial_prepayment_fee_rate", to_decimal, ZERO),
        full_cancellation_fee_rate=_optional(data, "full_cancellation_fee_rate", to_decimal, ZERO),
        fixed_operation_cost=_optional(data, "fixed_operation_cost", to_decimal, ZERO),
        bonifications=[bonification_from_dict(item) for item in data.get("bonifications") or []],
        max_bonification_rate=_optional(data, "max_bonification_rate", optional_decimal, None),
        bonification_review_period_months=_optional(data, "bonification_review_period_months", int, 12),
        max_bonification_end_date=_optional(data, "max_bonification_end_date", optional_date, None),
        period_end_date=_optional(data, "period_end_date", optional_date, None),
        evaluation_date=_optional(data, "evaluation_date", optional_date, None),
        evaluation_offset_days=_optional(data, "evaluation_offset_days", int, 0),
        prepayments=[prepayment_from_dict(item) for item in data.get("prepayments") or []],
    )


def _period_from_dict(data: Mapping[str, Any]) -> PaymentPeriod:
    return PaymentPeriod(
        number=int(data["number"]),
        label=data["label"],
        accrual_start=parse_date(data["accrual_start"]),
        accrual_end=parse_date(data["accrual_end"]),
        accrual_days=int(data["accrual_days"]),
        charge_date=parse_date(data["charge_date"]),
        annual_rate=to_decimal(data["annual_rate"]),
        installment=to_decimal(data["installment"]),
        interest=to_decimal(data["interest"]),
        principal=to_decimal(data["principal"]),
        outstanding=to_decimal(data["outstanding"]),
        is_prorated=bool(data.get("is_prorated", False)),
        is_interest_only=bool(data.get("is_interest_only", False)),
        is_deferred=bool(data.get("is_deferred", False)),
    )


def plan_from_dict(data: Mapping[str, Any]) -> PaymentPlan:
    """Rebuild a stored ``PaymentPlan``; the input is trusted output of ``plan_to_dict``."""
    return PaymentPlan(
        loan_id=data["loan_id"],
        periods=tuple(_period_from_dict(item) for item in data["periods"]),
        total_interest=to_decimal(data["total_interest"]),
        total_paid=to_decimal(data["total_paid"]),
        capitalized_interest=to_decimal(data["capitalized_interest"]),
        final_payoff_date=optional_date(data.get("final_payoff_date")),
    )


def fact_from_dict(data: Mapping[str, Any], prefix: str = "facts.") -> ComplianceFact:
    if not isinstance(data, Mapping):
        raise ValidationError("A compliance fact must be an object", field=prefix.rstrip("."))
    active = data.get("active")
    satisfied = data.get("satisfied")
    try:
        return ComplianceFact(
            monthly_amounts=tuple(to_decimal(v) for v in data.get("monthly_amounts") or ()),
            monthly_counts=tuple(int(v) for v in data.get("monthly_counts") or ()),
            active=None if active is None else _flag(active),
            satisfied=None if satisfied is None else _flag(satisfied),
            progress=str(data.get("progress") or ""),
            missing=str(data.get("missing") or ""),
        )
    except (ValueError, TypeError) as exc:
        raise ValidationError(f"Invalid compliance fact: {exc}", field=prefix.rstrip(".")) from exc


def facts_from_dict(data: Optional[Mapping[str, Mapping[str, Any]]]) -> Dict[str, ComplianceFact]:
    """Parse compliance facts keyed by bonification id."""
    if data is not None and not isinstance(data, Mapping):
        raise ValidationError("facts must be an object keyed by bonification id", field="facts")
    return {key: fact_from_dict(value, f"facts.{key}.") for key, value in (data or {}).items()}
