"""Tests for JSON-ready conversion of engine models."""

import dataclasses
import json
from datetime import date
from decimal import Decimal

import pytest

from loan_engine.bonifications import evaluate_bonifications
from loan_engine.data_models import (
    BonificationStatus,
    CardRule,
    ComplianceFact,
    MixedRate,
    Prepayment,
    ReductionMode,
    VariableRate,
)
from loan_engine.engine import build_schedule
from loan_engine.exceptions import ValidationError
from loan_engine.serialization import (
    evaluation_to_dict,
    facts_from_dict,
    loan_from_dict,
    loan_to_dict,
    plan_from_dict,
    plan_to_dict,
    serialize_value,
)


class TestOutput:
    """Tests for model to dictionary conversion."""

    def test_serialize_value(self) -> None:
        assert serialize_value(Decimal("0.030")) == "0.030"
        assert serialize_value(date(2025, 1, 15)) == "2025-01-15"
        assert serialize_value(ReductionMode.REDUCE_TERM) == "REDUCE_TERM"
        assert serialize_value((Decimal("1"), None)) == ["1", None]

    def test_loan_is_json_ready(self, base_loan, payroll_bonification) -> None:
        loan = dataclasses.replace(base_loan, bonifications=[payroll_bonification])
        data = loan_to_dict(loan)
        assert data["principal_initial"] == "180000"
        assert data["rate"] == {"kind": "FIXED", "annual_nominal_rate": "0.03"}
        assert data["bonifications"][0]["rule"]["kind"] == "PAYROLL"
        json.dumps(data)

    def test_plan_counts_periods(self, base_loan) -> None:
        data = plan_to_dict(build_schedule(base_loan))
        assert data["number_of_periods"] == 360
        assert data["periods"][0]["installment"] == "758.89"

    def test_evaluation_marks_changes(self, make_loan, payroll_bonification) -> None:
        loan = make_loan(bonifications=[payroll_bonification])
        fact = ComplianceFact(monthly_amounts=(Decimal("1500"),) * 6)
        data = evaluation_to_dict(evaluate_bonifications(loan, date(2025, 6, 10), {"payroll": fact}))
        assert data["statuses"][0]["status"] == "MET"
        assert data["statuses"][0]["changed"] is True


class TestRoundTrip:
    """Tests for rebuilding models from their dictionary form."""

    def test_loan_round_trip(self, make_loan, payroll_bonification) -> None:
        card = dataclasses.replace(
            payroll_bonification,
            id="card",
            rule=CardRule(min_monthly_transactions=4),
            status=BonificationStatus.LOST,
            lost_since=date(2025, 9, 1),
        )
        loan = make_loan(
            rate=MixedRate(
                fixed_tranche_months=60,
                fixed_tranche_rate=Decimal("0.021"),
                variable=VariableRate(current_index_value=Decimal("0.025"), spread=Decimal("0.009")),
            ),
            bonifications=[payroll_bonification, card],
            prepayments=[
                Prepayment(date=date(2025, 6, 1), amount=Decimal("5000"), mode=ReductionMode.REDUCE_TERM, fee=Decimal("50"))
            ],
            charge_day_of_month=5,
            max_bonification_rate=Decimal("0.01"),
        )
        assert loan_from_dict(json.loads(json.dumps(loan_to_dict(loan)))) == loan

    def test_plan_round_trip(self, base_loan) -> None:
        plan = build_schedule(base_loan)
        assert plan_from_dict(plan_to_dict(plan)) == plan

    def test_outstanding_defaults_to_initial(self) -> None:
        loan = loan_from_dict(
            {
                "id": "loan-1",
                "principal_initial": "100000",
                "signing_date": "2025-03-01",
                "total_term_months": 240,
                "rate": {"kind": "fixed", "annual_nominal_rate": 0.025},
            }
        )
        assert loan.principal_outstanding == Decimal("100000")
        assert loan.rate.annual_nominal_rate == Decimal("0.025")
        assert loan.name == "loan-1"


class TestParsingErrors:
    """Tests for the field named by parsing errors."""

    def test_missing_principal(self) -> None:
        with pytest.raises(ValidationError) as excinfo:
            loan_from_dict({"id": "loan-1"})
        assert excinfo.value.field == "principal_initial"

    def test_missing_rate_kind(self) -> None:
        with pytest.raises(ValidationError) as excinfo:
            loan_from_dict(
                {
                    "id": "loan-1",
                    "principal_initial": "100000",
                    "signing_date": "2025-03-01",
                    "total_term_months": 240,
                    "rate": {},
                }
            )
        assert excinfo.value.field == "rate.kind"

    def test_bad_date(self) -> None:
        with pytest.raises(ValidationError) as excinfo:
            loan_from_dict(
                {
                    "id": "loan-1",
                    "principal_initial": "100000",
                    "signing_date": "March",
                    "total_term_months": 240,
                    "rate": {"kind": "FIXED"},
                }
            )
        assert excinfo.value.field == "signing_date"

    def test_facts(self) -> None:
        facts = facts_from_dict({"payroll": {"monthly_amounts": ["1500", 1300], "active": "yes"}})
        assert facts["payroll"].monthly_amounts == (Decimal("1500"), Decimal("1300"))
        assert facts["payroll"].active is True

    def test_facts_must_be_an_object(self) -> None:
        with pytest.raises(ValidationError) as excinfo:
            facts_from_dict(["payroll"])
        assert excinfo.value.field == "facts"

    def test_fact_must_be_an_object(self) -> None:
        with pytest.raises(ValidationError) as excinfo:
            facts_from_dict({"payroll": 3})
        assert excinfo.value.field == "facts.payroll"
