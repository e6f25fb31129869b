"""Tests for the schedule builder."""

from datetime import date
from decimal import Decimal

import pytest

from loan_engine.data_models import DeferredInterest, MixedRate, VariableRate
from loan_engine.engine import amortize, build_schedule, french_payment, plan_summary
from loan_engine.exceptions import ArithmeticDegenerateError, ConfigurationError


class TestFrenchPayment:
    """Tests for the constant annuity formula."""

    def test_reference_mortgage(self) -> None:
        payment = french_payment(Decimal("180000"), Decimal("0.03"), 360)
        assert payment == Decimal("758.89")

    def test_zero_rate_splits_evenly(self) -> None:
        assert french_payment(Decimal("12000"), Decimal("0"), 120) == Decimal("100.00")

    def test_zero_principal(self) -> None:
        assert french_payment(Decimal("0"), Decimal("0.03"), 12) == Decimal("0")

    def test_zero_periods(self) -> None:
        with pytest.raises(ArithmeticDegenerateError):
            french_payment(Decimal("1000"), Decimal("0.03"), 0)


class TestAmortize:
    """Tests for the calendar-free amortizing step."""

    def test_repays_principal(self) -> None:
        rows = amortize(Decimal("10000"), Decimal("0.05"), 24)
        assert len(rows) == 24
        assert rows[-1].balance == 0
        assert sum(row.principal for row in rows) == Decimal("10000")

    def test_larger_installment_finishes_early(self) -> None:
        rows = amortize(Decimal("10000"), Decimal("0.05"), 24, installment=Decimal("1000"))
        assert len(rows) < 24
        assert rows[-1].balance == 0

    def test_installment_below_interest(self) -> None:
        with pytest.raises(ArithmeticDegenerateError):
            amortize(Decimal("100000"), Decimal("0.12"), 24, installment=Decimal("500"))


class TestBuildSchedule:
    """Tests for complete payment plans."""

    def test_reference_plan_first_row(self, base_loan) -> None:
        plan = build_schedule(base_loan)
        first = plan.periods[0]
        assert first.number == 1
        assert first.installment == Decimal("758.89")
        assert first.interest == Decimal("450.00")
        assert first.principal == Decimal("308.89")
        assert first.outstanding == Decimal("179691.11")
        assert first.charge_date == date(2025, 1, 15)
        assert first.label == "2025-01"

    def test_plan_repays_everything(self, base_loan) -> None:
        plan = build_schedule(base_loan)
        assert len(plan.periods) == 360
        assert plan.periods[-1].outstanding == 0
        assert sum(p.principal for p in plan.periods) == base_loan.principal_initial
        assert plan.total_paid == plan.total_interest + base_loan.principal_initial
        assert plan.final_payoff_date == date(2054, 12, 15)

    def test_every_row_balances(self, base_loan) -> None:
        plan = build_schedule(base_loan)
        previous = base_loan.principal_outstanding
        for period in plan.periods:
            assert period.installment == period.principal + period.interest
            assert period.outstanding == previous - period.principal
            assert period.outstanding < previous
            previous = period.outstanding

    def test_building_twice_is_identical(self, base_loan) -> None:
        assert build_schedule(base_loan) == build_schedule(base_loan)

    def test_prorated_first_period(self, make_loan) -> None:
        plan = build_schedule(make_loan(prorate_first_period=True))
        first = plan.periods[0]
        assert first.is_prorated
        assert first.accrual_days == 17
        assert first.interest == Decimal("251.51")
        assert not plan.periods[1].is_prorated
        assert plan.periods[-1].outstanding == 0

    def test_deferred_interest_capitalized(self, make_loan) -> None:
        plan = build_schedule(make_loan(deferred_first_payment_months=2))
        deferred = plan.periods[:2]
        assert all(p.is_deferred and p.installment == 0 for p in deferred)
        assert deferred[0].outstanding == Decimal("180450.00")
        assert deferred[1].interest == Decimal("451.13")
        assert plan.capitalized_interest == Decimal("901.13")
        assert plan.periods[-1].outstanding == 0

    def test_deferred_interest_waived(self, make_loan) -> None:
        plan = build_schedule(
            make_loan(deferred_first_payment_months=2, deferred_interest=DeferredInterest.WAIVE)
        )
        assert plan.periods[1].interest == 0
        assert plan.periods[1].outstanding == Decimal("180000")
        assert plan.capitalized_interest == 0
        assert plan.periods[2].installment == french_payment(Decimal("180000"), Decimal("0.03"), 358)

    def test_interest_only_rows(self, make_loan) -> None:
        plan = build_schedule(make_loan(interest_only_months=12))
        for period in plan.periods[:12]:
            assert period.is_interest_only
            assert period.installment == Decimal("450.00")
            assert period.principal == 0
            assert period.outstanding == Decimal("180000")
        assert plan.periods[12].installment == french_payment(Decimal("180000"), Decimal("0.03"), 348)

    def test_balance_falls_every_amortizing_period(self, make_loan) -> None:
        plan = build_schedule(make_loan(interest_only_months=12))
        previous = Decimal("180000")
        for period in plan.periods[12:]:
            assert period.outstanding < previous
            previous = period.outstanding

    def test_mixed_rate_recomputes_annuity(self, make_loan) -> None:
        loan = make_loan(
            rate=MixedRate(
                fixed_tranche_months=24,
                fixed_tranche_rate=Decimal("0.02"),
                variable=VariableRate(current_index_value=Decimal("0.025"), spread=Decimal("0.01")),
            )
        )
        plan = build_schedule(loan)
        before, after = plan.periods[23], plan.periods[24]
        assert before.annual_rate == Decimal("0.02")
        assert after.annual_rate == Decimal("0.035")
        assert after.installment == french_payment(before.outstanding, Decimal("0.035"), 336)
        assert after.installment > before.installment
        assert plan.periods[-1].outstanding == 0

    def test_starts_after_settled_periods(self, base_loan, make_loan) -> None:
        reference = build_schedule(base_loan)
        settled = reference.periods[11]
        loan = make_loan(periods_elapsed=12, principal_outstanding=settled.outstanding)
        plan = build_schedule(loan)
        assert plan.periods[0].number == 13
        assert len(plan.periods) == 348
        assert plan.periods[-1].outstanding == 0

    def test_paid_off_loan_has_empty_plan(self, make_loan) -> None:
        plan = build_schedule(make_loan(principal_outstanding=Decimal("0")))
        assert plan.periods == ()
        assert plan.final_payoff_date is None

    def test_no_amortizing_period(self, make_loan) -> None:
        with pytest.raises(ConfigurationError):
            build_schedule(make_loan(interest_only_months=360))

    def test_zero_term(self, make_loan) -> None:
        with pytest.raises(ConfigurationError):
            build_schedule(make_loan(total_term_months=0))


class TestPlanSummary:
    """Tests for the headline figures of a plan."""

    def test_summary_of_reference_plan(self, base_loan) -> None:
        plan = build_schedule(base_loan)
        summary = plan_summary(base_loan, plan)
        assert summary["loan_id"] == "loan-test-001"
        assert summary["installment"] == Decimal("758.89")
        assert summary["current_rate"] == Decimal("0.03")
        assert summary["payments"] == 360
        assert summary["total_interest"] == plan.total_interest
        assert summary["first_charge_date"] == date(2025, 1, 15)

    def test_summary_skips_interest_only_rows(self, make_loan) -> None:
        loan = make_loan(interest_only_months=12)
        summary = plan_summary(loan, build_schedule(loan))
        assert summary["installment"] > Decimal("450.00")
