"""Data models for the loan engine.

This module defines dataclasses representing the entities the engine works
with: the loan aggregate and its rate configuration, the bonifications a
lender grants for keeping certain products, and the derived values the engine
produces (payment periods, payment plans, prepayment simulations and
bonification reports). Money amounts and rates are ``Decimal``; rates are
annual fractions, so ``Decimal("0.03")`` means 3 %.

Rate configurations and bonification rules are small tagged variants: each
variant carries only the fields its kind needs and exposes a ``kind`` class
attribute used for serialization.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date
from decimal import Decimal
from enum import Enum
from typing import ClassVar, List, Optional, Tuple, Union

ZERO = Decimal("0")


class RateType(str, Enum):
    FIXED = "FIXED"
    VARIABLE = "VARIABLE"
    MIXED = "MIXED"


class BonificationStatus(str, Enum):
    PENDING = "PENDING"
    MET = "MET"
    AT_RISK = "AT_RISK"
    LOST = "LOST"


class RuleKind(str, Enum):
    PAYROLL = "PAYROLL"
    CARD = "CARD"
    HOME_INSURANCE = "HOME_INSURANCE"
    LIFE_INSURANCE = "LIFE_INSURANCE"
    PENSION_PLAN = "PENSION_PLAN"
    ALARM = "ALARM"
    OTHER = "OTHER"


class ReductionMode(str, Enum):
    """What a partial prepayment reduces: the remaining term or the installment."""

    REDUCE_TERM = "REDUCE_TERM"
    REDUCE_PAYMENT = "REDUCE_PAYMENT"


class DeferredInterest(str, Enum):
    """Treatment of interest accrued while the first payment is deferred."""

    CAPITALIZE = "CAPITALIZE"
    WAIVE = "WAIVE"


class Phase(str, Enum):
    DEFERRED = "DEFERRED"
    INTEREST_ONLY = "INTEREST_ONLY"
    AMORTIZING = "AMORTIZING"


# ---------------------------------------------------------------------------
# Rate configuration
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class FixedRate:
    """A fixed nominal annual rate for the whole life of the loan."""

    kind: ClassVar[RateType] = RateType.FIXED

    annual_nominal_rate: Optional[Decimal]


@dataclass(frozen=True)
class VariableRate:
    """An index-linked rate: ``current_index_value + spread``.

    Attributes
    ----------
    reference_index: str
        Name of the reference index (e.g. ``"EURIBOR_12M"``).
    current_index_value: Optional[Decimal]
        Latest index value supplied by the caller. The engine never fetches
        index values; callers update this after each review.
    spread: Optional[Decimal]
        Margin added on top of the index.
    review_period_months: int
        Months between rate reviews.
    next_review_date: Optional[date]
        Next contractual review date, informational.
    """

    kind: ClassVar[RateType] = RateType.VARIABLE

    reference_index: str = "EURIBOR"
    current_index_value: Optional[Decimal] = None
    spread: Optional[Decimal] = None
    review_period_months: int = 12
    next_review_date: Optional[date] = None


@dataclass(frozen=True)
class MixedRate:
    """A fixed tranche followed by a variable remainder."""

    kind: ClassVar[RateType] = RateType.MIXED

    fixed_tranche_months: Optional[int]
    fixed_tranche_rate: Optional[Decimal]
    variable: Optional[VariableRate] = None


RateConfig = Union[FixedRate, VariableRate, MixedRate]


# ---------------------------------------------------------------------------
# Bonification rules
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class ComplianceFact:
    """Compliance data for one bonification, supplied by an external provider.

    Monthly sequences are ordered oldest first, so the last element is the
    most recent month.
    """

    monthly_amounts: Tuple[Decimal, ...] = ()
    monthly_counts: Tuple[int, ...] = ()
    active: Optional[bool] = None
    satisfied: Optional[bool] = None
    progress: str = ""
    missing: str = ""


def _amounts_at_least(amounts: Tuple[Decimal, ...], minimum: Decimal, months: int) -> Optional[bool]:
    window = amounts[-months:]
    if any(amount < minimum for amount in window):
        return False
    if len(window) < months:
        return None
    return True


@dataclass(frozen=True)
class PayrollRule:
    """Payroll deposited every month for at least ``min_monthly_amount``."""

    kind: ClassVar[RuleKind] = RuleKind.PAYROLL

    min_monthly_amount: Decimal

    def complies(self, fact: ComplianceFact, lookback_months: int) -> Optional[bool]:
        return _amounts_at_least(fact.monthly_amounts, self.min_monthly_amount, max(lookback_months, 1))


@dataclass(frozen=True)
class CardRule:
    """Card usage: an average monthly transaction count or a yearly spend.

    Either threshold is enough; with no thresholds the card only needs to be
    active.
    """

    kind: ClassVar[RuleKind] = RuleKind.CARD

    min_monthly_transactions: Optional[int] = None
    min_annual_amount: Optional[Decimal] = None

    def complies(self, fact: ComplianceFact, lookback_months: int) -> Optional[bool]:
        checks: List[Optional[bool]] = []
        if self.min_monthly_transactions is not None:
            months = max(lookback_months, 1)
            window = fact.monthly_counts[-months:]
            if len(window) < months:
                checks.append(None)
            else:
                average = Decimal(sum(window)) / Decimal(len(window))
                checks.append(average >= self.min_monthly_transactions)
        if self.min_annual_amount is not None:
            window_amounts = fact.monthly_amounts[-12:]
            spent = sum(window_amounts, ZERO)
            if spent >= self.min_annual_amount:
                checks.append(True)
            else:
                checks.append(False if len(window_amounts) >= 12 else None)
        if not checks:
            return fact.active
        if True in checks:
            return True
        if None in checks:
            return None
        return False


@dataclass(frozen=True)
class HomeInsuranceRule:
    kind: ClassVar[RuleKind] = RuleKind.HOME_INSURANCE

    def complies(self, fact: ComplianceFact, lookback_months: int) -> Optional[bool]:
        return fact.active


@dataclass(frozen=True)
class LifeInsuranceRule:
    kind: ClassVar[RuleKind] = RuleKind.LIFE_INSURANCE

    def complies(self, fact: ComplianceFact, lookback_months: int) -> Optional[bool]:
        return fact.active


@dataclass(frozen=True)
class PensionPlanRule:
    """Pension plan kept active, optionally with a minimum monthly contribution."""

    kind: ClassVar[RuleKind] = RuleKind.PENSION_PLAN

    min_monthly_contribution: Optional[Decimal] = None

    def complies(self, fact: ComplianceFact, lookback_months: int) -> Optional[bool]:
        if fact.active is False:
            return False
        if self.min_monthly_contribution is not None and fact.monthly_amounts:
            return _amounts_at_least(
                fact.monthly_amounts, self.min_monthly_contribution, max(lookback_months, 1)
            )
        return fact.active


@dataclass(frozen=True)
class AlarmRule:
    kind: ClassVar[RuleKind] = RuleKind.ALARM

    def complies(self, fact: ComplianceFact, lookback_months: int) -> Optional[bool]:
        return fact.active


@dataclass(frozen=True)
class OtherRule:
    """Free-text condition; compliance is decided by the fact provider."""

    kind: ClassVar[RuleKind] = RuleKind.OTHER

    description: str = ""

    def complies(self, fact: ComplianceFact, lookback_months: int) -> Optional[bool]:
        return fact.satisfied


BonificationRule = Union[
    PayrollRule,
    CardRule,
    HomeInsuranceRule,
    LifeInsuranceRule,
    PensionPlanRule,
    AlarmRule,
    OtherRule,
]


@dataclass(frozen=True)
class Bonification:
    """A contractual rate discount conditioned on keeping a banking product.

    Attributes
    ----------
    rate_reduction_points: Decimal
        Discount as a rate fraction (``Decimal("0.003")`` = 0.30 pp).
    lookback_months: int
        Window over which compliance is judged.
    status: BonificationStatus
        Last known status.
    lost_since: Optional[date]
        When a ``LOST`` bonification stopped complying. Periods accruing before
        this date keep the discount.
    selected: bool
        Whether the borrower intends to comply (used when planning at signing).
    grace_months: int
        Months from signing during which the discount is granted regardless.
    """

    id: str
    name: str
    rate_reduction_points: Decimal
    rule: BonificationRule
    lookback_months: int = 12
    estimated_annual_cost: Decimal = ZERO
    status: BonificationStatus = BonificationStatus.PENDING
    lost_since: Optional[date] = None
    selected: bool = True
    grace_months: int = 0


# ---------------------------------------------------------------------------
# Loan aggregate
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class Prepayment:
    """A partial prepayment already applied to a loan."""

    date: date
    amount: Decimal
    mode: ReductionMode
    fee: Decimal


@dataclass
class Loan:
    """A mortgage and every contractual term the engine needs.

    ``principal_outstanding`` is the balance after ``periods_elapsed``
    installments have been settled; at origination both are the initial
    principal and 0. Schedules are built from that point forward.
    """

    id: str
    name: str
    principal_initial: Decimal
    principal_outstanding: Decimal
    signing_date: date
    total_term_months: int
    rate: RateConfig
    property_id: Optional[str] = None
    periods_elapsed: int = 0

    # irregular payments
    interest_only_months: int = 0
    deferred_first_payment_months: int = 0
    deferred_interest: DeferredInterest = DeferredInterest.CAPITALIZE
    prorate_first_period: bool = False
    charge_in_arrears: bool = False

    # billing
    charge_day_of_month: Optional[int] = None
    debit_account_id: Optional[str] = None

    # costs
    partial_prepayment_fee_rate: Decimal = ZERO
    full_cancellation_fee_rate: Decimal = ZERO
    fixed_operation_cost: Decimal = ZERO

    # bonifications
    bonifications: List[Bonification] = field(default_factory=list)
    max_bonification_rate: Optional[Decimal] = None
    bonification_review_period_months: int = 12
    max_bonification_end_date: Optional[date] = None
    period_end_date: Optional[date] = None
    evaluation_date: Optional[date] = None
    evaluation_offset_days: int = 0

    prepayments: List[Prepayment] = field(default_factory=list)

    @property
    def charge_day(self) -> int:
        """Billing day of month, defaulting to the signing day."""
        return self.charge_day_of_month or self.signing_date.day


# ---------------------------------------------------------------------------
# Derived values
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class PaymentPeriod:
    """One row of a payment plan.

    Deferred rows carry a zero installment; their interest is either
    capitalized (``outstanding`` grows) or waived (interest is zero).
    """

    number: int
    label: str
    accrual_start: date
    accrual_end: date
    accrual_days: int
    charge_date: date
    annual_rate: Decimal
    installment: Decimal
    interest: Decimal
    principal: Decimal
    outstanding: Decimal
    is_prorated: bool = False
    is_interest_only: bool = False
    is_deferred: bool = False


@dataclass(frozen=True)
class PaymentPlan:
    """An ordered, immutable schedule derived from a loan snapshot."""

    loan_id: str
    periods: Tuple[PaymentPeriod, ...]
    total_interest: Decimal
    total_paid: Decimal
    capitalized_interest: Decimal
    final_payoff_date: Optional[date]


@dataclass(frozen=True)
class SimulationResult:
    """Outcome of a partial-prepayment what-if. Never persisted on the loan.

    Installments are the amortizing annuity, so a prepayment made during the
    deferred or interest-only phase reports the installment charged once
    amortization starts. Term counts include the deferred and interest-only
    periods still ahead. ``cancellation_fee`` is only quoted when the amount
    settles the whole balance.
    """

    mode: ReductionMode
    amount: Decimal
    prepayment_date: date
    fee: Decimal
    principal_before: Decimal
    principal_after: Decimal
    current_installment: Decimal
    new_installment: Decimal
    remaining_term_months: int
    new_term_months: int
    months_saved: int
    original_payoff_date: Optional[date]
    new_payoff_date: Optional[date]
    interest_saved: Decimal
    break_even_months: Optional[int]
    cancellation_fee: Optional[Decimal] = None


@dataclass(frozen=True)
class LossImpact:
    additional_cost_per_month: Decimal
    additional_cost_per_year: Decimal


@dataclass(frozen=True)
class BonificationReport:
    """Evaluated state of a single bonification."""

    bonification_id: str
    name: str
    status: BonificationStatus
    previous_status: BonificationStatus
    economic_impact: Optional[LossImpact] = None
    evaluation_date: Optional[date] = None
    application_date: Optional[date] = None
    days_until_evaluation: Optional[int] = None
    progress: str = ""
    missing: str = ""

    @property
    def changed(self) -> bool:
        return self.status != self.previous_status


@dataclass(frozen=True)
class BonificationAlert:
    bonification_id: str
    alert_type: str
    days_until_evaluation: int
    message: str
    economic_impact: LossImpact
    action_required: str


@dataclass(frozen=True)
class BonificationSavingsLine:
    bonification_id: str
    name: str
    reduction_points: Decimal
    savings_per_month: Decimal
    savings_per_year: Decimal


@dataclass(frozen=True)
class BonificationSavings:
    base_rate: Decimal
    bonified_rate: Decimal
    base_payment: Decimal
    bonified_payment: Decimal
    total_savings_per_month: Decimal
    total_savings_per_year: Decimal
    breakdown: Tuple[BonificationSavingsLine, ...] = ()


@dataclass(frozen=True)
class BonificationEvaluation:
    as_of: date
    statuses: Tuple[BonificationReport, ...]
    alerts: Tuple[BonificationAlert, ...]
    savings: BonificationSavings


@dataclass(frozen=True)
class NextChange:
    date: date
    kind: str  # "PROMOTION_END" or "ANNUAL_REVIEW"
    description: str


@dataclass(frozen=True)
class BonificationIntent:
    """Rate a borrower can expect at signing given the bonifications they select."""

    points_requested: Decimal
    points_applied: Decimal
    resulting_rate: Optional[Decimal]
    resulting_spread: Optional[Decimal]
    applied: Tuple[Bonification, ...]
    resolved_incompatibilities: Tuple[str, ...] = ()
    next_change: Optional[NextChange] = None
