"""Billing calendar for a loan.

Period ``i`` (0-based) accrues over the calendar month ``i`` months after the
signing month; period 0 starts on the signing date itself. The installment is
charged in the following month when the loan charges in arrears, or in the
accrual month otherwise, on the billing day clipped to the month's length.
"""

from __future__ import annotations

from datetime import date
from typing import Optional, Tuple

from .data_models import Loan
from .utils import add_months, clip_day, end_of_month


def accrual_month(loan: Loan, index: int) -> date:
    """First day of the calendar month in which period ``index`` accrues."""
    return add_months(loan.signing_date.replace(day=1), index)


def accrual_window(loan: Loan, index: int) -> Tuple[date, date]:
    month = accrual_month(loan, index)
    start = loan.signing_date if index == 0 else month
    return start, end_of_month(month)


def charge_date(loan: Loan, index: int) -> date:
    """Date on which the installment of period ``index`` is debited."""
    start, _ = accrual_window(loan, index)
    month = accrual_month(loan, index)
    if loan.charge_in_arrears:
        month = add_months(month, 1)
    charged = clip_day(month.year, month.month, loan.charge_day)
    return max(charged, start)


def periods_settled_by(loan: Loan, on_date: date) -> int:
    """Number of periods whose charge date falls on or before ``on_date``.

    Never less than ``loan.periods_elapsed``: settled periods stay settled.
    """
    settled = loan.periods_elapsed
    while settled < loan.total_term_months and charge_date(loan, settled) <= on_date:
        settled += 1
    return settled


def final_charge_date(loan: Loan) -> Optional[date]:
    if loan.total_term_months <= 0:
        return None
    return charge_date(loan, loan.total_term_months - 1)
