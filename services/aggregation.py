"""Monthly/daily aggregation of a user's expense list.

Everything here is a pure function of the full list and a reference day,
recomputed from scratch on every snapshot.
"""
import datetime as dt
from typing import Dict, Iterable, List, Tuple

from models.dashboard import DashboardSummary, DashboardView, MonthGroup, PageState
from models.expense import Expense


def month_start(day: dt.date) -> dt.date:
    return day.replace(day=1)


def is_same_month(day: dt.date, today: dt.date) -> bool:
    return (day.year, day.month) == (today.year, today.month)


def _day_of(expense: Expense, today: dt.date) -> dt.date:
    # A record with neither date nor createdAt has not been timestamped yet
    return expense.effective_date or today


def partition(expenses: Iterable[Expense], today: dt.date) -> Tuple[List[Expense], List[MonthGroup]]:
    """
    Split expenses into this month's and the older ones grouped by month.

    Input order is kept inside each partition and group. Groups come back
    most recent month first.
    """
    current: List[Expense] = []
    groups: Dict[dt.date, MonthGroup] = {}
    for expense in expenses:
        day = _day_of(expense, today)
        if is_same_month(day, today):
            current.append(expense)
            continue
        key = month_start(day)
        if key not in groups:
            groups[key] = MonthGroup(month=key)
        groups[key].expenses.append(expense)

    past = sorted(groups.values(), key=lambda group: group.month, reverse=True)
    return current, past


def summarize(expenses: Iterable[Expense], today: dt.date) -> DashboardSummary:
    current, past = partition(expenses, today)

    monthly_total = 0.0
    monthly_cash = 0.0
    monthly_upi = 0.0
    daily_total = 0.0
    for expense in current:
        monthly_total += expense.amount
        if expense.payment_method == "cash":
            monthly_cash += expense.amount
        elif expense.payment_method == "upi":
            monthly_upi += expense.amount
        if _day_of(expense, today) == today:
            daily_total += expense.amount

    return DashboardSummary(
        current_month=current,
        past_months=past,
        monthly_total=monthly_total,
        monthly_cash_total=monthly_cash,
        monthly_upi_total=monthly_upi,
        daily_total=daily_total,
    )


def build_dashboard_view(
    expenses: Iterable[Expense],
    today: dt.date,
    page: int = 1,
    page_size: int = 5,
) -> DashboardView:
    """Summarize and cut the requested (clamped) page out of the current month."""
    summary = summarize(expenses, today)
    pagination = PageState.create(len(summary.current_month), page_size, page)
    return DashboardView(
        monthly_total=summary.monthly_total,
        monthly_cash_total=summary.monthly_cash_total,
        monthly_upi_total=summary.monthly_upi_total,
        daily_total=summary.daily_total,
        current_month=pagination.slice(summary.current_month),
        pagination=pagination,
        past_months=summary.past_months,
    )
