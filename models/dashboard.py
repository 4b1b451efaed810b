"""Pydantic models for the derived dashboard views"""
import datetime as dt
import math
from typing import List, Sequence, TypeVar

from pydantic import BaseModel, ConfigDict, Field, computed_field, model_validator
from pydantic.alias_generators import to_camel

from models.expense import Expense

T = TypeVar("T")


class MonthGroup(BaseModel):
    """Expenses of one past calendar month; `month` is the first day of it."""
    month: dt.date
    expenses: List[Expense] = Field(default_factory=list)

    @computed_field
    @property
    def total(self) -> float:
        return sum(expense.amount for expense in self.expenses)


class DashboardSummary(BaseModel):
    """
    Current-month vs. past-months partition of an expense list and the
    running totals over the current month.
    """
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    current_month: List[Expense] = Field(default_factory=list)
    past_months: List[MonthGroup] = Field(default_factory=list)
    monthly_total: float = 0.0
    monthly_cash_total: float = 0.0
    monthly_upi_total: float = 0.0
    daily_total: float = 0.0


class PageState(BaseModel):
    """
    Which page of the current-month table is shown.

    Immutable: navigation returns a new state and never leaves
    [1, total_pages]. Constructing an out-of-range page directly is rejected,
    `create` clamps instead.
    """
    model_config = ConfigDict(frozen=True, populate_by_name=True)

    page: int = Field(1, ge=1)
    page_size: int = Field(5, gt=0, alias="pageSize")
    total_items: int = Field(0, ge=0, alias="totalItems")

    @computed_field(alias="totalPages")
    @property
    def total_pages(self) -> int:
        return max(1, math.ceil(self.total_items / self.page_size))

    @model_validator(mode="after")
    def check_page_in_range(self) -> "PageState":
        if self.page > self.total_pages:
            raise ValueError(f"page {self.page} is out of range 1..{self.total_pages}")
        return self

    @classmethod
    def create(cls, total_items: int, page_size: int, page: int = 1) -> "PageState":
        total_pages = max(1, math.ceil(total_items / page_size))
        return cls(
            page=min(max(page, 1), total_pages),
            page_size=page_size,
            total_items=total_items,
        )

    @property
    def has_next(self) -> bool:
        return self.page < self.total_pages

    @property
    def has_previous(self) -> bool:
        return self.page > 1

    def next(self) -> "PageState":
        if not self.has_next:
            return self
        return self.model_copy(update={"page": self.page + 1})

    def previous(self) -> "PageState":
        if not self.has_previous:
            return self
        return self.model_copy(update={"page": self.page - 1})

    def slice(self, items: Sequence[T]) -> List[T]:
        start = (self.page - 1) * self.page_size
        return list(items[start:start + self.page_size])


class DashboardView(BaseModel):
    """What the dashboard renders: totals, one page of this month, older months."""
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    monthly_total: float
    monthly_cash_total: float
    monthly_upi_total: float
    daily_total: float
    current_month: List[Expense]
    pagination: PageState
    past_months: List[MonthGroup]
