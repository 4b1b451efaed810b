"""Pydantic models for Expense data"""
import datetime as dt
from typing import Any, Dict, Iterable, Literal, Mapping, Optional, get_args

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic_core import PydanticCustomError

Category = Literal["food", "transport", "shopping", "bills", "other"]
PaymentMethod = Literal["cash", "upi"]

CATEGORIES = get_args(Category)
PAYMENT_METHODS = get_args(PaymentMethod)

# Earliest date the expense form accepts
MIN_EXPENSE_DATE = dt.date(1900, 1, 1)

# Messages shown next to the offending form input, keyed by wire field name
FIELD_MESSAGES = {
    "name": "Name must be at least 2 characters.",
    "amount": "Amount must be a positive number.",
    "category": "Select a valid category.",
    "paymentMethod": "Select a valid payment method.",
    "date": "Pick a valid date.",
}


class ExpenseInput(BaseModel):
    """
    Fields a user submits when adding or editing an expense.

    This is the form schema: the date range check lives here and not on
    the stored Expense, so older records outside the range still load.
    """
    model_config = ConfigDict(populate_by_name=True)

    name: str = Field(..., min_length=2)
    amount: float = Field(..., gt=0, allow_inf_nan=False)
    category: Category = "other"
    payment_method: PaymentMethod = Field("cash", alias="paymentMethod")
    date: dt.date = Field(default_factory=dt.date.today)

    @field_validator("date")
    @classmethod
    def check_date_range(cls, value: dt.date) -> dt.date:
        if value < MIN_EXPENSE_DATE or value > dt.date.today():
            raise PydanticCustomError(
                "date_range",
                "Date must be between 1900-01-01 and today.",
            )
        return value

    def to_document(self) -> Dict[str, Any]:
        """Mutable fields in their stored form (date as a midnight datetime for MongoDB)."""
        return {
            "name": self.name,
            "amount": self.amount,
            "category": self.category,
            "paymentMethod": self.payment_method,
            "date": dt.datetime.combine(self.date, dt.datetime.min.time()),
        }


class Expense(BaseModel):
    """
    Represents a single stored expense.
    """
    model_config = ConfigDict(populate_by_name=True, from_attributes=True)

    id: str
    name: str
    amount: float
    category: Category
    # Records written before payment methods existed carry no value
    payment_method: PaymentMethod = Field("cash", alias="paymentMethod")
    date: Optional[dt.date] = None
    created_at: Optional[dt.datetime] = Field(None, alias="createdAt")

    @property
    def effective_date(self) -> Optional[dt.date]:
        """The expense date, falling back to the insertion day for records without one."""
        if self.date is not None:
            return self.date
        if self.created_at is not None:
            return self.created_at.date()
        return None

    @classmethod
    def from_document(cls, doc: Mapping[str, Any]) -> "Expense":
        data = dict(doc)
        if "_id" in data:
            data["id"] = str(data.pop("_id"))
        data.pop("userId", None)
        if isinstance(data.get("date"), dt.datetime):
            data["date"] = data["date"].date()
        if data.get("paymentMethod") is None:
            data.pop("paymentMethod", None)
        return cls(**data)


def field_errors(errors: Iterable[Mapping[str, Any]]) -> Dict[str, str]:
    """
    Collapse pydantic error dicts into one message per form field.

    Accepts ValidationError.errors() as well as FastAPI's
    RequestValidationError.errors(), whose locations start with "body",
    "query" or "path".
    """
    result: Dict[str, str] = {}
    for err in errors:
        parts = [p for p in err.get("loc", ()) if p not in ("body", "query", "path")]
        field = str(parts[0]) if parts else "body"
        if field in result:
            continue
        if err.get("type") == "missing":
            result[field] = "This field is required."
        elif err.get("type") == "date_range":
            result[field] = err.get("msg", FIELD_MESSAGES["date"])
        else:
            result[field] = FIELD_MESSAGES.get(field, err.get("msg", "Invalid value."))
    return result
