"""
Circulation models for the Library Circulation service.

- Loan: a book borrowed by a member (Active -> Overdue -> Returned)
- Fine: the single penalty raised when a loan turns overdue
- Reservation: a member's hold on a book with no copy on the shelf
"""

from datetime import date, datetime
from enum import Enum

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator


class LoanStatus(str, Enum):
    """Status of a loan."""

    ACTIVE = "Active"
    RETURNED = "Returned"
    OVERDUE = "Overdue"


class PaymentStatus(str, Enum):
    """Payment status of a fine."""

    UNPAID = "Unpaid"
    PAID = "Paid"
    WAIVED = "Waived"


class ReservationStatus(str, Enum):
    """Status of a reservation."""

    PENDING = "Pending"
    FULFILLED = "Fulfilled"
    CANCELLED = "Cancelled"


def _enum_value(v):
    return getattr(v, "value", v)


class Loan(BaseModel):
    """
    Represents a loan of one copy of a book to a member.

    The status shown is the status last written; a loan only turns Overdue
    when it is next updated after its due date passes.
    """

    id: int = Field(..., description="Unique identifier for the loan")
    book_id: int = Field(..., description="Book on loan")
    member_id: int = Field(..., description="Member holding the book")
    staff_id: int | None = Field(None, description="Staff member who issued the loan")

    loan_date: date = Field(..., description="Date the book was issued", examples=["2024-01-01"])
    due_date: date = Field(..., description="Date the book is due back", examples=["2024-01-15"])
    return_date: date | None = Field(None, description="Date the book came back")

    status: LoanStatus = Field(
        default=LoanStatus.ACTIVE,
        description="Current status of the loan",
    )

    created_at: datetime | None = None

    @field_validator("status", mode="before")
    @classmethod
    def unwrap_status(cls, v):
        return _enum_value(v)

    @model_validator(mode="after")
    def validate_dates(self) -> "Loan":
        """Validate date relationships."""
        if self.due_date <= self.loan_date:
            raise ValueError("Due date must be after loan date")
        if self.return_date and self.return_date < self.loan_date:
            raise ValueError("Return date cannot be before loan date")
        return self

    @property
    def is_returned(self) -> bool:
        return self.status == LoanStatus.RETURNED

    def days_overdue(self, today: date | None = None) -> int:
        """Days past the due date, counting to the return date once returned."""
        end = self.return_date or today or date.today()
        return max(0, (end - self.due_date).days)

    @property
    def loan_period_days(self) -> int:
        return (self.due_date - self.loan_date).days

    model_config = ConfigDict(
        from_attributes=True,
        use_enum_values=True,
        json_schema_extra={
            "example": {
                "id": 1,
                "book_id": 1,
                "member_id": 1,
                "staff_id": 1,
                "loan_date": "2024-01-01",
                "due_date": "2024-01-15",
                "return_date": None,
                "status": "Active",
            }
        },
    )


class Fine(BaseModel):
    """
    Represents the fine raised for an overdue loan.

    The amount is fixed when the fine is created and is not recomputed.
    """

    id: int
    loan_id: int
    member_id: int
    fine_amount: float = Field(..., ge=0.0, examples=[9.0])
    fine_date: date
    payment_status: PaymentStatus = PaymentStatus.UNPAID
    payment_date: date | None = None
    created_at: datetime | None = None

    @field_validator("payment_status", mode="before")
    @classmethod
    def unwrap_status(cls, v):
        return _enum_value(v)

    @model_validator(mode="after")
    def validate_payment_date(self) -> "Fine":
        if self.payment_date and self.payment_date < self.fine_date:
            raise ValueError("Payment date cannot be before fine date")
        return self

    @property
    def is_outstanding(self) -> bool:
        return self.payment_status == PaymentStatus.UNPAID

    model_config = ConfigDict(from_attributes=True, use_enum_values=True)


class Reservation(BaseModel):
    """Represents a member's hold on a book."""

    id: int
    book_id: int
    member_id: int
    reservation_date: date
    status: ReservationStatus = ReservationStatus.PENDING
    created_at: datetime | None = None

    @field_validator("status", mode="before")
    @classmethod
    def unwrap_status(cls, v):
        return _enum_value(v)

    model_config = ConfigDict(from_attributes=True, use_enum_values=True)
