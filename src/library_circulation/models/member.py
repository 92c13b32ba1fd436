"""
Member models: library members, staff, and the membership status audit trail.
"""

from datetime import date, datetime
from enum import Enum

from pydantic import BaseModel, ConfigDict, Field, field_validator


class MembershipStatus(str, Enum):
    """Enumeration of possible membership statuses."""

    ACTIVE = "Active"
    INACTIVE = "Inactive"
    SUSPENDED = "Suspended"


def _enum_value(v):
    # ORM rows hand back the storage enum; compare on its value.
    return getattr(v, "value", v)


class Member(BaseModel):
    """
    Represents a library member who can borrow books.

    The email address has already passed the format rule by the time a
    member exists, so it is carried here as a plain string.
    """

    id: int = Field(..., description="Unique identifier for the member")
    first_name: str = Field(..., min_length=1, max_length=50, examples=["John"])
    last_name: str = Field(..., min_length=1, max_length=50, examples=["Smith"])

    email: str = Field(
        ...,
        description="Email address for member notifications",
        examples=["john.smith@example.com"],
    )

    phone: str | None = Field(None, max_length=15, examples=["555-123-4567"])
    address: str | None = Field(None, examples=["123 Main St, Anytown"])

    membership_date: date = Field(
        ...,
        description="Date when the member joined the library",
        examples=["2023-01-15"],
    )

    membership_status: MembershipStatus = Field(
        default=MembershipStatus.ACTIVE,
        description="Current status of the membership",
    )

    created_at: datetime | None = None

    @field_validator("membership_status", mode="before")
    @classmethod
    def unwrap_status(cls, v):
        return _enum_value(v)

    @property
    def full_name(self) -> str:
        return f"{self.first_name} {self.last_name}"

    @property
    def is_active(self) -> bool:
        return self.membership_status == MembershipStatus.ACTIVE

    model_config = ConfigDict(
        from_attributes=True,
        use_enum_values=True,
        json_schema_extra={
            "example": {
                "id": 1,
                "first_name": "John",
                "last_name": "Smith",
                "email": "john.smith@example.com",
                "phone": "555-123-4567",
                "membership_date": "2023-01-15",
                "membership_status": "Active",
            }
        },
    )


class Staff(BaseModel):
    """A librarian who can process loans."""

    id: int
    first_name: str
    last_name: str
    email: str
    phone: str | None = None
    position: str | None = None
    hire_date: date
    salary: float | None = Field(None, ge=0.0)
    created_at: datetime | None = None

    model_config = ConfigDict(from_attributes=True)


class MemberStatusAudit(BaseModel):
    """One append-only entry of the membership status trail."""

    id: int
    member_id: int
    old_status: MembershipStatus | None = None
    new_status: MembershipStatus | None = None
    changed_at: datetime

    @field_validator("old_status", "new_status", mode="before")
    @classmethod
    def unwrap_status(cls, v):
        return _enum_value(v)

    model_config = ConfigDict(from_attributes=True, use_enum_values=True, frozen=True)
