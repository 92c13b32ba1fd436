"""
Member repository implementation for the Library Circulation service.

Member writes are checked by two rules:

1. **Email format**: a new member, or a member whose email changes, must
   carry a ``local@domain.tld`` address
2. **Status audit**: every change of membership status appends one row to
   ``member_status_audit``; edits that leave the status alone append nothing
"""

import logging
from datetime import date
from typing import Any

from pydantic import BaseModel, Field
from sqlalchemy import select

from ..database.schema import Member as MemberDB
from ..database.schema import MembershipStatusEnum
from ..database.schema import MemberStatusAudit as MemberStatusAuditDB
from ..database.session import safe_query
from ..models.member import Member as MemberModel
from ..models.member import MemberStatusAudit as MemberStatusAuditModel
from .repository import BaseRepository, DuplicateError

logger = logging.getLogger(__name__)


class MemberCreateSchema(BaseModel):
    """Schema for creating a new member.

    The email is deliberately a plain string here; its format is enforced by
    the member rules so every write path gets the same check.
    """

    first_name: str = Field(..., min_length=1, max_length=50)
    last_name: str = Field(..., min_length=1, max_length=50)
    email: str = Field(..., max_length=100)
    phone: str | None = Field(default=None, max_length=15)
    address: str | None = None
    membership_date: date | None = None
    membership_status: MembershipStatusEnum = MembershipStatusEnum.ACTIVE


class MemberUpdateSchema(BaseModel):
    """Schema for updating a member - all fields optional."""

    first_name: str | None = None
    last_name: str | None = None
    email: str | None = None
    phone: str | None = None
    address: str | None = None
    membership_status: MembershipStatusEnum | None = None


class MemberRepository(
    BaseRepository[MemberDB, MemberCreateSchema, MemberUpdateSchema, MemberModel]
):
    """Repository for library members and their status history."""

    @property
    def model_class(self):
        return MemberDB

    @property
    def response_schema(self):
        return MemberModel

    def _create_values(self, data: MemberCreateSchema) -> dict[str, Any]:
        values = data.model_dump()
        if values["membership_date"] is None:
            values["membership_date"] = self.today()
        return values

    def create(self, data: MemberCreateSchema) -> MemberModel:
        """
        Register a new member.

        Raises:
            DuplicateError: If the email is already registered
            ValidationError: If the email is malformed
        """
        if self.get_by_email(data.email) is not None:
            raise DuplicateError(f"Member with email {data.email} already exists")
        return super().create(data)

    def get_by_email(self, email: str) -> MemberModel | None:
        query = select(MemberDB).where(MemberDB.email == email)
        member = safe_query(
            self.session,
            lambda s: s.execute(query).scalar_one_or_none(),
            "Failed to get member by email",
        )
        return self._to_response_model(member) if member else None

    def change_status(self, member_id: int, status: MembershipStatusEnum) -> MemberModel:
        """
        Set a member's status.

        Setting the status it already has is accepted and leaves no audit row.

        Raises:
            NotFoundError: If the member doesn't exist
        """
        member = self._require_db_obj(member_id, for_update=True)
        self._update_row(
            member,
            {"membership_status": MembershipStatusEnum(status)},
            operation="change_status",
        )
        self.session.refresh(member)
        return self._to_response_model(member)

    def get_status_history(self, member_id: int) -> list[MemberStatusAuditModel]:
        """Audit trail of a member's status changes, oldest first."""
        query = (
            select(MemberStatusAuditDB)
            .where(MemberStatusAuditDB.member_id == member_id)
            .order_by(MemberStatusAuditDB.changed_at, MemberStatusAuditDB.id)
        )
        rows = safe_query(
            self.session,
            lambda s: s.execute(query).scalars().all(),
            "Failed to get member status history",
        )
        return [MemberStatusAuditModel.model_validate(row, from_attributes=True) for row in rows]

    def get_by_status(self, status: MembershipStatusEnum) -> list[MemberModel]:
        query = (
            select(MemberDB)
            .where(MemberDB.membership_status == status)
            .order_by(MemberDB.last_name, MemberDB.first_name)
        )
        members = safe_query(
            self.session,
            lambda s: s.execute(query).scalars().all(),
            "Failed to get members by status",
        )
        return [self._to_response_model(member) for member in members]
