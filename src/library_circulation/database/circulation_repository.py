"""
Circulation repository for the Library Circulation service.

Loans, fines and reservations. The loan write paths are where the
consistency rules do most of their work:

1. **Issue**: inserting a loan claims a copy, so a book with nothing on the
   shelf rejects the loan
2. **Access**: any update of an unreturned loan past its due date turns it
   Overdue, which raises the loan's one fine
3. **Return**: moving a loan into Returned gives the copy back, exactly once

Overdue is not detected on a schedule. ``refresh_overdue_loans`` is the
sweep a caller runs when it wants every late loan marked at once.
"""

import logging
from datetime import date, timedelta

from pydantic import BaseModel
from sqlalchemy import select

from ..config import get_config
from ..database.schema import Book as BookDB
from ..database.schema import Fine as FineDB
from ..database.schema import Loan as LoanDB
from ..database.schema import LoanStatusEnum
from ..database.schema import Member as MemberDB
from ..database.schema import MembershipStatusEnum, PaymentStatusEnum, ReservationStatusEnum
from ..database.schema import Reservation as ReservationDB
from ..database.session import safe_query
from ..models.circulation import Fine as FineModel
from ..models.circulation import Loan as LoanModel
from ..models.circulation import Reservation as ReservationModel
from .events import Action
from .repository import (
    BaseRepository,
    DuplicateError,
    NotFoundError,
    RepositoryException,
    ValidationError,
)
from .rules import IN_FLIGHT_STATUSES

logger = logging.getLogger(__name__)


class LoanCreateSchema(BaseModel):
    """Schema for issuing a loan.

    ``loan_date`` defaults to today and ``due_date`` to the configured loan
    period after it.
    """

    book_id: int
    member_id: int
    staff_id: int | None = None
    loan_date: date | None = None
    due_date: date | None = None


class LoanUpdateSchema(BaseModel):
    """Schema for updating a loan - all fields optional."""

    staff_id: int | None = None
    due_date: date | None = None
    return_date: date | None = None
    status: LoanStatusEnum | None = None


class ReservationCreateSchema(BaseModel):
    book_id: int
    member_id: int
    reservation_date: date | None = None


class CirculationRepository(
    BaseRepository[LoanDB, LoanCreateSchema, LoanUpdateSchema, LoanModel]
):
    """
    Repository for circulation operations.

    Loans are the primary entity; fines and reservations share the same
    session and write path.
    """

    @property
    def model_class(self):
        return LoanDB

    @property
    def response_schema(self):
        return LoanModel

    # === Loans ===

    def issue_loan(self, data: LoanCreateSchema) -> LoanModel:
        """
        Lend one copy of a book to a member.

        Raises:
            NotFoundError: If the book or member doesn't exist
            RepositoryException: If the member is not Active
            ValidationError: If no copy is available or the dates are out of order
        """
        book = self.session.get(BookDB, data.book_id)
        if book is None:
            raise NotFoundError(f"Book {data.book_id} not found")

        member = self.session.get(MemberDB, data.member_id)
        if member is None:
            raise NotFoundError(f"Member {data.member_id} not found")
        if member.membership_status != MembershipStatusEnum.ACTIVE:
            raise RepositoryException(
                f"Loan denied - membership of member {member.id} is "
                f"{member.membership_status.value}"
            )

        loan_date = data.loan_date or self.today()
        due_date = data.due_date or loan_date + timedelta(days=get_config().default_loan_days)

        loan = LoanDB(
            book_id=book.id,
            member_id=member.id,
            staff_id=data.staff_id,
            loan_date=loan_date,
            due_date=due_date,
            status=LoanStatusEnum.ACTIVE,
        )
        self._write(loan, Action.INSERT, operation="issue_loan")
        self.session.refresh(loan)
        logger.info("Issued loan %s: book %s to member %s", loan.id, book.id, member.id)
        return self._to_response_model(loan)

    def update_loan(self, loan_id: int, data: LoanUpdateSchema) -> LoanModel:
        """
        Update a loan's mutable fields.

        The overdue correction applies to every update, so the returned loan
        may carry a different status than the one requested. Moving a loan
        into Returned without a return date records today as the return date.
        """
        loan = self._require_db_obj(loan_id, for_update=True)
        values = data.model_dump(exclude_unset=True)
        if (
            values.get("status") == LoanStatusEnum.RETURNED
            and values.get("return_date") is None
            and loan.return_date is None
        ):
            values["return_date"] = self.today()

        self._update_row(loan, values, operation="update_loan")
        self.session.refresh(loan)
        return self._to_response_model(loan)

    def return_loan(self, loan_id: int, return_date: date | None = None) -> LoanModel:
        """
        Record a loan's return and release its copy.

        Raises:
            NotFoundError: If the loan doesn't exist
            RepositoryException: If the loan was already returned
            ValidationError: If the return date precedes the loan date
        """
        loan = self._require_db_obj(loan_id, for_update=True)
        if loan.status == LoanStatusEnum.RETURNED:
            raise RepositoryException(f"Loan {loan_id} has already been returned")

        self._update_row(
            loan,
            {"return_date": return_date or self.today(), "status": LoanStatusEnum.RETURNED},
            operation="return_loan",
        )
        self.session.refresh(loan)
        return self._to_response_model(loan)

    def refresh_loan(self, loan_id: int) -> LoanModel:
        """Touch a loan without changing it so the overdue rules can run."""
        loan = self._require_db_obj(loan_id, for_update=True)
        self._update_row(loan, {}, operation="refresh_loan")
        self.session.refresh(loan)
        return self._to_response_model(loan)

    def refresh_overdue_loans(self) -> list[LoanModel]:
        """
        Touch every unreturned loan whose due date has passed.

        Each loan is its own write. A loan whose write is rejected is logged
        and skipped; the others are still refreshed.

        Returns:
            The loans refreshed, all Overdue afterwards
        """
        query = (
            select(LoanDB.id)
            .where(
                LoanDB.return_date.is_(None),
                LoanDB.due_date < self.today(),
                LoanDB.status.in_(IN_FLIGHT_STATUSES),
            )
            .order_by(LoanDB.due_date, LoanDB.id)
        )
        loan_ids = safe_query(
            self.session,
            lambda s: s.execute(query).scalars().all(),
            "Failed to find past-due loans",
        )

        refreshed = []
        for loan_id in loan_ids:
            try:
                refreshed.append(self.refresh_loan(loan_id))
            except RepositoryException as e:
                logger.warning("Could not refresh loan %s: %s", loan_id, e)
        logger.info("Refreshed %d of %d past-due loans", len(refreshed), len(loan_ids))
        return refreshed

    def get_member_loans(self, member_id: int, active_only: bool = False) -> list[LoanModel]:
        query = select(LoanDB).where(LoanDB.member_id == member_id)
        if active_only:
            query = query.where(LoanDB.status.in_(IN_FLIGHT_STATUSES))
        query = query.order_by(LoanDB.loan_date.desc(), LoanDB.id.desc())

        loans = safe_query(
            self.session,
            lambda s: s.execute(query).scalars().all(),
            "Failed to get member loans",
        )
        return [self._to_response_model(loan) for loan in loans]

    # === Fines ===

    def _require_fine(self, fine_id: int) -> FineDB:
        fine = self.session.get(FineDB, fine_id, with_for_update=True)
        if fine is None:
            raise NotFoundError(f"Fine {fine_id} not found")
        return fine

    def get_fines_for_loan(self, loan_id: int) -> list[FineModel]:
        query = select(FineDB).where(FineDB.loan_id == loan_id).order_by(FineDB.id)
        fines = safe_query(
            self.session,
            lambda s: s.execute(query).scalars().all(),
            "Failed to get fines for loan",
        )
        return [FineModel.model_validate(fine, from_attributes=True) for fine in fines]

    def get_member_fines(self, member_id: int, unpaid_only: bool = False) -> list[FineModel]:
        query = select(FineDB).where(FineDB.member_id == member_id)
        if unpaid_only:
            query = query.where(FineDB.payment_status == PaymentStatusEnum.UNPAID)
        query = query.order_by(FineDB.fine_date, FineDB.id)

        fines = safe_query(
            self.session,
            lambda s: s.execute(query).scalars().all(),
            "Failed to get member fines",
        )
        return [FineModel.model_validate(fine, from_attributes=True) for fine in fines]

    def _settle_fine(
        self, fine_id: int, status: PaymentStatusEnum, payment_date: date | None
    ) -> FineModel:
        fine = self._require_fine(fine_id)
        if fine.payment_status != PaymentStatusEnum.UNPAID:
            raise RepositoryException(
                f"Fine {fine_id} is already {fine.payment_status.value}"
            )
        if payment_date is not None and payment_date < fine.fine_date:
            raise ValidationError("Payment date cannot be before fine date")

        self._update_row(
            fine,
            {"payment_status": status, "payment_date": payment_date},
            operation=f"{status.value.lower()}_fine",
        )
        self.session.refresh(fine)
        logger.info("Fine %s marked %s", fine_id, status.value)
        return FineModel.model_validate(fine, from_attributes=True)

    def pay_fine(self, fine_id: int, payment_date: date | None = None) -> FineModel:
        """
        Record payment of an unpaid fine.

        Raises:
            NotFoundError: If the fine doesn't exist
            RepositoryException: If the fine is not Unpaid
            ValidationError: If the payment date precedes the fine date
        """
        return self._settle_fine(fine_id, PaymentStatusEnum.PAID, payment_date or self.today())

    def waive_fine(self, fine_id: int) -> FineModel:
        """Forgive an unpaid fine. Waived fines carry no payment date."""
        return self._settle_fine(fine_id, PaymentStatusEnum.WAIVED, None)

    # === Reservations ===

    def create_reservation(self, data: ReservationCreateSchema) -> ReservationModel:
        """
        Place a hold on a book for a member.

        Raises:
            NotFoundError: If the book or member doesn't exist
            RepositoryException: If the member is not Active
            DuplicateError: If the member already holds a pending reservation
        """
        if self.session.get(BookDB, data.book_id) is None:
            raise NotFoundError(f"Book {data.book_id} not found")
        member = self.session.get(MemberDB, data.member_id)
        if member is None:
            raise NotFoundError(f"Member {data.member_id} not found")
        if member.membership_status != MembershipStatusEnum.ACTIVE:
            raise RepositoryException("Reservation denied - membership is not active")

        existing = safe_query(
            self.session,
            lambda s: s.execute(
                select(ReservationDB.id).where(
                    ReservationDB.book_id == data.book_id,
                    ReservationDB.member_id == data.member_id,
                    ReservationDB.status == ReservationStatusEnum.PENDING,
                )
            ).first(),
            "Failed to check existing reservations",
        )
        if existing:
            raise DuplicateError("Member already has a pending reservation for this book")

        reservation = ReservationDB(
            book_id=data.book_id,
            member_id=data.member_id,
            reservation_date=data.reservation_date or self.today(),
            status=ReservationStatusEnum.PENDING,
        )
        self._write(reservation, Action.INSERT, operation="create_reservation")
        self.session.refresh(reservation)
        return ReservationModel.model_validate(reservation, from_attributes=True)

    def _close_reservation(
        self, reservation_id: int, status: ReservationStatusEnum
    ) -> ReservationModel:
        reservation = self.session.get(ReservationDB, reservation_id, with_for_update=True)
        if reservation is None:
            raise NotFoundError(f"Reservation {reservation_id} not found")
        if reservation.status != ReservationStatusEnum.PENDING:
            raise RepositoryException(
                f"Reservation {reservation_id} is already {reservation.status.value}"
            )

        self._update_row(reservation, {"status": status}, operation=f"{status.value.lower()}_reservation")
        self.session.refresh(reservation)
        return ReservationModel.model_validate(reservation, from_attributes=True)

    def fulfill_reservation(self, reservation_id: int) -> ReservationModel:
        return self._close_reservation(reservation_id, ReservationStatusEnum.FULFILLED)

    def cancel_reservation(self, reservation_id: int) -> ReservationModel:
        return self._close_reservation(reservation_id, ReservationStatusEnum.CANCELLED)

    def get_reservation_queue(self, book_id: int) -> list[ReservationModel]:
        """Pending reservations for a book in the order they were placed."""
        query = (
            select(ReservationDB)
            .where(
                ReservationDB.book_id == book_id,
                ReservationDB.status == ReservationStatusEnum.PENDING,
            )
            .order_by(ReservationDB.reservation_date, ReservationDB.id)
        )
        reservations = safe_query(
            self.session,
            lambda s: s.execute(query).scalars().all(),
            "Failed to get reservation queue",
        )
        return [ReservationModel.model_validate(r, from_attributes=True) for r in reservations]
