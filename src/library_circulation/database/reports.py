"""
Reporting views over the circulation tables.

Each report is a read-only query returning Pydantic rows. Day counts are
computed against the repository's clock, the same one the rules use, so a
report and a write made with the same ``today`` always agree.
"""

import logging
from collections.abc import Callable
from datetime import date

from pydantic import BaseModel
from sqlalchemy import case, func, select
from sqlalchemy.orm import Session

from ..config import get_config
from .schema import (
    Author,
    Book,
    Category,
    Fine,
    Loan,
    LoanStatusEnum,
    Member,
    MembershipStatusEnum,
    PaymentStatusEnum,
    Reservation,
    ReservationStatusEnum,
)
from .session import safe_query

logger = logging.getLogger(__name__)


class InventoryRow(BaseModel):
    book_id: int
    title: str
    isbn: str
    author: str | None
    category_name: str | None
    publication_year: int | None
    publisher: str | None
    total_copies: int
    available_copies: int
    copies_on_loan: int
    availability_status: str
    price: float | None


class ActiveMemberRow(BaseModel):
    member_id: int
    member_name: str
    email: str
    phone: str | None
    membership_date: date
    days_as_member: int
    active_loans: int
    unpaid_fines: float


class OverdueLoanRow(BaseModel):
    loan_id: int
    book_title: str
    member_name: str
    email: str
    phone: str | None
    loan_date: date
    due_date: date
    days_overdue: int
    calculated_fine: float
    recorded_fine: float
    payment_status: str


class PopularityRow(BaseModel):
    book_id: int
    title: str
    author: str | None
    category_name: str | None
    times_borrowed: int
    total_copies: int
    available_copies: int
    borrows_per_copy: float | None


class FinancialSummaryRow(BaseModel):
    month: str
    total_fines: int
    total_fine_amount: float
    collected: float
    pending: float
    waived: float
    collection_rate_percent: float | None


class DailyActivity(BaseModel):
    books_issued_today: int
    books_returned_today: int
    currently_active_loans: int
    total_overdue: int
    active_members: int
    total_available_books: int
    pending_reservations: int
    total_unpaid_fines: float


def availability_status(available_copies: int, low_stock_threshold: int = 2) -> str:
    """Shelf status label for a book's availability counter."""
    if available_copies == 0:
        return "Not Available"
    if available_copies <= low_stock_threshold:
        return "Low Stock"
    return "Available"


def _full_name(first: str | None, last: str | None) -> str | None:
    if first is None and last is None:
        return None
    return f"{first or ''} {last or ''}".strip()


class ReportRepository:
    """Read-only reporting queries."""

    def __init__(
        self,
        session: Session,
        today: Callable[[], date] | None = None,
        daily_rate: float | None = None,
    ):
        config = get_config()
        self.session = session
        self._today = today or date.today
        self.daily_rate = config.fine_daily_rate if daily_rate is None else daily_rate
        self.low_stock_threshold = config.low_stock_threshold

    def today(self) -> date:
        return self._today()

    def _rows(self, query, error_msg: str):
        return safe_query(self.session, lambda s: s.execute(query).all(), error_msg)

    def current_inventory(self) -> list[InventoryRow]:
        """Every book with its copies on loan and shelf status."""
        query = (
            select(Book, Author.first_name, Author.last_name, Category.category_name)
            .outerjoin(Author, Book.author_id == Author.id)
            .outerjoin(Category, Book.category_id == Category.id)
            .order_by(Book.id)
        )
        return [
            InventoryRow(
                book_id=book.id,
                title=book.title,
                isbn=book.isbn,
                author=_full_name(first, last),
                category_name=category_name,
                publication_year=book.publication_year,
                publisher=book.publisher,
                total_copies=book.total_copies,
                available_copies=book.available_copies,
                copies_on_loan=book.total_copies - book.available_copies,
                availability_status=availability_status(
                    book.available_copies, self.low_stock_threshold
                ),
                price=book.price,
            )
            for book, first, last, category_name in self._rows(query, "Failed to build inventory")
        ]

    def active_members(self) -> list[ActiveMemberRow]:
        """
        Active members with their open loan count and unpaid fine total.

        Loans and fines are aggregated in separate subqueries so one does
        not multiply the other.
        """
        loan_counts = (
            select(Loan.member_id, func.count(Loan.id).label("active_loans"))
            .where(Loan.status == LoanStatusEnum.ACTIVE)
            .group_by(Loan.member_id)
            .subquery()
        )
        unpaid = (
            select(Fine.member_id, func.sum(Fine.fine_amount).label("unpaid_fines"))
            .where(Fine.payment_status == PaymentStatusEnum.UNPAID)
            .group_by(Fine.member_id)
            .subquery()
        )
        query = (
            select(
                Member,
                func.coalesce(loan_counts.c.active_loans, 0),
                func.coalesce(unpaid.c.unpaid_fines, 0),
            )
            .outerjoin(loan_counts, loan_counts.c.member_id == Member.id)
            .outerjoin(unpaid, unpaid.c.member_id == Member.id)
            .where(Member.membership_status == MembershipStatusEnum.ACTIVE)
            .order_by(Member.id)
        )

        today = self.today()
        return [
            ActiveMemberRow(
                member_id=member.id,
                member_name=member.full_name,
                email=member.email,
                phone=member.phone,
                membership_date=member.membership_date,
                days_as_member=(today - member.membership_date).days,
                active_loans=active_loans,
                unpaid_fines=round(float(unpaid_fines), 2),
            )
            for member, active_loans, unpaid_fines in self._rows(
                query, "Failed to list active members"
            )
        ]

    def overdue_loans(self) -> list[OverdueLoanRow]:
        """Overdue loans with contact details and fine status, most overdue first."""
        query = (
            select(Loan, Book.title, Member, Fine.fine_amount, Fine.payment_status)
            .join(Book, Loan.book_id == Book.id)
            .join(Member, Loan.member_id == Member.id)
            .outerjoin(Fine, Fine.loan_id == Loan.id)
            .where(Loan.status == LoanStatusEnum.OVERDUE)
        )

        today = self.today()
        rows = []
        for loan, title, member, fine_amount, payment_status in self._rows(
            query, "Failed to list overdue loans"
        ):
            days_overdue = (today - loan.due_date).days
            rows.append(
                OverdueLoanRow(
                    loan_id=loan.id,
                    book_title=title,
                    member_name=member.full_name,
                    email=member.email,
                    phone=member.phone,
                    loan_date=loan.loan_date,
                    due_date=loan.due_date,
                    days_overdue=days_overdue,
                    calculated_fine=round(days_overdue * self.daily_rate, 2),
                    recorded_fine=fine_amount or 0.0,
                    payment_status=payment_status.value if payment_status else "Not Recorded",
                )
            )
        rows.sort(key=lambda row: (-row.days_overdue, row.loan_id))
        return rows

    def book_popularity(self) -> list[PopularityRow]:
        """Books ranked by how often they have been borrowed."""
        times_borrowed = func.count(Loan.id).label("times_borrowed")
        query = (
            select(Book, Author.first_name, Author.last_name, Category.category_name, times_borrowed)
            .outerjoin(Loan, Loan.book_id == Book.id)
            .outerjoin(Author, Book.author_id == Author.id)
            .outerjoin(Category, Book.category_id == Category.id)
            .group_by(Book.id, Author.id, Category.id)
            .order_by(times_borrowed.desc(), Book.id)
        )
        return [
            PopularityRow(
                book_id=book.id,
                title=book.title,
                author=_full_name(first, last),
                category_name=category_name,
                times_borrowed=count,
                total_copies=book.total_copies,
                available_copies=book.available_copies,
                borrows_per_copy=round(count / book.total_copies, 2) if book.total_copies else None,
            )
            for book, first, last, category_name, count in self._rows(
                query, "Failed to rank books"
            )
        ]

    def financial_summary(self) -> list[FinancialSummaryRow]:
        """Fine totals per ``YYYY-MM`` of the fine date, newest month first."""

        def amount_when(status: PaymentStatusEnum):
            return func.coalesce(
                func.sum(case((Fine.payment_status == status, Fine.fine_amount), else_=0)), 0
            )

        month = func.strftime("%Y-%m", Fine.fine_date).label("month")
        query = (
            select(
                month,
                func.count(Fine.id),
                func.coalesce(func.sum(Fine.fine_amount), 0),
                amount_when(PaymentStatusEnum.PAID),
                amount_when(PaymentStatusEnum.UNPAID),
                amount_when(PaymentStatusEnum.WAIVED),
            )
            .group_by(month)
            .order_by(month.desc())
        )

        summary = []
        for month_key, count, total, collected, pending, waived in self._rows(
            query, "Failed to summarize fines"
        ):
            rate = round(collected * 100.0 / total, 2) if total else None
            summary.append(
                FinancialSummaryRow(
                    month=month_key,
                    total_fines=count,
                    total_fine_amount=round(float(total), 2),
                    collected=round(float(collected), 2),
                    pending=round(float(pending), 2),
                    waived=round(float(waived), 2),
                    collection_rate_percent=rate,
                )
            )
        return summary

    def daily_activity(self) -> DailyActivity:
        """Snapshot of today's circulation."""
        today = self.today()

        def scalar(query, what: str):
            return safe_query(self.session, lambda s: s.execute(query).scalar(), f"Failed to count {what}")

        def count(model, *criteria):
            return scalar(select(func.count()).select_from(model).where(*criteria), model.__tablename__)

        activity = DailyActivity(
            books_issued_today=count(Loan, Loan.loan_date == today),
            books_returned_today=count(Loan, Loan.return_date == today),
            currently_active_loans=count(Loan, Loan.status == LoanStatusEnum.ACTIVE),
            total_overdue=count(Loan, Loan.status == LoanStatusEnum.OVERDUE),
            active_members=count(Member, Member.membership_status == MembershipStatusEnum.ACTIVE),
            total_available_books=scalar(
                select(func.coalesce(func.sum(Book.available_copies), 0)), "available copies"
            ),
            pending_reservations=count(
                Reservation, Reservation.status == ReservationStatusEnum.PENDING
            ),
            total_unpaid_fines=round(
                float(
                    scalar(
                        select(func.coalesce(func.sum(Fine.fine_amount), 0)).where(
                            Fine.payment_status == PaymentStatusEnum.UNPAID
                        ),
                        "unpaid fines",
                    )
                ),
                2,
            ),
        )
        logger.debug("Daily activity for %s: %s", today, activity)
        return activity
