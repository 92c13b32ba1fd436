"""
SQLAlchemy database schema for the Library Circulation service.

The persisted schema is the only bit-exact external contract of the system:
table and column names, types and CHECK constraints below. Cross-row
consistency (overdue marking, availability bookkeeping, fine creation,
status auditing) is not attached to the tables as engine hooks; it is
dispatched explicitly by the repositories through ``database.events``.
"""

import enum

from sqlalchemy import (
    CheckConstraint,
    Column,
    Date,
    DateTime,
    Enum,
    Float,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
)
from sqlalchemy.orm import declarative_base, relationship
from sqlalchemy.sql import func

Base = declarative_base()


class MembershipStatusEnum(str, enum.Enum):
    """Database enum for membership status."""

    ACTIVE = "Active"
    INACTIVE = "Inactive"
    SUSPENDED = "Suspended"


class LoanStatusEnum(str, enum.Enum):
    """Database enum for loan status."""

    ACTIVE = "Active"
    RETURNED = "Returned"
    OVERDUE = "Overdue"


class PaymentStatusEnum(str, enum.Enum):
    """Database enum for fine payment status."""

    UNPAID = "Unpaid"
    PAID = "Paid"
    WAIVED = "Waived"


class ReservationStatusEnum(str, enum.Enum):
    """Database enum for reservation status."""

    PENDING = "Pending"
    FULFILLED = "Fulfilled"
    CANCELLED = "Cancelled"


def _enum(enum_cls: type[enum.Enum]) -> Enum:
    # Persist the human-readable values ("Active"), not the member names.
    return Enum(enum_cls, values_callable=lambda e: [m.value for m in e])


class Author(Base):
    """Authors table - people credited with books in the catalog."""

    __tablename__ = "authors"

    id = Column(Integer, primary_key=True, autoincrement=True)
    first_name = Column(String(50), nullable=False)
    last_name = Column(String(50), nullable=False)
    birth_year = Column(Integer, nullable=True)
    nationality = Column(String(50), nullable=True)
    created_at = Column(DateTime, nullable=False, default=func.now())

    books = relationship("Book", back_populates="author")

    __table_args__ = (Index("idx_author_name", "last_name", "first_name"),)

    @property
    def full_name(self) -> str:
        return f"{self.first_name} {self.last_name}"


class Category(Base):
    """Categories table - book classifications."""

    __tablename__ = "categories"

    id = Column(Integer, primary_key=True, autoincrement=True)
    category_name = Column(String(50), nullable=False, unique=True)
    description = Column(Text, nullable=True)
    created_at = Column(DateTime, nullable=False, default=func.now())

    books = relationship("Book", back_populates="category")


class Book(Base):
    """
    Books table - the inventory, with live availability tracking.

    ``available_copies`` is the availability counter: decremented when a loan
    is issued, incremented when a loan is returned, never outside
    ``0..total_copies``.
    """

    __tablename__ = "books"

    id = Column(Integer, primary_key=True, autoincrement=True)
    title = Column(String(200), nullable=False)
    isbn = Column(String(13), nullable=False, unique=True)
    author_id = Column(Integer, ForeignKey("authors.id", ondelete="SET NULL"), nullable=True)
    category_id = Column(Integer, ForeignKey("categories.id", ondelete="SET NULL"), nullable=True)
    publication_year = Column(Integer, nullable=True)
    publisher = Column(String(100), nullable=True)
    total_copies = Column(Integer, nullable=False, default=1)
    available_copies = Column(Integer, nullable=False, default=1)
    price = Column(Float, nullable=True)
    created_at = Column(DateTime, nullable=False, default=func.now())

    author = relationship("Author", back_populates="books")
    category = relationship("Category", back_populates="books")
    loans = relationship("Loan", back_populates="book", cascade="all")
    reservations = relationship("Reservation", back_populates="book", cascade="all")

    __table_args__ = (
        Index("idx_title", "title"),
        Index("idx_isbn", "isbn"),
        Index("idx_author", "author_id"),
        Index("idx_category", "category_id"),
        CheckConstraint("available_copies >= 0", name="check_available_copies_non_negative"),
        CheckConstraint(
            "available_copies <= total_copies", name="check_available_not_exceed_total"
        ),
    )


class Member(Base):
    """Members table - library member profiles and membership status."""

    __tablename__ = "members"

    id = Column(Integer, primary_key=True, autoincrement=True)
    first_name = Column(String(50), nullable=False)
    last_name = Column(String(50), nullable=False)
    email = Column(String(100), nullable=False, unique=True)
    phone = Column(String(15), nullable=True)
    address = Column(Text, nullable=True)
    membership_date = Column(Date, nullable=False)
    membership_status = Column(
        _enum(MembershipStatusEnum), nullable=False, default=MembershipStatusEnum.ACTIVE
    )
    created_at = Column(DateTime, nullable=False, default=func.now())

    loans = relationship("Loan", back_populates="member", cascade="all")
    fines = relationship("Fine", back_populates="member", cascade="all")
    reservations = relationship("Reservation", back_populates="member", cascade="all")

    __table_args__ = (
        Index("idx_member_email", "email"),
        Index("idx_member_status", "membership_status"),
        Index("idx_member_name", "last_name", "first_name"),
    )

    @property
    def full_name(self) -> str:
        return f"{self.first_name} {self.last_name}"


class Staff(Base):
    """Staff table - librarians who process loans."""

    __tablename__ = "staff"

    id = Column(Integer, primary_key=True, autoincrement=True)
    first_name = Column(String(50), nullable=False)
    last_name = Column(String(50), nullable=False)
    email = Column(String(100), nullable=False, unique=True)
    phone = Column(String(15), nullable=True)
    position = Column(String(50), nullable=True)
    hire_date = Column(Date, nullable=False)
    salary = Column(Float, nullable=True)
    created_at = Column(DateTime, nullable=False, default=func.now())

    loans = relationship("Loan", back_populates="staff")

    __table_args__ = (
        Index("idx_staff_email", "email"),
        Index("idx_staff_position", "position"),
    )


class Loan(Base):
    """
    Loans table - a book borrowed by a member.

    Lifecycle: Active -> (Overdue) -> Returned. Returned is terminal.
    """

    __tablename__ = "loans"

    id = Column(Integer, primary_key=True, autoincrement=True)
    book_id = Column(Integer, ForeignKey("books.id", ondelete="CASCADE"), nullable=False)
    member_id = Column(Integer, ForeignKey("members.id", ondelete="CASCADE"), nullable=False)
    staff_id = Column(Integer, ForeignKey("staff.id", ondelete="SET NULL"), nullable=True)
    loan_date = Column(Date, nullable=False)
    due_date = Column(Date, nullable=False)
    return_date = Column(Date, nullable=True)
    status = Column(_enum(LoanStatusEnum), nullable=False, default=LoanStatusEnum.ACTIVE)
    created_at = Column(DateTime, nullable=False, default=func.now())

    book = relationship("Book", back_populates="loans")
    member = relationship("Member", back_populates="loans")
    staff = relationship("Staff", back_populates="loans")
    fines = relationship("Fine", back_populates="loan", cascade="all")

    __table_args__ = (
        Index("idx_loan_status", "status"),
        Index("idx_loan_member", "member_id"),
        Index("idx_loan_book", "book_id"),
        Index("idx_loan_dates", "loan_date", "due_date"),
        CheckConstraint("due_date > loan_date", name="check_due_after_loan"),
        CheckConstraint(
            "return_date IS NULL OR return_date >= loan_date", name="check_return_after_loan"
        ),
    )


class Fine(Base):
    """Fines table - the one penalty raised when a loan becomes overdue."""

    __tablename__ = "fines"

    id = Column(Integer, primary_key=True, autoincrement=True)
    loan_id = Column(Integer, ForeignKey("loans.id", ondelete="CASCADE"), nullable=False)
    member_id = Column(Integer, ForeignKey("members.id", ondelete="CASCADE"), nullable=False)
    fine_amount = Column(Float, nullable=False)
    fine_date = Column(Date, nullable=False)
    payment_status = Column(
        _enum(PaymentStatusEnum), nullable=False, default=PaymentStatusEnum.UNPAID
    )
    payment_date = Column(Date, nullable=True)
    created_at = Column(DateTime, nullable=False, default=func.now())

    loan = relationship("Loan", back_populates="fines")
    member = relationship("Member", back_populates="fines")

    __table_args__ = (
        Index("idx_fine_status", "payment_status"),
        Index("idx_fine_member", "member_id"),
        CheckConstraint("fine_amount >= 0", name="check_fine_non_negative"),
        CheckConstraint(
            "payment_date IS NULL OR payment_date >= fine_date", name="check_payment_after_fine"
        ),
    )


class Reservation(Base):
    """Reservations table - hold queue for books with no available copy."""

    __tablename__ = "reservations"

    id = Column(Integer, primary_key=True, autoincrement=True)
    book_id = Column(Integer, ForeignKey("books.id", ondelete="CASCADE"), nullable=False)
    member_id = Column(Integer, ForeignKey("members.id", ondelete="CASCADE"), nullable=False)
    reservation_date = Column(Date, nullable=False)
    status = Column(
        _enum(ReservationStatusEnum), nullable=False, default=ReservationStatusEnum.PENDING
    )
    created_at = Column(DateTime, nullable=False, default=func.now())

    book = relationship("Book", back_populates="reservations")
    member = relationship("Member", back_populates="reservations")

    __table_args__ = (
        Index("idx_reservation_status", "status"),
        Index("idx_reservation_book", "book_id"),
        Index("idx_reservation_member", "member_id"),
    )


class MemberStatusAudit(Base):
    """
    Member status audit table - append-only trail of membership changes.

    Rows are written by the status audit rule only; nothing updates or
    deletes them.
    """

    __tablename__ = "member_status_audit"

    id = Column(Integer, primary_key=True, autoincrement=True)
    member_id = Column(Integer, nullable=False)
    old_status = Column(_enum(MembershipStatusEnum), nullable=True)
    new_status = Column(_enum(MembershipStatusEnum), nullable=True)
    changed_at = Column(DateTime, nullable=False, default=func.now())

    __table_args__ = (
        Index("idx_member", "member_id"),
        Index("idx_changed_at", "changed_at"),
    )
