"""
Library Circulation Models.

Pydantic models for every persisted entity. Repositories return these
instead of ORM rows so callers never hold a live database object.
"""

from .book import Author, Book, Category
from .circulation import Fine, Loan, LoanStatus, PaymentStatus, Reservation, ReservationStatus
from .member import Member, MembershipStatus, MemberStatusAudit, Staff

__all__ = [
    "Author",
    "Book",
    "Category",
    "Fine",
    "Loan",
    "LoanStatus",
    "Member",
    "MemberStatusAudit",
    "MembershipStatus",
    "PaymentStatus",
    "Reservation",
    "ReservationStatus",
    "Staff",
]
