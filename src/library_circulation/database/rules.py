"""
Consistency rules for books, loans, fines and members.

Each rule sees one row write (``MutationEvent``) and either corrects the new
row, rejects the write, or performs a side effect in the same transaction.

Rejections:
- ``ValidationError``: malformed email, copy counters outside
  ``0..total_copies``, loan dates out of order
- ``IntegrityViolation``: deleting a book whose loans are still in flight

Side effects (never fail the triggering write on their own):
- overdue status correction on loan update
- availability decrement on issue and increment on return
- one fine per loan when it turns overdue
- an audit row per membership status change
"""

import logging
import re

from sqlalchemy import func, select

from .events import Action, MutationEvent, Phase, registry, snapshot_row
from .repository import IntegrityViolation, ValidationError
from .schema import (
    Book,
    Fine,
    Loan,
    LoanStatusEnum,
    Member,
    MemberStatusAudit,
    PaymentStatusEnum,
)

logger = logging.getLogger(__name__)

EMAIL_PATTERN = re.compile(r"[A-Za-z0-9._%+-]+@[A-Za-z0-9.-]+\.[A-Za-z]{2,}")

IN_FLIGHT_STATUSES = (LoanStatusEnum.ACTIVE, LoanStatusEnum.OVERDUE)


def is_valid_email(email: str | None) -> bool:
    """Check an address against the ``local@domain.tld`` shape members must use."""
    return email is not None and EMAIL_PATTERN.fullmatch(email) is not None


def _write_book_counter(event: MutationEvent, book_id: int, delta: int) -> None:
    """Shift a book's availability counter through the Book write path."""
    book = event.session.get(Book, book_id, with_for_update=True)
    if book is None:
        raise IntegrityViolation(f"Book {book_id} referenced by loan does not exist")

    old = snapshot_row(book)
    book.available_copies += delta
    registry.dispatch(
        Phase.BEFORE,
        MutationEvent(
            session=event.session,
            entity=Book,
            action=Action.UPDATE,
            target=book,
            old=old,
            today=event.today,
            daily_rate=event.daily_rate,
        ),
    )


# === Books ===


@registry.register(Phase.BEFORE, Book, Action.INSERT, Action.UPDATE)
def check_available_copies(event: MutationEvent) -> None:
    """Reject any book row whose availability counter leaves ``0..total_copies``."""
    book = event.target
    if book.available_copies < 0:
        raise ValidationError("Available copies cannot be negative")
    if book.available_copies > book.total_copies:
        raise ValidationError("Available copies cannot exceed total copies")


@registry.register(Phase.BEFORE, Book, Action.DELETE)
def prevent_book_deletion(event: MutationEvent) -> None:
    """Refuse to delete a book while any of its loans is Active or Overdue."""
    book = event.target
    in_flight = event.session.execute(
        select(func.count())
        .select_from(Loan)
        .where(Loan.book_id == book.id, Loan.status.in_(IN_FLIGHT_STATUSES))
    ).scalar()

    if in_flight:
        logger.warning("Refusing to delete book %s with %d loans in flight", book.id, in_flight)
        raise IntegrityViolation("Cannot delete book: Active loans exist for this book")


# === Members ===


@registry.register(Phase.BEFORE, Member, Action.INSERT, Action.UPDATE)
def validate_member_email(event: MutationEvent) -> None:
    if event.action is Action.UPDATE and not event.changed("email"):
        return
    if not is_valid_email(event.target.email):
        raise ValidationError("Invalid email format")


@registry.register(Phase.AFTER, Member, Action.UPDATE)
def log_member_status_change(event: MutationEvent) -> None:
    """Append one audit row when the membership status value actually changed."""
    if not event.changed("membership_status"):
        return

    member = event.target
    old_status = event.old_value("membership_status")
    event.session.add(
        MemberStatusAudit(
            member_id=member.id,
            old_status=old_status,
            new_status=member.membership_status,
        )
    )
    logger.info(
        "Member %s status changed: %s -> %s",
        member.id,
        getattr(old_status, "value", old_status),
        getattr(member.membership_status, "value", member.membership_status),
    )


# === Loans ===


@registry.register(Phase.BEFORE, Loan, Action.INSERT, Action.UPDATE)
def check_loan_dates(event: MutationEvent) -> None:
    loan = event.target
    if loan.due_date <= loan.loan_date:
        raise ValidationError("Due date must be after loan date")
    if loan.return_date is not None and loan.return_date < loan.loan_date:
        raise ValidationError("Return date cannot be before loan date")


@registry.register(Phase.BEFORE, Loan, Action.UPDATE)
def check_overdue_loan(event: MutationEvent) -> None:
    """Force an unreturned loan past its due date into Overdue.

    This is a correction, not a rejection: the write goes through with the
    status fixed. A loan already Returned is left alone even when it carries
    no return date.
    """
    loan = event.target
    if (
        loan.return_date is None
        and loan.due_date < event.today
        and loan.status not in (LoanStatusEnum.OVERDUE, LoanStatusEnum.RETURNED)
    ):
        logger.info(
            "Loan %s is past due (%s < %s), marking Overdue",
            loan.id,
            loan.due_date,
            event.today,
        )
        loan.status = LoanStatusEnum.OVERDUE


@registry.register(Phase.BEFORE, Loan, Action.UPDATE)
def keep_returned_loans_closed(event: MutationEvent) -> None:
    if (
        event.old_value("status") == LoanStatusEnum.RETURNED
        and event.target.status != LoanStatusEnum.RETURNED
    ):
        raise ValidationError("Returned loans cannot change status")


@registry.register(Phase.AFTER, Loan, Action.INSERT)
def claim_copy_on_issue(event: MutationEvent) -> None:
    # Historical loans recorded as already returned never held a copy.
    if event.target.status == LoanStatusEnum.RETURNED:
        return
    _write_book_counter(event, event.target.book_id, -1)


@registry.register(Phase.AFTER, Loan, Action.UPDATE)
def update_book_on_return(event: MutationEvent) -> None:
    """Give the copy back exactly once, on the transition into Returned."""
    loan = event.target
    if (
        event.old_value("status") != LoanStatusEnum.RETURNED
        and loan.status == LoanStatusEnum.RETURNED
    ):
        _write_book_counter(event, loan.book_id, +1)
        logger.info("Loan %s returned, book %s copy released", loan.id, loan.book_id)


@registry.register(Phase.AFTER, Loan, Action.UPDATE)
def create_overdue_fine(event: MutationEvent) -> None:
    """Raise the loan's single fine on its transition into Overdue.

    The amount is fixed at creation: days past due times the daily rate.
    """
    loan = event.target
    if not (
        event.old_value("status") != LoanStatusEnum.OVERDUE
        and loan.status == LoanStatusEnum.OVERDUE
    ):
        return

    existing = event.session.execute(
        select(func.count()).select_from(Fine).where(Fine.loan_id == loan.id)
    ).scalar()
    if existing:
        logger.debug("Loan %s already has a fine, skipping", loan.id)
        return

    days_late = max((event.today - loan.due_date).days, 0)
    amount = round(days_late * event.daily_rate, 2)
    event.session.add(
        Fine(
            loan_id=loan.id,
            member_id=loan.member_id,
            fine_amount=amount,
            fine_date=event.today,
            payment_status=PaymentStatusEnum.UNPAID,
        )
    )
    logger.info("Fine of %.2f created for overdue loan %s (%d days late)", amount, loan.id, days_late)
