"""
Tests for the consistency rules.

Each class covers one rule family, driven through the repositories the way
callers use them:
1. Inventory: availability stays within 0..total_copies
2. Loan lifecycle: overdue correction, terminal Returned state
3. Availability bookkeeping on issue and return
4. Fine generation: one fine per loan, fixed at creation
5. Book deletion guard
6. Member email format and status audit
"""

from datetime import date

import pytest
from sqlalchemy import func, select

from library_circulation.database import (
    Action,
    Book,
    BookUpdateSchema,
    CirculationRepository,
    Fine,
    IntegrityViolation,
    Loan,
    LoanStatusEnum,
    LoanUpdateSchema,
    MemberUpdateSchema,
    MembershipStatusEnum,
    MemberStatusAudit,
    MutationEvent,
    Phase,
    RepositoryException,
    ValidationError,
    registry,
    snapshot_row,
)
from library_circulation.database.rules import is_valid_email

from .conftest import TODAY

pytestmark = pytest.mark.rules


def count_rows(session, model, *criteria) -> int:
    return session.execute(select(func.count()).select_from(model).where(*criteria)).scalar()


class TestInventoryRule:
    """Books always satisfy 0 <= available_copies <= total_copies."""

    def test_new_book_starts_fully_available(self, make_book):
        book = make_book(total_copies=4)
        assert book.available_copies == 4

    def test_create_rejects_available_above_total(self, make_book, session):
        with pytest.raises(ValidationError, match="cannot exceed total copies"):
            make_book(total_copies=2, available_copies=3)

        assert count_rows(session, Book) == 0

    def test_update_rejects_total_below_available(self, make_book, book_repo):
        book = make_book(total_copies=3)

        with pytest.raises(ValidationError, match="cannot exceed total copies"):
            book_repo.update(book.id, BookUpdateSchema(total_copies=2))

        # The rejected write left the row as it was
        unchanged = book_repo.get_by_id(book.id)
        assert unchanged.total_copies == 3
        assert unchanged.available_copies == 3

    def test_update_rejects_negative_available(self, make_book, book_repo):
        book = make_book(total_copies=1)

        with pytest.raises(ValidationError, match="cannot be negative"):
            book_repo.update(book.id, BookUpdateSchema(available_copies=-1))

        assert book_repo.get_by_id(book.id).available_copies == 1

    def test_update_rejects_null_copy_count(self, make_book, book_repo, session):
        book = make_book(total_copies=3)

        with pytest.raises(ValidationError, match="total_copies cannot be set to null"):
            book_repo.update(book.id, BookUpdateSchema(total_copies=None))

        assert not session.dirty
        unchanged = book_repo.get_by_id(book.id)
        assert unchanged.total_copies == 3
        assert unchanged.available_copies == 3

    def test_null_for_optional_field_is_accepted(self, make_book, book_repo):
        book = make_book(publisher="Penguin")

        assert book_repo.update(book.id, BookUpdateSchema(publisher=None)).publisher is None

    def test_adjust_availability_is_checked(self, make_book, book_repo):
        book = make_book(total_copies=2)

        assert book_repo.adjust_availability(book.id, -2).available_copies == 0
        with pytest.raises(ValidationError):
            book_repo.adjust_availability(book.id, -1)
        with pytest.raises(ValidationError):
            book_repo.adjust_availability(book.id, 3)

        assert book_repo.get_by_id(book.id).available_copies == 0

    def test_valid_update_is_accepted(self, make_book, book_repo):
        book = make_book(total_copies=3)
        updated = book_repo.update(
            book.id, BookUpdateSchema(total_copies=5, available_copies=5)
        )
        assert (updated.total_copies, updated.available_copies) == (5, 5)


class TestLoanLifecycle:
    """Unreturned loans past their due date become Overdue when touched."""

    def test_issue_does_not_mark_overdue(self, make_book, make_member, make_loan):
        loan = make_loan(make_book(), make_member())

        # Overdue is only noticed on update, never on insert
        assert loan.status == "Active"

    def test_update_marks_past_due_loan_overdue(
        self, make_book, make_member, make_loan, circulation_repo
    ):
        loan = make_loan(make_book(), make_member())

        refreshed = circulation_repo.refresh_loan(loan.id)

        assert refreshed.status == "Overdue"
        assert refreshed.return_date is None

    def test_unrelated_update_also_corrects_status(
        self, make_book, make_member, make_loan, circulation_repo
    ):
        loan = make_loan(make_book(), make_member())

        updated = circulation_repo.update_loan(loan.id, LoanUpdateSchema(staff_id=None))

        assert updated.status == "Overdue"

    def test_loan_not_yet_due_stays_active(
        self, make_book, make_member, make_loan, circulation_repo
    ):
        loan = make_loan(
            make_book(), make_member(), loan_date=date(2024, 1, 5), due_date=date(2024, 1, 19)
        )

        assert circulation_repo.refresh_loan(loan.id).status == "Active"

    def test_due_today_is_not_overdue(self, make_book, make_member, make_loan, circulation_repo):
        loan = make_loan(make_book(), make_member(), loan_date=date(2024, 1, 1), due_date=TODAY)

        assert circulation_repo.refresh_loan(loan.id).status == "Active"

    def test_returned_loan_is_terminal(self, make_book, make_member, make_loan, circulation_repo):
        loan = make_loan(make_book(), make_member())
        circulation_repo.return_loan(loan.id)

        with pytest.raises(ValidationError, match="Returned loans cannot change status"):
            circulation_repo.update_loan(loan.id, LoanUpdateSchema(status=LoanStatusEnum.ACTIVE))

        with pytest.raises(RepositoryException, match="already been returned"):
            circulation_repo.return_loan(loan.id)

    def test_loan_dates_are_validated(self, make_book, make_member, make_loan, circulation_repo):
        book, member = make_book(), make_member()

        with pytest.raises(ValidationError, match="Due date must be after loan date"):
            make_loan(book, member, loan_date=TODAY, due_date=TODAY)

        loan = make_loan(book, member, loan_date=date(2024, 1, 5), due_date=date(2024, 1, 19))
        with pytest.raises(ValidationError, match="Return date cannot be before loan date"):
            circulation_repo.return_loan(loan.id, return_date=date(2024, 1, 1))

    def test_returned_status_without_return_date_records_today(
        self, make_book, make_member, make_loan, book_repo, circulation_repo
    ):
        book = make_book(total_copies=1)
        loan = make_loan(book, make_member())

        updated = circulation_repo.update_loan(
            loan.id, LoanUpdateSchema(status=LoanStatusEnum.RETURNED)
        )

        assert updated.status == "Returned"
        assert updated.return_date == TODAY
        assert book_repo.get_by_id(book.id).available_copies == 1

    def test_loan_returned_before_due_date_stays_returned(
        self, make_book, make_member, make_loan, session, circulation_repo
    ):
        loan = make_loan(make_book(), make_member())
        early = CirculationRepository(session, today=lambda: date(2023, 12, 20))
        early.update_loan(loan.id, LoanUpdateSchema(status=LoanStatusEnum.RETURNED))

        refreshed = circulation_repo.refresh_loan(loan.id)

        assert refreshed.status == "Returned"
        assert refreshed.return_date == date(2023, 12, 20)
        assert count_rows(session, Fine, Fine.loan_id == loan.id) == 0

    def test_returned_loan_without_return_date_is_not_corrected(
        self, make_book, make_member, make_loan, session, circulation_repo
    ):
        loan = make_loan(make_book(), make_member())
        # Rows written outside the repositories may lack a return date
        session.get(Loan, loan.id).status = LoanStatusEnum.RETURNED
        session.commit()

        refreshed = circulation_repo.refresh_loan(loan.id)

        assert refreshed.status == "Returned"
        assert refreshed.return_date is None
        assert count_rows(session, Fine, Fine.loan_id == loan.id) == 0

    def test_null_for_required_loan_field_is_rejected(
        self, make_book, make_member, make_loan, circulation_repo
    ):
        loan = make_loan(make_book(), make_member())

        with pytest.raises(ValidationError, match="due_date cannot be set to null"):
            circulation_repo.update_loan(loan.id, LoanUpdateSchema(due_date=None))

        unchanged = circulation_repo.get_by_id(loan.id)
        assert unchanged.due_date == date(2024, 1, 1)
        assert unchanged.status == "Active"


class TestAvailabilityBookkeeping:
    """Issuing claims one copy; returning gives exactly one back, once."""

    def test_issue_decrements_availability(self, make_book, make_member, make_loan, book_repo):
        book = make_book(total_copies=3)
        make_loan(book, make_member())

        assert book_repo.get_by_id(book.id).available_copies == 2

    def test_issue_without_copies_is_rejected(
        self, make_book, make_member, make_loan, book_repo, session
    ):
        book = make_book(total_copies=1)
        make_loan(book, make_member())

        with pytest.raises(ValidationError, match="cannot be negative"):
            make_loan(book, make_member())

        assert count_rows(session, Loan) == 1
        assert book_repo.get_by_id(book.id).available_copies == 0

    def test_return_increments_exactly_once(
        self, make_book, make_member, make_loan, circulation_repo, book_repo
    ):
        book = make_book(total_copies=3)
        loan = make_loan(book, make_member())
        assert book_repo.get_by_id(book.id).available_copies == 2

        returned = circulation_repo.return_loan(loan.id)
        assert returned.status == "Returned"
        assert returned.return_date == TODAY
        assert book_repo.get_by_id(book.id).available_copies == 3

        # An edit of the returned loan does not release another copy
        circulation_repo.update_loan(loan.id, LoanUpdateSchema(staff_id=None))
        assert book_repo.get_by_id(book.id).available_copies == 3

    def test_return_of_overdue_loan_releases_copy(
        self, make_book, make_member, make_loan, circulation_repo, book_repo
    ):
        book = make_book(total_copies=1)
        loan = make_loan(book, make_member())
        circulation_repo.refresh_loan(loan.id)

        circulation_repo.return_loan(loan.id)

        assert book_repo.get_by_id(book.id).available_copies == 1
        # The fine raised while overdue survives the return, no new one is added
        assert len(circulation_repo.get_fines_for_loan(loan.id)) == 1

    def test_return_that_would_overflow_is_rejected(
        self, make_book, make_member, make_loan, circulation_repo, book_repo
    ):
        book = make_book(total_copies=2)
        loan = make_loan(book, make_member())
        book_repo.adjust_availability(book.id, +1)

        with pytest.raises(ValidationError, match="cannot exceed total copies"):
            circulation_repo.return_loan(loan.id)

        # The whole return rolled back, not just the counter
        assert circulation_repo.get_by_id(loan.id).status == "Active"
        assert book_repo.get_by_id(book.id).available_copies == 2


class TestFineGeneration:
    """One fine per loan, raised on the transition into Overdue."""

    def test_overdue_scenario(self, make_book, make_member, make_loan, circulation_repo):
        # due 2024-01-01, today 2024-01-10, not returned
        member = make_member()
        loan = make_loan(make_book(), member)

        refreshed = circulation_repo.refresh_loan(loan.id)
        fines = circulation_repo.get_fines_for_loan(loan.id)

        assert refreshed.status == "Overdue"
        assert len(fines) == 1
        fine = fines[0]
        assert fine.fine_amount == pytest.approx(9.00)
        assert fine.payment_status == "Unpaid"
        assert fine.fine_date == TODAY
        assert fine.member_id == member.id
        assert fine.payment_date is None

    def test_fine_uses_configured_rate(self, make_book, make_member, make_loan, session, clock):
        from library_circulation.database import CirculationRepository  # noqa: PLC0415

        loan = make_loan(make_book(), make_member())
        repo = CirculationRepository(session, today=clock, daily_rate=0.25)

        repo.refresh_loan(loan.id)

        assert repo.get_fines_for_loan(loan.id)[0].fine_amount == pytest.approx(2.25)

    def test_rate_from_environment(
        self, make_book, make_member, make_loan, session, clock, monkeypatch
    ):
        from library_circulation.config import reset_config  # noqa: PLC0415
        from library_circulation.database import CirculationRepository  # noqa: PLC0415

        monkeypatch.setenv("LIBRARY_CIRCULATION_FINE_DAILY_RATE", "0.50")
        reset_config()
        loan = make_loan(make_book(), make_member())

        repo = CirculationRepository(session, today=clock)
        repo.refresh_loan(loan.id)

        assert repo.get_fines_for_loan(loan.id)[0].fine_amount == pytest.approx(4.50)

    def test_repeated_updates_create_one_fine(
        self, make_book, make_member, make_loan, circulation_repo, session
    ):
        loan = make_loan(make_book(), make_member())

        for _ in range(3):
            circulation_repo.refresh_loan(loan.id)

        assert count_rows(session, Fine, Fine.loan_id == loan.id) == 1

    def test_second_overdue_transition_creates_no_fine(
        self, make_book, make_member, make_loan, circulation_repo, session
    ):
        loan = make_loan(make_book(), make_member())
        circulation_repo.refresh_loan(loan.id)

        # Extend the loan back to Active, then let it lapse again
        extended = circulation_repo.update_loan(
            loan.id,
            LoanUpdateSchema(status=LoanStatusEnum.ACTIVE, due_date=date(2024, 1, 20)),
        )
        assert extended.status == "Active"

        lapsed = circulation_repo.update_loan(loan.id, LoanUpdateSchema(due_date=date(2024, 1, 5)))
        assert lapsed.status == "Overdue"

        assert count_rows(session, Fine, Fine.loan_id == loan.id) == 1
        assert circulation_repo.get_fines_for_loan(loan.id)[0].fine_amount == pytest.approx(9.00)

    def test_rule_invoked_twice_directly(self, make_book, make_member, make_loan, session):
        loan_row = session.get(Loan, make_loan(make_book(), make_member()).id)
        old = snapshot_row(loan_row)
        loan_row.status = LoanStatusEnum.OVERDUE
        session.flush()

        event = MutationEvent(
            session=session,
            entity=Loan,
            action=Action.UPDATE,
            target=loan_row,
            old=old,
            today=TODAY,
        )
        registry.dispatch(Phase.AFTER, event)
        session.flush()
        registry.dispatch(Phase.AFTER, event)
        session.commit()

        assert count_rows(session, Fine, Fine.loan_id == loan_row.id) == 1

    def test_returned_loan_never_gets_fine(
        self, make_book, make_member, make_loan, circulation_repo, session
    ):
        loan = make_loan(make_book(), make_member())

        circulation_repo.return_loan(loan.id)

        assert count_rows(session, Fine) == 0


class TestBookDeletion:
    def test_delete_refused_with_active_loan(self, make_book, make_member, make_loan, book_repo):
        book = make_book()
        make_loan(book, make_member())

        with pytest.raises(IntegrityViolation, match="Active loans exist for this book"):
            book_repo.delete(book.id)

        assert book_repo.get_by_id(book.id) is not None

    def test_delete_refused_with_overdue_loan(
        self, make_book, make_member, make_loan, book_repo, circulation_repo
    ):
        book = make_book()
        loan = make_loan(book, make_member())
        circulation_repo.refresh_loan(loan.id)

        with pytest.raises(IntegrityViolation):
            book_repo.delete(book.id)

    def test_delete_allowed_once_loans_returned(
        self, make_book, make_member, make_loan, book_repo, circulation_repo, session
    ):
        book = make_book()
        loan = make_loan(book, make_member())
        circulation_repo.return_loan(loan.id)

        assert book_repo.delete(book.id) is True
        assert book_repo.get_by_id(book.id) is None
        # Loan history goes with the book
        assert count_rows(session, Loan, Loan.book_id == book.id) == 0

    def test_delete_without_loans(self, make_book, book_repo):
        book = make_book()
        assert book_repo.delete(book.id) is True

    def test_delete_missing_book(self, book_repo):
        assert book_repo.delete(9999) is False


class TestMemberRules:
    @pytest.mark.parametrize(
        "email",
        ["a@b.co", "john.smith@example.com", "first+tag@mail.example.org", "x_y%z@host-1.io"],
    )
    def test_valid_emails(self, email):
        assert is_valid_email(email)

    @pytest.mark.parametrize(
        "email",
        ["not-an-email", "a@b", "a@b.c", "@example.com", "a b@example.com", "a@example.com.", ""],
    )
    def test_invalid_emails(self, email):
        assert not is_valid_email(email)

    def test_create_rejects_malformed_email(self, make_member, member_repo):
        with pytest.raises(ValidationError, match="Invalid email format"):
            make_member(email="not-an-email")

        assert member_repo.get_by_email("not-an-email") is None

    def test_create_accepts_short_email(self, make_member):
        assert make_member(email="a@b.co").email == "a@b.co"

    def test_update_rejects_malformed_email(self, make_member, member_repo):
        member = make_member()

        with pytest.raises(ValidationError):
            member_repo.update(member.id, MemberUpdateSchema(email="broken@"))

        assert member_repo.get_by_id(member.id).email == member.email

    def test_status_change_appends_one_audit_row(self, make_member, member_repo, session):
        member = make_member()

        member_repo.change_status(member.id, MembershipStatusEnum.SUSPENDED)

        history = member_repo.get_status_history(member.id)
        assert len(history) == 1
        assert history[0].old_status == "Active"
        assert history[0].new_status == "Suspended"
        assert history[0].member_id == member.id
        assert count_rows(session, MemberStatusAudit) == 1

    def test_phone_change_appends_nothing(self, make_member, member_repo, session):
        member = make_member()

        member_repo.update(member.id, MemberUpdateSchema(phone="555-0100"))

        assert count_rows(session, MemberStatusAudit) == 0

    def test_same_status_appends_nothing(self, make_member, member_repo):
        member = make_member()

        member_repo.change_status(member.id, MembershipStatusEnum.ACTIVE)

        assert member_repo.get_status_history(member.id) == []

    def test_history_is_ordered(self, make_member, member_repo):
        member = make_member()

        member_repo.change_status(member.id, MembershipStatusEnum.SUSPENDED)
        member_repo.change_status(member.id, MembershipStatusEnum.ACTIVE)
        member_repo.change_status(member.id, MembershipStatusEnum.INACTIVE)

        transitions = [(h.old_status, h.new_status) for h in member_repo.get_status_history(member.id)]
        assert transitions == [
            ("Active", "Suspended"),
            ("Suspended", "Active"),
            ("Active", "Inactive"),
        ]
