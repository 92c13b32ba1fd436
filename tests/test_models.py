"""
Tests for the response models.

These tests verify that the models:
1. Re-check the row invariants they mirror
2. Accept storage enums as well as plain strings
3. Derive loan and fine state correctly
"""

from datetime import date, datetime

import pytest
from pydantic import ValidationError

from library_circulation.database import LoanStatusEnum, MembershipStatusEnum
from library_circulation.models import (
    Book,
    Fine,
    Loan,
    LoanStatus,
    Member,
    MemberStatusAudit,
    PaymentStatus,
)


class TestBook:
    def test_valid_book(self):
        book = Book(id=1, title="Dune", isbn="9780441013593", total_copies=3, available_copies=1)

        assert book.is_available
        assert book.copies_on_loan == 2

    def test_available_cannot_exceed_total(self):
        with pytest.raises(ValidationError, match="cannot exceed total"):
            Book(id=1, title="Dune", isbn="9780441013593", total_copies=1, available_copies=2)

    def test_no_copy_on_shelf(self):
        book = Book(id=1, title="Dune", isbn="9780441013593", total_copies=1, available_copies=0)
        assert not book.is_available


class TestMember:
    def test_storage_enum_is_unwrapped(self):
        member = Member(
            id=1,
            first_name="John",
            last_name="Smith",
            email="john@example.com",
            membership_date=date(2023, 1, 15),
            membership_status=MembershipStatusEnum.SUSPENDED,
        )

        assert member.membership_status == "Suspended"
        assert not member.is_active
        assert member.full_name == "John Smith"

    def test_audit_entry_is_frozen(self):
        entry = MemberStatusAudit(
            id=1,
            member_id=1,
            old_status="Active",
            new_status="Inactive",
            changed_at=datetime(2024, 1, 10, 9, 30),
        )

        with pytest.raises(ValidationError):
            entry.new_status = "Active"


class TestLoan:
    def _loan(self, **overrides) -> Loan:
        data = {
            "id": 1,
            "book_id": 1,
            "member_id": 1,
            "loan_date": date(2024, 1, 1),
            "due_date": date(2024, 1, 15),
        }
        data.update(overrides)
        return Loan(**data)

    def test_defaults(self):
        loan = self._loan()

        assert loan.status == LoanStatus.ACTIVE
        assert loan.loan_period_days == 14
        assert not loan.is_returned

    def test_due_date_must_follow_loan_date(self):
        with pytest.raises(ValidationError, match="Due date must be after loan date"):
            self._loan(due_date=date(2024, 1, 1))

    def test_return_before_loan_rejected(self):
        with pytest.raises(ValidationError, match="Return date cannot be before loan date"):
            self._loan(return_date=date(2023, 12, 31))

    @pytest.mark.parametrize(
        ("today", "return_date", "expected"),
        [
            (date(2024, 1, 10), None, 0),
            (date(2024, 1, 20), None, 5),
            (date(2024, 2, 1), date(2024, 1, 18), 3),
        ],
    )
    def test_days_overdue(self, today, return_date, expected):
        assert self._loan(return_date=return_date).days_overdue(today) == expected

    def test_storage_enum_is_unwrapped(self):
        loan = self._loan(status=LoanStatusEnum.RETURNED, return_date=date(2024, 1, 5))

        assert loan.status == "Returned"
        assert loan.is_returned


class TestFine:
    def test_outstanding(self):
        fine = Fine(id=1, loan_id=1, member_id=1, fine_amount=9.0, fine_date=date(2024, 1, 10))

        assert fine.payment_status == PaymentStatus.UNPAID
        assert fine.is_outstanding

    def test_negative_amount_rejected(self):
        with pytest.raises(ValidationError):
            Fine(id=1, loan_id=1, member_id=1, fine_amount=-1.0, fine_date=date(2024, 1, 10))

    def test_payment_before_fine_rejected(self):
        with pytest.raises(ValidationError, match="Payment date cannot be before fine date"):
            Fine(
                id=1,
                loan_id=1,
                member_id=1,
                fine_amount=1.0,
                fine_date=date(2024, 1, 10),
                payment_status="Paid",
                payment_date=date(2024, 1, 9),
            )
