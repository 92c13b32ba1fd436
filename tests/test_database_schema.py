"""
Tests for database schema and session management.

These tests verify:
1. The expected tables are created
2. CHECK constraints hold even for writes that bypass the repositories
3. Enum columns persist their readable values
4. Session helpers commit, roll back and wrap errors
"""

from datetime import date

import pytest
from sqlalchemy import inspect, text
from sqlalchemy.exc import IntegrityError

from library_circulation.database import (
    Book,
    Loan,
    LoanStatusEnum,
    Member,
    MembershipStatusEnum,
    safe_commit,
    safe_query,
)
from library_circulation.database.session import DatabaseManager


class TestDatabaseSchema:
    def test_tables_created(self, session):
        tables = set(inspect(session.bind).get_table_names())

        assert tables == {
            "authors",
            "categories",
            "books",
            "members",
            "staff",
            "loans",
            "fines",
            "reservations",
            "member_status_audit",
        }

    def test_book_defaults(self, session):
        book = Book(title="Defaults", isbn="9780000000001")
        session.add(book)
        session.commit()

        assert book.total_copies == 1
        assert book.available_copies == 1
        assert book.created_at is not None

    def test_availability_check_constraint(self, session):
        session.add(Book(title="Broken", isbn="9780000000002", total_copies=1, available_copies=2))

        with pytest.raises(IntegrityError):
            session.commit()
        session.rollback()

    def test_loan_date_check_constraint(self, session):
        member = Member(
            first_name="A", last_name="B", email="a@b.co", membership_date=date(2024, 1, 1)
        )
        book = Book(title="T", isbn="9780000000003")
        session.add_all([member, book])
        session.commit()

        session.add(
            Loan(
                book_id=book.id,
                member_id=member.id,
                loan_date=date(2024, 1, 10),
                due_date=date(2024, 1, 10),
            )
        )
        with pytest.raises(IntegrityError):
            session.commit()
        session.rollback()

    def test_foreign_keys_enforced(self, session):
        session.add(
            Loan(book_id=999, member_id=999, loan_date=date(2024, 1, 1), due_date=date(2024, 1, 2))
        )

        with pytest.raises(IntegrityError):
            session.commit()
        session.rollback()

    def test_enum_values_are_stored(self, session):
        member = Member(
            first_name="A",
            last_name="B",
            email="enum@example.com",
            membership_date=date(2024, 1, 1),
            membership_status=MembershipStatusEnum.SUSPENDED,
        )
        session.add(member)
        session.commit()

        raw = session.execute(
            text("SELECT membership_status FROM members WHERE id = :id"), {"id": member.id}
        ).scalar()
        assert raw == "Suspended"

    def test_loan_status_default(self, session):
        member = Member(
            first_name="A", last_name="B", email="loan@example.com", membership_date=date(2024, 1, 1)
        )
        book = Book(title="T", isbn="9780000000004")
        session.add_all([member, book])
        session.commit()

        loan = Loan(
            book_id=book.id, member_id=member.id, loan_date=date(2024, 1, 1), due_date=date(2024, 1, 15)
        )
        session.add(loan)
        session.commit()

        assert loan.status == LoanStatusEnum.ACTIVE


class TestSessionManagement:
    def test_session_scope_commits(self):
        manager = DatabaseManager("sqlite:///:memory:")
        manager.init_database()
        try:
            with manager.session_scope() as session:
                session.add(Book(title="Scoped", isbn="9780000000005"))

            with manager.session_scope() as session:
                assert session.query(Book).count() == 1
        finally:
            manager.close()

    def test_session_scope_rolls_back(self):
        manager = DatabaseManager("sqlite:///:memory:")
        manager.init_database()
        try:
            with pytest.raises(RuntimeError), manager.session_scope() as session:
                session.add(Book(title="Lost", isbn="9780000000006"))
                session.flush()
                raise RuntimeError("boom")

            with manager.session_scope() as session:
                assert session.query(Book).count() == 0
        finally:
            manager.close()

    def test_verify_connection(self, db_manager):
        assert db_manager.verify_connection() is True

    def test_safe_commit_reraises_integrity_errors(self, session):
        session.add(Book(title="A", isbn="9780000000007"))
        session.add(Book(title="B", isbn="9780000000007"))

        with pytest.raises(IntegrityError):
            safe_commit(session, "duplicate isbn")

    def test_safe_query_wraps_errors(self, session):
        with pytest.raises(ValueError, match="Failed lookup: Database query failed"):
            safe_query(session, lambda s: s.execute(text("SELECT * FROM nope")), "Failed lookup")
