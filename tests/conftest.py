"""Test configuration and fixtures for the Library Circulation service.

1. Isolated databases - each test gets a fresh in-memory SQLite database
2. Configuration isolation - settings come from a clean environment
3. A fixed clock - rules and reports see ``TODAY`` instead of the real date
4. Factories - small helpers that create rows through the repositories,
   so fixtures obey the same rules as the code under test
"""

import os
from collections.abc import Callable, Generator
from contextlib import contextmanager
from datetime import date, timedelta
from pathlib import Path

import logfire
import pytest
from sqlalchemy.orm import Session

from library_circulation.config import reset_config
from library_circulation.database import (
    BookCreateSchema,
    BookRepository,
    CirculationRepository,
    LoanCreateSchema,
    MemberCreateSchema,
    MemberRepository,
    ReportRepository,
)
from library_circulation.database.session import DatabaseManager
from library_circulation.models import Book, Loan, Member

TODAY = date(2024, 1, 10)


def pytest_configure(config):
    # Spans are created but never exported or printed.
    logfire.configure(send_to_logfire=False, console=False)


# === Environment and configuration ===


@pytest.fixture(autouse=True)
def clean_env(tmp_path: Path, monkeypatch) -> Generator[None, None, None]:
    """Drop LIBRARY_CIRCULATION_* variables and point the database at tmp_path."""
    for key in list(os.environ):
        if key.startswith("LIBRARY_CIRCULATION_"):
            monkeypatch.delenv(key)
    monkeypatch.setenv("LIBRARY_CIRCULATION_DATABASE_PATH", str(tmp_path / "library.db"))

    reset_config()
    yield
    reset_config()


# === Database fixtures ===


@pytest.fixture
def db_manager() -> Generator[DatabaseManager, None, None]:
    """In-memory database with the full schema."""
    manager = DatabaseManager("sqlite:///:memory:")
    manager.init_database()
    yield manager
    manager.close()


@pytest.fixture
def session(db_manager: DatabaseManager) -> Generator[Session, None, None]:
    session = db_manager.create_session()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture
def clock() -> Callable[[], date]:
    return lambda: TODAY


# === Repositories ===


@pytest.fixture
def book_repo(session, clock) -> BookRepository:
    return BookRepository(session, today=clock)


@pytest.fixture
def member_repo(session, clock) -> MemberRepository:
    return MemberRepository(session, today=clock)


@pytest.fixture
def circulation_repo(session, clock) -> CirculationRepository:
    return CirculationRepository(session, today=clock)


@pytest.fixture
def report_repo(session, clock) -> ReportRepository:
    return ReportRepository(session, today=clock)


# === Factories ===


@pytest.fixture
def make_book(book_repo) -> Callable[..., Book]:
    counter = iter(range(1, 1000))

    def _make_book(total_copies: int = 3, available_copies: int | None = None, **kwargs) -> Book:
        n = next(counter)
        data = {
            "title": f"Test Book {n}",
            "isbn": f"978000000{n:04d}",
            "total_copies": total_copies,
            "available_copies": available_copies,
        }
        data.update(kwargs)
        return book_repo.create(BookCreateSchema(**data))

    return _make_book


@pytest.fixture
def make_member(member_repo) -> Callable[..., Member]:
    counter = iter(range(1, 1000))

    def _make_member(**kwargs) -> Member:
        n = next(counter)
        data = {
            "first_name": "Test",
            "last_name": f"Member{n}",
            "email": f"member{n}@example.com",
            "membership_date": date(2023, 1, 1),
        }
        data.update(kwargs)
        return member_repo.create(MemberCreateSchema(**data))

    return _make_member


@pytest.fixture
def make_loan(circulation_repo) -> Callable[..., Loan]:
    """Issue a loan; by default it was issued on 2023-12-18 and is due 2024-01-01."""

    def _make_loan(
        book: Book,
        member: Member,
        loan_date: date = TODAY - timedelta(days=23),
        due_date: date = date(2024, 1, 1),
    ) -> Loan:
        return circulation_repo.issue_loan(
            LoanCreateSchema(
                book_id=book.id,
                member_id=member.id,
                loan_date=loan_date,
                due_date=due_date,
            )
        )

    return _make_loan


# === Handler support ===


@pytest.fixture
def mock_get_session(session, monkeypatch):
    """Point the tool and resource handlers at the test session."""

    @contextmanager
    def _mock_session():
        yield session

    monkeypatch.setattr("library_circulation.tools.circulation.get_session", _mock_session)
    monkeypatch.setattr("library_circulation.resources.reports.session_scope", _mock_session)
    return session
