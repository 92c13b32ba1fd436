#!/usr/bin/env python3
"""
Initialize the Library Circulation database.

This script:
1. Creates all database tables
2. Optionally loads sample data through the repositories, so every row
   passes the same consistency rules as live traffic
3. Verifies the database is ready for server use

Usage:
    python scripts/init_database.py [--drop-existing] [--sample-data]
"""

import argparse
import logging
import sys
from datetime import date, timedelta

from sqlalchemy import text

from library_circulation.database import (
    AuthorCreateSchema,
    AuthorRepository,
    BookCreateSchema,
    BookRepository,
    CategoryCreateSchema,
    CategoryRepository,
    CirculationRepository,
    LoanCreateSchema,
    MemberCreateSchema,
    MemberRepository,
    StaffCreateSchema,
    StaffRepository,
    get_db_manager,
)

logging.basicConfig(
    level=logging.INFO, format="%(asctime)s - %(name)s - %(levelname)s - %(message)s"
)
logger = logging.getLogger(__name__)

EXPECTED_TABLES = {
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


def main():
    """Main entry point for database initialization."""
    parser = argparse.ArgumentParser(description="Initialize the Library Circulation database")
    parser.add_argument(
        "--drop-existing",
        action="store_true",
        help="Drop existing tables before creating new ones",
    )
    parser.add_argument(
        "--sample-data",
        action="store_true",
        help="Load sample data after creating tables",
    )
    parser.add_argument(
        "--database-url",
        help="Override default database URL",
    )

    args = parser.parse_args()

    logger.info("Initializing database manager...")
    db_manager = get_db_manager(args.database_url)

    if not db_manager.verify_connection():
        logger.error("Failed to connect to database")
        sys.exit(1)

    try:
        logger.info("Creating database schema...")
        db_manager.init_database(drop_existing=args.drop_existing)

        if args.sample_data:
            logger.info("Loading sample data...")
            load_sample_data(db_manager)

        with db_manager.session_scope() as session:
            result = session.execute(
                text("SELECT name FROM sqlite_master WHERE type='table' ORDER BY name")
            )
            tables = [row[0] for row in result]
            logger.info("Created tables: %s", ", ".join(tables))

            missing_tables = EXPECTED_TABLES - set(tables)
            if missing_tables:
                logger.error("Missing expected tables: %s", missing_tables)
                sys.exit(1)

        logger.info("Database initialization complete")

    except Exception:
        logger.exception("Database initialization failed")
        sys.exit(1)
    finally:
        db_manager.close()


def load_sample_data(db_manager):
    """
    Load a small library: two authors, three books, three members, one
    librarian and a few loans, one of them long past due.
    """
    today = date.today()

    with db_manager.session_scope() as session:
        authors = AuthorRepository(session)
        austen = authors.create(
            AuthorCreateSchema(first_name="Jane", last_name="Austen", birth_year=1775)
        )
        orwell = authors.create(
            AuthorCreateSchema(first_name="George", last_name="Orwell", birth_year=1903)
        )

        fiction = CategoryRepository(session).create(
            CategoryCreateSchema(category_name="Fiction", description="Novels and stories")
        )

        books = BookRepository(session)
        pride = books.create(
            BookCreateSchema(
                title="Pride and Prejudice",
                isbn="9780141439518",
                author_id=austen.id,
                category_id=fiction.id,
                publication_year=1813,
                total_copies=3,
                price=12.99,
            )
        )
        nineteen = books.create(
            BookCreateSchema(
                title="Nineteen Eighty-Four",
                isbn="9780451524935",
                author_id=orwell.id,
                category_id=fiction.id,
                publication_year=1949,
                total_copies=2,
                price=9.99,
            )
        )
        books.create(
            BookCreateSchema(
                title="Animal Farm",
                isbn="9780451526342",
                author_id=orwell.id,
                category_id=fiction.id,
                publication_year=1945,
                total_copies=1,
                price=7.99,
            )
        )

        members = MemberRepository(session)
        alice = members.create(
            MemberCreateSchema(
                first_name="Alice",
                last_name="Walker",
                email="alice.walker@example.com",
                membership_date=today - timedelta(days=400),
            )
        )
        bob = members.create(
            MemberCreateSchema(
                first_name="Bob",
                last_name="Martin",
                email="bob.martin@example.com",
                membership_date=today - timedelta(days=90),
            )
        )
        members.create(
            MemberCreateSchema(
                first_name="Carol",
                last_name="Chen",
                email="carol.chen@example.com",
            )
        )

        librarian = StaffRepository(session).create(
            StaffCreateSchema(
                first_name="Dana",
                last_name="Reyes",
                email="dana.reyes@library.example.com",
                position="Librarian",
                hire_date=today - timedelta(days=1000),
            )
        )

        circulation = CirculationRepository(session)
        circulation.issue_loan(
            LoanCreateSchema(book_id=pride.id, member_id=alice.id, staff_id=librarian.id)
        )
        late = circulation.issue_loan(
            LoanCreateSchema(
                book_id=nineteen.id,
                member_id=bob.id,
                staff_id=librarian.id,
                loan_date=today - timedelta(days=30),
                due_date=today - timedelta(days=16),
            )
        )
        # Touching the late loan marks it Overdue and raises its fine.
        circulation.refresh_loan(late.id)

    logger.info("Sample data loaded")


if __name__ == "__main__":
    main()
