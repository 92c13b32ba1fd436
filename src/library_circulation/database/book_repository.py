"""
Book repository implementation for the Library Circulation service.

Books carry the availability counter. Every write to a book row, whether a
catalog edit or a loan moving a copy in or out, passes the inventory rule
(``0 <= available_copies <= total_copies``) before it is committed, and a
book with loans still in flight cannot be deleted.
"""

import logging
from typing import Any

from pydantic import BaseModel, Field, field_validator
from sqlalchemy import select

from ..database.schema import Book as BookDB
from ..database.session import safe_query
from ..models.book import Book as BookModel
from .repository import BaseRepository

logger = logging.getLogger(__name__)


def normalize_isbn(value: str) -> str:
    """Strip hyphens and spaces so ISBNs compare by digits."""
    return value.replace("-", "").replace(" ", "")


class BookCreateSchema(BaseModel):
    """Schema for creating a new book.

    ``available_copies`` defaults to ``total_copies``: a new title starts
    with every copy on the shelf.
    """

    title: str = Field(..., min_length=1, max_length=200)
    isbn: str = Field(..., min_length=10, max_length=17)
    author_id: int | None = None
    category_id: int | None = None
    publication_year: int | None = None
    publisher: str | None = None
    total_copies: int = Field(default=1, ge=0)
    available_copies: int | None = None
    price: float | None = Field(default=None, ge=0.0)

    @field_validator("isbn")
    @classmethod
    def clean_isbn(cls, v: str) -> str:
        cleaned = normalize_isbn(v)
        if len(cleaned) not in (10, 13):
            raise ValueError("ISBN must have 10 or 13 characters")
        return cleaned


class BookUpdateSchema(BaseModel):
    """Schema for updating a book - all fields optional."""

    title: str | None = None
    author_id: int | None = None
    category_id: int | None = None
    publication_year: int | None = None
    publisher: str | None = None
    total_copies: int | None = None
    available_copies: int | None = None
    price: float | None = None


class BookRepository(BaseRepository[BookDB, BookCreateSchema, BookUpdateSchema, BookModel]):
    """
    Repository for book data access.

    Copy counters are never written directly by callers that issue or return
    loans; those go through ``CirculationRepository`` and the loan rules.
    ``adjust_availability`` exists for stock corrections (a copy found, a
    copy lost) and is checked by the same inventory rule.
    """

    @property
    def model_class(self):
        return BookDB

    @property
    def response_schema(self):
        return BookModel

    def _create_values(self, data: BookCreateSchema) -> dict[str, Any]:
        values = data.model_dump()
        if values["available_copies"] is None:
            values["available_copies"] = values["total_copies"]
        return values

    def get_by_isbn(self, isbn: str) -> BookModel | None:
        """Look a book up by ISBN, hyphenated or not."""
        query = select(BookDB).where(BookDB.isbn == normalize_isbn(isbn))
        book = safe_query(
            self.session,
            lambda s: s.execute(query).scalar_one_or_none(),
            "Failed to get book by ISBN",
        )
        return self._to_response_model(book) if book else None

    def get_available(self) -> list[BookModel]:
        """Books with at least one copy on the shelf, by title."""
        query = select(BookDB).where(BookDB.available_copies > 0).order_by(BookDB.title)
        books = safe_query(
            self.session,
            lambda s: s.execute(query).scalars().all(),
            "Failed to get available books",
        )
        return [self._to_response_model(book) for book in books]

    def adjust_availability(self, book_id: int, delta: int) -> BookModel:
        """
        Shift a book's availability counter by ``delta``.

        Raises:
            NotFoundError: If the book doesn't exist
            ValidationError: If the counter would leave ``0..total_copies``
        """
        book = self._require_db_obj(book_id, for_update=True)
        logger.info("Adjusting availability of book %s by %+d", book_id, delta)
        self._update_row(
            book,
            {"available_copies": book.available_copies + delta},
            operation="adjust_availability",
        )
        self.session.refresh(book)
        return self._to_response_model(book)
