"""
Catalog models: books, authors and categories.

A book carries the availability counter the circulation rules maintain:
``available_copies`` is always within ``0..total_copies``.
"""

from datetime import datetime

from pydantic import BaseModel, ConfigDict, Field, model_validator


class Author(BaseModel):
    """A person credited with books in the catalog."""

    id: int = Field(..., description="Unique identifier for the author")
    first_name: str = Field(..., min_length=1, max_length=50, examples=["Jane"])
    last_name: str = Field(..., min_length=1, max_length=50, examples=["Austen"])
    birth_year: int | None = Field(None, examples=[1775])
    nationality: str | None = Field(None, max_length=50, examples=["British"])
    created_at: datetime | None = None

    @property
    def full_name(self) -> str:
        return f"{self.first_name} {self.last_name}"

    model_config = ConfigDict(from_attributes=True)


class Category(BaseModel):
    """A book classification."""

    id: int = Field(..., description="Unique identifier for the category")
    category_name: str = Field(..., min_length=1, max_length=50, examples=["Fiction"])
    description: str | None = None
    created_at: datetime | None = None

    model_config = ConfigDict(from_attributes=True)


class Book(BaseModel):
    """
    Represents a book in the inventory.

    The copy counters mirror the persisted row; the model re-checks the
    availability invariant so a response can never carry an impossible state.
    """

    id: int = Field(..., description="Unique identifier for the book")

    title: str = Field(
        ...,
        description="The title of the book",
        min_length=1,
        max_length=200,
        examples=["Pride and Prejudice"],
    )

    isbn: str = Field(
        ...,
        description="ISBN, stored without hyphens",
        max_length=13,
        examples=["9780141439518"],
    )

    author_id: int | None = Field(None, description="Author of the book")
    category_id: int | None = Field(None, description="Category of the book")
    publication_year: int | None = Field(None, examples=[1813])
    publisher: str | None = Field(None, max_length=100, examples=["Penguin Classics"])

    total_copies: int = Field(
        ...,
        description="Total number of copies owned by the library",
        ge=0,
        examples=[1, 3, 10],
    )

    available_copies: int = Field(
        ...,
        description="Number of copies currently on the shelf",
        ge=0,
        examples=[0, 1, 5],
    )

    price: float | None = Field(None, ge=0.0, examples=[12.99])
    created_at: datetime | None = None

    @model_validator(mode="after")
    def validate_copies(self) -> "Book":
        """Ensure available copies doesn't exceed total copies."""
        if self.available_copies > self.total_copies:
            raise ValueError("Available copies cannot exceed total copies")
        return self

    @property
    def is_available(self) -> bool:
        """Check if the book has any copy on the shelf."""
        return self.available_copies > 0

    @property
    def copies_on_loan(self) -> int:
        return self.total_copies - self.available_copies

    model_config = ConfigDict(
        from_attributes=True,
        json_schema_extra={
            "example": {
                "id": 1,
                "title": "Pride and Prejudice",
                "isbn": "9780141439518",
                "author_id": 1,
                "category_id": 1,
                "publication_year": 1813,
                "publisher": "Penguin Classics",
                "total_copies": 3,
                "available_copies": 2,
                "price": 12.99,
            }
        },
    )
