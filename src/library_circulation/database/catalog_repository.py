"""
Repositories for the reference tables: authors, categories and staff.

None of these tables carries a consistency rule, so the generic CRUD of
``BaseRepository`` is all they need beyond a few lookups.
"""

from datetime import date

from pydantic import BaseModel, Field
from sqlalchemy import select

from ..database.schema import Author as AuthorDB
from ..database.schema import Category as CategoryDB
from ..database.schema import Staff as StaffDB
from ..database.session import safe_query
from ..models.book import Author as AuthorModel
from ..models.book import Category as CategoryModel
from ..models.member import Staff as StaffModel
from .repository import BaseRepository


class AuthorCreateSchema(BaseModel):
    first_name: str = Field(..., min_length=1, max_length=50)
    last_name: str = Field(..., min_length=1, max_length=50)
    birth_year: int | None = None
    nationality: str | None = Field(default=None, max_length=50)


class AuthorUpdateSchema(BaseModel):
    first_name: str | None = None
    last_name: str | None = None
    birth_year: int | None = None
    nationality: str | None = None


class CategoryCreateSchema(BaseModel):
    category_name: str = Field(..., min_length=1, max_length=50)
    description: str | None = None


class CategoryUpdateSchema(BaseModel):
    category_name: str | None = None
    description: str | None = None


class StaffCreateSchema(BaseModel):
    first_name: str = Field(..., min_length=1, max_length=50)
    last_name: str = Field(..., min_length=1, max_length=50)
    email: str = Field(..., max_length=100)
    phone: str | None = Field(default=None, max_length=15)
    position: str | None = Field(default=None, max_length=50)
    hire_date: date
    salary: float | None = Field(default=None, ge=0.0)


class StaffUpdateSchema(BaseModel):
    email: str | None = None
    phone: str | None = None
    position: str | None = None
    salary: float | None = None


class AuthorRepository(
    BaseRepository[AuthorDB, AuthorCreateSchema, AuthorUpdateSchema, AuthorModel]
):
    @property
    def model_class(self):
        return AuthorDB

    @property
    def response_schema(self):
        return AuthorModel

    def search_by_name(self, name: str) -> list[AuthorModel]:
        """Authors whose first or last name contains ``name``, case-insensitively."""
        pattern = f"%{name}%"
        query = (
            select(AuthorDB)
            .where(AuthorDB.first_name.ilike(pattern) | AuthorDB.last_name.ilike(pattern))
            .order_by(AuthorDB.last_name, AuthorDB.first_name)
        )
        authors = safe_query(
            self.session,
            lambda s: s.execute(query).scalars().all(),
            "Failed to search authors",
        )
        return [self._to_response_model(author) for author in authors]


class CategoryRepository(
    BaseRepository[CategoryDB, CategoryCreateSchema, CategoryUpdateSchema, CategoryModel]
):
    @property
    def model_class(self):
        return CategoryDB

    @property
    def response_schema(self):
        return CategoryModel

    def get_by_name(self, category_name: str) -> CategoryModel | None:
        query = select(CategoryDB).where(CategoryDB.category_name == category_name)
        category = safe_query(
            self.session,
            lambda s: s.execute(query).scalar_one_or_none(),
            "Failed to get category by name",
        )
        return self._to_response_model(category) if category else None


class StaffRepository(BaseRepository[StaffDB, StaffCreateSchema, StaffUpdateSchema, StaffModel]):
    @property
    def model_class(self):
        return StaffDB

    @property
    def response_schema(self):
        return StaffModel
