"""
Database package for the Library Circulation service.

This package provides:
- SQLAlchemy schema definitions (schema.py)
- Session management and connection handling (session.py)
- The rule dispatcher (events.py) and the consistency rules (rules.py)
- Repositories, the only write path into the tables
- Reporting views (reports.py)

Importing the package registers every rule, so any repository obtained
from here enforces them.
"""

from . import rules
from .book_repository import BookCreateSchema, BookRepository, BookUpdateSchema
from .catalog_repository import (
    AuthorCreateSchema,
    AuthorRepository,
    CategoryCreateSchema,
    CategoryRepository,
    StaffCreateSchema,
    StaffRepository,
)
from .circulation_repository import (
    CirculationRepository,
    LoanCreateSchema,
    LoanUpdateSchema,
    ReservationCreateSchema,
)
from .events import Action, MutationEvent, Phase, RuleRegistry, registry, snapshot_row
from .member_repository import MemberCreateSchema, MemberRepository, MemberUpdateSchema
from .reports import ReportRepository
from .repository import (
    BaseRepository,
    DuplicateError,
    IntegrityViolation,
    NotFoundError,
    PaginatedResponse,
    PaginationParams,
    RepositoryException,
    ValidationError,
)
from .schema import (
    Author,
    Base,
    Book,
    Category,
    Fine,
    Loan,
    LoanStatusEnum,
    Member,
    MembershipStatusEnum,
    MemberStatusAudit,
    PaymentStatusEnum,
    Reservation,
    ReservationStatusEnum,
    Staff,
)
from .session import (
    DatabaseManager,
    get_db_manager,
    get_session,
    reset_db_manager,
    safe_commit,
    safe_query,
    session_scope,
)

__all__ = [
    "Action",
    "Author",
    "AuthorCreateSchema",
    "AuthorRepository",
    "Base",
    "BaseRepository",
    "Book",
    "BookCreateSchema",
    "BookRepository",
    "BookUpdateSchema",
    "Category",
    "CategoryCreateSchema",
    "CategoryRepository",
    "CirculationRepository",
    "DatabaseManager",
    "DuplicateError",
    "Fine",
    "IntegrityViolation",
    "Loan",
    "LoanCreateSchema",
    "LoanStatusEnum",
    "LoanUpdateSchema",
    "Member",
    "MemberCreateSchema",
    "MemberRepository",
    "MemberStatusAudit",
    "MemberUpdateSchema",
    "MembershipStatusEnum",
    "MutationEvent",
    "NotFoundError",
    "PaginatedResponse",
    "PaginationParams",
    "PaymentStatusEnum",
    "Phase",
    "ReportRepository",
    "RepositoryException",
    "Reservation",
    "ReservationCreateSchema",
    "ReservationStatusEnum",
    "RuleRegistry",
    "Staff",
    "StaffCreateSchema",
    "StaffRepository",
    "ValidationError",
    "get_db_manager",
    "get_session",
    "registry",
    "reset_db_manager",
    "rules",
    "safe_commit",
    "safe_query",
    "session_scope",
    "snapshot_row",
]
