"""
Circulation tools for the Library Circulation MCP server.

Each tool is a thin wrapper over one repository write:
1. issue_loan / return_loan / refresh_loan: the loan lifecycle
2. pay_fine / waive_fine: settling the fine an overdue loan raised
3. change_member_status: membership changes, audited by the member rules
4. delete_book: catalog removal, refused while loans are in flight

Handlers validate their arguments with Pydantic, run the write in its own
session and translate repository errors into ``isError`` responses. The
consistency rules themselves live below the repositories; nothing here
re-checks them.
"""

import logging
from datetime import date
from typing import Any

from pydantic import BaseModel, Field

from ..database.book_repository import BookRepository
from ..database.circulation_repository import CirculationRepository, LoanCreateSchema
from ..database.member_repository import MemberRepository
from ..database.repository import NotFoundError, RepositoryException
from ..database.schema import MembershipStatusEnum
from ..database.session import get_session
from ..models.circulation import Fine, Loan

logger = logging.getLogger(__name__)


def _error(text: str) -> dict[str, Any]:
    return {"isError": True, "content": [{"type": "text", "text": text}]}


def _loan_data(loan: Loan) -> dict[str, Any]:
    return {
        "id": loan.id,
        "book_id": loan.book_id,
        "member_id": loan.member_id,
        "loan_date": loan.loan_date.isoformat(),
        "due_date": loan.due_date.isoformat(),
        "return_date": loan.return_date.isoformat() if loan.return_date else None,
        "status": loan.status,
    }


def _fine_data(fine: Fine) -> dict[str, Any]:
    return {
        "id": fine.id,
        "loan_id": fine.loan_id,
        "member_id": fine.member_id,
        "fine_amount": fine.fine_amount,
        "fine_date": fine.fine_date.isoformat(),
        "payment_status": fine.payment_status,
        "payment_date": fine.payment_date.isoformat() if fine.payment_date else None,
    }


# =============================================================================
# LOAN TOOLS
# =============================================================================


class IssueLoanInput(BaseModel):
    """Input schema for the issue_loan tool."""

    book_id: int = Field(..., description="ID of the book to lend", ge=1, examples=[1])
    member_id: int = Field(..., description="ID of the borrowing member", ge=1, examples=[1])
    staff_id: int | None = Field(default=None, description="ID of the issuing staff member")
    due_date: date | None = Field(
        default=None,
        description="Optional due date. Defaults to the configured loan period",
        examples=["2024-02-15"],
    )


class LoanIdInput(BaseModel):
    """Input schema for tools acting on a single loan."""

    loan_id: int = Field(..., description="ID of the loan", ge=1, examples=[1])


class ReturnLoanInput(LoanIdInput):
    return_date: date | None = Field(
        default=None,
        description="Date the book came back. Defaults to today",
        examples=["2024-01-20"],
    )


async def issue_loan_handler(arguments: dict[str, Any]) -> dict[str, Any]:
    """
    Handler for the issue_loan tool.

    Args:
        arguments: Raw arguments from MCP tools/call request

    Returns:
        Structured response with the new loan or error information
    """
    try:
        params = IssueLoanInput.model_validate(arguments)
    except Exception as e:
        logger.warning("Invalid issue_loan parameters: %s", e)
        return _error(f"Invalid issue_loan parameters: {e}")

    with get_session() as session:
        try:
            loan = CirculationRepository(session).issue_loan(
                LoanCreateSchema(
                    book_id=params.book_id,
                    member_id=params.member_id,
                    staff_id=params.staff_id,
                    due_date=params.due_date,
                )
            )
        except NotFoundError as e:
            logger.info("Issue failed - entity not found: %s", e)
            return _error(str(e))
        except RepositoryException as e:
            logger.info("Issue failed - rejected: %s", e)
            return _error(str(e))

    return {
        "content": [
            {
                "type": "text",
                "text": (
                    f"Issued book {loan.book_id} to member {loan.member_id}. "
                    f"Due date: {loan.due_date.strftime('%B %d, %Y')} "
                    f"({loan.loan_period_days}-day loan)"
                ),
            }
        ],
        "data": {"loan": _loan_data(loan)},
    }


async def return_loan_handler(arguments: dict[str, Any]) -> dict[str, Any]:
    """
    Handler for the return_loan tool.

    Returning releases the copy back to the shelf. A fine raised while the
    loan was overdue stays on the member's account.
    """
    try:
        params = ReturnLoanInput.model_validate(arguments)
    except Exception as e:
        logger.warning("Invalid return_loan parameters: %s", e)
        return _error(f"Invalid return_loan parameters: {e}")

    with get_session() as session:
        repo = CirculationRepository(session)
        try:
            loan = repo.return_loan(params.loan_id, params.return_date)
            fines = repo.get_fines_for_loan(loan.id)
        except NotFoundError as e:
            logger.info("Return failed - loan not found: %s", e)
            return _error(str(e))
        except RepositoryException as e:
            logger.info("Return failed - rejected: %s", e)
            return _error(str(e))

    message = f"Loan {loan.id} returned on {loan.return_date.isoformat()}."
    outstanding = [fine for fine in fines if fine.is_outstanding]
    if outstanding:
        total = sum(fine.fine_amount for fine in outstanding)
        message += f" Outstanding fine: ${total:.2f}"

    return {
        "content": [{"type": "text", "text": message}],
        "data": {"loan": _loan_data(loan), "fines": [_fine_data(fine) for fine in fines]},
    }


async def refresh_loan_handler(arguments: dict[str, Any]) -> dict[str, Any]:
    """
    Handler for the refresh_loan tool.

    Touches the loan so a passed due date is noticed: the loan turns Overdue
    and its fine is raised.
    """
    try:
        params = LoanIdInput.model_validate(arguments)
    except Exception as e:
        return _error(f"Invalid refresh_loan parameters: {e}")

    with get_session() as session:
        repo = CirculationRepository(session)
        try:
            loan = repo.refresh_loan(params.loan_id)
            fines = repo.get_fines_for_loan(loan.id)
        except RepositoryException as e:
            logger.info("Refresh failed: %s", e)
            return _error(str(e))

    return {
        "content": [{"type": "text", "text": f"Loan {loan.id} is {loan.status}."}],
        "data": {"loan": _loan_data(loan), "fines": [_fine_data(fine) for fine in fines]},
    }


# =============================================================================
# FINE TOOLS
# =============================================================================


class FineIdInput(BaseModel):
    fine_id: int = Field(..., description="ID of the fine", ge=1, examples=[1])


class PayFineInput(FineIdInput):
    payment_date: date | None = Field(
        default=None,
        description="Date of payment. Defaults to today; cannot precede the fine date",
    )


async def pay_fine_handler(arguments: dict[str, Any]) -> dict[str, Any]:
    """Handler for the pay_fine tool."""
    try:
        params = PayFineInput.model_validate(arguments)
    except Exception as e:
        return _error(f"Invalid pay_fine parameters: {e}")

    with get_session() as session:
        try:
            fine = CirculationRepository(session).pay_fine(params.fine_id, params.payment_date)
        except RepositoryException as e:
            logger.info("Payment failed: %s", e)
            return _error(str(e))

    return {
        "content": [
            {"type": "text", "text": f"Fine {fine.id} of ${fine.fine_amount:.2f} paid."}
        ],
        "data": {"fine": _fine_data(fine)},
    }


async def waive_fine_handler(arguments: dict[str, Any]) -> dict[str, Any]:
    """Handler for the waive_fine tool."""
    try:
        params = FineIdInput.model_validate(arguments)
    except Exception as e:
        return _error(f"Invalid waive_fine parameters: {e}")

    with get_session() as session:
        try:
            fine = CirculationRepository(session).waive_fine(params.fine_id)
        except RepositoryException as e:
            logger.info("Waiver failed: %s", e)
            return _error(str(e))

    return {
        "content": [{"type": "text", "text": f"Fine {fine.id} waived."}],
        "data": {"fine": _fine_data(fine)},
    }


# =============================================================================
# MEMBER AND CATALOG TOOLS
# =============================================================================


class ChangeMemberStatusInput(BaseModel):
    member_id: int = Field(..., ge=1, examples=[1])
    status: MembershipStatusEnum = Field(
        ...,
        description="New membership status",
        examples=["Active", "Inactive", "Suspended"],
    )


async def change_member_status_handler(arguments: dict[str, Any]) -> dict[str, Any]:
    """
    Handler for the change_member_status tool.

    Every actual change is recorded in the member's status history, which is
    returned alongside the member.
    """
    try:
        params = ChangeMemberStatusInput.model_validate(arguments)
    except Exception as e:
        return _error(f"Invalid change_member_status parameters: {e}")

    with get_session() as session:
        repo = MemberRepository(session)
        try:
            member = repo.change_status(params.member_id, params.status)
            history = repo.get_status_history(member.id)
        except RepositoryException as e:
            logger.info("Status change failed: %s", e)
            return _error(str(e))

    return {
        "content": [
            {
                "type": "text",
                "text": f"Member {member.full_name} is now {member.membership_status}.",
            }
        ],
        "data": {
            "member": {
                "id": member.id,
                "email": member.email,
                "membership_status": member.membership_status,
            },
            "status_history": [
                {
                    "old_status": entry.old_status,
                    "new_status": entry.new_status,
                    "changed_at": entry.changed_at.isoformat(),
                }
                for entry in history
            ],
        },
    }


class DeleteBookInput(BaseModel):
    book_id: int = Field(..., ge=1, examples=[1])


async def delete_book_handler(arguments: dict[str, Any]) -> dict[str, Any]:
    """Handler for the delete_book tool."""
    try:
        params = DeleteBookInput.model_validate(arguments)
    except Exception as e:
        return _error(f"Invalid delete_book parameters: {e}")

    with get_session() as session:
        try:
            deleted = BookRepository(session).delete(params.book_id)
        except RepositoryException as e:
            logger.info("Book deletion refused: %s", e)
            return _error(str(e))

    if not deleted:
        return _error(f"Book {params.book_id} not found")

    return {
        "content": [{"type": "text", "text": f"Book {params.book_id} deleted."}],
        "data": {"book_id": params.book_id, "deleted": True},
    }


circulation_tools: list[dict[str, Any]] = [
    {
        "name": "issue_loan",
        "description": (
            "Lend one copy of a book to an active member. Fails when no copy "
            "is on the shelf."
        ),
        "inputSchema": IssueLoanInput.model_json_schema(),
        "handler": issue_loan_handler,
    },
    {
        "name": "return_loan",
        "description": "Record the return of a loan and put its copy back on the shelf.",
        "inputSchema": ReturnLoanInput.model_json_schema(),
        "handler": return_loan_handler,
    },
    {
        "name": "refresh_loan",
        "description": (
            "Re-check a loan against today's date. A loan past its due date "
            "becomes Overdue and receives its fine."
        ),
        "inputSchema": LoanIdInput.model_json_schema(),
        "handler": refresh_loan_handler,
    },
    {
        "name": "pay_fine",
        "description": "Record payment of an unpaid fine.",
        "inputSchema": PayFineInput.model_json_schema(),
        "handler": pay_fine_handler,
    },
    {
        "name": "waive_fine",
        "description": "Waive an unpaid fine.",
        "inputSchema": FineIdInput.model_json_schema(),
        "handler": waive_fine_handler,
    },
    {
        "name": "change_member_status",
        "description": "Set a member's status to Active, Inactive or Suspended.",
        "inputSchema": ChangeMemberStatusInput.model_json_schema(),
        "handler": change_member_status_handler,
    },
    {
        "name": "delete_book",
        "description": "Remove a book from the catalog. Refused while any loan of it is open.",
        "inputSchema": DeleteBookInput.model_json_schema(),
        "handler": delete_book_handler,
    },
]
