"""Report Resources - Library Circulation Views

Exposes the reporting views as read-only MCP resources.

Resources:
- library://reports/inventory - Copies on loan and shelf status per book
- library://reports/members/active - Active members, open loans, unpaid fines
- library://reports/loans/overdue - Overdue loans, most overdue first
- library://reports/books/popularity - Books ranked by times borrowed
- library://reports/fines/summary - Fine totals per month
- library://reports/activity/today - Today's circulation snapshot
"""

import logging
from typing import Any

from fastmcp.exceptions import ResourceError

from ..database.reports import ReportRepository
from ..database.session import session_scope

logger = logging.getLogger(__name__)


def _run_report(name: str, build) -> Any:
    try:
        with session_scope() as session:
            return build(ReportRepository(session))
    except Exception as e:
        logger.exception("Error in reports/%s resource", name)
        raise ResourceError(f"Failed to build {name} report: {e!s}") from e


async def get_inventory_handler() -> dict[str, Any]:
    """Returns every book with its copies on loan and availability status."""
    rows = _run_report("inventory", lambda repo: repo.current_inventory())
    return {"books": [row.model_dump(mode="json") for row in rows], "total": len(rows)}


async def get_active_members_handler() -> dict[str, Any]:
    rows = _run_report("active members", lambda repo: repo.active_members())
    return {"members": [row.model_dump(mode="json") for row in rows], "total": len(rows)}


async def get_overdue_loans_handler() -> dict[str, Any]:
    """Returns Overdue loans with the fine each has (or "Not Recorded")."""
    rows = _run_report("overdue loans", lambda repo: repo.overdue_loans())
    return {"loans": [row.model_dump(mode="json") for row in rows], "total": len(rows)}


async def get_book_popularity_handler() -> dict[str, Any]:
    rows = _run_report("book popularity", lambda repo: repo.book_popularity())
    return {"books": [row.model_dump(mode="json") for row in rows]}


async def get_financial_summary_handler() -> dict[str, Any]:
    rows = _run_report("financial summary", lambda repo: repo.financial_summary())
    return {"months": [row.model_dump(mode="json") for row in rows]}


async def get_daily_activity_handler() -> dict[str, Any]:
    return _run_report("daily activity", lambda repo: repo.daily_activity().model_dump())


report_resources: list[dict[str, Any]] = [
    {
        "uri": "library://reports/inventory",
        "name": "Current Inventory",
        "description": (
            "Every book with total, available and on-loan copies and a shelf status "
            "of Available, Low Stock or Not Available."
        ),
        "mime_type": "application/json",
        "handler": get_inventory_handler,
    },
    {
        "uri": "library://reports/members/active",
        "name": "Active Members",
        "description": "Active members with days of membership, open loans and unpaid fines.",
        "mime_type": "application/json",
        "handler": get_active_members_handler,
    },
    {
        "uri": "library://reports/loans/overdue",
        "name": "Overdue Loans",
        "description": (
            "Loans marked Overdue with member contact details, days overdue and the "
            "recorded fine, most overdue first."
        ),
        "mime_type": "application/json",
        "handler": get_overdue_loans_handler,
    },
    {
        "uri": "library://reports/books/popularity",
        "name": "Book Popularity",
        "description": "Books ranked by how many times they have been borrowed.",
        "mime_type": "application/json",
        "handler": get_book_popularity_handler,
    },
    {
        "uri": "library://reports/fines/summary",
        "name": "Financial Summary",
        "description": "Fines per month: collected, pending, waived and collection rate.",
        "mime_type": "application/json",
        "handler": get_financial_summary_handler,
    },
    {
        "uri": "library://reports/activity/today",
        "name": "Daily Activity",
        "description": (
            "Today's loans issued and returned, open and overdue loans, pending "
            "reservations and unpaid fines."
        ),
        "mime_type": "application/json",
        "handler": get_daily_activity_handler,
    },
]
