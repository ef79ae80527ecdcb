"""Utility functions for the subscription tracker API."""

from datetime import date, datetime, timedelta
from typing import Any, TypeVar

from dateutil.relativedelta import relativedelta
from fastapi import HTTPException
from sqlmodel import Session, SQLModel, func, select

from models import RecurringInterval

T = TypeVar("T", bound=SQLModel)

DEFAULT_ITEMS_PER_PAGE = 30
MAX_ITEMS_PER_PAGE = 100


# ============================================
# DATE UTILITIES
# ============================================


def today() -> date:
    """Get today's date."""
    return datetime.now().date()


def billing_step(interval: RecurringInterval, count: int = 1) -> timedelta | relativedelta:
    """
    Get the offset covering `count` billing cycles.

    Args:
        interval: Billing interval
        count: Number of cycles

    Returns:
        timedelta for weekly cycles, relativedelta for calendar-month based ones
    """
    if interval == RecurringInterval.WEEKLY:
        return timedelta(weeks=count)
    if interval == RecurringInterval.MONTHLY:
        return relativedelta(months=count)
    if interval == RecurringInterval.QUARTERLY:
        return relativedelta(months=3 * count)
    if interval == RecurringInterval.YEARLY:
        return relativedelta(years=count)
    raise ValueError(f"Unknown billing interval: {interval!r}")


def advance_billing_date(
    due_date: date | None,
    interval: RecurringInterval | str | None,
    on: date | None = None,
) -> date | None:
    """
    Roll a due date forward past every billing cycle that has already elapsed.

    Returns the earliest ``due_date + k * cycle`` (k >= 0) that is not before
    ``on`` (defaults to today). Month arithmetic follows relativedelta, which
    clamps to the last day of shorter months. Every candidate is offset from
    the original ``due_date``, so 2024-01-31 monthly goes Jan 31, Feb 29,
    Mar 31 rather than drifting to the 29th.

    Args:
        due_date: Stored due date; datetimes are truncated to their date
        interval: Billing interval (enum or its string value)
        on: Evaluation date

    Returns:
        The caught-up due date, or ``due_date`` untouched when either input is None
    """
    if due_date is None or interval is None:
        return due_date

    if isinstance(due_date, datetime):
        due_date = due_date.date()
    if on is None:
        on = today()
    elif isinstance(on, datetime):
        on = on.date()
    interval = RecurringInterval(interval)

    cycles = 0
    candidate = due_date
    while candidate < on:
        cycles += 1
        candidate = due_date + billing_step(interval, cycles)

    return candidate


# ============================================
# VALIDATION UTILITIES
# ============================================


def get_or_404(session: Session, model: type[T], id: int, name: str = "Resource") -> T:
    """
    Get a model by ID or raise 404.

    Args:
        session: Database session
        model: SQLModel class
        id: Primary key
        name: Resource name for error message

    Returns:
        Model instance

    Raises:
        HTTPException: 404 if not found
    """
    instance = session.get(model, id)
    if not instance:
        raise HTTPException(status_code=404, detail=f"{name} not found")
    return instance


# ============================================
# PAGINATION UTILITIES
# ============================================


def paginate(session: Session, query: Any, page: int, items_per_page: int) -> tuple[list, int]:
    """
    Run a select for one page of results.

    Args:
        session: Database session
        query: Filtered (and optionally ordered) select statement
        page: 1-based page number
        items_per_page: Page size

    Returns:
        Tuple of (items on the page, total matching items)
    """
    total = session.exec(select(func.count()).select_from(query.subquery())).one()
    items = session.exec(query.offset((page - 1) * items_per_page).limit(items_per_page)).all()
    return list(items), total
