"""Service layer for the subscription tracker API - handles business logic."""

import logging
from datetime import date
from typing import Any, TypeVar

from fastapi import HTTPException
from sqlmodel import Session, SQLModel, col, func, select

from auth import hash_password
from models import (
    RecurringCategory,
    RecurringCategoryCreate,
    RecurringCategoryRead,
    RecurringCategoryUpdate,
    RecurringExpense,
    RecurringExpenseCreate,
    RecurringExpenseRead,
    RecurringExpenseUpdate,
    User,
    UserCreate,
)
from utils import advance_billing_date, get_or_404, paginate, today

T = TypeVar("T", bound=SQLModel)

logger = logging.getLogger("subscription_tracker.services")

EXPENSE_ORDER_FIELDS = {
    "name": RecurringExpense.name,
    "amount": RecurringExpense.amount,
    "next_billing_date": RecurringExpense.next_billing_date,
    "is_active": RecurringExpense.is_active,
}


# ============================================
# BASE CRUD SERVICE
# ============================================


class CRUDService:
    """Base service for common CRUD operations."""

    @staticmethod
    def create(session: Session, model: type[T], data: SQLModel, **extra) -> T:
        """Create a new record."""
        db_obj = model(**data.model_dump(), **extra)
        session.add(db_obj)
        session.commit()
        session.refresh(db_obj)
        return db_obj

    @staticmethod
    def get(session: Session, model: type[T], id: int, name: str = "Resource") -> T:
        """Get a record by ID or raise 404."""
        return get_or_404(session, model, id, name)

    @staticmethod
    def update(session: Session, instance: T, data: SQLModel) -> T:
        """Apply the fields present in a partial update."""
        update_data = data.model_dump(exclude_unset=True)
        for field, value in update_data.items():
            setattr(instance, field, value)
        session.add(instance)
        session.commit()
        session.refresh(instance)
        return instance

    @staticmethod
    def hard_delete(session: Session, instance: T) -> dict:
        """Permanently delete a record."""
        id_val = instance.id
        session.delete(instance)
        session.commit()
        return {"message": f"{type(instance).__name__} deleted", "id": id_val}


def order(query: Any, column: Any, direction: str) -> Any:
    """Apply asc/desc ordering on one column."""
    ordered = column.desc() if direction == "desc" else column.asc()
    return query.order_by(ordered)


# ============================================
# USER SERVICE
# ============================================


class UserService:
    """Service for dashboard accounts."""

    @staticmethod
    def create(session: Session, data: UserCreate) -> User:
        """Create a new user with email uniqueness check."""
        existing = session.exec(select(User).where(User.email == data.email)).first()
        if existing:
            raise HTTPException(
                status_code=400,
                detail=f"User with email {data.email} already exists"
            )

        user = User(
            email=data.email,
            password_hash=hash_password(data.password),
            first_name=data.first_name,
            last_name=data.last_name,
        )
        session.add(user)
        session.commit()
        session.refresh(user)
        return user


# ============================================
# CATEGORY SERVICE
# ============================================


class CategoryService:
    """Service for recurring category operations."""

    @staticmethod
    def ensure_unique_name(session: Session, name: str, exclude_id: int | None = None) -> None:
        """Reject a name already used by another category, ignoring case."""
        query = select(RecurringCategory).where(
            func.lower(RecurringCategory.name) == name.lower()
        )
        if exclude_id is not None:
            query = query.where(RecurringCategory.id != exclude_id)
        if session.exec(query).first():
            raise HTTPException(status_code=400, detail="Category name already exists.")

    @staticmethod
    def create(session: Session, data: RecurringCategoryCreate) -> RecurringCategory:
        CategoryService.ensure_unique_name(session, data.name)
        return CRUDService.create(session, RecurringCategory, data)

    @staticmethod
    def update(
        session: Session, category: RecurringCategory, data: RecurringCategoryUpdate
    ) -> RecurringCategory:
        if data.name is not None:
            CategoryService.ensure_unique_name(session, data.name, exclude_id=category.id)
        return CRUDService.update(session, category, data)

    @staticmethod
    def delete(session: Session, category: RecurringCategory) -> dict:
        """Delete a category, clearing it from every expense that referenced it."""
        referencing = session.exec(
            select(RecurringExpense).where(RecurringExpense.category_id == category.id)
        ).all()
        for expense in referencing:
            expense.category_id = None
            session.add(expense)
        return CRUDService.hard_delete(session, category)

    @staticmethod
    def list_all(
        session: Session,
        name: str | None = None,
        direction: str = "asc",
        page: int = 1,
        items_per_page: int = 30,
    ) -> tuple[list[RecurringCategory], int]:
        query = select(RecurringCategory)
        if name:
            query = query.where(col(RecurringCategory.name).ilike(f"%{name}%"))
        query = order(query, RecurringCategory.name, direction).order_by(RecurringCategory.id)
        return paginate(session, query, page, items_per_page)

    @staticmethod
    def to_read(category: RecurringCategory) -> RecurringCategoryRead:
        return RecurringCategoryRead.model_validate(category, from_attributes=True)


# ============================================
# RECURRING EXPENSE SERVICE
# ============================================


class RecurringExpenseService:
    """Service for recurring expense operations."""

    @staticmethod
    def validate_category(session: Session, category_id: int | None) -> None:
        if category_id is not None:
            get_or_404(session, RecurringCategory, category_id, "Category")

    @staticmethod
    def create(session: Session, data: RecurringExpenseCreate) -> RecurringExpense:
        """Validate and create a recurring expense."""
        RecurringExpenseService.validate_category(session, data.category_id)
        return CRUDService.create(session, RecurringExpense, data)

    @staticmethod
    def update(
        session: Session, expense: RecurringExpense, data: RecurringExpenseUpdate
    ) -> RecurringExpense:
        if "category_id" in data.model_fields_set:
            RecurringExpenseService.validate_category(session, data.category_id)
        return CRUDService.update(session, expense, data)

    @staticmethod
    def catch_up(session: Session, expense: RecurringExpense, on: date | None = None) -> RecurringExpense:
        """
        Advance the stored due date past elapsed billing cycles.

        Reading an expense calls this so the persisted date never lags more
        than one cycle behind today. Commits only when the date moved.
        """
        advanced = advance_billing_date(expense.next_billing_date, expense.interval, on)
        if advanced != expense.next_billing_date:
            logger.info(
                f"Advanced billing date of expense {expense.id} "
                f"from {expense.next_billing_date} to {advanced}"
            )
            expense.next_billing_date = advanced
            session.add(expense)
            session.commit()
            session.refresh(expense)
        return expense

    @staticmethod
    def catch_up_all(session: Session, on: date | None = None) -> int:
        """Catch up every stored expense whose due date is in the past."""
        on = on or today()
        stale = session.exec(
            select(RecurringExpense).where(RecurringExpense.next_billing_date < on)
        ).all()

        for expense in stale:
            expense.next_billing_date = advance_billing_date(
                expense.next_billing_date, expense.interval, on
            )
            session.add(expense)

        if stale:
            session.commit()
            logger.info(f"Advanced billing dates of {len(stale)} recurring expenses")
        return len(stale)

    @staticmethod
    def list_all(
        session: Session,
        name: str | None = None,
        currency: str | None = None,
        is_active: bool | None = None,
        order_by: str | None = None,
        direction: str = "asc",
        page: int = 1,
        items_per_page: int = 30,
        on: date | None = None,
    ) -> tuple[list[RecurringExpense], int]:
        """List expenses with filters after catching up stale due dates."""
        RecurringExpenseService.catch_up_all(session, on)

        query = select(RecurringExpense)
        if name:
            query = query.where(col(RecurringExpense.name).ilike(f"%{name}%"))
        if currency:
            query = query.where(RecurringExpense.currency == currency.upper())
        if is_active is not None:
            query = query.where(RecurringExpense.is_active == is_active)

        if order_by is not None:
            query = order(query, EXPENSE_ORDER_FIELDS[order_by], direction)
        query = query.order_by(RecurringExpense.id)

        return paginate(session, query, page, items_per_page)

    @staticmethod
    def to_read(expense: RecurringExpense) -> RecurringExpenseRead:
        return RecurringExpenseRead.model_validate(expense, from_attributes=True)
