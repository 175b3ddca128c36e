from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import date, datetime
from enum import Enum
from typing import Mapping, Optional

from argon2 import PasswordHasher
from argon2.exceptions import InvalidHash, VerificationError, VerifyMismatchError
from sqlalchemy import delete, func, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from models import ApiToken, Budget, Category, Transaction, TransactionType, User
from pagination import Page, PageWindow, resolve_page
from schemas import (
    BudgetIn,
    BudgetUpdate,
    CategoryIn,
    CategoryUpdate,
    LoginIn,
    RegisterIn,
    TransactionIn,
    TransactionUpdate,
)
from tokens import issue_token, new_token_id, read_token

logger = logging.getLogger(__name__)

_hasher = PasswordHasher()


class ServiceError(ValueError):
    pass


class NotFoundError(ServiceError):
    """Record is missing or belongs to someone else; callers cannot tell which."""


class EmptyReportError(NotFoundError):
    pass


class ConflictError(ServiceError):
    pass


class FieldValidationError(ServiceError):
    def __init__(self, field: str, message: str) -> None:
        super().__init__(message)
        self.field = field
        self.message = message


def _require_category(session: Session, category_id: int) -> Category:
    category = session.get(Category, category_id)
    if not category:
        raise FieldValidationError(
            "category_id", "The selected category_id is invalid."
        )
    return category


class AuthService:
    def __init__(self, session: Session) -> None:
        self.session = session

    def _find_by_email(self, email: str) -> Optional[User]:
        return self.session.scalar(
            select(User).where(func.lower(User.email) == email.strip().lower())
        )

    def _issue(self, user: User) -> str:
        token_id = new_token_id()
        self.session.add(ApiToken(user_id=user.id, token_id=token_id))
        self.session.commit()
        return issue_token(user.id, token_id)

    def register(self, data: RegisterIn) -> tuple[User, str]:
        if data.password != data.password_confirmation:
            raise FieldValidationError(
                "password", "The password confirmation does not match."
            )
        if self._find_by_email(data.email):
            raise FieldValidationError("email", "The email has already been taken.")

        user = User(
            name=data.name.strip(),
            email=data.email.strip().lower(),
            password_hash=_hasher.hash(data.password),
        )
        self.session.add(user)
        self.session.flush()
        token = self._issue(user)
        logger.info(f"user_registered: user_id={user.id}")
        return user, token

    def login(self, data: LoginIn) -> tuple[User, str]:
        user = self._find_by_email(data.email)
        if user is None:
            raise FieldValidationError(
                "email", "The provided credentials are incorrect."
            )
        try:
            _hasher.verify(user.password_hash, data.password)
        except (VerifyMismatchError, InvalidHash, VerificationError):
            logger.info(f"login_failed: user_id={user.id}")
            raise FieldValidationError(
                "email", "The provided credentials are incorrect."
            ) from None

        token = self._issue(user)
        logger.info(f"user_logged_in: user_id={user.id}")
        return user, token

    def logout(self, user_id: int) -> int:
        result = self.session.execute(
            delete(ApiToken).where(ApiToken.user_id == user_id)
        )
        self.session.commit()
        logger.info(f"user_logged_out: user_id={user_id} tokens_revoked={result.rowcount}")
        return result.rowcount

    def authenticate(self, token: str) -> Optional[int]:
        """Resolve a bearer token to its user id, or ``None`` when it is not live."""
        claims = read_token(token)
        if claims is None:
            return None
        user_id, token_id = claims
        row = self.session.scalar(
            select(ApiToken).where(
                ApiToken.token_id == token_id, ApiToken.user_id == user_id
            )
        )
        if row is None:
            return None
        row.last_used_at = datetime.utcnow()
        self.session.commit()
        return user_id

    def get_user(self, user_id: int) -> User:
        user = self.session.get(User, user_id)
        if not user:
            raise NotFoundError("User not found")
        return user


class CategoryService:
    """Categories are global; any authenticated caller may manage them."""

    def __init__(self, session: Session) -> None:
        self.session = session

    def _name_taken(self, name: str, exclude_id: Optional[int] = None) -> bool:
        stmt = select(Category.id).where(func.lower(Category.name) == name.lower())
        if exclude_id is not None:
            stmt = stmt.where(Category.id != exclude_id)
        return self.session.scalar(stmt) is not None

    def list_all(self) -> list[Category]:
        stmt = select(Category).order_by(Category.id)
        return list(self.session.scalars(stmt).all())

    def get(self, category_id: int) -> Category:
        category = self.session.get(Category, category_id)
        if not category:
            raise NotFoundError("Category not found")
        return category

    def create(self, data: CategoryIn) -> Category:
        if self._name_taken(data.name):
            raise FieldValidationError("name", "The name has already been taken.")
        category = Category(name=data.name, type=data.type)
        self.session.add(category)
        self.session.commit()
        self.session.refresh(category)
        logger.info(f"category_created: id={category.id} type={category.type.value}")
        return category

    def update(self, category_id: int, data: CategoryUpdate) -> Category:
        category = self.get(category_id)
        changes = data.model_dump(exclude_unset=True, exclude_none=True)
        if "name" in changes and self._name_taken(changes["name"], category.id):
            raise FieldValidationError("name", "The name has already been taken.")
        for key, value in changes.items():
            setattr(category, key, value)
        self.session.commit()
        self.session.refresh(category)
        logger.info(f"category_updated: id={category.id}")
        return category

    def delete(self, category_id: int) -> None:
        category = self.get(category_id)
        referenced = any(
            self.session.scalar(
                select(model.id).where(model.category_id == category.id).limit(1)
            )
            for model in (Budget, Transaction)
        )
        if referenced:
            raise ConflictError(
                "Category is in use by budgets or transactions and cannot be deleted"
            )
        self.session.delete(category)
        self.session.commit()
        logger.info(f"category_deleted: id={category_id}")


class BudgetService:
    CREATE_CONFLICT = "A budget already exists for this category"
    UPDATE_CONFLICT = "You already have a budget for this category"

    def __init__(self, session: Session, user_id: int) -> None:
        self.session = session
        self.user_id = user_id

    def _ensure_unique(
        self, category_id: int, message: str, exclude_id: Optional[int] = None
    ) -> None:
        stmt = select(Budget.id).where(
            Budget.user_id == self.user_id, Budget.category_id == category_id
        )
        if exclude_id is not None:
            stmt = stmt.where(Budget.id != exclude_id)
        if self.session.scalar(stmt) is not None:
            raise ConflictError(message)

    def _commit_unique(self, message: str) -> None:
        # A concurrent writer can pass the pre-check too; the unique
        # constraint decides and the loser sees the same conflict.
        try:
            self.session.commit()
        except IntegrityError as exc:
            self.session.rollback()
            if "unique" in str(exc.orig).lower():
                raise ConflictError(message) from exc
            raise

    def list_all(self) -> list[Budget]:
        stmt = select(Budget).where(Budget.user_id == self.user_id).order_by(Budget.id)
        return list(self.session.scalars(stmt).all())

    def get(self, budget_id: int) -> Budget:
        budget = self.session.scalar(
            select(Budget).where(Budget.id == budget_id, Budget.user_id == self.user_id)
        )
        if not budget:
            raise NotFoundError("Budget not found")
        return budget

    def create(self, data: BudgetIn) -> Budget:
        _require_category(self.session, data.category_id)
        self._ensure_unique(data.category_id, self.CREATE_CONFLICT)

        budget = Budget(
            user_id=self.user_id,
            category_id=data.category_id,
            limit_amount=data.limit_amount,
        )
        self.session.add(budget)
        self._commit_unique(self.CREATE_CONFLICT)
        self.session.refresh(budget)
        logger.info(
            f"budget_created: id={budget.id} user_id={self.user_id} "
            f"category_id={budget.category_id}"
        )
        return budget

    def update(self, budget_id: int, data: BudgetUpdate) -> Budget:
        budget = self.get(budget_id)
        changes = data.model_dump(exclude_unset=True, exclude_none=True)
        if "category_id" in changes:
            _require_category(self.session, changes["category_id"])
            self._ensure_unique(
                changes["category_id"], self.UPDATE_CONFLICT, exclude_id=budget.id
            )
        for key, value in changes.items():
            setattr(budget, key, value)
        self._commit_unique(self.UPDATE_CONFLICT)
        self.session.refresh(budget)
        logger.info(f"budget_updated: id={budget.id} user_id={self.user_id}")
        return budget

    def delete(self, budget_id: int) -> None:
        budget = self.get(budget_id)
        self.session.delete(budget)
        self.session.commit()
        logger.info(f"budget_deleted: id={budget_id} user_id={self.user_id}")


class TransactionSortField(str, Enum):
    id = "id"
    amount = "amount"
    date = "date"
    category_id = "category_id"


class SortDirection(str, Enum):
    asc = "asc"
    desc = "desc"


SORT_COLUMNS = {
    TransactionSortField.id: Transaction.id,
    TransactionSortField.amount: Transaction.amount,
    TransactionSortField.date: Transaction.date,
    TransactionSortField.category_id: Transaction.category_id,
}


@dataclass
class TransactionQuery:
    start_date: Optional[date] = None
    end_date: Optional[date] = None
    category_id: Optional[int] = None
    type: Optional[TransactionType] = None
    sort_by: TransactionSortField = TransactionSortField.date
    sort_direction: SortDirection = SortDirection.desc
    window: PageWindow = field(default_factory=resolve_page)


def _parse_date(value: Optional[str], name: str) -> Optional[date]:
    if not value:
        return None
    try:
        return date.fromisoformat(value)
    except ValueError as exc:
        raise FieldValidationError(name, f"The {name} is not a valid date.") from exc


def _parse_id(value: Optional[str], name: str) -> Optional[int]:
    if not value:
        return None
    try:
        return int(value)
    except ValueError as exc:
        raise FieldValidationError(name, f"The {name} must be an integer.") from exc


def parse_page_window(params: Mapping[str, str]) -> PageWindow:
    try:
        return resolve_page(params.get("page"), params.get("per_page"))
    except ValueError as exc:
        name = "per_page" if "per_page" in str(exc) else "page"
        raise FieldValidationError(name, str(exc)) from exc


def parse_transaction_query(params: Mapping[str, str]) -> TransactionQuery:
    """Build a query from raw request parameters.

    Malformed dates, category ids and page numbers are rejected. An unknown
    ``type``, ``sort_by`` or ``sort_direction`` silently falls back to the
    default behaviour.
    """
    txn_type = None
    if params.get("type"):
        try:
            txn_type = TransactionType(params["type"])
        except ValueError:
            txn_type = None

    try:
        sort_by = TransactionSortField(params.get("sort_by") or "date")
    except ValueError:
        sort_by = TransactionSortField.date
    try:
        sort_direction = SortDirection((params.get("sort_direction") or "desc").lower())
    except ValueError:
        sort_direction = SortDirection.desc

    return TransactionQuery(
        start_date=_parse_date(params.get("start_date"), "start_date"),
        end_date=_parse_date(params.get("end_date"), "end_date"),
        category_id=_parse_id(params.get("category_id"), "category_id"),
        type=txn_type,
        sort_by=sort_by,
        sort_direction=sort_direction,
        window=parse_page_window(params),
    )


class TransactionService:
    def __init__(self, session: Session, user_id: int) -> None:
        self.session = session
        self.user_id = user_id

    def _conditions(self, query: TransactionQuery) -> list:
        conditions = [Transaction.user_id == self.user_id]
        if query.start_date and query.end_date:
            conditions.append(Transaction.date.between(query.start_date, query.end_date))
        elif query.start_date:
            conditions.append(Transaction.date >= query.start_date)
        elif query.end_date:
            conditions.append(Transaction.date <= query.end_date)
        if query.category_id is not None:
            conditions.append(Transaction.category_id == query.category_id)
        if query.type == TransactionType.income:
            conditions.append(Transaction.amount > 0)
        elif query.type == TransactionType.expense:
            conditions.append(Transaction.amount < 0)
        return conditions

    def search(self, query: TransactionQuery) -> Page[Transaction]:
        conditions = self._conditions(query)
        total = int(
            self.session.execute(
                select(func.count(Transaction.id)).where(*conditions)
            ).scalar_one()
            or 0
        )

        column = SORT_COLUMNS[query.sort_by]
        primary = column.asc() if query.sort_direction == SortDirection.asc else column.desc()
        stmt = (
            select(Transaction)
            .where(*conditions)
            .order_by(primary, Transaction.id.asc())
            .offset(query.window.offset)
            .limit(query.window.per_page)
        )
        rows = list(self.session.scalars(stmt).all())
        return Page.build(rows, total, query.window)

    def get(self, transaction_id: int) -> Transaction:
        txn = self.session.scalar(
            select(Transaction).where(
                Transaction.id == transaction_id, Transaction.user_id == self.user_id
            )
        )
        if not txn:
            raise NotFoundError("Transaction not found")
        return txn

    def create(self, data: TransactionIn) -> Transaction:
        _require_category(self.session, data.category_id)
        txn = Transaction(
            user_id=self.user_id,
            category_id=data.category_id,
            amount=data.amount,
            description=data.description,
            date=data.date,
        )
        self.session.add(txn)
        self.session.commit()
        self.session.refresh(txn)
        logger.info(f"transaction_created: id={txn.id} user_id={self.user_id}")
        return txn

    def update(self, transaction_id: int, data: TransactionUpdate) -> Transaction:
        txn = self.get(transaction_id)
        changes = data.model_dump(exclude_unset=True)
        for required in ("category_id", "amount", "date"):
            if required in changes and changes[required] is None:
                raise FieldValidationError(required, f"The {required} field cannot be null.")
        if "category_id" in changes:
            _require_category(self.session, changes["category_id"])
        for key, value in changes.items():
            setattr(txn, key, value)
        self.session.commit()
        self.session.refresh(txn)
        logger.info(f"transaction_updated: id={txn.id} user_id={self.user_id}")
        return txn

    def delete(self, transaction_id: int) -> None:
        txn = self.get(transaction_id)
        self.session.delete(txn)
        self.session.commit()
        logger.info(f"transaction_deleted: id={transaction_id} user_id={self.user_id}")
