from __future__ import annotations

import logging
from dataclasses import dataclass
from decimal import Decimal
from typing import Optional

from sqlalchemy import select
from sqlalchemy.orm import Session, joinedload

from models import Budget
from pagination import PageWindow, resolve_page
from services import EmptyReportError

logger = logging.getLogger(__name__)


@dataclass
class BudgetStatistics:
    total: Decimal
    average: Decimal
    max: Decimal
    min: Decimal


@dataclass
class CategoryBucket:
    count: int
    total: Decimal


@dataclass
class BudgetReport:
    statistics: BudgetStatistics
    budgets_by_category: dict[str, CategoryBucket]
    data: list[Budget]
    total_count: int
    current_page: int
    per_page: int
    total_pages: int


def summarize(amounts: list[Decimal]) -> BudgetStatistics:
    total = sum(amounts, Decimal("0"))
    return BudgetStatistics(
        total=total,
        average=total / len(amounts),
        max=max(amounts),
        min=min(amounts),
    )


def group_by_category(budgets: list[Budget]) -> dict[str, CategoryBucket]:
    groups: dict[str, CategoryBucket] = {}
    for budget in budgets:
        bucket = groups.setdefault(budget.category.name, CategoryBucket(0, Decimal("0")))
        bucket.count += 1
        bucket.total += budget.limit_amount
    return groups


class BudgetReportService:
    """Whole-dataset statistics over a user's budgets.

    The statistics and the per-category groups always cover every budget the
    user owns; ``page``/``per_page`` only select which raw budgets are echoed
    back in ``data``.
    """

    def __init__(self, session: Session, user_id: int) -> None:
        self.session = session
        self.user_id = user_id

    def build(self, window: Optional[PageWindow] = None) -> BudgetReport:
        window = window or resolve_page()
        budgets = list(
            self.session.scalars(
                select(Budget)
                .options(joinedload(Budget.category))
                .where(Budget.user_id == self.user_id)
                .order_by(Budget.id)
            ).all()
        )
        if not budgets:
            raise EmptyReportError("There are no budgets to build a report from.")

        stats = summarize([b.limit_amount for b in budgets])
        report = BudgetReport(
            statistics=stats,
            budgets_by_category=group_by_category(budgets),
            data=window.slice(budgets),
            total_count=len(budgets),
            current_page=window.page,
            per_page=window.per_page,
            total_pages=window.total_pages(len(budgets)),
        )
        logger.info(
            f"budget_report_generated: user_id={self.user_id} "
            f"budgets={len(budgets)} categories={len(report.budgets_by_category)}"
        )
        return report
