import logging
from dataclasses import dataclass
from decimal import Decimal
from enum import Enum
from typing import Iterable, Optional, Union

from sqlalchemy import select
from sqlalchemy.orm import Session, selectinload

from categories import DEFAULT_CATEGORIES, is_default_type
from errors import ConsistencyError, NotFoundError, ValidationError
from models import Budget, BudgetCategory, BudgetItem, RecurringPayment
from money import ZERO, quantize
from periods import MonthRef
from recurrence import monthly_contribution

logger = logging.getLogger(__name__)

NO_SOURCE_MESSAGE = "No source budget to copy from"


class ResetMode(str, Enum):
    zero = "zero"
    replace = "replace"


@dataclass
class RolloverResult:
    budget_id: int
    created: bool = False
    copied_items: int = 0
    projected_items: int = 0
    zeroed_items: int = 0
    message: Optional[str] = None


def is_duplicate_item(existing: Iterable[BudgetItem], incoming: BudgetItem) -> bool:
    """Same name (case-insensitive) or same recurring payment link."""
    name = incoming.name.lower()
    for item in existing:
        if item.name.lower() == name:
            return True
        if (
            incoming.recurring_payment_id is not None
            and item.recurring_payment_id == incoming.recurring_payment_id
        ):
            return True
    return False


class RolloverEngine:
    def __init__(self, session: Session, user_id: str) -> None:
        self.session = session
        self.user_id = user_id

    def _budget_stmt(self):
        return select(Budget).options(
            selectinload(Budget.categories).selectinload(BudgetCategory.items)
        )

    def load(self, ref: MonthRef) -> Optional[Budget]:
        stmt = self._budget_stmt().where(
            Budget.user_id == self.user_id,
            Budget.month == ref.month,
            Budget.year == ref.year,
        )
        return self.session.scalar(stmt)

    def load_by_id(self, budget_id: int) -> Budget:
        stmt = self._budget_stmt().where(
            Budget.user_id == self.user_id, Budget.id == budget_id
        )
        budget = self.session.scalar(stmt)
        if not budget:
            raise NotFoundError("Budget not found")
        return budget

    def _create_budget(self, ref: MonthRef, buffer: Decimal) -> Budget:
        budget = Budget(
            user_id=self.user_id, month=ref.month, year=ref.year, buffer=buffer
        )
        for scaffold in DEFAULT_CATEGORIES:
            budget.categories.append(
                BudgetCategory(
                    category_type=scaffold.category_type.value,
                    name=scaffold.name,
                    category_order=scaffold.order,
                )
            )
        self.session.add(budget)
        self.session.flush()

        created = self.load(ref)
        if created is None:
            raise ConsistencyError(
                f"Budget {ref.year}-{ref.month:02d} missing right after creation"
            )
        return created

    def _copy_structure(self, source: Budget, target: Budget) -> int:
        copied = 0
        by_type = {c.category_type: c for c in target.categories}
        for source_category in source.categories:
            target_category = by_type.get(source_category.category_type)
            if target_category is None:
                target_category = BudgetCategory(
                    category_type=source_category.category_type,
                    name=source_category.name,
                    emoji=source_category.emoji,
                    category_order=source_category.category_order or 0,
                )
                target.categories.append(target_category)
                by_type[source_category.category_type] = target_category

            for item in source_category.items:
                # Linked items come back through recurring projection instead.
                if item.recurring_payment_id is not None:
                    continue
                if is_duplicate_item(target_category.items, item):
                    continue
                target_category.items.append(
                    BudgetItem(name=item.name, planned=item.planned, order=item.order)
                )
                copied += 1
        self.session.flush()
        return copied

    def project_recurring(self, target: Budget) -> int:
        payments = self.session.scalars(
            select(RecurringPayment)
            .where(
                RecurringPayment.user_id == self.user_id,
                RecurringPayment.is_active.is_(True),
                RecurringPayment.category_type.is_not(None),
            )
            .order_by(RecurringPayment.id)
        ).all()

        linked_ids = {
            item.recurring_payment_id
            for category in target.categories
            for item in category.items
            if item.recurring_payment_id is not None
        }
        by_type: dict[str, BudgetCategory] = {}
        for category in target.categories:
            by_type.setdefault(category.category_type, category)

        projected = 0
        for payment in payments:
            if payment.id in linked_ids:
                continue
            category = by_type.get(payment.category_type)
            if category is None:
                continue
            max_order = max((item.order or 0 for item in category.items), default=-1)
            category.items.append(
                BudgetItem(
                    name=payment.name,
                    planned=quantize(
                        monthly_contribution(payment.amount, payment.frequency)
                    ),
                    order=max_order + 1,
                    recurring_payment=payment,
                )
            )
            linked_ids.add(payment.id)
            projected += 1
        self.session.flush()
        return projected

    def _copy(self, source_ref: MonthRef, target_ref: MonthRef) -> RolloverResult:
        source = self.load(source_ref)
        target = self.load(target_ref)
        created = False
        if target is None:
            buffer = source.buffer if source is not None else ZERO
            target = self._create_budget(target_ref, buffer)
            created = True

        result = RolloverResult(budget_id=target.id, created=created)
        if source is None:
            result.message = NO_SOURCE_MESSAGE
            return result
        result.copied_items = self._copy_structure(source, target)
        result.projected_items = self.project_recurring(target)
        return result

    def copy(
        self, source_month: int, source_year: int, target_month: int, target_year: int
    ) -> RolloverResult:
        source_ref = MonthRef(year=source_year, month=source_month)
        target_ref = MonthRef(year=target_year, month=target_month)
        if source_ref == target_ref:
            raise ValidationError("Source and target periods must differ")
        try:
            result = self._copy(source_ref, target_ref)
        except Exception:
            self.session.rollback()
            raise
        self.session.commit()
        logger.info(
            f"rollover_copy: user={self.user_id} source={source_ref.year}-{source_ref.month:02d} "
            f"target={target_ref.year}-{target_ref.month:02d} created={result.created} "
            f"copied={result.copied_items} projected={result.projected_items}"
        )
        return result

    def open(self, ref: MonthRef) -> tuple[Budget, RolloverResult]:
        """Return the period, creating it from the month before when missing."""
        existing = self.load(ref)
        if existing is not None:
            return existing, RolloverResult(budget_id=existing.id)
        try:
            result = self._copy(ref.previous(), ref)
            if result.message == NO_SOURCE_MESSAGE:
                # A first period still picks up active recurring payments.
                result.projected_items = self.project_recurring(
                    self.load_by_id(result.budget_id)
                )
        except Exception:
            self.session.rollback()
            raise
        self.session.commit()
        logger.info(
            f"rollover_open: user={self.user_id} period={ref.year}-{ref.month:02d} "
            f"copied={result.copied_items} projected={result.projected_items}"
        )
        return self.load_by_id(result.budget_id), result

    def reset(self, budget_id: int, mode: Union[ResetMode, str]) -> RolloverResult:
        try:
            mode = ResetMode(mode)
        except ValueError as exc:
            raise ValidationError("Invalid mode") from exc
        budget = self.load_by_id(budget_id)

        try:
            if mode == ResetMode.zero:
                result = self._reset_zero(budget)
            else:
                result = self._reset_replace(budget)
        except Exception:
            self.session.rollback()
            raise
        self.session.commit()
        logger.info(
            f"rollover_reset: user={self.user_id} budget_id={budget.id} mode={mode.value} "
            f"copied={result.copied_items} projected={result.projected_items}"
        )
        return result

    def _reset_zero(self, budget: Budget) -> RolloverResult:
        zeroed = 0
        for category in budget.categories:
            for item in category.items:
                item.planned = ZERO
                zeroed += 1
        self.session.flush()
        return RolloverResult(budget_id=budget.id, zeroed_items=zeroed)

    def _reset_replace(self, budget: Budget) -> RolloverResult:
        for category in list(budget.categories):
            category.items.clear()
            if not is_default_type(category.category_type):
                budget.categories.remove(category)
        self.session.flush()

        ref = MonthRef(year=budget.year, month=budget.month)
        target = self.load(ref)
        if target is None:
            raise ConsistencyError(f"Budget {budget.id} missing after cleanup")

        result = RolloverResult(budget_id=target.id)
        source = self.load(ref.previous())
        if source is None:
            result.message = NO_SOURCE_MESSAGE
        else:
            result.copied_items = self._copy_structure(source, target)
        result.projected_items = self.project_recurring(target)
        return result
