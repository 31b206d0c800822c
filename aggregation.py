from dataclasses import dataclass
from decimal import Decimal
from typing import Iterable

from categories import is_income_type
from models import Budget, BudgetCategory, BudgetItem, SplitTransaction, Transaction
from money import ZERO, is_zero, total


def _counts_directly(txn: Transaction) -> bool:
    # Once a transaction is split only its split portions are attributed.
    return txn.deleted_at is None and not txn.splits


def _split_counts(split: SplitTransaction) -> bool:
    return split.parent is None or split.parent.deleted_at is None


def direct_actual(transactions: Iterable[Transaction]) -> Decimal:
    return total(abs(t.amount) for t in transactions if _counts_directly(t))


def split_actual(splits: Iterable[SplitTransaction]) -> Decimal:
    return total(abs(s.amount) for s in splits if _split_counts(s))


def item_actual(item: BudgetItem) -> Decimal:
    return direct_actual(item.transactions) + split_actual(item.split_transactions)


@dataclass(frozen=True)
class ItemTotals:
    item_id: int
    name: str
    planned: Decimal
    actual: Decimal

    @property
    def remaining(self) -> Decimal:
        return self.planned - self.actual

    @property
    def is_over_budget(self) -> bool:
        return self.actual > self.planned


@dataclass(frozen=True)
class CategoryTotals:
    category_id: int
    category_type: str
    name: str
    planned: Decimal
    actual: Decimal
    items: tuple[ItemTotals, ...]

    @property
    def is_income(self) -> bool:
        return is_income_type(self.category_type)


@dataclass(frozen=True)
class BudgetSummary:
    budget_id: int
    month: int
    year: int
    buffer: Decimal
    planned_income: Decimal
    planned_expenses: Decimal
    actual_income: Decimal
    actual_expenses: Decimal
    categories: tuple[CategoryTotals, ...]

    @property
    def remaining_to_budget(self) -> Decimal:
        return self.buffer + self.planned_income - self.planned_expenses

    @property
    def actual_remaining(self) -> Decimal:
        return self.buffer + self.actual_income - self.actual_expenses

    @property
    def is_balanced(self) -> bool:
        return is_zero(self.remaining_to_budget)


def category_totals(category: BudgetCategory) -> CategoryTotals:
    items = tuple(
        ItemTotals(
            item_id=item.id,
            name=item.name,
            planned=item.planned,
            actual=item_actual(item),
        )
        for item in category.items
    )
    return CategoryTotals(
        category_id=category.id,
        category_type=category.category_type,
        name=category.name,
        planned=total(i.planned for i in items),
        actual=total(i.actual for i in items),
        items=items,
    )


def summarize_budget(budget: Budget) -> BudgetSummary:
    """Planned and actual totals for one period.

    Income is every category of the ``income`` type; everything else counts
    as an expense. The buffer is the carry-over available on top of income.
    """
    per_category = tuple(category_totals(c) for c in budget.categories)
    planned_income = ZERO
    planned_expenses = ZERO
    actual_income = ZERO
    actual_expenses = ZERO
    for totals in per_category:
        if totals.is_income:
            planned_income += totals.planned
            actual_income += totals.actual
        else:
            planned_expenses += totals.planned
            actual_expenses += totals.actual
    return BudgetSummary(
        budget_id=budget.id,
        month=budget.month,
        year=budget.year,
        buffer=budget.buffer or ZERO,
        planned_income=planned_income,
        planned_expenses=planned_expenses,
        actual_income=actual_income,
        actual_expenses=actual_expenses,
        categories=per_category,
    )
