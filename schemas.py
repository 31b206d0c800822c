import datetime as dt
from datetime import date, datetime
from decimal import Decimal
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

from aggregation import BudgetSummary, CategoryTotals, ItemTotals
from categories import category_type_key, display_emoji, parse_category_type
from models import Budget, RecurringFrequency, TransactionType
from recurrence import RecurringSummary
from rollover import ResetMode

Money = Decimal


def _normalize_category_type(value: Optional[str]) -> Optional[str]:
    if value is None or not value.strip():
        return None
    return category_type_key(parse_category_type(value))


class BudgetPeriodIn(BaseModel):
    month: int = Field(..., ge=1, le=12)
    year: int = Field(..., ge=1970, le=3000)


class BudgetBufferIn(BaseModel):
    buffer: Money = Field(..., max_digits=12, decimal_places=2)


class ResetIn(BaseModel):
    budget_id: int
    mode: ResetMode


class CopyIn(BaseModel):
    source_month: int = Field(..., ge=1, le=12)
    source_year: int = Field(..., ge=1970, le=3000)
    target_month: int = Field(..., ge=1, le=12)
    target_year: int = Field(..., ge=1970, le=3000)


class SyncIn(BaseModel):
    account_id: Optional[int] = None
    start_date: Optional[date] = None
    end_date: Optional[date] = None


class CategoryIn(BaseModel):
    budget_id: int
    category_type: str = Field(..., min_length=1, max_length=50)
    name: str = Field(..., min_length=1, max_length=100)
    emoji: Optional[str] = Field(default=None, max_length=16)
    category_order: Optional[int] = Field(default=None, ge=0)

    @field_validator("category_type")
    @classmethod
    def _category_type(cls, value: str) -> str:
        normalized = _normalize_category_type(value)
        if normalized is None:
            raise ValueError("Category type cannot be empty")
        return normalized


class BudgetItemIn(BaseModel):
    category_id: int
    name: str = Field(..., min_length=1, max_length=100)
    planned: Money = Field(default=Decimal("0"), ge=0, max_digits=12, decimal_places=2)
    order: Optional[int] = Field(default=None, ge=0)


class BudgetItemUpdate(BaseModel):
    name: Optional[str] = Field(default=None, min_length=1, max_length=100)
    planned: Optional[Money] = Field(
        default=None, ge=0, max_digits=12, decimal_places=2
    )
    category_id: Optional[int] = None


class ReorderEntry(BaseModel):
    id: int
    order: int = Field(..., ge=0)


class ReorderIn(BaseModel):
    items: list[ReorderEntry] = Field(..., min_length=1)


class TransactionIn(BaseModel):
    budget_item_id: Optional[int] = None
    date: dt.date
    description: str = Field(..., min_length=1, max_length=255)
    amount: Money = Field(..., ge=0, max_digits=12, decimal_places=2)
    type: TransactionType
    merchant: Optional[str] = Field(default=None, max_length=255)
    is_non_earned: bool = False


class CategorizeIn(BaseModel):
    budget_item_id: Optional[int] = None


class SplitPartIn(BaseModel):
    budget_item_id: int
    amount: Money = Field(..., gt=0, max_digits=12, decimal_places=2)
    description: Optional[str] = Field(default=None, max_length=255)
    is_non_earned: bool = False


class SplitIn(BaseModel):
    parts: list[SplitPartIn] = Field(..., min_length=1)


class RecurringPaymentIn(BaseModel):
    name: str = Field(..., min_length=1, max_length=100)
    amount: Money = Field(..., gt=0, max_digits=12, decimal_places=2)
    frequency: RecurringFrequency
    next_due_date: date
    category_type: Optional[str] = Field(default=None, max_length=50)
    budget_item_id: Optional[int] = None

    @field_validator("category_type")
    @classmethod
    def _category_type(cls, value: Optional[str]) -> Optional[str]:
        return _normalize_category_type(value)


class RecurringPaymentUpdate(BaseModel):
    name: Optional[str] = Field(default=None, min_length=1, max_length=100)
    amount: Optional[Money] = Field(default=None, gt=0, max_digits=12, decimal_places=2)
    frequency: Optional[RecurringFrequency] = None
    next_due_date: Optional[date] = None
    category_type: Optional[str] = Field(default=None, max_length=50)
    is_active: Optional[bool] = None

    @field_validator("category_type")
    @classmethod
    def _category_type(cls, value: Optional[str]) -> Optional[str]:
        return _normalize_category_type(value)


class LinkedAccountIn(BaseModel):
    access_token: str = Field(..., min_length=1, max_length=255)
    provider_account_id: str = Field(..., min_length=1, max_length=100)
    account_name: str = Field(..., min_length=1, max_length=100)
    institution_name: Optional[str] = Field(default=None, max_length=100)
    account_type: Optional[str] = Field(default=None, max_length=50)
    last_four: Optional[str] = Field(default=None, max_length=4)
    sync_start_date: Optional[date] = None


class LinkedAccountToggleIn(BaseModel):
    sync_enabled: bool


class LinkedAccountOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    provider_account_id: str
    account_name: str
    institution_name: Optional[str]
    account_type: Optional[str]
    last_four: Optional[str]
    sync_enabled: bool
    last_synced_at: Optional[datetime]
    sync_start_date: Optional[date]


class TransactionOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    budget_item_id: Optional[int]
    linked_account_id: Optional[int]
    date: dt.date
    description: str
    amount: Money
    type: TransactionType
    merchant: Optional[str]
    provider_transaction_id: Optional[str]
    status: Optional[str]
    is_non_earned: bool
    deleted_at: Optional[datetime]


class UncategorizedTransactionOut(TransactionOut):
    suggested_budget_item_id: Optional[int] = None


class SplitOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    parent_transaction_id: int
    budget_item_id: int
    amount: Money
    description: Optional[str]
    is_non_earned: bool


class SyncResultOut(BaseModel):
    synced: int
    updated: int
    skipped: int
    errors: list[str]


class RolloverResultOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    budget_id: int
    created: bool
    copied_items: int
    projected_items: int
    zeroed_items: int
    message: Optional[str]


class RecurringPaymentOut(BaseModel):
    id: int
    name: str
    amount: Money
    frequency: RecurringFrequency
    next_due_date: date
    funded_amount: Money
    category_type: Optional[str]
    is_active: bool
    monthly_contribution: Money
    display_target: Money
    percent_funded: Decimal
    is_fully_funded: bool
    days_until_due: int
    is_paid: bool

    @classmethod
    def from_summary(cls, summary: RecurringSummary) -> "RecurringPaymentOut":
        payment = summary.payment
        return cls(
            id=payment.id,
            name=payment.name,
            amount=payment.amount,
            frequency=payment.frequency,
            next_due_date=payment.next_due_date,
            funded_amount=summary.funded_amount,
            category_type=payment.category_type,
            is_active=payment.is_active,
            monthly_contribution=summary.monthly_contribution,
            display_target=summary.display_target,
            percent_funded=summary.percent_funded,
            is_fully_funded=summary.is_fully_funded,
            days_until_due=summary.days_until_due,
            is_paid=summary.is_paid,
        )


class BudgetItemOut(BaseModel):
    id: int
    name: str
    planned: Money
    actual: Money
    remaining: Money
    is_over_budget: bool
    order: int
    recurring_payment_id: Optional[int]


class CategoryOut(BaseModel):
    id: int
    category_type: str
    name: str
    emoji: str
    category_order: int
    planned: Money
    actual: Money
    items: list[BudgetItemOut]


class BudgetOut(BaseModel):
    id: int
    month: int
    year: int
    buffer: Money
    planned_income: Money
    planned_expenses: Money
    actual_income: Money
    actual_expenses: Money
    remaining_to_budget: Money
    actual_remaining: Money
    is_balanced: bool
    categories: list[CategoryOut]

    @classmethod
    def from_budget(cls, budget: Budget, summary: BudgetSummary) -> "BudgetOut":
        totals_by_id: dict[int, CategoryTotals] = {
            c.category_id: c for c in summary.categories
        }
        categories: list[CategoryOut] = []
        for category in budget.categories:
            totals = totals_by_id[category.id]
            items_by_id: dict[int, ItemTotals] = {i.item_id: i for i in totals.items}
            categories.append(
                CategoryOut(
                    id=category.id,
                    category_type=category.category_type,
                    name=category.name,
                    emoji=display_emoji(category.category_type, category.emoji),
                    category_order=category.category_order,
                    planned=totals.planned,
                    actual=totals.actual,
                    items=[
                        BudgetItemOut(
                            id=item.id,
                            name=item.name,
                            planned=item.planned,
                            actual=items_by_id[item.id].actual,
                            remaining=items_by_id[item.id].remaining,
                            is_over_budget=items_by_id[item.id].is_over_budget,
                            order=item.order,
                            recurring_payment_id=item.recurring_payment_id,
                        )
                        for item in category.items
                    ],
                )
            )
        return cls(
            id=budget.id,
            month=budget.month,
            year=budget.year,
            buffer=summary.buffer,
            planned_income=summary.planned_income,
            planned_expenses=summary.planned_expenses,
            actual_income=summary.actual_income,
            actual_expenses=summary.actual_expenses,
            remaining_to_budget=summary.remaining_to_budget,
            actual_remaining=summary.actual_remaining,
            is_balanced=summary.is_balanced,
            categories=categories,
        )
