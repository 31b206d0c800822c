from dataclasses import dataclass
from datetime import date, datetime
from decimal import Decimal
from typing import Optional
from zoneinfo import ZoneInfo

from sqlalchemy import select
from sqlalchemy.orm import Session, selectinload

from aggregation import item_actual
from categories import is_income_type
from config import get_settings
from models import (
    Budget,
    BudgetCategory,
    BudgetItem,
    RecurringFrequency,
    RecurringPayment,
    SplitTransaction,
    Transaction,
)
from money import ZERO, divide, multiply, percent, quantize, total
from periods import MonthRef

# Frequencies shorter than a month are expressed as a monthly multiple.
_PER_MONTH_MULTIPLIER = {
    RecurringFrequency.weekly: 4,
    RecurringFrequency.bi_weekly: 2,
}

_MONTHS_IN_CYCLE = {
    RecurringFrequency.monthly: 1,
    RecurringFrequency.quarterly: 3,
    RecurringFrequency.semi_annually: 6,
    RecurringFrequency.annually: 12,
}


def local_today() -> date:
    settings = get_settings()
    tz = ZoneInfo(settings.timezone)
    return datetime.now(tz).date()


def months_in_cycle(frequency: RecurringFrequency) -> int:
    return _MONTHS_IN_CYCLE.get(frequency, 1)


def monthly_contribution(amount: Decimal, frequency: RecurringFrequency) -> Decimal:
    """Monthly share of a payment, unrounded.

    For expenses this spreads a cycle total across its months; for income it
    is the expected monthly equivalent. Both read the same table.
    """
    multiplier = _PER_MONTH_MULTIPLIER.get(frequency)
    if multiplier is not None:
        return multiply(amount, multiplier)
    return divide(amount, months_in_cycle(frequency))


def display_target(
    amount: Decimal, frequency: RecurringFrequency, is_income: bool
) -> Decimal:
    if is_income or frequency == RecurringFrequency.monthly:
        return monthly_contribution(amount, frequency)
    return amount


def resets_each_period(payment: RecurringPayment) -> bool:
    return (
        is_income_type(payment.category_type)
        or payment.frequency == RecurringFrequency.monthly
    )


def days_until_due(next_due_date: date, today: Optional[date] = None) -> int:
    today = today or local_today()
    return (next_due_date - today).days


def linked_items(session: Session, payment: RecurringPayment) -> list[BudgetItem]:
    stmt = (
        select(BudgetItem)
        .join(BudgetCategory, BudgetItem.category_id == BudgetCategory.id)
        .join(Budget, BudgetCategory.budget_id == Budget.id)
        .options(
            selectinload(BudgetItem.category).selectinload(BudgetCategory.budget),
            selectinload(BudgetItem.transactions).selectinload(Transaction.splits),
            selectinload(BudgetItem.split_transactions).selectinload(
                SplitTransaction.parent
            ),
        )
        .where(
            BudgetItem.recurring_payment_id == payment.id,
            Budget.user_id == payment.user_id,
        )
        .order_by(Budget.year, Budget.month, BudgetItem.id)
        .execution_options(populate_existing=True)
    )
    return list(session.scalars(stmt).all())


def funded_amount(
    session: Session, payment: RecurringPayment, today: Optional[date] = None
) -> Decimal:
    items = linked_items(session, payment)
    if resets_each_period(payment):
        current = MonthRef.of(today or local_today())
        for item in items:
            budget = item.category.budget
            if budget.month == current.month and budget.year == current.year:
                return item_actual(item)
        return ZERO
    return total(item_actual(item) for item in items)


@dataclass(frozen=True)
class RecurringSummary:
    payment: RecurringPayment
    monthly_contribution: Decimal
    display_target: Decimal
    funded_amount: Decimal
    percent_funded: Decimal
    is_fully_funded: bool
    days_until_due: int

    @property
    def is_paid(self) -> bool:
        return self.is_fully_funded


def summarize(
    payment: RecurringPayment, funded: Decimal, today: Optional[date] = None
) -> RecurringSummary:
    is_income = is_income_type(payment.category_type)
    contribution = quantize(monthly_contribution(payment.amount, payment.frequency))
    target = quantize(display_target(payment.amount, payment.frequency, is_income))
    return RecurringSummary(
        payment=payment,
        monthly_contribution=contribution,
        display_target=target,
        funded_amount=funded,
        percent_funded=quantize(min(Decimal("100"), percent(funded, target))),
        is_fully_funded=funded >= target,
        days_until_due=days_until_due(payment.next_due_date, today),
    )
