from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import date, datetime
from decimal import Decimal
from typing import Optional

from sqlalchemy import func, select
from sqlalchemy.orm import Session, selectinload

from aggregation import BudgetSummary, summarize_budget
from config import get_settings
from errors import NotFoundError, ValidationError
from models import (
    Budget,
    BudgetCategory,
    BudgetItem,
    LinkedAccount,
    RecurringPayment,
    SplitTransaction,
    Transaction,
)
from money import BALANCE_EPSILON, format_money, quantize, total
from periods import MonthRef
from recurrence import RecurringSummary, funded_amount, local_today, summarize
from rollover import RolloverEngine, RolloverResult
from schemas import (
    BudgetItemIn,
    BudgetItemUpdate,
    CategoryIn,
    LinkedAccountIn,
    RecurringPaymentIn,
    RecurringPaymentUpdate,
    ReorderEntry,
    SplitPartIn,
    TransactionIn,
)

logger = logging.getLogger(__name__)

BUDGET_LOAD_OPTIONS = (
    selectinload(Budget.categories)
    .selectinload(BudgetCategory.items)
    .selectinload(BudgetItem.transactions)
    .selectinload(Transaction.splits),
    selectinload(Budget.categories)
    .selectinload(BudgetCategory.items)
    .selectinload(BudgetItem.split_transactions)
    .selectinload(SplitTransaction.parent),
)


def owned_item(session: Session, user_id: str, item_id: int) -> BudgetItem:
    item = session.scalar(
        select(BudgetItem)
        .join(BudgetCategory, BudgetItem.category_id == BudgetCategory.id)
        .join(Budget, BudgetCategory.budget_id == Budget.id)
        .options(selectinload(BudgetItem.category))
        .where(Budget.user_id == user_id, BudgetItem.id == item_id)
    )
    if not item:
        raise NotFoundError("Budget item not found")
    return item


def owned_category(session: Session, user_id: str, category_id: int) -> BudgetCategory:
    category = session.scalar(
        select(BudgetCategory)
        .join(Budget, BudgetCategory.budget_id == Budget.id)
        .options(selectinload(BudgetCategory.items))
        .where(Budget.user_id == user_id, BudgetCategory.id == category_id)
    )
    if not category:
        raise NotFoundError("Category not found")
    return category


class BudgetService:
    def __init__(self, session: Session, user_id: str) -> None:
        self.session = session
        self.user_id = user_id

    def load(self, month: int, year: int) -> Optional[Budget]:
        ref = MonthRef(year=year, month=month)
        stmt = (
            select(Budget)
            .options(*BUDGET_LOAD_OPTIONS)
            .where(
                Budget.user_id == self.user_id,
                Budget.month == ref.month,
                Budget.year == ref.year,
            )
            .execution_options(populate_existing=True)
        )
        return self.session.scalar(stmt)

    def get(self, budget_id: int) -> Budget:
        stmt = (
            select(Budget)
            .options(*BUDGET_LOAD_OPTIONS)
            .where(Budget.user_id == self.user_id, Budget.id == budget_id)
            .execution_options(populate_existing=True)
        )
        budget = self.session.scalar(stmt)
        if not budget:
            raise NotFoundError("Budget not found")
        return budget

    def open_period(self, month: int, year: int) -> tuple[Budget, RolloverResult]:
        ref = MonthRef(year=year, month=month)
        _budget, result = RolloverEngine(self.session, self.user_id).open(ref)
        return self.get(result.budget_id), result

    def summary(self, month: int, year: int) -> BudgetSummary:
        budget = self.load(month, year)
        if budget is None:
            raise NotFoundError("Budget not found")
        return summarize_budget(budget)

    def update_buffer(self, budget_id: int, buffer: Decimal) -> Budget:
        budget = self.get(budget_id)
        budget.buffer = quantize(buffer)
        self.session.commit()
        return budget


class CategoryService:
    def __init__(self, session: Session, user_id: str) -> None:
        self.session = session
        self.user_id = user_id

    def create(self, data: CategoryIn) -> BudgetCategory:
        budget = self.session.scalar(
            select(Budget)
            .options(selectinload(Budget.categories))
            .where(Budget.user_id == self.user_id, Budget.id == data.budget_id)
        )
        if not budget:
            raise NotFoundError("Budget not found")
        if any(c.category_type == data.category_type for c in budget.categories):
            raise ValidationError("Category with this type already exists")

        order = data.category_order
        if order is None:
            order = (
                max((c.category_order or 0 for c in budget.categories), default=-1) + 1
            )
        category = BudgetCategory(
            category_type=data.category_type,
            name=data.name.strip(),
            emoji=data.emoji,
            category_order=order,
        )
        budget.categories.append(category)
        self.session.commit()
        self.session.refresh(category)
        return category

    def delete(self, category_id: int) -> None:
        category = owned_category(self.session, self.user_id, category_id)
        self.session.delete(category)
        self.session.commit()


class BudgetItemService:
    def __init__(self, session: Session, user_id: str) -> None:
        self.session = session
        self.user_id = user_id

    def get(self, item_id: int) -> BudgetItem:
        return owned_item(self.session, self.user_id, item_id)

    def create(self, data: BudgetItemIn) -> BudgetItem:
        category = owned_category(self.session, self.user_id, data.category_id)
        order = data.order
        if order is None:
            order = max((i.order or 0 for i in category.items), default=-1) + 1
        item = BudgetItem(name=data.name.strip(), planned=quantize(data.planned), order=order)
        category.items.append(item)
        self.session.commit()
        self.session.refresh(item)
        return item

    def update(self, item_id: int, data: BudgetItemUpdate) -> BudgetItem:
        item = self.get(item_id)
        if data.category_id is not None and data.category_id != item.category_id:
            target = owned_category(self.session, self.user_id, data.category_id)
            if target.budget_id != item.category.budget_id:
                raise ValidationError("Items can only move within the same budget")
            item.category = target
        if data.name is not None:
            item.name = data.name.strip()
        if data.planned is not None:
            item.planned = quantize(data.planned)
        self.session.commit()
        self.session.refresh(item)
        return item

    def delete(self, item_id: int) -> None:
        item = self.get(item_id)
        item.category.items.remove(item)
        self.session.commit()

    def reorder(self, entries: list[ReorderEntry]) -> int:
        ids = {entry.id for entry in entries}
        items = self.session.scalars(
            select(BudgetItem)
            .join(BudgetCategory, BudgetItem.category_id == BudgetCategory.id)
            .join(Budget, BudgetCategory.budget_id == Budget.id)
            .where(Budget.user_id == self.user_id, BudgetItem.id.in_(ids))
        ).all()
        by_id = {item.id: item for item in items}
        if len(by_id) != len(ids):
            raise NotFoundError("Budget item not found")

        for entry in entries:
            by_id[entry.id].order = entry.order
        self.session.commit()
        return len(entries)


@dataclass(frozen=True)
class SuggestedTransaction:
    transaction: Transaction
    suggested_budget_item_id: Optional[int]


class TransactionService:
    def __init__(self, session: Session, user_id: str) -> None:
        self.session = session
        self.user_id = user_id

    def get(self, transaction_id: int, *, include_deleted: bool = False) -> Transaction:
        stmt = (
            select(Transaction)
            .options(selectinload(Transaction.splits))
            .where(
                Transaction.user_id == self.user_id, Transaction.id == transaction_id
            )
        )
        if not include_deleted:
            stmt = stmt.where(Transaction.deleted_at.is_(None))
        txn = self.session.scalar(stmt)
        if not txn:
            raise NotFoundError("Transaction not found")
        return txn

    def _check_item(self, budget_item_id: Optional[int]) -> None:
        if budget_item_id is not None:
            owned_item(self.session, self.user_id, budget_item_id)

    def create(self, data: TransactionIn) -> Transaction:
        self._check_item(data.budget_item_id)
        txn = Transaction(
            user_id=self.user_id,
            budget_item_id=data.budget_item_id,
            date=data.date,
            description=data.description.strip(),
            amount=quantize(abs(data.amount)),
            type=data.type,
            merchant=data.merchant,
            is_non_earned=data.is_non_earned,
        )
        self.session.add(txn)
        self.session.commit()
        self.session.refresh(txn)
        return txn

    def update(self, transaction_id: int, data: TransactionIn) -> Transaction:
        txn = self.get(transaction_id)
        self._check_item(data.budget_item_id)
        if txn.splits and quantize(abs(data.amount)) < total(s.amount for s in txn.splits):
            raise ValidationError("Amount cannot be less than the split total")
        txn.budget_item_id = data.budget_item_id
        txn.date = data.date
        txn.description = data.description.strip()
        txn.amount = quantize(abs(data.amount))
        txn.type = data.type
        txn.merchant = data.merchant
        txn.is_non_earned = data.is_non_earned
        self.session.commit()
        self.session.refresh(txn)
        return txn

    def categorize(
        self, transaction_id: int, budget_item_id: Optional[int]
    ) -> Transaction:
        txn = self.get(transaction_id)
        self._check_item(budget_item_id)
        txn.budget_item_id = budget_item_id
        self.session.commit()
        self.session.refresh(txn)
        return txn

    def soft_delete(self, transaction_id: int) -> None:
        txn = self.get(transaction_id, include_deleted=True)
        if txn.deleted_at is not None:
            return
        txn.deleted_at = datetime.utcnow()
        self.session.commit()

    def restore(self, transaction_id: int) -> None:
        txn = self.get(transaction_id, include_deleted=True)
        if txn.deleted_at is None:
            return
        txn.deleted_at = None
        self.session.commit()

    def deleted(self, limit: int = 200) -> list[Transaction]:
        stmt = (
            select(Transaction)
            .where(
                Transaction.user_id == self.user_id, Transaction.deleted_at.isnot(None)
            )
            .order_by(Transaction.deleted_at.desc(), Transaction.id.desc())
            .limit(limit)
        )
        return list(self.session.scalars(stmt).all())

    def list_for_period(self, month: int, year: int) -> list[Transaction]:
        ref = MonthRef(year=year, month=month)
        stmt = (
            select(Transaction)
            .where(
                Transaction.user_id == self.user_id,
                Transaction.deleted_at.is_(None),
                Transaction.date.between(ref.start, ref.end),
            )
            .order_by(Transaction.date.desc(), Transaction.id.desc())
        )
        return list(self.session.scalars(stmt).all())

    def split(self, transaction_id: int, parts: list[SplitPartIn]) -> list[SplitTransaction]:
        """Replace the splits of a transaction with ``parts``.

        All parts are validated before anything is written.
        """
        parent = self.get(transaction_id)
        items = [owned_item(self.session, self.user_id, p.budget_item_id) for p in parts]
        split_total = total(quantize(p.amount) for p in parts)
        if split_total - parent.amount > BALANCE_EPSILON:
            raise ValidationError("Split amounts exceed the transaction amount")

        parent.splits.clear()
        self.session.flush()
        for part, item in zip(parts, items):
            parent.splits.append(
                SplitTransaction(
                    budget_item=item,
                    amount=quantize(part.amount),
                    description=part.description,
                    is_non_earned=part.is_non_earned,
                )
            )
        self.session.commit()
        self.session.refresh(parent)
        return list(parent.splits)

    def clear_splits(self, transaction_id: int) -> None:
        parent = self.get(transaction_id)
        parent.splits.clear()
        self.session.commit()

    def list_uncategorized(
        self, month: Optional[int] = None, year: Optional[int] = None
    ) -> list[SuggestedTransaction]:
        stmt = (
            select(Transaction)
            .where(
                Transaction.user_id == self.user_id,
                Transaction.budget_item_id.is_(None),
                Transaction.deleted_at.is_(None),
                ~Transaction.splits.any(),
            )
            .order_by(Transaction.date.desc(), Transaction.id.desc())
        )
        txns = list(self.session.scalars(stmt).all())

        suggestions: dict[str, int] = {}
        merchants = sorted({t.merchant for t in txns if t.merchant})
        if merchants and month is not None and year is not None:
            suggestions = self.suggest_items(merchants, MonthRef(year=year, month=month))

        return [
            SuggestedTransaction(
                transaction=t,
                suggested_budget_item_id=suggestions.get(t.merchant) if t.merchant else None,
            )
            for t in txns
        ]

    def suggest_items(self, merchants: list[str], ref: MonthRef) -> dict[str, int]:
        """Map merchant -> item id in ``ref`` by most frequent past item name."""
        uses = func.count(Transaction.id).label("uses")
        rows = self.session.execute(
            select(Transaction.merchant, BudgetItem.name, uses)
            .join(BudgetItem, Transaction.budget_item_id == BudgetItem.id)
            .where(
                Transaction.user_id == self.user_id,
                Transaction.deleted_at.is_(None),
                Transaction.merchant.in_(merchants),
            )
            .group_by(Transaction.merchant, BudgetItem.name)
        ).all()

        best: dict[str, tuple[int, str]] = {}
        for merchant, name, count in rows:
            current = best.get(merchant)
            if current is None or (-count, name) < (-current[0], current[1]):
                best[merchant] = (count, name)
        if not best:
            return {}

        names = {name for _count, name in best.values()}
        items = self.session.execute(
            select(BudgetItem.id, BudgetItem.name)
            .join(BudgetCategory, BudgetItem.category_id == BudgetCategory.id)
            .join(Budget, BudgetCategory.budget_id == Budget.id)
            .where(
                Budget.user_id == self.user_id,
                Budget.month == ref.month,
                Budget.year == ref.year,
                BudgetItem.name.in_(names),
            )
            .order_by(BudgetItem.id)
        ).all()
        name_to_id: dict[str, int] = {}
        for item_id, name in items:
            name_to_id.setdefault(name, item_id)

        return {
            merchant: name_to_id[name]
            for merchant, (_count, name) in best.items()
            if name in name_to_id
        }


class RecurringPaymentService:
    def __init__(self, session: Session, user_id: str) -> None:
        self.session = session
        self.user_id = user_id

    def get(self, payment_id: int) -> RecurringPayment:
        payment = self.session.get(RecurringPayment, payment_id)
        if not payment or payment.user_id != self.user_id:
            raise NotFoundError("Recurring payment not found")
        return payment

    def describe(
        self, payment: RecurringPayment, today: Optional[date] = None
    ) -> RecurringSummary:
        today = today or local_today()
        return summarize(payment, funded_amount(self.session, payment, today), today)

    def list_all(
        self, today: Optional[date] = None, *, include_inactive: bool = False
    ) -> list[RecurringSummary]:
        today = today or local_today()
        stmt = select(RecurringPayment).where(RecurringPayment.user_id == self.user_id)
        if not include_inactive:
            stmt = stmt.where(RecurringPayment.is_active.is_(True))
        payments = self.session.scalars(stmt).all()
        summaries = [self.describe(p, today) for p in payments]
        summaries.sort(key=lambda s: (s.days_until_due, s.payment.name.lower()))
        return summaries

    def _link_item(self, payment: RecurringPayment, item_id: int) -> None:
        item = owned_item(self.session, self.user_id, item_id)
        budget_id = item.category.budget_id
        # One linked item per payment per period.
        others = self.session.scalars(
            select(BudgetItem)
            .join(BudgetCategory, BudgetItem.category_id == BudgetCategory.id)
            .where(
                BudgetCategory.budget_id == budget_id,
                BudgetItem.recurring_payment_id == payment.id,
                BudgetItem.id != item.id,
            )
        ).all()
        for other in others:
            other.recurring_payment = None
        item.recurring_payment = payment

    def _finish(self, payment: RecurringPayment, today: Optional[date]) -> RecurringSummary:
        self.session.flush()
        summary = self.describe(payment, today)
        payment.funded_amount = quantize(summary.funded_amount)
        self.session.commit()
        self.session.refresh(payment)
        return summary

    def create(
        self, data: RecurringPaymentIn, today: Optional[date] = None
    ) -> RecurringSummary:
        if data.budget_item_id is not None:
            owned_item(self.session, self.user_id, data.budget_item_id)
        payment = RecurringPayment(
            user_id=self.user_id,
            name=data.name.strip(),
            amount=quantize(data.amount),
            frequency=data.frequency,
            next_due_date=data.next_due_date,
            category_type=data.category_type,
            funded_amount=Decimal("0"),
            is_active=True,
        )
        self.session.add(payment)
        self.session.flush()
        if data.budget_item_id is not None:
            self._link_item(payment, data.budget_item_id)
        symbol = get_settings().currency_symbol
        logger.info(
            f"recurring_created: user={self.user_id} payment_id={payment.id} "
            f"amount={format_money(payment.amount, symbol)} frequency={payment.frequency.value}"
        )
        return self._finish(payment, today)

    def update(
        self,
        payment_id: int,
        data: RecurringPaymentUpdate,
        today: Optional[date] = None,
    ) -> RecurringSummary:
        payment = self.get(payment_id)
        for field, value in data.model_dump(exclude_unset=True).items():
            if field == "amount" and value is not None:
                value = quantize(value)
            if field in ("name", "amount", "frequency", "next_due_date", "is_active") and value is None:
                raise ValidationError(f"{field} cannot be null")
            setattr(payment, field, value)
        return self._finish(payment, today)

    def link_item(
        self, payment_id: int, item_id: int, today: Optional[date] = None
    ) -> RecurringSummary:
        payment = self.get(payment_id)
        self._link_item(payment, item_id)
        return self._finish(payment, today)

    def delete(self, payment_id: int) -> None:
        payment = self.get(payment_id)
        for item in list(payment.budget_items):
            item.recurring_payment = None
        self.session.delete(payment)
        self.session.commit()


class LinkedAccountService:
    def __init__(self, session: Session, user_id: str) -> None:
        self.session = session
        self.user_id = user_id

    def list_all(self) -> list[LinkedAccount]:
        stmt = (
            select(LinkedAccount)
            .where(LinkedAccount.user_id == self.user_id)
            .order_by(LinkedAccount.account_name, LinkedAccount.id)
        )
        return list(self.session.scalars(stmt).all())

    def get(self, account_id: int) -> LinkedAccount:
        account = self.session.get(LinkedAccount, account_id)
        if not account or account.user_id != self.user_id:
            raise NotFoundError("Linked account not found")
        return account

    def create(self, data: LinkedAccountIn) -> LinkedAccount:
        existing = self.session.scalar(
            select(LinkedAccount).where(
                LinkedAccount.user_id == self.user_id,
                LinkedAccount.provider_account_id == data.provider_account_id,
            )
        )
        if existing:
            existing.access_token = data.access_token
            existing.account_name = data.account_name
            existing.sync_enabled = True
            self.session.commit()
            self.session.refresh(existing)
            return existing

        account = LinkedAccount(
            user_id=self.user_id,
            access_token=data.access_token,
            provider_account_id=data.provider_account_id,
            account_name=data.account_name.strip(),
            institution_name=data.institution_name,
            account_type=data.account_type,
            last_four=data.last_four,
            sync_start_date=data.sync_start_date,
            sync_enabled=True,
        )
        self.session.add(account)
        self.session.commit()
        self.session.refresh(account)
        return account

    def set_sync_enabled(self, account_id: int, sync_enabled: bool) -> LinkedAccount:
        account = self.get(account_id)
        account.sync_enabled = sync_enabled
        self.session.commit()
        return account

    def delete(self, account_id: int) -> None:
        account = self.get(account_id)
        # Synced transactions stay in the ledger without the account link.
        for txn in list(account.transactions):
            txn.linked_account = None
        self.session.delete(account)
        self.session.commit()
