from datetime import date, datetime
from decimal import Decimal
from enum import Enum
from typing import Optional

from sqlalchemy import (
    Boolean,
    CheckConstraint,
    Date,
    DateTime,
    Enum as SAEnum,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    TypeDecorator,
    UniqueConstraint,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from database import Base
from money import quantize


class Cents(TypeDecorator):
    """Decimal amounts stored as integer cents."""

    impl = Integer
    cache_ok = True

    def process_bind_param(self, value, dialect):
        if value is None:
            return None
        return int(quantize(Decimal(value)).scaleb(2))

    def process_result_value(self, value, dialect):
        if value is None:
            return None
        return Decimal(value).scaleb(-2)


MONEY = Cents()


class TransactionType(str, Enum):
    income = "income"
    expense = "expense"


class RecurringFrequency(str, Enum):
    weekly = "weekly"
    bi_weekly = "bi-weekly"
    monthly = "monthly"
    quarterly = "quarterly"
    semi_annually = "semi-annually"
    annually = "annually"


FREQUENCY_ENUM = SAEnum(
    RecurringFrequency,
    name="recurringfrequency",
    values_callable=lambda enum_cls: [member.value for member in enum_cls],
)


class TimestampMixin:
    created_at: Mapped[datetime] = mapped_column(
        DateTime, default=datetime.utcnow, nullable=False
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False
    )


class Budget(Base, TimestampMixin):
    __tablename__ = "budgets"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    user_id: Mapped[str] = mapped_column(String(64), nullable=False)
    month: Mapped[int] = mapped_column(Integer, nullable=False)
    year: Mapped[int] = mapped_column(Integer, nullable=False)
    buffer: Mapped[Decimal] = mapped_column(
        "buffer_cents", MONEY, nullable=False, default=Decimal("0")
    )

    categories: Mapped[list["BudgetCategory"]] = relationship(
        "BudgetCategory",
        back_populates="budget",
        cascade="all, delete-orphan",
        order_by="BudgetCategory.category_order",
    )

    __table_args__ = (
        UniqueConstraint("user_id", "year", "month", name="uq_budget_user_month"),
        CheckConstraint("month >= 1 AND month <= 12", name="ck_budget_month_range"),
    )


class BudgetCategory(Base, TimestampMixin):
    __tablename__ = "budget_categories"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    budget_id: Mapped[int] = mapped_column(
        ForeignKey("budgets.id", ondelete="CASCADE"), nullable=False
    )
    category_type: Mapped[str] = mapped_column(String(50), nullable=False)
    name: Mapped[str] = mapped_column(String(100), nullable=False)
    emoji: Mapped[Optional[str]] = mapped_column(String(16))
    category_order: Mapped[int] = mapped_column(Integer, default=0, nullable=False)

    budget: Mapped["Budget"] = relationship("Budget", back_populates="categories")
    items: Mapped[list["BudgetItem"]] = relationship(
        "BudgetItem",
        back_populates="category",
        cascade="all, delete-orphan",
        order_by="BudgetItem.order",
    )

    __table_args__ = (
        Index("ix_budget_categories_budget_type", "budget_id", "category_type"),
    )


class BudgetItem(Base, TimestampMixin):
    __tablename__ = "budget_items"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    category_id: Mapped[int] = mapped_column(
        ForeignKey("budget_categories.id", ondelete="CASCADE"), nullable=False
    )
    name: Mapped[str] = mapped_column(String(100), nullable=False)
    planned: Mapped[Decimal] = mapped_column(
        "planned_cents", MONEY, nullable=False, default=Decimal("0")
    )
    order: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    recurring_payment_id: Mapped[Optional[int]] = mapped_column(
        ForeignKey("recurring_payments.id", ondelete="SET NULL")
    )

    category: Mapped["BudgetCategory"] = relationship(
        "BudgetCategory", back_populates="items"
    )
    recurring_payment: Mapped[Optional["RecurringPayment"]] = relationship(
        "RecurringPayment", back_populates="budget_items"
    )
    transactions: Mapped[list["Transaction"]] = relationship(
        "Transaction", back_populates="budget_item"
    )
    split_transactions: Mapped[list["SplitTransaction"]] = relationship(
        "SplitTransaction", back_populates="budget_item", cascade="all, delete-orphan"
    )

    __table_args__ = (
        Index("ix_budget_items_recurring_payment", "recurring_payment_id"),
    )


class Transaction(Base, TimestampMixin):
    __tablename__ = "transactions"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    user_id: Mapped[str] = mapped_column(String(64), nullable=False)
    budget_item_id: Mapped[Optional[int]] = mapped_column(
        ForeignKey("budget_items.id", ondelete="SET NULL")
    )
    linked_account_id: Mapped[Optional[int]] = mapped_column(
        ForeignKey("linked_accounts.id", ondelete="SET NULL")
    )
    date: Mapped[date] = mapped_column(Date, nullable=False)
    description: Mapped[str] = mapped_column(String(255), nullable=False)
    amount: Mapped[Decimal] = mapped_column("amount_cents", MONEY, nullable=False)
    type: Mapped[TransactionType] = mapped_column(
        SAEnum(TransactionType), nullable=False
    )
    merchant: Mapped[Optional[str]] = mapped_column(String(255))
    provider_transaction_id: Mapped[Optional[str]] = mapped_column(String(100))
    provider_account_id: Mapped[Optional[str]] = mapped_column(String(100))
    status: Mapped[Optional[str]] = mapped_column(String(20))
    is_non_earned: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    deleted_at: Mapped[Optional[datetime]] = mapped_column(DateTime)

    budget_item: Mapped[Optional["BudgetItem"]] = relationship(
        "BudgetItem", back_populates="transactions"
    )
    linked_account: Mapped[Optional["LinkedAccount"]] = relationship(
        "LinkedAccount", back_populates="transactions"
    )
    splits: Mapped[list["SplitTransaction"]] = relationship(
        "SplitTransaction", back_populates="parent", cascade="all, delete-orphan"
    )

    __table_args__ = (
        UniqueConstraint(
            "user_id", "provider_transaction_id", name="uq_txn_user_provider_id"
        ),
        Index("ix_transactions_user_date", "user_id", "date"),
        Index("ix_transactions_user_item", "user_id", "budget_item_id"),
        Index("ix_transactions_user_merchant", "user_id", "merchant"),
        CheckConstraint("amount_cents >= 0", name="ck_transactions_amount_positive"),
    )


class SplitTransaction(Base, TimestampMixin):
    __tablename__ = "split_transactions"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    parent_transaction_id: Mapped[int] = mapped_column(
        ForeignKey("transactions.id", ondelete="CASCADE"), nullable=False
    )
    budget_item_id: Mapped[int] = mapped_column(
        ForeignKey("budget_items.id", ondelete="CASCADE"), nullable=False
    )
    amount: Mapped[Decimal] = mapped_column("amount_cents", MONEY, nullable=False)
    description: Mapped[Optional[str]] = mapped_column(Text)
    is_non_earned: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)

    parent: Mapped["Transaction"] = relationship("Transaction", back_populates="splits")
    budget_item: Mapped["BudgetItem"] = relationship(
        "BudgetItem", back_populates="split_transactions"
    )

    __table_args__ = (
        CheckConstraint("amount_cents > 0", name="ck_split_amount_positive"),
        Index("ix_split_transactions_parent", "parent_transaction_id"),
    )


class RecurringPayment(Base, TimestampMixin):
    __tablename__ = "recurring_payments"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    user_id: Mapped[str] = mapped_column(String(64), nullable=False)
    name: Mapped[str] = mapped_column(String(100), nullable=False)
    amount: Mapped[Decimal] = mapped_column("amount_cents", MONEY, nullable=False)
    frequency: Mapped[RecurringFrequency] = mapped_column(
        FREQUENCY_ENUM, nullable=False
    )
    next_due_date: Mapped[date] = mapped_column(Date, nullable=False)
    funded_amount: Mapped[Decimal] = mapped_column(
        "funded_cents", MONEY, nullable=False, default=Decimal("0")
    )
    category_type: Mapped[Optional[str]] = mapped_column(String(50))
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)

    budget_items: Mapped[list["BudgetItem"]] = relationship(
        "BudgetItem", back_populates="recurring_payment"
    )

    __table_args__ = (
        CheckConstraint("amount_cents >= 0", name="ck_recurring_amount_positive"),
        Index("ix_recurring_payments_user_active", "user_id", "is_active"),
    )


class LinkedAccount(Base, TimestampMixin):
    __tablename__ = "linked_accounts"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    user_id: Mapped[str] = mapped_column(String(64), nullable=False)
    access_token: Mapped[str] = mapped_column(String(255), nullable=False)
    provider_account_id: Mapped[str] = mapped_column(String(100), nullable=False)
    institution_name: Mapped[Optional[str]] = mapped_column(String(100))
    account_name: Mapped[str] = mapped_column(String(100), nullable=False)
    account_type: Mapped[Optional[str]] = mapped_column(String(50))
    last_four: Mapped[Optional[str]] = mapped_column(String(4))
    sync_enabled: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    last_synced_at: Mapped[Optional[datetime]] = mapped_column(DateTime)
    sync_start_date: Mapped[Optional[date]] = mapped_column(Date)

    transactions: Mapped[list["Transaction"]] = relationship(
        "Transaction", back_populates="linked_account"
    )

    __table_args__ = (
        UniqueConstraint(
            "user_id", "provider_account_id", name="uq_linked_account_user_provider"
        ),
    )
