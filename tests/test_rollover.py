from datetime import date
from decimal import Decimal

import pytest
from sqlalchemy import create_engine, select
from sqlalchemy.orm import Session

from categories import DEFAULT_CATEGORIES
from database import Base
from errors import NotFoundError, ValidationError
from models import BudgetItem, RecurringFrequency
from periods import MonthRef
from rollover import NO_SOURCE_MESSAGE, ResetMode, RolloverEngine, is_duplicate_item
from schemas import (
    BudgetItemIn,
    BudgetItemUpdate,
    CategoryIn,
    RecurringPaymentIn,
    RecurringPaymentUpdate,
)
from services import (
    BudgetItemService,
    BudgetService,
    CategoryService,
    RecurringPaymentService,
)

USER = "user-1"
DEFAULT_TYPES = [s.category_type.value for s in DEFAULT_CATEGORIES]


def _session() -> Session:
    engine = create_engine("sqlite:///:memory:")
    Base.metadata.create_all(engine)
    return Session(engine)


def _category(budget, category_type):
    for category in budget.categories:
        if category.category_type == category_type:
            return category
    raise AssertionError(f"no {category_type} category")


def _item_names(budget):
    return sorted(item.name for c in budget.categories for item in c.items)


def _add_item(session, budget, category_type, name, planned):
    return BudgetItemService(session, USER).create(
        BudgetItemIn(
            category_id=_category(budget, category_type).id,
            name=name,
            planned=Decimal(planned),
        )
    )


def test_copy_without_source_creates_default_target():
    with _session() as session:
        engine = RolloverEngine(session, USER)
        result = engine.copy(1, 2026, 2, 2026)

        assert result.created
        assert result.message == NO_SOURCE_MESSAGE
        assert result.copied_items == 0
        assert result.projected_items == 0

        budget = engine.load(MonthRef(year=2026, month=2))
        assert [c.category_type for c in budget.categories] == DEFAULT_TYPES
        assert all(not c.items for c in budget.categories)
        assert budget.buffer == Decimal("0")


def test_copy_without_source_leaves_recurring_payments_unprojected():
    with _session() as session:
        RecurringPaymentService(session, USER).create(
            RecurringPaymentIn(
                name="Rent",
                amount=Decimal("1500.00"),
                frequency=RecurringFrequency.monthly,
                next_due_date=date(2026, 2, 1),
                category_type="household",
            ),
            today=date(2026, 1, 15),
        )
        engine = RolloverEngine(session, USER)
        result = engine.copy(1, 2026, 2, 2026)

        assert result.message == NO_SOURCE_MESSAGE
        assert result.projected_items == 0
        budget = engine.load(MonthRef(year=2026, month=2))
        assert all(not c.items for c in budget.categories)


def test_copy_rejects_identical_periods():
    with _session() as session:
        with pytest.raises(ValidationError):
            RolloverEngine(session, USER).copy(3, 2026, 3, 2026)


def test_open_copies_prior_structure_and_buffer():
    with _session() as session:
        engine = RolloverEngine(session, USER)
        january, result = engine.open(MonthRef(year=2026, month=1))
        assert result.created

        _add_item(session, january, "food", "Groceries", "400.00")
        _add_item(session, january, "household", "Rent", "1200.00")
        pets = CategoryService(session, USER).create(
            CategoryIn(budget_id=january.id, category_type="Pets", name="Pets", emoji="🐶")
        )
        BudgetItemService(session, USER).create(
            BudgetItemIn(category_id=pets.id, name="Vet", planned=Decimal("60.00"))
        )
        BudgetService(session, USER).update_buffer(january.id, Decimal("50.00"))

        february, result = engine.open(MonthRef(year=2026, month=2))
        assert result.created
        assert result.copied_items == 3
        assert february.buffer == Decimal("50.00")
        assert _item_names(february) == ["Groceries", "Rent", "Vet"]

        copied_pets = _category(february, "Pets")
        assert copied_pets.emoji == "🐶"
        assert copied_pets.name == "Pets"

        again, result = engine.open(MonthRef(year=2026, month=2))
        assert again.id == february.id
        assert not result.created
        assert result.copied_items == 0


def test_copy_skips_case_insensitive_duplicates():
    with _session() as session:
        engine = RolloverEngine(session, USER)
        january, _ = engine.open(MonthRef(year=2026, month=1))
        _add_item(session, january, "food", "Groceries", "400.00")
        _add_item(session, january, "food", "COFFEE", "30.00")

        february, _ = engine.open(MonthRef(year=2026, month=2))
        assert _item_names(february) == ["COFFEE", "Groceries"]

        _add_item(session, february, "transportation", "gas", "100.00")
        _add_item(session, january, "transportation", "Gas", "120.00")
        _add_item(session, january, "transportation", "Parking", "15.00")
        result = engine.copy(1, 2026, 2, 2026)
        assert not result.created
        assert result.copied_items == 1

        february = engine.load(MonthRef(year=2026, month=2))
        assert _item_names(february) == ["COFFEE", "Groceries", "Parking", "gas"]


def test_is_duplicate_item_matches_name_or_recurring_link():
    existing = [BudgetItem(name="Rent", recurring_payment_id=None)]
    assert is_duplicate_item(existing, BudgetItem(name="rent"))
    assert not is_duplicate_item(existing, BudgetItem(name="Water"))

    linked = [BudgetItem(name="Netflix", recurring_payment_id=7)]
    assert is_duplicate_item(linked, BudgetItem(name="Streaming", recurring_payment_id=7))


def test_projection_is_idempotent_per_period():
    with _session() as session:
        payments = RecurringPaymentService(session, USER)
        rent = payments.create(
            RecurringPaymentIn(
                name="Rent",
                amount=Decimal("1500.00"),
                frequency=RecurringFrequency.monthly,
                next_due_date=date(2026, 3, 1),
                category_type="household",
            ),
            today=date(2026, 2, 1),
        )
        payments.create(
            RecurringPaymentIn(
                name="Uncategorized subscription",
                amount=Decimal("9.99"),
                frequency=RecurringFrequency.monthly,
                next_due_date=date(2026, 3, 1),
            ),
            today=date(2026, 2, 1),
        )
        paused = payments.create(
            RecurringPaymentIn(
                name="Magazine",
                amount=Decimal("12.00"),
                frequency=RecurringFrequency.annually,
                next_due_date=date(2026, 9, 1),
                category_type="personal",
            ),
            today=date(2026, 2, 1),
        )
        payments.update(
            paused.payment.id,
            RecurringPaymentUpdate(is_active=False),
            today=date(2026, 2, 1),
        )

        engine = RolloverEngine(session, USER)
        march, result = engine.open(MonthRef(year=2026, month=3))
        assert result.projected_items == 1

        household = _category(march, "household")
        assert [i.name for i in household.items] == ["Rent"]
        assert household.items[0].planned == Decimal("1500.00")
        assert household.items[0].recurring_payment_id == rent.payment.id
        assert household.items[0].order == 0

        assert engine.project_recurring(march) == 0
        session.commit()

        april, result = engine.open(MonthRef(year=2026, month=4))
        assert result.copied_items == 0
        assert result.projected_items == 1

        linked = session.scalars(
            select(BudgetItem).where(BudgetItem.recurring_payment_id == rent.payment.id)
        ).all()
        assert len(linked) == 2
        assert {i.category.budget_id for i in linked} == {march.id, april.id}


def test_projection_appends_after_existing_items():
    with _session() as session:
        engine = RolloverEngine(session, USER)
        may, _ = engine.open(MonthRef(year=2026, month=5))
        _add_item(session, may, "household", "Electric", "80.00")
        _add_item(session, may, "household", "Water", "40.00")

        RecurringPaymentService(session, USER).create(
            RecurringPaymentIn(
                name="Home Insurance",
                amount=Decimal("1200.00"),
                frequency=RecurringFrequency.annually,
                next_due_date=date(2026, 11, 1),
                category_type="household",
            ),
            today=date(2026, 5, 1),
        )
        may = engine.load(MonthRef(year=2026, month=5))
        assert engine.project_recurring(may) == 1
        session.commit()

        household = _category(engine.load(MonthRef(year=2026, month=5)), "household")
        projected = household.items[-1]
        assert projected.name == "Home Insurance"
        assert projected.order == 2
        assert projected.planned == Decimal("100.00")


def test_reset_zero_keeps_structure():
    with _session() as session:
        engine = RolloverEngine(session, USER)
        june, _ = engine.open(MonthRef(year=2026, month=6))
        _add_item(session, june, "food", "Groceries", "400.00")
        _add_item(session, june, "income", "Salary", "5000.00")

        result = engine.reset(june.id, ResetMode.zero)
        assert result.zeroed_items == 2

        june = engine.load(MonthRef(year=2026, month=6))
        assert _item_names(june) == ["Groceries", "Salary"]
        assert all(i.planned == Decimal("0") for c in june.categories for i in c.items)


def test_reset_replace_rebuilds_from_prior_period():
    with _session() as session:
        engine = RolloverEngine(session, USER)
        january, _ = engine.open(MonthRef(year=2026, month=1))
        _add_item(session, january, "food", "Groceries", "400.00")

        february, _ = engine.open(MonthRef(year=2026, month=2))
        groceries = _category(february, "food").items[0]
        BudgetItemService(session, USER).update(
            groceries.id, BudgetItemUpdate(planned=Decimal("999.00"))
        )
        pets = CategoryService(session, USER).create(
            CategoryIn(budget_id=february.id, category_type="Pets", name="Pets")
        )
        BudgetItemService(session, USER).create(
            BudgetItemIn(category_id=pets.id, name="Vet", planned=Decimal("60.00"))
        )
        february = engine.load(MonthRef(year=2026, month=2))
        _add_item(session, february, "personal", "Toys", "25.00")

        february = engine.load(MonthRef(year=2026, month=2))
        assert _item_names(february) == ["Groceries", "Toys", "Vet"]

        result = engine.reset(february.id, "replace")
        assert result.copied_items == 1
        assert result.message is None

        february = engine.load(MonthRef(year=2026, month=2))
        assert [c.category_type for c in february.categories] == DEFAULT_TYPES
        assert _item_names(february) == ["Groceries"]
        assert _category(february, "food").items[0].planned == Decimal("400.00")


def test_reset_replace_without_prior_period_reports_no_source():
    with _session() as session:
        engine = RolloverEngine(session, USER)
        budget, _ = engine.open(MonthRef(year=2026, month=8))
        _add_item(session, budget, "food", "Snacks", "20.00")

        result = engine.reset(budget.id, ResetMode.replace)
        assert result.message == NO_SOURCE_MESSAGE
        assert _item_names(engine.load(MonthRef(year=2026, month=8))) == []


def test_reset_validates_mode_and_ownership():
    with _session() as session:
        engine = RolloverEngine(session, USER)
        budget, _ = engine.open(MonthRef(year=2026, month=7))

        with pytest.raises(ValidationError, match="Invalid mode"):
            engine.reset(budget.id, "shuffle")
        with pytest.raises(NotFoundError):
            RolloverEngine(session, "someone-else").reset(budget.id, ResetMode.zero)



def test_reset_replace_in_january_rebuilds_from_december_with_recurring_link():
    with _session() as session:
        engine = RolloverEngine(session, USER)
        december, _ = engine.open(MonthRef(year=2025, month=12))
        _add_item(session, december, "food", "Groceries", "400.00")

        rent = RecurringPaymentService(session, USER).create(
            RecurringPaymentIn(
                name="Rent",
                amount=Decimal("1500.00"),
                frequency=RecurringFrequency.monthly,
                next_due_date=date(2026, 1, 1),
                category_type="household",
            ),
            today=date(2025, 12, 20),
        )
        rent_id = rent.payment.id

        january, result = engine.open(MonthRef(year=2026, month=1))
        assert (result.copied_items, result.projected_items) == (1, 1)
        assert [i.name for i in _category(january, "household").items] == ["Rent"]

        groceries = _category(january, "food").items[0]
        BudgetItemService(session, USER).update(
            groceries.id, BudgetItemUpdate(planned=Decimal("999.00"))
        )
        january = engine.load(MonthRef(year=2026, month=1))
        _add_item(session, january, "personal", "Toys", "25.00")

        result = engine.reset(january.id, ResetMode.replace)
        assert result.message is None
        assert (result.copied_items, result.projected_items) == (1, 1)

        january = engine.load(MonthRef(year=2026, month=1))
        assert _item_names(january) == ["Groceries", "Rent"]
        assert _category(january, "food").items[0].planned == Decimal("400.00")

        linked = session.scalars(
            select(BudgetItem).where(BudgetItem.recurring_payment_id == rent_id)
        ).all()
        assert len(linked) == 1
        assert linked[0].category.budget_id == january.id
        assert linked[0].planned == Decimal("1500.00")
