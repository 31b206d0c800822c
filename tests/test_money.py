from datetime import date
from decimal import Decimal

import pytest

from categories import (
    CUSTOM_CATEGORY_EMOJI,
    CustomCategoryType,
    DefaultCategoryType,
    display_emoji,
    is_default_type,
    is_income_type,
    parse_category_type,
)
from errors import ValidationError
from money import amounts_differ, format_money, is_zero, percent, quantize, to_money
from periods import MonthRef


def test_to_money_accepts_strings_and_rejects_floats():
    assert to_money("$1,234.50") == Decimal("1234.50")
    assert to_money(12) == Decimal("12")
    assert to_money(Decimal("0.10")) == Decimal("0.10")
    with pytest.raises(ValidationError):
        to_money(0.1)
    with pytest.raises(ValidationError):
        to_money("twelve")
    with pytest.raises(ValidationError):
        to_money("NaN")


def test_quantize_rounds_half_up():
    assert quantize(Decimal("41.665")) == Decimal("41.67")
    assert quantize(Decimal("0.005")) == Decimal("0.01")
    assert quantize(Decimal("-2.345")) == Decimal("-2.35")


def test_balance_and_sync_tolerances():
    assert is_zero(Decimal("0.009"))
    assert is_zero(Decimal("-0.009"))
    assert not is_zero(Decimal("0.01"))

    assert not amounts_differ(Decimal("10.00"), Decimal("10.0005"))
    assert amounts_differ(Decimal("10.00"), Decimal("10.01"))


def test_percent_guards_zero_whole():
    assert percent(Decimal("5"), Decimal("0")) == Decimal("0")
    assert quantize(percent(Decimal("250"), Decimal("600"))) == Decimal("41.67")


def test_format_money_takes_explicit_symbol():
    assert format_money(Decimal("1234.5")) == "$1,234.50"
    assert format_money(Decimal("-3"), "€") == "-€3.00"


def test_parse_category_type_matches_defaults_case_insensitively():
    assert parse_category_type("Food") is DefaultCategoryType.food
    assert parse_category_type(" income ") is DefaultCategoryType.income
    assert parse_category_type("Pets") == CustomCategoryType(label="Pets")
    with pytest.raises(ValueError):
        parse_category_type("  ")

    assert is_default_type("household")
    assert not is_default_type("Pets")
    assert is_income_type("income")
    assert not is_income_type(None)


def test_display_emoji_falls_back_by_type():
    assert display_emoji("food") == "🍽️"
    assert display_emoji("Pets") == CUSTOM_CATEGORY_EMOJI
    assert display_emoji("Pets", "🐶") == "🐶"


def test_month_ref_wraps_year_boundaries():
    jan = MonthRef(year=2026, month=1)
    assert jan.previous() == MonthRef(year=2025, month=12)
    assert MonthRef(year=2025, month=12).next() == jan
    assert MonthRef(year=2024, month=2).end == date(2024, 2, 29)
    assert jan.contains(date(2026, 1, 31))
    assert not jan.contains(date(2026, 2, 1))
    with pytest.raises(ValidationError):
        MonthRef(year=2026, month=0)
    with pytest.raises(ValidationError):
        MonthRef(year=2026, month=13)
