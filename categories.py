from dataclasses import dataclass
from enum import Enum
from typing import Optional, Union


class DefaultCategoryType(str, Enum):
    income = "income"
    giving = "giving"
    household = "household"
    transportation = "transportation"
    food = "food"
    personal = "personal"
    insurance = "insurance"
    saving = "saving"


@dataclass(frozen=True)
class CustomCategoryType:
    label: str


CategoryType = Union[DefaultCategoryType, CustomCategoryType]


@dataclass(frozen=True)
class CategoryScaffold:
    category_type: DefaultCategoryType
    name: str
    emoji: str
    order: int


# Every new period gets these, in this order.
DEFAULT_CATEGORIES: tuple[CategoryScaffold, ...] = (
    CategoryScaffold(DefaultCategoryType.income, "Income", "💰", 0),
    CategoryScaffold(DefaultCategoryType.giving, "Giving", "🤲", 1),
    CategoryScaffold(DefaultCategoryType.household, "Household", "🏠", 2),
    CategoryScaffold(DefaultCategoryType.transportation, "Transportation", "🚗", 3),
    CategoryScaffold(DefaultCategoryType.food, "Food", "🍽️", 4),
    CategoryScaffold(DefaultCategoryType.personal, "Personal", "👤", 5),
    CategoryScaffold(DefaultCategoryType.insurance, "Insurance", "🛡️", 6),
    CategoryScaffold(DefaultCategoryType.saving, "Saving", "💵", 7),
)

CUSTOM_CATEGORY_EMOJI = "📁"


def parse_category_type(value: str) -> CategoryType:
    key = (value or "").strip()
    if not key:
        raise ValueError("Category type cannot be empty")
    try:
        return DefaultCategoryType(key.lower())
    except ValueError:
        return CustomCategoryType(label=key)


def category_type_key(category_type: CategoryType) -> str:
    if isinstance(category_type, DefaultCategoryType):
        return category_type.value
    return category_type.label


def is_default_type(value: Optional[str]) -> bool:
    if not value:
        return False
    return isinstance(parse_category_type(value), DefaultCategoryType)


def is_income_type(value: Optional[str]) -> bool:
    if not value:
        return False
    return parse_category_type(value) == DefaultCategoryType.income


def display_emoji(category_type: str, emoji: Optional[str] = None) -> str:
    if emoji:
        return emoji
    parsed = parse_category_type(category_type)
    if isinstance(parsed, CustomCategoryType):
        return CUSTOM_CATEGORY_EMOJI
    for scaffold in DEFAULT_CATEGORIES:
        if scaffold.category_type == parsed:
            return scaffold.emoji
    return CUSTOM_CATEGORY_EMOJI
