from dataclasses import dataclass
from datetime import date

from errors import ValidationError


@dataclass(frozen=True, order=True)
class MonthRef:
    """A budget period key. Months are 1-indexed."""

    year: int
    month: int

    def __post_init__(self) -> None:
        if not 1 <= self.month <= 12:
            raise ValidationError(f"Month must be between 1 and 12, got {self.month}")
        if not 1970 <= self.year <= 3000:
            raise ValidationError(f"Year out of range: {self.year}")

    @classmethod
    def of(cls, day: date) -> "MonthRef":
        return cls(year=day.year, month=day.month)

    @property
    def start(self) -> date:
        return date(self.year, self.month, 1)

    @property
    def end(self) -> date:
        return self.next().start - date.resolution

    def previous(self) -> "MonthRef":
        if self.month == 1:
            return MonthRef(year=self.year - 1, month=12)
        return MonthRef(year=self.year, month=self.month - 1)

    def next(self) -> "MonthRef":
        if self.month == 12:
            return MonthRef(year=self.year + 1, month=1)
        return MonthRef(year=self.year, month=self.month + 1)

    def contains(self, day: date) -> bool:
        return day.year == self.year and day.month == self.month
