from decimal import ROUND_HALF_UP, Context, Decimal, InvalidOperation, localcontext
from typing import Union

from errors import ValidationError

CENT = Decimal("0.01")
ZERO = Decimal("0")
BALANCE_EPSILON = Decimal("0.01")
SYNC_TOLERANCE = Decimal("0.001")

# Intermediate results (e.g. quarterly -> monthly) keep full precision.
_CALC_CONTEXT = Context(prec=28, rounding=ROUND_HALF_UP)

MoneyInput = Union[Decimal, int, str]


def to_money(value: MoneyInput) -> Decimal:
    if isinstance(value, bool) or isinstance(value, float):
        raise ValidationError("Amounts must be given as decimal strings, not floats")
    if isinstance(value, Decimal):
        amount = value
    elif isinstance(value, int):
        amount = Decimal(value)
    else:
        clean = str(value).strip().replace("$", "").replace(",", "").replace(" ", "")
        try:
            amount = Decimal(clean)
        except InvalidOperation as exc:
            raise ValidationError(f"Invalid amount: {value!r}") from exc
    if not amount.is_finite():
        raise ValidationError(f"Invalid amount: {value!r}")
    return amount


def quantize(value: Decimal) -> Decimal:
    return value.quantize(CENT, rounding=ROUND_HALF_UP)


def divide(value: Decimal, divisor: Union[Decimal, int]) -> Decimal:
    with localcontext(_CALC_CONTEXT):
        return value / Decimal(divisor)


def multiply(value: Decimal, factor: Union[Decimal, int]) -> Decimal:
    with localcontext(_CALC_CONTEXT):
        return value * Decimal(factor)


def total(values) -> Decimal:
    result = ZERO
    for value in values:
        result += value
    return result


def is_zero(value: Decimal) -> bool:
    return abs(value) < BALANCE_EPSILON


def amounts_differ(a: Decimal, b: Decimal) -> bool:
    return abs(a - b) > SYNC_TOLERANCE


def percent(part: Decimal, whole: Decimal) -> Decimal:
    if whole == 0:
        return ZERO
    with localcontext(_CALC_CONTEXT):
        return part / whole * 100


def format_money(value: Decimal, currency_symbol: str = "$") -> str:
    rounded = quantize(value)
    sign = "-" if rounded < 0 else ""
    return f"{sign}{currency_symbol}{abs(rounded):,.2f}"
