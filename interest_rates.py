"""Conversions between effective and nominal interest rates.

Rates are fractions (0.12 is 12%). Effective annual (EA) is the pivot: every
input is converted to EA first and every output is derived from it, with a
365-day year and 12 months. Intermediate values keep 8 decimals, results
returned to callers keep 6.
"""

from dataclasses import dataclass
from decimal import ROUND_HALF_UP, Decimal, getcontext
from typing import Optional, Union

from models import RateType

DAYS_PER_YEAR = 365
MONTHS_PER_YEAR = 12
MAX_RATE = Decimal("10")

_INTERNAL = Decimal("0.00000001")
_DISPLAY = Decimal("0.000001")
_ONE = Decimal("1")

Number = Union[Decimal, float, int, str]

FORMULAS_FROM_EA = {
    RateType.em: "EM = (1 + EA)^(1/12) - 1",
    RateType.ed: "ED = (1 + EA)^(1/365) - 1",
    RateType.nm: "NM = EM (monthly rate)",
    RateType.na: "NA = EM x 12",
}
FORMULAS_TO_EA = {
    RateType.em: "EA = (1 + EM)^12 - 1",
    RateType.ed: "EA = (1 + ED)^365 - 1",
    RateType.nm: "EA = (1 + NM)^12 - 1",
    RateType.na: "EA = (1 + NA/12)^12 - 1",
}
INPUT_FORMULA = "Input value"


def _dec(value: Number) -> Decimal:
    if isinstance(value, Decimal):
        return value
    # str() keeps 0.1 as 0.1 instead of its binary expansion
    return Decimal(str(value))


def _round(value: Decimal, places: Decimal = _INTERNAL) -> Decimal:
    # quantize raises once the integer part no longer fits the context precision
    if value.adjusted() > getcontext().prec + places.adjusted() - 1:
        return value
    return value.quantize(places, rounding=ROUND_HALF_UP)


def rate_to_micros(rate: Decimal) -> int:
    return int(
        (rate * Decimal("1000000")).quantize(Decimal("1"), rounding=ROUND_HALF_UP)
    )


def micros_to_rate(micros: int) -> Decimal:
    return Decimal(micros) / Decimal("1000000")


def to_effective_annual(rate: Number, rate_type: RateType) -> Decimal:
    rate = _dec(rate)
    if rate < 0:
        return Decimal("0")
    rate_type = RateType(rate_type)
    if rate_type == RateType.ea:
        return rate
    if rate_type in (RateType.em, RateType.nm):
        return _round((_ONE + rate) ** MONTHS_PER_YEAR - _ONE)
    if rate_type == RateType.ed:
        return _round((_ONE + rate) ** DAYS_PER_YEAR - _ONE)
    monthly = rate / MONTHS_PER_YEAR
    return _round((_ONE + monthly) ** MONTHS_PER_YEAR - _ONE)


def effective_monthly(ea: Decimal) -> Decimal:
    if ea < 0:
        return Decimal("0")
    return _round((_ONE + ea) ** (_ONE / MONTHS_PER_YEAR) - _ONE)


def effective_daily(ea: Decimal) -> Decimal:
    if ea < 0:
        return Decimal("0")
    return _round((_ONE + ea) ** (_ONE / DAYS_PER_YEAR) - _ONE)


@dataclass(frozen=True)
class RateConversion:
    ea: Decimal
    em: Decimal
    ed: Decimal
    nm: Decimal
    na: Decimal

    def get(self, rate_type: RateType) -> Decimal:
        return getattr(self, RateType(rate_type).value.lower())

    def as_dict(self) -> dict[str, float]:
        return {t.value: float(self.get(t)) for t in RateType}


def convert_rate(rate: Number, from_type: RateType) -> RateConversion:
    rate = _dec(rate)
    if rate < 0:
        zero = Decimal("0")
        return RateConversion(ea=zero, em=zero, ed=zero, nm=zero, na=zero)
    ea = to_effective_annual(rate, from_type)
    em = effective_monthly(ea)
    return RateConversion(
        ea=_round(ea, _DISPLAY),
        em=_round(em, _DISPLAY),
        ed=_round(effective_daily(ea), _DISPLAY),
        # nominal monthly is the effective monthly rate
        nm=_round(em, _DISPLAY),
        na=_round(_round(em * MONTHS_PER_YEAR), _DISPLAY),
    )


def conversion_display(rate: Number, from_type: RateType) -> list[dict[str, object]]:
    from_type = RateType(from_type)
    conversions = convert_rate(rate, from_type)
    rows = []
    for rate_type in RateType:
        if rate_type == from_type:
            formula = INPUT_FORMULA
        elif rate_type == RateType.ea:
            formula = FORMULAS_TO_EA[from_type]
        else:
            formula = FORMULAS_FROM_EA[rate_type]
        rows.append(
            {
                "rate_type": rate_type.value,
                "value": float(conversions.get(rate_type)),
                "is_input": rate_type == from_type,
                "formula": formula,
            }
        )
    return rows


def rate_validation_error(rate: Number) -> Optional[str]:
    rate = _dec(rate)
    if rate < 0:
        return "Rate cannot be negative"
    if rate > MAX_RATE:
        return "Rate cannot exceed 1000%"
    return None


def is_valid_rate(rate: Number) -> bool:
    return rate_validation_error(rate) is None


def compare_rates(
    rate1: Number, type1: RateType, rate2: Number, type2: RateType
) -> Decimal:
    """Difference of the two rates expressed as EA (positive when rate1 is higher)."""
    ea1 = convert_rate(rate1, type1).ea
    ea2 = convert_rate(rate2, type2).ea
    return _round(ea1 - ea2, _DISPLAY)


def rates_equivalent(
    rate1: Number,
    type1: RateType,
    rate2: Number,
    type2: RateType,
    tolerance: Number = Decimal("0.000001"),
) -> bool:
    return abs(compare_rates(rate1, type1, rate2, type2)) <= _dec(tolerance)
