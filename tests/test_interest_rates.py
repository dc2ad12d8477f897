from decimal import Decimal

from interest_rates import (
    compare_rates,
    conversion_display,
    convert_rate,
    is_valid_rate,
    micros_to_rate,
    rate_to_micros,
    rate_validation_error,
    rates_equivalent,
)
from models import RateType


def test_effective_annual_converts_to_every_type() -> None:
    result = convert_rate(0.12, RateType.ea)

    assert result.ea == Decimal("0.120000")
    assert result.em == Decimal("0.009489")
    assert result.ed == Decimal("0.000311")
    assert result.nm == result.em
    assert result.na == Decimal("0.113865")


def test_monthly_and_nominal_annual_inputs_share_the_same_ea() -> None:
    monthly = convert_rate("0.01", RateType.em)
    nominal = convert_rate("0.12", RateType.na)

    assert monthly.ea == Decimal("0.126825")
    assert nominal.ea == monthly.ea
    assert monthly.em == Decimal("0.010000")
    assert monthly.as_dict()["NA"] == 0.12


def test_negative_rate_gives_zeros() -> None:
    result = convert_rate(-0.5, RateType.ea)

    assert result.as_dict() == {"EA": 0.0, "EM": 0.0, "ED": 0.0, "NM": 0.0, "NA": 0.0}


def test_conversion_display_marks_the_input_row() -> None:
    rows = conversion_display(0.01, RateType.em)

    by_type = {row["rate_type"]: row for row in rows}
    assert [row["rate_type"] for row in rows] == ["EA", "EM", "ED", "NM", "NA"]
    assert by_type["EM"]["is_input"] is True
    assert by_type["EM"]["formula"] == "Input value"
    assert by_type["EA"]["formula"] == "EA = (1 + EM)^12 - 1"
    assert by_type["NA"]["formula"] == "NA = EM x 12"


def test_rate_validation_bounds() -> None:
    assert rate_validation_error(-0.01) == "Rate cannot be negative"
    assert rate_validation_error(10.5) == "Rate cannot exceed 1000%"
    assert rate_validation_error(10) is None
    assert is_valid_rate(0)
    assert not is_valid_rate("11")


def test_compare_and_equivalence() -> None:
    assert compare_rates(0.12, RateType.ea, 0.12, RateType.na) == Decimal("-0.006825")
    assert rates_equivalent(0.12, RateType.na, 0.01, RateType.em)
    assert not rates_equivalent(0.12, RateType.na, 0.12, RateType.ea)


def test_rate_micros_storage() -> None:
    assert rate_to_micros(Decimal("0.123456789")) == 123457
    assert micros_to_rate(10_000) == Decimal("0.01")
