from decimal import Decimal

from app.core.money import to_money, percent_of, clamp_zero, to_minor_units, from_minor_units


def test_to_money_rounds_half_up_to_currency_unit():
    assert to_money("2.5") == Decimal("3")
    assert to_money("2.49") == Decimal("2")
    assert to_money(Decimal("-2.5")) == Decimal("-3")


def test_float_goes_through_str():
    assert to_money(0.1 + 0.2) == Decimal("0")
    assert to_money(1999.5) == Decimal("2000")


def test_percent_of():
    assert percent_of(Decimal("500000"), 10) == Decimal("50000")
    assert percent_of(Decimal("15"), 10) == Decimal("2")


def test_clamp_zero():
    assert clamp_zero(Decimal("-5")) == Decimal("0")
    assert clamp_zero(Decimal("7")) == Decimal("7")


def test_minor_units():
    assert to_minor_units(Decimal("100000"), 100) == 10000000
    assert from_minor_units("10000000", 100) == Decimal("100000")
    assert from_minor_units(470000) == Decimal("470000")
