from decimal import Decimal

import pytest

from services.normalizer import apply_rent_period, clean_text, parse_amount, parse_area, parse_deadline, to_decimal


@pytest.mark.parametrize("text, expected", [
    ("1 234 567,89 руб.", Decimal("1234567.89")),
    ("1 200 000 ₽", Decimal("1200000")),
    ("Начальная цена: 150000.50", Decimal("150000.50")),
    ("1.234.567", Decimal("1234567")),
    ("12 000.", Decimal("12000")),
])
def test_parse_amount(text, expected):
    assert parse_amount(text) == expected


@pytest.mark.parametrize("text", [None, "", "цена не указана"])
def test_parse_amount_without_number(text):
    assert parse_amount(text) is None


def test_parse_area_decimal_comma():
    assert parse_area("45,6 кв.м") == Decimal("45.6")


def test_to_decimal_avoids_float_artifacts():
    assert to_decimal(0.1) == Decimal("0.1")
    assert to_decimal(True) is None
    assert to_decimal("2 500,00") == Decimal("2500.00")


def test_rent_year_price_gives_monthly():
    price, monthly = apply_rent_period(Decimal("120000"), "Договор аренды", "год")
    assert price == Decimal("120000")
    assert monthly == Decimal("10000.00")


def test_rent_month_price_becomes_annual():
    price, monthly = apply_rent_period(Decimal("10000"), "Договор аренды", "месяц")
    assert price == Decimal("120000")
    assert monthly == Decimal("10000")


@pytest.mark.parametrize("contract_type, period", [
    ("Договор купли-продажи", "год"),
    ("Договор аренды", None),
    (None, "месяц"),
])
def test_rent_period_leaves_price_untouched(contract_type, period):
    assert apply_rent_period(Decimal("5000"), contract_type, period) == (Decimal("5000"), None)


@pytest.mark.parametrize("text, expected", [
    ("10.01.2025 18:00", "2025-01-10"),
    ("10.01.2025 18:00:00", "2025-01-10"),
    ("10.01.2025", "2025-01-10"),
    ("2025-01-10 18:00:00", "2025-01-10"),
    ("2025-01-10", "2025-01-10"),
    ("2025-01-10T18:00:00.000+03:00", "2025-01-10"),
    ("2025-01-10T00:00:00Z", "2025-01-10"),
])
def test_parse_deadline_formats(text, expected):
    assert parse_deadline(text) == expected


def test_parse_deadline_keeps_unknown_text():
    assert parse_deadline("  до особого распоряжения ") == "до особого распоряжения"


@pytest.mark.parametrize("text", [None, "", "   "])
def test_parse_deadline_empty(text):
    assert parse_deadline(text) is None


def test_clean_text_collapses_spaces():
    assert clean_text(" Нежилое  помещение\n 20 кв.м ") == "Нежилое помещение 20 кв.м"
