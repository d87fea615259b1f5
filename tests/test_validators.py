from __future__ import annotations

from datetime import date
from decimal import Decimal

import pytest

from activity_importer.ingest.validators import (
    DATE_FORMATS,
    normalize_currency,
    parse_date,
    parse_number,
    to_strptime_format,
)


@pytest.mark.parametrize(
    ("raw", "expected"),
    [
        ("2025-06-27", date(2025, 6, 27)),
        ("2025-06-27T14:30:00Z", date(2025, 6, 27)),
        ("2025-06-27 09:15:00", date(2025, 6, 27)),
        ("06/27/2025", date(2025, 6, 27)),
        ("27.06.2025", date(2025, 6, 27)),
        ("20250627", date(2025, 6, 27)),
        ("Jun 27, 2025", date(2025, 6, 27)),
        ("27 jun 2025", date(2025, 6, 27)),
        ("27-Jun-2025", date(2025, 6, 27)),
        ("Q3 2024", date(2024, 7, 1)),
        ("2024-Q1", date(2024, 1, 1)),
    ],
)
def test_parse_date_accepts_common_broker_formats(raw: str, expected: date) -> None:
    assert parse_date(raw) == expected


# One literal per entry of DATE_FORMATS, all naming 15 March 2024.
DATE_LITERALS = {
    "%Y-%m-%dT%H:%M:%SZ": "2024-03-15T10:30:00Z",
    "%Y-%m-%dT%H:%M:%S.%fZ": "2024-03-15T10:30:00.125Z",
    "%Y-%m-%dT%H:%M:%S.%f%z": "2024-03-15T10:30:00.125+00:00",
    "%Y-%m-%d": "2024-03-15",
    "%Y%m%d": "20240315",
    "%Y/%m/%d": "2024/03/15",
    "%Y.%m.%d": "2024.03.15",
    "%b %d %Y": "Mar 15 2024",
    "%B %d %Y": "March 15 2024",
    "%m/%d/%Y": "03/15/2024",
    "%d/%m/%Y": "15/03/2024",
    "%d.%m.%Y": "15.03.2024",
    "%d-%m-%Y": "15-03-2024",
    "%Y年%m月%d日": "2024年03月15日",
    "%Y년%m월%d일": "2024년03월15일",
    "%B %d, %Y": "March 15, 2024",
    "%b %d, %Y": "Mar 15, 2024",
    "%d %b %Y": "15 Mar 2024",
    "%d %B %Y": "15 March 2024",
    "%d-%b-%Y": "15-Mar-2024",
    "%d%b%Y": "15Mar2024",
    "%d %b %y": "15 Mar 24",
    "%b %d, %y": "Mar 15, 24",
    "%b %d FY %Y": "Mar 15 FY 2024",
    "%d %b FY %Y": "15 Mar FY 2024",
    "%Y-%m-%d %H:%M:%S": "2024-03-15 10:30:00",
    "%Y/%m/%d %H:%M:%S": "2024/03/15 10:30:00",
    "%m/%d/%Y %H:%M:%S": "03/15/2024 10:30:00",
    "%m/%d/%Y %H:%M": "03/15/2024 10:30",
    "%m-%d-%Y": "03-15-2024",
}


def test_every_date_format_has_a_literal() -> None:
    assert set(DATE_LITERALS) == set(DATE_FORMATS)


@pytest.mark.parametrize(("date_format", "raw"), sorted(DATE_LITERALS.items()))
def test_parse_date_covers_each_listed_format(date_format: str, raw: str) -> None:
    assert parse_date(raw) == date(2024, 3, 15)
    assert parse_date(raw, date_format) == date(2024, 3, 15)


def test_parse_date_prefers_us_order_for_ambiguous_slashes() -> None:
    assert parse_date("05/01/2024") == date(2024, 5, 1)
    assert parse_date("05/01/2024", "DD/MM/YYYY") == date(2024, 1, 5)


def test_parse_date_handles_unix_timestamps_in_seconds_and_millis() -> None:
    assert parse_date("1735689600") == date(2025, 1, 1)
    assert parse_date("1735689600000") == date(2025, 1, 1)
    assert parse_date("999999999999") is None
    assert parse_date("1000000000000") == date(2001, 9, 9)


@pytest.mark.parametrize("raw", ["", "   ", "not a date", "1899-12-31", "2101-01-01", None])
def test_parse_date_rejects_garbage_and_out_of_range_years(raw) -> None:
    assert parse_date(raw) is None


def test_parse_date_passes_dates_through() -> None:
    assert parse_date(date(2024, 2, 29)) == date(2024, 2, 29)


def test_to_strptime_format_translates_tokens() -> None:
    assert to_strptime_format("DD/MM/YYYY") == "%d/%m/%Y"
    assert to_strptime_format("YYYY-MM-DD") == "%Y-%m-%d"
    assert to_strptime_format("%d.%m.%Y") == "%d.%m.%Y"


@pytest.mark.parametrize(
    ("raw", "expected"),
    [
        ("1,234.56", Decimal("1234.56")),
        ("1.234,56", Decimal("1234.56")),
        ("$48.945", Decimal("48.945")),
        ("(1,000.00)", Decimal("1000.00")),
        ("-25", Decimal("25")),
        ("€ 12,5", Decimal("12.5")),
        ("1 000", Decimal("1000")),
        (42, Decimal("42")),
        (-3.5, Decimal("3.5")),
    ],
)
def test_parse_number_returns_absolute_decimals(raw, expected: Decimal) -> None:
    assert parse_number(raw) == expected


@pytest.mark.parametrize("raw", ["", "-", "N/A", "null", "abc", None, True, float("nan")])
def test_parse_number_returns_none_for_non_numbers(raw) -> None:
    assert parse_number(raw) is None


def test_parse_number_honors_explicit_separators() -> None:
    assert parse_number("1.234,5", decimal_separator=",", thousands_separator=".") == Decimal("1234.5")
    assert parse_number("1,234", decimal_separator=",") == Decimal("1.234")
    assert parse_number("1,234", decimal_separator=".") == Decimal("1234")


def test_normalize_currency_uppercases_and_defaults() -> None:
    assert normalize_currency(" usd ") == "USD"
    assert normalize_currency("", "EUR") == "EUR"
    assert normalize_currency(None) is None
