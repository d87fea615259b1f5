from __future__ import annotations

import re
from datetime import date, datetime, timezone
from decimal import Decimal, InvalidOperation
from typing import Any

from dateutil import parser as date_parser

MIN_YEAR = 1900
MAX_YEAR = 2100

# Tried in order after ISO-8601; US forms come before EU forms, so an
# ambiguous "05/01/2024" resolves to May 1st.
DATE_FORMATS = [
    "%Y-%m-%dT%H:%M:%SZ",
    "%Y-%m-%dT%H:%M:%S.%fZ",
    "%Y-%m-%dT%H:%M:%S.%f%z",
    "%Y-%m-%d",
    "%Y%m%d",
    "%Y/%m/%d",
    "%Y.%m.%d",
    "%b %d %Y",
    "%B %d %Y",
    "%m/%d/%Y",
    "%d/%m/%Y",
    "%d.%m.%Y",
    "%d-%m-%Y",
    "%Y年%m月%d日",
    "%Y년%m월%d일",
    "%B %d, %Y",
    "%b %d, %Y",
    "%d %b %Y",
    "%d %B %Y",
    "%d-%b-%Y",
    "%d%b%Y",
    "%d %b %y",
    "%b %d, %y",
    "%b %d FY %Y",
    "%d %b FY %Y",
    "%Y-%m-%d %H:%M:%S",
    "%Y/%m/%d %H:%M:%S",
    "%m/%d/%Y %H:%M:%S",
    "%m/%d/%Y %H:%M",
    "%m-%d-%Y",
]

QUARTER_RE = re.compile(r"^(?:Q([1-4])\s*(\d{4})|(\d{4})\s*-\s*Q([1-4]))$")
ISO_PREFIX_RE = re.compile(r"^\d{4}-\d{2}")
TIMESTAMP_RE = re.compile(r"^\d{1,14}$")
MILLISECOND_THRESHOLD = 1_000_000_000_000

_FORMAT_TOKEN_RE = re.compile(r"YYYY|yyyy|YY|yy|MMMM|MMM|MM|M|DD|dd|D|d")
_FORMAT_TOKENS = {
    "YYYY": "%Y",
    "yyyy": "%Y",
    "YY": "%y",
    "yy": "%y",
    "MMMM": "%B",
    "MMM": "%b",
    "MM": "%m",
    "M": "%m",
    "DD": "%d",
    "dd": "%d",
    "D": "%d",
    "d": "%d",
}

CURRENCY_SYMBOLS = "$£€¥₹₦₽¢"
EMPTY_NUMBER_TOKENS = {"", "-", "n/a", "null"}
_TRAILING_DECIMAL_COMMA_RE = re.compile(r",\d{1,2}$")


def _in_range(value: date) -> bool:
    return MIN_YEAR <= value.year <= MAX_YEAR


def to_strptime_format(date_format: str) -> str:
    """Translate a user-facing pattern such as ``DD/MM/YYYY`` into strptime syntax."""
    if "%" in date_format:
        return date_format
    return _FORMAT_TOKEN_RE.sub(lambda match: _FORMAT_TOKENS[match.group(0)], date_format)


def _try_formats(text: str, formats: list[str]) -> date | None:
    for fmt in formats:
        try:
            parsed = datetime.strptime(text, fmt)
        except ValueError:
            continue
        if _in_range(parsed):
            return parsed.date()
    return None


def _parse_quarter(text: str) -> date | None:
    match = QUARTER_RE.match(text)
    if not match:
        return None
    quarter = match.group(1) or match.group(4)
    year = match.group(2) or match.group(3)
    parsed = date(int(year), (int(quarter) - 1) * 3 + 1, 1)
    return parsed if _in_range(parsed) else None


def _parse_timestamp(text: str) -> date | None:
    if not TIMESTAMP_RE.match(text):
        return None
    number = int(text)
    seconds = number / 1000 if number >= MILLISECOND_THRESHOLD else number
    try:
        parsed = datetime.fromtimestamp(seconds, tz=timezone.utc).date()
    except (OverflowError, OSError, ValueError):
        return None
    return parsed if _in_range(parsed) else None


def parse_date(value: Any, date_format: str | None = "auto") -> date | None:
    """Parse a CSV date cell into a calendar date.

    Returns None when nothing matches or the year is outside [1900, 2100];
    callers decide whether that is an error.
    """
    if value is None:
        return None
    if isinstance(value, datetime):
        return value.date() if _in_range(value) else None
    if isinstance(value, date):
        return value if _in_range(value) else None

    text = " ".join(str(value).split()).upper()
    if not text:
        return None

    if date_format and date_format != "auto":
        explicit = _try_formats(text, [to_strptime_format(date_format)])
        if explicit is not None:
            return explicit

    if ISO_PREFIX_RE.match(text):
        try:
            parsed = date_parser.isoparse(text)
        except (ValueError, OverflowError):
            parsed = None
        if parsed is not None and _in_range(parsed):
            return parsed.date()

    parsed_date = _try_formats(text, DATE_FORMATS)
    if parsed_date is not None:
        return parsed_date

    quarter = _parse_quarter(text)
    if quarter is not None:
        return quarter

    return _parse_timestamp(text)


def _strip_separators(text: str, decimal_separator: str, thousands_separator: str) -> str:
    if thousands_separator not in {"auto", "none"}:
        text = text.replace(thousands_separator, "")

    if decimal_separator == ",":
        if thousands_separator in {"auto", "none"}:
            text = text.replace(".", "")
        return text.replace(",", ".")
    if decimal_separator == ".":
        return text.replace(",", "")

    if _TRAILING_DECIMAL_COMMA_RE.search(text) and text.rfind(".") < text.rfind(","):
        return text.replace(".", "").replace(",", ".")
    return text.replace(",", "")


def parse_number(
    value: Any,
    *,
    decimal_separator: str = "auto",
    thousands_separator: str = "auto",
) -> Decimal | None:
    """Parse a broker amount into an absolute ``Decimal``.

    Direction comes from the activity type, so signs and banking-style
    parentheses are discarded. Empty, ``N/A``, ``null`` and non-numeric input
    give None; this never raises.
    """
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, Decimal):
        return abs(value) if value.is_finite() else None
    if isinstance(value, (int, float)):
        try:
            parsed = Decimal(str(value))
        except InvalidOperation:
            return None
        return abs(parsed) if parsed.is_finite() else None

    text = str(value).strip()
    if text.lower() in EMPTY_NUMBER_TOKENS:
        return None

    for symbol in CURRENCY_SYMBOLS:
        text = text.replace(symbol, "")
    text = "".join(text.split())
    if text.startswith("(") and text.endswith(")"):
        text = text[1:-1]
    text = text.lstrip("+-")
    if not text:
        return None

    text = _strip_separators(text, decimal_separator, thousands_separator)
    try:
        parsed = Decimal(text)
    except InvalidOperation:
        return None
    if not parsed.is_finite():
        return None
    return abs(parsed)


def normalize_currency(value: Any, default: str | None = None) -> str | None:
    text = str(value or "").strip().upper()
    return text or default
