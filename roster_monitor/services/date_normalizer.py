"""Normalisation of roster spreadsheet date cells.

Uploads arrive with whatever the spreadsheet author typed: real date cells,
spreadsheet serial numbers, ``DD/MM/YYYY`` text, ``MM/YYYY`` text, or a bare
Indonesian/English month name. Every entry point here returns a value rather
than raising, so a bad cell never aborts an ingestion batch.
"""

from __future__ import annotations

import math
import re
from dataclasses import dataclass
from datetime import date, datetime, timedelta
from typing import Any

SPREADSHEET_EPOCH = date(1899, 12, 30)
# 1927-05-18 .. 9999-12-31; smaller numbers are far more likely to be typos than dates.
SERIAL_MIN = 10000
SERIAL_MAX = 2958465

MONTH_NAMES: dict[str, int] = {
    "januari": 1,
    "january": 1,
    "jan": 1,
    "februari": 2,
    "february": 2,
    "pebruari": 2,
    "feb": 2,
    "maret": 3,
    "march": 3,
    "mar": 3,
    "april": 4,
    "apr": 4,
    "mei": 5,
    "may": 5,
    "juni": 6,
    "june": 6,
    "jun": 6,
    "juli": 7,
    "july": 7,
    "jul": 7,
    "agustus": 8,
    "august": 8,
    "agu": 8,
    "agt": 8,
    "aug": 8,
    "september": 9,
    "sept": 9,
    "sep": 9,
    "oktober": 10,
    "october": 10,
    "okt": 10,
    "oct": 10,
    "november": 11,
    "nopember": 11,
    "nov": 11,
    "desember": 12,
    "december": 12,
    "des": 12,
    "dec": 12,
}

INDONESIAN_MONTH_LABELS = (
    "Januari",
    "Februari",
    "Maret",
    "April",
    "Mei",
    "Juni",
    "Juli",
    "Agustus",
    "September",
    "Oktober",
    "November",
    "Desember",
)

_ISO_PATTERN = re.compile(r"^(\d{4})[-/](\d{1,2})[-/](\d{1,2})(?:[ t]\d{1,2}:\d{2}(?::\d{2}(?:\.\d+)?)?z?)?$")
_DAY_MONTH_YEAR_PATTERN = re.compile(r"^(\d{1,2})[/\-.](\d{1,2})[/\-.](\d{4})$")
_MONTH_YEAR_PATTERN = re.compile(r"^(\d{1,2})[/\-](\d{4})$")
_YEAR_MONTH_PATTERN = re.compile(r"^(\d{4})-(\d{1,2})$")
_NUMERIC_PATTERN = re.compile(r"^\d+(?:\.\d+)?$")
_TOKEN_PATTERN = re.compile(r"[a-z]+|\d+")


@dataclass(frozen=True, slots=True)
class DateParseError:
    raw_value: Any
    reason: str
    row_number: int | None = None

    def describe(self) -> str:
        prefix = f"Row {self.row_number}: " if self.row_number is not None else ""
        return f'{prefix}{self.reason} "{self.raw_value}"'


def _build_date(year: int, month: int, day: int) -> date | None:
    try:
        return date(year, month, day)
    except ValueError:
        return None


def serial_to_date(serial: float) -> date | None:
    if isinstance(serial, bool) or not math.isfinite(serial):
        return None
    whole_days = math.floor(serial)
    if whole_days < SERIAL_MIN or whole_days > SERIAL_MAX:
        return None
    return SPREADSHEET_EPOCH + timedelta(days=whole_days)


def date_to_serial(value: date) -> int:
    return (value - SPREADSHEET_EPOCH).days


def _normalize_month_name(text: str, *, today: date) -> date | str:
    tokens = _TOKEN_PATTERN.findall(text)
    month: int | None = None
    year: int | None = None
    day: int | None = None
    for token in tokens:
        if token.isdigit():
            if len(token) == 4 and year is None:
                year = int(token)
            elif len(token) <= 2 and day is None:
                day = int(token)
            else:
                return "Unrecognised date"
            continue
        resolved = MONTH_NAMES.get(token)
        if resolved is None or month is not None:
            return "Unrecognised date"
        month = resolved

    if month is None:
        return "Unrecognised date"
    resolved_date = _build_date(year or today.year, month, day or 1)
    if resolved_date is None:
        return "Invalid calendar date"
    return resolved_date


def normalize_date(
    raw_value: Any,
    *,
    row_number: int | None = None,
    today: date | None = None,
) -> date | DateParseError:
    """Resolve one spreadsheet cell to a calendar date.

    Day-first is the only convention for ``D/M/YYYY`` text; a month name
    without a year takes the year of ``today``.
    """
    reference_day = today or date.today()

    if raw_value is None or isinstance(raw_value, bool):
        return DateParseError(raw_value=raw_value, reason="Empty or unsupported date", row_number=row_number)
    if isinstance(raw_value, datetime):
        return raw_value.date()
    if isinstance(raw_value, date):
        return raw_value
    if isinstance(raw_value, (int, float)):
        converted = serial_to_date(raw_value)
        if converted is None:
            return DateParseError(raw_value=raw_value, reason="Spreadsheet serial out of range", row_number=row_number)
        return converted
    if not isinstance(raw_value, str):
        return DateParseError(raw_value=raw_value, reason="Unsupported date value", row_number=row_number)

    text = " ".join(raw_value.strip().lower().split())
    if not text:
        return DateParseError(raw_value=raw_value, reason="Empty or unsupported date", row_number=row_number)

    if _NUMERIC_PATTERN.match(text):
        converted = serial_to_date(float(text))
        if converted is None:
            return DateParseError(raw_value=raw_value, reason="Spreadsheet serial out of range", row_number=row_number)
        return converted

    match = _ISO_PATTERN.match(text)
    if match:
        year, month, day = (int(part) for part in match.groups())
        converted = _build_date(year, month, day)
        if converted is None:
            return DateParseError(raw_value=raw_value, reason="Invalid calendar date", row_number=row_number)
        return converted

    match = _DAY_MONTH_YEAR_PATTERN.match(text)
    if match:
        day, month, year = (int(part) for part in match.groups())
        if day > 31 or month > 12:
            return DateParseError(raw_value=raw_value, reason="Ambiguous day/month", row_number=row_number)
        converted = _build_date(year, month, day)
        if converted is None:
            return DateParseError(raw_value=raw_value, reason="Invalid calendar date", row_number=row_number)
        return converted

    match = _MONTH_YEAR_PATTERN.match(text) or _YEAR_MONTH_PATTERN.match(text)
    if match:
        first, second = (int(part) for part in match.groups())
        month, year = (first, second) if second > 999 else (second, first)
        converted = _build_date(year, month, 1)
        if converted is None:
            return DateParseError(raw_value=raw_value, reason="Invalid month", row_number=row_number)
        return converted

    resolved = _normalize_month_name(text, today=reference_day)
    if isinstance(resolved, str):
        return DateParseError(raw_value=raw_value, reason=resolved, row_number=row_number)
    return resolved


def normalize_period(
    raw_value: Any,
    *,
    row_number: int | None = None,
    today: date | None = None,
) -> str | DateParseError:
    """Resolve a reporting-period cell to ``YYYY-MM``."""
    resolved = normalize_date(raw_value, row_number=row_number, today=today)
    if isinstance(resolved, DateParseError):
        return resolved
    return f"{resolved.year:04d}-{resolved.month:02d}"


def format_period(value: date) -> str:
    return f"{value.year:04d}-{value.month:02d}"


def format_indonesian_date(value: date) -> str:
    return f"{value.day:02d} {INDONESIAN_MONTH_LABELS[value.month - 1]} {value.year}"
