"""Flexible date parsing for surveillance exports.

Accepted inputs, tried in order:

* numeric Excel day serials between 20000 and 90000 (exclusive)
* ``YYYY-MM-DD`` / ``YYYY-M-D``
* ``YYYY/M/D``
* ``D/M/YYYY``
* ``D-M-YYYY``
* Excel serials supplied as text

Any four-digit year of 2400 or later is a Buddhist-era year and is shifted
back by 543. Time-of-day suffixes are ignored. The result is always a
canonical ``YYYY-MM-DD`` string or ``None``.
"""
from __future__ import annotations

import math
import re
from datetime import date, datetime, timedelta, timezone
from typing import Optional

EXCEL_SERIAL_MIN = 20000
EXCEL_SERIAL_MAX = 90000
EXCEL_EPOCH_OFFSET_DAYS = 25569
BUDDHIST_YEAR_THRESHOLD = 2400
BUDDHIST_YEAR_OFFSET = 543

_UNIX_EPOCH = datetime(1970, 1, 1, tzinfo=timezone.utc)

_YEAR_FIRST_DASH = re.compile(r"^(\d{4})-(\d{1,2})-(\d{1,2})$")
_YEAR_FIRST_SLASH = re.compile(r"^(\d{4})/(\d{1,2})/(\d{1,2})$")
_DAY_FIRST_SLASH = re.compile(r"^(\d{1,2})/(\d{1,2})/(\d{4})$")
_DAY_FIRST_DASH = re.compile(r"^(\d{1,2})-(\d{1,2})-(\d{4})$")
_SERIAL_TEXT = re.compile(r"^\d+(\.\d+)?$")
_TIME_SEPARATOR = re.compile(r"[\sT]")


def normalize_buddhist_year(year: int) -> int:
    if year >= BUDDHIST_YEAR_THRESHOLD:
        return year - BUDDHIST_YEAR_OFFSET
    return year


def canonical_date(year: int, month: int, day: int) -> Optional[str]:
    """Return ``YYYY-MM-DD`` when the triple is a real calendar day."""
    try:
        return date(year, month, day).isoformat()
    except ValueError:
        return None


def excel_serial_to_date(serial: float) -> Optional[str]:
    if not math.isfinite(serial) or not EXCEL_SERIAL_MIN < serial < EXCEL_SERIAL_MAX:
        return None
    moment = _UNIX_EPOCH + timedelta(days=serial - EXCEL_EPOCH_OFFSET_DAYS)
    return moment.date().isoformat()


def _from_parts(year: str, month: str, day: str) -> Optional[str]:
    return canonical_date(normalize_buddhist_year(int(year)), int(month), int(day))


def parse_flexible_date(value: object) -> Optional[str]:
    if value is None or isinstance(value, bool):
        return None

    if isinstance(value, datetime):
        return value.date().isoformat()
    if isinstance(value, date):
        return value.isoformat()
    if isinstance(value, (int, float)):
        return excel_serial_to_date(float(value))

    raw = str(value).strip()
    if not raw:
        return None
    candidate = _TIME_SEPARATOR.split(raw, maxsplit=1)[0]

    match = _YEAR_FIRST_DASH.match(candidate) or _YEAR_FIRST_SLASH.match(candidate)
    if match:
        year, month, day = match.groups()
        return _from_parts(year, month, day)

    match = _DAY_FIRST_SLASH.match(candidate) or _DAY_FIRST_DASH.match(candidate)
    if match:
        day, month, year = match.groups()
        return _from_parts(year, month, day)

    if _SERIAL_TEXT.match(candidate):
        return excel_serial_to_date(float(candidate))

    return None


def to_date(canonical: Optional[str]) -> Optional[date]:
    if canonical is None:
        return None
    return date.fromisoformat(canonical)
