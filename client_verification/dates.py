"""Date-of-birth parsing across the layouts seen on identity documents.

Layouts are tried in declaration order and the first one that parses wins,
which only matters for ambiguous strings such as ``03/04/1990`` (read as
day-first). Each layout is matched strictly: ``dd``/``MM`` need two digits,
``d``/``M`` take one or two, fields are separated by exactly one separator.
Month abbreviations come from a fixed English table (case-insensitive), so
the result does not depend on the process locale.

Examples
--------
>>> parse_date("15 Jan 1990")
datetime.date(1990, 1, 15)
>>> parse_date("12/25/1990")
datetime.date(1990, 12, 25)
>>> parse_date("1990.01.15") is None
True
>>> parse_date("2/13/1990") is None
True
"""
from __future__ import annotations

import datetime as _dt
import re
from typing import Iterator, Optional, Pattern

MONTH_ABBREVIATIONS = {
    name: number
    for number, name in enumerate(
        ("JAN", "FEB", "MAR", "APR", "MAY", "JUN", "JUL", "AUG", "SEP", "OCT", "NOV", "DEC"), start=1
    )
}

_MONTH_NAME = r"(?P<month>[A-Za-z]{3})"

# (layout, pattern); every pattern captures day, month and year by name
DATE_LAYOUTS: tuple[tuple[str, Pattern[str]], ...] = (
    ("dd MMM yyyy", re.compile(rf"(?P<day>\d{{2}}) {_MONTH_NAME} (?P<year>\d{{4}})", re.ASCII)),
    ("d MMM yyyy", re.compile(rf"(?P<day>\d{{1,2}}) {_MONTH_NAME} (?P<year>\d{{4}})", re.ASCII)),
    ("dd/MM/yyyy", re.compile(r"(?P<day>\d{2})/(?P<month>\d{2})/(?P<year>\d{4})", re.ASCII)),
    ("d/M/yyyy", re.compile(r"(?P<day>\d{1,2})/(?P<month>\d{1,2})/(?P<year>\d{4})", re.ASCII)),
    ("yyyy-MM-dd", re.compile(r"(?P<year>\d{4})-(?P<month>\d{2})-(?P<day>\d{2})", re.ASCII)),
    ("MM/dd/yyyy", re.compile(r"(?P<month>\d{2})/(?P<day>\d{2})/(?P<year>\d{4})", re.ASCII)),
    ("dd-MM-yyyy", re.compile(r"(?P<day>\d{2})-(?P<month>\d{2})-(?P<year>\d{4})", re.ASCII)),
)


def _month_number(token: str) -> Optional[int]:
    if token.isdigit():
        return int(token)
    return MONTH_ABBREVIATIONS.get(token.upper())


def _try_parse(value: str, pattern: Pattern[str]) -> Optional[_dt.date]:
    match = pattern.fullmatch(value)
    if match is None:
        return None
    month = _month_number(match["month"])
    if month is None:
        return None
    try:
        return _dt.date(int(match["year"]), month, int(match["day"]))
    except ValueError:
        return None


def _attempts(value: str) -> Iterator[Optional[_dt.date]]:
    for _layout, pattern in DATE_LAYOUTS:
        yield _try_parse(value, pattern)


def parse_date(value: str) -> Optional[_dt.date]:
    """Return the first layout match for ``value``, or ``None`` if it is unparseable."""
    return next((parsed for parsed in _attempts(value) if parsed is not None), None)
