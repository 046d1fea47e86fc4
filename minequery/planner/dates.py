from __future__ import annotations

import calendar
import re
from dataclasses import dataclass
from datetime import date, timedelta
from typing import Any, Dict, List, Optional, Tuple

import pandas as pd

YEAR_MIN = 1900
YEAR_MAX = 2100

MONTHS: Dict[str, int] = {
    "january": 1, "february": 2, "march": 3, "april": 4, "may": 5, "june": 6,
    "july": 7, "august": 8, "september": 9, "october": 10, "november": 11, "december": 12,
    "jan": 1, "feb": 2, "mar": 3, "apr": 4, "jun": 6, "jul": 7, "aug": 8,
    "sep": 9, "sept": 9, "oct": 10, "nov": 11, "dec": 12,
}

_M = (
    r"(january|february|march|april|may|june|july|august|september|october|november|december"
    r"|sept|jan|feb|mar|apr|jun|jul|aug|sep|oct|nov|dec)"
)
_ORD = r"(?:st|nd|rd|th)?"

_ISO_RE = re.compile(r"\b(\d{4})-(\d{1,2})-(\d{1,2})\b")
_DMY_RE = re.compile(r"\b(\d{1,2})[/.](\d{1,2})[/.](\d{4})\b")
_MONTH_DAY_RE = re.compile(r"\b" + _M + r"\.?\s+(\d{1,2})" + _ORD + r"(?:\s*,?\s*(\d{4}))?\b")
_DAY_MONTH_RE = re.compile(r"\b(\d{1,2})" + _ORD + r"\s+(?:of\s+)?" + _M + r"\b(?:\s*,?\s*(\d{4})\b)?")
_MONTH_RE = re.compile(r"\b" + _M + r"\b(?:\s*,?\s*(?:of\s+)?(\d{4})\b)?")
_YEAR_RE = re.compile(r"(?<![\d/.-])(\d{4})(?![\d/-])(?!\.\d)(?!\s*(?:tons?|tonnes?|trips?|m3|km|hours?|hrs?|meters?|metres?|pairs?|%))")
# A number right after a comparison word is a quantity ("over 2000")
_COMPARISON_LEAD_RE = re.compile(
    r"\b(?:over|above|under|below|exceeding|exceeds?|(?:more|less|fewer|greater|higher|lower)\s+than"
    r"|at\s+(?:least|most)|(?:minimum|maximum)\s+of|no\s+(?:more|less)\s+than|equal\s+to|equals|exactly)\s+$"
)

_QUARTER_RES = (
    re.compile(r"\bq([1-4])\b(?:\s*(?:of\s+|,\s*|-\s*|')?\s*(\d{4})\b)?"),
    re.compile(r"\b(first|second|third|fourth|1st|2nd|3rd|4th)\s+quarter\b(?:\s*(?:of\s+|,\s*)?\s*(\d{4})\b)?"),
)
_YEAR_QUARTER_RE = re.compile(r"\b(\d{4})\s*[-/ ]?\s*q([1-4])\b")
_QUARTER_WORDS = {"first": 1, "1st": 1, "second": 2, "2nd": 2, "third": 3, "3rd": 3, "fourth": 4, "4th": 4}

_LAST_N_RE = re.compile(r"\b(?:last|past|previous)\s+(\d+)\s+(day|week|month|year)s?\b")

_RANGE_RES = (
    re.compile(
        r"\b(?:from|between|compare|comparing)\s+(?P<a>.+?)\s+(?:to|and|through|till|until|vs\.?|versus|-)\s+"
        r"(?P<b>.+?)(?=\s*[?.!,;]|\s*$|\s+(?:for|in|by|on|where|with|at|during|per|of)\b)"
    ),
    re.compile(
        r"(?P<a>\b" + _M + r"(?:\s+\d{1,2}" + _ORD + r")?(?:\s*,?\s*\d{4})?)\s+(?:to|through|till|until|-)\s+"
        r"(?P<b>" + _M + r"(?:\s+\d{1,2}" + _ORD + r")?(?:\s*,?\s*\d{4})?)\b"
    ),
    re.compile(
        r"(?P<a>\b\d{1,2}" + _ORD + r"\s+(?:of\s+)?" + _M + r"(?:\s*,?\s*\d{4})?)\s+(?:to|through|till|until|-)\s+"
        r"(?P<b>\d{1,2}" + _ORD + r"\s+(?:of\s+)?" + _M + r"(?:\s*,?\s*\d{4})?)\b"
    ),
)

# "may" is a month only when it reads like one.
_MAY_CONTEXT = re.compile(r"\b(?:in|for|of|during|from|to|since|until|through|and|between|vs|versus|early|late|mid)\s+$")

KIND_SPECIFICITY = {"year": 0, "range": 1, "relative": 1, "quarter": 1, "month": 2, "single": 3}


@dataclass(frozen=True)
class ParsedDate:
    """Resolved date filter. ``start`` and ``end`` are inclusive."""

    kind: str  # 'single' | 'month' | 'quarter' | 'year' | 'range' | 'relative'
    start: date
    end: date
    raw_text: str = ""
    year: Optional[int] = None
    quarter: Optional[int] = None
    month: Optional[int] = None
    relative_period: Optional[str] = None

    @property
    def month_name(self) -> Optional[str]:
        return calendar.month_name[self.month] if self.month else None

    @property
    def is_single_day(self) -> bool:
        return self.start == self.end

    @property
    def days(self) -> int:
        return (self.end - self.start).days + 1

    def specificity(self) -> Tuple[int, int]:
        return KIND_SPECIFICITY.get(self.kind, 0), -self.days

    def to_dict(self) -> Dict[str, Any]:
        out: Dict[str, Any] = {"kind": self.kind, "start": self.start.isoformat(), "end": self.end.isoformat()}
        for key in ("year", "quarter", "month", "relative_period"):
            val = getattr(self, key)
            if val is not None:
                out[key] = val
        if self.month:
            out["month_name"] = self.month_name
        if self.raw_text:
            out["raw_text"] = self.raw_text
        return out


def _valid_year(y: Optional[int]) -> bool:
    return y is not None and YEAR_MIN <= y <= YEAR_MAX


def _to_year(token: Optional[str]) -> Optional[int]:
    if not token:
        return None
    y = int(token)
    return y if _valid_year(y) else None


def _safe_date(y: int, m: int, d: int) -> Optional[date]:
    if not _valid_year(y):
        return None
    try:
        return date(y, m, d)
    except ValueError:
        return None


def month_bounds(year: int, month: int) -> Tuple[date, date]:
    return date(year, month, 1), date(year, month, calendar.monthrange(year, month)[1])


def quarter_bounds(year: int, quarter: int) -> Tuple[date, date]:
    first = (quarter - 1) * 3 + 1
    return month_bounds(year, first)[0], month_bounds(year, first + 2)[1]


def find_year(ql: str) -> Optional[int]:
    for m in _YEAR_RE.finditer(ql):
        if _COMPARISON_LEAD_RE.search(ql[:m.start()]):
            continue
        y = _to_year(m.group(1))
        if y is not None:
            return y
    return None


def _is_month_token(ql: str, m: re.Match, token: str) -> bool:
    if token != "may":
        return True
    if m.lastindex and m.group(m.lastindex) and m.group(m.lastindex).isdigit():
        return True
    return bool(_MAY_CONTEXT.search(ql[:m.start()]))


def find_months(ql: str) -> List[Tuple[int, Optional[int]]]:
    """All (month, adjacent year) mentions in order of appearance."""
    found: List[Tuple[int, Optional[int]]] = []
    for m in _MONTH_RE.finditer(ql):
        token = m.group(1)
        if not _is_month_token(ql, m, token):
            continue
        found.append((MONTHS[token], _to_year(m.group(2))))
    return found


# --- stage finders -----------------------------------------------------------

def _find_absolute(ql: str, default_year: Optional[int]) -> Optional[Tuple[date, bool, str]]:
    """Earliest explicit calendar day: (date, year_was_explicit, matched text)."""
    hits: List[Tuple[int, date, bool, str]] = []
    for m in _ISO_RE.finditer(ql):
        d = _safe_date(int(m.group(1)), int(m.group(2)), int(m.group(3)))
        if d:
            hits.append((m.start(), d, True, m.group(0)))
    for m in _DMY_RE.finditer(ql):
        d = _safe_date(int(m.group(3)), int(m.group(2)), int(m.group(1)))
        if d:
            hits.append((m.start(), d, True, m.group(0)))
    for m in _MONTH_DAY_RE.finditer(ql):
        year = _to_year(m.group(3))
        y = year or default_year
        if y is None or not _is_month_token(ql, m, m.group(1)):
            continue
        d = _safe_date(y, MONTHS[m.group(1)], int(m.group(2)))
        if d:
            hits.append((m.start(), d, year is not None, m.group(0)))
    for m in _DAY_MONTH_RE.finditer(ql):
        year = _to_year(m.group(3))
        y = year or default_year
        if y is None:
            continue
        d = _safe_date(y, MONTHS[m.group(2)], int(m.group(1)))
        if d:
            hits.append((m.start(), d, year is not None, m.group(0)))
    if not hits:
        return None
    hits.sort(key=lambda h: h[0])
    _, d, explicit, text = hits[0]
    return d, explicit, text


def _find_quarter(ql: str) -> Optional[Tuple[int, Optional[int], str]]:
    m = _YEAR_QUARTER_RE.search(ql)
    if m and _to_year(m.group(1)):
        return int(m.group(2)), _to_year(m.group(1)), m.group(0)
    for rx in _QUARTER_RES:
        m = rx.search(ql)
        if m:
            token = m.group(1)
            quarter = int(token) if token.isdigit() else _QUARTER_WORDS[token]
            return quarter, _to_year(m.group(2)), m.group(0)
    return None


def _find_month(ql: str) -> Optional[Tuple[int, Optional[int], str]]:
    for m in _MONTH_RE.finditer(ql):
        token = m.group(1)
        if _is_month_token(ql, m, token):
            return MONTHS[token], _to_year(m.group(2)), m.group(0)
    return None


def _shift(today: date, n: int, unit: str) -> date:
    if unit == "day":
        return today - timedelta(days=n)
    if unit == "week":
        return today - timedelta(weeks=n)
    offset = pd.DateOffset(months=n) if unit == "month" else pd.DateOffset(years=n)
    return (pd.Timestamp(today) - offset).date()


# --- stages ------------------------------------------------------------------

def _parse_absolute(ql: str, today: date) -> Optional[ParsedDate]:
    hit = _find_absolute(ql, find_year(ql) or today.year)
    if not hit:
        return None
    d, _, text = hit
    return ParsedDate(kind="single", start=d, end=d, raw_text=text, year=d.year, month=d.month)


def _parse_quarter(ql: str, today: date) -> Optional[ParsedDate]:
    hit = _find_quarter(ql)
    if not hit:
        return None
    quarter, year, text = hit
    year = year or find_year(ql) or today.year
    start, end = quarter_bounds(year, quarter)
    return ParsedDate(kind="quarter", start=start, end=end, raw_text=text, year=year, quarter=quarter)


def _parse_relative(ql: str, today: date) -> Optional[ParsedDate]:
    m = _LAST_N_RE.search(ql)
    if m:
        n, unit = int(m.group(1)), m.group(2)
        return ParsedDate(kind="relative", start=_shift(today, n, unit), end=today,
                          raw_text=m.group(0), relative_period=f"last_{n}_{unit}s")
    if re.search(r"\btoday\b", ql):
        return ParsedDate(kind="relative", start=today, end=today, raw_text="today", relative_period="today")
    if re.search(r"\byesterday\b", ql):
        d = today - timedelta(days=1)
        return ParsedDate(kind="relative", start=d, end=d, raw_text="yesterday", relative_period="yesterday")
    monday = today - timedelta(days=today.weekday())
    if re.search(r"\bthis\s+week\b", ql):
        return ParsedDate(kind="relative", start=monday, end=today, raw_text="this week", relative_period="this_week")
    if re.search(r"\b(?:last|previous|past)\s+week\b", ql):
        start = monday - timedelta(days=7)
        return ParsedDate(kind="relative", start=start, end=start + timedelta(days=6),
                          raw_text="last week", relative_period="last_week")
    if re.search(r"\bthis\s+month\b", ql):
        return ParsedDate(kind="relative", start=today.replace(day=1), end=today, raw_text="this month",
                          month=today.month, year=today.year, relative_period="this_month")
    if re.search(r"\b(?:last|previous|past)\s+month\b", ql):
        prev = today.replace(day=1) - timedelta(days=1)
        start, end = month_bounds(prev.year, prev.month)
        return ParsedDate(kind="relative", start=start, end=end, raw_text="last month",
                          month=prev.month, year=prev.year, relative_period="last_month")
    if re.search(r"\bthis\s+year\b", ql):
        return ParsedDate(kind="relative", start=date(today.year, 1, 1), end=today, raw_text="this year",
                          year=today.year, relative_period="this_year")
    if re.search(r"\b(?:last|previous|past)\s+year\b", ql):
        y = today.year - 1
        return ParsedDate(kind="relative", start=date(y, 1, 1), end=date(y, 12, 31), raw_text="last year",
                          year=y, relative_period="last_year")
    return None


def _parse_month(ql: str, today: date) -> Optional[ParsedDate]:
    hit = _find_month(ql)
    if not hit:
        return None
    month, year, text = hit
    year = year or find_year(ql) or today.year
    start, end = month_bounds(year, month)
    return ParsedDate(kind="month", start=start, end=end, raw_text=text, year=year, month=month)


def _parse_year(ql: str, today: date) -> Optional[ParsedDate]:
    y = find_year(ql)
    if y is None:
        return None
    return ParsedDate(kind="year", start=date(y, 1, 1), end=date(y, 12, 31), raw_text=str(y), year=y)


def _resolve_endpoint(chunk: str, year: Optional[int]) -> Optional[Tuple[date, date, bool]]:
    """(start, end, year_was_explicit) for one side of a range."""
    hit = _find_absolute(chunk, year)
    if hit:
        d, explicit, _ = hit
        return d, d, explicit
    q = _find_quarter(chunk)
    if q:
        quarter, qy, _ = q
        y = qy or year
        if y is None:
            return None
        start, end = quarter_bounds(y, quarter)
        return start, end, qy is not None
    mo = _find_month(chunk)
    if mo:
        month, my, _ = mo
        y = my or year
        if y is None:
            return None
        start, end = month_bounds(y, month)
        return start, end, my is not None
    y = find_year(chunk)
    if y is not None:
        return date(y, 1, 1), date(y, 12, 31), True
    return None


def _parse_range(ql: str, today: date) -> Optional[ParsedDate]:
    for rx in _RANGE_RES:
        for m in rx.finditer(ql):
            a_text, b_text = m.group("a"), m.group("b")
            # Without a default year only endpoints carrying their own year resolve
            a = _resolve_endpoint(a_text, None)
            b = _resolve_endpoint(b_text, None)
            shared = (a[0].year if a else None) or (b[0].year if b else None) or find_year(ql) or today.year
            if a is None:
                a = _resolve_endpoint(a_text, shared)
            b_inherited = b is None
            if b_inherited:
                b = _resolve_endpoint(b_text, shared)
            if a is None or b is None:
                continue
            start, end = a[0], b[1]
            if end < start and b_inherited:
                b = _resolve_endpoint(b_text, shared + 1)
                end = b[1] if b else end
            if end < start:
                continue
            return ParsedDate(kind="range", start=start, end=end, raw_text=m.group(0).strip(),
                              year=start.year if start.year == end.year else None)
    return None


_STAGES = (_parse_quarter, _parse_range, _parse_absolute, _parse_relative, _parse_month, _parse_year)


def parse_date(text: Any, today: Optional[date] = None) -> Optional[ParsedDate]:
    """Resolve the first date expression in ``text`` to an inclusive range.

    Quarters are tried first, then ranges with an explicit connector ("from X
    to Y", "between X and Y"), explicit days, relative periods, named months
    and bare years. Unparseable input yields None; this never raises.
    """
    if not isinstance(text, str) or not text.strip():
        return None
    today = today or date.today()
    ql = " ".join(text.lower().split())
    for stage in _STAGES:
        found = stage(ql, today)
        if found is not None:
            return found
    return None
