from __future__ import annotations

import calendar
import logging
import re
from dataclasses import dataclass
from datetime import date
from typing import Any, Callable, Dict, List, Optional, Tuple

from minequery.planner.dates import ParsedDate, YEAR_MAX, YEAR_MIN, find_months, find_year, parse_date

logger = logging.getLogger(__name__)

NUM = r"(\d{1,3}(?:,\d{3})+(?:\.\d+)?|\d+(?:\.\d+)?)"

SHIFT_NUMBERS = {"1": "A", "2": "B", "3": "C"}

EQUIPMENT_RE = re.compile(r"\b([a-z]{2,4})-?(\d{1,4})\b")
# Letter+digit tokens that are not equipment codes
NOT_EQUIPMENT = frozenset({
    "jan", "feb", "mar", "apr", "may", "jun", "june", "jul", "july", "aug", "sep", "sept", "oct", "nov", "dec",
    "top", "last", "next", "past", "row", "rows", "day", "days", "week", "year", "km", "hrs", "hr", "kg",
    "no", "id", "nth", "the", "and", "for", "by", "in", "of", "q",
})

MACHINE_TYPES = ("tipper", "excavator", "dumper", "dozer", "grader", "truck")

UNITS = {
    "ton": "ton", "tons": "ton", "tonne": "ton", "tonnes": "ton",
    "trip": "trip", "trips": "trip",
    "meter": "meter", "meters": "meter", "metre": "meter", "metres": "meter",
    "kilometer": "km", "kilometers": "km", "kilometre": "km", "kilometres": "km", "km": "km",
    "hour": "hour", "hours": "hour", "hr": "hour", "hrs": "hour",
    "m3": "m3",
}
_MEASUREMENT_RE = re.compile(
    NUM + r"\s*(tons?|tonnes?|trips?|meters?|metres?|kilometers?|kilometres?|km|hours?|hrs?|m3)\b"
)

# First pattern that matches wins; longer phrasings are listed before their prefixes.
NUMERIC_PATTERNS: Tuple[Tuple[str, "re.Pattern[str]"], ...] = (
    (">=", re.compile(r"\b(?:at\s+least|minimum\s+of|no\s+less\s+than|greater\s+than\s+or\s+equal\s+to)\s+" + NUM)),
    ("<=", re.compile(r"\b(?:at\s+most|maximum\s+of|no\s+more\s+than|less\s+than\s+or\s+equal\s+to)\s+" + NUM)),
    (">", re.compile(r"\b(?:more\s+than|greater\s+than|higher\s+than|above|over|exceeding|exceeds?)\s+" + NUM)),
    ("<", re.compile(r"\b(?:less\s+than|fewer\s+than|lower\s+than|below|under)\s+" + NUM)),
    ("=", re.compile(r"\b(?:equal\s+to|equals|exactly)\s+" + NUM)),
    ("between", re.compile(r"\bbetween\s+" + NUM + r"\s+and\s+" + NUM + r"\b")),
)

_ROUTE_STOPWORDS = frozenset({
    "made", "did", "was", "is", "has", "have", "performed", "produced", "yielded", "generated", "analysis",
    "performance", "utilization", "efficiency", "summary", "report", "check", "list", "show", "the", "and",
    "with", "for", "in", "of", "on", "by", "had", "most", "used",
})


def to_number(token: str):
    raw = token.replace(",", "")
    return float(raw) if "." in raw else int(raw)


def normalize_shift(token: str) -> str:
    t = token.strip().upper()
    return SHIFT_NUMBERS.get(t, t)


def normalize_equipment_id(prefix: str, number: str) -> str:
    return f"{prefix.upper()}-{number}"


def find_equipment_ids(text: str) -> List[str]:
    ids: List[str] = []
    for m in EQUIPMENT_RE.finditer(text.lower()):
        if m.group(1) in NOT_EQUIPMENT:
            continue
        eid = normalize_equipment_id(m.group(1), m.group(2))
        if eid not in ids:
            ids.append(eid)
    return ids


# --- detectors ---------------------------------------------------------------
# Each detector takes (lower-cased text, today) and returns only the keys it found.

def _detect_year(ql: str, today: date) -> Dict[str, Any]:
    y = find_year(ql)
    if y is None:
        return {}
    return {"parsed_date": ParsedDate(kind="year", start=date(y, 1, 1), end=date(y, 12, 31), raw_text=str(y), year=y)}


def _detect_date(ql: str, today: date) -> Dict[str, Any]:
    parsed = parse_date(ql, today=today)
    return {"parsed_date": parsed} if parsed else {}


def _detect_months(ql: str, today: date) -> Dict[str, Any]:
    out: Dict[str, Any] = {}
    months: List[int] = []
    for month, _ in find_months(ql):
        if month not in months:
            months.append(month)
    if len(months) > 1:
        out["months"] = months
        out["month_names"] = [calendar.month_name[m] for m in months]
        out["is_multi_month"] = True
    return out


def _detect_month_grouping(ql: str, today: date) -> Dict[str, Any]:
    out: Dict[str, Any] = {}
    if re.search(r"\b(?:by|per|each|every)\s+month\b|\bmonth[\s-]?wise\b|\bmonthly\b", ql):
        out["group_by_month"] = True
    if re.search(r"\b(?:which|what)\s+months?\b", ql):
        out["month_ranking"] = True
    if re.search(r"\ball\s+months?\b", ql):
        out["all_months"] = True
        out["group_by_month"] = True
    return out


def _detect_shift(ql: str, today: date) -> Dict[str, Any]:
    out: Dict[str, Any] = {}
    if re.search(r"\b(?:by|per|each|every|across|all)\s+shifts?\b|\bshift[\s-]?wise\b", ql):
        out["group_by_shift"] = True
    shifts: List[str] = []
    for m in re.finditer(r"\bshifts?\s*([abc123](?:\s*(?:,|and|&|or)\s*[abc123])*)\b", ql):
        for token in re.findall(r"[abc123]", re.sub(r"\b(?:and|or)\b", " ", m.group(1))):
            s = normalize_shift(token)
            if s not in shifts:
                shifts.append(s)
    if shifts:
        out["shift"] = shifts[0] if len(shifts) == 1 else shifts
        out["shift_count"] = len(shifts)
    return out


def _detect_rank(ql: str, today: date) -> Dict[str, Any]:
    m = re.search(r"\b(top|bottom)\s*(\d+)\b", ql)
    if not m:
        return {}
    return {"n": int(m.group(2)), "rank_type": m.group(1)}


def _detect_row(ql: str, today: date) -> Dict[str, Any]:
    m = re.search(r"\b(\d+)(?:st|nd|rd|th)\s+row\b", ql) or re.search(r"\brow\s+(?:number\s+|no\.?\s*|#)?(\d+)\b", ql)
    if m:
        return {"row_number": int(m.group(1))}
    if re.search(r"\bfirst\s+row\b", ql):
        return {"row_number": 1}
    if re.search(r"\blast\s+row\b", ql):
        return {"row_position": "last"}
    return {}


def _detect_equipment(ql: str, today: date) -> Dict[str, Any]:
    ids = find_equipment_ids(ql)
    return {"equipment_ids": ids} if ids else {}


def _detect_machine_types(ql: str, today: date) -> Dict[str, Any]:
    found = [t for t in MACHINE_TYPES if re.search(r"\b" + t + r"s?\b", ql)]
    return {"machine_types": found} if found else {}


def _detect_route_face(ql: str, today: date) -> Dict[str, Any]:
    out: Dict[str, Any] = {}
    m = re.search(r"\b(?:route|face)\s+([a-z0-9]+(?:-[a-z0-9]+)?)\b", ql)
    if m and m.group(1) not in _ROUTE_STOPWORDS:
        out["route_or_face"] = m.group(1).upper()
    m = re.search(r"\bbench\s+(\d+)\b", ql)
    if m:
        out["bench"] = int(m.group(1))
    return out


def _detect_numeric_filter(ql: str, today: date) -> Dict[str, Any]:
    for op, rx in NUMERIC_PATTERNS:
        m = rx.search(ql)
        if not m:
            continue
        if op == "between":
            lo, hi = to_number(m.group(1)), to_number(m.group(2))
            # "between 2023 and 2024" is a year range, handled by the date parser
            if all(isinstance(v, int) and YEAR_MIN <= v <= YEAR_MAX for v in (lo, hi)):
                continue
            return {"numeric_filter": {"operator": "between", "min": lo, "max": hi}}
        return {"numeric_filter": {"operator": op, "value": to_number(m.group(1))}}
    return {}


def _detect_measurement(ql: str, today: date) -> Dict[str, Any]:
    m = _MEASUREMENT_RE.search(ql)
    if not m:
        return {}
    return {"measurement": {"value": to_number(m.group(1)), "unit": UNITS[m.group(2)]}}


@dataclass(frozen=True)
class Detector:
    name: str
    fn: Callable[[str, date], Dict[str, Any]]
    # Substrings at least one of which must occur for the detector to find anything
    triggers: Tuple[str, ...] = ()

    def may_match(self, ql: str) -> bool:
        return not self.triggers or any(t in ql for t in self.triggers)


_DIGITS = tuple("0123456789")
_MONTH_STEMS = ("jan", "feb", "mar", "apr", "may", "jun", "jul", "aug", "sep", "oct", "nov", "dec")

DETECTORS: Tuple[Detector, ...] = (
    Detector("year", _detect_year, _DIGITS),
    Detector("date", _detect_date),
    Detector("months", _detect_months, _MONTH_STEMS),
    Detector("month_grouping", _detect_month_grouping, ("month",)),
    Detector("shift", _detect_shift, ("shift",)),
    Detector("rank", _detect_rank, ("top", "bottom")),
    Detector("row", _detect_row, ("row",)),
    Detector("equipment", _detect_equipment, _DIGITS),
    Detector("machine_types", _detect_machine_types, MACHINE_TYPES),
    Detector("route_face", _detect_route_face, ("route", "face", "bench")),
    Detector("numeric_filter", _detect_numeric_filter,
             ("than", "least", "most", "minimum", "maximum", "above", "over", "exceed", "below", "under",
              "equal", "exactly", "between")),
    Detector("measurement", _detect_measurement, _DIGITS),
)


def _is_refinement(old: Any, new: Any) -> bool:
    if isinstance(old, ParsedDate) and isinstance(new, ParsedDate):
        return new.specificity() > old.specificity()
    return False


def merge_detected(params: Dict[str, Any], found: Dict[str, Any], source: str = "") -> None:
    """Add ``found`` into ``params`` without silently overwriting earlier keys.

    An existing key is replaced only by a strictly more specific value (an
    explicit day after a year-only match, for example).
    """
    for key, value in found.items():
        if key not in params:
            params[key] = value
        elif _is_refinement(params[key], value):
            params[key] = value
        elif params[key] != value:
            logger.debug("detector %s: keeping %s=%r over %r", source, key, params[key], value)


# Everything _expand_date derives from one parsed date, plus the multi-month list
DATE_KEYS = (
    "parsed_date", "year", "quarter", "month", "month_name", "date_start", "date_end", "date", "date_range",
    "date_range_type", "months", "month_names", "is_multi_month",
)


def _expand_date(params: Dict[str, Any]) -> None:
    parsed: Optional[ParsedDate] = params.get("parsed_date")
    if parsed is None:
        return
    if parsed.year is not None:
        params["year"] = parsed.year
    if parsed.quarter is not None:
        params["quarter"] = parsed.quarter
    if parsed.month is not None:
        params["month"] = parsed.month
        params["month_name"] = parsed.month_name
    params["date_start"] = parsed.start.isoformat()
    params["date_end"] = parsed.end.isoformat()
    if parsed.kind == "single":
        params["date"] = parsed.start.isoformat()
    if parsed.relative_period:
        params["date_range"] = parsed.relative_period
    if parsed.kind == "range":
        params["date_range_type"] = "custom"


def extract_parameters(text: Any, today: Optional[date] = None, short_circuit: bool = True) -> Dict[str, Any]:
    """Run the detector battery over ``text`` and return the merged parameters.

    With ``short_circuit`` a detector is skipped when none of its trigger
    substrings occur in the text; results are identical either way.
    """
    if not isinstance(text, str) or not text.strip():
        return {}
    today = today or date.today()
    ql = " ".join(text.lower().split())
    params: Dict[str, Any] = {}
    for det in DETECTORS:
        if short_circuit and not det.may_match(ql):
            continue
        merge_detected(params, det.fn(ql, today), det.name)
    _expand_date(params)
    return params
