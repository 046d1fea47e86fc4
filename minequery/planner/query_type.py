from __future__ import annotations

import re
from typing import Any, Tuple

# Checked in order; the first pattern that matches names the query type.
QUERY_TYPES: Tuple[Tuple[str, "re.Pattern[str]"], ...] = (
    ("time_series", re.compile(r"\b(?:over\s+time|trends?|timeline|daily|weekly|monthly)\b")),
    ("distribution", re.compile(r"\b(?:distribution|spread|breakdown|histogram)\b")),
    ("comparison", re.compile(r"\b(?:compare|comparison|versus|vs\.?|difference\s+between)\b")),
    ("equipment_combo", re.compile(r"\btippers?\b.*\bexcavators?\b|\bexcavators?\b.*\btippers?\b|\bcombinations?\b|\bpairings?\b")),
    ("shift_grouping", re.compile(r"\b(?:by|per|each)\s+shifts?\b|\bshift\s+[abc123]\b")),
    ("summary", re.compile(r"\b(?:summary|total|sum|aggregate|overall)\b")),
)

GENERIC = "generic"


def detect_query_type(text: Any) -> str:
    if not isinstance(text, str):
        return GENERIC
    ql = text.lower()
    for name, rx in QUERY_TYPES:
        if rx.search(ql):
            return name
    return GENERIC
