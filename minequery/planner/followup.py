from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field
from typing import Any, Dict, List, Mapping, Optional, Sequence, Union

from minequery.planner.dates import find_months, find_year
from minequery.planner.params import DATE_KEYS, EQUIPMENT_RE, NOT_EQUIPMENT, normalize_shift

logger = logging.getLogger(__name__)

FOLLOW_UP_THRESHOLD = 0.5
SHORT_QUESTION_WORDS = 8

FOLLOW_UP_PATTERNS = (
    re.compile(r"^(?:and|but|also|plus)\s+"),
    re.compile(r"^(?:what\s+if|and\s+if|but\s+if|suppose|assuming)\s+"),
    re.compile(r"^(?:what\s+about|how\s+about|and\s+about)\s+"),
    re.compile(r"^(?:with\s+only|with\s+just|using\s+only|using\s+just|limited\s+to|without|exclude|excluding"
               r"|no|not\s+using|at\s+least)\s+"),
    re.compile(r"^(?:then|next|now|after\s+that|do\s+it|run\s+it|try\s+it)\b"),
    re.compile(r"^(?:instead|rather|alternatively|or)\b"),
    re.compile(r"^(?:that|this|those|these)\s+(?:one|option|combination|pair)"),
    re.compile(r"^(?:why|how|when|where|which\s+one)\??\s*$"),
    re.compile(r"^\d+\s*(?:tons?|tonnes?|m3|trips?)\b"),
    re.compile(r"^(?:shift\s*)?[abc]\s*$"),
    re.compile(r"^[a-z]{2,4}-?\d+\s+(?:broke\s*down|is\s+broken|broken|down|failed)\b"),
)

_FULL_QUESTION_RE = re.compile(r"^(?:show|get|find|list|display|give|tell\s+me|what\s+is|what\s+are|who|where\s+is|when\s+did)\b")
_ISO_DATE_RE = re.compile(r"\b\d{4}-\d{2}-\d{2}\b|\b\d{1,2}/\d{1,2}/\d{4}\b")
_SHIFT_RE = re.compile(r"\bshift\s+[abc]\b")
_SHIFT_ONLY_RE = re.compile(r"^(?:shift\s*)?[abc123]\s*$")
# An equipment code after these words refers back to the previous turn
_EXCLUSION_LEAD_RE = re.compile(r"(?:without|exclude|excluding|except|not\s+using|no)\s+(?:[a-z]{2,4}-?\d+\s*(?:,|and|&)?\s*)*$")
_BROKE_DOWN_RE = re.compile(r"^\s+(?:broke\s*down|is\s+broken|broken|down|failed)\b")


@dataclass
class Turn:
    """One prior question/answer exchange."""

    question: str
    intent: str = "UNKNOWN"
    parameters: Dict[str, Any] = field(default_factory=dict)
    answer: Optional[str] = None
    route: Optional[str] = None

    @classmethod
    def from_mapping(cls, data: Mapping[str, Any]) -> "Turn":
        return cls(
            question=str(data.get("question", "")),
            intent=data.get("intent") or data.get("detected_intent") or "UNKNOWN",
            parameters=dict(data.get("parameters") or {}),
            answer=data.get("answer"),
            route=data.get("route"),
        )


HistoryItem = Union[Turn, Mapping[str, Any]]


@dataclass
class FollowUpContext:
    is_follow_up: bool
    confidence: float
    previous_intent: Optional[str] = None
    previous_question: Optional[str] = None
    previous_parameters: Optional[Dict[str, Any]] = None
    follow_up_type: Optional[str] = None  # 'modification' | 'clarification' | 'constraint' | 'alternative'

    def to_dict(self) -> Dict[str, Any]:
        return {
            "is_follow_up": self.is_follow_up,
            "confidence": self.confidence,
            "previous_intent": self.previous_intent,
            "previous_question": self.previous_question,
            "previous_parameters": self.previous_parameters,
            "follow_up_type": self.follow_up_type,
        }


def _as_turn(item: HistoryItem) -> Turn:
    return item if isinstance(item, Turn) else Turn.from_mapping(item)


def _standalone_equipment(ql: str) -> bool:
    for m in EQUIPMENT_RE.finditer(ql):
        if m.group(1) in NOT_EQUIPMENT:
            continue
        if _EXCLUSION_LEAD_RE.search(ql[:m.start()]) or _BROKE_DOWN_RE.match(ql[m.end():]):
            continue
        return True
    return False


def standalone_signal(ql: str) -> Optional[str]:
    """Name of the first signal marking ``ql`` as a fresh question, or None."""
    if _SHIFT_ONLY_RE.match(ql):
        return None
    if _FULL_QUESTION_RE.match(ql):
        return "full question"
    if _ISO_DATE_RE.search(ql):
        return "explicit date"
    if find_months(ql):
        return "month"
    if find_year(ql) is not None:
        return "year"
    if _SHIFT_RE.search(ql):
        return "shift"
    if _standalone_equipment(ql):
        return "equipment code"
    return None


def follow_up_type(ql: str) -> str:
    if re.search(r"\b(?:only|just|limited|constrain\w*|maximum|minimum|at\s+most|at\s+least|without|exclude\w*)\b", ql):
        return "constraint"
    if re.match(r"(?:what\s+about|how\s+about|instead|rather|alternatively)\b", ql):
        return "alternative"
    if re.match(r"(?:why|how|explain)\b", ql) or _SHIFT_ONLY_RE.match(ql):
        return "clarification"
    return "modification"


def detect_follow_up(question: Any, history: Optional[Sequence[HistoryItem]],
                     threshold: float = FOLLOW_UP_THRESHOLD) -> FollowUpContext:
    """Decide whether ``question`` continues the last turn in ``history``.

    Confidence adds up independent signals: a lead-in pattern (0.6), a short
    question (0.2), no question mark (0.1) and an and/but prefix (0.1). A
    standalone signal always wins over the lead-in.
    """
    if not history or not isinstance(question, str) or not question.strip():
        return FollowUpContext(is_follow_up=False, confidence=0.0)
    last = _as_turn(history[-1])
    ql = " ".join(question.lower().split())

    signal = standalone_signal(ql)
    if signal:
        logger.debug("standalone question (%s)", signal)
        return FollowUpContext(False, 0.0, previous_intent=last.intent, previous_question=last.question)

    matched = any(p.search(ql) for p in FOLLOW_UP_PATTERNS)
    confidence = 0.0
    if matched:
        confidence += 0.6
    if len(ql.split()) <= SHORT_QUESTION_WORDS:
        confidence += 0.2
    if "?" not in ql and not ql.startswith("show"):
        confidence += 0.1
    if ql.startswith("and ") or ql.startswith("but "):
        confidence += 0.1
    confidence = round(confidence, 2)

    if confidence < threshold:
        return FollowUpContext(False, confidence, previous_question=last.question)
    return FollowUpContext(
        is_follow_up=True,
        confidence=confidence,
        previous_intent=last.intent,
        previous_question=last.question,
        previous_parameters=dict(last.parameters),
        follow_up_type=follow_up_type(ql),
    )


def _equipment_ids(text: str) -> List[str]:
    ids: List[str] = []
    for m in EQUIPMENT_RE.finditer(text):
        if m.group(1) in NOT_EQUIPMENT:
            continue
        eid = f"{m.group(1).upper()}-{m.group(2)}"
        if eid not in ids:
            ids.append(eid)
    return ids


def extract_follow_up_constraints(question: Any) -> Dict[str, Any]:
    """Parse the small parameter delta a follow-up carries.

    >>> extract_follow_up_constraints("and what if only 8 pairs?")
    {'limit': 8, 'unit': 'pairs'}
    """
    if not isinstance(question, str):
        return {}
    ql = " ".join(question.lower().split())
    out: Dict[str, Any] = {}

    m = _SHIFT_ONLY_RE.match(ql) or re.search(r"\bshift\s*([abc123])\b", ql)
    if m:
        out["shift"] = normalize_shift(m.group(0)[-1])

    m = re.search(r"(\d+)\s+trips?\s+(?:left|remaining)\b", ql)
    if m:
        out["remaining_trips"] = int(m.group(1))

    m = re.search(r"(\d+)\s*(tons?|tonnes?|m3)\s+(?:already\s+)?(?:mined|done|completed|produced)\b", ql)
    if m:
        out["mined_amount"] = int(m.group(1))
        out["unit"] = "m3" if m.group(2).startswith("m") else "ton"
    if re.search(r"\bhalf\s+(?:the\s+)?target\b", ql):
        out["mined_fraction"] = 0.5

    broken = [f"{p.upper()}-{n}" for p, n in
              re.findall(r"\b([a-z]{2,4})-?(\d+)\s+(?:broke\s*down|is\s+broken|broken|down|failed)\b", ql)]

    m = re.search(r"\b(?:only|just|limited\s+to|at\s+most|maximum\s+of|maximum)\s+(\d+)\s+([a-z]+)", ql)
    if m:
        out["limit"] = int(m.group(1))
        out["unit"] = m.group(2)

    m = re.search(r"\b(?:at\s+least|minimum\s+of|minimum|no\s+less\s+than)\s+(\d+)\s+([a-z]+)", ql)
    if m:
        out["minimum"] = int(m.group(1))
        out["unit"] = m.group(2)

    m = re.search(r"\b(?:without|exclude|excluding|except|not\s+using|no)\s+([a-z0-9\-\s,&]+)", ql)
    excluded = _equipment_ids(m.group(1)) if m else []
    for eid in broken:
        if eid not in excluded:
            excluded.append(eid)
    if excluded:
        out["exclude_equipment"] = excluded
    return out


def merge_follow_up_parameters(previous: Optional[Dict[str, Any]], current: Optional[Dict[str, Any]] = None,
                               constraints: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
    """Layer the new turn's parameters over the previous turn's full set.

    A date in the new turn replaces the previous date as a whole, so no key
    derived from the old date survives next to the new one.
    """
    current = current or {}
    merged: Dict[str, Any] = dict(previous or {})
    if any(key in current for key in DATE_KEYS):
        for key in DATE_KEYS:
            merged.pop(key, None)
    merged.update(current)
    merged.update(constraints or {})
    merged["is_follow_up"] = True
    return merged
