from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field
from datetime import date
from typing import Any, Dict, FrozenSet, List, Optional, Tuple

from minequery.planner.params import extract_parameters

logger = logging.getLogger(__name__)

UNKNOWN = "UNKNOWN"

PHRASE_MULTIPLIER = 3.0
GENERIC_WEIGHT = 0.5
GENERIC_WORDS: FrozenSet[str] = frozenset({"show", "list", "display", "find", "get", "fetch", "view", "see", "data"})

# Score at which a winner of the given tier reaches full confidence
TIER_SATURATION = {1: 4.0, 2: 5.0, 3: 6.0}
AMBIGUITY_RATIO = 0.7
AMBIGUITY_CAP = 0.75


@dataclass(frozen=True)
class IntentRule:
    name: str
    tier: int
    keywords: Tuple[str, ...]
    task: str = "sql"  # 'sql' | 'rag' | 'optimize'
    templated: bool = False  # falls through to the query-type templates


INTENTS: Tuple[IntentRule, ...] = (
    # Tier 1: specific
    IntentRule("STATISTICAL_QUERY", 1, (
        "mean", "median", "mode", "standard deviation", "stddev", "std dev", "deviation",
        "statistical analysis", "statistical measure", "statistical", "analysis",
        "calculate mean", "calculate median", "calculate mode", "compute mean", "compute median",
        "find the mean", "find the median", "find the mode",
    )),
    IntentRule("TARGET_OPTIMIZATION", 1, (
        "mine", "target", "production target", "need to mine", "want to mine", "plan to mine",
        "achieve", "reach", "goal of", "to produce", "produce", "need to produce", "how to achieve",
        "meet target", "reach target", "plan for target",
    ), task="optimize"),
    IntentRule("EQUIPMENT_OPTIMIZATION", 1, (
        "best combination", "optimal combination", "recommend equipment", "equipment selection",
        "choose equipment", "select equipment", "should i pick", "should i take", "help me pick",
        "help me select", "help me choose", "i need to pick", "i need to select", "i need to choose",
        "optimal", "optimal equipment", "best equipment", "best setup", "optimal setup",
        "optimization", "optimisation", "optimize", "optimise", "optimize equipment",
    ), task="optimize"),
    IntentRule("FORECASTING", 1, (
        "forecast", "predict", "predict next", "forecast next", "future production", "next month",
        "next quarter", "next year", "expected production", "anticipated production",
        "forecast production", "predict production",
    ), task="optimize"),
    IntentRule("EQUIPMENT_COMBINATION", 1, (
        "combination", "combinations", "pairing", "match", "matches", "tipper and excavator",
        "excavator and tipper", "working together", "paired with", "worked with", "work with",
        "how many tippers", "how many excavators", "which tippers", "which tipper", "which excavators",
        "which excavator", "which equipment", "tippers contributed", "excavators contributed",
        "equipment combination", "equipment combinations",
    )),
    IntentRule("EQUIPMENT_SPECIFIC_PRODUCTION", 1, (
        "performance of", "data for tipper", "data for excavator", "data for equipment",
        "show for tipper", "show for excavator", "bb-", "ex-", "tip-", "doz-",
        "excavator ex-", "tipper bb-", "did ex-", "did bb-",
    ), templated=True),
    IntentRule("ROUTES_FACES_ANALYSIS", 1, (
        "route", "routes", "haul route", "haulage route", "most used route", "face", "faces",
        "mining face", "active face", "working face", "most used face", "pit face", "bench face",
        "route analysis", "face analysis", "route performance", "face performance",
        "route utilization", "face utilization", "which route", "which face", "top route", "top face",
    )),
    IntentRule("ADVISORY_QUERY", 1, (
        "how to", "how do", "how can", "how should", "best practice", "best practices", "guideline",
        "guidelines", "procedure", "procedures", "safety", "policy", "policies", "recommendation",
        "recommendations", "what are the best", "what is the best", "improve", "reduce",
        "standard operating procedure", "sop",
    ), task="rag"),
    IntentRule("CHART_VISUALIZATION", 1, (
        "chart", "graph", "plot", "visualize", "visualise", "line chart", "bar chart", "pie chart",
        "histogram", "trend", "visualization", "visualisation", "draw", "heatmap", "heat map",
        "scatter", "area chart",
    ), templated=True),
    IntentRule("COMPARISON_QUERY", 1, (
        "higher than", "lower than", "more than", "less than", "greater than", "better than",
        "worse than", "more productive", "less productive", "compare", "comparison", "versus", "vs",
        "compared to", "which is higher", "which is lower", "which is better", "which had higher",
        "which had lower", "which had more", "did", "better or", "worse or",
    ), templated=True),
    IntentRule("MONTH_COMPARISON", 1, (
        "which month", "what month", "which months", "what months", "month with the highest",
        "month with the lowest", "month with the most", "month with the best", "month with the worst",
        "month had the highest", "month had the lowest", "month had the most",
    )),
    IntentRule("ORDINAL_ROW_QUERY", 1, (
        "row", "nth row", "first row", "last row", "1st row", "2nd row", "3rd row", "select row",
        "row from", "row in", "top 5", "top 10", "top 3", "top n", "select top", "bottom 5",
        "bottom 10", "highest tonnage", "lowest tonnage", "highest production", "lowest production",
        "highest trips", "lowest trips", "top days", "bottom days", "which had the highest",
        "which had the lowest", "had the highest", "had the lowest", "the best tipper",
        "the best excavator", "the worst tipper", "the worst excavator",
    )),
    # Tier 2: moderately specific
    IntentRule("SHIFT_AGGREGATION", 2, (
        "by shift", "per shift", "each shift", "every shift", "shift wise", "shift-wise",
        "across shifts", "all shifts", "compare shifts", "shift comparison", "shift breakdown",
        "shift totals", "shift performance", "which shift", "best shift", "worst shift",
    )),
    IntentRule("MONTHLY_SUMMARY", 2, (
        "monthly", "month summary", "month report", "monthly report", "monthly breakdown",
        "month breakdown", "monthly overview", "month overview", "summary for the month",
        "report for the month", "yearly", "annual", "year report", "yearly summary",
        "annual summary", "summary",
    ), templated=True),
    # Tier 3: generic
    IntentRule("AGGREGATION_QUERY", 3, (
        "sum", "total", "count", "aggregate", "aggregation", "complete summary", "aggregate summary",
        "summary of", "overall", "entire", "distribution", "breakdown", "spread",
    ), templated=True),
    IntentRule("DATA_RETRIEVAL", 3, (
        "show", "list", "display", "find", "get", "fetch", "view", "see", "look up", "retrieve", "data",
    ), templated=True),
)

RULES: Dict[str, IntentRule] = {r.name: r for r in INTENTS}

# Dominant intent -> intents it removes when both matched
EXCLUSIONS: Tuple[Tuple[str, FrozenSet[str]], ...] = (
    ("STATISTICAL_QUERY", frozenset({"AGGREGATION_QUERY", "DATA_RETRIEVAL"})),
    ("MONTHLY_SUMMARY", frozenset({"AGGREGATION_QUERY"})),
    ("ROUTES_FACES_ANALYSIS", frozenset({"MONTHLY_SUMMARY"})),
    ("SHIFT_AGGREGATION", frozenset({"AGGREGATION_QUERY", "MONTHLY_SUMMARY"})),
    ("MONTH_COMPARISON", frozenset({"COMPARISON_QUERY", "MONTHLY_SUMMARY", "ORDINAL_ROW_QUERY"})),
    ("EQUIPMENT_SPECIFIC_PRODUCTION", frozenset({"EQUIPMENT_COMBINATION"})),
    ("FORECASTING", frozenset({"MONTHLY_SUMMARY"})),
)

_HIGHEST_LOWEST = re.compile(
    r"\b(?:highest|lowest|maximum|minimum|top\s+\d*\s*(?:tipper|excavator|equipment|day)s?"
    r"|had\s+the\s+(?:highest|lowest|most|least))\b"
)


@dataclass
class IntentMatch:
    intent: str
    tier: int
    score: float
    matched_keywords: List[str]

    def sort_key(self):
        return (-self.score, self.tier, -len(self.matched_keywords),
                -sum(len(k) for k in self.matched_keywords), self.intent)


@dataclass
class IntentResult:
    intent: str
    confidence: float
    matched_keywords: List[str]
    parameters: Dict[str, Any] = field(default_factory=dict)
    tier: Optional[int] = None
    candidates: List[IntentMatch] = field(default_factory=list)

    @property
    def task(self) -> str:
        rule = RULES.get(self.intent)
        return rule.task if rule else "sql"


def keyword_weight(keyword: str, phrase_multiplier: float = PHRASE_MULTIPLIER) -> float:
    if keyword in GENERIC_WORDS:
        return GENERIC_WEIGHT
    return phrase_multiplier if " " in keyword else 1.0


def _keyword_re(keyword: str) -> "re.Pattern[str]":
    # Substring match anchored at a word start, so plurals and suffixes still hit
    return re.compile(r"(?<![a-z0-9])" + re.escape(keyword))


_KEYWORD_RES: Dict[str, "re.Pattern[str]"] = {kw: _keyword_re(kw) for rule in INTENTS for kw in rule.keywords}


def score_intents(ql: str, phrase_multiplier: float = PHRASE_MULTIPLIER) -> List[IntentMatch]:
    matches: List[IntentMatch] = []
    for rule in INTENTS:
        hits = [kw for kw in rule.keywords if _KEYWORD_RES[kw].search(ql)]
        if hits:
            score = sum(keyword_weight(kw, phrase_multiplier) for kw in hits)
            matches.append(IntentMatch(rule.name, rule.tier, score, hits))
    return matches


def apply_exclusions(candidates: List[IntentMatch]) -> List[IntentMatch]:
    present = {c.intent for c in candidates}
    dropped = set()
    for dominant, losers in EXCLUSIONS:
        if dominant in present:
            dropped |= losers
    return [c for c in candidates if c.intent not in dropped]


def apply_context_rules(candidates: List[IntentMatch], ql: str, params: Dict[str, Any]) -> List[IntentMatch]:
    present = {c.intent for c in candidates}
    dropped = set()
    # A single day is not a monthly summary
    if "date" in params:
        dropped.add("MONTHLY_SUMMARY")
    if "ORDINAL_ROW_QUERY" in present and _HIGHEST_LOWEST.search(ql):
        dropped.add("EQUIPMENT_COMBINATION")
    return [c for c in candidates if c.intent not in dropped]


def filter_tiers(candidates: List[IntentMatch]) -> List[IntentMatch]:
    if any(c.tier == 1 for c in candidates):
        return [c for c in candidates if c.tier != 3]
    return candidates


def _confidence(best: IntentMatch, runner_up: Optional[IntentMatch]) -> float:
    conf = min(1.0, best.score / TIER_SATURATION[best.tier])
    if runner_up is not None and best.score > 0:
        ratio = runner_up.score / best.score
        if ratio > AMBIGUITY_RATIO:
            conf = min(conf * (0.6 + (1 - ratio) * 0.4), AMBIGUITY_CAP)
    return round(conf, 2)


def _infer_from_parameters(params: Dict[str, Any]) -> IntentResult:
    if params.get("equipment_ids"):
        return IntentResult("EQUIPMENT_SPECIFIC_PRODUCTION", 0.6, ["<equipment id>"], params, tier=1)
    if "parsed_date" in params or "shift" in params:
        return IntentResult("DATA_RETRIEVAL", 0.5, ["<date or shift>"], params, tier=3)
    return IntentResult(UNKNOWN, 0.0, [], params)


def classify_intent(text: Any, parameters: Optional[Dict[str, Any]] = None, today: Optional[date] = None,
                    phrase_multiplier: float = PHRASE_MULTIPLIER) -> IntentResult:
    """Score every intent against ``text`` and pick one deterministically.

    Exclusions run before tier filtering; ties are broken by score, tier,
    number of matched keywords, their total length and finally the name.
    """
    if not isinstance(text, str) or not text.strip():
        return IntentResult(UNKNOWN, 0.0, [], {})
    ql = " ".join(text.lower().split())
    params = parameters if parameters is not None else extract_parameters(text, today=today)

    candidates = score_intents(ql, phrase_multiplier)
    candidates = apply_exclusions(candidates)
    candidates = apply_context_rules(candidates, ql, params)
    candidates = filter_tiers(candidates)
    if not candidates:
        return _infer_from_parameters(params)

    candidates.sort(key=IntentMatch.sort_key)
    best = candidates[0]
    runner_up = candidates[1] if len(candidates) > 1 else None
    confidence = _confidence(best, runner_up)
    logger.debug("intent %s score=%.2f conf=%.2f keywords=%s", best.intent, best.score, confidence,
                 best.matched_keywords)
    return IntentResult(best.intent, confidence, list(best.matched_keywords), params, best.tier, candidates)
