from datetime import date

from minequery.planner.intents import (
    UNKNOWN,
    IntentMatch,
    _confidence,
    apply_exclusions,
    classify_intent,
    keyword_weight,
)

TODAY = date(2025, 3, 12)

QUESTIONS = [
    "Compare total and average production by shift for January 2025",
    "What is the median tonnage for January 2025",
    "show me the best tipper and excavator combinations",
    "which month had the highest production in 2024",
    "what are the best practices for haul road safety",
    "forecast production for next month",
    "help me pick the best combination to mine 1200 tons on bench 1",
]


def test_shift_aggregation_scenario():
    res = classify_intent("Compare total and average production by shift for January 2025", today=TODAY)
    assert res.intent == 'SHIFT_AGGREGATION'
    assert res.confidence == 0.6
    assert 'by shift' in res.matched_keywords
    assert res.task == 'sql'


def test_statistical_beats_aggregation():
    res = classify_intent("calculate the mean and total tonnage", today=TODAY)
    assert res.intent == 'STATISTICAL_QUERY'
    res = classify_intent("What is the median tonnage for January 2025", today=TODAY)
    assert res.intent == 'STATISTICAL_QUERY'


def test_tier_one_suppresses_tier_three():
    res = classify_intent("show me the best tipper and excavator combinations", today=TODAY)
    assert res.intent == 'EQUIPMENT_COMBINATION'
    assert all(c.tier != 3 for c in res.candidates)


def test_month_comparison_over_ordinal_ranking():
    res = classify_intent("which month had the highest production in 2024", today=TODAY)
    assert res.intent == 'MONTH_COMPARISON'
    assert res.parameters['month_ranking'] is True


def test_non_sql_tasks():
    res = classify_intent("what are the best practices for haul road safety", today=TODAY)
    assert res.intent == 'ADVISORY_QUERY'
    assert res.task == 'rag'
    res = classify_intent("forecast production for next month", today=TODAY)
    assert res.intent == 'FORECASTING'
    assert res.task == 'optimize'
    res = classify_intent("help me pick the best combination to mine 1200 tons on bench 1", today=TODAY)
    assert res.intent == 'EQUIPMENT_OPTIMIZATION'


def test_unknown():
    res = classify_intent("hello there", today=TODAY)
    assert res.intent == UNKNOWN
    assert res.confidence == 0.0
    assert classify_intent("", today=TODAY).intent == UNKNOWN
    assert classify_intent(None).intent == UNKNOWN


def test_distribution_is_an_aggregation():
    res = classify_intent("distribution of production by excavator", today=TODAY)
    assert res.intent == 'AGGREGATION_QUERY'
    assert res.matched_keywords == ['distribution']


def test_parameters_alone_infer_intent():
    res = classify_intent("2025-01-15 shift A", today=TODAY)
    assert res.intent == 'DATA_RETRIEVAL'
    assert res.confidence == 0.5


def test_keyword_weights():
    assert keyword_weight('by shift') == 3.0
    assert keyword_weight('median') == 1.0
    assert keyword_weight('show') == 0.5


def test_ambiguity_penalty():
    best = IntentMatch('A', 1, 4.0, ['a'])
    close = IntentMatch('B', 1, 3.5, ['b'])
    far = IntentMatch('C', 1, 1.0, ['c'])
    assert _confidence(best, None) == 1.0
    assert _confidence(best, far) == 1.0
    assert _confidence(best, close) == 0.65


def test_exclusions():
    cands = [
        IntentMatch('STATISTICAL_QUERY', 1, 1.0, ['mean']),
        IntentMatch('AGGREGATION_QUERY', 3, 1.0, ['total']),
        IntentMatch('DATA_RETRIEVAL', 3, 0.5, ['show']),
    ]
    assert [c.intent for c in apply_exclusions(cands)] == ['STATISTICAL_QUERY']


def test_deterministic():
    for q in QUESTIONS:
        first = classify_intent(q, today=TODAY)
        for _ in range(10):
            again = classify_intent(q, today=TODAY)
            assert (again.intent, again.confidence, again.matched_keywords) == \
                (first.intent, first.confidence, first.matched_keywords)
