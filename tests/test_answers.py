import pyarrow as pa

from minequery.utils.answers import make_concise_answer
from minequery.utils.caveats import build_caveats

sql_ctx = {'task': 'sql', 'intent': 'SHIFT_AGGREGATION'}


def test_grouped_answer():
    tbl = pa.table({'shift': ['A', 'B'], 'total_qty_ton': [3930.0, 3420.0], 'avg_qty_ton': [1310.0, 1140.0]})
    assert make_concise_answer(tbl, sql_ctx) == "Answer: total_qty_ton by shift - A: 3,930.00, B: 3,420.00"


def test_single_value():
    assert make_concise_answer(pa.table({'count_all': [13]}), sql_ctx) == "Answer: count_all = 13"


def test_ranked_row():
    tbl = pa.table({'tipper_id': ['BB-42'], 'total_trip_count': [95]})
    assert make_concise_answer(tbl, sql_ctx) == "Answer: top tipper_id = BB-42 (total_trip_count=95)"


def test_empty_and_error():
    assert make_concise_answer(pa.table({'x': pa.array([], pa.int64())}), sql_ctx) == "Answer: no matching rows."
    assert make_concise_answer(None, dict(sql_ctx, error='[1-a] LLM timed out')) == "Answer: [1-a] LLM timed out"


def test_non_sql_task():
    ans = make_concise_answer(None, {'task': 'rag', 'intent': 'ADVISORY_QUERY'})
    assert ans == "Answer: ADVISORY_QUERY is handled by the rag service; no SQL was run."


def test_caveats():
    decision = {'confidence': 0.4, 'route_source': 'llm', 'changes': ['Added aliases: count_all'],
                'warnings': ["Unknown table 'x'"], 'follow_up': {'is_follow_up': True, 'previous_question': 'q1'}}
    notes = build_caveats(pa.table({'count_all': [13]}), decision)
    assert any(n.startswith('Low intent confidence') for n in notes)
    assert 'Treated as a follow-up to: q1' in notes
    assert 'Added aliases: count_all' in notes
    assert "Warning: Unknown table 'x'" in notes
    assert build_caveats(None, {'confidence': 1.0}) == []
