from datetime import date

from minequery.planner.params import extract_parameters

TODAY = date(2025, 3, 12)

CORPUS = [
    "Compare total and average production by shift for January 2025",
    "Show trips for EX-189 and bb-42 and EX189",
    "production for shift A and shift B",
    "days with more than 1,200.5 tons",
    "production between 100 and 200 tons",
    "production between 2023 and 2024",
    "top 5 tippers by trips in January 2025",
    "show the 3rd row of production summary",
    "which month had the highest production in 2024",
    "last 7 days trips on route R1",
    "help me pick the best combination to mine 1200 tons on bench 1",
    "production in January, February and March 2024",
    "and what if only 8 pairs?",
    "hello there",
]


def test_equipment_ids_normalized_and_deduplicated():
    p = extract_parameters("Show trips for EX-189 and bb-42 and EX189", today=TODAY)
    assert p['equipment_ids'] == ['EX-189', 'BB-42']


def test_multiple_shifts_become_a_list():
    p = extract_parameters("production for shift A and shift B", today=TODAY)
    assert p['shift'] == ['A', 'B']
    assert p['shift_count'] == 2
    assert extract_parameters("shift 2 production", today=TODAY)['shift'] == 'B'


def test_numeric_filters():
    p = extract_parameters("days with more than 1,200.5 tons", today=TODAY)
    assert p['numeric_filter'] == {'operator': '>', 'value': 1200.5}
    p = extract_parameters("at least 500 trips", today=TODAY)
    assert p['numeric_filter'] == {'operator': '>=', 'value': 500}
    p = extract_parameters("production between 100 and 200 tons", today=TODAY)
    assert p['numeric_filter'] == {'operator': 'between', 'min': 100, 'max': 200}


def test_comparison_operand_is_not_a_year():
    p = extract_parameters("show days with production over 2000", today=TODAY)
    assert p['numeric_filter'] == {'operator': '>', 'value': 2000}
    assert 'parsed_date' not in p
    assert 'date_start' not in p and 'year' not in p


def test_year_pair_is_not_a_numeric_filter():
    p = extract_parameters("production between 2023 and 2024", today=TODAY)
    assert 'numeric_filter' not in p
    assert p['date_start'] == '2023-01-01'
    assert p['date_end'] == '2024-12-31'


def test_measurement_unit():
    p = extract_parameters("we need 500 tonnes", today=TODAY)
    assert p['measurement'] == {'value': 500, 'unit': 'ton'}


def test_rank_and_row():
    p = extract_parameters("top 5 tippers by trips in January 2025", today=TODAY)
    assert p['n'] == 5 and p['rank_type'] == 'top'
    assert extract_parameters("show the 3rd row", today=TODAY)['row_number'] == 3
    assert extract_parameters("show the last row", today=TODAY)['row_position'] == 'last'


def test_explicit_day_refines_year():
    p = extract_parameters("production on 2024-03-05 in 2024", today=TODAY)
    assert p['date'] == '2024-03-05'
    assert p['parsed_date'].kind == 'single'


def test_month_expands_to_range():
    p = extract_parameters("Compare total and average production by shift for January 2025", today=TODAY)
    assert (p['date_start'], p['date_end']) == ('2025-01-01', '2025-01-31')
    assert p['month'] == 1 and p['year'] == 2025
    assert p['group_by_shift'] is True


def test_multi_month():
    p = extract_parameters("production in January, February and March 2024", today=TODAY)
    assert p['months'] == [1, 2, 3]
    assert p['is_multi_month'] is True


def test_follow_up_text_has_no_parameters():
    assert extract_parameters("and what if only 8 pairs?", today=TODAY) == {}


def test_bad_input_is_empty():
    assert extract_parameters(None) == {}
    assert extract_parameters("   ") == {}


def test_short_circuit_matches_full_battery():
    for q in CORPUS:
        assert extract_parameters(q, today=TODAY, short_circuit=True) == \
            extract_parameters(q, today=TODAY, short_circuit=False), q


def test_deterministic():
    for q in CORPUS:
        first = extract_parameters(q, today=TODAY)
        for _ in range(10):
            assert extract_parameters(q, today=TODAY) == first
