from datetime import date

from minequery.exec.sql_builder import TEMPLATES, Filter, build_sql
from minequery.exec.validator import prepare_sql
from minequery.planner.params import extract_parameters

TODAY = date(2025, 3, 12)

SHIFT_Q = "Compare total and average production by shift for January 2025"
SHIFT_SQL = (
    "SELECT shift, SUM(qty_ton) AS total_qty_ton, AVG(qty_ton) AS avg_qty_ton, COUNT(DISTINCT date) AS unique_date "
    "FROM production_summary WHERE date BETWEEN '2025-01-01' AND '2025-01-31' GROUP BY shift ORDER BY shift"
)

CASES = [
    ('SHIFT_AGGREGATION', SHIFT_Q),
    ('STATISTICAL_QUERY', "What is the median tonnage for January 2025"),
    ('ORDINAL_ROW_QUERY', "top 5 tippers by trips in January 2025"),
    ('ORDINAL_ROW_QUERY', "show the 3rd row of production summary"),
    ('MONTH_COMPARISON', "which month had the highest production in 2024"),
    ('EQUIPMENT_COMBINATION', "which tippers worked with EX-189"),
]


def build(intent, q):
    return build_sql(intent, extract_parameters(q, today=TODAY), q)


def test_shift_grouping_scenario():
    sql = build('SHIFT_AGGREGATION', SHIFT_Q)
    assert sql == SHIFT_SQL
    assert 'GROUP BY date' not in sql


def test_statistical_median():
    sql = build('STATISTICAL_QUERY', "What is the median tonnage for January 2025")
    assert sql == (
        "SELECT PERCENTILE_CONT(0.5) WITHIN GROUP (ORDER BY qty_ton) AS median_qty_ton "
        "FROM production_summary WHERE date BETWEEN '2025-01-01' AND '2025-01-31'"
    )


def test_statistical_analysis_expands_to_all_measures():
    sql = build('STATISTICAL_QUERY', "statistical analysis of tonnage in 2024")
    for alias in ('avg_qty_ton', 'median_qty_ton', 'mode_qty_ton', 'stddev_qty_ton'):
        assert alias in sql


def test_top_n_tippers():
    assert build('ORDINAL_ROW_QUERY', "top 5 tippers by trips in January 2025") == (
        "SELECT tipper_id, SUM(trip_count) AS total_trip_count FROM trip_summary_by_date "
        "WHERE trip_date BETWEEN '2025-01-01' AND '2025-01-31' GROUP BY tipper_id "
        "ORDER BY total_trip_count DESC LIMIT 5"
    )


def test_nth_row():
    assert build('ORDINAL_ROW_QUERY', "show the 3rd row of production summary") == \
        "SELECT * FROM production_summary ORDER BY date, id LIMIT 1 OFFSET 2"


def test_month_ranking():
    assert build('MONTH_COMPARISON', "which month had the highest production in 2024") == (
        "SELECT DATE_TRUNC('month', date) AS month_start, SUM(qty_ton) AS total_qty_ton FROM production_summary "
        "WHERE date BETWEEN '2024-01-01' AND '2024-12-31' GROUP BY month_start "
        "ORDER BY total_qty_ton DESC LIMIT 1"
    )


def test_equipment_combination_without_limit():
    assert build('EQUIPMENT_COMBINATION', "which tippers worked with EX-189") == (
        "SELECT tipper_id, excavator, SUM(trip_count) AS total_trip_count, "
        "COUNT(DISTINCT trip_date) AS unique_trip_date FROM trip_summary_by_date WHERE excavator = 'EX-189' "
        "GROUP BY tipper_id, excavator ORDER BY total_trip_count DESC"
    )


def test_no_template_is_none():
    assert build('UNKNOWN', "hello there") is None
    assert build('ADVISORY_QUERY', "how to improve safety") is None
    assert build('FORECASTING', "forecast production for next month") is None
    # nothing to filter on
    assert build('DATA_RETRIEVAL', "show data") is None


def test_distribution_reached_through_aggregation_intent():
    sql = build('AGGREGATION_QUERY', "distribution of production by excavator")
    assert sql.startswith("SELECT excavator, SUM(qty_ton) AS total_qty_ton, AVG(qty_ton) AS avg_qty_ton")
    assert sql.endswith("FROM production_summary GROUP BY excavator ORDER BY excavator")


def test_template_drops_unresolved_optional_clauses():
    summary = TEMPLATES['summary']
    assert summary.render(aggregates='SUM(qty_ton)', table='production_summary', where='') == \
        "SELECT SUM(qty_ton) FROM production_summary"
    assert summary.render(aggregates='', table='production_summary') is None


def test_filter_quoting():
    assert Filter('shift', 'IN', ['A', 'B']).to_sql() == "shift IN ('A', 'B')"
    assert Filter('remarks', '=', "O'Brien").to_sql() == "remarks = 'O''Brien'"
    assert Filter('qty_ton', '>', 100).to_sql() == "qty_ton > 100"


def test_built_sql_passes_safety_chain_unchanged():
    for intent, q in CASES:
        sql = build(intent, q)
        assert sql is not None, q
        prepared = prepare_sql(sql)
        assert prepared.sql == sql, q
        assert prepared.changes == []
