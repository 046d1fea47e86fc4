import pytest

from minequery.exec.validator import (
    SchemaMismatchError,
    auto_fix,
    complete_aggregate_aliases,
    prepare_sql,
    qualify_ambiguous_columns,
    sanitize_sql,
    validate_schema,
)
from minequery.utils.schema_cache import SchemaColumnDictionary

schema = SchemaColumnDictionary.default()


def test_auto_fix_invented_column():
    sql = "SELECT total_tonnage FROM production_summary"
    res = validate_schema(sql, schema)
    assert res.invalid_columns == ['total_tonnage']
    assert res.corrections == {'total_tonnage': 'qty_ton'}
    fix = auto_fix(sql, res.corrections)
    assert fix.fixed
    assert fix.sql == "SELECT qty_ton FROM production_summary"
    assert fix.changes == ["Auto-fixed: 'total_tonnage' → 'qty_ton'"]


def test_auto_fix_in_where_clause():
    sql = "SELECT * FROM production_summary WHERE tonnage > 100"
    fix = auto_fix(sql, validate_schema(sql, schema).corrections)
    assert fix.sql == "SELECT * FROM production_summary WHERE qty_ton > 100"


@pytest.mark.parametrize('sql', [
    "SELECT tonnage AS t FROM production_summary",
    "SELECT shift, tonnage FROM production_summary GROUP BY shift, tonnage",
    "SELECT COALESCE(tonnage, 0) FROM production_summary",
    "SELECT p.tonnage FROM production_summary p JOIN trip_summary_by_date t ON p.date = t.trip_date",
])
def test_auto_fix_refuses_unsafe_statements(sql):
    fix = auto_fix(sql, {'tonnage': 'qty_ton'})
    assert fix.fixed is False
    assert fix.sql == sql
    assert fix.skipped_reason


def test_unsafe_context_raises():
    with pytest.raises(SchemaMismatchError) as exc:
        prepare_sql("SELECT SUM(tonnage) FROM production_summary", schema, correlation_id='cid-1')
    finding = exc.value.findings[0]
    assert finding.identifier == 'tonnage'
    assert finding.reason == 'unsafe_context'
    assert "'qty_ton'" in exc.value.user_message()
    assert str(exc.value).startswith('[cid-1]')


def test_unknown_column_is_reported_not_guessed():
    with pytest.raises(SchemaMismatchError) as exc:
        prepare_sql("SELECT foo FROM production_summary", schema)
    finding = exc.value.findings[0]
    assert finding.reason == 'no_correction'
    assert finding.suggestion is None
    assert 'Valid columns' in finding.message()


def test_tonnage_on_trip_table_has_no_equivalent():
    res = validate_schema("SELECT qty_ton FROM trip_summary_by_date", schema)
    assert res.findings[0].reason == 'no_equivalent'
    assert res.corrections == {}


def test_table_specific_correction():
    prepared = prepare_sql("SELECT date FROM trip_summary_by_date WHERE shift = 'A'", schema)
    assert prepared.sql == "SELECT trip_date FROM trip_summary_by_date WHERE shift = 'A'"
    assert prepared.changes == ["Auto-fixed: 'date' → 'trip_date'"]


def test_literals_are_not_columns():
    assert validate_schema("SELECT * FROM production_summary WHERE shift = 'tonnage'", schema).valid


def test_prepare_llm_output():
    raw = "```sql\nSELECT shift, SUM(qty_ton) FROM Production_Summary GROUP BY shift;\n```"
    prepared = prepare_sql(raw, schema)
    assert prepared.sql == "SELECT shift, SUM(qty_ton) AS total_qty_ton FROM production_summary GROUP BY shift"
    assert prepared.changes == ["Normalized table references", "Added aliases: total_qty_ton"]
    assert prepared.original == raw


def test_sanitize():
    assert sanitize_sql("SQL: SELECT 1;") == "SELECT 1"


def test_aggregate_aliases():
    sql = ("SELECT SUM(qty_ton), AVG(qty_ton), COUNT(DISTINCT date), COUNT(*), MAX(qty_m3), MIN(total_trips) "
           "FROM production_summary")
    out = complete_aggregate_aliases(sql)
    assert out.sql == (
        "SELECT SUM(qty_ton) AS total_qty_ton, AVG(qty_ton) AS avg_qty_ton, COUNT(DISTINCT date) AS unique_date, "
        "COUNT(*) AS count_all, MAX(qty_m3) AS max_qty_m3, MIN(total_trips) AS min_total_trips "
        "FROM production_summary"
    )
    assert out.added[0] == 'total_qty_ton'


def test_round_alias():
    out = complete_aggregate_aliases("SELECT ROUND(AVG(qty_ton), 2) FROM production_summary")
    assert out.sql == "SELECT ROUND(AVG(qty_ton), 2) AS avg_qty_ton_rounded FROM production_summary"


def test_aliases_left_alone():
    for sql in [
        "SELECT SUM(qty_ton) AS tons FROM production_summary",
        "SELECT date, SUM(qty_ton) OVER (ORDER BY date) FROM production_summary",
        "SELECT SUM(qty_ton) / COUNT(*) FROM production_summary",
    ]:
        assert complete_aggregate_aliases(sql).sql == sql


def test_duplicate_aliases_numbered():
    out = complete_aggregate_aliases("SELECT SUM(qty_ton), SUM(qty_ton) FROM production_summary")
    assert out.added == ['total_qty_ton', 'total_qty_ton_2']


def test_qualify_ambiguous_columns():
    sql = ("SELECT shift, SUM(p.qty_ton) FROM production_summary AS p JOIN trip_summary_by_date AS t "
           "ON p.date = t.trip_date AND p.shift = t.shift GROUP BY shift")
    assert qualify_ambiguous_columns(sql, schema) == (
        "SELECT p.shift, SUM(p.qty_ton) FROM production_summary AS p JOIN trip_summary_by_date AS t "
        "ON p.date = t.trip_date AND p.shift = t.shift GROUP BY p.shift"
    )


def test_single_table_not_qualified():
    sql = "SELECT shift FROM production_summary"
    assert qualify_ambiguous_columns(sql, schema) == sql
