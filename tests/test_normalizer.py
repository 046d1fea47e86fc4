from minequery.exec.normalizer import (
    extract_table_names,
    normalize_table_name,
    normalize_table_references,
    table_aliases,
    validate_table_references,
)

STATEMENTS = [
    "SELECT * FROM Production_Summary p WHERE p.shift = 'A'",
    "select * from trips t join production ps on t.trip_date = ps.date",
    "DELETE FROM sql cache WHERE id = 1",
    "SELECT EXTRACT(month FROM date) FROM production_summary",
    "SELECT shift, SUM(qty_ton) FROM production summary GROUP BY shift",
    "SELECT p.shift FROM production summary p",
    "SELECT t.shift FROM trip summary AS t JOIN production summary ps ON t.trip_date = ps.date",
    "SELECT * FROM mystery_table",
    "",
]


def test_table_names():
    assert normalize_table_name('Production Summary') == 'production_summary'
    assert normalize_table_name('trips') == 'trip_summary_by_date'
    assert normalize_table_name('Unknown Table') == 'unknown_table'


def test_implicit_alias_gets_as():
    out = normalize_table_references("SELECT * FROM Production_Summary p WHERE p.shift = 'A'")
    assert out == "SELECT * FROM production_summary AS p WHERE p.shift = 'A'"


def test_join_targets_rewritten():
    out = normalize_table_references("select * from trips t join production ps on t.trip_date = ps.date")
    assert out == "select * from trip_summary_by_date AS t join production_summary AS ps on t.trip_date = ps.date"


def test_two_word_table_name():
    assert normalize_table_references("DELETE FROM sql cache WHERE id = 1") == "DELETE FROM sql_cache WHERE id = 1"
    assert normalize_table_references("SELECT shift, SUM(qty_ton) FROM production summary GROUP BY shift") == \
        "SELECT shift, SUM(qty_ton) FROM production_summary GROUP BY shift"


def test_alias_after_two_word_table_name():
    assert normalize_table_references("SELECT p.shift FROM production summary p") == \
        "SELECT p.shift FROM production_summary AS p"
    sql = "SELECT t.shift FROM trip summary AS t JOIN production summary ps ON t.trip_date = ps.date"
    assert normalize_table_references(sql) == \
        "SELECT t.shift FROM trip_summary_by_date AS t JOIN production_summary AS ps ON t.trip_date = ps.date"
    assert table_aliases(sql) == {'t': 'trip_summary_by_date', 'ps': 'production_summary'}


def test_from_inside_extract_is_not_a_table():
    sql = "SELECT EXTRACT(month FROM date) FROM production_summary"
    assert normalize_table_references(sql) == sql
    assert extract_table_names(sql) == ['production_summary']


def test_idempotent():
    for sql in STATEMENTS:
        once = normalize_table_references(sql)
        assert normalize_table_references(once) == once, sql


def test_aliases_and_unknown_tables():
    sql = "select * from trips t join production ps on t.trip_date = ps.date"
    assert table_aliases(sql) == {'t': 'trip_summary_by_date', 'ps': 'production_summary'}
    assert validate_table_references("SELECT * FROM mystery_table") == ['mystery_table']
    assert validate_table_references(sql) == []
