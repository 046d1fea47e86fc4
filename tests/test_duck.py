import pytest

from minequery.exec.duck import DuckDBExecutor, ExecutionError
from minequery.utils.schema_cache import SchemaCache


def test_load_fixture_tables():
    ex = DuckDBExecutor()
    tables = ex.load_tables('tests/fixtures')
    assert set(tables) == {'production_summary', 'trip_summary_by_date'}
    tbl = ex.query("SELECT COUNT(*) AS n FROM production_summary")
    assert tbl.column('n').to_pylist() == [13]


def test_missing_data_dir():
    with pytest.raises(FileNotFoundError):
        DuckDBExecutor().load_tables('tests/does-not-exist')


def test_schema_discovery_overlays_static_descriptor():
    ex = DuckDBExecutor()
    ex.load_tables('tests/fixtures')
    cache = SchemaCache()
    schema = cache.get_or_load(ex)
    assert 'qty_ton' in schema.columns('production_summary')
    assert 'route_or_face' in schema.columns('trip_summary_by_date')
    # tables not on disk keep their static columns
    assert schema.columns('users') == ['id', 'email', 'created_at']
    assert cache.get_or_load(ex) is schema


def test_query_params():
    ex = DuckDBExecutor()
    tbl = ex.query("SELECT CAST(? AS INTEGER) + 1 AS x", [41])
    assert tbl.column('x').to_pylist() == [42]


def test_execution_error_message():
    err = ExecutionError("query failed", correlation_id='123-abc', sql='SELECT 1')
    assert str(err) == '[123-abc] query failed'
    assert err.sql == 'SELECT 1'
