import json
import logging

from minequery.planner.openai_planner import extract_sql, generate_sql
from minequery.utils.logging_setup import CorrelationFilter, JsonFormatter, get_corr_id, new_correlation_id
from minequery.utils.schema_cache import SchemaColumnDictionary
from minequery.utils.settings import Settings


def test_defaults():
    s = Settings.from_env({})
    assert s.openai_model == 'gpt-4o-mini'
    assert s.context_ttl_sec == 300.0
    assert s.follow_up_threshold == 0.5
    assert not s.llm_enabled


def test_from_env():
    s = Settings.from_env({
        'OPENAI_API_KEY': 'sk-test',
        'LLM_TIMEOUT_SEC': '5',
        'CONTEXT_TTL_SEC': 'soon',
        'LOG_JSON': 'true',
        'RUNS_RETENTION': '7',
    })
    assert s.llm_enabled
    assert s.llm_timeout_sec == 5.0
    assert s.context_ttl_sec == 300.0  # unparseable falls back
    assert s.log_json is True
    assert s.runs_retention == 7


def test_correlation_id_bound_to_context():
    cid = new_correlation_id()
    assert get_corr_id() == cid
    record = logging.LogRecord('minequery', logging.INFO, __file__, 1, 'route_success', None, None)
    record.event = {'event': 'route_success', 'intent': 'SHIFT_AGGREGATION'}
    CorrelationFilter().filter(record)
    assert record.corr_id == cid
    out = json.loads(JsonFormatter().format(record))
    assert out['corr_id'] == cid
    assert out['intent'] == 'SHIFT_AGGREGATION'


def test_extract_sql_from_replies():
    assert extract_sql('{"sql": "SELECT 1"}') == 'SELECT 1'
    assert extract_sql("```sql\nSELECT 2\n```") == 'SELECT 2'
    assert extract_sql("SELECT 3") == 'SELECT 3'
    assert extract_sql("I cannot answer that") is None


def test_generate_sql_without_key_is_none(monkeypatch):
    monkeypatch.delenv('OPENAI_API_KEY', raising=False)
    assert generate_sql("total tonnage", 'AGGREGATION_QUERY', {}, SchemaColumnDictionary.default()) is None
