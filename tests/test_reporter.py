import json

import pyarrow as pa

from minequery.report.reporter import Reporter


def test_save_artifacts(tmp_path):
    rep = Reporter(base_dir=str(tmp_path / 'runs'), failure_log=str(tmp_path / 'failures.log'), retention=5)
    results = pa.table({'shift': ['A', 'B'], 'total_qty_ton': [3930.0, 3420.0]})
    run_dir = rep.save_artifacts({'correlation_id': '1-abc', 'intent': 'SHIFT_AGGREGATION'},
                                 "SELECT 1", results, "summary", latency_sec=0.25)
    names = sorted(p.name for p in (tmp_path / 'runs').iterdir())
    assert len(names) == 1 and names[0].endswith('-1-abc')
    decision = json.loads(open(f"{run_dir}/decision.json").read())
    assert decision['intent'] == 'SHIFT_AGGREGATION'
    assert json.loads(open(f"{run_dir}/results.json").read())['shift'] == ['A', 'B']
    assert open(f"{run_dir}/summary.md").read().startswith('Latency: 0.25s')


def test_prune_runs(tmp_path):
    base = tmp_path / 'runs'
    for i in range(4):
        (base / f"20250101-00000{i}").mkdir(parents=True)
    rep = Reporter(base_dir=str(base), failure_log=str(tmp_path / 'f.log'), retention=2)
    rep._prune_runs()
    assert sorted(p.name for p in base.iterdir()) == ['20250101-000002', '20250101-000003']


def test_failure_log_is_jsonl(tmp_path):
    path = tmp_path / 'failures.log'
    rep = Reporter(base_dir=str(tmp_path / 'runs'), failure_log=str(path), retention=5)
    rep.log_failure('1-abc', 'hello there', 'UNKNOWN', 0.0)
    rep.log_failure('2-def', 'bad', 'SHIFT_AGGREGATION', 0.6, 'query failed')
    lines = [json.loads(line) for line in path.read_text().splitlines()]
    assert [rec['correlation_id'] for rec in lines] == ['1-abc', '2-def']
    assert lines[1]['error'] == 'query failed'
