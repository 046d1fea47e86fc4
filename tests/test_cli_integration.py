import os, subprocess, sys

PYTHON = sys.executable
ROOT = os.path.dirname(os.path.dirname(os.path.abspath(__file__)))


def run_query(q: str, tmp_path):
    env = os.environ.copy()
    env.pop('OPENAI_API_KEY', None)
    env['FAILURE_LOG'] = str(tmp_path / 'failures.log')
    cmd = [PYTHON, '-m', 'minequery.cli.main', '--data-dir', 'tests/fixtures', '--no-save-run', '--query', q]
    proc = subprocess.run(cmd, capture_output=True, text=True, cwd=ROOT, env=env)
    return proc.returncode, proc.stdout + proc.stderr


def test_cli_shift_totals(tmp_path):
    code, out = run_query('Compare total and average production by shift for January 2025', tmp_path)
    assert code == 0
    assert 'Answer:' in out
    assert 'GROUP BY shift' in out


def test_cli_month_ranking(tmp_path):
    code, out = run_query('which month had the highest production in 2025', tmp_path)
    assert code == 0
    assert 'Answer:' in out


def test_cli_top_tippers(tmp_path):
    code, out = run_query('top 3 tippers by trips in January 2025', tmp_path)
    assert code == 0
    assert 'Answer: top tipper_id' in out


def test_cli_advisory_runs_no_sql(tmp_path):
    code, out = run_query('what are the best practices for haul road safety', tmp_path)
    assert code == 0
    assert 'no SQL was run' in out


def test_cli_missing_data_dir(tmp_path):
    env = os.environ.copy()
    cmd = [PYTHON, '-m', 'minequery.cli.main', '--data-dir', 'tests/nowhere', '--query', 'total tonnage']
    proc = subprocess.run(cmd, capture_output=True, text=True, cwd=ROOT, env=env)
    assert proc.returncode == 2
