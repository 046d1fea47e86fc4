import argparse
import sys
import time as _time
from typing import Optional

import pyarrow as pa
from rich.console import Console
from rich.panel import Panel
from rich.prompt import Prompt
from rich.table import Table

from minequery.exec.duck import DuckDBConfig, DuckDBExecutor, ExecutionError
from minequery.planner.router import QuestionRouter, RouterDecision, RouterError
from minequery.report.reporter import Reporter
from minequery.utils.answers import make_concise_answer
from minequery.utils.caveats import build_caveats
from minequery.utils.context_cache import QuickContextCache
from minequery.utils.logging_setup import setup_logging
from minequery.utils.schema_cache import SchemaCache
from minequery.utils.settings import Settings


def _render_result(console: Console, title: str, result) -> None:
    if isinstance(result, pa.Table):
        table = Table(title=title)
        for name in result.column_names:
            table.add_column(name)
        for row in result.slice(0, 20).to_pylist():
            table.add_row(*[str(v) for v in row.values()])
        console.print(table)
        return
    console.print(str(result))


def _render_decision(console: Console, decision: RouterDecision) -> None:
    lines = [
        f"intent: {decision.intent} (confidence {decision.confidence:.2f})",
        f"task: {decision.task}  source: {decision.route_source}  type: {decision.query_type}",
    ]
    if decision.is_follow_up:
        lines.append(f"follow-up ({decision.follow_up.follow_up_type}) of: {decision.follow_up.previous_question}")
    if decision.matched_keywords:
        lines.append("keywords: " + ", ".join(decision.matched_keywords))
    console.print(Panel.fit("\n".join(lines), title=decision.correlation_id))


def _summary(question: str, decision: RouterDecision, answer: str, caveats) -> str:
    text = f"Question: {question}\n\n{answer}\n\nIntent: {decision.intent} ({decision.confidence:.2f})\n"
    if caveats:
        text += "\nNotes:\n" + "\n".join(f"- {c}" for c in caveats) + "\n"
    return text


def main(argv=None):
    argv = argv if argv is not None else sys.argv[1:]
    settings = Settings.from_env()
    parser = argparse.ArgumentParser(prog="minequery", description="Mining operations question router")
    parser.add_argument("--data-dir", dest="data_dir", default=settings.data_dir,
                        help="Directory of CSV/Parquet table files (defaults to ./data)")
    parser.add_argument("--query", dest="query", default=None, help="Run a single question non-interactively and exit")
    parser.add_argument("--user", dest="user", default="cli", help="User id for follow-up context")
    parser.add_argument("--model", dest="model", default=settings.openai_model)
    parser.add_argument("--timeout-sec", dest="timeout_sec", type=float, default=settings.query_timeout_sec)
    parser.add_argument("--save-run", dest="save_run", action="store_true", default=True)
    parser.add_argument("--no-save-run", dest="save_run", action="store_false")
    parser.add_argument("--show-sql", dest="show_sql", action="store_true", default=True)
    parser.add_argument("--hide-sql", dest="show_sql", action="store_false")
    args = parser.parse_args(argv)
    settings.openai_model = args.model

    console = Console()
    setup_logging(settings.log_level, json_logs=settings.log_json, log_file=settings.log_file,
                  console=Console(stderr=True))

    executor = DuckDBExecutor(DuckDBConfig(timeout_sec=args.timeout_sec))
    try:
        tables = executor.load_tables(args.data_dir)
    except FileNotFoundError as e:
        console.print(Panel.fit(str(e)))
        return 2
    console.print(Panel.fit(f"Loaded tables: {', '.join(sorted(tables)) or '(none)'} from {args.data_dir}"))

    schema = SchemaCache().get_or_load(executor)
    reporter = Reporter(settings.runs_dir, failure_log=settings.failure_log, retention=settings.runs_retention)
    router = QuestionRouter(
        schema=schema,
        context_cache=QuickContextCache(ttl_sec=settings.context_ttl_sec),
        settings=settings,
        reporter=reporter,
    )

    def run_once(question: str) -> int:
        t0 = _time.time()
        try:
            decision = router.route(question, user_id=args.user)
        except RouterError as e:
            console.print(Panel.fit(str(e), title="Error"))
            return 1
        if decision.needs_llm:
            decision = router.resolve_with_llm(decision, question)
        _render_decision(console, decision)

        result: Optional[pa.Table] = None
        code = 0
        if decision.task == "sql" and decision.sql:
            if args.show_sql:
                console.print(Panel.fit("Executed SQL:"))
                console.print(decision.sql, soft_wrap=True, markup=False)
            try:
                result = router.execute(decision, executor)
            except ExecutionError as e:
                console.print(Panel.fit(str(e), title="Error"))
                reporter.log_failure(decision.correlation_id, question, decision.intent, decision.confidence, str(e))
                return 1
        elif decision.task == "sql":
            code = 1
        latency = _time.time() - t0

        context = decision.to_dict()
        answer = make_concise_answer(result, context)
        console.print(answer, soft_wrap=True, markup=False)
        if result is not None:
            _render_result(console, decision.intent or "result", result)
        router.remember(args.user, question, decision, answer)

        if args.save_run:
            caveats = build_caveats(result, context)
            run_dir = reporter.save_artifacts(context, decision.sql, result, _summary(question, decision, answer, caveats),
                                              latency_sec=latency)
            console.print(Panel.fit(f"Artifacts saved to {run_dir} (Latency: {latency:.2f}s)"))
        return code

    # Non-interactive
    if args.query:
        return run_once(args.query)

    # Interactive loop
    while True:
        q = Prompt.ask("Ask a question (:exit to quit)")
        if q.strip().lower() in {":exit", ":quit", "exit", "quit"}:
            break
        if q.strip():
            run_once(q)
    return 0


if __name__ == "__main__":
    sys.exit(main())
