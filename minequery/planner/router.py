from __future__ import annotations

import logging
import time
from concurrent.futures import ThreadPoolExecutor, TimeoutError as FutureTimeout
from dataclasses import dataclass, field, replace
from datetime import date
from typing import Any, Callable, Dict, List, Optional, Sequence

import duckdb

from minequery.exec.duck import ExecutionError
from minequery.exec.sql_builder import build_sql
from minequery.exec.validator import PreparedSql, SchemaMismatchError, prepare_sql
from minequery.planner.dates import ParsedDate
from minequery.planner.followup import (
    FollowUpContext,
    HistoryItem,
    detect_follow_up,
    extract_follow_up_constraints,
    merge_follow_up_parameters,
)
from minequery.planner.intents import RULES, UNKNOWN, classify_intent
from minequery.planner.openai_planner import generate_sql
from minequery.planner.params import extract_parameters
from minequery.planner.query_type import detect_query_type
from minequery.utils.context_cache import QuickContextCache
from minequery.utils.logging_setup import new_correlation_id
from minequery.utils.schema_cache import SchemaColumnDictionary
from minequery.utils.settings import Settings

logger = logging.getLogger(__name__)

LOW_CONFIDENCE = 0.6

# (question, intent, parameters, schema, query_type) -> SQL text or None
SqlGenerator = Callable[[str, str, Dict[str, Any], SchemaColumnDictionary, str], Optional[str]]


class RouterError(RuntimeError):
    """Unexpected internal fault while routing a question."""


@dataclass(frozen=True)
class RouterDecision:
    task: str  # 'sql' | 'rag' | 'optimize'
    confidence: float
    correlation_id: str
    route_source: str = "deterministic"  # 'deterministic' | 'llm'
    intent: Optional[str] = None
    parameters: Dict[str, Any] = field(default_factory=dict)
    sql: Optional[str] = None
    query_type: str = "generic"
    matched_keywords: List[str] = field(default_factory=list)
    follow_up: Optional[FollowUpContext] = None
    needs_llm: bool = False
    changes: List[str] = field(default_factory=list)
    warnings: List[str] = field(default_factory=list)
    error: Optional[str] = None
    latency_ms: float = 0.0

    @property
    def is_follow_up(self) -> bool:
        return bool(self.follow_up and self.follow_up.is_follow_up)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "task": self.task,
            "confidence": self.confidence,
            "correlation_id": self.correlation_id,
            "route_source": self.route_source,
            "intent": self.intent,
            "parameters": jsonable_parameters(self.parameters),
            "sql": self.sql,
            "query_type": self.query_type,
            "matched_keywords": list(self.matched_keywords),
            "follow_up": self.follow_up.to_dict() if self.follow_up else None,
            "needs_llm": self.needs_llm,
            "changes": list(self.changes),
            "warnings": list(self.warnings),
            "error": self.error,
            "latency_ms": self.latency_ms,
        }


def jsonable_parameters(params: Dict[str, Any]) -> Dict[str, Any]:
    out: Dict[str, Any] = {}
    for key, value in params.items():
        if isinstance(value, ParsedDate):
            out[key] = value.to_dict()
        elif isinstance(value, date):
            out[key] = value.isoformat()
        elif isinstance(value, FollowUpContext):
            out[key] = value.to_dict()
        else:
            out[key] = value
    return out


class QuestionRouter:
    """Turns a question (plus optional conversation history) into a RouterDecision.

    Follow-up detection runs first; otherwise the question is classified and
    its parameters extracted from scratch. Deterministic SQL synthesis is
    attempted for sql-task intents, and every statement, template-built or
    LLM-written, passes the SQL safety chain before it can be executed.
    """

    def __init__(self, schema: Optional[SchemaColumnDictionary] = None,
                 context_cache: Optional[QuickContextCache] = None,
                 sql_generator: Optional[SqlGenerator] = None,
                 settings: Optional[Settings] = None,
                 today: Optional[date] = None,
                 reporter=None) -> None:
        self.settings = settings or Settings.from_env()
        self.schema = schema or SchemaColumnDictionary.default()
        self.context_cache = context_cache
        self.today = today
        self.reporter = reporter
        self._custom_generator = sql_generator is not None
        self.sql_generator: SqlGenerator = sql_generator or self._openai_generator

    def _openai_generator(self, question: str, intent: str, parameters: Dict[str, Any],
                          schema: SchemaColumnDictionary, query_type: str) -> Optional[str]:
        return generate_sql(question, intent, parameters, schema, query_type=query_type,
                            model=self.settings.openai_model, timeout=self.settings.llm_timeout_sec,
                            api_key=self.settings.openai_api_key)

    def _history_for(self, history: Optional[Sequence[HistoryItem]], user_id: Optional[str]):
        if history:
            return history
        if user_id and self.context_cache is not None:
            ctx = self.context_cache.get(user_id)
            if ctx is not None:
                return [ctx.as_turn()]
        return history

    def prepare_sql(self, sql: str, correlation_id: Optional[str] = None) -> PreparedSql:
        return prepare_sql(sql, self.schema, correlation_id=correlation_id)

    def route(self, question: str, history: Optional[Sequence[HistoryItem]] = None,
              user_id: Optional[str] = None) -> RouterDecision:
        cid = new_correlation_id()
        started = time.perf_counter()
        try:
            decision = self._route(question, history, user_id, cid)
        except Exception as exc:
            logger.exception("routing failed")
            raise RouterError(f"[{cid}] routing failed: {exc}") from exc
        decision = replace(decision, latency_ms=round((time.perf_counter() - started) * 1000, 2))
        logger.info(
            "route_success intent=%s task=%s confidence=%.2f source=%s",
            decision.intent, decision.task, decision.confidence, decision.route_source,
            extra={"event": {
                "event": "route_success",
                "correlation_id": cid,
                "intent": decision.intent,
                "confidence": decision.confidence,
                "task": decision.task,
                "latency_ms": decision.latency_ms,
            }},
        )
        if self.reporter is not None and (decision.confidence < LOW_CONFIDENCE or decision.error):
            self.reporter.log_failure(cid, question, decision.intent, decision.confidence, decision.error)
        return decision

    def _route(self, question: str, history: Optional[Sequence[HistoryItem]], user_id: Optional[str],
               cid: str) -> RouterDecision:
        history = self._history_for(history, user_id)
        follow_up = detect_follow_up(question, history, threshold=self.settings.follow_up_threshold)
        params = extract_parameters(question, today=self.today)
        build_text = question if isinstance(question, str) else ""

        if follow_up.is_follow_up and follow_up.previous_intent not in (None, UNKNOWN):
            constraints = extract_follow_up_constraints(question)
            params = merge_follow_up_parameters(follow_up.previous_parameters, params, constraints)
            intent = follow_up.previous_intent
            confidence = follow_up.confidence
            matched: List[str] = []
            # Table and metric wording comes from the question being continued
            build_text = f"{follow_up.previous_question or ''} {build_text}".strip()
            logger.debug("follow-up (%s) inherits %s", follow_up.follow_up_type, intent)
        else:
            result = classify_intent(question, parameters=params, today=self.today)
            intent, confidence, matched = result.intent, result.confidence, result.matched_keywords

        rule = RULES.get(intent)
        task = rule.task if rule else "sql"
        query_type = detect_query_type(build_text)
        decision = RouterDecision(
            task=task,
            confidence=confidence,
            correlation_id=cid,
            intent=intent,
            parameters=params,
            query_type=query_type,
            matched_keywords=list(matched),
            follow_up=follow_up,
        )
        if task != "sql":
            return decision

        sql = build_sql(intent, params, build_text, query_type)
        if sql is None:
            return replace(decision, needs_llm=True, route_source="llm")
        try:
            prepared = self.prepare_sql(sql, cid)
        except SchemaMismatchError as exc:
            return replace(decision, needs_llm=True, route_source="llm", error=exc.user_message())
        return replace(decision, sql=prepared.sql, changes=prepared.changes, warnings=prepared.warnings)

    def resolve_with_llm(self, decision: RouterDecision, question: str) -> RouterDecision:
        """Ask the LLM collaborator for SQL when deterministic synthesis deferred.

        Timeouts and failures return the deterministic decision with ``error``
        set rather than raising.
        """
        if not decision.needs_llm:
            return decision
        cid = decision.correlation_id
        if not self._custom_generator and not self.settings.llm_enabled:
            return replace(decision, error=f"[{cid}] No deterministic template matched and OPENAI_API_KEY is not set")

        pool = ThreadPoolExecutor(max_workers=1)
        future = pool.submit(self.sql_generator, question, decision.intent or UNKNOWN, decision.parameters,
                             self.schema, decision.query_type)
        try:
            sql = future.result(timeout=self.settings.llm_timeout_sec)
        except FutureTimeout:
            logger.warning("LLM SQL generation timed out after %.1fs", self.settings.llm_timeout_sec)
            return replace(decision, error=f"[{cid}] LLM timed out")
        except Exception as exc:
            logger.warning("LLM SQL generation failed: %s", exc)
            return replace(decision, error=f"[{cid}] LLM failed: {exc}")
        finally:
            pool.shutdown(wait=False)
        if not sql:
            return replace(decision, error=f"[{cid}] LLM returned no SQL")

        try:
            prepared = self.prepare_sql(sql, cid)
        except SchemaMismatchError as exc:
            return replace(decision, error=exc.user_message())
        return replace(decision, sql=prepared.sql, route_source="llm", needs_llm=False, error=None,
                       changes=prepared.changes, warnings=prepared.warnings)

    def execute(self, decision: RouterDecision, executor):
        cid = decision.correlation_id
        if not decision.sql:
            raise ExecutionError("decision carries no SQL to execute", correlation_id=cid)
        try:
            return executor.query(decision.sql)
        except duckdb.InterruptException as exc:
            logger.error("query interrupted after timeout")
            raise ExecutionError("query timed out", correlation_id=cid, sql=decision.sql) from exc
        except Exception as exc:
            logger.error("query failed: %s", exc)
            raise ExecutionError(f"query failed: {exc}", correlation_id=cid, sql=decision.sql) from exc

    def remember(self, user_id: Optional[str], question: str, decision: RouterDecision,
                 answer: Optional[str] = None) -> None:
        if not user_id or self.context_cache is None:
            return
        params = {k: v for k, v in decision.parameters.items() if k != "is_follow_up"}
        self.context_cache.set(
            user_id,
            last_intent=decision.intent or UNKNOWN,
            last_question=question,
            last_answer=answer,
            last_parameters=params,
            route_taken=decision.route_source,
        )
