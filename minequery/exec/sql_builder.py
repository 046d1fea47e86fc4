from __future__ import annotations

import logging
import re
import string
from dataclasses import dataclass
from datetime import date
from typing import Any, Callable, Dict, List, Optional, Tuple

from minequery.exec.validator import aggregate_alias, complete_aggregate_aliases
from minequery.planner.intents import RULES, UNKNOWN
from minequery.planner.query_type import GENERIC, detect_query_type

logger = logging.getLogger(__name__)

PRODUCTION = "production_summary"
TRIPS = "trip_summary_by_date"

DATE_COLUMN = {PRODUCTION: "date", TRIPS: "trip_date"}
DEFAULT_DETAIL_LIMIT = 100
DEFAULT_TOP_N = 5

_FORMATTER = string.Formatter()


def quote_literal(value: Any) -> str:
    if isinstance(value, bool):
        return "TRUE" if value else "FALSE"
    if isinstance(value, (int, float)):
        return str(value)
    if isinstance(value, date):
        value = value.isoformat()
    return "'" + str(value).replace("'", "''") + "'"


@dataclass
class Filter:
    column: str
    op: str  # '=', '!=', '>', '>=', '<', '<=', 'IN', 'NOT IN', 'BETWEEN'
    value: Any

    def to_sql(self) -> str:
        op = self.op.upper()
        if op in ("IN", "NOT IN"):
            values = self.value if isinstance(self.value, (list, tuple)) else [self.value]
            return f"{self.column} {op} ({', '.join(quote_literal(v) for v in values)})"
        if op == "BETWEEN":
            lo, hi = self.value
            return f"{self.column} BETWEEN {quote_literal(lo)} AND {quote_literal(hi)}"
        return f"{self.column} {op} {quote_literal(self.value)}"


@dataclass(frozen=True)
class SqlTemplate:
    """Clause fragments with named placeholders.

    A fragment whose placeholders are unresolved is dropped; an unresolved
    required fragment means the template cannot be built at all.
    """

    name: str
    clauses: Tuple[str, ...]
    required: Tuple[int, ...] = (0, 1)

    def placeholders(self, clause: str) -> List[str]:
        return [f for _, f, _, _ in _FORMATTER.parse(clause) if f]

    def render(self, **values: Any) -> Optional[str]:
        parts: List[str] = []
        for i, clause in enumerate(self.clauses):
            names = self.placeholders(clause)
            if any(values.get(n) in (None, "", [], ()) for n in names):
                if i in self.required:
                    logger.debug("template %s: unresolved %s", self.name, names)
                    return None
                continue
            parts.append(clause.format(**{n: values[n] for n in names}))
        return " ".join(parts)


TEMPLATES: Dict[str, SqlTemplate] = {
    "select": SqlTemplate("select", (
        "SELECT {select}", "FROM {table}", "WHERE {where}", "GROUP BY {group_by}", "ORDER BY {order_by}",
        "LIMIT {limit}", "OFFSET {offset}",
    )),
    "shift_grouping": SqlTemplate("shift_grouping", (
        "SELECT shift, SUM({metric}), AVG({metric}), COUNT(DISTINCT {date_col})", "FROM {table}",
        "WHERE {where}", "GROUP BY shift", "ORDER BY shift",
    )),
    "time_series": SqlTemplate("time_series", (
        "SELECT {bucket_expr}, SUM({metric})", "FROM {table}", "WHERE {where}", "GROUP BY {bucket}",
        "ORDER BY {bucket}",
    )),
    "distribution": SqlTemplate("distribution", (
        "SELECT {dimension}, SUM({metric}), AVG({metric}), MIN({metric}), MAX({metric}), COUNT(*)",
        "FROM {table}", "WHERE {where}", "GROUP BY {dimension}", "ORDER BY {order_by}",
    )),
    "equipment_combo": SqlTemplate("equipment_combo", (
        "SELECT tipper_id, excavator, SUM(trip_count), COUNT(DISTINCT trip_date)", "FROM trip_summary_by_date",
        "WHERE {where}", "GROUP BY tipper_id, excavator", "ORDER BY {order_by}", "LIMIT {limit}",
    ), required=(0,)),
    "grouped_ranking": SqlTemplate("grouped_ranking", (
        "SELECT {dimension}, SUM({metric})", "FROM {table}", "WHERE {where}", "GROUP BY {dimension}",
        "ORDER BY {order_by}", "LIMIT {limit}",
    )),
    "summary": SqlTemplate("summary", (
        "SELECT {aggregates}", "FROM {table}", "WHERE {where}",
    )),
    "detail": SqlTemplate("detail", (
        "SELECT {columns}", "FROM {table}", "WHERE {where}", "ORDER BY {order_by}", "LIMIT {limit}",
    )),
}


# --- parameter resolution ----------------------------------------------------

_DIMENSION_RE = re.compile(
    r"\b(?:by|per|each|for\s+each|across|between)\s+(shift|excavator|tipper|dumper|route|face|day|date|week|month)s?\b"
)


def resolve_table(ql: str, params: Dict[str, Any], intent: str = "") -> str:
    if intent in ("EQUIPMENT_COMBINATION", "ROUTES_FACES_ANALYSIS"):
        return TRIPS
    if re.search(r"\btippers?\b|\broutes?\b|\bfaces?\b|\btrip[_ ]summary\b", ql):
        return TRIPS
    if params.get("route_or_face"):
        return TRIPS
    return PRODUCTION


def resolve_metric(ql: str, table: str) -> str:
    if table == TRIPS:
        return "trip_count"
    if re.search(r"\bm3\b|\bvolume\b|\bcubic\b", ql):
        return "qty_m3"
    if re.search(r"\breclaim", ql):
        return "trip_count_for_reclaim"
    if re.search(r"\btrips?\b", ql) and not re.search(r"\b(?:tons?|tonnes?|tonnage|production)\b", ql):
        return "total_trips"
    return "qty_ton"


def equipment_column(equipment_id: str, table: str) -> str:
    if equipment_id.upper().startswith("EX"):
        return "excavator"
    return "tipper_id" if table == TRIPS else "dumper"


def resolve_dimension(ql: str, table: str) -> Optional[str]:
    m = _DIMENSION_RE.search(ql)
    if not m:
        return None
    word = m.group(1)
    if word == "shift":
        return "shift"
    if word == "excavator":
        return "excavator"
    if word in ("tipper", "dumper"):
        return "tipper_id" if table == TRIPS else "dumper"
    if word in ("route", "face"):
        return "route_or_face" if table == TRIPS else None
    if word in ("day", "date"):
        return DATE_COLUMN[table]
    return None


def build_filters(params: Dict[str, Any], table: str, *, dates: bool = True, shifts: bool = True,
                  equipment: bool = True) -> List[Filter]:
    filters: List[Filter] = []
    date_col = DATE_COLUMN[table]
    if dates:
        if params.get("date"):
            filters.append(Filter(date_col, "=", params["date"]))
        elif params.get("date_start") and params.get("date_end"):
            filters.append(Filter(date_col, "BETWEEN", (params["date_start"], params["date_end"])))
    if shifts and params.get("shift"):
        shift = params["shift"]
        if isinstance(shift, list):
            filters.append(Filter("shift", "IN", shift))
        else:
            filters.append(Filter("shift", "=", shift))
    if equipment and params.get("equipment_ids"):
        by_column: Dict[str, List[str]] = {}
        for eid in params["equipment_ids"]:
            by_column.setdefault(equipment_column(eid, table), []).append(eid)
        for column, ids in by_column.items():
            filters.append(Filter(column, "IN", ids) if len(ids) > 1 else Filter(column, "=", ids[0]))
    if table == TRIPS and params.get("route_or_face"):
        filters.append(Filter("route_or_face", "=", params["route_or_face"]))
    return filters


def where_clause(filters: List[Filter]) -> str:
    return " AND ".join(f.to_sql() for f in filters)


def _descending(ql: str) -> bool:
    return not re.search(r"\b(?:bottom|lowest|least|worst|minimum|fewest|smallest)\b", ql)


def _wants_single(ql: str) -> bool:
    return bool(re.search(r"\b(?:highest|lowest|most|least|best|worst|maximum|minimum|peak)\b", ql))


# --- builders ------------------------------------------------------------------
# Each builder takes (ql, params, intent) and returns SQL text or None.

STAT_MEASURES: Tuple[Tuple[str, "re.Pattern[str]", str], ...] = (
    ("mean", re.compile(r"\b(?:mean|average|avg)\b"), "AVG({m})"),
    ("median", re.compile(r"\bmedian\b"), "PERCENTILE_CONT(0.5) WITHIN GROUP (ORDER BY {m}) AS median_{m}"),
    ("mode", re.compile(r"\bmode\b"), "MODE() WITHIN GROUP (ORDER BY {m}) AS mode_{m}"),
    ("stddev", re.compile(r"\b(?:standard\s+deviation|std\s*dev|stddev|deviation)\b"), "STDDEV_POP({m}) AS stddev_{m}"),
)


def build_statistical(ql: str, params: Dict[str, Any], intent: str) -> Optional[str]:
    table = resolve_table(ql, params, intent)
    metric = resolve_metric(ql, table)
    wanted = [expr for _, rx, expr in STAT_MEASURES if rx.search(ql)]
    if not wanted or re.search(r"\bstatistical\s+(?:analysis|measures?|summary)\b", ql):
        wanted = [expr for _, _, expr in STAT_MEASURES]
    select = [expr.format(m=metric) for expr in wanted]
    values: Dict[str, Any] = {"table": table, "where": where_clause(build_filters(params, table))}
    if params.get("month_ranking") or params.get("group_by_month"):
        date_col = DATE_COLUMN[table]
        values["select"] = ", ".join([f"DATE_TRUNC('month', {date_col}) AS month_start"] + select)
        values["group_by"] = "month_start"
        first = wanted[0].format(m=metric)
        order = aggregate_alias("avg", metric) if first.startswith("AVG(") else first.rsplit(" AS ", 1)[-1]
        if params.get("month_ranking"):
            values["order_by"] = f"{order} {'DESC' if _descending(ql) else 'ASC'}"
            values["limit"] = 1 if _wants_single(ql) else None
        else:
            values["order_by"] = "month_start"
    else:
        values["select"] = ", ".join(select)
    return TEMPLATES["select"].render(**values)


def build_ranking(ql: str, params: Dict[str, Any], intent: str) -> Optional[str]:
    table = resolve_table(ql, params, intent)
    date_col = DATE_COLUMN[table]
    filters = build_filters(params, table)

    # Nth row of a table
    if params.get("row_number") or params.get("row_position"):
        values: Dict[str, Any] = {"select": "*", "table": table, "where": where_clause(filters), "limit": 1}
        if params.get("row_position") == "last":
            values["order_by"] = f"{date_col} DESC, id DESC"
        else:
            values["order_by"] = f"{date_col}, id"
            values["offset"] = params["row_number"] - 1 or None
        return TEMPLATES["select"].render(**values)

    metric = resolve_metric(ql, table)
    if re.search(r"\btippers?\b", ql):
        dimension = "tipper_id" if table == TRIPS else "dumper"
    elif re.search(r"\bexcavators?\b", ql):
        dimension = "excavator"
    elif re.search(r"\bshifts?\b", ql) and not params.get("shift"):
        dimension = "shift"
    else:
        dimension = date_col
    n = params.get("n") or (1 if _wants_single(ql) else DEFAULT_TOP_N)
    direction = "DESC" if params.get("rank_type") != "bottom" and _descending(ql) else "ASC"
    return TEMPLATES["grouped_ranking"].render(
        dimension=dimension,
        metric=metric,
        table=table,
        where=where_clause(filters),
        order_by=f"{aggregate_alias('sum', metric)} {direction}",
        limit=n,
    )


def build_shift_grouping(ql: str, params: Dict[str, Any], intent: str) -> Optional[str]:
    table = resolve_table(ql, params, intent)
    return TEMPLATES["shift_grouping"].render(
        metric=resolve_metric(ql, table),
        date_col=DATE_COLUMN[table],
        table=table,
        where=where_clause(build_filters(params, table)),
    )


def build_equipment_combination(ql: str, params: Dict[str, Any], intent: str) -> Optional[str]:
    filters = build_filters(params, TRIPS)
    where = where_clause(filters)
    if re.search(r"\bhow\s+many\s+tippers?\b", ql):
        return TEMPLATES["select"].render(select="COUNT(DISTINCT tipper_id)", table=TRIPS, where=where)
    if re.search(r"\bhow\s+many\s+excavators?\b", ql):
        return TEMPLATES["select"].render(select="COUNT(DISTINCT excavator)", table=TRIPS, where=where)
    return TEMPLATES["equipment_combo"].render(
        where=where,
        order_by=f"{aggregate_alias('sum', 'trip_count')} DESC",
        limit=params.get("n"),
    )


def build_month_ranking(ql: str, params: Dict[str, Any], intent: str) -> Optional[str]:
    table = resolve_table(ql, params, intent)
    metric = resolve_metric(ql, table)
    date_col = DATE_COLUMN[table]
    # "which month in 2024" ranks all of that year's months
    filters = build_filters(params, table, dates=False)
    if params.get("date_start") and params.get("date_end"):
        filters.insert(0, Filter(date_col, "BETWEEN", (params["date_start"], params["date_end"])))
    direction = "DESC" if _descending(ql) else "ASC"
    return TEMPLATES["select"].render(
        select=f"DATE_TRUNC('month', {date_col}) AS month_start, SUM({metric})",
        table=table,
        where=where_clause(filters),
        group_by="month_start",
        order_by=f"{aggregate_alias('sum', metric)} {direction}",
        limit=1 if _wants_single(ql) else None,
    )


def build_routes_faces(ql: str, params: Dict[str, Any], intent: str) -> Optional[str]:
    return TEMPLATES["select"].render(
        select="route_or_face, SUM(trip_count), COUNT(DISTINCT tipper_id)",
        table=TRIPS,
        where=where_clause(build_filters(params, TRIPS)),
        group_by="route_or_face",
        order_by=f"{aggregate_alias('sum', 'trip_count')} {'DESC' if _descending(ql) else 'ASC'}",
        limit=params.get("n") or (1 if _wants_single(ql) else None),
    )


_BUCKETS = {
    "week": ("DATE_TRUNC('week', {d}) AS week_start", "week_start"),
    "month": ("DATE_TRUNC('month', {d}) AS month_start", "month_start"),
}


def build_time_series(ql: str, params: Dict[str, Any], intent: str, bucket: Optional[str] = None) -> Optional[str]:
    table = resolve_table(ql, params, intent)
    date_col = DATE_COLUMN[table]
    if bucket in _BUCKETS:
        bucket_expr, bucket = _BUCKETS[bucket]
    elif re.search(r"\bweekly\b|\b(?:by|per|each)\s+week\b", ql):
        bucket_expr, bucket = _BUCKETS["week"]
    elif re.search(r"\bmonthly\b|\b(?:by|per|each)\s+month\b", ql) or params.get("group_by_month"):
        bucket_expr, bucket = _BUCKETS["month"]
    else:
        bucket_expr, bucket = "{d}", date_col
    return TEMPLATES["time_series"].render(
        bucket_expr=bucket_expr.format(d=date_col),
        bucket=bucket,
        metric=resolve_metric(ql, table),
        table=table,
        where=where_clause(build_filters(params, table)),
    )


def build_distribution(ql: str, params: Dict[str, Any], intent: str) -> Optional[str]:
    table = resolve_table(ql, params, intent)
    dimension = resolve_dimension(ql, table) or "shift"
    return TEMPLATES["distribution"].render(
        dimension=dimension,
        metric=resolve_metric(ql, table),
        table=table,
        where=where_clause(build_filters(params, table)),
        order_by=dimension,
    )


def build_comparison(ql: str, params: Dict[str, Any], intent: str) -> Optional[str]:
    table = resolve_table(ql, params, intent)
    metric = resolve_metric(ql, table)
    date_col = DATE_COLUMN[table]
    if params.get("is_multi_month"):
        return build_time_series(ql, params, intent, bucket="month")
    if isinstance(params.get("shift"), list):
        return build_shift_grouping(ql, params, intent)
    ids = params.get("equipment_ids") or []
    if len(ids) > 1:
        dimension = equipment_column(ids[0], table)
    else:
        dimension = resolve_dimension(ql, table)
    if dimension is None:
        return None
    return TEMPLATES["select"].render(
        select=f"{dimension}, SUM({metric}), AVG({metric}), COUNT(DISTINCT {date_col})",
        table=table,
        where=where_clause(build_filters(params, table)),
        group_by=dimension,
        order_by=dimension,
    )


def build_summary(ql: str, params: Dict[str, Any], intent: str) -> Optional[str]:
    table = resolve_table(ql, params, intent)
    date_col = DATE_COLUMN[table]
    where = where_clause(build_filters(params, table))
    if table == TRIPS:
        aggregates = ["SUM(trip_count)", "COUNT(DISTINCT tipper_id)", "COUNT(DISTINCT excavator)",
                      f"COUNT(DISTINCT {date_col})"]
    else:
        aggregates = ["SUM(qty_ton)", "SUM(qty_m3)", "SUM(total_trips)", f"COUNT(DISTINCT {date_col})"]
    if params.get("group_by_month") or intent == "MONTHLY_SUMMARY" and not params.get("month"):
        return TEMPLATES["select"].render(
            select=", ".join([f"DATE_TRUNC('month', {date_col}) AS month_start"] + aggregates),
            table=table, where=where, group_by="month_start", order_by="month_start",
        )
    if params.get("group_by_shift"):
        return TEMPLATES["select"].render(
            select=", ".join(["shift"] + aggregates), table=table, where=where, group_by="shift",
            order_by="shift",
        )
    return TEMPLATES["summary"].render(aggregates=", ".join(aggregates), table=table, where=where)


def build_equipment_production(ql: str, params: Dict[str, Any], intent: str) -> Optional[str]:
    ids = params.get("equipment_ids") or []
    if not ids:
        return None
    table = TRIPS if re.search(r"\btrips?\b|\btippers?\b|\broutes?\b", ql) else resolve_table(ql, params, intent)
    metric = resolve_metric(ql, table)
    column = equipment_column(ids[0], table)
    where = where_clause(build_filters(params, table))
    if re.search(r"\b(?:total|sum|how\s+much|how\s+many|overall|performance)\b", ql):
        return TEMPLATES["select"].render(
            select=f"{column}, SUM({metric}), COUNT(DISTINCT {DATE_COLUMN[table]})",
            table=table, where=where, group_by=column, order_by=column,
        )
    return build_detail(ql, params, intent)


DETAIL_COLUMNS = {
    PRODUCTION: "date, shift, excavator, dumper, qty_ton, qty_m3, total_trips",
    TRIPS: "trip_date, shift, tipper_id, excavator, route_or_face, trip_count",
}


def build_detail(ql: str, params: Dict[str, Any], intent: str) -> Optional[str]:
    table = resolve_table(ql, params, intent)
    filters = build_filters(params, table)
    nf = params.get("numeric_filter")
    if nf:
        metric = resolve_metric(ql, table)
        if nf["operator"] == "between":
            filters.append(Filter(metric, "BETWEEN", (nf["min"], nf["max"])))
        else:
            filters.append(Filter(metric, nf["operator"], nf["value"]))
    if not filters:
        return None
    date_col = DATE_COLUMN[table]
    return TEMPLATES["detail"].render(
        columns=DETAIL_COLUMNS[table],
        table=table,
        where=where_clause(filters),
        order_by=f"{date_col}, shift",
        limit=params.get("n") or DEFAULT_DETAIL_LIMIT,
    )


Builder = Callable[[str, Dict[str, Any], str], Optional[str]]

INTENT_BUILDERS: Dict[str, Builder] = {
    "STATISTICAL_QUERY": build_statistical,
    "ORDINAL_ROW_QUERY": build_ranking,
    "SHIFT_AGGREGATION": build_shift_grouping,
    "EQUIPMENT_COMBINATION": build_equipment_combination,
    "MONTH_COMPARISON": build_month_ranking,
    "ROUTES_FACES_ANALYSIS": build_routes_faces,
}

QUERY_TYPE_BUILDERS: Dict[str, Builder] = {
    "time_series": build_time_series,
    "distribution": build_distribution,
    "comparison": build_comparison,
    "equipment_combo": build_equipment_combination,
    "shift_grouping": build_shift_grouping,
    "summary": build_summary,
}

# Used when the query type is generic
GENERIC_BUILDERS: Dict[str, Builder] = {
    "EQUIPMENT_SPECIFIC_PRODUCTION": build_equipment_production,
    "MONTHLY_SUMMARY": build_summary,
    "AGGREGATION_QUERY": build_summary,
    "DATA_RETRIEVAL": build_detail,
    "CHART_VISUALIZATION": build_time_series,
}


def build_sql(intent: str, params: Dict[str, Any], question: str, query_type: Optional[str] = None) -> Optional[str]:
    """Synthesize SQL for a classified question, or None when no template applies.

    None is the only signal that the question should go to the LLM.
    """
    if not isinstance(question, str) or intent == UNKNOWN:
        return None
    rule = RULES.get(intent)
    if rule is None or rule.task != "sql":
        return None
    ql = " ".join(question.lower().split())
    params = params or {}

    sql: Optional[str] = None
    builder = INTENT_BUILDERS.get(intent)
    if builder is not None:
        sql = builder(ql, params, intent)
    if sql is None and (rule.templated or builder is None):
        query_type = query_type or detect_query_type(question)
        if params.get("month_ranking") and intent != "STATISTICAL_QUERY":
            sql = build_month_ranking(ql, params, intent)
        elif query_type != GENERIC:
            sql = QUERY_TYPE_BUILDERS[query_type](ql, params, intent)
        if sql is None and intent in GENERIC_BUILDERS:
            sql = GENERIC_BUILDERS[intent](ql, params, intent)
    if sql is None:
        logger.debug("no template for intent=%s", intent)
        return None
    return complete_aggregate_aliases(sql).sql
