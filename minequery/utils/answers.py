from __future__ import annotations

from decimal import Decimal
from typing import Any, Dict, List

import pandas as pd
import pyarrow as pa

DIMENSIONS = ("shift", "month_start", "week_start", "date", "trip_date", "excavator", "tipper_id", "dumper",
              "route_or_face")
METRIC_PREFIXES = ("total_", "avg_", "unique_", "count_", "max_", "min_", "median_", "mode_", "stddev_")


def _rows(result: Any, limit: int = 20) -> List[Dict[str, Any]]:
    if isinstance(result, pa.Table):
        return result.slice(0, limit).to_pylist()
    if isinstance(result, pd.DataFrame):
        return result.head(limit).to_dict(orient="records")
    return []


def _fmt(value: Any) -> str:
    if isinstance(value, Decimal):
        value = float(value)
    if isinstance(value, float):
        return f"{value:,.2f}"
    if isinstance(value, int) and not isinstance(value, bool):
        return f"{value:,}"
    if hasattr(value, "isoformat"):
        return value.isoformat()
    return str(value)


def _metrics(row: Dict[str, Any]) -> List[str]:
    return [k for k in row if k.startswith(METRIC_PREFIXES)]


def make_concise_answer(result: Any, context: Dict[str, Any]) -> str:
    task = context.get("task", "sql")
    intent = context.get("intent")
    if task != "sql":
        return f"Answer: {intent} is handled by the {task} service; no SQL was run."
    if context.get("error"):
        return f"Answer: {context['error']}"

    rows = _rows(result)
    if not rows:
        return "Answer: no matching rows."
    row = rows[0]
    metrics = _metrics(row)
    dims = [d for d in DIMENSIONS if d in row]

    # Single aggregate value
    if len(row) == 1:
        (name, value), = row.items()
        return f"Answer: {name} = {_fmt(value)}"

    # One row per group, e.g. by shift
    if dims and metrics and len(rows) > 1 and dims[0] in ("shift", "month_start", "week_start"):
        dim, metric = dims[0], metrics[0]
        parts = ", ".join(f"{_fmt(r[dim])}: {_fmt(r[metric])}" for r in rows[:6])
        more = " ..." if len(rows) > 6 else ""
        return f"Answer: {metric} by {dim} - {parts}{more}"

    # Ranked rows
    if dims and metrics:
        dim = dims[0]
        detail = ", ".join(f"{m}={_fmt(row[m])}" for m in metrics[:3])
        return f"Answer: top {dim} = {_fmt(row[dim])} ({detail})"

    # Summary row
    if metrics and len(rows) == 1:
        return "Answer: " + ", ".join(f"{m} = {_fmt(row[m])}" for m in metrics)

    return f"Answer: {len(rows)}{'+' if len(rows) >= 20 else ''} rows returned."
