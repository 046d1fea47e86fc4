from __future__ import annotations

import json
import logging
import os
import re
from typing import Any, Dict, Optional

from openai import OpenAI

from minequery.utils.schema_cache import SchemaColumnDictionary

logger = logging.getLogger(__name__)

SQL_RULES = (
    "- Use only the tables and columns listed in the schema. Never invent column names.\n"
    "- production_summary holds tonnage (qty_ton), volume (qty_m3) and trips (total_trips) per date and shift.\n"
    "- trip_summary_by_date holds trip_count per trip_date, shift, tipper_id, excavator and route_or_face; "
    "it has no tonnage.\n"
    "- Dates are ISO literals (YYYY-MM-DD). Shifts are 'A', 'B' or 'C'.\n"
    "- Give every aggregate an alias. Return a single SELECT statement."
)


def _schema_text(schema: SchemaColumnDictionary, tables: Optional[list] = None) -> str:
    names = tables or ["production_summary", "trip_summary_by_date"]
    return "\n".join(f"{t}({', '.join(schema.columns(t))})" for t in names if schema.is_table(t))


def _parameters_text(parameters: Dict[str, Any]) -> str:
    clean = {k: v for k, v in parameters.items() if k != "parsed_date"}
    return json.dumps(clean, default=str, sort_keys=True)


def extract_sql(content: str) -> Optional[str]:
    """Pull the statement out of a JSON ``{"sql": ...}`` reply or a fenced block."""
    text = (content or "").strip()
    if not text:
        return None
    try:
        data = json.loads(text)
        if isinstance(data, dict) and isinstance(data.get("sql"), str):
            return data["sql"].strip() or None
    except json.JSONDecodeError:
        pass
    fence = re.search(r"```(?:sql)?\s*(.*?)```", text, re.IGNORECASE | re.DOTALL)
    if fence:
        return fence.group(1).strip() or None
    if re.match(r"(?:select|with)\b", text, re.IGNORECASE):
        return text
    return None


def generate_sql(question: str, intent: str, parameters: Dict[str, Any], schema: SchemaColumnDictionary,
                 query_type: str = "generic", model: Optional[str] = None, timeout: float = 20.0,
                 api_key: Optional[str] = None) -> Optional[str]:
    """
    Ask OpenAI for a SQL statement answering ``question`` over the known schema.
    Returns None if no API key, the call fails or times out, or the reply holds no SQL.
    """
    api_key = api_key or os.environ.get("OPENAI_API_KEY")
    if not api_key:
        return None
    client = OpenAI(api_key=api_key, timeout=timeout, max_retries=0)
    model_name = model or os.environ.get("OPENAI_MODEL", "gpt-4o-mini")

    system = (
        "You translate questions about mining operations into DuckDB SQL. "
        "Only respond with valid JSON of the form {\"sql\": \"...\"}.\n" + SQL_RULES
    )
    user = (
        f"Schema:\n{_schema_text(schema)}\n\n"
        f"Detected intent: {intent}\n"
        f"Query type: {query_type}\n"
        f"Extracted parameters: {_parameters_text(parameters)}\n\n"
        f"Question: {question}"
    )
    try:
        resp = client.chat.completions.create(
            model=model_name,
            messages=[
                {"role": "system", "content": system},
                {"role": "user", "content": user},
            ],
            temperature=0.1,
            max_tokens=400,
        )
        content = resp.choices[0].message.content or ""
    except Exception as exc:
        logger.warning("LLM SQL generation failed: %s", exc)
        return None
    sql = extract_sql(content)
    if sql is None:
        logger.warning("LLM reply held no SQL")
    return sql
