from __future__ import annotations

from typing import Any, Dict, List

import pandas as pd
import pyarrow as pa

LOW_CONFIDENCE = 0.6


def _rows(result: Any) -> int:
    if isinstance(result, pa.Table):
        return result.num_rows
    if isinstance(result, pd.DataFrame):
        return len(result)
    return 0


def build_caveats(result: Any, decision: Dict[str, Any]) -> List[str]:
    """Notes for the run summary about how far the answer can be trusted."""
    notes: List[str] = []
    rows = _rows(result)
    if result is None:
        pass
    elif rows == 0:
        notes.append("No rows matched; check the date range and filters.")
    elif rows < 5 and len(result.column_names if isinstance(result, pa.Table) else []) > 1:
        notes.append("Small sample of rows; interpret with caution.")
    if decision.get("confidence", 1.0) < LOW_CONFIDENCE:
        notes.append(f"Low intent confidence ({decision.get('confidence', 0):.2f}); the question may have been misread.")
    if decision.get("route_source") == "llm":
        notes.append("SQL was written by the language model and checked against the schema before running.")
    follow_up = decision.get("follow_up") or {}
    if follow_up.get("is_follow_up"):
        notes.append(f"Treated as a follow-up to: {follow_up.get('previous_question')}")
    for change in decision.get("changes") or []:
        notes.append(change)
    for warning in decision.get("warnings") or []:
        notes.append(f"Warning: {warning}")
    return notes
