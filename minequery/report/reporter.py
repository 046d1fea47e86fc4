from __future__ import annotations

import json
import logging
import os
import shutil
import time
from datetime import date, datetime, time as dtime
from pathlib import Path
from typing import Any, Dict, Optional

import pandas as pd
import pyarrow as pa

logger = logging.getLogger(__name__)


class Reporter:
    def __init__(self, base_dir: str = "runs", failure_log: Optional[str] = None, retention: Optional[int] = None):
        self.base_dir = base_dir
        self.failure_log = failure_log or os.environ.get("FAILURE_LOG", "failures.log")
        self.retention = retention if retention is not None else int(os.environ.get("RUNS_RETENTION", "50"))

    def _run_dir(self, correlation_id: Optional[str] = None) -> Path:
        ts = time.strftime("%Y%m%d-%H%M%S")
        name = f"{ts}-{correlation_id}" if correlation_id else ts
        p = Path(self.base_dir) / name
        p.mkdir(parents=True, exist_ok=True)
        return p

    def _prune_runs(self) -> None:
        base = Path(self.base_dir)
        if not base.exists():
            return
        dirs = sorted([d for d in base.iterdir() if d.is_dir()], key=lambda d: d.name, reverse=True)
        for old in dirs[self.retention:]:
            try:
                shutil.rmtree(old)
            except OSError as exc:
                logger.warning("could not prune %s: %s", old, exc)

    def save_artifacts(self, decision: Dict[str, Any], sql: Optional[str], results: Any, markdown_summary: str,
                       latency_sec: Optional[float] = None) -> str:
        run_dir = self._run_dir(decision.get("correlation_id"))
        (run_dir / "decision.json").write_text(json.dumps(self._safe_json(decision), indent=2))
        if sql:
            (run_dir / "query.sql").write_text(sql)
        (run_dir / "results.json").write_text(json.dumps(self._safe_json(results), indent=2))
        if latency_sec is not None:
            markdown_summary = f"Latency: {latency_sec:.2f}s\n\n" + markdown_summary
        (run_dir / "summary.md").write_text(markdown_summary)
        self._prune_runs()
        return str(run_dir)

    def log_failure(self, correlation_id: Optional[str], question: str, intent: Optional[str],
                    confidence: float, error: Optional[str] = None) -> None:
        """Append one JSON line for a low-confidence or failed turn."""
        record = {
            "ts": datetime.now().isoformat(timespec="seconds"),
            "correlation_id": correlation_id,
            "question": question,
            "intent": intent,
            "confidence": confidence,
            "error": error,
        }
        try:
            with open(self.failure_log, "a", encoding="utf-8") as fh:
                fh.write(json.dumps(record, ensure_ascii=False) + "\n")
        except OSError as exc:
            logger.warning("could not write failure log %s: %s", self.failure_log, exc)

    def _safe_json(self, obj: Any):
        # Normalize common datetime types
        if isinstance(obj, (date, datetime, dtime)):
            return str(obj)
        if isinstance(obj, (list, tuple)):
            return [self._safe_json(x) for x in obj[:100]]
        if isinstance(obj, dict):
            return {k: self._safe_json(v) for k, v in obj.items()}
        if isinstance(obj, pd.DataFrame):
            return [self._safe_json(r) for r in obj.head(100).to_dict(orient="records")]
        if isinstance(obj, pa.Table):
            pyd = obj.slice(0, 100).to_pydict()
            return {k: [self._safe_json(v) for v in vals] for k, vals in pyd.items()}
        if isinstance(obj, pa.Scalar):
            return self._safe_json(obj.as_py())
        try:
            json.dumps(obj)
            return obj
        except (TypeError, ValueError):
            return str(obj)
