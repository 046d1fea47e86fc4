from __future__ import annotations

import json
import logging
import time
import uuid
from contextvars import ContextVar
from logging.handlers import RotatingFileHandler
from typing import Optional

from rich.console import Console
from rich.logging import RichHandler

_corr_id: ContextVar[Optional[str]] = ContextVar("_corr_id", default=None)


def new_correlation_id() -> str:
    """``<epoch millis>-<9 hex chars>``, bound to the current context."""
    cid = f"{int(time.time() * 1000)}-{uuid.uuid4().hex[:9]}"
    _corr_id.set(cid)
    return cid


def get_corr_id() -> Optional[str]:
    return _corr_id.get()


class CorrelationFilter(logging.Filter):
    def filter(self, record: logging.LogRecord) -> bool:
        record.corr_id = get_corr_id() or "-"
        return True


class JsonFormatter(logging.Formatter):
    def format(self, record: logging.LogRecord) -> str:
        base = {
            "ts": int(time.time() * 1000),
            "level": record.levelname,
            "logger": record.name,
            "msg": record.getMessage(),
            "corr_id": get_corr_id(),
        }
        extra = getattr(record, "event", None)
        if isinstance(extra, dict):
            base.update(extra)
        if record.exc_info:
            base["exc"] = self.formatException(record.exc_info)
        return json.dumps(base, ensure_ascii=False, default=str)


def setup_logging(level: str = "INFO", json_logs: bool = False, log_file: Optional[str] = None,
                  console: Optional[Console] = None) -> None:
    root = logging.getLogger()
    root.setLevel(getattr(logging, str(level).upper(), logging.INFO))

    if json_logs:
        sh: logging.Handler = logging.StreamHandler()
        sh.setFormatter(JsonFormatter())
    else:
        sh = RichHandler(console=console or Console(stderr=True), show_path=False, rich_tracebacks=True)
        sh.setFormatter(logging.Formatter("[%(corr_id)s] %(message)s"))
    sh.addFilter(CorrelationFilter())
    root.handlers[:] = [sh]

    # Optional file logs (export LOG_FILE=/var/log/minequery.log)
    if log_file:
        fh = RotatingFileHandler(log_file, maxBytes=10_000_000, backupCount=3)
        fh.setFormatter(JsonFormatter())
        fh.addFilter(CorrelationFilter())
        root.addHandler(fh)

    # Reduce noise
    logging.getLogger("openai").setLevel(logging.WARNING)
    logging.getLogger("httpx").setLevel(logging.WARNING)
