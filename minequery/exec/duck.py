from __future__ import annotations

import logging
import threading
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, List, Optional

import duckdb

logger = logging.getLogger(__name__)

TABLE_FILE_SUFFIXES = (".csv", ".parquet")


class ExecutionError(RuntimeError):
    """Executor failure or timeout, tagged with the turn's correlation id."""

    def __init__(self, message: str, correlation_id: Optional[str] = None, sql: Optional[str] = None):
        self.correlation_id = correlation_id
        self.sql = sql
        prefix = f"[{correlation_id}] " if correlation_id else ""
        super().__init__(prefix + message)


@dataclass
class DuckDBConfig:
    timeout_sec: float = 30.0
    database: str = ":memory:"


def _quote_ident(name: str) -> str:
    return '"' + name.replace('"', '""') + '"'


class DuckDBExecutor:
    def __init__(self, config: Optional[DuckDBConfig] = None):
        self.config = config or DuckDBConfig()
        self._con = duckdb.connect(database=self.config.database)
        self.tables: Dict[str, str] = {}

    def load_tables(self, data_dir: str) -> Dict[str, str]:
        """Register every CSV/Parquet file in ``data_dir`` as a table named after the file."""
        base = Path(data_dir)
        if not base.is_dir():
            raise FileNotFoundError(f"Data directory not found: {data_dir}")
        for path in sorted(base.iterdir()):
            if path.suffix.lower() not in TABLE_FILE_SUFFIXES:
                continue
            name = path.stem.lower()
            reader = "read_csv_auto" if path.suffix.lower() == ".csv" else "read_parquet"
            path_sql = str(path.resolve()).replace("'", "''")
            self._con.execute(f"CREATE OR REPLACE TABLE {_quote_ident(name)} AS SELECT * FROM {reader}('{path_sql}')")
            self.tables[name] = str(path)
            logger.debug("registered table %s from %s", name, path.name)
        logger.info("loaded %d tables from %s", len(self.tables), data_dir)
        return dict(self.tables)

    def query(self, sql: str, params: Optional[List[Any]] = None, timeout_sec: Optional[float] = None):
        timeout = self.config.timeout_sec if timeout_sec is None else timeout_sec
        # DuckDB has no per-query timeout; interrupt the connection from a timer instead
        timer = threading.Timer(timeout, self._con.interrupt) if timeout and timeout > 0 else None
        if timer:
            timer.daemon = True
            timer.start()
        try:
            result = self._con.execute(sql, params or [])
            return result.fetch_arrow_table()
        finally:
            if timer:
                timer.cancel()

    def close(self) -> None:
        self._con.close()
