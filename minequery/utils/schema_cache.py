from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Dict, Iterable, List, Optional, Tuple

logger = logging.getLogger(__name__)


@dataclass
class ColumnInfo:
    name: str
    type: str = ""


# Static descriptor used until the executor reports the real tables.
DEFAULT_TABLES: Dict[str, List[str]] = {
    "production_summary": [
        "id", "user_id", "date", "shift", "excavator", "dumper",
        "trip_count_for_mining", "qty_ton", "trip_count_for_reclaim", "qty_m3",
        "total_trips", "grader", "dozer", "created_at",
    ],
    "trip_summary_by_date": [
        "id", "user_id", "trip_date", "shift", "tipper_id", "excavator",
        "route_or_face", "trip_count", "remarks", "created_at",
    ],
    "uploaded_files": [
        "id", "filename", "file_path", "file_type", "file_size", "upload_date",
        "status", "metadata", "created_at",
    ],
    "rag_chunks": ["id", "file_id", "chunk_index", "content", "embedding", "metadata", "created_at"],
    "rag_settings": ["id", "user_id", "settings", "created_at", "updated_at"],
    "users": ["id", "email", "created_at"],
    "sql_cache": ["id", "question_hash", "question", "sql_text", "hit_count", "created_at"],
}

# Free-text spellings seen in questions and generated SQL -> canonical table.
TABLE_ALIASES: Dict[str, str] = {
    "production summary": "production_summary",
    "productionsummary": "production_summary",
    "production": "production_summary",
    "prod_summary": "production_summary",
    "prod summary": "production_summary",
    "trip summary by date": "trip_summary_by_date",
    "tripsummarybydate": "trip_summary_by_date",
    "trip_summary": "trip_summary_by_date",
    "trip summary": "trip_summary_by_date",
    "trips": "trip_summary_by_date",
    "uploaded files": "uploaded_files",
    "uploadedfiles": "uploaded_files",
    "files": "uploaded_files",
    "documents": "uploaded_files",
    "rag chunks": "rag_chunks",
    "ragchunks": "rag_chunks",
    "chunks": "rag_chunks",
    "rag settings": "rag_settings",
    "ragsettings": "rag_settings",
    "settings": "rag_settings",
    "user": "users",
    "sql cache": "sql_cache",
    "sqlcache": "sql_cache",
    "cache": "sql_cache",
}

# Invented column names -> real column. Applied only when the target exists
# in the table being queried.
COLUMN_MISTAKES: Dict[str, str] = {
    "total_tonnage": "qty_ton",
    "tonnage": "qty_ton",
    "production_tons": "qty_ton",
    "production_qty": "qty_ton",
    "volume_m3": "qty_m3",
    "trips": "trip_count",
    "total_trips": "trip_count",
    "num_trips": "trip_count",
    "trip_id": "tipper_id",
    "vehicle_id": "tipper_id",
    "truck_id": "tipper_id",
    "dumper_id": "tipper_id",
    "equipment_count": "excavator",
}

TABLE_COLUMN_MISTAKES: Dict[str, Dict[str, str]] = {
    "production_summary": {
        "trip_date": "date",
        "trips": "total_trips",
        "num_trips": "total_trips",
        "trip_count": "total_trips",
    },
    "trip_summary_by_date": {
        "date": "trip_date",
    },
}

# Columns with no counterpart at all in a given table.
NO_EQUIVALENT: Dict[Tuple[str, str], str] = {
    ("trip_summary_by_date", "qty_ton"): "trip_summary_by_date has no tonnage; query production_summary instead",
    ("trip_summary_by_date", "qty_m3"): "trip_summary_by_date has no volume; query production_summary instead",
    ("trip_summary_by_date", "tonnage"): "trip_summary_by_date has no tonnage; query production_summary instead",
    ("trip_summary_by_date", "total_tonnage"): "trip_summary_by_date has no tonnage; query production_summary instead",
}


@dataclass
class SchemaColumnDictionary:
    """Table -> columns descriptor plus the spelling maps used to repair SQL."""

    tables: Dict[str, List[ColumnInfo]]
    table_aliases: Dict[str, str] = field(default_factory=lambda: dict(TABLE_ALIASES))
    column_mistakes: Dict[str, str] = field(default_factory=lambda: dict(COLUMN_MISTAKES))
    table_column_mistakes: Dict[str, Dict[str, str]] = field(
        default_factory=lambda: {t: dict(m) for t, m in TABLE_COLUMN_MISTAKES.items()}
    )
    no_equivalent: Dict[Tuple[str, str], str] = field(default_factory=lambda: dict(NO_EQUIVALENT))

    @classmethod
    def from_names(cls, tables: Dict[str, Iterable[str]]) -> "SchemaColumnDictionary":
        return cls(tables={t.lower(): [ColumnInfo(c.lower()) for c in cols] for t, cols in tables.items()})

    @classmethod
    def default(cls) -> "SchemaColumnDictionary":
        return cls.from_names(DEFAULT_TABLES)

    def is_table(self, name: str) -> bool:
        return name.lower() in self.tables

    def columns(self, table: str) -> List[str]:
        return [c.name for c in self.tables.get(table.lower(), [])]

    def has_column(self, table: str, column: str) -> bool:
        return column.lower() in self.columns(table)

    def correction_for(self, table: str, column: str) -> Optional[str]:
        """Known replacement for ``column`` in ``table``, or None.

        Table-specific spellings win over the global map, and a replacement is
        only offered when it names a real column of the table.
        """
        t, c = table.lower(), column.lower()
        specific = self.table_column_mistakes.get(t, {}).get(c)
        if specific and self.has_column(t, specific):
            return specific
        generic = self.column_mistakes.get(c)
        if generic and self.has_column(t, generic):
            return generic
        return None

    def no_equivalent_reason(self, table: str, column: str) -> Optional[str]:
        return self.no_equivalent.get((table.lower(), column.lower()))

    def merged_with(self, discovered: Dict[str, List[ColumnInfo]]) -> "SchemaColumnDictionary":
        tables = {t: list(cols) for t, cols in self.tables.items()}
        tables.update(discovered)
        return SchemaColumnDictionary(
            tables=tables,
            table_aliases=dict(self.table_aliases),
            column_mistakes=dict(self.column_mistakes),
            table_column_mistakes={t: dict(m) for t, m in self.table_column_mistakes.items()},
            no_equivalent=dict(self.no_equivalent),
        )


class SchemaCache:
    def __init__(self, base: Optional[SchemaColumnDictionary] = None) -> None:
        self.base = base or SchemaColumnDictionary.default()
        self._cache: Dict[int, SchemaColumnDictionary] = {}

    def get_or_load(self, executor) -> SchemaColumnDictionary:
        key = id(executor)
        if key in self._cache:
            return self._cache[key]
        # Descriptor reported by the executor is authoritative for the tables it knows
        arrow_tbl = executor.query(
            "SELECT table_name, column_name, data_type FROM information_schema.columns "
            "WHERE table_schema = 'main' ORDER BY table_name, ordinal_position"
        )
        df = arrow_tbl.to_pandas()
        discovered: Dict[str, List[ColumnInfo]] = {}
        for _, row in df.iterrows():
            discovered.setdefault(str(row["table_name"]).lower(), []).append(
                ColumnInfo(name=str(row["column_name"]).lower(), type=str(row["data_type"]))
            )
        logger.debug("discovered %d tables from executor", len(discovered))
        snapshot = self.base.merged_with(discovered)
        self._cache[key] = snapshot
        return snapshot
