from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Dict, List, Optional, Tuple

from minequery.utils.schema_cache import SchemaColumnDictionary

# Words that may follow a table name but are never an implicit alias
SQL_KEYWORDS = frozenset({
    "where", "order", "group", "having", "limit", "offset", "union", "intersect", "except", "join", "inner",
    "left", "right", "full", "cross", "outer", "natural", "on", "using", "and", "or", "not", "as", "by", "in",
    "is", "null", "true", "false", "asc", "desc", "set", "values", "select", "from", "window", "qualify",
    "returning", "default", "fetch", "lateral", "tablesample", "for",
})

_IDENT = r"[A-Za-z_][A-Za-z0-9_]*"

TABLE_REF_RE = re.compile(
    r"\b(?P<kw>delete\s+from|insert\s+into|(?:(?:inner|left|right|full|cross|natural)\s+(?:outer\s+)?)?join|from|update)"
    r"\s+(?P<schema>" + _IDENT + r"\.)?(?P<table>" + _IDENT + r")"
    r"(?:\s+(?:(?P<as>as)\s+)?(?P<alias>" + _IDENT + r"))?",
    re.IGNORECASE,
)

# Alias following a table name that was written as two words
_ALIAS_TAIL_RE = re.compile(r"\s+(?:(?P<as>as)\s+)?(?P<alias>" + _IDENT + r")", re.IGNORECASE)

# FROM inside these calls is part of the call syntax, not a table reference
_FROM_IN_CALL_RE = re.compile(r"\b(?:extract|substring|trim|position|overlay)\s*\([^()]*$", re.IGNORECASE)


@dataclass
class TableRef:
    keyword: str
    table: str
    alias: Optional[str]
    explicit_as: bool
    table_span: Tuple[int, int]
    alias_span: Optional[Tuple[int, int]]


def normalize_table_name(name: str, schema: Optional[SchemaColumnDictionary] = None) -> str:
    """Canonical table name for a free-text spelling; unknown names are only cleaned."""
    schema = schema or SchemaColumnDictionary.default()
    key = " ".join(name.strip().lower().split())
    if schema.is_table(key):
        return key
    if key in schema.table_aliases:
        return schema.table_aliases[key]
    collapsed = key.replace(" ", "_")
    if schema.is_table(collapsed):
        return collapsed
    return schema.table_aliases.get(collapsed, collapsed)


def find_table_refs(sql: str, schema: Optional[SchemaColumnDictionary] = None) -> List[TableRef]:
    schema = schema or SchemaColumnDictionary.default()
    refs: List[TableRef] = []
    for m in TABLE_REF_RE.finditer(sql):
        kw = " ".join(m.group("kw").lower().split())
        if kw == "from" and _FROM_IN_CALL_RE.search(sql[:m.start()]):
            continue
        alias = m.group("alias")
        explicit_as = bool(m.group("as"))
        alias_span = m.span("alias") if alias else None
        table_span = m.span("table")
        table = m.group("table")
        # "FROM production summary" names one table in two words
        if alias and not explicit_as and f"{table} {alias}".lower() in schema.table_aliases:
            table, table_span = sql[table_span[0]:alias_span[1]], (table_span[0], alias_span[1])
            alias, alias_span = None, None
            tail = _ALIAS_TAIL_RE.match(sql, table_span[1])
            if tail:
                alias, alias_span, explicit_as = tail.group("alias"), tail.span("alias"), bool(tail.group("as"))
        if alias and not explicit_as and alias.lower() in SQL_KEYWORDS:
            alias, alias_span = None, None
        refs.append(TableRef(
            keyword=kw,
            table=table,
            alias=alias,
            explicit_as=explicit_as and alias is not None,
            table_span=table_span,
            alias_span=alias_span,
        ))
    return refs


def extract_table_names(sql: str, schema: Optional[SchemaColumnDictionary] = None) -> List[str]:
    names: List[str] = []
    for ref in find_table_refs(sql, schema):
        name = normalize_table_name(ref.table, schema)
        if name not in names:
            names.append(name)
    return names


def table_aliases(sql: str, schema: Optional[SchemaColumnDictionary] = None) -> Dict[str, str]:
    """alias (or bare table name) -> canonical table for every reference."""
    out: Dict[str, str] = {}
    for ref in find_table_refs(sql, schema):
        name = normalize_table_name(ref.table, schema)
        out[(ref.alias or ref.table).lower()] = name
    return out


def validate_table_references(sql: str, schema: Optional[SchemaColumnDictionary] = None) -> List[str]:
    """Referenced table names that the schema does not know."""
    schema = schema or SchemaColumnDictionary.default()
    return [t for t in extract_table_names(sql, schema) if not schema.is_table(t)]


def normalize_table_references(sql: str, schema: Optional[SchemaColumnDictionary] = None) -> str:
    """Rewrite FROM/JOIN/UPDATE/INSERT INTO/DELETE FROM targets to canonical names.

    Implicit aliases gain an explicit AS. Running this on its own output
    returns it unchanged.
    """
    if not sql:
        return sql
    edits: List[Tuple[int, int, str]] = []
    for ref in find_table_refs(sql, schema):
        canonical = normalize_table_name(ref.table, schema)
        if canonical != ref.table:
            edits.append((ref.table_span[0], ref.table_span[1], canonical))
        if ref.alias_span and not ref.explicit_as:
            edits.append((ref.alias_span[0], ref.alias_span[0], "AS "))
    out = sql
    for start, end, text in sorted(edits, key=lambda e: e[0], reverse=True):
        out = out[:start] + text + out[end:]
    return out
