from __future__ import annotations

import difflib
import logging
import re
from dataclasses import dataclass, field, replace
from typing import Dict, List, Optional, Set, Tuple

from minequery.exec.normalizer import (
    find_table_refs,
    normalize_table_name,
    normalize_table_references,
    table_aliases,
    validate_table_references,
)
from minequery.utils.schema_cache import SchemaColumnDictionary

logger = logging.getLogger(__name__)

# Keywords, function names without parentheses, type names and date parts.
# "date" is deliberately absent: it is a real column name.
SQL_RESERVED = frozenset("""
select from where and or not in is null true false as on join inner left right full outer cross natural
using group by order having limit offset asc desc distinct all any some exists between like ilike similar
escape case when then else end union intersect except with recursive over partition rows range
unbounded preceding following current row filter within nulls first last interval insert into values
update set delete create table view index drop alter add column primary key references default
cast collate fetch next only top lateral window qualify returning
count sum avg min max round coalesce nullif extract date_trunc date_part to_char to_date now
current_date current_time current_timestamp localtime localtimestamp
year month day week quarter hour minute second dow doy epoch isodow isoyear
integer int bigint smallint numeric decimal real double precision float varchar char text boolean
timestamp timestamptz time
""".split())

_IDENT_RE = re.compile(r'"([^"]+)"|([A-Za-z_][A-Za-z0-9_]*)')
_LITERAL_RE = re.compile(r"'(?:[^']|'')*'|--[^\n]*|/\*.*?\*/", re.DOTALL)
_AGG_CALL_RE = re.compile(r"^(sum|avg|count|max|min)\s*\((.*)\)$", re.IGNORECASE | re.DOTALL)
_ROUND_CALL_RE = re.compile(r"^round\s*\((.*)\)$", re.IGNORECASE | re.DOTALL)

ALIAS_PREFIX = {"sum": "total", "avg": "avg", "count": "count", "max": "max", "min": "min"}

# Words that take a parenthesised operand without being function calls
_PAREN_KEYWORDS = frozenset({
    "in", "values", "and", "or", "not", "on", "exists", "select", "from", "where", "as", "over", "filter",
    "within", "using", "when", "then", "else", "join", "by", "with", "any", "all", "into",
})


@dataclass(frozen=True)
class Token:
    text: str
    start: int
    end: int
    quoted: bool = False

    @property
    def lower(self) -> str:
        return self.text.lower()


@dataclass(frozen=True)
class SchemaFinding:
    identifier: str
    table: Optional[str]
    reason: str  # 'correctable' | 'unsafe_context' | 'no_correction' | 'no_equivalent'
    suggestion: Optional[str] = None
    candidates: Tuple[str, ...] = ()
    valid_columns: Tuple[str, ...] = ()
    detail: str = ""

    def message(self) -> str:
        where = f" in {self.table}" if self.table else ""
        if self.reason == "no_equivalent":
            return f"Column '{self.identifier}' doesn't exist{where}: {self.detail}."
        text = f"Column '{self.identifier}' doesn't exist{where}."
        if self.suggestion:
            text += f" Did you mean '{self.suggestion}'?"
        elif self.candidates:
            text += " Did you mean " + " or ".join(f"'{c}'" for c in self.candidates) + "?"
        if self.valid_columns:
            text += " Valid columns: " + ", ".join(self.valid_columns)
        return text


@dataclass
class ValidationResult:
    table: Optional[str]
    tables: List[str] = field(default_factory=list)
    findings: List[SchemaFinding] = field(default_factory=list)
    skipped: Optional[str] = None

    @property
    def valid(self) -> bool:
        return not self.findings

    @property
    def invalid_columns(self) -> List[str]:
        return [f.identifier for f in self.findings]

    @property
    def corrections(self) -> Dict[str, str]:
        return {f.identifier.lower(): f.suggestion for f in self.findings if f.suggestion}

    @property
    def suggestions(self) -> List[str]:
        return [f.message() for f in self.findings]


class SchemaMismatchError(ValueError):
    """Column references that could not be repaired safely."""

    def __init__(self, findings: List[SchemaFinding], sql: str = "", correlation_id: Optional[str] = None):
        self.findings = list(findings)
        self.sql = sql
        self.correlation_id = correlation_id
        super().__init__(self.user_message())

    def user_message(self) -> str:
        prefix = f"[{self.correlation_id}] " if self.correlation_id else ""
        return prefix + " ".join(f.message() for f in self.findings)


@dataclass
class AutoFixResult:
    sql: str
    fixed: bool
    changes: List[str] = field(default_factory=list)
    skipped_reason: Optional[str] = None


@dataclass
class AliasCompletion:
    sql: str
    added: List[str] = field(default_factory=list)


@dataclass
class PreparedSql:
    sql: str
    original: str
    changes: List[str] = field(default_factory=list)
    warnings: List[str] = field(default_factory=list)


# --- lexing helpers ----------------------------------------------------------

def mask_literals(sql: str) -> str:
    """Blank out string literals and comments, keeping every offset intact."""
    def _blank(m: "re.Match[str]") -> str:
        s = m.group(0)
        if s.startswith("'"):
            return "'" + " " * (len(s) - 2) + "'"
        return " " * len(s)
    return _LITERAL_RE.sub(_blank, sql)


def tokenize(masked: str) -> List[Token]:
    tokens: List[Token] = []
    for m in _IDENT_RE.finditer(masked):
        if m.group(1) is not None:
            tokens.append(Token(m.group(1), m.start(), m.end(), quoted=True))
        else:
            # Skip the tail of numeric literals such as 1e5 or 10d
            if m.start() > 0 and masked[m.start() - 1].isdigit():
                continue
            tokens.append(Token(m.group(2), m.start(), m.end()))
    return tokens


def _prev_char(s: str, i: int) -> str:
    j = i - 1
    while j >= 0 and s[j].isspace():
        j -= 1
    return s[j] if j >= 0 else ""


def _next_char(s: str, i: int) -> str:
    j = i
    while j < len(s) and s[j].isspace():
        j += 1
    return s[j] if j < len(s) else ""


def _prev_word(s: str, i: int) -> str:
    m = re.search(r"([A-Za-z_][A-Za-z0-9_]*)\s*$", s[:i])
    return m.group(1).lower() if m else ""


def _next_word(s: str, i: int) -> str:
    m = re.match(r"\s*([A-Za-z_][A-Za-z0-9_]*)", s[i:])
    return m.group(1).lower() if m else ""


def declared_aliases(masked: str) -> Set[str]:
    """Names introduced with AS, excluding type names inside CAST(...)."""
    names: Set[str] = set()
    for tok in tokenize(masked):
        if _prev_word(masked, tok.start) == "as" and _next_char(masked, tok.end) not in (")", "("):
            names.add(tok.lower)
    return names


def _matching_paren(s: str, open_idx: int) -> int:
    depth = 0
    for i in range(open_idx, len(s)):
        if s[i] == "(":
            depth += 1
        elif s[i] == ")":
            depth -= 1
            if depth == 0:
                return i
    return -1


def _depth_at(s: str, i: int) -> int:
    return s[:i].count("(") - s[:i].count(")")


def _select_list_span(masked: str) -> Optional[Tuple[int, int]]:
    sel = None
    for m in re.finditer(r"\bselect\b", masked, re.IGNORECASE):
        if _depth_at(masked, m.start()) == 0:
            sel = m
            break
    if sel is None:
        return None
    start = sel.end()
    d = re.match(r"\s+distinct\b", masked[start:], re.IGNORECASE)
    if d:
        start += d.end()
    end = len(masked)
    for m in re.finditer(r"\bfrom\b", masked[start:], re.IGNORECASE):
        pos = start + m.start()
        if _depth_at(masked, pos) == 0:
            end = pos
            break
    return start, end


def _split_top_level(s: str, start: int, end: int) -> List[Tuple[int, int]]:
    items: List[Tuple[int, int]] = []
    depth, item_start = 0, start
    for i in range(start, end):
        c = s[i]
        if c == "(":
            depth += 1
        elif c == ")":
            depth -= 1
        elif c == "," and depth == 0:
            items.append((item_start, i))
            item_start = i + 1
    items.append((item_start, end))
    # trim whitespace
    out = []
    for a, b in items:
        while a < b and s[a].isspace():
            a += 1
        while b > a and s[b - 1].isspace():
            b -= 1
        if a < b:
            out.append((a, b))
    return out


# --- validation ----------------------------------------------------------------

def _column_suggestions(token: str, columns: List[str], limit: int = 3) -> Tuple[str, ...]:
    token_l = token.lower()
    contains = [c for c in columns if token_l in c or c in token_l]
    if contains:
        return tuple(contains[:limit])
    return tuple(difflib.get_close_matches(token_l, columns, n=limit, cutoff=0.6))


def validate_schema(sql: str, schema: Optional[SchemaColumnDictionary] = None) -> ValidationResult:
    """Flag identifiers that are neither keywords, tables, aliases nor columns.

    Known invented names get a correction; anything else is reported with
    candidates but never guessed at.
    """
    schema = schema or SchemaColumnDictionary.default()
    if not sql or not sql.strip():
        return ValidationResult(table=None, skipped="empty")
    masked = mask_literals(sql)
    if len(re.findall(r"\bselect\b", masked, re.IGNORECASE)) > 1:
        return ValidationResult(table=None, skipped="subquery")
    refs = find_table_refs(masked, schema)
    if not refs:
        return ValidationResult(table=None, skipped="no table")
    tables = [normalize_table_name(r.table, schema) for r in refs]
    if any(not schema.is_table(t) for t in tables):
        return ValidationResult(table=tables[0], tables=tables, skipped="unknown table")

    alias_map = table_aliases(masked, schema)
    primary = tables[0]
    valid_anywhere = {c for t in tables for c in schema.columns(t)}
    aliases = declared_aliases(masked)
    ref_spans = [r.table_span for r in refs] + [r.alias_span for r in refs if r.alias_span]
    select_span = _select_list_span(masked)

    findings: List[SchemaFinding] = []
    seen: Set[str] = set()
    for tok in tokenize(masked):
        name = tok.lower
        if any(a <= tok.start < b for a, b in ref_spans):
            continue
        prev_c, next_c = _prev_char(masked, tok.start), _next_char(masked, tok.end)
        if next_c in ("(", ".", "'") or prev_c == ":":
            continue
        if not tok.quoted and name in SQL_RESERVED:
            continue
        if name in alias_map or schema.is_table(name) or name in aliases:
            continue
        if _prev_word(masked, tok.start) == "as":
            continue
        # implicit select-list alias: "SUM(x) total," or "qty_ton tons FROM"
        if select_span and select_span[0] <= tok.start < select_span[1] and (prev_c == ")" or prev_c.isalnum() or prev_c == "_") \
                and (next_c == "," or tok.end >= select_span[1] - 1 or _next_word(masked, tok.end) == "from"):
            prev_word = _prev_word(masked, tok.start)
            if prev_c == ")" or (prev_word and prev_word not in SQL_RESERVED):
                continue

        if prev_c == ".":
            qualifier = _prev_word(masked, masked.rfind(".", 0, tok.start))
            table = alias_map.get(qualifier, primary)
            if schema.has_column(table, name):
                continue
        else:
            if name in valid_anywhere:
                continue
            table = primary
        if name in seen:
            continue
        seen.add(name)

        cols = schema.columns(table)
        reason = schema.no_equivalent_reason(table, name)
        if reason:
            findings.append(SchemaFinding(tok.text, table, "no_equivalent", valid_columns=tuple(cols), detail=reason))
            continue
        correction = schema.correction_for(table, name)
        if correction:
            findings.append(SchemaFinding(tok.text, table, "correctable", suggestion=correction))
        else:
            findings.append(SchemaFinding(tok.text, table, "no_correction",
                                          candidates=_column_suggestions(name, cols), valid_columns=tuple(cols)))
    return ValidationResult(table=primary, tables=tables, findings=findings)


# --- auto-fix --------------------------------------------------------------------

def unsafe_fix_reason(sql: str) -> Optional[str]:
    """Why a blind column rename could break ``sql``, or None if it is safe."""
    masked = mask_literals(sql)
    if re.search(r"\bas\s+[A-Za-z_\"]", masked, re.IGNORECASE):
        return "explicit alias"
    if re.search(r"\bgroup\s+by\b", masked, re.IGNORECASE):
        return "GROUP BY"
    if re.search(r"\border\s+by\b", masked, re.IGNORECASE):
        return "ORDER BY"
    if re.search(r"\bjoin\b", masked, re.IGNORECASE):
        return "JOIN"
    for m in re.finditer(r"\b([A-Za-z_][A-Za-z0-9_]*)\s*\(", masked):
        if m.group(1).lower() not in _PAREN_KEYWORDS:
            return f"function call {m.group(1).upper()}(...)"
    return None


def auto_fix(sql: str, corrections: Dict[str, str]) -> AutoFixResult:
    """Rename invented columns using whole-word, case-insensitive replacement.

    Statements with aliases, grouping, ordering, joins or function calls are
    returned untouched with ``fixed`` False.
    """
    if not corrections:
        return AutoFixResult(sql=sql, fixed=False)
    reason = unsafe_fix_reason(sql)
    if reason:
        logger.warning("auto-fix skipped (%s) for %s", reason, ", ".join(sorted(corrections)))
        return AutoFixResult(sql=sql, fixed=False, skipped_reason=reason)
    lowered = {k.lower(): v for k, v in corrections.items()}
    masked = mask_literals(sql)
    table_spans = [r.table_span for r in find_table_refs(masked)]
    edits: List[Tuple[int, int, str]] = []
    changes: List[str] = []
    for tok in tokenize(masked):
        target = lowered.get(tok.lower)
        if target is None or any(a <= tok.start < b for a, b in table_spans):
            continue
        if tok.quoted:
            edits.append((tok.start, tok.end, f'"{target}"'))
        else:
            edits.append((tok.start, tok.end, target))
        change = f"Auto-fixed: '{tok.text}' → '{target}'"
        if change not in changes:
            changes.append(change)
    out = sql
    for start, end, text in sorted(edits, reverse=True):
        out = out[:start] + text + out[end:]
    return AutoFixResult(sql=out, fixed=bool(edits), changes=changes)


# --- aggregate aliases -----------------------------------------------------------

def _clean_alias_part(expr: str) -> str:
    expr = re.sub(r"^\s*distinct\s+", "", expr, flags=re.IGNORECASE)
    expr = re.sub(r"^[A-Za-z_][A-Za-z0-9_]*\.", "", expr.strip())
    cleaned = re.sub(r"[^a-z0-9]+", "_", expr.lower()).strip("_")
    return cleaned or "value"


def aggregate_alias(func: str, arg: str) -> str:
    func = func.lower()
    arg = arg.strip()
    if func == "count":
        if arg == "*":
            return "count_all"
        if re.match(r"distinct\s", arg, re.IGNORECASE):
            return "unique_" + _clean_alias_part(arg)
    return f"{ALIAS_PREFIX[func]}_{_clean_alias_part(arg)}"


def _alias_for_item(item: str) -> Optional[str]:
    m = _AGG_CALL_RE.match(item)
    if m and _matching_paren(item, item.index("(")) == len(item) - 1:
        return aggregate_alias(m.group(1), m.group(2))
    m = _ROUND_CALL_RE.match(item)
    if m and _matching_paren(item, item.index("(")) == len(item) - 1:
        inner = m.group(1)
        parts = _split_top_level(inner, 0, len(inner))
        if parts:
            first = inner[parts[0][0]:parts[0][1]]
            am = _AGG_CALL_RE.match(first)
            if am and _matching_paren(first, first.index("(")) == len(first) - 1:
                return aggregate_alias(am.group(1), am.group(2)) + "_rounded"
    return None


def complete_aggregate_aliases(sql: str) -> AliasCompletion:
    """Give every unaliased top-level aggregate in the select list a stable name."""
    if not sql:
        return AliasCompletion(sql=sql)
    masked = mask_literals(sql)
    span = _select_list_span(masked)
    if span is None:
        return AliasCompletion(sql=sql)
    taken = declared_aliases(masked)
    inserts: List[Tuple[int, str]] = []
    for a, b in _split_top_level(masked, span[0], span[1]):
        alias = _alias_for_item(masked[a:b])
        if alias is None:
            continue
        candidate, n = alias, 2
        while candidate in taken:
            candidate = f"{alias}_{n}"
            n += 1
        taken.add(candidate)
        inserts.append((b, candidate))
    out = sql
    for pos, alias in sorted(inserts, reverse=True):
        out = out[:pos] + f" AS {alias}" + out[pos:]
    return AliasCompletion(sql=out, added=[alias for _, alias in inserts])


# --- ambiguous columns -------------------------------------------------------------

def qualify_ambiguous_columns(sql: str, schema: Optional[SchemaColumnDictionary] = None) -> str:
    """Prefix columns shared by several joined tables with the FROM table's alias."""
    schema = schema or SchemaColumnDictionary.default()
    masked = mask_literals(sql)
    if re.search(r"\busing\s*\(", masked, re.IGNORECASE):
        return sql
    refs = find_table_refs(masked, schema)
    tables = [normalize_table_name(r.table, schema) for r in refs]
    if len(set(tables)) < 2:
        return sql
    qualifier = refs[0].alias or refs[0].table
    counts: Dict[str, int] = {}
    for t in set(tables):
        for c in schema.columns(t):
            counts[c] = counts.get(c, 0) + 1
    ambiguous = {c for c, n in counts.items() if n > 1}
    aliases = declared_aliases(masked)
    ref_spans = [r.table_span for r in refs] + [r.alias_span for r in refs if r.alias_span]
    inserts: List[int] = []
    for tok in tokenize(masked):
        if tok.quoted or tok.lower not in ambiguous or tok.lower in aliases:
            continue
        if any(a <= tok.start < b for a, b in ref_spans):
            continue
        if _prev_char(masked, tok.start) in (".", ":") or _next_char(masked, tok.end) in ("(", ".", "'"):
            continue
        if _prev_word(masked, tok.start) == "as":
            continue
        inserts.append(tok.start)
    out = sql
    for pos in sorted(inserts, reverse=True):
        out = out[:pos] + f"{qualifier}." + out[pos:]
    return out


# --- safety chain ------------------------------------------------------------------

def sanitize_sql(text: str) -> str:
    """Strip markdown fences, a leading 'SQL:' label and trailing semicolons."""
    s = (text or "").strip()
    fence = re.search(r"```(?:sql)?\s*(.*?)```", s, re.IGNORECASE | re.DOTALL)
    if fence:
        s = fence.group(1).strip()
    s = re.sub(r"^sql\s*:\s*", "", s, flags=re.IGNORECASE)
    return s.rstrip().rstrip(";").rstrip()


def prepare_sql(sql: str, schema: Optional[SchemaColumnDictionary] = None,
                correlation_id: Optional[str] = None) -> PreparedSql:
    """Sanitize, normalize, validate and repair a statement before execution.

    Raises SchemaMismatchError when a column reference cannot be repaired
    safely.
    """
    schema = schema or SchemaColumnDictionary.default()
    original = sql
    changes: List[str] = []
    warnings: List[str] = []

    text = sanitize_sql(sql)
    normalized = normalize_table_references(text, schema)
    if normalized != text:
        changes.append("Normalized table references")
    for t in validate_table_references(normalized, schema):
        warnings.append(f"Unknown table '{t}'")

    result = validate_schema(normalized, schema)
    if result.findings:
        blocking = [f for f in result.findings if f.reason != "correctable"]
        fix = auto_fix(normalized, result.corrections)
        if fix.fixed:
            normalized = fix.sql
            changes.extend(fix.changes)
            for c in fix.changes:
                logger.info(c)
        elif result.corrections:
            for f in result.findings:
                if f.reason == "correctable":
                    unsafe = replace(f, reason="unsafe_context", valid_columns=tuple(schema.columns(f.table or "")))
                    blocking.append(unsafe)
                    warnings.append(f"{unsafe.message()} (not auto-fixed: {fix.skipped_reason})")
        if blocking:
            logger.warning("schema mismatch: %s", "; ".join(f.message() for f in blocking))
            raise SchemaMismatchError(blocking, sql=normalized, correlation_id=correlation_id)

    completed = complete_aggregate_aliases(normalized)
    if completed.added:
        changes.append("Added aliases: " + ", ".join(completed.added))
    qualified = qualify_ambiguous_columns(completed.sql, schema)
    if qualified != completed.sql:
        changes.append("Qualified ambiguous columns")
    return PreparedSql(sql=qualified, original=original, changes=changes, warnings=warnings)
