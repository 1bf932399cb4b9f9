"""SQL guardrails for generated queries.

A generated statement is executed only if it passes every rule here:

- exactly one statement (a single trailing semicolon is tolerated)
- starts with SELECT or WITH; no write, DDL or admin keyword anywhere
- no block comments, no SELECT ... INTO, no file/table-function sources,
  no system catalog schemas
- every table read by any query block (CTE names excluded) is allow-listed
- with a project scope, every project table in every query block is bound
  to the caller's project, and no project predicate names another project

A query block is one SELECT (or DuckDB FROM-first) clause: the statement
itself, each set-operation branch, each CTE body and each subquery. A
project table is bound by an ANDed equality on its scope column in the
block's WHERE clause or in an inner JOIN's ON clause, or by an equality on
the scope columns of an already bound table. Join tables without their own
project column are bound by any equality with a bound table.

Project scoping is enforced by rejection. Predicates are never appended.
"""

import re
from dataclasses import dataclass, field
from typing import NamedTuple

from pmchat.catalog.schema import SCHEMA, allowed_tables
from pmchat.errors import UnsafeSqlRejected


class ValidationResult(NamedTuple):
    """Result of SQL validation."""

    is_valid: bool
    error: str | None = None
    tables: tuple[str, ...] = ()
    warnings: list[str] | None = None


@dataclass
class GuardrailConfig:
    """Configuration for SQL guardrails."""

    max_result_rows: int = 100
    query_timeout_seconds: float = 5.0

    # Case-insensitive, word boundaries; matched outside string literals
    blocked_keywords: tuple[str, ...] = (
        "INSERT",
        "UPDATE",
        "DELETE",
        "DROP",
        "ALTER",
        "TRUNCATE",
        "CREATE",
        "GRANT",
        "REVOKE",
        "MERGE",
        "UPSERT",
        "INTO",  # SELECT ... INTO, INSERT INTO, COPY ... INTO
        "COPY",
        "ATTACH",
        "DETACH",
        "PRAGMA",
        "CALL",
        "EXEC",
        "EXECUTE",
        "SET",
        "RESET",
        "LOAD",
        "INSTALL",
        "EXPORT",
        "IMPORT",
        "VACUUM",
        "CHECKPOINT",
    )

    # (pattern, description) pairs matched outside string literals
    blocked_patterns: tuple[tuple[str, str], ...] = (
        (r"\bREPLACE\b(?!\s*\()", "REPLACE statement"),
        (r"\bgetenv\s*\(", "environment access"),
        (r"\bcurrent_setting\s*\(", "settings access"),
        (r"\bduckdb_\w+\s*\(", "system catalog function"),
        (r"\bread_\w+\s*\(", "file reader function"),
        (r"\$", "dollar-quoted string or parameter"),
        (r"\bE'", "escape string literal"),
    )

    allowed_prefixes: tuple[str, ...] = ("SELECT", "WITH")
    allowed_schemas: tuple[str, ...] = ("main",)
    system_schemas: tuple[str, ...] = ("information_schema", "pg_catalog")
    allowed: frozenset[str] = field(default_factory=allowed_tables)


DEFAULT_CONFIG = GuardrailConfig()


class _GuardViolation(Exception):
    pass


# ---------------------------------------------------------------------------
# Lexing
# ---------------------------------------------------------------------------

_LEX_RE = re.compile(r"'(?:[^']|'')*'|\"(?:[^\"]|\"\")*\"|--[^\n]*|/\*", re.DOTALL)
_TOKEN_RE = re.compile(
    r"'(?:[^']|'')*'|\"(?:[^\"]|\"\")*\"|[A-Za-z_][A-Za-z0-9_$]*|\d+(?:\.\d+)?|<>|!=|==|>=|<=|\S"
)


class _Tok(NamedTuple):
    value: str
    upper: str
    depth: int

    @property
    def is_string(self) -> bool:
        return self.value.startswith("'")

    @property
    def is_identifier(self) -> bool:
        return self.value.startswith('"') or bool(re.match(r"[A-Za-z_]", self.value))

    @property
    def name(self) -> str:
        """Identifier with quotes removed, lower-cased."""
        if self.value.startswith('"'):
            return self.value[1:-1].replace('""', '"').lower()
        return self.value.lower()

    @property
    def literal(self) -> str:
        return self.value[1:-1].replace("''", "'")


def _strip_comments(sql: str) -> tuple[str, bool]:
    """Drop line comments; report whether a block comment is present."""
    has_block = False

    def repl(match: re.Match) -> str:
        nonlocal has_block
        text = match.group(0)
        if text.startswith("--"):
            return " "
        if text == "/*":
            has_block = True
        return text

    return _LEX_RE.sub(repl, sql), has_block


def _remove_string_literals(sql: str) -> str:
    """Replace 'string' literals with '' so keywords inside them are ignored."""
    return re.sub(r"'(?:[^']|'')*'", "''", sql)


def _tokenize(sql: str) -> list[_Tok]:
    tokens: list[_Tok] = []
    depth = 0
    for value in _TOKEN_RE.findall(sql):
        if value == "(":
            tokens.append(_Tok(value, value, depth))
            depth += 1
        elif value == ")":
            depth = max(0, depth - 1)
            tokens.append(_Tok(value, value, depth))
        else:
            tokens.append(_Tok(value, value.upper(), depth))
    return tokens


def _skip_parens(tokens: list[_Tok], k: int) -> int:
    """Index just past the ')' closing the '(' at ``k``."""
    depth = tokens[k].depth
    k += 1
    while k < len(tokens) and not (tokens[k].value == ")" and tokens[k].depth == depth):
        k += 1
    return min(k + 1, len(tokens))


# ---------------------------------------------------------------------------
# Query blocks
# ---------------------------------------------------------------------------

_SET_OPERATORS = frozenset({"UNION", "INTERSECT", "EXCEPT"})
# EXTRACT(year FROM d), TRIM(x FROM y) and friends take FROM as argument syntax
_FROM_ARGUMENT_FUNCTIONS = frozenset({"EXTRACT", "TRIM", "SUBSTRING", "OVERLAY", "POSITION"})
_JOIN_WORDS = frozenset({
    "JOIN", "INNER", "LEFT", "RIGHT", "FULL", "OUTER", "CROSS", "NATURAL", "POSITIONAL",
    "ASOF", "ANTI", "SEMI",
})
_CLAUSE_WORDS = frozenset({
    "SELECT", "WHERE", "GROUP", "HAVING", "QUALIFY", "WINDOW", "ORDER", "LIMIT", "OFFSET", "FETCH",
})
_NOT_AN_ALIAS = _JOIN_WORDS | _CLAUSE_WORDS | _SET_OPERATORS | {"ON", "USING", "LATERAL", "TABLESAMPLE"}
# ON predicates of these joins restrict only the joined source
_ONE_SIDED_JOINS = frozenset({"LEFT", "SEMI", "ANTI"})
# ON predicates of these joins restrict nothing the block returns
_UNRESTRICTING_JOINS = frozenset({"RIGHT", "FULL", "CROSS", "NATURAL", "POSITIONAL", "ASOF"})

_CTE_RE = re.compile(
    r"(?:\bWITH\s+(?:RECURSIVE\s+)?|,)\s*(\"(?:[^\"]|\"\")*\"|[A-Za-z_]\w*)\s*"
    r"(?:\([^()]*\)\s*)?AS\s*(?:NOT\s+)?(?:MATERIALIZED\s*)?\(",
    re.IGNORECASE,
)


class _Source(NamedTuple):
    ref: str | None  # alias, or the table name when unaliased
    table: str | None  # None for subqueries and CTE references
    position: int


class _Predicate(NamedTuple):
    start: int
    end: int
    only_ref: str | None  # when set, the predicate may bind this source only


@dataclass
class _QueryBlock:
    depth: int
    sources: list[_Source] = field(default_factory=list)
    predicates: list[_Predicate] = field(default_factory=list)


def _cte_names(sql: str) -> set[str]:
    if not re.match(r"\s*WITH\b", sql, re.IGNORECASE):
        return set()
    return {name.strip('"').lower() for name in _CTE_RE.findall(sql)}


def _read_table_ref(tokens: list[_Tok], j: int, config: GuardrailConfig) -> tuple[str | None, int]:
    """Read one table reference at ``j``. Returns (name or None for a subquery, next index)."""
    if j < len(tokens) and tokens[j].upper == "LATERAL":
        j += 1
    if j >= len(tokens):
        return None, j
    tok = tokens[j]
    if tok.value == "(":
        return None, j
    if tok.is_string:
        raise _GuardViolation("Reading from files or string sources is not allowed")
    if not tok.is_identifier:
        raise _GuardViolation(f"Unrecognised table reference: {tok.value}")

    parts = [tok.name]
    j += 1
    while j + 1 < len(tokens) and tokens[j].value == "." and tokens[j + 1].is_identifier:
        parts.append(tokens[j + 1].name)
        j += 2
    if j < len(tokens) and tokens[j].value == "(":
        raise _GuardViolation(f"Table functions are not allowed: {'.'.join(parts)}")
    if len(parts) > 1 and any(p not in config.allowed_schemas for p in parts[:-1]):
        raise _GuardViolation(f"Schema-qualified table is not allowed: {'.'.join(parts)}")
    return parts[-1], j


def _read_alias(tokens: list[_Tok], k: int, end: int) -> tuple[str | None, int]:
    if k < end and tokens[k].upper == "AS":
        k += 1
    if k < end and tokens[k].is_identifier and tokens[k].upper not in _NOT_AN_ALIAS:
        alias = tokens[k].name
        k += 1
        if k < end and tokens[k].value == "(":  # column alias list
            k = _skip_parens(tokens, k)
        return alias, k
    return None, k


def _clause_end(tokens: list[_Tok], k: int, end: int, depth: int, stop: frozenset[str]) -> int:
    while k < end:
        tok = tokens[k]
        if tok.depth == depth and (tok.upper in stop or tok.value == ","):
            # LEFT(...) and RIGHT(...) are string functions
            if not (tok.upper in _JOIN_WORDS and k + 1 < end and tokens[k + 1].value == "("):
                break
        k += 1
    return k


def _groups(tokens: list[_Tok]):
    """Yield (start, end, depth) for the statement and every parenthesised group."""
    yield 0, len(tokens), 0
    for k, tok in enumerate(tokens):
        if tok.value != "(":
            continue
        if k > 0 and tokens[k - 1].upper in _FROM_ARGUMENT_FUNCTIONS:
            continue
        yield k + 1, _skip_parens(tokens, k) - 1, tok.depth + 1


def _runs(tokens: list[_Tok], start: int, end: int, depth: int):
    """Split a group into its set-operation branches."""
    run_start = start
    for k in range(start, end):
        if tokens[k].depth == depth and tokens[k].upper in _SET_OPERATORS:
            yield run_start, k
            run_start = k + 1
    yield run_start, end


def _parse_block(
    tokens: list[_Tok], start: int, end: int, depth: int, ctes: set[str], config: GuardrailConfig
) -> _QueryBlock | None:
    from_index = None
    for k in range(start, end):
        tok = tokens[k]
        if tok.depth != depth or tok.upper != "FROM":
            continue
        if k > 0 and tokens[k - 1].upper == "DISTINCT":  # IS [NOT] DISTINCT FROM
            continue
        if from_index is not None:
            raise _GuardViolation("Unexpected second FROM clause in one query block")
        from_index = k
    if from_index is None:
        return None

    block = _QueryBlock(depth)
    join_words: list[str] = []
    join_kind: set[str] = set()
    expect_source = True
    k = from_index + 1
    while k < end:
        tok = tokens[k]
        if expect_source:
            position = k
            name, k = _read_table_ref(tokens, k, config)
            if name is None and k < end and tokens[k].value == "(":
                k = _skip_parens(tokens, k)
            alias, k = _read_alias(tokens, k, end)
            table = name if name is not None and name not in ctes else None
            block.sources.append(_Source(alias or name, table, position))
            expect_source = False
            continue
        if tok.depth != depth:
            k += 1
            continue
        if tok.upper in _CLAUSE_WORDS:
            break
        if tok.value == ",":
            join_kind = {"CROSS"}
            expect_source = True
        elif tok.upper == "JOIN":
            join_kind = set(join_words)
            join_words = []
            expect_source = True
        elif tok.upper in _JOIN_WORDS:
            join_words.append(tok.upper)
        elif tok.upper == "ON":
            clause_end = _clause_end(tokens, k + 1, end, depth, _CLAUSE_WORDS | _JOIN_WORDS)
            one_sided = bool(join_kind & _ONE_SIDED_JOINS)
            joined = block.sources[-1].ref if one_sided else None
            if not join_kind & _UNRESTRICTING_JOINS and (joined is not None or not one_sided):
                block.predicates.append(_Predicate(k + 1, clause_end, joined))
            k = clause_end
            continue
        elif tok.value == "(":
            k = _skip_parens(tokens, k)
            continue
        k += 1

    for k in range(start, end):
        if tokens[k].depth == depth and tokens[k].upper == "WHERE":
            block.predicates.append(
                _Predicate(k + 1, _clause_end(tokens, k + 1, end, depth, _CLAUSE_WORDS), None)
            )
            break
    return block


def _query_blocks(tokens: list[_Tok], ctes: set[str], config: GuardrailConfig) -> list[_QueryBlock]:
    blocks: list[_QueryBlock] = []
    for start, end, depth in _groups(tokens):
        for run_start, run_end in _runs(tokens, start, end, depth):
            block = _parse_block(tokens, run_start, run_end, depth, ctes, config)
            if block is not None:
                blocks.append(block)
    return blocks


def _tables_of(blocks: list[_QueryBlock]) -> tuple[str, ...]:
    sources = sorted((s for b in blocks for s in b.sources if s.table), key=lambda s: s.position)
    found: list[str] = []
    for source in sources:
        if source.table not in found:
            found.append(source.table)
    return tuple(found)


def extract_tables(sql: str, config: GuardrailConfig | None = None) -> tuple[str, ...]:
    """Return the tables read by every query block, excluding CTE names.

    Raises ValueError for table functions, file sources or foreign schemas.
    """
    config = config or DEFAULT_CONFIG
    try:
        return _tables_of(_query_blocks(_tokenize(sql), _cte_names(sql), config))
    except _GuardViolation as e:
        raise ValueError(str(e)) from e


# ---------------------------------------------------------------------------
# Project scope
# ---------------------------------------------------------------------------

_BOOLEAN_BOUNDARY = frozenset({
    "WHERE", "ON", "HAVING", "GROUP", "ORDER", "LIMIT", "UNION", "INTERSECT", "EXCEPT",
    "SELECT", "FROM", "JOIN", "QUALIFY", "WINDOW", "USING", "WHEN", "THEN", "ELSE", "END",
})
_NON_EQUALITY_OPS = frozenset({"<>", "!=", "LIKE", "ILIKE", "GLOB", "SIMILAR", "NOT", ">", "<", ">=", "<=", "BETWEEN"})


class _Operand(NamedTuple):
    column: str | None = None
    qualifier: str | None = None
    literal: str | None = None


def _or_at_same_level(tokens: list[_Tok], i: int) -> bool:
    """True if the boolean expression holding tokens[i] has an OR at its own nesting level."""
    depth = tokens[i].depth
    for step in (-1, 1):
        k = i + step
        while 0 <= k < len(tokens):
            tok = tokens[k]
            if tok.depth < depth or (tok.depth == depth and tok.upper in _BOOLEAN_BOUNDARY):
                break
            if tok.depth == depth and tok.upper == "OR":
                return True
            k += step
    return False


def _is_column(tokens: list[_Tok], i: int, column: str) -> bool:
    tok = tokens[i]
    return tok.is_identifier and not tok.is_string and tok.name == column


def _in_list_literals(tokens: list[_Tok], k: int) -> list[str] | None:
    """Literals of ``IN ('a', 'b')`` starting at the '(' index, or None if not a literal list."""
    if k >= len(tokens) or tokens[k].value != "(":
        return None
    values: list[str] = []
    k += 1
    while k < len(tokens) and tokens[k].value != ")":
        tok = tokens[k]
        if tok.is_string:
            values.append(tok.literal)
        elif tok.value != ",":
            return None
        k += 1
    return values


def _check_project_literals(tokens: list[_Tok], project_id: str) -> str | None:
    """Reject predicates naming another project, non-equality filters and ORed filters."""
    matched: list[int] = []
    for i, tok in enumerate(tokens):
        nxt = tokens[i + 1] if i + 1 < len(tokens) else None
        if _is_column(tokens, i, "project_id") and nxt is not None:
            if nxt.upper in ("=", "=="):
                literal = tokens[i + 2] if i + 2 < len(tokens) else None
                if literal is not None and literal.is_string:
                    if literal.literal != project_id:
                        return f"Query filters on another project ('{literal.literal}')"
                    matched.append(i)
            elif nxt.upper in _NON_EQUALITY_OPS:
                return "Project filter must be an equality on the current project"
            elif nxt.upper == "IN":
                values = _in_list_literals(tokens, i + 2)
                if values:
                    others = [v for v in values if v != project_id]
                    if others:
                        return f"Query filters on another project ('{others[0]}')"
                    matched.append(i)
        elif tok.is_string and nxt is not None and nxt.upper in ("=", "=="):
            k = i + 2
            if k + 2 < len(tokens) and tokens[k + 1].value == ".":
                k += 2
            if k < len(tokens) and _is_column(tokens, k, "project_id"):
                if tok.literal != project_id:
                    return f"Query filters on another project ('{tok.literal}')"
                matched.append(k)

    for i in matched:
        if _or_at_same_level(tokens, i):
            return "Project filter must not be combined with OR at the same level"
    return None


def _operand(tokens: list[_Tok], k: int, end: int) -> tuple[_Operand | None, int]:
    if k >= end:
        return None, k
    tok = tokens[k]
    if tok.is_string:
        return _Operand(literal=tok.literal), k + 1
    if not tok.is_identifier:
        return None, k
    parts = [tok.name]
    k += 1
    while k + 1 < end and tokens[k].value == "." and tokens[k + 1].is_identifier:
        parts.append(tokens[k + 1].name)
        k += 2
    qualifier = parts[-2] if len(parts) > 1 else None
    return _Operand(column=parts[-1], qualifier=qualifier), k


def _comparison(tokens: list[_Tok], start: int, end: int) -> tuple[_Operand, _Operand] | None:
    """Parse ``a = b`` or ``col IN ('x')`` spanning exactly tokens[start:end]."""
    left, k = _operand(tokens, start, end)
    if left is None or k >= end:
        return None
    if tokens[k].upper in ("=", "=="):
        right, k = _operand(tokens, k + 1, end)
        if right is None or k != end:
            return None
        return left, right
    if tokens[k].upper == "IN" and left.column is not None:
        values = _in_list_literals(tokens, k + 1)
        if values and len(set(values)) == 1 and _skip_parens(tokens, k + 1) == end:
            return left, _Operand(literal=values[0])
    return None


def _and_comparisons(
    tokens: list[_Tok], start: int, end: int, depth: int
) -> list[tuple[_Operand, _Operand]]:
    """Comparisons that are top-level AND terms of the boolean expression in tokens[start:end].

    An OR at the expression's own level makes every term optional, so none is returned.
    """
    terms: list[tuple[int, int]] = []
    term_start = start
    case_depth = 0
    in_between = False
    for k in range(start, end):
        tok = tokens[k]
        if tok.depth != depth:
            continue
        if tok.upper == "CASE":
            case_depth += 1
        elif tok.upper == "END" and case_depth:
            case_depth -= 1
        elif case_depth:
            continue
        elif tok.upper == "OR":
            return []
        elif tok.upper == "BETWEEN":
            in_between = True
        elif tok.upper == "AND":
            if in_between:
                in_between = False
                continue
            terms.append((term_start, k))
            term_start = k + 1
    terms.append((term_start, end))

    comparisons: list[tuple[_Operand, _Operand]] = []
    for a, b in terms:
        if b - a >= 2 and tokens[a].value == "(" and _skip_parens(tokens, a) == b:
            comparisons.extend(_and_comparisons(tokens, a + 1, b - 1, depth + 1))
            continue
        comparison = _comparison(tokens, a, b)
        if comparison is not None:
            comparisons.append(comparison)
    return comparisons


def _scope_column(source: _Source) -> str | None:
    return SCHEMA[source.table].scope_column if source.table in SCHEMA else None


def _resolve(operand: _Operand, block: _QueryBlock, required: list[_Source]) -> _Source | None:
    if operand.qualifier is not None:
        return next((s for s in block.sources if s.ref == operand.qualifier), None)
    if operand.column == "id" and len(block.sources) != 1:
        return None
    candidates = [s for s in required if _scope_column(s) == operand.column]
    return candidates[0] if len(candidates) == 1 else None


def _propagates(source: _Source, source_column: str, target: _Source, target_column: str) -> bool:
    if target.table not in SCHEMA:
        return False
    if _scope_column(target) is None:
        return True
    return _scope_column(source) == source_column and _scope_column(target) == target_column


def _unbound_tables(tokens: list[_Tok], block: _QueryBlock, project_id: str) -> list[str]:
    required = [s for s in block.sources if s.table in SCHEMA and not SCHEMA[s.table].is_global]
    if not required:
        return []

    bound: set[str | None] = set()
    links: list[tuple[_Source, str, _Source, str, str | None]] = []
    for predicate in block.predicates:
        for left, right in _and_comparisons(tokens, predicate.start, predicate.end, block.depth):
            if left.literal is not None:
                left, right = right, left
            if left.column is None:
                continue
            if right.literal is not None:
                source = _resolve(left, block, required)
                if (
                    right.literal == project_id
                    and source is not None
                    and _scope_column(source) == left.column
                    and predicate.only_ref in (None, source.ref)
                ):
                    bound.add(source.ref)
                continue
            a = _resolve(left, block, required) if left.qualifier else None
            b = _resolve(right, block, required) if right.qualifier else None
            if a is not None and b is not None:
                links.append((a, left.column, b, right.column, predicate.only_ref))

    changed = True
    while changed:
        changed = False
        for a, col_a, b, col_b, only_ref in links:
            for src, src_col, dst, dst_col in ((a, col_a, b, col_b), (b, col_b, a, col_a)):
                if src.ref not in bound or dst.ref in bound or only_ref not in (None, dst.ref):
                    continue
                if _propagates(src, src_col, dst, dst_col):
                    bound.add(dst.ref)
                    changed = True
    return [s.table for s in required if s.ref not in bound]


def _check_project_scope(tokens: list[_Tok], blocks: list[_QueryBlock], project_id: str) -> str | None:
    reason = _check_project_literals(tokens, project_id)
    if reason:
        return reason
    for block in blocks:
        unbound = _unbound_tables(tokens, block, project_id)
        if unbound:
            return (
                f"Query is not scoped to project '{project_id}' "
                f"(missing project filter on {', '.join(dict.fromkeys(unbound))})"
            )
    return None


def check_project_scope(sql: str, project_id: str, config: GuardrailConfig | None = None) -> str | None:
    """Return a rejection reason, or None if every query block in ``sql`` is bound to ``project_id``."""
    config = config or DEFAULT_CONFIG
    tokens = _tokenize(sql)
    try:
        blocks = _query_blocks(tokens, _cte_names(sql), config)
    except _GuardViolation as e:
        return str(e)
    return _check_project_scope(tokens, blocks, project_id)


# ---------------------------------------------------------------------------
# Validation
# ---------------------------------------------------------------------------

def detect_dangerous_keywords(sql: str, config: GuardrailConfig | None = None) -> list[str]:
    """Return blocked keywords found outside string literals and quoted identifiers."""
    config = config or DEFAULT_CONFIG
    text = re.sub(r'"(?:[^"]|"")*"', '""', _remove_string_literals(sql)).upper()
    # Word boundaries keep UPDATED_AT from matching UPDATE.
    return [kw for kw in config.blocked_keywords if re.search(rf"\b{kw}\b", text)]


def detect_dangerous_patterns(sql: str, config: GuardrailConfig | None = None) -> str | None:
    config = config or DEFAULT_CONFIG
    text = _remove_string_literals(sql)
    for pattern, description in config.blocked_patterns:
        if re.search(pattern, text, re.IGNORECASE):
            return description
    return None


def validate_sql(
    sql: str,
    project_id: str | None = None,
    config: GuardrailConfig | None = None,
) -> ValidationResult:
    """Validate a generated SQL statement against the safety policy.

    Args:
        sql: SQL statement as generated
        project_id: Caller's project scope, or None for cross-project
        config: Optional guardrail configuration

    Returns:
        ValidationResult with is_valid, the rejection reason and referenced tables
    """
    config = config or DEFAULT_CONFIG

    if not sql or not sql.strip():
        return ValidationResult(is_valid=False, error="Empty SQL query")

    text, has_block_comment = _strip_comments(sql)
    if has_block_comment:
        return ValidationResult(is_valid=False, error="Block comments are not allowed")

    text = text.strip()
    if text.endswith(";"):
        text = text[:-1].rstrip()
    if ";" in _remove_string_literals(text):
        return ValidationResult(
            is_valid=False, error="Multiple statements detected (only a single SELECT is allowed)"
        )
    if not text:
        return ValidationResult(is_valid=False, error="Empty SQL query")

    match = re.match(r"[A-Za-z]+", text)
    first_word = match.group(0).upper() if match else text[:10]
    if first_word not in config.allowed_prefixes:
        return ValidationResult(
            is_valid=False,
            error=f"Only read-only SELECT queries are allowed (got {first_word})",
        )

    blocked = detect_dangerous_keywords(text, config)
    if blocked:
        return ValidationResult(is_valid=False, error=f"Blocked keyword(s) detected: {', '.join(blocked)}")

    pattern = detect_dangerous_patterns(text, config)
    if pattern:
        return ValidationResult(is_valid=False, error=f"Dangerous pattern detected: {pattern}")

    tokens = _tokenize(text)
    system = next(
        (t.name for t in tokens if t.is_identifier and not t.is_string and t.name in config.system_schemas),
        None,
    )
    if system:
        return ValidationResult(is_valid=False, error=f"System catalog access is not allowed: {system}")

    try:
        blocks = _query_blocks(tokens, _cte_names(text), config)
    except _GuardViolation as e:
        return ValidationResult(is_valid=False, error=str(e))
    tables = _tables_of(blocks)

    unknown = [t for t in tables if t not in config.allowed]
    if unknown:
        return ValidationResult(
            is_valid=False,
            error=f"Table(s) outside the allowed schema: {', '.join(unknown)}",
            tables=tables,
        )

    if project_id:
        reason = _check_project_scope(tokens, blocks, project_id)
        if reason:
            return ValidationResult(is_valid=False, error=reason, tables=tables)

    warnings = None
    if not re.search(r"\bLIMIT\s+\d+", text, re.IGNORECASE):
        warnings = [f"Query has no LIMIT clause; results are capped at {config.max_result_rows} rows"]

    return ValidationResult(is_valid=True, tables=tables, warnings=warnings)


def guard_sql(
    sql: str,
    project_id: str | None = None,
    config: GuardrailConfig | None = None,
) -> ValidationResult:
    """Validate and raise on rejection.

    Raises:
        UnsafeSqlRejected: If the statement violates the policy
    """
    result = validate_sql(sql, project_id, config)
    if not result.is_valid:
        raise UnsafeSqlRejected(result.error or "policy violation", sql=sql)
    return result
