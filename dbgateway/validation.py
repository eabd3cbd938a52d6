"""Pre-dispatch checks for caller-supplied statements.

The checks are advisory rather than a full grammar: statements that sqlglot
cannot parse are still dispatched unless a textual rule rejects them.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from enum import Enum
from typing import Any, Mapping

from bson import json_util
from sqlglot import exp, parse
from sqlglot.errors import ParseError, TokenError

from .errors import QueryValidationError
from .models import Dialect


class DiagnosticSeverity(str, Enum):
    """Severity levels for validation feedback."""

    WARNING = "warning"
    ERROR = "error"


@dataclass(slots=True)
class Diagnostic:
    """Represents an issue discovered while validating."""

    message: str
    severity: DiagnosticSeverity


@dataclass(frozen=True, slots=True)
class DocumentQuery:
    """Parsed MongoDB command: a find or an aggregation pipeline."""

    collection: str
    filter: Mapping[str, Any]
    projection: Mapping[str, Any] | None = None
    sort: Mapping[str, int] | None = None
    limit: int | None = None
    pipeline: tuple[Mapping[str, Any], ...] | None = None


_SQLGLOT_DIALECTS = {Dialect.POSTGRES: "postgres", Dialect.MYSQL: "mysql"}

_STRING_LITERAL = re.compile(r"'(?:[^']|'')*'")
_DOUBLE_QUOTED = re.compile(r'"(?:[^"]|"")*"')
_COMMENTS = re.compile(r"--[^\n]*|/\*.*?\*/", re.DOTALL)

_DATABASE_DDL = re.compile(r"\b(CREATE|ALTER|DROP)\s+DATABASE\b", re.IGNORECASE)
_DATABASE_OR_SCHEMA_DDL = re.compile(r"\b(CREATE|ALTER|DROP)\s+(DATABASE|SCHEMA)\b", re.IGNORECASE)
_DESTRUCTIVE = re.compile(r"\b(DROP\s+TABLE|TRUNCATE)\b", re.IGNORECASE)

# Used when sqlglot cannot tokenize the statement.
_DOUBLE_QUOTED_NAME = re.compile(
    r'(?:\b(?:from|join|into|update|table)\s+|\.\s*)"([^"]+)"|"([^"]+)"\s*\.',
    re.IGNORECASE,
)

_FIND_KEYS = frozenset({"collection", "filter", "projection", "sort", "limit"})
_AGGREGATE_KEYS = frozenset({"collection", "pipeline"})


class QueryValidator:
    """Reject dangerous or dialect-mismatched statements before dispatch."""

    def validate(self, dialect: Dialect, statement: str) -> tuple[str, ...]:
        """Return warning messages; raise ``QueryValidationError`` on errors."""

        diagnostics = self.check(dialect, statement)
        warnings = tuple(item.message for item in diagnostics if item.severity is DiagnosticSeverity.WARNING)
        for item in diagnostics:
            if item.severity is DiagnosticSeverity.ERROR:
                raise QueryValidationError(item.message, warnings)
        return warnings

    def check(self, dialect: Dialect, statement: str) -> list[Diagnostic]:
        if not statement or not statement.strip():
            return [Diagnostic("Query is empty.", DiagnosticSeverity.ERROR)]
        if dialect is Dialect.MONGODB:
            try:
                parse_document_query(statement)
            except QueryValidationError as exc:
                return [Diagnostic(str(exc), DiagnosticSeverity.ERROR)]
            return []
        return self._check_sql(dialect, statement)

    def _check_sql(self, dialect: Dialect, statement: str) -> list[Diagnostic]:
        diagnostics: list[Diagnostic] = []
        cleaned = _COMMENTS.sub(" ", _STRING_LITERAL.sub("''", statement))

        ddl = _DATABASE_OR_SCHEMA_DDL if dialect is Dialect.MYSQL else _DATABASE_DDL
        match = ddl.search(cleaned)
        if match:
            keyword = " ".join(match.group(0).upper().split())
            diagnostics.append(
                Diagnostic(f"{keyword} statements are not allowed.", DiagnosticSeverity.ERROR)
            )

        if dialect is Dialect.POSTGRES and "`" in _DOUBLE_QUOTED.sub('""', cleaned):
            diagnostics.append(
                Diagnostic(
                    "Backtick-quoted identifiers are MySQL syntax; use double quotes for PostgreSQL.",
                    DiagnosticSeverity.ERROR,
                )
            )
        if dialect is Dialect.MYSQL:
            names = _double_quoted_identifiers(statement, cleaned)
            if names:
                diagnostics.append(
                    Diagnostic(
                        f"Double-quoted identifier {names[0]!r} is PostgreSQL syntax; use backticks for MySQL.",
                        DiagnosticSeverity.ERROR,
                    )
                )

        destructive = _DESTRUCTIVE.search(cleaned)
        if destructive:
            keyword = " ".join(destructive.group(0).upper().split())
            diagnostics.append(
                Diagnostic(f"{keyword} permanently removes data.", DiagnosticSeverity.WARNING)
            )
        diagnostics.extend(_missing_where(dialect, statement))
        return diagnostics


def _missing_where(dialect: Dialect, statement: str) -> list[Diagnostic]:
    try:
        expressions = parse(statement, read=_SQLGLOT_DIALECTS[dialect])
    except (ParseError, TokenError):
        return []
    diagnostics: list[Diagnostic] = []
    for expression in expressions:
        if isinstance(expression, exp.Delete) and not expression.args.get("where"):
            diagnostics.append(
                Diagnostic("DELETE statement is missing a WHERE clause.", DiagnosticSeverity.WARNING)
            )
        if isinstance(expression, exp.Update) and not expression.args.get("where"):
            diagnostics.append(
                Diagnostic("UPDATE statement is missing a WHERE clause.", DiagnosticSeverity.WARNING)
            )
    return diagnostics


def _double_quoted_identifiers(statement: str, cleaned: str) -> list[str]:
    if '"' not in cleaned:
        return []
    try:
        expressions = parse(statement, read="postgres")
    except (ParseError, TokenError):
        return [first or second for first, second in _DOUBLE_QUOTED_NAME.findall(cleaned)]
    names: list[str] = []
    for expression in expressions:
        if expression is None:
            continue
        for identifier in expression.find_all(exp.Identifier):
            if identifier.quoted and not _is_string_position(identifier):
                names.append(identifier.name)
    return names


def _is_string_position(identifier: exp.Identifier) -> bool:
    """Whether MySQL would read this double-quoted token as a plain string."""

    parent = identifier.parent
    if isinstance(parent, exp.Alias):
        return True
    if not isinstance(parent, exp.Column) or parent.args.get("table") is not None:
        return False
    holder = parent.parent
    if isinstance(holder, exp.Binary):
        return holder.args.get("expression") is parent
    if isinstance(holder, exp.In):
        return parent in holder.expressions
    return isinstance(holder, exp.Tuple) and isinstance(holder.parent, exp.Values)


def parse_document_query(text: str) -> DocumentQuery:
    """Parse a MongoDB extended-JSON command into a ``DocumentQuery``."""

    if not text or not text.strip():
        raise QueryValidationError("Query is empty.")
    try:
        payload = json_util.loads(text)
    except (ValueError, TypeError) as exc:
        raise QueryValidationError(f"MongoDB queries must be a JSON command: {exc}") from exc
    if not isinstance(payload, dict):
        raise QueryValidationError("MongoDB queries must be a JSON object.")

    collection = payload.get("collection")
    if not isinstance(collection, str) or not collection:
        raise QueryValidationError("MongoDB queries need a non-empty 'collection'.")

    if "pipeline" in payload:
        unknown = set(payload) - _AGGREGATE_KEYS
        if unknown:
            raise QueryValidationError(f"Unsupported keys for an aggregation: {', '.join(sorted(unknown))}")
        pipeline = payload["pipeline"]
        if not isinstance(pipeline, list) or not all(isinstance(stage, dict) for stage in pipeline):
            raise QueryValidationError("'pipeline' must be a list of stage objects.")
        return DocumentQuery(collection=collection, filter={}, pipeline=tuple(pipeline))

    unknown = set(payload) - _FIND_KEYS
    if unknown:
        raise QueryValidationError(f"Unsupported query keys: {', '.join(sorted(unknown))}")
    filter_ = payload.get("filter", {})
    projection = payload.get("projection")
    sort = payload.get("sort")
    limit = payload.get("limit")
    if not isinstance(filter_, dict):
        raise QueryValidationError("'filter' must be an object.")
    if projection is not None and not isinstance(projection, dict):
        raise QueryValidationError("'projection' must be an object.")
    if sort is not None:
        if not isinstance(sort, dict) or any(value not in (1, -1) for value in sort.values()):
            raise QueryValidationError("'sort' must map field names to 1 or -1.")
    if limit is not None and (isinstance(limit, bool) or not isinstance(limit, int) or limit < 0):
        raise QueryValidationError("'limit' must be a non-negative integer.")
    return DocumentQuery(
        collection=collection,
        filter=filter_,
        projection=projection,
        sort=sort,
        limit=limit,
    )


__all__ = [
    "Diagnostic",
    "DiagnosticSeverity",
    "DocumentQuery",
    "QueryValidator",
    "parse_document_query",
]
