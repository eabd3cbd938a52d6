"""Tests for pre-dispatch statement validation."""

from __future__ import annotations

import pytest

from dbgateway.errors import QueryValidationError
from dbgateway.models import Dialect
from dbgateway.validation import DiagnosticSeverity, QueryValidator, parse_document_query


@pytest.fixture
def validator() -> QueryValidator:
    return QueryValidator()


@pytest.mark.parametrize("dialect", [Dialect.POSTGRES, Dialect.MYSQL, Dialect.MONGODB])
def test_empty_statement_is_rejected(validator: QueryValidator, dialect: Dialect) -> None:
    with pytest.raises(QueryValidationError):
        validator.validate(dialect, "   ")


@pytest.mark.parametrize(
    "statement",
    ["DROP DATABASE app", "create   database other", "ALTER DATABASE app SET x = 1"],
)
def test_database_ddl_is_rejected(validator: QueryValidator, statement: str) -> None:
    with pytest.raises(QueryValidationError, match="not allowed"):
        validator.validate(Dialect.POSTGRES, statement)


def test_schema_ddl_is_rejected_on_mysql_only(validator: QueryValidator) -> None:
    with pytest.raises(QueryValidationError):
        validator.validate(Dialect.MYSQL, "DROP SCHEMA app")

    assert validator.validate(Dialect.POSTGRES, "CREATE SCHEMA reporting") == ()


def test_keywords_inside_literals_are_ignored(validator: QueryValidator) -> None:
    assert validator.validate(Dialect.POSTGRES, "SELECT 'drop database x' AS note") == ()


def test_backticks_are_rejected_on_postgres(validator: QueryValidator) -> None:
    with pytest.raises(QueryValidationError, match="Backtick"):
        validator.validate(Dialect.POSTGRES, "SELECT `id` FROM `users`")

    assert validator.validate(Dialect.POSTGRES, 'SELECT "id" FROM "users" WHERE note = \'`x`\'') == ()


def test_double_quoted_identifiers_are_rejected_on_mysql(validator: QueryValidator) -> None:
    with pytest.raises(QueryValidationError, match="backticks"):
        validator.validate(Dialect.MYSQL, 'SELECT "name" FROM "users"')


def test_double_quoted_strings_are_allowed_on_mysql(validator: QueryValidator) -> None:
    assert validator.validate(Dialect.MYSQL, 'SELECT id FROM `users` WHERE name = "bob"') == ()
    assert validator.validate(Dialect.MYSQL, "SELECT `id` FROM `users`") == ()


def test_unfiltered_delete_and_update_warn(validator: QueryValidator) -> None:
    warnings = validator.validate(Dialect.POSTGRES, "DELETE FROM accounts")

    assert warnings == ("DELETE statement is missing a WHERE clause.",)
    assert validator.validate(Dialect.MYSQL, "UPDATE accounts SET status = 'x' WHERE id = 1") == ()
    assert "UPDATE statement is missing a WHERE clause." in validator.validate(
        Dialect.MYSQL, "UPDATE accounts SET status = 'x'"
    )


def test_destructive_statements_warn(validator: QueryValidator) -> None:
    diagnostics = validator.check(Dialect.POSTGRES, "TRUNCATE accounts")

    assert [item.severity for item in diagnostics] == [DiagnosticSeverity.WARNING]


def test_validation_error_carries_warnings(validator: QueryValidator) -> None:
    with pytest.raises(QueryValidationError) as excinfo:
        validator.validate(Dialect.POSTGRES, "DROP TABLE `users`")

    assert excinfo.value.warnings == ("DROP TABLE permanently removes data.",)


def test_sql_is_rejected_for_mongodb(validator: QueryValidator) -> None:
    with pytest.raises(QueryValidationError, match="JSON"):
        validator.validate(Dialect.MONGODB, "SELECT * FROM people")


def test_document_find_command_is_parsed() -> None:
    query = parse_document_query(
        '{"collection": "people", "filter": {"age": {"$gt": 30}}, "sort": {"age": -1}, "limit": 5}'
    )

    assert query.collection == "people"
    assert query.filter == {"age": {"$gt": 30}}
    assert query.sort == {"age": -1}
    assert query.limit == 5
    assert query.pipeline is None


def test_document_pipeline_and_extended_json() -> None:
    query = parse_document_query(
        '{"collection": "people", "pipeline": [{"$match": {"_id": {"$oid": "65a000000000000000000000"}}}]}'
    )

    assert query.pipeline is not None
    assert str(query.pipeline[0]["$match"]["_id"]) == "65a000000000000000000000"


@pytest.mark.parametrize(
    "text",
    [
        "[1, 2]",
        '{"filter": {}}',
        '{"collection": "people", "limit": -1}',
        '{"collection": "people", "sort": {"age": 2}}',
        '{"collection": "people", "pipeline": {}}',
        '{"collection": "people", "update": {}}',
    ],
)
def test_malformed_document_commands_are_rejected(text: str) -> None:
    with pytest.raises(QueryValidationError):
        parse_document_query(text)
