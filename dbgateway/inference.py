"""Column type inference for schemaless document samples."""

from __future__ import annotations

from datetime import date, datetime
from decimal import Decimal
from typing import Any, Iterable, Literal, Mapping

from .models import ColumnDescriptor

SchemaMode = Literal["first", "union"]


def classify_value(value: Any) -> str:
    """Name the runtime shape of a document value."""

    if value is None:
        return "null"
    if isinstance(value, bool):
        return "boolean"
    if isinstance(value, (int, float, Decimal)):
        return "number"
    if isinstance(value, str):
        return "string"
    if isinstance(value, (list, tuple)):
        return "array"
    if isinstance(value, Mapping):
        return "object"
    if isinstance(value, (datetime, date)):
        return "date"
    name = type(value).__name__
    if name == "ObjectId":
        return "objectId"
    if name == "Decimal128":
        return "number"
    return name


def infer_document_columns(
    documents: Iterable[Mapping[str, Any]],
    mode: SchemaMode = "first",
) -> tuple[ColumnDescriptor, ...]:
    """Infer a column list from sampled documents.

    ``first`` reads only the first document, so fields that appear later in
    the sample are absent. ``union`` walks the whole sample and types each
    field from the first document that contains it.
    """

    columns: dict[str, ColumnDescriptor] = {}
    for document in documents:
        if document is None:
            continue
        for key, value in document.items():
            if key not in columns:
                columns[key] = ColumnDescriptor(name=str(key), data_type=classify_value(value))
        if mode == "first":
            break
    return tuple(columns.values())


__all__ = ["SchemaMode", "classify_value", "infer_document_columns"]
