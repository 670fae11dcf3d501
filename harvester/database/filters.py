"""Catalog filter objects and their translation to SQL.

Filters use the catalog's query dialect: a JSON object mapping field names to
either a literal (equality) or an operator object such as
``{"$in": [...]}``, plus the logical keys ``$or`` and ``$and`` holding lists
of sub-filters. Separate filters are combined with :func:`merge_filters` and
turned into a parameterised WHERE clause with :func:`compile_filter`.
"""

import json
from typing import Any

from harvester.database.models import CATALOG_COLUMNS
from harvester.processor.exceptions import CatalogError

Filter = dict[str, Any]

_COMPARISONS = {"$lt": "<", "$lte": "<=", "$gt": ">", "$gte": ">="}


def parse_filter(text: str) -> Filter:
    """Parse a caller-supplied JSON filter. Blank text is an empty filter."""
    if not text.strip():
        return {}
    try:
        value = json.loads(text)
    except json.JSONDecodeError as exc:
        raise CatalogError(f"Query filter is not valid JSON: {exc}") from exc
    if not isinstance(value, dict):
        raise CatalogError("Query filter must be a JSON object")
    return value


def merge_filters(*filters: Filter | None) -> Filter:
    """AND filters together by field union.

    A field constrained by more than one filter keeps its first constraint at
    the top level and the rest move under ``$and``.
    """
    merged: Filter = {}
    extra: list[Filter] = []
    for filter_ in filters:
        for key, value in (filter_ or {}).items():
            if key == "$and":
                extra.extend(value)
            elif key in merged:
                extra.append({key: value})
            else:
                merged[key] = value
    if extra:
        merged["$and"] = extra
    return merged


def compile_filter(filter_: Filter) -> tuple[str, list[Any]]:
    """Translate a filter into a SQL boolean expression and its parameters."""
    clauses: list[str] = []
    params: list[Any] = []
    for key, condition in filter_.items():
        if key in ("$or", "$and"):
            if not isinstance(condition, list):
                raise CatalogError(f"{key} expects a list of filters")
            parts = [compile_filter(sub) for sub in condition]
            if not parts:
                continue
            joiner = " OR " if key == "$or" else " AND "
            clauses.append("(" + joiner.join(f"({sql})" for sql, _ in parts) + ")")
            for _, sub_params in parts:
                params.extend(sub_params)
        else:
            clauses.extend(_compile_field(_column(key), condition, params))
    return (" AND ".join(clauses) or "TRUE"), params


def _column(field_name: str) -> str:
    column = CATALOG_COLUMNS.get(field_name)
    if column is None:
        raise CatalogError(f"Unknown catalog field in filter: {field_name}")
    return column


def _compile_field(column: str, condition: Any, params: list[Any]) -> list[str]:
    if not isinstance(condition, dict):
        if condition is None:
            return [f"{column} IS NULL"]
        params.append(condition)
        return [f"{column} = %s"]

    clauses: list[str] = []
    for operator, operand in condition.items():
        if operator in _COMPARISONS:
            params.append(operand)
            clauses.append(f"{column} {_COMPARISONS[operator]} %s")
        elif operator == "$in":
            params.append(list(operand))
            clauses.append(f"{column} = ANY(%s)")
        elif operator == "$nin":
            params.append(list(operand))
            clauses.append(f"({column} IS NULL OR NOT ({column} = ANY(%s)))")
        elif operator == "$ne":
            params.append(operand)
            clauses.append(f"{column} IS DISTINCT FROM %s")
        elif operator == "$exists":
            clauses.append(f"{column} IS {'NOT ' if operand else ''}NULL")
        else:
            raise CatalogError(f"Unsupported filter operator: {operator}")
    return clauses
