"""
query.py
--------
OData filter builders and query descriptors for table queries.
"""

import uuid
from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from typing import Any, Generic, TypeVar

T = TypeVar("T")

_INT32_MIN = -(2 ** 31)
_INT32_MAX = 2 ** 31 - 1


class QueryComparisons:
    EQUAL                 = "eq"
    NOT_EQUAL             = "ne"
    GREATER_THAN          = "gt"
    GREATER_THAN_OR_EQUAL = "ge"
    LESS_THAN             = "lt"
    LESS_THAN_OR_EQUAL    = "le"


class TableOperators:
    AND = "and"
    OR  = "or"
    NOT = "not"


_COMPARISONS = {
    QueryComparisons.EQUAL,
    QueryComparisons.NOT_EQUAL,
    QueryComparisons.GREATER_THAN,
    QueryComparisons.GREATER_THAN_OR_EQUAL,
    QueryComparisons.LESS_THAN,
    QueryComparisons.LESS_THAN_OR_EQUAL,
}

# ------------------------------------------------------------------
# Filter Builders
# ------------------------------------------------------------------

def _format_literal(value: Any) -> str:
    """Renders a Python value as an OData literal."""
    if isinstance(value, str):
        return "'" + value.replace("'", "''") + "'"
    # bool before int: bool is an int subclass
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, int):
        if _INT32_MIN <= value <= _INT32_MAX:
            return str(value)
        return f"{value}L"
    if isinstance(value, float):
        return str(value)
    if isinstance(value, datetime):
        if value.tzinfo is None:
            value = value.replace(tzinfo=timezone.utc)
        value = value.astimezone(timezone.utc)
        return f"datetime'{value.strftime('%Y-%m-%dT%H:%M:%S.%fZ')}'"
    if isinstance(value, uuid.UUID):
        return f"guid'{value}'"
    if isinstance(value, (bytes, bytearray)):
        return f"X'{bytes(value).hex()}'"
    raise TypeError(f"Unsupported filter value type: {type(value).__name__}")


def generate_filter_condition(property_name: str, operation: str, value: Any) -> str:
    """Builds ``<property> <op> <literal>``, e.g. ``Author eq 'Tanaka'``."""
    if operation not in _COMPARISONS:
        raise ValueError(f"Unknown comparison operator: '{operation}'")
    return f"{property_name} {operation} {_format_literal(value)}"


def combine_filters(left: str, operator: str, right: str) -> str:
    """Joins two filter expressions with ``and``/``or``."""
    if operator not in (TableOperators.AND, TableOperators.OR):
        raise ValueError(f"Unknown table operator: '{operator}'")
    return f"({left}) {operator} ({right})"


def negate_filter(condition: str) -> str:
    return f"{TableOperators.NOT} ({condition})"

# ------------------------------------------------------------------
# Query Descriptors
# ------------------------------------------------------------------

@dataclass(frozen=True)
class TableQuery:
    """
    A table query: an optional filter, projection and page size.

    ``filter=None`` selects every entity in the table. ``parameters`` binds
    ``@name`` placeholders in the filter; the SDK renders their literals.
    """
    filter:     str | None            = None
    parameters: dict[str, Any] | None = None
    select:     list[str] | None      = None
    take:       int | None            = None

    def where(self, filter: str) -> "TableQuery":
        return replace(self, filter=filter)


@dataclass
class TableQuerySegment(Generic[T]):
    """One page of query results and the token for the next page."""
    results:            list[T] = field(default_factory=list)
    continuation_token: Any     = None
