"""
az_table_storage
----------------
A generic, asynchronous Azure Table Storage client for pydantic records.
"""

__version__ = "1.0.0"

from .az_table_storage import TableStorageService
from .entity import TableEntity
from .query import (
    QueryComparisons,
    TableOperators,
    TableQuery,
    TableQuerySegment,
    combine_filters,
    generate_filter_condition,
    negate_filter,
)

__all__ = [
    "__version__",
    "TableStorageService",
    "TableEntity",
    "TableQuery",
    "TableQuerySegment",
    "QueryComparisons",
    "TableOperators",
    "generate_filter_condition",
    "combine_filters",
    "negate_filter",
]
