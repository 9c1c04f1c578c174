"""
entity.py
---------
Pydantic base model for records stored in an Azure table.
"""

from datetime import datetime
from typing import Any, ClassVar, Mapping

from azure.data.tables import EdmType, EntityProperty
from pydantic import BaseModel, ConfigDict, Field

# Properties owned by the service; never sent back on writes.
_SERVICE_FIELDS = {"timestamp", "etag"}

_INT32_MIN = -(2 ** 31)
_INT32_MAX = 2 ** 31 - 1


def _to_stored_value(value: Any) -> Any:
    """Tags ints beyond Int32 as Int64; the SDK writes a plain int as Int32."""
    if isinstance(value, int) and not isinstance(value, bool):
        if not _INT32_MIN <= value <= _INT32_MAX:
            return EntityProperty(value, EdmType.INT64)
    return value


class TableEntity(BaseModel):
    """
    Base class for a table record.

    Subclasses declare their own scalar attributes as pydantic fields.
    Every field needs a default so that projected query results (``select``)
    and freshly materialized records can be built without arguments.
    """

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    # Overrides the table name, which otherwise is the class name.
    table_name: ClassVar[str | None] = None

    partition_key: str             = Field(default="", alias="PartitionKey")
    row_key:       str             = Field(default="", alias="RowKey")
    timestamp:     datetime | None = Field(default=None, alias="Timestamp")
    etag:          str | None      = None

    @classmethod
    def resolve_table_name(cls) -> str:
        return cls.table_name or cls.__name__

    def to_entity(self) -> dict[str, Any]:
        """Returns the properties to write, keyed by their stored names."""
        properties = self.model_dump(by_alias=True, exclude=_SERVICE_FIELDS, exclude_none=True)
        return {key: _to_stored_value(value) for key, value in properties.items()}

    @classmethod
    def from_entity(cls, entity: Mapping[str, Any]):
        """Builds a record from an entity returned by the SDK."""
        data = {
            key: value.value if isinstance(value, EntityProperty) else value
            for key, value in entity.items()
        }
        metadata = getattr(entity, "metadata", None) or {}
        data["Timestamp"] = metadata.get("timestamp", data.get("Timestamp"))
        data["etag"]      = metadata.get("etag", data.get("etag"))
        return cls.model_validate(data)
