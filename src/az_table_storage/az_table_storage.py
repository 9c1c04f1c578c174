"""
az_table_storage.py
-------------------
Generic asynchronous Azure Table Storage client for one record type.
"""

import logging
import os
from typing import Any, Generic, TypeVar

from azure.core import MatchConditions
from azure.core.exceptions import ResourceNotFoundError
from azure.data.tables import UpdateMode
from azure.data.tables.aio import TableClient, TableServiceClient

from .entity import TableEntity
from .query import QueryComparisons, TableQuery, TableQuerySegment, generate_filter_condition

logger = logging.getLogger(__name__)

T = TypeVar("T", bound=TableEntity)

# ------------------------------------------------------------------
# Environment Helper
# ------------------------------------------------------------------

def _get_env(name: str, default: str | None = None) -> str:
    """Helper to fetch environment variables or raise an error."""
    value = os.environ.get(name)
    if not value:
        if default is not None:
            return default
        raise EnvironmentError(f"Required environment variable '{name}' is not set.")
    return value

# ------------------------------------------------------------------
# Public Client Class
# ------------------------------------------------------------------

class TableStorageService(Generic[T]):
    """
    Reads and writes records of one ``TableEntity`` subclass in one table.

    The table is created on first read or write. ``is_exist`` and
    ``delete_table`` never create it. Backend errors from
    ``azure.core.exceptions`` are raised unchanged.
    """

    def __init__(self,
        entity_type:       type[T],
        connection_string: str | None = None,
        table_name:        str | None = None,
        *,
        results_per_page:  int | None = None,
    ) -> None:
        self.entity_type        = entity_type
        self.table_name         = table_name or entity_type.resolve_table_name()
        self.results_per_page   = results_per_page
        self._connection_string = connection_string or _get_env("AZURE_STORAGE_CONNECTION_STRING")

        self._service: TableServiceClient | None = None
        self._table:   TableClient | None        = None

    async def __aenter__(self) -> "TableStorageService[T]":
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.close()

    async def close(self) -> None:
        """Closes the underlying HTTP transport."""
        if self._service is not None:
            await self._service.close()
        self._service = None
        self._table   = None

    # --------------------------------------------------------------
    # Queries
    # --------------------------------------------------------------

    async def get_list(self,
        query: TableQuery | str | None = None,
        *,
        partition_key: str | None = None,
    ) -> list[T]:
        """
        Returns every record matching ``query``, or the whole table.

        A positional string is an OData filter, not a partition key: use
        ``get_list(partition_key="1")`` to read one partition. All result
        pages are fetched before returning.
        """
        if partition_key is not None:
            if query is not None:
                raise ValueError("get_list: pass either a query or a partition_key, not both.")
            return await self.get_list_by_partition(partition_key)
        return await self._drain(self._as_query(query))

    async def get_list_by_partition(self, partition_key: str) -> list[T]:
        condition = generate_filter_condition("PartitionKey", QueryComparisons.EQUAL, partition_key)
        return await self._drain(TableQuery(filter=condition))

    async def get_segment(self,
        query: TableQuery | str | None = None,
        continuation_token: Any = None,
    ) -> TableQuerySegment[T]:
        """Fetches a single page; pass its token back in for the next one."""
        table = await self._ensure_table()
        return await self._execute_segment(table, self._as_query(query), continuation_token)

    async def get_item(self, partition_key: str, row_key: str) -> T | None:
        table = await self._ensure_table()
        try:
            entity = await table.get_entity(partition_key=partition_key, row_key=row_key)
        except ResourceNotFoundError:
            return None
        return self.entity_type.from_entity(entity)

    # --------------------------------------------------------------
    # Writes
    # --------------------------------------------------------------

    async def insert(self, item: T) -> None:
        """Creates the record. Raises ``ResourceExistsError`` on a duplicate key."""
        table = await self._ensure_table()
        await table.create_entity(entity=item.to_entity())

    async def update(self, item: T) -> None:
        """Replaces the record, or creates it. The record's etag is not checked."""
        table = await self._ensure_table()
        await table.upsert_entity(entity=item.to_entity(), mode=UpdateMode.REPLACE)

    async def delete(self, partition_key: str, row_key: str) -> None:
        """
        Deletes the record, conditional on the etag it currently has.

        Raises ``ResourceNotFoundError`` if there is no such record, and
        ``ResourceModifiedError`` if it changes between lookup and delete.
        """
        item = await self.get_item(partition_key, row_key)
        if item is None:
            raise ResourceNotFoundError(
                f"Entity ('{partition_key}', '{row_key}') does not exist in table '{self.table_name}'."
            )
        table = await self._ensure_table()
        await table.delete_entity(
            partition_key=partition_key,
            row_key=row_key,
            etag=item.etag,
            match_condition=MatchConditions.IfNotModified,
        )

    # --------------------------------------------------------------
    # Table Lifecycle
    # --------------------------------------------------------------

    async def is_exist(self) -> bool:
        tables = self._get_service().query_tables(
            "TableName eq @name", parameters={"name": self.table_name}
        )
        async for _ in tables:
            return True
        return False

    async def delete_table(self) -> None:
        """Deletes the table. The SDK treats a missing table as already deleted."""
        self._table = None
        await self._get_service().delete_table(self.table_name)
        logger.debug("Deleted table '%s'", self.table_name)

    # --------------------------------------------------------------
    # Internals
    # --------------------------------------------------------------

    def _get_service(self) -> TableServiceClient:
        if self._service is None:
            self._service = TableServiceClient.from_connection_string(self._connection_string)
        return self._service

    async def _ensure_table(self) -> TableClient:
        if self._table is None:
            self._table = await self._get_service().create_table_if_not_exists(self.table_name)
            logger.debug("Ensured table '%s'", self.table_name)
        return self._table

    @staticmethod
    def _as_query(query: TableQuery | str | None) -> TableQuery:
        if query is None:
            return TableQuery()
        if isinstance(query, str):
            return TableQuery(filter=query)
        return query

    async def _execute_segment(self,
        table: TableClient,
        query: TableQuery,
        continuation_token: Any,
    ) -> TableQuerySegment[T]:
        page_size = query.take or self.results_per_page
        if query.filter:
            entities = table.query_entities(
                query.filter,
                parameters=query.parameters,
                select=query.select,
                results_per_page=page_size,
            )
        else:
            entities = table.list_entities(select=query.select, results_per_page=page_size)

        pages = entities.by_page(continuation_token=continuation_token)
        page  = await anext(pages)
        results = [self.entity_type.from_entity(entity) async for entity in page]
        return TableQuerySegment(results, pages.continuation_token)

    async def _drain(self, query: TableQuery) -> list[T]:
        """Follows continuation tokens until the backend stops returning one."""
        table   = await self._ensure_table()
        results: list[T] = []
        pages   = 0

        continuation_token = None
        while True:
            segment = await self._execute_segment(table, query, continuation_token)
            results.extend(segment.results)
            continuation_token = segment.continuation_token
            pages += 1
            if not continuation_token:
                break

        logger.debug("Read %d entities in %d page(s) from '%s'", len(results), pages, self.table_name)
        return results
