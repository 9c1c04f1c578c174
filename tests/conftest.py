"""
Fixtures for the table storage tests.

The aio SDK clients are replaced with an in-memory fake that serves query
results in fixed-size pages with continuation tokens.
"""

import itertools
import re
from datetime import datetime, timezone
from unittest import mock

import pytest
from azure.core import MatchConditions
from azure.core.exceptions import ResourceExistsError, ResourceModifiedError, ResourceNotFoundError

from az_table_storage import TableEntity, TableStorageService

CONNECTION_STRING = "UseDevelopmentStorage=true"

_CONDITION = re.compile(r"^(\w+) (eq|ne) '((?:[^']|'')*)'$")


class Blog(TableEntity):
    BlogId: int        = 0
    Name:   str | None = None
    Author: str | None = None


class FakeEntity(dict):
    def __init__(self, properties, metadata):
        super().__init__(properties)
        self.metadata = metadata


class FakePage:
    def __init__(self, entities):
        self._entities = entities

    async def __aiter__(self):
        for entity in self._entities:
            yield entity


class FakePageIterator:
    """Mimics ``AsyncPageIterator``: first call always hits the backend."""

    def __init__(self, entities, page_size, continuation_token):
        self._entities = entities
        self._page_size = page_size or max(len(entities), 1)
        self._offset = continuation_token["NextOffset"] if continuation_token else 0
        self._did_a_call = False
        self.continuation_token = continuation_token

    def __aiter__(self):
        return self

    async def __anext__(self):
        if self._did_a_call and not self.continuation_token:
            raise StopAsyncIteration
        self._did_a_call = True
        page = self._entities[self._offset:self._offset + self._page_size]
        self._offset += len(page)
        if self._offset < len(self._entities):
            self.continuation_token = {"NextOffset": self._offset}
        else:
            self.continuation_token = None
        return FakePage(page)


class FakePaged:
    def __init__(self, entities, page_size, requests):
        self._entities = entities
        self._page_size = page_size
        self._requests = requests

    def by_page(self, continuation_token=None):
        self._requests.append(continuation_token)
        return FakePageIterator(self._entities, self._page_size, continuation_token)


class FakeTableClient:
    def __init__(self, table_name):
        self.table_name = table_name
        self.rows = {}
        self.page_requests = []
        self._etags = itertools.count(1)

    def _store(self, entity):
        key = (entity["PartitionKey"], entity["RowKey"])
        metadata = {"etag": f'W/"{next(self._etags)}"', "timestamp": datetime.now(timezone.utc)}
        self.rows[key] = (dict(entity), metadata)
        return metadata

    def _snapshot(self, select=None):
        return [
            FakeEntity({k: v for k, v in props.items() if select is None or k in select}, meta)
            for _, (props, meta) in sorted(self.rows.items())
        ]

    async def create_entity(self, entity):
        if (entity["PartitionKey"], entity["RowKey"]) in self.rows:
            raise ResourceExistsError("The specified entity already exists.")
        return self._store(entity)

    async def upsert_entity(self, entity, mode):
        return self._store(entity)

    async def get_entity(self, partition_key, row_key):
        try:
            props, meta = self.rows[(partition_key, row_key)]
        except KeyError:
            raise ResourceNotFoundError("The specified resource does not exist.")
        return FakeEntity(props, meta)

    async def delete_entity(self, partition_key, row_key, etag=None, match_condition=None):
        key = (partition_key, row_key)
        if key not in self.rows:
            return
        if match_condition == MatchConditions.IfNotModified and self.rows[key][1]["etag"] != etag:
            raise ResourceModifiedError("The update condition specified in the request was not satisfied.")
        del self.rows[key]

    def list_entities(self, select=None, results_per_page=None):
        return FakePaged(self._snapshot(select), results_per_page, self.page_requests)

    def query_entities(self, query_filter, parameters=None, select=None, results_per_page=None):
        for name, value in (parameters or {}).items():
            query_filter = query_filter.replace(f"@{name}", "'" + value.replace("'", "''") + "'")
        conditions = [c.strip("() ") for c in query_filter.split(" and ")]
        matches = [e for e in self._snapshot() if all(_matches(e, c) for c in conditions)]
        if select is not None:
            matches = [FakeEntity({k: v for k, v in e.items() if k in select}, e.metadata) for e in matches]
        return FakePaged(matches, results_per_page, self.page_requests)


def _matches(entity, condition):
    name, op, literal = _CONDITION.match(condition).groups()
    equal = entity.get(name) == literal.replace("''", "'")
    return equal if op == "eq" else not equal


class FakeTableServiceClient:
    def __init__(self):
        self.tables = {}
        self.closed = False

    async def create_table_if_not_exists(self, table_name):
        return self.tables.setdefault(table_name, FakeTableClient(table_name))

    async def query_tables(self, query_filter, parameters=None):
        for name in list(self.tables):
            if name == parameters["name"]:
                yield name

    async def delete_table(self, table_name):
        self.tables.pop(table_name, None)

    async def close(self):
        self.closed = True


@pytest.fixture
def backend():
    fake = FakeTableServiceClient()
    with mock.patch("az_table_storage.az_table_storage.TableServiceClient") as factory:
        factory.from_connection_string.return_value = fake
        yield fake


@pytest.fixture
def service(backend):
    return TableStorageService(Blog, CONNECTION_STRING)


@pytest.fixture
def blogs():
    return [
        Blog(BlogId=1, Author="Tanaka", Name="Taro",   PartitionKey="1", RowKey="a"),
        Blog(BlogId=2, Author="Suzuki", Name="Jiro",   PartitionKey="2", RowKey="b"),
        Blog(BlogId=3, Author="Sato",   Name="Saburo", PartitionKey="3", RowKey="c"),
    ]
