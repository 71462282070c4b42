import uuid

import pytest
from mongomock_motor import AsyncMongoMockClient

from casetrack.main import build_services


class AsyncCollection:
    """
    mongomock-motor collection shaped like a pymongo AsyncCollection, whose
    aggregate() is a coroutine returning the cursor.
    """

    def __init__(self, collection):
        self._collection = collection

    def __getattr__(self, name):
        return getattr(self._collection, name)

    async def aggregate(self, pipeline, **kwargs):
        return self._collection.aggregate(pipeline, **kwargs)


class AsyncDatabase:
    def __init__(self, database):
        self._database = database

    def __getattr__(self, name):
        return getattr(self._database, name)

    def __getitem__(self, name):
        return AsyncCollection(self._database[name])


@pytest.fixture
def db():
    """Fresh in-memory database per test."""
    client = AsyncMongoMockClient()
    return AsyncDatabase(client[f"casetrack_test_{uuid.uuid4().hex[:8]}"])


@pytest.fixture
def services(db):
    return build_services(db, use_transactions=False)


@pytest.fixture
def store(services):
    return services.store


@pytest.fixture
def resolver(services):
    return services.resolver


@pytest.fixture
def locations(services):
    return services.locations
