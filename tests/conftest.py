import uuid
from unittest.mock import AsyncMock

import pytest
from mongomock_motor import AsyncMongoMockClient

from src.config import Settings
from src.processors.context import ProcessorContext
from src.repositories import create_indexes
from tests.helpers import FakeClock


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def test_settings():
    """Settings for a standalone in-process store with fast polling."""
    return Settings(
        _env_file=None,
        mongodb_use_transactions=False,
        empty_queue_sleep_seconds=0.01,
        yield_sleep_seconds=0.0,
        processor_max_runtime_seconds=0.2,
    )


@pytest.fixture
async def db():
    """Fresh mongomock-motor database with the production indexes."""
    database = AsyncMongoMockClient()[f"crm_test_{uuid.uuid4().hex[:8]}"]
    await create_indexes(database)
    return database


@pytest.fixture
def publisher():
    return AsyncMock()


@pytest.fixture
def push():
    client = AsyncMock()
    client.send_to_user.return_value = True
    return client


@pytest.fixture
def crm():
    client = AsyncMock()
    client.fetch_email.return_value = None
    return client


@pytest.fixture
def ctx(db, test_settings, publisher, push, crm):
    return ProcessorContext.build(
        db,
        client=None,
        settings=test_settings,
        publisher=publisher,
        push=push,
        crm=crm,
    )
