"""Test fixtures. No external services: model, database, storage and Telegram are mocked."""

from unittest.mock import AsyncMock

import pytest

from fakes import SAMPLE_SCHEMA, make_settings
from quarry.api.tools import ToolDispatcher
from quarry.storage.schema_cache import SchemaCache


@pytest.fixture
def settings():
    return make_settings()


@pytest.fixture
def dispatcher():
    return ToolDispatcher()


@pytest.fixture
def schema_cache():
    return SchemaCache(AsyncMock(return_value=SAMPLE_SCHEMA), ttl=0)
