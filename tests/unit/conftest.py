"""Unit-specific fixtures (HTTP is mocked with respx, no real I/O)."""

from __future__ import annotations

import httpx
import pytest
import respx

from classtracker.api import ApiClient
from classtracker.query_cache import QueryCache
from tests.conftest import BASE_URL


@pytest.fixture()
def router():
    with respx.mock(base_url=BASE_URL, assert_all_called=False) as mock:
        yield mock


@pytest.fixture()
async def api(router: respx.MockRouter):
    async with httpx.AsyncClient(base_url=BASE_URL) as client:
        yield ApiClient(client)


@pytest.fixture()
def cache() -> QueryCache:
    return QueryCache()
