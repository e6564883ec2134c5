"""Integration test fixtures.

Provides a fully wired AppState from ``open_catalog`` with in-memory SQLite
and a real httpx client whose Jikan traffic is intercepted by respx.
Payload fixtures come from tests/conftest.py (fma_payload, character_payload).
"""

from __future__ import annotations

from typing import TYPE_CHECKING

import pytest
import respx

from anicatalog.app import open_catalog
from anicatalog.config import CacheSettings, Settings, StoreSettings
from anicatalog.upstream import build_http_client

if TYPE_CHECKING:
    from collections.abc import AsyncIterator, Iterator

    from anicatalog.state import AppState

JIKAN = "https://api.jikan.moe/v4"


@pytest.fixture()
def jikan() -> Iterator[respx.MockRouter]:
    """Intercept all Jikan traffic; unmatched requests fail the test."""
    with respx.mock(base_url=JIKAN, assert_all_called=False) as router:
        yield router


@pytest.fixture()
def catalog_settings() -> Settings:
    return Settings(
        store=StoreSettings(db_path=":memory:"),
        cache=CacheSettings(backend="memory"),
    )


@pytest.fixture()
async def catalog(
    catalog_settings: Settings, jikan: respx.MockRouter
) -> AsyncIterator[AppState]:
    async with build_http_client(catalog_settings.upstream) as client:
        async with open_catalog(
            catalog_settings, http_client=client, configure_logging=False
        ) as state:
            yield state
