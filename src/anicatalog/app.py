"""Application wiring.

Responsibilities (and nothing more):
- Configure structlog
- Open the store / cache databases and the upstream HTTP client
- Build the Resolver and Schedule Query Engine into an AppState
- Run background maintenance and tear everything down on exit

HTTP routing lives with the controllers that consume AppState.
"""

from __future__ import annotations

import asyncio
import logging
import sys
from contextlib import AsyncExitStack, asynccontextmanager, suppress
from pathlib import Path
from typing import TYPE_CHECKING

import aiosqlite
import structlog

from anicatalog import __version__
from anicatalog.cache import MemoryCache, SqliteCache
from anicatalog.config import Settings
from anicatalog.resolver import Resolver
from anicatalog.schedule import ScheduleQueryEngine
from anicatalog.schedulers import run_cache_cleanup_scheduler
from anicatalog.state import AppState
from anicatalog.store import CatalogStore
from anicatalog.upstream import JikanClient, build_http_client

if TYPE_CHECKING:
    from collections.abc import AsyncIterator

    import httpx

    from anicatalog.protocols import CacheProtocol

log = structlog.get_logger()


# ---------------------------------------------------------------------------
# Logging setup
# ---------------------------------------------------------------------------


def setup_logging(settings: Settings) -> None:
    """Configure structlog. Called once at startup before any log statements."""
    log_level = logging.getLevelNamesMapping()[settings.logging.level]

    shared_processors: list[structlog.types.Processor] = [
        structlog.contextvars.merge_contextvars,
        structlog.processors.add_log_level,
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
        structlog.processors.TimeStamper(fmt="iso"),
    ]

    if settings.logging.format == "json":
        processors = [*shared_processors, structlog.processors.JSONRenderer()]
    else:
        processors = [*shared_processors, structlog.dev.ConsoleRenderer()]

    structlog.configure(
        processors=processors,
        wrapper_class=structlog.make_filtering_bound_logger(log_level),
        context_class=dict,
        logger_factory=structlog.PrintLoggerFactory(file=sys.stderr),
        cache_logger_on_first_use=True,
    )


# ---------------------------------------------------------------------------
# Lifespan
# ---------------------------------------------------------------------------


def _db_path(raw: str) -> str:
    """Create the parent directory of an on-disk database path."""
    if raw != ":memory:":
        Path(raw).parent.mkdir(parents=True, exist_ok=True)
    return raw


@asynccontextmanager
async def open_catalog(
    settings: Settings | None = None,
    *,
    http_client: httpx.AsyncClient | None = None,
    configure_logging: bool = True,
) -> AsyncIterator[AppState]:
    """Build the catalog layer and yield its AppState.

    ``http_client`` lets callers (and tests) inject a preconfigured client;
    otherwise one is built from ``settings.upstream`` and closed on exit.
    """
    settings = settings or Settings()
    if configure_logging:
        setup_logging(settings)

    async with AsyncExitStack() as stack:
        store_db = await stack.enter_async_context(
            aiosqlite.connect(_db_path(settings.store.db_path))
        )
        store = CatalogStore(store_db)
        await store.init_db()

        cache: CacheProtocol
        if settings.cache.backend == "sqlite":
            cache_db = await stack.enter_async_context(
                aiosqlite.connect(_db_path(settings.cache.db_path))
            )
            sqlite_cache = SqliteCache(cache_db)
            await sqlite_cache.init_db()
            cache = sqlite_cache
        else:
            cache = MemoryCache()

        if http_client is None:
            http_client = await stack.enter_async_context(build_http_client(settings.upstream))
        upstream = JikanClient(
            http_client,
            requests_per_second=settings.upstream.requests_per_second,
            search_page_size=settings.upstream.search_page_size,
        )

        state = AppState(
            settings=settings,
            http_client=http_client,
            cache=cache,
            store=store,
            upstream=upstream,
            resolver=Resolver(cache, store, upstream, settings),
            schedule=ScheduleQueryEngine(store, settings),
        )
        state.background_tasks.append(asyncio.create_task(run_cache_cleanup_scheduler(state)))
        log.info(
            "catalog_started",
            version=__version__,
            cache_backend=settings.cache.backend,
            store_path=settings.store.db_path,
        )

        try:
            yield state
        finally:
            for task in state.background_tasks:
                task.cancel()
            for task in state.background_tasks:
                with suppress(asyncio.CancelledError):
                    await task
            log.info("catalog_stopped")
