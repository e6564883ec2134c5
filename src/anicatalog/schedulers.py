"""Background maintenance coroutines."""

from __future__ import annotations

import asyncio
from typing import TYPE_CHECKING

import structlog

if TYPE_CHECKING:
    from anicatalog.state import AppState

log = structlog.get_logger()


async def run_cache_cleanup_scheduler(state: AppState, *, once: bool = False) -> None:
    """Purge expired cache entries at startup and then on the configured interval."""
    interval_hours = state.settings.cache.cleanup_interval_hours

    await state.cache.cleanup_if_due(interval_hours)
    if once:
        return

    while True:
        await asyncio.sleep(interval_hours * 3600)
        try:
            await state.cache.cleanup_if_due(interval_hours)
        except Exception:
            log.warning("cache_cleanup_scheduler_error", exc_info=True)
