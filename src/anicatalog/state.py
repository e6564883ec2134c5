"""Application state container.

AppState is created once by ``open_catalog`` and handed to every controller.
It owns the shared resources; nothing in the package keeps process-wide
mutable state outside of it.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    import asyncio

    import httpx

    from anicatalog.config import Settings
    from anicatalog.protocols import CacheProtocol, StoreProtocol, UpstreamProtocol
    from anicatalog.resolver import Resolver
    from anicatalog.schedule import ScheduleQueryEngine


@dataclass
class AppState:
    """Holds all shared runtime state."""

    settings: Settings
    http_client: httpx.AsyncClient
    cache: CacheProtocol
    store: StoreProtocol
    upstream: UpstreamProtocol
    resolver: Resolver
    schedule: ScheduleQueryEngine
    background_tasks: list[asyncio.Task[None]] = field(default_factory=list)
