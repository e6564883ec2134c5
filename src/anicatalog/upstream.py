"""Jikan v4 (MyAnimeList) client.

All upstream I/O goes through a single JikanClient shared by every resolver
call. The client receives an httpx.AsyncClient via constructor injection;
the application lifespan owns the client lifecycle. Requests are spaced by a
process-wide rate limiter because Jikan enforces per-second quotas.
"""

from __future__ import annotations

import asyncio
import time
from typing import TYPE_CHECKING, Any

import httpx
import structlog

from anicatalog import USER_AGENT
from anicatalog.errors import CatalogError, ErrorCode
from anicatalog.models.entities import EntityType

if TYPE_CHECKING:
    from anicatalog.config import UpstreamSettings
    from anicatalog.models.query import CatalogFilter

log = structlog.get_logger()

_ENTITY_PATHS: dict[EntityType, str] = {
    EntityType.ANIME: "anime",
    EntityType.CHARACTER: "characters",
}

# Internal status vocabulary → Jikan search ``status`` parameter.
_STATUS_PARAMS: dict[str, str] = {
    "currently airing": "airing",
    "finished airing": "complete",
    "not yet aired": "upcoming",
}


def build_http_client(settings: UpstreamSettings) -> httpx.AsyncClient:
    """Create the shared httpx client. Called once at startup."""
    return httpx.AsyncClient(
        base_url=settings.base_url.rstrip("/") + "/",
        timeout=httpx.Timeout(settings.timeout_seconds),
        headers={"User-Agent": USER_AGENT, "Accept": "application/json"},
        limits=httpx.Limits(
            max_connections=settings.max_connections,
            max_keepalive_connections=max(1, settings.max_connections // 2),
        ),
    )


class RateLimiter:
    """Spaces calls at least ``1 / rate`` seconds apart across all callers."""

    def __init__(self, rate: float) -> None:
        self._interval = 1.0 / rate
        self._lock = asyncio.Lock()
        self._next_slot = 0.0

    async def acquire(self) -> None:
        async with self._lock:
            now = time.monotonic()
            wait = self._next_slot - now
            self._next_slot = max(now, self._next_slot) + self._interval
        if wait > 0:
            await asyncio.sleep(wait)


def search_params(entity_type: EntityType, text: str, flt: CatalogFilter, page: int) -> dict:
    """Map a catalog filter onto Jikan's search query parameters.

    Genre and rating filters are not sent: Jikan expects numeric genre ids and
    its own rating codes. The store query re-applies every filter anyway.
    """
    params: dict[str, Any] = {"q": text, "page": page}
    if entity_type != EntityType.ANIME:
        params["order_by"] = "favorites"
        params["sort"] = "desc"
        return params
    if flt.type:
        params["type"] = flt.type.lower()
    if flt.status:
        status = _STATUS_PARAMS.get(flt.status.lower())
        if status:
            params["status"] = status
    if flt.min_score is not None:
        params["min_score"] = flt.min_score
    if flt.max_score is not None:
        params["max_score"] = flt.max_score
    return params


class JikanClient:
    """Upstream metadata client implementing UpstreamProtocol."""

    def __init__(
        self,
        client: httpx.AsyncClient,
        *,
        requests_per_second: float = 3.0,
        search_page_size: int = 25,
    ) -> None:
        self._client = client
        self._limiter = RateLimiter(requests_per_second)
        self._search_page_size = search_page_size

    async def get_entity(self, entity_type: EntityType, mal_id: int) -> dict[str, Any]:
        """Fetch the full foreign payload for one entity.

        Raises CatalogError: UPSTREAM_NOT_FOUND on 404, UPSTREAM_RATE_LIMITED
        on 429, UPSTREAM_UNAVAILABLE on any other failure.
        """
        path = f"{_ENTITY_PATHS[entity_type]}/{mal_id}/full"
        body = await self._get_json(path, None)
        data = body.get("data")
        if not isinstance(data, dict):
            raise CatalogError(
                code=ErrorCode.UPSTREAM_UNAVAILABLE,
                message=f"Upstream returned no data object for {path}",
                suggestion="The upstream catalog may be degraded. Try again later.",
                recoverable=True,
            )
        return data

    async def search(
        self,
        entity_type: EntityType,
        text: str,
        flt: CatalogFilter,
        page: int = 1,
    ) -> list[dict[str, Any]]:
        """Run one upstream search page. Non-object items are dropped."""
        params = search_params(entity_type, text, flt, page)
        params["limit"] = self._search_page_size
        body = await self._get_json(_ENTITY_PATHS[entity_type], params)
        data = body.get("data")
        if not isinstance(data, list):
            return []
        return [item for item in data if isinstance(item, dict)]

    async def _get_json(self, path: str, params: dict[str, Any] | None) -> dict[str, Any]:
        await self._limiter.acquire()
        try:
            response = await self._client.get(path, params=params)
        except httpx.TimeoutException as exc:
            raise CatalogError(
                code=ErrorCode.UPSTREAM_UNAVAILABLE,
                message=f"Timed out fetching {path}",
                suggestion="The upstream catalog is slow or unreachable. Try again later.",
                recoverable=True,
            ) from exc
        except httpx.HTTPError as exc:
            raise CatalogError(
                code=ErrorCode.UPSTREAM_UNAVAILABLE,
                message=f"Network error fetching {path}: {exc}",
                suggestion="The upstream catalog may be temporarily unavailable.",
                recoverable=True,
            ) from exc

        if response.status_code == 404:
            raise CatalogError(
                code=ErrorCode.UPSTREAM_NOT_FOUND,
                message=f"HTTP 404 fetching {path}",
                suggestion="No entity with this id exists upstream.",
                recoverable=False,
            )
        if response.status_code == 429:
            raise CatalogError(
                code=ErrorCode.UPSTREAM_RATE_LIMITED,
                message=f"HTTP 429 fetching {path}",
                suggestion="The upstream rate limit was hit. Try again shortly.",
                recoverable=True,
            )
        if not response.is_success:
            raise CatalogError(
                code=ErrorCode.UPSTREAM_UNAVAILABLE,
                message=f"HTTP {response.status_code} fetching {path}",
                suggestion="The upstream catalog may be temporarily unavailable.",
                recoverable=True,
            )

        try:
            body = response.json()
        except ValueError as exc:
            raise CatalogError(
                code=ErrorCode.UPSTREAM_UNAVAILABLE,
                message=f"Malformed JSON from {path}",
                suggestion="The upstream catalog may be degraded. Try again later.",
                recoverable=True,
            ) from exc

        log.info(
            "upstream_fetch_complete",
            path=path,
            status_code=response.status_code,
            content_length=len(response.content),
        )
        return body if isinstance(body, dict) else {}
