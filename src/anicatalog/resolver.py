"""Tiered entity resolution: cache → store → upstream → write-back.

The Resolver is the only component that talks to all three tiers. It owns
the single-flight registry, so concurrent lookups for the same
``(entity_type, mal_id)`` share one upstream call.

Failure policy:
  - Upstream problems (404, 429, timeouts, network errors) are absorbed and
    surface as ``not_found`` / ``unavailable`` resolutions, or as sparser
    search results.
  - Cache and store failures arrive as ``CatalogError(INFRASTRUCTURE_FAILURE)``
    and propagate to the caller untouched.
"""

from __future__ import annotations

import asyncio
import hashlib
import json
from functools import partial
from typing import TYPE_CHECKING, TypeVar

import structlog
from pydantic import BaseModel, ValidationError

from anicatalog.errors import CatalogError, ErrorCode
from anicatalog.models.cache import EntityCacheRecord, SearchCacheRecord
from anicatalog.models.entities import EntityType
from anicatalog.models.query import (
    CatalogFilter,
    Pagination,
    Resolution,
    ResolveStatus,
    SearchQuery,
    SearchResultSet,
    SortKey,
)
from anicatalog.normalizer import normalise
from anicatalog.store import default_sort

if TYPE_CHECKING:
    from anicatalog.config import Settings
    from anicatalog.models.entities import Anime, Character
    from anicatalog.protocols import CacheProtocol, StoreProtocol, UpstreamProtocol

log = structlog.get_logger()

_R = TypeVar("_R", bound=BaseModel)

FlightKey = tuple[EntityType, int]


def entity_cache_key(entity_type: EntityType, mal_id: int) -> str:
    return f"entity:{entity_type}:{mal_id}"


def search_cache_key(
    entity_type: EntityType,
    flt: CatalogFilter,
    sort: SortKey,
    page: int,
    limit: int,
) -> str:
    """Derive a stable key from the full filter / sort / page signature.

    Free text is case- and whitespace-folded and list filters are sorted, so
    equivalent queries share one entry.
    """
    signature = flt.model_dump(mode="json")
    signature["text"] = " ".join(flt.text.lower().split())
    signature["genres"] = sorted(flt.genres)
    signature["broadcast_days"] = sorted(flt.broadcast_days)
    canonical = json.dumps(
        {"filter": signature, "sort": sort, "page": page, "limit": limit},
        sort_keys=True,
        ensure_ascii=False,
    )
    digest = hashlib.sha256(canonical.encode("utf-8")).hexdigest()[:32]
    return f"search:{entity_type}:{digest}"


def _decode(model_cls: type[_R], raw: bytes, key: str) -> _R | None:
    """Decode a cache value; any shape or version mismatch is a miss."""
    try:
        return model_cls.model_validate_json(raw)
    except ValidationError:
        log.warning("cache_decode_failed", key=key, model=model_cls.__name__)
        return None


class Resolver:
    """Resolves single entities and paged searches across the three tiers.

    One instance per application. The in-flight registry lives and dies with
    the instance; entries are removed as soon as their upstream call settles.
    """

    def __init__(
        self,
        cache: CacheProtocol,
        store: StoreProtocol,
        upstream: UpstreamProtocol,
        settings: Settings,
    ) -> None:
        self._cache = cache
        self._store = store
        self._upstream = upstream
        self._settings = settings
        self._in_flight: dict[FlightKey, asyncio.Task[Resolution]] = {}

    @property
    def in_flight_count(self) -> int:
        return len(self._in_flight)

    # ------------------------------------------------------------------
    # Single entity
    # ------------------------------------------------------------------

    async def resolve_entity(self, entity_type: EntityType | str, mal_id: int) -> Resolution:
        """Resolve one entity by ``mal_id``.

        Cache hits are trusted as-is (freshness is enforced by TTL only). On a
        miss, the store lookup, upstream call and write-back run as a single
        flight shared by every concurrent caller for the same key. Cancelling
        the caller does not cancel the flight: other waiters may be attached
        and the write-back still warms the cache.
        """
        entity_type = EntityType(entity_type)
        key = entity_cache_key(entity_type, mal_id)
        bound = log.bind(entity_type=str(entity_type), mal_id=mal_id)

        raw = await self._cache.get(key)
        if raw is not None:
            record = _decode(EntityCacheRecord, raw, key)
            if record is not None and record.missing:
                # A search write-back may have stored the id since the 404.
                stored = await self._store.find_by_id(entity_type, mal_id)
                if stored is not None:
                    bound.info("store_hit", overrides="negative_cache")
                    await self._cache_entity(key, stored)
                    return Resolution(
                        entity_type=entity_type,
                        mal_id=mal_id,
                        status=ResolveStatus.FOUND,
                        entity=stored,
                        source="store",
                    )
                bound.info("cache_hit", negative=True)
                return Resolution(
                    entity_type=entity_type,
                    mal_id=mal_id,
                    status=ResolveStatus.NOT_FOUND,
                    source="cache",
                )
            if record is not None and record.entity is not None:
                bound.info("cache_hit", negative=False)
                return Resolution(
                    entity_type=entity_type,
                    mal_id=mal_id,
                    status=ResolveStatus.FOUND,
                    entity=record.entity,
                    source="cache",
                )

        flight_key: FlightKey = (entity_type, mal_id)
        task = self._in_flight.get(flight_key)
        if task is None:
            task = asyncio.create_task(self._resolve_uncached(entity_type, mal_id, key))
            self._in_flight[flight_key] = task
            task.add_done_callback(partial(self._flight_done, flight_key))
        else:
            bound.debug("single_flight_joined")
        return await asyncio.shield(task)

    def _flight_done(self, flight_key: FlightKey, task: asyncio.Task[Resolution]) -> None:
        if self._in_flight.get(flight_key) is task:
            del self._in_flight[flight_key]
        # Retrieve the exception so an unobserved failure (all callers
        # cancelled) is logged here rather than at garbage collection.
        if not task.cancelled() and task.exception() is not None:
            log.warning(
                "single_flight_failed",
                entity_type=str(flight_key[0]),
                mal_id=flight_key[1],
                error=str(task.exception()),
            )

    async def _resolve_uncached(
        self, entity_type: EntityType, mal_id: int, key: str
    ) -> Resolution:
        bound = log.bind(entity_type=str(entity_type), mal_id=mal_id)

        stored = await self._store.find_by_id(entity_type, mal_id)
        if stored is not None:
            bound.info("store_hit")
            await self._cache_entity(key, stored)
            return Resolution(
                entity_type=entity_type,
                mal_id=mal_id,
                status=ResolveStatus.FOUND,
                entity=stored,
                source="store",
            )

        bound.info("cache_miss_fetching_upstream")
        try:
            payload = await asyncio.wait_for(
                self._upstream.get_entity(entity_type, mal_id),
                timeout=self._settings.upstream.timeout_seconds,
            )
        except TimeoutError:
            bound.warning(
                "upstream_fetch_failed",
                reason="timeout",
                timeout=self._settings.upstream.timeout_seconds,
            )
            return Resolution(
                entity_type=entity_type, mal_id=mal_id, status=ResolveStatus.UNAVAILABLE
            )
        except CatalogError as exc:
            if exc.code == ErrorCode.UPSTREAM_NOT_FOUND:
                bound.info("upstream_not_found")
                await self._cache.set(
                    key,
                    EntityCacheRecord(missing=True).model_dump_json().encode("utf-8"),
                    self._settings.cache.negative_ttl_seconds,
                )
                return Resolution(
                    entity_type=entity_type, mal_id=mal_id, status=ResolveStatus.NOT_FOUND
                )
            if not exc.is_upstream:
                raise
            bound.warning("upstream_fetch_failed", reason=exc.code, error=exc.message)
            return Resolution(
                entity_type=entity_type, mal_id=mal_id, status=ResolveStatus.UNAVAILABLE
            )

        entity = normalise(entity_type, payload, fallback_id=mal_id)
        if entity.mal_id != mal_id:
            bound.warning("normaliser_shape_mismatch", fields=["mal_id"], payload_id=entity.mal_id)
            entity = entity.model_copy(update={"mal_id": mal_id})

        await self._store.upsert(entity)
        await self._cache_entity(key, entity)
        bound.info("write_back_complete")
        return Resolution(
            entity_type=entity_type,
            mal_id=mal_id,
            status=ResolveStatus.FOUND,
            entity=entity,
            source="upstream",
        )

    async def _cache_entity(self, key: str, entity: Anime | Character) -> None:
        await self._cache.set(
            key,
            EntityCacheRecord(entity=entity).model_dump_json().encode("utf-8"),
            self._settings.cache.entity_ttl_hours * 3600,
        )

    # ------------------------------------------------------------------
    # Search
    # ------------------------------------------------------------------

    async def resolve_search(
        self, entity_type: EntityType | str, query: SearchQuery
    ) -> SearchResultSet:
        """Run a paged store search, supplementing sparse results from upstream.

        When the page holds fewer than ``search.supplement_threshold`` items
        and free text was given, one upstream search is made, its results are
        upserted and the original store query is re-run, so ordering, filters
        and de-duplication stay store-authoritative.
        """
        entity_type = EntityType(entity_type)
        limit = query.limit or self._settings.search.default_limit
        if limit > self._settings.search.max_limit:
            raise CatalogError(
                code=ErrorCode.INVALID_INPUT,
                message=f"limit must be at most {self._settings.search.max_limit}",
                suggestion="Request a smaller page.",
                recoverable=False,
            )
        sort = query.sort or default_sort(entity_type)
        # The cache key and the store query must see the same text.
        flt = query.filter.model_copy(update={"text": " ".join(query.filter.text.split())})
        key = search_cache_key(entity_type, flt, sort, query.page, limit)
        bound = log.bind(entity_type=str(entity_type), text=flt.text, page=query.page)

        raw = await self._cache.get(key)
        if raw is not None:
            record = _decode(SearchCacheRecord, raw, key)
            if record is not None:
                bound.info("cache_hit", kind="search")
                return record.result

        skip = (query.page - 1) * limit
        items, total = await self._store.query(entity_type, flt, sort, skip=skip, limit=limit)
        bound.info("store_search_complete", count=len(items), total=total)

        cacheable = True
        text = flt.text
        if len(items) < self._settings.search.supplement_threshold and text:
            added = await self._supplement(entity_type, text, flt)
            if added is None:
                # Transient upstream failure: serve store-only results uncached
                cacheable = False
            elif added:
                items, total = await self._store.query(
                    entity_type, flt, sort, skip=skip, limit=limit
                )
                bound.info("store_search_rerun", count=len(items), total=total)

        result = SearchResultSet(
            items=items,
            pagination=Pagination.build(query.page, limit, total),
        )
        if cacheable:
            await self._cache.set(
                key,
                SearchCacheRecord(result=result).model_dump_json().encode("utf-8"),
                self._settings.cache.search_ttl_hours * 3600,
            )
        return result

    async def _supplement(
        self, entity_type: EntityType, text: str, flt: CatalogFilter
    ) -> int | None:
        """Fetch one upstream search page and upsert it.

        Returns the number of entities written, or ``None`` if the upstream
        call failed (absorbed, logged).
        """
        bound = log.bind(entity_type=str(entity_type), text=text)
        bound.info("search_supplement_started")
        try:
            payloads = await asyncio.wait_for(
                self._upstream.search(entity_type, text, flt, 1),
                timeout=self._settings.upstream.timeout_seconds,
            )
        except TimeoutError:
            bound.warning("upstream_search_failed", reason="timeout")
            return None
        except CatalogError as exc:
            if not exc.is_upstream:
                raise
            if exc.code == ErrorCode.UPSTREAM_NOT_FOUND:
                return 0
            bound.warning("upstream_search_failed", reason=exc.code, error=exc.message)
            return None

        entities: list[Anime | Character] = []
        for payload in payloads:
            try:
                entities.append(normalise(entity_type, payload))
            except ValueError:
                bound.warning("normaliser_shape_mismatch", fields=["mal_id"], reason="missing")
        await self._store.upsert_many(entities)
        bound.info("search_supplement_complete", upstream_count=len(payloads), stored=len(entities))
        return len(entities)
