"""Broadcast schedule listings with timezone-aware day bucketing.

Broadcast slots are stored in the upstream's source zone (Japan time).
Listing them for the same zone is a single store query. Listing them for any
other zone can move a slot to the previous or next calendar day, so the
engine widens the day filter to the neighbouring source days, converts each
candidate, re-filters on the converted day and paginates in application
space.

Totals for converted listings are counted when the whole candidate set fits
within ``schedule.max_scan``. A scan always reaches far enough to fill the
requested page. Past the cap, ``total`` is scaled from the scanned sample
(``store_total × matched / scanned``, rounded up) and the result's
``pagination.approximate`` flag is set.
"""

from __future__ import annotations

from collections.abc import Callable
from datetime import date, datetime
from typing import TYPE_CHECKING
from zoneinfo import ZoneInfo

import structlog

from anicatalog.errors import CatalogError, ErrorCode
from anicatalog.models.entities import Anime, EntityType
from anicatalog.models.query import (
    CatalogFilter,
    Pagination,
    ScheduleQuery,
    SearchResultSet,
    SortKey,
)
from anicatalog.timezones import (
    SOURCE_TIMEZONE,
    adjacent_days,
    convert_broadcast,
    is_source_timezone,
    normalise_day,
    resolve_timezone,
)

if TYPE_CHECKING:
    from anicatalog.config import Settings
    from anicatalog.protocols import StoreProtocol

log = structlog.get_logger()

MISSING_TIME_SENTINEL = "99:99"

AIRING_STATUS = "Currently Airing"
UPCOMING_STATUS = "Not yet aired"


def _source_today() -> date:
    return datetime.now(ZoneInfo(SOURCE_TIMEZONE)).date()


def broadcast_sort_key(anime: Anime) -> str:
    return anime.broadcast.time or MISSING_TIME_SENTINEL


def _ceil_div(numerator: int, denominator: int) -> int:
    return -(-numerator // denominator)


class ScheduleQueryEngine:
    """Builds schedule and season listings on top of the catalog store."""

    def __init__(
        self,
        store: StoreProtocol,
        settings: Settings,
        *,
        today: Callable[[], date] = _source_today,
    ) -> None:
        self._store = store
        self._settings = settings
        self._today = today

    async def query_schedule(self, query: ScheduleQuery) -> SearchResultSet:
        """List anime broadcasting on ``query.day`` as seen from ``query.timezone``.

        An unrecognised day drops the day filter (with a warning) instead of
        failing. An unknown timezone or a limit above ``schedule.max_limit``
        raises CatalogError(INVALID_INPUT).
        """
        target = resolve_timezone(query.timezone) if query.timezone else ZoneInfo(SOURCE_TIMEZONE)
        limit = self._limit(query.limit)

        day: str | None = None
        if query.day is not None and query.day.strip():
            day = normalise_day(query.day)
            if day is None:
                log.warning("schedule_day_unrecognised", day=query.day)

        base = CatalogFilter(status=query.status, genres=query.genres)
        log.info(
            "schedule_query",
            day=day,
            timezone=target.key,
            sort=str(query.sort),
            page=query.page,
            limit=limit,
        )

        if is_source_timezone(target):
            flt = base.model_copy(update={"broadcast_days": [day]}) if day else base
            return await self._store_page(flt, query.sort, query.page, limit)
        return await self._converted_page(base, day, target, query.sort, query.page, limit)

    async def query_season(
        self,
        season: str,
        year: int,
        *,
        status: str | None = None,
        genres: list[str] | None = None,
        rating: str | None = None,
        sort: SortKey = SortKey.BROADCAST,
        page: int = 1,
        limit: int | None = None,
    ) -> SearchResultSet:
        flt = CatalogFilter(
            season=season.lower(),
            year=year,
            status=status,
            genres=genres or [],
            rating=rating,
        )
        return await self._store_page(flt, sort, page, self._limit(limit))

    async def query_airing(
        self,
        *,
        genres: list[str] | None = None,
        sort: SortKey = SortKey.POPULARITY,
        page: int = 1,
        limit: int | None = None,
    ) -> SearchResultSet:
        flt = CatalogFilter(status=AIRING_STATUS, genres=genres or [])
        return await self._store_page(flt, sort, page, self._limit(limit))

    async def query_upcoming(
        self,
        *,
        genres: list[str] | None = None,
        sort: SortKey = SortKey.POPULARITY,
        page: int = 1,
        limit: int | None = None,
    ) -> SearchResultSet:
        flt = CatalogFilter(status=UPCOMING_STATUS, genres=genres or [])
        return await self._store_page(flt, sort, page, self._limit(limit))

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _limit(self, requested: int | None) -> int:
        settings = self._settings.schedule
        limit = requested or settings.default_limit
        if limit > settings.max_limit:
            raise CatalogError(
                code=ErrorCode.INVALID_INPUT,
                message=f"limit must be at most {settings.max_limit}",
                suggestion="Request a smaller page.",
                recoverable=False,
            )
        return limit

    async def _store_page(
        self, flt: CatalogFilter, sort: SortKey, page: int, limit: int
    ) -> SearchResultSet:
        items, total = await self._store.query(
            EntityType.ANIME, flt, sort, skip=(page - 1) * limit, limit=limit
        )
        if sort == SortKey.BROADCAST:
            items.sort(key=broadcast_sort_key)
        return SearchResultSet(items=items, pagination=Pagination.build(page, limit, total))

    async def _converted_page(
        self,
        base: CatalogFilter,
        day: str | None,
        target: ZoneInfo,
        sort: SortKey,
        page: int,
        limit: int,
    ) -> SearchResultSet:
        days = adjacent_days(day) if day else []
        flt = base.model_copy(update={"broadcast_days": days})
        if days:
            log.info("schedule_days_expanded", requested=day, query_days=days)

        window = limit * self._settings.schedule.overfetch_factor
        max_scan = self._settings.schedule.max_scan
        needed = page * limit
        reference = self._today()
        scanned = 0
        store_total = 0
        matched: list[Anime] = []
        while True:
            batch, store_total = await self._store.query(
                EntityType.ANIME, flt, sort, skip=scanned, limit=window
            )
            scanned += len(batch)
            for anime in batch:
                converted = self._convert(anime, target, reference)
                if day is None or converted.broadcast.day == day:
                    matched.append(converted)
            if len(batch) < window or scanned >= store_total:
                break
            # The cap never cuts off the rows the requested page is sliced from.
            if scanned >= max_scan and len(matched) >= needed:
                log.warning("schedule_scan_capped", scanned=scanned, total=store_total)
                break

        if sort == SortKey.BROADCAST:
            matched.sort(key=broadcast_sort_key)

        start = (page - 1) * limit
        items = matched[start : start + limit]

        approximate = scanned < store_total
        total = _ceil_div(store_total * len(matched), scanned) if scanned else 0
        log.info(
            "schedule_converted",
            timezone=target.key,
            scanned=scanned,
            matched=len(matched),
            total=total,
            approximate=approximate,
        )
        return SearchResultSet(
            items=items,
            pagination=Pagination.build(page, limit, total, approximate=approximate),
        )

    @staticmethod
    def _convert(anime: Anime, target: ZoneInfo, reference: date) -> Anime:
        """Return a copy with broadcast expressed in ``target``; never mutates."""
        if not anime.broadcast.time:
            return anime
        broadcast = convert_broadcast(anime.broadcast, target, reference=reference)
        return anime.model_copy(update={"broadcast": broadcast})
