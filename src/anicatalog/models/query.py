from __future__ import annotations

import math
from enum import StrEnum
from typing import Literal

from pydantic import BaseModel, Field

from anicatalog.errors import CatalogError, ErrorCode
from anicatalog.models.entities import Entity, EntityType


class SortKey(StrEnum):
    SCORE = "score"
    POPULARITY = "popularity"
    TITLE = "title"
    BROADCAST = "broadcast"
    FAVORITES = "favorites"


class CatalogFilter(BaseModel):
    """Store-side filter predicate. Empty / ``None`` fields do not filter."""

    text: str = ""
    type: str | None = None
    status: str | None = None
    rating: str | None = None  # Case-insensitive prefix, e.g. "PG-13"
    genres: list[str] = []  # Any-of, by genre name
    min_score: float | None = None
    max_score: float | None = None
    broadcast_days: list[str] = []  # Canonical day names
    season: str | None = None
    year: int | None = None


class SearchQuery(BaseModel):
    filter: CatalogFilter = CatalogFilter()
    sort: SortKey | None = None  # None → per-type default
    page: int = Field(default=1, ge=1)
    limit: int | None = Field(default=None, ge=1)  # None → search.default_limit


class ScheduleQuery(BaseModel):
    day: str | None = None
    status: str | None = None
    genres: list[str] = []
    sort: SortKey = SortKey.BROADCAST
    timezone: str | None = None  # None → source broadcast timezone
    page: int = Field(default=1, ge=1)
    limit: int | None = Field(default=None, ge=1)  # None → schedule.default_limit


class Pagination(BaseModel):
    page: int
    limit: int
    total: int
    pages: int
    # True when ``total`` is scaled from a sample rather than counted.
    approximate: bool = False

    @classmethod
    def build(cls, page: int, limit: int, total: int, *, approximate: bool = False) -> Pagination:
        return cls(
            page=page,
            limit=limit,
            total=total,
            pages=math.ceil(total / limit) if limit else 0,
            approximate=approximate,
        )


class SearchResultSet(BaseModel):
    items: list[Entity]
    pagination: Pagination


class ResolveStatus(StrEnum):
    FOUND = "found"
    NOT_FOUND = "not_found"  # Verified absent upstream and locally
    UNAVAILABLE = "unavailable"  # Transient upstream failure; retry later


class Resolution(BaseModel):
    """Outcome of a single-entity lookup across cache, store and upstream."""

    entity_type: EntityType
    mal_id: int
    status: ResolveStatus
    entity: Entity | None = None
    source: Literal["cache", "store", "upstream"] | None = None

    @property
    def found(self) -> bool:
        return self.status == ResolveStatus.FOUND

    def require(self) -> Entity:
        """Return the entity or raise the typed error a controller should surface."""
        if self.entity is not None:
            return self.entity
        if self.status == ResolveStatus.UNAVAILABLE:
            raise CatalogError(
                code=ErrorCode.UPSTREAM_UNAVAILABLE,
                message=f"{self.entity_type} {self.mal_id} is not cached and the upstream "
                "catalog is unavailable.",
                suggestion="Try again later.",
                recoverable=True,
            )
        raise CatalogError(
            code=ErrorCode.ENTITY_NOT_FOUND,
            message=f"{self.entity_type.capitalize()} {self.mal_id} not found.",
            suggestion="Check the MyAnimeList id.",
            recoverable=False,
        )
