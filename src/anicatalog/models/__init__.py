from __future__ import annotations

from anicatalog.models.cache import CACHE_SCHEMA_VERSION, EntityCacheRecord, SearchCacheRecord
from anicatalog.models.entities import (
    Aired,
    Anime,
    AnimeRef,
    Broadcast,
    Character,
    Entity,
    EntityType,
    Images,
    ImageSet,
    NamedRef,
    Titles,
    Trailer,
    VoiceActor,
)
from anicatalog.models.query import (
    CatalogFilter,
    Pagination,
    Resolution,
    ResolveStatus,
    ScheduleQuery,
    SearchQuery,
    SearchResultSet,
    SortKey,
)

__all__ = [
    # entities
    "EntityType",
    "Entity",
    "Anime",
    "Character",
    "Titles",
    "Images",
    "ImageSet",
    "NamedRef",
    "Trailer",
    "Aired",
    "Broadcast",
    "AnimeRef",
    "VoiceActor",
    # queries
    "SortKey",
    "CatalogFilter",
    "SearchQuery",
    "ScheduleQuery",
    "Pagination",
    "SearchResultSet",
    "ResolveStatus",
    "Resolution",
    # cache
    "CACHE_SCHEMA_VERSION",
    "EntityCacheRecord",
    "SearchCacheRecord",
]
