"""Versioned cache envelopes.

Every cache value is one of these records serialised to JSON bytes. Bump
``CACHE_SCHEMA_VERSION`` whenever an entity or result shape changes: values
written by a previous deployment then fail validation and read as a miss
instead of deserialising into the wrong shape.
"""

from __future__ import annotations

from typing import Literal

from pydantic import BaseModel

from anicatalog.models.entities import Entity
from anicatalog.models.query import SearchResultSet

CACHE_SCHEMA_VERSION = 1


class EntityCacheRecord(BaseModel):
    schema_version: Literal[1] = CACHE_SCHEMA_VERSION
    kind: Literal["entity"] = "entity"
    entity: Entity | None = None
    missing: bool = False  # Negative entry: verified absent upstream


class SearchCacheRecord(BaseModel):
    schema_version: Literal[1] = CACHE_SCHEMA_VERSION
    kind: Literal["search"] = "search"
    result: SearchResultSet
