"""Protocol interfaces for swappable components.

The Resolver and Schedule Query Engine reference these protocols, not the
concrete implementations. This allows:
- Tests to use lightweight in-memory implementations (or counting fakes)
- Other backends (e.g. Redis cache) to be swapped without changing resolver code
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Any, Protocol

if TYPE_CHECKING:
    from collections.abc import Sequence

    from anicatalog.models.entities import Anime, Character, EntityType
    from anicatalog.models.query import CatalogFilter, SortKey


class CacheProtocol(Protocol):
    """Exact-key bytes store with per-key expiry.

    An expired entry and an absent one are indistinguishable: both read as
    ``None``. Driver failures raise ``CatalogError(INFRASTRUCTURE_FAILURE)``.
    """

    async def get(self, key: str) -> bytes | None: ...

    async def set(self, key: str, value: bytes, ttl_seconds: int) -> None: ...

    async def cleanup_if_due(self, interval_hours: int) -> None: ...


class StoreProtocol(Protocol):
    """Persistent, queryable entity store keyed by ``mal_id``."""

    async def find_by_id(
        self, entity_type: EntityType, mal_id: int
    ) -> Anime | Character | None: ...

    async def upsert(self, entity: Anime | Character) -> None: ...

    async def upsert_many(self, entities: Sequence[Anime | Character]) -> None: ...

    async def query(
        self,
        entity_type: EntityType,
        flt: CatalogFilter,
        sort: SortKey,
        *,
        skip: int,
        limit: int,
    ) -> tuple[list[Anime | Character], int]: ...


class UpstreamProtocol(Protocol):
    """Rate-limited client for the third-party catalog API.

    Raises ``CatalogError`` with ``UPSTREAM_NOT_FOUND`` for verified absence
    and ``UPSTREAM_UNAVAILABLE`` / ``UPSTREAM_RATE_LIMITED`` for transient
    failures. Payloads are returned in the foreign schema, unvalidated.
    """

    async def get_entity(self, entity_type: EntityType, mal_id: int) -> dict[str, Any]: ...

    async def search(
        self,
        entity_type: EntityType,
        text: str,
        flt: CatalogFilter,
        page: int = 1,
    ) -> list[dict[str, Any]]: ...
