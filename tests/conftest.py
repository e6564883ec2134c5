"""Shared test fixtures for the anicatalog test suite."""

from __future__ import annotations

import asyncio
from datetime import UTC, datetime
from typing import Any

import aiosqlite
import pytest

from anicatalog.cache import MemoryCache, SqliteCache
from anicatalog.config import Settings
from anicatalog.errors import CatalogError, ErrorCode
from anicatalog.models.entities import Anime, Broadcast, EntityType, NamedRef, Titles
from anicatalog.resolver import Resolver
from anicatalog.store import CatalogStore

FIXED_NOW = datetime(2026, 1, 5, 12, 0, tzinfo=UTC)

GENRE_IDS = {
    "Action": 1,
    "Adventure": 2,
    "Comedy": 4,
    "Drama": 8,
    "Fantasy": 10,
    "Romance": 22,
    "Sci-Fi": 24,
}


def build_anime(
    mal_id: int,
    title: str | None = None,
    *,
    day: str | None = None,
    time: str | None = None,
    score: float | None = None,
    popularity: int | None = None,
    status: str | None = "Currently Airing",
    genres: tuple[str, ...] = (),
    season: str | None = None,
    year: int | None = None,
) -> Anime:
    """Build a normalised Anime with just the fields a test cares about."""
    return Anime(
        mal_id=mal_id,
        titles=Titles(default=title or f"Anime {mal_id}"),
        broadcast=Broadcast(day=day, time=time, timezone="Asia/Tokyo"),
        genres=[
            NamedRef(mal_id=GENRE_IDS[name], name=name, type="anime") for name in genres
        ],
        score=score,
        popularity=popularity,
        status=status,
        season=season,
        year=year,
        last_updated=FIXED_NOW,
    )


@pytest.fixture()
def fma_payload() -> dict[str, Any]:
    """Trimmed Jikan /anime/5114/full payload."""
    return {
        "mal_id": 5114,
        "url": "https://myanimelist.net/anime/5114",
        "images": {
            "jpg": {
                "image_url": "https://cdn.myanimelist.net/images/anime/1208/94745.jpg",
                "small_image_url": "https://cdn.myanimelist.net/images/anime/1208/94745t.jpg",
                "large_image_url": "https://cdn.myanimelist.net/images/anime/1208/94745l.jpg",
            },
        },
        "trailer": {"youtube_id": "--IcmZkvL0Q", "url": None},
        "title": "FMA:B",
        "title_english": "Fullmetal Alchemist: Brotherhood",
        "title_japanese": "鋼の錬金術師 FULLMETAL ALCHEMIST",
        "title_synonyms": ["Hagane no Renkinjutsushi: Fullmetal Alchemist"],
        "type": "TV",
        "episodes": 64,
        "status": "Finished Airing",
        "aired": {
            "from": "2009-04-05T00:00:00+00:00",
            "to": "2010-07-04T00:00:00+00:00",
            "string": "Apr 5, 2009 to Jul 4, 2010",
        },
        "duration": "24 min per ep",
        "rating": "R - 17+ (violence & profanity)",
        "score": 9.1,
        "rank": 1,
        "popularity": 3,
        "members": 3400000,
        "synopsis": "After a horrific alchemy experiment goes wrong...",
        "season": "spring",
        "year": 2009,
        "broadcast": {
            "day": "Sundays",
            "time": "17:00",
            "timezone": "Asia/Tokyo",
            "string": "Sundays at 17:00 (JST)",
        },
        "producers": [{"mal_id": 17, "type": "anime", "name": "Aniplex", "url": None}],
        "studios": [{"mal_id": 4, "type": "anime", "name": "Bones", "url": None}],
        "genres": [
            {"mal_id": 1, "type": "anime", "name": "Action", "url": None},
            {"mal_id": 2, "type": "anime", "name": "Adventure", "url": None},
            {"mal_id": 8, "type": "anime", "name": "Drama", "url": None},
        ],
        "demographics": [{"mal_id": 27, "type": "anime", "name": "Shounen", "url": None}],
    }


@pytest.fixture()
def character_payload() -> dict[str, Any]:
    """Trimmed Jikan /characters/11/full payload."""
    return {
        "mal_id": 11,
        "images": {"jpg": {"image_url": "https://cdn.example/edward.jpg"}},
        "name": "Edward Elric",
        "name_kanji": "エドワード・エルリック",
        "nicknames": ["Fullmetal Alchemist", "Ed"],
        "favorites": 82000,
        "about": "Edward is the youngest State Alchemist...",
        "anime": [
            {
                "role": "Main",
                "anime": {
                    "mal_id": 5114,
                    "title": "Fullmetal Alchemist: Brotherhood",
                    "images": {"jpg": {"image_url": "https://cdn.example/fmab.jpg"}},
                },
            }
        ],
        "voices": [
            {
                "language": "Japanese",
                "person": {
                    "mal_id": 80,
                    "name": "Park, Romi",
                    "url": "https://myanimelist.net/people/80",
                    "images": {"jpg": {"image_url": "https://cdn.example/romi.jpg"}},
                },
            }
        ],
    }


class FakeUpstream:
    """Counting UpstreamProtocol implementation.

    ``entities`` maps ``(entity_type, mal_id)`` to a payload; missing keys
    raise UPSTREAM_NOT_FOUND. Setting ``error`` makes every call raise it.
    When ``gate`` is set, calls block until it is released.
    """

    def __init__(self) -> None:
        self.entities: dict[tuple[EntityType, int], dict[str, Any]] = {}
        self.search_results: dict[EntityType, list[dict[str, Any]]] = {}
        self.error: Exception | None = None
        self.gate: asyncio.Event | None = None
        self.entity_calls: list[tuple[EntityType, int]] = []
        self.search_calls: list[tuple[EntityType, str]] = []

    async def get_entity(self, entity_type: EntityType, mal_id: int) -> dict[str, Any]:
        self.entity_calls.append((entity_type, mal_id))
        if self.gate is not None:
            await self.gate.wait()
        if self.error is not None:
            raise self.error
        payload = self.entities.get((entity_type, mal_id))
        if payload is None:
            raise CatalogError(
                code=ErrorCode.UPSTREAM_NOT_FOUND,
                message="HTTP 404",
                suggestion="",
                recoverable=False,
            )
        return payload

    async def search(self, entity_type, text, flt, page=1) -> list[dict[str, Any]]:
        self.search_calls.append((entity_type, text))
        if self.error is not None:
            raise self.error
        return list(self.search_results.get(entity_type, []))


def upstream_error(code: ErrorCode = ErrorCode.UPSTREAM_UNAVAILABLE) -> CatalogError:
    return CatalogError(code=code, message=f"upstream {code}", suggestion="", recoverable=True)


@pytest.fixture()
def anime_factory():
    """Return :func:`build_anime` so tests can seed the store."""
    return build_anime


@pytest.fixture()
def make_upstream_error():
    return upstream_error


@pytest.fixture()
def settings() -> Settings:
    return Settings()


@pytest.fixture()
async def store() -> CatalogStore:
    async with aiosqlite.connect(":memory:") as db:
        catalog_store = CatalogStore(db)
        await catalog_store.init_db()
        yield catalog_store


@pytest.fixture()
def memory_cache() -> MemoryCache:
    return MemoryCache()


@pytest.fixture()
async def sqlite_cache() -> SqliteCache:
    async with aiosqlite.connect(":memory:") as db:
        cache = SqliteCache(db)
        await cache.init_db()
        yield cache


@pytest.fixture()
def upstream() -> FakeUpstream:
    return FakeUpstream()


@pytest.fixture()
def resolver(
    memory_cache: MemoryCache,
    store: CatalogStore,
    upstream: FakeUpstream,
    settings: Settings,
) -> Resolver:
    return Resolver(memory_cache, store, upstream, settings)
