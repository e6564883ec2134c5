"""Unit tests for anicatalog.store."""

from __future__ import annotations

from datetime import UTC, datetime
from typing import TYPE_CHECKING

import pytest

from anicatalog.errors import CatalogError, ErrorCode
from anicatalog.models.entities import Character, EntityType
from anicatalog.models.query import CatalogFilter, SortKey

if TYPE_CHECKING:
    from anicatalog.store import CatalogStore


async def _seed(store: CatalogStore, anime_factory) -> None:
    await store.upsert_many(
        [
            anime_factory(
                1,
                "Cowboy Bebop",
                day="Saturdays",
                time="01:00",
                score=8.8,
                popularity=40,
                genres=("Action", "Sci-Fi"),
                status="Finished Airing",
            ),
            anime_factory(
                2,
                "Frieren",
                day="Fridays",
                time="23:00",
                score=9.3,
                popularity=150,
                genres=("Adventure", "Drama", "Fantasy"),
            ),
            anime_factory(
                3,
                "Dungeon Meshi",
                day="Thursdays",
                time="22:30",
                score=8.6,
                popularity=400,
                genres=("Adventure", "Comedy", "Fantasy"),
            ),
            anime_factory(4, "Untitled Short", day="Other", score=None, genres=("Comedy",)),
            anime_factory(
                5,
                "100% Pascal-sensei",
                day="Fridays",
                time="18:00",
                score=6.1,
                popularity=7000,
                genres=("Comedy",),
            ),
        ]
    )


def _ids(items) -> list[int]:
    return [item.mal_id for item in items]


# ---------------------------------------------------------------------------
# Writes and point lookups
# ---------------------------------------------------------------------------


class TestUpsert:
    async def test_find_by_id_roundtrip(self, store: CatalogStore, anime_factory) -> None:
        anime = anime_factory(5114, "FMA:B", day="Sundays", time="17:00", genres=("Action",))
        await store.upsert(anime)
        found = await store.find_by_id(EntityType.ANIME, 5114)
        assert found is not None
        assert found.model_dump() == anime.model_dump()

    async def test_find_missing_returns_none(self, store: CatalogStore) -> None:
        assert await store.find_by_id(EntityType.ANIME, 404) is None

    async def test_upsert_replaces_by_id(self, store: CatalogStore, anime_factory) -> None:
        await store.upsert(anime_factory(7, "Old Title", score=5.0))
        await store.upsert(anime_factory(7, "New Title", score=7.5))

        items, total = await store.query(
            EntityType.ANIME, CatalogFilter(), SortKey.SCORE, skip=0, limit=10
        )
        assert total == 1
        assert items[0].titles.default == "New Title"
        assert items[0].score == 7.5

    async def test_types_are_separate_keyspaces(self, store: CatalogStore, anime_factory) -> None:
        await store.upsert(anime_factory(11, "Anime Eleven"))
        await store.upsert(
            Character(mal_id=11, name="Edward Elric", last_updated=datetime.now(UTC))
        )
        anime = await store.find_by_id(EntityType.ANIME, 11)
        character = await store.find_by_id(EntityType.CHARACTER, 11)
        assert anime is not None and anime.data_type == "anime"
        assert character is not None and character.data_type == "character"

    async def test_upsert_many_empty_is_noop(self, store: CatalogStore) -> None:
        await store.upsert_many([])


# ---------------------------------------------------------------------------
# Filtered queries
# ---------------------------------------------------------------------------


class TestQuery:
    async def test_text_matches_any_title_case_insensitive(
        self, store: CatalogStore, anime_factory
    ) -> None:
        await _seed(store, anime_factory)
        items, total = await store.query(
            EntityType.ANIME, CatalogFilter(text="MESHI"), SortKey.SCORE, skip=0, limit=10
        )
        assert _ids(items) == [3]
        assert total == 1

    async def test_like_wildcards_are_literal(self, store: CatalogStore, anime_factory) -> None:
        await _seed(store, anime_factory)
        items, _ = await store.query(
            EntityType.ANIME, CatalogFilter(text="100%"), SortKey.SCORE, skip=0, limit=10
        )
        assert _ids(items) == [5]
        items, _ = await store.query(
            EntityType.ANIME, CatalogFilter(text="%"), SortKey.SCORE, skip=0, limit=10
        )
        assert _ids(items) == [5]

    async def test_genre_filter_is_any_of(self, store: CatalogStore, anime_factory) -> None:
        await _seed(store, anime_factory)
        items, total = await store.query(
            EntityType.ANIME,
            CatalogFilter(genres=["Sci-Fi", "Drama"]),
            SortKey.SCORE,
            skip=0,
            limit=10,
        )
        assert _ids(items) == [2, 1]
        assert total == 2

    async def test_broadcast_days_filter(self, store: CatalogStore, anime_factory) -> None:
        await _seed(store, anime_factory)
        items, _ = await store.query(
            EntityType.ANIME,
            CatalogFilter(broadcast_days=["Fridays", "Other"]),
            SortKey.BROADCAST,
            skip=0,
            limit=10,
        )
        # Missing time sorts last
        assert _ids(items) == [5, 2, 4]

    async def test_score_range_and_status(self, store: CatalogStore, anime_factory) -> None:
        await _seed(store, anime_factory)
        items, _ = await store.query(
            EntityType.ANIME,
            CatalogFilter(min_score=8.0, max_score=9.0, status="Currently Airing"),
            SortKey.SCORE,
            skip=0,
            limit=10,
        )
        assert _ids(items) == [3]

    async def test_rating_is_prefix_match(self, store: CatalogStore, anime_factory) -> None:
        rated = anime_factory(20, "Rated")
        await store.upsert(rated.model_copy(update={"rating": "PG-13 - Teens 13 or older"}))
        items, _ = await store.query(
            EntityType.ANIME, CatalogFilter(rating="pg-13"), SortKey.SCORE, skip=0, limit=10
        )
        assert _ids(items) == [20]
        items, _ = await store.query(
            EntityType.ANIME, CatalogFilter(rating="teens"), SortKey.SCORE, skip=0, limit=10
        )
        assert items == []

    async def test_score_sort_puts_nulls_last(self, store: CatalogStore, anime_factory) -> None:
        await _seed(store, anime_factory)
        items, _ = await store.query(
            EntityType.ANIME, CatalogFilter(), SortKey.SCORE, skip=0, limit=10
        )
        assert _ids(items) == [2, 1, 3, 5, 4]

    async def test_pages_do_not_overlap(self, store: CatalogStore, anime_factory) -> None:
        await store.upsert_many([anime_factory(i, score=7.0) for i in range(1, 8)])
        first, total = await store.query(
            EntityType.ANIME, CatalogFilter(), SortKey.SCORE, skip=0, limit=3
        )
        second, _ = await store.query(
            EntityType.ANIME, CatalogFilter(), SortKey.SCORE, skip=3, limit=3
        )
        assert total == 7
        assert _ids(first) == [1, 2, 3]
        assert _ids(second) == [4, 5, 6]

    async def test_unsupported_sort_is_invalid_input(self, store: CatalogStore) -> None:
        with pytest.raises(CatalogError) as exc_info:
            await store.query(
                EntityType.CHARACTER, CatalogFilter(), SortKey.BROADCAST, skip=0, limit=10
            )
        assert exc_info.value.code == ErrorCode.INVALID_INPUT

    async def test_anime_filters_rejected_for_characters(self, store: CatalogStore) -> None:
        with pytest.raises(CatalogError) as exc_info:
            await store.query(
                EntityType.CHARACTER,
                CatalogFilter(text="ed", genres=["Action"]),
                SortKey.FAVORITES,
                skip=0,
                limit=10,
            )
        assert exc_info.value.code == ErrorCode.INVALID_INPUT
        assert "genres" in exc_info.value.message

    async def test_character_search_by_nickname(self, store: CatalogStore) -> None:
        now = datetime.now(UTC)
        await store.upsert_many(
            [
                Character(
                    mal_id=11,
                    name="Edward Elric",
                    nicknames=["Fullmetal"],
                    favorites=80,
                    last_updated=now,
                ),
                Character(mal_id=12, name="Alphonse Elric", favorites=30, last_updated=now),
            ]
        )
        items, total = await store.query(
            EntityType.CHARACTER,
            CatalogFilter(text="fullmetal"),
            SortKey.FAVORITES,
            skip=0,
            limit=10,
        )
        assert _ids(items) == [11]
        assert total == 1

        items, _ = await store.query(
            EntityType.CHARACTER, CatalogFilter(text="elric"), SortKey.FAVORITES, skip=0, limit=10
        )
        assert _ids(items) == [11, 12]


# ---------------------------------------------------------------------------
# Genre listings
# ---------------------------------------------------------------------------


class TestGenres:
    async def test_list_genres_sorted_by_name(self, store: CatalogStore, anime_factory) -> None:
        await _seed(store, anime_factory)
        genres = await store.list_genres()
        assert [g["name"] for g in genres] == sorted(g["name"] for g in genres)
        assert {"Action", "Comedy", "Fantasy"} <= {g["name"] for g in genres}

    async def test_popular_genres_ranked_by_count(
        self, store: CatalogStore, anime_factory
    ) -> None:
        await store.upsert_many(
            [
                anime_factory(1, genres=("Comedy",)),
                anime_factory(2, genres=("Comedy", "Drama")),
                anime_factory(3, genres=("Comedy",)),
            ]
        )
        genres = await store.popular_genres(limit=1)
        assert genres == [{"id": 4, "name": "Comedy", "count": 3}]


# ---------------------------------------------------------------------------
# Failures
# ---------------------------------------------------------------------------


class TestInfrastructureFailure:
    async def test_driver_error_is_not_a_miss(self, store: CatalogStore) -> None:
        await store._db.execute("DROP TABLE anime")
        with pytest.raises(CatalogError) as exc_info:
            await store.find_by_id(EntityType.ANIME, 1)
        assert exc_info.value.code == ErrorCode.INFRASTRUCTURE_FAILURE
        assert exc_info.value.recoverable is True
