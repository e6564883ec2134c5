"""SQLite catalog store for normalised entities.

One table per entity type. Each row holds the full entity as a JSON document
plus the handful of columns the filters and sorts need, indexed. Every write
is a single ``INSERT ... ON CONFLICT(mal_id) DO UPDATE`` statement, so
concurrent writers of the same id resolve last-writer-wins without extra
locking and an id is never duplicated.

Driver failures are logged and re-raised as
``CatalogError(INFRASTRUCTURE_FAILURE)``; they are never treated as
"not found".
"""

from __future__ import annotations

import json
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any

import aiosqlite
import structlog

from anicatalog.errors import CatalogError, ErrorCode, infrastructure_error
from anicatalog.models.entities import Anime, Character, EntityType
from anicatalog.models.query import CatalogFilter, SortKey

if TYPE_CHECKING:
    from collections.abc import Callable, Sequence

log = structlog.get_logger()

_CREATE_ANIME_TABLE = """
CREATE TABLE IF NOT EXISTS anime (
    mal_id         INTEGER PRIMARY KEY,
    title          TEXT NOT NULL,
    title_english  TEXT,
    title_japanese TEXT,
    title_synonyms TEXT NOT NULL DEFAULT '',
    type           TEXT,
    status         TEXT,
    rating         TEXT,
    score          REAL,
    popularity     INTEGER,
    season         TEXT,
    year           INTEGER,
    broadcast_day  TEXT,
    broadcast_time TEXT,
    genre_names    TEXT NOT NULL DEFAULT '[]',
    document       TEXT NOT NULL,
    last_updated   TEXT NOT NULL
)
"""

_CREATE_CHARACTER_TABLE = """
CREATE TABLE IF NOT EXISTS character (
    mal_id       INTEGER PRIMARY KEY,
    name         TEXT NOT NULL,
    name_kanji   TEXT,
    nicknames    TEXT NOT NULL DEFAULT '',
    favorites    INTEGER NOT NULL DEFAULT 0,
    document     TEXT NOT NULL,
    last_updated TEXT NOT NULL
)
"""

_CREATE_INDEXES = (
    "CREATE INDEX IF NOT EXISTS idx_anime_title ON anime(title COLLATE NOCASE)",
    "CREATE INDEX IF NOT EXISTS idx_anime_status_score ON anime(status, score DESC)",
    "CREATE INDEX IF NOT EXISTS idx_anime_score ON anime(score)",
    "CREATE INDEX IF NOT EXISTS idx_anime_popularity ON anime(popularity)",
    "CREATE INDEX IF NOT EXISTS idx_anime_day_time ON anime(broadcast_day, broadcast_time)",
    "CREATE INDEX IF NOT EXISTS idx_anime_season_year ON anime(season, year)",
    "CREATE INDEX IF NOT EXISTS idx_anime_type ON anime(type)",
    "CREATE INDEX IF NOT EXISTS idx_character_name ON character(name COLLATE NOCASE)",
    "CREATE INDEX IF NOT EXISTS idx_character_favorites ON character(favorites DESC)",
)


def _like_pattern(text: str) -> str:
    """Case-insensitive substring LIKE pattern with wildcards escaped."""
    escaped = text.lower().replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")
    return f"%{escaped}%"


def _anime_row(entity: Anime) -> dict[str, Any]:
    return {
        "mal_id": entity.mal_id,
        "title": entity.titles.default,
        "title_english": entity.titles.english,
        "title_japanese": entity.titles.japanese,
        "title_synonyms": "\n".join(entity.titles.synonyms),
        "type": entity.type,
        "status": entity.status,
        "rating": entity.rating,
        "score": entity.score,
        "popularity": entity.popularity,
        "season": entity.season,
        "year": entity.year,
        "broadcast_day": entity.broadcast.day,
        "broadcast_time": entity.broadcast.time,
        "genre_names": json.dumps([genre.name for genre in entity.genres]),
        "document": entity.model_dump_json(),
        "last_updated": entity.last_updated.isoformat(),
    }


def _character_row(entity: Character) -> dict[str, Any]:
    return {
        "mal_id": entity.mal_id,
        "name": entity.name,
        "name_kanji": entity.name_kanji,
        "nicknames": "\n".join(entity.nicknames),
        "favorites": entity.favorites,
        "document": entity.model_dump_json(),
        "last_updated": entity.last_updated.isoformat(),
    }


@dataclass(frozen=True)
class _TableSpec:
    """Per-entity-type table layout and query vocabulary."""

    table: str
    model: type[Anime] | type[Character]
    to_row: Callable[[Any], dict[str, Any]]
    text_columns: tuple[str, ...]
    order_by: dict[SortKey, str]
    default_sort: SortKey
    filterable: bool  # Whether the anime-only filters apply

    @property
    def upsert_sql(self) -> str:
        cols = _COLUMNS[self.table]
        placeholders = ", ".join(f":{col}" for col in cols)
        updates = ", ".join(f"{col} = excluded.{col}" for col in cols if col != "mal_id")
        return (
            f"INSERT INTO {self.table} ({', '.join(cols)}) VALUES ({placeholders}) "
            f"ON CONFLICT(mal_id) DO UPDATE SET {updates}"
        )


_COLUMNS: dict[str, tuple[str, ...]] = {
    "anime": (
        "mal_id",
        "title",
        "title_english",
        "title_japanese",
        "title_synonyms",
        "type",
        "status",
        "rating",
        "score",
        "popularity",
        "season",
        "year",
        "broadcast_day",
        "broadcast_time",
        "genre_names",
        "document",
        "last_updated",
    ),
    "character": (
        "mal_id",
        "name",
        "name_kanji",
        "nicknames",
        "favorites",
        "document",
        "last_updated",
    ),
}

_SPECS: dict[EntityType, _TableSpec] = {
    EntityType.ANIME: _TableSpec(
        table="anime",
        model=Anime,
        to_row=_anime_row,
        text_columns=("title", "title_english", "title_japanese", "title_synonyms"),
        order_by={
            SortKey.SCORE: "score IS NULL, score DESC",
            SortKey.POPULARITY: "popularity IS NULL, popularity DESC",
            SortKey.TITLE: "title COLLATE NOCASE ASC",
            # Missing times sort last, as if broadcast at "99:99".
            SortKey.BROADCAST: "COALESCE(broadcast_time, '99:99') ASC",
        },
        default_sort=SortKey.SCORE,
        filterable=True,
    ),
    EntityType.CHARACTER: _TableSpec(
        table="character",
        model=Character,
        to_row=_character_row,
        text_columns=("name", "nicknames"),
        order_by={
            SortKey.FAVORITES: "favorites DESC",
            SortKey.TITLE: "name COLLATE NOCASE ASC",
        },
        default_sort=SortKey.FAVORITES,
        filterable=False,
    ),
}


def default_sort(entity_type: EntityType) -> SortKey:
    return _SPECS[entity_type].default_sort


def _where(spec: _TableSpec, flt: CatalogFilter) -> tuple[str, list[Any]]:
    """Translate a CatalogFilter into a WHERE clause and its parameters."""
    clauses: list[str] = []
    params: list[Any] = []

    text = flt.text.strip()
    if text:
        pattern = _like_pattern(text)
        clauses.append(
            "(" + " OR ".join(f"lower({col}) LIKE ? ESCAPE '\\'" for col in spec.text_columns) + ")"
        )
        params.extend([pattern] * len(spec.text_columns))

    anime_only = {
        "type": flt.type,
        "status": flt.status,
        "rating": flt.rating,
        "genres": flt.genres or None,
        "min_score": flt.min_score,
        "max_score": flt.max_score,
        "broadcast_days": flt.broadcast_days or None,
        "season": flt.season,
        "year": flt.year,
    }
    if not spec.filterable:
        used = sorted(name for name, value in anime_only.items() if value is not None)
        if used:
            raise CatalogError(
                code=ErrorCode.INVALID_INPUT,
                message=f"Filters not supported for {spec.table}: {', '.join(used)}",
                suggestion="Character search supports free text only.",
                recoverable=False,
            )
        return (" WHERE " + " AND ".join(clauses)) if clauses else "", params

    for column in ("type", "status", "season", "year"):
        value = getattr(flt, column)
        if value is not None:
            clauses.append(f"{column} = ?")
            params.append(value)
    if flt.rating:
        clauses.append("lower(rating) LIKE ? ESCAPE '\\'")
        params.append(_like_pattern(flt.rating)[1:])  # Prefix match only
    if flt.min_score is not None:
        clauses.append("score >= ?")
        params.append(flt.min_score)
    if flt.max_score is not None:
        clauses.append("score <= ?")
        params.append(flt.max_score)
    if flt.broadcast_days:
        clauses.append(f"broadcast_day IN ({', '.join('?' for _ in flt.broadcast_days)})")
        params.extend(flt.broadcast_days)
    if flt.genres:
        clauses.append(
            "EXISTS (SELECT 1 FROM json_each(anime.genre_names) "
            f"WHERE json_each.value IN ({', '.join('?' for _ in flt.genres)}))"
        )
        params.extend(flt.genres)

    return (" WHERE " + " AND ".join(clauses)) if clauses else "", params


class CatalogStore:
    """aiosqlite-backed entity store implementing StoreProtocol."""

    def __init__(self, db: aiosqlite.Connection) -> None:
        self._db = db

    async def init_db(self) -> None:
        """Create tables and indexes. Called once at startup."""
        await self._db.execute("PRAGMA journal_mode = WAL")
        await self._db.execute(_CREATE_ANIME_TABLE)
        await self._db.execute(_CREATE_CHARACTER_TABLE)
        for statement in _CREATE_INDEXES:
            await self._db.execute(statement)
        await self._db.commit()

    # ------------------------------------------------------------------
    # Single entity
    # ------------------------------------------------------------------

    async def find_by_id(self, entity_type: EntityType, mal_id: int) -> Anime | Character | None:
        spec = _SPECS[entity_type]
        try:
            cursor = await self._db.execute(
                f"SELECT document FROM {spec.table} WHERE mal_id = ?",
                (mal_id,),
            )
            row = await cursor.fetchone()
        except aiosqlite.Error as exc:
            log.error("store_read_error", entity_type=entity_type, mal_id=mal_id, exc_info=True)
            raise infrastructure_error("store", exc) from exc
        if row is None:
            return None
        return spec.model.model_validate_json(row[0])

    async def upsert(self, entity: Anime | Character) -> None:
        await self.upsert_many([entity])

    async def upsert_many(self, entities: Sequence[Anime | Character]) -> None:
        """Insert-or-replace each entity by ``mal_id`` in one transaction."""
        if not entities:
            return
        by_type: dict[EntityType, list[dict[str, Any]]] = {}
        for entity in entities:
            entity_type = EntityType(entity.data_type)
            by_type.setdefault(entity_type, []).append(_SPECS[entity_type].to_row(entity))
        try:
            for entity_type, rows in by_type.items():
                await self._db.executemany(_SPECS[entity_type].upsert_sql, rows)
            await self._db.commit()
        except aiosqlite.Error as exc:
            log.error("store_write_error", count=len(entities), exc_info=True)
            raise infrastructure_error("store", exc) from exc
        log.debug("store_upserted", count=len(entities))

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    async def query(
        self,
        entity_type: EntityType,
        flt: CatalogFilter,
        sort: SortKey,
        *,
        skip: int,
        limit: int,
    ) -> tuple[list[Anime | Character], int]:
        """Return one sorted page and the total count for the same predicate.

        ``mal_id`` ascending is the final tie-break so pages never overlap.
        """
        spec = _SPECS[entity_type]
        order = spec.order_by.get(sort)
        if order is None:
            raise CatalogError(
                code=ErrorCode.INVALID_INPUT,
                message=f"Sort '{sort}' is not supported for {spec.table}",
                suggestion=f"Use one of: {', '.join(spec.order_by)}.",
                recoverable=False,
            )
        where, params = _where(spec, flt)
        try:
            cursor = await self._db.execute(
                f"SELECT document FROM {spec.table}{where} "
                f"ORDER BY {order}, mal_id ASC LIMIT ? OFFSET ?",
                (*params, limit, skip),
            )
            rows = await cursor.fetchall()
            cursor = await self._db.execute(
                f"SELECT COUNT(*) FROM {spec.table}{where}",
                params,
            )
            count_row = await cursor.fetchone()
        except aiosqlite.Error as exc:
            log.error("store_query_error", entity_type=entity_type, exc_info=True)
            raise infrastructure_error("store", exc) from exc

        items = [spec.model.model_validate_json(row[0]) for row in rows]
        total = count_row[0] if count_row else 0
        return items, total

    async def list_genres(self) -> list[dict[str, Any]]:
        """Distinct anime genres, sorted by name."""
        return await self._genre_rows(
            "SELECT json_extract(g.value, '$.mal_id') AS id, "
            "json_extract(g.value, '$.name') AS name, COUNT(*) AS count "
            "FROM anime, json_each(anime.document, '$.genres') AS g "
            "GROUP BY id ORDER BY name ASC"
        )

    async def popular_genres(self, limit: int = 10) -> list[dict[str, Any]]:
        """Genres ranked by how many stored anime carry them."""
        return await self._genre_rows(
            "SELECT json_extract(g.value, '$.mal_id') AS id, "
            "json_extract(g.value, '$.name') AS name, COUNT(*) AS count "
            "FROM anime, json_each(anime.document, '$.genres') AS g "
            "GROUP BY id ORDER BY count DESC, name ASC LIMIT ?",
            (limit,),
        )

    async def _genre_rows(self, sql: str, params: tuple[Any, ...] = ()) -> list[dict[str, Any]]:
        try:
            cursor = await self._db.execute(sql, params)
            rows = await cursor.fetchall()
        except aiosqlite.Error as exc:
            log.error("store_query_error", entity_type="genre", exc_info=True)
            raise infrastructure_error("store", exc) from exc
        return [{"id": row[0], "name": row[1], "count": row[2]} for row in rows]
