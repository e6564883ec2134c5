"""Internal (normalised) entity schema.

``mal_id`` is the only key used across all tiers: cache key derivation,
store lookup and upstream lookup.
"""

from __future__ import annotations

from datetime import datetime
from enum import StrEnum
from typing import Annotated, Literal

from pydantic import BaseModel, Field


class EntityType(StrEnum):
    ANIME = "anime"
    CHARACTER = "character"


class ImageSet(BaseModel):
    image_url: str | None = None
    small_image_url: str | None = None
    large_image_url: str | None = None


class Images(BaseModel):
    jpg: ImageSet = ImageSet()
    webp: ImageSet = ImageSet()


class NamedRef(BaseModel):
    """Genre, demographic, studio or producer reference."""

    mal_id: int
    name: str
    type: str = ""
    url: str | None = None


class Titles(BaseModel):
    default: str
    english: str | None = None
    japanese: str | None = None
    synonyms: list[str] = []


class Trailer(BaseModel):
    youtube_id: str | None = None
    url: str | None = None


class Aired(BaseModel):
    start: datetime | None = None
    end: datetime | None = None
    string: str | None = None


class Broadcast(BaseModel):
    """Weekly broadcast slot.

    ``time`` is always relative to ``timezone``. Stored entities carry the
    upstream's source zone; converted copies are derived per request and never
    written back.
    """

    day: str | None = None  # Canonical plural ("Sundays") or "Other"
    time: str | None = None  # "HH:MM", 24h
    timezone: str | None = None
    string: str | None = None


class Anime(BaseModel):
    data_type: Literal["anime"] = "anime"
    mal_id: int
    titles: Titles
    images: Images = Images()
    trailer: Trailer = Trailer()
    aired: Aired = Aired()
    broadcast: Broadcast = Broadcast()
    demographics: list[NamedRef] = []
    genres: list[NamedRef] = []
    studios: list[NamedRef] = []
    producers: list[NamedRef] = []
    rating: str | None = None
    duration: str | None = None
    episodes: int | None = None
    score: float | None = None
    status: str | None = None
    popularity: int | None = None
    rank: int | None = None
    members: int | None = None
    synopsis: str | None = None
    type: str | None = None
    season: str | None = None
    year: int | None = None
    last_updated: datetime


class AnimeRef(BaseModel):
    mal_id: int
    title: str | None = None
    image: str | None = None
    role: str | None = None  # "Main" | "Supporting"


class VoiceActor(BaseModel):
    mal_id: int
    name: str | None = None
    language: str | None = None
    url: str | None = None
    image: str | None = None


class Character(BaseModel):
    data_type: Literal["character"] = "character"
    mal_id: int
    name: str
    name_kanji: str | None = None
    nicknames: list[str] = []
    about: str | None = None
    favorites: int = 0
    images: Images = Images()
    anime_refs: list[AnimeRef] = []
    voice_actors: list[VoiceActor] = []
    last_updated: datetime


Entity = Annotated[Anime | Character, Field(discriminator="data_type")]
