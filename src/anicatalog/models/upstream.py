"""Foreign (Jikan v4) payload shapes.

Every field is optional with a default: the upstream omits, nulls or
reshapes nested objects often enough that presence is never assumed. Only
the Normalizer reads these models.
"""

from __future__ import annotations

from datetime import datetime

from pydantic import BaseModel, ConfigDict, Field


class _Foreign(BaseModel):
    model_config = ConfigDict(extra="ignore")


class JikanImageSet(_Foreign):
    image_url: str | None = None
    small_image_url: str | None = None
    large_image_url: str | None = None


class JikanImages(_Foreign):
    jpg: JikanImageSet | None = None
    webp: JikanImageSet | None = None


class JikanNamedRef(_Foreign):
    mal_id: int | None = None
    type: str | None = None
    name: str | None = None
    url: str | None = None


class JikanTrailer(_Foreign):
    youtube_id: str | None = None
    url: str | None = None


class JikanAired(_Foreign):
    from_: datetime | None = Field(default=None, alias="from")
    to: datetime | None = None
    string: str | None = None


class JikanBroadcast(_Foreign):
    day: str | None = None
    time: str | None = None
    timezone: str | None = None
    string: str | None = None


class JikanAnime(_Foreign):
    mal_id: int | None = None
    images: JikanImages | None = None
    trailer: JikanTrailer | None = None
    title: str | None = None
    title_english: str | None = None
    title_japanese: str | None = None
    title_synonyms: list[str] | None = None
    type: str | None = None
    episodes: int | None = None
    status: str | None = None
    aired: JikanAired | None = None
    duration: str | None = None
    rating: str | None = None
    score: float | None = None
    rank: int | None = None
    popularity: int | None = None
    members: int | None = None
    synopsis: str | None = None
    season: str | None = None
    year: int | None = None
    broadcast: JikanBroadcast | None = None
    producers: list[JikanNamedRef] | None = None
    studios: list[JikanNamedRef] | None = None
    genres: list[JikanNamedRef] | None = None
    demographics: list[JikanNamedRef] | None = None


class JikanAnimeStub(_Foreign):
    mal_id: int | None = None
    title: str | None = None
    images: JikanImages | None = None


class JikanCharacterAnime(_Foreign):
    role: str | None = None
    anime: JikanAnimeStub | None = None


class JikanPerson(_Foreign):
    mal_id: int | None = None
    name: str | None = None
    url: str | None = None
    images: JikanImages | None = None


class JikanVoice(_Foreign):
    language: str | None = None
    person: JikanPerson | None = None


class JikanCharacter(_Foreign):
    mal_id: int | None = None
    images: JikanImages | None = None
    name: str | None = None
    name_kanji: str | None = None
    nicknames: list[str] | None = None
    favorites: int | None = None
    about: str | None = None
    anime: list[JikanCharacterAnime] | None = None
    voices: list[JikanVoice] | None = None
