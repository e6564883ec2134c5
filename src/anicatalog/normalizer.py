"""Foreign (Jikan) → internal entity normalisation.

Pure transformation: the same payload always yields the same entity, apart
from ``last_updated`` which is set from ``now``. Shape problems never fail
the call: offending fields (or list items) are dropped, defaults are
substituted and a ``normaliser_shape_mismatch`` warning is logged.
"""

from __future__ import annotations

from collections.abc import Mapping
from datetime import UTC, datetime
from typing import Any, TypeVar

import structlog
from pydantic import BaseModel, ValidationError

from anicatalog.models.entities import (
    Aired,
    Anime,
    AnimeRef,
    Broadcast,
    Character,
    EntityType,
    Images,
    ImageSet,
    NamedRef,
    Titles,
    Trailer,
    VoiceActor,
)
from anicatalog.models.upstream import (
    JikanAnime,
    JikanCharacter,
    JikanImages,
    JikanImageSet,
    JikanNamedRef,
)
from anicatalog.timezones import OTHER_DAY, SOURCE_TIMEZONE, normalise_day, parse_time

log = structlog.get_logger()

_M = TypeVar("_M", bound=BaseModel)


def _validate_tolerant(model_cls: type[_M], payload: Any) -> _M:
    """Validate ``payload``, discarding whatever does not fit the model.

    A bad item inside a list drops just that item; any other bad field is
    dropped entirely. Repeats until the remainder validates.
    """
    if not isinstance(payload, Mapping):
        log.warning(
            "normaliser_shape_mismatch",
            model=model_cls.__name__,
            fields=["<root>"],
            reason=f"expected object, got {type(payload).__name__}",
        )
        return model_cls()

    data = dict(payload)
    while True:
        try:
            return model_cls.model_validate(data)
        except ValidationError as exc:
            errors = exc.errors()

        dropped_keys: set[str] = set()
        dropped_items: dict[str, set[int]] = {}
        for err in errors:
            loc = err["loc"]
            if not loc:
                continue
            key = str(loc[0])
            if len(loc) >= 2 and isinstance(loc[1], int) and isinstance(data.get(key), list):
                dropped_items.setdefault(key, set()).add(loc[1])
            else:
                dropped_keys.add(key)

        if not dropped_keys and not dropped_items:
            return model_cls()

        log.warning(
            "normaliser_shape_mismatch",
            model=model_cls.__name__,
            fields=sorted(dropped_keys),
            items={key: sorted(idx) for key, idx in dropped_items.items()},
        )
        for key in dropped_keys:
            data.pop(key, None)
        for key, indexes in dropped_items.items():
            if key in data:
                data[key] = [item for i, item in enumerate(data[key]) if i not in indexes]


def _image_set(raw: JikanImageSet | None) -> ImageSet:
    if raw is None:
        return ImageSet()
    return ImageSet(
        image_url=raw.image_url,
        small_image_url=raw.small_image_url,
        large_image_url=raw.large_image_url,
    )


def _images(raw: JikanImages | None) -> Images:
    if raw is None:
        return Images()
    return Images(jpg=_image_set(raw.jpg), webp=_image_set(raw.webp))


def _primary_image(raw: JikanImages | None) -> str | None:
    if raw is None or raw.jpg is None:
        return None
    return raw.jpg.image_url


def _refs(items: list[JikanNamedRef] | None) -> list[NamedRef]:
    refs: list[NamedRef] = []
    for item in items or []:
        if item.mal_id is None or not item.name:
            continue
        refs.append(
            NamedRef(mal_id=item.mal_id, name=item.name, type=item.type or "", url=item.url)
        )
    return refs


def _broadcast(raw: JikanAnime) -> Broadcast:
    if raw.broadcast is None:
        return Broadcast()
    day = None
    if raw.broadcast.day:
        # A day the upstream names but we cannot place on the week is "Other".
        day = normalise_day(raw.broadcast.day) or OTHER_DAY
    # Zero-padded so the stored string sorts in clock order.
    parsed = parse_time(raw.broadcast.time)
    time = f"{parsed[0]:02d}:{parsed[1]:02d}" if parsed else None
    return Broadcast(
        day=day,
        time=time,
        timezone=SOURCE_TIMEZONE,
        string=raw.broadcast.string,
    )


def normalise_anime(
    payload: Any,
    *,
    now: datetime | None = None,
    fallback_id: int | None = None,
) -> Anime:
    """Build an Anime from a Jikan anime payload.

    ``fallback_id`` is used when the payload itself carries no ``mal_id``
    (the caller asked for a specific id). Raises ValueError when neither is
    available, since an entity without a key cannot be stored.
    """
    raw = _validate_tolerant(JikanAnime, payload)
    mal_id = raw.mal_id if raw.mal_id is not None else fallback_id
    if mal_id is None:
        raise ValueError("anime payload has no mal_id")

    aired = raw.aired
    trailer = raw.trailer
    return Anime(
        mal_id=mal_id,
        titles=Titles(
            default=raw.title or raw.title_english or raw.title_japanese or "",
            english=raw.title_english,
            japanese=raw.title_japanese,
            synonyms=list(raw.title_synonyms or []),
        ),
        images=_images(raw.images),
        trailer=Trailer(youtube_id=trailer.youtube_id, url=trailer.url) if trailer else Trailer(),
        aired=Aired(start=aired.from_, end=aired.to, string=aired.string) if aired else Aired(),
        broadcast=_broadcast(raw),
        demographics=_refs(raw.demographics),
        genres=_refs(raw.genres),
        studios=_refs(raw.studios),
        producers=_refs(raw.producers),
        rating=raw.rating,
        duration=raw.duration,
        episodes=raw.episodes,
        score=raw.score,
        status=raw.status,
        popularity=raw.popularity,
        rank=raw.rank,
        members=raw.members,
        synopsis=raw.synopsis,
        type=raw.type,
        season=raw.season,
        year=raw.year,
        last_updated=now or datetime.now(UTC),
    )


def normalise_character(
    payload: Any,
    *,
    now: datetime | None = None,
    fallback_id: int | None = None,
) -> Character:
    """Build a Character from a Jikan character payload.

    Search results carry no ``anime`` / ``voices`` lists; those normalise to
    empty collections.
    """
    raw = _validate_tolerant(JikanCharacter, payload)
    mal_id = raw.mal_id if raw.mal_id is not None else fallback_id
    if mal_id is None:
        raise ValueError("character payload has no mal_id")

    anime_refs: list[AnimeRef] = []
    for entry in raw.anime or []:
        if entry.anime is None or entry.anime.mal_id is None:
            continue
        anime_refs.append(
            AnimeRef(
                mal_id=entry.anime.mal_id,
                title=entry.anime.title,
                image=_primary_image(entry.anime.images),
                role=entry.role,
            )
        )

    voice_actors: list[VoiceActor] = []
    for voice in raw.voices or []:
        if voice.person is None or voice.person.mal_id is None:
            continue
        voice_actors.append(
            VoiceActor(
                mal_id=voice.person.mal_id,
                name=voice.person.name,
                language=voice.language,
                url=voice.person.url,
                image=_primary_image(voice.person.images),
            )
        )

    return Character(
        mal_id=mal_id,
        name=raw.name or "",
        name_kanji=raw.name_kanji,
        nicknames=list(raw.nicknames or []),
        about=raw.about,
        favorites=raw.favorites or 0,
        images=_images(raw.images),
        anime_refs=anime_refs,
        voice_actors=voice_actors,
        last_updated=now or datetime.now(UTC),
    )


def normalise(
    entity_type: EntityType,
    payload: Any,
    *,
    now: datetime | None = None,
    fallback_id: int | None = None,
) -> Anime | Character:
    if entity_type == EntityType.ANIME:
        return normalise_anime(payload, now=now, fallback_id=fallback_id)
    return normalise_character(payload, now=now, fallback_id=fallback_id)
