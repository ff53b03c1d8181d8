"""Movie entities, provider payloads and projection value objects."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Generic, Mapping, TypeVar

from pydantic import BaseModel, Field

T = TypeVar("T")

EARLIEST = datetime(1970, 1, 1, tzinfo=timezone.utc)


class Provider(str, Enum):
    """Remote services an entity can be fetched from."""

    TRAKT = "trakt"
    TMDB = "tmdb"


# Fields owned by the public catalog. TMDB values win over Trakt values.
CATALOG_FIELDS: tuple[str, ...] = (
    "title",
    "overview",
    "tagline",
    "year",
    "released",
    "runtime",
    "genres",
    "certification",
    "poster_path",
    "backdrop_path",
    "rating_percent",
)

# Per-user fields, only ever taken from the authenticated Trakt API.
USER_FIELDS: tuple[str, ...] = (
    "watched",
    "in_collection",
    "in_watchlist",
    "user_rating",
    "plays",
)


def parse_release_date(value: object) -> datetime | None:
    """Parse an ISO date or timestamp into an aware UTC datetime."""

    if not isinstance(value, str) or not value.strip():
        return None
    try:
        parsed = datetime.fromisoformat(value.strip().replace("Z", "+00:00"))
    except ValueError:
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def trakt_identifier(ids: Mapping[str, Any]) -> str | None:
    """Return the identifier used for a movie in Trakt's namespace."""

    for key in ("imdb", "slug", "trakt"):
        value = ids.get(key)
        if value not in (None, ""):
            return str(value)
    return None


def _percent(value: object) -> int | None:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return None
    return max(0, min(100, round(float(value) * 10)))


def _int_or_none(value: object) -> int | None:
    if isinstance(value, bool) or not isinstance(value, int):
        return None
    return value


class MoviePayload(BaseModel):
    """A partial movie record as returned by one provider.

    ``None`` means the provider did not send the field; merging never
    overwrites entity data with an absent value.
    """

    source: Provider
    full: bool = False

    trakt_id: str | None = None
    tmdb_id: int | None = None

    title: str | None = None
    overview: str | None = None
    tagline: str | None = None
    year: int | None = None
    released: datetime | None = None
    runtime: int | None = None
    genres: list[str] | None = None
    certification: str | None = None
    poster_path: str | None = None
    backdrop_path: str | None = None
    rating_percent: int | None = Field(default=None, ge=0, le=100)

    user_rating: int | None = Field(default=None, ge=0, le=10)
    watched: bool | None = None
    in_collection: bool | None = None
    in_watchlist: bool | None = None
    plays: int | None = None

    @property
    def has_identity(self) -> bool:
        return bool(self.trakt_id) or self.tmdb_id is not None

    @classmethod
    def from_trakt(
        cls, data: Mapping[str, Any], *, full: bool = False, **user_fields: Any
    ) -> "MoviePayload":
        """Normalise a Trakt movie object (``extended=full`` or summary)."""

        ids = data.get("ids") or {}
        genres = [genre for genre in data.get("genres") or [] if isinstance(genre, str)]
        return cls(
            source=Provider.TRAKT,
            full=full,
            trakt_id=trakt_identifier(ids),
            tmdb_id=_int_or_none(ids.get("tmdb")),
            title=data.get("title") or None,
            overview=data.get("overview") or None,
            tagline=data.get("tagline") or None,
            year=_int_or_none(data.get("year")),
            released=parse_release_date(data.get("released")),
            runtime=_int_or_none(data.get("runtime")),
            genres=genres or None,
            certification=data.get("certification") or None,
            rating_percent=_percent(data.get("rating")),
            **user_fields,
        )

    @classmethod
    def from_tmdb(cls, data: Mapping[str, Any], *, full: bool = False) -> "MoviePayload":
        """Normalise a TMDB movie object from a listing or a detail response."""

        released = parse_release_date(data.get("release_date"))
        genres = [
            entry["name"]
            for entry in data.get("genres") or []
            if isinstance(entry, dict) and isinstance(entry.get("name"), str)
        ]
        return cls(
            source=Provider.TMDB,
            full=full,
            trakt_id=data.get("imdb_id") or None,
            tmdb_id=_int_or_none(data.get("id")),
            title=data.get("title") or data.get("original_title") or None,
            overview=data.get("overview") or None,
            tagline=data.get("tagline") or None,
            year=released.year if released else None,
            released=released,
            runtime=_int_or_none(data.get("runtime")) or None,
            genres=genres or None,
            poster_path=data.get("poster_path") or None,
            backdrop_path=data.get("backdrop_path") or None,
            rating_percent=_percent(data.get("vote_average")),
        )


@dataclass(slots=True)
class Person:
    """A cast or crew member known to TMDB."""

    tmdb_id: int
    name: str
    profile_path: str | None = None


@dataclass(slots=True)
class CastMember:
    """A person credited in a movie together with the role they played."""

    person: Person
    character: str | None = None
    order: int = 0

    @classmethod
    def from_tmdb(cls, data: Mapping[str, Any]) -> "CastMember | None":
        person_id = _int_or_none(data.get("id"))
        name = data.get("name")
        if person_id is None or not isinstance(name, str):
            return None
        return cls(
            person=Person(
                tmdb_id=person_id,
                name=name,
                profile_path=data.get("profile_path") or None,
            ),
            character=data.get("character") or None,
            order=_int_or_none(data.get("order")) or 0,
        )


@dataclass(slots=True)
class Trailer:
    """A video hosted on an external site."""

    key: str
    name: str
    site: str = "YouTube"
    size: int | None = None

    @property
    def url(self) -> str | None:
        if self.site.lower() == "youtube":
            return f"https://www.youtube.com/watch?v={self.key}"
        return None


@dataclass(eq=False)
class Movie:
    """A movie entity shared by every state collection.

    Instances are identity-hashed: the store keeps exactly one object per
    movie and all collections hold references to it.
    """

    trakt_id: str | None = None
    tmdb_id: int | None = None

    title: str | None = None
    overview: str | None = None
    tagline: str | None = None
    year: int | None = None
    released: datetime | None = None
    runtime: int | None = None
    genres: list[str] = field(default_factory=list)
    certification: str | None = None
    poster_path: str | None = None
    backdrop_path: str | None = None
    rating_percent: int = 0

    user_rating: int = 0
    watched: bool = False
    in_collection: bool = False
    in_watchlist: bool = False
    plays: int = 0

    cast: list[CastMember] = field(default_factory=list)
    related: list["Movie"] = field(default_factory=list)
    trailers: list[Trailer] = field(default_factory=list)

    _full_fetched: set[Provider] = field(default_factory=set, init=False, repr=False)
    _fetch_in_flight: set[Provider] = field(default_factory=set, init=False, repr=False)
    _field_sources: dict[str, Provider] = field(
        default_factory=dict, init=False, repr=False
    )
    _user_data_from_trakt: bool = field(default=False, init=False, repr=False)

    @classmethod
    def from_payload(cls, payload: MoviePayload) -> "Movie":
        movie = cls()
        movie.merge_from(payload)
        return movie

    def merge_from(self, payload: MoviePayload) -> None:
        """Combine a partial provider response into this entity."""

        if payload.trakt_id and not self.trakt_id:
            self.trakt_id = payload.trakt_id
        if payload.tmdb_id is not None and self.tmdb_id is None:
            self.tmdb_id = payload.tmdb_id

        for name in CATALOG_FIELDS:
            value = getattr(payload, name)
            if value is None:
                continue
            if (
                payload.source is Provider.TRAKT
                and self._field_sources.get(name) is Provider.TMDB
            ):
                continue
            setattr(self, name, list(value) if isinstance(value, list) else value)
            self._field_sources[name] = payload.source

        if payload.source is Provider.TRAKT:
            for name in USER_FIELDS:
                value = getattr(payload, name)
                if value is None:
                    continue
                setattr(self, name, value)
                self._user_data_from_trakt = True

        if payload.full:
            self._full_fetched.add(payload.source)
            self._fetch_in_flight.discard(payload.source)

    def absorb(self, other: "Movie") -> None:
        """Fold a duplicate entity for the same movie into this one."""

        if other is self:
            return
        if other.trakt_id and not self.trakt_id:
            self.trakt_id = other.trakt_id
        if other.tmdb_id is not None and self.tmdb_id is None:
            self.tmdb_id = other.tmdb_id

        for name in CATALOG_FIELDS:
            theirs = other._field_sources.get(name)
            if theirs is None:
                continue
            mine = self._field_sources.get(name)
            if mine is None or (mine is Provider.TRAKT and theirs is Provider.TMDB):
                setattr(self, name, getattr(other, name))
                self._field_sources[name] = theirs

        if other._user_data_from_trakt and not self._user_data_from_trakt:
            for name in USER_FIELDS:
                setattr(self, name, getattr(other, name))
            self._user_data_from_trakt = True

        for name in ("cast", "related", "trailers"):
            if not getattr(self, name) and getattr(other, name):
                setattr(self, name, list(getattr(other, name)))

        self._full_fetched |= other._full_fetched
        self._fetch_in_flight |= other._fetch_in_flight

    def needs_full_fetch(self, provider: Provider) -> bool:
        """True while only listing data is known and no detail fetch is running."""

        return (
            provider not in self._full_fetched
            and provider not in self._fetch_in_flight
        )

    def mark_full_fetch_started(self, provider: Provider) -> bool:
        """Flag a detail fetch as in flight; False if one already is."""

        if provider in self._fetch_in_flight:
            return False
        self._fetch_in_flight.add(provider)
        return True

    def mark_full_fetch_finished(self, provider: Provider, *, success: bool) -> None:
        self._fetch_in_flight.discard(provider)
        if success:
            self._full_fetched.add(provider)

    def forget_user_data(self) -> None:
        """Drop per-user flags, e.g. when the session that supplied them ends."""

        self.user_rating = 0
        self.watched = False
        self.in_collection = False
        self.in_watchlist = False
        self.plays = 0
        self._user_data_from_trakt = False
        self._full_fetched.discard(Provider.TRAKT)

    @property
    def loaded_from_trakt(self) -> bool:
        return Provider.TRAKT in self._full_fetched or self._user_data_from_trakt

    def display_title(self) -> str:
        title = (self.title or "").strip()
        if title:
            return title
        if self.trakt_id:
            return self.trakt_id
        if self.tmdb_id is not None:
            return f"TMDb {self.tmdb_id}"
        return "Untitled"

    def release_sort_key(self) -> datetime:
        return self.released or EARLIEST

    def to_payload(self, source: Provider = Provider.TRAKT) -> MoviePayload:
        """Snapshot the entity as a non-full payload, e.g. for the local cache."""

        return MoviePayload(
            source=source,
            trakt_id=self.trakt_id,
            tmdb_id=self.tmdb_id,
            **{name: getattr(self, name) for name in CATALOG_FIELDS},
            **{name: getattr(self, name) for name in USER_FIELDS},
        )


@dataclass(frozen=True, slots=True)
class ListItem(Generic[T]):
    """A projection entry: either a section/list header or a single item."""

    item: T | None = None
    header: Enum | None = None

    @property
    def is_header(self) -> bool:
        return self.header is not None


@dataclass
class PaginatedResult:
    """One or more pages of a provider listing."""

    items: list[Movie]
    page: int
    total_pages: int


@dataclass
class SearchResult(PaginatedResult):
    """Paginated search results together with the query that produced them."""

    query: str


@dataclass(frozen=True, slots=True)
class Account:
    """An authenticated Trakt session."""

    username: str
    access_token: str


class TmdbConfiguration(BaseModel):
    """Image hosting details advertised by TMDB's configuration endpoint."""

    secure_base_url: str = "https://image.tmdb.org/t/p/"
    poster_sizes: list[str] = Field(default_factory=list)
    backdrop_sizes: list[str] = Field(default_factory=list)
    profile_sizes: list[str] = Field(default_factory=list)

    @classmethod
    def from_tmdb(cls, data: Mapping[str, Any]) -> "TmdbConfiguration":
        images = data.get("images") or {}
        payload = {
            key: images[key]
            for key in ("secure_base_url", "poster_sizes", "backdrop_sizes", "profile_sizes")
            if images.get(key)
        }
        return cls.model_validate(payload)

    def image_url(self, path: str | None, size: str = "original") -> str | None:
        if not path:
            return None
        if path.startswith("http"):
            return path
        base = self.secure_base_url.rstrip("/")
        return f"{base}/{size}/{path.lstrip('/')}"

    def poster_url(self, path: str | None) -> str | None:
        size = "w500" if "w500" in self.poster_sizes or not self.poster_sizes else self.poster_sizes[-1]
        return self.image_url(path, size)
