"""In-memory views that record what the controller renders.

The HTTP layer attaches one snapshot per (kind, parameter) pair and serialises
its latest state on request.
"""

from __future__ import annotations

from enum import Enum
from typing import Any, Callable, Collection, Sequence

from .controller import MovieController, ViewCallbacks
from .errors import NetworkError
from .models import CastMember, ListItem, Movie, TmdbConfiguration
from .projection import Filter
from .views import DiscoverTab, MovieOperation, QueryType


def movie_payload(movie: Movie, configuration: TmdbConfiguration | None) -> dict[str, Any]:
    configuration = configuration or TmdbConfiguration()
    return {
        "traktId": movie.trakt_id,
        "tmdbId": movie.tmdb_id,
        "title": movie.display_title(),
        "year": movie.year,
        "released": movie.released.isoformat() if movie.released else None,
        "runtime": movie.runtime,
        "overview": movie.overview,
        "tagline": movie.tagline,
        "genres": list(movie.genres),
        "certification": movie.certification,
        "poster": configuration.poster_url(movie.poster_path),
        "backdrop": configuration.image_url(movie.backdrop_path),
        "ratingPercent": movie.rating_percent,
        "userRating": movie.user_rating,
        "watched": movie.watched,
        "inCollection": movie.in_collection,
        "inWatchlist": movie.in_watchlist,
        "plays": movie.plays,
        "trailers": [trailer.url for trailer in movie.trailers if trailer.url],
    }


def cast_payload(member: CastMember, configuration: TmdbConfiguration | None) -> dict[str, Any]:
    configuration = configuration or TmdbConfiguration()
    return {
        "tmdbId": member.person.tmdb_id,
        "name": member.person.name,
        "character": member.character,
        "profile": configuration.image_url(member.person.profile_path, "w185"),
    }


def _items_payload(
    items: Sequence[ListItem] | None,
    render: Callable[[Any], dict[str, Any]],
) -> list[dict[str, Any]] | None:
    if items is None:
        return None
    return [
        {"header": item.header.value} if item.is_header else render(item.item)
        for item in items
    ]


class SnapshotView:
    """Base surface: remembers the last error and loading indicators."""

    kind = "view"

    def __init__(self, query_type: QueryType, request_parameter: str | None = None):
        self._query_type = query_type
        self._request_parameter = request_parameter
        self.error: NetworkError | None = None
        self.loading = False
        self.secondary_loading = False

    @property
    def query_type(self) -> QueryType:
        return self._query_type

    @property
    def request_parameter(self) -> str | None:
        return self._request_parameter

    def show_error(self, error: NetworkError) -> None:
        self.error = error

    def show_loading_progress(self, visible: bool) -> None:
        self.loading = visible

    def show_secondary_loading_progress(self, visible: bool) -> None:
        self.secondary_loading = visible

    def to_payload(self, configuration: TmdbConfiguration | None) -> dict[str, Any]:
        return {
            "kind": self.kind,
            "queryType": self.query_type.value,
            "parameter": self.request_parameter,
            "error": self.error.value if self.error else None,
            "loading": self.loading,
            "secondaryLoading": self.secondary_loading,
        }


class ListSnapshot(SnapshotView):
    kind = "list"

    def __init__(self, query_type: QueryType, request_parameter: str | None = None):
        super().__init__(query_type, request_parameter)
        self.items: list[ListItem[Movie]] | None = None
        self.filters_visible = False
        self.active_filters: list[Filter] = []
        self.batch_operations: list[MovieOperation] = []

    def set_items(self, items: list[ListItem[Movie]] | None) -> None:
        self.items = items
        if items is not None:
            self.error = None

    def set_filters_visibility(self, visible: bool) -> None:
        self.filters_visible = visible

    def show_active_filters(self, filters: Collection[Filter]) -> None:
        self.active_filters = sorted(filters, key=lambda value: value.value)

    def allowed_batch_operations(self, *operations: MovieOperation) -> None:
        self.batch_operations = list(operations)

    def disable_batch_operations(self) -> None:
        self.batch_operations = []

    def to_payload(self, configuration: TmdbConfiguration | None) -> dict[str, Any]:
        payload = super().to_payload(configuration)
        payload.update(
            items=_items_payload(self.items, lambda movie: movie_payload(movie, configuration)),
            filtersVisible=self.filters_visible,
            activeFilters=[value.value for value in self.active_filters],
            batchOperations=[operation.value for operation in self.batch_operations],
        )
        return payload


class SearchSnapshot(ListSnapshot):
    kind = "search"

    def __init__(self, query_type: QueryType = QueryType.SEARCH, request_parameter: str | None = None):
        super().__init__(query_type, request_parameter)
        self.query: str | None = None

    def set_query(self, query: str | None) -> None:
        self.query = query

    def to_payload(self, configuration: TmdbConfiguration | None) -> dict[str, Any]:
        payload = super().to_payload(configuration)
        payload["query"] = self.query
        return payload


class CastSnapshot(SnapshotView):
    kind = "cast"

    def __init__(self, query_type: QueryType = QueryType.CAST, request_parameter: str | None = None):
        super().__init__(query_type, request_parameter)
        self.items: list[ListItem[CastMember]] | None = None

    def set_cast_items(self, items: list[ListItem[CastMember]]) -> None:
        self.items = items

    def to_payload(self, configuration: TmdbConfiguration | None) -> dict[str, Any]:
        payload = super().to_payload(configuration)
        payload["items"] = _items_payload(
            self.items, lambda member: cast_payload(member, configuration)
        )
        return payload


class _MovieSnapshot(SnapshotView):
    def __init__(self, query_type: QueryType, request_parameter: str | None = None):
        super().__init__(query_type, request_parameter)
        self.movie: Movie | None = None

    def set_movie(self, movie: Movie) -> None:
        self.movie = movie
        self.error = None

    def to_payload(self, configuration: TmdbConfiguration | None) -> dict[str, Any]:
        payload = super().to_payload(configuration)
        payload["movie"] = movie_payload(self.movie, configuration) if self.movie else None
        return payload


class DetailSnapshot(_MovieSnapshot):
    kind = "detail"

    def __init__(self, query_type: QueryType = QueryType.DETAIL, request_parameter: str | None = None):
        super().__init__(query_type, request_parameter)
        self.trakt_actions_enabled = False

    def set_trakt_actions_enabled(self, enabled: bool) -> None:
        self.trakt_actions_enabled = enabled

    def to_payload(self, configuration: TmdbConfiguration | None) -> dict[str, Any]:
        payload = super().to_payload(configuration)
        payload["traktActionsEnabled"] = self.trakt_actions_enabled
        return payload


class RateSnapshot(_MovieSnapshot):
    kind = "rate"

    def __init__(self, query_type: QueryType = QueryType.NONE, request_parameter: str | None = None):
        super().__init__(query_type, request_parameter)
        self.mark_watched_visible = False

    def set_mark_watched_visible(self, visible: bool) -> None:
        self.mark_watched_visible = visible

    def to_payload(self, configuration: TmdbConfiguration | None) -> dict[str, Any]:
        payload = super().to_payload(configuration)
        payload["markWatchedVisible"] = self.mark_watched_visible
        return payload


class CheckinSnapshot(_MovieSnapshot):
    kind = "checkin"

    def __init__(self, query_type: QueryType = QueryType.NONE, request_parameter: str | None = None):
        super().__init__(query_type, request_parameter)


class DiscoverSnapshot(SnapshotView):
    kind = "discover"

    def __init__(self, query_type: QueryType = QueryType.NONE, request_parameter: str | None = None):
        super().__init__(query_type, request_parameter)
        self.tabs: list[DiscoverTab] = []

    def set_tabs(self, tabs: Sequence[DiscoverTab]) -> None:
        self.tabs = list(tabs)

    def to_payload(self, configuration: TmdbConfiguration | None) -> dict[str, Any]:
        payload = super().to_payload(configuration)
        payload["tabs"] = [tab.value for tab in self.tabs]
        return payload


class SurfaceKind(str, Enum):
    """Addressable surfaces: every query type plus the auxiliary screens."""

    TRENDING = "trending"
    POPULAR = "popular"
    LIBRARY = "library"
    WATCHLIST = "watchlist"
    DETAIL = "detail"
    SEARCH = "search"
    NOW_PLAYING = "now_playing"
    UPCOMING = "upcoming"
    RECOMMENDED = "recommended"
    RELATED = "related"
    CAST = "cast"
    RATE = "rate"
    CHECKIN = "checkin"
    DISCOVER = "discover"

    @property
    def requires_parameter(self) -> bool:
        return self in _PARAMETERISED


_PARAMETERISED = frozenset(
    {SurfaceKind.DETAIL, SurfaceKind.RELATED, SurfaceKind.CAST, SurfaceKind.RATE, SurfaceKind.CHECKIN}
)

_FACTORIES: dict[SurfaceKind, Callable[[str | None], SnapshotView]] = {
    SurfaceKind.SEARCH: lambda parameter: SearchSnapshot(QueryType.SEARCH, parameter),
    SurfaceKind.DETAIL: lambda parameter: DetailSnapshot(QueryType.DETAIL, parameter),
    SurfaceKind.CAST: lambda parameter: CastSnapshot(QueryType.CAST, parameter),
    SurfaceKind.RATE: lambda parameter: RateSnapshot(QueryType.NONE, parameter),
    SurfaceKind.CHECKIN: lambda parameter: CheckinSnapshot(QueryType.NONE, parameter),
    SurfaceKind.DISCOVER: lambda parameter: DiscoverSnapshot(QueryType.NONE, parameter),
}


def create_snapshot(kind: SurfaceKind, parameter: str | None = None) -> SnapshotView:
    if kind.requires_parameter and not parameter:
        raise ValueError(f"{kind.value} views need a movie id parameter")
    factory = _FACTORIES.get(kind)
    if factory is not None:
        return factory(parameter)
    return ListSnapshot(QueryType(kind.value), parameter)


class SurfaceRegistry:
    """Keeps one attached snapshot per (kind, parameter)."""

    def __init__(self, controller: MovieController):
        self._controller = controller
        self._surfaces: dict[tuple[SurfaceKind, str | None], tuple[SnapshotView, ViewCallbacks]] = {}

    def attach(self, kind: SurfaceKind, parameter: str | None = None) -> tuple[SnapshotView, ViewCallbacks]:
        key = (kind, parameter or None)
        existing = self._surfaces.get(key)
        if existing is not None:
            return existing
        view = create_snapshot(kind, parameter or None)
        callbacks = self._controller.attach(view)
        self._surfaces[key] = (view, callbacks)
        return view, callbacks

    def detach(self, kind: SurfaceKind, parameter: str | None = None) -> bool:
        entry = self._surfaces.pop((kind, parameter or None), None)
        if entry is None:
            return False
        self._controller.detach(entry[0])
        return True

    def detach_all(self) -> None:
        for view, _ in self._surfaces.values():
            self._controller.detach(view)
        self._surfaces.clear()
