"""Contracts implemented by presentation surfaces.

A surface always implements :class:`MovieView` and adds whichever capability
protocols it needs; the controller dispatches on those capabilities.
"""

from __future__ import annotations

from enum import Enum
from typing import Collection, Protocol, Sequence, runtime_checkable

from .errors import NetworkError
from .models import CastMember, ListItem, Movie
from .projection import Filter


class QueryType(str, Enum):
    """The logical screen a view represents."""

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
    NONE = "none"

    @property
    def requires_login(self) -> bool:
        return self in _REQUIRES_LOGIN

    @property
    def supports_filtering(self) -> bool:
        return self in _SUPPORTS_FILTERING


_REQUIRES_LOGIN = frozenset({QueryType.LIBRARY, QueryType.WATCHLIST, QueryType.RECOMMENDED})
_SUPPORTS_FILTERING = frozenset({QueryType.LIBRARY, QueryType.TRENDING})


class MovieOperation(str, Enum):
    """Batch operations a list view may offer."""

    MARK_SEEN = "mark_seen"
    ADD_TO_COLLECTION = "add_to_collection"
    ADD_TO_WATCHLIST = "add_to_watchlist"


class DiscoverTab(str, Enum):
    POPULAR = "popular"
    IN_THEATRES = "in_theatres"
    UPCOMING = "upcoming"
    RECOMMENDED = "recommended"


@runtime_checkable
class MovieView(Protocol):
    """Core contract shared by every surface."""

    @property
    def query_type(self) -> QueryType: ...

    @property
    def request_parameter(self) -> str | None: ...

    def show_error(self, error: NetworkError) -> None: ...

    def show_loading_progress(self, visible: bool) -> None: ...

    def show_secondary_loading_progress(self, visible: bool) -> None: ...


@runtime_checkable
class MovieListCapability(Protocol):
    def set_items(self, items: list[ListItem[Movie]] | None) -> None: ...

    def set_filters_visibility(self, visible: bool) -> None: ...

    def show_active_filters(self, filters: Collection[Filter]) -> None: ...

    def allowed_batch_operations(self, *operations: MovieOperation) -> None: ...

    def disable_batch_operations(self) -> None: ...


@runtime_checkable
class SearchCapability(Protocol):
    def set_query(self, query: str | None) -> None: ...


@runtime_checkable
class CastListCapability(Protocol):
    def set_cast_items(self, items: list[ListItem[CastMember]]) -> None: ...


@runtime_checkable
class MovieDetailCapability(Protocol):
    def set_movie(self, movie: Movie) -> None: ...

    def set_trakt_actions_enabled(self, enabled: bool) -> None: ...


@runtime_checkable
class MovieRateCapability(Protocol):
    def set_movie(self, movie: Movie) -> None: ...

    def set_mark_watched_visible(self, visible: bool) -> None: ...


@runtime_checkable
class DiscoverCapability(Protocol):
    def set_tabs(self, tabs: Sequence[DiscoverTab]) -> None: ...


@runtime_checkable
class CheckinCapability(Protocol):
    def set_movie(self, movie: Movie) -> None: ...
