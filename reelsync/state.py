"""Shared movie state and its change notifications."""

from __future__ import annotations

import logging
from collections import deque
from dataclasses import dataclass
from enum import Enum
from typing import Callable, Iterable

from .errors import NetworkError
from .models import (
    Account,
    Movie,
    MoviePayload,
    PaginatedResult,
    SearchResult,
    TmdbConfiguration,
)
from .projection import Filter

logger = logging.getLogger(__name__)


class Topic(str, Enum):
    """Every kind of notification the store can emit."""

    LIBRARY_CHANGED = "library_changed"
    WATCHLIST_CHANGED = "watchlist_changed"
    TRENDING_CHANGED = "trending_changed"
    POPULAR_CHANGED = "popular_changed"
    NOW_PLAYING_CHANGED = "now_playing_changed"
    UPCOMING_CHANGED = "upcoming_changed"
    SEARCH_RESULT_CHANGED = "search_result_changed"
    RECOMMENDED_CHANGED = "recommended_changed"
    TMDB_CONFIGURATION_CHANGED = "tmdb_configuration_changed"
    FILTERS_CHANGED = "filters_changed"
    ACCOUNT_CHANGED = "account_changed"
    WATCHING_CHANGED = "watching_changed"
    MOVIE_FLAGS_UPDATED = "movie_flags_updated"
    MOVIE_INFORMATION_UPDATED = "movie_information_updated"
    MOVIE_USER_RATING_CHANGED = "movie_user_rating_changed"
    MOVIE_RELEASES_UPDATED = "movie_releases_updated"
    SHOW_ERROR = "show_error"
    SHOW_LOADING_PROGRESS = "show_loading_progress"


@dataclass(frozen=True, slots=True)
class StateEvent:
    """A single notification. ``calling_id`` names the view that asked for it."""

    topic: Topic
    calling_id: int = 0
    movie: Movie | None = None
    error: NetworkError | None = None
    show: bool = False
    secondary: bool = False


Listener = Callable[[StateEvent], None]


class EventBus:
    """Synchronous publish/subscribe with queued re-entrant delivery."""

    def __init__(self) -> None:
        self._listeners: list[Listener] = []
        self._queue: deque[StateEvent] = deque()
        self._dispatching = False

    def subscribe(self, listener: Listener) -> None:
        if listener not in self._listeners:
            self._listeners.append(listener)

    def unsubscribe(self, listener: Listener) -> None:
        if listener in self._listeners:
            self._listeners.remove(listener)

    @property
    def listener_count(self) -> int:
        return len(self._listeners)

    def publish(self, event: StateEvent) -> None:
        self._queue.append(event)
        if self._dispatching:
            # Delivered by the outer dispatch loop once the current event is done.
            return
        self._dispatching = True
        try:
            while self._queue:
                current = self._queue.popleft()
                for listener in list(self._listeners):
                    try:
                        listener(current)
                    except Exception:
                        logger.exception(
                            "Listener %r failed while handling %s",
                            listener,
                            current.topic.value,
                        )
        finally:
            self._dispatching = False


class MoviesState:
    """Holds every movie collection, the identity index and the active filters."""

    def __init__(self, bus: EventBus | None = None) -> None:
        self.bus = bus or EventBus()
        self._trakt_index: dict[str, Movie] = {}
        self._tmdb_index: dict[int, Movie] = {}
        self._filters: set[Filter] = set()
        self._account: Account | None = None
        self._tmdb_configuration: TmdbConfiguration | None = None
        self._library: list[Movie] | None = None
        self._watchlist: list[Movie] | None = None
        self._trending: list[Movie] | None = None
        self._recommended: list[Movie] | None = None
        self._popular: PaginatedResult | None = None
        self._now_playing: PaginatedResult | None = None
        self._upcoming: PaginatedResult | None = None
        self._search_result: SearchResult | None = None
        self._pending_search_query: str | None = None
        self._watching: Movie | None = None

    # -- notifications -------------------------------------------------

    def subscribe(self, listener: Listener) -> None:
        self.bus.subscribe(listener)

    def unsubscribe(self, listener: Listener) -> None:
        self.bus.unsubscribe(listener)

    def publish(self, topic: Topic, **fields: object) -> None:
        self.bus.publish(StateEvent(topic, **fields))  # type: ignore[arg-type]

    def show_error(self, calling_id: int, error: NetworkError) -> None:
        self.publish(Topic.SHOW_ERROR, calling_id=calling_id, error=error)

    def show_loading_progress(
        self, calling_id: int, show: bool, *, secondary: bool = False
    ) -> None:
        self.publish(
            Topic.SHOW_LOADING_PROGRESS,
            calling_id=calling_id,
            show=show,
            secondary=secondary,
        )

    # -- account -------------------------------------------------------

    @property
    def current_account(self) -> Account | None:
        return self._account

    @property
    def username(self) -> str | None:
        return self._account.username if self._account else None

    @property
    def is_logged_in(self) -> bool:
        return self._account is not None

    def set_current_account(self, account: Account | None) -> None:
        if account == self._account:
            return
        self._account = account
        self.publish(Topic.ACCOUNT_CHANGED)

    def clear_authenticated_state(self) -> None:
        """Drop everything scoped to the previous session without notifying."""

        self._library = None
        self._watchlist = None
        self._recommended = None
        self._watching = None
        # Public lists may still reference these entities.
        for movie in self.indexed_movies():
            movie.forget_user_data()
        self._trakt_index.clear()
        self._tmdb_index.clear()

    # -- identity index ------------------------------------------------

    def get_movie(self, movie_id: str | int | None) -> Movie | None:
        """Look a movie up by Trakt id, falling back to a numeric TMDB id."""

        if movie_id is None:
            return None
        if isinstance(movie_id, int):
            return self._tmdb_index.get(movie_id)
        key = str(movie_id).strip()
        if not key:
            return None
        movie = self._trakt_index.get(key)
        if movie is None and key.isdigit():
            movie = self._tmdb_index.get(int(key))
        return movie

    def put_movie(self, value: MoviePayload | Movie) -> Movie:
        """Merge a payload (or a detached entity) into the index.

        Returns the canonical entity, which may be an existing instance.
        """

        if isinstance(value, Movie):
            return self._put_entity(value)

        by_trakt = self._trakt_index.get(value.trakt_id) if value.trakt_id else None
        by_tmdb = self._tmdb_index.get(value.tmdb_id) if value.tmdb_id is not None else None

        movie = by_trakt or by_tmdb
        if movie is None:
            movie = Movie.from_payload(value)
        else:
            movie.merge_from(value)
            if by_trakt is not None and by_tmdb is not None and by_trakt is not by_tmdb:
                self._fold(movie, by_tmdb)
        self._index(movie)
        return movie

    def put_movies(self, payloads: Iterable[MoviePayload]) -> list[Movie]:
        movies: list[Movie] = []
        for payload in payloads:
            if not payload.has_identity:
                continue
            movie = self.put_movie(payload)
            if movie not in movies:
                movies.append(movie)
        return movies

    def add_alias(self, key: str, movie: Movie) -> None:
        """Make an extra Trakt-namespace identifier (e.g. a slug) resolve to ``movie``."""

        key = key.strip()
        if key and self._trakt_index.get(key) is not movie:
            self._trakt_index[key] = movie

    def _put_entity(self, movie: Movie) -> Movie:
        existing = (self._trakt_index.get(movie.trakt_id) if movie.trakt_id else None) or (
            self._tmdb_index.get(movie.tmdb_id) if movie.tmdb_id is not None else None
        )
        if existing is None:
            self._index(movie)
            return movie
        self._fold(existing, movie)
        self._index(existing)
        return existing

    def _index(self, movie: Movie) -> None:
        if movie.trakt_id:
            self._trakt_index[movie.trakt_id] = movie
        if movie.tmdb_id is not None:
            self._tmdb_index[movie.tmdb_id] = movie

    def _fold(self, keep: Movie, duplicate: Movie) -> None:
        """Merge ``duplicate`` into ``keep`` and repoint every reference to it."""

        if keep is duplicate:
            return
        keep.absorb(duplicate)
        for key, movie in list(self._trakt_index.items()):
            if movie is duplicate:
                self._trakt_index[key] = keep
        for key, movie in list(self._tmdb_index.items()):
            if movie is duplicate:
                self._tmdb_index[key] = keep

        def _swap(movies: list[Movie] | None) -> None:
            if not movies:
                return
            # Both copies may have been listed already; keep the first slot.
            deduped: list[Movie] = []
            for movie in movies:
                movie = keep if movie is duplicate else movie
                if movie not in deduped:
                    deduped.append(movie)
            movies[:] = deduped

        for collection in (self._library, self._watchlist, self._trending, self._recommended):
            _swap(collection)
        for result in (self._popular, self._now_playing, self._upcoming, self._search_result):
            if result is not None:
                _swap(result.items)
        for movie in self.indexed_movies():
            _swap(movie.related)
        if self._watching is duplicate:
            self._watching = keep

    def indexed_movies(self) -> list[Movie]:
        unique: dict[int, Movie] = {}
        for movie in (*self._trakt_index.values(), *self._tmdb_index.values()):
            unique.setdefault(id(movie), movie)
        return list(unique.values())

    # -- filters -------------------------------------------------------

    @property
    def filters(self) -> frozenset[Filter]:
        return frozenset(self._filters)

    def add_filter(self, value: Filter) -> bool:
        if value in self._filters:
            return False
        self._filters.add(value)
        self._filters.difference_update(value.mutually_exclusive)
        self.publish(Topic.FILTERS_CHANGED)
        return True

    def remove_filter(self, value: Filter) -> bool:
        if value not in self._filters:
            return False
        self._filters.discard(value)
        self.publish(Topic.FILTERS_CHANGED)
        return True

    def clear_filters(self) -> bool:
        if not self._filters:
            return False
        self._filters.clear()
        self.publish(Topic.FILTERS_CHANGED)
        return True

    # -- collections ---------------------------------------------------

    @property
    def library(self) -> list[Movie] | None:
        return self._library

    def set_library(self, movies: list[Movie] | None) -> None:
        self._library = movies
        self.publish(Topic.LIBRARY_CHANGED)

    @property
    def watchlist(self) -> list[Movie] | None:
        return self._watchlist

    def set_watchlist(self, movies: list[Movie] | None) -> None:
        self._watchlist = movies
        self.publish(Topic.WATCHLIST_CHANGED)

    @property
    def trending(self) -> list[Movie] | None:
        return self._trending

    def set_trending(self, movies: list[Movie] | None) -> None:
        self._trending = movies
        self.publish(Topic.TRENDING_CHANGED)

    @property
    def recommended(self) -> list[Movie] | None:
        return self._recommended

    def set_recommended(self, movies: list[Movie] | None) -> None:
        self._recommended = movies
        self.publish(Topic.RECOMMENDED_CHANGED)

    @property
    def popular(self) -> PaginatedResult | None:
        return self._popular

    def set_popular(self, result: PaginatedResult | None) -> None:
        self._popular = result
        self.publish(Topic.POPULAR_CHANGED)

    @property
    def now_playing(self) -> PaginatedResult | None:
        return self._now_playing

    def set_now_playing(self, result: PaginatedResult | None) -> None:
        self._now_playing = result
        self.publish(Topic.NOW_PLAYING_CHANGED)

    @property
    def upcoming(self) -> PaginatedResult | None:
        return self._upcoming

    def set_upcoming(self, result: PaginatedResult | None) -> None:
        self._upcoming = result
        self.publish(Topic.UPCOMING_CHANGED)

    @property
    def search_result(self) -> SearchResult | None:
        return self._search_result

    @property
    def pending_search_query(self) -> str | None:
        return self._pending_search_query

    def start_search(self, query: str | None) -> None:
        """Reset the result; only responses for ``query`` are accepted afterwards."""

        self._pending_search_query = query
        self.set_search_result(None)

    def set_search_result(self, result: SearchResult | None) -> None:
        self._search_result = result
        self.publish(Topic.SEARCH_RESULT_CHANGED)

    @property
    def tmdb_configuration(self) -> TmdbConfiguration | None:
        return self._tmdb_configuration

    def set_tmdb_configuration(self, configuration: TmdbConfiguration | None) -> None:
        self._tmdb_configuration = configuration
        self.publish(Topic.TMDB_CONFIGURATION_CHANGED)

    @property
    def watching(self) -> Movie | None:
        return self._watching

    def set_watching(self, movie: Movie | None) -> None:
        self._watching = movie
        self.publish(Topic.WATCHING_CHANGED)
