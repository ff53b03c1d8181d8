"""Reactive loop binding attached views to the movie state."""

from __future__ import annotations

import itertools
import logging
from datetime import datetime
from typing import Callable, Sequence

from .config import Settings
from .errors import NetworkError
from .models import Movie, PaginatedResult
from .orchestrator import FetchOrchestrator
from .projection import Filter, FilterContext, build_list_items, derive_projection
from .state import MoviesState, StateEvent, Topic
from .views import (
    CastListCapability,
    CheckinCapability,
    DiscoverCapability,
    DiscoverTab,
    MovieDetailCapability,
    MovieListCapability,
    MovieOperation,
    MovieRateCapability,
    MovieView,
    QueryType,
    SearchCapability,
)

logger = logging.getLogger(__name__)

WATCHLIST_SECTIONS = (Filter.UPCOMING, Filter.SOON, Filter.RELEASED, Filter.SEEN)
# SEEN claims before RELEASED so watched releases land in the SEEN section.
WATCHLIST_PROCESSING_ORDER = (Filter.UPCOMING, Filter.SOON, Filter.SEEN, Filter.RELEASED)

BATCH_OPERATIONS = (
    MovieOperation.MARK_SEEN,
    MovieOperation.ADD_TO_COLLECTION,
    MovieOperation.ADD_TO_WATCHLIST,
)

_COLLECTION_TOPICS: dict[Topic, QueryType] = {
    Topic.LIBRARY_CHANGED: QueryType.LIBRARY,
    Topic.WATCHLIST_CHANGED: QueryType.WATCHLIST,
    Topic.TRENDING_CHANGED: QueryType.TRENDING,
    Topic.POPULAR_CHANGED: QueryType.POPULAR,
    Topic.NOW_PLAYING_CHANGED: QueryType.NOW_PLAYING,
    Topic.UPCOMING_CHANGED: QueryType.UPCOMING,
    Topic.SEARCH_RESULT_CHANGED: QueryType.SEARCH,
    Topic.RECOMMENDED_CHANGED: QueryType.RECOMMENDED,
}


class MovieController:
    """Attaches views, re-renders them on state changes and forwards their intents."""

    def __init__(
        self,
        state: MoviesState,
        orchestrator: FetchOrchestrator,
        settings: Settings,
        *,
        clock: Callable[[], datetime] | None = None,
    ):
        self.state = state
        self.orchestrator = orchestrator
        self.settings = settings
        self._clock = clock
        self._views: dict[int, MovieView] = {}
        self._ids = itertools.count(1)
        self._started = False

        self._handlers: dict[Topic, Callable[[StateEvent], None]] = {
            topic: self._on_collection_changed for topic in _COLLECTION_TOPICS
        }
        self._handlers.update(
            {
                Topic.FILTERS_CHANGED: self._on_filters_changed,
                Topic.TMDB_CONFIGURATION_CHANGED: lambda _: self.populate_all(),
                Topic.ACCOUNT_CHANGED: self._on_account_changed,
                Topic.WATCHING_CHANGED: self._on_watching_changed,
                Topic.MOVIE_FLAGS_UPDATED: self._on_movie_flags_updated,
                Topic.MOVIE_INFORMATION_UPDATED: self._on_movie_information_updated,
                Topic.MOVIE_USER_RATING_CHANGED: self._on_movie_user_rating_changed,
                Topic.MOVIE_RELEASES_UPDATED: self._on_movie_releases_updated,
                Topic.SHOW_ERROR: self._on_show_error,
                Topic.SHOW_LOADING_PROGRESS: self._on_show_loading_progress,
            }
        )

        # First matching capability wins; search views are list views too.
        self._populators: tuple[tuple[type, Callable], ...] = (
            (SearchCapability, self._populate_search),
            (MovieListCapability, self._populate_list),
            (CastListCapability, self._populate_cast),
            (MovieDetailCapability, self._populate_detail),
            (MovieRateCapability, self._populate_rate),
            (DiscoverCapability, self._populate_discover),
            (CheckinCapability, self._populate_checkin),
        )

    # -- lifecycle -----------------------------------------------------

    def start(self) -> None:
        if self._started:
            return
        self._started = True
        self.state.subscribe(self.handle_event)
        self.orchestrator.bind_view_lookup(self.find_view_id)
        self.orchestrator.populate_state_from_cache()
        if self.state.tmdb_configuration is None:
            self.orchestrator.fetch_tmdb_configuration()

    def stop(self) -> None:
        if not self._started:
            return
        self._started = False
        self.state.unsubscribe(self.handle_event)

    def attach(self, view: MovieView) -> "ViewCallbacks":
        if not isinstance(view, MovieView):
            raise TypeError(f"{type(view).__name__} does not implement MovieView")
        view_id = next(self._ids)
        self._views[view_id] = view

        query_type = view.query_type
        if not (query_type.requires_login and not self.state.is_logged_in):
            self.orchestrator.fetch_if_needed(query_type, view_id, view.request_parameter)
        self.populate(view)
        return ViewCallbacks(self, view, view_id)

    def detach(self, view: MovieView) -> None:
        view_id = self.view_id(view)
        if view_id is not None:
            del self._views[view_id]

    def view_id(self, view: MovieView) -> int | None:
        for view_id, attached in self._views.items():
            if attached is view:
                return view_id
        return None

    def find_view_id(self, query_type: QueryType) -> int:
        for view_id, view in self._views.items():
            if view.query_type is query_type:
                return view_id
        return 0

    @property
    def views(self) -> list[MovieView]:
        return list(self._views.values())

    # -- event routing -------------------------------------------------

    def handle_event(self, event: StateEvent) -> None:
        handler = self._handlers.get(event.topic)
        if handler is not None:
            handler(event)

    def _on_collection_changed(self, event: StateEvent) -> None:
        self._populate_where(lambda view: view.query_type is _COLLECTION_TOPICS[event.topic])

    def _on_filters_changed(self, event: StateEvent) -> None:
        self._populate_where(lambda view: view.query_type.supports_filtering)

    def _on_account_changed(self, event: StateEvent) -> None:
        self.orchestrator.on_account_changed()
        self.populate_all()
        self.orchestrator.prefetch_if_logged_in()

    def _on_watching_changed(self, event: StateEvent) -> None:
        movie = self.state.watching
        if movie is None:
            return
        self.orchestrator.fetch_detail_for(0, movie)
        self._populate_where(lambda view: self._shows(view, movie))

    def _on_movie_flags_updated(self, event: StateEvent) -> None:
        view = self._views.get(event.calling_id)
        if view is None:
            self.populate_all()
            return
        # Recommended views re-fetch after a flag change.
        if view.query_type is QueryType.RECOMMENDED and self.state.is_logged_in:
            self.orchestrator.fetch_recommended(event.calling_id)
        self._populate_caller(view, event.movie)

    def _on_movie_information_updated(self, event: StateEvent) -> None:
        view = self._views.get(event.calling_id)
        if view is None:
            self.populate_all()
            return
        self._populate_caller(view, event.movie)
        if event.movie is not None:
            self.orchestrator.fetch_detail_for(event.calling_id, event.movie)

    def _on_movie_user_rating_changed(self, event: StateEvent) -> None:
        view = self._views.get(event.calling_id)
        if view is None:
            self.populate_all()
        else:
            self._populate_caller(view, event.movie)

    def _on_movie_releases_updated(self, event: StateEvent) -> None:
        view = self._views.get(event.calling_id)
        if view is not None:
            self._populate_caller(view, event.movie)

    def _on_show_error(self, event: StateEvent) -> None:
        view = self._views.get(event.calling_id)
        if view is not None and event.error is not None:
            view.show_error(event.error)

    def _on_show_loading_progress(self, event: StateEvent) -> None:
        view = self._views.get(event.calling_id)
        if view is None:
            return
        if event.secondary:
            view.show_secondary_loading_progress(event.show)
        else:
            view.show_loading_progress(event.show)

    def _shows(self, view: MovieView, movie: Movie) -> bool:
        parameter = view.request_parameter
        return bool(parameter) and self.state.get_movie(parameter) is movie

    def _populate_caller(self, view: MovieView, movie: Movie | None) -> None:
        self.populate(view)
        if movie is not None:
            self._populate_where(lambda other: other is not view and self._shows(other, movie))

    def _populate_where(self, predicate: Callable[[MovieView], bool]) -> None:
        for view in list(self._views.values()):
            if predicate(view):
                self.populate(view)

    # -- rendering -----------------------------------------------------

    def populate_all(self) -> None:
        for view in list(self._views.values()):
            self.populate(view)

    def populate(self, view: MovieView) -> None:
        if view.query_type.requires_login and not self.state.is_logged_in:
            view.show_error(NetworkError.UNAUTHORIZED)
            return
        if self.state.tmdb_configuration is None:
            logger.info("TMDB configuration not downloaded yet")
            return
        for capability, populator in self._populators:
            if isinstance(view, capability):
                populator(view)
                return
        logger.debug("%s has no renderable capability", type(view).__name__)

    def filter_context(self) -> FilterContext:
        return FilterContext.from_settings(
            self.settings, now=self._clock() if self._clock else None
        )

    def _populate_search(self, view) -> None:
        result = self.state.search_result
        view.set_query(result.query if result is not None else None)
        if isinstance(view, MovieListCapability):
            self._populate_list(view)

    def _list_source(self, view: MovieView) -> list[Movie] | None:
        query_type = view.query_type
        if query_type is QueryType.RELATED:
            movie = self.state.get_movie(view.request_parameter)
            return movie.related if movie is not None else None
        sources: dict[QueryType, Callable[[], object]] = {
            QueryType.TRENDING: lambda: self.state.trending,
            QueryType.POPULAR: lambda: self.state.popular,
            QueryType.LIBRARY: lambda: self.state.library,
            QueryType.WATCHLIST: lambda: self.state.watchlist,
            QueryType.SEARCH: lambda: self.state.search_result,
            QueryType.NOW_PLAYING: lambda: self.state.now_playing,
            QueryType.UPCOMING: lambda: self.state.upcoming,
            QueryType.RECOMMENDED: lambda: self.state.recommended,
        }
        source = sources.get(query_type)
        if source is None:
            return None
        value = source()
        if isinstance(value, PaginatedResult):
            return value.items
        return value  # type: ignore[return-value]

    def _populate_list(self, view) -> None:
        query_type = view.query_type
        filters: frozenset[Filter] = frozenset()
        if self.state.is_logged_in:
            if query_type.supports_filtering:
                view.set_filters_visibility(True)
                filters = self.state.filters
                view.show_active_filters(filters)
        else:
            view.set_filters_visibility(False)

        sectioned = query_type is QueryType.WATCHLIST
        items = derive_projection(
            self._list_source(view),
            filters,
            self.filter_context(),
            header=QueryType.RELATED if query_type is QueryType.RELATED else None,
            sections=WATCHLIST_SECTIONS if sectioned else None,
            processing_order=WATCHLIST_PROCESSING_ORDER if sectioned else None,
        )
        view.set_items(items)
        if items is None or sectioned:
            return
        if self.state.is_logged_in:
            view.allowed_batch_operations(*BATCH_OPERATIONS)
        else:
            view.disable_batch_operations()

    def _populate_cast(self, view) -> None:
        if view.query_type is not QueryType.CAST:
            return
        movie = self.state.get_movie(view.request_parameter)
        if movie is not None and movie.cast:
            view.set_cast_items(build_list_items(movie.cast, header=QueryType.CAST))

    def _populate_detail(self, view) -> None:
        movie = self.state.get_movie(view.request_parameter)
        if movie is None:
            return
        view.set_trakt_actions_enabled(self.state.is_logged_in and movie.loaded_from_trakt)
        view.set_movie(movie)

    def _populate_rate(self, view) -> None:
        movie = self.state.get_movie(view.request_parameter)
        if movie is None:
            return
        view.set_movie(movie)
        view.set_mark_watched_visible(not movie.watched)

    def _populate_discover(self, view) -> None:
        tabs = [DiscoverTab.POPULAR, DiscoverTab.IN_THEATRES, DiscoverTab.UPCOMING]
        if self.state.is_logged_in:
            tabs.append(DiscoverTab.RECOMMENDED)
        view.set_tabs(tabs)

    def _populate_checkin(self, view) -> None:
        movie = self.state.get_movie(view.request_parameter)
        if movie is not None:
            view.set_movie(movie)


class ViewCallbacks:
    """User intents a single attached view can send back to the controller."""

    def __init__(self, controller: MovieController, view: MovieView, view_id: int):
        self._controller = controller
        self._view = view
        self.view_id = view_id

    @property
    def _orchestrator(self) -> FetchOrchestrator:
        return self._controller.orchestrator

    @property
    def _state(self) -> MoviesState:
        return self._controller.state

    def add_filter(self, value: Filter) -> bool:
        return self._state.add_filter(value)

    def remove_filter(self, value: Filter) -> bool:
        return self._state.remove_filter(value)

    def clear_filters(self) -> bool:
        return self._state.clear_filters()

    def refresh(self) -> None:
        self._orchestrator.refresh(
            self._view.query_type, self.view_id, self._view.request_parameter
        )

    def toggle_seen(self, movie: Movie) -> bool:
        return self._orchestrator.toggle_seen(self.view_id, movie)

    def toggle_in_watchlist(self, movie: Movie) -> bool:
        return self._orchestrator.toggle_in_watchlist(self.view_id, movie)

    def toggle_in_collection(self, movie: Movie) -> bool:
        return self._orchestrator.toggle_in_collection(self.view_id, movie)

    def set_movies_seen(self, movies: Sequence[Movie], seen: bool) -> bool:
        return self._orchestrator.set_movies_seen(self.view_id, movies, seen)

    def set_movies_in_watchlist(self, movies: Sequence[Movie], in_watchlist: bool) -> bool:
        return self._orchestrator.set_movies_in_watchlist(self.view_id, movies, in_watchlist)

    def set_movies_in_collection(self, movies: Sequence[Movie], in_collection: bool) -> bool:
        return self._orchestrator.set_movies_in_collection(self.view_id, movies, in_collection)

    def search(self, query: str) -> None:
        self._orchestrator.search(self.view_id, query)

    def clear_search(self) -> None:
        self._orchestrator.clear_search()

    def submit_rating(self, movie: Movie, rating: int) -> bool:
        if not movie.trakt_id:
            raise ValueError(f"{movie.display_title()} has no Trakt id to rate")
        return self._orchestrator.submit_rating(self.view_id, movie.trakt_id, rating)

    def scrolled_to_bottom(self) -> bool:
        return self._orchestrator.fetch_next_page(self._view.query_type, self.view_id)

    def checkin(self, movie: Movie, message: str | None = None) -> bool:
        if not movie.trakt_id:
            raise ValueError(f"{movie.display_title()} has no Trakt id to check in")
        return self._orchestrator.checkin(self.view_id, movie.trakt_id, message)
