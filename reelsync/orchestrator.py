"""Per-view fetch policies and write dispatch."""

from __future__ import annotations

import asyncio
import logging
from typing import Callable, Iterable, Sequence

from .config import Settings
from .errors import LoginRequiredError, NetworkError
from .executor import TaskExecutor
from .models import Movie, PaginatedResult, Provider, TmdbConfiguration
from .projection import can_fetch_next_page
from .state import MoviesState
from .tasks import (
    CheckinTask,
    FetchLibraryTask,
    FetchRecommendedTask,
    FetchSearchTask,
    FetchTmdbCastTask,
    FetchTmdbConfigurationTask,
    FetchTmdbDetailTask,
    FetchTmdbListingTask,
    FetchTmdbRelatedTask,
    FetchTmdbReleasesTask,
    FetchTmdbTrailersTask,
    FetchTraktDetailTask,
    FetchTraktRelatedTask,
    FetchTrendingTask,
    FetchWatchlistTask,
    MovieTask,
    SubmitRatingTask,
    TaskContext,
    TraktWriteTask,
    WriteOperation,
)
from .views import QueryType

logger = logging.getLogger(__name__)

FIRST_PAGE = 1

Policy = Callable[[int, "str | None"], None]


class FetchOrchestrator:
    """Decides what to fetch, from where, and when.

    The "if needed", refresh and next-page policies are looked up per
    :class:`QueryType` in plain dictionaries; every fetch and write is handed
    to the :class:`TaskExecutor` and observed only through state notifications.
    """

    def __init__(
        self,
        state: MoviesState,
        executor: TaskExecutor,
        context: TaskContext,
        settings: Settings,
    ):
        self.state = state
        self.executor = executor
        self.context = context
        self.settings = settings
        self.populated_library_from_cache = False
        self.populated_watchlist_from_cache = False
        self._view_lookup: Callable[[QueryType], int] = lambda _: 0
        self._list_fetches: dict[QueryType, asyncio.Task[None]] = {}

        self._if_needed: dict[QueryType, Policy] = {
            QueryType.TRENDING: lambda calling_id, _: self.fetch_trending_if_needed(calling_id),
            QueryType.POPULAR: self._listing_if_needed(QueryType.POPULAR),
            QueryType.NOW_PLAYING: self._listing_if_needed(QueryType.NOW_PLAYING),
            QueryType.UPCOMING: self._listing_if_needed(QueryType.UPCOMING),
            QueryType.LIBRARY: lambda calling_id, _: self.fetch_library_if_needed(calling_id),
            QueryType.WATCHLIST: lambda calling_id, _: self.fetch_watchlist_if_needed(calling_id),
            QueryType.RECOMMENDED: lambda calling_id, _: self.fetch_recommended_if_needed(calling_id),
            QueryType.DETAIL: self.fetch_detail_if_needed,
            QueryType.RELATED: self.fetch_related_if_needed,
            QueryType.CAST: self.fetch_cast_if_needed,
        }
        self._refresh: dict[QueryType, Policy] = {
            QueryType.TRENDING: lambda calling_id, _: self.fetch_trending(calling_id),
            QueryType.POPULAR: self._listing_refresh(QueryType.POPULAR),
            QueryType.NOW_PLAYING: self._listing_refresh(QueryType.NOW_PLAYING),
            QueryType.UPCOMING: self._listing_refresh(QueryType.UPCOMING),
            QueryType.LIBRARY: lambda calling_id, _: self.fetch_library(calling_id),
            QueryType.WATCHLIST: lambda calling_id, _: self.fetch_watchlist(calling_id),
            QueryType.RECOMMENDED: lambda calling_id, _: self.fetch_recommended(calling_id),
            QueryType.DETAIL: self.fetch_detail,
        }
        self._next_page: dict[QueryType, Callable[[int], bool]] = {
            QueryType.POPULAR: lambda calling_id: self._fetch_next_listing_page(QueryType.POPULAR, calling_id),
            QueryType.NOW_PLAYING: lambda calling_id: self._fetch_next_listing_page(QueryType.NOW_PLAYING, calling_id),
            QueryType.UPCOMING: lambda calling_id: self._fetch_next_listing_page(QueryType.UPCOMING, calling_id),
            QueryType.SEARCH: self._fetch_next_search_page,
        }

    # -- plumbing ------------------------------------------------------

    def bind_view_lookup(self, lookup: Callable[[QueryType], int]) -> None:
        """Resolve the id of an attached view for prefetches nobody asked for."""

        self._view_lookup = lookup

    def _submit(self, task: MovieTask) -> None:
        self.executor.submit(task.run(), name=task.name)

    def _submit_once(self, key: QueryType, task: MovieTask) -> None:
        existing = self._list_fetches.get(key)
        if existing is not None and not existing.done():
            return
        self._list_fetches[key] = self.executor.submit(task.run(), name=task.name)

    @property
    def tmdb_available(self) -> bool:
        return self.context.tmdb is not None

    # -- policy dispatch -----------------------------------------------

    def fetch_if_needed(
        self, query_type: QueryType, calling_id: int, parameter: str | None = None
    ) -> None:
        policy = self._if_needed.get(query_type)
        if policy is not None:
            policy(calling_id, parameter)

    def refresh(
        self, query_type: QueryType, calling_id: int, parameter: str | None = None
    ) -> None:
        policy = self._refresh.get(query_type)
        if policy is None:
            logger.debug("Nothing to refresh for %s views", query_type.value)
            return
        policy(calling_id, parameter)

    def fetch_next_page(self, query_type: QueryType, calling_id: int) -> bool:
        """Request the page after the current one; False when there is none."""

        policy = self._next_page.get(query_type)
        return policy(calling_id) if policy is not None else False

    # -- library / watchlist -------------------------------------------

    def fetch_library(self, calling_id: int = 0) -> None:
        if self.state.is_logged_in:
            self._submit_once(QueryType.LIBRARY, FetchLibraryTask(self.context, calling_id))

    def fetch_library_if_needed(self, calling_id: int = 0) -> None:
        if self.populated_library_from_cache and not self.state.library:
            self.fetch_library(calling_id)

    def fetch_watchlist(self, calling_id: int = 0) -> None:
        if self.state.is_logged_in:
            self._submit_once(QueryType.WATCHLIST, FetchWatchlistTask(self.context, calling_id))

    def fetch_watchlist_if_needed(self, calling_id: int = 0) -> None:
        if self.populated_watchlist_from_cache and not self.state.watchlist:
            self.fetch_watchlist(calling_id)

    def prefetch_if_logged_in(self) -> None:
        self.prefetch_library()
        self.prefetch_watchlist()

    # -- trending / recommended ----------------------------------------

    def fetch_trending(self, calling_id: int = 0) -> None:
        self._submit(FetchTrendingTask(self.context, calling_id))

    def fetch_trending_if_needed(self, calling_id: int = 0) -> None:
        if not self.state.trending:
            self.fetch_trending(calling_id)

    def fetch_recommended(self, calling_id: int = 0) -> None:
        if not self.state.is_logged_in:
            raise LoginRequiredError("Must be logged in to Trakt for recommendations")
        self._submit_once(QueryType.RECOMMENDED, FetchRecommendedTask(self.context, calling_id))

    def fetch_recommended_if_needed(self, calling_id: int = 0) -> None:
        if not self.state.recommended:
            self.fetch_recommended(calling_id)

    # -- paginated TMDB listings ---------------------------------------

    def _listing_if_needed(self, query_type: QueryType) -> Policy:
        def policy(calling_id: int, _: str | None) -> None:
            result: PaginatedResult | None = getattr(
                self.state, FetchTmdbListingTask.LISTINGS[query_type][1]
            )
            if result is None or not result.items:
                self._fetch_listing_page(query_type, calling_id, FIRST_PAGE)

        return policy

    def _listing_refresh(self, query_type: QueryType) -> Policy:
        return lambda calling_id, _: self.fetch_listing(query_type, calling_id)

    def fetch_listing(self, query_type: QueryType, calling_id: int = 0) -> None:
        """Fresh fetch: drop what is shown and start again from the first page."""

        getattr(self.state, FetchTmdbListingTask.LISTINGS[query_type][2])(None)
        self._fetch_listing_page(query_type, calling_id, FIRST_PAGE)

    def _fetch_listing_page(self, query_type: QueryType, calling_id: int, page: int) -> None:
        if not self.tmdb_available:
            logger.info("TMDB is not configured; skipping %s listing", query_type.value)
            return
        self._submit(FetchTmdbListingTask(self.context, calling_id, query_type, page))

    def _fetch_next_listing_page(self, query_type: QueryType, calling_id: int) -> bool:
        result: PaginatedResult | None = getattr(
            self.state, FetchTmdbListingTask.LISTINGS[query_type][1]
        )
        if not can_fetch_next_page(result):
            return False
        self._fetch_listing_page(query_type, calling_id, result.page + 1)  # type: ignore[union-attr]
        return True

    # -- search --------------------------------------------------------

    def search(self, calling_id: int, query: str) -> None:
        query = query.strip()
        if not query:
            raise ValueError("Search query must not be empty")
        self.state.start_search(query)
        self._fetch_search_page(calling_id, query, FIRST_PAGE)

    def clear_search(self) -> None:
        self.state.start_search(None)

    def _fetch_search_page(self, calling_id: int, query: str, page: int) -> None:
        if not self.tmdb_available:
            logger.info("TMDB is not configured; skipping search for %r", query)
            return
        self._submit(FetchSearchTask(self.context, calling_id, query, page))

    def _fetch_next_search_page(self, calling_id: int) -> bool:
        result = self.state.search_result
        if result is None or not can_fetch_next_page(result):
            return False
        self._fetch_search_page(calling_id, result.query, result.page + 1)
        return True

    # -- movie detail --------------------------------------------------

    def fetch_detail(self, calling_id: int, movie_id: str | None) -> None:
        """Re-fetch a movie from every eligible provider, ignoring staleness."""

        if not movie_id:
            return
        movie = self.state.get_movie(movie_id)
        if movie is not None:
            self.fetch_detail_for(calling_id, movie, force=True)
        else:
            self._resolve_unknown(calling_id, movie_id)

    def fetch_detail_if_needed(self, calling_id: int, movie_id: str | None) -> None:
        if not movie_id:
            return
        movie = self.state.get_movie(movie_id)
        if movie is None:
            self._resolve_unknown(calling_id, movie_id)
        else:
            self.fetch_detail_for(calling_id, movie, force=False)

    def fetch_detail_for(self, calling_id: int, movie: Movie, *, force: bool = False) -> None:
        """Issue the Trakt and TMDB detail fetches a known movie still needs."""

        if self.state.is_logged_in and (force or movie.needs_full_fetch(Provider.TRAKT)):
            if movie.trakt_id:
                self._fetch_detail_from_trakt(calling_id, movie, movie_id=movie.trakt_id)
            elif movie.tmdb_id is not None:
                self._fetch_detail_from_trakt(calling_id, movie, tmdb_id=movie.tmdb_id)

        if force or movie.needs_full_fetch(Provider.TMDB):
            if movie.tmdb_id is not None and self.tmdb_available:
                self._fetch_detail_from_tmdb(calling_id, movie)

    def _resolve_unknown(self, calling_id: int, movie_id: str) -> None:
        # Bare numbers are TMDB ids, everything else lives in Trakt's namespace.
        if movie_id.isdigit():
            self._fetch_detail_from_trakt(calling_id, None, tmdb_id=int(movie_id))
        else:
            self._fetch_detail_from_trakt(calling_id, None, movie_id=movie_id)

    def _fetch_detail_from_trakt(
        self,
        calling_id: int,
        movie: Movie | None,
        *,
        movie_id: str | None = None,
        tmdb_id: int | None = None,
    ) -> None:
        if movie is not None and not movie.mark_full_fetch_started(Provider.TRAKT):
            return
        self._submit(
            FetchTraktDetailTask(
                self.context, calling_id, movie_id=movie_id, tmdb_id=tmdb_id, movie=movie
            )
        )

    def _fetch_detail_from_tmdb(self, calling_id: int, movie: Movie) -> None:
        tmdb_id = movie.tmdb_id
        if tmdb_id is None or not movie.mark_full_fetch_started(Provider.TMDB):
            return
        self._submit(FetchTmdbDetailTask(self.context, calling_id, tmdb_id, movie))
        if not movie.trailers:
            self._submit(FetchTmdbTrailersTask(self.context, calling_id, tmdb_id))
        if not movie.certification:
            self._submit(FetchTmdbReleasesTask(self.context, calling_id, tmdb_id))

    # -- related / cast ------------------------------------------------

    def fetch_related_if_needed(self, calling_id: int, movie_id: str | None) -> None:
        movie = self.state.get_movie(movie_id)
        if movie is not None and not movie.related:
            self.fetch_related(calling_id, movie)

    def fetch_related(self, calling_id: int, movie: Movie) -> None:
        if movie.tmdb_id is not None and self.tmdb_available:
            self._submit(FetchTmdbRelatedTask(self.context, calling_id, movie.tmdb_id))
        elif movie.trakt_id:
            self._submit(FetchTraktRelatedTask(self.context, calling_id, movie.trakt_id))

    def fetch_cast_if_needed(self, calling_id: int, movie_id: str | None) -> None:
        movie = self.state.get_movie(movie_id)
        if movie is not None and not movie.cast:
            self.fetch_cast(calling_id, movie)

    def fetch_cast(self, calling_id: int, movie: Movie) -> None:
        if movie.tmdb_id is not None and self.tmdb_available:
            self._submit(FetchTmdbCastTask(self.context, calling_id, movie.tmdb_id))

    # -- TMDB configuration --------------------------------------------

    def fetch_tmdb_configuration(self) -> None:
        if self.tmdb_available:
            self._submit(FetchTmdbConfigurationTask(self.context, 0))
        else:
            logger.warning("TMDB_API_KEY is not set; using default image configuration")
            self.state.set_tmdb_configuration(TmdbConfiguration())

    # -- writes --------------------------------------------------------

    def _write(self, calling_id: int, operation: WriteOperation, ids: Iterable[str]) -> bool:
        ids = [movie_id for movie_id in ids if movie_id]
        if not ids:
            return False
        if not self.state.is_logged_in:
            self.state.show_error(calling_id, NetworkError.UNAUTHORIZED)
            return False
        self._submit(TraktWriteTask(self.context, calling_id, operation, ids))
        return True

    def add_to_collection(self, calling_id: int, *ids: str) -> bool:
        return self._write(calling_id, WriteOperation.ADD_TO_COLLECTION, ids)

    def remove_from_collection(self, calling_id: int, *ids: str) -> bool:
        return self._write(calling_id, WriteOperation.REMOVE_FROM_COLLECTION, ids)

    def add_to_watchlist(self, calling_id: int, *ids: str) -> bool:
        return self._write(calling_id, WriteOperation.ADD_TO_WATCHLIST, ids)

    def remove_from_watchlist(self, calling_id: int, *ids: str) -> bool:
        return self._write(calling_id, WriteOperation.REMOVE_FROM_WATCHLIST, ids)

    def mark_seen(self, calling_id: int, *ids: str) -> bool:
        issued = self._write(calling_id, WriteOperation.MARK_SEEN, ids)
        if issued and self.settings.remove_from_watchlist_on_watched:
            self.remove_from_watchlist(calling_id, *ids)
        return issued

    def mark_unseen(self, calling_id: int, *ids: str) -> bool:
        return self._write(calling_id, WriteOperation.MARK_UNSEEN, ids)

    def submit_rating(self, calling_id: int, movie_id: str, rating: int) -> bool:
        if not 0 <= rating <= 10:
            raise ValueError("rating must be between 0 and 10")
        if not self.state.is_logged_in:
            self.state.show_error(calling_id, NetworkError.UNAUTHORIZED)
            return False
        self._submit(SubmitRatingTask(self.context, calling_id, movie_id, rating))
        return True

    def checkin(self, calling_id: int, movie_id: str, message: str | None = None) -> bool:
        if not self.state.is_logged_in:
            self.state.show_error(calling_id, NetworkError.UNAUTHORIZED)
            return False
        self._submit(CheckinTask(self.context, calling_id, movie_id, message))
        return True

    def toggle_seen(self, calling_id: int, movie: Movie) -> bool:
        if movie.watched:
            return self.mark_unseen(calling_id, movie.trakt_id or "")
        return self.mark_seen(calling_id, movie.trakt_id or "")

    def toggle_in_watchlist(self, calling_id: int, movie: Movie) -> bool:
        if movie.in_watchlist:
            return self.remove_from_watchlist(calling_id, movie.trakt_id or "")
        return self.add_to_watchlist(calling_id, movie.trakt_id or "")

    def toggle_in_collection(self, calling_id: int, movie: Movie) -> bool:
        if movie.in_collection:
            return self.remove_from_collection(calling_id, movie.trakt_id or "")
        return self.add_to_collection(calling_id, movie.trakt_id or "")

    @staticmethod
    def _diff(movies: Sequence[Movie], flag: str, target: bool) -> list[str]:
        return [
            movie.trakt_id
            for movie in movies
            if movie.trakt_id and getattr(movie, flag) != target
        ]

    def set_movies_seen(self, calling_id: int, movies: Sequence[Movie], seen: bool) -> bool:
        ids = self._diff(movies, "watched", seen)
        return self.mark_seen(calling_id, *ids) if seen else self.mark_unseen(calling_id, *ids)

    def set_movies_in_watchlist(
        self, calling_id: int, movies: Sequence[Movie], in_watchlist: bool
    ) -> bool:
        ids = self._diff(movies, "in_watchlist", in_watchlist)
        if in_watchlist:
            return self.add_to_watchlist(calling_id, *ids)
        return self.remove_from_watchlist(calling_id, *ids)

    def set_movies_in_collection(
        self, calling_id: int, movies: Sequence[Movie], in_collection: bool
    ) -> bool:
        ids = self._diff(movies, "in_collection", in_collection)
        if in_collection:
            return self.add_to_collection(calling_id, *ids)
        return self.remove_from_collection(calling_id, *ids)

    # -- session and local cache ---------------------------------------

    def on_account_changed(self) -> None:
        """Forget everything that belonged to the previous session."""

        self.state.clear_authenticated_state()
        # In-flight fetches for the old session discard their own results.
        self._list_fetches.clear()
        if self.context.cache is not None:
            self.executor.submit(self.context.cache.clear(), name="ClearLocalCache")

    def populate_state_from_cache(self) -> None:
        if self.context.cache is None:
            self.populated_library_from_cache = True
            self.populated_watchlist_from_cache = True
            return
        if not self.state.library:
            self.executor.submit(self._load_library_from_cache(), name="LoadCachedLibrary")
        else:
            self.populated_library_from_cache = True
        if not self.state.watchlist:
            self.executor.submit(self._load_watchlist_from_cache(), name="LoadCachedWatchlist")
        else:
            self.populated_watchlist_from_cache = True

    async def _load_library_from_cache(self) -> None:
        payloads = await self.context.cache.load_library()  # type: ignore[union-attr]
        movies = self.state.put_movies(payloads)
        if movies and not self.state.library:
            self.state.set_library(movies)
        self.populated_library_from_cache = True
        logger.info("Loaded %s cached library movie(s)", len(movies))
        self.prefetch_library()

    async def _load_watchlist_from_cache(self) -> None:
        payloads = await self.context.cache.load_watchlist()  # type: ignore[union-attr]
        movies = self.state.put_movies(payloads)
        if movies and not self.state.watchlist:
            self.state.set_watchlist(movies)
        self.populated_watchlist_from_cache = True
        logger.info("Loaded %s cached watchlist movie(s)", len(movies))
        self.prefetch_watchlist()

    def prefetch_library(self) -> None:
        if self.state.is_logged_in:
            self.fetch_library_if_needed(self._view_lookup(QueryType.LIBRARY))

    def prefetch_watchlist(self) -> None:
        if self.state.is_logged_in:
            self.fetch_watchlist_if_needed(self._view_lookup(QueryType.WATCHLIST))
