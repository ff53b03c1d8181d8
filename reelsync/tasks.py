"""One-shot fetch and write tasks run on the shared event loop.

Each task performs a single provider round trip and then applies the result to
:class:`~reelsync.state.MoviesState`. Loading indicators and provider errors are
reported to the view that requested the work through the state's notification
channel.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from enum import Enum
from typing import Any, Callable, Sequence

from .cache import LocalMovieCache
from .errors import ProviderError
from .models import (
    Movie,
    MoviePayload,
    PaginatedResult,
    Provider,
    SearchResult,
    trakt_identifier,
)
from .services.tmdb import TMDBClient, TMDBPage
from .services.trakt import TraktClient
from .state import MoviesState, Topic
from .views import QueryType

logger = logging.getLogger(__name__)


@dataclass
class TaskContext:
    """Collaborators every task needs."""

    state: MoviesState
    trakt: TraktClient
    tmdb: TMDBClient | None = None
    cache: LocalMovieCache | None = None


class MovieTask:
    """Base class: show progress, call the provider, apply or report the result."""

    secondary = False

    def __init__(self, context: TaskContext, calling_id: int = 0):
        self.context = context
        self.calling_id = calling_id

    @property
    def state(self) -> MoviesState:
        return self.context.state

    @property
    def name(self) -> str:
        return type(self).__name__

    async def run(self) -> None:
        self.state.show_loading_progress(self.calling_id, True, secondary=self.secondary)
        try:
            try:
                result = await self.fetch()
            except ProviderError as exc:
                self.on_error(exc)
            else:
                await self.on_success(result)
        finally:
            self.state.show_loading_progress(self.calling_id, False, secondary=self.secondary)

    async def fetch(self) -> Any:
        raise NotImplementedError

    async def on_success(self, result: Any) -> None:
        raise NotImplementedError

    def on_error(self, exc: ProviderError) -> None:
        logger.warning("%s failed: %s", self.name, exc)
        self.state.show_error(self.calling_id, exc.error)


class AuthenticatedTask(MovieTask):
    """A task bound to the session that was active when it was created.

    Results that arrive after the session changed are discarded.
    """

    def __init__(self, context: TaskContext, calling_id: int = 0):
        super().__init__(context, calling_id)
        self.account = context.state.current_account

    @property
    def access_token(self) -> str | None:
        return self.account.access_token if self.account else None

    def session_is_current(self) -> bool:
        if self.state.current_account != self.account:
            logger.debug("Discarding %s result for a previous session", self.name)
            return False
        return True

    def on_error(self, exc: ProviderError) -> None:
        if self.session_is_current():
            super().on_error(exc)


async def persist_lists(context: TaskContext) -> None:
    """Write the current library and watchlist back to the local cache."""

    cache = context.cache
    if cache is None:
        return
    if context.state.library is not None:
        await cache.save_library(context.state.library)
    if context.state.watchlist is not None:
        await cache.save_watchlist(context.state.watchlist)


# -- Trakt fetches ------------------------------------------------------


class FetchLibraryTask(AuthenticatedTask):
    async def fetch(self):
        return await self.context.trakt.fetch_library(
            self.account.username if self.account else "",
            access_token=self.access_token,
        )

    async def on_success(self, result) -> None:
        if not self.session_is_current():
            return
        movies = self.state.put_movies(result)
        for movie in self.state.library or []:
            if movie not in movies:
                movie.in_collection = False
                movie.watched = False
                movie.plays = 0
        self.state.set_library(movies)
        if self.context.cache is not None:
            await self.context.cache.save_library(movies)


class FetchWatchlistTask(AuthenticatedTask):
    async def fetch(self):
        return await self.context.trakt.fetch_watchlist(
            self.account.username if self.account else "",
            access_token=self.access_token,
        )

    async def on_success(self, result) -> None:
        if not self.session_is_current():
            return
        movies = self.state.put_movies(result)
        for movie in self.state.watchlist or []:
            if movie not in movies:
                movie.in_watchlist = False
        self.state.set_watchlist(movies)
        if self.context.cache is not None:
            await self.context.cache.save_watchlist(movies)


class FetchTrendingTask(MovieTask):
    async def fetch(self):
        return await self.context.trakt.fetch_trending()

    async def on_success(self, result) -> None:
        self.state.set_trending(self.state.put_movies(result))


class FetchRecommendedTask(AuthenticatedTask):
    async def fetch(self):
        return await self.context.trakt.fetch_recommendations(access_token=self.access_token)

    async def on_success(self, result) -> None:
        if self.session_is_current():
            self.state.set_recommended(self.state.put_movies(result))


class FetchTraktDetailTask(AuthenticatedTask):
    """Full Trakt record for a movie, looked up by Trakt id or by TMDB id."""

    def __init__(
        self,
        context: TaskContext,
        calling_id: int,
        *,
        movie_id: str | None = None,
        tmdb_id: int | None = None,
        movie: Movie | None = None,
    ):
        if movie_id is None and tmdb_id is None:
            raise ValueError("movie_id or tmdb_id is required")
        super().__init__(context, calling_id)
        self.movie_id = movie_id
        self.tmdb_id = tmdb_id
        self.movie = movie

    async def fetch(self):
        if self.movie_id is not None:
            return await self.context.trakt.fetch_movie_detail(
                self.movie_id, access_token=self.access_token
            )
        return await self.context.trakt.lookup_tmdb_id(
            self.tmdb_id, access_token=self.access_token  # type: ignore[arg-type]
        )

    async def on_success(self, result) -> None:
        movie = self.state.put_movie(result)
        if self.movie_id is not None:
            self.state.add_alias(self.movie_id, movie)
        self._finish(movie, success=True)
        self.state.publish(Topic.MOVIE_INFORMATION_UPDATED, calling_id=self.calling_id, movie=movie)

    def on_error(self, exc: ProviderError) -> None:
        self._finish(self.state.get_movie(self.movie_id or self.tmdb_id), success=False)
        super().on_error(exc)

    def _finish(self, movie: Movie | None, *, success: bool) -> None:
        # The entity may have been folded into another one while in flight.
        for candidate in {id(m): m for m in (self.movie, movie) if m is not None}.values():
            candidate.mark_full_fetch_finished(Provider.TRAKT, success=success)


class FetchTraktRelatedTask(MovieTask):
    def __init__(self, context: TaskContext, calling_id: int, movie_id: str):
        super().__init__(context, calling_id)
        self.movie_id = movie_id

    async def fetch(self):
        return await self.context.trakt.fetch_related(self.movie_id)

    async def on_success(self, result) -> None:
        movie = self.state.get_movie(self.movie_id)
        if movie is None:
            return
        movie.related = [m for m in self.state.put_movies(result) if m is not movie]
        self.state.publish(Topic.MOVIE_INFORMATION_UPDATED, calling_id=self.calling_id, movie=movie)


# -- TMDB fetches -------------------------------------------------------


class TmdbTask(MovieTask):
    @property
    def tmdb(self) -> TMDBClient:
        if self.context.tmdb is None:
            raise RuntimeError("TMDB client is not configured")
        return self.context.tmdb


class FetchTmdbListingTask(TmdbTask):
    """One page of the popular, now-playing or upcoming listing."""

    LISTINGS: dict[QueryType, tuple[str, str, str]] = {
        QueryType.POPULAR: ("fetch_popular", "popular", "set_popular"),
        QueryType.NOW_PLAYING: ("fetch_now_playing", "now_playing", "set_now_playing"),
        QueryType.UPCOMING: ("fetch_upcoming", "upcoming", "set_upcoming"),
    }

    def __init__(self, context: TaskContext, calling_id: int, query_type: QueryType, page: int = 1):
        if query_type not in self.LISTINGS:
            raise ValueError(f"{query_type.value} is not a paginated listing")
        super().__init__(context, calling_id)
        self.query_type = query_type
        self.page = page
        self.secondary = page > 1

    @property
    def name(self) -> str:
        return f"{type(self).__name__}[{self.query_type.value}:{self.page}]"

    async def fetch(self) -> TMDBPage:
        method, _, _ = self.LISTINGS[self.query_type]
        return await getattr(self.tmdb, method)(page=self.page)

    async def on_success(self, result: TMDBPage) -> None:
        _, attribute, setter = self.LISTINGS[self.query_type]
        current: PaginatedResult | None = getattr(self.state, attribute)
        movies = self.state.put_movies(result.items)
        if result.page > 1:
            if current is None or current.page >= result.page:
                return
            movies = current.items + [m for m in movies if m not in current.items]
        getattr(self.state, setter)(PaginatedResult(movies, result.page, result.total_pages))


class FetchSearchTask(TmdbTask):
    def __init__(self, context: TaskContext, calling_id: int, query: str, page: int = 1):
        super().__init__(context, calling_id)
        self.query = query
        self.page = page
        self.secondary = page > 1

    async def fetch(self) -> TMDBPage:
        return await self.tmdb.search(self.query, page=self.page)

    async def on_success(self, result: TMDBPage) -> None:
        if self.query != self.state.pending_search_query:
            return
        current = self.state.search_result
        movies = self.state.put_movies(result.items)
        if result.page > 1:
            if current is None or current.query != self.query or current.page >= result.page:
                return
            movies = current.items + [m for m in movies if m not in current.items]
        self.state.set_search_result(
            SearchResult(movies, result.page, result.total_pages, query=self.query)
        )


class FetchTmdbDetailTask(TmdbTask):
    def __init__(self, context: TaskContext, calling_id: int, tmdb_id: int, movie: Movie | None = None):
        super().__init__(context, calling_id)
        self.tmdb_id = tmdb_id
        self.movie = movie

    async def fetch(self):
        return await self.tmdb.fetch_movie_detail(self.tmdb_id)

    async def on_success(self, result) -> None:
        movie = self.state.put_movie(result)
        self._finish(movie, success=True)
        self.state.publish(Topic.MOVIE_INFORMATION_UPDATED, calling_id=self.calling_id, movie=movie)

    def on_error(self, exc: ProviderError) -> None:
        self._finish(self.state.get_movie(self.tmdb_id), success=False)
        super().on_error(exc)

    def _finish(self, movie: Movie | None, *, success: bool) -> None:
        for candidate in {id(m): m for m in (self.movie, movie) if m is not None}.values():
            candidate.mark_full_fetch_finished(Provider.TMDB, success=success)


class FetchTmdbRelatedTask(TmdbTask):
    def __init__(self, context: TaskContext, calling_id: int, tmdb_id: int):
        super().__init__(context, calling_id)
        self.tmdb_id = tmdb_id

    async def fetch(self):
        return await self.tmdb.fetch_related(self.tmdb_id)

    async def on_success(self, result) -> None:
        movie = self.state.get_movie(self.tmdb_id)
        if movie is None:
            return
        movie.related = [m for m in self.state.put_movies(result) if m is not movie]
        self.state.publish(Topic.MOVIE_INFORMATION_UPDATED, calling_id=self.calling_id, movie=movie)


class FetchTmdbCastTask(TmdbTask):
    def __init__(self, context: TaskContext, calling_id: int, tmdb_id: int):
        super().__init__(context, calling_id)
        self.tmdb_id = tmdb_id

    async def fetch(self):
        return await self.tmdb.fetch_cast(self.tmdb_id)

    async def on_success(self, result) -> None:
        movie = self.state.get_movie(self.tmdb_id)
        if movie is None:
            return
        movie.cast = list(result)
        self.state.publish(Topic.MOVIE_INFORMATION_UPDATED, calling_id=self.calling_id, movie=movie)


class FetchTmdbTrailersTask(TmdbTask):
    def __init__(self, context: TaskContext, calling_id: int, tmdb_id: int):
        super().__init__(context, calling_id)
        self.tmdb_id = tmdb_id

    async def fetch(self):
        return await self.tmdb.fetch_trailers(self.tmdb_id)

    async def on_success(self, result) -> None:
        movie = self.state.get_movie(self.tmdb_id)
        if movie is None:
            return
        movie.trailers = list(result)
        self.state.publish(Topic.MOVIE_RELEASES_UPDATED, calling_id=self.calling_id, movie=movie)


class FetchTmdbReleasesTask(TmdbTask):
    """Certification from TMDB's release dates."""

    def __init__(self, context: TaskContext, calling_id: int, tmdb_id: int):
        super().__init__(context, calling_id)
        self.tmdb_id = tmdb_id

    async def fetch(self):
        return await self.tmdb.fetch_certification(self.tmdb_id)

    async def on_success(self, result) -> None:
        movie = self.state.get_movie(self.tmdb_id)
        if movie is None:
            return
        if result:
            movie.certification = result
        self.state.publish(Topic.MOVIE_RELEASES_UPDATED, calling_id=self.calling_id, movie=movie)


class FetchTmdbConfigurationTask(TmdbTask):
    async def fetch(self):
        return await self.tmdb.fetch_configuration()

    async def on_success(self, result) -> None:
        self.state.set_tmdb_configuration(result)


# -- Trakt writes -------------------------------------------------------


def _add_to(movies: list[Movie] | None, movie: Movie) -> bool:
    if movies is None or movie in movies:
        return False
    movies.append(movie)
    return True


def _remove_from(movies: list[Movie] | None, movie: Movie) -> bool:
    if movies is None or movie not in movies:
        return False
    movies.remove(movie)
    return True


def _collected(state: MoviesState, movie: Movie) -> set[Topic]:
    movie.in_collection = True
    return {Topic.LIBRARY_CHANGED} if _add_to(state.library, movie) else set()


def _uncollected(state: MoviesState, movie: Movie) -> set[Topic]:
    movie.in_collection = False
    if not movie.watched and _remove_from(state.library, movie):
        return {Topic.LIBRARY_CHANGED}
    return set()


def _watchlisted(state: MoviesState, movie: Movie) -> set[Topic]:
    movie.in_watchlist = True
    return {Topic.WATCHLIST_CHANGED} if _add_to(state.watchlist, movie) else set()


def _unwatchlisted(state: MoviesState, movie: Movie) -> set[Topic]:
    movie.in_watchlist = False
    return {Topic.WATCHLIST_CHANGED} if _remove_from(state.watchlist, movie) else set()


def _seen(state: MoviesState, movie: Movie) -> set[Topic]:
    movie.watched = True
    movie.plays = max(movie.plays, 1)
    return {Topic.LIBRARY_CHANGED} if _add_to(state.library, movie) else set()


def _unseen(state: MoviesState, movie: Movie) -> set[Topic]:
    movie.watched = False
    movie.plays = 0
    if not movie.in_collection and _remove_from(state.library, movie):
        return {Topic.LIBRARY_CHANGED}
    return set()


class WriteOperation(str, Enum):
    ADD_TO_COLLECTION = "add_to_collection"
    REMOVE_FROM_COLLECTION = "remove_from_collection"
    ADD_TO_WATCHLIST = "add_to_watchlist"
    REMOVE_FROM_WATCHLIST = "remove_from_watchlist"
    MARK_SEEN = "mark_seen"
    MARK_UNSEEN = "mark_unseen"


_WRITES: dict[WriteOperation, tuple[str, Callable[[MoviesState, Movie], set[Topic]]]] = {
    WriteOperation.ADD_TO_COLLECTION: ("add_to_collection", _collected),
    WriteOperation.REMOVE_FROM_COLLECTION: ("remove_from_collection", _uncollected),
    WriteOperation.ADD_TO_WATCHLIST: ("add_to_watchlist", _watchlisted),
    WriteOperation.REMOVE_FROM_WATCHLIST: ("remove_from_watchlist", _unwatchlisted),
    WriteOperation.MARK_SEEN: ("mark_seen", _seen),
    WriteOperation.MARK_UNSEEN: ("mark_unseen", _unseen),
}


class TraktWriteTask(AuthenticatedTask):
    """Apply a sync write on Trakt, then mirror it into local state."""

    def __init__(
        self,
        context: TaskContext,
        calling_id: int,
        operation: WriteOperation,
        ids: Sequence[str],
    ):
        super().__init__(context, calling_id)
        self.operation = operation
        self.ids = list(dict.fromkeys(ids))

    @property
    def name(self) -> str:
        return f"{type(self).__name__}[{self.operation.value}]"

    async def fetch(self):
        method, _ = _WRITES[self.operation]
        return await getattr(self.context.trakt, method)(self.ids, access_token=self.access_token)

    async def on_success(self, result) -> None:
        if not self.session_is_current():
            return
        not_found = {
            trakt_identifier(entry.get("ids") or {})
            for entry in ((result or {}).get("not_found") or {}).get("movies") or []
            if isinstance(entry, dict)
        }
        _, apply = _WRITES[self.operation]
        changed: set[Topic] = set()
        updated: list[Movie] = []
        for movie_id in self.ids:
            if movie_id in not_found:
                continue
            movie = self.state.get_movie(movie_id)
            if movie is None or movie in updated:
                continue
            changed |= apply(self.state, movie)
            updated.append(movie)

        if Topic.LIBRARY_CHANGED in changed:
            self.state.set_library(self.state.library)
        if Topic.WATCHLIST_CHANGED in changed:
            self.state.set_watchlist(self.state.watchlist)
        self.state.publish(
            Topic.MOVIE_FLAGS_UPDATED,
            calling_id=self.calling_id,
            movie=updated[0] if len(updated) == 1 else None,
        )
        await persist_lists(self.context)


class SubmitRatingTask(AuthenticatedTask):
    def __init__(self, context: TaskContext, calling_id: int, movie_id: str, rating: int):
        super().__init__(context, calling_id)
        self.movie_id = movie_id
        self.rating = rating

    async def fetch(self):
        return await self.context.trakt.submit_rating(
            self.movie_id, self.rating, access_token=self.access_token
        )

    async def on_success(self, result) -> None:
        if not self.session_is_current():
            return
        movie = self.state.get_movie(self.movie_id)
        if movie is None:
            return
        movie.user_rating = self.rating
        self.state.publish(
            Topic.MOVIE_USER_RATING_CHANGED, calling_id=self.calling_id, movie=movie
        )
        await persist_lists(self.context)


class CheckinTask(AuthenticatedTask):
    def __init__(self, context: TaskContext, calling_id: int, movie_id: str, message: str | None = None):
        super().__init__(context, calling_id)
        self.movie_id = movie_id
        self.message = message

    async def fetch(self):
        return await self.context.trakt.checkin(
            self.movie_id, self.message, access_token=self.access_token
        )

    async def on_success(self, result) -> None:
        if not self.session_is_current():
            return
        movie = self.state.get_movie(self.movie_id)
        if movie is None and isinstance((result or {}).get("movie"), dict):
            movie = self.state.put_movie(MoviePayload.from_trakt(result["movie"]))
        if movie is not None:
            self.state.set_watching(movie)
