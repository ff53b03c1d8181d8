"""Pytest configuration and test helpers."""

from __future__ import annotations

import asyncio
import sys
from datetime import datetime, timezone
from pathlib import Path
from types import SimpleNamespace
from typing import Any, Callable, Iterable

import pytest


# Ensure the application package is importable when running tests without an
# editable install.
ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))


from reelsync.config import Settings  # noqa: E402
from reelsync.controller import MovieController  # noqa: E402
from reelsync.errors import ProviderError  # noqa: E402
from reelsync.executor import TaskExecutor  # noqa: E402
from reelsync.models import (  # noqa: E402
    Account,
    CastMember,
    MoviePayload,
    Person,
    Provider,
    TmdbConfiguration,
    Trailer,
)
from reelsync.orchestrator import FetchOrchestrator  # noqa: E402
from reelsync.services.tmdb import TMDBPage  # noqa: E402
from reelsync.state import MoviesState  # noqa: E402
from reelsync.tasks import TaskContext  # noqa: E402

NOW = datetime(2024, 6, 1, tzinfo=timezone.utc)


@pytest.fixture
def anyio_backend() -> str:
    """Force AnyIO tests to run on asyncio without requiring trio."""

    return "asyncio"


def build_settings(**overrides: Any) -> Settings:
    """Return a settings object that ignores the developer's .env file."""

    base: dict[str, Any] = {"TMDB_API_KEY": "tmdb-key", "TRAKT_CLIENT_ID": "client-id"}
    base.update(overrides)
    return Settings(_env_file=None, **base)  # type: ignore[arg-type]


def trakt_payload(trakt_id: str, tmdb_id: int | None = None, **fields: Any) -> MoviePayload:
    return MoviePayload(source=Provider.TRAKT, trakt_id=trakt_id, tmdb_id=tmdb_id, **fields)


def tmdb_payload(tmdb_id: int, trakt_id: str | None = None, **fields: Any) -> MoviePayload:
    return MoviePayload(source=Provider.TMDB, tmdb_id=tmdb_id, trakt_id=trakt_id, **fields)


class FakeTrakt:
    """In-memory stand-in for :class:`reelsync.services.trakt.TraktClient`."""

    def __init__(self) -> None:
        self.calls: list[tuple[str, tuple[Any, ...], dict[str, Any]]] = []
        self.library: list[MoviePayload] = []
        self.watchlist: list[MoviePayload] = []
        self.trending: list[MoviePayload] = []
        self.recommended: list[MoviePayload] = []
        self.details: dict[str, MoviePayload] = {}
        self.by_tmdb: dict[int, MoviePayload] = {}
        self.related: dict[str, list[MoviePayload]] = {}
        self.not_found: list[str] = []
        self.checkin_movie: dict[str, Any] | None = None
        self.errors: dict[str, ProviderError] = {}

    def _record(self, name: str, *args: Any, **kwargs: Any) -> None:
        self.calls.append((name, args, kwargs))
        error = self.errors.get(name)
        if error is not None:
            raise error

    def count(self, name: str) -> int:
        return sum(1 for call in self.calls if call[0] == name)

    def ids_for(self, name: str) -> list[list[str]]:
        return [list(call[1][0]) for call in self.calls if call[0] == name]

    async def fetch_library(self, username: str, *, access_token: str | None = None):
        self._record("fetch_library", username, access_token=access_token)
        return list(self.library)

    async def fetch_watchlist(self, username: str, *, access_token: str | None = None):
        self._record("fetch_watchlist", username, access_token=access_token)
        return list(self.watchlist)

    async def fetch_trending(self, *, limit: int = 100):
        self._record("fetch_trending")
        return list(self.trending)

    async def fetch_recommendations(self, *, access_token: str | None = None, limit: int = 50):
        self._record("fetch_recommendations", access_token=access_token)
        return list(self.recommended)

    async def fetch_movie_detail(self, movie_id: str, *, access_token: str | None = None):
        self._record("fetch_movie_detail", movie_id, access_token=access_token)
        return self.details[movie_id]

    async def lookup_tmdb_id(self, tmdb_id: int, *, access_token: str | None = None):
        self._record("lookup_tmdb_id", tmdb_id, access_token=access_token)
        return self.by_tmdb[tmdb_id]

    async def fetch_related(self, movie_id: str, *, limit: int = 20):
        self._record("fetch_related", movie_id)
        return list(self.related.get(movie_id, []))

    async def _sync(self, name: str, ids: Iterable[str], access_token: str | None):
        self._record(name, list(ids), access_token=access_token)
        return {"not_found": {"movies": [{"ids": {"imdb": i}} for i in self.not_found]}}

    async def add_to_collection(self, ids, *, access_token=None):
        return await self._sync("add_to_collection", ids, access_token)

    async def remove_from_collection(self, ids, *, access_token=None):
        return await self._sync("remove_from_collection", ids, access_token)

    async def add_to_watchlist(self, ids, *, access_token=None):
        return await self._sync("add_to_watchlist", ids, access_token)

    async def remove_from_watchlist(self, ids, *, access_token=None):
        return await self._sync("remove_from_watchlist", ids, access_token)

    async def mark_seen(self, ids, *, access_token=None):
        return await self._sync("mark_seen", ids, access_token)

    async def mark_unseen(self, ids, *, access_token=None):
        return await self._sync("mark_unseen", ids, access_token)

    async def submit_rating(self, movie_id: str, rating: int, *, access_token=None):
        self._record("submit_rating", movie_id, rating, access_token=access_token)
        return {}

    async def checkin(self, movie_id: str, message=None, *, access_token=None):
        self._record("checkin", movie_id, message, access_token=access_token)
        return {"movie": self.checkin_movie} if self.checkin_movie else {}


class FakeTmdb:
    """In-memory stand-in for :class:`reelsync.services.tmdb.TMDBClient`."""

    def __init__(self) -> None:
        self.calls: list[tuple[str, tuple[Any, ...]]] = []
        self.pages: dict[str, dict[int, TMDBPage]] = {}
        self.details: dict[int, MoviePayload] = {}
        self.related: dict[int, list[MoviePayload]] = {}
        self.cast: dict[int, list[CastMember]] = {}
        self.trailers: dict[int, list[Trailer]] = {}
        self.certifications: dict[int, str] = {}
        self.errors: dict[str, ProviderError] = {}
        # Responses keyed by (method, page) or ("search", query) wait on these.
        self.gates: dict[tuple[str, Any], asyncio.Event] = {}

    def hold(self, name: str, key: Any) -> asyncio.Event:
        gate = self.gates[(name, key)] = asyncio.Event()
        return gate

    async def _wait(self, name: str, key: Any) -> None:
        gate = self.gates.get((name, key))
        if gate is not None:
            await gate.wait()

    def _record(self, name: str, *args: Any) -> None:
        self.calls.append((name, args))
        error = self.errors.get(name)
        if error is not None:
            raise error

    def count(self, name: str) -> int:
        return sum(1 for call in self.calls if call[0] == name)

    async def _page(self, name: str, page: int) -> TMDBPage:
        self._record(name, page)
        await self._wait(name, page)
        return self.pages.get(name, {}).get(page) or TMDBPage(items=[], page=page, total_pages=page)

    async def fetch_popular(self, page: int = 1) -> TMDBPage:
        return await self._page("fetch_popular", page)

    async def fetch_upcoming(self, page: int = 1) -> TMDBPage:
        return await self._page("fetch_upcoming", page)

    async def fetch_now_playing(self, page: int = 1) -> TMDBPage:
        return await self._page("fetch_now_playing", page)

    async def search(self, query: str, page: int = 1) -> TMDBPage:
        self._record("search", query, page)
        await self._wait("search", query)
        return self.pages.get(f"search:{query}", {}).get(page) or TMDBPage([], page, page)

    async def fetch_movie_detail(self, tmdb_id: int) -> MoviePayload:
        self._record("fetch_movie_detail", tmdb_id)
        return self.details.get(tmdb_id) or tmdb_payload(tmdb_id, full=True)

    async def fetch_related(self, tmdb_id: int) -> list[MoviePayload]:
        self._record("fetch_related", tmdb_id)
        return list(self.related.get(tmdb_id, []))

    async def fetch_cast(self, tmdb_id: int) -> list[CastMember]:
        self._record("fetch_cast", tmdb_id)
        return list(self.cast.get(tmdb_id, []))

    async def fetch_trailers(self, tmdb_id: int) -> list[Trailer]:
        self._record("fetch_trailers", tmdb_id)
        return list(self.trailers.get(tmdb_id, []))

    async def fetch_certification(self, tmdb_id: int, *, country: str = "US") -> str | None:
        self._record("fetch_certification", tmdb_id)
        return self.certifications.get(tmdb_id)

    async def fetch_configuration(self) -> TmdbConfiguration:
        self._record("fetch_configuration")
        return TmdbConfiguration(poster_sizes=["w342", "w500"])


class MemoryCache:
    """Stand-in for the SQLite-backed cache that keeps lists in memory."""

    def __init__(
        self,
        library: list[MoviePayload] | None = None,
        watchlist: list[MoviePayload] | None = None,
    ) -> None:
        self.library = list(library or [])
        self.watchlist = list(watchlist or [])
        self.saved_library: list[list[str | None]] = []
        self.saved_watchlist: list[list[str | None]] = []
        self.cleared = 0

    async def load_library(self) -> list[MoviePayload]:
        return list(self.library)

    async def load_watchlist(self) -> list[MoviePayload]:
        return list(self.watchlist)

    async def save_library(self, movies) -> None:
        self.saved_library.append([movie.trakt_id for movie in movies])

    async def save_watchlist(self, movies) -> None:
        self.saved_watchlist.append([movie.trakt_id for movie in movies])

    async def clear(self) -> None:
        self.cleared += 1


@pytest.fixture
def fake_trakt() -> FakeTrakt:
    return FakeTrakt()


@pytest.fixture
def fake_tmdb() -> FakeTmdb:
    return FakeTmdb()


@pytest.fixture
def make_runtime(fake_trakt: FakeTrakt, fake_tmdb: FakeTmdb) -> Callable[..., SimpleNamespace]:
    """Wire state, executor, orchestrator and controller around the fakes."""

    def factory(
        *,
        logged_in: bool = False,
        cache: Any = None,
        with_tmdb: bool = True,
        configured: bool = True,
        settings: Settings | None = None,
        clock: Callable[[], datetime] | None = lambda: NOW,
    ) -> SimpleNamespace:
        settings = settings or build_settings()
        state = MoviesState()
        if logged_in:
            state.set_current_account(Account("jane", "token-1"))
        if configured:
            state.set_tmdb_configuration(TmdbConfiguration())
        executor = TaskExecutor()
        context = TaskContext(
            state=state,
            trakt=fake_trakt,  # type: ignore[arg-type]
            tmdb=fake_tmdb if with_tmdb else None,  # type: ignore[arg-type]
            cache=cache,
        )
        orchestrator = FetchOrchestrator(state, executor, context, settings)
        controller = MovieController(state, orchestrator, settings, clock=clock)
        return SimpleNamespace(
            state=state,
            executor=executor,
            context=context,
            orchestrator=orchestrator,
            controller=controller,
            settings=settings,
            trakt=fake_trakt,
            tmdb=fake_tmdb,
            cache=cache,
        )

    return factory


def cast_member(tmdb_id: int, name: str, order: int = 0) -> CastMember:
    return CastMember(person=Person(tmdb_id=tmdb_id, name=name), character="Lead", order=order)
