"""Entry point for the FastAPI-powered movie sync service."""

from __future__ import annotations

import logging
from contextlib import AsyncExitStack, asynccontextmanager
from typing import Any, Literal

import httpx
from fastapi import FastAPI, HTTPException
from fastapi.middleware.cors import CORSMiddleware
from pydantic import BaseModel, Field

from .cache import LocalMovieCache
from .config import settings
from .controller import MovieController, ViewCallbacks
from .database import Database
from .executor import TaskExecutor
from .models import Account, Movie
from .orchestrator import FetchOrchestrator
from .projection import Filter
from .services.tmdb import TMDBClient
from .services.trakt import TraktClient
from .state import MoviesState
from .surfaces import SnapshotView, SurfaceKind, SurfaceRegistry
from .tasks import TaskContext

logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)


class SessionRequest(BaseModel):
    username: str = Field(min_length=1)
    access_token: str = Field(min_length=1)


class SearchRequest(BaseModel):
    query: str = Field(min_length=1)


class RatingRequest(BaseModel):
    rating: int = Field(ge=0, le=10)


class CheckinRequest(BaseModel):
    message: str | None = None


class BatchRequest(BaseModel):
    operation: Literal["seen", "watchlist", "collection"]
    movie_ids: list[str] = Field(min_length=1)
    value: bool = True


@asynccontextmanager
async def lifespan(fastapi_app: FastAPI):
    exit_stack = AsyncExitStack()
    trakt_http = await exit_stack.enter_async_context(
        httpx.AsyncClient(
            base_url=str(settings.trakt_api_url),
            timeout=httpx.Timeout(20.0, connect=10.0),
        )
    )
    tmdb: TMDBClient | None = None
    if settings.tmdb_api_key:
        tmdb_http = await exit_stack.enter_async_context(
            httpx.AsyncClient(
                base_url=str(settings.tmdb_api_url),
                timeout=httpx.Timeout(15.0, connect=5.0),
            )
        )
        tmdb = TMDBClient(settings, tmdb_http)
    else:
        logger.warning("TMDB_API_KEY is not set; TMDB listings are disabled")

    database = Database(settings.database_url)
    await database.create_all()

    state = MoviesState()
    if settings.has_trakt_session:
        state.set_current_account(
            Account(settings.trakt_username, settings.trakt_access_token)  # type: ignore[arg-type]
        )
    executor = TaskExecutor()
    context = TaskContext(
        state=state,
        trakt=TraktClient(settings, trakt_http),
        tmdb=tmdb,
        cache=LocalMovieCache(database.session_factory),
    )
    orchestrator = FetchOrchestrator(state, executor, context, settings)
    controller = MovieController(state, orchestrator, settings)

    fastapi_app.state.controller = controller
    fastapi_app.state.executor = executor
    fastapi_app.state.surfaces = SurfaceRegistry(controller)
    fastapi_app.state.database = database
    controller.start()

    try:
        yield
    finally:
        fastapi_app.state.surfaces.detach_all()
        controller.stop()
        await executor.shutdown()
        await database.dispose()
        await exit_stack.aclose()


def create_app() -> FastAPI:
    fastapi_app = FastAPI(
        title=settings.app_name,
        description="Trakt and TMDB movie views kept in sync",
        version="1.0.0",
        lifespan=lifespan,
    )

    fastapi_app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_methods=["GET", "POST", "PUT", "DELETE"],
        allow_headers=["*"],
    )

    register_routes(fastapi_app)
    return fastapi_app


def get_controller(app: FastAPI) -> MovieController:
    controller = getattr(app.state, "controller", None)
    if not isinstance(controller, MovieController):
        raise RuntimeError("Movie controller not initialised")
    return controller


def register_routes(fastapi_app: FastAPI) -> None:
    def _surfaces() -> SurfaceRegistry:
        surfaces = getattr(fastapi_app.state, "surfaces", None)
        if surfaces is None:
            surfaces = SurfaceRegistry(get_controller(fastapi_app))
            fastapi_app.state.surfaces = surfaces
        return surfaces

    async def _settle(wait: bool) -> None:
        executor = getattr(fastapi_app.state, "executor", None)
        if wait and isinstance(executor, TaskExecutor):
            await executor.drain()

    def _kind(value: str) -> SurfaceKind:
        try:
            return SurfaceKind(value)
        except ValueError as exc:
            raise HTTPException(status_code=404, detail=f"Unknown view {value!r}") from exc

    def _attach(kind: str, parameter: str | None) -> tuple[SnapshotView, ViewCallbacks]:
        try:
            return _surfaces().attach(_kind(kind), parameter)
        except ValueError as exc:
            raise HTTPException(status_code=400, detail=str(exc)) from exc

    def _movie(movie_id: str) -> Movie:
        movie = get_controller(fastapi_app).state.get_movie(movie_id)
        if movie is None:
            raise HTTPException(status_code=404, detail=f"Unknown movie {movie_id!r}")
        return movie

    def _snapshot(view: SnapshotView) -> dict[str, Any]:
        state = get_controller(fastapi_app).state
        return view.to_payload(state.tmdb_configuration)

    def _filters_payload() -> dict[str, Any]:
        state = get_controller(fastapi_app).state
        return {"filters": sorted(value.value for value in state.filters)}

    @fastapi_app.get("/healthz")
    async def healthcheck() -> dict[str, str]:
        return {"status": "ok"}

    @fastapi_app.put("/session")
    async def login(payload: SessionRequest) -> dict[str, Any]:
        state = get_controller(fastapi_app).state
        state.set_current_account(Account(payload.username, payload.access_token))
        return {"loggedIn": True, "username": state.username}

    @fastapi_app.delete("/session")
    async def logout() -> dict[str, Any]:
        get_controller(fastapi_app).state.set_current_account(None)
        return {"loggedIn": False, "username": None}

    @fastapi_app.get("/views/{kind}")
    async def read_view(
        kind: str, parameter: str | None = None, wait: bool = False
    ) -> dict[str, Any]:
        view, _ = _attach(kind, parameter)
        await _settle(wait)
        return _snapshot(view)

    @fastapi_app.delete("/views/{kind}")
    async def detach_view(kind: str, parameter: str | None = None) -> dict[str, bool]:
        return {"detached": _surfaces().detach(_kind(kind), parameter)}

    @fastapi_app.post("/views/{kind}/refresh")
    async def refresh_view(
        kind: str, parameter: str | None = None, wait: bool = False
    ) -> dict[str, Any]:
        view, callbacks = _attach(kind, parameter)
        callbacks.refresh()
        await _settle(wait)
        return _snapshot(view)

    @fastapi_app.post("/views/{kind}/next-page")
    async def next_page(
        kind: str, parameter: str | None = None, wait: bool = False
    ) -> dict[str, Any]:
        view, callbacks = _attach(kind, parameter)
        requested = callbacks.scrolled_to_bottom()
        await _settle(wait)
        return {"requested": requested, "view": _snapshot(view)}

    @fastapi_app.post("/views/{kind}/search")
    async def search(
        kind: str, payload: SearchRequest, wait: bool = False
    ) -> dict[str, Any]:
        view, callbacks = _attach(kind, None)
        try:
            callbacks.search(payload.query)
        except ValueError as exc:
            raise HTTPException(status_code=400, detail=str(exc)) from exc
        await _settle(wait)
        return _snapshot(view)

    @fastapi_app.delete("/views/{kind}/search")
    async def clear_search(kind: str) -> dict[str, Any]:
        view, callbacks = _attach(kind, None)
        callbacks.clear_search()
        return _snapshot(view)

    @fastapi_app.post("/filters/{name}")
    async def add_filter(name: str) -> dict[str, Any]:
        try:
            value = Filter(name)
        except ValueError as exc:
            raise HTTPException(status_code=404, detail=f"Unknown filter {name!r}") from exc
        get_controller(fastapi_app).state.add_filter(value)
        return _filters_payload()

    @fastapi_app.delete("/filters/{name}")
    async def remove_filter(name: str) -> dict[str, Any]:
        try:
            value = Filter(name)
        except ValueError as exc:
            raise HTTPException(status_code=404, detail=f"Unknown filter {name!r}") from exc
        get_controller(fastapi_app).state.remove_filter(value)
        return _filters_payload()

    @fastapi_app.delete("/filters")
    async def clear_filters() -> dict[str, Any]:
        get_controller(fastapi_app).state.clear_filters()
        return _filters_payload()

    @fastapi_app.post("/views/{kind}/movies/{movie_id}/rating")
    async def rate(
        kind: str,
        movie_id: str,
        payload: RatingRequest,
        parameter: str | None = None,
        wait: bool = False,
    ) -> dict[str, Any]:
        view, callbacks = _attach(kind, parameter)
        try:
            issued = callbacks.submit_rating(_movie(movie_id), payload.rating)
        except ValueError as exc:
            raise HTTPException(status_code=400, detail=str(exc)) from exc
        await _settle(wait)
        return {"issued": issued, "view": _snapshot(view)}

    @fastapi_app.post("/views/{kind}/movies/{movie_id}/checkin")
    async def checkin(
        kind: str,
        movie_id: str,
        payload: CheckinRequest,
        parameter: str | None = None,
        wait: bool = False,
    ) -> dict[str, Any]:
        view, callbacks = _attach(kind, parameter)
        try:
            issued = callbacks.checkin(_movie(movie_id), payload.message)
        except ValueError as exc:
            raise HTTPException(status_code=400, detail=str(exc)) from exc
        await _settle(wait)
        return {"issued": issued, "view": _snapshot(view)}

    _toggles = {
        "seen": ViewCallbacks.toggle_seen,
        "watchlist": ViewCallbacks.toggle_in_watchlist,
        "collection": ViewCallbacks.toggle_in_collection,
    }

    @fastapi_app.post("/views/{kind}/movies/{movie_id}/{flag}")
    async def toggle_flag(
        kind: str,
        movie_id: str,
        flag: Literal["seen", "watchlist", "collection"],
        parameter: str | None = None,
        wait: bool = False,
    ) -> dict[str, Any]:
        view, callbacks = _attach(kind, parameter)
        issued = _toggles[flag](callbacks, _movie(movie_id))
        await _settle(wait)
        return {"issued": issued, "view": _snapshot(view)}

    _batches = {
        "seen": ViewCallbacks.set_movies_seen,
        "watchlist": ViewCallbacks.set_movies_in_watchlist,
        "collection": ViewCallbacks.set_movies_in_collection,
    }

    @fastapi_app.post("/views/{kind}/batch")
    async def batch(
        kind: str,
        payload: BatchRequest,
        parameter: str | None = None,
        wait: bool = False,
    ) -> dict[str, Any]:
        view, callbacks = _attach(kind, parameter)
        movies = [_movie(movie_id) for movie_id in payload.movie_ids]
        issued = _batches[payload.operation](callbacks, movies, payload.value)
        await _settle(wait)
        return {"issued": issued, "view": _snapshot(view)}


app = create_app()
