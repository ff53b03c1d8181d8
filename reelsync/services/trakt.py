"""Utilities for communicating with the Trakt API."""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Iterable

import httpx

from ..config import Settings
from ..errors import NetworkError, ProviderError
from ..models import MoviePayload

logger = logging.getLogger(__name__)

PROVIDER = "trakt"


def movie_ids(movie_id: str) -> dict[str, Any]:
    """Build a Trakt ``ids`` object for an identifier in Trakt's namespace."""

    if movie_id.startswith("tt"):
        return {"imdb": movie_id}
    if movie_id.isdigit():
        return {"trakt": int(movie_id)}
    return {"slug": movie_id}


class TraktClient:
    """Thin wrapper around the Trakt HTTP API."""

    def __init__(self, settings: Settings, http_client: httpx.AsyncClient):
        self._settings = settings
        self._client = http_client
        self._max_retries = settings.provider_max_retries

    def _headers(self, *, access_token: str | None = None) -> dict[str, str]:
        headers = {
            "trakt-api-version": "2",
            "User-Agent": f"{self._settings.app_name} (reelsync)",
        }
        if self._settings.trakt_client_id:
            headers["trakt-api-key"] = self._settings.trakt_client_id
        if access_token:
            headers["Authorization"] = f"Bearer {access_token}"
        return headers

    async def _request(
        self,
        method: str,
        path: str,
        *,
        params: dict[str, Any] | None = None,
        json: Any = None,
        access_token: str | None = None,
    ) -> Any:
        """Send a request, retrying transient failures, and return decoded JSON."""

        attempt = 0
        while True:
            try:
                response = await self._client.request(
                    method,
                    path,
                    params=params,
                    json=json,
                    headers=self._headers(access_token=access_token),
                )
            except httpx.HTTPError as exc:
                attempt += 1
                if attempt <= self._max_retries:
                    backoff = min(2 ** (attempt - 1), 5) + (0.1 * attempt)
                    logger.info(
                        "Transient error talking to Trakt (%s). Retrying %s in %.1fs",
                        exc.__class__.__name__,
                        path,
                        backoff,
                    )
                    await asyncio.sleep(backoff)
                    continue
                logger.warning("Trakt request %s %s failed: %s", method, path, exc)
                raise ProviderError.from_exception(PROVIDER, exc) from exc

            if 500 <= response.status_code < 600:
                attempt += 1
                if attempt <= self._max_retries:
                    backoff = min(2 ** (attempt - 1), 5) + (0.1 * attempt)
                    logger.info(
                        "Trakt %s for %s. Retrying in %.1fs",
                        response.status_code,
                        path,
                        backoff,
                    )
                    await asyncio.sleep(backoff)
                    continue
            break

        if response.status_code >= 400:
            logger.warning(
                "Trakt request %s %s failed with %s: %s",
                method,
                path,
                response.status_code,
                response.text,
            )
            raise ProviderError.from_status(PROVIDER, response.status_code, response.text)
        if response.status_code == 204 or not response.content:
            return None
        try:
            return response.json()
        except ValueError as exc:
            raise ProviderError(PROVIDER, NetworkError.UNKNOWN, "non-JSON response") from exc

    @staticmethod
    def _require_token(access_token: str | None) -> str:
        if not access_token:
            raise ProviderError(PROVIDER, NetworkError.UNAUTHORIZED, "no access token")
        return access_token

    @staticmethod
    def _movies_from(data: Any, *, key: str | None = "movie") -> list[dict[str, Any]]:
        if not isinstance(data, list):
            return []
        movies: list[dict[str, Any]] = []
        for entry in data:
            if not isinstance(entry, dict):
                continue
            if key and isinstance(entry.get(key), dict):
                movies.append(entry[key])
            elif entry.get("title") and entry.get("ids"):
                movies.append(entry)
        return movies

    async def fetch_library(
        self, username: str, *, access_token: str | None = None
    ) -> list[MoviePayload]:
        """Return the user's collected, watched and rated movies merged by id."""

        token = self._require_token(access_token)
        base = f"/users/{username}"
        params = {"extended": "full"}
        collection, watched, ratings = await asyncio.gather(
            self._request("GET", f"{base}/collection/movies", params=params, access_token=token),
            self._request("GET", f"{base}/watched/movies", params=params, access_token=token),
            self._request("GET", f"{base}/ratings/movies", access_token=token),
        )

        rated: dict[str, int] = {}
        for entry in ratings or []:
            movie = entry.get("movie") if isinstance(entry, dict) else None
            if isinstance(movie, dict) and isinstance(entry.get("rating"), int):
                payload = MoviePayload.from_trakt(movie)
                if payload.trakt_id:
                    rated[payload.trakt_id] = entry["rating"]

        plays: dict[str, int] = {}
        watched_movies: dict[str, dict[str, Any]] = {}
        for entry in watched or []:
            movie = entry.get("movie") if isinstance(entry, dict) else None
            if not isinstance(movie, dict):
                continue
            payload = MoviePayload.from_trakt(movie)
            if payload.trakt_id:
                watched_movies[payload.trakt_id] = movie
                plays[payload.trakt_id] = int(entry.get("plays") or 1)

        library: dict[str, MoviePayload] = {}
        for movie in self._movies_from(collection):
            payload = MoviePayload.from_trakt(movie)
            if not payload.trakt_id:
                continue
            library[payload.trakt_id] = MoviePayload.from_trakt(
                movie,
                in_collection=True,
                watched=payload.trakt_id in watched_movies,
                plays=plays.get(payload.trakt_id, 0),
                user_rating=rated.get(payload.trakt_id, 0),
            )
        for trakt_id, movie in watched_movies.items():
            if trakt_id in library:
                continue
            library[trakt_id] = MoviePayload.from_trakt(
                movie,
                in_collection=False,
                watched=True,
                plays=plays[trakt_id],
                user_rating=rated.get(trakt_id, 0),
            )
        return list(library.values())

    async def fetch_watchlist(
        self, username: str, *, access_token: str | None = None
    ) -> list[MoviePayload]:
        token = self._require_token(access_token)
        data = await self._request(
            "GET",
            f"/users/{username}/watchlist/movies",
            params={"extended": "full"},
            access_token=token,
        )
        return [
            MoviePayload.from_trakt(movie, in_watchlist=True)
            for movie in self._movies_from(data)
        ]

    async def fetch_trending(self, *, limit: int = 100) -> list[MoviePayload]:
        data = await self._request(
            "GET",
            "/movies/trending",
            params={"extended": "full", "limit": max(1, min(limit, 100))},
        )
        return [MoviePayload.from_trakt(movie) for movie in self._movies_from(data)]

    async def fetch_recommendations(
        self, *, access_token: str | None = None, limit: int = 50
    ) -> list[MoviePayload]:
        """Fetch Trakt's personalized recommendations for the authenticated user."""

        token = self._require_token(access_token)
        data = await self._request(
            "GET",
            "/recommendations/movies",
            params={"extended": "full", "limit": max(1, min(limit, 100))},
            access_token=token,
        )
        return [
            MoviePayload.from_trakt(movie) for movie in self._movies_from(data, key=None)
        ]

    async def fetch_movie_detail(
        self, movie_id: str, *, access_token: str | None = None
    ) -> MoviePayload:
        data = await self._request(
            "GET",
            f"/movies/{movie_id}",
            params={"extended": "full"},
            access_token=access_token,
        )
        if not isinstance(data, dict):
            raise ProviderError(PROVIDER, NetworkError.UNKNOWN, "unexpected detail payload")
        return MoviePayload.from_trakt(data, full=True)

    async def lookup_tmdb_id(
        self, tmdb_id: int, *, access_token: str | None = None
    ) -> MoviePayload:
        """Resolve a TMDB id to a full Trakt movie record."""

        data = await self._request(
            "GET",
            f"/search/tmdb/{tmdb_id}",
            params={"type": "movie", "extended": "full"},
            access_token=access_token,
        )
        movies = self._movies_from(data)
        if not movies:
            raise ProviderError(PROVIDER, NetworkError.NOT_FOUND, f"tmdb:{tmdb_id}")
        return MoviePayload.from_trakt(movies[0], full=True)

    async def fetch_related(self, movie_id: str, *, limit: int = 20) -> list[MoviePayload]:
        """Fetch titles related to a specific Trakt item (no auth required)."""

        data = await self._request(
            "GET",
            f"/movies/{movie_id}/related",
            params={"extended": "full", "limit": max(1, min(limit, 100))},
        )
        return [
            MoviePayload.from_trakt(movie) for movie in self._movies_from(data, key=None)
        ]

    async def _sync(
        self, path: str, movies: list[dict[str, Any]], *, access_token: str | None
    ) -> dict[str, Any]:
        token = self._require_token(access_token)
        data = await self._request("POST", path, json={"movies": movies}, access_token=token)
        if isinstance(data, dict):
            missing = (data.get("not_found") or {}).get("movies") or []
            if missing:
                logger.info("Trakt could not match %s movie(s) for %s", len(missing), path)
            return data
        return {}

    async def add_to_collection(
        self, ids: Iterable[str], *, access_token: str | None = None
    ) -> dict[str, Any]:
        return await self._sync(
            "/sync/collection", [{"ids": movie_ids(i)} for i in ids], access_token=access_token
        )

    async def remove_from_collection(
        self, ids: Iterable[str], *, access_token: str | None = None
    ) -> dict[str, Any]:
        return await self._sync(
            "/sync/collection/remove",
            [{"ids": movie_ids(i)} for i in ids],
            access_token=access_token,
        )

    async def add_to_watchlist(
        self, ids: Iterable[str], *, access_token: str | None = None
    ) -> dict[str, Any]:
        return await self._sync(
            "/sync/watchlist", [{"ids": movie_ids(i)} for i in ids], access_token=access_token
        )

    async def remove_from_watchlist(
        self, ids: Iterable[str], *, access_token: str | None = None
    ) -> dict[str, Any]:
        return await self._sync(
            "/sync/watchlist/remove",
            [{"ids": movie_ids(i)} for i in ids],
            access_token=access_token,
        )

    async def mark_seen(
        self, ids: Iterable[str], *, access_token: str | None = None
    ) -> dict[str, Any]:
        return await self._sync(
            "/sync/history", [{"ids": movie_ids(i)} for i in ids], access_token=access_token
        )

    async def mark_unseen(
        self, ids: Iterable[str], *, access_token: str | None = None
    ) -> dict[str, Any]:
        return await self._sync(
            "/sync/history/remove",
            [{"ids": movie_ids(i)} for i in ids],
            access_token=access_token,
        )

    async def submit_rating(
        self, movie_id: str, rating: int, *, access_token: str | None = None
    ) -> dict[str, Any]:
        """Rate a movie from 1 to 10; a rating of 0 removes the existing rating."""

        if not 0 <= rating <= 10:
            raise ValueError("rating must be between 0 and 10")
        if rating == 0:
            return await self._sync(
                "/sync/ratings/remove", [{"ids": movie_ids(movie_id)}], access_token=access_token
            )
        return await self._sync(
            "/sync/ratings",
            [{"rating": rating, "ids": movie_ids(movie_id)}],
            access_token=access_token,
        )

    async def checkin(
        self, movie_id: str, message: str | None = None, *, access_token: str | None = None
    ) -> dict[str, Any]:
        token = self._require_token(access_token)
        body: dict[str, Any] = {"movie": {"ids": movie_ids(movie_id)}}
        if message:
            body["message"] = message
        data = await self._request("POST", "/checkin", json=body, access_token=token)
        return data if isinstance(data, dict) else {}
