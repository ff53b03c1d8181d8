"""Utilities for resolving metadata from The Movie Database (TMDB)."""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import Any

import httpx

from ..config import Settings
from ..errors import NetworkError, ProviderError
from ..models import CastMember, MoviePayload, TmdbConfiguration, Trailer

logger = logging.getLogger(__name__)

PROVIDER = "tmdb"


@dataclass(slots=True)
class TMDBPage:
    """One page of a TMDB listing."""

    items: list[MoviePayload]
    page: int
    total_pages: int


class TMDBClient:
    """Client for TMDB's public movie listings and detail endpoints."""

    def __init__(self, settings: Settings, http_client: httpx.AsyncClient):
        if not settings.tmdb_api_key:
            raise ValueError("TMDB API key is required when initialising TMDBClient")
        self._settings = settings
        self._client = http_client
        self._max_retries = settings.provider_max_retries

    async def _get(self, endpoint: str, **params: Any) -> dict[str, Any]:
        params = {"api_key": self._settings.tmdb_api_key, **params}
        attempt = 0
        while True:
            try:
                response = await self._client.get(endpoint, params=params)
            except httpx.HTTPError as exc:
                attempt += 1
                if attempt <= self._max_retries:
                    backoff = min(2 ** (attempt - 1), 5) + (0.1 * attempt)
                    logger.info(
                        "Transient error talking to TMDB (%s). Retrying %s in %.1fs",
                        exc.__class__.__name__,
                        endpoint,
                        backoff,
                    )
                    await asyncio.sleep(backoff)
                    continue
                logger.warning("TMDB request %s failed: %s", endpoint, exc)
                raise ProviderError.from_exception(PROVIDER, exc) from exc
            if 500 <= response.status_code < 600 and attempt < self._max_retries:
                attempt += 1
                backoff = min(2 ** (attempt - 1), 5) + (0.1 * attempt)
                logger.info(
                    "TMDB %s for %s. Retrying in %.1fs", response.status_code, endpoint, backoff
                )
                await asyncio.sleep(backoff)
                continue
            break

        if response.status_code >= 400:
            logger.warning(
                "TMDB request %s failed with %s: %s",
                endpoint,
                response.status_code,
                response.text,
            )
            raise ProviderError.from_status(PROVIDER, response.status_code, response.text)
        try:
            data = response.json()
        except ValueError as exc:
            raise ProviderError(PROVIDER, NetworkError.UNKNOWN, "non-JSON response") from exc
        if not isinstance(data, dict):
            raise ProviderError(PROVIDER, NetworkError.UNKNOWN, "unexpected payload")
        return data

    async def _listing(self, endpoint: str, **params: Any) -> TMDBPage:
        data = await self._get(endpoint, **params)
        items = [
            MoviePayload.from_tmdb(entry)
            for entry in data.get("results") or []
            if isinstance(entry, dict) and entry.get("id") is not None
        ]
        page = int(data.get("page") or params.get("page") or 1)
        total_pages = int(data.get("total_pages") or page)
        return TMDBPage(items=items, page=page, total_pages=total_pages)

    async def fetch_popular(self, page: int = 1) -> TMDBPage:
        return await self._listing("/movie/popular", page=page)

    async def fetch_upcoming(self, page: int = 1) -> TMDBPage:
        return await self._listing("/movie/upcoming", page=page)

    async def fetch_now_playing(self, page: int = 1) -> TMDBPage:
        return await self._listing("/movie/now_playing", page=page)

    async def search(self, query: str, page: int = 1) -> TMDBPage:
        return await self._listing(
            "/search/movie", query=query, page=page, include_adult="false"
        )

    async def fetch_movie_detail(self, tmdb_id: int) -> MoviePayload:
        data = await self._get(f"/movie/{tmdb_id}")
        return MoviePayload.from_tmdb(data, full=True)

    async def fetch_related(self, tmdb_id: int) -> list[MoviePayload]:
        page = await self._listing(f"/movie/{tmdb_id}/similar", page=1)
        return page.items

    async def fetch_cast(self, tmdb_id: int) -> list[CastMember]:
        data = await self._get(f"/movie/{tmdb_id}/credits")
        cast = [
            member
            for member in (
                CastMember.from_tmdb(entry)
                for entry in data.get("cast") or []
                if isinstance(entry, dict)
            )
            if member is not None
        ]
        return sorted(cast, key=lambda member: member.order)

    async def fetch_trailers(self, tmdb_id: int) -> list[Trailer]:
        data = await self._get(f"/movie/{tmdb_id}/videos")
        trailers: list[Trailer] = []
        for entry in data.get("results") or []:
            if not isinstance(entry, dict) or entry.get("type") != "Trailer":
                continue
            key = entry.get("key")
            if not isinstance(key, str):
                continue
            trailers.append(
                Trailer(
                    key=key,
                    name=str(entry.get("name") or "Trailer"),
                    site=str(entry.get("site") or "YouTube"),
                    size=entry.get("size") if isinstance(entry.get("size"), int) else None,
                )
            )
        return trailers

    async def fetch_certification(self, tmdb_id: int, *, country: str = "US") -> str | None:
        """Return the theatrical certification for ``country``, if TMDB has one."""

        data = await self._get(f"/movie/{tmdb_id}/release_dates")
        for entry in data.get("results") or []:
            if not isinstance(entry, dict) or entry.get("iso_3166_1") != country:
                continue
            for release in entry.get("release_dates") or []:
                certification = (release or {}).get("certification")
                if isinstance(certification, str) and certification.strip():
                    return certification.strip()
        return None

    async def fetch_configuration(self) -> TmdbConfiguration:
        data = await self._get("/configuration")
        return TmdbConfiguration.from_tmdb(data)
