"""Persistent cache of the user's library and watchlist."""

from __future__ import annotations

import logging
from datetime import timezone
from typing import Sequence

from sqlalchemy import delete, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from .db_models import CachedMovie
from .models import CATALOG_FIELDS, USER_FIELDS, Movie, MoviePayload, Provider

logger = logging.getLogger(__name__)

_LIST_COLUMNS = ("in_library_list", "in_watchlist_list")


class LocalMovieCache:
    """Reads and writes cached movie lists through an async session factory."""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]):
        self._session_factory = session_factory

    async def load_library(self) -> list[MoviePayload]:
        return await self._load(CachedMovie.in_library_list)

    async def load_watchlist(self) -> list[MoviePayload]:
        return await self._load(CachedMovie.in_watchlist_list)

    async def save_library(self, movies: Sequence[Movie]) -> None:
        await self._replace("in_library_list", movies)

    async def save_watchlist(self, movies: Sequence[Movie]) -> None:
        await self._replace("in_watchlist_list", movies)

    async def clear(self) -> None:
        async with self._session_factory() as session:
            await session.execute(delete(CachedMovie))
            await session.commit()

    async def _load(self, column) -> list[MoviePayload]:
        try:
            async with self._session_factory() as session:
                result = await session.execute(
                    select(CachedMovie).where(column.is_(True)).order_by(CachedMovie.id)
                )
                rows = result.scalars().all()
        except SQLAlchemyError as exc:
            logger.warning("Could not read cached movies: %s", exc)
            return []
        return [self._row_to_payload(row) for row in rows]

    async def _replace(self, list_column: str, movies: Sequence[Movie]) -> None:
        """Make ``movies`` the exact contents of one cached list."""

        async with self._session_factory() as session:
            result = await session.execute(select(CachedMovie))
            rows = list(result.scalars().all())
            by_trakt = {row.trakt_id: row for row in rows if row.trakt_id}
            by_tmdb = {row.tmdb_id: row for row in rows if row.tmdb_id is not None}

            kept: set[int] = set()
            for movie in movies:
                row = (by_trakt.get(movie.trakt_id) if movie.trakt_id else None) or (
                    by_tmdb.get(movie.tmdb_id) if movie.tmdb_id is not None else None
                )
                if row is None:
                    if not (movie.trakt_id or movie.tmdb_id is not None):
                        continue
                    row = CachedMovie()
                    session.add(row)
                    rows.append(row)
                self._update_row(row, movie)
                setattr(row, list_column, True)
                kept.add(id(row))

            for row in rows:
                if id(row) not in kept:
                    setattr(row, list_column, False)
                if not any(getattr(row, column) for column in _LIST_COLUMNS):
                    await session.delete(row)
            await session.commit()
        logger.debug("Cached %s movie(s) in %s", len(kept), list_column)

    @staticmethod
    def _update_row(row: CachedMovie, movie: Movie) -> None:
        row.trakt_id = movie.trakt_id
        row.tmdb_id = movie.tmdb_id
        for name in (*CATALOG_FIELDS, *USER_FIELDS):
            value = getattr(movie, name)
            setattr(row, name, list(value) if isinstance(value, list) else value)

    @staticmethod
    def _row_to_payload(row: CachedMovie) -> MoviePayload:
        released = row.released
        if released is not None and released.tzinfo is None:
            released = released.replace(tzinfo=timezone.utc)
        return MoviePayload(
            source=Provider.TRAKT,
            trakt_id=row.trakt_id,
            tmdb_id=row.tmdb_id,
            title=row.title,
            overview=row.overview,
            tagline=row.tagline,
            year=row.year,
            released=released,
            runtime=row.runtime,
            genres=row.genres or None,
            certification=row.certification,
            poster_path=row.poster_path,
            backdrop_path=row.backdrop_path,
            rating_percent=row.rating_percent,
            user_rating=row.user_rating,
            watched=row.watched,
            in_collection=row.in_collection,
            in_watchlist=row.in_watchlist,
            plays=row.plays,
        )
