"""SQLAlchemy ORM models backing the local movie cache."""

from __future__ import annotations

from datetime import datetime

from sqlalchemy import Boolean, DateTime, Integer, JSON, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from .database import Base


class CachedMovie(Base):
    """A movie that belongs to the cached library and/or watchlist."""

    __tablename__ = "cached_movies"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    trakt_id: Mapped[str | None] = mapped_column(String(64), nullable=True, index=True)
    tmdb_id: Mapped[int | None] = mapped_column(Integer, nullable=True, index=True)
    title: Mapped[str | None] = mapped_column(String(255), nullable=True)
    overview: Mapped[str | None] = mapped_column(Text, nullable=True)
    tagline: Mapped[str | None] = mapped_column(String(255), nullable=True)
    year: Mapped[int | None] = mapped_column(Integer, nullable=True)
    released: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    runtime: Mapped[int | None] = mapped_column(Integer, nullable=True)
    genres: Mapped[list[str] | None] = mapped_column(JSON, nullable=True)
    certification: Mapped[str | None] = mapped_column(String(32), nullable=True)
    poster_path: Mapped[str | None] = mapped_column(String(255), nullable=True)
    backdrop_path: Mapped[str | None] = mapped_column(String(255), nullable=True)
    rating_percent: Mapped[int] = mapped_column(Integer, default=0)
    user_rating: Mapped[int] = mapped_column(Integer, default=0)
    watched: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    in_collection: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    in_watchlist: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    plays: Mapped[int] = mapped_column(Integer, default=0)
    in_library_list: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    in_watchlist_list: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime, default=datetime.utcnow, onupdate=datetime.utcnow
    )
