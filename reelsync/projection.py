"""Filtering, sectioning and pagination of movie lists into view projections."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import Callable, Collection, Sequence

from .models import ListItem, Movie, PaginatedResult


class Filter(str, Enum):
    """Named predicates that can be applied to, or used to section, a movie list."""

    COLLECTION = "collection"
    SEEN = "seen"
    UNSEEN = "unseen"
    NOT_RELEASED = "not_released"
    RELEASED = "released"
    UPCOMING = "upcoming"
    SOON = "soon"
    HIGHLY_RATED = "highly_rated"

    def matches(self, movie: Movie, context: "FilterContext") -> bool:
        return _PREDICATES[self](movie, context)

    @property
    def mutually_exclusive(self) -> frozenset["Filter"]:
        return _MUTUALLY_EXCLUSIVE.get(self, frozenset())

    def sort(self, movies: list[Movie]) -> list[Movie]:
        """Order a claimed section. Every section sorts oldest release first."""

        return sorted(movies, key=Movie.release_sort_key)


@dataclass(frozen=True)
class FilterContext:
    """Clock and thresholds the release and rating predicates are evaluated against."""

    now: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    soon_threshold: timedelta = timedelta(days=30)
    highly_rated_threshold: int = 70

    @classmethod
    def from_settings(cls, settings, now: datetime | None = None) -> "FilterContext":
        return cls(
            now=now or datetime.now(timezone.utc),
            soon_threshold=settings.soon_threshold,
            highly_rated_threshold=settings.highly_rated_threshold,
        )


def _is_in_future(movie: Movie, context: FilterContext) -> bool:
    return movie.released is not None and movie.released > context.now


def _is_upcoming(movie: Movie, context: FilterContext) -> bool:
    return (
        movie.released is not None
        and movie.released - context.now > context.soon_threshold
    )


def _is_soon(movie: Movie, context: FilterContext) -> bool:
    return (
        _is_in_future(movie, context)
        and movie.released - context.now <= context.soon_threshold  # type: ignore[operator]
    )


def _is_highly_rated(movie: Movie, context: FilterContext) -> bool:
    score = max(movie.rating_percent, movie.user_rating * 10)
    return score >= context.highly_rated_threshold


_PREDICATES: dict[Filter, Callable[[Movie, FilterContext], bool]] = {
    Filter.COLLECTION: lambda movie, _: movie.in_collection,
    Filter.SEEN: lambda movie, _: movie.watched,
    Filter.UNSEEN: lambda movie, _: not movie.watched,
    Filter.NOT_RELEASED: _is_in_future,
    # Unknown release dates count as released.
    Filter.RELEASED: lambda movie, context: not _is_in_future(movie, context),
    Filter.UPCOMING: _is_upcoming,
    Filter.SOON: _is_soon,
    Filter.HIGHLY_RATED: _is_highly_rated,
}

_MUTUALLY_EXCLUSIVE: dict[Filter, frozenset[Filter]] = {
    Filter.SEEN: frozenset({Filter.UNSEEN}),
    Filter.UNSEEN: frozenset({Filter.SEEN}),
}


def filter_movies(
    movies: Sequence[Movie], filters: Collection[Filter], context: FilterContext
) -> list[Movie]:
    """Keep the movies matching every filter, in their original order."""

    return [
        movie
        for movie in movies
        if movie is not None and all(f.matches(movie, context) for f in filters)
    ]


def build_list_items(items: Sequence, header: Enum | None = None) -> list[ListItem]:
    result: list[ListItem] = []
    if header is not None:
        result.append(ListItem(header=header))
    result.extend(ListItem(item=item) for item in items)
    return result


def build_sectioned_list_items(
    movies: Sequence[Movie],
    sections: Sequence[Filter],
    context: FilterContext,
    processing_order: Sequence[Filter] | None = None,
) -> list[ListItem]:
    """Split movies into titled sections.

    Filters claim movies in ``processing_order``; each movie lands in the first
    section that claims it and unclaimed movies are dropped. Sections are
    emitted in ``sections`` order, skipping empty ones.
    """

    if processing_order is None:
        processing_order = sections
    elif len(processing_order) != len(sections):
        raise ValueError("sections and processing_order must be the same size")

    pool = [movie for movie in movies if movie is not None]
    claimed: dict[Filter, list[Movie]] = {}
    for section in processing_order:
        matched = [movie for movie in pool if section.matches(movie, context)]
        if not matched:
            continue
        pool = [movie for movie in pool if movie not in matched]
        claimed[section] = section.sort(matched)

    result: list[ListItem] = []
    for section in sections:
        if section in claimed:
            result.extend(build_list_items(claimed[section], header=section))
    return result


def derive_projection(
    movies: Sequence[Movie] | None,
    filters: Collection[Filter],
    context: FilterContext,
    *,
    header: Enum | None = None,
    sections: Sequence[Filter] | None = None,
    processing_order: Sequence[Filter] | None = None,
) -> list[ListItem] | None:
    """Derive the ordered list a view should display.

    ``None`` is passed through so views can tell "not fetched yet" apart from
    an empty result.
    """

    if movies is None:
        return None
    if filters and movies:
        movies = filter_movies(movies, filters, context)
    if sections:
        return build_sectioned_list_items(movies, sections, context, processing_order)
    return build_list_items(movies, header=header)


def can_fetch_next_page(result: PaginatedResult | None) -> bool:
    return result is not None and result.page < result.total_pages
