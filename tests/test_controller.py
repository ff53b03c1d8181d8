"""End-to-end behaviour of the controller with in-memory surfaces."""

from __future__ import annotations

from datetime import timedelta

import pytest

from reelsync.errors import NetworkError, ProviderError
from reelsync.models import Account
from reelsync.projection import Filter
from reelsync.services.tmdb import TMDBPage
from reelsync.surfaces import (
    CastSnapshot,
    DetailSnapshot,
    DiscoverSnapshot,
    ListSnapshot,
    RateSnapshot,
    SearchSnapshot,
)
from reelsync.views import DiscoverTab, MovieOperation, QueryType

from conftest import NOW, MemoryCache, cast_member, tmdb_payload, trakt_payload


def _titles(view) -> list:
    return [item.header if item.is_header else item.item.trakt_id for item in view.items]


@pytest.mark.anyio("asyncio")
async def test_watchlist_requires_login_and_never_fetches_when_logged_out(make_runtime) -> None:
    runtime = make_runtime(cache=MemoryCache())
    runtime.controller.start()

    view = ListSnapshot(QueryType.WATCHLIST)
    runtime.controller.attach(view)
    await runtime.executor.drain()

    assert view.error is NetworkError.UNAUTHORIZED
    assert view.items is None
    assert runtime.trakt.count("fetch_watchlist") == 0


@pytest.mark.anyio("asyncio")
async def test_watchlist_is_fetched_once_and_rendered_in_sections(make_runtime) -> None:
    runtime = make_runtime(logged_in=True, cache=MemoryCache())
    runtime.trakt.watchlist = [
        trakt_payload("released", released=NOW - timedelta(days=10), in_watchlist=True),
        trakt_payload("upcoming", released=NOW + timedelta(days=90), in_watchlist=True),
        trakt_payload("seen", released=NOW - timedelta(days=100), watched=True, in_watchlist=True),
        trakt_payload("soon", released=NOW + timedelta(days=10), in_watchlist=True),
    ]
    runtime.controller.start()

    view = ListSnapshot(QueryType.WATCHLIST)
    runtime.controller.attach(view)
    await runtime.executor.drain()

    assert runtime.trakt.count("fetch_watchlist") == 1
    assert _titles(view) == [
        Filter.UPCOMING,
        "upcoming",
        Filter.SOON,
        "soon",
        Filter.RELEASED,
        "released",
        Filter.SEEN,
        "seen",
    ]
    assert view.batch_operations == []
    assert not view.loading
    assert runtime.cache.saved_watchlist == [["released", "upcoming", "seen", "soon"]]


def test_library_view_applies_active_filters(make_runtime) -> None:
    runtime = make_runtime(logged_in=True)
    seen = runtime.state.put_movie(trakt_payload("seen", watched=True))
    unseen = runtime.state.put_movie(trakt_payload("unseen"))
    runtime.state.set_library([seen, unseen])
    runtime.controller.start()

    view = ListSnapshot(QueryType.LIBRARY)
    callbacks = runtime.controller.attach(view)
    assert _titles(view) == ["seen", "unseen"]
    assert view.filters_visible
    assert view.batch_operations == list(
        (MovieOperation.MARK_SEEN, MovieOperation.ADD_TO_COLLECTION, MovieOperation.ADD_TO_WATCHLIST)
    )

    callbacks.add_filter(Filter.UNSEEN)
    assert _titles(view) == ["unseen"]
    assert view.active_filters == [Filter.UNSEEN]

    callbacks.clear_filters()
    assert _titles(view) == ["seen", "unseen"]


@pytest.mark.anyio("asyncio")
async def test_logging_in_repopulates_and_prefetches_library(make_runtime) -> None:
    runtime = make_runtime()
    runtime.trakt.library = [trakt_payload("tt1", in_collection=True)]
    runtime.controller.start()

    view = ListSnapshot(QueryType.LIBRARY)
    runtime.controller.attach(view)
    assert view.error is NetworkError.UNAUTHORIZED

    runtime.state.set_current_account(Account("jane", "token-1"))
    await runtime.executor.drain()

    assert runtime.trakt.count("fetch_library") == 1
    assert _titles(view) == ["tt1"]
    assert view.error is None


@pytest.mark.anyio("asyncio")
async def test_detail_view_resolves_unknown_movie_and_checks_tmdb(make_runtime) -> None:
    runtime = make_runtime(logged_in=True)
    runtime.trakt.details["tt1"] = trakt_payload("tt1", 10, full=True, title="Matrix")
    runtime.tmdb.certifications[10] = "R"
    runtime.controller.start()

    view = DetailSnapshot(QueryType.DETAIL, "tt1")
    runtime.controller.attach(view)
    await runtime.executor.drain()

    movie = runtime.state.get_movie("tt1")
    assert view.movie is movie
    assert view.trakt_actions_enabled
    assert movie.certification == "R"
    assert runtime.trakt.count("fetch_movie_detail") == 1
    assert runtime.tmdb.count("fetch_movie_detail") == 1


@pytest.mark.anyio("asyncio")
async def test_errors_only_reach_the_requesting_view(make_runtime) -> None:
    runtime = make_runtime()
    runtime.state.set_trending([runtime.state.put_movie(trakt_payload("tt1"))])
    runtime.controller.start()
    first, second = ListSnapshot(QueryType.TRENDING), ListSnapshot(QueryType.TRENDING)
    callbacks = runtime.controller.attach(first)
    runtime.controller.attach(second)

    runtime.trakt.errors["fetch_trending"] = ProviderError("trakt", NetworkError.SERVER_ERROR)
    callbacks.refresh()
    await runtime.executor.drain()

    assert first.error is NetworkError.SERVER_ERROR
    assert second.error is None


@pytest.mark.anyio("asyncio")
async def test_flag_change_from_recommended_view_refetches_recommendations(make_runtime) -> None:
    runtime = make_runtime(logged_in=True)
    movie = runtime.state.put_movie(trakt_payload("tt1"))
    runtime.state.set_recommended([movie])
    runtime.controller.start()
    view = ListSnapshot(QueryType.RECOMMENDED)
    callbacks = runtime.controller.attach(view)

    assert callbacks.toggle_in_watchlist(movie)
    await runtime.executor.drain()

    assert movie.in_watchlist
    assert runtime.trakt.count("fetch_recommendations") == 1


@pytest.mark.anyio("asyncio")
async def test_views_render_once_configuration_arrives(make_runtime) -> None:
    runtime = make_runtime(configured=False, with_tmdb=False)
    runtime.state.set_trending([runtime.state.put_movie(trakt_payload("tt1"))])
    view = ListSnapshot(QueryType.TRENDING)
    runtime.controller.attach(view)
    assert view.items is None

    runtime.controller.start()

    assert _titles(view) == ["tt1"]


@pytest.mark.anyio("asyncio")
async def test_related_and_cast_views_carry_headers(make_runtime) -> None:
    runtime = make_runtime()
    runtime.state.put_movie(tmdb_payload(10, trakt_id="tt1"))
    runtime.tmdb.related[10] = [tmdb_payload(11), tmdb_payload(12)]
    runtime.tmdb.cast[10] = [cast_member(1, "Keanu Reeves")]
    runtime.controller.start()

    related = ListSnapshot(QueryType.RELATED, "tt1")
    cast = CastSnapshot(QueryType.CAST, "tt1")
    runtime.controller.attach(related)
    runtime.controller.attach(cast)
    await runtime.executor.drain()

    assert related.items[0].header is QueryType.RELATED
    assert [item.item.tmdb_id for item in related.items[1:]] == [11, 12]
    assert cast.items[0].header is QueryType.CAST
    assert cast.items[1].item.person.name == "Keanu Reeves"


@pytest.mark.anyio("asyncio")
async def test_search_view_tracks_query_and_pages(make_runtime) -> None:
    runtime = make_runtime()
    runtime.tmdb.pages["search:matrix"] = {
        1: TMDBPage([tmdb_payload(1)], page=1, total_pages=2),
        2: TMDBPage([tmdb_payload(2)], page=2, total_pages=2),
    }
    runtime.controller.start()
    view = SearchSnapshot()
    callbacks = runtime.controller.attach(view)

    callbacks.search("matrix")
    await runtime.executor.drain()
    assert view.query == "matrix"

    assert callbacks.scrolled_to_bottom()
    await runtime.executor.drain()
    assert [item.item.tmdb_id for item in view.items] == [1, 2]
    assert not callbacks.scrolled_to_bottom()

    callbacks.clear_search()
    assert view.query is None and view.items is None


def test_discover_and_rate_views(make_runtime) -> None:
    runtime = make_runtime(logged_in=True)
    runtime.state.put_movie(trakt_payload("tt1", watched=True))

    discover = DiscoverSnapshot()
    rate = RateSnapshot(request_parameter="tt1")
    runtime.controller.attach(discover)
    runtime.controller.attach(rate)

    assert discover.tabs[-1] is DiscoverTab.RECOMMENDED
    assert rate.movie is runtime.state.get_movie("tt1")
    assert not rate.mark_watched_visible


def test_attach_rejects_objects_that_are_not_views(make_runtime) -> None:
    runtime = make_runtime()
    with pytest.raises(TypeError):
        runtime.controller.attach(object())  # type: ignore[arg-type]


def test_detached_views_are_no_longer_rendered(make_runtime) -> None:
    runtime = make_runtime(logged_in=True)
    runtime.state.set_library([])
    view = ListSnapshot(QueryType.LIBRARY)
    runtime.controller.attach(view)
    runtime.controller.start()
    runtime.controller.detach(view)

    runtime.state.set_library([runtime.state.put_movie(trakt_payload("tt1"))])

    assert view.items == []
    assert runtime.controller.find_view_id(QueryType.LIBRARY) == 0
