"""HTTP surface tests using stub providers behind the real controller."""

from __future__ import annotations

import pytest
from fastapi import FastAPI
from fastapi.testclient import TestClient

from reelsync.main import create_app, register_routes
from reelsync.services.tmdb import TMDBPage

from conftest import tmdb_payload, trakt_payload


@pytest.fixture
def api(make_runtime):
    def factory(**options):
        runtime = make_runtime(**options)
        app = FastAPI()
        register_routes(app)
        app.state.controller = runtime.controller
        app.state.executor = runtime.executor
        runtime.controller.start()
        return app, runtime

    return factory


def test_healthcheck(api) -> None:
    app, _ = api()
    with TestClient(app) as client:
        response = client.get("/healthz")

    assert response.status_code == 200
    assert response.json() == {"status": "ok"}


def test_create_app_exposes_routes() -> None:
    paths = {route.path for route in create_app().routes}
    assert "/views/{kind}" in paths
    assert "/session" in paths


def test_trending_view_is_fetched_and_serialised(api) -> None:
    app, runtime = api()
    runtime.trakt.trending = [trakt_payload("tt0133093", 603, title="The Matrix", poster_path="/m.jpg")]

    with TestClient(app) as client:
        response = client.get("/views/trending", params={"wait": "true"})

    assert response.status_code == 200
    payload = response.json()
    assert payload["kind"] == "list"
    assert payload["queryType"] == "trending"
    assert payload["items"][0]["title"] == "The Matrix"
    assert payload["items"][0]["poster"].endswith("/w500/m.jpg")
    assert payload["batchOperations"] == []


def test_login_required_views_report_unauthorized(api) -> None:
    app, runtime = api()
    with TestClient(app) as client:
        response = client.get("/views/watchlist")

    assert response.json()["error"] == "unauthorized"
    assert runtime.trakt.count("fetch_watchlist") == 0


def test_session_login_populates_library(api) -> None:
    app, runtime = api()
    runtime.trakt.library = [trakt_payload("tt1", title="Alpha", in_collection=True)]

    with TestClient(app) as client:
        client.get("/views/library")
        login = client.put("/session", json={"username": "jane", "access_token": "token"})
        view = client.get("/views/library", params={"wait": "true"})
        logout = client.delete("/session")

    assert login.json() == {"loggedIn": True, "username": "jane"}
    assert [item["traktId"] for item in view.json()["items"]] == ["tt1"]
    assert logout.json()["loggedIn"] is False


def test_unknown_views_and_missing_parameters(api) -> None:
    app, _ = api()
    with TestClient(app) as client:
        unknown = client.get("/views/nowhere")
        missing = client.get("/views/detail")

    assert unknown.status_code == 404
    assert missing.status_code == 400


def test_filters_round_trip(api) -> None:
    app, _ = api()
    with TestClient(app) as client:
        added = client.post("/filters/seen")
        swapped = client.post("/filters/unseen")
        unknown = client.post("/filters/bogus")
        cleared = client.delete("/filters")

    assert added.json() == {"filters": ["seen"]}
    assert swapped.json() == {"filters": ["unseen"]}
    assert unknown.status_code == 404
    assert cleared.json() == {"filters": []}


def test_toggle_while_logged_out_reports_error_on_view(api) -> None:
    app, runtime = api()
    runtime.state.put_movie(trakt_payload("tt1"))

    with TestClient(app) as client:
        response = client.post("/views/trending/movies/tt1/seen")
        missing = client.post("/views/trending/movies/tt404/seen")

    assert response.json()["issued"] is False
    assert response.json()["view"]["error"] == "unauthorized"
    assert missing.status_code == 404


def test_batch_and_rating_requests(api) -> None:
    app, runtime = api(logged_in=True)
    runtime.state.put_movie(trakt_payload("tt1"))
    runtime.state.put_movie(trakt_payload("tt2", in_collection=True))
    runtime.trakt.details["tt1"] = trakt_payload("tt1", full=True, title="Alpha")

    with TestClient(app) as client:
        batch = client.post(
            "/views/library/batch",
            params={"wait": "true"},
            json={"operation": "collection", "movie_ids": ["tt1", "tt2"]},
        )
        invalid = client.post("/views/detail/movies/tt1/rating?parameter=tt1", json={"rating": 11})
        rated = client.post(
            "/views/detail/movies/tt1/rating",
            params={"parameter": "tt1", "wait": "true"},
            json={"rating": 8},
        )

    assert batch.json()["issued"] is True
    assert runtime.trakt.ids_for("add_to_collection") == [["tt1"]]
    assert invalid.status_code == 422
    assert rated.json()["issued"] is True
    assert rated.json()["view"]["movie"]["userRating"] == 8


def test_search_and_next_page(api) -> None:
    app, runtime = api()
    runtime.tmdb.pages["search:matrix"] = {
        1: TMDBPage([tmdb_payload(603, title="The Matrix")], page=1, total_pages=2),
        2: TMDBPage([tmdb_payload(604, title="The Matrix Reloaded")], page=2, total_pages=2),
    }

    with TestClient(app) as client:
        first = client.post("/views/search/search", params={"wait": "true"}, json={"query": "matrix"})
        more = client.post("/views/search/next-page", params={"wait": "true"})
        cleared = client.delete("/views/search/search")

    assert first.json()["query"] == "matrix"
    assert more.json()["requested"] is True
    assert [item["tmdbId"] for item in more.json()["view"]["items"]] == [603, 604]
    assert cleared.json()["items"] is None
