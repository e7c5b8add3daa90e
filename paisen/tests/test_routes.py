"""Tests for the HTTP surface: accounts, MAL authorization, token status, sync and progress polling."""
from unittest.mock import patch
from urllib.parse import parse_qs, urlparse

import pytest
from fastapi.testclient import TestClient

from paisen.flow_store import store_flow
from paisen.main import app
from paisen.token_store import now_ms

client = TestClient(app)


@pytest.fixture(autouse=True)
def fresh_tracker():
    from paisen.sync_progress import SyncProgressTracker

    app.state.sync_progress = SyncProgressTracker()
    yield app.state.sync_progress


def _register(username="alice", password="correct-horse"):
    return client.post("/api/auth/register", json={"name": "Alice", "username": username, "password": password})


def test_health():
    r = client.get("/health")
    assert r.status_code == 200
    assert r.json().get("service") == "paisen"


# --- accounts ---


def test_register_and_login():
    r = _register()
    assert r.status_code == 201
    assert r.json()["data"]["username"] == "alice"

    r = client.post("/api/auth/login", json={"username": "alice", "password": "correct-horse"})
    assert r.status_code == 200
    r = client.post("/api/auth/login", json={"username": "alice", "password": "wrong-password"})
    assert r.status_code == 401


def test_register_duplicate_username():
    _register()
    r = _register()
    assert r.status_code == 400
    assert r.json()["success"] is False


def test_register_validates_username():
    r = client.post("/api/auth/register", json={"name": "A", "username": "1bad", "password": "correct-horse"})
    assert r.status_code == 422


def test_get_user_is_sanitized():
    _register()
    client.put("/api/user/update", json={"username": "alice", "accessToken": "secret-at", "refreshToken": "secret-rt"})
    r = client.get("/api/user/alice")
    assert r.status_code == 201
    body = r.json()
    assert body["userData"]["hasAccessToken"] is True
    assert "secret-at" not in r.text
    assert "secret-rt" not in r.text
    assert "password" not in r.text.lower()


def test_get_unknown_user_is_404():
    assert client.get("/api/user/nobody").status_code == 404


def test_user_update_returns_subset():
    _register()
    r = client.put("/api/user/update", json={"username": "alice", "codeChallenge": "ch", "code": "c1"})
    assert r.status_code == 201
    assert r.json()["data"] == {"name": "Alice", "username": "alice", "codeChallenge": "ch", "code": "c1"}


def test_user_update_failures():
    assert client.put("/api/user/update", json={"username": "nobody", "code": "c"}).status_code == 400
    _register()
    assert client.put("/api/user/update", json={"username": "alice", "passwordHash": "x"}).status_code == 400
    assert client.put("/api/user/update", json={"code": "c"}).status_code == 400


def test_user_update_repairs_seconds_expiry(store):
    _register()
    client.put("/api/user/update", json={"username": "alice", "accessToken": "at", "expiryTime": 1_750_000_000})
    assert store.get("alice").expiry_time == 1_750_000_000_000


# --- MAL authorization ---


def test_client_id():
    r = client.get("/api/mal/clientid")
    assert r.status_code == 201
    assert r.json()["data"]["clientId"] == "test-client"


def test_client_id_missing(monkeypatch):
    monkeypatch.delenv("MAL_CLIENT_ID")
    r = client.get("/api/mal/clientid")
    assert r.status_code == 400
    assert "Client ID" in r.json()["message"]


def test_start_authorization_stores_challenge(store):
    _register()
    r = client.post("/api/mal/authorize", json={"username": "alice", "malUsername": "alice_mal"})
    assert r.status_code == 201
    data = r.json()["data"]
    params = parse_qs(urlparse(data["url"]).query)
    assert params["response_type"] == ["code"]
    assert params["client_id"] == ["test-client"]
    assert params["code_challenge_method"] == ["plain"]
    assert params["state"] == [data["state"]]
    assert params["state"] != ["alice"]
    record = store.get("alice")
    assert params["code_challenge"] == [record.code_challenge]
    assert record.mal_username == "alice_mal"


def test_start_authorization_unknown_user():
    r = client.post("/api/mal/authorize", json={"username": "nobody"})
    assert r.status_code == 404


def test_callback_exchanges_code_and_persists(store, token_response):
    _register()
    r = client.post("/api/mal/authorize", json={"username": "alice"})
    state = r.json()["data"]["state"]
    challenge = store.get("alice").code_challenge

    before = now_ms()
    with patch("paisen.mal_oauth.httpx.post", return_value=token_response(expires_in=3600)) as post:
        r = client.get("/oauth", params={"code": "auth-code", "state": state})
    assert r.status_code == 200
    assert post.call_args.kwargs["data"]["code_verifier"] == challenge
    assert post.call_args.kwargs["data"]["code"] == "auth-code"

    record = store.get("alice")
    assert record.access_token == "at"
    assert record.refresh_token == "rt"
    assert record.token_type == "Bearer"
    assert record.code == "auth-code"
    assert record.code_challenge is None
    assert record.expiry_time >= before + 3_600_000

    # state is single-use
    r = client.get("/oauth", params={"code": "auth-code", "state": state})
    assert r.status_code == 400


def test_callback_missing_state():
    r = client.get("/oauth", params={"code": "x"})
    assert r.status_code == 400
    assert "state" in r.json()["message"]


def test_callback_unknown_state_makes_no_exchange():
    with patch("paisen.mal_oauth.httpx.post") as post:
        r = client.get("/oauth", params={"state": "unknown-state", "code": "somecode"})
    assert r.status_code == 400
    post.assert_not_called()


def test_callback_error_from_provider():
    _register()
    store_flow("state-for-error", "alice")
    r = client.get("/oauth", params={"state": "state-for-error", "error": "access_denied"})
    assert r.status_code == 400
    assert "access_denied" in r.json()["message"]


def test_callback_rejected_code_persists_nothing(store, make_response):
    _register()
    state = client.post("/api/mal/authorize", json={"username": "alice"}).json()["data"]["state"]
    with patch("paisen.mal_oauth.httpx.post", return_value=make_response(400, {"error": "invalid_grant"})):
        r = client.get("/oauth", params={"code": "bad", "state": state})
    assert r.status_code == 400
    assert "Couldn't generate access token" in r.json()["message"]
    assert store.get("alice").access_token is None


# --- refresh and token status ---


def test_refresh_endpoint(store, token_response):
    _register()
    store.update("alice", access_token="old", refresh_token="rt", expiry_time=now_ms() + 1000)
    with patch("paisen.mal_oauth.httpx.post", return_value=token_response(access_token="new", refresh_token="rt2")):
        r = client.post("/api/mal/refresh", json={"username": "alice"})
    assert r.status_code == 200
    assert store.get("alice").access_token == "new"
    assert store.get("alice").refresh_token == "rt2"


def test_refresh_without_refresh_token():
    _register()
    r = client.post("/api/mal/refresh", json={"username": "alice"})
    assert r.status_code == 400
    assert "authorize" in r.json()["message"]


def test_refresh_rejected_keeps_tokens(store, make_response):
    _register()
    store.update("alice", access_token="old", refresh_token="rt", expiry_time=1)
    with patch("paisen.mal_oauth.httpx.post", return_value=make_response(400, {"error": "invalid_grant"})):
        r = client.post("/api/mal/refresh", json={"username": "alice"})
    assert r.status_code == 400
    assert store.get("alice").access_token == "old"


def test_token_status_states(store, token_response):
    _register()
    r = client.get("/api/mal/token-status/alice")
    assert r.json()["data"]["state"] == "needs_authorization"

    store.update("alice", access_token="at", refresh_token="rt", expiry_time=now_ms() + 60_000)
    r = client.get("/api/mal/token-status/alice")
    assert r.json()["data"]["state"] == "valid"

    store.update("alice", expiry_time=now_ms() - 1)
    with patch("paisen.mal_oauth.httpx.post", return_value=token_response(access_token="fresh")):
        r = client.get("/api/mal/token-status/alice")
    assert r.json()["data"]["state"] == "refreshed"
    assert store.get("alice").access_token == "fresh"


def test_token_status_unknown_user():
    assert client.get("/api/mal/token-status/nobody").status_code == 404


# --- sync and progress ---


def test_progress_unknown_session_is_404():
    r = client.get("/api/sync/progress/never-started")
    assert r.status_code == 404
    assert r.json()["success"] is False


def test_progress_reports_tracker_state(fresh_tracker):
    fresh_tracker.start("s1", 4)
    fresh_tracker.increment("s1", "A", "added")
    r = client.get("/api/sync/progress/s1")
    assert r.status_code == 200
    body = r.json()
    assert body["status"] == "running"
    assert body["percentage"] == 25
    assert body["processedItems"] == 1
    assert body["addedEntries"] == 1
    assert body["currentItem"] == "A"


def test_sync_to_db_runs_in_background(store, fresh_tracker):
    _register()
    store.update("alice", access_token="at", refresh_token="rt", expiry_time=now_ms() + 60_000)
    lists = {
        "watching": [{"node": {"id": 1, "title": "A", "num_episodes": 12, "average_episode_duration": 1440}, "list_status": {"status": "watching", "score": 8, "num_episodes_watched": 2}}],
        "completed": [{"node": {"id": 2, "title": "B"}, "list_status": {"status": "completed", "score": 6}}],
    }
    with patch("paisen.sync_api.MalApi.get_anime_list", side_effect=lambda status: lists.get(status, [])):
        r = client.post("/api/mal/sync-to-db", json={"username": "alice", "sessionId": "job-1"})
    assert r.status_code == 202
    assert r.json()["data"]["sessionId"] == "job-1"
    assert r.json()["data"]["pollIntervalMs"] == 500

    progress = client.get("/api/sync/progress/job-1").json()
    assert progress["status"] == "completed"
    assert progress["addedEntries"] == 2

    r = client.get("/api/anime/list/alice", params={"status": "watching"})
    assert r.status_code == 200
    [anime] = r.json()["data"]
    assert anime["title"] == "A"
    assert anime["user_status"] == "Currently Watching"

    stats = client.get("/api/anime/stats/alice").json()["data"]
    assert stats["totalAnime"] == 2
    assert stats["watchedSeconds"] == 2 * 1440
    assert stats["remainingSeconds"] == 10 * 1440
    assert stats["meanScore"] == 7.0


def test_sync_to_db_without_token():
    _register()
    r = client.post("/api/mal/sync-to-db", json={"username": "alice"})
    assert r.status_code == 400
    assert "authorize" in r.json()["message"]


def test_sync_to_db_rejects_unknown_status(store):
    _register()
    store.update("alice", access_token="at", expiry_time=now_ms() + 60_000)
    r = client.post("/api/mal/sync-to-db", json={"username": "alice", "statuses": ["binged"]})
    assert r.status_code == 400


def test_anime_list_unknown_user_and_status():
    assert client.get("/api/anime/list/nobody").status_code == 404
    _register()
    assert client.get("/api/anime/list/alice", params={"status": "binged"}).status_code == 400


def test_sync_to_db_html_response_ends_failed(store, make_response):
    _register()
    store.update("alice", access_token="at", refresh_token="rt", expiry_time=now_ms() + 60_000)
    maintenance = make_response(200, None, text="<html><body>Maintenance</body></html>")
    with patch("paisen.mal_api.httpx.get", return_value=maintenance):
        client.post("/api/mal/sync-to-db", json={"username": "alice", "sessionId": "job-html"})
    progress = client.get("/api/sync/progress/job-html").json()
    assert progress["status"] == "failed"


def test_user_update_wrong_types_are_400():
    _register()
    r = client.put("/api/user/update", json={"username": "alice", "accessToken": {"x": 1}})
    assert r.status_code == 400
    assert "accessToken" in r.json()["message"]
    assert client.put("/api/user/update", json={"username": "alice", "expiryTime": "soon"}).status_code == 400
    assert client.put("/api/user/update", json={"username": "alice", "name": None}).status_code == 400


# --- MAL-backed anime endpoints ---


@pytest.fixture
def authorized(store):
    _register()
    store.update("alice", access_token="at", refresh_token="rt", expiry_time=now_ms() + 60_000)


def test_search_anime(authorized, make_response):
    body = {"data": [{"node": {"id": 1, "title": "Cowboy Bebop", "num_episodes": 26}}]}
    with patch("paisen.mal_api.httpx.get", return_value=make_response(200, body)) as get:
        r = client.get("/api/anime/search", params={"username": "alice", "q": "bebop", "limit": 5})
    assert r.status_code == 200
    assert r.json()["query"] == "bebop"
    [anime] = r.json()["data"]
    assert anime["title"] == "Cowboy Bebop"
    assert anime["watchedPercentage"] == "0%"
    assert get.call_args.kwargs["params"]["q"] == "bebop"
    assert get.call_args.kwargs["headers"]["Authorization"] == "Bearer at"


def test_search_anime_validation(authorized):
    assert client.get("/api/anime/search", params={"username": "alice", "q": "ab"}).status_code == 400
    assert client.get("/api/anime/search", params={"username": "alice", "q": "bebop", "limit": 0}).status_code == 400
    assert client.get("/api/anime/search", params={"username": "nobody", "q": "bebop"}).status_code == 404


def test_search_anime_needs_authorization():
    _register()
    r = client.get("/api/anime/search", params={"username": "alice", "q": "bebop"})
    assert r.status_code == 400
    assert "authorize" in r.json()["message"]


def test_update_list_status_mirrors_local_entry(authorized, db, store, make_response):
    from paisen.models import AnimeEntry

    db.add(AnimeEntry(user_id=store.find_user("alice").id, mal_id=1, title="Cowboy Bebop", list_status="watching"))
    db.commit()
    mal_body = {"status": "completed", "score": 9, "num_episodes_watched": 26, "is_rewatching": False}
    with patch("paisen.mal_api.httpx.put", return_value=make_response(200, mal_body)) as put:
        r = client.put("/api/anime/1/status", json={"username": "alice", "status": "completed", "score": 9, "numWatchedEpisodes": 26})
    assert r.status_code == 200
    assert r.json()["data"]["scoreLabel"] == "(9) Great"
    assert put.call_args.kwargs["data"] == {"status": "completed", "score": "9", "num_watched_episodes": "26"}

    db.expire_all()
    entry = db.query(AnimeEntry).filter(AnimeEntry.mal_id == 1).one()
    assert (entry.list_status, entry.score, entry.num_episodes_watched) == ("completed", 9, 26)


def test_update_list_status_validation(authorized):
    with patch("paisen.mal_api.httpx.put") as put:
        assert client.put("/api/anime/1/status", json={"username": "alice", "status": "binged"}).status_code == 400
        assert client.put("/api/anime/1/status", json={"username": "alice", "score": 11}).status_code == 400
        assert client.put("/api/anime/1/status", json={"username": "alice"}).status_code == 400
    put.assert_not_called()


def test_update_list_status_rejected_token(authorized, make_response):
    with patch("paisen.mal_api.httpx.put", return_value=make_response(401, {"error": "invalid_token"})):
        r = client.put("/api/anime/1/status", json={"username": "alice", "score": 5})
    assert r.status_code == 400
    assert "re-authorize" in r.json()["message"]


def test_mal_profile(authorized, make_response):
    profile = {"id": 7, "name": "alice_mal", "anime_statistics": {"num_items": 2}}
    with patch("paisen.mal_api.httpx.get", return_value=make_response(200, profile)) as get:
        r = client.get("/api/mal/profile/alice")
    assert r.status_code == 200
    assert r.json()["data"]["name"] == "alice_mal"
    assert get.call_args.args[0].endswith("/users/@me")


def test_mal_profile_unavailable(authorized, make_response):
    with patch("paisen.mal_api.httpx.get", return_value=make_response(200, None, text="<html></html>")):
        r = client.get("/api/mal/profile/alice")
    assert r.status_code == 502
