"""End-to-end tests of the web API with a stubbed Qobuz client."""
import asyncio
import pathlib
import sys
from unittest.mock import AsyncMock, MagicMock

import pytest
from fastapi import WebSocketDisconnect
from fastapi.testclient import TestClient

sys.path.insert(0, str(pathlib.Path(__file__).resolve().parents[1] / "qobuzfav"))

from modules.qobuz import QobuzAuthError
from modules.sessions import InMemorySessionStore
from modules.web import QobuzFavWebApp, create_app


PLAYLISTS = {
    "P1": ["A", "B", "C"],
    "P2": ["B", "D"],
}

FAVORITES = [
    {"id": 1, "title": "So What", "performer": {"name": "Miles Davis"}, "album": {"title": "Kind of Blue"}},
    {"id": 2, "title": "Naima", "performer": {"name": "John Coltrane"}, "album": {"title": "Giant Steps"}},
    {"id": 3, "title": "Smiles", "performer": {"name": "Someone"}},
]

SEARCH_RESULTS = [
    {"id": 100, "name": "Jazz Classics", "tracks_count": 30, "owner": {"id": 7}},
    {"id": 200, "name": "My Jazz", "tracks_count": 3, "owner": {"id": 42}},
]


def _fake_client():
    client = MagicMock()

    async def login(email, password_hash):
        if email != "user@example.com":
            raise QobuzAuthError("Invalid credentials or unauthorized")
        return "42"

    async def get_playlist_page(playlist_id, limit, offset):
        if offset:
            return []
        return [{"id": track_id, "title": f"Track {track_id}"} for track_id in PLAYLISTS.get(playlist_id, [])]

    async def get_favorites_page(user_id, limit, offset):
        return FAVORITES[offset:offset + limit]

    client.login = AsyncMock(side_effect=login)
    client.close = AsyncMock()
    client.search_playlists = AsyncMock(return_value=SEARCH_RESULTS)
    client.get_user_playlists_page = AsyncMock(return_value=SEARCH_RESULTS[1:])
    client.get_playlist_page = AsyncMock(side_effect=get_playlist_page)
    client.get_favorites_page = AsyncMock(side_effect=get_favorites_page)
    client.add_favorites = AsyncMock(return_value={"status": "success"})
    client.delete_favorites = AsyncMock(return_value={"status": "success"})
    return client


@pytest.fixture
def clients():
    return []


@pytest.fixture
def app(user_inputs, clients):
    def factory(_user_inputs):
        client = _fake_client()
        clients.append(client)
        return client

    return create_app(user_inputs, InMemorySessionStore(), factory)


@pytest.fixture
def http(app):
    with TestClient(app) as test_client:
        yield test_client


def _login(http):
    response = http.post(
        "/api/auth/login", json={"email": "user@example.com", "password": "secret"}
    )
    assert response.status_code == 200
    return response.json()["sessionId"]


def _collect_until_completed(websocket):
    messages = []
    while True:
        message = websocket.receive_json()
        assert message["type"] == "ProgressUpdate"
        messages.append(message["data"])
        if message["data"]["isCompleted"]:
            return messages


class TestAuthRoutes:
    def test_login_success(self, http):
        response = http.post(
            "/api/auth/login", json={"email": "user@example.com", "password": "secret"}
        )

        body = response.json()
        assert response.status_code == 200
        assert body["success"] is True
        assert body["userId"] == "42"
        assert body["sessionId"]

    def test_login_requires_both_fields(self, http):
        response = http.post("/api/auth/login", json={"email": "user@example.com"})

        assert response.status_code == 400
        assert response.json()["success"] is False

    def test_login_with_bad_credentials(self, http, clients):
        response = http.post(
            "/api/auth/login", json={"email": "nobody@example.com", "password": "x"}
        )

        assert response.status_code == 401
        assert response.json()["errorMessage"] == "Invalid email or password"
        clients[0].close.assert_awaited_once()

    def test_validate(self, http):
        session_id = _login(http)

        response = http.get("/api/auth/validate", headers={"X-Session-Id": session_id})

        assert response.status_code == 200
        assert response.json()["userId"] == "42"

    def test_validate_without_session(self, http):
        assert http.get("/api/auth/validate").status_code == 401
        assert http.get(
            "/api/auth/validate", headers={"X-Session-Id": "unknown"}
        ).status_code == 401

    def test_logout_invalidates_session(self, http, clients):
        session_id = _login(http)
        headers = {"X-Session-Id": session_id}

        assert http.post("/api/auth/logout", headers=headers).status_code == 200
        assert http.get("/api/auth/validate", headers=headers).status_code == 401
        clients[0].close.assert_awaited_once()


class TestPlaylistRoutes:
    def test_search_puts_own_playlists_first(self, http):
        headers = {"X-Session-Id": _login(http)}

        response = http.get(
            "/api/playlists/search", params={"searchTerm": "jazz"}, headers=headers
        )

        assert response.status_code == 200
        body = response.json()
        assert [p["id"] for p in body] == ["200", "100"]
        assert body[0]["tracksCount"] == 3

    def test_search_without_prioritizing(self, http):
        headers = {"X-Session-Id": _login(http)}

        response = http.get(
            "/api/playlists/search",
            params={"searchTerm": "jazz", "prioritizeUserPlaylists": "false"},
            headers=headers,
        )

        assert [p["id"] for p in response.json()] == ["100", "200"]

    def test_search_requires_term(self, http):
        headers = {"X-Session-Id": _login(http)}

        response = http.get(
            "/api/playlists/search", params={"searchTerm": "  "}, headers=headers
        )

        assert response.status_code == 400

    def test_search_requires_session(self, http):
        assert http.get(
            "/api/playlists/search", params={"searchTerm": "jazz"}
        ).status_code == 401

    def test_my_playlists(self, http):
        headers = {"X-Session-Id": _login(http)}

        response = http.get("/api/playlists/mine", headers=headers)

        assert [p["name"] for p in response.json()] == ["My Jazz"]

    def test_playlist_tracks(self, http):
        headers = {"X-Session-Id": _login(http)}

        response = http.get("/api/playlists/P2/tracks", headers=headers)

        assert response.status_code == 200
        assert [t["id"] for t in response.json()] == ["B", "D"]
        assert response.json()[0]["artist"] == "Unknown Artist"
        assert response.json()[0]["album"] is None


class TestFavoritesRoutes:
    def test_current_favorites(self, http):
        headers = {"X-Session-Id": _login(http)}

        body = http.get("/api/favorites/current", headers=headers).json()

        assert body["count"] == 3
        assert body["tracks"][0]["title"] == "So What"
        assert body["tracks"][2]["album"] == "Unknown Album"

    def test_search_favorites(self, http):
        headers = {"X-Session-Id": _login(http)}

        body = http.get(
            "/api/favorites/search",
            params={"query": "miles", "limit": 1, "offset": 0},
            headers=headers,
        ).json()

        assert body["totalCount"] == 2
        assert [t["id"] for t in body["tracks"]] == ["1"]
        assert body["hasMore"] is True

    def test_search_favorites_rejects_bad_paging(self, http):
        headers = {"X-Session-Id": _login(http)}

        response = http.get(
            "/api/favorites/search", params={"limit": 0}, headers=headers
        )

        assert response.status_code == 400

    def test_preview(self, http):
        headers = {"X-Session-Id": _login(http)}

        body = http.get(
            "/api/favorites/preview", params={"query": "miles"}, headers=headers
        ).json()

        assert body["totalCount"] == 2
        assert [t["id"] for t in body["sampleTracks"]] == ["1", "3"]

    def test_import_requires_progress_connection(self, http):
        headers = {"X-Session-Id": _login(http)}

        response = http.post(
            "/api/favorites/import", json={"playlistIds": ["P1"]}, headers=headers
        )
        assert response.status_code == 400

        headers["X-Connection-Id"] = "not-a-connection"
        response = http.post(
            "/api/favorites/import", json={"playlistIds": ["P1"]}, headers=headers
        )
        assert response.status_code == 400

    def test_import_requires_session(self, http):
        response = http.post("/api/favorites/import", json={"playlistIds": ["P1"]})
        assert response.status_code == 401

    def test_import_streams_progress(self, http, clients):
        session_id = _login(http)

        with http.websocket_connect("/hub/progress") as websocket:
            hello = websocket.receive_json()
            assert hello["type"] == "Connected"
            headers = {"X-Session-Id": session_id, "X-Connection-Id": hello["connectionId"]}

            response = http.post(
                "/api/favorites/import",
                json={"playlistIds": ["P1", "P2"]},
                headers=headers,
            )
            assert response.status_code == 202
            assert response.json()["playlistCount"] == 2

            updates = _collect_until_completed(websocket)

        final = updates[-1]
        assert updates[0]["currentStatus"] == "Starting import process..."
        assert final["currentStatus"] == "Import completed!"
        assert final["totalTracks"] == 4
        assert final["successfulTracks"] == 4
        assert final["failedTracks"] == 0
        assert final["errorMessage"] is None
        added = clients[0].add_favorites.await_args.args[0]
        assert sorted(added) == ["A", "B", "C", "D"]

    def test_import_rejects_empty_playlist_list(self, http):
        session_id = _login(http)

        with http.websocket_connect("/hub/progress") as websocket:
            connection_id = websocket.receive_json()["connectionId"]
            response = http.post(
                "/api/favorites/import",
                json={"playlistIds": []},
                headers={"X-Session-Id": session_id, "X-Connection-Id": connection_id},
            )

        assert response.status_code == 400

    def test_delete_filtered_streams_progress(self, http, clients):
        session_id = _login(http)

        with http.websocket_connect("/hub/progress") as websocket:
            connection_id = websocket.receive_json()["connectionId"]
            response = http.request(
                "DELETE",
                "/api/favorites/delete-filtered",
                params={"query": "coltrane"},
                headers={"X-Session-Id": session_id, "X-Connection-Id": connection_id},
            )
            assert response.status_code == 202

            updates = _collect_until_completed(websocket)

        assert updates[0]["currentStatus"] == "Loading and filtering favorites..."
        assert updates[-1]["currentStatus"] == "Delete completed!"
        assert updates[-1]["totalTracks"] == 1
        clients[0].delete_favorites.assert_awaited_once_with(["2"])

    def test_delete_all_streams_progress(self, http, clients):
        session_id = _login(http)

        with http.websocket_connect("/hub/progress") as websocket:
            connection_id = websocket.receive_json()["connectionId"]
            response = http.request(
                "DELETE",
                "/api/favorites/delete-all",
                headers={"X-Session-Id": session_id, "X-Connection-Id": connection_id},
            )
            assert response.status_code == 202

            updates = _collect_until_completed(websocket)

        assert updates[-1]["successfulTracks"] == 3
        clients[0].delete_favorites.assert_awaited_once_with(["1", "2", "3"])


def test_shutdown_closes_session_clients(app, clients):
    with TestClient(app) as http:
        _login(http)
        _login(http)

    for client in clients:
        client.close.assert_awaited_once()


def _websocket(receive_error):
    websocket = MagicMock()
    websocket.accept = AsyncMock()
    websocket.send_json = AsyncMock()
    websocket.receive_text = AsyncMock(side_effect=receive_error)
    return websocket


class TestProgressConnection:
    @pytest.mark.asyncio
    async def test_disconnect_unregisters_connection(self, user_inputs):
        web_app = QobuzFavWebApp(user_inputs, InMemorySessionStore(), lambda _: _fake_client())

        await web_app.serve_progress(_websocket(WebSocketDisconnect()))

        assert web_app.ws_manager.active_connections == {}

    @pytest.mark.asyncio
    async def test_receive_error_still_unregisters_connection(self, user_inputs):
        web_app = QobuzFavWebApp(user_inputs, InMemorySessionStore(), lambda _: _fake_client())

        with pytest.raises(RuntimeError):
            await web_app.serve_progress(_websocket(RuntimeError("socket torn down")))

        assert web_app.ws_manager.active_connections == {}


@pytest.mark.asyncio
async def test_logout_waits_for_running_operation(user_inputs, clients):
    def factory(_user_inputs):
        client = _fake_client()
        clients.append(client)
        return client

    web_app = QobuzFavWebApp(user_inputs, InMemorySessionStore(), factory)
    session = await web_app.auth_service.login("user@example.com", "secret")
    release = asyncio.Event()

    async def run():
        await release.wait()

    task = web_app.start_run("test run", session, run())
    await asyncio.sleep(0)
    await web_app.auth_service.logout(session.session_id)

    clients[0].close.assert_not_awaited()

    release.set()
    await task

    clients[0].close.assert_awaited_once()
