"""
End-to-end tests for the application's synchronizations.
"""
from concepts import Playlist, Requesting, Session, UserAuthentication
from engine import Engine
from sync import CreateFavorites, CreateListenLater, LogoutRequest, LogoutResponse
from tests.helpers import calls, run


def response_of(eng, event):
    rows = run(eng.query("Requesting", "_getResponse", request=event.output["request"]))
    return rows[0]["response"] if rows else None


class TestRegistrationPlaylists:

    def test_register_creates_favorites(self, config):
        eng = Engine(config)
        eng.register_concept(UserAuthentication())
        eng.register_concept(Playlist())
        eng.register_sync(CreateFavorites)

        event = run(eng.invoke("UserAuthentication", "register", {"username": "a", "password": "p"}))
        user = event.output["user"]
        assert calls(eng, event.flow, "Playlist.createPlaylist") == [{"user": user, "playlistName": "Favorites"}]

    def test_two_rules_on_one_event_fire_in_order(self, config):
        eng = Engine(config)
        eng.register_concept(UserAuthentication())
        eng.register_concept(Playlist())
        eng.register_sync(CreateListenLater)
        eng.register_sync(CreateFavorites)

        event = run(eng.invoke("UserAuthentication", "register", {"username": "a", "password": "p"}))
        user = event.output["user"]
        assert calls(eng, event.flow, "Playlist.createPlaylist") == [
            {"user": user, "playlistName": "Listen Later"},
            {"user": user, "playlistName": "Favorites"},
        ]
        rows = run(eng.query("Playlist", "_getUserPlaylists", user=user))
        assert sorted(r["playlistName"] for r in rows) == ["Favorites", "Listen Later"]

    def test_failed_registration_creates_nothing(self, config):
        eng = Engine(config)
        eng.register_concept(UserAuthentication())
        eng.register_concept(Playlist())
        eng.register_sync(CreateFavorites)

        run(eng.invoke("UserAuthentication", "register", {"username": "a", "password": "p"}))
        again = run(eng.invoke("UserAuthentication", "register", {"username": "a", "password": "p"}))
        assert again.output == {"error": "Username 'a' already exists"}
        assert calls(eng, again.flow, "Playlist.createPlaylist") == []


class TestLogout:

    def make_engine(self, config):
        eng = Engine(config)
        eng.register_concept(Session())
        eng.register_concept(Requesting())
        eng.register_sync(LogoutRequest)
        eng.register_sync(LogoutResponse)
        return eng

    def test_active_session_is_deleted_once(self, config):
        eng = self.make_engine(config)
        session = run(eng.invoke("Session", "create", {"user": "U"})).output["session"]

        req = run(eng.invoke("Requesting", "request", {"path": "/logout", "session": session}))
        assert calls(eng, req.flow, "Session.delete") == [{"session": session}]
        assert response_of(eng, req) == {"status": "logged_out"}
        assert run(eng.query("Session", "_getUser", session=session)) == [{"error": f"Session with id {session} not found"}]

    def test_unknown_session_fires_nothing(self, config):
        eng = self.make_engine(config)
        req = run(eng.invoke("Requesting", "request", {"path": "/logout", "session": "nope"}))
        history = eng.log.history(req.flow)
        assert [(e.concept, e.action) for e in history] == [("Requesting", "request")]
        assert response_of(eng, req) is None


class TestRequestFlows:

    def register(self, eng, username="alice", password="pw"):
        req = run(eng.invoke("Requesting", "request", {"path": "/UserAuthentication/register",
                                                      "username": username, "password": password}))
        return req, response_of(eng, req)

    def login(self, eng, username="alice", password="pw"):
        req = run(eng.invoke("Requesting", "request", {"path": "/login", "username": username, "password": password}))
        return req, response_of(eng, req)

    def test_register_request_responds_with_user(self, app_engine):
        req, response = self.register(app_engine)
        user = response["user"]
        assert run(app_engine.query("UserAuthentication", "_getUsername", user=user)) == [{"username": "alice"}]
        assert [c["playlistName"] for c in calls(app_engine, req.flow, "Playlist.createPlaylist")] == ["Listen Later", "Favorites"]

    def test_register_request_error_is_passed_through_verbatim(self, app_engine):
        self.register(app_engine)
        _, response = self.register(app_engine)
        assert response == {"error": "Username 'alice' already exists"}

    def test_login_creates_session_and_responds(self, app_engine):
        self.register(app_engine)
        req, response = self.login(app_engine)
        session = response["session"]
        assert len(calls(app_engine, req.flow, "Session.create")) == 1
        assert run(app_engine.query("Session", "_getUser", session=session))[0]["user"]

    def test_login_failure(self, app_engine):
        self.register(app_engine)
        req, response = self.login(app_engine, password="wrong")
        assert response == {"error": "Invalid username or password"}
        assert calls(app_engine, req.flow, "Session.create") == []

    def test_create_and_delete_playlist_with_session(self, app_engine):
        _, reg = self.register(app_engine)
        _, login = self.login(app_engine)
        session = login["session"]

        create = run(app_engine.invoke("Requesting", "request", {"path": "/Playlist/createPlaylist",
                                                                 "session": session, "playlistName": "Road Trip"}))
        assert "playlist" in response_of(app_engine, create)
        names = [r["playlistName"] for r in run(app_engine.query("Playlist", "_getUserPlaylists", user=reg["user"]))]
        assert "Road Trip" in names

        dup = run(app_engine.invoke("Requesting", "request", {"path": "/Playlist/createPlaylist",
                                                              "session": session, "playlistName": "Road Trip"}))
        assert response_of(app_engine, dup) == {
            "error": f"Playlist with name 'Road Trip' already exists for user '{reg['user']}'."}

        delete = run(app_engine.invoke("Requesting", "request", {"path": "/Playlist/deletePlaylist",
                                                                 "session": session, "playlistName": "Road Trip"}))
        assert response_of(app_engine, delete) == {"status": "deleted"}

    def test_playlist_request_with_stale_session(self, app_engine):
        req = run(app_engine.invoke("Requesting", "request", {"path": "/Playlist/createPlaylist",
                                                              "session": "stale", "playlistName": "X"}))
        assert response_of(app_engine, req) == {"error": "Session with id stale not found"}
        assert calls(app_engine, req.flow, "Playlist.createPlaylist") == []

    def test_concurrent_flows_do_not_mix(self, app_engine):
        import asyncio

        async def both():
            return await asyncio.gather(
                app_engine.invoke("Requesting", "request", {"path": "/UserAuthentication/register", "username": "a", "password": "1"}),
                app_engine.invoke("Requesting", "request", {"path": "/UserAuthentication/register", "username": "b", "password": "2"}),
            )

        first, second = run(both())
        assert first.flow != second.flow
        users = [response_of(app_engine, r)["user"] for r in (first, second)]
        names = [run(app_engine.query("UserAuthentication", "_getUsername", user=u))[0]["username"] for u in users]
        assert names == ["a", "b"]
