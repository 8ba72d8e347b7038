# ====== Synchronizations ======
from __future__ import annotations
from typing import List

from engine import Frame, Queries, Sync, actions, sync


# -- Default playlists on registration --

@sync
def CreateListenLater(user):
    return {
        "when": actions(("UserAuthentication.register", {}, {"user": user})),
        "then": actions(("Playlist.createPlaylist", {"user": user, "playlistName": "Listen Later"})),
    }

@sync
def CreateFavorites(user):
    return {
        "when": actions(("UserAuthentication.register", {}, {"user": user})),
        "then": actions(("Playlist.createPlaylist", {"user": user, "playlistName": "Favorites"})),
    }


# -- User registration --

@sync
def RegisterRequest(request, username, password):
    return {
        "when": actions(("Requesting.request", {"path": "/UserAuthentication/register", "username": username, "password": password}, {"request": request})),
        "then": actions(("UserAuthentication.register", {"username": username, "password": password})),
    }

@sync
def RegisterResponseSuccess(request, user):
    return {
        "when": actions(
            ("Requesting.request", {"path": "/UserAuthentication/register"}, {"request": request}),
            ("UserAuthentication.register", {}, {"user": user}),
        ),
        "then": actions(("Requesting.respond", {"request": request, "user": user})),
    }

@sync
def RegisterResponseError(request, error):
    return {
        "when": actions(
            ("Requesting.request", {"path": "/UserAuthentication/register"}, {"request": request}),
            ("UserAuthentication.register", {}, {"error": error}),
        ),
        "then": actions(("Requesting.respond", {"request": request, "error": error})),
    }


# -- Login & session creation --

@sync
def LoginRequest(request, username, password):
    return {
        "when": actions(("Requesting.request", {"path": "/login", "username": username, "password": password}, {"request": request})),
        "then": actions(("UserAuthentication.authenticate", {"username": username, "password": password})),
    }

@sync
def LoginSuccessCreatesSession(user):
    return {
        "when": actions(("UserAuthentication.authenticate", {}, {"user": user})),
        "then": actions(("Session.create", {"user": user})),
    }

@sync
def LoginResponseSuccess(request, user, session):
    return {
        "when": actions(
            ("Requesting.request", {"path": "/login"}, {"request": request}),
            ("UserAuthentication.authenticate", {}, {"user": user}),
            ("Session.create", {"user": user}, {"session": session}),
        ),
        "then": actions(("Requesting.respond", {"request": request, "session": session})),
    }

@sync
def LoginResponseError(request, error):
    return {
        "when": actions(
            ("Requesting.request", {"path": "/login"}, {"request": request}),
            ("UserAuthentication.authenticate", {}, {"error": error}),
        ),
        "then": actions(("Requesting.respond", {"request": request, "error": error})),
    }


# -- Logout --

@sync
def LogoutRequest(request, session, user):
    async def where(q: Queries, fr: Frame) -> List[Frame]:
        return await q.bind(fr, "Session._getUser", {"session": session}, {"user": user})
    return {
        "when": actions(("Requesting.request", {"path": "/logout", "session": session}, {"request": request})),
        "where": where,
        "then": actions(("Session.delete", {"session": session})),
    }

@sync
def LogoutResponse(request):
    return {
        "when": actions(
            ("Requesting.request", {"path": "/logout"}, {"request": request}),
            ("Session.delete", {}, {}),
        ),
        "then": actions(("Requesting.respond", {"request": request, "status": "logged_out"})),
    }


# -- Playlists behind a session --

@sync
def CreatePlaylistRequest(request, session, playlistName, user):
    async def where(q: Queries, fr: Frame) -> List[Frame]:
        return await q.bind(fr, "Session._getUser", {"session": session}, {"user": user})
    return {
        "when": actions(("Requesting.request", {"path": "/Playlist/createPlaylist", "session": session, "playlistName": playlistName}, {"request": request})),
        "where": where,
        "then": actions(("Playlist.createPlaylist", {"user": user, "playlistName": playlistName})),
    }

@sync
def CreatePlaylistResponseSuccess(request, playlist):
    return {
        "when": actions(
            ("Requesting.request", {"path": "/Playlist/createPlaylist"}, {"request": request}),
            ("Playlist.createPlaylist", {}, {"playlist": playlist}),
        ),
        "then": actions(("Requesting.respond", {"request": request, "playlist": playlist})),
    }

@sync
def CreatePlaylistResponseError(request, error):
    return {
        "when": actions(
            ("Requesting.request", {"path": "/Playlist/createPlaylist"}, {"request": request}),
            ("Playlist.createPlaylist", {}, {"error": error}),
        ),
        "then": actions(("Requesting.respond", {"request": request, "error": error})),
    }

@sync
def DeletePlaylistRequest(request, session, playlistName, user):
    async def where(q: Queries, fr: Frame) -> List[Frame]:
        return await q.bind(fr, "Session._getUser", {"session": session}, {"user": user})
    return {
        "when": actions(("Requesting.request", {"path": "/Playlist/deletePlaylist", "session": session, "playlistName": playlistName}, {"request": request})),
        "where": where,
        "then": actions(("Playlist.deletePlaylist", {"user": user, "playlistName": playlistName})),
    }

@sync
def DeletePlaylistResponseSuccess(request):
    return {
        "when": actions(
            ("Requesting.request", {"path": "/Playlist/deletePlaylist"}, {"request": request}),
            ("Playlist.deletePlaylist", {}, {}),
        ),
        "then": actions(("Requesting.respond", {"request": request, "status": "deleted"})),
    }

@sync
def DeletePlaylistResponseError(request, error):
    return {
        "when": actions(
            ("Requesting.request", {"path": "/Playlist/deletePlaylist"}, {"request": request}),
            ("Playlist.deletePlaylist", {}, {"error": error}),
        ),
        "then": actions(("Requesting.respond", {"request": request, "error": error})),
    }

@sync
def PlaylistRequestUnauthorized(request, path, session, error):
    # a stale session id binds the error row of Session._getUser
    async def where(q: Queries, fr: Frame) -> List[Frame]:
        if fr[path] not in ("/Playlist/createPlaylist", "/Playlist/deletePlaylist"):
            return []
        return await q.bind(fr, "Session._getUser", {"session": session}, {"error": error})
    return {
        "when": actions(("Requesting.request", {"path": path, "session": session}, {"request": request})),
        "where": where,
        "then": actions(("Requesting.respond", {"request": request, "error": error})),
    }


def make_syncs() -> List[Sync]:
    return [
        CreateListenLater,
        CreateFavorites,
        RegisterRequest,
        RegisterResponseSuccess,
        RegisterResponseError,
        LoginRequest,
        LoginSuccessCreatesSession,
        LoginResponseSuccess,
        LoginResponseError,
        LogoutRequest,
        LogoutResponse,
        CreatePlaylistRequest,
        CreatePlaylistResponseSuccess,
        CreatePlaylistResponseError,
        DeletePlaylistRequest,
        DeletePlaylistResponseSuccess,
        DeletePlaylistResponseError,
        PlaylistRequestUnauthorized,
    ]
