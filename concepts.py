from __future__ import annotations
from typing import Any, Dict, List, Optional
from uuid import uuid4
import hashlib
import logging
import secrets

from catalog import CatalogError, SpotifyClient
from engine import Concept

logger = logging.getLogger(__name__)

# ====== Concepts ======
# Each concept owns its storage; actions return a record or {"error": ...},
# queries (leading underscore) return a list of records.
# Storage is only touched under self._lock, and never across an await.

def fresh_id() -> str:
    return str(uuid4())


# 1) UserAuthentication: register and verify identities
class UserAuthentication(Concept):
    def __init__(self, name: str = "UserAuthentication"):
        super().__init__(name)
        self._users: Dict[str, Dict[str, str]] = {}
    @staticmethod
    def _hash(password: str, salt: str) -> str:
        return hashlib.sha256((salt + password).encode()).hexdigest()
    def _find(self, username: str) -> Optional[str]:
        for uid, rec in self._users.items():
            if rec["username"] == username:
                return uid
        return None
    async def register(self, username: str, password: str) -> Dict[str, Any]:
        with self._lock:
            if self._find(username) is not None:
                return {"error": f"Username '{username}' already exists"}
            uid = fresh_id()
            salt = secrets.token_hex(8)
            self._users[uid] = {"username": username, "salt": salt, "password": self._hash(password, salt)}
        return {"user": uid}
    async def authenticate(self, username: str, password: str) -> Dict[str, Any]:
        with self._lock:
            uid = self._find(username)
            rec = dict(self._users[uid]) if uid is not None else None
        if rec is None or not secrets.compare_digest(rec["password"], self._hash(password, rec["salt"])):
            return {"error": "Invalid username or password"}
        return {"user": uid}
    async def _getUsername(self, user: str) -> List[Dict[str, Any]]:
        with self._lock:
            rec = self._users.get(user)
            return [{"username": rec["username"]}] if rec else []
    async def _getUserByUsername(self, username: str) -> List[Dict[str, Any]]:
        with self._lock:
            uid = self._find(username)
        return [{"user": uid}] if uid else []


# 2) Session: map opaque session ids to users
class Session(Concept):
    def __init__(self, name: str = "Session"):
        super().__init__(name)
        self._sessions: Dict[str, str] = {}
    async def create(self, user: str) -> Dict[str, Any]:
        sid = fresh_id()
        with self._lock:
            self._sessions[sid] = user
        return {"session": sid}
    async def delete(self, session: str) -> Dict[str, Any]:
        with self._lock:
            found = self._sessions.pop(session, None)
        if found is None:
            return {"error": f"Session with id {session} not found"}
        return {}
    async def _getUser(self, session: str) -> List[Dict[str, Any]]:
        # single-row error rather than an empty list
        with self._lock:
            user = self._sessions.get(session)
        if user is None:
            return [{"error": f"Session with id {session} not found"}]
        return [{"user": user}]


# 3) Playlist: named, per-user collections of items
class Playlist(Concept):
    def __init__(self, name: str = "Playlist"):
        super().__init__(name)
        self._playlists: Dict[str, Dict[str, Any]] = {}
    def _find(self, user: str, playlistName: str) -> Optional[Dict[str, Any]]:
        for rec in self._playlists.values():
            if rec["user"] == user and rec["playlistName"] == playlistName:
                return rec
        return None
    @staticmethod
    def _not_found(user: str, playlistName: str) -> Dict[str, Any]:
        return {"error": f"Playlist with name '{playlistName}' not found for user '{user}'."}
    async def createPlaylist(self, user: str, playlistName: str) -> Dict[str, Any]:
        with self._lock:
            if self._find(user, playlistName):
                return {"error": f"Playlist with name '{playlistName}' already exists for user '{user}'."}
            pid = fresh_id()
            self._playlists[pid] = {"id": pid, "user": user, "playlistName": playlistName, "items": []}
        return {"playlist": pid}
    async def deletePlaylist(self, user: str, playlistName: str) -> Dict[str, Any]:
        with self._lock:
            rec = self._find(user, playlistName)
            if rec is None:
                return self._not_found(user, playlistName)
            del self._playlists[rec["id"]]
        return {}
    async def addItem(self, user: str, item: str, playlistName: str) -> Dict[str, Any]:
        with self._lock:
            rec = self._find(user, playlistName)
            if rec is None:
                return self._not_found(user, playlistName)
            if item in rec["items"]:
                return {"error": f"Item '{item}' is already in playlist '{playlistName}' for user '{user}'."}
            rec["items"].append(item)
        return {}
    async def deleteItem(self, user: str, item: str, playlistName: str) -> Dict[str, Any]:
        with self._lock:
            rec = self._find(user, playlistName)
            if rec is None:
                return self._not_found(user, playlistName)
            if item not in rec["items"]:
                return {"error": f"Item '{item}' is not in playlist '{playlistName}' for user '{user}'."}
            rec["items"].remove(item)
        return {}
    async def _getPlaylistItems(self, user: str, playlistName: str) -> List[Dict[str, Any]]:
        with self._lock:
            rec = self._find(user, playlistName)
            return [{"item": i} for i in rec["items"]] if rec else []
    async def _getUserPlaylists(self, user: str) -> List[Dict[str, Any]]:
        with self._lock:
            return [{"playlist": r["id"], "playlistName": r["playlistName"], "items": list(r["items"])}
                    for r in self._playlists.values() if r["user"] == user]


# 4) Friending: requests and symmetric friendships
class Friending(Concept):
    def __init__(self, name: str = "Friending"):
        super().__init__(name)
        self._users: Dict[str, Dict[str, List[str]]] = {}
    def _user(self, user: str) -> Dict[str, List[str]]:
        return self._users.setdefault(user, {"friends": [], "incomingRequests": [], "outgoingRequests": []})
    def _list(self, user: str, key: str) -> List[str]:
        with self._lock:
            return list(self._users.get(user, {}).get(key, []))
    async def sendFriendRequest(self, user: str, target: str) -> Dict[str, Any]:
        if user == target:
            return {"error": "Cannot send a friend request to self."}
        with self._lock:
            u, t = self._user(user), self._user(target)
            if target in u["friends"]:
                return {"error": "Users are already friends."}
            if target in u["outgoingRequests"]:
                return {"error": f"User {user} has already sent a friend request to {target}."}
            if target in u["incomingRequests"]:
                return {"error": f"Target {target} has already sent a friend request to {user}. Consider accepting it instead."}
            u["outgoingRequests"].append(target)
            t["incomingRequests"].append(user)
        return {}
    async def acceptFriendRequest(self, requester: str, target: str) -> Dict[str, Any]:
        if requester == target:
            return {"error": "Cannot be friends with self."}
        with self._lock:
            r, t = self._user(requester), self._user(target)
            if target in r["friends"]:
                return {"error": "Users are already friends."}
            if target not in r["outgoingRequests"]:
                return {"error": "No pending friend request from requester to target."}
            r["outgoingRequests"].remove(target)
            t["incomingRequests"].remove(requester)
            r["friends"].append(target)
            t["friends"].append(requester)
        return {}
    async def removeFriendRequest(self, requester: str, target: str) -> Dict[str, Any]:
        with self._lock:
            r, t = self._user(requester), self._user(target)
            if target in r["friends"]:
                return {"error": "Users are already friends. Use removeFriend instead."}
            if target not in r["outgoingRequests"]:
                return {"error": "No pending friend request from requester to target."}
            r["outgoingRequests"].remove(target)
            t["incomingRequests"].remove(requester)
        return {}
    async def removeFriend(self, user: str, friend: str) -> Dict[str, Any]:
        if user == friend:
            return {"error": "Cannot be friends with self."}
        with self._lock:
            u, f = self._user(user), self._user(friend)
            if friend not in u["friends"]:
                return {"error": "Users are not friends with each other."}
            u["friends"].remove(friend)
            f["friends"].remove(user)
        return {}
    async def _getFriends(self, user: str) -> List[Dict[str, Any]]:
        return [{"friend": f} for f in self._list(user, "friends")]
    async def _getIncomingRequests(self, user: str) -> List[Dict[str, Any]]:
        return [{"requester": r} for r in self._list(user, "incomingRequests")]
    async def _getOutgoingRequests(self, user: str) -> List[Dict[str, Any]]:
        return [{"target": t} for t in self._list(user, "outgoingRequests")]


# 5) Review: ratings with notes, plus comment threads
class Review(Concept):
    def __init__(self, name: str = "Review"):
        super().__init__(name)
        self._reviews: Dict[str, Dict[str, Any]] = {}
    @staticmethod
    def _valid_rating(rating: Any) -> bool:
        return isinstance(rating, int) and not isinstance(rating, bool) and 0 <= rating <= 5
    @staticmethod
    def _row(rec: Dict[str, Any]) -> Dict[str, Any]:
        return {"review": rec["id"], "item": rec["item"], "user": rec["user"], "rating": rec["rating"],
                "notes": rec["notes"], "comments": [dict(c) for c in rec["comments"]]}
    def _missing(self, review: str) -> Dict[str, Any]:
        return {"error": f"Review with ID {review} not found."}
    def _rows(self, **where: Any) -> List[Dict[str, Any]]:
        with self._lock:
            return [self._row(r) for r in self._reviews.values() if all(r[k] == v for k, v in where.items())]
    async def postReview(self, item: str, user: str, ratingNumber: int, notes: str = "") -> Dict[str, Any]:
        if not self._valid_rating(ratingNumber):
            return {"error": "Rating must be an integer between 0 and 5."}
        with self._lock:
            if any(r["item"] == item and r["user"] == user for r in self._reviews.values()):
                return {"error": f"User {user} has already reviewed item {item}."}
            rid = fresh_id()
            self._reviews[rid] = {"id": rid, "item": item, "user": user, "rating": ratingNumber, "notes": notes, "comments": []}
        return {"review": rid}
    async def updateReview(self, review: str, ratingNumber: int, notes: Optional[str] = None) -> Dict[str, Any]:
        with self._lock:
            rec = self._reviews.get(review)
            if rec is None:
                return self._missing(review)
            if not self._valid_rating(ratingNumber):
                return {"error": "Rating must be an integer between 0 and 5."}
            rec["rating"] = ratingNumber
            if notes is not None:
                rec["notes"] = notes
        return {}
    async def deleteReview(self, review: str) -> Dict[str, Any]:
        with self._lock:
            found = self._reviews.pop(review, None)
        if found is None:
            return self._missing(review)
        return {}
    async def addComment(self, review: str, commenter: str, comment: str) -> Dict[str, Any]:
        with self._lock:
            rec = self._reviews.get(review)
            if rec is None:
                return self._missing(review)
            cid = fresh_id()
            rec["comments"].append({"commentId": cid, "commenter": commenter, "notes": comment})
        return {"commentId": cid}
    async def deleteComment(self, review: str, commentId: str) -> Dict[str, Any]:
        with self._lock:
            rec = self._reviews.get(review)
            if rec is None:
                return self._missing(review)
            # removing an unknown comment is a no-op
            rec["comments"] = [c for c in rec["comments"] if c["commentId"] != commentId]
        return {}
    async def _getReviewByItemAndUser(self, item: str, user: str) -> List[Dict[str, Any]]:
        return self._rows(item=item, user=user)
    async def _getItemReviews(self, item: str) -> List[Dict[str, Any]]:
        return self._rows(item=item)
    async def _getUserReviews(self, user: str) -> List[Dict[str, Any]]:
        return self._rows(user=user)
    async def _getReviewComments(self, review: str) -> List[Dict[str, Any]]:
        with self._lock:
            rec = self._reviews.get(review)
            return [dict(c) for c in rec["comments"]] if rec else []


# 6) MusicDiscovery: catalog search with per-user result sets
class MusicDiscovery(Concept):
    KINDS = ("tracks", "albums", "artists")
    def __init__(self, name: str = "MusicDiscovery", client: Optional[SpotifyClient] = None):
        super().__init__(name)
        self.client = client or SpotifyClient()
        self._entities: Dict[str, Dict[str, Any]] = {}   # externalId -> entity
        self._results: Dict[str, List[str]] = {}         # user -> externalIds
        self._last_query: Dict[str, str] = {}
    @staticmethod
    def _entity(raw: Dict[str, Any]) -> Dict[str, Any]:
        images = raw.get("images") or (raw.get("album") or {}).get("images") or []
        artists = raw.get("artists") or []
        return {
            "externalId": raw["id"],
            "name": raw.get("name", ""),
            "uri": raw.get("uri", ""),
            "type": raw.get("type", ""),
            "imageUrl": images[0]["url"] if images else None,
            "artistName": artists[0]["name"] if artists else None,
            "durationMs": raw.get("duration_ms"),
            "releaseDate": raw.get("release_date") or (raw.get("album") or {}).get("release_date"),
        }
    def _store(self, raw: Dict[str, Any]) -> Dict[str, Any]:
        ent = self._entity(raw)
        self._entities[ent["externalId"]] = ent
        return dict(ent)
    async def search(self, user: str, query: str) -> Dict[str, Any]:
        if not query or not query.strip():
            return {"error": "Query cannot be empty"}
        try:
            payload = await self.client.search_all(query)
        except CatalogError as e:
            logger.warning(f"Catalog search failed for {query!r}: {e}")
            return {"error": f"Catalog search failed: {e}"}
        with self._lock:
            found = [self._store(raw) for kind in self.KINDS for raw in (payload.get(kind) or {}).get("items", [])]
            self._results[user] = [e["externalId"] for e in found]
            self._last_query[user] = query
        return {"musicEntities": found}
    async def clearSearch(self, user: str) -> Dict[str, Any]:
        with self._lock:
            self._results.pop(user, None)
        return {}
    async def loadEntityDetails(self, externalId: str, type: str) -> Dict[str, Any]:
        fetch = {"track": self.client.get_track, "album": self.client.get_album, "artist": self.client.get_artist}.get(type)
        if fetch is None:
            return {"error": f"Unsupported entity type '{type}'"}
        try:
            raw = await fetch(externalId)
        except CatalogError as e:
            return {"error": f"Could not load {type} {externalId}: {e}"}
        with self._lock:
            return {"musicEntity": self._store(raw)}
    async def _getSearchResults(self, user: str) -> List[Dict[str, Any]]:
        with self._lock:
            return [{"musicEntity": dict(self._entities[x])} for x in self._results.get(user, []) if x in self._entities]
    async def _getEntityFromUri(self, uri: str) -> List[Dict[str, Any]]:
        with self._lock:
            return [{"musicEntity": dict(e)} for e in self._entities.values() if e["uri"] == uri]
    async def _getLastQuery(self, user: str) -> List[Dict[str, Any]]:
        with self._lock:
            q = self._last_query.get(user)
        return [{"query": q}] if q is not None else []


# 7) Requesting: bridges HTTP requests into the sync layer
class Requesting(Concept):
    def __init__(self, name: str = "Requesting"):
        super().__init__(name)
        self._req: Dict[str, Dict[str, Any]] = {}
    async def request(self, path: str, **fields: Any) -> Dict[str, Any]:
        rid = fresh_id()
        with self._lock:
            self._req[rid] = {"path": path, "input": fields, "response": None}
        return {"request": rid}
    async def respond(self, request: str, **payload: Any) -> Dict[str, Any]:
        with self._lock:
            rec = self._req.get(request)
            if rec is None:
                return {"error": f"Request {request} not found"}
            if rec["response"] is not None:
                return {"error": f"Request {request} was already answered"}
            rec["response"] = payload
        return {"request": request}
    async def _getResponse(self, request: str) -> List[Dict[str, Any]]:
        with self._lock:
            rec = self._req.get(request)
            if rec is None or rec["response"] is None:
                return []
            return [{"response": dict(rec["response"])}]
