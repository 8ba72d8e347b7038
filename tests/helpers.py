"""Toy concepts and helpers shared by the test modules."""
import asyncio
from typing import Any, Dict, List

from engine import Concept, Engine


class Echo(Concept):
    """Toy concept with one action per outcome the engine has to handle."""

    def __init__(self):
        super().__init__("Echo")
        self.calls: List[str] = []

    async def say(self, text: str) -> Dict[str, Any]:
        self.calls.append(text)
        return {"text": text}

    async def fail(self, reason: str) -> Dict[str, Any]:
        return {"error": reason}

    async def boom(self) -> Dict[str, Any]:
        raise RuntimeError("disk on fire")

    async def slow(self) -> Dict[str, Any]:
        await asyncio.sleep(1)
        return {}

    async def _rows(self, n: int) -> List[Dict[str, Any]]:
        return [{"i": i} for i in range(n)]

    async def _slowRows(self) -> List[Dict[str, Any]]:
        await asyncio.sleep(1)
        return []

    async def _brokenRows(self) -> List[Dict[str, Any]]:
        raise RuntimeError("index corrupted")


class Ledger(Concept):
    """Records every call so tests can assert on what the syncs dispatched."""

    def __init__(self):
        super().__init__("Ledger")
        self.entries: List[Dict[str, Any]] = []

    async def record(self, **entry: Any) -> Dict[str, Any]:
        self.entries.append(entry)
        return {"entry": len(self.entries)}


class FakeCatalog:
    """Stands in for SpotifyClient; mirrors the shape of the real search payload."""

    def __init__(self):
        self.searches: List[str] = []

    async def search_all(self, query, limit=None, offset=0):
        self.searches.append(query)
        return {
            "tracks": {"items": [{
                "id": "track1", "name": "Test Track", "uri": "spotify:track:1", "type": "track",
                "album": {"images": [{"url": "http://img.com/track1"}], "release_date": "2023-01-01"},
                "artists": [{"name": "Artist One"}], "duration_ms": 1000,
            }]},
            "albums": {"items": [{
                "id": "album1", "name": "Test Album", "uri": "spotify:album:1", "type": "album",
                "images": [{"url": "http://img.com/album1"}], "artists": [{"name": "Artist Two"}],
                "release_date": "2023-02-01",
            }]},
            "artists": {"items": []},
        }

    async def get_track(self, external_id):
        return {
            "id": external_id, "name": "Test Track", "uri": "spotify:track:1", "type": "track",
            "album": {"images": [{"url": "http://img.com/track1_detailed"}]},
            "artists": [{"name": "Artist One"}], "duration_ms": 1000,
        }

    async def get_album(self, external_id):
        return {"id": external_id, "name": "Test Album", "uri": "spotify:album:1", "type": "album", "images": []}

    async def get_artist(self, external_id):
        return {"id": external_id, "name": "Someone", "uri": "spotify:artist:1", "type": "artist", "images": []}


def run(coro):
    return asyncio.run(coro)


def calls(eng: Engine, flow: str, ref: str) -> List[Dict[str, Any]]:
    """Inputs of every recorded invocation of ``ref`` in a flow, in order."""
    concept, action = ref.split(".")
    return [e.input for e in eng.log.history(flow) if e.concept == concept and e.action == action]


