"""
Causal chains running on separate threads, each with its own event loop,
the way the threaded Flask server drives the engine.
"""
import sys
import threading

import pytest

from tests.helpers import run

THREADS = 8
PER_THREAD = 40


@pytest.fixture
def tight_switching():
    previous = sys.getswitchinterval()
    sys.setswitchinterval(1e-6)
    yield
    sys.setswitchinterval(previous)


def run_threads(target):
    errors = []

    def guarded(n):
        try:
            target(n)
        except Exception as e:
            errors.append(e)

    threads = [threading.Thread(target=guarded, args=(n,)) for n in range(THREADS)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()
    return errors


def test_parallel_registrations_never_fault(app_engine, tight_switching):
    for i in range(500):
        run(app_engine.invoke("UserAuthentication", "register", {"username": f"seed{i}", "password": "pw"}))

    def register_many(n):
        for i in range(PER_THREAD):
            event = run(app_engine.invoke("UserAuthentication", "register", {"username": f"t{n}-{i}", "password": "pw"}))
            assert "user" in event.output

    assert run_threads(register_many) == []
    for n in range(THREADS):
        rows = run(app_engine.query("UserAuthentication", "_getUserByUsername", username=f"t{n}-0"))
        assert len(rows) == 1
        playlists = run(app_engine.query("Playlist", "_getUserPlaylists", user=rows[0]["user"]))
        assert sorted(p["playlistName"] for p in playlists) == ["Favorites", "Listen Later"]


def test_uniqueness_holds_under_contention(app_engine, tight_switching):
    outcomes = []
    lock = threading.Lock()

    def register_same(n):
        for i in range(PER_THREAD):
            event = run(app_engine.invoke("UserAuthentication", "register", {"username": f"shared{i}", "password": "pw"}))
            with lock:
                outcomes.append((i, "user" in event.output))

    assert run_threads(register_same) == []
    for i in range(PER_THREAD):
        assert sum(ok for j, ok in outcomes if j == i) == 1
