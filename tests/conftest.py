"""
Pytest configuration and shared fixtures.

Engine code is async; tests drive it with ``asyncio.run`` so no async
pytest plugin is needed.
"""
import pytest

from app import build_engine
from config import EngineConfig
from engine import Engine
from tests.helpers import Echo, FakeCatalog, Ledger


@pytest.fixture
def config():
    return EngineConfig(MAX_CASCADE_DEPTH=16, ACTION_TIMEOUT=0, RETAIN_HISTORY=True)


@pytest.fixture
def toy_engine(config):
    eng = Engine(config)
    eng.register_concept(Echo())
    eng.register_concept(Ledger())
    return eng


@pytest.fixture
def catalog():
    return FakeCatalog()


@pytest.fixture
def app_engine(config, catalog):
    return build_engine(config, catalog=catalog)
