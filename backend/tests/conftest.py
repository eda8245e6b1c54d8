import os
import sys
from pathlib import Path

import pytest
from fastapi.testclient import TestClient

# Ensure backend/ is importable as the top-level "dowstats" package even when pytest runs from repo root
BACKEND_DIR = Path(__file__).resolve().parents[1]
if str(BACKEND_DIR) not in sys.path:
    sys.path.insert(0, str(BACKEND_DIR))

# Keep the service in test mode *before* importing any dowstats modules
os.environ.setdefault("ENV", "test")
os.environ.setdefault("SCHEDULER_ENABLED", "false")

from dowstats.config import Settings
from dowstats.db.session import build_engine, init_db, make_sessionmaker
from dowstats.main import create_app
from dowstats.plugin import PluginContext
from dowstats.services.aggregate_store import AggregateStore
from dowstats.services.dispatcher import Dispatcher
from dowstats.services.merger import BatchMerger

from _helpers import FakePointService


@pytest.fixture
def make_engine(tmp_path):
    """File-backed SQLite so pool threads each get their own connection."""
    engines = []

    def _make(name: str = "dowstats"):
        eng = build_engine(f"sqlite:///{tmp_path / (name + '.db')}")
        init_db(eng)
        engines.append(eng)
        return eng

    yield _make
    for eng in engines:
        eng.dispose()


@pytest.fixture
def engine(make_engine):
    return make_engine()


@pytest.fixture
def store(engine):
    return AggregateStore(make_sessionmaker(engine))


@pytest.fixture
def merger(store):
    return BatchMerger(store)


@pytest.fixture
def dispatcher(merger):
    return Dispatcher(merger, max_workers=4)


@pytest.fixture
def point_service():
    return FakePointService(points=[1, 2, 3, 4, 5])


@pytest.fixture
def settings():
    return Settings(ENV="test", DISPATCH_MAX_WORKERS=4, CATCHUP_PAGE_SIZE=2, SCHEDULER_ENABLED=False)


@pytest.fixture
def context(engine, point_service, settings):
    return PluginContext.build(engine, point_service, settings)


@pytest.fixture
def client(context):
    with TestClient(create_app(context)) as c:
        yield c
