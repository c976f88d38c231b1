"""Pytest configuration and shared fixtures."""

import sys
import asyncio
import inspect
from pathlib import Path

import pytest

# Ensure src directory is in Python path for all tests
sys.path.insert(0, str(Path(__file__).parent.parent / "src"))
sys.path.insert(0, str(Path(__file__).parent))

from todo_sync.config import Config, SyncSettings
from todo_sync.database import Database
from todo_sync.services.task_service import TaskService
from todo_sync.sync.engine import SyncEngine
from todo_sync.sync.queue import SyncQueue
from fakes import FakeRemotePeer


@pytest.hookimpl(tryfirst=True)
def pytest_pyfunc_call(pyfuncitem):
    """Execute async tests without external plugins."""
    testfunction = pyfuncitem.obj
    if inspect.iscoroutinefunction(testfunction):
        loop = asyncio.new_event_loop()
        try:
            asyncio.set_event_loop(loop)
            sig = inspect.signature(testfunction)
            call_kwargs = {name: pyfuncitem.funcargs[name] for name in sig.parameters}
            loop.run_until_complete(testfunction(**call_kwargs))
        finally:
            asyncio.set_event_loop(None)
            loop.close()
        return True
    return None


@pytest.fixture(autouse=True)
def isolated_settings(tmp_path, monkeypatch):
    """Keep every test away from the user's real data directory."""
    for name in ("API_BASE_URL", "SYNC_BATCH_SIZE", "SYNC_RETRY_ATTEMPTS",
                 "SYNC_CONNECTIVITY_TIMEOUT"):
        monkeypatch.delenv(name, raising=False)
    monkeypatch.setenv("TODO_SYNC_DATA_DIR", str(tmp_path / "data"))
    Config.set(None)
    yield
    Config.set(None)


@pytest.fixture
def settings(tmp_path):
    return SyncSettings(data_dir=str(tmp_path / "data"), api_base_url="http://remote.test/api")


@pytest.fixture
def db(tmp_path):
    return Database(tmp_path / "tasks.db")


@pytest.fixture
def tasks(db):
    return TaskService(db)


@pytest.fixture
def queue(db):
    return SyncQueue(db)


@pytest.fixture
def peer():
    return FakeRemotePeer()


@pytest.fixture
def make_engine(db, peer):
    """Build an engine wired to the fake peer."""
    def factory(batch_size=10, max_retries=3, **kwargs):
        return SyncEngine(db, peer.client(), batch_size=batch_size,
                          max_retries=max_retries, **kwargs)
    return factory
