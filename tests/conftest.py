"""Shared pytest configuration and fixtures for the test suite."""

import atexit
import os
import shutil
import tempfile
from collections.abc import Iterator
from pathlib import Path

import pytest
import yaml
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

_TEST_DATA_DIR = Path(tempfile.mkdtemp(prefix="rs-tests-"))
os.environ["RS_DATA_PATH"] = str(_TEST_DATA_DIR)
_TEST_CONFIG_FILE = _TEST_DATA_DIR / "config.yaml"

_TEST_CONFIG_FILE.write_text(
    yaml.safe_dump(
        {
            "media_server": {
                "type": "jellyfin",
                "url": "http://jellyfin:8096",
                "api_key": "media-server-key",
            },
            "mdblist": {"api_key": "mdblist-key"},
        },
        sort_keys=False,
    ),
    encoding="utf-8",
)

from src.config import settings as settings_module  # noqa: E402
from src.core import jobs as jobs_module  # noqa: E402
from src.models.db.base import Base  # noqa: E402

settings_module.get_config.cache_clear()

# Every module that opens its own database context
DB_MODULES = (
    "src.core.api_errors",
    "src.core.enrichment",
    "src.core.mdblist",
    "src.core.reconcile",
    "src.core.sync.movies",
    "src.core.sync.series",
    "src.core.users",
    "src.core.watch_history",
)


class InMemoryDB:
    """Stand-in for ``ReelSyncDB`` backed by a private in-memory SQLite engine."""

    def __init__(self) -> None:
        self.engine = create_engine(
            "sqlite:///:memory:",
            connect_args={"check_same_thread": False},
            poolclass=StaticPool,
            future=True,
        )
        Base.metadata.create_all(self.engine)
        self._factory = sessionmaker(
            bind=self.engine, autoflush=False, expire_on_commit=False, future=True
        )
        self._session = None

    def __enter__(self):
        self._session = self._factory()
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        if self._session is not None:
            if exc_type is not None:
                self._session.rollback()
            self._session.close()
            self._session = None

    @property
    def session(self):
        if self._session is None:
            self._session = self._factory()
        return self._session

    def close(self) -> None:
        if self._session is not None:
            self._session.close()
            self._session = None
        self.engine.dispose()


@pytest.fixture
def catalog_db(monkeypatch: pytest.MonkeyPatch) -> Iterator[InMemoryDB]:
    """Patch ``db`` in every store-backed module with an in-memory database."""
    import importlib

    db_instance = InMemoryDB()
    for name in DB_MODULES:
        monkeypatch.setattr(importlib.import_module(name), "db", lambda: db_instance)

    try:
        yield db_instance
    finally:
        db_instance.close()


@pytest.fixture
def job_store() -> jobs_module.JobProgressStore:
    """A fresh job store per test."""
    return jobs_module.JobProgressStore()


@atexit.register
def _cleanup_test_data_dir() -> None:
    """Remove the temporary test data directory after the test session."""
    shutil.rmtree(_TEST_DATA_DIR, ignore_errors=True)
