"""SQLite catalog store for ReelSync."""

from __future__ import annotations

from pathlib import Path
from types import TracebackType

from sqlalchemy import create_engine, event
from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session, sessionmaker

from src import __file__ as src_file
from src.config.settings import get_config
from src.exceptions import DataPathError

__all__ = ["ReelSyncDB", "db"]

DB_FILENAME = "reelsync.db"

SQLITE_PRAGMAS = (
    "journal_mode=WAL",
    "synchronous=NORMAL",
    "temp_store=MEMORY",
    "cache_size=-20000",
    "foreign_keys=ON",
)


def _apply_pragmas(dbapi_connection, _connection_record) -> None:
    cursor = dbapi_connection.cursor()
    try:
        for pragma in SQLITE_PRAGMAS:
            cursor.execute(f"PRAGMA {pragma};")
    finally:
        cursor.close()


def _ensure_data_dir(path: Path) -> None:
    if path.is_file():
        raise DataPathError(
            f"The data path '{path}' is a file, delete it or pick another folder"
        )
    path.mkdir(parents=True, exist_ok=True)


def _upgrade_schema(url: str) -> None:
    """Run every pending Alembic migration against ``url``."""
    from alembic import command
    from alembic.config import Config

    alembic_cfg = Config()
    alembic_cfg.set_main_option(
        "script_location", str(Path(src_file).resolve().parent.parent / "alembic")
    )
    alembic_cfg.set_main_option("sqlalchemy.url", url)
    command.upgrade(alembic_cfg, "head")


class ReelSyncDB:
    """Owns the engine and hands out one session per ``with`` block.

    Every bulk write opens its own context, so each batch commits or rolls
    back on its own. Leaving the block with an exception rolls back whatever
    was not committed.

    Args:
        data_path (Path): Directory holding ``reelsync.db``

    Raises:
        DataPathError: If ``data_path`` points at a file
    """

    def __init__(self, data_path: Path) -> None:
        # Registers every table on the shared metadata
        import src.models.db  # noqa: F401

        _ensure_data_dir(data_path)
        self.data_path = data_path
        self.db_path = data_path / DB_FILENAME
        self.url = f"sqlite:///{self.db_path}"

        self.engine: Engine = create_engine(
            self.url,
            connect_args={"check_same_thread": False},
            pool_pre_ping=True,
            future=True,
        )
        event.listen(self.engine, "connect", _apply_pragmas)
        self._session_factory = sessionmaker(
            bind=self.engine,
            autoflush=False,
            expire_on_commit=False,
            future=True,
        )
        self._session: Session | None = None

        _upgrade_schema(self.url)

    @property
    def session(self) -> Session:
        if self._session is None:
            self._session = self._session_factory()
        return self._session

    def __enter__(self) -> ReelSyncDB:
        self._session = self._session_factory()
        return self

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc_val: BaseException | None,
        exc_tb: TracebackType | None,
    ) -> None:
        session, self._session = self._session, None
        if session is None:
            return
        if exc_type is not None:
            session.rollback()
        session.close()


_db: ReelSyncDB | None = None


def db() -> ReelSyncDB:
    """Return the process-wide store, migrating it on first use."""
    global _db
    if _db is None:
        _db = ReelSyncDB(get_config().data_path)
    return _db
