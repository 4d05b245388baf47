import pathlib
import sys
from logging.config import fileConfig

from sqlalchemy import create_engine

from alembic import context

sys.path.append(str(pathlib.Path(__file__).resolve().parent.parent))

import src.models.db  # noqa: F401
from src.config.settings import get_data_path

alembic_config = context.config
if alembic_config.config_file_name is not None:
    fileConfig(alembic_config.config_file_name)

# ReelSyncDB passes its own URL, the CLI falls back to the data path
db_url = alembic_config.get_main_option("sqlalchemy.url") or (
    f"sqlite:///{get_data_path() / 'reelsync.db'}"
)
alembic_config.set_main_option("sqlalchemy.url", db_url)

# SQLite cannot ALTER most columns in place
MIGRATION_OPTIONS = {
    "target_metadata": src.models.db.Base.metadata,
    "compare_type": True,
    "render_as_batch": True,
}


def run_offline() -> None:
    """Emit the migration SQL without connecting."""
    context.configure(
        url=db_url,
        literal_binds=True,
        dialect_opts={"paramstyle": "named"},
        **MIGRATION_OPTIONS,
    )
    with context.begin_transaction():
        context.run_migrations()


def run_online() -> None:
    engine = create_engine(db_url, future=True)
    try:
        with engine.connect() as connection:
            context.configure(connection=connection, **MIGRATION_OPTIONS)
            with context.begin_transaction():
                context.run_migrations()
    finally:
        engine.dispose()


if context.is_offline_mode():
    run_offline()
else:
    run_online()
