"""Alembic environment for the PicVote schema.

The target database is ``Settings().database_url`` (``DATABASE_URL``, ``.env``
honoured); ``alembic -x url=...`` overrides it for one-off runs. SQLite is
migrated in batch mode since it cannot alter constraints in place.
"""
import sys
from pathlib import Path

from alembic import context
from dotenv import load_dotenv
from sqlalchemy import create_engine, pool

load_dotenv()

# project root on sys.path before importing app
sys.path.append(str(Path(__file__).resolve().parents[1]))

from app.config import Settings  # noqa: E402
from app.models import Base  # noqa: E402

target_metadata = Base.metadata
config = context.config


def database_url() -> str:
    override = context.get_x_argument(as_dictionary=True).get("url")
    return override or Settings().database_url


url = database_url()
config.set_main_option("sqlalchemy.url", url)

COMPARE_OPTS = {"compare_type": True, "compare_server_default": True}


def run_migrations_offline() -> None:
    context.configure(
        url=url,
        target_metadata=target_metadata,
        literal_binds=True,
        dialect_opts={"paramstyle": "named"},
        render_as_batch=url.startswith("sqlite"),
        **COMPARE_OPTS,
    )
    with context.begin_transaction():
        context.run_migrations()


def run_migrations_online() -> None:
    connectable = create_engine(url, poolclass=pool.NullPool)
    with connectable.connect() as connection:
        context.configure(
            connection=connection,
            target_metadata=target_metadata,
            render_as_batch=connection.dialect.name == "sqlite",
            **COMPARE_OPTS,
        )
        with context.begin_transaction():
            context.run_migrations()


if context.is_offline_mode():
    run_migrations_offline()
else:
    run_migrations_online()
