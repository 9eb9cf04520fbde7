from __future__ import annotations

import os
import sys
from logging.config import fileConfig

from alembic import context
from sqlalchemy import engine_from_config, pool

# Make `propmarket` importable when `alembic` is run from backend/.
sys.path.append(os.path.abspath(os.path.join(os.path.dirname(__file__), "..")))

from propmarket.config import database_url  # noqa: E402
from propmarket.models import Base  # noqa: E402


config = context.config

if config.config_file_name is not None:
    fileConfig(config.config_file_name)


def _target_url() -> str:
    """
    `alembic -x url=...` wins over the environment, so a one-off migration can
    point at another database without touching DATABASE_URL.
    """
    return context.get_x_argument(as_dictionary=True).get("url") or database_url()


def _configure(url: str, **kw) -> None:
    # sqlite cannot ALTER most constraints in place; batch mode rebuilds the table.
    context.configure(
        target_metadata=Base.metadata,
        compare_type=True,
        render_as_batch=url.startswith("sqlite"),
        **kw,
    )


def _offline(url: str) -> None:
    _configure(url, url=url, literal_binds=True, dialect_opts={"paramstyle": "named"})
    with context.begin_transaction():
        context.run_migrations()


def _online(url: str) -> None:
    section = dict(config.get_section(config.config_ini_section) or {})
    section["sqlalchemy.url"] = url
    engine = engine_from_config(section, prefix="sqlalchemy.", poolclass=pool.NullPool, future=True)
    try:
        with engine.connect() as connection:
            _configure(url, connection=connection)
            with context.begin_transaction():
                context.run_migrations()
    finally:
        engine.dispose()


_url = _target_url()
if context.is_offline_mode():
    _offline(_url)
else:
    _online(_url)
