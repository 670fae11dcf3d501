from collections.abc import Generator
from contextlib import contextmanager
from typing import Any

import psycopg
from psycopg.conninfo import make_conninfo
from psycopg_pool import ConnectionPool

from harvester.config.settings import Settings

_pool: ConnectionPool | None = None


def init_pool(settings: Settings) -> None:
    """Open the global catalog connection pool."""
    global _pool  # noqa: PLW0603
    conninfo = make_conninfo(
        host=settings.db_host,
        port=settings.db_port,
        dbname=settings.db_database,
        user=settings.db_username,
        password=settings.db_password,
        application_name=f"harvester-{settings.app_env}",
    )
    # One connection for processing, one for the shutdown write-back.
    _pool = ConnectionPool(conninfo, min_size=1, max_size=2, open=True)


def close_pool() -> None:
    """Close the global catalog connection pool."""
    global _pool  # noqa: PLW0603
    if _pool is not None:
        _pool.close()
        _pool = None


@contextmanager
def get_connection() -> Generator[psycopg.Connection[Any], None, None]:
    """Yield a pooled catalog connection. Caller manages commit/rollback."""
    if _pool is None:
        raise RuntimeError("Catalog pool not initialized. Call init_pool() first.")
    with _pool.connection() as conn:
        yield conn
