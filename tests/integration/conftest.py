import os
import uuid
from collections.abc import Generator
from typing import Any

import psycopg
import pytest

from harvester.config.settings import Settings
from harvester.database.connection import close_pool, get_connection, init_pool

BOOKS_TABLE = """
CREATE TABLE IF NOT EXISTS books (
    object_id text PRIMARY KEY,
    title text NOT NULL DEFAULT '',
    book_instance_id text NOT NULL DEFAULT '',
    base_url text,
    license text,
    in_circulation boolean NOT NULL DEFAULT true,
    draft boolean NOT NULL DEFAULT false,
    harvest_state text NOT NULL DEFAULT 'New',
    harvester_id text,
    harvester_major_version integer,
    harvester_minor_version integer,
    harvest_started_at timestamptz,
    last_uploaded timestamptz,
    tags text[],
    show jsonb,
    harvest_log text[],
    features text[],
    phash_of_first_content_image text,
    book_hash_from_images text,
    bloompub_version integer,
    subscription_descriptor text,
    updated_at timestamptz
)
"""


def _test_settings() -> Settings:
    os.environ.setdefault("DB_DATABASE", "bloomlibrary_test")
    return Settings()


@pytest.fixture(scope="session")
def test_settings() -> Settings:
    return _test_settings()


@pytest.fixture(scope="session")
def integration_pool(test_settings: Settings) -> Generator[None, None, None]:
    try:
        init_pool(test_settings)
        with get_connection() as conn:
            conn.execute(BOOKS_TABLE)
            conn.commit()
    except Exception as e:
        pytest.skip(f"PostgreSQL test DB not available: {e}. Set DB_* env to run.")
    try:
        yield
    finally:
        close_pool()


@pytest.fixture
def db_conn(integration_pool: None) -> Generator[psycopg.Connection[Any], None, None]:
    with get_connection() as conn:
        yield conn


@pytest.fixture
def integration_cleanup(integration_pool: None) -> Generator[list[str], None, None]:
    cleanup: list[str] = []
    yield cleanup
    if not cleanup:
        return
    with get_connection() as conn:
        with conn.cursor() as cur:
            cur.execute("DELETE FROM books WHERE object_id = ANY(%s)", (cleanup,))
        conn.commit()


@pytest.fixture
def seed_book(
    db_conn: psycopg.Connection[Any],
    integration_cleanup: list[str],
) -> str:
    object_id = f"it-{uuid.uuid4()}"
    with db_conn.cursor() as cur:
        cur.execute(
            """
            INSERT INTO books (object_id, title, base_url, harvest_state, tags, harvest_log)
            VALUES (%s, %s, %s, 'New', %s, %s)
            """,
            (
                object_id,
                "The Moon and the Cap",
                "https://s3.amazonaws.com/BloomLibraryBooks/u%40x.org%2fguid%2fMoon%2f",
                ["topic:Story Book"],
                [],
            ),
        )
    db_conn.commit()
    integration_cleanup.append(object_id)
    return object_id
