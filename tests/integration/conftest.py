import os
from collections.abc import Generator
from pathlib import Path
from typing import Any

import psycopg
import pytest

from app.config.settings import Settings
from app.database.connection import close_pool, get_connection, init_pool
from app.database.schema import create_schema
from app.staging.staging_area import LocalStagingArea


def _test_settings() -> Settings:
    os.environ.setdefault("DB_DATABASE", "logpipe_test")
    return Settings()


def _truncate_tables() -> None:
    with get_connection() as conn:
        conn.execute("TRUNCATE TABLE curated_events, raw_records, load_state RESTART IDENTITY")
        conn.commit()


@pytest.fixture(scope="session")
def test_settings() -> Settings:
    return _test_settings()


@pytest.fixture(scope="session")
def integration_pool(test_settings: Settings) -> Generator[None, None, None]:
    try:
        init_pool(test_settings)
        create_schema()
    except Exception as e:
        close_pool()
        pytest.skip(f"PostgreSQL test DB not available: {e}. Set DB_* env to a scratch database")
    try:
        yield
    finally:
        close_pool()


@pytest.fixture
def clean_db(integration_pool: None) -> Generator[None, None, None]:
    _truncate_tables()
    yield
    _truncate_tables()


@pytest.fixture
def db_conn(clean_db: None) -> Generator[psycopg.Connection[Any], None, None]:
    with get_connection() as conn:
        yield conn


@pytest.fixture
def staging_area(tmp_path: Path) -> LocalStagingArea:
    return LocalStagingArea(tmp_path / "staging")
