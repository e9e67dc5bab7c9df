import os
from collections.abc import Generator
from pathlib import Path

import psycopg
import pytest

from image_pipeline.config.settings import Settings
from image_pipeline.database.connection import Database, build_conninfo
from image_pipeline.database.schema import ensure_schema


def _test_settings() -> Settings:
    os.environ.setdefault("DB_DATABASE", "image_uploader_test")
    return Settings()


@pytest.fixture(scope="session")
def test_settings() -> Settings:
    return _test_settings()


@pytest.fixture(scope="session")
def database(test_settings: Settings) -> Generator[Database, None, None]:
    try:
        psycopg.connect(build_conninfo(test_settings), connect_timeout=3).close()
    except psycopg.Error as e:
        pytest.skip(f"PostgreSQL test DB not available: {e}. Set DB_* env to point at one")
    with Database(test_settings) as db:
        ensure_schema(db)
        yield db


@pytest.fixture
def db(database: Database) -> Generator[Database, None, None]:
    """Yield the shared database with all pipeline tables emptied."""
    with database.connection() as conn:
        conn.execute(
            "TRUNCATE uploads, processed_results, queue_messages, dead_letters "
            "RESTART IDENTITY CASCADE"
        )
        conn.commit()
    yield database


@pytest.fixture
def storage_root(tmp_path: Path) -> Path:
    return tmp_path / "uploads"
