from collections.abc import Generator
from contextlib import contextmanager
from types import TracebackType
from typing import Any

import psycopg
from psycopg_pool import ConnectionPool

from image_pipeline.config.settings import Settings
from image_pipeline.exceptions import PersistenceError


def build_conninfo(settings: Settings) -> str:
    """Build a libpq connection string from settings."""
    return (
        f"host={settings.db_host} "
        f"port={settings.db_port} "
        f"dbname={settings.db_database} "
        f"user={settings.db_username} "
        f"password={settings.db_password}"
    )


class Database:
    """Owned handle over a connection pool, opened at start and closed at shutdown.

    The same handle is shared by the producer, the consumer and the query layer
    of a process. Use it as a context manager to guarantee release.
    """

    def __init__(self, settings: Settings) -> None:
        self._settings = settings
        self._pool: ConnectionPool | None = None

    @property
    def is_open(self) -> bool:
        return self._pool is not None

    def open(self) -> None:
        """Open the pool. Calling open on an already open handle is a no-op."""
        if self._pool is not None:
            return
        self._pool = ConnectionPool(
            build_conninfo(self._settings),
            min_size=self._settings.db_pool_min_size,
            max_size=self._settings.db_pool_max_size,
            open=True,
        )

    def close(self) -> None:
        if self._pool is not None:
            self._pool.close()
            self._pool = None

    def __enter__(self) -> "Database":
        self.open()
        return self

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        tb: TracebackType | None,
    ) -> None:
        self.close()

    @contextmanager
    def connection(self) -> Generator[psycopg.Connection[Any], None, None]:
        """Yield a pooled connection. Caller manages commit/rollback.

        Raises:
            RuntimeError: if the handle has not been opened.
            PersistenceError: on any database driver error inside the block.
        """
        if self._pool is None:
            raise RuntimeError("Database not open. Call Database.open() first.")
        try:
            with self._pool.connection() as conn:
                yield conn
        except psycopg.Error as exc:
            raise PersistenceError(str(exc)) from exc
