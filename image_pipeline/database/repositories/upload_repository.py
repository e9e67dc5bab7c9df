from typing import Any

import psycopg
from psycopg.rows import dict_row

from image_pipeline.database.connection import Database
from image_pipeline.database.models import UploadRecord
from image_pipeline.exceptions import UploadNotFoundError

_COLUMNS = "id, stored_name, original_name, storage_path, processed_result_id, created_at"


def _to_record(row: dict[str, Any]) -> UploadRecord:
    return UploadRecord(
        id=row["id"],
        stored_name=row["stored_name"],
        original_name=row["original_name"],
        storage_path=row["storage_path"],
        processed_result_id=row["processed_result_id"],
        created_at=row["created_at"],
    )


class UploadRepository:
    """Database operations for the uploads table."""

    def __init__(self, db: Database) -> None:
        self._db = db

    def create(self, stored_name: str, original_name: str, storage_path: str) -> UploadRecord:
        """Insert an upload and commit, so it is readable before anything references it."""
        with self._db.connection() as conn:
            with conn.cursor(row_factory=dict_row) as cur:
                cur.execute(
                    f"""
                    INSERT INTO uploads (stored_name, original_name, storage_path)
                    VALUES (%s, %s, %s)
                    RETURNING {_COLUMNS}
                    """,
                    (stored_name, original_name, storage_path),
                )
                row = cur.fetchone()
            conn.commit()

        if row is None:
            raise RuntimeError("INSERT INTO uploads returned no row")
        return _to_record(row)

    def find_by_id(self, upload_id: int) -> UploadRecord:
        """Find an upload by ID.

        Raises:
            UploadNotFoundError: if no upload with this ID exists.
        """
        with self._db.connection() as conn:
            with conn.cursor(row_factory=dict_row) as cur:
                cur.execute(
                    f"SELECT {_COLUMNS} FROM uploads WHERE id = %s",
                    (upload_id,),
                )
                row = cur.fetchone()

        if row is None:
            raise UploadNotFoundError(f"Upload {upload_id} not found")
        return _to_record(row)

    def list_all(self) -> list[UploadRecord]:
        """Return a snapshot of all uploads in insertion order."""
        with self._db.connection() as conn:
            with conn.cursor(row_factory=dict_row) as cur:
                cur.execute(f"SELECT {_COLUMNS} FROM uploads ORDER BY id")
                rows = cur.fetchall()
        return [_to_record(row) for row in rows]

    def lock_for_link(self, conn: psycopg.Connection[Any], upload_id: int) -> UploadRecord:
        """Lock the upload row for the rest of the caller's transaction.

        Concurrent links to the same upload queue up behind this lock.

        Raises:
            UploadNotFoundError: if no upload with this ID exists.
        """
        with conn.cursor(row_factory=dict_row) as cur:
            cur.execute(
                f"SELECT {_COLUMNS} FROM uploads WHERE id = %s FOR UPDATE",
                (upload_id,),
            )
            row = cur.fetchone()

        if row is None:
            raise UploadNotFoundError(f"Upload {upload_id} not found")
        return _to_record(row)

    def set_processed_result(
        self,
        conn: psycopg.Connection[Any],
        upload_id: int,
        processed_result_id: int,
    ) -> None:
        """Point the upload at its processed result, replacing any earlier link.

        Runs inside the caller's transaction; the caller commits.
        """
        with conn.cursor() as cur:
            cur.execute(
                """
                UPDATE uploads
                SET processed_result_id = %s
                WHERE id = %s
                """,
                (processed_result_id, upload_id),
            )
            if cur.rowcount == 0:
                raise UploadNotFoundError(f"Upload {upload_id} not found")
