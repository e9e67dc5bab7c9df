from typing import Any

import psycopg
from psycopg.rows import dict_row
from psycopg.types.json import Jsonb

from image_pipeline.database.connection import Database
from image_pipeline.database.models import ProcessedResultRecord
from image_pipeline.exceptions import ProcessedResultNotFoundError

_COLUMNS = "id, upload_id, payload, created_at"


def _to_record(row: dict[str, Any]) -> ProcessedResultRecord:
    return ProcessedResultRecord(
        id=row["id"],
        upload_id=row["upload_id"],
        payload=row["payload"] or {},
        created_at=row["created_at"],
    )


class ProcessedResultRepository:
    """Database operations for the processed_results table."""

    def __init__(self, db: Database) -> None:
        self._db = db

    def create(
        self,
        conn: psycopg.Connection[Any],
        upload_id: int,
        payload: dict[str, Any],
    ) -> ProcessedResultRecord:
        """Insert a processed result inside the caller's transaction."""
        with conn.cursor(row_factory=dict_row) as cur:
            cur.execute(
                f"""
                INSERT INTO processed_results (upload_id, payload)
                VALUES (%s, %s)
                RETURNING {_COLUMNS}
                """,
                (upload_id, Jsonb(payload)),
            )
            row = cur.fetchone()

        if row is None:
            raise RuntimeError("INSERT INTO processed_results returned no row")
        return _to_record(row)

    def find_optional(self, result_id: int) -> ProcessedResultRecord | None:
        with self._db.connection() as conn:
            with conn.cursor(row_factory=dict_row) as cur:
                cur.execute(
                    f"SELECT {_COLUMNS} FROM processed_results WHERE id = %s",
                    (result_id,),
                )
                row = cur.fetchone()
        return _to_record(row) if row is not None else None

    def find_by_id(self, result_id: int) -> ProcessedResultRecord:
        """Find a processed result by ID.

        Raises:
            ProcessedResultNotFoundError: if no result with this ID exists.
        """
        record = self.find_optional(result_id)
        if record is None:
            raise ProcessedResultNotFoundError(f"Processed result {result_id} not found")
        return record

    def list_all(self) -> list[ProcessedResultRecord]:
        with self._db.connection() as conn:
            with conn.cursor(row_factory=dict_row) as cur:
                cur.execute(f"SELECT {_COLUMNS} FROM processed_results ORDER BY id")
                rows = cur.fetchall()
        return [_to_record(row) for row in rows]
