from image_pipeline.database.connection import Database

SCHEMA_STATEMENTS: tuple[str, ...] = (
    """
    CREATE TABLE IF NOT EXISTS uploads (
        id BIGSERIAL PRIMARY KEY,
        stored_name TEXT NOT NULL,
        original_name TEXT NOT NULL,
        storage_path TEXT NOT NULL,
        processed_result_id BIGINT,
        created_at TIMESTAMPTZ NOT NULL DEFAULT NOW()
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS processed_results (
        id BIGSERIAL PRIMARY KEY,
        upload_id BIGINT NOT NULL REFERENCES uploads (id),
        payload JSONB NOT NULL DEFAULT '{}'::jsonb,
        created_at TIMESTAMPTZ NOT NULL DEFAULT NOW()
    )
    """,
    """
    CREATE INDEX IF NOT EXISTS processed_results_upload_id_idx
        ON processed_results (upload_id)
    """,
    """
    CREATE TABLE IF NOT EXISTS queue_messages (
        id BIGSERIAL PRIMARY KEY,
        queue_name TEXT NOT NULL,
        body TEXT NOT NULL,
        delivery_count INTEGER NOT NULL DEFAULT 0,
        locked_at TIMESTAMPTZ,
        visible_after TIMESTAMPTZ,
        created_at TIMESTAMPTZ NOT NULL DEFAULT NOW()
    )
    """,
    """
    ALTER TABLE queue_messages ADD COLUMN IF NOT EXISTS visible_after TIMESTAMPTZ
    """,
    """
    CREATE INDEX IF NOT EXISTS queue_messages_queue_name_id_idx
        ON queue_messages (queue_name, id)
    """,
    """
    CREATE TABLE IF NOT EXISTS dead_letters (
        id BIGSERIAL PRIMARY KEY,
        queue_name TEXT NOT NULL,
        body TEXT NOT NULL,
        delivery_count INTEGER NOT NULL,
        reason TEXT NOT NULL,
        created_at TIMESTAMPTZ NOT NULL DEFAULT NOW()
    )
    """,
)


def ensure_schema(db: Database) -> None:
    """Create all pipeline tables if they do not exist yet."""
    with db.connection() as conn:
        for statement in SCHEMA_STATEMENTS:
            conn.execute(statement)
        conn.commit()
