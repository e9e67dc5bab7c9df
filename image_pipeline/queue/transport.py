from psycopg.rows import dict_row

from image_pipeline.database.connection import Database
from image_pipeline.database.models import DeadLetterRecord, Delivery
from image_pipeline.exceptions import PersistenceError, TransportError
from image_pipeline.logging.logger import Log


class PostgresQueue:
    """Durable at-least-once queue stored in the queue_messages table.

    A received message stays locked until it is acked, released or
    dead-lettered. A lock older than the visibility timeout is treated as
    abandoned and the message becomes deliverable again.
    """

    def __init__(self, db: Database, visibility_timeout_seconds: int) -> None:
        self._db = db
        self._visibility_timeout_seconds = visibility_timeout_seconds

    def publish(self, queue_name: str, body: str) -> int:
        """Enqueue a message and return its ID once it is durable.

        Raises:
            TransportError: if the queue cannot be reached.
        """
        try:
            with self._db.connection() as conn:
                with conn.cursor() as cur:
                    cur.execute(
                        """
                        INSERT INTO queue_messages (queue_name, body)
                        VALUES (%s, %s)
                        RETURNING id
                        """,
                        (queue_name, body),
                    )
                    row = cur.fetchone()
                conn.commit()
        except PersistenceError as exc:
            raise TransportError(f"Cannot publish to '{queue_name}': {exc}") from exc

        if row is None:
            raise TransportError(f"Publish to '{queue_name}' returned no message id")
        Log.debug(f"Published message {row[0]} to {queue_name}")
        return int(row[0])

    def receive(self, queue_name: str) -> Delivery | None:
        """Claim the oldest deliverable message using SELECT FOR UPDATE SKIP LOCKED.

        Raises:
            TransportError: if the queue cannot be reached.
        """
        try:
            with self._db.connection() as conn:
                with conn.cursor(row_factory=dict_row) as cur:
                    cur.execute(
                        """
                        SELECT id, queue_name, body, delivery_count
                        FROM queue_messages
                        WHERE queue_name = %s
                          AND (visible_after IS NULL OR visible_after <= NOW())
                          AND (locked_at IS NULL
                               OR locked_at < NOW() - %s * INTERVAL '1 second')
                        ORDER BY id
                        LIMIT 1
                        FOR UPDATE SKIP LOCKED
                        """,
                        (queue_name, self._visibility_timeout_seconds),
                    )
                    row = cur.fetchone()

                if row is None:
                    conn.commit()
                    return None

                conn.execute(
                    """
                    UPDATE queue_messages
                    SET locked_at = NOW(), delivery_count = delivery_count + 1
                    WHERE id = %s
                    """,
                    (row["id"],),
                )
                conn.commit()
        except PersistenceError as exc:
            raise TransportError(f"Cannot receive from '{queue_name}': {exc}") from exc

        return Delivery(
            id=row["id"],
            queue_name=row["queue_name"],
            body=row["body"],
            delivery_count=row["delivery_count"] + 1,
        )

    def ack(self, delivery: Delivery) -> None:
        """Delete a handled message. Must only be called after its effects are durable."""
        try:
            with self._db.connection() as conn:
                with conn.cursor() as cur:
                    cur.execute("DELETE FROM queue_messages WHERE id = %s", (delivery.id,))
                    deleted = cur.rowcount
                conn.commit()
        except PersistenceError as exc:
            raise TransportError(f"Cannot ack message {delivery.id}: {exc}") from exc

        if deleted == 0:
            Log.warning(f"Message {delivery.id} was already acknowledged")

    def release(self, delivery: Delivery, delay_seconds: float = 0) -> None:
        """Unlock a message so it is redelivered once delay_seconds have passed."""
        try:
            with self._db.connection() as conn:
                conn.execute(
                    """
                    UPDATE queue_messages
                    SET locked_at = NULL,
                        visible_after = NOW() + %s * INTERVAL '1 second'
                    WHERE id = %s
                    """,
                    (delay_seconds, delivery.id),
                )
                conn.commit()
        except PersistenceError as exc:
            raise TransportError(f"Cannot release message {delivery.id}: {exc}") from exc

    def dead_letter(self, delivery: Delivery, reason: str) -> None:
        """Move a message to dead_letters so it is never redelivered."""
        try:
            with self._db.connection() as conn:
                conn.execute(
                    """
                    INSERT INTO dead_letters (queue_name, body, delivery_count, reason)
                    VALUES (%s, %s, %s, %s)
                    """,
                    (delivery.queue_name, delivery.body, delivery.delivery_count, reason),
                )
                conn.execute("DELETE FROM queue_messages WHERE id = %s", (delivery.id,))
                conn.commit()
        except PersistenceError as exc:
            raise TransportError(
                f"Cannot dead-letter message {delivery.id}: {exc}"
            ) from exc
        Log.warning(f"Message {delivery.id} from {delivery.queue_name} dead-lettered: {reason}")

    def list_dead_letters(self, queue_name: str) -> list[DeadLetterRecord]:
        try:
            with self._db.connection() as conn:
                with conn.cursor(row_factory=dict_row) as cur:
                    cur.execute(
                        """
                        SELECT id, queue_name, body, delivery_count, reason, created_at
                        FROM dead_letters
                        WHERE queue_name = %s
                        ORDER BY id
                        """,
                        (queue_name,),
                    )
                    rows = cur.fetchall()
        except PersistenceError as exc:
            raise TransportError(f"Cannot read dead letters of '{queue_name}': {exc}") from exc

        return [
            DeadLetterRecord(
                id=row["id"],
                queue_name=row["queue_name"],
                body=row["body"],
                delivery_count=row["delivery_count"],
                reason=row["reason"],
                created_at=row["created_at"],
            )
            for row in rows
        ]
