from enum import Enum

from image_pipeline.config.settings import Settings
from image_pipeline.database.connection import Database
from image_pipeline.database.models import Delivery, ProcessedResultRecord
from image_pipeline.database.repositories.processed_result_repository import (
    ProcessedResultRepository,
)
from image_pipeline.database.repositories.upload_repository import UploadRepository
from image_pipeline.exceptions import (
    MessageValidationError,
    PersistenceError,
    UploadNotFoundError,
)
from image_pipeline.logging.logger import Log
from image_pipeline.queue.messages import ResultMessage, parse_result_message
from image_pipeline.queue.transport import PostgresQueue


class HandleOutcome(Enum):
    ACKED = "acked"
    RELEASED = "released"
    DEAD_LETTERED = "dead_lettered"


class ResultHandler:
    """Handle one result message: parse -> persist + link -> ack.

    The ack happens only after the link transaction commits. Anything that
    fails before that leaves the message unacknowledged.
    """

    def __init__(
        self,
        db: Database,
        upload_repo: UploadRepository,
        result_repo: ProcessedResultRepository,
        queue: PostgresQueue,
        settings: Settings,
    ) -> None:
        self._db = db
        self._upload_repo = upload_repo
        self._result_repo = result_repo
        self._queue = queue
        self._settings = settings

    def handle(self, delivery: Delivery) -> HandleOutcome:
        """Process a single delivery.

        Raises:
            TransportError: if the queue cannot be reached to settle the message.
        """
        try:
            message = parse_result_message(delivery.body)
        except MessageValidationError as exc:
            Log.error(f"Malformed result message {delivery.id}: {exc}")
            self._queue.dead_letter(delivery, f"malformed: {exc}")
            return HandleOutcome.DEAD_LETTERED

        try:
            result = self._persist_and_link(message)
        except UploadNotFoundError as exc:
            return self._retry_or_dead_letter(delivery, f"link target missing: {exc}")
        except PersistenceError as exc:
            return self._retry_or_dead_letter(delivery, f"persistence failed: {exc}")

        self._queue.ack(delivery)
        Log.info(
            f"Processed result {result.id} linked to upload {result.upload_id} "
            f"(message {delivery.id})"
        )
        return HandleOutcome.ACKED

    def _persist_and_link(self, message: ResultMessage) -> ProcessedResultRecord:
        """Lock the upload, insert the result and point the upload at it, in one transaction."""
        with self._db.connection() as conn:
            try:
                self._upload_repo.lock_for_link(conn, message.upload_id)
                result = self._result_repo.create(conn, message.upload_id, message.payload)
                self._upload_repo.set_processed_result(conn, message.upload_id, result.id)
            except UploadNotFoundError:
                conn.rollback()
                raise
            conn.commit()
        return result

    def redelivery_delay(self, delivery_count: int) -> float:
        """Exponential backoff before the next delivery: base * 2^(count-1), capped."""
        delay = self._settings.redelivery_backoff_seconds * 2 ** max(delivery_count - 1, 0)
        return min(delay, self._settings.redelivery_backoff_max_seconds)

    def _retry_or_dead_letter(self, delivery: Delivery, reason: str) -> HandleOutcome:
        """Release the message with a delay until the attempt limit, then dead-letter it."""
        max_attempts = self._settings.max_delivery_attempts
        if delivery.delivery_count >= max_attempts:
            Log.error(
                f"Message {delivery.id} dead-lettered after "
                f"{delivery.delivery_count} deliveries: {reason}"
            )
            self._queue.dead_letter(delivery, reason)
            return HandleOutcome.DEAD_LETTERED

        delay = self.redelivery_delay(delivery.delivery_count)
        Log.warning(
            f"Message {delivery.id} not linked, redelivery in {delay}s "
            f"(delivery {delivery.delivery_count} of {max_attempts}): {reason}"
        )
        self._queue.release(delivery, delay)
        return HandleOutcome.RELEASED
