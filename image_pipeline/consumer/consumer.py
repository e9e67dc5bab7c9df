import threading

from image_pipeline.config.settings import Settings
from image_pipeline.consumer.result_handler import ResultHandler
from image_pipeline.database.connection import Database
from image_pipeline.database.repositories.processed_result_repository import (
    ProcessedResultRepository,
)
from image_pipeline.database.repositories.upload_repository import UploadRepository
from image_pipeline.exceptions import TransportError
from image_pipeline.logging.logger import Log
from image_pipeline.queue.transport import PostgresQueue


class Consumer:
    """Receive loop over the result queue: receive -> handle -> repeat until stopped."""

    def __init__(
        self,
        queue: PostgresQueue,
        handler: ResultHandler,
        settings: Settings,
    ) -> None:
        self._queue = queue
        self._handler = handler
        self._settings = settings
        self._stop_event = threading.Event()

    @property
    def stopped(self) -> bool:
        return self._stop_event.is_set()

    def stop(self) -> None:
        """Request shutdown. The message being handled, if any, is finished first."""
        self._stop_event.set()

    def run(self, max_messages: int | None = None) -> None:
        """Main receive loop. Runs until stop() or interrupt.

        If max_messages is set, stop after handling that many messages (for testing).
        """
        queue_name = self._settings.result_queue_name
        Log.info(f"Consumer started, listening on {queue_name}")
        handled = 0
        backoff = self._settings.reconnect_backoff_seconds
        try:
            while not self._stop_event.is_set():
                if max_messages is not None and handled >= max_messages:
                    break
                try:
                    delivery = self._queue.receive(queue_name)
                except TransportError as exc:
                    Log.warning(f"Result queue unavailable, retrying in {backoff}s: {exc}")
                    self._stop_event.wait(backoff)
                    backoff = min(backoff * 2, self._settings.reconnect_backoff_max_seconds)
                    continue
                backoff = self._settings.reconnect_backoff_seconds

                if delivery is None:
                    Log.debug("No messages available, sleeping")
                    self._stop_event.wait(self._settings.consumer_poll_interval_seconds)
                    continue

                try:
                    self._handler.handle(delivery)
                except TransportError as exc:
                    # Unsettled messages are redelivered after the visibility timeout.
                    Log.warning(f"Could not settle message {delivery.id}: {exc}")
                except Exception:
                    Log.exception(f"Unexpected error handling message {delivery.id}")
                handled += 1
        except KeyboardInterrupt:
            Log.info("Consumer shutting down gracefully")
        Log.info(f"Consumer stopped after {handled} messages")


def build_consumer(settings: Settings, db: Database) -> Consumer:
    """Build a Consumer with all required adapters."""
    queue = PostgresQueue(db, settings.message_visibility_timeout_seconds)
    handler = ResultHandler(
        db=db,
        upload_repo=UploadRepository(db),
        result_repo=ProcessedResultRepository(db),
        queue=queue,
        settings=settings,
    )
    return Consumer(queue, handler, settings)
