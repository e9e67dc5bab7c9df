from image_pipeline.config.settings import Settings
from image_pipeline.exceptions import PublishError, TransportError
from image_pipeline.logging.logger import Log
from image_pipeline.queue.messages import WorkMessage, encode_work_message
from image_pipeline.queue.transport import PostgresQueue


class Producer:
    """Publishes work descriptors for persisted uploads to the work queue."""

    def __init__(self, queue: PostgresQueue, settings: Settings) -> None:
        self._queue = queue
        self._queue_name = settings.work_queue_name

    def publish_work(self, upload_id: int, storage_path: str) -> int:
        """Publish {uploadId, imagePath} and return the queue message ID.

        The upload must already be committed.

        Raises:
            PublishError: if the work queue is unreachable.
        """
        body = encode_work_message(WorkMessage(upload_id=upload_id, image_path=storage_path))
        try:
            message_id = self._queue.publish(self._queue_name, body)
        except TransportError as exc:
            Log.error(f"Failed to publish work for upload {upload_id}: {exc}")
            raise PublishError(f"Upload {upload_id} could not be queued: {exc}") from exc
        Log.info(f"Upload {upload_id} sent to {self._queue_name} as message {message_id}")
        return message_id
