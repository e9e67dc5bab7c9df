from pathlib import Path

from image_pipeline.config.settings import Settings
from image_pipeline.database.connection import Database
from image_pipeline.database.models import UploadRecord
from image_pipeline.database.repositories.upload_repository import UploadRepository
from image_pipeline.exceptions import PersistenceError, UploadValidationError
from image_pipeline.logging.logger import Log
from image_pipeline.producer.producer import Producer
from image_pipeline.queue.transport import PostgresQueue
from image_pipeline.storage.file_storage import FileStorage


class UploadService:
    """Accepts an upload: store bytes -> persist record -> publish work.

    The record is committed before the work message is published. A failed
    publish leaves the upload persisted and unlinked.
    """

    def __init__(
        self,
        storage: FileStorage,
        upload_repo: UploadRepository,
        producer: Producer,
    ) -> None:
        self._storage = storage
        self._upload_repo = upload_repo
        self._producer = producer

    def accept_upload(self, original_name: str, data: bytes) -> UploadRecord:
        """Store, persist and enqueue one uploaded image.

        Raises:
            UploadValidationError: if the filename or content is empty.
            PersistenceError: if the upload record cannot be written.
            PublishError: if the work queue is unreachable (the upload is kept).
        """
        if not original_name or not original_name.strip():
            raise UploadValidationError("Upload is missing a filename")
        if not data:
            raise UploadValidationError(f"Upload '{original_name}' is empty")

        stored = self._storage.save(original_name, data)
        try:
            upload = self._upload_repo.create(
                stored_name=stored.stored_name,
                original_name=original_name,
                storage_path=str(stored.path),
            )
        except PersistenceError:
            self._storage.delete(stored.path)
            raise
        Log.info(f"Upload {upload.id} stored as {upload.stored_name}")

        self._producer.publish_work(upload.id, upload.storage_path)
        return upload


def build_upload_service(settings: Settings, db: Database) -> UploadService:
    """Build an UploadService with all required adapters."""
    queue = PostgresQueue(db, settings.message_visibility_timeout_seconds)
    return UploadService(
        storage=FileStorage(Path(settings.storage_root)),
        upload_repo=UploadRepository(db),
        producer=Producer(queue, settings),
    )
