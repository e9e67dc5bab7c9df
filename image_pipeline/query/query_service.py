from dataclasses import dataclass

from image_pipeline.database.connection import Database
from image_pipeline.database.models import ProcessedResultRecord, UploadRecord
from image_pipeline.database.repositories.processed_result_repository import (
    ProcessedResultRepository,
)
from image_pipeline.database.repositories.upload_repository import UploadRepository


@dataclass(frozen=True)
class UploadWithResult:
    upload: UploadRecord
    processed_result: ProcessedResultRecord | None = None


class QueryService:
    """Read-only views over uploads and their processed results.

    Reads are not synchronized with the consumer; a result may appear
    at any time after its upload.
    """

    def __init__(
        self,
        upload_repo: UploadRepository,
        result_repo: ProcessedResultRepository,
    ) -> None:
        self._upload_repo = upload_repo
        self._result_repo = result_repo

    def get_upload(self, upload_id: int) -> UploadRecord:
        return self._upload_repo.find_by_id(upload_id)

    def list_uploads(self) -> list[UploadRecord]:
        return self._upload_repo.list_all()

    def get_upload_with_result(self, upload_id: int) -> UploadWithResult:
        """Join an upload with its linked result. An unlinked upload has processed_result None.

        Raises:
            UploadNotFoundError: if no upload with this ID exists.
        """
        upload = self._upload_repo.find_by_id(upload_id)
        if upload.processed_result_id is None:
            return UploadWithResult(upload=upload)
        result = self._result_repo.find_optional(upload.processed_result_id)
        return UploadWithResult(upload=upload, processed_result=result)

    def get_processed_result(self, result_id: int) -> ProcessedResultRecord:
        return self._result_repo.find_by_id(result_id)

    def list_processed_results(self) -> list[ProcessedResultRecord]:
        return self._result_repo.list_all()


def build_query_service(db: Database) -> QueryService:
    return QueryService(UploadRepository(db), ProcessedResultRepository(db))
