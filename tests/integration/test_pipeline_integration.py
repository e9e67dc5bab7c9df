from concurrent.futures import ThreadPoolExecutor
from pathlib import Path

import pytest

from image_pipeline.config.settings import Settings
from image_pipeline.consumer.consumer import build_consumer
from image_pipeline.consumer.result_handler import HandleOutcome, ResultHandler
from image_pipeline.database.connection import Database
from image_pipeline.database.repositories.processed_result_repository import (
    ProcessedResultRepository,
)
from image_pipeline.database.repositories.upload_repository import UploadRepository
from image_pipeline.exceptions import UploadNotFoundError
from image_pipeline.producer.upload_service import build_upload_service
from image_pipeline.query.query_service import build_query_service
from image_pipeline.queue.messages import (
    ResultMessage,
    encode_result_message,
    parse_work_message,
)
from image_pipeline.queue.transport import PostgresQueue


def _settings(test_settings: Settings, storage_root: Path, **overrides: object) -> Settings:
    return test_settings.model_copy(
        update={
            "storage_root": str(storage_root),
            "consumer_poll_interval_seconds": 0.01,
            "redelivery_backoff_seconds": 0,
            **overrides,
        }
    )


def _run_worker(queue: PostgresQueue, settings: Settings, **fields: object) -> int:
    """Play the external worker: take one work message and answer on the result queue."""
    delivery = queue.receive(settings.work_queue_name)
    assert delivery is not None
    work = parse_work_message(delivery.body)
    queue.publish(
        settings.result_queue_name,
        encode_result_message(ResultMessage(upload_id=work.upload_id, payload=dict(fields))),
    )
    queue.ack(delivery)
    return work.upload_id


def _handler(db: Database, queue: PostgresQueue, settings: Settings) -> ResultHandler:
    return ResultHandler(
        db, UploadRepository(db), ProcessedResultRepository(db), queue, settings
    )


@pytest.mark.integration
class TestUploadToResultScenario:
    def test_upload_is_linked_to_worker_result(
        self, db: Database, test_settings: Settings, storage_root: Path
    ) -> None:
        settings = _settings(test_settings, storage_root)
        queue = PostgresQueue(db, settings.message_visibility_timeout_seconds)
        upload = build_upload_service(settings, db).accept_upload("cat.jpg", b"\xff\xd8img")

        assert _run_worker(queue, settings, label="cat") == upload.id
        build_consumer(settings, db).run(max_messages=1)

        view = build_query_service(db).get_upload_with_result(upload.id)
        assert view.upload.original_name == "cat.jpg"
        assert view.processed_result is not None
        assert view.processed_result.upload_id == upload.id
        assert view.processed_result.payload == {"label": "cat"}
        assert view.upload.processed_result_id == view.processed_result.id
        assert queue.receive(settings.result_queue_name) is None

    def test_stored_bytes_are_at_storage_path(
        self, db: Database, test_settings: Settings, storage_root: Path
    ) -> None:
        settings = _settings(test_settings, storage_root)
        upload = build_upload_service(settings, db).accept_upload("cat.jpg", b"raw-bytes")

        assert Path(upload.storage_path).read_bytes() == b"raw-bytes"
        assert upload.stored_name.endswith(".jpg")


@pytest.mark.integration
class TestPersistBeforePublish:
    def test_upload_readable_when_work_message_observed(
        self, db: Database, test_settings: Settings, storage_root: Path
    ) -> None:
        settings = _settings(test_settings, storage_root)
        queue = PostgresQueue(db, 60)
        build_upload_service(settings, db).accept_upload("cat.jpg", b"img")

        delivery = queue.receive(settings.work_queue_name)

        assert delivery is not None
        work = parse_work_message(delivery.body)
        upload = UploadRepository(db).find_by_id(work.upload_id)
        assert upload.storage_path == work.image_path


@pytest.mark.integration
class TestIdempotentLinking:
    def test_duplicate_delivery_keeps_single_valid_link(
        self, db: Database, test_settings: Settings, storage_root: Path
    ) -> None:
        settings = _settings(test_settings, storage_root)
        queue = PostgresQueue(db, 60)
        upload = build_upload_service(settings, db).accept_upload("cat.jpg", b"img")
        body = encode_result_message(ResultMessage(upload_id=upload.id, payload={"label": "cat"}))
        queue.publish(settings.result_queue_name, body)
        queue.publish(settings.result_queue_name, body)

        build_consumer(settings, db).run(max_messages=2)

        query = build_query_service(db)
        view = query.get_upload_with_result(upload.id)
        results = query.list_processed_results()
        assert view.processed_result is not None
        assert view.upload.processed_result_id in {r.id for r in results}
        assert view.processed_result.id == max(r.id for r in results)
        assert queue.receive(settings.result_queue_name) is None

    def test_concurrent_duplicates_for_same_upload(
        self, db: Database, test_settings: Settings, storage_root: Path
    ) -> None:
        settings = _settings(test_settings, storage_root)
        queue = PostgresQueue(db, 60)
        upload = build_upload_service(settings, db).accept_upload("cat.jpg", b"img")
        body = encode_result_message(ResultMessage(upload_id=upload.id, payload={"label": "cat"}))
        for _ in range(4):
            queue.publish(settings.result_queue_name, body)
        deliveries = [queue.receive(settings.result_queue_name) for _ in range(4)]
        handler = _handler(db, queue, settings)

        with ThreadPoolExecutor(max_workers=4) as pool:
            outcomes = list(pool.map(handler.handle, deliveries))

        assert outcomes == [HandleOutcome.ACKED] * 4
        view = build_query_service(db).get_upload_with_result(upload.id)
        assert view.processed_result is not None
        assert view.processed_result.upload_id == upload.id


@pytest.mark.integration
class TestUnlinkedUpload:
    def test_unlinked_upload_returns_none_result(
        self, db: Database, test_settings: Settings, storage_root: Path
    ) -> None:
        settings = _settings(test_settings, storage_root)
        upload = build_upload_service(settings, db).accept_upload("dog.png", b"img")

        view = build_query_service(db).get_upload_with_result(upload.id)

        assert view.upload.id == upload.id
        assert view.processed_result is None

    def test_unknown_upload_raises_not_found(self, db: Database) -> None:
        with pytest.raises(UploadNotFoundError):
            build_query_service(db).get_upload_with_result(424242)


@pytest.mark.integration
class TestMissingLinkTarget:
    def test_message_is_not_acked_and_nothing_is_linked(
        self, db: Database, test_settings: Settings, storage_root: Path
    ) -> None:
        settings = _settings(test_settings, storage_root)
        queue = PostgresQueue(db, 60)
        queue.publish(
            settings.result_queue_name,
            encode_result_message(ResultMessage(upload_id=999, payload={"label": "cat"})),
        )
        delivery = queue.receive(settings.result_queue_name)
        assert delivery is not None

        outcome = _handler(db, queue, settings).handle(delivery)

        assert outcome is HandleOutcome.RELEASED
        assert build_query_service(db).list_processed_results() == []
        redelivered = queue.receive(settings.result_queue_name)
        assert redelivered is not None
        assert redelivered.id == delivery.id
        assert redelivered.delivery_count == 2

    def test_dead_lettered_after_attempt_limit(
        self, db: Database, test_settings: Settings, storage_root: Path
    ) -> None:
        settings = _settings(test_settings, storage_root, max_delivery_attempts=2)
        queue = PostgresQueue(db, 60)
        queue.publish(
            settings.result_queue_name,
            encode_result_message(ResultMessage(upload_id=999)),
        )

        build_consumer(settings, db).run(max_messages=2)

        assert queue.receive(settings.result_queue_name) is None
        dead = queue.list_dead_letters(settings.result_queue_name)
        assert len(dead) == 1
        assert dead[0].delivery_count == 2

    def test_malformed_message_is_dead_lettered(
        self, db: Database, test_settings: Settings, storage_root: Path
    ) -> None:
        settings = _settings(test_settings, storage_root)
        queue = PostgresQueue(db, 60)
        queue.publish(settings.result_queue_name, "{broken")

        build_consumer(settings, db).run(max_messages=1)

        assert queue.receive(settings.result_queue_name) is None
        assert queue.list_dead_letters(settings.result_queue_name)[0].body == "{broken"


@pytest.mark.integration
class TestConcurrentDistinctUploads:
    def test_each_upload_gets_its_own_record_and_message(
        self, db: Database, test_settings: Settings, storage_root: Path
    ) -> None:
        settings = _settings(test_settings, storage_root)
        service = build_upload_service(settings, db)
        names = [f"img{i}.jpg" for i in range(8)]

        with ThreadPoolExecutor(max_workers=4) as pool:
            uploads = list(pool.map(lambda name: service.accept_upload(name, b"x"), names))

        assert len({u.id for u in uploads}) == 8
        assert len({u.storage_path for u in uploads}) == 8

        queue = PostgresQueue(db, 60)
        for upload in uploads:
            _run_worker(queue, settings, label="any")
        build_consumer(settings, db).run(max_messages=8)

        query = build_query_service(db)
        for upload in uploads:
            view = query.get_upload_with_result(upload.id)
            assert view.processed_result is not None
            assert view.processed_result.upload_id == upload.id


@pytest.mark.integration
class TestUnstorablePayload:
    @pytest.mark.parametrize(
        "poison_fields", ['"score": NaN', '"score": Infinity', '"label": "a\\u0000b"']
    )
    def test_poison_payload_does_not_block_later_results(
        self, db: Database, test_settings: Settings, storage_root: Path, poison_fields: str
    ) -> None:
        settings = _settings(test_settings, storage_root)
        queue = PostgresQueue(db, 60)
        upload = build_upload_service(settings, db).accept_upload("cat.jpg", b"img")
        queue.publish(settings.result_queue_name, f'{{"uploadId": {upload.id}, {poison_fields}}}')
        queue.publish(
            settings.result_queue_name,
            encode_result_message(ResultMessage(upload_id=upload.id, payload={"label": "cat"})),
        )

        build_consumer(settings, db).run(max_messages=2)

        assert len(queue.list_dead_letters(settings.result_queue_name)) == 1
        view = build_query_service(db).get_upload_with_result(upload.id)
        assert view.processed_result is not None
        assert view.processed_result.payload == {"label": "cat"}
        assert queue.receive(settings.result_queue_name) is None


@pytest.mark.integration
class TestRedeliveryBackoff:
    def test_released_message_is_not_redelivered_immediately(
        self, db: Database, test_settings: Settings, storage_root: Path
    ) -> None:
        settings = _settings(test_settings, storage_root, redelivery_backoff_seconds=30)
        queue = PostgresQueue(db, 60)
        queue.publish(
            settings.result_queue_name,
            encode_result_message(ResultMessage(upload_id=999)),
        )
        delivery = queue.receive(settings.result_queue_name)
        assert delivery is not None

        outcome = _handler(db, queue, settings).handle(delivery)

        assert outcome is HandleOutcome.RELEASED
        assert queue.receive(settings.result_queue_name) is None
        assert queue.list_dead_letters(settings.result_queue_name) == []
