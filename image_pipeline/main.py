import signal
from types import FrameType

from image_pipeline.config.settings import Settings
from image_pipeline.consumer.consumer import Consumer, build_consumer
from image_pipeline.database.connection import Database
from image_pipeline.database.schema import ensure_schema
from image_pipeline.logging.logger import Log


def install_signal_handlers(consumer: Consumer) -> None:
    """Route SIGINT/SIGTERM to a graceful consumer stop."""

    def _request_stop(signum: int, _frame: FrameType | None) -> None:
        Log.info(f"Received signal {signum}, stopping consumer")
        consumer.stop()

    signal.signal(signal.SIGINT, _request_stop)
    signal.signal(signal.SIGTERM, _request_stop)


def main() -> None:
    """Entry point: open database -> ensure schema -> run result consumer."""
    settings = Settings()
    Log.configure(settings.log_level)

    with Database(settings) as db:
        ensure_schema(db)
        consumer = build_consumer(settings, db)
        install_signal_handlers(consumer)
        consumer.run()


if __name__ == "__main__":
    main()
