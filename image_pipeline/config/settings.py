from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application configuration loaded from environment variables."""

    model_config = SettingsConfigDict(env_file=".env", extra="ignore")

    app_env: str = "dev"
    log_level: str = "INFO"

    db_host: str = "localhost"
    db_port: int = 5432
    db_database: str = "image_uploader"
    db_username: str = "image_uploader"
    db_password: str = "secret"
    db_pool_min_size: int = 1
    db_pool_max_size: int = 10

    storage_root: str = "uploads"

    work_queue_name: str = "dataProcessingQueue"
    result_queue_name: str = "processedDataQueue"

    max_delivery_attempts: int = 5
    redelivery_backoff_seconds: float = 1.0
    redelivery_backoff_max_seconds: float = 60.0
    message_visibility_timeout_seconds: int = 60
    consumer_poll_interval_seconds: float = 1.0
    reconnect_backoff_seconds: float = 1.0
    reconnect_backoff_max_seconds: float = 30.0
