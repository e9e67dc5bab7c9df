from dataclasses import dataclass, field
from datetime import datetime
from typing import Any


@dataclass(frozen=True)
class UploadRecord:
    """Represents a row from the uploads table."""

    id: int
    stored_name: str
    original_name: str
    storage_path: str
    processed_result_id: int | None = None
    created_at: datetime | None = None


@dataclass(frozen=True)
class ProcessedResultRecord:
    """Represents a row from the processed_results table."""

    id: int
    upload_id: int
    payload: dict[str, Any] = field(default_factory=dict)
    created_at: datetime | None = None


@dataclass(frozen=True)
class Delivery:
    """A claimed queue message awaiting ack, release or dead-lettering."""

    id: int
    queue_name: str
    body: str
    delivery_count: int


@dataclass(frozen=True)
class DeadLetterRecord:
    """Represents a row from the dead_letters table."""

    id: int
    queue_name: str
    body: str
    delivery_count: int
    reason: str
    created_at: datetime | None = None
