"""Wire formats for the work queue and the result queue.

Work message (producer -> worker): {"uploadId": <int>, "imagePath": <str>}
Result message (worker -> consumer): {"uploadId": <int>, ...opaque fields}
"""

import json
from dataclasses import dataclass, field
from typing import Any

from image_pipeline.exceptions import MessageValidationError

UPLOAD_ID_KEY = "uploadId"
IMAGE_PATH_KEY = "imagePath"


@dataclass(frozen=True)
class WorkMessage:
    upload_id: int
    image_path: str


@dataclass(frozen=True)
class ResultMessage:
    """A processed result as emitted by the worker. payload holds every field but uploadId."""

    upload_id: int
    payload: dict[str, Any] = field(default_factory=dict)


def encode_work_message(message: WorkMessage) -> str:
    return json.dumps({UPLOAD_ID_KEY: message.upload_id, IMAGE_PATH_KEY: message.image_path})


def parse_work_message(body: str) -> WorkMessage:
    data = _load_object(body)
    upload_id = _require_upload_id(data)
    image_path = data.get(IMAGE_PATH_KEY)
    if not isinstance(image_path, str) or not image_path:
        raise MessageValidationError(f"'{IMAGE_PATH_KEY}' must be a non-empty string")
    return WorkMessage(upload_id=upload_id, image_path=image_path)


def encode_result_message(message: ResultMessage) -> str:
    return json.dumps({**message.payload, UPLOAD_ID_KEY: message.upload_id})


def parse_result_message(body: str) -> ResultMessage:
    """Validate a raw result body and split it into upload id and opaque payload.

    Raises:
        MessageValidationError: on invalid JSON, a non-object body, or a missing
            or non-integer uploadId.
    """
    data = _load_object(body)
    upload_id = _require_upload_id(data)
    payload = {key: value for key, value in data.items() if key != UPLOAD_ID_KEY}
    return ResultMessage(upload_id=upload_id, payload=payload)


def _load_object(body: str) -> dict[str, Any]:
    try:
        data = json.loads(body, parse_constant=_reject_constant)
    except (TypeError, ValueError) as exc:
        raise MessageValidationError(f"Message body is not valid JSON: {exc}") from exc
    if not isinstance(data, dict):
        raise MessageValidationError("Message body must be a JSON object")
    _reject_nul(data)
    return data


def _require_upload_id(data: dict[str, Any]) -> int:
    if UPLOAD_ID_KEY not in data:
        raise MessageValidationError(f"Missing required field: {UPLOAD_ID_KEY}")
    upload_id = data[UPLOAD_ID_KEY]
    # bool is a subclass of int
    if isinstance(upload_id, bool) or not isinstance(upload_id, int):
        raise MessageValidationError(f"'{UPLOAD_ID_KEY}' must be an integer")
    if upload_id <= 0:
        raise MessageValidationError(f"'{UPLOAD_ID_KEY}' must be positive")
    return upload_id


def _reject_constant(name: str) -> Any:
    # JSONB has no NaN or Infinity
    raise MessageValidationError(f"Non-finite number {name} is not allowed")


def _reject_nul(value: Any) -> None:
    """Reject NUL characters anywhere in keys or strings; JSONB cannot store them."""
    if isinstance(value, str):
        if "\x00" in value:
            raise MessageValidationError("Strings must not contain NUL characters")
    elif isinstance(value, dict):
        for key, item in value.items():
            _reject_nul(key)
            _reject_nul(item)
    elif isinstance(value, list):
        for item in value:
            _reject_nul(item)
