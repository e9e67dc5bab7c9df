class PipelineError(Exception):
    """Base exception for all image pipeline errors."""


class ValidationError(PipelineError):
    """Raised when input is malformed and must be rejected without side effects."""


class UploadValidationError(ValidationError):
    """Raised when an upload request is missing a filename or content."""


class MessageValidationError(ValidationError):
    """Raised when a queue message payload cannot be deserialized."""


class NotFoundError(PipelineError):
    """Raised when a requested record does not exist."""


class UploadNotFoundError(NotFoundError):
    """Raised when an upload cannot be found in the database."""


class ProcessedResultNotFoundError(NotFoundError):
    """Raised when a processed result cannot be found in the database."""


class TransportError(PipelineError):
    """Raised when a queue cannot be reached."""


class PublishError(TransportError):
    """Raised when a work message could not be enqueued."""


class PersistenceError(PipelineError):
    """Raised when the record store is unreachable or a write fails."""
