"""Error taxonomy for the video upload API.

Every error carries the HTTP status it maps to; `main` renders them as
`{"message": ...}` JSON bodies.
"""


class VideoServiceError(Exception):
    """Base error with an HTTP status code and a human-readable message."""

    status_code = 500
    default_message = "Internal server error."

    def __init__(self, message: str | None = None):
        self.message = message or self.default_message
        super().__init__(self.message)


class NotFoundError(VideoServiceError):
    status_code = 404
    default_message = "Video not found."


class AlreadyCompletedError(VideoServiceError):
    """Raised when a chunk or stop call targets a video that is already finalized."""
    status_code = 400
    default_message = "Video streaming already completed."


class ValidationError(VideoServiceError):
    status_code = 400
    default_message = "Invalid request."


class ConflictError(VideoServiceError):
    status_code = 409
    default_message = "A video with this title already exists."


class OutOfOrderChunkError(VideoServiceError):
    status_code = 409

    def __init__(self, expected: int, received: int):
        self.expected = expected
        self.received = received
        super().__init__(f"Out of order chunk: expected sequence {expected}, got {received}.")


class StorageError(VideoServiceError):
    status_code = 500
    default_message = "Storage operation failed."


class TranscodeError(VideoServiceError):
    """External encoder unavailable, timed out, or exited non-zero."""
    status_code = 502
    default_message = "Video transcoding failed."
