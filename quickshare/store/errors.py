# Error kinds raised by the object store
# Each carries the HTTP status the endpoints translate it to


class StoreError(Exception):
    """Base class for every error the object store raises on purpose."""

    status_code = 500
    default_message = "Internal storage error"

    def __init__(self, message: str | None = None) -> None:
        super().__init__(message or self.default_message)

    @property
    def message(self) -> str:
        return str(self)


class SizeExceeded(StoreError):
    status_code = 413
    default_message = "File exceeds the maximum allowed size"


class InvalidType(StoreError):
    status_code = 400
    default_message = "File type not allowed. Please upload images, documents, or archives."


class NotFound(StoreError):
    status_code = 404
    default_message = "File not found or has been deleted."


class Expired(NotFound):
    # An expired object is also a missing one; callers that only care about
    # "gone" can catch NotFound.
    status_code = 410
    default_message = "File has expired."


class Conflict(StoreError):
    default_message = "Object identifier collision"


class StorageIO(StoreError):
    default_message = "Storage I/O failure"


class EntropyExhausted(StoreError):
    default_message = "Secure random source unavailable"
