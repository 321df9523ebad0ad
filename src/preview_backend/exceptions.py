"""
Custom exceptions for thumbnail generation.

Only :class:`PlaceholderUnavailableError` is allowed to escape the
:class:`~preview_backend.service.ThumbnailService`; everything else is
absorbed and turned into a placeholder or a "no preview" result.
"""


class ThumbnailError(Exception):
    """Base exception for all thumbnail pipeline errors."""

    def __init__(self, message: str = "") -> None:
        super().__init__(message or self.default_message)
        self.message = message or self.default_message

    @property
    def default_message(self) -> str:
        return "An unknown thumbnail error occurred."


class ConfigurationError(ThumbnailError):
    """Raised when thumbnail settings are invalid."""

    @property
    def default_message(self) -> str:
        return "Invalid thumbnail configuration."


class InputRejectedError(ThumbnailError):
    """Raised when the source bytes cannot be processed at all."""

    @property
    def default_message(self) -> str:
        return "Source document was rejected."


class EmptyInputError(InputRejectedError):
    """Raised when the source byte sequence is empty."""

    @property
    def default_message(self) -> str:
        return "Source document is empty."


class InputTooLargeError(InputRejectedError):
    """Raised when the source exceeds the configured byte ceiling."""

    def __init__(self, size: int = 0, limit: int = 0) -> None:
        self.size = size
        self.limit = limit
        super().__init__(f"Source document too large: {size} bytes (max {limit} bytes)" if limit else "")

    @property
    def default_message(self) -> str:
        return "Source document exceeds the size limit."


class InvalidSignatureError(InputRejectedError):
    """Raised when the leading bytes do not match the expected format."""

    @property
    def default_message(self) -> str:
        return "Source bytes do not match a supported file signature."


class ConversionError(ThumbnailError):
    """Raised when a conversion step fails."""

    @property
    def default_message(self) -> str:
        return "Thumbnail conversion failed."


class ConversionTimeoutError(ConversionError):
    """Raised when a conversion step exceeds its time budget."""

    @property
    def default_message(self) -> str:
        return "Thumbnail conversion timed out."


class EmptyResultError(ConversionError):
    """Raised when a conversion step produced no usable image."""

    @property
    def default_message(self) -> str:
        return "Conversion produced an empty image."


class ExternalToolError(ConversionError):
    """Raised when the external raster tool fails or produces nothing."""

    @property
    def default_message(self) -> str:
        return "External raster tool failed."


class StreamReadTimeoutError(ConversionTimeoutError):
    """Raised when draining a result stream takes too long."""

    @property
    def default_message(self) -> str:
        return "Timed out while reading conversion stream."


class UnsafePathError(ThumbnailError):
    """Raised when a filesystem path contains forbidden patterns."""

    @property
    def default_message(self) -> str:
        return "Path contains forbidden characters."


class ChainExhaustedError(ConversionError):
    """Raised when every step of a strategy chain failed."""

    def __init__(self, message: str = "", errors: list[tuple[str, Exception]] | None = None) -> None:
        super().__init__(message)
        self.errors = errors or []

    @property
    def default_message(self) -> str:
        return "All conversion strategies failed."


class PlaceholderUnavailableError(ThumbnailError):
    """Raised when not even a solid-colour placeholder can be encoded."""

    @property
    def default_message(self) -> str:
        return "Unable to generate a placeholder thumbnail."


class StorageError(ThumbnailError):
    """Raised when the object store rejects an operation."""

    @property
    def default_message(self) -> str:
        return "Object store operation failed."


class ObjectNotFoundError(StorageError):
    """Raised when a key is absent from the object store."""

    def __init__(self, key: str = "") -> None:
        self.key = key
        super().__init__(f"Object not found: {key}" if key else "")

    @property
    def default_message(self) -> str:
        return "Object not found."
