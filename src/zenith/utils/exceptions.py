"""
Custom exceptions for zenith.

This module defines all custom exceptions used throughout the application.
Storage and graph operations absorb persistence failures and return sentinels;
these exceptions surface at the edges (config loading, result fetching, CLI).
"""


class ZenithError(Exception):
    """Base exception for all zenith errors."""

    pass


class ValidationError(ZenithError):
    """Raised when input validation fails."""

    def __init__(self, message: str, field: str = "") -> None:
        """
        Initialize validation error.

        Args:
            message: Error message
            field: Name of the field that failed validation (optional)
        """
        self.field = field
        super().__init__(message)


class ConfigurationError(ZenithError):
    """Raised when there is a configuration problem."""

    pass


class PersistenceError(ZenithError):
    """Raised when the durable key-value substrate cannot be read or written."""

    def __init__(
        self, message: str, key: str = "", original_error: Exception | None = None
    ) -> None:
        """
        Initialize persistence error.

        Args:
            message: Error message
            key: Storage key involved in the failed operation (optional)
            original_error: The underlying exception that caused this error
        """
        self.key = key
        self.original_error = original_error
        super().__init__(message)


class APIError(ZenithError):
    """Raised when fetching a result from the proxy or upstream host fails."""

    def __init__(self, message: str, status_code: int = 0, response: str = "") -> None:
        """
        Initialize API error.

        Args:
            message: Error message
            status_code: HTTP status code (if applicable)
            response: Raw response body (if available)
        """
        self.status_code = status_code
        self.response = response
        super().__init__(message)


class NetworkError(ZenithError):
    """Raised when a network operation fails."""

    def __init__(self, message: str, original_error: Exception | None = None) -> None:
        """
        Initialize network error.

        Args:
            message: Error message
            original_error: The underlying exception that caused this error
        """
        self.original_error = original_error
        super().__init__(message)


class RequestTimeoutError(ZenithError):
    """Raised when fetching result bytes times out."""

    pass


class ImageProcessingError(ZenithError):
    """Raised when image bytes cannot be decoded or converted."""

    def __init__(self, message: str, image_path: str = "") -> None:
        """
        Initialize image processing error.

        Args:
            message: Error message
            image_path: Path or identifier of the image that caused the error
        """
        self.image_path = image_path
        super().__init__(message)
