"""
Exception classes for asc-client.
"""


class AppStoreConnectError(Exception):
    """Base exception class for App Store Connect API errors."""

    pass


class ValidationError(AppStoreConnectError):
    """Raised when request validation fails."""

    pass


class TransportError(AppStoreConnectError):
    """Raised when an HTTP call fails or returns a non-success status."""

    def __init__(self, message, status_code=None):
        super().__init__(message)
        self.status_code = status_code


class AuthenticationError(TransportError):
    """Raised when authentication fails."""

    pass


class RateLimitError(TransportError):
    """Raised when rate limits are exceeded."""

    pass


class NotFoundError(TransportError):
    """Raised when requested resource is not found."""

    pass


class PermissionError(TransportError):
    """Raised when insufficient permissions for operation."""

    pass


class ServerError(TransportError):
    """Raised when server returns 5xx error."""

    pass


# ===== UPLOAD ERRORS =====


class InvalidOperationBounds(ValidationError):
    """Raised when an upload operation has no usable offset or length."""

    pass


class InvalidOperationDestination(ValidationError):
    """Raised when an upload operation has no method or url."""

    pass


class MalformedRequest(ValidationError):
    """Raised when the method/url of an upload operation cannot form a request."""

    pass


class UploadIOError(AppStoreConnectError):
    """Raised when a slice cannot be read from the source file."""

    pass


class UploadCancelledError(AppStoreConnectError):
    """Raised when a slice is abandoned because cancellation was requested."""

    pass


class UploadOperationError(AppStoreConnectError):
    """
    Pairs a failed upload operation with the error it produced.

    The operation is kept so the caller can retry just that slice.
    """

    def __init__(self, operation, error: Exception):
        super().__init__(str(error))
        self.operation = operation
        self.error = error
        self.__cause__ = error
