"""
asc-client

A Python client for the Apple App Store Connect API with concurrent,
chunked asset uploads.
"""

from .client import AppStoreConnectAPI, AppStoreVersionState
from .uploads import (
    UploadCoordinator,
    UploadOperation,
    UploadOperationHeader,
    UploadOperations,
)
from .reports import DiagnosticsReport, create_diagnostics_report
from .exceptions import (
    AppStoreConnectError,
    AuthenticationError,
    RateLimitError,
    ValidationError,
    NotFoundError,
    PermissionError,
    ServerError,
    TransportError,
    InvalidOperationBounds,
    InvalidOperationDestination,
    MalformedRequest,
    UploadIOError,
    UploadCancelledError,
    UploadOperationError,
)
from . import utils

__version__ = "0.1.0"

__all__ = [
    "AppStoreConnectAPI",
    "AppStoreVersionState",
    "UploadCoordinator",
    "UploadOperation",
    "UploadOperationHeader",
    "UploadOperations",
    "DiagnosticsReport",
    "create_diagnostics_report",
    "AppStoreConnectError",
    "AuthenticationError",
    "RateLimitError",
    "ValidationError",
    "NotFoundError",
    "PermissionError",
    "ServerError",
    "TransportError",
    "InvalidOperationBounds",
    "InvalidOperationDestination",
    "MalformedRequest",
    "UploadIOError",
    "UploadCancelledError",
    "UploadOperationError",
    "utils",
]
