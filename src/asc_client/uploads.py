"""
Chunked asset uploads for App Store Connect.

Reserving an asset (screenshot, app preview, review attachment...) returns a
list of upload operations. Each operation names a byte range of the local file
and the request that has to carry it: method, destination URL and headers.
This module reads those ranges and sends them in parallel.

Typical usage:

    reservation = api.create_app_screenshot(...)  # any asset reservation
    operations = UploadOperations.from_response(reservation)
    with open("screenshot.png", "rb") as f:
        operations.upload(f, api)
"""

import logging
import queue
import re
import threading
from concurrent.futures import ThreadPoolExecutor, wait
from dataclasses import dataclass
from typing import IO, Any, Dict, Iterable, List, Optional, Tuple
from urllib.parse import urlparse

import requests
from requests.structures import CaseInsensitiveDict

from .exceptions import (
    AppStoreConnectError,
    InvalidOperationBounds,
    InvalidOperationDestination,
    MalformedRequest,
    UploadCancelledError,
    UploadIOError,
    UploadOperationError,
)

logger = logging.getLogger(__name__)

DEFAULT_MAX_WORKERS = 8

# RFC 7230 token characters
_METHOD_TOKEN = re.compile(r"^[!#$%&'*+\-.^_`|~0-9A-Za-z]+$")


@dataclass(frozen=True)
class UploadOperationHeader:
    """A single request header an upload operation must be sent with."""

    name: Optional[str] = None
    value: Optional[str] = None

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "UploadOperationHeader":
        return cls(name=data.get("name"), value=data.get("value"))

    def to_dict(self) -> Dict[str, str]:
        return {k: v for k, v in (("name", self.name), ("value", self.value)) if v is not None}


@dataclass(frozen=True)
class UploadOperation:
    """
    One slice of a file and the request that uploads it.

    Every field is optional on the wire. A missing offset/length or
    method/url is a data error raised when the slice is used, never
    replaced by a default.
    """

    offset: Optional[int] = None
    length: Optional[int] = None
    method: Optional[str] = None
    url: Optional[str] = None
    headers: Tuple[UploadOperationHeader, ...] = ()

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "UploadOperation":
        """Build an operation from its JSON representation."""
        return cls(
            offset=data.get("offset"),
            length=data.get("length"),
            method=data.get("method"),
            url=data.get("url"),
            headers=tuple(
                UploadOperationHeader.from_dict(header)
                for header in data.get("requestHeaders") or []
            ),
        )

    def to_dict(self) -> Dict[str, Any]:
        """Serialize back to the JSON representation, omitting unset fields."""
        result: Dict[str, Any] = {}
        if self.length is not None:
            result["length"] = self.length
        if self.method is not None:
            result["method"] = self.method
        if self.offset is not None:
            result["offset"] = self.offset
        if self.headers:
            result["requestHeaders"] = [header.to_dict() for header in self.headers]
        if self.url is not None:
            result["url"] = self.url
        return result

    def chunk(self, file: IO[bytes]) -> bytes:
        """
        Read the bytes this operation covers from an open binary file.

        Moves the file cursor. Callers sharing a handle between threads must
        hold a lock around this call.

        Raises:
            InvalidOperationBounds: offset or length is missing or negative
            UploadIOError: the seek or read failed, or returned too few bytes
        """
        if self.offset is None or self.length is None:
            raise InvalidOperationBounds("could not establish bounds of upload operation")
        if self.offset < 0 or self.length < 0:
            raise InvalidOperationBounds(
                f"negative bounds in upload operation (offset={self.offset}, length={self.length})"
            )

        try:
            file.seek(self.offset)
            data = file.read(self.length)
        except (OSError, ValueError) as e:
            raise UploadIOError(
                f"Failed to read {self.length} bytes at offset {self.offset}: {e}"
            ) from e

        if not isinstance(data, (bytes, bytearray)):
            raise UploadIOError("Upload source must be opened in binary mode")
        if len(data) != self.length:
            raise UploadIOError(
                f"Short read at offset {self.offset}: expected {self.length} bytes, "
                f"got {len(data)}"
            )
        return bytes(data)

    def request_headers(self) -> CaseInsensitiveDict:
        """Well-formed headers in order; repeated names are comma-joined."""
        headers: CaseInsensitiveDict = CaseInsensitiveDict()
        for header in self.headers:
            if header.name is None or header.value is None:
                continue
            if header.name in headers:
                headers[header.name] = f"{headers[header.name]}, {header.value}"
            else:
                headers[header.name] = header.value
        return headers

    def request(self, data: bytes) -> requests.PreparedRequest:
        """
        Build the HTTP request that uploads ``data`` for this operation.

        Raises:
            InvalidOperationDestination: method or url is missing
            MalformedRequest: the method or url cannot form a valid request
        """
        if self.method is None or self.url is None:
            raise InvalidOperationDestination(
                "could not establish destination of upload operation"
            )
        if not _METHOD_TOKEN.match(self.method):
            raise MalformedRequest(f"Invalid HTTP method: {self.method!r}")

        try:
            prepared = requests.Request(
                method=self.method,
                url=self.url,
                headers=self.request_headers(),
                data=data,
            ).prepare()
        except (requests.exceptions.RequestException, ValueError) as e:
            raise MalformedRequest(
                f"Cannot build {self.method} request for {self.url}: {e}"
            ) from e

        # requests prepares non-http URLs untouched and only rejects them on send
        if urlparse(prepared.url).scheme.lower() not in ("http", "https"):
            raise MalformedRequest(f"Unsupported URL scheme for upload: {self.url}")
        return prepared


class UploadCoordinator:
    """
    Uploads every slice of a file described by a set of upload operations.

    Slices are read one at a time on the calling thread and sent from a
    thread pool, one task per slice. All slices are attempted even when some
    of them fail; nothing is rolled back.

    Args:
        client: Transport exposing ``send_upload_request(request, cancel_event=...)``,
            normally an ``AppStoreConnectAPI``
        max_workers: Upper bound on concurrent requests (defaults to the
            number of slices, capped at DEFAULT_MAX_WORKERS)
    """

    def __init__(self, client, max_workers: Optional[int] = None):
        self.client = client
        self.max_workers = max_workers
        self._read_lock = threading.Lock()

    def upload(
        self,
        operations: Iterable[UploadOperation],
        file: IO[bytes],
        cancel_event: Optional[threading.Event] = None,
    ) -> None:
        """
        Upload all slices and raise the first failure observed.

        Raises:
            UploadOperationError: for the first slice that failed; the other
                slices have still been attempted
        """
        errors = self.upload_all(operations, file, cancel_event=cancel_event)
        if errors:
            if len(errors) > 1:
                logger.warning(
                    f"{len(errors)} upload operations failed, reporting the first"
                )
            raise errors[0]

    def upload_all(
        self,
        operations: Iterable[UploadOperation],
        file: IO[bytes],
        cancel_event: Optional[threading.Event] = None,
    ) -> List[UploadOperationError]:
        """
        Upload all slices and return every failure in the order it was observed.

        Returns:
            List of UploadOperationError, empty when every slice succeeded
        """
        operations = list(operations)
        if not operations:
            return []

        errors: "queue.Queue[UploadOperationError]" = queue.Queue()
        workers = self.max_workers or min(len(operations), DEFAULT_MAX_WORKERS)
        logger.info(f"upload: {len(operations)} operations, {workers} workers")

        with ThreadPoolExecutor(
            max_workers=workers, thread_name_prefix="asc-upload"
        ) as executor:
            futures = []
            for operation in operations:
                if cancel_event is not None and cancel_event.is_set():
                    errors.put(
                        UploadOperationError(
                            operation,
                            UploadCancelledError("Upload cancelled before the slice was read"),
                        )
                    )
                    continue
                try:
                    chunk = self._extract(operation, file)
                except AppStoreConnectError as e:
                    logger.warning(f"upload: could not read slice {operation.offset}: {e}")
                    errors.put(UploadOperationError(operation, e))
                    continue
                futures.append(
                    executor.submit(
                        self._send_chunk, operation, chunk, errors, cancel_event
                    )
                )
            wait(futures)

        # Re-raise anything that is not an upload error
        for future in futures:
            future.result()

        return self._drain(errors)

    def _extract(self, operation: UploadOperation, file: IO[bytes]) -> bytes:
        with self._read_lock:
            return operation.chunk(file)

    def _send_chunk(
        self,
        operation: UploadOperation,
        chunk: bytes,
        errors: "queue.Queue[UploadOperationError]",
        cancel_event: Optional[threading.Event],
    ) -> None:
        try:
            request = operation.request(chunk)
            self.client.send_upload_request(request, cancel_event=cancel_event)
        except AppStoreConnectError as e:
            logger.warning(
                f"upload: {operation.method} {operation.url} "
                f"(offset={operation.offset}, length={operation.length}) failed: {e}"
            )
            errors.put(UploadOperationError(operation, e))

    @staticmethod
    def _drain(errors: "queue.Queue[UploadOperationError]") -> List[UploadOperationError]:
        collected = []
        while True:
            try:
                collected.append(errors.get_nowait())
            except queue.Empty:
                return collected


class UploadOperations(tuple):
    """Ordered set of upload operations describing one file upload."""

    @classmethod
    def from_list(cls, items: Iterable[Dict[str, Any]]) -> "UploadOperations":
        return cls(UploadOperation.from_dict(item) for item in items or [])

    @classmethod
    def from_response(cls, document: Dict[str, Any]) -> "UploadOperations":
        """
        Read ``data.attributes.uploadOperations`` from an asset reservation response.

        A missing list yields an empty set.
        """
        data = (document or {}).get("data") or {}
        attributes = data.get("attributes") or {}
        return cls.from_list(attributes.get("uploadOperations") or [])

    def to_list(self) -> List[Dict[str, Any]]:
        return [operation.to_dict() for operation in self]

    @property
    def total_length(self) -> int:
        """Sum of the lengths that are set."""
        return sum(op.length for op in self if op.length is not None)

    def upload(
        self,
        file: IO[bytes],
        client,
        cancel_event: Optional[threading.Event] = None,
        max_workers: Optional[int] = None,
    ) -> None:
        """Upload every slice of ``file``; see UploadCoordinator.upload."""
        UploadCoordinator(client, max_workers=max_workers).upload(
            self, file, cancel_event=cancel_event
        )

    def upload_all(
        self,
        file: IO[bytes],
        client,
        cancel_event: Optional[threading.Event] = None,
        max_workers: Optional[int] = None,
    ) -> List[UploadOperationError]:
        """Upload every slice of ``file``; see UploadCoordinator.upload_all."""
        return UploadCoordinator(client, max_workers=max_workers).upload_all(
            self, file, cancel_event=cancel_event
        )
