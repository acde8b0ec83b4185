"""
Tests for chunked uploads: slice extraction, request building and the coordinator.
"""

import io
import os
import threading
import time
from http.server import BaseHTTPRequestHandler, ThreadingHTTPServer
from unittest.mock import Mock, patch

import pytest

from asc_client import AppStoreConnectAPI
from asc_client.uploads import (
    UploadCoordinator,
    UploadOperation,
    UploadOperationHeader,
    UploadOperations,
)
from asc_client.exceptions import (
    InvalidOperationBounds,
    InvalidOperationDestination,
    MalformedRequest,
    ServerError,
    TransportError,
    UploadCancelledError,
    UploadIOError,
    UploadOperationError,
)


@pytest.fixture
def api_client():
    """Create a test API client instance."""
    with patch('pathlib.Path.exists', return_value=True):
        return AppStoreConnectAPI(
            key_id="test_key",
            issuer_id="test_issuer",
            private_key_path="/tmp/test_key.p8",
            timeout=5,
        )


@pytest.fixture
def big_file(tmp_path):
    """A 64 byte file of random content, opened for reading."""
    contents = os.urandom(64)
    path = tmp_path / "big_file"
    path.write_bytes(contents)
    with open(path, "rb") as f:
        yield f, contents


def make_operations(url, bounds, method="PATCH"):
    return UploadOperations(
        UploadOperation(
            offset=offset,
            length=length,
            method=method,
            url=url,
            headers=(UploadOperationHeader("X-Slice-Offset", str(offset)),),
        )
        for offset, length in bounds
    )


class _RecordingHandler(BaseHTTPRequestHandler):
    """Accepts PATCH uploads and records their bodies per server."""

    def do_PATCH(self):
        length = int(self.headers.get("Content-Length", 0))
        body = self.rfile.read(length)
        self.server.received.append((self.path, dict(self.headers), body))
        if self.path.startswith("/slow"):
            time.sleep(3)
        status = 500 if self.path.startswith("/fail") else 200
        self.send_response(status)
        self.send_header("Content-Length", "0")
        self.end_headers()

    def log_message(self, format, *args):
        pass


@pytest.fixture
def upload_server():
    """Local HTTP server standing in for the upload destination."""
    server = ThreadingHTTPServer(("127.0.0.1", 0), _RecordingHandler)
    server.received = []
    thread = threading.Thread(target=server.serve_forever, daemon=True)
    thread.start()
    try:
        yield server, f"http://127.0.0.1:{server.server_address[1]}"
    finally:
        server.shutdown()
        server.server_close()


class TestUploadOperationDecoding:
    """Test building operations from API documents."""

    def test_from_dict_keeps_missing_fields_unset(self):
        """Absent fields stay None instead of being defaulted."""
        op = UploadOperation.from_dict({"url": "https://example.com/part"})
        assert op.url == "https://example.com/part"
        assert op.offset is None
        assert op.length is None
        assert op.method is None
        assert op.headers == ()

    def test_from_dict_reads_request_headers(self):
        """requestHeaders become UploadOperationHeader entries in order."""
        op = UploadOperation.from_dict({
            "offset": 0,
            "length": 10,
            "method": "PUT",
            "url": "https://example.com/part",
            "requestHeaders": [
                {"name": "Content-Type", "value": "image/png"},
                {"name": "x-amz-meta"},
            ],
        })
        assert op.headers == (
            UploadOperationHeader("Content-Type", "image/png"),
            UploadOperationHeader("x-amz-meta", None),
        )

    def test_to_dict_omits_unset_fields(self):
        """Serialization uses wire names and skips None values."""
        op = UploadOperation(offset=5, length=3, url="https://example.com")
        assert op.to_dict() == {"offset": 5, "length": 3, "url": "https://example.com"}

    def test_from_response(self):
        """Operations are read from data.attributes.uploadOperations."""
        document = {
            "data": {
                "id": "abc",
                "attributes": {
                    "uploadOperations": [
                        {"offset": 0, "length": 10, "method": "PUT", "url": "https://a"},
                        {"offset": 10, "length": 5, "method": "PUT", "url": "https://b"},
                    ]
                },
            }
        }
        operations = UploadOperations.from_response(document)
        assert len(operations) == 2
        assert operations[1].url == "https://b"
        assert operations.total_length == 15

    def test_from_response_without_operations(self):
        """A reservation without operations gives an empty set."""
        assert UploadOperations.from_response({"data": {"attributes": {}}}) == ()
        assert UploadOperations.from_response(None) == ()

    def test_to_list(self):
        """The set serializes back to the reservation's JSON list."""
        operations = UploadOperations([
            UploadOperation(offset=0, length=4, method="PUT", url="https://a",
                            headers=(UploadOperationHeader("Content-Type", "image/png"),)),
            UploadOperation(url="https://b"),
        ])
        assert operations.to_list() == [
            {"offset": 0, "length": 4, "method": "PUT", "url": "https://a",
             "requestHeaders": [{"name": "Content-Type", "value": "image/png"}]},
            {"url": "https://b"},
        ]


class TestUploadOperationChunk:
    """Test slice extraction."""

    def test_chunk_small_file(self, tmp_path):
        """offset=0, length=10 from a 20 byte file returns its first 10 bytes."""
        contents = os.urandom(20)
        path = tmp_path / "small_file"
        path.write_bytes(contents)

        op = UploadOperation(url="test", offset=0, length=10, method="PATCH")
        with open(path, "rb") as f:
            chunk = op.chunk(f)

        assert len(chunk) == 10
        assert chunk == contents[:10]

    def test_chunk_returns_exact_range(self, big_file):
        """Every slice is exactly contents[offset:offset+length]."""
        f, contents = big_file
        for offset, length in [(0, 10), (10, 10), (20, 30), (50, 10), (60, 4), (63, 1)]:
            assert UploadOperation(offset=offset, length=length).chunk(f) == contents[offset:offset + length]

    def test_chunk_zero_length(self, big_file):
        """A zero length slice is an empty buffer."""
        f, _ = big_file
        assert UploadOperation(offset=64, length=0).chunk(f) == b""

    @pytest.mark.parametrize("offset,length", [(None, 10), (0, None), (None, None)])
    def test_chunk_missing_bounds(self, offset, length):
        """Missing offset or length fails without touching the file."""
        f = Mock()
        with pytest.raises(InvalidOperationBounds):
            UploadOperation(offset=offset, length=length).chunk(f)
        f.seek.assert_not_called()
        f.read.assert_not_called()

    def test_chunk_negative_bounds(self):
        """Negative bounds are a data error, not a read of the whole file."""
        f = Mock()
        with pytest.raises(InvalidOperationBounds):
            UploadOperation(offset=0, length=-1).chunk(f)
        f.read.assert_not_called()

    def test_chunk_past_end_of_file(self, big_file):
        """A short read is reported as an I/O failure."""
        f, _ = big_file
        with pytest.raises(UploadIOError, match="Short read"):
            UploadOperation(offset=60, length=10).chunk(f)

    def test_chunk_closed_file(self, tmp_path):
        """Reading a closed handle is wrapped as UploadIOError."""
        path = tmp_path / "closed"
        path.write_bytes(b"0123456789")
        f = open(path, "rb")
        f.close()
        with pytest.raises(UploadIOError) as exc_info:
            UploadOperation(offset=0, length=5).chunk(f)
        assert isinstance(exc_info.value.__cause__, ValueError)

    def test_chunk_seek_failure(self):
        """An OSError from seek is wrapped."""
        f = Mock()
        f.seek.side_effect = OSError("bad file descriptor")
        with pytest.raises(UploadIOError, match="bad file descriptor"):
            UploadOperation(offset=0, length=5).chunk(f)

    def test_chunk_text_mode(self):
        """Text handles are rejected."""
        with pytest.raises(UploadIOError, match="binary mode"):
            UploadOperation(offset=0, length=3).chunk(io.StringIO("abcdef"))


class TestUploadOperationRequest:
    """Test request construction."""

    def test_request_missing_url(self):
        """url=None fails before any network activity."""
        op = UploadOperation(offset=0, length=3, method="PATCH", url=None)
        with patch('requests.Session.send') as mock_send:
            with pytest.raises(InvalidOperationDestination):
                op.request(b"abc")
            mock_send.assert_not_called()

    def test_request_missing_method(self):
        """method=None fails as well."""
        op = UploadOperation(offset=0, length=3, url="https://example.com")
        with pytest.raises(InvalidOperationDestination):
            op.request(b"abc")

    def test_request_fields(self):
        """Method, url and body come from the operation."""
        op = UploadOperation(offset=0, length=3, method="put", url="https://example.com/part?sig=1")
        request = op.request(b"abc")
        assert request.method == "PUT"
        assert request.url == "https://example.com/part?sig=1"
        assert request.body == b"abc"
        assert request.headers["Content-Length"] == "3"
        assert "Authorization" not in request.headers

    def test_request_headers_skip_malformed_and_keep_order(self):
        """Pairs missing a name or value are dropped; the rest keep their order."""
        op = UploadOperation(
            method="PUT",
            url="https://example.com",
            headers=(
                UploadOperationHeader("Content-Type", "image/png"),
                UploadOperationHeader(None, "orphan"),
                UploadOperationHeader("x-amz-acl", None),
                UploadOperationHeader("x-amz-meta-a", "1"),
                UploadOperationHeader("x-amz-meta-b", "2"),
            ),
        )
        request = op.request(b"data")
        names = [name for name in request.headers if name.lower() != "content-length"]
        assert names == ["Content-Type", "x-amz-meta-a", "x-amz-meta-b"]
        assert "x-amz-acl" not in request.headers
        assert "orphan" not in request.headers.values()

    def test_request_repeated_header_names(self):
        """Repeated names are combined in order."""
        op = UploadOperation(
            method="PUT",
            url="https://example.com",
            headers=(
                UploadOperationHeader("X-Tag", "a"),
                UploadOperationHeader("x-tag", "b"),
            ),
        )
        assert op.request(b"").headers["X-Tag"] == "a, b"

    @pytest.mark.parametrize("method,url", [
        ("PAT CH", "https://example.com"),
        ("PATCH", "test"),
        ("PATCH", "http://"),
        ("PATCH", "ftp://host/x"),
    ])
    def test_request_malformed(self, method, url):
        """A method/url the HTTP stack rejects raises MalformedRequest."""
        with pytest.raises(MalformedRequest):
            UploadOperation(method=method, url=url).request(b"abc")


class TestUploadCoordinator:
    """Test concurrent dispatch and error collection."""

    def test_all_operations_succeed(self, big_file):
        """Every slice is sent once and no error is raised."""
        f, contents = big_file
        client = Mock()
        operations = make_operations("https://upload.example.com", [(0, 32), (32, 32)])

        UploadCoordinator(client).upload(operations, f)

        assert client.send_upload_request.call_count == 2
        bodies = sorted(call.args[0].body for call in client.send_upload_request.call_args_list)
        assert bodies == sorted([contents[:32], contents[32:]])

    def test_returns_only_after_all_requests_completed(self, big_file):
        """upload() blocks until every dispatched slice finished."""
        f, _ = big_file
        completed = []

        def slow_send(request, cancel_event=None):
            time.sleep(0.05)
            completed.append(request.headers["X-Slice-Offset"])

        client = Mock()
        client.send_upload_request.side_effect = slow_send
        operations = make_operations("https://upload.example.com", [(0, 16), (16, 16), (32, 16), (48, 16)])

        UploadCoordinator(client).upload(operations, f)

        assert sorted(completed, key=int) == ["0", "16", "32", "48"]

    def test_slices_are_sent_concurrently(self, big_file):
        """All four slices are in flight at the same time."""
        f, _ = big_file
        barrier = threading.Barrier(4, timeout=5)
        client = Mock()
        client.send_upload_request.side_effect = lambda request, cancel_event=None: barrier.wait()
        operations = make_operations("https://upload.example.com", [(0, 16), (16, 16), (32, 16), (48, 16)])

        UploadCoordinator(client).upload(operations, f)

        assert client.send_upload_request.call_count == 4

    def test_failed_slice_does_not_cancel_siblings(self, big_file):
        """The failing slice is reported and all others are still sent."""
        f, _ = big_file
        operations = make_operations("https://upload.example.com", [(0, 10), (10, 10), (20, 30), (50, 10), (60, 4)])
        failing = operations[2]

        def send(request, cancel_event=None):
            if request.headers["X-Slice-Offset"] == "20":
                raise ServerError("API Error 500: boom", 500)

        client = Mock()
        client.send_upload_request.side_effect = send

        with pytest.raises(UploadOperationError) as exc_info:
            UploadCoordinator(client).upload(operations, f)

        assert exc_info.value.operation == failing
        assert isinstance(exc_info.value.error, ServerError)
        assert client.send_upload_request.call_count == 5

    def test_extraction_failure_skips_request(self, big_file):
        """A slice without bounds is reported and never sent."""
        f, _ = big_file
        broken = UploadOperation(method="PATCH", url="https://upload.example.com")
        operations = UploadOperations([broken] + list(make_operations("https://upload.example.com", [(0, 10)])))
        client = Mock()

        with pytest.raises(UploadOperationError) as exc_info:
            UploadCoordinator(client).upload(operations, f)

        assert exc_info.value.operation is broken
        assert isinstance(exc_info.value.error, InvalidOperationBounds)
        assert client.send_upload_request.call_count == 1

    def test_missing_destination_is_reported(self, big_file):
        """A slice without url fails at request building, not in the transport."""
        f, _ = big_file
        op = UploadOperation(offset=0, length=10, method="PATCH")
        client = Mock()

        errors = UploadCoordinator(client).upload_all([op], f)

        assert len(errors) == 1
        assert isinstance(errors[0].error, InvalidOperationDestination)
        client.send_upload_request.assert_not_called()

    def test_upload_all_returns_every_error(self, big_file):
        """upload_all keeps all failures; upload raises the first of them."""
        f, _ = big_file
        first = UploadOperation(offset=None, length=10, method="PATCH", url="https://a")
        second = UploadOperation(offset=200, length=10, method="PATCH", url="https://b")
        good = UploadOperation(offset=0, length=10, method="PATCH", url="https://c")
        client = Mock()

        errors = UploadCoordinator(client).upload_all([first, second, good], f)

        assert [e.operation for e in errors] == [first, second]
        assert isinstance(errors[1].error, UploadIOError)

        with pytest.raises(UploadOperationError) as exc_info:
            UploadCoordinator(client).upload([first, second, good], f)
        assert exc_info.value.operation is first

    def test_empty_operations(self):
        """Nothing to upload is a success."""
        client = Mock()
        assert UploadCoordinator(client).upload_all([], Mock()) == []
        client.send_upload_request.assert_not_called()

    def test_unexpected_exception_propagates(self, big_file):
        """Errors outside the client's hierarchy are not turned into slice errors."""
        f, _ = big_file
        client = Mock()
        client.send_upload_request.side_effect = RuntimeError("bug")

        with pytest.raises(RuntimeError, match="bug"):
            UploadCoordinator(client).upload(make_operations("https://a", [(0, 10)]), f)

    def test_cancelled_before_dispatch(self, api_client, big_file):
        """A set cancel event stops every slice before it reaches the network."""
        f, _ = big_file
        cancel = threading.Event()
        cancel.set()
        operations = make_operations("https://upload.example.com", [(0, 32), (32, 32)])

        with patch('requests.Session.send') as mock_send:
            errors = operations.upload_all(f, api_client, cancel_event=cancel)
            mock_send.assert_not_called()

        assert len(errors) == 2
        assert all(isinstance(e.error, UploadCancelledError) for e in errors)

    def test_cancelled_between_extractions(self):
        """Once cancelled, remaining slices are neither read nor sent."""
        cancel = threading.Event()
        f = Mock()

        def read_and_cancel(size):
            cancel.set()
            return b"x" * size

        f.read.side_effect = read_and_cancel
        client = Mock()
        operations = make_operations("https://upload.example.com", [(0, 8), (8, 8), (16, 8)])

        errors = UploadCoordinator(client).upload_all(operations, f, cancel_event=cancel)

        assert f.read.call_count == 1
        assert client.send_upload_request.call_count == 1
        assert [e.operation for e in errors] == [operations[1], operations[2]]
        assert all(isinstance(e.error, UploadCancelledError) for e in errors)


class TestMultipartUpload:
    """End-to-end uploads against a local HTTP server."""

    def test_multipart_upload(self, api_client, big_file, upload_server):
        """64 bytes in five PATCH slices are all delivered."""
        f, contents = big_file
        server, base_url = upload_server
        operations = make_operations(base_url + "/upload", [(0, 10), (10, 10), (20, 30), (50, 10), (60, 4)])

        operations.upload(f, api_client)

        assert len(server.received) == 5
        rebuilt = b"".join(
            body for _, _, body in sorted(server.received, key=lambda r: int(r[1]["X-Slice-Offset"]))
        )
        assert rebuilt == contents

    def test_multipart_upload_server_failure(self, api_client, big_file, upload_server):
        """A 500 on one destination surfaces as that slice's error."""
        f, _ = big_file
        server, base_url = upload_server
        operations = UploadOperations([
            UploadOperation(offset=0, length=32, method="PATCH", url=base_url + "/ok"),
            UploadOperation(offset=32, length=32, method="PATCH", url=base_url + "/fail"),
        ])

        with pytest.raises(UploadOperationError) as exc_info:
            api_client.upload_operations(operations, f)

        assert exc_info.value.operation.url == base_url + "/fail"
        assert isinstance(exc_info.value.error, TransportError)
        assert exc_info.value.error.status_code == 500
        assert len(server.received) == 2

    def test_upload_operations_accepts_dicts(self, api_client, big_file, upload_server):
        """Raw JSON operations are decoded before uploading."""
        f, _ = big_file
        server, base_url = upload_server

        api_client.upload_operations(
            [{"offset": 0, "length": 64, "method": "PATCH", "url": base_url + "/upload",
              "requestHeaders": [{"name": "Content-Type", "value": "application/octet-stream"}]}],
            f,
        )

        assert len(server.received) == 1
        assert server.received[0][1]["Content-Type"] == "application/octet-stream"

    def test_cancel_aborts_requests_in_flight(self, api_client, big_file, upload_server):
        """Setting the event mid-upload returns without waiting for slow responses."""
        f, _ = big_file
        server, base_url = upload_server
        operations = make_operations(base_url + "/slow", [(0, 32), (32, 32)])
        cancel = threading.Event()
        timer = threading.Timer(0.3, cancel.set)

        start = time.monotonic()
        timer.start()
        try:
            errors = operations.upload_all(f, api_client, cancel_event=cancel)
        finally:
            timer.cancel()
        elapsed = time.monotonic() - start

        assert elapsed < 1.5
        assert len(errors) == 2
        assert all(isinstance(e.error, UploadCancelledError) for e in errors)
