"""Tests for MultipartRequest field and header management."""

import io
import logging
from concurrent.futures import ThreadPoolExecutor
from pathlib import Path

import pytest

from formpost.encoder import FileField, PlainField
from formpost.errors import FileNotFound, InvalidArgument, RequestStateError
from formpost.request import DEFAULT_USER_AGENT, MultipartRequest
from tests.conftest import FakeConnection


@pytest.fixture
def request_():
    return MultipartRequest()


# ── add_field ────────────────────────────────────────────────────────────


class TestAddField:
    def test_bytes(self, request_):
        request_.add_field("a", "application/octet-stream", b"\x00\xff")
        (field,) = request_.fields
        assert isinstance(field, PlainField)
        assert field.data == b"\x00\xff"
        assert field.streaming is False

    def test_bytearray_is_copied(self, request_):
        data = bytearray(b"abc")
        request_.add_field("a", "application/octet-stream", data)
        data[0] = ord("z")
        assert request_.fields[0].data == b"abc"

    def test_text_is_utf8(self, request_):
        request_.add_field("a", "text/plain", "héllo")
        assert request_.fields[0].data == "héllo".encode("utf-8")

    @pytest.mark.parametrize(
        "args",
        [
            (None, "text/plain", "x"),
            ("a", None, "x"),
            ("a", "text/plain", None),
        ],
    )
    def test_none_argument_rejected(self, request_, args):
        with pytest.raises(InvalidArgument):
            request_.add_field(*args)
        assert request_.fields == ()

    def test_unsupported_type_rejected(self, request_):
        with pytest.raises(InvalidArgument):
            request_.add_field("a", "text/plain", 42)
        assert request_.fields == ()

    @pytest.mark.parametrize(
        "name, mime_type",
        [
            ('a"; filename="evil', "text/plain"),
            ("a\r\nX-Injected: 1", "text/plain"),
            ("a", "text/plain\r\nX-Injected: 1"),
        ],
    )
    def test_header_breaking_text_rejected(self, request_, name, mime_type):
        with pytest.raises(InvalidArgument, match="quotes or line breaks"):
            request_.add_field(name, mime_type, "x")
        assert request_.fields == ()

    def test_non_str_name_rejected(self, request_):
        with pytest.raises(InvalidArgument):
            request_.add_field(b"a", "text/plain", "x")

    def test_invalid_argument_is_value_error(self, request_):
        with pytest.raises(ValueError):
            request_.add_field(None, "text/plain", "x")

    def test_insertion_order(self, request_):
        for name in ("c", "a", "b"):
            request_.add_field(name, "text/plain", name)
        assert [f.name for f in request_.fields] == ["c", "a", "b"]

    def test_add_fields_mapping(self, request_):
        request_.add_fields({"title": "Report", "blob": b"\x01"})
        title, blob = request_.fields
        assert (title.name, title.mime_type) == ("title", "text/plain")
        assert (blob.name, blob.mime_type) == ("blob", "application/octet-stream")

    def test_add_fields_none(self, request_):
        with pytest.raises(InvalidArgument):
            request_.add_fields(None)


# ── add_file ─────────────────────────────────────────────────────────────


class TestAddFile:
    def test_bytes_is_buffered(self, request_):
        request_.add_file("doc", "text/plain", "a.txt", b"data")
        (field,) = request_.fields
        assert isinstance(field, FileField)
        assert field.file_name == "a.txt"
        assert field.streaming is False
        assert field.data == b"data"

    def test_bytes_allows_missing_filename(self, request_):
        request_.add_file("doc", "text/plain", None, b"data")
        assert request_.fields[0].file_name is None

    def test_path_opens_and_streams(self, request_, tmp_path):
        f = tmp_path / "upload.bin"
        f.write_bytes(b"payload")
        request_.add_file("up", "application/octet-stream", "upload.bin", f)
        (field,) = request_.fields
        assert field.streaming is True
        assert field.stream.read() == b"payload"
        field.close()

    def test_missing_path(self, request_, tmp_path):
        with pytest.raises(FileNotFound):
            request_.add_file("up", "text/plain", "x.txt", tmp_path / "missing.txt")
        assert request_.fields == ()

    def test_missing_path_is_file_not_found_error(self, request_):
        with pytest.raises(FileNotFoundError):
            request_.add_file("up", "text/plain", "x.txt", Path("/nonexistent/x.txt"))

    def test_path_requires_filename(self, request_, tmp_path):
        f = tmp_path / "a.txt"
        f.write_text("x")
        with pytest.raises(InvalidArgument):
            request_.add_file("up", "text/plain", None, f)
        assert request_.fields == ()

    def test_stream(self, request_):
        stream = io.BytesIO(b"streamed")
        request_.add_file("up", "text/plain", "s.txt", stream)
        (field,) = request_.fields
        assert field.streaming is True
        assert field.stream is stream

    def test_stream_requires_filename(self, request_):
        with pytest.raises(InvalidArgument):
            request_.add_file("up", "text/plain", None, io.BytesIO(b"x"))

    def test_none_data(self, request_):
        with pytest.raises(InvalidArgument):
            request_.add_file("up", "text/plain", "a.txt", None)

    def test_unsupported_type(self, request_):
        with pytest.raises(InvalidArgument):
            request_.add_file("up", "text/plain", "a.txt", 3.14)

    def test_text_stream_rejected(self, request_):
        with pytest.raises(InvalidArgument, match="binary mode"):
            request_.add_file("up", "text/plain", "s.txt", io.StringIO("text"))
        assert request_.fields == ()

    def test_text_mode_file_rejected(self, request_, tmp_path):
        f = tmp_path / "a.txt"
        f.write_text("x")
        with open(f) as handle:
            with pytest.raises(InvalidArgument):
                request_.add_file("up", "text/plain", "a.txt", handle)
        assert request_.fields == ()

    @pytest.mark.parametrize(
        "file_name",
        ['a".txt', "a.txt\r\nX-Injected: 1", "a\n.txt"],
    )
    def test_file_name_breaking_header_rejected(self, request_, file_name):
        with pytest.raises(InvalidArgument):
            request_.add_file("up", "text/plain", file_name, b"data")
        assert request_.fields == ()


# ── Headers ──────────────────────────────────────────────────────────────


class TestHeaders:
    def test_defaults(self, request_):
        assert request_.headers == {
            "connection": "Keep-Alive",
            "user-agent": DEFAULT_USER_AGENT,
        }

    def test_custom_user_agent(self):
        assert MultipartRequest(user_agent="uploader/2").headers["user-agent"] == "uploader/2"

    def test_set_header_lowercases(self, request_):
        request_.set_header("X-Token", "abc")
        assert request_.headers["x-token"] == "abc"

    def test_set_header_overwrites(self, request_):
        request_.set_header("X-Token", "abc")
        request_.set_header("x-token", "def")
        assert request_.headers["x-token"] == "def"

    def test_override_default(self, request_):
        request_.set_header("Connection", "close")
        assert request_.headers["connection"] == "close"

    @pytest.mark.parametrize(
        "name",
        ["method", "Content-Type", "HOST", "content-length", "Content-Length"],
    )
    def test_fixed_headers_ignored(self, request_, name, caplog):
        before = request_.headers
        with caplog.at_level(logging.WARNING, logger="formpost.request"):
            request_.set_header(name, "nope")
        assert request_.headers == before
        assert f'Cannot change "{name}" header' in caplog.text

    def test_set_header_none(self, request_):
        with pytest.raises(InvalidArgument):
            request_.set_header(None, "x")
        with pytest.raises(InvalidArgument):
            request_.set_header("x", None)

    def test_unset_present(self, request_):
        request_.set_header("X-A", "1")
        request_.set_header("X-B", "2")
        request_.unset_header("X-A")
        assert "x-a" not in request_.headers
        assert request_.headers["x-b"] == "2"

    def test_unset_absent_is_noop(self, request_):
        before = request_.headers
        request_.unset_header("X-Missing")
        assert request_.headers == before

    def test_unset_default(self, request_):
        request_.unset_header("User-Agent")
        assert "user-agent" not in request_.headers

    def test_unset_none(self, request_):
        with pytest.raises(InvalidArgument):
            request_.unset_header(None)

    def test_headers_is_a_copy(self, request_):
        request_.headers["x-sneaky"] = "1"
        assert "x-sneaky" not in request_.headers


# ── Construction ─────────────────────────────────────────────────────────


class TestConstruction:
    def test_boundaries_differ_per_instance(self):
        assert MultipartRequest().boundary != MultipartRequest().boundary

    def test_unknown_encoding(self):
        with pytest.raises(InvalidArgument):
            MultipartRequest(response_encoding="no-such-codec")

    def test_bad_chunk_size(self):
        with pytest.raises(InvalidArgument):
            MultipartRequest(chunk_size=0)


# ── Execution lifecycle ──────────────────────────────────────────────────


class TestLifecycle:
    def test_executes_once(self):
        conn = FakeConnection()
        request = MultipartRequest(connection_factory=conn.factory)
        assert request.execute("http://example.com/upload").ok
        with pytest.raises(RequestStateError):
            request.execute("http://example.com/upload")

    def test_url_required(self):
        with pytest.raises(InvalidArgument):
            MultipartRequest().execute(None)

    def test_timeout_passed_to_factory(self):
        conn = FakeConnection()
        MultipartRequest(timeout=5, connection_factory=conn.factory).execute("http://h/")
        assert conn.timeout == 5

    def test_submit_returns_future(self):
        conn = FakeConnection(response=b"done")
        request = MultipartRequest(connection_factory=conn.factory)
        request.add_field("a", "text/plain", "1")
        with ThreadPoolExecutor(max_workers=1) as pool:
            result = request.submit("http://example.com/upload", pool).result(timeout=5)
        assert result.ok
        assert result.text == "done"
